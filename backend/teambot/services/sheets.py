import logging
from urllib.parse import quote

import httpx

from teambot.core.config import settings
from teambot.core.errors import SheetError

logger = logging.getLogger(__name__)

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"

VIO_USER_ENTERED = "USER_ENTERED"
VRO_FORMULA = "FORMULA"
VRO_UNFORMATTED_VALUE = "UNFORMATTED_VALUE"

NAMES_ROW = 1
BALANCE_ROW = 2


def to_column_index(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA."""
    letters = ""
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def append_amount(cell: str, amount: int) -> str:
    """
    Append ``+amount`` to a balance cell's formula text.

    The sum is left to the spreadsheet so every payment stays visible in the
    formula.
    """
    cell = str(cell or "").strip()
    if not cell:
        return f"={amount}"
    if not cell.startswith("="):
        cell = f"={cell}"
    return f"{cell}+{amount}"


class SheetOperator:
    def __init__(
        self,
        spreadsheet_id: str = settings.GOOGLE_SHEET_ID,
        access_token: str = settings.GOOGLE_ACCESS_TOKEN,
        sheet_name: str = settings.SHEET_NAME,
        timeout: float = settings.REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.spreadsheet_id = spreadsheet_id
        self.access_token = access_token
        self.sheet_name = sheet_name
        self.timeout = timeout
        self.transport = transport

    def get_read_only_url(self) -> str:
        return f"https://docs.google.com/spreadsheets/d/{self.spreadsheet_id}/htmlview"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )

    def _values_url(self, cell_range: str) -> str:
        return f"{SHEETS_API}/{self.spreadsheet_id}/values/{quote(cell_range, safe='!:')}"

    async def get(self, cell_range: str, value_render_option: str = VRO_UNFORMATTED_VALUE) -> list[str]:
        try:
            async with self._client() as client:
                response = await client.get(
                    self._values_url(cell_range),
                    params={"valueRenderOption": value_render_option},
                )
                response.raise_for_status()
            rows = response.json().get("values", [])
        except httpx.HTTPError as e:
            raise SheetError(f"Unable to retrieve {cell_range}: {e}") from e
        except (ValueError, AttributeError) as e:
            raise SheetError(f"Unexpected response for {cell_range}: {e}") from e

        # empty cells are kept, positions are roster columns
        return [str(cell) for row in rows for cell in row]

    async def write(self, cell_range: str, new_values: list):
        try:
            async with self._client() as client:
                response = await client.put(
                    self._values_url(cell_range),
                    params={"valueInputOption": VIO_USER_ENTERED},
                    json={"range": cell_range, "values": [new_values]},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise SheetError(f"Unable to write {cell_range}: {e}") from e

    # =========================
    # ROSTER / BALANCES
    # =========================
    async def get_names(self) -> list[str]:
        return await self.get(f"{self.sheet_name}!A{NAMES_ROW}:{NAMES_ROW}")

    def balance_cell(self, column: int) -> str:
        return f"{self.sheet_name}!{to_column_index(column)}{BALANCE_ROW}"

    async def add_to_balance(self, column: int, amount: int) -> str:
        address = self.balance_cell(column)
        current = await self.get(address, VRO_FORMULA)
        new_value = append_amount(current[0] if current else "", amount)
        await self.write(address, [new_value])
        logger.debug("Balance %s: %s", address, new_value)
        return new_value
