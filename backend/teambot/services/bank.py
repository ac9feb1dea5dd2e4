import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import httpx

from teambot.core.config import settings
from teambot.core.errors import FetchError
from teambot.schemas.payment import Transaction

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/113.0.0.0 Safari/537.36 Edg/113.0.1774.35"
)
MAX_RETRY_DELAY = 60  # seconds, single backoff step


@dataclass
class FetchResult:
    transactions: list[Transaction] = field(default_factory=list)  # newest first, order > last_order
    possibly_incomplete: bool = False
    source: str = "api"


# =========================
# RESPONSE PARSING
# =========================
def _get(data: dict | None, key: str, default=None):
    """Case-insensitive key lookup; the feed is not consistent about casing."""
    if not isinstance(data, dict):
        return default
    if key in data:
        return data[key]
    lowered = key.lower()
    for k, v in data.items():
        if k.lower() == lowered:
            return v
    return default


def _to_int(value, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning("Not a number in bank feed: %r", value)
        return default
    if not number.is_finite():
        logger.warning("Not a number in bank feed: %r", value)
        return default
    if number != number.to_integral_value():
        logger.warning("Fractional value %s in bank feed truncated to %d", number, int(number))
    return int(number)


def parse_transaction(raw: dict) -> Transaction:
    base_info = _get(raw, "baseInfo", {})
    amount_data = _get(base_info, "accountAmountData", {})
    payment = _get(_get(raw, "transactionTypeChoice", {}), "domesticPayment", {})
    party_account = _get(_get(payment, "partyAccount", {}), "domesticAccount", {})

    account_number = _get(party_account, "accountNumber")
    bank_code = _get(party_account, "bankCode") or ""
    payer_account = f"{account_number}/{bank_code}" if account_number else ""

    accounting_date = _get(base_info, "accountingDate")
    if accounting_date:
        timestamp = datetime.fromtimestamp(_to_int(accounting_date) / 1000, tz=timezone.utc)
    else:
        timestamp = datetime.now(timezone.utc)

    return Transaction(
        order=_to_int(_get(base_info, "accountingOrder")),
        amount=_to_int(_get(amount_data, "amount")),
        payer_name=(_get(payment, "partyName") or "").strip(),
        payer_account=payer_account,
        message=(_get(_get(payment, "message", {}), "message1") or "").strip(),
        timestamp=timestamp,
    )


def parse_transactions(data: dict) -> list[Transaction]:
    items = _get(data, "accountedTransaction") or []
    transactions = [parse_transaction(item) for item in items]
    # the API is asked for DESC already, a staged snapshot might not be
    transactions.sort(key=lambda t: t.order, reverse=True)
    return transactions


def select_new(transactions: list[Transaction], last_order: int) -> FetchResult:
    """
    Keep incoming payments newer than ``last_order``.

    The page is newest first; reaching a transaction at or below
    ``last_order`` proves the page covered everything since the last check.
    """
    result = FetchResult()
    if not transactions:
        # nothing on the account yet
        return result

    hit_last = False
    for tx in transactions:
        if tx.order <= last_order:
            hit_last = True
            break
        if tx.amount > 0:
            result.transactions.append(tx)

    if not hit_last:
        logger.warning("Not all payments checked! Page did not reach order %d", last_order)
        result.possibly_incomplete = True
    return result


# =========================
# CLIENT
# =========================
class CsobClient:
    def __init__(
        self,
        account_number: int = settings.ACCOUNT_NUMBER,
        url: str = settings.CSOB_URL,
        snapshot_path: str = settings.SNAPSHOT_PATH,
        rows_per_page: int = settings.ROWS_PER_PAGE,
        max_elapsed: float = settings.FETCH_MAX_ELAPSED,
        base_delay: float = settings.FETCH_BASE_DELAY,
        timeout: float = settings.REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
        clock=time.monotonic,
    ):
        self.account_number = account_number
        self.url = url
        self.snapshot_path = snapshot_path
        self.rows_per_page = rows_per_page
        self.max_elapsed = max_elapsed
        self.base_delay = base_delay
        self.timeout = timeout
        self.transport = transport
        self.sleep = sleep
        self.clock = clock

    def build_payload(self) -> dict:
        return {
            "accountList": [{"accountNumberM24": self.account_number}],
            "filterList": [],
            "paging": {"rowsPerPage": self.rows_per_page, "pageNumber": 1},
            "sortList": [{"direction": "DESC", "name": "AccountingOrder", "order": 1}],
        }

    def build_headers(self) -> dict:
        return {
            "Accept": "application/json, text/plain, */*",
            "Content-Type": "application/json",
            "Referer": (
                "https://www.csob.cz/portal/firmy/bezne-ucty/transparentni-ucty/ucet"
                f"?account={self.account_number}"
            ),
            "User-Agent": USER_AGENT,
        }

    async def fetch_since(self, last_order: int) -> FetchResult:
        source = "api"
        try:
            data = await self._request_with_retry()
        except FetchError:
            logger.warning("Bank API unavailable, trying snapshot %s", self.snapshot_path)
            data = self._load_snapshot()
            source = "snapshot"

        result = select_new(parse_transactions(data), last_order)
        result.source = source
        logger.info(
            "Fetched %d new payments since order %d from %s", len(result.transactions), last_order, source
        )
        return result

    async def _request(self) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.url, json=self.build_payload(), headers=self.build_headers())
        if response.status_code != 200:
            raise httpx.HTTPStatusError(
                f"Unexpected bank request return code: {response.status_code}",
                request=response.request,
                response=response,
            )
        return response.json()

    async def _request_with_retry(self) -> dict:
        started = self.clock()
        delay = self.base_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._request()
            except (httpx.HTTPError, json.JSONDecodeError) as e:
                elapsed = self.clock() - started
                if elapsed + delay > self.max_elapsed:
                    raise FetchError(f"Bank request failed after {attempt} attempts: {e}") from e
                logger.warning("Bank request attempt %d failed: %s, retrying in %.1fs", attempt, e, delay)
                await self.sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY)

    def _load_snapshot(self) -> dict:
        if not self.snapshot_path or not os.path.exists(self.snapshot_path):
            raise FetchError("Bank API unavailable and no snapshot staged")

        try:
            with open(self.snapshot_path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise FetchError(f"Snapshot {self.snapshot_path} unreadable: {e}") from e
        finally:
            # a snapshot is a one-shot source
            try:
                os.remove(self.snapshot_path)
            except OSError:
                logger.exception("Can't remove snapshot %s", self.snapshot_path)
