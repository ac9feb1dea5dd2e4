import json
import logging
import re

from fastapi import APIRouter, Depends, Request

from teambot.core.config import settings
from teambot.core.errors import AccountNotFound
from teambot.deps import get_ledger, get_messenger, get_scheduler, get_sheet

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/groupme", tags=["GroupMe"])

ACCOUNT_PATTERN = re.compile(r"^\d{1,10}/\d{4}$")

HELP_TEXT = (
    "Commands:\n"
    "ADD_ACCOUNT <account> - adds bank account to groupme account\n"
    "ACCOUNT - shows your stored bank account\n"
    "LINK_ACCOUNT <account> <name> - assigns payments from account to a sheet name\n"
    "PAYMENTS - checks new payments now\n"
    "SWEEP - retries payments not yet added to the sheet\n"
    "PENDING - lists payments not yet added to the sheet\n"
    "SHEET - prints the balance sheet URL\n"
    "HELP - prints this message"
)


def safe_json_load(body: bytes):
    """Extracts the first JSON object, ignoring anything around it."""
    text = body.decode("utf-8", errors="ignore").strip()

    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end == 0:
        return None

    try:
        return json.loads(text[start:end])
    except json.JSONDecodeError:
        return None


def format_report(title: str, report) -> str:
    text = f"{title}: new {report.new}, applied {report.applied}, failed {report.failed}"
    if report.skipped:
        text += f", already seen {report.skipped}"
    if report.unattributed:
        text += f", unattributed {report.unattributed}"
    return text


async def process_command(text: str, sender_id: str, ledger, scheduler, sheet=None) -> str:
    """Runs one chat command and returns the reply."""
    parts = text.strip().split(maxsplit=2)
    command = parts[0] if parts else ""

    if command == "ADD_ACCOUNT":
        if len(parts) != 2 or not ACCOUNT_PATTERN.match(parts[1]):
            return "Wrong ADD_ACCOUNT format"
        ledger.set_groupme_account(sender_id, parts[1])
        return f"Account {parts[1]} stored"

    elif command == "ACCOUNT":
        try:
            account = ledger.get_groupme_account(sender_id)
        except AccountNotFound:
            return "I don't know your account, use ADD_ACCOUNT"
        try:
            return f"Your account: {account}, payments go to {ledger.get_name(account)}"
        except AccountNotFound:
            return f"Your account: {account}, not linked to a sheet name"

    elif command == "LINK_ACCOUNT":
        if len(parts) != 3 or not ACCOUNT_PATTERN.match(parts[1]):
            return "Wrong LINK_ACCOUNT format"
        name = " ".join(parts[2].split())
        ledger.set_account_name(parts[1], name)
        return f"Payments from {parts[1]} will be added to {name}"

    elif command == "PAYMENTS":
        if scheduler.busy:
            return "Payments check already running"
        report = await scheduler.run_check()
        if report is None:
            return "Error occured when processing PAYMENTS, see logs"
        text = format_report("Payments checked", report)
        if report.possibly_incomplete:
            text += "\nNot all payments checked!"
        return text

    elif command == "SWEEP":
        if scheduler.busy:
            return "Payments check already running"
        report = await scheduler.run_sweep()
        if report is None:
            return "Error occured when processing SWEEP, see logs"
        return format_report("Sweep done", report)

    elif command == "PENDING":
        pending = ledger.get_unprocessed_payments(settings.SWEEP_SINCE)
        if not pending:
            return "No pending payments"
        lines = [f"{p.accounted_order}: {p.name} {p.amount} ({p.account})" for p in pending]
        return "Pending payments:\n" + "\n".join(lines)

    elif command == "SHEET":
        if sheet is None:
            return "Sheet not configured"
        return f"Balance sheet URL: {sheet.get_read_only_url()}"

    elif command == "HELP":
        return HELP_TEXT

    return f"Not a command: {command}"


@router.post("/message")
async def groupme_message(
    req: Request,
    ledger=Depends(get_ledger),
    scheduler=Depends(get_scheduler),
    messenger=Depends(get_messenger),
    sheet=Depends(get_sheet),
):
    data = safe_json_load(await req.body())
    if not data:
        return {"status": "invalid_json"}

    # Ignore own messages
    sender_id = str(data.get("sender_id", ""))
    if data.get("sender_type") == "bot" or (settings.GROUPME_BOT_USER_ID and sender_id == settings.GROUPME_BOT_USER_ID):
        return {"status": "ignored"}

    text = data.get("text") or ""
    logger.info("Message text: %s ID %s", text, sender_id)
    if not text.strip():
        return {"status": "no_text"}

    reply = await process_command(text, sender_id, ledger, scheduler, sheet)
    await messenger.send_message(reply)
    return {"status": "ok"}
