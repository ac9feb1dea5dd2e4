import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from teambot.core.config import settings
from teambot.core.errors import (
    DuplicatePayment,
    PaymentNotFound,
    PaymentProcessingError,
    RosterError,
    SheetError,
)
from teambot.models.payment import Payment
from teambot.schemas.payment import Transaction
from teambot.services.matching import MatchPolicy, RosterSnapshot, locate, resolve

logger = logging.getLogger(__name__)


def default_policy() -> MatchPolicy:
    return MatchPolicy(similarity_threshold=settings.SIMILARITY_THRESHOLD)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentPlan:
    """A payment together with the roster column its amount goes to."""

    order: int
    amount: int
    payer_name: str
    account: str
    message: str
    accounted_at: datetime
    name: str
    column: int | None
    resent: bool = False
    unattributed: bool = False

    def to_model(self) -> Payment:
        return Payment(
            name=self.name,
            account=self.account,
            amount=self.amount,
            accounted_order=self.order,
            accounted_at=self.accounted_at,
            processed_at=None,
            payer_name=self.payer_name,
            message=self.message,
            resent=self.resent,
            unattributed=self.unattributed,
        )


@dataclass
class CycleReport:
    fetched: int = 0
    new: int = 0
    applied: int = 0
    failed: int = 0
    skipped: int = 0
    unattributed: int = 0
    possibly_incomplete: bool = False
    source: str = "api"


# =========================
# PLANNING (pure)
# =========================
def plan_payment(tx: Transaction, roster: RosterSnapshot, hosts_name: str = settings.HOSTS_NAME,
                 policy: MatchPolicy = MatchPolicy()) -> PaymentPlan:
    resolution = resolve(tx.payer_account, tx.message, roster, hosts_name, policy)
    if resolution.unattributed:
        logger.warning("Payment %d from %s (%s) not matched, assigning to %s",
                       tx.order, tx.payer_name, resolution.account, resolution.name)
    if resolution.column is None:
        logger.error("No roster column for %r and no %r column, check the sheet", resolution.name, hosts_name)

    return PaymentPlan(
        order=tx.order,
        amount=tx.amount,
        payer_name=tx.payer_name,
        account=resolution.account,
        message=tx.message,
        accounted_at=tx.timestamp,
        name=resolution.name,
        column=resolution.column,
        resent=resolution.resent,
        unattributed=resolution.unattributed,
    )


def plan_new_payments(transactions: list[Transaction], watermark: int, roster: RosterSnapshot,
                      hosts_name: str = settings.HOSTS_NAME,
                      policy: MatchPolicy = MatchPolicy()) -> list[PaymentPlan]:
    """Plans for incoming payments above the watermark, oldest first."""
    fresh = [tx for tx in transactions if tx.amount > 0 and tx.order > watermark]
    fresh.sort(key=lambda tx: tx.order)
    return [plan_payment(tx, roster, hosts_name, policy) for tx in fresh]


def plan_stored_payment(payment: Payment, roster: RosterSnapshot, hosts_name: str = settings.HOSTS_NAME,
                        policy: MatchPolicy = MatchPolicy()) -> PaymentPlan:
    """Rebuild a plan for a stored row; the stored name is kept as resolved."""
    name, column, fell_back = locate(payment.name, roster.names, hosts_name, policy)
    return PaymentPlan(
        order=payment.accounted_order,
        amount=payment.amount,
        payer_name=payment.payer_name or "",
        account=payment.account,
        message=payment.message or "",
        accounted_at=payment.accounted_at,
        name=name,
        column=column,
        resent=bool(payment.resent),
        unattributed=bool(payment.unattributed) or fell_back,
    )


def format_notification(plan: PaymentPlan) -> str:
    text = (
        f"New payment from: {plan.payer_name}({plan.name}), account: {plan.account}, "
        f"amount: {plan.amount}, order: {plan.order}, resent: {str(plan.resent).lower()}"
    )
    if plan.unattributed:
        text += "\nPayment not matched and added to " + plan.name
    return text


# =========================
# ORCHESTRATION
# =========================
class Reconciler:
    """
    Fetch, match and apply incoming payments.

    A payment row is stored with ``processed_at`` unset before its balance
    cell is touched and only marked processed after the write succeeded, so
    a failed write is left for :meth:`sweep` and never applied twice by the
    regular cycle.
    """

    def __init__(self, ledger, fetcher, sheet, notifier, hosts_name: str = settings.HOSTS_NAME,
                 policy: MatchPolicy | None = None, default_last_order: int = settings.DEFAULT_LAST_ORDER,
                 clock=utcnow):
        self.ledger = ledger
        self.fetcher = fetcher
        self.sheet = sheet
        self.notifier = notifier
        self.hosts_name = hosts_name
        self.policy = policy or default_policy()
        self.default_last_order = default_last_order
        self.clock = clock

    def get_watermark(self) -> int:
        try:
            return self.ledger.get_last_payment_order()
        except PaymentNotFound:
            logger.info("Empty ledger, starting from order %d", self.default_last_order)
            return self.default_last_order

    async def load_roster(self) -> RosterSnapshot:
        names = await self.sheet.get_names()
        if not names:
            raise RosterError("Sheet has no names row, check SHEET_NAME")
        return RosterSnapshot(names=names, accounts=self.ledger.get_accounts())

    async def check_new_payments(self) -> CycleReport:
        logger.info("Checking new payments")
        watermark = self.get_watermark()
        result = await self.fetcher.fetch_since(watermark)
        report = CycleReport(
            fetched=len(result.transactions),
            possibly_incomplete=result.possibly_incomplete,
            source=result.source,
        )
        if result.possibly_incomplete and result.transactions:
            await self.notifier.send_message(f"Not all payments checked since order {watermark}!")
        if not result.transactions:
            return report

        roster = await self.load_roster()
        plans = plan_new_payments(result.transactions, watermark, roster, self.hosts_name, self.policy)
        report.new = len(plans)

        for plan in plans:
            try:
                self.ledger.store_payment(plan.to_model())
            except DuplicatePayment:
                logger.info("Payment %d already stored, skipping", plan.order)
                report.skipped += 1
                continue
            except SQLAlchemyError as e:
                await self._report_failure(PaymentProcessingError(plan.order, "store", str(e)), report)
                continue
            await self._process(plan, report)

        logger.info("Payments check done: %s", report)
        return report

    async def sweep(self, since: date = settings.SWEEP_SINCE) -> CycleReport:
        """Re-drive stored payments that were never applied to the sheet."""
        pending = self.ledger.get_unprocessed_payments(since)
        report = CycleReport(fetched=len(pending), new=len(pending), source="ledger")
        if not pending:
            logger.info("No unprocessed payments since %s", since)
            return report

        logger.info("Sweeping %d unprocessed payments", len(pending))
        roster = await self.load_roster()
        for payment in pending:
            plan = plan_stored_payment(payment, roster, self.hosts_name, self.policy)
            await self._process(plan, report)

        logger.info("Sweep done: %s", report)
        return report

    async def apply(self, plan: PaymentPlan):
        if plan.column is None:
            raise PaymentProcessingError(plan.order, "match", f"no roster column for {plan.name!r}")

        try:
            await self.sheet.add_to_balance(plan.column, plan.amount)
        except SheetError as e:
            raise PaymentProcessingError(plan.order, "balance", str(e)) from e
        except Exception as e:
            # anything else from the sheet client still stays with this payment
            logger.exception("Unexpected error writing balance for payment %d", plan.order)
            raise PaymentProcessingError(plan.order, "balance", repr(e)) from e

        try:
            self.ledger.mark_payment_processed(plan.order, self.clock())
        except (PaymentNotFound, SQLAlchemyError) as e:
            raise PaymentProcessingError(plan.order, "mark_processed", str(e)) from e

    async def _process(self, plan: PaymentPlan, report: CycleReport):
        if plan.unattributed:
            report.unattributed += 1
        try:
            await self.apply(plan)
        except PaymentProcessingError as e:
            await self._report_failure(e, report)
            return

        report.applied += 1
        logger.info("Added %d to %s(%s), account %s, order: %d, resent: %s",
                    plan.amount, plan.payer_name, plan.name, plan.account, plan.order, plan.resent)
        await self.notifier.send_message(format_notification(plan))

    async def _report_failure(self, error: PaymentProcessingError, report: CycleReport):
        report.failed += 1
        logger.error(str(error))
        await self.notifier.send_message(str(error))
