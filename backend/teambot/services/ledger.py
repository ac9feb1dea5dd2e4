import logging
from datetime import date, datetime, time, timezone
from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from teambot.core.errors import AccountNotFound, DuplicatePayment, PaymentNotFound
from teambot.database import SessionLocal
from teambot.models.account import GroupmeAccount, UserAccount
from teambot.models.payment import Payment

logger = logging.getLogger(__name__)


class LedgerStore:
    """
    Durable record of seen payments and of the account -> name roster.

    The highest stored ``accounted_order`` is the watermark: anything at or
    below it has already been recorded and must never be inserted again.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def check_connection(self):
        db = self.session_factory()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

    # =========================
    # PAYMENTS
    # =========================
    def get_last_payment_order(self) -> int:
        db = self.session_factory()
        try:
            last_order = db.query(func.max(Payment.accounted_order)).scalar()
        finally:
            db.close()

        if last_order is None:
            logger.info("No payments found")
            raise PaymentNotFound("No payments found")
        return last_order

    def store_payment(self, payment: Payment) -> Payment:
        db = self.session_factory()
        try:
            db.add(payment)
            db.commit()
            db.refresh(payment)
            db.expunge(payment)
            return payment
        except IntegrityError:
            db.rollback()
            raise DuplicatePayment(payment.accounted_order)
        finally:
            db.close()

    def mark_payment_processed(self, order: int, at: datetime):
        db = self.session_factory()
        try:
            payment = db.query(Payment).filter(Payment.accounted_order == order).first()
            if not payment:
                raise PaymentNotFound(f"No payment with order {order}")
            payment.processed_at = at
            db.commit()
        finally:
            db.close()

    def get_unprocessed_payments(self, since: date) -> list[Payment]:
        if not isinstance(since, datetime):
            since = datetime.combine(since, time.min, tzinfo=timezone.utc)

        db = self.session_factory()
        try:
            return (
                db.query(Payment)
                .filter(Payment.processed_at.is_(None))
                .filter(Payment.accounted_at >= since)
                .order_by(Payment.accounted_order.asc())
                .all()
            )
        finally:
            db.close()

    # =========================
    # ROSTER ACCOUNTS
    # =========================
    def get_name(self, account: str) -> str:
        db = self.session_factory()
        try:
            row = db.query(UserAccount).filter(UserAccount.account == account).first()
        finally:
            db.close()

        if not row or not row.name:
            raise AccountNotFound(account)
        return row.name

    def get_accounts(self) -> dict[str, str]:
        db = self.session_factory()
        try:
            return {row.account: row.name for row in db.query(UserAccount).all()}
        finally:
            db.close()

    def set_account_name(self, account: str, name: str):
        db = self.session_factory()
        try:
            row = db.query(UserAccount).filter(UserAccount.account == account).first()
            if row:
                row.name = name
            else:
                db.add(UserAccount(account=account, name=name))
            db.commit()
        finally:
            db.close()

    def get_groupme_account(self, user_id: str) -> str:
        db = self.session_factory()
        try:
            row = db.query(GroupmeAccount).filter(GroupmeAccount.user_id == user_id).first()
        finally:
            db.close()

        if not row or not row.account:
            raise AccountNotFound(user_id)
        return row.account

    def set_groupme_account(self, user_id: str, account: str):
        db = self.session_factory()
        try:
            row = db.query(GroupmeAccount).filter(GroupmeAccount.user_id == user_id).first()
            if row:
                row.account = account
            else:
                db.add(GroupmeAccount(user_id=user_id, account=account))
            db.commit()
        finally:
            db.close()
