import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from teambot.core.config import settings
from teambot.database_init import ensure_database
from teambot.routes import groupme_bot, payments
from teambot.services.bank import CsobClient
from teambot.services.groupme import MessageService
from teambot.services.ledger import LedgerStore
from teambot.services.reconcile import Reconciler
from teambot.services.scheduler import PaymentScheduler
from teambot.services.sheets import SheetOperator

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def check_ledger(ledger: LedgerStore):
    try:
        ledger.check_connection()
    except SQLAlchemyError:
        logger.exception("Ledger database is unreachable")
        raise SystemExit(1)


def build_services(app: FastAPI):
    ledger = LedgerStore()
    messenger = MessageService()
    sheet = SheetOperator()
    reconciler = Reconciler(
        ledger=ledger,
        fetcher=CsobClient(),
        sheet=sheet,
        notifier=messenger,
    )
    app.state.ledger = ledger
    app.state.messenger = messenger
    app.state.sheet = sheet
    app.state.scheduler = PaymentScheduler(reconciler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- ensure database exists, exits when unreachable ---
    ensure_database()
    build_services(app)
    check_ledger(app.state.ledger)
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler.start()
    yield
    await app.state.scheduler.stop()


app = FastAPI(title="Team Payments Bot", lifespan=lifespan)

app.include_router(groupme_bot.router)
app.include_router(payments.router)


# --- Root route ---
@app.get("/")
def root():
    return {"message": "Team payments bot is running"}
