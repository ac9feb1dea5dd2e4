# teambot/database_init.py
import logging
from sqlalchemy.exc import OperationalError
from sqlalchemy_utils import database_exists, create_database
from teambot.database import DATABASE_URL, Base, engine

logger = logging.getLogger(__name__)


def ensure_database():
    """Create the database and tables; exit when the server is unreachable."""
    try:
        if not database_exists(DATABASE_URL):
            create_database(DATABASE_URL)
            logger.info("Database created: %s", engine.url.render_as_string(hide_password=True))
        else:
            logger.info("Database already exists: %s", engine.url.render_as_string(hide_password=True))
    except OperationalError:
        logger.exception("Ledger database is unreachable")
        raise SystemExit(1)

    # models must be imported before create_all sees them
    from teambot.models import account, payment  # noqa: F401
    Base.metadata.create_all(bind=engine)
