from __future__ import annotations

from services.api.app.config import auto_create_tables
from services.api.app.db.database import get_engine
from services.api.app.db.models import Base
from services.api.app.log import get_logger

logger = get_logger("init_db")


def init_db() -> list[str]:
    """Create missing tables unless CANTINA_DB_AUTO_CREATE is off.

    Deployments against the shared store run migrations instead and turn it off.
    """

    if not auto_create_tables():
        logger.info("db_auto_create_skipped")
        return []

    Base.metadata.create_all(bind=get_engine())
    tables = sorted(Base.metadata.tables)
    logger.info("db_tables_ready", tables=tables)
    return tables
