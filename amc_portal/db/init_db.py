import structlog
from sqlalchemy.engine import Engine

from amc_portal.db.base import Base

logger = structlog.get_logger(__name__)


def init_db(bind: Engine) -> None:
    """Create any missing tables. Production schemas are managed by Alembic."""
    Base.metadata.create_all(bind=bind)
    logger.info("database_initialized", tables=sorted(Base.metadata.tables))
