from datetime import datetime

import structlog
from celery import shared_task

from amc_portal.db import session as db_session
from amc_portal.services.credential_store import SqlCredentialStore

logger = structlog.get_logger(__name__)


def _sweep(task, event: str, purge_name: str):
    db = db_session.SessionLocal()
    try:
        store = SqlCredentialStore(db)
        deleted = getattr(store, purge_name)(datetime.utcnow())
        logger.info(event, deleted=deleted)
        return {"deleted": deleted}
    except Exception as exc:
        db.rollback()
        logger.warning(f"{event}_failed", error_type=type(exc).__name__)
        raise task.retry(exc=exc, countdown=60)
    finally:
        db.close()


@shared_task(bind=True, max_retries=3)
def cleanup_expired_blacklisted_tokens(self):
    """Delete blacklist rows whose token has expired anyway; keeps the table bounded."""
    return _sweep(self, "blacklist_purged", "purge_expired_blacklist")


@shared_task(bind=True, max_retries=3)
def cleanup_expired_sessions(self):
    """Delete session audit rows that are expired or were closed by logout."""
    return _sweep(self, "sessions_purged", "purge_expired_sessions")
