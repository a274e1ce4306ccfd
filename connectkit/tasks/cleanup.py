"""Periodic housekeeping of authentication state."""

import logging

from connectkit.celery_app import app as celery_app
from connectkit.config import get_settings
from connectkit.context import AppContext
from connectkit.services.auth import AuthService

logger = logging.getLogger(__name__)


def run_cleanup(context: AppContext) -> dict[str, int]:
    """Purge expired reset tokens and lift expired lockouts."""
    db = context.session_factory()
    try:
        return AuthService(db, context.cache, context.settings).cleanup()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@celery_app.task(name="connectkit.tasks.cleanup.cleanup_auth_state")
def cleanup_auth_state() -> dict[str, int]:
    """Beat-scheduled entry point; builds and tears down its own context."""
    context = AppContext(get_settings())
    try:
        result = run_cleanup(context)
        logger.info(f"Auth cleanup finished: {result}")
        return result
    finally:
        context.shutdown()
