"""
Scheduled recurring detection.

Runs in the Celery worker with a sync SQLAlchemy engine and one session per
account, so a failing account rolls back on its own and the rest still run.

Scheduled task (via celery beat):
  detect_all_accounts       — nightly, merge mode (user overrides kept)

On-demand task:
  detect_account(account_id, force)
"""

import logging
import uuid

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.account import Account
from app.services.recurring import detect_for_account
from app.worker import celery_app

logger = logging.getLogger(__name__)

_engine = create_engine(settings.database_url_sync, pool_pre_ping=True)


@celery_app.task(name="app.services.recurring_jobs.detect_all_accounts")
def detect_all_accounts():
    """Re-detect (merge) recurring patterns for every visible account."""
    with Session(_engine) as db:
        account_ids = db.execute(
            select(Account.id).where(Account.is_hidden == False)  # noqa: E712
        ).scalars().all()

    logger.info("Recurring detection for %d accounts", len(account_ids))
    patterns = failed = 0
    for account_id in account_ids:
        try:
            with Session(_engine) as db:
                patterns += len(detect_for_account(db, account_id))
        except SQLAlchemyError:
            failed += 1
            logger.exception("Recurring detection failed for account %s", account_id)

    logger.info(
        "Recurring detection done: %d patterns across %d accounts, %d failed",
        patterns, len(account_ids), failed,
    )
    return {"accounts": len(account_ids), "patterns": patterns, "failed": failed}


@celery_app.task(name="app.services.recurring_jobs.detect_account")
def detect_account(account_id: str, force: bool = False):
    """Detect patterns for one account; errors propagate so Celery records the failure."""
    with Session(_engine) as db:
        saved = detect_for_account(db, uuid.UUID(account_id), force=force)
    logger.info("Account %s: %d recurring patterns (force=%s)", account_id, len(saved), force)
    return len(saved)
