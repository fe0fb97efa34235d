"""
Recurring transaction service — persistence and read paths.

All functions are synchronous and take a SQLAlchemy ``Session`` so the same
code runs inside Celery tasks (plain sync session) and FastAPI routes (via
``AsyncSession.run_sync``).

Detection persistence policy
────────────────────────────
  merge (default)  update rows matched on (account, merchant_pattern, type),
                   or else a same-type row whose pattern names the same merchant,
                   keeping the user's display_name / category / is_active;
                   insert the rest
  force            delete every row of the account, insert fresh results

Either way the run commits once; on failure it rolls back and re-raises.
"""
import logging
import uuid
from calendar import monthrange
from datetime import date, timedelta

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.account import Account, Category, Transaction
from app.models.recurring import RecurringTransaction
from app.schemas.recurring import (
    ProjectedOccurrence,
    RecurrenceFrequency,
    RecurringSummary,
    TransactionType,
    UpcomingTransaction,
)
from app.services.merchant_normalizer import is_same_merchant, normalize_merchant
from app.services.recurring_detector import (
    RecurringCandidate,
    TransactionRecord,
    detect_recurring,
)

logger = logging.getLogger(__name__)


# ─── Helpers ──────────────────────────────────────────────────────────────────

def months_before(day: date, months: int) -> date:
    """Same day-of-month ``months`` earlier, clamped to the month's length."""
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, monthrange(year, month)[1]))


def get_account(db: Session, account_id: uuid.UUID) -> Account | None:
    return db.get(Account, account_id)


def get_category(db: Session, account_id: uuid.UUID, category_id: uuid.UUID) -> Category | None:
    category = db.get(Category, category_id)
    if category is None or category.account_id != account_id:
        return None
    return category


def load_transactions(db: Session, account_id: uuid.UUID, since: date) -> list[TransactionRecord]:
    """Flat projection of an account's transactions on/after ``since`` (split children excluded)."""
    rows = db.execute(
        select(
            Transaction.id,
            Transaction.date,
            Transaction.amount,
            Transaction.counterparty_account,
            Transaction.description,
            Transaction.transaction_type,
            Transaction.category_id,
        )
        .where(
            Transaction.account_id == account_id,
            Transaction.parent_transaction_id.is_(None),
            # Undated rows are passed on so the detector reports them as malformed
            or_(Transaction.date >= since, Transaction.date.is_(None)),
        )
        .order_by(Transaction.date)
    ).all()

    records = []
    for row in rows:
        try:
            txn_type = TransactionType(row.transaction_type) if row.transaction_type else None
        except ValueError:
            logger.warning("Transaction %s has unknown type %r, deriving from sign", row.id, row.transaction_type)
            txn_type = None
        records.append(TransactionRecord(
            id=row.id,
            date=row.date,
            amount=row.amount,
            counterparty=row.counterparty_account,
            description=row.description,
            transaction_type=txn_type,
            category_id=row.category_id,
        ))
    return records


# ─── Detection ────────────────────────────────────────────────────────────────

def detect_for_account(
    db: Session,
    account_id: uuid.UUID,
    force: bool = False,
    today: date | None = None,
) -> list[RecurringTransaction]:
    """
    Detect recurring patterns for one account and persist them.

    Returns the rows written by this run, ordered by next expected date.
    Storage errors propagate after rollback; "nothing found" returns [].
    """
    today = today or date.today()
    since = months_before(today, settings.recurring_lookback_months)

    records = load_transactions(db, account_id, since)
    candidates = detect_recurring(
        records, today=today, min_confidence=settings.recurring_min_confidence
    )

    try:
        saved = _persist(db, account_id, candidates, force=force)
        db.commit()
    except IntegrityError:
        db.rollback()
        if force:
            raise
        # A concurrent merge inserted the same key first; merging again converges
        logger.warning("Unique-key race while merging patterns for account %s, retrying once", account_id)
        try:
            saved = _persist(db, account_id, candidates, force=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Account %s: %d recurring patterns %s from %d transactions",
        account_id, len(saved), "re-detected" if force else "merged", len(records),
    )
    return sorted(saved, key=lambda r: (r.next_expected or date.max, r.display_name))


def _persist(
    db: Session,
    account_id: uuid.UUID,
    candidates: list[RecurringCandidate],
    force: bool,
) -> list[RecurringTransaction]:
    existing: dict[tuple[str, str], RecurringTransaction] = {}
    if force:
        deleted = db.execute(
            delete(RecurringTransaction).where(RecurringTransaction.account_id == account_id)
        ).rowcount
        logger.debug("Force detection: removed %s existing patterns for account %s", deleted, account_id)
    else:
        rows = db.execute(
            select(RecurringTransaction).where(RecurringTransaction.account_id == account_id)
        ).scalars().all()
        existing = {(r.merchant_pattern, r.transaction_type): r for r in rows}

    saved = []
    # Rows some candidate matches exactly are never borrowed by a similar key
    claimed = {
        existing[key].id for key in
        ((c.merchant_pattern, c.transaction_type.value) for c in candidates)
        if key in existing
    }
    for c in candidates:
        rec = existing.get((c.merchant_pattern, c.transaction_type.value))
        if rec is None:
            rec = _similar_row(existing.values(), c, claimed)
            if rec is not None:
                claimed.add(rec.id)
                logger.debug("Pattern %r merged into stored %r", c.merchant_pattern, rec.merchant_pattern)
        if rec is None:
            rec = RecurringTransaction(
                account_id=account_id,
                merchant_pattern=c.merchant_pattern,
                display_name=c.display_name,
                transaction_type=c.transaction_type.value,
                is_active=True,
            )
            db.add(rec)
        _apply_statistics(rec, c)
        saved.append(rec)

    db.flush()
    return saved


def _similar_row(
    rows, c: RecurringCandidate, claimed: set[uuid.UUID]
) -> RecurringTransaction | None:
    """Stored row of the same type whose pattern names the same merchant, if any."""
    for row in rows:
        if row.id in claimed or row.transaction_type != c.transaction_type.value:
            continue
        if is_same_merchant(row.merchant_pattern, c.merchant_pattern):
            return row
    return None


def _apply_statistics(rec: RecurringTransaction, c: RecurringCandidate) -> None:
    """Copy detector output onto a row; user-owned fields are left untouched."""
    rec.predicted_amount = c.predicted_amount
    rec.amount_variance = c.amount_variance
    rec.frequency = c.frequency.value
    rec.confidence_score = c.confidence_score
    rec.interval_consistency = c.interval_consistency
    rec.occurrence_count = c.occurrence_count
    rec.last_occurrence = c.last_occurrence
    rec.next_expected = c.next_expected


# ─── Read paths ───────────────────────────────────────────────────────────────

def list_recurring(
    db: Session,
    account_id: uuid.UUID,
    frequency: RecurrenceFrequency | None = None,
    is_active: bool | None = None,
) -> list[RecurringTransaction]:
    query = select(RecurringTransaction).where(RecurringTransaction.account_id == account_id)
    if frequency is not None:
        query = query.where(RecurringTransaction.frequency == frequency.value)
    if is_active is not None:
        query = query.where(RecurringTransaction.is_active == is_active)
    return list(db.execute(query.order_by(RecurringTransaction.next_expected)).scalars().all())


def get_recurring(
    db: Session, account_id: uuid.UUID, recurring_id: uuid.UUID
) -> RecurringTransaction | None:
    rec = db.get(RecurringTransaction, recurring_id)
    if rec is None or rec.account_id != account_id:
        return None
    return rec


def group_by_frequency(
    db: Session, account_id: uuid.UUID, active_only: bool = True
) -> dict[str, list[RecurringTransaction]]:
    """Every frequency is present as a key, even when empty."""
    items = list_recurring(db, account_id, is_active=True if active_only else None)
    grouped: dict[str, list[RecurringTransaction]] = {f.value: [] for f in RecurrenceFrequency}
    for item in items:
        grouped[item.frequency].append(item)
    return grouped


def monthly_equivalent(amount: int, frequency: RecurrenceFrequency) -> float:
    return amount * frequency.periods_per_year / 12


def get_summary(db: Session, account_id: uuid.UUID) -> RecurringSummary:
    items = list_recurring(db, account_id)
    monthly_debit = monthly_credit = 0.0
    for item in items:
        if not item.is_active:
            continue
        per_month = abs(monthly_equivalent(item.predicted_amount, RecurrenceFrequency(item.frequency)))
        if item.transaction_type == TransactionType.debit.value:
            monthly_debit += per_month
        else:
            monthly_credit += per_month
    return RecurringSummary(
        total=len(items),
        active=sum(1 for i in items if i.is_active),
        monthly_debit=round(monthly_debit),
        monthly_credit=round(monthly_credit),
    )


def get_upcoming(
    db: Session, account_id: uuid.UUID, days: int = 30, today: date | None = None
) -> list[UpcomingTransaction]:
    today = today or date.today()
    end = today + timedelta(days=days)
    items = db.execute(
        select(RecurringTransaction)
        .where(
            RecurringTransaction.account_id == account_id,
            RecurringTransaction.is_active == True,  # noqa: E712
            RecurringTransaction.next_expected >= today,
            RecurringTransaction.next_expected <= end,
        )
        .order_by(RecurringTransaction.next_expected)
    ).scalars().all()
    return [_to_upcoming(item, today) for item in items]


def get_overdue(
    db: Session, account_id: uuid.UUID, today: date | None = None
) -> list[UpcomingTransaction]:
    """Active patterns whose expected date passed without a fresh detection run."""
    today = today or date.today()
    items = db.execute(
        select(RecurringTransaction)
        .where(
            RecurringTransaction.account_id == account_id,
            RecurringTransaction.is_active == True,  # noqa: E712
            RecurringTransaction.next_expected < today,
        )
        .order_by(RecurringTransaction.next_expected)
    ).scalars().all()
    return [_to_upcoming(item, today) for item in items]


def _to_upcoming(item: RecurringTransaction, today: date) -> UpcomingTransaction:
    category = item.category
    return UpcomingTransaction(
        id=item.id,
        display_name=item.display_name,
        predicted_amount=item.predicted_amount,
        expected_date=item.next_expected,
        days_until=(item.next_expected - today).days,
        transaction_type=TransactionType(item.transaction_type),
        frequency=RecurrenceFrequency(item.frequency),
        category_name=category.name if category else None,
        category_color=category.color if category else None,
    )


def project_occurrences(
    items: list[RecurringTransaction], start: date, end: date
) -> list[ProjectedOccurrence]:
    """
    Expand active patterns into dated occurrences within [start, end].

    Overdue patterns are rolled forward by whole periods so the projection
    never contains dates before ``start``.
    """
    projected: list[ProjectedOccurrence] = []
    for item in items:
        if not item.is_active or item.next_expected is None:
            continue
        step = timedelta(days=RecurrenceFrequency(item.frequency).average_days)
        current = item.next_expected
        while current < start:
            current += step
        while current <= end:
            projected.append(ProjectedOccurrence(
                recurring_id=item.id,
                display_name=item.display_name,
                expected_date=current,
                amount=item.predicted_amount,
                transaction_type=TransactionType(item.transaction_type),
            ))
            current += step
    projected.sort(key=lambda p: (p.expected_date, p.display_name))
    return projected


def get_forecast(
    db: Session, account_id: uuid.UUID, days: int = 90, today: date | None = None
) -> list[ProjectedOccurrence]:
    today = today or date.today()
    items = list_recurring(db, account_id, is_active=True)
    return project_occurrences(items, today, today + timedelta(days=days))


def linked_transactions(
    db: Session, rec: RecurringTransaction, limit: int = 20
) -> list[Transaction]:
    """Most recent transactions of the account that belong to this pattern."""
    rows = db.execute(
        select(Transaction)
        .where(
            Transaction.account_id == rec.account_id,
            Transaction.parent_transaction_id.is_(None),
            Transaction.date.is_not(None),
            Transaction.amount.is_not(None),
        )
        .order_by(Transaction.date.desc())
    ).scalars().all()

    matched = []
    for txn in rows:
        txn_type = txn.transaction_type or TransactionType.from_amount(txn.amount).value
        if txn_type != rec.transaction_type:
            continue
        key = normalize_merchant(txn.counterparty_account, txn.description)
        if key and is_same_merchant(key, rec.merchant_pattern):
            matched.append(txn)
            if len(matched) >= limit:
                break
    return matched


# ─── User edits ───────────────────────────────────────────────────────────────

def update_recurring(db: Session, rec: RecurringTransaction, changes: dict) -> RecurringTransaction:
    """Apply user overrides (display_name, is_active, category_id) and commit."""
    for field, value in changes.items():
        setattr(rec, field, value)
    db.commit()
    db.refresh(rec)
    return rec


def deactivate_recurring(db: Session, rec: RecurringTransaction) -> None:
    """Soft delete: the row stays so detection keeps it inactive."""
    rec.is_active = False
    db.commit()
