import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.schemas.recurring import (
    DetectionResult,
    LinkedTransaction,
    ProjectedOccurrence,
    RecurrenceFrequency,
    RecurringSummary,
    RecurringTransactionResponse,
    RecurringTransactionUpdate,
    UpcomingTransaction,
)
from app.services import recurring as service

router = APIRouter(
    prefix="/accounts/{account_id}/recurring-transactions", tags=["recurring"]
)


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _require_account(db: Session, account_id: uuid.UUID) -> None:
    if service.get_account(db, account_id) is None:
        raise HTTPException(status_code=404, detail="Account not found")


def _require_recurring(db: Session, account_id: uuid.UUID, recurring_id: uuid.UUID):
    _require_account(db, account_id)
    rec = service.get_recurring(db, account_id, recurring_id)
    if rec is None:
        raise HTTPException(status_code=404, detail="Recurring transaction not found")
    return rec


def _responses(items) -> list[RecurringTransactionResponse]:
    return [RecurringTransactionResponse.model_validate(i) for i in items]


# ─── Read endpoints ───────────────────────────────────────────────────────────

@router.get("", response_model=list[RecurringTransactionResponse])
async def list_recurring(
    account_id: uuid.UUID,
    frequency: str | None = None,
    active: bool | None = None,
    db: AsyncSession = Depends(get_db),
):
    """List recurring transactions, optionally filtered by frequency and/or active flag."""
    freq = None
    if frequency is not None:
        try:
            freq = RecurrenceFrequency(frequency.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid frequency: {frequency}")

    def run(s: Session):
        _require_account(s, account_id)
        return _responses(service.list_recurring(s, account_id, frequency=freq, is_active=active))

    return await db.run_sync(run)


@router.get("/grouped", response_model=dict[str, list[RecurringTransactionResponse]])
async def list_grouped(account_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Active recurring transactions keyed by frequency (every frequency present)."""
    def run(s: Session):
        _require_account(s, account_id)
        grouped = service.group_by_frequency(s, account_id)
        return {freq: _responses(items) for freq, items in grouped.items()}

    return await db.run_sync(run)


@router.get("/summary", response_model=RecurringSummary)
async def summary(account_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    def run(s: Session):
        _require_account(s, account_id)
        return service.get_summary(s, account_id)

    return await db.run_sync(run)


@router.get("/upcoming", response_model=list[UpcomingTransaction])
async def upcoming(
    account_id: uuid.UUID,
    days: int = Query(default=30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Active recurring transactions expected within the next ``days`` days."""
    def run(s: Session):
        _require_account(s, account_id)
        return service.get_upcoming(s, account_id, days=days)

    return await db.run_sync(run)


@router.get("/overdue", response_model=list[UpcomingTransaction])
async def overdue(account_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    def run(s: Session):
        _require_account(s, account_id)
        return service.get_overdue(s, account_id)

    return await db.run_sync(run)


@router.get("/forecast", response_model=list[ProjectedOccurrence])
async def forecast(
    account_id: uuid.UUID,
    days: int = Query(default=90, ge=1, le=366),
    db: AsyncSession = Depends(get_db),
):
    """Projected occurrences of every active pattern over the next ``days`` days."""
    def run(s: Session):
        _require_account(s, account_id)
        return service.get_forecast(s, account_id, days=days)

    return await db.run_sync(run)


# ─── Detection ────────────────────────────────────────────────────────────────

@router.post("/detect", response_model=DetectionResult)
async def detect(
    account_id: uuid.UUID,
    force: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """
    Run recurring detection over the last 36 months of transactions.

    ``force=true`` wipes every stored pattern for the account first (user
    renames and categories are lost); the default merges and keeps them.
    """
    def run(s: Session):
        _require_account(s, account_id)
        items = _responses(service.detect_for_account(s, account_id, force=force))
        return DetectionResult(count=len(items), items=items)

    return await db.run_sync(run)


# ─── Single record ────────────────────────────────────────────────────────────

@router.get("/{recurring_id}", response_model=RecurringTransactionResponse)
async def get_recurring(
    account_id: uuid.UUID,
    recurring_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    def run(s: Session):
        return RecurringTransactionResponse.model_validate(_require_recurring(s, account_id, recurring_id))

    return await db.run_sync(run)


@router.get("/{recurring_id}/transactions", response_model=list[LinkedTransaction])
async def get_linked_transactions(
    account_id: uuid.UUID,
    recurring_id: uuid.UUID,
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Transactions that match this pattern, newest first."""
    def run(s: Session):
        rec = _require_recurring(s, account_id, recurring_id)
        return [LinkedTransaction.model_validate(t) for t in service.linked_transactions(s, rec, limit=limit)]

    return await db.run_sync(run)


@router.patch("/{recurring_id}", response_model=RecurringTransactionResponse)
async def update_recurring(
    account_id: uuid.UUID,
    recurring_id: uuid.UUID,
    payload: RecurringTransactionUpdate,
    db: AsyncSession = Depends(get_db),
):
    def run(s: Session):
        rec = _require_recurring(s, account_id, recurring_id)
        # category_id may be cleared with an explicit null; the other fields may not
        changes = {
            k: v for k, v in payload.model_dump(exclude_unset=True).items()
            if v is not None or k == "category_id"
        }
        if changes.get("category_id") is not None:
            if service.get_category(s, account_id, changes["category_id"]) is None:
                raise HTTPException(status_code=400, detail="Category does not belong to this account")
        return RecurringTransactionResponse.model_validate(service.update_recurring(s, rec, changes))

    return await db.run_sync(run)


@router.delete("/{recurring_id}", status_code=204)
async def deactivate_recurring(
    account_id: uuid.UUID,
    recurring_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Soft delete — the pattern is kept inactive so detection will not bring it back."""
    def run(s: Session):
        service.deactivate_recurring(s, _require_recurring(s, account_id, recurring_id))

    await db.run_sync(run)
