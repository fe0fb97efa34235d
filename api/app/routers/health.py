from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.recurring import RecurringTransaction

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "ok", "service": "ledger-api"}


@router.get("/health/db")
async def health_db(db: AsyncSession = Depends(get_db)):
    """Round-trips the database and confirms the schema is migrated."""
    patterns = await db.scalar(select(func.count()).select_from(RecurringTransaction))
    return {"status": "ok", "database": "connected", "recurring_patterns": patterns}
