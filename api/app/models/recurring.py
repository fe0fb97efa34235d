import uuid
from datetime import date, datetime

from sqlalchemy import (
    BigInteger, Boolean, Date, DateTime, Float, ForeignKey, Integer, String,
    UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.account import Category


class RecurringTransaction(Base):
    __tablename__ = "recurring_transactions"
    # Concurrent merge runs for one account converge on this key instead of duplicating
    __table_args__ = (
        UniqueConstraint(
            "account_id", "merchant_pattern", "transaction_type",
            name="uq_recurring_account_pattern_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), index=True
    )
    category_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    merchant_pattern: Mapped[str] = mapped_column(String(255))
    display_name: Mapped[str] = mapped_column(String(255))
    predicted_amount: Mapped[int] = mapped_column(BigInteger)       # signed cents
    amount_variance: Mapped[float] = mapped_column(Float, default=0.0)  # percent
    frequency: Mapped[str] = mapped_column(String(20))  # weekly | biweekly | monthly | quarterly | yearly
    confidence_score: Mapped[float] = mapped_column(Float)
    interval_consistency: Mapped[float] = mapped_column(Float, default=0.0)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=0)
    last_occurrence: Mapped[date | None] = mapped_column(Date)
    next_expected: Mapped[date | None] = mapped_column(Date, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    transaction_type: Mapped[str] = mapped_column(String(10))  # debit | credit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    category: Mapped["Category | None"] = relationship(lazy="joined")
