import enum
import uuid
from datetime import date, datetime

from pydantic import BaseModel, Field


class RecurrenceFrequency(str, enum.Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"

    @property
    def average_days(self) -> int:
        return _AVERAGE_DAYS[self]

    @property
    def periods_per_year(self) -> int:
        return _PERIODS_PER_YEAR[self]

    @property
    def label(self) -> str:
        return self.value.capitalize()


_AVERAGE_DAYS: dict[RecurrenceFrequency, int] = {
    RecurrenceFrequency.weekly:     7,
    RecurrenceFrequency.biweekly:  14,
    RecurrenceFrequency.monthly:   30,
    RecurrenceFrequency.quarterly: 90,
    RecurrenceFrequency.yearly:   365,
}

_PERIODS_PER_YEAR: dict[RecurrenceFrequency, int] = {
    RecurrenceFrequency.weekly:    52,
    RecurrenceFrequency.biweekly:  26,
    RecurrenceFrequency.monthly:   12,
    RecurrenceFrequency.quarterly:  4,
    RecurrenceFrequency.yearly:     1,
}


class TransactionType(str, enum.Enum):
    debit = "debit"
    credit = "credit"

    @classmethod
    def from_amount(cls, amount: int) -> "TransactionType":
        return cls.debit if amount < 0 else cls.credit


class RecurringTransactionResponse(BaseModel):
    id: uuid.UUID
    account_id: uuid.UUID
    merchant_pattern: str
    display_name: str
    predicted_amount: int           # signed cents
    amount_variance: float          # percent
    frequency: RecurrenceFrequency
    confidence_score: float         # 0–1
    interval_consistency: float     # 0–1
    occurrence_count: int
    last_occurrence: date | None
    next_expected: date | None
    is_active: bool
    transaction_type: TransactionType
    category_id: uuid.UUID | None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class RecurringTransactionUpdate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=255)
    is_active: bool | None = None
    category_id: uuid.UUID | None = None


class DetectionResult(BaseModel):
    """Body returned by POST /detect."""
    count: int
    items: list[RecurringTransactionResponse]


class RecurringSummary(BaseModel):
    total: int
    active: int
    monthly_debit: int              # cents, monthly-equivalent of active debits (positive)
    monthly_credit: int             # cents, monthly-equivalent of active credits


class UpcomingTransaction(BaseModel):
    id: uuid.UUID
    display_name: str
    predicted_amount: int
    expected_date: date
    days_until: int                 # negative when overdue
    transaction_type: TransactionType
    frequency: RecurrenceFrequency
    category_name: str | None = None
    category_color: str | None = None


class ProjectedOccurrence(BaseModel):
    """One forecast entry expanded from an active recurring transaction."""
    recurring_id: uuid.UUID
    display_name: str
    expected_date: date
    amount: int
    transaction_type: TransactionType


class LinkedTransaction(BaseModel):
    id: uuid.UUID
    date: date
    description: str | None
    amount: int
    category_id: uuid.UUID | None

    model_config = {"from_attributes": True}
