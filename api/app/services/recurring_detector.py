"""
Recurring transaction detection.

Groups transactions by normalized merchant key + transaction type, then tests
each group against every candidate frequency (weekly, bi-weekly, monthly,
quarterly, yearly) and keeps the best-scoring one that passes the acceptance
gates.  Pure and in-memory: persistence lives in ``app.services.recurring``.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from app.schemas.recurring import RecurrenceFrequency, TransactionType
from app.services.interval_analyzer import EVALUATION_ORDER, IntervalAnalysis, analyze_intervals
from app.services.merchant_normalizer import (
    extract_display_name,
    is_account_key,
    is_same_merchant,
    normalize_merchant,
)
from app.services.scoring import amount_variance, confidence_score, median_amount

logger = logging.getLogger(__name__)


# ─── Acceptance thresholds ────────────────────────────────────────────────────

MIN_TRANSACTIONS = 3                # below this the account has nothing to say
MIN_CONFIDENCE = 0.70
MIN_INTERVAL_CONSISTENCY = 0.60
MAX_MISSED_INTERVALS = 2            # last occurrence older than 2 periods → ended

# Weekly/bi-weekly pile up quickly so demand more; 3 yearly charges already span 2+ years
MIN_OCCURRENCES: dict[RecurrenceFrequency, int] = {
    RecurrenceFrequency.weekly:    6,
    RecurrenceFrequency.biweekly:  4,
    RecurrenceFrequency.monthly:   3,
    RecurrenceFrequency.quarterly: 3,
    RecurrenceFrequency.yearly:    3,
}

# Occurrences required inside the trailing 12 months
MIN_RECENT_OCCURRENCES: dict[RecurrenceFrequency, int] = {
    RecurrenceFrequency.weekly:    4,
    RecurrenceFrequency.biweekly:  2,
    RecurrenceFrequency.monthly:   2,
    RecurrenceFrequency.quarterly: 1,
    RecurrenceFrequency.yearly:    1,
}


# ─── Records ──────────────────────────────────────────────────────────────────

@dataclass
class TransactionRecord:
    """Flat read projection of one bank line."""
    date: date | None
    amount: int | None                      # signed minor units
    counterparty: str | None = None
    description: str | None = None
    transaction_type: TransactionType | None = None
    id: uuid.UUID | None = None
    category_id: uuid.UUID | None = None

    @property
    def resolved_type(self) -> TransactionType:
        if self.transaction_type is not None:
            return TransactionType(self.transaction_type)
        return TransactionType.from_amount(self.amount or 0)


@dataclass
class RecurringCandidate:
    """A detected recurring pattern — not yet saved to the DB."""
    merchant_pattern: str
    display_name: str
    transaction_type: TransactionType
    frequency: RecurrenceFrequency
    predicted_amount: int
    amount_variance: float
    confidence_score: float
    interval_consistency: float
    occurrence_count: int
    last_occurrence: date
    next_expected: date
    transaction_ids: list[uuid.UUID] = field(default_factory=list)


def next_expected_date(last_occurrence: date, frequency: RecurrenceFrequency) -> date:
    return last_occurrence + timedelta(days=frequency.average_days)


# ─── Main detector ────────────────────────────────────────────────────────────

def detect_recurring(
    transactions: Iterable[TransactionRecord],
    today: date | None = None,
    min_confidence: float = MIN_CONFIDENCE,
) -> list[RecurringCandidate]:
    """
    Analyse one account's history and return accepted recurring candidates,
    highest confidence first.  Never raises for "nothing found".
    """
    today = today or date.today()

    usable: list[TransactionRecord] = []
    for txn in transactions:
        if txn.date is None or txn.amount is None:
            logger.warning("Skipping malformed transaction %s (missing date or amount)", txn.id)
            continue
        usable.append(txn)

    if len(usable) < MIN_TRANSACTIONS:
        logger.debug("Only %d usable transactions, not enough to detect patterns", len(usable))
        return []

    groups = group_transactions(usable)

    candidates: list[RecurringCandidate] = []
    for (merchant_key, txn_type), txns in groups.items():
        candidate = _analyze_group(merchant_key, txn_type, txns, today, min_confidence)
        if candidate is not None:
            candidates.append(candidate)

    candidates.sort(key=lambda c: (-c.confidence_score, -c.occurrence_count, c.merchant_pattern))
    logger.info(
        "Recurring detection: %d transactions, %d groups, %d patterns accepted",
        len(usable), len(groups), len(candidates),
    )
    return candidates


def group_transactions(
    transactions: list[TransactionRecord],
) -> dict[tuple[str, TransactionType], list[TransactionRecord]]:
    """Group by (merchant key, transaction type); debit and credit never mix."""
    groups: dict[tuple[str, TransactionType], list[TransactionRecord]] = defaultdict(list)
    for txn in transactions:
        key = normalize_merchant(txn.counterparty, txn.description)
        if not key:
            continue
        groups[(key, txn.resolved_type)].append(txn)
    return _fold_similar_groups(groups)


def _fold_similar_groups(
    groups: dict[tuple[str, TransactionType], list[TransactionRecord]],
) -> dict[tuple[str, TransactionType], list[TransactionRecord]]:
    """
    Merge description keys that differ only by noise ("netflix com" / "netflix com nl").
    The shortest key of a cluster (then alphabetical) names it, so the stored
    merchant_pattern does not flip as one variant outgrows another.  Account
    keys are never folded.
    """
    ordered = sorted(groups.items(), key=lambda item: (len(item[0][0]), item[0][0], item[0][1].value))
    folded: dict[tuple[str, TransactionType], list[TransactionRecord]] = {}
    for (key, txn_type), txns in ordered:
        target = None
        if not is_account_key(key):
            for canon_key, canon_type in folded:
                if canon_type == txn_type and is_same_merchant(canon_key, key):
                    target = (canon_key, canon_type)
                    break
        if target is None:
            folded[(key, txn_type)] = list(txns)
        else:
            folded[target].extend(txns)
    return folded


def _analyze_group(
    merchant_key: str,
    txn_type: TransactionType,
    txns: list[TransactionRecord],
    today: date,
    min_confidence: float,
) -> RecurringCandidate | None:
    sorted_txns = sorted(txns, key=lambda t: t.date)
    dates = [t.date for t in sorted_txns]
    amounts = [t.amount for t in sorted_txns]

    best: IntervalAnalysis | None = None
    best_confidence = 0.0

    for frequency in EVALUATION_ORDER:
        analysis = analyze_intervals(dates, frequency, today)
        reason = _rejection_reason(analysis)
        confidence = 0.0
        if reason is None:
            confidence = confidence_score(
                analysis.interval_consistency,
                analysis.occurrence_count,
                MIN_OCCURRENCES[frequency],
                amounts,
            )
            if confidence < min_confidence:
                reason = f"confidence {confidence:.2f} < {min_confidence:.2f}"

        if reason is not None:
            logger.debug("%s/%s rejected as %s: %s", merchant_key, txn_type.value, frequency.value, reason)
            continue
        # Strict ">" keeps the shorter period on ties
        if best is None or confidence > best_confidence:
            best, best_confidence = analysis, confidence

    if best is None:
        return None

    predicted = median_amount(amounts)
    last = sorted_txns[-1]
    return RecurringCandidate(
        merchant_pattern=merchant_key,
        display_name=extract_display_name(last.description, last.counterparty),
        transaction_type=txn_type,
        frequency=best.frequency,
        predicted_amount=predicted,
        amount_variance=amount_variance(amounts, predicted),
        confidence_score=best_confidence,
        interval_consistency=round(best.interval_consistency, 3),
        occurrence_count=best.occurrence_count,
        last_occurrence=last.date,
        next_expected=next_expected_date(last.date, best.frequency),
        transaction_ids=[t.id for t in sorted_txns if t.id is not None],
    )


def _rejection_reason(analysis: IntervalAnalysis) -> str | None:
    frequency = analysis.frequency
    if analysis.occurrence_count < MIN_OCCURRENCES[frequency]:
        return f"{analysis.occurrence_count} occurrences < {MIN_OCCURRENCES[frequency]}"
    if not analysis.recent_activity:
        return "no activity in the last 12 months"
    if analysis.recent_count < MIN_RECENT_OCCURRENCES[frequency]:
        return f"only {analysis.recent_count} recent occurrences"
    if analysis.days_since_last > frequency.average_days * MAX_MISSED_INTERVALS:
        return f"last seen {analysis.days_since_last} days ago"
    if analysis.interval_consistency < MIN_INTERVAL_CONSISTENCY:
        return f"interval consistency {analysis.interval_consistency:.2f}"
    return None
