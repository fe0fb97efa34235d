"""
Unit tests for recurring_detector — in-memory records, no DB.

All scenarios use a fixed "today" so recency rules are deterministic.
"""
import logging
import uuid
from datetime import date, timedelta

import pytest

from app.schemas.recurring import RecurrenceFrequency, TransactionType
from app.services.recurring_detector import (
    TransactionRecord,
    detect_recurring,
    group_transactions,
    next_expected_date,
)

TODAY = date(2026, 6, 15)
IBAN = "NL91ABNA0417164300"


def _txn(
    days_ago: int,
    amount: int,
    counterparty: str | None = f"IBAN:{IBAN}",
    description: str | None = "Test transaction",
    transaction_type: TransactionType | None = TransactionType.debit,
) -> TransactionRecord:
    return TransactionRecord(
        id=uuid.uuid4(),
        date=TODAY - timedelta(days=days_ago),
        amount=amount,
        counterparty=counterparty,
        description=description,
        transaction_type=transaction_type,
    )


def _series(offsets, amount: int, **kwargs) -> list[TransactionRecord]:
    return [_txn(d, amount, **kwargs) for d in offsets]


# ── Minimum history ──────────────────────────────────────────────────────────

class TestMinimumHistory:
    def test_fewer_than_three_transactions(self):
        assert detect_recurring(_series([0, 30], -999), today=TODAY) == []

    def test_empty(self):
        assert detect_recurring([], today=TODAY) == []

    def test_two_monthly_is_not_enough_three_is(self):
        two = _series([0, 30], -999) + [_txn(5, -42, counterparty="Bakery", description="Bakker")]
        assert detect_recurring(two, today=TODAY) == []

        three = detect_recurring(_series([0, 30, 60], -999), today=TODAY)
        assert len(three) == 1
        assert three[0].frequency == RecurrenceFrequency.monthly
        assert three[0].confidence_score == pytest.approx(0.875)

    def test_malformed_records_skipped(self, caplog):
        broken = TransactionRecord(date=None, amount=-999, counterparty=f"IBAN:{IBAN}")
        with caplog.at_level(logging.WARNING):
            result = detect_recurring(_series([0, 30, 60], -999) + [broken], today=TODAY)
        assert len(result) == 1
        assert result[0].occurrence_count == 3
        assert "malformed" in caplog.text


# ── Frequency selection ──────────────────────────────────────────────────────

class TestFrequencies:
    def test_weekly(self):
        result = detect_recurring(_series(range(0, 56, 7), -1500), today=TODAY)
        assert [c.frequency for c in result] == [RecurrenceFrequency.weekly]

    def test_biweekly(self):
        result = detect_recurring(_series(range(0, 84, 14), 210000, transaction_type=TransactionType.credit), today=TODAY)
        assert [c.frequency for c in result] == [RecurrenceFrequency.biweekly]
        assert result[0].transaction_type == TransactionType.credit

    def test_yearly(self):
        result = detect_recurring(_series([745, 380, 15], -8900), today=TODAY)
        assert len(result) == 1
        assert result[0].frequency == RecurrenceFrequency.yearly
        assert result[0].next_expected == TODAY - timedelta(days=15) + timedelta(days=365)

    def test_quarterly(self):
        result = detect_recurring(_series([285, 195, 105, 15], -45000), today=TODAY)
        assert result[0].frequency == RecurrenceFrequency.quarterly

    def test_irregular_intervals_rejected(self):
        assert detect_recurring(_series([0, 20, 45, 53, 100, 117], -2000), today=TODAY) == []

    def test_next_expected_date(self):
        assert next_expected_date(date(2026, 1, 31), RecurrenceFrequency.monthly) == date(2026, 3, 2)


# ── Gaps and recency ─────────────────────────────────────────────────────────

class TestGapsAndRecency:
    def test_gap_does_not_break_pattern(self):
        result = detect_recurring(_series([360, 330, 300, 90, 60, 30], -1299), today=TODAY)
        assert len(result) == 1
        candidate = result[0]
        assert candidate.frequency == RecurrenceFrequency.monthly
        assert candidate.occurrence_count == 6
        assert candidate.interval_consistency == pytest.approx(0.9)

    def test_inactive_pattern_rejected(self):
        # Regular monthly charges that stopped two years ago
        assert detect_recurring(_series([800, 770, 740, 710], -999), today=TODAY) == []

    def test_pattern_that_stopped_recently_rejected(self):
        # Last charge 4 months ago: more than two missed periods
        assert detect_recurring(_series([210, 180, 150, 120], -999), today=TODAY) == []


# ── Grouping ─────────────────────────────────────────────────────────────────

class TestGrouping:
    def test_debit_and_credit_kept_apart(self):
        txns = _series([0, 30, 60, 90], -1299) + _series(
            [15, 45, 75, 105], 2500, transaction_type=TransactionType.credit
        )
        result = detect_recurring(txns, today=TODAY)
        assert sorted(c.transaction_type.value for c in result) == ["credit", "debit"]
        assert {c.merchant_pattern for c in result} == {f"IBAN:{IBAN}"}

    def test_type_derived_from_sign(self):
        groups = group_transactions([
            _txn(0, -500, transaction_type=None),
            _txn(1, 500, transaction_type=None),
        ])
        assert set(t for _, t in groups) == {TransactionType.debit, TransactionType.credit}

    def test_near_identical_descriptions_folded(self):
        txns = [
            _txn(0, -1199, counterparty=None, description="Netflix.com"),
            _txn(30, -1199, counterparty=None, description="Netflix.com NL"),
            _txn(60, -1199, counterparty=None, description="Netflix.com"),
            _txn(90, -1199, counterparty=None, description="Netflix.com NL"),
        ]
        result = detect_recurring(txns, today=TODAY)
        assert len(result) == 1
        assert result[0].merchant_pattern == "netflix com"
        assert result[0].occurrence_count == 4

    def test_folded_key_does_not_follow_the_bigger_variant(self):
        texts = ["Netflix.com NL", "Netflix.com", "Netflix.com NL", "Netflix.com", "Netflix.com NL"]
        txns = [_txn(d, -1199, counterparty=None, description=t) for d, t in zip(range(0, 150, 30), texts)]
        groups = group_transactions(txns)
        assert list(groups) == [("netflix com", TransactionType.debit)]
        assert len(groups[("netflix com", TransactionType.debit)]) == 5

    def test_unkeyable_transactions_ignored(self):
        txns = _series([0, 30, 60], -999, counterparty=None, description="Payment")
        assert detect_recurring(txns, today=TODAY) == []


# ── Confidence and amounts ───────────────────────────────────────────────────

class TestConfidenceAndAmounts:
    def test_more_history_never_lowers_confidence(self):
        four = detect_recurring(_series([285, 195, 105, 15], -45000), today=TODAY)
        eight = detect_recurring(_series([645, 555, 465, 375, 285, 195, 105, 15], -45000), today=TODAY)
        assert eight[0].confidence_score >= four[0].confidence_score
        assert eight[0].confidence_score > 0.85

    def test_amount_variance(self):
        amounts = [-1299, -1350, -1250, -1299]
        txns = [_txn(d, a) for d, a in zip([120, 90, 60, 30], amounts)]
        result = detect_recurring(txns, today=TODAY)
        assert len(result) == 1
        assert result[0].predicted_amount == -1299
        assert 3.5 <= result[0].amount_variance <= 5.0

    def test_sorted_by_confidence(self):
        strong = _series(range(0, 240, 30), -999, counterparty="NL02RABO0123456789")
        weak = _series([0, 30, 60], -5000)
        result = detect_recurring(strong + weak, today=TODAY)
        assert [c.merchant_pattern for c in result] == ["IBAN:NL02RABO0123456789", f"IBAN:{IBAN}"]

    def test_min_confidence_override(self):
        assert detect_recurring(_series([0, 30, 60], -999), today=TODAY, min_confidence=0.9) == []

    def test_transaction_ids_collected(self):
        txns = _series([0, 30, 60], -999)
        result = detect_recurring(txns, today=TODAY)
        assert set(result[0].transaction_ids) == {t.id for t in txns}
