"""Unit tests for interval_analyzer — pure functions, no DB."""
from datetime import date, timedelta

import pytest

from app.schemas.recurring import RecurrenceFrequency
from app.services.interval_analyzer import analyze_intervals, classify_interval

TODAY = date(2026, 6, 15)
MONTHLY = RecurrenceFrequency.monthly


def _days_ago(*offsets: int) -> list[date]:
    return sorted(TODAY - timedelta(days=d) for d in offsets)


# ── classify_interval ────────────────────────────────────────────────────────

class TestClassifyInterval:
    def test_inside_band(self):
        assert classify_interval(28, MONTHLY) == "in_pattern"
        assert classify_interval(31, MONTHLY) == "in_pattern"

    def test_skipped_month_is_gap(self):
        assert classify_interval(61, MONTHLY) == "gap"

    def test_long_break_is_gap(self):
        assert classify_interval(210, MONTHLY) == "gap"

    def test_between_multiples_is_off_pattern(self):
        assert classify_interval(45, MONTHLY) == "off_pattern"

    def test_too_short_is_off_pattern(self):
        assert classify_interval(20, MONTHLY) == "off_pattern"

    def test_two_weeks_is_a_weekly_gap(self):
        assert classify_interval(14, RecurrenceFrequency.weekly) == "gap"


# ── analyze_intervals ────────────────────────────────────────────────────────

class TestAnalyzeIntervals:
    def test_perfect_monthly_series(self):
        result = analyze_intervals(_days_ago(0, 30, 60, 90), MONTHLY, TODAY)
        assert result.interval_consistency == pytest.approx(1.0)
        assert result.in_pattern_intervals == 3
        assert result.average_interval_days == pytest.approx(30.0)
        assert result.occurrence_count == 4

    def test_calendar_months_score_high_but_not_perfect(self):
        dates = [date(2026, m, 1) for m in range(1, 6)]
        result = analyze_intervals(dates, MONTHLY, TODAY)
        assert result.in_pattern_intervals == 4
        assert 0.9 < result.interval_consistency < 1.0

    def test_gap_is_tolerated(self):
        result = analyze_intervals(_days_ago(360, 330, 300, 90, 60, 30), MONTHLY, TODAY)
        assert result.gap_intervals == 1
        assert result.in_pattern_intervals == 4
        assert result.occurrence_count == 6
        assert result.interval_consistency == pytest.approx(0.9)

    def test_off_pattern_intervals_lower_consistency(self):
        clean = analyze_intervals(_days_ago(0, 30, 60, 90, 120), MONTHLY, TODAY)
        noisy = analyze_intervals(_days_ago(0, 30, 60, 105, 120), MONTHLY, TODAY)
        assert noisy.off_pattern_intervals > 0
        assert noisy.interval_consistency < clean.interval_consistency

    def test_nothing_in_pattern_scores_zero(self):
        result = analyze_intervals(_days_ago(0, 30, 60), RecurrenceFrequency.weekly, TODAY)
        assert result.interval_consistency == 0.0
        assert result.average_interval_days == 0.0

    def test_single_interval_is_capped(self):
        result = analyze_intervals(_days_ago(0, 30), MONTHLY, TODAY)
        assert result.interval_consistency == pytest.approx(0.5)

    def test_recency(self):
        result = analyze_intervals(_days_ago(800, 770, 740, 710), MONTHLY, TODAY)
        assert result.recent_count == 0
        assert not result.recent_activity
        assert result.days_since_last == 710
