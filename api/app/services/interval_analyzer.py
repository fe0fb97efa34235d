"""
Interval analysis for one merchant group against one candidate frequency.

Every gap between consecutive occurrences is classified as:

  in-pattern   inside the frequency's day band (monthly ≈ 28–31 days)
  gap          a whole multiple of the period, i.e. skipped occurrences,
               or a break longer than three full periods
  off-pattern  anything else — counts against consistency

Gaps are left out of the consistency score so a subscription that missed a
few charges inside a 36-month window still scores well, while the intervals
that do belong to the pattern must stay tight.
"""
from dataclasses import dataclass
from datetime import date, timedelta

from app.schemas.recurring import RecurrenceFrequency

# ─── Frequency definitions ────────────────────────────────────────────────────

FREQUENCY_RANGES: dict[RecurrenceFrequency, tuple[int, int]] = {
    RecurrenceFrequency.weekly:    (6,     8),
    RecurrenceFrequency.biweekly:  (13,   15),
    RecurrenceFrequency.monthly:   (28,   31),
    RecurrenceFrequency.quarterly: (85,   95),
    RecurrenceFrequency.yearly:    (360, 370),
}

# Fixed evaluation order; on equal confidence the earlier (shorter) one wins
EVALUATION_ORDER: tuple[RecurrenceFrequency, ...] = tuple(FREQUENCY_RANGES)

RECENT_DAYS = 365                   # "recent" = trailing 12 months
GAP_BREAK_MULTIPLIER = 3            # interval > max_days * 3 is always a gap
LOW_CONSISTENCY_CAP = 0.5           # ceiling when < 2 intervals back the pattern
SPREAD_WEIGHT = 0.5
GAP_PENALTY_WEIGHT = 0.5


@dataclass
class IntervalAnalysis:
    frequency: RecurrenceFrequency
    occurrence_count: int
    average_interval_days: float    # over in-pattern intervals; 0.0 if none
    interval_consistency: float     # 0–1
    in_pattern_intervals: int
    gap_intervals: int
    off_pattern_intervals: int
    recent_count: int               # occurrences inside the recency window
    days_since_last: int

    @property
    def recent_activity(self) -> bool:
        return self.recent_count > 0


def classify_interval(days: int, frequency: RecurrenceFrequency) -> str:
    """Return "in_pattern", "gap" or "off_pattern" for one day interval."""
    min_days, max_days = FREQUENCY_RANGES[frequency]
    if min_days <= days <= max_days:
        return "in_pattern"
    if days > max_days:
        if days > max_days * GAP_BREAK_MULTIPLIER:
            return "gap"
        nominal = frequency.average_days
        multiple = round(days / nominal)
        band_width = max_days - min_days
        if multiple >= 2 and abs(days - multiple * nominal) <= multiple * band_width:
            return "gap"
    return "off_pattern"


def analyze_intervals(
    dates: list[date],
    frequency: RecurrenceFrequency,
    today: date | None = None,
) -> IntervalAnalysis:
    """
    Score how well a chronologically sorted date series fits ``frequency``.

    Occurrences on both sides of a gap still count toward ``occurrence_count``.
    """
    today = today or date.today()
    min_days, max_days = FREQUENCY_RANGES[frequency]
    nominal = frequency.average_days

    intervals = [(dates[i + 1] - dates[i]).days for i in range(len(dates) - 1)]

    in_pattern: list[int] = []
    gaps = off_pattern = 0
    for days in intervals:
        kind = classify_interval(days, frequency)
        if kind == "in_pattern":
            in_pattern.append(days)
        elif kind == "gap":
            gaps += 1
        else:
            off_pattern += 1

    considered = len(in_pattern) + off_pattern
    if not in_pattern or considered == 0:
        consistency = 0.0
    else:
        match_ratio = len(in_pattern) / considered
        # Mean squared deviation from nominal, in units of the band width
        band_width = max_days - min_days + 1
        spread = sum(((d - nominal) / band_width) ** 2 for d in in_pattern) / len(in_pattern)
        spread = min(1.0, spread)
        gap_ratio = gaps / len(intervals)
        consistency = (
            match_ratio
            * (1.0 - SPREAD_WEIGHT * spread)
            * (1.0 - GAP_PENALTY_WEIGHT * gap_ratio)
        )
        if len(in_pattern) < 2:
            consistency = min(consistency, LOW_CONSISTENCY_CAP)

    recent_cutoff = today - timedelta(days=RECENT_DAYS)
    recent_count = sum(1 for d in dates if d >= recent_cutoff)
    days_since_last = (today - dates[-1]).days if dates else 0

    return IntervalAnalysis(
        frequency=frequency,
        occurrence_count=len(dates),
        average_interval_days=(sum(in_pattern) / len(in_pattern)) if in_pattern else 0.0,
        interval_consistency=max(0.0, min(1.0, consistency)),
        in_pattern_intervals=len(in_pattern),
        gap_intervals=gaps,
        off_pattern_intervals=off_pattern,
        recent_count=recent_count,
        days_since_last=days_since_last,
    )
