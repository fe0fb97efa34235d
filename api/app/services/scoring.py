"""Amount statistics and confidence scoring shared by the recurring detector."""
from statistics import median, pstdev

# Weights for the confidence composite; interval consistency dominates
WEIGHT_INTERVAL = 0.60
WEIGHT_OCCURRENCE = 0.25
WEIGHT_AMOUNT = 0.15


def median_amount(amounts: list[int]) -> int:
    """Median in whole minor units (half-cent medians round half to even)."""
    return int(round(median(amounts)))


def amount_variance(amounts: list[int], reference: int) -> float:
    """
    Largest deviation from ``reference`` as a percentage of it, e.g. 3.93.

    0.0 means every amount equals the reference.
    """
    if not amounts or reference == 0:
        return 0.0
    worst = max(abs(a - reference) for a in amounts)
    return round(worst / abs(reference) * 100, 2)


def amount_consistency(amounts: list[int]) -> float:
    """1 − coefficient of variation, floored at 0 (identical amounts → 1.0)."""
    if len(amounts) < 2:
        return 1.0
    mean = sum(amounts) / len(amounts)
    if mean == 0:
        return 1.0
    cv = pstdev(amounts) / abs(mean)
    return max(0.0, 1.0 - cv)


def occurrence_score(occurrences: int, min_occurrences: int) -> float:
    """Saturates at 1.0 once twice the frequency minimum has been seen."""
    ideal = max(1, min_occurrences * 2)
    return min(1.0, occurrences / ideal)


def confidence_score(
    interval_consistency: float,
    occurrences: int,
    min_occurrences: int,
    amounts: list[int],
) -> float:
    score = (
        WEIGHT_INTERVAL * interval_consistency
        + WEIGHT_OCCURRENCE * occurrence_score(occurrences, min_occurrences)
        + WEIGHT_AMOUNT * amount_consistency(amounts)
    )
    return round(max(0.0, min(1.0, score)), 3)
