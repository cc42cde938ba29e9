"""Grade scale (Notenschlüssel) computation.

Boundaries are round-half-up of total x threshold. Thresholds are kept as
decimal strings so that e.g. 5 x 0.70 is exactly 3.5 and rounds to 4.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from exam_generator.models.exam import GradeBand, GradeScale

# Cumulative percentages at which grades 1..5 start.
THRESHOLDS_DEFAULT: tuple[str, ...] = ("0.85", "0.70", "0.55", "0.45", "0.20")
THRESHOLDS_ALT: tuple[str, ...] = ("0.85", "0.70", "0.55", "0.40", "0.20")

THRESHOLD_FAMILIES = {
    "default": THRESHOLDS_DEFAULT,
    "alt": THRESHOLDS_ALT,
}


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def grade_boundaries(total: int, thresholds: Sequence[str] = THRESHOLDS_DEFAULT) -> list[int]:
    """Lowest point value for grades 1..5."""
    return [round_half_up(Decimal(total) * Decimal(str(pct))) for pct in thresholds]


def compute_grade_scale(total: int, thresholds: Sequence[str] = THRESHOLDS_DEFAULT) -> GradeScale:
    """Build the six inclusive grade bands for a total point value.

    grade 1 = [b1, T], grade k = [b_k, b_(k-1) - 1] for k in 2..5,
    grade 6 = [0, b5 - 1]. For very small totals some bands come out
    inverted; they are kept as-is and report is_empty.

    Raises:
        ValueError: negative total or not exactly five thresholds.
    """
    if total < 0:
        raise ValueError(f"Total points must be non-negative, got {total}")
    if len(thresholds) != 5:
        raise ValueError(f"Expected 5 thresholds, got {len(thresholds)}")

    b = grade_boundaries(total, thresholds)
    bands = [GradeBand(grade=1, lower=b[0], upper=total)]
    for k in range(1, 5):
        bands.append(GradeBand(grade=k + 1, lower=b[k], upper=b[k - 1] - 1))
    bands.append(GradeBand(grade=6, lower=0, upper=b[4] - 1))
    return GradeScale(total=total, bands=bands)
