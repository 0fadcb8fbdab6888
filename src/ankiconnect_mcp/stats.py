"""Statistics helpers for deck, collection and review analytics."""

import datetime
from collections import Counter
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Sequence


LabelFormatter = Callable[[float | None, float | None], str]

# Anki answer buttons: 1=Again, 2=Hard, 3=Good, 4=Easy
RATING_NAMES = {1: "again", 2: "hard", 3: "good", 4: "easy"}


@dataclass(frozen=True)
class BucketConfig:
    """
    Bucket layout for a distribution.

    Attributes:
        boundaries: Strictly ascending bucket boundaries. N boundaries
            produce N+1 buckets.
        format_label: Optional callable building a label from
            (lower, upper); None stands for an open end.
        unit_suffix: Suffix appended to generated labels (e.g. "d" for days).
    """

    boundaries: Sequence[float]
    format_label: LabelFormatter | None = None
    unit_suffix: str = ""

    def __post_init__(self):
        for lower, upper in zip(self.boundaries, self.boundaries[1:]):
            if upper <= lower:
                raise ValueError(
                    f"Bucket boundaries must be in ascending order: {list(self.boundaries)}"
                )

    def labels(self) -> list[str]:
        """Bucket labels in ascending range order."""
        bounds = list(self.boundaries)
        if not bounds:
            return []

        ranges = [(None, bounds[0])]
        ranges.extend(zip(bounds, bounds[1:]))
        ranges.append((bounds[-1], None))
        return [self._label(lower, upper) for lower, upper in ranges]

    def _label(self, lower: float | None, upper: float | None) -> str:
        if self.format_label is not None:
            return self.format_label(lower, upper)
        if lower is None:
            return f"<{format_number(upper)}{self.unit_suffix}"
        if upper is None:
            return f">{format_number(lower)}{self.unit_suffix}"
        return f"{format_number(lower)}-{format_number(upper)}{self.unit_suffix}"


@dataclass
class DistributionMetrics:
    """Summary statistics and histogram for a numeric sample."""

    mean: float
    median: float
    min: float
    max: float
    count: int
    buckets: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "mean": self.mean,
            "median": self.median,
            "min": self.min,
            "max": self.max,
            "count": self.count,
            "buckets": dict(self.buckets),
        }


@dataclass
class RetentionMetrics:
    """Pass rate and per-button counts for a set of reviews."""

    overall: float
    by_rating: dict[str, int]

    def to_dict(self) -> dict:
        return {"overall": self.overall, "by_rating": dict(self.by_rating)}


@dataclass(frozen=True)
class DailyCount:
    """Number of reviews on one calendar day."""

    date: datetime.date
    count: int

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "count": self.count}


def format_number(value: float) -> str:
    """Render whole numbers without a decimal point, others to one decimal.

    Halves round away from zero, so 2.25 renders as "2.3".
    """
    if float(value).is_integer():
        return str(int(value))
    return str(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _bucket_index(value: float, boundaries: Sequence[float]) -> int:
    # Half-open, lower-inclusive: [b[i], b[i+1])
    if value < boundaries[0]:
        return 0
    for i in range(len(boundaries) - 1):
        if boundaries[i] <= value < boundaries[i + 1]:
            return i + 1
    return len(boundaries)


def _count_buckets(sorted_values: list[float], config: BucketConfig) -> dict[str, int]:
    labels = config.labels()
    buckets = {label: 0 for label in labels}
    if not labels:
        return buckets

    for value in sorted_values:
        buckets[labels[_bucket_index(value, config.boundaries)]] += 1
    return buckets


def compute_distribution(values: Sequence[float], config: BucketConfig) -> DistributionMetrics:
    """
    Compute mean, median, min, max, count and bucket counts.

    Args:
        values: Numeric sample. Not modified.
        config: Bucket layout

    Returns:
        DistributionMetrics. An empty sample yields zeros and empty buckets.

    Example:
        >>> compute_distribution([2.1, 2.5, 3.0, 2.8], BucketConfig([2.0, 2.5, 3.0])).buckets
        {'<2': 0, '2-2.5': 1, '2.5-3': 2, '>3': 1}
    """
    if not values:
        return DistributionMetrics(
            mean=0,
            median=0,
            min=0,
            max=0,
            count=0,
            buckets=_count_buckets([], config),
        )

    ordered = sorted(values)
    count = len(ordered)
    middle = count // 2
    if count % 2 == 0:
        median = (ordered[middle - 1] + ordered[middle]) / 2
    else:
        median = ordered[middle]

    return DistributionMetrics(
        mean=sum(ordered) / count,
        median=median,
        min=ordered[0],
        max=ordered[-1],
        count=count,
        buckets=_count_buckets(ordered, config),
    )


def compute_retention(ratings: Iterable[int]) -> RetentionMetrics:
    """
    Compute retention from answer buttons.

    Retention is (hard + good + easy) / (again + hard + good + easy).
    Values other than 1-4 are ignored entirely.

    Args:
        ratings: Button values (1=Again, 2=Hard, 3=Good, 4=Easy)

    Returns:
        RetentionMetrics with overall rate in [0, 1]; 0.0 when nothing counted
    """
    tally = Counter(
        rating for rating in ratings
        if not isinstance(rating, bool) and rating in RATING_NAMES
    )
    by_rating = {name: tally[code] for code, name in RATING_NAMES.items()}

    total = sum(by_rating.values())
    remembered = total - by_rating["again"]

    return RetentionMetrics(
        overall=remembered / total if total > 0 else 0.0,
        by_rating=by_rating,
    )


def calculate_streak(
    reviews_by_day: Iterable[DailyCount],
    today: datetime.date | None = None,
) -> int:
    """
    Count consecutive study days ending today.

    The walk starts at today and moves back one day at a time. It stops at
    the first day with no entry or with a zero count. Entries sharing a date
    are summed.

    Args:
        reviews_by_day: Daily review counts in any order
        today: Reference date (defaults to the local current date)

    Returns:
        Number of consecutive days with reviews (0 if none today)
    """
    counts: dict[datetime.date, int] = {}
    for entry in reviews_by_day:
        counts[entry.date] = counts.get(entry.date, 0) + entry.count

    if not counts:
        return 0

    day = today or datetime.date.today()
    streak = 0
    while counts.get(day, 0) > 0:
        streak += 1
        day -= datetime.timedelta(days=1)

    return streak
