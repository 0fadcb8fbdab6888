"""Deck, collection and review statistics tools."""

import datetime
import logging
import re
from collections import Counter
from typing import Annotated

from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, model_validator

from .anki_client import AnkiClient
from .json_input import json_array
from .responses import ToolError
from .stats import (
    BucketConfig,
    DailyCount,
    calculate_streak,
    compute_distribution,
    compute_retention,
)


logger = logging.getLogger(__name__)

DEFAULT_EASE_BUCKETS = [2.0, 2.5, 3.0]
DEFAULT_INTERVAL_BUCKETS = [7, 21, 90]
INTERVAL_SUFFIX = "d"

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Review tuple positions returned by cardReviews
REVIEW_TIME = 0
REVIEW_BUTTON = 3


def _ascending(boundaries: list[float]) -> list[float]:
    for lower, upper in zip(boundaries, boundaries[1:]):
        if upper <= lower:
            raise ValueError("Bucket boundaries must be in ascending order")
    return boundaries


def _iso_date(value):
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str) or not ISO_DATE.match(value):
        raise ValueError("Must be ISO date format: YYYY-MM-DD")
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Must be a valid date: {value}")


Boundaries = Annotated[
    json_array(Annotated[float, Field(gt=0)]),
    AfterValidator(_ascending),
]

IsoDate = Annotated[datetime.date, BeforeValidator(_iso_date)]


class BucketParams(BaseModel):
    ease_buckets: Boundaries = Field(default_factory=lambda: list(DEFAULT_EASE_BUCKETS))
    interval_buckets: Boundaries = Field(default_factory=lambda: list(DEFAULT_INTERVAL_BUCKETS))

    def ease_config(self) -> BucketConfig:
        return BucketConfig(self.ease_buckets)

    def interval_config(self) -> BucketConfig:
        return BucketConfig(self.interval_buckets, unit_suffix=INTERVAL_SUFFIX)


class DeckStatsParams(BucketParams):
    deck: str = Field(min_length=1)


class CollectionStatsParams(BucketParams):
    pass


class ReviewStatsParams(BaseModel):
    deck: str = Field(min_length=1)
    start_date: IsoDate
    end_date: IsoDate | None = None

    @model_validator(mode="after")
    def check_period(self) -> "ReviewStatsParams":
        if self.end_date is not None and self.start_date > self.end_date:
            raise ValueError("start_date must be less than or equal to end_date")
        return self


def _counts_from(deck_stat: dict) -> dict[str, int]:
    return {
        "total": deck_stat.get("total_in_deck") or 0,
        "new": deck_stat.get("new_count") or 0,
        "learning": deck_stat.get("learn_count") or 0,
        "review": deck_stat.get("review_count") or 0,
    }


async def _distributions(anki: AnkiClient, card_ids: list[int], params: BucketParams) -> tuple[dict, dict]:
    """
    Fetch ease factors and intervals for cards and bucket them.

    Ease factors arrive in permille and are divided by 1000; zero ease
    (new cards) is dropped. Only positive intervals (days) are kept,
    negative ones are learning steps in seconds.
    """
    ease_values = []
    interval_values = []

    if card_ids:
        logger.info("Fetching ease factors and intervals for %d cards", len(card_ids))
        ease_raw = await anki.get_ease_factors(card_ids)
        ease_values = [factor / 1000 for factor in ease_raw if factor and factor > 0]

        intervals_raw = await anki.get_intervals(card_ids)
        interval_values = [ivl for ivl in intervals_raw if ivl and ivl > 0]

    ease = compute_distribution(ease_values, params.ease_config())
    intervals = compute_distribution(interval_values, params.interval_config())
    return ease.to_dict(), intervals.to_dict()


async def deck_stats(anki: AnkiClient, arguments: dict) -> dict:
    """
    Card counts plus ease and interval distributions for one deck.

    Args:
        anki: AnkiConnect client
        arguments: Raw tool arguments (deck, ease_buckets, interval_buckets)

    Returns:
        Dictionary with deck, counts, ease and intervals
    """
    params = DeckStatsParams.model_validate(arguments)
    deck = params.deck

    logger.info("Getting statistics for deck: %s", deck)
    response = await anki.get_deck_stats([deck])

    deck_stat = next(
        (stat for stat in (response or {}).values() if stat.get("name") == deck),
        None,
    )
    if deck_stat is None:
        raise ToolError(
            f'Deck "{deck}" not found',
            hint="Use list_decks to see available decks.",
            deck=deck,
        )

    counts = _counts_from(deck_stat)
    card_ids = []

    if counts["total"] == 0:
        logger.info('Deck "%s" is empty', deck)
    else:
        escaped = deck.replace('"', '\\"')
        card_ids = await anki.find_cards(f'"deck:{escaped}"')
        if not card_ids:
            logger.warning('No cards found via findCards for deck "%s", using counts only', deck)

    ease, intervals = await _distributions(anki, card_ids, params)

    logger.info(
        'Deck "%s": %d cards, %d with ease values, %d review cards',
        deck, counts["total"], ease["count"], intervals["count"],
    )
    return {
        "deck": deck,
        "counts": counts,
        "ease": ease,
        "intervals": intervals,
    }


async def collection_stats(anki: AnkiClient, arguments: dict) -> dict:
    """
    Aggregated counts and distributions across every deck.

    Returns:
        Dictionary with total_decks, counts, ease, intervals and per_deck
    """
    params = CollectionStatsParams.model_validate(arguments)

    logger.info("Getting collection-wide statistics")
    deck_names = await anki.deck_names()

    counts = {"total": 0, "new": 0, "learning": 0, "review": 0}
    per_deck = []

    if deck_names:
        response = await anki.get_deck_stats(deck_names)
        if not isinstance(response, dict):
            raise ToolError("Invalid getDeckStats response")

        for deck_stat in response.values():
            deck_counts = _counts_from(deck_stat)
            per_deck.append({"deck": deck_stat.get("name"), **deck_counts})
            for key, value in deck_counts.items():
                counts[key] += value

    logger.info("Aggregated %d cards across %d decks", counts["total"], len(deck_names))

    card_ids = []
    if counts["total"] > 0:
        card_ids = await anki.find_cards("deck:*")
        if not card_ids:
            logger.warning("No cards found via findCards, using counts only")

    ease, intervals = await _distributions(anki, card_ids, params)

    return {
        "total_decks": len(deck_names),
        "counts": counts,
        "ease": ease,
        "intervals": intervals,
        "per_deck": per_deck,
    }


def _local_midnight_ms(day: datetime.date) -> int:
    return int(datetime.datetime.combine(day, datetime.time()).timestamp() * 1000)


async def review_stats(anki: AnkiClient, arguments: dict) -> dict:
    """
    Daily review counts, retention and streak for a deck over a period.

    Days are local calendar days. end_date defaults to today.

    Returns:
        Dictionary with period, deck, reviews_by_day, summary and retention
    """
    params = ReviewStatsParams.model_validate(arguments)
    start_date = params.start_date
    end_date = params.end_date or datetime.date.today()

    logger.info("Getting review statistics from %s to %s for deck: %s", start_date, end_date, params.deck)

    start_ms = _local_midnight_ms(start_date)
    end_ms = _local_midnight_ms(end_date + datetime.timedelta(days=1))

    reviews = await anki.card_reviews(params.deck, start_ms) or []
    # cardReviews only filters by start
    reviews = [review for review in reviews if review[REVIEW_TIME] < end_ms]

    per_day = Counter(
        datetime.date.fromtimestamp(review[REVIEW_TIME] / 1000) for review in reviews
    )
    reviews_by_day = [DailyCount(day, count) for day, count in sorted(per_day.items())]

    retention = compute_retention(review[REVIEW_BUTTON] for review in reviews)
    streak = calculate_streak(reviews_by_day)

    total_reviews = sum(entry.count for entry in reviews_by_day)
    studied = [entry for entry in reviews_by_day if entry.count > 0]
    max_day = max(studied, key=lambda entry: entry.count) if studied else None
    min_day = min(studied, key=lambda entry: entry.count) if studied else None

    logger.info(
        "%d reviews over %d days, %.1f%% retention, %d day streak",
        total_reviews, len(studied), retention.overall * 100, streak,
    )

    return {
        "period": {"start": start_date.isoformat(), "end": end_date.isoformat()},
        "deck": params.deck,
        "reviews_by_day": [entry.to_dict() for entry in reviews_by_day],
        "summary": {
            "total_reviews": total_reviews,
            "average_per_day": total_reviews / len(reviews_by_day) if reviews_by_day else 0,
            "days_studied": len(studied),
            "max_day": max_day.to_dict() if max_day else None,
            "min_day": min_day.to_dict() if min_day else None,
            "streak": streak,
        },
        "retention": retention.to_dict(),
    }
