"""Study session tools: fetch due cards, show them, record answers."""

import logging

from pydantic import BaseModel, Field

from .anki_client import AnkiClient
from .responses import ToolError


logger = logging.getLogger(__name__)

DEFAULT_DUE_LIMIT = 10
MAX_DUE_LIMIT = 50
DEFAULT_EASE_FACTOR = 2500

CARD_TYPES = {0: "New", 1: "Learning", 2: "Review", 3: "Relearning"}
RATINGS = {1: "Again", 2: "Hard", 3: "Good", 4: "Easy"}


class GetDueCardsParams(BaseModel):
    deck_name: str | None = None
    limit: int = Field(default=DEFAULT_DUE_LIMIT, ge=1, le=MAX_DUE_LIMIT)


class PresentCardParams(BaseModel):
    card_id: int
    show_answer: bool = False


class RateCardParams(BaseModel):
    card_id: int
    rating: int = Field(ge=1, le=4)


def due_query(deck_name: str | None) -> str:
    """Anki search for due cards, optionally limited to one deck."""
    if not deck_name:
        return "is:due"
    escaped = deck_name.replace('"', '\\"')
    return f'"deck:{escaped}" is:due'


def front_and_back(card: dict) -> tuple[str, str]:
    """
    Front and back text of a card.

    The first two note fields by order are used. Empty sides fall back to
    the rendered question and answer.
    """
    values = [
        field.get("value", "")
        for field in sorted(card.get("fields", {}).values(), key=lambda f: f.get("order", 0))
    ]
    front = values[0] if values else ""
    back = values[1] if len(values) > 1 else ""
    return front or card.get("question", ""), back or card.get("answer", "")


async def get_due_cards(anki: AnkiClient, arguments: dict) -> dict:
    """Find cards due for review, returning at most `limit` of them."""
    params = GetDueCardsParams.model_validate(arguments)

    card_ids = await anki.find_cards(due_query(params.deck_name))
    if not card_ids:
        return {
            "success": True,
            "message": "No cards are due for review",
            "cards": [],
            "total": 0,
        }

    infos = await anki.cards_info(card_ids[:params.limit])
    cards = []
    for info in infos:
        if not info:
            continue
        front, back = front_and_back(info)
        cards.append({
            "cardId": info["cardId"],
            "front": front,
            "back": back,
            "deckName": info.get("deckName"),
            "modelName": info.get("modelName"),
            "due": info.get("due"),
            "interval": info.get("interval"),
            "factor": info.get("factor") or DEFAULT_EASE_FACTOR,
        })

    logger.info("Found %d due cards, returning %d", len(card_ids), len(cards))
    return {
        "success": True,
        "cards": cards,
        "total": len(card_ids),
        "returned": len(cards),
        "message": f"Found {len(card_ids)} due cards, returning {len(cards)}",
    }


async def present_card(anki: AnkiClient, arguments: dict) -> dict:
    """
    Show a card for review.

    The back is only included when show_answer is true, so the question
    can be asked before the answer is revealed.
    """
    params = PresentCardParams.model_validate(arguments)

    infos = await anki.cards_info([params.card_id])
    # cardsInfo returns an empty object for unknown IDs
    if not infos or not infos[0]:
        raise ToolError(
            f"Card with ID {params.card_id} not found",
            hint="Use get_due_cards to find cards to review.",
            cardId=params.card_id,
        )

    card = infos[0]
    front, back = front_and_back(card)
    presented = {
        "cardId": card["cardId"],
        "front": front,
        "deckName": card.get("deckName"),
        "modelName": card.get("modelName"),
        "tags": card.get("tags", []),
        "currentInterval": card.get("interval") or 0,
        "easeFactor": card.get("factor") or DEFAULT_EASE_FACTOR,
        "reviews": card.get("reps") or 0,
        "lapses": card.get("lapses") or 0,
        "cardType": CARD_TYPES.get(card.get("type"), "Unknown"),
        "noteId": card.get("note"),
    }

    if params.show_answer:
        presented["back"] = back
        instruction = "Answer revealed. Evaluate response and suggest rating, then wait for user confirmation"
    else:
        instruction = "Question shown. Wait for user's answer, then use show_answer=true"

    return {"success": True, "card": presented, "instruction": instruction}


async def rate_card(anki: AnkiClient, arguments: dict) -> dict:
    """Answer a card with 1=Again, 2=Hard, 3=Good or 4=Easy."""
    params = RateCardParams.model_validate(arguments)
    description = RATINGS[params.rating]

    results = await anki.answer_cards([{"cardId": params.card_id, "ease": params.rating}])
    if not results or not results[0]:
        raise ToolError(
            f"Failed to rate card {params.card_id}",
            hint="Make sure Anki is running and the card exists",
            cardId=params.card_id,
            attemptedRating=params.rating,
        )

    logger.info("Rated card %s as %s", params.card_id, description)

    response = {
        "success": True,
        "cardId": params.card_id,
        "rating": params.rating,
        "ratingDescription": description,
        "message": f"Card successfully rated as {description}",
    }

    next_review = None
    infos = await anki.cards_info([params.card_id])
    if infos and infos[0]:
        next_review = {
            "interval": infos[0].get("interval") or 0,
            "due": infos[0].get("due") or 0,
            "factor": infos[0].get("factor") or DEFAULT_EASE_FACTOR,
        }
    response["nextReview"] = next_review
    return response
