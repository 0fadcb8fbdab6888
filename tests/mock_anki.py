"""Mock AnkiConnect server for testing without a real Anki instance."""

import datetime
import re
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web


DECK_QUERY = re.compile(r'"deck:((?:[^"\\]|\\.)+)"|deck:"([^"]+)"|deck:(\S+)', re.IGNORECASE)


@dataclass
class MockNote:
    """Represents a note in the mock Anki collection."""
    note_id: int
    deck_name: str
    model_name: str
    fields: dict[str, str]
    tags: list[str]


@dataclass
class MockCard:
    """Represents a card in the mock Anki collection."""
    card_id: int
    note_id: int
    deck_name: str
    question: str
    answer: str
    factor: int = 0  # Ease factor in permille (2500 = 250%), 0 for new cards
    interval: int = 0  # Days if positive, seconds if negative (learning)
    queue: int = 0  # 0=new, 1=learning, 2=review
    due: int = 0  # Days from today; review cards with due <= 0 are due
    reps: int = 0
    lapses: int = 0


@dataclass
class MockReview:
    """A revlog entry as returned by cardReviews."""
    review_id: int  # Epoch milliseconds
    card_id: int
    ease: int  # Button pressed: 1=Again, 2=Hard, 3=Good, 4=Easy
    ivl: int
    last_ivl: int
    factor: int
    time: int  # Milliseconds spent
    type: int = 1

    def as_tuple(self) -> list:
        return [
            self.review_id, self.card_id, -1, self.ease, self.ivl,
            self.last_ivl, self.factor, self.time, self.type,
        ]


@dataclass
class MockAnkiState:
    """In-memory state for mock Anki."""
    decks: dict[str, int] = field(default_factory=lambda: {"Default": 1})
    models: dict[str, list[str]] = field(default_factory=lambda: {
        "Basic": ["Front", "Back"],
        "Cloze": ["Text", "Extra"],
        "Basic (and reversed card)": ["Front", "Back"],
    })
    css: dict[str, str] = field(default_factory=lambda: {
        "Basic": ".card { font-family: arial; }",
        "Cloze": ".card { font-family: arial; }\n.cloze { font-weight: bold; }",
        "Basic (and reversed card)": ".card { font-family: arial; }",
    })
    notes: dict[int, MockNote] = field(default_factory=dict)
    cards: dict[int, MockCard] = field(default_factory=dict)
    tags: set[str] = field(default_factory=set)
    reviews: dict[str, list[MockReview]] = field(default_factory=dict)
    next_note_id: int = 1000000000
    next_card_id: int = 1000000000
    next_deck_id: int = 100
    next_model_id: int = 1500000000
    synced: int = 0
    requests: list[dict] = field(default_factory=list)


class MockAnkiConnect:
    """Mock AnkiConnect server that simulates the AnkiConnect API."""

    def __init__(self):
        self.state = MockAnkiState()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self.port: int = 0

    async def start(self, port: int = 0) -> int:
        """Start the mock server on the given port (0 for random available port)."""
        self._app = web.Application()
        self._app.router.add_post("/", self._handle_request)

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, "127.0.0.1", port)
        await self._site.start()

        # Get the actual port if we requested port 0
        self.port = self._site._server.sockets[0].getsockname()[1]
        return self.port

    async def stop(self):
        """Stop the mock server."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()

    async def _handle_request(self, request: web.Request) -> web.Response:
        """Handle incoming AnkiConnect requests."""
        try:
            data = await request.json()
            self.state.requests.append(data)
            action = data.get("action")
            params = data.get("params", {})

            result, error = self._dispatch(action, params)

            response = {"result": result, "error": error}
            return web.json_response(response)

        except Exception as e:
            return web.json_response({"result": None, "error": str(e)})

    def _dispatch(self, action: str, params: dict) -> tuple[Any, str | None]:
        """Dispatch an action to the appropriate handler."""
        handlers = {
            "version": self._version,
            "deckNames": self._deck_names,
            "deckNamesAndIds": self._deck_names_and_ids,
            "createDeck": self._create_deck,
            "modelNames": self._model_names,
            "modelFieldNames": self._model_field_names,
            "getTags": self._get_tags,
            "addNote": self._add_note,
            "findNotes": self._find_notes,
            "notesInfo": self._notes_info,
            "updateNoteFields": self._update_note_fields,
            "deleteNotes": self._delete_notes,
            "sync": self._sync,
            # Tags
            "addTags": self._add_tags,
            "removeTags": self._remove_tags,
            "replaceTags": self._replace_tags,
            "clearUnusedTags": self._clear_unused_tags,
            # Note types
            "createModel": self._create_model,
            "modelStyling": self._model_styling,
            "updateModelStyling": self._update_model_styling,
            # Study
            "cardsInfo": self._cards_info,
            "answerCards": self._answer_cards,
            # Statistics methods
            "getDeckStats": self._get_deck_stats,
            "findCards": self._find_cards,
            "getEaseFactors": self._get_ease_factors,
            "getIntervals": self._get_intervals,
            "cardReviews": self._card_reviews,
        }

        handler = handlers.get(action)
        if handler is None:
            return None, f"Unknown action: {action}"

        try:
            result = handler(params)
            return result, None
        except Exception as e:
            return None, str(e)

    def _version(self, params: dict) -> int:
        return 6

    def _deck_names(self, params: dict) -> list[str]:
        return list(self.state.decks.keys())

    def _deck_names_and_ids(self, params: dict) -> dict[str, int]:
        return dict(self.state.decks)

    def _create_deck(self, params: dict) -> int:
        deck_name = params["deck"]
        if deck_name not in self.state.decks:
            self.state.decks[deck_name] = self.state.next_deck_id
            self.state.next_deck_id += 1
        return self.state.decks[deck_name]

    def _model_names(self, params: dict) -> list[str]:
        return list(self.state.models.keys())

    def _model_field_names(self, params: dict) -> list[str]:
        model_name = params["modelName"]
        if model_name not in self.state.models:
            raise ValueError(f"model was not found: {model_name}")
        return self.state.models[model_name]

    def _get_tags(self, params: dict) -> list[str]:
        return list(self.state.tags)

    def _is_duplicate(self, deck_name: str, fields: dict[str, str]) -> bool:
        first_field_value = list(fields.values())[0] if fields else ""
        for existing_note in self.state.notes.values():
            existing_first = list(existing_note.fields.values())[0] if existing_note.fields else ""
            if existing_first == first_field_value and existing_note.deck_name == deck_name:
                return True
        return False

    def _add_note(self, params: dict) -> int | None:
        note_data = params["note"]
        deck_name = note_data["deckName"]
        model_name = note_data["modelName"]
        fields = note_data["fields"]
        tags = note_data.get("tags", [])
        allow_duplicate = note_data.get("options", {}).get("allowDuplicate", False)

        if deck_name not in self.state.decks:
            raise ValueError(f"deck was not found: {deck_name}")
        if model_name not in self.state.models:
            raise ValueError(f"model was not found: {model_name}")
        for field_name in fields:
            if field_name not in self.state.models[model_name]:
                raise ValueError(f"field was not found in model {model_name}: {field_name}")

        if not allow_duplicate and self._is_duplicate(deck_name, fields):
            return None

        return self.add_card(deck_name, model_name=model_name, fields=fields, tags=tags)

    def _find_notes(self, params: dict) -> list[int]:
        query = params["query"]
        return [
            note_id for note_id, note in self.state.notes.items()
            if self._matches(note.deck_name, note.tags, query)
        ]

    def _matches(self, deck_name: str, tags: list[str], query: str) -> bool:
        """Simple query matching for testing."""
        deck_match = DECK_QUERY.search(query)
        if deck_match:
            wanted = next(group for group in deck_match.groups() if group is not None)
            wanted = wanted.replace('\\"', '"')
            if wanted != "*":
                lowered = deck_name.lower()
                if lowered != wanted.lower() and not lowered.startswith(wanted.lower() + "::"):
                    return False

        tag_match = re.search(r'tag:(\S+)', query, re.IGNORECASE)
        if tag_match:
            tag = tag_match.group(1)
            if tag.lower() not in [t.lower() for t in tags]:
                return False

        return True

    def _notes_info(self, params: dict) -> list[dict]:
        results = []
        for note_id in params["notes"]:
            note = self.state.notes.get(note_id)
            if note is None:
                results.append({})
                continue
            results.append({
                "noteId": note.note_id,
                "modelName": note.model_name,
                "tags": note.tags,
                "fields": {k: {"value": v, "order": i} for i, (k, v) in enumerate(note.fields.items())},
                "cards": [c.card_id for c in self.state.cards.values() if c.note_id == note_id],
            })
        return results

    def _update_note_fields(self, params: dict) -> None:
        note_data = params["note"]
        note_id = note_data["id"]
        if note_id not in self.state.notes:
            raise ValueError(f"Note was not found: {note_id}")
        self.state.notes[note_id].fields.update(note_data["fields"])

    def _delete_notes(self, params: dict) -> None:
        for note_id in params["notes"]:
            self.state.notes.pop(note_id, None)
            for card_id in [cid for cid, card in self.state.cards.items() if card.note_id == note_id]:
                del self.state.cards[card_id]

    def _sync(self, params: dict) -> None:
        self.state.synced += 1

    # Tags

    def _notes_for(self, params: dict) -> list[MockNote]:
        return [self.state.notes[nid] for nid in params["notes"] if nid in self.state.notes]

    def _add_tags(self, params: dict) -> None:
        new_tags = params["tags"].split()
        for note in self._notes_for(params):
            note.tags.extend([tag for tag in new_tags if tag not in note.tags])
        self.state.tags.update(new_tags)

    def _remove_tags(self, params: dict) -> None:
        tags_to_remove = set(params["tags"].split())
        for note in self._notes_for(params):
            note.tags = [tag for tag in note.tags if tag not in tags_to_remove]

    def _replace_tags(self, params: dict) -> None:
        old = params["tag_to_replace"]
        new = params["replace_with_tag"]
        for note in self._notes_for(params):
            if old in note.tags:
                note.tags = [new if tag == old else tag for tag in note.tags]
                self.state.tags.add(new)

    def _clear_unused_tags(self, params: dict) -> None:
        self.state.tags = {tag for note in self.state.notes.values() for tag in note.tags}

    # Note types

    def _create_model(self, params: dict) -> dict:
        model_name = params["modelName"]
        if model_name in self.state.models:
            raise ValueError("Model name already exists")

        model_id = self.state.next_model_id
        self.state.next_model_id += 1
        self.state.models[model_name] = list(params["inOrderFields"])
        self.state.css[model_name] = params.get("css") or ".card { font-family: arial; }"
        return {
            "id": model_id,
            "name": model_name,
            "type": 1 if params.get("isCloze") else 0,
            "flds": [{"name": name, "ord": i} for i, name in enumerate(params["inOrderFields"])],
            "tmpls": [{"name": t["Name"], "ord": i} for i, t in enumerate(params["cardTemplates"])],
            "css": self.state.css[model_name],
        }

    def _model_styling(self, params: dict) -> dict:
        model_name = params["modelName"]
        if model_name not in self.state.models:
            raise ValueError(f"model was not found: {model_name}")
        return {"css": self.state.css.get(model_name, "")}

    def _update_model_styling(self, params: dict) -> None:
        model = params["model"]
        if model["name"] not in self.state.models:
            raise ValueError(f"model was not found: {model['name']}")
        self.state.css[model["name"]] = model["css"]

    # Study

    def _cards_info(self, params: dict) -> list[dict]:
        results = []
        for card_id in params["cards"]:
            card = self.state.cards.get(card_id)
            if card is None:
                continue
            note = self.state.notes.get(card.note_id)
            fields = note.fields if note else {}
            results.append({
                "cardId": card.card_id,
                "note": card.note_id,
                "deckName": card.deck_name,
                "modelName": note.model_name if note else "Basic",
                "fields": {k: {"value": v, "order": i} for i, (k, v) in enumerate(fields.items())},
                "question": card.question,
                "answer": card.answer,
                "factor": card.factor,
                "interval": card.interval,
                "due": card.due,
                "queue": card.queue,
                "type": card.queue,
                "reps": card.reps,
                "lapses": card.lapses,
                "tags": list(note.tags) if note else [],
            })
        return results

    def _answer_cards(self, params: dict) -> list[bool]:
        results = []
        for answer in params["answers"]:
            card = self.state.cards.get(answer["cardId"])
            ease = answer["ease"]
            if card is None or ease not in (1, 2, 3, 4):
                results.append(False)
                continue

            factor = card.factor or 2500
            card.reps += 1
            if ease == 1:
                if card.queue == 2:
                    card.lapses += 1
                card.queue = 1
                card.interval = -600
                card.due = 0
                card.factor = max(1300, factor - 200)
            else:
                multiplier = {2: 1.2, 3: factor / 1000, 4: factor / 1000 * 1.3}[ease]
                card.queue = 2
                card.interval = max(1, round(max(card.interval, 1) * multiplier))
                card.due = card.interval
                card.factor = max(1300, factor + {2: -150, 3: 0, 4: 150}[ease])
            results.append(True)
        return results

    # Statistics methods

    def _get_deck_stats(self, params: dict) -> dict:
        results = {}

        for deck_name in params["decks"]:
            if deck_name in self.state.decks:
                deck_id = self.state.decks[deck_name]
                deck_cards = [c for c in self.state.cards.values() if c.deck_name == deck_name]
                results[str(deck_id)] = {
                    "deck_id": deck_id,
                    "name": deck_name,
                    "new_count": sum(1 for c in deck_cards if c.queue == 0),
                    "learn_count": sum(1 for c in deck_cards if c.queue == 1),
                    "review_count": sum(1 for c in deck_cards if c.queue == 2),
                    "total_in_deck": len(deck_cards),
                }

        return results

    def _find_cards(self, params: dict) -> list[int]:
        query = params["query"]
        results = []
        for card_id, card in self.state.cards.items():
            note = self.state.notes.get(card.note_id)
            if not self._matches(card.deck_name, note.tags if note else [], query):
                continue
            # Handle is:due (cards in review queue with due <= 0)
            if "is:due" in query.lower() and (card.queue != 2 or card.due > 0):
                continue
            results.append(card_id)
        return results

    def _get_ease_factors(self, params: dict) -> list[int]:
        return [
            self.state.cards[cid].factor if cid in self.state.cards else 0
            for cid in params["cards"]
        ]

    def _get_intervals(self, params: dict) -> list[int]:
        return [
            self.state.cards[cid].interval if cid in self.state.cards else 0
            for cid in params["cards"]
        ]

    def _card_reviews(self, params: dict) -> list[list]:
        deck_name = params["deck"]
        start_id = params["startID"]
        return [
            review.as_tuple()
            for review in self.state.reviews.get(deck_name, [])
            if review.review_id > start_id
        ]

    # Helper methods for test setup

    def add_card(
        self,
        deck_name: str,
        factor: int = 0,
        interval: int = 0,
        queue: int = 0,
        model_name: str = "Basic",
        fields: dict[str, str] | None = None,
        tags: list[str] | None = None,
    ) -> int:
        """Add a note with one card and return the note ID."""
        self._create_deck({"deck": deck_name})

        note_id = self.state.next_note_id
        self.state.next_note_id += 1
        fields = dict(fields) if fields else {"Front": f"Q {note_id}", "Back": f"A {note_id}"}
        tags = list(tags or [])

        self.state.notes[note_id] = MockNote(
            note_id=note_id,
            deck_name=deck_name,
            model_name=model_name,
            fields=fields,
            tags=tags,
        )
        self.state.tags.update(tags)

        values = list(fields.values())
        card_id = self.state.next_card_id
        self.state.next_card_id += 1
        self.state.cards[card_id] = MockCard(
            card_id=card_id,
            note_id=note_id,
            deck_name=deck_name,
            question=values[0] if values else "",
            answer=values[1] if len(values) > 1 else "",
            factor=factor,
            interval=interval,
            queue=queue,
        )
        return note_id

    def add_due_card(self, deck_name: str, due: int = 0, **kwargs) -> int:
        """Add a review card due `due` days from today and return its card ID."""
        note_id = self.add_card(deck_name, queue=2, **kwargs)
        card = next(c for c in self.state.cards.values() if c.note_id == note_id)
        card.due = due
        if not card.factor:
            card.factor = 2500
        if not card.interval:
            card.interval = 1
        return card.card_id

    def add_review_card(self, deck_name: str, ease: float, interval: int) -> int:
        """Add a card in the review queue; ease as a ratio (2.5 = 250%)."""
        return self.add_card(deck_name, factor=round(ease * 1000), interval=interval, queue=2)

    def add_review_data(
        self,
        deck_name: str,
        outcomes: list[int],
        days_ago: list[int] | None = None,
        today: datetime.date | None = None,
    ):
        """
        Add revlog entries for a deck.

        Args:
            deck_name: Deck the reviews belong to
            outcomes: Buttons pressed, one review each
            days_ago: Day offset from today per review (default: all today)
            today: Reference date (default: local today)
        """
        self._create_deck({"deck": deck_name})
        today = today or datetime.date.today()
        days_ago = days_ago or [0] * len(outcomes)
        reviews = self.state.reviews.setdefault(deck_name, [])

        for i, (ease, offset) in enumerate(zip(outcomes, days_ago)):
            day = today - datetime.timedelta(days=offset)
            noon = datetime.datetime.combine(day, datetime.time(12, 0))
            reviews.append(MockReview(
                review_id=int(noon.timestamp() * 1000) + i,
                card_id=1000 + i,
                ease=ease,
                ivl=max(1, ease * 2),
                last_ivl=1,
                factor=2500,
                time=5000,
            ))
