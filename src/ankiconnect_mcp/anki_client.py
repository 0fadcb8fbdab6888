"""AnkiConnect API client wrapper."""

import logging
from typing import Any

import httpx


logger = logging.getLogger(__name__)

API_VERSION = 6


class AnkiConnectError(Exception):
    """Exception raised when AnkiConnect returns an error."""

    def __init__(self, message: str, action: str | None = None):
        super().__init__(message)
        self.message = message
        self.action = action

    def __str__(self) -> str:
        if self.action:
            return f"AnkiConnect error in '{self.action}': {self.message}"
        return f"AnkiConnect error: {self.message}"


class AnkiConnectionError(AnkiConnectError):
    """Exception raised when AnkiConnect cannot be reached."""

    def __str__(self) -> str:
        return self.message


class AnkiClient:
    """Client for communicating with AnkiConnect."""

    def __init__(
        self,
        url: str = "http://localhost:8765",
        timeout: float = 30.0,
        api_key: str | None = None,
    ):
        """
        Initialize the AnkiConnect client.

        Args:
            url: AnkiConnect server URL (default: http://localhost:8765)
            timeout: Request timeout in seconds
            api_key: Optional AnkiConnect API key
        """
        self.url = url
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def invoke(self, action: str, params: dict | None = None) -> Any:
        """
        Invoke an AnkiConnect action.

        Args:
            action: AnkiConnect action name
            params: Action parameters

        Returns:
            Response result

        Raises:
            AnkiConnectionError: If AnkiConnect is unreachable or answers garbage
            AnkiConnectError: If AnkiConnect returns an error
        """
        payload = {
            "action": action,
            "version": API_VERSION,
            "params": params or {},
        }
        if self.api_key:
            payload["key"] = self.api_key

        logger.debug("Invoking AnkiConnect action %s", action)

        try:
            response = await self.client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AnkiConnectionError(
                f"AnkiConnect at {self.url} returned HTTP {e.response.status_code}",
                action=action,
            ) from e
        except httpx.HTTPError as e:
            raise AnkiConnectionError(
                f"Cannot connect to AnkiConnect at {self.url}: {e}",
                action=action,
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise AnkiConnectionError(
                f"AnkiConnect at {self.url} returned a non-JSON response",
                action=action,
            ) from e

        if not isinstance(data, dict) or "result" not in data or "error" not in data:
            raise AnkiConnectError("response is missing the result/error fields", action=action)

        if data["error"]:
            raise AnkiConnectError(str(data["error"]), action=action)

        return data["result"]

    async def _invoke(self, action: str, **params) -> Any:
        return await self.invoke(action, params)

    # Health and info methods

    async def version(self) -> int:
        """Get AnkiConnect version."""
        return await self._invoke("version")

    async def deck_names(self) -> list[str]:
        """Get all deck names."""
        return await self._invoke("deckNames")

    async def deck_names_and_ids(self) -> dict[str, int]:
        """Get a mapping of deck name to deck ID."""
        return await self._invoke("deckNamesAndIds")

    async def model_names(self) -> list[str]:
        """Get all note type (model) names."""
        return await self._invoke("modelNames")

    async def model_field_names(self, model_name: str) -> list[str]:
        """
        Get field names for a specific note type.

        Args:
            model_name: Name of the note type

        Returns:
            List of field names
        """
        return await self._invoke("modelFieldNames", modelName=model_name)

    async def get_tags(self) -> list[str]:
        """Get all tags used in the collection."""
        return await self._invoke("getTags")

    # Deck operations

    async def create_deck(self, deck_name: str) -> int:
        """
        Create a new deck. Existing decks are left alone.

        Args:
            deck_name: Name of the deck to create

        Returns:
            Deck ID
        """
        return await self._invoke("createDeck", deck=deck_name)

    # Note operations

    async def add_note(
        self,
        deck_name: str,
        model_name: str,
        fields: dict[str, str],
        tags: list[str] | None = None,
        allow_duplicate: bool = False,
    ) -> int | None:
        """
        Add a single note to Anki.

        Args:
            deck_name: Target deck name
            model_name: Note type name (e.g., "Basic", "Cloze")
            fields: Dictionary of field names to values
            tags: Optional list of tags
            allow_duplicate: Add the note even if its first field already exists

        Returns:
            Note ID if successful, None if duplicate
        """
        note = {
            "deckName": deck_name,
            "modelName": model_name,
            "fields": fields,
            "tags": tags or [],
            "options": {"allowDuplicate": allow_duplicate},
        }

        return await self._invoke("addNote", note=note)

    async def find_notes(self, query: str) -> list[int]:
        """
        Search for notes using Anki search syntax.

        Args:
            query: Anki search query (e.g., "deck:Spanish tag:verb")

        Returns:
            List of note IDs matching the query
        """
        return await self._invoke("findNotes", query=query)

    async def notes_info(self, note_ids: list[int]) -> list[dict]:
        """
        Get detailed information about specific notes.

        Args:
            note_ids: List of note IDs

        Returns:
            List of note information dictionaries
        """
        return await self._invoke("notesInfo", notes=note_ids)

    async def update_note_fields(self, note_id: int, fields: dict[str, str]) -> None:
        """
        Replace field values of an existing note.

        Args:
            note_id: Note ID
            fields: Field names to new values
        """
        await self._invoke("updateNoteFields", note={"id": note_id, "fields": fields})

    async def delete_notes(self, note_ids: list[int]) -> None:
        """Delete notes and all of their cards."""
        await self._invoke("deleteNotes", notes=note_ids)

    # Tag operations

    async def add_tags(self, note_ids: list[int], tags: str) -> None:
        """
        Add tags to existing notes.

        Args:
            note_ids: List of note IDs
            tags: Space-separated tag string
        """
        await self._invoke("addTags", notes=note_ids, tags=tags)

    async def remove_tags(self, note_ids: list[int], tags: str) -> None:
        """
        Remove tags from notes.

        Args:
            note_ids: List of note IDs
            tags: Space-separated tag string
        """
        await self._invoke("removeTags", notes=note_ids, tags=tags)

    async def replace_tags(self, note_ids: list[int], tag_to_replace: str, replace_with_tag: str) -> None:
        """Rename one tag on the given notes."""
        await self._invoke(
            "replaceTags",
            notes=note_ids,
            tag_to_replace=tag_to_replace,
            replace_with_tag=replace_with_tag,
        )

    async def clear_unused_tags(self) -> None:
        """Remove tags no note uses from the collection's tag list."""
        await self._invoke("clearUnusedTags")

    # Note type operations

    async def create_model(
        self,
        model_name: str,
        fields: list[str],
        card_templates: list[dict],
        css: str | None = None,
        is_cloze: bool = False,
    ) -> dict:
        """
        Create a note type.

        Args:
            model_name: Name of the new note type
            fields: Field names in order
            card_templates: Templates as {"Name", "Front", "Back"} dicts
            css: Optional card styling
            is_cloze: Create a cloze note type

        Returns:
            The created model as reported by AnkiConnect (includes "id")
        """
        params = {
            "modelName": model_name,
            "inOrderFields": fields,
            "cardTemplates": card_templates,
            "isCloze": is_cloze,
        }
        if css is not None:
            params["css"] = css
        return await self.invoke("createModel", params)

    async def model_styling(self, model_name: str) -> dict:
        """Get the CSS of a note type as {"css": ...}."""
        return await self._invoke("modelStyling", modelName=model_name)

    async def update_model_styling(self, model_name: str, css: str) -> None:
        """Replace the CSS of a note type."""
        await self._invoke("updateModelStyling", model={"name": model_name, "css": css})

    # Sync operations

    async def sync(self) -> None:
        """Synchronize the collection with AnkiWeb."""
        await self._invoke("sync")

    # Statistics and card info methods

    async def get_deck_stats(self, deck_names: list[str]) -> dict:
        """
        Get statistics for specified decks.

        Args:
            deck_names: List of deck names to get stats for

        Returns:
            Dictionary with deck IDs as keys and stats as values.
            Each stats dict contains: deck_id, name, new_count, learn_count,
            review_count, total_in_deck
        """
        return await self._invoke("getDeckStats", decks=deck_names)

    async def find_cards(self, query: str) -> list[int]:
        """
        Search for cards using Anki search syntax.

        Args:
            query: Anki search query (e.g., "deck:Spanish is:due")

        Returns:
            List of card IDs matching the query
        """
        return await self._invoke("findCards", query=query)

    async def get_ease_factors(self, card_ids: list[int]) -> list[int]:
        """Get ease factors in permille (2500 = 250%) for cards."""
        return await self._invoke("getEaseFactors", cards=card_ids)

    async def get_intervals(self, card_ids: list[int]) -> list[int]:
        """
        Get current intervals for cards.

        Positive values are days, negative values are seconds (learning cards).
        """
        return await self._invoke("getIntervals", cards=card_ids)

    async def cards_info(self, card_ids: list[int]) -> list[dict]:
        """
        Get detailed information about specific cards.

        Args:
            card_ids: List of card IDs

        Returns:
            List of card information dictionaries containing fields like:
            cardId, note, deckName, modelName, fields, question, answer,
            due, factor, interval, lapses, reps, type
        """
        return await self._invoke("cardsInfo", cards=card_ids)

    async def answer_cards(self, answers: list[dict]) -> list[bool]:
        """
        Answer cards as if reviewed in Anki.

        Args:
            answers: List of {"cardId": id, "ease": 1-4}

        Returns:
            One flag per answer, True if the card was answered
        """
        return await self._invoke("answerCards", answers=answers)

    async def card_reviews(self, deck_name: str, start_id: int) -> list[list]:
        """
        Get reviews of a deck made after a point in time.

        Args:
            deck_name: Deck to read reviews for
            start_id: Epoch milliseconds; only later reviews are returned

        Returns:
            List of review tuples: [reviewTime, cardID, usn, buttonPressed,
            newInterval, previousInterval, newFactor, reviewDuration, reviewType]
        """
        return await self._invoke("cardReviews", deck=deck_name, startID=start_id)
