"""Response envelopes returned by tools and resources."""

import json
from typing import Any

from mcp.types import TextContent

from .anki_client import AnkiConnectError, AnkiConnectionError


CONNECTION_HINT = "Make sure Anki is running and the AnkiConnect add-on is installed and enabled."

# Substring of an AnkiConnect error message -> more specific hint
ERROR_HINTS = {
    "deck was not found": "Use list_decks to see available decks.",
    "model was not found": "Use list_note_types to see available note types and their fields.",
    "field": "Use list_note_types to check the field names of the note type.",
    "duplicate": "A note with the same first field already exists.",
}


class ToolError(Exception):
    """A tool failure that should be reported to the caller with a hint."""

    def __init__(self, message: str, hint: str | None = None, **context):
        super().__init__(message)
        self.hint = hint
        self.context = context


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def success_response(data: Any) -> list[TextContent]:
    """Serialize a tool result as JSON text content."""
    return [TextContent(type="text", text=to_json(data))]


def error_payload(error: Exception | str, hint: str | None = None, **context) -> dict:
    """
    Build the error body shared by tools and resources.

    Args:
        error: Exception or message
        hint: Default hint for the caller
        **context: Extra fields included in the body

    Returns:
        Dictionary with success=False, error, hint and context fields
    """
    message = str(error)
    payload = {"success": False, "error": message}

    if isinstance(error, AnkiConnectionError):
        hint = CONNECTION_HINT
    elif isinstance(error, AnkiConnectError):
        payload["action"] = error.action
        lowered = error.message.lower()
        for needle, specific_hint in ERROR_HINTS.items():
            if needle in lowered:
                hint = specific_hint
                break

    if hint:
        payload["hint"] = hint
    payload.update(context)
    return payload


def error_response(error: Exception | str, hint: str | None = None, **context) -> list[TextContent]:
    """Serialize an error as JSON text content."""
    return [TextContent(type="text", text=to_json(error_payload(error, hint, **context)))]
