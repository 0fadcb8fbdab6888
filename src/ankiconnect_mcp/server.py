"""MCP server for Anki integration."""

import asyncio
import logging

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl, ValidationError

from . import analytics, models, notes, study
from .anki_client import AnkiClient, AnkiConnectError
from .config import Settings, configure_logging
from .responses import ToolError, error_payload, error_response, success_response, to_json


logger = logging.getLogger(__name__)

JSON_MIME = "application/json"

# Initialize the MCP server
app = Server("ankiconnect-mcp")

settings = Settings()

# Global AnkiClient instance
anki = AnkiClient(
    url=settings.url,
    timeout=settings.timeout,
    api_key=settings.api_key,
)


def _json_or_string(schema: dict, description: str) -> dict:
    """Schema accepting the native value or its JSON encoding."""
    return {
        "anyOf": [schema, {"type": "string"}],
        "description": description + " Pass a native value; a JSON-encoded string is also accepted.",
    }


BUCKET_ARRAY = {"type": "array", "items": {"type": "number", "exclusiveMinimum": 0}}
NOTE_ID_ARRAY = {"type": "array", "items": {"type": "integer"}}
FIELDS_OBJECT = {"type": "object", "additionalProperties": {"type": "string"}}
TAG_ARRAY = {"type": "array", "items": {"type": "string"}}

NOTE_PROPERTIES = {
    "deck_name": {
        "type": "string",
        "description": "Target deck name (created if it doesn't exist)"
    },
    "model_name": {
        "type": "string",
        "description": "Note type (e.g., 'Basic', 'Cloze')"
    },
    "fields": _json_or_string(
        FIELDS_OBJECT,
        "Field names to values, e.g. {\"Front\": \"question\", \"Back\": \"answer\"}."
    ),
    "tags": _json_or_string(TAG_ARRAY, "Optional list of tags."),
    "allow_duplicate": {
        "type": "boolean",
        "description": "Add even if a note with the same first field exists",
        "default": False
    },
}

BUCKET_PROPERTIES = {
    "ease_buckets": _json_or_string(
        BUCKET_ARRAY,
        "Ascending bucket boundaries for the ease factor distribution. Default: [2.0, 2.5, 3.0] "
        "which creates buckets <2, 2-2.5, 2.5-3, >3."
    ),
    "interval_buckets": _json_or_string(
        BUCKET_ARRAY,
        "Ascending bucket boundaries for the interval distribution in days. Default: [7, 21, 90] "
        "which creates buckets <7d, 7-21d, 21-90d, >90d."
    ),
}

TOOLS = [
    Tool(
        name="list_decks",
        description="List all Anki decks with their IDs.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": []
        }
    ),
    Tool(
        name="create_deck",
        description="Create a new deck. Use '::' for nested decks (e.g., 'Japanese::Vocabulary').",
        inputSchema={
            "type": "object",
            "properties": {
                "deck_name": {
                    "type": "string",
                    "description": "Name of the deck to create"
                }
            },
            "required": ["deck_name"]
        }
    ),
    Tool(
        name="list_note_types",
        description="List all note types (models) and their fields.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": []
        }
    ),
    Tool(
        name="get_tags",
        description="List all tags used in the collection.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": []
        }
    ),
    Tool(
        name="find_notes",
        description="Search notes using Anki's search syntax (e.g., 'deck:Spanish tag:verb'). Returns note IDs.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Anki search query"
                },
                "limit": {
                    "type": "integer",
                    "description": "Max note IDs to return (default: 100)",
                    "default": 100
                }
            },
            "required": ["query"]
        }
    ),
    Tool(
        name="notes_info",
        description="Get fields, tags, model and cards of notes by ID.",
        inputSchema={
            "type": "object",
            "properties": {
                "notes": _json_or_string(NOTE_ID_ARRAY, "Note IDs (max 100).")
            },
            "required": ["notes"]
        }
    ),
    Tool(
        name="add_note",
        description="Add a single note to Anki. Creates the deck if it doesn't exist.",
        inputSchema={
            "type": "object",
            "properties": NOTE_PROPERTIES,
            "required": ["deck_name", "model_name", "fields"]
        }
    ),
    Tool(
        name="add_notes",
        description=(
            "Add up to 10 notes in one call. Returns a result per note; "
            "partial failures are possible."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "notes": _json_or_string(
                    {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": NOTE_PROPERTIES,
                            "required": ["deck_name", "model_name", "fields"]
                        },
                        "minItems": 1,
                        "maxItems": 10
                    },
                    "Notes to add."
                ),
                "stop_on_first_error": {
                    "type": "boolean",
                    "description": "Stop at the first note that fails (default: false)",
                    "default": False
                }
            },
            "required": ["notes"]
        }
    ),
    Tool(
        name="update_note_fields",
        description="Update field values of an existing note.",
        inputSchema={
            "type": "object",
            "properties": {
                "note": _json_or_string(
                    {
                        "type": "object",
                        "properties": {
                            "id": {"type": "integer", "description": "Note ID"},
                            "fields": _json_or_string(FIELDS_OBJECT, "Field names to new values.")
                        },
                        "required": ["id", "fields"]
                    },
                    "Note ID and the fields to change."
                )
            },
            "required": ["note"]
        }
    ),
    Tool(
        name="delete_notes",
        description="Permanently delete notes and all their cards. This action cannot be undone!",
        inputSchema={
            "type": "object",
            "properties": {
                "notes": _json_or_string(NOTE_ID_ARRAY, "Note IDs to delete (max 100)."),
                "confirm_deletion": {
                    "type": "boolean",
                    "description": "Must be true to confirm deletion"
                }
            },
            "required": ["notes", "confirm_deletion"]
        }
    ),
    Tool(
        name="sync",
        description="Synchronize the local Anki collection with AnkiWeb.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": []
        }
    ),
    # Tag tools
    Tool(
        name="add_tags",
        description="Add tags to notes.",
        inputSchema={
            "type": "object",
            "properties": {
                "notes": _json_or_string(NOTE_ID_ARRAY, "Note IDs to tag (max 100)."),
                "tags": {
                    "type": "string",
                    "description": "Space-separated tags to add (e.g., 'verb irregular')"
                }
            },
            "required": ["notes", "tags"]
        }
    ),
    Tool(
        name="remove_tags",
        description="Remove tags from notes given by ID or by an Anki search query.",
        inputSchema={
            "type": "object",
            "properties": {
                "notes": _json_or_string(NOTE_ID_ARRAY, "Note IDs (max 100)."),
                "query": {
                    "type": "string",
                    "description": "Anki search query to find notes (alternative to notes)"
                },
                "tags": {
                    "type": "string",
                    "description": "Space-separated tags to remove"
                }
            },
            "required": ["tags"]
        }
    ),
    Tool(
        name="replace_tags",
        description="Rename a tag on the given notes.",
        inputSchema={
            "type": "object",
            "properties": {
                "notes": _json_or_string(NOTE_ID_ARRAY, "Note IDs (max 100)."),
                "tag_to_replace": {
                    "type": "string",
                    "description": "Single tag to replace"
                },
                "replace_with_tag": {
                    "type": "string",
                    "description": "Single replacement tag"
                }
            },
            "required": ["notes", "tag_to_replace", "replace_with_tag"]
        }
    ),
    Tool(
        name="clear_unused_tags",
        description="Remove tags that no note uses from the collection.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": []
        }
    ),
    # Note type tools
    Tool(
        name="create_model",
        description=(
            "Create a note type with custom fields, card templates and CSS. "
            "Templates reference fields as {{FieldName}}."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "model_name": {
                    "type": "string",
                    "description": "Unique name for the note type (e.g., 'Basic RTL')"
                },
                "in_order_fields": _json_or_string(
                    {"type": "array", "items": {"type": "string"}, "minItems": 1},
                    "Field names in order (e.g., [\"Front\", \"Back\"])."
                ),
                "card_templates": _json_or_string(
                    {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "Name": {"type": "string"},
                                "Front": {"type": "string"},
                                "Back": {"type": "string"}
                            },
                            "required": ["Name", "Front", "Back"]
                        },
                        "minItems": 1
                    },
                    "Card templates; each generates one card per note."
                ),
                "css": {
                    "type": "string",
                    "description": "Optional CSS. For RTL languages include 'direction: rtl;' in .card"
                },
                "is_cloze": {
                    "type": "boolean",
                    "description": "Create a cloze note type (default: false)",
                    "default": False
                }
            },
            "required": ["model_name", "in_order_fields", "card_templates"]
        }
    ),
    Tool(
        name="model_styling",
        description="Get the CSS styling of a note type.",
        inputSchema={
            "type": "object",
            "properties": {
                "model_name": {
                    "type": "string",
                    "description": "Note type name"
                }
            },
            "required": ["model_name"]
        }
    ),
    Tool(
        name="update_model_styling",
        description="Replace the CSS styling of a note type.",
        inputSchema={
            "type": "object",
            "properties": {
                "model_name": {
                    "type": "string",
                    "description": "Note type name"
                },
                "css": {
                    "type": "string",
                    "description": "New CSS for the note type's cards"
                }
            },
            "required": ["model_name", "css"]
        }
    ),
    # Study tools
    Tool(
        name="get_due_cards",
        description="Find cards that are due for review.",
        inputSchema={
            "type": "object",
            "properties": {
                "deck_name": {
                    "type": "string",
                    "description": "Only cards from this deck (default: all decks)"
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum cards to return (1-50, default: 10)",
                    "minimum": 1,
                    "maximum": 50,
                    "default": 10
                }
            },
            "required": []
        }
    ),
    Tool(
        name="present_card",
        description=(
            "Show a card for review. Ask the question first; call again with "
            "show_answer=true to reveal the answer."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "card_id": {
                    "type": "integer",
                    "description": "Card ID from get_due_cards"
                },
                "show_answer": {
                    "type": "boolean",
                    "description": "Include the back of the card (default: false)",
                    "default": False
                }
            },
            "required": ["card_id"]
        }
    ),
    Tool(
        name="rate_card",
        description="Record an answer for a card: 1=Again, 2=Hard, 3=Good, 4=Easy.",
        inputSchema={
            "type": "object",
            "properties": {
                "card_id": {
                    "type": "integer",
                    "description": "Card ID"
                },
                "rating": {
                    "type": "integer",
                    "description": "1=Again, 2=Hard, 3=Good, 4=Easy",
                    "minimum": 1,
                    "maximum": 4
                }
            },
            "required": ["card_id", "rating"]
        }
    ),
    # Statistics tools
    Tool(
        name="deck_stats",
        description=(
            "Get statistics for a single deck: card counts, ease factor distribution "
            "and interval distribution. Bucket boundaries can be customized."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "deck": {
                    "type": "string",
                    "description": "Deck name (e.g., 'Japanese::JLPT N5')"
                },
                **BUCKET_PROPERTIES
            },
            "required": ["deck"]
        }
    ),
    Tool(
        name="collection_stats",
        description=(
            "Get statistics across all decks: aggregated card counts, ease and interval "
            "distributions, and a per-deck breakdown."
        ),
        inputSchema={
            "type": "object",
            "properties": BUCKET_PROPERTIES,
            "required": []
        }
    ),
    Tool(
        name="review_stats",
        description=(
            "Get review history for a deck over a period: reviews per day, retention "
            "by answer button, and the current study streak."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "deck": {
                    "type": "string",
                    "description": "Deck name to read reviews for"
                },
                "start_date": {
                    "type": "string",
                    "description": "Start date (YYYY-MM-DD)"
                },
                "end_date": {
                    "type": "string",
                    "description": "End date (YYYY-MM-DD, defaults to today)"
                }
            },
            "required": ["deck", "start_date"]
        }
    ),
]

TOOL_HANDLERS = {
    "list_decks": notes.list_decks,
    "create_deck": notes.create_deck,
    "list_note_types": notes.list_note_types,
    "get_tags": notes.get_tags,
    "find_notes": notes.find_notes,
    "notes_info": notes.notes_info,
    "add_note": notes.add_note,
    "add_notes": notes.add_notes,
    "update_note_fields": notes.update_note_fields,
    "delete_notes": notes.delete_notes,
    "sync": notes.sync,
    "add_tags": notes.add_tags,
    "remove_tags": notes.remove_tags,
    "replace_tags": notes.replace_tags,
    "clear_unused_tags": notes.clear_unused_tags,
    "create_model": models.create_model,
    "model_styling": models.model_styling,
    "update_model_styling": models.update_model_styling,
    "get_due_cards": study.get_due_cards,
    "present_card": study.present_card,
    "rate_card": study.rate_card,
    "deck_stats": analytics.deck_stats,
    "collection_stats": analytics.collection_stats,
    "review_stats": analytics.review_stats,
}

TOOL_HINTS = {
    "deck_stats": "Make sure Anki is running and the deck name is correct. Use list_decks to see available decks.",
    "collection_stats": "Make sure Anki is running with AnkiConnect installed.",
    "review_stats": "Make sure Anki is running and dates use YYYY-MM-DD. Use list_decks to verify the deck name.",
    "add_note": "Use list_note_types to check the note type and its field names.",
    "add_notes": "Use list_note_types to check the note types and their field names.",
    "update_note_fields": "Use notes_info to check the note's fields.",
    "delete_notes": "Make sure Anki is running and the note IDs are valid.",
    "add_tags": "Make sure the note IDs are valid. Use find_notes to look them up.",
    "remove_tags": "Make sure the note IDs or the query are valid.",
    "replace_tags": "Make sure the note IDs are valid. Use find_notes to look them up.",
    "create_model": "Make sure Anki is running and all parameters are valid.",
    "model_styling": "Make sure the note type name is correct. Use list_note_types to see available note types.",
    "update_model_styling": "Make sure the note type name is correct. Use list_note_types to see available note types.",
    "get_due_cards": "Make sure Anki is running. Use list_decks to verify the deck name.",
    "present_card": "Use get_due_cards to find cards to review.",
    "rate_card": "Make sure Anki is running and the card exists",
}


def _validation_issues(error: ValidationError) -> list[str]:
    issues = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue["loc"]) or "arguments"
        issues.append(f"{location}: {issue['msg']}")
    return issues


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return TOOLS


@app.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return error_response(f"Unknown tool: {name}")

    logger.info("Calling tool %s", name)

    try:
        result = await handler(anki, arguments or {})

    except ValidationError as e:
        issues = _validation_issues(e)
        logger.warning("Invalid parameters for %s: %s", name, issues)
        return error_response(
            f"Invalid parameters for {name}",
            hint="Fix the listed parameters and call the tool again.",
            issues=issues,
        )
    except ToolError as e:
        logger.warning("Tool %s failed: %s", name, e)
        return error_response(e, e.hint, **e.context)
    except AnkiConnectError as e:
        logger.error("Tool %s failed: %s", name, e)
        return error_response(e, TOOL_HINTS.get(name))
    except Exception as e:
        logger.exception("Unexpected error in tool %s", name)
        return error_response(e, TOOL_HINTS.get(name))

    return success_response(result)


# Resources

RESOURCES = [
    Resource(
        uri=AnyUrl("anki://decks"),
        name="deck-list",
        description="All decks with their IDs and nesting level.",
        mimeType=JSON_MIME,
    ),
    Resource(
        uri=AnyUrl("anki://tags"),
        name="tag-list",
        description="All tags, grouped by their '::' prefix.",
        mimeType=JSON_MIME,
    ),
    Resource(
        uri=AnyUrl("anki://note-types"),
        name="note-type-list",
        description="All note types and their fields.",
        mimeType=JSON_MIME,
    ),
]


async def deck_resource() -> dict:
    decks = await anki.deck_names_and_ids()
    result = [
        {"name": name, "id": deck_id, "level": name.count("::")}
        for name, deck_id in sorted(decks.items())
    ]
    return {"decks": result, "total": len(result)}


async def tag_resource() -> dict:
    tags = sorted(await anki.get_tags())
    grouped: dict[str, list[str]] = {}
    top_level = []
    for tag in tags:
        if "::" in tag:
            grouped.setdefault(tag.split("::")[0], []).append(tag)
        else:
            top_level.append(tag)
    return {
        "tags": tags,
        "total": len(tags),
        "hierarchy": {"topLevel": top_level, "grouped": grouped},
    }


async def note_type_resource() -> dict:
    return await notes.list_note_types(anki, {})


RESOURCE_READERS = {
    "anki://decks": deck_resource,
    "anki://tags": tag_resource,
    "anki://note-types": note_type_resource,
}


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return RESOURCES


@app.read_resource()
async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
    """Read a resource as JSON text."""
    reader = RESOURCE_READERS.get(str(uri).rstrip("/"))
    if reader is None:
        raise ValueError(f"Unknown resource: {uri}")

    try:
        payload = await reader()
    except AnkiConnectError as e:
        logger.error("Failed to read resource %s: %s", uri, e)
        payload = error_payload(e, "Make sure Anki is running with AnkiConnect installed.")

    return [ReadResourceContents(content=to_json(payload), mime_type=JSON_MIME)]


async def async_main():
    """Run the MCP server (async)."""
    logger.info("Starting ankiconnect-mcp (AnkiConnect at %s)", settings.url)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options()
            )
    finally:
        await anki.close()


def main():
    """Entry point for console script."""
    configure_logging(settings.log_level)
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
