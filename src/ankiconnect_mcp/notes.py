"""Deck and note tools."""

import logging
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field, model_validator

from .anki_client import AnkiClient, AnkiConnectError, AnkiConnectionError
from .json_input import json_array, json_object, json_record, json_string_to_native
from .responses import ToolError


logger = logging.getLogger(__name__)

MAX_BATCH_NOTES = 10
MAX_DELETE_NOTES = 100
MAX_INFO_NOTES = 100

NoteIds = json_string_to_native(list[int], "notes", min_length=1, max_length=MAX_DELETE_NOTES)
Fields = json_string_to_native(dict[str, str], "fields", min_length=1)


class CreateDeckParams(BaseModel):
    deck_name: str = Field(min_length=1)


class FindNotesParams(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=100, ge=1)


class NotesInfoParams(BaseModel):
    notes: json_string_to_native(list[int], "notes", min_length=1, max_length=MAX_INFO_NOTES)


class NoteInput(BaseModel):
    deck_name: str = Field(min_length=1)
    model_name: str = Field(min_length=1)
    fields: Fields
    tags: json_array(str) = Field(default_factory=list)
    allow_duplicate: bool = False


class AddNoteParams(NoteInput):
    pass


class AddNotesParams(BaseModel):
    notes: json_array(NoteInput, min_length=1, max_length=MAX_BATCH_NOTES)
    stop_on_first_error: bool = False


class NoteUpdate(BaseModel):
    id: int
    fields: json_record("Field names to new values")


class UpdateNoteFieldsParams(BaseModel):
    note: json_object(NoteUpdate)


class DeleteNotesParams(BaseModel):
    notes: NoteIds
    confirm_deletion: bool = False


def _tag_string(value: str) -> str:
    tags = value.strip()
    if not tags:
        raise ValueError("Tags cannot be empty")
    return tags


def _single_tag(value: str) -> str:
    tag = value.strip()
    if not tag:
        raise ValueError("Tag cannot be empty")
    if len(tag.split()) > 1:
        raise ValueError("Tags cannot contain spaces. Use single tags only.")
    return tag


TagString = Annotated[str, AfterValidator(_tag_string)]
SingleTag = Annotated[str, AfterValidator(_single_tag)]


class AddTagsParams(BaseModel):
    notes: NoteIds
    tags: TagString


class RemoveTagsParams(BaseModel):
    notes: json_string_to_native(list[int], "notes", max_length=MAX_DELETE_NOTES) = Field(default_factory=list)
    query: str | None = None
    tags: TagString

    @model_validator(mode="after")
    def check_target(self) -> "RemoveTagsParams":
        if not self.notes and not self.query:
            raise ValueError("Provide either notes or query")
        return self


class ReplaceTagsParams(BaseModel):
    notes: NoteIds
    tag_to_replace: SingleTag
    replace_with_tag: SingleTag


async def list_decks(anki: AnkiClient, arguments: dict) -> dict:
    """List all decks with their IDs, sorted by name."""
    decks = await anki.deck_names_and_ids()
    result = [{"name": name, "id": deck_id} for name, deck_id in sorted(decks.items())]
    return {"decks": result, "total": len(result)}


async def create_deck(anki: AnkiClient, arguments: dict) -> dict:
    params = CreateDeckParams.model_validate(arguments)
    deck_id = await anki.create_deck(params.deck_name)
    logger.info("Created deck %s (%s)", params.deck_name, deck_id)
    return {"success": True, "deckId": deck_id, "deckName": params.deck_name}


async def list_note_types(anki: AnkiClient, arguments: dict) -> dict:
    """List note types and their fields."""
    models = await anki.model_names()
    note_types = []
    for model in sorted(models):
        fields = await anki.model_field_names(model)
        note_types.append({"name": model, "fields": fields})
    return {"noteTypes": note_types, "total": len(note_types)}


async def get_tags(anki: AnkiClient, arguments: dict) -> dict:
    tags = sorted(await anki.get_tags())
    return {"tags": tags, "total": len(tags)}


async def find_notes(anki: AnkiClient, arguments: dict) -> dict:
    params = FindNotesParams.model_validate(arguments)
    note_ids = await anki.find_notes(params.query)
    return {
        "query": params.query,
        "noteIds": note_ids[:params.limit],
        "total": len(note_ids),
        "truncated": len(note_ids) > params.limit,
    }


async def notes_info(anki: AnkiClient, arguments: dict) -> dict:
    params = NotesInfoParams.model_validate(arguments)
    notes = await anki.notes_info(params.notes)
    # notesInfo returns an empty object for unknown IDs
    found = [note for note in notes if note and note.get("noteId")]
    return {
        "notes": found,
        "found": len(found),
        "notFound": len(params.notes) - len(found),
    }


async def _add_one(anki: AnkiClient, note: NoteInput) -> int | None:
    # createDeck is a no-op for existing decks
    await anki.create_deck(note.deck_name)
    return await anki.add_note(
        note.deck_name,
        note.model_name,
        note.fields,
        note.tags,
        allow_duplicate=note.allow_duplicate,
    )


async def add_note(anki: AnkiClient, arguments: dict) -> dict:
    """Add a single note, creating its deck if needed."""
    params = AddNoteParams.model_validate(arguments)
    note_id = await _add_one(anki, params)

    if note_id is None:
        raise ToolError(
            f"Duplicate note not added (already exists in '{params.deck_name}')",
            hint="Set allow_duplicate to true to add it anyway.",
            deckName=params.deck_name,
        )

    logger.info("Added note %s to %s", note_id, params.deck_name)
    return {
        "success": True,
        "noteId": note_id,
        "deckName": params.deck_name,
        "modelName": params.model_name,
        "tags": params.tags,
    }


async def add_notes(anki: AnkiClient, arguments: dict) -> dict:
    """
    Add up to 10 notes, reporting the outcome of each.

    Notes are added one at a time so a failure only affects its own note.
    Connection failures abort the batch.
    """
    params = AddNotesParams.model_validate(arguments)
    results = []

    for index, note in enumerate(params.notes):
        entry = {
            "index": index,
            "success": False,
            "noteId": None,
            "deckName": note.deck_name,
            "modelName": note.model_name,
        }
        try:
            note_id = await _add_one(anki, note)
        except AnkiConnectionError:
            raise
        except AnkiConnectError as e:
            entry["error"] = e.message
        else:
            if note_id is None:
                entry["error"] = "duplicate note"
            else:
                entry["success"] = True
                entry["noteId"] = note_id

        results.append(entry)
        if not entry["success"] and params.stop_on_first_error:
            break

    added = sum(1 for entry in results if entry["success"])
    logger.info("Batch add: %d of %d notes added", added, len(params.notes))
    return {
        "added": added,
        "failed": len(results) - added,
        "skipped": len(params.notes) - len(results),
        "total": len(params.notes),
        "results": results,
    }


async def update_note_fields(anki: AnkiClient, arguments: dict) -> dict:
    """Update fields of an existing note after checking they exist."""
    params = UpdateNoteFieldsParams.model_validate(arguments)
    note = params.note

    infos = await anki.notes_info([note.id])
    info = infos[0] if infos and infos[0] else None
    if not info:
        raise ToolError(
            f"Note {note.id} not found",
            hint="Use find_notes to look up note IDs.",
            noteId=note.id,
        )

    existing = list(info.get("fields", {}))
    unknown = [name for name in note.fields if name not in existing]
    if unknown:
        raise ToolError(
            f"Unknown field(s) for note {note.id}: {', '.join(unknown)}",
            hint=f"Valid fields for {info.get('modelName')}: {', '.join(existing)}",
            noteId=note.id,
        )

    await anki.update_note_fields(note.id, note.fields)
    logger.info("Updated note %s fields %s", note.id, list(note.fields))
    return {"success": True, "noteId": note.id, "updatedFields": list(note.fields)}


async def delete_notes(anki: AnkiClient, arguments: dict) -> dict:
    """Delete notes; requires confirm_deletion to be true."""
    params = DeleteNotesParams.model_validate(arguments)

    if not params.confirm_deletion:
        raise ToolError(
            "Deletion not confirmed",
            hint="Set confirm_deletion to true to permanently delete these notes and all their cards.",
            requestedNotes=params.notes,
            warning="This action cannot be undone!",
        )

    infos = await anki.notes_info(params.notes)
    valid = [info for info in infos if info and info.get("noteId")]
    valid_ids = [info["noteId"] for info in valid]

    if not valid_ids:
        logger.warning("No valid notes found to delete")
        return {
            "success": True,
            "deletedCount": 0,
            "notFoundCount": len(params.notes),
            "message": "No notes were deleted (none of the provided IDs were valid)",
        }

    cards_deleted = sum(len(info.get("cards", [])) for info in valid)
    await anki.delete_notes(valid_ids)

    logger.info("Deleted %d note(s) and %d card(s)", len(valid_ids), cards_deleted)
    return {
        "success": True,
        "deletedCount": len(valid_ids),
        "deletedNoteIds": valid_ids,
        "cardsDeleted": cards_deleted,
        "notFoundCount": len(params.notes) - len(valid_ids),
    }


async def add_tags(anki: AnkiClient, arguments: dict) -> dict:
    """Add space-separated tags to notes."""
    params = AddTagsParams.model_validate(arguments)
    tags = params.tags.split()

    await anki.add_tags(params.notes, params.tags)

    logger.info("Added tags %s to %d note(s)", tags, len(params.notes))
    return {
        "success": True,
        "message": f"Successfully added {len(tags)} tag(s) to {len(params.notes)} note(s)",
        "notesAffected": len(params.notes),
        "tagsAdded": tags,
    }


async def remove_tags(anki: AnkiClient, arguments: dict) -> dict:
    """Remove tags from the given notes or from every note matching a query."""
    params = RemoveTagsParams.model_validate(arguments)
    tags = params.tags.split()

    note_ids = params.notes
    if params.query:
        note_ids = await anki.find_notes(params.query)
        if not note_ids:
            return {
                "success": True,
                "message": f"No notes found matching query: {params.query}",
                "notesAffected": 0,
                "tagsRemoved": [],
            }

    await anki.remove_tags(note_ids, params.tags)

    logger.info("Removed tags %s from %d note(s)", tags, len(note_ids))
    return {
        "success": True,
        "message": f"Successfully removed {len(tags)} tag(s) from {len(note_ids)} note(s)",
        "notesAffected": len(note_ids),
        "tagsRemoved": tags,
    }


async def replace_tags(anki: AnkiClient, arguments: dict) -> dict:
    params = ReplaceTagsParams.model_validate(arguments)

    await anki.replace_tags(params.notes, params.tag_to_replace, params.replace_with_tag)

    logger.info("Replaced tag %s with %s", params.tag_to_replace, params.replace_with_tag)
    return {
        "success": True,
        "message": (
            f'Successfully replaced "{params.tag_to_replace}" with '
            f'"{params.replace_with_tag}" in {len(params.notes)} note(s)'
        ),
        "notesAffected": len(params.notes),
        "tagToReplace": params.tag_to_replace,
        "replaceWithTag": params.replace_with_tag,
    }


async def clear_unused_tags(anki: AnkiClient, arguments: dict) -> dict:
    await anki.clear_unused_tags()
    return {"success": True, "message": "Successfully cleared unused tags from the collection"}


async def sync(anki: AnkiClient, arguments: dict) -> dict:
    await anki.sync()
    return {"success": True, "message": "Anki collection synchronized with AnkiWeb"}
