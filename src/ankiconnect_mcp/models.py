"""Note type (model) tools: create note types and manage their styling."""

import logging
import re

from pydantic import BaseModel, ConfigDict, Field

from .anki_client import AnkiClient, AnkiConnectError
from .json_input import json_array
from .responses import ToolError


logger = logging.getLogger(__name__)

FIELD_REFERENCE = re.compile(r"\{\{([^}]+)\}\}")

# Template references that are not note fields
SPECIAL_FIELDS = {"FrontSide", "Tags", "Type", "Deck", "Subdeck", "Card", "CardFlag"}


class CardTemplate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="Name", min_length=1)
    front: str = Field(alias="Front", min_length=1)
    back: str = Field(alias="Back", min_length=1)


class CreateModelParams(BaseModel):
    model_name: str = Field(min_length=1)
    in_order_fields: json_array(str, min_length=1)
    card_templates: json_array(CardTemplate, min_length=1)
    css: str | None = None
    is_cloze: bool = False


class ModelStylingParams(BaseModel):
    model_name: str = Field(min_length=1)


class UpdateModelStylingParams(BaseModel):
    model_name: str = Field(min_length=1)
    css: str = Field(min_length=1)


def referenced_fields(template: str) -> list[str]:
    """
    Note field names referenced by a card template.

    Section markers ({{#F}}, {{^F}}, {{/F}}) and filters ({{text:F}}) are
    reduced to the field name. Cloze references and Anki's built-in
    references such as {{FrontSide}} are skipped.
    """
    names = []
    for match in FIELD_REFERENCE.finditer(template):
        reference = match.group(1).strip().lstrip("#^/").strip()
        if reference.startswith("cloze:"):
            continue
        name = reference.rsplit(":", 1)[-1].strip()
        if name and name not in SPECIAL_FIELDS and name not in names:
            names.append(name)
    return names


def template_warnings(fields: list[str], templates: list[CardTemplate]) -> list[str]:
    known = set(fields)
    warnings = []
    for template in templates:
        for name in referenced_fields(f"{template.front} {template.back}"):
            if name not in known:
                warnings.append(
                    f'Template "{template.name}" references field "{{{{{name}}}}}" '
                    "which is not in in_order_fields"
                )
    return warnings


def css_info(css: str) -> dict:
    return {
        "hasCardStyling": ".card" in css,
        "hasFrontStyling": ".front" in css,
        "hasBackStyling": ".back" in css,
        "hasClozeStyling": ".cloze" in css,
    }


async def create_model(anki: AnkiClient, arguments: dict) -> dict:
    """
    Create a note type with fields, card templates and optional CSS.

    Templates referencing unknown fields are created anyway and reported
    as warnings.
    """
    params = CreateModelParams.model_validate(arguments)
    warnings = template_warnings(params.in_order_fields, params.card_templates)

    try:
        model = await anki.create_model(
            params.model_name,
            params.in_order_fields,
            [template.model_dump(by_alias=True) for template in params.card_templates],
            css=params.css,
            is_cloze=params.is_cloze,
        )
    except AnkiConnectError as e:
        lowered = e.message.lower()
        if "already exists" in lowered or "duplicate" in lowered:
            raise ToolError(
                e.message,
                hint="A note type with this name already exists. Use a different name "
                     "or list_note_types to see existing note types.",
                modelName=params.model_name,
            ) from e
        raise

    logger.info("Created note type %s with %d fields", params.model_name, len(params.in_order_fields))

    message = (
        f'Successfully created model "{params.model_name}" with '
        f"{len(params.in_order_fields)} fields and {len(params.card_templates)} template(s)"
    )
    response = {
        "success": True,
        "modelName": params.model_name,
        "modelId": (model or {}).get("id"),
        "fields": params.in_order_fields,
        "templateCount": len(params.card_templates),
        "hasCss": bool(params.css),
        "isCloze": params.is_cloze,
        "message": message,
    }
    if warnings:
        response["warnings"] = warnings
        response["message"] += ". Note: Some warnings were detected (see warnings field)."
    return response


async def model_styling(anki: AnkiClient, arguments: dict) -> dict:
    params = ModelStylingParams.model_validate(arguments)

    styling = await anki.model_styling(params.model_name)
    css = (styling or {}).get("css")
    if not css:
        raise ToolError(
            f'Model "{params.model_name}" not found or has no styling',
            hint="Use list_note_types to see available note types.",
            modelName=params.model_name,
        )

    return {
        "success": True,
        "modelName": params.model_name,
        "css": css,
        "cssInfo": {"length": len(css), **css_info(css)},
        "message": f'Retrieved CSS styling for model "{params.model_name}"',
    }


async def update_model_styling(anki: AnkiClient, arguments: dict) -> dict:
    """Replace a note type's CSS, reporting the size change when the old CSS is readable."""
    params = UpdateModelStylingParams.model_validate(arguments)

    old_css = None
    try:
        old_css = (await anki.model_styling(params.model_name) or {}).get("css")
    except AnkiConnectError as e:
        # The update below reports a missing model
        logger.warning("Could not fetch old styling for %s: %s", params.model_name, e)

    await anki.update_model_styling(params.model_name, params.css)
    logger.info("Updated styling for note type %s", params.model_name)

    css = params.css
    response = {
        "success": True,
        "modelName": params.model_name,
        "cssLength": len(css),
        "cssInfo": {
            "hasRtlSupport": "direction: rtl" in css or "direction:rtl" in css,
            **css_info(css),
        },
        "message": f'Successfully updated CSS styling for model "{params.model_name}"',
    }
    if old_css is not None:
        response["oldCssLength"] = len(old_css)
        response["cssLengthChange"] = len(css) - len(old_css)
    return response
