"""Tests for note type tools."""

import json

import pytest
from pydantic import ValidationError

from ankiconnect_mcp import models
from ankiconnect_mcp.anki_client import AnkiConnectError
from ankiconnect_mcp.responses import ToolError


RTL_CSS = ".card { direction: rtl; font-size: 24px; }"


def model_arguments(**overrides) -> dict:
    arguments = {
        "model_name": "Hebrew Vocab",
        "in_order_fields": ["Word", "Meaning"],
        "card_templates": [
            {"Name": "Card 1", "Front": "{{Word}}", "Back": "{{FrontSide}}<hr id=answer>{{Meaning}}"},
        ],
    }
    arguments.update(overrides)
    return arguments


class TestReferencedFields:
    def test_plain_and_special(self):
        assert models.referenced_fields("{{FrontSide}}<hr>{{ Back }}") == ["Back"]

    def test_sections_and_filters(self):
        template = "{{#Hint}}{{hint:Hint}}{{/Hint}} {{text:Front}} {{cloze:Text}}"
        assert models.referenced_fields(template) == ["Hint", "Front"]


class TestCreateModel:
    async def test_create(self, anki_client, mock_state):
        result = await models.create_model(anki_client, model_arguments(css=RTL_CSS))

        assert result["success"] is True
        assert result["modelId"] is not None
        assert result["fields"] == ["Word", "Meaning"]
        assert result["templateCount"] == 1
        assert result["hasCss"] is True
        assert result["isCloze"] is False
        assert "warnings" not in result
        assert mock_state.models["Hebrew Vocab"] == ["Word", "Meaning"]
        assert mock_state.css["Hebrew Vocab"] == RTL_CSS

    async def test_templates_sent_with_anki_keys(self, anki_client, mock_state):
        await models.create_model(anki_client, model_arguments())

        templates = mock_state.requests[-1]["params"]["cardTemplates"]
        assert list(templates[0]) == ["Name", "Front", "Back"]

    async def test_json_string_parameters(self, anki_client, mock_state):
        arguments = model_arguments()
        arguments["in_order_fields"] = json.dumps(arguments["in_order_fields"])
        arguments["card_templates"] = json.dumps(arguments["card_templates"])

        result = await models.create_model(anki_client, arguments)

        assert result["fields"] == ["Word", "Meaning"]

    async def test_unknown_field_warning(self, anki_client):
        """Templates may reference missing fields; the model is still created."""
        arguments = model_arguments(card_templates=[
            {"Name": "Card 1", "Front": "{{Word}} {{Audio}}", "Back": "{{Meaning}}"},
        ])

        result = await models.create_model(anki_client, arguments)

        assert result["success"] is True
        assert result["warnings"] == [
            'Template "Card 1" references field "{{Audio}}" which is not in in_order_fields'
        ]
        assert result["message"].endswith("(see warnings field).")

    async def test_duplicate_name(self, anki_client):
        with pytest.raises(ToolError, match="already exists") as exc_info:
            await models.create_model(anki_client, model_arguments(model_name="Basic"))

        assert "different name" in exc_info.value.hint
        assert exc_info.value.context == {"modelName": "Basic"}

    async def test_no_templates(self, anki_client):
        with pytest.raises(ValidationError):
            await models.create_model(anki_client, model_arguments(card_templates=[]))

    async def test_template_missing_back(self, anki_client):
        with pytest.raises(ValidationError):
            await models.create_model(anki_client, model_arguments(card_templates=[{"Name": "C", "Front": "x"}]))


class TestModelStyling:
    async def test_styling(self, anki_client):
        result = await models.model_styling(anki_client, {"model_name": "Cloze"})

        assert result["css"].startswith(".card")
        assert result["cssInfo"]["hasCardStyling"] is True
        assert result["cssInfo"]["hasClozeStyling"] is True
        assert result["cssInfo"]["length"] == len(result["css"])

    async def test_no_css(self, anki_client, mock_state):
        mock_state.css["Basic"] = ""

        with pytest.raises(ToolError, match="has no styling"):
            await models.model_styling(anki_client, {"model_name": "Basic"})

    async def test_unknown_model(self, anki_client):
        with pytest.raises(AnkiConnectError, match="model was not found"):
            await models.model_styling(anki_client, {"model_name": "Nope"})


class TestUpdateModelStyling:
    async def test_update(self, anki_client, mock_state):
        old_length = len(mock_state.css["Basic"])

        result = await models.update_model_styling(anki_client, {"model_name": "Basic", "css": RTL_CSS})

        assert mock_state.css["Basic"] == RTL_CSS
        assert result["cssLength"] == len(RTL_CSS)
        assert result["cssInfo"]["hasRtlSupport"] is True
        assert result["oldCssLength"] == old_length
        assert result["cssLengthChange"] == len(RTL_CSS) - old_length

    async def test_unknown_model(self, anki_client, caplog):
        """A failed read of the old CSS is logged; the update error propagates."""
        with pytest.raises(AnkiConnectError, match="model was not found"):
            await models.update_model_styling(anki_client, {"model_name": "Nope", "css": RTL_CSS})

        assert "Could not fetch old styling for Nope" in caplog.text

    async def test_empty_css(self, anki_client):
        with pytest.raises(ValidationError):
            await models.update_model_styling(anki_client, {"model_name": "Basic", "css": ""})
