"""Tests for tool definitions."""

from __future__ import annotations

import pytest

from mcpeverything.tools import (
    McpTool,
    ToolQuality,
    input_schema_errors,
    is_valid_suggestion,
    tools_to_json_list,
)


class TestMcpTool:
    """Tests for McpTool."""

    def test_from_dict_fills_defaults(self) -> None:
        """Test that a bare suggestion gets an empty schema and default hints."""
        tool = McpTool.from_dict({"name": "list_items", "description": "List items", "category": "data"})

        assert tool.input_schema == {"type": "object", "properties": {}, "required": []}
        assert tool.implementation_hints.primary_action == "List items"
        assert tool.implementation_hints.complexity == "simple"
        assert tool.quality.overall_score == 0.5

    def test_from_dict_reads_camel_case(self) -> None:
        """Test that model output in camelCase is mapped onto the dataclasses."""
        tool = McpTool.from_dict({
            "name": "fetch_issue",
            "description": "Fetch an issue",
            "category": "api",
            "inputSchema": {"type": "object", "properties": {"id": {"type": "integer"}}, "required": ["id"]},
            "implementationHints": {
                "primaryAction": "GET /issues/{id}",
                "requiredData": "issue id",
                "complexity": "enormous",
                "outputFormat": "json",
                "examples": [{"input": {"id": 1}, "expectedOutput": "{}"}],
            },
            "quality": {"usefulness": 2.0, "specificity": "bad", "overallScore": 0.6},
        })

        assert tool.required == ["id"]
        assert tool.implementation_hints.required_data == ["issue id"]
        assert tool.implementation_hints.complexity == "simple"
        assert tool.implementation_hints.output_format == "json"
        assert tool.implementation_hints.examples[0].expected_output == "{}"
        assert tool.quality.usefulness == 1.0
        assert tool.quality.specificity == 0.5
        assert tool.quality.overall_score == 0.6

    def test_overall_score_defaults_to_mean(self) -> None:
        """Test that a missing overall score is the mean of the four scores."""
        quality = ToolQuality.from_dict(
            {"usefulness": 1.0, "specificity": 0.6, "implementability": 0.8, "uniqueness": 0.6}
        )

        assert quality.overall_score == pytest.approx(0.75)

    def test_failed_quality(self) -> None:
        """Test the quality assigned when the judge fails."""
        quality = ToolQuality.failed("Judge unavailable")

        assert quality.overall_score == 0.1
        assert quality.usefulness == 0.1
        assert quality.reasoning == "Judge unavailable"

    def test_to_dict_uses_camel_case(self, sample_tool: McpTool) -> None:
        """Test serialization keys."""
        data = sample_tool.to_dict()

        assert data["inputSchema"]["required"] == ["name"]
        assert data["implementationHints"]["primaryAction"] == "Format a greeting"
        assert data["quality"]["overallScore"] == 0.85

    def test_schema_accessors(self, sample_tool: McpTool) -> None:
        """Test properties, required and function name."""
        assert set(sample_tool.properties) == {"name", "language"}
        assert sample_tool.required == ["name"]
        assert sample_tool.function_name == "greet_user_implementation"

    def test_accessors_tolerate_bad_schema(self) -> None:
        """Test accessors on a schema with malformed fields."""
        tool = McpTool("odd_tool", "Odd", "utility", input_schema={"properties": [], "required": None})

        assert tool.properties == {}
        assert tool.required == []


class TestToolHelpers:
    """Tests for module-level tool helpers."""

    def test_valid_suggestion(self) -> None:
        """Test that a snake_case name with description and category is valid."""
        assert is_valid_suggestion({"name": "search_code", "description": "Search", "category": "search"})

    def test_invalid_suggestions(self) -> None:
        """Test rejection of bad names and missing fields."""
        assert not is_valid_suggestion({"name": "searchCode", "description": "x", "category": "search"})
        assert not is_valid_suggestion({"name": "search-code", "description": "x", "category": "search"})
        assert not is_valid_suggestion({"name": "search_v2", "description": "x", "category": "search"})
        assert not is_valid_suggestion({"name": "search", "category": "search"})
        assert not is_valid_suggestion({"name": "search", "description": "x"})
        assert not is_valid_suggestion(["search"])

    def test_suggestion_with_bad_schema(self) -> None:
        """Test that a suggestion carrying a malformed input schema is rejected."""
        suggestion = {
            "name": "search_code",
            "description": "Search",
            "category": "search",
            "inputSchema": {"type": "strng", "properties": []},
        }

        assert not is_valid_suggestion(suggestion)

    def test_suggestion_with_good_schema(self) -> None:
        """Test that a well-formed object schema is accepted."""
        suggestion = {
            "name": "search_code",
            "description": "Search",
            "category": "search",
            "input_schema": {
                "type": "object",
                "properties": {"query": {"type": "string"}},
                "required": ["query"],
            },
        }

        assert is_valid_suggestion(suggestion)


class TestInputSchemaErrors:
    """Tests for input_schema_errors."""

    def test_valid_schemas(self, sample_tool: McpTool) -> None:
        """Test that object schemas with declared required names pass."""
        assert input_schema_errors(sample_tool.input_schema) == []
        assert input_schema_errors({"type": "object", "properties": {}, "required": []}) == []
        assert input_schema_errors({"properties": {"id": {"type": "integer"}}}) == []

    def test_not_a_dict(self) -> None:
        """Test that non-object schemas are rejected."""
        assert input_schema_errors(["query"]) == ["input schema must be an object"]

    def test_unknown_type(self) -> None:
        """Test that JSON Schema meta-validation catches unknown types."""
        errors = input_schema_errors({"type": "strng", "properties": []})

        assert len(errors) == 1
        assert errors[0].startswith("invalid JSON Schema")

    def test_bad_property_schema(self) -> None:
        """Test that nested property schemas are checked."""
        errors = input_schema_errors({"type": "object", "properties": {"q": {"type": "text"}}})

        assert errors[0].startswith("invalid JSON Schema at properties/q/type")

    def test_root_must_be_object(self) -> None:
        """Test that MCP tool schemas must describe an object."""
        assert input_schema_errors({"type": "string"}) == ['root type must be "object", got \'string\'']

    def test_required_must_be_declared(self) -> None:
        """Test that required names must exist in properties."""
        errors = input_schema_errors({
            "type": "object",
            "properties": {"query": {"type": "string"}},
            "required": ["query", "limit"],
        })

        assert errors == ["required property 'limit' is not in properties"]

    def test_tools_to_json_list(self, sample_tool: McpTool) -> None:
        """Test that quality is only included on request."""
        assert "quality" not in tools_to_json_list([sample_tool])[0]
        assert tools_to_json_list([sample_tool], include_quality=True)[0]["quality"]["overallScore"] == 0.85
