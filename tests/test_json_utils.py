"""Tests for model response parsing helpers."""

from __future__ import annotations

from mcpeverything.json_utils import (
    as_str_list,
    extract_json_from_response,
    repair_json,
    sanitize_error,
    truncate,
)


class TestExtractJson:
    """Tests for extract_json_from_response."""

    def test_plain_json(self) -> None:
        """Test a response that is pure JSON."""
        data, error = extract_json_from_response('{"tools": []}')

        assert data == {"tools": []}
        assert error == ""

    def test_fenced_json(self) -> None:
        """Test JSON inside a markdown code block."""
        content = 'Here are the tools:\n```json\n{"tools": [{"name": "a"}]}\n```\nDone.'

        data, _ = extract_json_from_response(content)

        assert data == {"tools": [{"name": "a"}]}

    def test_balanced_object_with_braces_in_strings(self) -> None:
        """Test that braces inside strings do not end the object early."""
        content = 'Result: {"code": "def f(): return {}", "nested": {"ok": true}} trailing text'

        data, _ = extract_json_from_response(content)

        assert data == {"code": "def f(): return {}", "nested": {"ok": True}}

    def test_repairs_trailing_commas_and_bare_keys(self) -> None:
        """Test that common model JSON mistakes are repaired."""
        content = "Sure! {tools: [1, 2,], reasoning: 'short',}"

        data, _ = extract_json_from_response(content)

        assert data == {"tools": [1, 2], "reasoning": "short"}

    def test_empty_response(self) -> None:
        """Test empty content."""
        data, error = extract_json_from_response("   ")

        assert data is None
        assert error == "Empty response content"

    def test_no_object(self) -> None:
        """Test content without any JSON object."""
        data, error = extract_json_from_response("I could not find any tools.")

        assert data is None
        assert error == "No JSON object found in response"

    def test_top_level_list_is_not_an_object(self) -> None:
        """Test that a bare JSON list is not returned as an object."""
        data, _ = extract_json_from_response("[1, 2, 3]")

        assert data is None

    def test_unrepairable(self) -> None:
        """Test that hopeless JSON reports an error."""
        data, error = extract_json_from_response('{"a": [1, 2}')

        assert data is None
        assert error


class TestRepairJson:
    """Tests for repair_json."""

    def test_trailing_comma(self) -> None:
        """Test trailing commas are removed."""
        assert repair_json('{"a": 1,}') == '{"a": 1}'

    def test_single_quoted_values(self) -> None:
        """Test single-quoted values become double-quoted."""
        assert repair_json("{\"a\": 'b'}") == '{"a": "b"}'


class TestSanitizeError:
    """Tests for sanitize_error."""

    def test_masks_bearer_token(self) -> None:
        """Test bearer tokens are masked."""
        assert sanitize_error("Request rejected: Bearer abc.def-123") == "Request rejected: Bearer [REDACTED]"

    def test_masks_anthropic_key(self) -> None:
        """Test Anthropic keys are masked."""
        result = sanitize_error("bad key sk-ant-api03-secretvalue")

        assert "secretvalue" not in result
        assert "sk-ant-[REDACTED]" in result

    def test_masks_github_token(self) -> None:
        """Test GitHub tokens are masked."""
        assert sanitize_error("token ghp_abcdef123456") == "token ghp_[REDACTED]"

    def test_leaves_plain_messages(self) -> None:
        """Test messages without secrets are unchanged."""
        assert sanitize_error("Connection refused") == "Connection refused"


class TestSmallHelpers:
    """Tests for truncate and as_str_list."""

    def test_truncate(self) -> None:
        """Test truncation adds an ellipsis only when needed."""
        assert truncate("abcdef", 3) == "abc..."
        assert truncate("abc", 3) == "abc"

    def test_as_str_list(self) -> None:
        """Test coercion of model values to string lists."""
        assert as_str_list(None) == []
        assert as_str_list("one") == ["one"]
        assert as_str_list([1, None, "two"]) == ["1", "two"]
        assert as_str_list(3) == ["3"]
