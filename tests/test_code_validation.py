"""Tests for static checks and judge parsing of generated server code."""

from __future__ import annotations

import pytest

from mcpeverything.code_validation import (
    JudgeVerdict,
    StaticCheckResult,
    ValidationIssue,
    check_source,
    extract_python_code,
    parse_judge_response,
    precheck,
)
from mcpeverything.llm_client import _mock_server_source

TOOLS = ["greet_user", "list_items"]


@pytest.fixture
def server_code() -> str:
    """A complete, valid generated server."""
    return _mock_server_source("demo-mcp-server", TOOLS)


class TestCheckSource:
    """Tests for check_source."""

    def test_valid_server(self, server_code: str) -> None:
        """Test that a complete server passes."""
        result = check_source(server_code, TOOLS)

        assert result.passed, result.report()
        assert result.mcp_compliant is True
        assert result.warnings == []

    def test_empty_code(self) -> None:
        """Test that empty code fails with every tool missing."""
        result = check_source("   \n", TOOLS)

        assert result.compiles is False
        assert result.errors == ["Generated code is empty"]
        assert result.missing_tools == TOOLS

    def test_syntax_error(self) -> None:
        """Test that syntax errors are reported with a line number."""
        result = check_source("import mcp\n\ndef broken(:\n    pass\n", TOOLS)

        assert result.compiles is False
        assert result.errors[0].startswith("Line 3:")
        assert result.passed is False

    def test_missing_handlers(self, server_code: str) -> None:
        """Test that a server without call_tool or stdio run is not compliant."""
        code = server_code.replace("@server.call_tool()", "").replace("stdio_server()", "open_streams()")

        result = check_source(code, TOOLS)

        assert result.mcp_compliant is False
        assert "Missing @server.call_tool() handler" in result.errors
        assert "Server is never run over stdio (stdio_server() and server.run(...))" in result.errors

    def test_missing_mcp_import(self) -> None:
        """Test that code not using the mcp package is rejected."""
        result = check_source("import asyncio\n\nasyncio.run(main())\n", [])

        assert "Missing import from the mcp package" in result.errors
        assert "Missing Server(...) construction" in result.errors

    def test_missing_tool_implementation(self, server_code: str) -> None:
        """Test that every tool needs an implementation function."""
        result = check_source(server_code, TOOLS + ["delete_item"])

        assert result.missing_tools == ["delete_item"]
        assert result.tools_implemented is False
        assert "Missing implementation for tool: delete_item" in result.report()

    def test_placeholder_comment(self, server_code: str) -> None:
        """Test that TODO markers are flagged with their line."""
        code = server_code.replace(
            "    return [types.TextContent(type=\"text\", text=payload)]",
            "    # TODO: query the real data source\n    return [types.TextContent(type=\"text\", text=payload)]",
            1,
        )

        result = check_source(code, TOOLS)

        assert result.passed is False
        assert any("placeholder marker 'TODO'" in p for p in result.placeholders)

    def test_implement_is_not_a_placeholder(self, server_code: str) -> None:
        """Test that the word implementation alone is not flagged."""
        result = check_source(server_code + "\n# The implementation functions are above.\n", TOOLS)

        assert result.placeholders == []

    def test_stub_function(self, server_code: str) -> None:
        """Test that pass and ellipsis bodies are flagged."""
        code = server_code + "\n\nasync def helper(args):\n    \"\"\"Help.\"\"\"\n    ...\n"

        result = check_source(code, TOOLS)

        assert "Function helper has no implementation" in result.placeholders

    def test_not_implemented(self, server_code: str) -> None:
        """Test that functions raising NotImplementedError are flagged."""
        code = server_code + "\n\ndef helper(args):\n    if args:\n        return 1\n    raise NotImplementedError()\n"

        result = check_source(code, TOOLS)

        assert "Function helper raises NotImplementedError" in result.placeholders

    def test_warnings(self, server_code: str) -> None:
        """Test warnings for a non-import first line and a missing main guard."""
        code = "x = 1\n" + server_code.split('if __name__ == "__main__":')[0]

        result = check_source(code, TOOLS)

        assert 'Missing `if __name__ == "__main__":` entry point' in result.warnings
        assert any(w.startswith("Code does not start with imports") for w in result.warnings)

    def test_unregistered_tool_warning(self) -> None:
        """Test that an implementation never named in list_tools is a warning."""
        code = _mock_server_source("demo-mcp-server", ["greet_user"])
        code = code.replace('"greet_user"', '"greet"')

        result = check_source(code, ["greet_user"])

        assert result.passed is True
        assert "Tool greet_user is not registered by name in list_tools" in result.warnings


class TestExtractPythonCode:
    """Tests for extract_python_code."""

    def test_strips_fences(self) -> None:
        """Test that fenced code is unwrapped."""
        text = "Sure!\n```python\nimport mcp\nprint(mcp)\n```\nHope this helps."

        assert extract_python_code(text) == "import mcp\nprint(mcp)\n"

    def test_strips_leading_prose(self) -> None:
        """Test that prose before the first import is dropped."""
        text = "Here is the server you asked for.\n\nimport asyncio\nfrom mcp.server import Server\n"

        assert extract_python_code(text) == "import asyncio\nfrom mcp.server import Server\n"

    def test_empty(self) -> None:
        """Test that empty input stays empty."""
        assert extract_python_code("") == ""


class TestPrecheck:
    """Tests for precheck."""

    def test_facts(self, server_code: str) -> None:
        """Test the facts reported to the judge."""
        facts = precheck("\n" + server_code)

        assert facts["first_line"] == "import asyncio"
        assert facts["starts_with_import"] is True
        assert facts["has_run"] is True
        assert facts["has_placeholders"] is False

    def test_placeholders(self) -> None:
        """Test placeholder detection including NotImplementedError."""
        assert precheck("x = 1  # FIXME")["has_placeholders"] is True
        assert precheck("raise NotImplementedError")["has_placeholders"] is True
        assert precheck("explain the code")["starts_with_import"] is False


class TestParseJudgeResponse:
    """Tests for parse_judge_response."""

    def test_json_valid(self, server_code: str) -> None:
        """Test a valid JSON verdict on code that passed the static check."""
        static = check_source(server_code, TOOLS)

        verdict = parse_judge_response('{"isValid": true, "score": 92, "feedback": "Solid"}', static)

        assert verdict.is_valid is True
        assert verdict.score == 92
        assert verdict.feedback == "Solid"
        assert verdict.issues == []

    def test_static_failure_overrides_judge(self) -> None:
        """Test that a judge approval cannot pass code that failed the static check."""
        static = check_source("import mcp\n", ["greet_user"])

        verdict = parse_judge_response('{"isValid": true, "score": 95}', static)

        assert verdict.is_valid is False
        assert verdict.feedback == "No feedback provided"
        categories = {issue.category for issue in verdict.issues}
        assert {"mcp-protocol", "tool-implementation"} <= categories

    def test_json_issues(self, server_code: str) -> None:
        """Test that judge issues as strings and objects are collected."""
        static = check_source(server_code, TOOLS)
        response = (
            '```json\n{"valid": false, "score": "40", "feedback": "Incomplete", "issues": '
            '["Handle empty queries", {"category": "python", "message": "Unused import", '
            '"suggestion": "Remove it"}]}\n```'
        )

        verdict = parse_judge_response(response, static)

        assert verdict.is_valid is False
        assert verdict.score == 40
        assert [issue.message for issue in verdict.issues] == ["Handle empty queries", "Unused import"]
        assert verdict.issues[1].suggestion == "Remove it"

    def test_text_format(self, server_code: str) -> None:
        """Test the VALID/SCORE/FEEDBACK/ISSUES fallback."""
        static = check_source(server_code, TOOLS)
        response = (
            "VALID: false\n"
            "SCORE: 55\n"
            "FEEDBACK: list_items ignores its arguments\n"
            "ISSUES:\n- Use the limit argument\n- None\n"
        )

        verdict = parse_judge_response(response, static)

        assert verdict.is_valid is False
        assert verdict.score == 55
        assert verdict.feedback == "list_items ignores its arguments"
        assert [issue.message for issue in verdict.issues] == ["Use the limit argument"]

    def test_text_format_valid(self, server_code: str) -> None:
        """Test an approval in the text format."""
        static = check_source(server_code, TOOLS)

        verdict = parse_judge_response("VALID: [true]\nSCORE: [88]\nFEEDBACK: Fine", static)

        assert verdict.is_valid is True
        assert verdict.score == 88


class TestJudgeVerdict:
    """Tests for JudgeVerdict."""

    def test_regeneration_feedback(self) -> None:
        """Test that feedback lists the judge text and every issue."""
        verdict = JudgeVerdict(
            is_valid=False,
            score=30,
            feedback="Several problems",
            issues=[
                ValidationIssue("error", "mcp-protocol", "Missing @server.call_tool() handler", "Add it"),
                ValidationIssue("warning", "code-quality", "Long function"),
            ],
        )

        assert verdict.regeneration_feedback() == (
            "Several problems\n"
            "- [mcp-protocol] Missing @server.call_tool() handler (Add it)\n"
            "- [code-quality] Long function"
        )

    def test_report(self) -> None:
        """Test the static report joins errors, placeholders and missing tools."""
        result = StaticCheckResult(
            compiles=True,
            errors=["Missing Server(...) construction"],
            placeholders=["Line 4: placeholder marker 'TODO'"],
            missing_tools=["greet_user"],
        )

        assert result.report().splitlines() == [
            "Missing Server(...) construction",
            "Line 4: placeholder marker 'TODO'",
            "Missing implementation for tool: greet_user",
        ]
