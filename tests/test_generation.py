"""Tests for the server generation pipeline."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from mcpeverything.code_validation import check_source
from mcpeverything.config import Config
from mcpeverything.errors import (
    InvalidOutputPathError,
    RegenerationExhaustedError,
    RepositoryAnalysisError,
    ToolDiscoveryError,
)
from mcpeverything.generation import McpGenerationService, clean_implementation
from mcpeverything.github_analysis import RepositoryAnalysis
from mcpeverything.llm_client import MockLLMClient, _mock_server_source
from mcpeverything.prompts import PromptLibrary
from mcpeverything.run_logger import RunLogger
from mcpeverything.tools import McpTool

GITHUB_URL = "https://github.com/octocat/hello-world"
SERVER_NAME = "hello-world-mcp-server"

REJECTED = json.dumps({
    "isValid": False,
    "score": 35,
    "feedback": "Tool errors are swallowed",
    "issues": ["Raise ValueError for bad arguments"],
})
ACCEPTED = json.dumps({"isValid": True, "score": 88, "feedback": "Good", "issues": []})


@pytest.fixture
def run_logger(mock_config: Config) -> RunLogger:
    """Run logger that keeps everything in memory."""
    return RunLogger(mock_config.log_dir, run_name="octocat/hello-world", persist=False)


@pytest.fixture
def service(
    mock_config: Config,
    mock_llm: MockLLMClient,
    mock_analyzer: MagicMock,
    prompts: PromptLibrary,
    run_logger: RunLogger,
) -> McpGenerationService:
    """Generation service wired to the mock client and analyzer."""
    return McpGenerationService(
        mock_config, llm=mock_llm, analyzer=mock_analyzer, prompts=prompts, run_logger=run_logger
    )


class TestGenerateServer:
    """Tests for the whole pipeline."""

    def test_generates_valid_server(
        self, service: McpGenerationService, mock_llm: MockLLMClient, mock_config: Config, run_logger: RunLogger
    ) -> None:
        """Test that the mock pipeline writes a server that passes validation."""
        server = service.generate_server(GITHUB_URL, conversation_id="conv-1")

        assert server.server_name == SERVER_NAME
        assert server.server_dir == mock_config.output_dir / "conv-1"
        assert [tool.name for tool in server.metadata.tools] == ["search_repository"]
        assert server.metadata.quality.passed is True
        assert server.metadata.quality.regeneration_count == 0
        assert server.metadata.description == "A tiny greeting library"

        source = (server.server_dir / "src" / "hello_world_mcp_server" / "server.py").read_text()
        assert 'Server("hello-world-mcp-server")' in source
        assert (server.server_dir / "mcp-manifest.json").exists()

        assert len(mock_llm.calls_for("generation.code")) == 1
        assert len(mock_llm.calls_for("generation.judge")) == 1
        assert len(mock_llm.calls_for("generation.implementation")) == 1
        assert mock_llm.calls_for("generation.regenerate") == []

        stages = run_logger.log_data["stages"]
        assert [s["name"] for s in stages] == ["analysis", "discovery", "generation", "packaging"]
        assert {s["status"] for s in stages} == {"completed"}

    def test_default_conversation_id(self, service: McpGenerationService) -> None:
        """Test that the output folder name defaults to a timestamp."""
        server = service.generate_server(GITHUB_URL)

        assert server.conversation_id.startswith("gen-")
        assert server.server_dir.name == server.conversation_id

    def test_invalid_conversation_id(
        self, service: McpGenerationService, mock_llm: MockLLMClient, mock_analyzer: MagicMock
    ) -> None:
        """Test that a bad output folder name is rejected before any work."""
        with pytest.raises(InvalidOutputPathError):
            service.generate_server(GITHUB_URL, conversation_id="../elsewhere")

        mock_analyzer.analyze_repository.assert_not_called()
        assert mock_llm.calls == []

    def test_analysis_failure(
        self, service: McpGenerationService, mock_analyzer: MagicMock, run_logger: RunLogger
    ) -> None:
        """Test that analysis errors propagate and mark the stage failed."""
        mock_analyzer.analyze_repository.side_effect = RepositoryAnalysisError(
            "Repository analysis failed: Not found: /repos/octocat/missing"
        )

        with pytest.raises(RepositoryAnalysisError):
            service.generate_server("https://github.com/octocat/missing")

        assert run_logger.log_data["stages"][0]["status"] == "failed"
        assert run_logger.log_data["errors"][0]["stage"] == "analysis"

    def test_discovery_failure(
        self, service: McpGenerationService, mock_llm: MockLLMClient, run_logger: RunLogger
    ) -> None:
        """Test that failing discovery stops the pipeline."""
        mock_llm.fail_stages = {"discovery.comprehensive", "discovery.code", "discovery.readme"}

        with pytest.raises(ToolDiscoveryError, match="All discovery calls failed") as exc_info:
            service.generate_server(GITHUB_URL)

        assert exc_info.value.code == "AI_FAILURE"
        assert mock_llm.calls_for("generation") == []
        assert run_logger.log_data["stages"][-1]["status"] == "failed"

    def test_no_tools(self, service: McpGenerationService, mock_llm: MockLLMClient) -> None:
        """Test that discovery without surviving tools is an error."""
        mock_llm.stage_responses["discovery.judge"] = [json.dumps({
            "isValid": False,
            "quality": {"overallScore": 0.2},
            "feedback": "Too generic",
        })]

        with pytest.raises(ToolDiscoveryError) as exc_info:
            service.generate_server(GITHUB_URL)

        assert exc_info.value.code == "NO_TOOLS"


class TestCodeValidationLoop:
    """Tests for generate_server_code_with_validation."""

    def test_regenerates_after_rejection(
        self,
        service: McpGenerationService,
        mock_llm: MockLLMClient,
        sample_analysis: RepositoryAnalysis,
        sample_tool: McpTool,
    ) -> None:
        """Test that judge feedback reaches the regeneration prompt."""
        mock_llm.stage_responses["generation.judge"] = [REJECTED, ACCEPTED]

        code, attempts = service.generate_server_code_with_validation(sample_analysis, [sample_tool], SERVER_NAME)

        assert attempts == 2
        assert check_source(code, ["greet_user"]).passed
        regenerations = mock_llm.calls_for("generation.regenerate")
        assert len(regenerations) == 1
        assert "(attempt 2)" in regenerations[0].prompt
        assert "Tool errors are swallowed" in regenerations[0].prompt
        assert "- [code-quality] Raise ValueError for bad arguments" in regenerations[0].prompt

    def test_static_check_overrides_judge(
        self,
        service: McpGenerationService,
        mock_llm: MockLLMClient,
        sample_analysis: RepositoryAnalysis,
        sample_tool: McpTool,
    ) -> None:
        """Test that code failing the static check is regenerated even if the judge approves."""
        mock_llm.stage_responses["generation.code"] = ["import json\n\nprint(json.dumps({}))\n"]

        code, attempts = service.generate_server_code_with_validation(sample_analysis, [sample_tool], SERVER_NAME)

        assert attempts == 2
        assert "Missing import from the mcp package" in mock_llm.calls_for("generation.regenerate")[0].prompt
        assert "greet_user_implementation" in code

    def test_exhaustion(
        self,
        service: McpGenerationService,
        mock_llm: MockLLMClient,
        sample_analysis: RepositoryAnalysis,
        sample_tool: McpTool,
    ) -> None:
        """Test that generation gives up after the configured regenerations."""
        mock_llm.stage_responses["generation.judge"] = [REJECTED]

        with pytest.raises(RegenerationExhaustedError) as exc_info:
            service.generate_server_code_with_validation(sample_analysis, [sample_tool], SERVER_NAME)

        assert exc_info.value.attempts == 4
        assert len(mock_llm.calls_for("generation.code")) == 1
        assert len(mock_llm.calls_for("generation.regenerate")) == 3
        assert len(mock_llm.calls_for("generation.judge")) == 4

    def test_configured_budget(
        self,
        mock_config: Config,
        mock_llm: MockLLMClient,
        mock_analyzer: MagicMock,
        prompts: PromptLibrary,
        sample_analysis: RepositoryAnalysis,
        sample_tool: McpTool,
    ) -> None:
        """Test that max_regeneration_attempts bounds the loop."""
        mock_config.generation.max_regeneration_attempts = 0
        mock_llm.stage_responses["generation.judge"] = [REJECTED]
        service = McpGenerationService(mock_config, llm=mock_llm, analyzer=mock_analyzer, prompts=prompts)

        with pytest.raises(RegenerationExhaustedError) as exc_info:
            service.generate_server_code_with_validation(sample_analysis, [sample_tool], SERVER_NAME)

        assert exc_info.value.attempts == 1
        assert mock_llm.calls_for("generation.regenerate") == []

    def test_prompts_use_configured_token_limits(
        self,
        service: McpGenerationService,
        mock_llm: MockLLMClient,
        sample_analysis: RepositoryAnalysis,
        sample_tool: McpTool,
    ) -> None:
        """Test the max_tokens sent for code and judge calls."""
        service.generate_server_code_with_validation(sample_analysis, [sample_tool], SERVER_NAME)

        assert mock_llm.calls_for("generation.code")[0].max_tokens == 6000
        assert mock_llm.calls_for("generation.judge")[0].max_tokens == 1500
        assert "Model Context Protocol" in mock_llm.calls_for("generation.code")[0].system


class TestToolImplementations:
    """Tests for per-tool implementations and injection."""

    def test_generate_tool_implementations(
        self,
        service: McpGenerationService,
        mock_llm: MockLLMClient,
        sample_analysis: RepositoryAnalysis,
        sample_tool: McpTool,
    ) -> None:
        """Test one implementation call per tool."""
        implementations = service.generate_tool_implementations([sample_tool], sample_analysis)

        assert list(implementations) == ["greet_user"]
        assert implementations["greet_user"].startswith("try:")
        call = mock_llm.calls_for("generation.implementation")[0]
        assert call.max_tokens == 2000
        assert "**greet_user**" in call.prompt

    def test_combine_injects_missing_functions(self, service: McpGenerationService, sample_tool: McpTool) -> None:
        """Test that functions the module lacks are inserted before the server."""
        code = _mock_server_source(SERVER_NAME, ["list_items"])
        body = 'return [types.TextContent(type="text", text="hi")]'

        combined = service.combine_server_code_with_tools(
            code,
            {"greet_user": body, "list_items": "return []"},
            [McpTool("list_items", "List items", "data"), sample_tool],
        )

        assert combined.count("def list_items_implementation(") == 1
        injected = combined.index("async def greet_user_implementation(args: dict[str, Any])")
        assert injected < combined.index('server = Server("hello-world-mcp-server")')
        assert "    " + body in combined
        assert check_source(combined, ["list_items", "greet_user"]).tools_implemented

    def test_combine_without_server_line(self, service: McpGenerationService, sample_tool: McpTool) -> None:
        """Test that code without a server construction is left alone."""
        assert service.combine_server_code_with_tools("import mcp\n", {}, [sample_tool]) == "import mcp\n"


class TestCleanImplementation:
    """Tests for clean_implementation."""

    def test_strips_fence_and_def(self, sample_tool: McpTool) -> None:
        """Test that fences and a def line are removed and the body dedented."""
        text = (
            "```python\n"
            "async def greet_user_implementation(args):\n"
            "    name = args['name']\n"
            "    return [types.TextContent(type='text', text=name)]\n"
            "```"
        )

        assert clean_implementation(text, sample_tool) == (
            "name = args['name']\nreturn [types.TextContent(type='text', text=name)]"
        )

    def test_wraps_unguarded_body(self, sample_tool: McpTool) -> None:
        """Test that bodies without try or return are wrapped."""
        cleaned = clean_implementation("print(args)", sample_tool)

        assert cleaned.startswith("try:\n    print(args)\nexcept Exception as exc:\n")
        assert 'raise ValueError(f"Error in greet_user: {exc}") from exc' in cleaned

    def test_empty_uses_fallback(self, sample_tool: McpTool) -> None:
        """Test the fallback body for empty responses."""
        assert "Implementation for greet_user not found" in clean_implementation("", sample_tool)
