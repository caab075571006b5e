"""Orchestration of MCP server generation.

The pipeline runs in five steps:

1. Analyze the GitHub repository
2. Discover tools with the judge/regenerate loop
3. Generate the server module, checked statically and by a judge model,
   regenerating with the failure feedback until it passes
4. Generate per-tool implementations and inject any the module lacks
5. Package the supporting files, write them out and validate the result
"""

from __future__ import annotations

import json
import logging
import re
import textwrap
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from .code_validation import (
    FENCED_CODE_RE,
    JudgeVerdict,
    StaticCheckResult,
    check_source,
    extract_python_code,
    parse_judge_response,
    precheck,
)
from .config import Config
from .env_vars import detect_required_env_vars
from .errors import MCPEverythingError, ToolDiscoveryError
from .github_analysis import GitHubClient, RepositoryAnalysis, RepositoryAnalyzer, summarize
from .llm_client import LLMClient, create_llm_client
from .packaging import (
    GeneratedServer,
    ServerMetadata,
    ServerPackager,
    check_conversation_id,
    describe,
    module_name_for,
    server_name_for,
    validate_generated_server,
)
from .prompts import PromptLibrary, get_prompt_library
from .refinement import RefinementLoop, Verdict
from .run_logger import RunLogger
from .tool_discovery import ToolDiscoveryService
from .tools import McpTool, tools_to_json_list

logger = logging.getLogger(__name__)

_DEF_LINE_RE = re.compile(r"^\s*(?:async\s+)?def\s+\w+\s*\(.*?\)[^:\n]*:[ \t]*\n", re.DOTALL)
_SERVER_LINE_RE = re.compile(r"^server\s*=\s*Server\(", re.MULTILINE)


def example_implementation(tool: McpTool) -> str:
    """Reference implementation shown to the model in the server prompt."""
    return f'''async def {tool.function_name}(args: dict[str, Any]) -> list[types.TextContent]:
    try:
        result = {{"tool": "{tool.name}", "arguments": args}}
        return [types.TextContent(type="text", text=json.dumps(result))]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Error in {tool.name}: {{exc}}") from exc'''


def fallback_implementation(tool: McpTool) -> str:
    return (
        "try:\n"
        f'    return [types.TextContent(type="text", text="Implementation for {tool.name} not found")]\n'
        "except (TypeError, ValueError) as exc:\n"
        f'    raise ValueError(f"Error in {tool.name}: {{exc}}") from exc'
    )


def clean_implementation(text: str, tool: McpTool) -> str:
    """Normalize a model-written function body.

    Strips fences and any ``def`` line the model added, dedents, and wraps
    bodies that neither handle errors nor return in a try/except.
    """
    body = text or ""
    match = FENCED_CODE_RE.search(body)
    if match:
        body = match.group(1)

    body = _DEF_LINE_RE.sub("", body.strip("\n"), count=1)
    body = textwrap.dedent(body).strip()
    if not body:
        return fallback_implementation(tool)

    if "try:" not in body and "return" not in body:
        body = (
            "try:\n"
            f"{textwrap.indent(body, '    ')}\n"
            "except Exception as exc:\n"
            f'    raise ValueError(f"Error in {tool.name}: {{exc}}") from exc'
        )
    return body


class McpGenerationService:
    """Generates a complete MCP server project from a GitHub URL."""

    def __init__(
        self,
        config: Config,
        llm: Optional[LLMClient] = None,
        analyzer: Optional[RepositoryAnalyzer] = None,
        discovery: Optional[ToolDiscoveryService] = None,
        prompts: Optional[PromptLibrary] = None,
        packager: Optional[ServerPackager] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        """Initialize the service.

        Args:
            config: Configuration settings.
            llm: Optional model client; created from config when omitted.
            analyzer: Optional repository analyzer.
            discovery: Optional tool discovery service.
            prompts: Optional prompt library.
            packager: Optional server packager.
            run_logger: Optional run logger shared by every step.
        """
        self.config = config
        self.run_logger = run_logger
        self.prompts = prompts or get_prompt_library(config.config_dir)
        self.llm = llm or create_llm_client(config, run_logger=run_logger)
        self.analyzer = analyzer or RepositoryAnalyzer(
            GitHubClient(
                token=config.github_token,
                api_url=config.github_api_url,
                timeout=config.github_timeout,
            )
        )
        self.discovery = discovery or ToolDiscoveryService(
            self.llm,
            config=config.generation.discovery,
            prompts=self.prompts,
            run_logger=run_logger,
        )
        self.packager = packager or ServerPackager(config.output_dir)

    @property
    def max_regeneration_attempts(self) -> int:
        return self.config.generation.max_regeneration_attempts

    @contextmanager
    def _stage(self, stage: str, detail: str = "") -> Iterator[None]:
        if self.run_logger:
            self.run_logger.log_stage_start(stage, detail)
        try:
            yield
        except MCPEverythingError as e:
            if self.run_logger:
                self.run_logger.log_error(str(e), stage=e.stage)
                self.run_logger.log_stage_end(stage, success=False, summary=str(e))
            raise
        if self.run_logger:
            self.run_logger.log_stage_end(stage)

    def generate_server(self, github_url: str, conversation_id: Optional[str] = None) -> GeneratedServer:
        """Run the whole pipeline for a repository.

        Args:
            github_url: Repository URL.
            conversation_id: Name of the output folder; defaults to ``gen-<ms>``.

        Returns:
            The generated server, already written to disk.

        Raises:
            RepositoryAnalysisError: If the repository cannot be analyzed.
            ToolDiscoveryError: If discovery fails or finds no tools.
            RegenerationExhaustedError: If no generated module passes validation.
            LLMClientError: If a model call fails.
            InvalidOutputPathError: If ``conversation_id`` is not a plain folder name.
        """
        if conversation_id is not None:
            check_conversation_id(conversation_id)
        started = time.monotonic()
        logger.info(f"Starting MCP server generation for: {github_url}")

        with self._stage("analysis", github_url):
            analysis = self.analyzer.analyze_repository(github_url)
        logger.info("Repository analysis completed")

        with self._stage("discovery"):
            discovery = self.discovery.discover_tools(analysis)
            if not discovery.success:
                raise ToolDiscoveryError(discovery.error or "Tool discovery failed")
            if not discovery.tools:
                raise ToolDiscoveryError(
                    f"No tools met the quality threshold for {analysis.metadata.full_name}",
                    code="NO_TOOLS",
                )
        tools = discovery.tools
        logger.info(f"Discovered {len(tools)} tools")

        server_name = server_name_for(analysis.metadata.name)
        with self._stage("generation", server_name):
            code, attempts = self.generate_server_code_with_validation(analysis, tools, server_name)
            implementations = self.generate_tool_implementations(tools, analysis)
            code = self.combine_server_code_with_tools(code, implementations, tools)
        logger.info("Server code generation completed")

        with self._stage("packaging"):
            conversation_id = conversation_id or f"gen-{int(time.time() * 1000)}"
            generated_at = datetime.now(timezone.utc).isoformat()
            env_detection = detect_required_env_vars(tools)
            files = self.packager.package_files(
                server_name,
                code,
                analysis,
                tools,
                github_url,
                env_vars=env_detection.detected_vars,
                generated_at=generated_at,
            )
            server_dir = self.packager.write(conversation_id, files)
            quality = validate_generated_server(
                server_dir, tools, module_name_for(server_name), regeneration_count=attempts - 1
            )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"MCP server generation completed in {elapsed_ms}ms")

        return GeneratedServer(
            server_name=server_name,
            conversation_id=conversation_id,
            server_dir=server_dir,
            files=files,
            metadata=ServerMetadata(
                github_url=github_url,
                description=describe(analysis),
                generated_at=generated_at,
                tools=tools,
                quality=quality,
                env_vars=env_detection.detected_vars,
            ),
        )

    def generate_server_code_with_validation(
        self,
        analysis: RepositoryAnalysis,
        tools: list[McpTool],
        server_name: Optional[str] = None,
    ) -> tuple[str, int]:
        """Generate the server module and regenerate until it validates.

        Args:
            analysis: Repository analysis.
            tools: Tools the module must implement.
            server_name: Name passed to ``Server(...)``.

        Returns:
            Tuple of (code, attempts made).

        Raises:
            RegenerationExhaustedError: If the code still fails after the
                last regeneration.
        """
        server_name = server_name or server_name_for(analysis.metadata.name)

        loop = RefinementLoop(
            stage="generation.code",
            generate=lambda: self.generate_server_code(analysis, tools, server_name),
            validate=lambda code: self._validate_code(code, tools),
            regenerate=lambda code, verdict, attempt: self.regenerate_server_code(
                code, verdict.feedback, analysis, tools, server_name, attempt
            ),
            max_regenerations=self.max_regeneration_attempts,
            raise_on_exhaustion=True,
            run_logger=self.run_logger,
        )
        outcome = loop.run()
        return outcome.value, outcome.attempts

    def _validate_code(self, code: str, tools: list[McpTool]) -> Verdict:
        static = check_source(code, [tool.name for tool in tools])
        if not static.passed:
            logger.debug(f"Static check failed:\n{static.report()}")
        judgment = self.judge_code_quality(code, tools, static)
        return Verdict(
            passed=judgment.is_valid,
            feedback=judgment.regeneration_feedback() or judgment.feedback,
            score=judgment.score,
            details=judgment,
        )

    def _prompt_vars(self, analysis: RepositoryAnalysis, tools: list[McpTool], server_name: str) -> dict:
        return {
            "summary": summarize(analysis),
            "tools_json": json.dumps(tools_to_json_list(tools), indent=2),
            "tools": tools,
            "server_name": server_name,
        }

    def generate_server_code(self, analysis: RepositoryAnalysis, tools: list[McpTool], server_name: str) -> str:
        """First attempt at the server module."""
        prompt = self.prompts.render(
            "server_code",
            example_implementation=example_implementation(tools[0]),
            **self._prompt_vars(analysis, tools, server_name),
        )
        response = self.llm.complete(
            prompt,
            system=self.prompts.render("server_system"),
            stage="generation.code",
            max_tokens=self.config.generation.model.code_max_tokens,
        )
        return extract_python_code(response)

    def regenerate_server_code(
        self,
        previous_code: str,
        feedback: str,
        analysis: RepositoryAnalysis,
        tools: list[McpTool],
        server_name: str,
        attempt: int,
    ) -> str:
        """Rewrite the server module from the rejected code and its feedback."""
        prompt = self.prompts.render(
            "server_regenerate",
            attempt=attempt,
            feedback=feedback or "The previous code did not pass validation",
            previous_code=previous_code,
            **self._prompt_vars(analysis, tools, server_name),
        )
        response = self.llm.complete(
            prompt,
            system=self.prompts.render("server_system"),
            stage="generation.regenerate",
            max_tokens=self.config.generation.model.code_max_tokens,
        )
        return extract_python_code(response)

    def judge_code_quality(self, code: str, tools: list[McpTool], static: StaticCheckResult) -> JudgeVerdict:
        """Ask the judge model for a verdict and combine it with the static check."""
        prompt = self.prompts.render(
            "code_judge_user",
            code=code,
            static=static,
            tool_names=[tool.name for tool in tools],
            **precheck(code),
        )
        response = self.llm.complete(
            prompt,
            system=self.prompts.render("code_judge_system"),
            stage="generation.judge",
            max_tokens=self.config.generation.model.judge_max_tokens,
        )
        verdict = parse_judge_response(response, static)
        logger.info(f"Judge score: {verdict.score}, valid: {verdict.is_valid}")
        return verdict

    def generate_tool_implementations(
        self, tools: list[McpTool], analysis: RepositoryAnalysis
    ) -> dict[str, str]:
        """Generate a function body for each tool.

        Returns:
            Mapping of tool name to function body.
        """
        implementations: dict[str, str] = {}
        system = self.prompts.render("implementation_system")
        summary = summarize(analysis)

        for tool in tools:
            logger.info(f"Generating implementation for tool: {tool.name}")
            response = self.llm.complete(
                self.prompts.render("implementation_user", tool=tool, summary=summary),
                system=system,
                stage="generation.implementation",
                max_tokens=self.config.generation.model.implementation_max_tokens,
            )
            implementations[tool.name] = clean_implementation(response, tool)

        return implementations

    def combine_server_code_with_tools(
        self,
        code: str,
        implementations: dict[str, str],
        tools: list[McpTool],
    ) -> str:
        """Inject every tool function the module does not define.

        Missing functions are inserted before the ``server = Server(`` line;
        code without that line is returned unchanged.
        """
        combined = code
        for tool in tools:
            if f"def {tool.function_name}(" in combined:
                continue

            match = _SERVER_LINE_RE.search(combined)
            if match is None:
                logger.warning(f"Cannot inject {tool.function_name}: no server construction found")
                continue

            body = implementations.get(tool.name) or fallback_implementation(tool)
            function = (
                f"async def {tool.function_name}(args: dict[str, Any]) -> list[types.TextContent]:\n"
                f"{textwrap.indent(body, '    ')}\n\n\n"
            )
            logger.info(f"Injecting missing implementation for tool: {tool.name}")
            combined = combined[: match.start()] + function + combined[match.start():]

        return combined
