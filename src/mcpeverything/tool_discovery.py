"""AI-driven discovery of MCP tools for a repository.

Candidates come from four prompts (comprehensive synthesis, a code
snippet, the README and detected API patterns). Each candidate is scored
by a judge call and regenerated with the judge's feedback until it clears
the quality threshold or the iteration budget runs out.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .config import DiscoveryConfig
from .errors import LLMClientError
from .github_analysis import ApiPattern, RepositoryAnalysis, summarize
from .json_utils import as_str_list, extract_json_from_response
from .prompts import PromptLibrary, get_prompt_library
from .refinement import RefinementLoop, Verdict
from .tools import TOOL_CATEGORIES, McpTool, ToolQuality, input_schema_errors, is_valid_suggestion

if TYPE_CHECKING:
    from .llm_client import LLMClient
    from .run_logger import RunLogger

logger = logging.getLogger(__name__)

WEB_FRAMEWORKS = {"react", "vue", "angular", "express", "fastify", "next", "next.js"}
MOBILE_FRAMEWORKS = {"react-native", "flutter", "ionic"}
ML_FRAMEWORKS = {"tensorflow", "pytorch", "scikit-learn"}

NON_CODE_LANGUAGES = {"HTML", "CSS", "SQL", "Dockerfile"}

MAX_HEURISTIC_TOOLS = 5

_NAMED_TOOL_RE = re.compile(
    r'"name"\s*:\s*"([a-z_]+)"(?:\s*,\s*"description"\s*:\s*"([^"]*)")?'
)
_SNAKE_CASE_RE = re.compile(r"\b([a-z]+(?:_[a-z]+)+)\b")
# snake_case words that show up in model prose but are never tool names
_HEURISTIC_STOP_WORDS = {
    "snake_case", "input_schema", "implementation_hints", "overall_score",
    "primary_action", "required_data", "output_format", "error_handling",
}

_CATEGORY_KEYWORDS = [
    ("search", ("search", "find", "query", "lookup")),
    ("api", ("api", "endpoint", "request", "call", "webhook")),
    ("file", ("file", "read", "write", "path")),
    ("test", ("test",)),
    ("documentation", ("doc", "readme", "guide")),
    ("build", ("build", "deploy", "compile", "release")),
    ("analysis", ("analyze", "analysis", "inspect", "audit", "lint")),
    ("transform", ("convert", "transform", "format", "parse")),
    ("data", ("data", "fetch", "get", "list", "export")),
]


@dataclass
class RepositoryContext:
    """Compact description of a repository for discovery prompts."""

    primary_language: str
    frameworks: list[str] = field(default_factory=list)
    repository_type: str = "library"  # library, application, tool, service, other
    complexity: str = "simple"  # simple, medium, complex
    domain: str = "general"


@dataclass
class QualityJudgment:
    """A judge's verdict on a tool."""

    tool_name: str
    is_valid: bool
    quality: ToolQuality
    feedback: str = ""
    suggested_improvements: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict, tool_name: str) -> QualityJudgment:
        return cls(
            tool_name=str(data.get("toolName") or tool_name),
            is_valid=bool(data.get("isValid")),
            quality=ToolQuality.from_dict(data["quality"]),
            feedback=str(data.get("feedback", "")),
            suggested_improvements=as_str_list(data.get("suggestedImprovements")),
        )

    @classmethod
    def failed(cls, tool_name: str, reasoning: str) -> QualityJudgment:
        """Judgment used when the judge call or its output is unusable."""
        return cls(
            tool_name=tool_name or "unknown",
            is_valid=False,
            quality=ToolQuality.failed(reasoning),
            feedback="Could not evaluate tool quality",
            suggested_improvements=[],
        )


@dataclass
class DiscoveryMetadata:
    """How a discovery run went."""

    repository_context: RepositoryContext
    discovery_method: str = "ai_inference"
    ai_reasoning: str = ""
    processing_time_ms: int = 0
    iteration_count: int = 0
    quality_threshold: float = 0.7
    candidates_considered: int = 0
    sources_failed: list[str] = field(default_factory=list)


@dataclass
class DiscoveryResult:
    """Tools that survived discovery."""

    success: bool
    tools: list[McpTool]
    metadata: DiscoveryMetadata
    error: Optional[str] = None


def infer_domain(language: str, frameworks: list[str]) -> str:
    """Guess the domain (web, mobile, ml, data, general) of a repository."""
    lowered = {f.lower() for f in frameworks}
    if lowered & WEB_FRAMEWORKS:
        return "web"
    if lowered & MOBILE_FRAMEWORKS:
        return "mobile"
    if lowered & ML_FRAMEWORKS:
        return "ml"
    if language.lower() == "python":
        return "data"
    return "general"


def build_repository_context(analysis: RepositoryAnalysis) -> RepositoryContext:
    """Infer repository type, complexity and domain from an analysis."""
    language = analysis.metadata.language or "unknown"
    frameworks = list(analysis.tech_stack.frameworks)

    if analysis.features.has_api:
        repository_type = "service"
    elif analysis.features.has_cli:
        repository_type = "tool"
    elif frameworks:
        repository_type = "application"
    else:
        repository_type = "library"

    file_count = len(analysis.source_files)
    if file_count > 50:
        complexity = "complex"
    elif file_count > 10:
        complexity = "medium"
    else:
        complexity = "simple"

    return RepositoryContext(
        primary_language=language,
        frameworks=frameworks,
        repository_type=repository_type,
        complexity=complexity,
        domain=infer_domain(language, frameworks),
    )


def guess_category(name: str) -> str:
    """Category for a tool known only by name."""
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return category
    return "utility"


def heuristic_tool_suggestions(text: str) -> list[dict]:
    """Recover tool suggestions from a response that is not valid JSON.

    Prefers ``"name": "..."`` pairs (with the description that follows, if
    any); otherwise falls back to snake_case words in the text.
    """
    suggestions: list[dict] = []
    seen: set[str] = set()

    for name, description in _NAMED_TOOL_RE.findall(text):
        if name in seen:
            continue
        seen.add(name)
        suggestions.append({
            "name": name,
            "description": description or name.replace("_", " ").capitalize(),
            "category": guess_category(name),
        })

    if not suggestions:
        for name in _SNAKE_CASE_RE.findall(text):
            if name in seen or name in _HEURISTIC_STOP_WORDS:
                continue
            seen.add(name)
            suggestions.append({
                "name": name,
                "description": name.replace("_", " ").capitalize(),
                "category": guess_category(name),
            })

    return suggestions[:MAX_HEURISTIC_TOOLS]


def parse_tool_suggestions(text: str, source: str) -> list[dict]:
    """Parse a tool-suggestion response, never raising on bad JSON.

    Args:
        text: Raw model response.
        source: Name of the discovery method, for logging.

    Returns:
        List of suggestion dicts (possibly empty).
    """
    data, error = extract_json_from_response(text)
    if data is not None and isinstance(data.get("tools"), list):
        return [item for item in data["tools"] if isinstance(item, dict)]

    if data is not None:
        logger.warning(f"Invalid tools structure in {source}")
    else:
        logger.warning(f"JSON parsing failed in {source}: {error}")

    suggestions = heuristic_tool_suggestions(text or "")
    if suggestions:
        logger.info(f"Recovered {len(suggestions)} tool name(s) from {source} by keyword extraction")
    return suggestions


def _to_tool(suggestion: dict) -> McpTool:
    tool = McpTool.from_dict(suggestion)
    if tool.category not in TOOL_CATEGORIES:
        tool.category = guess_category(tool.name)
    return tool


def deduplicate(tools: list[McpTool]) -> list[McpTool]:
    """Collapse tools with the same name, keeping the higher-scoring one."""
    best: dict[str, McpTool] = {}
    for tool in tools:
        current = best.get(tool.name)
        if current is None or tool.quality.overall_score > current.quality.overall_score:
            best[tool.name] = tool
    return list(best.values())


def filter_by_category(tools: list[McpTool], config: DiscoveryConfig) -> list[McpTool]:
    """Sort by overall score and keep at most ``max_tools_per_category`` per category.

    Ties prefer the configured categories, then the complexity the config
    is biased towards.
    """
    preferred = config.preferred_categories

    def bias(tool: McpTool) -> int:
        complexity = tool.implementation_hints.complexity
        if config.complexity_bias == "simple":
            return {"simple": 2, "medium": 1}.get(complexity, 0)
        if config.complexity_bias == "complex":
            return {"complex": 2, "medium": 1}.get(complexity, 0)
        return 0

    ordered = sorted(
        tools,
        key=lambda t: (t.quality.overall_score, t.category in preferred, bias(t)),
        reverse=True,
    )

    counts: dict[str, int] = {}
    filtered = []
    for tool in ordered:
        count = counts.get(tool.category, 0)
        if count < config.max_tools_per_category:
            filtered.append(tool)
            counts[tool.category] = count + 1
    return filtered


class ToolDiscoveryService:
    """Discovers and validates MCP tools with a judge/regenerate loop."""

    def __init__(
        self,
        llm: LLMClient,
        config: Optional[DiscoveryConfig] = None,
        prompts: Optional[PromptLibrary] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        self.llm = llm
        self.config = config or DiscoveryConfig()
        self.prompts = prompts or get_prompt_library()
        self.run_logger = run_logger
        self._failed_sources: list[str] = []
        self._attempted_sources = 0

    def discover_tools(
        self,
        analysis: RepositoryAnalysis,
        config: Optional[DiscoveryConfig] = None,
    ) -> DiscoveryResult:
        """Discover tools for an analyzed repository.

        Args:
            analysis: Repository analysis.
            config: Overrides the service's discovery config.

        Returns:
            DiscoveryResult. ``success`` is False only when every model call
            that could produce candidates failed.
        """
        config = config or self.config
        started = time.monotonic()
        context = build_repository_context(analysis)
        self._failed_sources = []
        self._attempted_sources = 0
        logger.info(f"Starting tool discovery for {analysis.metadata.full_name}")

        candidates: list[McpTool] = []
        candidates.extend(self.generate_tools_from_analysis(analysis, context, config))
        code = self._representative_code(analysis)
        if code:
            candidates.extend(self.generate_tools_from_code(code, context))
        candidates.extend(self.extract_tools_from_readme(analysis.readme.content or "", context))
        candidates.extend(self.map_api_to_tools(analysis.api_patterns, context))

        candidates = deduplicate(candidates)
        all_failed = bool(self._failed_sources) and len(self._failed_sources) == self._attempted_sources

        def metadata(iterations: int, reasoning: str) -> DiscoveryMetadata:
            return DiscoveryMetadata(
                repository_context=context,
                ai_reasoning=reasoning,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                iteration_count=iterations,
                quality_threshold=config.quality_threshold,
                candidates_considered=len(candidates),
                sources_failed=list(self._failed_sources),
            )

        if not candidates and all_failed:
            error = f"All discovery calls failed ({', '.join(self._failed_sources)})"
            logger.error(f"Tool discovery failed: {error}")
            return DiscoveryResult(False, [], metadata(0, "Discovery failed due to error"), error)

        validated: list[McpTool] = []
        iteration_count = 0
        for candidate in candidates:
            if iteration_count >= config.max_iterations:
                break
            tool = self.validate_and_improve(
                candidate,
                context,
                config.quality_threshold,
                config.max_iterations - iteration_count,
            )
            if tool is not None and tool.quality.overall_score >= config.quality_threshold:
                validated.append(tool)
            iteration_count += 1

        final_tools = filter_by_category(deduplicate(validated), config)
        result_metadata = metadata(iteration_count, "Used multi-method discovery with AI validation")
        if self.run_logger is not None:
            self.run_logger.log_tools(len(final_tools))

        logger.info(
            f"Discovered {len(final_tools)} high-quality tools from {len(candidates)} candidates "
            f"in {result_metadata.processing_time_ms}ms"
        )
        return DiscoveryResult(True, final_tools, result_metadata)

    def _representative_code(self, analysis: RepositoryAnalysis) -> str:
        for source in analysis.source_files:
            if source.language and source.language not in NON_CODE_LANGUAGES:
                return source.content
        return ""

    def _suggest(self, stage: str, prompt: str, source: str) -> list[McpTool]:
        self._attempted_sources += 1
        try:
            response = self.llm.complete(prompt, stage=stage)
        except LLMClientError as e:
            logger.error(f"{source} failed: {e}")
            self._failed_sources.append(source)
            return []

        tools = []
        for suggestion in parse_tool_suggestions(response, source):
            if is_valid_suggestion(suggestion):
                tools.append(_to_tool(suggestion))
            else:
                schema = suggestion.get("inputSchema", suggestion.get("input_schema"))
                reason = "; ".join(input_schema_errors(schema)) if schema is not None else ""
                logger.debug(
                    f"Dropping invalid suggestion from {source}: {suggestion.get('name')!r}"
                    + (f" ({reason})" if reason else "")
                )
        if not tools:
            logger.warning(f"No valid tools returned from {source}")
        return tools

    def generate_tools_from_code(self, code: str, context: RepositoryContext) -> list[McpTool]:
        """Suggest tools from a source code snippet."""
        prompt = self.prompts.render("discovery_code", code=code, context=context)
        return self._suggest("discovery.code", prompt, "code analysis")

    def extract_tools_from_readme(self, readme: str, context: RepositoryContext) -> list[McpTool]:
        """Suggest tools from README content."""
        if not readme or not readme.strip():
            return []
        prompt = self.prompts.render("discovery_readme", readme=readme, context=context)
        return self._suggest("discovery.readme", prompt, "README analysis")

    def map_api_to_tools(
        self, api_patterns: list[ApiPattern], context: RepositoryContext
    ) -> list[McpTool]:
        """Suggest tools wrapping detected API patterns."""
        if not api_patterns:
            return []
        prompt = self.prompts.render("discovery_api", patterns=api_patterns, context=context)
        return self._suggest("discovery.api", prompt, "API mapping")

    def generate_tools_from_analysis(
        self,
        analysis: RepositoryAnalysis,
        context: RepositoryContext,
        config: Optional[DiscoveryConfig] = None,
    ) -> list[McpTool]:
        """Suggest tools from the whole repository analysis."""
        config = config or self.config
        prompt = self.prompts.render(
            "discovery_comprehensive",
            metadata=analysis.metadata,
            context=context,
            features=analysis.features.features[:8],
            file_count=len(analysis.source_files),
            summary=summarize(analysis),
            preferred_categories=config.preferred_categories,
        )
        return self._suggest("discovery.comprehensive", prompt, "comprehensive analysis")

    def judge_tool_quality(self, tool: McpTool, context: RepositoryContext) -> QualityJudgment:
        """Score a tool with a judge call.

        Any failure yields an invalid judgment with every score at 0.1.
        """
        prompt = self.prompts.render(
            "discovery_judge",
            tool=tool,
            input_schema=json.dumps(tool.input_schema),
            context=context,
        )
        try:
            response = self.llm.complete(prompt, stage="discovery.judge")
        except LLMClientError as e:
            logger.error(f"Quality judgment failed: {e}")
            return QualityJudgment.failed(tool.name, "Failed to evaluate due to error")

        data, error = extract_json_from_response(response)
        if (
            data is None
            or not isinstance(data.get("quality"), dict)
            or not isinstance(data.get("isValid"), bool)
        ):
            logger.warning(f"Invalid judgment structure for {tool.name}: {error or 'missing fields'}")
            return QualityJudgment.failed(tool.name, "JSON parsing failed in quality judgment")

        return QualityJudgment.from_dict(data, tool.name)

    def regenerate_tool(
        self,
        tool: McpTool,
        judgment: QualityJudgment,
        context: RepositoryContext,
        attempt: int,
        feedback: Optional[str] = None,
    ) -> McpTool:
        """Ask for an improved tool; keep the original if that fails."""
        prompt = self.prompts.render(
            "discovery_regenerate",
            tool=tool,
            feedback=feedback or judgment.feedback or judgment.quality.reasoning,
            improvements=judgment.suggested_improvements,
            context=context,
            attempt=attempt,
        )
        try:
            response = self.llm.complete(prompt, stage="discovery.regenerate")
        except LLMClientError as e:
            logger.error(f"Tool regeneration failed: {e}")
            return tool

        for suggestion in parse_tool_suggestions(response, "tool regeneration"):
            if is_valid_suggestion(suggestion):
                return _to_tool(suggestion)
        return tool

    def validate_and_improve(
        self,
        tool: McpTool,
        context: RepositoryContext,
        quality_threshold: float,
        budget: int,
    ) -> Optional[McpTool]:
        """Judge a tool, regenerating it with feedback until it passes.

        Args:
            tool: Candidate tool.
            context: Repository context.
            quality_threshold: Minimum overall score.
            budget: Maximum number of judge rounds.

        Returns:
            The passing tool carrying the judge's scores, or None if the judge
            ruled it invalid or the budget ran out.
        """
        if budget <= 0:
            return None

        def validate(candidate: McpTool) -> Verdict:
            judgment = self.judge_tool_quality(candidate, context)
            score = judgment.quality.overall_score
            passed = judgment.is_valid and score >= quality_threshold
            feedback = judgment.feedback
            if not passed and judgment.is_valid:
                feedback = f"Score {score:.2f} below threshold {quality_threshold:.2f}. {feedback}".strip()
            return Verdict(
                passed=passed,
                feedback=feedback,
                score=score,
                terminal=not judgment.is_valid,
                details=judgment,
            )

        def regenerate(candidate: McpTool, verdict: Verdict, attempt: int) -> McpTool:
            return self.regenerate_tool(candidate, verdict.details, context, attempt, verdict.feedback)

        loop: RefinementLoop[McpTool] = RefinementLoop(
            stage=f"discovery.{tool.name}",
            generate=lambda: tool,
            validate=validate,
            regenerate=regenerate,
            max_regenerations=budget - 1,
            raise_on_exhaustion=False,
            run_logger=self.run_logger,
        )
        outcome = loop.run()

        if not outcome.passed:
            logger.debug(f"Tool {outcome.value.name} failed validation: {outcome.verdict.feedback}")
            return None

        outcome.value.quality = outcome.verdict.details.quality
        return outcome.value
