"""MCP tool definitions produced by discovery and consumed by generation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from .json_utils import as_str_list

ToolCategory = Literal[
    "data",           # Data extraction/manipulation
    "api",            # API interaction tools
    "file",           # File system operations
    "utility",        # General utility functions
    "analysis",       # Code/repository analysis
    "build",          # Build/deployment tools
    "test",           # Testing utilities
    "documentation",  # Documentation generation
    "search",         # Search/query operations
    "transform",      # Data transformation
]

TOOL_CATEGORIES = (
    "data", "api", "file", "utility", "analysis",
    "build", "test", "documentation", "search", "transform",
)

TOOL_NAME_RE = re.compile(r"^[a-z_]+$")

_COMPLEXITIES = ("simple", "medium", "complex")
_OUTPUT_FORMATS = ("text", "json", "markdown", "html")


def _score(value: Any, default: float) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return default


@dataclass
class ToolExample:
    """An example invocation of a tool."""

    input: dict = field(default_factory=dict)
    description: str = ""
    expected_output: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> ToolExample:
        return cls(
            input=data.get("input") if isinstance(data.get("input"), dict) else {},
            description=str(data.get("description", "")),
            expected_output=str(data.get("expectedOutput", data.get("expected_output", ""))),
        )

    def to_dict(self) -> dict:
        return {
            "input": self.input,
            "description": self.description,
            "expectedOutput": self.expected_output,
        }


@dataclass
class ImplementationHints:
    """Guidance for the code generator."""

    primary_action: str = "Perform operation"
    required_data: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    complexity: str = "simple"
    output_format: str = "text"
    error_handling: list[str] = field(default_factory=list)
    examples: list[ToolExample] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict, default_action: str = "Perform operation") -> ImplementationHints:
        complexity = data.get("complexity", "simple")
        output_format = data.get("outputFormat", data.get("output_format", "text"))
        examples = data.get("examples") or []
        return cls(
            primary_action=str(data.get("primaryAction", data.get("primary_action")) or default_action),
            required_data=as_str_list(data.get("requiredData", data.get("required_data"))),
            dependencies=as_str_list(data.get("dependencies")),
            complexity=complexity if complexity in _COMPLEXITIES else "simple",
            output_format=output_format if output_format in _OUTPUT_FORMATS else "text",
            error_handling=as_str_list(data.get("errorHandling", data.get("error_handling"))),
            examples=[ToolExample.from_dict(e) for e in examples if isinstance(e, dict)],
        )

    def to_dict(self) -> dict:
        return {
            "primaryAction": self.primary_action,
            "requiredData": self.required_data,
            "dependencies": self.dependencies,
            "complexity": self.complexity,
            "outputFormat": self.output_format,
            "errorHandling": self.error_handling,
            "examples": [e.to_dict() for e in self.examples],
        }


@dataclass
class ToolQuality:
    """Judge scores for a tool, each between 0 and 1."""

    usefulness: float = 0.5
    specificity: float = 0.5
    implementability: float = 0.5
    uniqueness: float = 0.5
    overall_score: float = 0.5
    reasoning: str = "Default quality assessment"

    @classmethod
    def from_dict(cls, data: dict) -> ToolQuality:
        scores = {
            key: _score(data.get(key), 0.5)
            for key in ("usefulness", "specificity", "implementability", "uniqueness")
        }
        overall = data.get("overallScore", data.get("overall_score"))
        if overall is None:
            overall = sum(scores.values()) / len(scores)
        return cls(
            overall_score=_score(overall, 0.5),
            reasoning=str(data.get("reasoning", "")),
            **scores,
        )

    @classmethod
    def failed(cls, reasoning: str) -> ToolQuality:
        """Quality assigned when the judge could not evaluate a tool."""
        return cls(0.1, 0.1, 0.1, 0.1, 0.1, reasoning)

    def to_dict(self) -> dict:
        return {
            "usefulness": self.usefulness,
            "specificity": self.specificity,
            "implementability": self.implementability,
            "uniqueness": self.uniqueness,
            "overallScore": self.overall_score,
            "reasoning": self.reasoning,
        }


@dataclass
class McpTool:
    """A tool the generated server will expose."""

    name: str
    description: str
    category: str
    input_schema: dict = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    implementation_hints: ImplementationHints = field(default_factory=ImplementationHints)
    quality: ToolQuality = field(default_factory=ToolQuality)

    @classmethod
    def from_dict(cls, data: dict) -> McpTool:
        """Create a tool from a model suggestion, filling in missing fields."""
        description = str(data.get("description", ""))
        schema = data.get("inputSchema", data.get("input_schema"))
        if not isinstance(schema, dict):
            schema = {"type": "object", "properties": {}, "required": []}
        hints = data.get("implementationHints", data.get("implementation_hints"))
        quality = data.get("quality")
        return cls(
            name=str(data.get("name", "")),
            description=description,
            category=str(data.get("category", "utility")),
            input_schema=schema,
            implementation_hints=(
                ImplementationHints.from_dict(hints, default_action=description or "Perform operation")
                if isinstance(hints, dict)
                else ImplementationHints(primary_action=description or "Perform operation")
            ),
            quality=ToolQuality.from_dict(quality) if isinstance(quality, dict) else ToolQuality(),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "inputSchema": self.input_schema,
            "implementationHints": self.implementation_hints.to_dict(),
            "quality": self.quality.to_dict(),
        }

    @property
    def properties(self) -> dict:
        props = self.input_schema.get("properties")
        return props if isinstance(props, dict) else {}

    @property
    def required(self) -> list[str]:
        return as_str_list(self.input_schema.get("required"))

    @property
    def function_name(self) -> str:
        """Name of the implementation function in the generated server."""
        return f"{self.name}_implementation"


def input_schema_errors(schema: Any) -> list[str]:
    """Check a tool input schema against JSON Schema and the MCP tool rules.

    MCP tools take a single object argument, so the root must be an object
    schema and every ``required`` name must be declared in ``properties``.

    Args:
        schema: The ``inputSchema`` value of a suggestion.

    Returns:
        Error messages; empty when the schema is usable.
    """
    if not isinstance(schema, dict):
        return ["input schema must be an object"]
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as exc:
        path = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        return [f"invalid JSON Schema at {path}: {exc.message}"]

    errors = []
    if schema.get("type", "object") != "object":
        errors.append(f"root type must be \"object\", got {schema['type']!r}")
    properties = schema.get("properties") or {}
    for name in schema.get("required") or []:
        if name not in properties:
            errors.append(f"required property {name!r} is not in properties")
    return errors


def is_valid_suggestion(data: Any) -> bool:
    """Whether a model suggestion has a snake_case name, description and category.

    A suggestion that carries an input schema must also pass
    :func:`input_schema_errors`; one without a schema gets the empty default.
    """
    if not isinstance(data, dict):
        return False
    name = data.get("name")
    if not (
        isinstance(name, str)
        and TOOL_NAME_RE.match(name)
        and data.get("description")
        and data.get("category")
    ):
        return False
    schema = data.get("inputSchema", data.get("input_schema"))
    return schema is None or not input_schema_errors(schema)


def tools_to_json_list(tools: list[McpTool], include_quality: bool = False) -> list[dict]:
    """Serialize tools for prompts and manifests."""
    result = []
    for tool in tools:
        data = tool.to_dict()
        if not include_quality:
            data.pop("quality")
        result.append(data)
    return result

