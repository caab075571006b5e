"""Packaging of a generated server into a pip-installable project.

Everything except the server module itself is produced deterministically
from the repository analysis and the discovered tools.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .code_validation import check_source
from .env_vars import RequiredEnvVar, generate_env_example, generate_readme_section
from .errors import InvalidOutputPathError
from .github_analysis import RepositoryAnalysis
from .tools import McpTool, ToolExample, tools_to_json_list

logger = logging.getLogger(__name__)

PROJECT_URL = "https://github.com/4eyedengineer/mcp-everything"
GENERATED_VERSION = "0.1.0"
MCP_REQUIREMENT = "mcp>=1.0.0"


@dataclass
class GeneratedFile:
    """A file of the generated project, relative to its root."""

    path: str
    content: str


@dataclass
class QualityValidation:
    """Final checks run on the written server directory."""

    passed: bool
    compiles: bool
    mcp_compliant: bool
    tools_implemented: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    regeneration_count: int = 0

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "compiles": self.compiles,
            "mcpCompliant": self.mcp_compliant,
            "toolsImplemented": self.tools_implemented,
            "errors": self.errors,
            "warnings": self.warnings,
            "regenerationCount": self.regeneration_count,
        }


@dataclass
class ServerMetadata:
    """Provenance and quality of a generated server."""

    github_url: str
    description: str
    generated_at: str
    tools: list[McpTool]
    quality: QualityValidation
    env_vars: list[RequiredEnvVar] = field(default_factory=list)


@dataclass
class GeneratedServer:
    """A generated server project written to disk."""

    server_name: str
    conversation_id: str
    server_dir: Path
    files: list[GeneratedFile]
    metadata: ServerMetadata


def server_name_for(repo_name: str) -> str:
    """Distribution name of the server generated for a repository."""
    slug = re.sub(r"[^a-z0-9]+", "-", repo_name.lower()).strip("-") or "repository"
    return f"{slug}-mcp-server"


def module_name_for(server_name: str) -> str:
    """Import package name for a server distribution name."""
    module = re.sub(r"[^a-z0-9]+", "_", server_name.lower()).strip("_")
    if not module or module[0].isdigit():
        module = f"mcp_{module}"
    return module


def check_conversation_id(conversation_id: str) -> str:
    """Ensure an output folder name stays a single directory under the output dir.

    Raises:
        InvalidOutputPathError: For empty names, path separators or ``..``.
    """
    if not conversation_id.strip() or any(part in conversation_id for part in ("/", "\\", "..")):
        raise InvalidOutputPathError(
            f"Invalid conversation id {conversation_id!r}: must be a single folder name "
            "without path separators or '..'"
        )
    return conversation_id


def server_path(module_name: str) -> str:
    return f"src/{module_name}/server.py"


def describe(analysis: RepositoryAnalysis) -> str:
    return analysis.metadata.description or f"MCP Server for {analysis.metadata.full_name}"


class ServerPackager:
    """Builds the supporting files of a generated server and writes them out."""

    def __init__(self, output_dir: Path):
        """Initialize the packager.

        Args:
            output_dir: Directory under which each server gets its own folder.
        """
        self.output_dir = output_dir

    def package_files(
        self,
        server_name: str,
        server_code: str,
        analysis: RepositoryAnalysis,
        tools: list[McpTool],
        github_url: str,
        env_vars: Optional[list[RequiredEnvVar]] = None,
        generated_at: Optional[str] = None,
    ) -> list[GeneratedFile]:
        """Assemble every file of the server project.

        Args:
            server_name: Distribution name, e.g. ``fastapi-mcp-server``.
            server_code: Validated server module source.
            analysis: Repository analysis the server was generated from.
            tools: Tools the server exposes.
            github_url: Source repository URL.
            env_vars: Environment variables the tools need.
            generated_at: ISO timestamp; defaults to now.

        Returns:
            Files in write order.
        """
        env_vars = env_vars or []
        generated_at = generated_at or datetime.now(timezone.utc).isoformat()
        module_name = module_name_for(server_name)

        return [
            GeneratedFile(server_path(module_name), server_code),
            GeneratedFile(
                f"src/{module_name}/__init__.py",
                f'{describe(analysis)!r}\n\n__version__ = "{GENERATED_VERSION}"\n',
            ),
            GeneratedFile("pyproject.toml", self._generate_pyproject(server_name, module_name, analysis)),
            GeneratedFile(
                "README.md",
                self._generate_readme(server_name, module_name, analysis, tools, github_url, env_vars, generated_at),
            ),
            GeneratedFile(".env.example", generate_env_example(env_vars)),
            GeneratedFile(
                "mcp-manifest.json",
                self._generate_manifest(server_name, module_name, analysis, tools, github_url, env_vars, generated_at),
            ),
        ]

    def write(self, conversation_id: str, files: list[GeneratedFile]) -> Path:
        """Write files under ``<output_dir>/<conversation_id>``.

        Returns:
            The server directory.

        Raises:
            InvalidOutputPathError: If ``conversation_id`` is not a plain folder name.
        """
        server_dir = self.output_dir / check_conversation_id(conversation_id)
        for generated in files:
            path = server_dir / generated.path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(generated.content, encoding="utf-8")
        logger.info(f"Generated server packaged at: {server_dir}")
        return server_dir

    def _generate_pyproject(self, server_name: str, module_name: str, analysis: RepositoryAnalysis) -> str:
        description = json.dumps(describe(analysis))
        return f"""[build-system]
requires = ["setuptools>=61.0", "wheel"]
build-backend = "setuptools.build_meta"

[project]
name = "{server_name}"
version = "{GENERATED_VERSION}"
description = {description}
readme = "README.md"
requires-python = ">=3.10"
dependencies = [
    "{MCP_REQUIREMENT}",
]

[tool.setuptools.packages.find]
where = ["src"]
"""

    def _generate_manifest(
        self,
        server_name: str,
        module_name: str,
        analysis: RepositoryAnalysis,
        tools: list[McpTool],
        github_url: str,
        env_vars: list[RequiredEnvVar],
        generated_at: str,
    ) -> str:
        manifest = {
            "name": server_name,
            "version": GENERATED_VERSION,
            "description": describe(analysis),
            "transport": "stdio",
            "runtime": "python",
            "entrypoint": {"command": "python", "args": ["-m", f"{module_name}.server"]},
            "source": {
                "repository": github_url,
                "fullName": analysis.metadata.full_name,
                "language": analysis.metadata.language,
            },
            "tools": tools_to_json_list(tools),
            "environment": [env_var.to_dict() for env_var in env_vars],
            "generatedAt": generated_at,
        }
        return json.dumps(manifest, indent=2) + "\n"

    def _generate_readme(
        self,
        server_name: str,
        module_name: str,
        analysis: RepositoryAnalysis,
        tools: list[McpTool],
        github_url: str,
        env_vars: list[RequiredEnvVar],
        generated_at: str,
    ) -> str:
        sections = [
            self._generate_header(server_name, analysis),
            self._generate_description(analysis, github_url),
            self._generate_tools_overview(tools),
            self._generate_installation(),
            self._generate_usage(module_name),
            self._generate_claude_desktop(server_name, module_name, env_vars),
            generate_readme_section(env_vars),
            self._generate_tool_docs(tools),
            self._generate_testing(module_name),
            self._generate_troubleshooting(),
            self._generate_footer(generated_at),
        ]
        return "\n\n".join(section for section in sections if section) + "\n"

    def _generate_header(self, server_name: str, analysis: RepositoryAnalysis) -> str:
        return f"""# {server_name}

> Generated by [MCP Everything]({PROJECT_URL})

{describe(analysis)}"""

    def _generate_description(self, analysis: RepositoryAnalysis, github_url: str) -> str:
        stack = analysis.tech_stack
        languages = ", ".join(stack.languages) if stack.languages else "Not detected"
        frameworks = ", ".join(stack.frameworks) if stack.frameworks else "None detected"
        full_name = analysis.metadata.full_name
        return f"""## Description

This MCP server was automatically generated from the repository **{full_name}**.

| Property | Value |
|----------|-------|
| **Source Repository** | [{full_name}]({github_url}) |
| **Primary Language** | {analysis.metadata.language or "Unknown"} |
| **Languages** | {languages} |
| **Frameworks** | {frameworks} |"""

    def _generate_tools_overview(self, tools: list[McpTool]) -> str:
        if not tools:
            return "## Tools\n\nNo tools available."
        plural = "" if len(tools) == 1 else "s"
        listing = "\n".join(f"- **{tool.name}**: {tool.description}" for tool in tools)
        return f"## Tools\n\nThis server provides {len(tools)} tool{plural}:\n\n{listing}"

    def _generate_installation(self) -> str:
        return """## Installation

```bash
# Create a virtual environment (Python 3.10 or newer)
python -m venv .venv
source .venv/bin/activate

# Install the server and its dependencies
pip install -e .
```"""

    def _generate_usage(self, module_name: str) -> str:
        return f"""## Usage

```bash
# Start the MCP server
python -m {module_name}.server
```

The server communicates via stdio and is designed to be used with MCP-compatible clients."""

    def _generate_claude_desktop(
        self, server_name: str, module_name: str, env_vars: list[RequiredEnvVar]
    ) -> str:
        entry = {
            "command": "python",
            "args": [f"/absolute/path/to/{server_name}/{server_path(module_name)}"],
            "env": {env_var.name: f"<{env_var.name}>" for env_var in env_vars},
        }
        config = json.dumps({"mcpServers": {server_name: entry}}, indent=2)
        return f"""## Claude Desktop Integration

To use this MCP server with Claude Desktop, add the following to your Claude Desktop configuration file:

**macOS**: `~/Library/Application Support/Claude/claude_desktop_config.json`
**Windows**: `%APPDATA%\\Claude\\claude_desktop_config.json`

```json
{config}
```

**Important**: Replace `/absolute/path/to/{server_name}` with the actual path to this server on your system, and `python` with the interpreter of the environment the server is installed in.

After updating the configuration, restart Claude Desktop for the changes to take effect."""

    def _generate_tool_docs(self, tools: list[McpTool]) -> str:
        if not tools:
            return ""
        docs = "\n\n---\n\n".join(self._generate_tool_doc(tool) for tool in tools)
        return f"## Tool Documentation\n\n{docs}"

    def _generate_tool_doc(self, tool: McpTool) -> str:
        lines = [f"### {tool.name}", f"**Category:** {tool.category or 'general'}", "", tool.description]

        if tool.properties:
            lines.extend(["", "#### Parameters", "", format_input_schema(tool.input_schema)])

        hints = tool.implementation_hints
        if hints.examples:
            lines.extend(["", "#### Examples", "", format_tool_examples(hints.examples)])

        lines.extend([
            "",
            "#### Details",
            "",
            f"- **Output Format:** {hints.output_format or 'text'}",
            f"- **Complexity:** {hints.complexity or 'medium'}",
        ])
        if hints.error_handling:
            lines.append(f"- **Possible Errors:** {', '.join(hints.error_handling)}")
        return "\n".join(lines)

    def _generate_testing(self, module_name: str) -> str:
        return f"""## Testing

```bash
# Check that the server module compiles
python -m py_compile src/{module_name}/server.py

# Explore the tools interactively with the MCP Inspector
npx @modelcontextprotocol/inspector python -m {module_name}.server
```

You can also test the server by connecting it to Claude Desktop."""

    def _generate_troubleshooting(self) -> str:
        return f"""## Troubleshooting

### Common Issues

**Server not starting**
- Ensure the server is installed: `pip install -e .`
- Check that Python 3.10 or higher is in use
- Run the module directly to see import errors

**Claude Desktop not detecting the server**
- Verify the path in your config file is correct and absolute
- Restart Claude Desktop after config changes
- Check Claude Desktop logs for error messages

**Tool execution errors**
- Verify any required environment variables are set
- Check that API keys/tokens are valid
- Review the server logs for detailed error messages

### Getting Help

- [MCP Protocol Documentation](https://modelcontextprotocol.io/)
- [MCP Everything Issues]({PROJECT_URL}/issues)"""

    def _generate_footer(self, generated_at: str) -> str:
        return f"""## License

MIT

---

*Generated at: {generated_at}*

*This MCP server was automatically generated by [MCP Everything]({PROJECT_URL}).*"""


def format_input_schema(schema: dict) -> str:
    """Render a JSON schema's properties as a markdown table."""
    properties = schema.get("properties") or {}
    if not properties:
        return "This tool takes no parameters."

    required = schema.get("required") or []
    rows = []
    for name, prop in properties.items():
        prop = prop if isinstance(prop, dict) else {}
        extra = []
        if "default" in prop:
            extra.append(f"Default: `{json.dumps(prop['default'])}`")
        if prop.get("enum"):
            extra.append("Options: " + ", ".join(f"`{value}`" for value in prop["enum"]))
        description = prop.get("description") or "-"
        if extra:
            description += " " + ". ".join(extra)
        is_required = "Yes" if name in required else "No"
        rows.append(f"| `{name}` | {prop.get('type', 'any')} | {is_required} | {description} |")

    header = "| Parameter | Type | Required | Description |\n|-----------|------|----------|-------------|"
    return header + "\n" + "\n".join(rows)


def format_tool_examples(examples: list[ToolExample]) -> str:
    blocks = []
    for index, example in enumerate(examples, 1):
        lines = [
            f"**Example {index}:** {example.description}",
            "",
            "Input:",
            "```json",
            json.dumps(example.input, indent=2),
            "```",
        ]
        if example.expected_output:
            lines.extend(["", "Expected Output:", "```", example.expected_output, "```"])
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


REQUIRED_FILES = ("pyproject.toml", "README.md", "mcp-manifest.json")


def validate_generated_server(
    server_dir: Path,
    tools: list[McpTool],
    module_name: str,
    regeneration_count: int = 0,
) -> QualityValidation:
    """Check a written server directory.

    Required files must exist, and the server module must compile, be
    MCP-compliant and implement every tool.

    Args:
        server_dir: Root of the written project.
        tools: Tools the server must implement.
        module_name: Import package of the server.
        regeneration_count: Regenerations the code needed, carried into the result.

    Returns:
        QualityValidation.
    """
    errors: list[str] = []
    warnings: list[str] = []
    module_path = server_path(module_name)

    for name in (module_path,) + REQUIRED_FILES:
        if not (server_dir / name).exists():
            errors.append(f"Missing required file: {name}")

    source_file = server_dir / module_path
    if source_file.exists():
        static = check_source(source_file.read_text(encoding="utf-8"), [t.name for t in tools])
        errors.extend(static.errors)
        errors.extend(static.placeholders)
        errors.extend(f"Missing implementation for tool: {name}" for name in static.missing_tools)
        warnings.extend(static.warnings)
        compiles, mcp_compliant, tools_implemented = (
            static.compiles, static.mcp_compliant, static.tools_implemented
        )
    else:
        compiles = mcp_compliant = tools_implemented = False

    validation = QualityValidation(
        passed=not errors,
        compiles=compiles,
        mcp_compliant=mcp_compliant,
        tools_implemented=tools_implemented,
        errors=errors,
        warnings=warnings,
        regeneration_count=regeneration_count,
    )
    if validation.passed:
        logger.info(f"Final validation passed for {server_dir}")
    else:
        logger.warning(f"Final validation found {len(errors)} problem(s) in {server_dir}")
    return validation
