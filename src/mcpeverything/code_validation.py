"""Static checks and judge-verdict parsing for generated server code.

The static check compiles the generated module in memory as a single file
without importing or resolving anything, then walks its AST for the
structure an MCP stdio server needs.
"""

from __future__ import annotations

import ast
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .json_utils import extract_json_from_response

logger = logging.getLogger(__name__)

SERVER_FILENAME = "server.py"

PLACEHOLDER_RE = re.compile(r"\b(TODO|FIXME|XXX)\b|placeholder", re.IGNORECASE)
FENCED_CODE_RE = re.compile(r"```(?:python|py)?[ \t]*\n([\s\S]*?)\n```")
_CODE_START_RE = re.compile(r"^(import |from |#!|\"\"\"|''')")
_VALID_RE = re.compile(r"VALID:\s*\[?\s*(true|false)", re.IGNORECASE)
_SCORE_RE = re.compile(r"SCORE:\s*\[?\s*(\d+)")
_FEEDBACK_RE = re.compile(r"FEEDBACK:\s*(.*?)(?=ISSUES:|$)", re.DOTALL)
_ISSUES_RE = re.compile(r"ISSUES:\s*(.*)$", re.DOTALL)


@dataclass
class StaticCheckResult:
    """Outcome of compiling and inspecting a generated server module."""

    compiles: bool
    mcp_compliant: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    missing_tools: list[str] = field(default_factory=list)
    placeholders: list[str] = field(default_factory=list)

    @property
    def tools_implemented(self) -> bool:
        return self.compiles and not self.missing_tools

    @property
    def passed(self) -> bool:
        return self.compiles and self.mcp_compliant and self.tools_implemented and not self.placeholders

    def report(self) -> str:
        """Human-readable list of every problem found."""
        lines = list(self.errors)
        lines.extend(self.placeholders)
        lines.extend(f"Missing implementation for tool: {name}" for name in self.missing_tools)
        return "\n".join(lines)


@dataclass
class ValidationIssue:
    """A single problem reported by the static check or the judge."""

    type: str  # error, warning
    category: str  # python, mcp-protocol, tool-implementation, code-quality
    message: str
    suggestion: str = ""


@dataclass
class JudgeVerdict:
    """Parsed judge response combined with the static check."""

    is_valid: bool
    score: int
    feedback: str
    issues: list[ValidationIssue] = field(default_factory=list)

    def regeneration_feedback(self) -> str:
        """Feedback for the next regeneration prompt: judge text plus every issue."""
        lines = [self.feedback.strip()] if self.feedback.strip() else []
        for issue in self.issues:
            line = f"- [{issue.category}] {issue.message}"
            if issue.suggestion:
                line += f" ({issue.suggestion})"
            lines.append(line)
        return "\n".join(lines)


def extract_python_code(text: str) -> str:
    """Strip markdown fences and any prose before the first import."""
    code = text or ""
    match = FENCED_CODE_RE.search(code)
    if match:
        code = match.group(1)

    lines = code.splitlines()
    for index, line in enumerate(lines):
        if _CODE_START_RE.match(line.strip()):
            code = "\n".join(lines[index:])
            break

    code = code.strip()
    if code and "Server(" in code and ".run(" not in code:
        logger.warning("Generated server code never calls server.run()")
    return code + "\n" if code else ""


def _call_name(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.Call):
        node = node.func
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def _is_stub(func: ast.AST) -> bool:
    body = list(func.body)
    if body and isinstance(body[0], ast.Expr) and isinstance(body[0].value, ast.Constant) \
            and isinstance(body[0].value.value, str):
        body = body[1:]
    if not body:
        return True
    if len(body) != 1:
        return False
    stmt = body[0]
    if isinstance(stmt, ast.Pass):
        return True
    return isinstance(stmt, ast.Expr) and isinstance(stmt.value, ast.Constant) \
        and stmt.value.value is Ellipsis


def _raises_not_implemented(func: ast.AST) -> bool:
    for node in ast.walk(func):
        if isinstance(node, ast.Raise) and node.exc is not None \
                and _call_name(node.exc) == "NotImplementedError":
            return True
    return False


def check_source(code: str, tool_names: list[str], filename: str = SERVER_FILENAME) -> StaticCheckResult:
    """Compile a generated server module and check its MCP structure.

    Args:
        code: Module source.
        tool_names: Tools that must each have a ``<name>_implementation`` function.
        filename: Name used in compiler messages.

    Returns:
        StaticCheckResult describing every problem found.
    """
    if not code or not code.strip():
        return StaticCheckResult(
            compiles=False,
            errors=["Generated code is empty"],
            missing_tools=list(tool_names),
        )

    try:
        tree = ast.parse(code, filename=filename)
        compile(tree, filename, "exec")
    except SyntaxError as e:
        return StaticCheckResult(
            compiles=False,
            errors=[f"Line {e.lineno or 0}: {e.msg}"],
            missing_tools=list(tool_names),
        )
    except ValueError as e:
        return StaticCheckResult(compiles=False, errors=[f"Line 0: {e}"], missing_tools=list(tool_names))

    result = StaticCheckResult(compiles=True)

    imports_mcp = False
    constructs_server = False
    uses_stdio = False
    runs_server = False
    handlers: set[str] = set()
    functions: dict[str, ast.AST] = {}
    string_constants: set[str] = set()
    has_main_guard = False

    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            if any(alias.name == "mcp" or alias.name.startswith("mcp.") for alias in node.names):
                imports_mcp = True
        elif isinstance(node, ast.ImportFrom):
            if node.module and (node.module == "mcp" or node.module.startswith("mcp.")):
                imports_mcp = True
        elif isinstance(node, ast.Call):
            name = _call_name(node)
            if name == "Server":
                constructs_server = True
            elif name == "stdio_server":
                uses_stdio = True
            elif name == "run" and isinstance(node.func, ast.Attribute) and not (
                isinstance(node.func.value, ast.Name) and node.func.value.id == "asyncio"
            ):
                runs_server = True
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            functions[node.name] = node
            for decorator in node.decorator_list:
                decorator_name = _call_name(decorator)
                if decorator_name in ("list_tools", "call_tool"):
                    handlers.add(decorator_name)
        elif isinstance(node, ast.Constant) and isinstance(node.value, str):
            string_constants.add(node.value)
        elif isinstance(node, ast.If):
            test = node.test
            if isinstance(test, ast.Compare) and isinstance(test.left, ast.Name) \
                    and test.left.id == "__name__":
                has_main_guard = True

    if not imports_mcp:
        result.errors.append("Missing import from the mcp package")
    if not constructs_server:
        result.errors.append("Missing Server(...) construction")
    if "list_tools" not in handlers:
        result.errors.append("Missing @server.list_tools() handler")
    if "call_tool" not in handlers:
        result.errors.append("Missing @server.call_tool() handler")
    if not (uses_stdio and runs_server):
        result.errors.append("Server is never run over stdio (stdio_server() and server.run(...))")
    result.mcp_compliant = not result.errors

    if not has_main_guard:
        result.warnings.append('Missing `if __name__ == "__main__":` entry point')

    first_line = next((line.strip() for line in code.splitlines() if line.strip()), "")
    if not _CODE_START_RE.match(first_line):
        result.warnings.append(f"Code does not start with imports: {first_line[:60]!r}")

    for lineno, line in enumerate(code.splitlines(), 1):
        match = PLACEHOLDER_RE.search(line)
        if match:
            result.placeholders.append(f"Line {lineno}: placeholder marker {match.group(0)!r}")

    for name, func in functions.items():
        if _is_stub(func):
            result.placeholders.append(f"Function {name} has no implementation")
        elif _raises_not_implemented(func):
            result.placeholders.append(f"Function {name} raises NotImplementedError")

    for tool_name in tool_names:
        if f"{tool_name}_implementation" not in functions:
            result.missing_tools.append(tool_name)
        elif tool_name not in string_constants:
            result.warnings.append(f"Tool {tool_name} is not registered by name in list_tools")

    return result


def precheck(code: str) -> dict:
    """Facts about the code that the judge prompt states up front."""
    first_line = next((line.strip() for line in code.splitlines() if line.strip()), "")
    return {
        "first_line": first_line,
        "starts_with_import": first_line.startswith(("import ", "from ")),
        "has_run": "server.run(" in code,
        "has_placeholders": bool(PLACEHOLDER_RE.search(code)) or "NotImplementedError" in code,
    }


def _static_issues(static: StaticCheckResult) -> list[ValidationIssue]:
    issues = []
    for error in static.errors:
        category = "python" if not static.compiles else "mcp-protocol"
        suggestion = "Fix the syntax error" if not static.compiles else "Follow the required server structure"
        issues.append(ValidationIssue("error", category, error, suggestion))
    for placeholder in static.placeholders:
        issues.append(ValidationIssue("error", "code-quality", placeholder, "Replace with a real implementation"))
    for name in static.missing_tools:
        issues.append(ValidationIssue(
            "error",
            "tool-implementation",
            f"Missing implementation for tool: {name}",
            f"Define async def {name}_implementation(args)",
        ))
    return issues


def parse_judge_response(response: str, static: StaticCheckResult) -> JudgeVerdict:
    """Combine the judge's answer with the static check.

    The response is read as JSON first, then as the ``VALID:``/``SCORE:``/
    ``FEEDBACK:``/``ISSUES:`` text format. The verdict is valid only if the
    judge says so and the static check passed.

    Args:
        response: Raw judge response.
        static: Static check of the judged code.

    Returns:
        JudgeVerdict.
    """
    issues = _static_issues(static)
    data, _ = extract_json_from_response(response)

    if data is not None and ("isValid" in data or "valid" in data):
        for item in data.get("issues") or []:
            if isinstance(item, dict):
                issues.append(ValidationIssue(
                    type=str(item.get("type", "error")),
                    category=str(item.get("category", "code-quality")),
                    message=str(item.get("message", "")),
                    suggestion=str(item.get("suggestion", "Address validation issue")),
                ))
            elif item:
                issues.append(ValidationIssue("error", "code-quality", str(item), "Address validation issue"))
        judge_valid = data.get("isValid", data.get("valid"))
        try:
            score = int(data.get("score") or 0)
        except (TypeError, ValueError):
            score = 0
        return JudgeVerdict(
            is_valid=judge_valid is True and static.passed,
            score=score,
            feedback=str(data.get("feedback") or "No feedback provided"),
            issues=issues,
        )

    logger.warning("Judge response is not JSON, falling back to text format")
    valid_match = _VALID_RE.search(response or "")
    score_match = _SCORE_RE.search(response or "")
    feedback_match = _FEEDBACK_RE.search(response or "")
    issues_match = _ISSUES_RE.search(response or "")

    if issues_match:
        for line in issues_match.group(1).splitlines():
            line = line.strip().lstrip("-*").strip()
            if line and line.lower() not in ("none", "[]"):
                issues.append(ValidationIssue("error", "code-quality", line, "Address validation issue"))

    judge_valid = bool(valid_match) and valid_match.group(1).lower() == "true"
    feedback = feedback_match.group(1).strip() if feedback_match else (response or "")[:200]
    return JudgeVerdict(
        is_valid=judge_valid and static.passed,
        score=int(score_match.group(1)) if score_match else 0,
        feedback=feedback,
        issues=issues,
    )
