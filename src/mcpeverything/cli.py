"""CLI entrypoint for mcpeverything.

Commands:
    generate   Generate an MCP server for a GitHub repository
    analyze    Show what repository analysis finds
    discover   Run analysis and tool discovery only
    check      Statically check a generated server module
    env-check  Validate an environment variable value
    usage      Show the generation quota for a tier
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .code_validation import check_source
from .config import LOG_LEVELS, Config
from .env_vars import generate_clarification_questions, validate_env_var_format
from .errors import MCPEverythingError
from .generation import McpGenerationService
from .github_analysis import GitHubClient, RepositoryAnalysis, RepositoryAnalyzer
from .run_logger import RunLogger
from .tiers import UsageLedger, parse_tier, tier_status
from .tools import McpTool

app = typer.Typer(
    name="mcpeverything",
    help="Generate Model Context Protocol servers from GitHub repositories.",
    add_completion=False,
)

console = Console()


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: If True, set DEBUG level regardless of ``level``.
        level: Level name from MCPE_LOG_LEVEL.
    """
    level = "DEBUG" if verbose else level.upper()
    if level not in LOG_LEVELS:
        level = "INFO"
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"mcpeverything version {__version__}")
        raise typer.Exit()


def load_config(
    config_dir: Optional[Path] = None,
    mock: bool = False,
    output_dir: Optional[Path] = None,
) -> Config:
    """Load configuration and apply CLI overrides.

    Exits with status 1 when the configuration is invalid.
    """
    config = Config.from_env(config_dir.resolve() if config_dir else None)
    if mock:
        config.mock_mode = True
    if output_dir:
        config.output_dir = output_dir.resolve()

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {escape(error)}")
        raise typer.Exit(1)
    return config


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/red] {escape(str(error))}")
    raise typer.Exit(1)


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Generate MCP servers from GitHub repositories."""
    pass


@app.command()
def generate(
    github_url: str = typer.Argument(..., help="GitHub repository URL."),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Directory for generated servers (default: ./generated-servers).",
    ),
    conversation_id: Optional[str] = typer.Option(
        None,
        "--id",
        help="Name of the output folder (default: gen-<timestamp>).",
    ),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        "-c",
        help="Directory containing generation.yaml and prompt overrides.",
    ),
    tier: Optional[str] = typer.Option(
        None,
        "--tier",
        help="Subscription tier to check the quota against (default: MCPE_TIER or free).",
    ),
    mock: bool = typer.Option(
        False,
        "--mock",
        "-m",
        help="Run in mock mode (no model API calls).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose output.",
    ),
) -> None:
    """Generate an MCP server for a GitHub repository."""
    config = load_config(config_dir, mock, output_dir)
    setup_logging(verbose, config.log_level)

    try:
        user_tier = parse_tier(tier or config.tier)
    except ValueError as e:
        _fail(e)

    ledger = UsageLedger(config.usage_file)
    try:
        ledger.check_quota(user_tier)
    except MCPEverythingError as e:
        _fail(e)

    run_logger = RunLogger(config.log_dir, run_name=github_url)
    service = McpGenerationService(config, run_logger=run_logger)

    console.print(f"\n[bold]Generating MCP server for[/bold] {github_url}")
    if config.mock_mode:
        console.print("[dim]Mock mode: no model API calls will be made[/dim]")

    try:
        server = service.generate_server(github_url, conversation_id=conversation_id)
    except MCPEverythingError as e:
        run_logger.finalize(success=False)
        _fail(e)

    run_logger.finalize(success=server.metadata.quality.passed, output_dir=server.server_dir)
    if server.metadata.quality.passed:
        usage = ledger.record_generation()
    else:
        usage = ledger.current_usage()
    _display_generated_server(server)
    console.print(f"\n[dim]{tier_status(user_tier, usage)}[/dim]")
    for line in run_logger.summary_lines():
        console.print(f"[dim]{line}[/dim]")

    if not server.metadata.quality.passed:
        raise typer.Exit(1)


def _display_generated_server(server) -> None:
    quality = server.metadata.quality
    if quality.passed:
        console.print("\n[green]Server generated successfully![/green]\n")
    else:
        console.print("\n[yellow]Server generated with validation problems.[/yellow]\n")

    console.print(f"[bold]Server:[/bold] {server.server_name}")
    console.print(f"[bold]Location:[/bold] {server.server_dir}")
    console.print(f"Regenerations: {quality.regeneration_count}")

    _display_tools(server.metadata.tools)

    if server.metadata.env_vars:
        console.print("\n[bold]Environment variables:[/bold] (set these in .env)")
        for question in generate_clarification_questions(server.metadata.env_vars):
            console.print(f"  - [cyan]{question.env_var_name}[/cyan]: {question.question}")
            console.print(f"    [dim]{question.context}[/dim]")

    for error in quality.errors:
        console.print(f"  [red]✗[/red] {escape(error)}")
    for warning in quality.warnings:
        console.print(f"  [yellow]![/yellow] {escape(warning)}")


def _display_tools(tools: list[McpTool]) -> None:
    table = Table(title=f"Tools ({len(tools)})")
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Score", justify="right")
    table.add_column("Description")
    for tool in tools:
        description = tool.description[:60] + "..." if len(tool.description) > 60 else tool.description
        table.add_row(tool.name, tool.category, f"{tool.quality.overall_score:.2f}", description)
    console.print(table)


def _display_analysis(analysis: RepositoryAnalysis) -> None:
    metadata = analysis.metadata
    console.print(f"\n[bold]{metadata.full_name}[/bold]")
    if metadata.description:
        console.print(metadata.description)

    table = Table(show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    stack = analysis.tech_stack
    table.add_row("Language", metadata.language or "Unknown")
    table.add_row("Languages", ", ".join(stack.languages) or "-")
    table.add_row("Frameworks", ", ".join(stack.frameworks) or "-")
    table.add_row("Databases", ", ".join(stack.databases) or "-")
    table.add_row("Tools", ", ".join(stack.tools) or "-")
    table.add_row("API patterns", ", ".join(p.type for p in analysis.api_patterns) or "-")
    table.add_row("Features", ", ".join(analysis.features.features) or "-")
    table.add_row("Source files", str(len(analysis.source_files)))
    table.add_row("Quality score", f"{analysis.quality.score}/10")
    console.print(table)


@app.command()
def analyze(
    github_url: str = typer.Argument(..., help="GitHub repository URL."),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        "-c",
        help="Directory containing generation.yaml.",
    ),
    details: bool = typer.Option(
        False,
        "--details",
        help="Also list code examples, test frameworks and API routes.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose output.",
    ),
) -> None:
    """Analyze a repository without generating anything."""
    # Analysis makes no model calls, so no API key is needed
    config = Config.from_env(config_dir.resolve() if config_dir else None)
    setup_logging(verbose, config.log_level)
    analyzer = RepositoryAnalyzer(
        GitHubClient(token=config.github_token, api_url=config.github_api_url, timeout=config.github_timeout)
    )

    try:
        analysis = analyzer.analyze_repository(github_url)
    except MCPEverythingError as e:
        _fail(e)

    _display_analysis(analysis)
    if details:
        _display_details(analyzer, github_url)


def _display_details(analyzer: RepositoryAnalyzer, github_url: str) -> None:
    examples = analyzer.extract_code_examples(github_url)
    console.print(f"\n[bold]Code examples ({len(examples)})[/bold]")
    for example in examples:
        console.print(f"  - {example['file']} ({example['language']}, {len(example['content'])} chars)")

    test_patterns = analyzer.analyze_test_patterns(github_url)
    console.print(f"\n[bold]Test frameworks ({len(test_patterns)})[/bold]")
    for pattern in test_patterns:
        console.print(f"  - {pattern['framework']}: {pattern['pattern']} ({', '.join(pattern['examples'])})")

    usages = analyzer.extract_api_usage_patterns(github_url)
    console.print(f"\n[bold]API routes ({len(usages)})[/bold]")
    for route in usages:
        console.print(f"  - {route['method']} {route['endpoint']}")


@app.command()
def discover(
    github_url: str = typer.Argument(..., help="GitHub repository URL."),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        "-c",
        help="Directory containing generation.yaml and prompt overrides.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the discovered tools as JSON.",
    ),
    mock: bool = typer.Option(
        False,
        "--mock",
        "-m",
        help="Run in mock mode (no model API calls).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose output.",
    ),
) -> None:
    """Analyze a repository and discover MCP tools for it."""
    config = load_config(config_dir, mock)
    setup_logging(verbose, config.log_level)
    service = McpGenerationService(config)

    try:
        analysis = service.analyzer.analyze_repository(github_url)
        result = service.discovery.discover_tools(analysis)
    except MCPEverythingError as e:
        _fail(e)

    if not result.success:
        console.print(f"[red]Error:[/red] {escape(result.error or '')}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps([tool.to_dict() for tool in result.tools]))
        return

    _display_analysis(analysis)
    _display_tools(result.tools)
    meta = result.metadata
    console.print(
        f"\n[dim]{meta.candidates_considered} candidates, {meta.iteration_count} judge iterations, "
        f"{meta.processing_time_ms}ms[/dim]"
    )


@app.command()
def check(
    server_file: Path = typer.Argument(..., help="Generated server module to check."),
    tool: Optional[list[str]] = typer.Option(
        None,
        "--tool",
        "-t",
        help="Tool that must be implemented (repeatable).",
    ),
) -> None:
    """Statically check a generated server module."""
    if not server_file.exists():
        console.print(f"[red]Error:[/red] File not found: {server_file}")
        raise typer.Exit(1)

    result = check_source(server_file.read_text(encoding="utf-8"), tool or [], filename=server_file.name)

    status = "[green]✓[/green]" if result.passed else "[red]✗[/red]"
    console.print(f"\n{status} [bold]{server_file}[/bold]")
    console.print(f"  Compiles: {result.compiles}")
    console.print(f"  MCP compliant: {result.mcp_compliant}")
    console.print(f"  Tools implemented: {result.tools_implemented}")

    report = result.report()
    if report:
        console.print("\n[red]Problems:[/red]")
        for line in report.splitlines():
            console.print(f"  - {escape(line)}")
    for warning in result.warnings:
        console.print(f"  [yellow]![/yellow] {escape(warning)}")

    if not result.passed:
        raise typer.Exit(1)


@app.command("env-check")
def env_check(
    name: str = typer.Argument(..., help="Environment variable name, e.g. STRIPE_API_KEY."),
    value: str = typer.Argument(..., help="Value to validate."),
) -> None:
    """Validate an environment variable value against its known format."""
    result = validate_env_var_format(name, value)
    if not result.is_valid:
        console.print(f"[red]Invalid:[/red] {result.error_message}")
        for suggestion in result.suggestions:
            console.print(f"  - {suggestion}")
        raise typer.Exit(1)

    console.print(f"[green]Valid[/green] value for {name}")
    if result.is_test_key:
        console.print("[yellow]Note:[/yellow] this looks like a test/sandbox key")


@app.command()
def usage(
    tier: Optional[str] = typer.Option(
        None,
        "--tier",
        help="Tier to report on (default: MCPE_TIER or free).",
    ),
) -> None:
    """Show generation usage for the current month."""
    config = Config.from_env()
    try:
        user_tier = parse_tier(tier or config.tier)
    except ValueError as e:
        _fail(e)

    record = UsageLedger(config.usage_file).current_usage()
    console.print(tier_status(user_tier, record))


if __name__ == "__main__":
    app()
