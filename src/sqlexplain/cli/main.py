"""
SQLExplain CLI - explain SQL statements from the terminal.

Usage:
    sqlexplain explain "SELECT * FROM users WHERE email = 'a@b.c'"
    sqlexplain explain --dialect mysql --plan explain.json "SELECT ..."
    sqlexplain fingerprint "SELECT * FROM users WHERE id = 42"
    sqlexplain parse-plan --dialect sqlite plan.txt
    sqlexplain serve --port 3000
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from sqlexplain import __version__
from sqlexplain.backends import create_backend
from sqlexplain.cache import InMemoryCacheStore, ResultCache
from sqlexplain.engine import ExplanationService
from sqlexplain.exceptions import ConfigurationError, PlanParseError, SQLExplainError
from sqlexplain.models import Dialect, ExplanationResult, Severity
from sqlexplain.observability import configure_logging
from sqlexplain.plans import PlanNode, analyze_plan, parse_plan
from sqlexplain.settings import get_settings
from sqlexplain.sql import fingerprint as fingerprint_sql

app = typer.Typer(
    name="sqlexplain",
    help="Natural-language explanations and index advice for SQL",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

SEVERITY_STYLES = {
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"SQLExplain version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """SQLExplain - natural-language explanations for SQL."""
    pass


def _read_optional(path: Optional[Path]) -> Optional[str]:
    return path.read_text(encoding="utf-8") if path is not None else None


async def _explain(
    sql: str,
    dialect: Dialect,
    schema: Optional[str],
    explain_plan: Optional[str],
    privacy_mode: bool,
    use_cache: bool,
) -> ExplanationResult:
    settings = get_settings()
    cache = ResultCache(InMemoryCacheStore()) if use_cache else None
    service = ExplanationService(
        create_backend(settings),
        cache=cache,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        request_timeout_seconds=settings.request_timeout_seconds,
    )
    try:
        return await service.explain(
            sql,
            dialect=dialect,
            schema=schema,
            explain_plan=explain_plan,
            use_cache=use_cache,
            privacy_mode=privacy_mode,
        )
    finally:
        await service.close()


def _print_result(result: ExplanationResult) -> None:
    console.print(Panel(result.summary, title="Summary", border_style="cyan"))

    if result.walkthrough:
        console.print("\n[bold]Walkthrough:[/bold]")
        for i, step in enumerate(result.walkthrough, 1):
            console.print(f"  {i}. {step}")

    if result.optimizations:
        console.print(f"\n[bold]Found {len(result.optimizations)} optimization(s):[/bold]\n")
        for suggestion in result.optimizations:
            style = SEVERITY_STYLES.get(suggestion.severity, "white")
            console.print(
                f"[{style}][{suggestion.severity.value.upper()}][/{style}] {suggestion.title}"
            )
            console.print(f"   [dim]{suggestion.reason}[/dim]")
            console.print(f"   [green]{suggestion.change}[/green]")
            console.print(f"   [dim]Impact: {suggestion.estimated_impact}[/dim]\n")

    for antipattern in result.antipatterns:
        style = SEVERITY_STYLES.get(antipattern.severity, "white")
        console.print(f"[{style}]Antipattern:[/{style}] {antipattern.name}")
        console.print(f"   [dim]{antipattern.explain}[/dim]")

    if result.rewritten_sql:
        console.print("\n[bold]Rewritten SQL:[/bold]")
        console.print(f"   [green]{result.rewritten_sql}[/green]")

    console.print(
        f"\n[dim]Fingerprint {result.fingerprint.hash[:12]} | "
        f"confidence {result.confidence.value} | {result.execution_time_ms:.0f}ms[/dim]"
    )


@app.command()
def explain(
    sql: Annotated[str, typer.Argument(help="SQL statement to explain")],
    dialect: Annotated[
        Dialect,
        typer.Option("--dialect", "-d", help="SQL dialect"),
    ] = Dialect.POSTGRES,
    plan: Annotated[
        Optional[Path],
        typer.Option(
            "--plan",
            "-p",
            help="File with EXPLAIN output for the statement",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    schema: Annotated[
        Optional[Path],
        typer.Option(
            "--schema",
            "-s",
            help="File with a schema summary (DDL or free text)",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    privacy: Annotated[
        bool,
        typer.Option(
            "--privacy/--no-privacy",
            help="Redact literals before the SQL leaves this process",
        ),
    ] = True,
    use_cache: Annotated[
        bool,
        typer.Option("--cache/--no-cache", help="Use the in-process result cache"),
    ] = True,
    json_output: Annotated[
        bool,
        typer.Option("--json", "-j", help="Output as JSON"),
    ] = False,
) -> None:
    """
    Explain a SQL statement.

    Uses Claude when an Anthropic API key is configured, otherwise the
    deterministic backend.

    Examples:
        sqlexplain explain "SELECT * FROM orders WHERE status = 'paid'"
        sqlexplain explain -d mysql -p explain.json "SELECT ..."
    """
    try:
        result = asyncio.run(
            _explain(
                sql,
                dialect,
                _read_optional(schema),
                _read_optional(plan),
                privacy,
                use_cache,
            )
        )
    except SQLExplainError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    if json_output:
        console.print_json(json.dumps(result.to_wire()))
    else:
        _print_result(result)


@app.command()
def fingerprint(
    sql: Annotated[str, typer.Argument(help="SQL statement to fingerprint")],
    json_output: Annotated[
        bool,
        typer.Option("--json", "-j", help="Output as JSON"),
    ] = False,
) -> None:
    """
    Show the literal-independent fingerprint of a statement.

    Statements that differ only in literals, whitespace, comments or
    keyword case print the same hash.
    """
    fp = fingerprint_sql(sql)

    if json_output:
        console.print_json(json.dumps(fp.model_dump(by_alias=True)))
        return

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("hash", fp.hash)
    table.add_row("pattern", fp.pattern)
    table.add_row("tables", ", ".join(fp.tables) or "-")
    table.add_row("joins", str(fp.join_count))
    table.add_row("where complexity", str(fp.where_clause_complexity))
    console.print(table)


def _plan_tree(node: PlanNode, tree: Tree | None = None) -> Tree:
    label = f"[bold]{node.operation.value}[/bold]"
    if node.relation_name:
        label += f" on {node.relation_name}"
    if node.index_name:
        label += f" using {node.index_name}"
    if node.estimated_rows is not None:
        label += f" [dim](rows={node.estimated_rows:g})[/dim]"
    if node.filter:
        label += f"\n[dim]filter: {node.filter}[/dim]"
    if node.join_condition:
        label += f"\n[dim]join: {node.join_condition}[/dim]"

    branch = tree.add(label) if tree is not None else Tree(label)
    for child in node.children:
        _plan_tree(child, branch)
    return branch


@app.command("parse-plan")
def parse_plan_command(
    plan_file: Annotated[
        Path,
        typer.Argument(
            help="Path to EXPLAIN output",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    dialect: Annotated[
        Dialect,
        typer.Option("--dialect", "-d", help="SQL dialect of the EXPLAIN output"),
    ] = Dialect.POSTGRES,
    json_output: Annotated[
        bool,
        typer.Option("--json", "-j", help="Output as JSON"),
    ] = False,
) -> None:
    """
    Parse EXPLAIN output and list index recommendations.

    No backend is called; this is the offline half of an explanation.
    """
    try:
        plan = parse_plan(plan_file.read_text(encoding="utf-8"), dialect)
    except PlanParseError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        if e.detail:
            error_console.print(f"\n[dim]{e.detail}[/dim]")
        raise typer.Exit(1)

    report = analyze_plan(plan)

    if json_output:
        output = {
            "plan": plan.to_wire(),
            "recommendations": [
                {
                    "type": rec.type,
                    "table": rec.table,
                    "columns": list(rec.columns),
                    "reason": rec.reason,
                }
                for rec in report.recommendations
            ],
        }
        console.print_json(json.dumps(output))
        return

    console.print(_plan_tree(plan))
    console.print()

    if not report.recommendations:
        console.print(Panel(
            "[green]No index recommendations[/green]",
            title="Heuristics",
            border_style="green",
        ))
        return

    table = Table(title="Index recommendations")
    table.add_column("Table", style="cyan")
    table.add_column("Columns", style="green")
    table.add_column("Reason")
    for rec in report.recommendations:
        table.add_row(rec.table, ", ".join(rec.columns), rec.reason)
    console.print(table)
    console.print(f"\n[dim]Analyzed {plan.node_count} nodes ({dialect.value})[/dim]")


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", help="Bind address (default from settings)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", help="Bind port (default from settings)"),
    ] = None,
    reload: Annotated[
        bool,
        typer.Option("--reload", help="Enable auto-reload for development"),
    ] = False,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    try:
        settings = get_settings()
    except ConfigurationError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    configure_logging(settings.log_level)
    bind_host = host or settings.host
    bind_port = port or settings.port
    console.print(f"Starting SQLExplain on http://{bind_host}:{bind_port}")
    console.print(f"  API docs: http://{bind_host}:{bind_port}/docs\n")

    uvicorn.run(
        "sqlexplain.api.app:create_app",
        host=bind_host,
        port=bind_port,
        reload=reload,
        factory=True,
        log_config=None,
    )


if __name__ == "__main__":
    app()
