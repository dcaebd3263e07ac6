from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import Session

from venturelab import services
from venturelab.config import get_settings
from venturelab.db import init_db, session_scope
from venturelab.errors import VentureLabError

app = typer.Typer(help="Venture Lab: research, score, approve and compile venture ideas")
ideas_app = typer.Typer(help="Create, list, inspect and delete ideas")
app.add_typer(ideas_app, name="ideas")
console = Console()

_VERDICT_STYLE = {"GREEN": "green", "YELLOW": "yellow", "RED": "red"}


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = getattr(logging, get_settings().log_level.upper(), logging.WARNING)
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Path to a venturelab.yaml settings file."),
    db_url: str | None = typer.Option(None, "--db-url", help="SQLAlchemy database URL override."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if config:
        os.environ["VENTURELAB_CONFIG"] = str(Path(config).expanduser().resolve())
        get_settings.cache_clear()
    if db_url:
        os.environ["VENTURELAB_DATABASE_URL"] = db_url
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "db_url": db_url}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


@contextmanager
def _session(ctx: typer.Context) -> Generator[Session, None, None]:
    """Open a session; domain errors become a red message and exit code 1."""
    init_db((ctx.obj or {}).get("db_url"))
    try:
        with session_scope() as session:
            yield session
    except VentureLabError as exc:
        if _wants_json(ctx):
            typer.echo(json.dumps({"error": str(exc), "type": type(exc).__name__}))
        else:
            console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        raise typer.Exit(code=1) from exc


def _format_scalar(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.1f}"
    if value is None:
        return "-"
    return str(value)


def _print_idea(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=False, box=ROUNDED)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in payload.items():
        if key in ("research_doc", "score", "compilation"):
            continue
        table.add_row(key, _format_scalar(value))
    console.print(Panel(table, title=title, border_style="cyan"))

    score = payload.get("score")
    if score:
        dims = Table(show_header=True, header_style="bold magenta", box=ROUNDED)
        dims.add_column("Dimension", style="bold")
        dims.add_column("Score", justify="right")
        dims.add_column("Justification")
        for key, dim in score["dimensions"].items():
            dims.add_row(key, f"{dim['score']:g}/{dim['max']}", dim.get("justification", ""))
        style = _VERDICT_STYLE.get(payload.get("verdict") or "", "white")
        console.print(Panel(
            dims, border_style=style,
            title=f"score {score['final_score']:.1f} = {score['raw_total']:g} x {score['confidence']:.2f}",
        ))


# ---------------------------------------------------------------------------
# Ideas
# ---------------------------------------------------------------------------


@ideas_app.command("list")
def list_command(
    ctx: typer.Context,
    status: str | None = typer.Option(None, help="Comma-separated statuses, e.g. scored,parked"),
) -> None:
    with _session(ctx) as session:
        items = [services.idea_summary(i) for i in services.list_ideas(session, status=status)]
    if _wants_json(ctx):
        typer.echo(json.dumps(items, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Verdict")
    for item in items:
        verdict = item["verdict"] or "-"
        style = _VERDICT_STYLE.get(verdict, "white")
        table.add_row(
            item["id"][:8], item["name"], item["status"],
            _format_scalar(item["final_score"]), f"[{style}]{verdict}[/{style}]",
        )
    console.print(Panel(table, title=f"ideas ({len(items)})", border_style="cyan"))


@ideas_app.command("show")
def show_command(ctx: typer.Context, idea_id: str = typer.Argument(..., help="Idea ID.")) -> None:
    with _session(ctx) as session:
        payload = services.idea_detail(services.get_idea(session, idea_id))
    _print_idea(payload["name"], payload, ctx)
    doc = payload.get("research_doc")
    if doc and not _wants_json(ctx):
        console.print(Panel(doc["body"], title=doc["title"], border_style="blue"))


@ideas_app.command("create")
def create_command(
    ctx: typer.Context,
    name: str = typer.Option(..., help="Idea name."),
    description: str = typer.Option(..., help="What the business does and for whom."),
    domain: str | None = typer.Option(None, help="saas|media|ecommerce|services|marketplace|fintech|healthtech|edtech|realty|other"),
    target_customer: str = typer.Option("", help="Who pays."),
    initial_thoughts: str = typer.Option("", help="Hypotheses to test."),
) -> None:
    with _session(ctx) as session:
        idea = services.create_idea(
            session, name=name, description=description, domain=domain,
            target_customer=target_customer, initial_thoughts=initial_thoughts,
        )
        payload = services.idea_detail(idea)
    _print_idea("created", payload, ctx)


@ideas_app.command("delete")
def delete_command(
    ctx: typer.Context,
    idea_id: str = typer.Argument(..., help="Idea ID."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    if not yes:
        typer.confirm(f"Delete idea {idea_id} and its research document?", abort=True)
    with _session(ctx) as session:
        services.delete_idea(session, services.get_idea(session, idea_id))
    if _wants_json(ctx):
        typer.echo(json.dumps({"ok": True, "deleted": idea_id}))
    else:
        console.print(f"[green]✓[/green] deleted {idea_id}")


# ---------------------------------------------------------------------------
# Lifecycle stages
# ---------------------------------------------------------------------------


@app.command("research")
def research_command(ctx: typer.Context, idea_id: str = typer.Argument(..., help="Idea ID.")) -> None:
    with _session(ctx) as session:
        idea = services.get_idea(session, idea_id)
        with console.status("[bold cyan]researching[/bold cyan]", spinner="dots"):
            idea = asyncio.run(services.run_research(session, idea))
        payload = services.idea_detail(idea)
    _print_idea("researched", payload, ctx)


@app.command("score")
def score_command(ctx: typer.Context, idea_id: str = typer.Argument(..., help="Idea ID.")) -> None:
    with _session(ctx) as session:
        idea = services.get_idea(session, idea_id)
        with console.status("[bold cyan]scoring[/bold cyan]", spinner="dots"):
            idea, cached = asyncio.run(services.run_scoring(session, idea))
        payload = services.idea_detail(idea)
    if _wants_json(ctx):
        typer.echo(json.dumps({"idea": payload, "cached": cached}, indent=2, ensure_ascii=False))
        return
    _print_idea("scored (cached)" if cached else "scored", payload, ctx)


@app.command("approve")
def approve_command(
    ctx: typer.Context,
    idea_id: str = typer.Argument(..., help="Idea ID."),
    decision: str = typer.Option(..., help="approved|parked|killed"),
    comment: str = typer.Option("", help="Decision comment."),
    approver: str | None = typer.Option(None, help="Approver identity (defaults to configured approver)."),
) -> None:
    with _session(ctx) as session:
        idea = services.record_approval(
            session, services.get_idea(session, idea_id), decision, comment=comment, approver=approver,
        )
        payload = services.idea_detail(idea)
    _print_idea(f"decision: {decision}", payload, ctx)


@app.command("compile")
def compile_command(
    ctx: typer.Context,
    idea_id: str = typer.Argument(..., help="Idea ID."),
    venture_id: str | None = typer.Option(None, help="Compile into this existing venture."),
    scope: str = typer.Option("medium", help="small|medium|large"),
    template: bool = typer.Option(False, "--template", help="Use the built-in plan template instead of the LLM."),
) -> None:
    with _session(ctx) as session:
        idea = services.get_idea(session, idea_id)
        with console.status("[bold cyan]compiling[/bold cyan]", spinner="dots"):
            idea, stats = asyncio.run(services.run_compilation(
                session, idea, create_venture=venture_id is None, venture_id=venture_id,
                use_ai=not template, scope=scope,
            ))
        payload = {"idea": services.idea_detail(idea), "stats": stats.to_dict()}
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=False, box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for key, value in payload["stats"].items():
        table.add_row(key, _format_scalar(value))
    console.print(Panel(table, title=f"compiled {payload['idea']['name']}", border_style="green"))


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------


@app.command("stats")
def stats_command(ctx: typer.Context) -> None:
    with _session(ctx) as session:
        stats = services.compute_stats(session)
    if _wants_json(ctx):
        typer.echo(json.dumps(stats, indent=2))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Status", style="bold")
    table.add_column("Count", justify="right")
    for status, count in sorted(stats["by_status"].items()):
        table.add_row(status, str(count))
    console.print(Panel(table, title=f"ideas: {stats['total']}", border_style="cyan"))
    if stats["by_verdict"]:
        console.print("  ".join(
            f"[{_VERDICT_STYLE[v]}]{v}[/{_VERDICT_STYLE[v]}] {n}" for v, n in sorted(stats["by_verdict"].items())
        ))


@app.command("prompt")
def prompt_command(
    ctx: typer.Context,
    idea_id: str = typer.Argument(..., help="Idea ID."),
    provider: str = typer.Option("gemini", help="gemini|perplexity"),
) -> None:
    """Print a research prompt tailored to the idea, for use in an external research tool."""
    with _session(ctx) as session:
        idea = services.get_idea(session, idea_id)
        result = asyncio.run(services.external_research_prompt(idea, provider=provider))
    if _wants_json(ctx):
        typer.echo(json.dumps(result, indent=2, ensure_ascii=False))
        return
    console.print(Panel(result["prompt"], title=f"{provider} prompt ({result['method']})", border_style="blue"))


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind host."),
    port: int = typer.Option(8001, help="Bind port."),
    reload: bool = typer.Option(False, help="Auto-reload on code changes."),
) -> None:
    import uvicorn
    uvicorn.run("venturelab.app:app", host=host, port=port, reload=reload)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
