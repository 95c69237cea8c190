"""CLI interface for uiforge with live streaming of generated components."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

import click
import httpx
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from uiforge import __version__
from uiforge.analytics.tokens import TokenEstimator
from uiforge.catalog import PROVIDERS
from uiforge.config import ForgeConfig, load_config
from uiforge.core.orchestrator import RefinementOrchestrator
from uiforge.core.session import ArtifactSession
from uiforge.errors import ForgeError
from uiforge.events.bus import EventBus, Unsubscribe
from uiforge.health import ProviderHealthMonitor
from uiforge.llm.router import ProviderRouter
from uiforge.store import ArtifactStore
from uiforge.types import (
    ChatMessage,
    EventType,
    ForgeEvent,
    RefinementOutcome,
    TokenAnalytics,
)

console = Console()

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------

@dataclass
class Engine:
    """Everything one CLI invocation needs, built from a config."""

    config: ForgeConfig
    router: ProviderRouter
    monitor: ProviderHealthMonitor
    store: ArtifactStore
    orchestrator: RefinementOrchestrator

    async def close(self) -> None:
        await self.monitor.stop()
        await self.router.close()
        self.store.close()


def build_engine(
    config: ForgeConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Engine:
    router, monitor = ProviderRouter.from_config(config, transport=transport)
    store = ArtifactStore(config.storage.db_path)
    orchestrator = RefinementOrchestrator(
        router,
        store=store,
        event_bus=EventBus(),
        estimator=TokenEstimator(),
        config=config.refinement,
    )
    return Engine(config, router, monitor, store, orchestrator)


def _default_model(engine: Engine) -> str:
    if engine.config.default_model:
        return engine.config.default_model
    enabled = engine.router.enabled_providers()
    if not enabled:
        raise click.ClickException(
            "No provider is enabled. Set OPENAI_API_KEY, ANTHROPIC_API_KEY, "
            "GOOGLE_API_KEY or DEEPSEEK_API_KEY, or configure uiforge.yaml."
        )
    return engine.router.catalog.default_model(enabled[0])


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

class StreamingDisplay:
    """Renders engine events to the terminal in real time."""

    def __init__(self, con: Console, live: bool = True):
        self.con = con
        self._use_live = live and con.is_terminal
        self._live: Live | None = None

    def attach(self, bus: EventBus) -> Unsubscribe:
        return bus.subscribe("*", self.handle)

    def handle(self, event: ForgeEvent):
        data = event.data
        if event.type == EventType.STREAM_OPENED:
            attempt = data.get("attempt", 0)
            label = "Generating" if attempt == 0 else f"Retry {attempt}"
            self.con.print(
                f"[dim]{label} with {data.get('provider')} "
                f"(temperature {data.get('temperature', 0):.1f})...[/dim]"
            )
            if self._use_live:
                self._live = Live(console=self.con, transient=True, auto_refresh=True)
                self._live.start()

        elif event.type == EventType.STREAM_FRAGMENT:
            if self._live is not None:
                self._live.update(_syntax(data.get("code", "")))

        elif event.type == EventType.STATE_CHANGED:
            if data.get("to") != "streaming":
                self._stop_live()

        elif event.type == EventType.VALIDATION_FAILED:
            self.con.print(f"[yellow]Invalid output: {data.get('error')}[/yellow]")

        elif event.type == EventType.RETRY_SCHEDULED:
            self.con.print(
                f"[magenta]~ retrying (attempt {data.get('attempt', 0) + 1}) "
                f"in {data.get('delay', 0):.1f}s[/magenta]"
            )

        elif event.type == EventType.CYCLE_FAILED:
            self._stop_live()

        elif event.type == EventType.ANALYTICS_FAILED:
            self.con.print(f"[dim]Token analytics unavailable: {data.get('error')}[/dim]")

    def _stop_live(self):
        if self._live is not None:
            self._live.stop()
            self._live = None


def _syntax(code: str) -> Syntax:
    return Syntax(code or " ", "tsx", theme="monokai", line_numbers=True, word_wrap=True)


def _analytics_table(
    analytics: TokenAnalytics | None,
    cumulative: TokenAnalytics | None,
) -> Table:
    table = Table(title="Token usage", show_header=True)
    table.add_column("Scope")
    table.add_column("Model")
    table.add_column("Prompt", justify="right")
    table.add_column("Response", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Used", justify="right")
    for label, a in (("call", analytics), ("lineage", cumulative)):
        if a is None:
            continue
        table.add_row(
            label, a.model_name, str(a.prompt_tokens), str(a.response_tokens),
            str(a.total_tokens), str(a.max_tokens), f"{a.utilization_percentage}%",
        )
    return table


def _history_table(history: list[ChatMessage], width: int = 120) -> Table:
    table = Table(title="Conversation", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Role")
    table.add_column("Message")
    for i, message in enumerate(history, 1):
        content = " ".join(message.content.split())
        if len(content) > width:
            content = content[: width - 3] + "..."
        style = "cyan" if message.role == "user" else "green"
        table.add_row(str(i), Text(message.role, style=style), Text(content))
    return table


def _report(outcome: RefinementOutcome, output: str | None, start: float):
    if outcome.accepted:
        console.print(_syntax(outcome.code))
        console.print(f"[green]Artifact {outcome.artifact_id} accepted[/green]")
        if outcome.analytics or outcome.cumulative:
            console.print(_analytics_table(outcome.analytics, outcome.cumulative))
        if output:
            Path(output).write_text(outcome.code, encoding="utf-8")
            console.print(f"[dim]Wrote {output}[/dim]")
    else:
        console.print(Panel(outcome.message, title="Could not produce valid code",
                            border_style="yellow", expand=False))
    console.print(f"[dim]({time.monotonic() - start:.1f}s)[/dim]")


# ---------------------------------------------------------------------------
# Command runners
# ---------------------------------------------------------------------------

async def _run_generate(engine: Engine, prompt: str, model: str | None,
                        output: str | None):
    StreamingDisplay(console).attach(engine.orchestrator.event_bus)
    start = time.monotonic()
    session = engine.orchestrator.start_session(prompt, model or _default_model(engine))
    outcome = await engine.orchestrator.generate(session)
    _report(outcome, output, start)
    return outcome


async def _run_refine(engine: Engine, artifact_id: str, message: str,
                      error: str | None, model: str | None, output: str | None):
    StreamingDisplay(console).attach(engine.orchestrator.event_bus)
    start = time.monotonic()
    session = engine.orchestrator.resume_session(artifact_id, model=model)
    outcome = await engine.orchestrator.refine(session, message, error=error)
    _report(outcome, output, start)
    return outcome


async def _run_fix(engine: Engine, artifact_id: str, error: str,
                   line: int | None, column: int | None, output: str | None):
    StreamingDisplay(console).attach(engine.orchestrator.event_bus)
    start = time.monotonic()
    session = engine.orchestrator.resume_session(artifact_id)
    outcome = await engine.orchestrator.fix(session, error, line=line, column=column)
    _report(outcome, output, start)
    return outcome


async def _run_idea(engine: Engine, model: str | None) -> str:
    return await engine.orchestrator.generate_idea(model or _default_model(engine))


async def _run_doctor(engine: Engine):
    configured = engine.config.configured_providers()
    snapshot = await engine.monitor.refresh()
    table = Table(title="Providers", show_header=True)
    table.add_column("Provider")
    table.add_column("Configured")
    table.add_column("Reachable")
    for name in PROVIDERS:
        table.add_row(
            name,
            "[green]yes[/green]" if name in configured else "[dim]no[/dim]",
            "[green]yes[/green]" if snapshot.is_enabled(name) else "[red]no[/red]",
        )
    console.print(table)
    return snapshot


def _run(engine: Engine, coro):
    """Run *coro* to completion and always release the engine."""
    async def _wrapped():
        try:
            return await coro
        finally:
            await engine.close()
    try:
        return asyncio.run(_wrapped())
    except ForgeError as e:
        raise click.ClickException(str(e)) from e


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to uiforge.yaml (auto-detected from CWD or ~/.config/uiforge/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__, prog_name="uiforge")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """uiforge - turn prompts into working React components."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        config, config_file = load_config(config_path)
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e
    _logger.debug("Config: %s", config_file or "defaults")
    ctx.obj = config


@main.command()
@click.argument("prompt")
@click.option("--model", "-m", default=None, help="Model id (see `uiforge models`)")
@click.option("--output", "-o", default=None, help="Write the accepted code to a file")
@click.pass_obj
def generate(config: ForgeConfig, prompt: str, model: str | None, output: str | None):
    """Generate a new component from PROMPT."""
    engine = build_engine(config)
    outcome = _run(engine, _run_generate(engine, prompt, model, output))
    if not outcome.accepted:
        raise SystemExit(1)


@main.command()
@click.argument("artifact_id")
@click.argument("message")
@click.option("--error", "-e", default=None, help="Last error shown by the preview")
@click.option("--model", "-m", default=None, help="Switch to another model")
@click.option("--output", "-o", default=None, help="Write the accepted code to a file")
@click.pass_obj
def refine(config: ForgeConfig, artifact_id: str, message: str, error: str | None,
           model: str | None, output: str | None):
    """Refine artifact ARTIFACT_ID with a chat MESSAGE."""
    engine = build_engine(config)
    outcome = _run(engine, _run_refine(engine, artifact_id, message, error, model, output))
    if not outcome.accepted:
        raise SystemExit(1)


@main.command()
@click.argument("artifact_id")
@click.argument("error")
@click.option("--line", "-l", type=int, default=None, help="Error line")
@click.option("--column", type=int, default=None, help="Error column")
@click.option("--output", "-o", default=None, help="Write the accepted code to a file")
@click.pass_obj
def fix(config: ForgeConfig, artifact_id: str, error: str, line: int | None,
        column: int | None, output: str | None):
    """Ask the model to fix ERROR reported for artifact ARTIFACT_ID."""
    engine = build_engine(config)
    outcome = _run(engine, _run_fix(engine, artifact_id, error, line, column, output))
    if not outcome.accepted:
        raise SystemExit(1)


@main.command()
@click.option("--model", "-m", default=None, help="Model id")
@click.pass_obj
def idea(config: ForgeConfig, model: str | None):
    """Brainstorm a prompt for a new app."""
    engine = build_engine(config)
    console.print(_run(engine, _run_idea(engine, model)), highlight=False)


@main.command()
@click.pass_obj
def models(config: ForgeConfig):
    """List known models and whether their provider is enabled."""
    router, _ = ProviderRouter.from_config(config)
    enabled = set(router.enabled_providers())
    table = Table(show_header=True)
    table.add_column("Model")
    table.add_column("Name")
    table.add_column("Provider")
    table.add_column("Max tokens", justify="right")
    table.add_column("Enabled")
    for m in router.catalog.all():
        table.add_row(
            m.id, m.name, m.provider, str(m.max_tokens),
            "[green]yes[/green]" if m.provider in enabled else "[dim]no[/dim]",
        )
    console.print(table)
    asyncio.run(router.close())


@main.command()
@click.argument("artifact_id", required=False)
@click.option("--limit", "-n", default=20, help="How many artifacts to list")
@click.pass_obj
def show(config: ForgeConfig, artifact_id: str | None, limit: int):
    """Show a stored artifact, or list recent ones."""
    store = ArtifactStore(config.storage.db_path)
    try:
        if artifact_id is None:
            table = Table(show_header=True)
            table.add_column("Id")
            table.add_column("Model")
            table.add_column("Prompt")
            table.add_column("Updated")
            for rec in store.list_artifacts(limit=limit):
                table.add_row(
                    rec.id, rec.model, rec.prompt[:60],
                    time.strftime("%Y-%m-%d %H:%M", time.localtime(rec.updated_at)),
                )
            console.print(table)
            return

        record = store.get_artifact(artifact_id)
        if record is None:
            raise click.ClickException(f"Unknown artifact: {artifact_id}")
        console.print(f"[bold]{record.id}[/bold] [dim]{record.model}[/dim]")
        console.print(f"[dim]{record.prompt}[/dim]")
        console.print(_syntax(record.code))
        analytics = store.get_analytics(artifact_id)
        cumulative = store.get_cumulative(artifact_id)
        if analytics or cumulative:
            console.print(_analytics_table(analytics, cumulative))
    finally:
        store.close()


@main.command()
@click.pass_obj
def doctor(config: ForgeConfig):
    """Probe every configured provider."""
    engine = build_engine(config)
    _run(engine, _run_doctor(engine))


@main.command()
@click.option("--model", "-m", default=None, help="Model id")
@click.option("--resume", "-r", "artifact_id", default=None,
              help="Continue refining a stored artifact")
@click.pass_obj
def chat(config: ForgeConfig, model: str | None, artifact_id: str | None):
    """Interactive session: the first message generates, later ones refine.

    Commands: /fix <error>, /show, /history, /quit
    """
    engine = build_engine(config)
    _run(engine, _chat_loop(engine, model, artifact_id))


async def _chat_loop(engine: Engine, model: str | None, artifact_id: str | None):
    orchestrator = engine.orchestrator
    StreamingDisplay(console).attach(orchestrator.event_bus)
    engine.monitor.start()

    session: ArtifactSession | None = None
    if artifact_id:
        session = orchestrator.resume_session(artifact_id, model=model)
        console.print(f"[dim]Resumed {session.artifact_id} ({session.model})[/dim]")
    model = model or _default_model(engine)

    history_path = Path(os.path.expanduser("~/.uiforge/history"))
    history_path.parent.mkdir(parents=True, exist_ok=True)
    prompt_session: PromptSession[str] = PromptSession(history=FileHistory(str(history_path)))

    while True:
        try:
            user_input = (await prompt_session.prompt_async("❯ ")).strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye![/dim]")
            return
        if not user_input:
            continue
        if user_input in ("/quit", "/exit"):
            console.print("[dim]Goodbye![/dim]")
            return
        if user_input == "/history":
            if session is None or not session.history:
                console.print("[dim]No messages yet.[/dim]")
            else:
                console.print(_history_table(session.history))
            continue
        if user_input == "/show":
            if session is not None and session.code:
                console.print(_syntax(session.code))
            continue

        start = time.monotonic()
        try:
            if user_input.startswith("/fix"):
                error = user_input[len("/fix"):].strip()
                if session is None or not error:
                    console.print("[yellow]Usage: /fix <error> (after a generation)[/yellow]")
                    continue
                outcome = await orchestrator.fix(session, error)
            elif session is None or not session.has_artifact:
                session = orchestrator.start_session(user_input, model)
                outcome = await orchestrator.generate(session)
            else:
                outcome = await orchestrator.refine(session, user_input)
            _report(outcome, None, start)
            if outcome.accepted:
                console.print(f"[dim]{outcome.message}[/dim]")
        except ForgeError as e:
            console.print(f"[red]Error: {e}[/red]")
