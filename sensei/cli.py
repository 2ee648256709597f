#!/usr/bin/env python3
"""Sensei - next-step recommendations for coding-agent terminal sessions."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import typer
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError
from rich import box as _box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .analysis import EventType, JsonConfigStore, MemoryConfigStore, Phase, SessionConfig, SessionKey, TerminalMonitor
from .utils.config_loader import load_config, store_path

app = typer.Typer(
    name="sensei",
    help="Watch coding-agent terminals and recommend the next step",
    add_completion=False,
)
console = Console()

config_app = typer.Typer(help="Inspect and change stored session configs")
app.add_typer(config_app, name="config")

_state: dict = {"cfg": {}}


def _setup_logging(cfg: dict, verbose: bool):
    level_name = "DEBUG" if verbose else str((cfg.get("logging") or {}).get("level", "WARNING")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.callback()
def main(
    config: Path = typer.Option(None, "--config", "-c", help="Path to sensei.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Load .env, application config and logging before any command."""
    load_dotenv()
    cfg = load_config(config)
    _setup_logging(cfg, verbose)
    _state["cfg"] = cfg


def _print_recommendation(rec: dict):
    conf = rec.get("confidence", 0.0)
    colour = "green" if conf >= 0.8 else "yellow" if conf >= 0.5 else "red"
    body = rec.get("recommendation", "")
    if rec.get("command"):
        body += f"\n\n[bold]Command:[/bold] {rec['command']}"
    status = "auto-approved" if rec.get("auto_approved") else "denied" if rec.get("denied") else \
        "executed" if rec.get("executed") else "pending"
    console.print(Panel(
        body,
        title=f"[{colour}]{rec.get('source', 'sensei')} · {conf:.2f}[/{colour}]",
        subtitle=f"{rec.get('id', '')} · {status}",
        border_style=colour,
    ))


def visible_tail(lines: list[str], count: int) -> list[str]:
    """The last ``count`` non-blank lines: all an append-only transcript still shows."""
    shown = []
    for line in reversed(lines):
        if line.strip():
            shown.append(line)
            if len(shown) >= count:
                break
    return list(reversed(shown))


class TranscriptFollower:
    """Polls a transcript file and feeds each new capture to the monitor."""

    def __init__(self, monitor: TerminalMonitor, key: SessionKey, path: Path,
                 visible_lines: int = 1, stream: bool = False):
        self.monitor = monitor
        self.key = key
        self.path = path
        self.visible_lines = max(1, visible_lines)
        self.stream = stream
        self.seen = 0

    async def poll(self) -> Phase:
        try:
            lines = self.path.read_text(errors="replace").splitlines()
        except FileNotFoundError:
            lines = []
        if len(lines) < self.seen:
            # Truncated or rotated
            self.monitor.command_sent(self.key, len(lines))
            self.seen = len(lines)
        phase = self.monitor.observe_capture(self.key, lines, visible_tail(lines, self.visible_lines))
        if self.stream and len(lines) > self.seen:
            await self.monitor.append_output(self.key, "\n".join(lines[self.seen:]))
        self.seen = len(lines)
        return phase


@app.command("watch")
def watch(
    logfile: Path = typer.Argument(..., help="Terminal transcript to follow"),
    server_id: str = typer.Option("local", "--server-id", help="Agent server identifier"),
    session_id: str = typer.Option("default", "--session-id", help="Agent session identifier"),
    model: str = typer.Option(None, "--model", "-m", help="Analysis model"),
    threshold: float = typer.Option(None, "--threshold", help="Auto-approval confidence threshold (0-1)"),
    auto_approve: bool = typer.Option(None, "--auto-approve/--no-auto-approve", help="Execute confident recommendations"),
    debounce_ms: int = typer.Option(None, "--debounce-ms", help="Quiet period before an episode is final (1000-15000)"),
    poll_interval: float = typer.Option(0.5, "--poll-interval", help="Seconds between transcript polls"),
    stream: bool = typer.Option(False, "--stream", help="Also analyze raw output chunks at the throttled rate"),
    visible_lines: int = typer.Option(1, "--visible-lines", help="Trailing non-blank lines checked for the working indicator"),
):
    """Follow a terminal transcript and print recommendations as episodes finish."""
    cfg = _state["cfg"]
    key = SessionKey(server_id, session_id)
    monitor = TerminalMonitor(cfg, store=JsonConfigStore(store_path(cfg)))

    partial = {"enabled": True}
    for name, value in (("model", model), ("confidence_threshold", threshold),
                        ("auto_approve", auto_approve), ("debounce_ms", debounce_ms)):
        if value is not None:
            partial[name] = value
    try:
        session = monitor.initialize(key, partial)
    except ValidationError as e:
        console.print(f"[red]Invalid option:[/red] {e}")
        raise typer.Exit(1)

    monitor.subscribe(EventType.RECOMMENDATION_AVAILABLE, lambda ev: _print_recommendation(ev.data["recommendation"]), key)
    monitor.subscribe(EventType.APPROVED, lambda ev: console.print(
        f"[bold green]→ approved[/bold green] {ev.data.get('command') or ev.data['recommendation']}"), key)
    monitor.subscribe(EventType.ANALYZING_STARTED, lambda ev: console.print("[dim]analyzing…[/dim]"), key)

    console.print(f"[bold cyan]Watching[/bold cyan] {logfile} as {key} "
                  f"(model {session.config.model}, threshold {session.config.confidence_threshold})")

    async def _run():
        follower = TranscriptFollower(monitor, key, logfile, visible_lines=visible_lines, stream=stream)
        while True:
            await follower.poll()
            await asyncio.sleep(poll_interval)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
    finally:
        monitor.cleanup(key)


@app.command("analyze")
def analyze(
    file: Path = typer.Argument(None, help="File to analyze (default: stdin)"),
    model: str = typer.Option(None, "--model", "-m", help="Analysis model"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Analyze a block of terminal output once."""
    text = file.read_text(errors="replace") if file else sys.stdin.read()
    if not text.strip():
        console.print("[red]Nothing to analyze.[/red]")
        raise typer.Exit(1)

    cfg = _state["cfg"]
    monitor = TerminalMonitor(cfg, store=MemoryConfigStore())
    key = SessionKey("cli", "oneshot")
    partial = {"enabled": True, "auto_approve": False}
    if model:
        partial["model"] = model
    monitor.initialize(key, partial)

    rec = asyncio.run(monitor.engine.analyze(key, text))
    if output_json:
        typer.echo(json.dumps(rec.to_dict(), indent=2))
    else:
        _print_recommendation(rec.to_dict())
    if rec.is_diagnostic:
        raise typer.Exit(1)


@config_app.command("show")
def config_show(
    key: str = typer.Argument(None, help="Session key server:session (default: all)"),
):
    """Show stored session configs."""
    store = JsonConfigStore(store_path(_state["cfg"]))
    stored = store.load()
    if key:
        try:
            wanted = SessionKey.parse(key)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        stored = {k: v for k, v in stored.items() if k == wanted}
    if not stored:
        console.print("[yellow]No stored session configs.[/yellow]")
        return

    table = Table(title=f"Session configs ({store.file_path})", box=_box.SIMPLE_HEAD)
    for column in ("Session", "Enabled", "Model", "Auto", "Threshold", "Max streak", "Debounce"):
        table.add_column(column)
    for session_key, partial in sorted(stored.items(), key=lambda item: str(item[0])):
        conf = SessionConfig.from_stored(partial)
        table.add_row(
            str(session_key),
            "yes" if conf.enabled else "no",
            conf.model,
            "yes" if conf.auto_approve else "no",
            f"{conf.confidence_threshold:.2f}",
            str(conf.max_consecutive_auto_approvals),
            f"{conf.debounce_ms} ms",
        )
    console.print(table)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Session key server:session"),
    assignments: list[str] = typer.Argument(..., help="FIELD=VALUE pairs"),
):
    """Merge FIELD=VALUE pairs into a session's stored config."""
    try:
        session_key = SessionKey.parse(key)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    partial = {}
    for item in assignments:
        name, sep, raw = item.partition("=")
        if not sep or name not in SessionConfig.model_fields:
            console.print(f"[red]Unknown setting:[/red] {item}")
            raise typer.Exit(1)
        partial[name] = yaml.safe_load(raw) if raw else raw

    store = JsonConfigStore(store_path(_state["cfg"]))
    current = SessionConfig.from_stored(store.load().get(session_key, {}))
    try:
        updated = current.merged(partial)
    except ValidationError as e:
        console.print(f"[red]Invalid value:[/red] {e}")
        raise typer.Exit(1)
    store.save(session_key, updated)
    console.print(f"[green]Updated {session_key}:[/green] " + ", ".join(f"{k}={getattr(updated, k)!r}" for k in partial))


if __name__ == "__main__":
    app()
