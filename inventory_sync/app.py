"""Typer CLI entrypoint for inventory-sync."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, ScheduleConfig, ScheduleType, SyncConfig
from .engine import BatchDeliverer, Fetcher
from .errors import SinkError
from .logging_conf import (
    available_run_logs,
    close_run_logger,
    configure_logging,
    log_dir,
    run_logger,
    tail_log,
)
from .models import DeliveryTally, SyncRunResult
from .orchestrator import SyncRun, new_run_id
from .scheduler import APSchedulerAdapter
from .ui import ProgressReporter

app = typer.Typer(
    help="Inventory sync command line tool",
    no_args_is_help=True,
    rich_markup_mode=None,
)
config_app = typer.Typer(
    name="config",
    help="Configuration commands",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Log viewing commands",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    config_path: Path | None = None
    verbose: bool = False

    def load_config(self) -> SyncConfig:
        config = self.repository.load(self.config_path)
        return self.repository.resolve_outputs(config)


def build_state(verbose: bool, config_path: Path | None = None) -> AppState:
    repository = ConfigRepository()
    configure_logging(verbose=verbose)
    return AppState(repository=repository, config_path=config_path, verbose=verbose)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _format_schedule(schedule: ScheduleConfig) -> str:
    data = schedule.value
    label = schedule.type.value
    if data in (None, "", [], {}):
        return label
    if schedule.type is ScheduleType.CRON:
        return f"cron ({data})"
    if schedule.type is ScheduleType.INTERVAL:
        return f"interval ({data})"
    return f"{label} ({data})"


def _render_result_table(result: SyncRunResult, title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Status", result.status.value)
    table.add_row("Pages visited", str(result.pages_visited))
    table.add_row("Pages skipped", str(result.pages_skipped))
    table.add_row("Processed", str(result.total_processed))
    table.add_row("With images", str(result.with_images))
    table.add_row("Without images", str(result.without_images))
    table.add_row("Image errors", str(result.image_errors))
    table.add_row("Read", str(result.read))
    table.add_row("Sent", str(result.sent))
    table.add_row("Failed", str(result.failed))
    if result.error:
        table.add_row("Error", result.error)
    return table


def _render_tally_table(tally: DeliveryTally, title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Read", str(tally.read))
    table.add_row("Sent", str(tally.sent))
    table.add_row("Failed", str(tally.failed))
    table.add_row("Batches", str(tally.batches))
    table.add_row("Failed batches", str(tally.failed_batches))
    return table


def _apply_overrides(config: SyncConfig, *, images: bool, deliver: bool) -> SyncConfig:
    updates = {}
    if not images:
        updates["images"] = config.images.model_copy(update={"enabled": False})
    if not deliver:
        updates["destination"] = config.destination.model_copy(update={"enabled": False})
    return config.model_copy(update=updates) if updates else config


def _execute_run(state: AppState, config: SyncConfig, progress_enabled: bool) -> SyncRunResult:
    run_id = new_run_id()
    reporter = ProgressReporter(enabled=progress_enabled, console=console)
    try:
        return SyncRun(
            config,
            on_progress=reporter,
            run_id=run_id,
            logger=run_logger(run_id, verbose=state.verbose),
        ).execute()
    finally:
        reporter.close()
        close_run_logger(run_id)


app.add_typer(config_app, name="config", help="Show or initialise the configuration file")
app.add_typer(log_app, name="log", help="Inspect log files")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True),
    config: Optional[Path] = typer.Option(
        None, "--config", help="Use this configuration file instead of the default one."
    ),
) -> None:
    ctx.obj = build_state(verbose, config)


@app.command("run", help="Run one sync pass: fetch, enrich, persist and deliver.")
def run(
    ctx: typer.Context,
    quiet: bool = typer.Option(False, "--quiet", help="Print a one-line summary only.", is_flag=True),
    images: bool = typer.Option(True, "--images/--no-images", help="Fetch record images."),
    deliver: bool = typer.Option(True, "--deliver/--no-deliver", help="Forward batches to the destination."),
) -> None:
    state = _get_state(ctx)
    config = _apply_overrides(state.load_config(), images=images, deliver=deliver)
    result = _execute_run(state, config, progress_enabled=not quiet and console.is_terminal)
    if quiet:
        console.print(
            f"{result.status.value}: processed {result.total_processed}, "
            f"sent {result.sent}, failed {result.failed}"
        )
    else:
        console.print(_render_result_table(result, "Sync result"))
    if not result.success:
        raise typer.Exit(code=1)


@app.command("deliver", help="Replay an enriched snapshot file to the destination.")
def deliver_snapshot(
    ctx: typer.Context,
    path: Optional[Path] = typer.Argument(None, help="Enriched NDJSON file (defaults to the configured one)."),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Records per request."),
    limit: Optional[int] = typer.Option(None, "--limit", min=0, help="Deliver at most N records."),
) -> None:
    state = _get_state(ctx)
    config = state.load_config()
    target = path or config.output.enriched_path
    run_id = f"deliver-{new_run_id()}"
    logger = run_logger(run_id, verbose=state.verbose)
    try:
        with Fetcher(auth=config.destination.auth(), logger=logger) as fetcher:
            deliverer = BatchDeliverer(
                fetcher,
                config.destination,
                id_field=config.source.record_id_field,
                id_aliases=config.source.record_id_aliases,
                logger=logger,
            )
            try:
                tally = deliverer.deliver_file(target, batch_size=batch_size, item_limit=limit)
            except SinkError as exc:
                console.print(f"Cannot read snapshot: {exc}", style="red")
                raise typer.Exit(code=1)
    finally:
        close_run_logger(run_id)
    console.print(_render_tally_table(tally, f"Delivery of {target.name}"))
    if tally.failed:
        raise typer.Exit(code=1)


@app.command("schedule", help="Run sync passes periodically until interrupted.")
def schedule(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    config = state.load_config()
    adapter = APSchedulerAdapter()
    stop = threading.Event()

    def _job() -> None:
        result = _execute_run(state, state.load_config(), progress_enabled=False)
        console.print(
            f"[dim]{result.status.value}: processed {result.total_processed}, "
            f"sent {result.sent}, failed {result.failed}[/dim]"
        )

    adapter.schedule_sync(config.schedule, _job)
    adapter.start()
    console.print(f"Scheduled sync: {_format_schedule(config.schedule)}. Press Ctrl+C to stop.", style="green")
    try:
        stop.wait()
    except KeyboardInterrupt:
        console.print("Stopping scheduler…", style="yellow")
    finally:
        adapter.shutdown()


@config_app.command("show", help="Print the effective configuration.")
def config_show(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    config = state.repository.load(state.config_path)
    console.print(yaml.safe_dump(config.model_dump(mode="json"), allow_unicode=True, sort_keys=False))


@config_app.command("init", help="Write the default configuration file.")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    target = state.config_path or state.repository.locator.config_path()
    if target.exists() and not force:
        console.print(f"Configuration already exists: {target}", style="yellow")
        raise typer.Exit(code=1)
    state.repository.save(SyncConfig(), target)
    console.print(f"Configuration written to {target}", style="green")


@log_app.command("list", help="List per-run log files.")
def log_list() -> None:
    logs = list(available_run_logs())
    console.print("Run logs:", style="cyan")
    if not logs:
        console.print("No run logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of the main log or of one run log.")
def log_show(
    run_id: Optional[str] = typer.Option(None, "--run", help="Run id (defaults to the main log)."),
    errors: bool = typer.Option(False, "--errors", help="Show the error log.", is_flag=True),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines."),
) -> None:
    base_dir = log_dir()
    if run_id:
        path = base_dir / "runs" / f"{run_id}.log"
    elif errors:
        path = base_dir / "error.log"
    else:
        path = base_dir / "sync.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
