"""Terminal progress rendering driven by sync progress events."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

from ..models import ProgressEvent, ProgressStatus


@dataclass
class ProgressState:
    total: int | None = None
    processed: int = 0
    with_images: int = 0
    without_images: int = 0
    errors: int = 0
    sent: int = 0
    failed: int = 0
    concurrency: int = 0
    current_page: int | None = None
    last_page: int | None = None
    status: ProgressStatus | None = None
    message: str | None = None


class RateColumn(ProgressColumn):
    """Records processed per second."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("", style="progress.percentage")
        return Text(f"{speed:.1f} rec/s", style="progress.percentage")


class ProgressReporter:
    """Callable progress sink rendering a Rich bar and keeping counters.

    Falls back to silent counting when the console is not a terminal.
    """

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self._lock = Lock()
        self.state = ProgressState()
        self.events: list[ProgressStatus] = []

    def __call__(self, event: ProgressEvent) -> None:
        with self._lock:
            self._apply(event)
            self.events.append(event.status)
            if event.status is ProgressStatus.STARTED:
                self._start()
            self._render()
            if event.status in (ProgressStatus.COMPLETED, ProgressStatus.ERROR):
                self._stop()

    def close(self) -> None:
        with self._lock:
            self._stop()

    # ------------------------------------------------------------------
    def _apply(self, event: ProgressEvent) -> None:
        state = self.state
        state.status = event.status
        state.total = event.total if event.total is not None else state.total
        state.processed = event.total_processed
        state.with_images = event.with_images
        state.without_images = event.without_images
        state.errors = event.errors
        state.sent = event.sent
        state.failed = event.failed
        state.concurrency = event.concurrency or state.concurrency
        state.current_page = event.current_page
        state.last_page = event.last_page
        state.message = event.message

    def _start(self) -> None:
        if not self.enabled or self._progress is not None:
            return
        if self._console is None:
            self._console = Console()
        if not self._console.is_terminal:
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[page]:<12}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green", pulse_style="cyan"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            RateColumn(),
            TextColumn("[green]img{task.fields[with_images]:>5}", justify="right"),
            TextColumn("[yellow]none{task.fields[without_images]:>5}", justify="right"),
            TextColumn("[red]✗{task.fields[errors]:>4}", justify="right"),
            TextColumn("[cyan]c={task.fields[concurrency]}", justify="right"),
            refresh_per_second=8,
            expand=True,
            transient=True,
            console=self._console,
        )
        try:
            self._progress.__enter__()
        except LiveError:
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task(
            "sync", total=None, page="-", with_images=0, without_images=0, errors=0, concurrency=0
        )

    def _render(self) -> None:
        if self._progress is None or self._task_id is None:
            return
        state = self.state
        page = "-"
        if state.current_page is not None:
            page = f"p{state.current_page}/{state.last_page or '?'}"
        self._progress.update(
            self._task_id,
            total=state.total,
            completed=state.processed,
            page=page,
            with_images=state.with_images,
            without_images=state.without_images,
            errors=state.errors,
            concurrency=state.concurrency,
        )

    def _stop(self) -> None:
        if self._progress is None:
            return
        try:
            self._progress.stop()
        finally:
            self._progress.__exit__(None, None, None)
            self._progress = None
            self._task_id = None


__all__ = ["ProgressReporter", "ProgressState", "RateColumn"]
