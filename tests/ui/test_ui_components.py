from __future__ import annotations

import io

from rich.console import Console

from inventory_sync.models import ProgressEvent, ProgressStatus
from inventory_sync.ui import ProgressReporter


def _event(status: ProgressStatus, **kwargs) -> ProgressEvent:
    return ProgressEvent(status=status, **kwargs)


def test_progress_reporter_tracks_latest_counters() -> None:
    reporter = ProgressReporter(enabled=False)
    reporter(_event(ProgressStatus.STARTED))
    reporter(_event(ProgressStatus.IMAGES_ENRICHING, total=30, total_processed=10, with_images=8, without_images=1, errors=1, concurrency=4))
    reporter(_event(ProgressStatus.PAGE_DELIVERED, total_processed=10, sent=9, failed=1, concurrency=4))
    reporter.close()

    state = reporter.state
    assert (state.processed, state.with_images, state.sent, state.failed) == (10, 0, 9, 1)
    assert reporter.state.total == 30
    assert reporter.state.concurrency == 4
    assert reporter.events == [
        ProgressStatus.STARTED,
        ProgressStatus.IMAGES_ENRICHING,
        ProgressStatus.PAGE_DELIVERED,
    ]


def test_progress_reporter_is_silent_without_terminal() -> None:
    console = Console(file=io.StringIO(), force_terminal=False)
    reporter = ProgressReporter(enabled=True, console=console)
    reporter(_event(ProgressStatus.STARTED))
    reporter(_event(ProgressStatus.COMPLETED, total=5, total_processed=5))
    assert reporter.enabled is False
    assert console.file.getvalue() == ""
    assert reporter.state.status is ProgressStatus.COMPLETED


def test_progress_reporter_renders_on_terminal() -> None:
    console = Console(file=io.StringIO(), force_terminal=True, width=120)
    reporter = ProgressReporter(enabled=True, console=console)
    reporter(_event(ProgressStatus.STARTED))
    reporter(_event(ProgressStatus.PAGE_COLLECTED, current_page=1, last_page=3, total=30))
    reporter(_event(ProgressStatus.COMPLETED, total=30, total_processed=30))
    assert reporter.enabled is True
    assert reporter._progress is None
