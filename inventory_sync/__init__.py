"""Inventory sync: paginated source → image enrichment → NDJSON snapshots → batched delivery."""

from .orchestrator import SyncRun, run_sync

__all__ = ["SyncRun", "run_sync"]

__version__ = "0.1.0"
