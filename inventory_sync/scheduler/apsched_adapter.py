"""APScheduler wrapper exposing higher level helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType

SYNC_JOB_ID = "inventory-sync"


class APSchedulerAdapter:
    """Manage the periodic sync job; runs never overlap."""

    def __init__(
        self,
        scheduler: BackgroundScheduler | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = logger or structlog.get_logger("inventory_sync").bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_sync(
        self,
        schedule: ScheduleConfig,
        callback: Callable[..., Any],
        job_id: str = SYNC_JOB_ID,
    ) -> None:
        trigger = self.build_trigger(schedule)
        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job_id=job_id, schedule=schedule.model_dump(mode="json"))

    def remove_sync(self, job_id: str = SYNC_JOB_ID) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except Exception:  # noqa: BLE001
            self.logger.warning("job_remove_failed", job_id=job_id)

    @staticmethod
    def build_trigger(schedule: ScheduleConfig):
        if schedule.type is ScheduleType.CRON:
            return CronTrigger.from_crontab(str(schedule.value))
        if schedule.type is ScheduleType.INTERVAL:
            if isinstance(schedule.value, (int, float)):
                return IntervalTrigger(seconds=float(schedule.value))
            if isinstance(schedule.value, dict):
                return IntervalTrigger(**schedule.value)
            raise ValueError("Interval schedule requires seconds or kwargs dict")
        if schedule.type is ScheduleType.ONCE:
            if schedule.value:
                run_date = datetime.fromisoformat(str(schedule.value))
            else:
                run_date = datetime.now(timezone.utc)
            return DateTrigger(run_date=run_date)
        raise ValueError(f"Unknown schedule type: {schedule.type}")

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["APSchedulerAdapter", "SYNC_JOB_ID"]
