"""
Monitor check-ins for scheduled jobs.

Two ways in:
- `CheckInObserver` receives job lifecycle callbacks from a scheduler
  (anything that can call `on_job_start` / `on_job_stop` /
  `on_job_exception`).
- `monitor(slug)` wraps a single job as a decorator or context manager.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from ..events import CheckInStatus, new_event_id
from ..models import MonitorConfig


logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 50

# Cron shorthands with an interval equivalent; "@reboot" has none
_SHORTHAND_SCHEDULES = {
    "@hourly": (1, "hour"),
    "@daily": (1, "day"),
    "@weekly": (1, "week"),
    "@monthly": (1, "month"),
    "@yearly": (1, "year"),
    "@annually": (1, "year"),
}


def schedule_from_expression(cron_expr: str | None) -> dict[str, Any] | None:
    """Monitor schedule for a cron expression, or None if it has no schedule."""
    if not cron_expr:
        return None
    if cron_expr in _SHORTHAND_SCHEDULES:
        value, unit = _SHORTHAND_SCHEDULES[cron_expr]
        return {"type": "interval", "value": value, "unit": unit}
    if cron_expr.startswith("@"):
        return None
    return {"type": "crontab", "value": cron_expr}


def slugify(job_name: str) -> str:
    """
    Monitor slug for a job name.

    >>> slugify("billing.tasks.SendInvoices")
    'billing-tasks-send-invoices'
    """
    parts = []
    for part in re.split(r"[.:]", job_name):
        part = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", part).lower()
        parts.append(re.sub(r"[^a-z0-9]+", "-", part).strip("-"))
    return "-".join(p for p in parts if p)[:MAX_SLUG_LENGTH]


class JobObserver(ABC):
    """Callbacks a scheduler invokes around each job run."""

    @abstractmethod
    def on_job_start(self, job_id: str, name: str, cron_expr: str | None = None) -> None:
        pass

    @abstractmethod
    def on_job_stop(self, job_id: str, succeeded: bool = True) -> None:
        pass

    @abstractmethod
    def on_job_exception(self, job_id: str, exc: BaseException | None = None) -> None:
        pass


@dataclass
class _RunningJob:
    monitor_slug: str
    check_in_id: str
    started: float


@dataclass
class CheckInObserver(JobObserver):
    """
    Turns job lifecycle callbacks into monitor check-ins.

    Start sends an `in_progress` check-in; stop and exception reuse its
    check-in ID and report the run duration. Jobs whose cron expression
    has no schedule (e.g. "@reboot") are not monitored.
    """
    pipeline: Any

    # Injectable for tests
    clock: Any = time.monotonic

    _running: dict[str, _RunningJob] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def on_job_start(self, job_id: str, name: str, cron_expr: str | None = None) -> None:
        schedule = schedule_from_expression(cron_expr)
        if cron_expr is not None and schedule is None:
            logger.debug(f"Job {name} has no monitor schedule ({cron_expr}), not monitored")
            return

        job = _RunningJob(slugify(name), new_event_id(), self.clock())
        with self._lock:
            self._running[job_id] = job

        self.pipeline.capture_check_in(
            job.monitor_slug,
            CheckInStatus.IN_PROGRESS,
            check_in_id=job.check_in_id,
            monitor_config={"schedule": schedule} if schedule else None,
        )

    def on_job_stop(self, job_id: str, succeeded: bool = True) -> None:
        self._finish(job_id, CheckInStatus.OK if succeeded else CheckInStatus.ERROR)

    def on_job_exception(self, job_id: str, exc: BaseException | None = None) -> None:
        self._finish(job_id, CheckInStatus.ERROR)

    def _finish(self, job_id: str, status: CheckInStatus) -> None:
        with self._lock:
            job = self._running.pop(job_id, None)
        if job is None:
            logger.debug(f"No check-in in progress for job {job_id}")
            return

        self.pipeline.capture_check_in(
            job.monitor_slug,
            status,
            check_in_id=job.check_in_id,
            duration=self.clock() - job.started,
        )

    @property
    def in_progress(self) -> int:
        return len(self._running)


@contextmanager
def monitor(
    monitor_slug: str,
    monitor_config: MonitorConfig | dict[str, Any] | None = None,
    pipeline: Any = None,
) -> Iterator[str]:
    """
    Report a job run as check-ins.

    Usage:
        @monitor("nightly-export", {"schedule": {"type": "crontab", "value": "0 3 * * *"}})
        def export():
            ...

        with monitor("cleanup") as check_in_id:
            ...

    Uses the default pipeline unless one is given. Exceptions from the
    job are reported as an `error` check-in and re-raised.
    """
    if pipeline is None:
        from ..pipeline import get_pipeline
        pipeline = get_pipeline()

    check_in_id = new_event_id()
    started = time.monotonic()
    pipeline.capture_check_in(
        monitor_slug,
        CheckInStatus.IN_PROGRESS,
        check_in_id=check_in_id,
        monitor_config=monitor_config,
    )

    status = CheckInStatus.ERROR
    try:
        yield check_in_id
        status = CheckInStatus.OK
    finally:
        pipeline.capture_check_in(
            monitor_slug,
            status,
            check_in_id=check_in_id,
            duration=time.monotonic() - started,
        )
