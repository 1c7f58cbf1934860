from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from zemdocs.config import BRT
from zemdocs.services.exceptions import SyncCancelled
from zemdocs.utils.cron import CronSchedule

logger = logging.getLogger(__name__)

# Upper bound on one idle wait so clock jumps are picked up.
_MAX_IDLE = 60.0


class Job(Protocol):
    @property
    def name(self) -> str: ...

    def execute(self, cancel: threading.Event | None = None) -> Any: ...


@dataclass
class _Entry:
    job: Job
    schedule: CronSchedule
    next_run: datetime


def _now_brt() -> datetime:
    return datetime.now(BRT)


class Scheduler:
    """Runs jobs on cron schedules, each firing in its own thread.

    Every firing gets a fresh cancel event. ``stop()`` cancels them all and
    blocks until in-flight executions have returned.
    """

    def __init__(self, *, now_func: Callable[[], datetime] = _now_brt) -> None:
        self._now = now_func
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._stopping = threading.Event()
        self._wake = threading.Event()
        self._idle = threading.Condition()
        self._inflight = 0
        self._cancels: set[threading.Event] = set()
        self._thread: threading.Thread | None = None

    def add_job(self, cron: str, job: Job) -> None:
        """Register *job* on *cron*. Raises ValueError for an invalid expression."""
        schedule = CronSchedule.parse(cron)
        with self._lock:
            self._entries[job.name] = _Entry(job, schedule, schedule.next_after(self._now()))
        self._wake.set()
        logger.info("Job %s added with schedule %r", job.name, cron)

    def remove_job(self, name: str) -> bool:
        with self._lock:
            removed = self._entries.pop(name, None) is not None
        if removed:
            logger.info("Job %s removed", name)
        return removed

    def jobs(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def next_run(self, name: str) -> datetime | None:
        with self._lock:
            entry = self._entries.get(name)
            return entry.next_run if entry else None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._loop, name="scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started")

    def stop(self, timeout: float | None = None) -> bool:
        """Stop firing, cancel running jobs and wait for them to return.

        Returns False if executions were still running when *timeout* expired.
        """
        self._stopping.set()
        self._wake.set()
        with self._lock:
            for cancel in self._cancels:
                cancel.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        with self._idle:
            drained = self._idle.wait_for(lambda: self._inflight == 0, timeout)
        if drained:
            logger.info("Scheduler stopped")
        else:
            logger.warning("Scheduler stopped with %d job(s) still running", self._inflight)
        return drained

    def _loop(self) -> None:
        while not self._stopping.is_set():
            now = self._now()
            due: list[Job] = []
            with self._lock:
                for entry in self._entries.values():
                    if entry.next_run <= now:
                        due.append(entry.job)
                        entry.next_run = entry.schedule.next_after(now)
                upcoming = min((e.next_run for e in self._entries.values()), default=None)
            for job in due:
                self._fire(job)
            wait = _MAX_IDLE
            if upcoming is not None:
                wait = min(max((upcoming - self._now()).total_seconds(), 0.0), _MAX_IDLE)
            self._wake.wait(wait)
            self._wake.clear()

    def _fire(self, job: Job) -> threading.Thread:
        with self._idle:
            self._inflight += 1
        thread = threading.Thread(
            target=self._run_tracked, args=(job,), name=f"job-{job.name}", daemon=True
        )
        thread.start()
        return thread

    def _run_tracked(self, job: Job) -> None:
        try:
            self._execute(job)
        finally:
            with self._idle:
                self._inflight -= 1
                self._idle.notify_all()

    def run_job(self, job: Job) -> Any:
        """Execute *job* now in the calling thread, tracked like a scheduled firing."""
        with self._idle:
            self._inflight += 1
        try:
            return self._execute(job)
        finally:
            with self._idle:
                self._inflight -= 1
                self._idle.notify_all()

    def _execute(self, job: Job) -> Any:
        cancel = threading.Event()
        with self._lock:
            self._cancels.add(cancel)
        if self._stopping.is_set():
            cancel.set()

        start = time.monotonic()
        logger.info("Job %s starting", job.name)
        try:
            result = job.execute(cancel)
        except SyncCancelled:
            logger.info("Job %s cancelled after %.1fs", job.name, time.monotonic() - start)
            return None
        except Exception:
            logger.exception(
                "Job %s failed after %.1fs", job.name, time.monotonic() - start
            )
            return None
        finally:
            with self._lock:
                self._cancels.discard(cancel)
        logger.info("Job %s finished in %.1fs", job.name, time.monotonic() - start)
        return result
