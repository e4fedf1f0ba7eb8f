"""
Load Generation Runtime - In-Memory Host

A small job-execution host satisfying ``HostProtocol``. It keeps jobs, a
FIFO queue and a pool of executors in memory and notifies run listeners
when items start and when runs finish.

Jobs are simulated: a run of a job with ``duration_ms`` finishes on its own
that many milliseconds after it starts; a job with ``duration_ms=None``
runs until it is stopped (like a job pinned to an executor that never
frees up).

The host can be driven two ways:
- ``start()`` launches a dispatcher thread that completes due runs and
  dispatches queued items every ``poll_interval_ms``
- ``dispatch()`` / ``complete_due_runs()`` step it manually (tests)

Listeners are always invoked after the host lock has been released, and a
run never completes on its own before its started notification has been
delivered.

Usage:
    host = InMemoryHost()
    job = host.create_job("folder/checkout", duration_ms=250)
    host.register_run_listener(on_started, on_finalized)
    host.start()
"""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from loadgen.runtime.errors import ErrorCode, host_error
from loadgen.runtime.host import RunListener
from loadgen.runtime.models import current_time_millis

logger = logging.getLogger(__name__)


class RunResult(Enum):
    SUCCESS = "success"
    ABORTED = "aborted"


@dataclass(eq=False)
class Run:
    """One execution of a job. Hashable by identity."""

    number: int
    job: "Job"
    generator_id: Optional[str]
    started_millis: int
    host: "InMemoryHost" = field(repr=False)
    finished_millis: Optional[int] = None
    result: Optional[RunResult] = None
    # Set once started listeners have been notified
    announced: bool = field(default=False, repr=False)

    @property
    def is_building(self) -> bool:
        return self.finished_millis is None

    def stop(self) -> None:
        """Forcibly interrupt the run."""
        self.host.stop_run(self)


@dataclass(eq=False)
class Job:
    """A runnable job. ``duration_ms=None`` means it never finishes on its own."""

    full_name: str
    duration_ms: Optional[int] = 0
    builds: list[Run] = field(default_factory=list)

    @property
    def last_build(self) -> Optional[Run]:
        return self.builds[-1] if self.builds else None


@dataclass(eq=False)
class QueueItem:
    """A pending submission carrying the generator cause tag."""

    item_id: int
    job: Job
    generator_id: Optional[str]
    not_before_millis: int


class InMemoryHost:
    """
    Reference job-execution host.

    Args:
        executors: Concurrent run limit (None for unlimited)
        enforce_privileges: Require ``elevated_privileges()`` for cancel/stop
        poll_interval_ms: Dispatcher thread period
        clock: Millisecond clock, injectable for tests
    """

    def __init__(
        self,
        executors: Optional[int] = None,
        enforce_privileges: bool = False,
        poll_interval_ms: int = 100,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.executors = executors
        self.enforce_privileges = enforce_privileges
        self.poll_interval_ms = poll_interval_ms
        self._clock = clock or current_time_millis

        self._lock = threading.RLock()
        self._jobs: dict[str, Job] = {}
        self._queue: list[QueueItem] = []
        self._running: set[Run] = set()
        self._item_ids = itertools.count(1)

        self._started_listeners: list[RunListener] = []
        self._finalized_listeners: list[RunListener] = []
        self._privileges = threading.local()

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._started = False

    # =========================================================================
    # Jobs
    # =========================================================================

    def create_job(self, full_name: str, duration_ms: Optional[int] = 0) -> Job:
        """Create (or replace) a job."""
        job = Job(full_name=full_name, duration_ms=duration_ms)
        with self._lock:
            self._jobs[full_name] = job
        logger.debug("Job created", extra={"job_name": full_name, "duration_ms": duration_ms})
        return job

    def remove_job(self, full_name: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.pop(full_name, None)

    def list_jobs(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def get_job(self, full_name: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(full_name)

    # =========================================================================
    # Queue
    # =========================================================================

    def submit(self, job: Job, generator_id: str, delay_millis: int = 0) -> QueueItem:
        """
        Enqueue a job tagged with the generator id.

        Raises:
            HostError: If the job is not known to this host
        """
        with self._lock:
            if self._jobs.get(job.full_name) is not job:
                raise host_error(
                    ErrorCode.HOST_UNKNOWN_JOB,
                    f"Job not found: {job.full_name}",
                    generator_id=generator_id,
                    job_name=job.full_name,
                )
            item = QueueItem(
                item_id=next(self._item_ids),
                job=job,
                generator_id=generator_id,
                not_before_millis=self._clock() + max(0, delay_millis),
            )
            self._queue.append(item)
        return item

    def queue_items(self) -> list[QueueItem]:
        with self._lock:
            return list(self._queue)

    def queue_items_for(self, generator_id: str) -> list[QueueItem]:
        with self._lock:
            return [item for item in self._queue if item.generator_id == generator_id]

    def cancel(self, item: QueueItem) -> bool:
        """
        Remove a pending item. Returns False if it had already left the queue.

        Raises:
            HostError: Outside ``elevated_privileges()`` when privileges are enforced
        """
        self._require_privileges("cancel", item.generator_id)
        with self._lock:
            try:
                self._queue.remove(item)
                return True
            except ValueError:
                return False

    # =========================================================================
    # Runs
    # =========================================================================

    def running(self) -> list[Run]:
        with self._lock:
            return list(self._running)

    def stop_run(self, run: Run) -> None:
        """
        Abort a running run and notify finalized listeners.

        Raises:
            HostError: Outside ``elevated_privileges()`` when privileges are enforced
        """
        self._require_privileges("stop", run.generator_id)
        with self._lock:
            if run not in self._running:
                return
            self._finish(run, RunResult.ABORTED)
        self._notify(self._finalized_listeners, run)

    def generator_id_of(self, run: Run) -> Optional[str]:
        return run.generator_id

    def register_run_listener(self, started: RunListener, finalized: RunListener) -> None:
        with self._lock:
            self._started_listeners.append(started)
            self._finalized_listeners.append(finalized)

    @contextmanager
    def elevated_privileges(self) -> Iterator[None]:
        """Context in which cancel and stop are permitted (per thread)."""
        depth = getattr(self._privileges, "depth", 0)
        self._privileges.depth = depth + 1
        try:
            yield
        finally:
            self._privileges.depth = depth

    # =========================================================================
    # Execution
    # =========================================================================

    def dispatch(self) -> list[Run]:
        """Start due queue items while executors are free."""
        started: list[Run] = []
        with self._lock:
            now = self._clock()
            for item in list(self._queue):
                if self.executors is not None and len(self._running) >= self.executors:
                    break
                if item.not_before_millis > now:
                    continue
                self._queue.remove(item)
                run = Run(
                    number=len(item.job.builds) + 1,
                    job=item.job,
                    generator_id=item.generator_id,
                    started_millis=now,
                    host=self,
                )
                item.job.builds.append(run)
                self._running.add(run)
                started.append(run)

        for run in started:
            self._notify(self._started_listeners, run)
            with self._lock:
                run.announced = True
        return started

    def complete_due_runs(self) -> list[Run]:
        """Finish runs whose job duration has elapsed."""
        finished: list[Run] = []
        with self._lock:
            now = self._clock()
            for run in list(self._running):
                duration = run.job.duration_ms
                # Never finalize a run before its start has been announced
                if not run.announced:
                    continue
                if duration is not None and now >= run.started_millis + duration:
                    self._finish(run, RunResult.SUCCESS)
                    finished.append(run)

        for run in finished:
            self._notify(self._finalized_listeners, run)
        return finished

    def step(self) -> None:
        """One dispatcher iteration."""
        self.complete_due_runs()
        self.dispatch()

    def start(self) -> None:
        """Start the dispatcher thread."""
        if self._started:
            logger.warning("Host dispatcher already running")
            return

        self._started = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._dispatch_loop,
            name="InMemoryHost-Dispatcher",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "Host dispatcher started",
            extra={"executors": self.executors, "poll_interval_ms": self.poll_interval_ms},
        )

    def stop(self, timeout: float = 5.0) -> None:
        if not self._started:
            return

        self._started = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Host dispatcher stopped")

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "jobs": len(self._jobs),
                "queued": len(self._queue),
                "running": len(self._running),
                "executors": self.executors,
            }

    # =========================================================================
    # Internals
    # =========================================================================

    def _dispatch_loop(self) -> None:
        logger.debug("Dispatch loop started")

        while not self._stop_event.wait(timeout=self.poll_interval_ms / 1000.0):
            if not self._started:
                break
            try:
                self.step()
            except Exception as e:
                logger.error("Dispatch loop error", extra={"error": str(e)})

        logger.debug("Dispatch loop stopped")

    def _finish(self, run: Run, result: RunResult) -> None:
        # Caller holds self._lock
        self._running.discard(run)
        run.finished_millis = self._clock()
        run.result = result

    def _require_privileges(self, action: str, generator_id: Optional[str]) -> None:
        if self.enforce_privileges and getattr(self._privileges, "depth", 0) == 0:
            raise host_error(
                ErrorCode.HOST_PERMISSION_DENIED,
                f"{action} requires elevated privileges",
                generator_id=generator_id,
                action=action,
            )

    def _notify(self, listeners: list[RunListener], run: Run) -> None:
        with self._lock:
            listeners = list(listeners)

        for listener in listeners:
            try:
                listener(run, run.generator_id)
            except Exception as e:
                logger.error(
                    "Run listener error",
                    extra={
                        "job_name": run.job.full_name,
                        "generator_id": run.generator_id,
                        "error": str(e),
                    },
                )
