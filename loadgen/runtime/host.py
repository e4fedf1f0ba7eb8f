"""
Load Generation Runtime - Host Interface

The controller never executes jobs itself. It submits to, observes, and
cancels work on a job-execution host through the capability set declared
here. Any object satisfying ``HostProtocol`` can be plugged in; the
in-memory reference host lives in ``loadgen.runtime.local_host``.

Contract for hosts:
- ``submit`` attaches the generator id as a cause tag that later surfaces
  on the resulting run (``generator_id_of``)
- run listeners are invoked with the run and the cause-extracted generator
  id, and MUST NOT be invoked while the host holds its own internal locks
- the finalized notification for a run is never delivered before its
  started notification (a stop requested from inside the started
  callback is the one exception the controller tolerates)
- ``cancel`` and ``stop_run`` may require the ``elevated_privileges``
  context
"""

from __future__ import annotations

from typing import Any, Callable, ContextManager, Hashable, Iterable, Optional, Protocol


class JobRef(Protocol):
    """A job the host can run."""

    @property
    def full_name(self) -> str:
        ...


class QueueItemRef(Protocol):
    """A pending submission in the host queue."""

    @property
    def generator_id(self) -> Optional[str]:
        ...


class RunRef(Hashable, Protocol):
    """An active or finished execution of a job."""

    def stop(self) -> None:
        """Forcibly interrupt the run."""
        ...


# Callback signature for run lifecycle notifications
RunListener = Callable[[Any, Optional[str]], None]


class HostProtocol(Protocol):
    """Capabilities the controller requires from a job-execution host."""

    def list_jobs(self) -> Iterable[JobRef]:
        """Enumerate all jobs (read-only, re-read on every call)."""
        ...

    def get_job(self, full_name: str) -> Optional[JobRef]:
        """Look up a job by exact full name."""
        ...

    def submit(
        self,
        job: JobRef,
        generator_id: str,
        delay_millis: int = 0,
    ) -> QueueItemRef:
        """
        Enqueue a job tagged with the generator id.

        Raises:
            HostError: If the host refuses the submission
        """
        ...

    def queue_items_for(self, generator_id: str) -> list[QueueItemRef]:
        """Pending queue items carrying this generator's cause tag."""
        ...

    def cancel(self, item: QueueItemRef) -> None:
        """Remove a pending item from the queue."""
        ...

    def stop_run(self, run: RunRef) -> None:
        """Forcibly stop a run on whatever executor holds it."""
        ...

    def register_run_listener(
        self,
        started: RunListener,
        finalized: RunListener,
    ) -> None:
        """Subscribe to run-started and run-finalized notifications."""
        ...

    def generator_id_of(self, run: RunRef) -> Optional[str]:
        """Extract the generator cause tag from a run, if any."""
        ...

    def elevated_privileges(self) -> ContextManager[None]:
        """Context in which cancellation and run-stop are permitted."""
        ...
