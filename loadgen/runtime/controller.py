"""
Load Generation Runtime - Reconciliation Controller

The controller drives load: on every tick it asks each active generator how
many runs to launch and submits that many randomly picked candidate jobs to
the host, tagged with the generator id. Host run notifications move items
from queued to running and back out, and a finished run immediately
backfills load for its generator.

Concurrency:
- Every read-modify-write of a RuntimeState happens under ``state.lock``
  (re-entrant, so a run finalized synchronously during an abrupt stop can
  re-enter on the same thread)
- No two state locks are ever held together
- Host submission, cancellation and run-stop happen under the state lock,
  never under the registry lock
- start and stop_abruptly both hold the registry mutation lock, so an
  abrupt stop never interleaves with a start

Failure semantics:
- Unknown generators are a silent no-op (0 launched)
- Host submission errors skip one candidate and the tick continues
- Cancellation / stop errors are logged; the run is forgotten regardless
- A policy/state mismatch raises ConfigurationError to the caller;
  ``reconcile_all`` contains it to that generator
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Any, Hashable, Optional, Union

from loadgen.observability.metrics import (
    clear_generator_metrics,
    record_cancellation,
    record_reconcile_latency,
    record_runs_launched,
    record_submission_failure,
    set_generator_load,
    set_registered_generators,
)
from loadgen.runtime.errors import ErrorCode, LoadGeneratorError, validation_error
from loadgen.runtime.events import GeneratorEvent, GeneratorEventType
from loadgen.runtime.generators import LoadGenerator
from loadgen.runtime.host import HostProtocol
from loadgen.runtime.models import RuntimeState
from loadgen.runtime.registry import GeneratorBinding, GeneratorRegistry, SyncResult

logger = logging.getLogger(__name__)

GeneratorRef = Union[LoadGenerator, str]

# Periodic reconciliation interval
DEFAULT_RECURRENCE_PERIOD_MS = 2000


class GeneratorController:
    """
    Reconciles actual load with each registered generator's target.

    Usage:
        host = InMemoryHost()
        controller = GeneratorController(host)
        controller.attach()

        controller.start(generator)     # registers if unknown
        controller.reconcile_all()      # normally done by LoadMaintainer
        controller.stop_abruptly(generator)
    """

    def __init__(
        self,
        host: HostProtocol,
        registry: Optional[GeneratorRegistry] = None,
        rng: Optional[random.Random] = None,
    ):
        self.host = host
        self.registry = registry or GeneratorRegistry()
        self._rng = rng or random.Random()
        self._attached = False
        self._attach_lock = threading.Lock()
        self._published_names: dict[str, str] = {}
        self._labels_lock = threading.Lock()

        self.registry.set_quiesce_hook(self.stop_abruptly)
        self.registry.events.add_listener(self._on_generator_event)

    @property
    def events(self):
        return self.registry.events

    def attach(self) -> None:
        """Subscribe to the host's run notifications (once)."""
        with self._attach_lock:
            if self._attached:
                return
            self.host.register_run_listener(self.on_run_started, self.on_run_finalized)
            self._attached = True
        logger.info("Controller attached to host")

    # =========================================================================
    # Registration passthroughs
    # =========================================================================

    def register(self, generator: LoadGenerator) -> RuntimeState:
        state = self.registry.register(generator)
        self._republish(generator.generator_id)
        return state

    def unregister(self, generator: GeneratorRef) -> bool:
        return self.registry.unregister(generator)

    def sync(self, generators: list[LoadGenerator]) -> SyncResult:
        result = self.registry.sync(generators)
        for generator_id in result.added + result.updated:
            self._republish(generator_id)
        return result

    def get_runtime_state(self, generator: GeneratorRef) -> Optional[RuntimeState]:
        return self.registry.get_state(_generator_id(generator))

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile(self, generator_id: str) -> int:
        """
        Launch the shortfall between a generator's target and its load.

        Returns:
            Number of launches the policy asked for (0 if unknown, inactive,
            satisfied, or without candidates)

        Raises:
            ConfigurationError: If the policy cannot work with its state
        """
        binding = self.registry.get(generator_id)
        if binding is None:
            return 0

        state = binding.state
        started_at = time.perf_counter()
        with state.lock:
            binding = self._revalidate(binding)
            if binding is None or not state.active:
                return 0

            generator = binding.generator
            to_launch = generator.runs_to_launch(state)
            if to_launch <= 0:
                return 0

            candidates = list(generator.candidate_jobs(state, self.host))
            if not candidates:
                logger.debug(
                    "No candidate jobs",
                    extra={"generator_id": generator_id, "short_name": generator.short_name},
                )
                return 0

            launched = 0
            for _ in range(to_launch):
                job = self._rng.choice(candidates)
                try:
                    self.host.submit(job, generator_id, 0)
                except Exception as e:
                    record_submission_failure(generator.short_name)
                    logger.warning(
                        "Job submission failed",
                        extra={
                            "generator_id": generator_id,
                            "short_name": generator.short_name,
                            "job_name": getattr(job, "full_name", None),
                            "error": str(e),
                        },
                    )
                    continue
                state.add_queued()
                launched += 1

            self._publish(generator, state)

        record_runs_launched(generator.short_name, launched)
        record_reconcile_latency(time.perf_counter() - started_at)
        logger.debug(
            "Reconciled generator",
            extra={
                "generator_id": generator_id,
                "short_name": generator.short_name,
                "requested": to_launch,
                "launched": launched,
            },
        )
        return to_launch

    def reconcile_all(self) -> dict[str, int]:
        """
        Reconcile every active generator in a registry snapshot.

        Errors are contained per generator.

        Returns:
            Mapping of generator id to launch count for generators that launched
        """
        results: dict[str, int] = {}
        for binding in self.registry.snapshot():
            if not binding.state.active:
                continue
            try:
                launched = self.reconcile(binding.generator_id)
            except LoadGeneratorError as e:
                logger.error("Reconcile failed", extra=e.to_log_dict())
                continue
            except Exception as e:
                logger.exception(
                    "Unexpected reconcile error",
                    extra={"generator_id": binding.generator_id, "error": str(e)},
                )
                continue
            if launched:
                results[binding.generator_id] = launched
        return results

    # =========================================================================
    # Run lifecycle callbacks
    # =========================================================================

    def on_run_started(self, run: Hashable, generator_id: Optional[str]) -> None:
        """Move one item from queued to running (atomically)."""
        if generator_id is None:
            return
        binding = self.registry.get(generator_id)
        if binding is None:
            return

        state = binding.state
        with state.lock:
            binding = self._revalidate(binding)
            if binding is None:
                return

            state.remove_queued()
            if state.aborted:
                # Item left the queue before the abrupt stop could cancel it
                self._stop_run(binding.generator, state, run)
            else:
                state.add_run(run)
            self._publish(binding.generator, state)

    def on_run_finalized(self, run: Hashable, generator_id: Optional[str]) -> None:
        """Forget a finished run and backfill load right away."""
        if generator_id is None:
            return
        binding = self.registry.get(generator_id)
        if binding is None:
            return

        state = binding.state
        with state.lock:
            binding = self._revalidate(binding)
            if binding is None:
                return
            state.remove_run(run)
            self._publish(binding.generator, state)

        try:
            self.reconcile(generator_id)
        except LoadGeneratorError as e:
            logger.error("Backfill reconcile failed", extra=e.to_log_dict())

    def record_queued(self, generator_id: str, count: int = 1) -> bool:
        """
        Count items submitted on a generator's behalf outside ``reconcile``.

        Returns:
            False if the generator is not registered
        """
        binding = self.registry.get(generator_id)
        if binding is None:
            return False
        with binding.state.lock:
            binding.state.add_queued(count)
            self._publish(binding.generator, binding.state)
        return True

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, generator: GeneratorRef) -> RuntimeState:
        """
        Start a generator, registering it first if unknown.

        Raises:
            ValidationError: If an unknown generator id (not object) is given
        """
        with self.registry.mutating():
            binding = self.registry.get(_generator_id(generator))
            if binding is None:
                if isinstance(generator, str):
                    raise validation_error(
                        ErrorCode.GEN_UNKNOWN_ID,
                        f"Unknown generator id: {generator}",
                        generator_id=generator,
                    )
                self.registry.register(generator)
                binding = self.registry.get(generator.generator_id)

            gen, state = binding.generator, binding.state
            self.events.generator_started(gen, state)
            with state.lock:
                state.aborted = False
                state.mode = gen.start_internal(state)
                self._publish(gen, state)
                mode = state.mode

        logger.info(
            "Generator started",
            extra={
                "generator_id": gen.generator_id,
                "short_name": gen.short_name,
                "mode": mode.value,
            },
        )
        return state

    def stop(self, generator: GeneratorRef) -> bool:
        """
        Gracefully stop a generator: no new launches, work in flight continues.

        Returns:
            False if the generator is not registered
        """
        binding = self.registry.get(_generator_id(generator))
        if binding is None:
            return False

        gen, state = binding.generator, binding.state
        self.events.generator_stopped(gen, state)
        with state.lock:
            state.mode = gen.stop_internal(state)
            self._publish(gen, state)

        logger.info(
            "Generator stopped",
            extra={"generator_id": gen.generator_id, "short_name": gen.short_name},
        )
        return True

    def stop_abruptly(self, generator: GeneratorRef) -> None:
        """
        Stop a generator and kill all of its queued items and live runs.

        On return the generator is IDLE with no queued items and no runs.
        Unknown generators are ignored. Holds the mutation lock throughout
        so a concurrent ``start`` lands either before or after.
        """
        generator_id = _generator_id(generator)
        with self.registry.mutating():
            binding = self.registry.get(generator_id)
            if binding is None:
                return
            gen, state = binding.generator, binding.state
            self.events.generator_stopped(gen, state)
            self._kill_load(gen, state)

    def _kill_load(self, gen: LoadGenerator, state: RuntimeState) -> None:
        # Caller holds the mutation lock
        generator_id = gen.generator_id
        cancelled = 0
        stopped = 0
        with state.lock:
            state.mode = gen.stop_internal(state)
            state.aborted = True
            with self.host.elevated_privileges():
                try:
                    items = list(self.host.queue_items_for(generator_id))
                except Exception as e:
                    logger.error(
                        "Listing queue items failed",
                        extra={"generator_id": generator_id, "error": str(e)},
                    )
                    items = []

                for item in items:
                    try:
                        self.host.cancel(item)
                    except Exception as e:
                        logger.warning(
                            "Queue item cancellation failed",
                            extra={"generator_id": generator_id, "error": str(e)},
                        )
                        continue
                    record_cancellation(gen.short_name, "queue_item")
                    cancelled += 1

                for run in list(state.runs):
                    if self._stop_run(gen, state, run):
                        stopped += 1

            state.runs.clear()
            state.queued_count = 0
            self._publish(gen, state)

        logger.info(
            "Generator stopped abruptly",
            extra={
                "generator_id": generator_id,
                "short_name": gen.short_name,
                "cancelled_items": cancelled,
                "stopped_runs": stopped,
            },
        )

    def stop_all_abruptly(self) -> None:
        for binding in self.registry.snapshot():
            self.stop_abruptly(binding.generator_id)

    def toggle(self, generator_id: str) -> RuntimeState:
        """
        Start an inactive generator, or gracefully stop an active one.

        Raises:
            ValidationError: If the id is not registered
        """
        binding = self.registry.get(generator_id)
        if binding is None:
            raise validation_error(
                ErrorCode.GEN_UNKNOWN_ID,
                f"Unknown generator id: {generator_id}",
                generator_id=generator_id,
            )
        return self._toggle(binding)

    def toggle_by_short_name(self, short_name: str) -> RuntimeState:
        """
        Toggle the generator with this short name.

        Raises:
            ValidationError: If the short name is empty or not registered
        """
        return self._toggle(self.resolve_short_name(short_name))

    def resolve_short_name(self, short_name: str) -> GeneratorBinding:
        """
        Look up the binding for an admin-supplied short name.

        Raises:
            ValidationError: If the short name is empty or not registered
        """
        if not short_name or not short_name.strip():
            raise validation_error(
                ErrorCode.VAL_EMPTY_FIELD,
                "You must supply a short name",
                field_name="short_name",
            )
        binding = self.registry.get_by_short_name(short_name)
        if binding is None:
            raise validation_error(
                ErrorCode.GEN_UNKNOWN_SHORT_NAME,
                f"Unrecognized short name: {short_name}",
                short_name=short_name,
            )
        return binding

    # =========================================================================
    # Status
    # =========================================================================

    def status(self, generator_id: str) -> Optional[dict[str, Any]]:
        binding = self.registry.get(generator_id)
        if binding is None:
            return None
        return binding.to_dict()

    def status_all(self) -> list[dict[str, Any]]:
        return [binding.to_dict() for binding in self.registry.snapshot()]

    # =========================================================================
    # Internals
    # =========================================================================

    def _toggle(self, binding: GeneratorBinding) -> RuntimeState:
        with binding.state.lock:
            active = binding.state.active
        if active:
            self.stop(binding.generator_id)
        else:
            self.start(binding.generator_id)
        return binding.state

    def _revalidate(self, binding: GeneratorBinding) -> Optional[GeneratorBinding]:
        # Caller holds binding.state.lock; picks up a policy swapped in meanwhile
        current = self.registry.get(binding.generator_id)
        if current is None or current.state is not binding.state:
            return None
        return current

    def _stop_run(self, gen: LoadGenerator, state: RuntimeState, run: Hashable) -> bool:
        # Caller holds state.lock; the run is forgotten whatever the host says
        try:
            with self.host.elevated_privileges():
                self.host.stop_run(run)
            record_cancellation(gen.short_name, "run")
            return True
        except Exception as e:
            logger.warning(
                "Run stop failed",
                extra={
                    "generator_id": gen.generator_id,
                    "short_name": gen.short_name,
                    "error": str(e),
                },
            )
            return False
        finally:
            state.runs.discard(run)

    def _publish(self, gen: LoadGenerator, state: RuntimeState) -> None:
        # Gauges are labelled by short name; a rename drops the old series
        with self._labels_lock:
            previous = self._published_names.get(gen.generator_id)
            self._published_names[gen.generator_id] = gen.short_name
        if previous is not None and previous != gen.short_name:
            clear_generator_metrics(gen.generator_id, previous)
        set_generator_load(
            gen.generator_id,
            gen.short_name,
            state.queued_count,
            state.running_count,
            state.active,
        )

    def _republish(self, generator_id: str) -> None:
        binding = self.registry.get(generator_id)
        if binding is None:
            return
        with binding.state.lock:
            self._publish(binding.generator, binding.state)

    def _on_generator_event(self, event: GeneratorEvent) -> None:
        if event.event_type is GeneratorEventType.GENERATOR_REMOVED:
            with self._labels_lock:
                published = self._published_names.pop(event.generator_id, None)
            clear_generator_metrics(event.generator_id, event.generator.short_name)
            if published is not None and published != event.generator.short_name:
                clear_generator_metrics(event.generator_id, published)
        if event.event_type in (
            GeneratorEventType.GENERATOR_ADDED,
            GeneratorEventType.GENERATOR_REMOVED,
        ):
            set_registered_generators(len(self.registry))


def _generator_id(generator: GeneratorRef) -> str:
    return generator if isinstance(generator, str) else generator.generator_id


class LoadMaintainer:
    """
    Periodic worker that calls ``reconcile_all`` every recurrence period.

    Loop errors are logged and never stop the worker.

    Usage:
        maintainer = LoadMaintainer(controller, recurrence_period_ms=2000)
        maintainer.start()
        ...
        maintainer.stop()
    """

    def __init__(
        self,
        controller: GeneratorController,
        recurrence_period_ms: int = DEFAULT_RECURRENCE_PERIOD_MS,
    ):
        self.controller = controller
        self.recurrence_period_ms = recurrence_period_ms
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._running = False
        self.tick_count = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            logger.warning("Load maintainer already running")
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._periodic_loop,
            name="LoadMaintainer",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "Load maintainer started",
            extra={"recurrence_period_ms": self.recurrence_period_ms},
        )

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the worker.

        Args:
            timeout: Maximum time to wait for the thread to finish
        """
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Load maintainer stopped")

    def tick(self) -> None:
        """One reconciliation sweep; errors are logged."""
        try:
            self.controller.reconcile_all()
        except Exception as e:
            logger.exception("Load maintainer tick failed", extra={"error": str(e)})
        finally:
            self.tick_count += 1

    def _periodic_loop(self) -> None:
        logger.debug("Periodic loop started")

        while not self._stop_event.wait(timeout=self.recurrence_period_ms / 1000.0):
            if not self._running:
                break
            self.tick()

        logger.debug("Periodic loop stopped")
