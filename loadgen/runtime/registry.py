"""
Load Generation Runtime - Generator Registry

This module provides the in-memory registry of load generators. Each entry
binds a generator id to the current policy object and the RuntimeState the
registry owns for it.

The registry is thread-safe: lookups take a shared read lock, binding
changes take the exclusive write lock, and a re-entrant mutation lock
serializes register / unregister / sync so that administrative operations
never interleave.

Lock ordering:
- A RuntimeState lock may be held while acquiring the registry lock
- The registry lock is never held while acquiring a RuntimeState lock
- Host calls (abrupt stop via the quiesce hook) never run under the
  registry lock
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

from loadgen.runtime.errors import ErrorCode, validation_error
from loadgen.runtime.events import GeneratorEvents
from loadgen.runtime.generators import LoadGenerator
from loadgen.runtime.models import RuntimeState

logger = logging.getLogger(__name__)

# Called with the generator before its binding is removed; must return only
# once the generator has no queued items and no live runs
QuiesceHook = Callable[[LoadGenerator], None]


@dataclass(frozen=True)
class GeneratorBinding:
    """An immutable (policy, state) pair as seen by one reader."""

    generator: LoadGenerator
    state: RuntimeState

    @property
    def generator_id(self) -> str:
        return self.generator.generator_id

    def to_dict(self) -> dict[str, Any]:
        with self.state.lock:
            state = self.state.to_dict()
        return {
            "config": self.generator.to_config(),
            "state": state,
        }


@dataclass
class SyncResult:
    """Ids touched by a sync."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.updated)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "updated": list(self.updated),
        }


class GeneratorRegistry:
    """
    Central registry of load generators and their runtime state.

    Usage:
        registry = GeneratorRegistry()
        registry.register(generator)

        binding = registry.get(generator.generator_id)
        binding = registry.get_by_short_name("checkout-ramp")

        # Replace the whole configured list
        registry.sync([gen_a, gen_b])
    """

    def __init__(self, events: Optional[GeneratorEvents] = None):
        self._bindings: dict[str, GeneratorBinding] = {}
        self._lock = _RWLock()
        self._mutation_lock = threading.RLock()
        self._quiesce_hook: Optional[QuiesceHook] = None
        self.events = events or GeneratorEvents()

    def set_quiesce_hook(self, hook: Optional[QuiesceHook]) -> None:
        """Install the abrupt-stop callback run before a generator is removed."""
        self._quiesce_hook = hook

    def mutating(self) -> threading.RLock:
        """Lock serializing administrative mutations (re-entrant)."""
        return self._mutation_lock

    # =========================================================================
    # Registration Methods
    # =========================================================================

    def register(self, generator: LoadGenerator) -> RuntimeState:
        """
        Add a generator, or replace the policy of a known one.

        A known generator id keeps its RuntimeState instance; only the policy
        object changes. If the new policy needs a different extension record
        the preserved state adopts a fresh one.

        Args:
            generator: Policy to install

        Returns:
            The RuntimeState bound to the generator id

        Raises:
            ValidationError: If another generator already uses the short name
        """
        with self._mutation_lock:
            generator_id = generator.generator_id
            self._check_short_name_free(generator)

            existing = self.get(generator_id)
            if existing is None:
                state = generator.initialize_state()
                with self._lock.write():
                    self._bindings[generator_id] = GeneratorBinding(generator, state)

                logger.info(
                    "Generator registered",
                    extra={
                        "generator_id": generator_id,
                        "short_name": generator.short_name,
                        "kind": generator.kind,
                    },
                )
                self.events.generator_added(generator)
                return state

            state = existing.state
            with state.lock:
                self._adopt_extension(generator, state)
                with self._lock.write():
                    self._bindings[generator_id] = GeneratorBinding(generator, state)

            logger.info(
                "Generator reconfigured",
                extra={
                    "generator_id": generator_id,
                    "short_name": generator.short_name,
                    "kind": generator.kind,
                },
            )
            return state

    # Same semantics under the name used by the admin surface
    add_or_update = register

    def unregister(self, generator: Union[LoadGenerator, str]) -> bool:
        """
        Abruptly stop and remove a generator.

        Unknown ids are a successful no-op.

        Args:
            generator: Policy object or generator id

        Returns:
            True if a binding was removed, False if the id was unknown
        """
        generator_id = generator if isinstance(generator, str) else generator.generator_id

        with self._mutation_lock:
            binding = self.get(generator_id)
            if binding is None:
                logger.debug(
                    "Unregister of unknown generator ignored",
                    extra={"generator_id": generator_id},
                )
                return False

            self._quiesce(binding.generator)

            with self._lock.write():
                self._bindings.pop(generator_id, None)

            logger.info(
                "Generator unregistered",
                extra={
                    "generator_id": generator_id,
                    "short_name": binding.generator.short_name,
                },
            )

        self.events.generator_removed(binding.generator)
        return True

    def sync(self, desired: Iterable[LoadGenerator]) -> SyncResult:
        """
        Make the registry hold exactly the desired generators.

        Generators absent from ``desired`` are abruptly stopped first; then
        removals, additions and in-place replacements are applied under a
        single write lock so a concurrent tick sees either the old or the new
        registry. Re-applying the same list changes nothing.

        Raises:
            ValidationError: If the list repeats a generator id or a short name
        """
        desired = list(desired)
        self._validate_sync_list(desired)

        with self._mutation_lock:
            with self._lock.read():
                current = dict(self._bindings)

            desired_ids = {gen.generator_id for gen in desired}
            removed = [b for gid, b in current.items() if gid not in desired_ids]

            # Quiesce outside the registry lock; a tick meanwhile sees IDLE
            for binding in removed:
                self._quiesce(binding.generator)

            new_bindings: dict[str, GeneratorBinding] = {}
            result = SyncResult(removed=[b.generator_id for b in removed])
            added: list[LoadGenerator] = []

            for gen in desired:
                existing = current.get(gen.generator_id)
                if existing is None:
                    new_bindings[gen.generator_id] = GeneratorBinding(gen, gen.initialize_state())
                    result.added.append(gen.generator_id)
                    added.append(gen)
                    continue

                if existing.generator is not gen:
                    with existing.state.lock:
                        self._adopt_extension(gen, existing.state)
                    result.updated.append(gen.generator_id)
                new_bindings[gen.generator_id] = GeneratorBinding(gen, existing.state)

            with self._lock.write():
                self._bindings = new_bindings

            if result.changed:
                logger.info("Generators synced", extra=result.to_dict())

        for binding in removed:
            self.events.generator_removed(binding.generator)
        for gen in added:
            self.events.generator_added(gen)

        return result

    # =========================================================================
    # Query Methods
    # =========================================================================

    def get(self, generator_id: str) -> Optional[GeneratorBinding]:
        """Look up a binding by generator id."""
        with self._lock.read():
            return self._bindings.get(generator_id)

    def get_generator(self, generator_id: str) -> Optional[LoadGenerator]:
        binding = self.get(generator_id)
        return binding.generator if binding else None

    def get_state(self, generator_id: str) -> Optional[RuntimeState]:
        binding = self.get(generator_id)
        return binding.state if binding else None

    def get_by_short_name(self, short_name: str) -> Optional[GeneratorBinding]:
        """Look up a binding by short name (linear scan)."""
        short_name = short_name.strip()
        with self._lock.read():
            for binding in self._bindings.values():
                if binding.generator.short_name == short_name:
                    return binding
        return None

    def snapshot(self) -> tuple[GeneratorBinding, ...]:
        """Immutable view of all bindings for one reconciliation tick."""
        with self._lock.read():
            return tuple(self._bindings.values())

    def generators(self) -> list[LoadGenerator]:
        with self._lock.read():
            return [b.generator for b in self._bindings.values()]

    def __contains__(self, generator_id: object) -> bool:
        with self._lock.read():
            return generator_id in self._bindings

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._bindings)

    def to_dict(self) -> dict[str, Any]:
        """Registry contents for API responses and debugging."""
        bindings = self.snapshot()
        return {
            "generator_count": len(bindings),
            "generators": {b.generator_id: b.to_dict() for b in bindings},
        }

    # =========================================================================
    # Internals
    # =========================================================================

    def _quiesce(self, generator: LoadGenerator) -> None:
        if self._quiesce_hook is not None:
            self._quiesce_hook(generator)

    @staticmethod
    def _adopt_extension(generator: LoadGenerator, state: RuntimeState) -> None:
        # Caller holds state.lock
        if not generator.accepts_state(state):
            state.extension = generator.initialize_state().extension
            logger.debug(
                "Runtime state adopted new extension",
                extra={"generator_id": generator.generator_id, "kind": generator.kind},
            )

    def _check_short_name_free(self, generator: LoadGenerator) -> None:
        holder = self.get_by_short_name(generator.short_name)
        if holder is not None and holder.generator_id != generator.generator_id:
            raise validation_error(
                ErrorCode.VAL_DUPLICATE_SHORT_NAME,
                f"Short name already in use: {generator.short_name}",
                generator_id=generator.generator_id,
                short_name=generator.short_name,
                held_by=holder.generator_id,
            )

    @staticmethod
    def _validate_sync_list(desired: list[LoadGenerator]) -> None:
        seen_ids: set[str] = set()
        seen_names: dict[str, str] = {}
        for gen in desired:
            if gen.generator_id in seen_ids:
                raise validation_error(
                    ErrorCode.VAL_DUPLICATE_GENERATOR_ID,
                    f"Generator id listed twice: {gen.generator_id}",
                    generator_id=gen.generator_id,
                )
            seen_ids.add(gen.generator_id)

            holder = seen_names.get(gen.short_name)
            if holder is not None:
                raise validation_error(
                    ErrorCode.VAL_DUPLICATE_SHORT_NAME,
                    f"Short name listed twice: {gen.short_name}",
                    generator_id=gen.generator_id,
                    short_name=gen.short_name,
                    held_by=holder,
                )
            seen_names[gen.short_name] = gen.generator_id


# =============================================================================
# READ-WRITE LOCK IMPLEMENTATION
# =============================================================================


class _RWLock:
    """
    Fair read-write lock.

    Allows multiple concurrent readers but exclusive writers, with writer
    preference: once a writer is waiting, new readers block until it is done.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._readers_ok = threading.Condition(self._lock)
        self._writers_ok = threading.Condition(self._lock)
        self._readers = 0
        self._writers_waiting = 0
        self._writer_active = False

    def read(self) -> "_RWLockReadContext":
        """Acquire read lock."""
        return _RWLockReadContext(self)

    def write(self) -> "_RWLockWriteContext":
        """Acquire write lock."""
        return _RWLockWriteContext(self)

    def _acquire_read(self) -> None:
        with self._lock:
            while self._writer_active or self._writers_waiting > 0:
                self._readers_ok.wait()
            self._readers += 1

    def _release_read(self) -> None:
        with self._lock:
            self._readers -= 1
            if self._readers == 0:
                self._writers_ok.notify()

    def _acquire_write(self) -> None:
        with self._lock:
            self._writers_waiting += 1
            try:
                while self._readers > 0 or self._writer_active:
                    self._writers_ok.wait()
                self._writer_active = True
            finally:
                self._writers_waiting -= 1

    def _release_write(self) -> None:
        with self._lock:
            self._writer_active = False
            if self._writers_waiting > 0:
                self._writers_ok.notify()
            else:
                self._readers_ok.notify_all()


class _RWLockReadContext:
    def __init__(self, lock: _RWLock):
        self._lock = lock

    def __enter__(self) -> "_RWLockReadContext":
        self._lock._acquire_read()
        return self

    def __exit__(self, *args: Any) -> None:
        self._lock._release_read()


class _RWLockWriteContext:
    def __init__(self, lock: _RWLock):
        self._lock = lock

    def __enter__(self) -> "_RWLockWriteContext":
        self._lock._acquire_write()
        return self

    def __exit__(self, *args: Any) -> None:
        self._lock._release_write()
