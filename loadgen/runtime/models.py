"""
Load Generation Runtime - Data Models

This module defines the core data structures shared by generators, the
registry and the controller: the lifecycle mode enumeration, naming rules,
and the per-generator mutable RuntimeState.

RuntimeState is the only mutable structure here. Every read-modify-write of
its counters, run set and mode happens while holding ``state.lock``.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable, Optional

from loadgen.runtime.errors import ErrorCode, validation_error


# =============================================================================
# PATTERNS - Naming rules for generator ids and short names
# =============================================================================

# Characters the host refuses in item names
RESERVED_NAME_CHARACTERS = frozenset("?*/\\%!@#$^&|<>[]:;")
RESERVED_NAMES = frozenset({".", ".."})


def new_generator_id() -> str:
    """Create a new, generally unique generator id."""
    return str(uuid.uuid4())


def current_time_millis() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def is_valid_name(name: Optional[str]) -> bool:
    """Check if a short name or generator id is well formed."""
    if name is None:
        return False
    stripped = name.strip()
    if not stripped or stripped in RESERVED_NAMES:
        return False
    return not any(ch in RESERVED_NAME_CHARACTERS for ch in stripped)


def check_name(name: Optional[str], field_name: str = "short_name") -> str:
    """
    Validate a short name or generator id and return it stripped.

    Raises:
        ValidationError: If the name is empty or contains reserved characters
    """
    if name is None or not name.strip():
        raise validation_error(
            ErrorCode.VAL_EMPTY_FIELD,
            f"{field_name} is empty and may not be",
            field_name=field_name,
        )
    stripped = name.strip()
    if stripped in RESERVED_NAMES:
        raise validation_error(
            ErrorCode.VAL_MALFORMED_NAME,
            f"\"{stripped}\" is not an allowed name",
            field_name=field_name,
            actual=stripped,
        )
    for ch in stripped:
        if ch in RESERVED_NAME_CHARACTERS:
            raise validation_error(
                ErrorCode.VAL_MALFORMED_NAME,
                f"\"{ch}\" is an unsafe character",
                field_name=field_name,
                actual=stripped,
            )
    return stripped


# =============================================================================
# ENUMS - Lifecycle modes
# =============================================================================


class LoadTestMode(Enum):
    """
    Lifecycle mode of a load generator.

    State Transitions:
        IDLE -> RAMP_UP -> LOAD_TEST -> IDLE
        IDLE -> LOAD_TEST (no ramp-up)
        RAMP_UP -> RAMP_DOWN -> IDLE (declared, unused by built-in policies)
    """

    IDLE = "idle"
    RAMP_UP = "ramp_up"
    LOAD_TEST = "load_test"
    RAMP_DOWN = "ramp_down"

    def is_active(self) -> bool:
        """Only ramp-up and full load launch new runs."""
        return self in (LoadTestMode.RAMP_UP, LoadTestMode.LOAD_TEST)


# =============================================================================
# RUNTIME STATE
# =============================================================================


@dataclass
class TimedExtension:
    """Ramp-up bookkeeping attached to a RuntimeState."""

    start_time_millis: int = -1


@dataclass(eq=False)
class RuntimeState:
    """
    Mutable bookkeeping for one registered generator.

    Identity matters: the registry preserves the same instance across
    reconfiguration, so equality is object identity.

    Attributes:
        mode: Current lifecycle mode
        queued_count: Submitted items not yet running
        runs: Live run handles started on behalf of the generator
        extension: Policy-specific record (ramp-up start time), if any
        aborted: Set by an abrupt stop until the next start; runs that
            start while set are stopped instead of tracked
    """

    mode: LoadTestMode = LoadTestMode.IDLE
    queued_count: int = 0
    runs: set[Hashable] = field(default_factory=set)
    extension: Optional[Any] = None
    aborted: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def running_count(self) -> int:
        return len(self.runs)

    @property
    def total_count(self) -> int:
        """Queued plus running."""
        return self.queued_count + len(self.runs)

    @property
    def active(self) -> bool:
        return self.mode.is_active()

    @property
    def start_time_millis(self) -> Optional[int]:
        """Ramp-up start time, or None for states without a timed extension."""
        if isinstance(self.extension, TimedExtension):
            return self.extension.start_time_millis
        return None

    def add_queued(self, count: int = 1) -> None:
        self.queued_count += count

    def remove_queued(self) -> None:
        """Decrement the queued count, never below zero."""
        if self.queued_count > 0:
            self.queued_count -= 1

    def add_run(self, run: Hashable) -> None:
        self.runs.add(run)

    def remove_run(self, run: Hashable) -> bool:
        """Forget a run handle. Returns True if it was tracked."""
        if run in self.runs:
            self.runs.discard(run)
            return True
        return False

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for API responses (caller holds the lock)."""
        return {
            "mode": self.mode.value,
            "active": self.active,
            "queued_count": self.queued_count,
            "running_count": self.running_count,
            "total_count": self.total_count,
            "start_time_millis": self.start_time_millis,
        }
