"""
Load Generation Runtime - Generator Policies

A generator is a pure policy: given a RuntimeState it decides which jobs
may be triggered and how many new runs to launch on this tick, and it
declares the mode transitions for start and stop. Generators never submit
work and never take locks; the controller calls them while holding the
state lock and applies the wrapping lifecycle (events + mode assignment).

Built-in policies:
- RegexMatchImmediateGenerator: all jobs whose full name matches a regex,
  full target load immediately
- SingleJobLinearRampUpGenerator: one named job, target load grows linearly
  over a ramp-up window, with optional randomized jitter

Usage:
    gen = SingleJobLinearRampUpGenerator(
        job_name="folder/checkout",
        concurrent_run_count=8,
        ramp_up_millis=4000,
        use_jitter=False,
        short_name="checkout-ramp",
    )
    state = gen.initialize_state()
"""

from __future__ import annotations

import math
import random
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, Optional

from loadgen.runtime.errors import (
    ErrorCode,
    configuration_error,
    validation_error,
)
from loadgen.runtime.host import HostProtocol, JobRef
from loadgen.runtime.models import (
    LoadTestMode,
    RuntimeState,
    TimedExtension,
    check_name,
    current_time_millis,
    new_generator_id,
)

Clock = Callable[[], int]


# =============================================================================
# RAMP-UP ARITHMETIC
# =============================================================================


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_desired_runs(
    current_time: int,
    start_time_millis: int,
    ramp_up_millis: int,
    final_concurrent_load: int,
) -> int:
    """
    Target concurrent runs at ``current_time`` for a linear ramp-up.

    Args:
        current_time: Time to evaluate (epoch millis)
        start_time_millis: When the ramp-up began
        ramp_up_millis: Length of the ramp-up window (<= 0 means none)
        final_concurrent_load: Target once ramp-up completes

    Returns:
        0 before the start, the full target after the window, and the
        proportional share (rounded half up) in between
    """
    if current_time >= start_time_millis + ramp_up_millis:
        return final_concurrent_load
    if ramp_up_millis <= 0:
        return final_concurrent_load
    if current_time >= start_time_millis:
        fraction_done = (current_time - start_time_millis) / ramp_up_millis
        return _round_half_up(final_concurrent_load * fraction_done)
    return 0


def compute_runs_to_launch(
    current_time: int,
    start_time_millis: int,
    ramp_up_millis: int,
    final_concurrent_load: int,
    use_jitter: bool,
    current_runs: int,
    rng: Optional[random.Random] = None,
) -> int:
    """
    How many runs to launch to close the gap to the ramp-up target.

    With jitter the result is ``round(random * 2 * gap)``: on average the
    gap itself, anywhere from none up to twice as many. Never negative.
    """
    target = compute_desired_runs(
        current_time, start_time_millis, ramp_up_millis, final_concurrent_load
    )
    delta = target - current_runs
    if delta <= 0:
        return 0

    if use_jitter:
        draw = (rng or random).random()
        return _round_half_up(draw * 2.0 * delta)
    return delta


# =============================================================================
# BASE POLICY
# =============================================================================


class LoadGenerator(ABC):
    """
    Base for all load generator policies.

    Identity (generator_id, short_name, description) is fixed at
    construction. Reconfiguring a generator means building a new policy
    object with the same generator_id and registering it; the registry
    keeps the existing RuntimeState.

    Subclasses implement the capability set:
    - initialize_state(): fresh RuntimeState (may carry an extension record)
    - runs_to_launch(state): how many new submissions this tick (<= 0: none)
    - candidate_jobs(state, host): jobs this policy may trigger right now
    - start_internal(state): new mode when starting (RAMP_UP or LOAD_TEST)
    - stop_internal(state): new mode when stopping
    """

    kind: ClassVar[str] = ""
    display_name: ClassVar[str] = ""

    def __init__(
        self,
        generator_id: Optional[str] = None,
        short_name: Optional[str] = None,
        description: Optional[str] = None,
    ):
        if generator_id is None or not generator_id.strip():
            self._generator_id = new_generator_id()
        else:
            self._generator_id = check_name(generator_id, "generator_id")

        if short_name is None:
            self._short_name = self._generator_id
        else:
            self._short_name = check_name(short_name, "short_name")

        self._description = description

    @property
    def generator_id(self) -> str:
        return self._generator_id

    @property
    def short_name(self) -> str:
        return self._short_name

    @property
    def description(self) -> Optional[str]:
        return self._description

    def initialize_state(self) -> RuntimeState:
        """Create the initial state; override for policy-specific fields."""
        return RuntimeState()

    def accepts_state(self, state: RuntimeState) -> bool:
        """Check whether a (possibly preserved) state fits this policy."""
        return True

    @abstractmethod
    def runs_to_launch(self, state: RuntimeState) -> int:
        ...

    @abstractmethod
    def candidate_jobs(self, state: RuntimeState, host: HostProtocol) -> list[JobRef]:
        ...

    @abstractmethod
    def start_internal(self, state: RuntimeState) -> LoadTestMode:
        ...

    @abstractmethod
    def stop_internal(self, state: RuntimeState) -> LoadTestMode:
        ...

    def to_config(self) -> dict[str, Any]:
        """Serializable configuration (identity + policy settings)."""
        return {
            "kind": self.kind,
            "generator_id": self._generator_id,
            "short_name": self._short_name,
            "description": self._description,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(generator_id={self._generator_id!r}, "
            f"short_name={self._short_name!r})"
        )


# =============================================================================
# IMMEDIATE REGEX POLICY
# =============================================================================


class RegexMatchImmediateGenerator(LoadGenerator):
    """Selects jobs whose full name matches a regex and starts full load immediately."""

    kind = "regex_immediate"
    display_name = "Jobs by regex match, immediate load"

    def __init__(
        self,
        job_name_regex: Optional[str] = None,
        concurrent_run_count: int = 1,
        generator_id: Optional[str] = None,
        short_name: Optional[str] = None,
        description: Optional[str] = None,
    ):
        super().__init__(generator_id, short_name, description)
        self.concurrent_run_count = concurrent_run_count
        self.job_name_regex = job_name_regex or None
        self._pattern: Optional[re.Pattern[str]] = None

        if self.job_name_regex:
            try:
                self._pattern = re.compile(self.job_name_regex)
            except re.error as e:
                raise validation_error(
                    ErrorCode.VAL_INVALID_REGEX,
                    f"Invalid job name regex: {e}",
                    generator_id=self.generator_id,
                    field_name="job_name_regex",
                    actual=self.job_name_regex,
                    cause=e,
                )

    def matches(self, full_name: str) -> bool:
        """Empty regex matches every job; otherwise the whole name must match."""
        if self._pattern is None:
            return True
        return self._pattern.fullmatch(full_name) is not None

    def candidate_jobs(self, state: RuntimeState, host: HostProtocol) -> list[JobRef]:
        return [job for job in host.list_jobs() if self.matches(job.full_name)]

    def start_internal(self, state: RuntimeState) -> LoadTestMode:
        return LoadTestMode.LOAD_TEST

    def stop_internal(self, state: RuntimeState) -> LoadTestMode:
        return LoadTestMode.IDLE

    def runs_to_launch(self, state: RuntimeState) -> int:
        if state.active and self.concurrent_run_count > 0:
            return max(0, self.concurrent_run_count - state.total_count)
        return 0

    def to_config(self) -> dict[str, Any]:
        config = super().to_config()
        config.update(
            job_name_regex=self.job_name_regex,
            concurrent_run_count=self.concurrent_run_count,
        )
        return config


# =============================================================================
# SINGLE JOB LINEAR RAMP-UP POLICY
# =============================================================================


class SingleJobLinearRampUpGenerator(LoadGenerator):
    """
    Runs a single named job, ramping load up linearly.

    Desired load grows from 0 at start to ``concurrent_run_count`` after
    ``ramp_up_millis``. With ``use_jitter`` the per-tick launch count is
    randomized between none and twice the shortfall.

    Requires a RuntimeState carrying a TimedExtension (as produced by
    initialize_state); any other state is an invalid configuration.
    """

    kind = "single_job_ramp_up"
    display_name = "Single job load generator, with load ramp-up"

    def __init__(
        self,
        job_name: str,
        concurrent_run_count: int = 1,
        ramp_up_millis: int = 0,
        use_jitter: bool = True,
        generator_id: Optional[str] = None,
        short_name: Optional[str] = None,
        description: Optional[str] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(generator_id, short_name, description)
        self.job_name = job_name
        self.concurrent_run_count = concurrent_run_count
        self.ramp_up_millis = ramp_up_millis
        self.use_jitter = use_jitter
        self._clock: Clock = clock or current_time_millis
        self._rng = rng

    def initialize_state(self) -> RuntimeState:
        return RuntimeState(extension=TimedExtension())

    def accepts_state(self, state: RuntimeState) -> bool:
        return isinstance(state.extension, TimedExtension)

    def _timed(self, state: RuntimeState) -> TimedExtension:
        if not isinstance(state.extension, TimedExtension):
            raise configuration_error(
                ErrorCode.CFG_STATE_MISMATCH,
                "Mismatched runtime state for load generator",
                generator_id=self.generator_id,
                short_name=self.short_name,
                expected=TimedExtension.__name__,
                actual=type(state.extension).__name__,
            )
        return state.extension

    # Convenience wrappers bound to this generator's settings

    def compute_desired_runs(self, current_time: int, start_time_millis: int) -> int:
        return compute_desired_runs(
            current_time, start_time_millis, self.ramp_up_millis, self.concurrent_run_count
        )

    def compute_runs_to_launch(
        self, current_time: int, start_time_millis: int, current_runs: int
    ) -> int:
        return compute_runs_to_launch(
            current_time,
            start_time_millis,
            self.ramp_up_millis,
            self.concurrent_run_count,
            self.use_jitter,
            current_runs,
            rng=self._rng,
        )

    def candidate_jobs(self, state: RuntimeState, host: HostProtocol) -> list[JobRef]:
        if not self.job_name:
            return []
        job = host.get_job(self.job_name)
        if job is None:
            return []
        return [job]

    def start_internal(self, state: RuntimeState) -> LoadTestMode:
        timed = self._timed(state)

        if state.mode in (LoadTestMode.IDLE, LoadTestMode.RAMP_DOWN):
            timed.start_time_millis = self._clock()
            # No ramp-up window means full load right away
            if self.ramp_up_millis > 0:
                return LoadTestMode.RAMP_UP
            return LoadTestMode.LOAD_TEST
        return state.mode

    def stop_internal(self, state: RuntimeState) -> LoadTestMode:
        return LoadTestMode.IDLE

    def runs_to_launch(self, state: RuntimeState) -> int:
        timed = self._timed(state)
        if not state.active:
            return 0

        now = self._clock()
        if now > timed.start_time_millis + self.ramp_up_millis:
            if state.mode is LoadTestMode.RAMP_UP:
                state.mode = LoadTestMode.LOAD_TEST

        return self.compute_runs_to_launch(now, timed.start_time_millis, state.total_count)

    def to_config(self) -> dict[str, Any]:
        config = super().to_config()
        config.update(
            job_name=self.job_name,
            concurrent_run_count=self.concurrent_run_count,
            ramp_up_millis=self.ramp_up_millis,
            use_jitter=self.use_jitter,
        )
        return config


GENERATOR_KINDS: dict[str, type[LoadGenerator]] = {
    RegexMatchImmediateGenerator.kind: RegexMatchImmediateGenerator,
    SingleJobLinearRampUpGenerator.kind: SingleJobLinearRampUpGenerator,
}
