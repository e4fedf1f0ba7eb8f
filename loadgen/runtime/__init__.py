"""
Load Generation Runtime - Controller, Registry and Policies

This package provides the core of the load generation controller: the
registry of generators and their runtime state, the built-in generator
policies, and the reconciliation controller that keeps actual load close
to each generator's target.

Key components:
- GeneratorRegistry: generator id -> (policy, RuntimeState) bindings
- GeneratorController: reconciliation, run lifecycle, abrupt stop
- LoadMaintainer: periodic reconcile_all worker
- RegexMatchImmediateGenerator / SingleJobLinearRampUpGenerator: policies
- InMemoryHost: reference job-execution host
- GeneratorStore: YAML persistence of the configured generator list

Design Principles:
- Policies are pure: they never submit work or take locks
- Failure isolation: one generator's errors never affect another's tick
- Stopping abruptly leaves no queued items and no live runs behind

Usage:
    from loadgen.runtime import (
        GeneratorController,
        InMemoryHost,
        LoadMaintainer,
        RegexMatchImmediateGenerator,
    )

    host = InMemoryHost()
    host.create_job("smoke/build", duration_ms=500)
    host.start()

    controller = GeneratorController(host)
    controller.attach()

    generator = RegexMatchImmediateGenerator(
        job_name_regex="smoke/.*",
        concurrent_run_count=4,
        short_name="smoke",
    )
    controller.start(generator)

    maintainer = LoadMaintainer(controller)
    maintainer.start()
"""

from loadgen.runtime.models import (
    LoadTestMode,
    RuntimeState,
    TimedExtension,
    check_name,
    current_time_millis,
    is_valid_name,
    new_generator_id,
)

from loadgen.runtime.errors import (
    ErrorCode,
    ErrorContext,
    LoadGeneratorError,
    ValidationError,
    ConfigurationError,
    HostError,
    validation_error,
    configuration_error,
    host_error,
)

from loadgen.runtime.events import (
    GeneratorEvent,
    GeneratorEventType,
    GeneratorEvents,
)

from loadgen.runtime.host import (
    HostProtocol,
    JobRef,
    QueueItemRef,
    RunRef,
)

from loadgen.runtime.generators import (
    GENERATOR_KINDS,
    LoadGenerator,
    RegexMatchImmediateGenerator,
    SingleJobLinearRampUpGenerator,
    compute_desired_runs,
    compute_runs_to_launch,
)

from loadgen.runtime.configuration import (
    GeneratorConfig,
    RegexImmediateConfig,
    SingleJobRampUpConfig,
    config_from_generator,
    generator_from_config,
    parse_generator_config,
)

from loadgen.runtime.registry import (
    GeneratorBinding,
    GeneratorRegistry,
    SyncResult,
)

from loadgen.runtime.controller import (
    DEFAULT_RECURRENCE_PERIOD_MS,
    GeneratorController,
    LoadMaintainer,
)

from loadgen.runtime.local_host import (
    InMemoryHost,
    Job,
    QueueItem,
    Run,
    RunResult,
)

from loadgen.runtime.store import (
    STORE_FILENAME,
    GeneratorStore,
)

__all__ = [
    # Data models
    "LoadTestMode",
    "RuntimeState",
    "TimedExtension",
    "check_name",
    "current_time_millis",
    "is_valid_name",
    "new_generator_id",
    # Errors
    "ErrorCode",
    "ErrorContext",
    "LoadGeneratorError",
    "ValidationError",
    "ConfigurationError",
    "HostError",
    "validation_error",
    "configuration_error",
    "host_error",
    # Events
    "GeneratorEvent",
    "GeneratorEventType",
    "GeneratorEvents",
    # Host interface
    "HostProtocol",
    "JobRef",
    "QueueItemRef",
    "RunRef",
    # Policies
    "GENERATOR_KINDS",
    "LoadGenerator",
    "RegexMatchImmediateGenerator",
    "SingleJobLinearRampUpGenerator",
    "compute_desired_runs",
    "compute_runs_to_launch",
    # Configuration
    "GeneratorConfig",
    "RegexImmediateConfig",
    "SingleJobRampUpConfig",
    "config_from_generator",
    "generator_from_config",
    "parse_generator_config",
    # Registry
    "GeneratorBinding",
    "GeneratorRegistry",
    "SyncResult",
    # Controller
    "DEFAULT_RECURRENCE_PERIOD_MS",
    "GeneratorController",
    "LoadMaintainer",
    # In-memory host
    "InMemoryHost",
    "Job",
    "QueueItem",
    "Run",
    "RunResult",
    # Persistence
    "STORE_FILENAME",
    "GeneratorStore",
]
