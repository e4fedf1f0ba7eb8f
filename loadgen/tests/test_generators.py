"""
Tests for generator policies

Covers:
1. Short name / generator id well-formedness
2. Immediate regex policy (candidates, launch counts, transitions)
3. Linear ramp-up arithmetic (desired load, launch counts, jitter bounds)
4. Ramp-up lifecycle (start time, promotion, mismatched state)
5. Configuration schemas and policy construction
"""

import random

import pytest

from loadgen.runtime.configuration import (
    RegexImmediateConfig,
    SingleJobRampUpConfig,
    config_from_generator,
    generator_from_config,
    parse_generator_config,
)
from loadgen.runtime.errors import (
    ConfigurationError,
    ErrorCode,
    ValidationError,
)
from loadgen.runtime.generators import (
    RegexMatchImmediateGenerator,
    SingleJobLinearRampUpGenerator,
    compute_desired_runs,
    compute_runs_to_launch,
)
from loadgen.runtime.local_host import InMemoryHost
from loadgen.runtime.models import (
    LoadTestMode,
    RuntimeState,
    TimedExtension,
    check_name,
    is_valid_name,
)


# =============================================================================
# Test: Naming Rules
# =============================================================================


class TestNaming:
    """Tests for short name and generator id validation."""

    @pytest.mark.parametrize("name", ["checkout", "load-1", "smoke test", "a.b", "ünïcode"])
    def test_valid_names(self, name):
        assert is_valid_name(name)
        assert check_name(f"  {name}  ") == name

    @pytest.mark.parametrize("name", ["", "   ", ".", "..", "a/b", "x?y", "bad:name", "semi;colon", "[x]"])
    def test_invalid_names(self, name):
        assert not is_valid_name(name)
        with pytest.raises(ValidationError):
            check_name(name)

    def test_empty_name_code(self):
        with pytest.raises(ValidationError) as exc_info:
            check_name("  ")
        assert exc_info.value.code is ErrorCode.VAL_EMPTY_FIELD

    def test_reserved_character_code(self):
        with pytest.raises(ValidationError) as exc_info:
            check_name("a/b")
        assert exc_info.value.code is ErrorCode.VAL_MALFORMED_NAME
        assert exc_info.value.context.actual == "a/b"

    def test_generated_id_when_empty(self):
        gen = RegexMatchImmediateGenerator(generator_id="   ", short_name="x")
        assert gen.generator_id.strip()
        assert gen.generator_id != "   "

    def test_short_name_defaults_to_id(self):
        gen = RegexMatchImmediateGenerator(generator_id="fixed-id")
        assert gen.short_name == "fixed-id"

    def test_malformed_short_name_rejected(self):
        with pytest.raises(ValidationError):
            RegexMatchImmediateGenerator(short_name="no/slashes")

    def test_generated_ids_are_unique(self):
        ids = {RegexMatchImmediateGenerator().generator_id for _ in range(50)}
        assert len(ids) == 50


# =============================================================================
# Test: Immediate Regex Policy
# =============================================================================


class TestRegexMatchImmediateGenerator:
    """Tests for the immediate regex policy."""

    @pytest.fixture
    def jobs_host(self):
        host = InMemoryHost()
        host.create_job("folder/alpha")
        host.create_job("folder/beta")
        host.create_job("other/gamma")
        return host

    def test_candidates_full_match(self, jobs_host):
        gen = RegexMatchImmediateGenerator(job_name_regex="folder/.*")
        names = {job.full_name for job in gen.candidate_jobs(gen.initialize_state(), jobs_host)}
        assert names == {"folder/alpha", "folder/beta"}

    def test_partial_match_is_not_enough(self, jobs_host):
        gen = RegexMatchImmediateGenerator(job_name_regex="alpha")
        assert gen.candidate_jobs(gen.initialize_state(), jobs_host) == []

    @pytest.mark.parametrize("regex", [None, ""])
    def test_empty_regex_matches_all(self, jobs_host, regex):
        gen = RegexMatchImmediateGenerator(job_name_regex=regex)
        assert len(gen.candidate_jobs(gen.initialize_state(), jobs_host)) == 3

    def test_invalid_regex(self):
        with pytest.raises(ValidationError) as exc_info:
            RegexMatchImmediateGenerator(job_name_regex="([unclosed")
        assert exc_info.value.code is ErrorCode.VAL_INVALID_REGEX

    def test_transitions(self):
        gen = RegexMatchImmediateGenerator()
        state = gen.initialize_state()
        assert state.mode is LoadTestMode.IDLE
        assert gen.start_internal(state) is LoadTestMode.LOAD_TEST
        assert gen.stop_internal(state) is LoadTestMode.IDLE

    def test_runs_to_launch_inactive_is_zero(self):
        gen = RegexMatchImmediateGenerator(concurrent_run_count=5)
        assert gen.runs_to_launch(gen.initialize_state()) == 0

    def test_runs_to_launch_counts_queued_and_running(self):
        gen = RegexMatchImmediateGenerator(concurrent_run_count=5)
        state = gen.initialize_state()
        state.mode = LoadTestMode.LOAD_TEST
        assert gen.runs_to_launch(state) == 5

        state.add_queued(2)
        state.add_run(object())
        assert state.total_count == 3
        assert gen.runs_to_launch(state) == 2

    def test_runs_to_launch_never_negative(self):
        gen = RegexMatchImmediateGenerator(concurrent_run_count=2)
        state = gen.initialize_state()
        state.mode = LoadTestMode.LOAD_TEST
        state.add_queued(6)
        assert gen.runs_to_launch(state) == 0

    def test_zero_target_launches_nothing(self):
        gen = RegexMatchImmediateGenerator(concurrent_run_count=0)
        state = gen.initialize_state()
        state.mode = LoadTestMode.LOAD_TEST
        assert gen.runs_to_launch(state) == 0


# =============================================================================
# Test: Ramp-up Arithmetic
# =============================================================================


class TestRampUpArithmetic:
    """Tests for desired load and launch count computation."""

    @pytest.mark.parametrize(
        "current_time,expected",
        [(-50, 0), (250, 25), (500, 50), (99999, 100)],
    )
    def test_desired_runs_table(self, current_time, expected):
        assert compute_desired_runs(current_time, 0, 1000, 100) == expected

    def test_desired_runs_short_window(self):
        assert compute_desired_runs(2000, 0, 1000, 10) == 10
        assert compute_desired_runs(200, 0, 1000, 10) == 2
        assert compute_desired_runs(400, 0, 1000, 10) == 4

    def test_desired_runs_rounds_half_up(self):
        # 10 * 250 / 1000 = 2.5
        assert compute_desired_runs(250, 0, 1000, 10) == 3

    def test_no_ramp_up_means_full_target(self):
        assert compute_desired_runs(188, 0, -1, 37) == 37
        assert compute_desired_runs(188, 0, 0, 37) == 37

    def test_launch_counts_without_jitter(self):
        assert compute_runs_to_launch(250, 0, 1000, 100, False, 0) == 25
        assert compute_runs_to_launch(250, 100, 1000, 100, False, 0) == 15
        assert compute_runs_to_launch(99999, 0, 1000, 100, False, 0) == 100

    def test_launch_counts_subtract_current(self):
        assert compute_runs_to_launch(188, 0, -1, 37, False, 0) == 37
        assert compute_runs_to_launch(188, 0, -1, 37, False, 1) == 36
        assert compute_runs_to_launch(188, 0, -1, 37, False, 42) == 0

    def test_jitter_bounds(self):
        rng = random.Random(1234)
        for _ in range(500):
            launched = compute_runs_to_launch(-1, 0, -1, 14, True, 7, rng=rng)
            assert 0 <= launched <= 14

    def test_jitter_bounds_mid_ramp(self):
        rng = random.Random(99)
        for _ in range(500):
            launched = compute_runs_to_launch(500, 0, 1000, 100, True, 0, rng=rng)
            assert 0 <= launched <= 100

    def test_jitter_satisfied_target_launches_nothing(self):
        rng = random.Random(7)
        for _ in range(50):
            assert compute_runs_to_launch(-1, 0, -1, 14, True, 14, rng=rng) == 0
            assert compute_runs_to_launch(10 ** 12, 0, -1, 14, True, 15, rng=rng) == 0

    def test_jitter_averages_to_shortfall(self):
        rng = random.Random(2024)
        samples = [compute_runs_to_launch(0, 0, 0, 10, True, 0, rng=rng) for _ in range(4000)]
        assert 9.0 < sum(samples) / len(samples) < 11.0

    def test_generator_wrappers(self):
        gen = SingleJobLinearRampUpGenerator(
            job_name="bob",
            concurrent_run_count=10,
            ramp_up_millis=1000,
            use_jitter=False,
        )
        assert gen.compute_desired_runs(2000, 0) == 10
        assert gen.compute_desired_runs(200, 0) == 2
        assert gen.compute_runs_to_launch(400, 0, 1) == 3


# =============================================================================
# Test: Ramp-up Policy Lifecycle
# =============================================================================


class TestSingleJobLinearRampUpGenerator:
    """Tests for the ramp-up policy's state handling."""

    def _gen(self, clock, **kwargs):
        params = dict(job_name="folder/job", concurrent_run_count=100, ramp_up_millis=1000, use_jitter=False)
        params.update(kwargs)
        return SingleJobLinearRampUpGenerator(clock=clock, **params)

    def test_initial_state_has_timed_extension(self, clock):
        state = self._gen(clock).initialize_state()
        assert isinstance(state.extension, TimedExtension)
        assert state.start_time_millis == -1

    def test_start_records_time_and_ramps(self, clock):
        clock.now = 5000
        gen = self._gen(clock)
        state = gen.initialize_state()
        assert gen.start_internal(state) is LoadTestMode.RAMP_UP
        assert state.start_time_millis == 5000

    def test_start_without_ramp_goes_straight_to_load_test(self, clock):
        gen = self._gen(clock, ramp_up_millis=0)
        state = gen.initialize_state()
        assert gen.start_internal(state) is LoadTestMode.LOAD_TEST

    def test_start_while_active_keeps_mode_and_time(self, clock):
        gen = self._gen(clock)
        state = gen.initialize_state()
        state.mode = gen.start_internal(state)
        clock.advance(300)
        assert gen.start_internal(state) is LoadTestMode.RAMP_UP
        assert state.start_time_millis == 0

    def test_restart_from_ramp_down(self, clock):
        gen = self._gen(clock)
        state = gen.initialize_state()
        state.mode = LoadTestMode.RAMP_DOWN
        clock.now = 777
        assert gen.start_internal(state) is LoadTestMode.RAMP_UP
        assert state.start_time_millis == 777

    def test_stop_goes_idle(self, clock):
        gen = self._gen(clock)
        assert gen.stop_internal(gen.initialize_state()) is LoadTestMode.IDLE

    def test_inactive_launches_nothing(self, clock):
        gen = self._gen(clock)
        state = gen.initialize_state()
        clock.now = 10 ** 6
        assert gen.runs_to_launch(state) == 0

    def test_runs_to_launch_follows_ramp(self, clock):
        gen = self._gen(clock)
        state = gen.initialize_state()
        state.mode = gen.start_internal(state)

        clock.now = 250
        assert gen.runs_to_launch(state) == 25
        state.add_queued(25)

        clock.now = 500
        assert gen.runs_to_launch(state) == 25
        assert state.mode is LoadTestMode.RAMP_UP

    def test_promotes_to_load_test_after_ramp(self, clock):
        gen = self._gen(clock)
        state = gen.initialize_state()
        state.mode = gen.start_internal(state)

        clock.now = 1000
        gen.runs_to_launch(state)
        assert state.mode is LoadTestMode.RAMP_UP

        clock.now = 1001
        assert gen.runs_to_launch(state) == 100
        assert state.mode is LoadTestMode.LOAD_TEST

    def test_mismatched_state_is_configuration_error(self, clock):
        gen = self._gen(clock)
        state = RuntimeState(mode=LoadTestMode.LOAD_TEST)
        with pytest.raises(ConfigurationError) as exc_info:
            gen.runs_to_launch(state)
        assert exc_info.value.code is ErrorCode.CFG_STATE_MISMATCH

        with pytest.raises(ConfigurationError):
            gen.start_internal(RuntimeState())

    def test_candidates(self, clock):
        host = InMemoryHost()
        job = host.create_job("folder/job")
        host.create_job("folder/job2")
        gen = self._gen(clock)
        assert gen.candidate_jobs(gen.initialize_state(), host) == [job]

        missing = self._gen(clock, job_name="nope")
        assert missing.candidate_jobs(missing.initialize_state(), host) == []


# =============================================================================
# Test: Configuration Schemas
# =============================================================================


class TestGeneratorConfiguration:
    """Tests for config parsing and policy construction."""

    def test_regex_config_builds_policy(self):
        gen = generator_from_config({
            "kind": "regex_immediate",
            "short_name": "smoke",
            "job_name_regex": "smoke/.*",
            "concurrent_run_count": 4,
        })
        assert isinstance(gen, RegexMatchImmediateGenerator)
        assert gen.short_name == "smoke"
        assert gen.concurrent_run_count == 4
        assert gen.matches("smoke/one")

    def test_ramp_config_defaults(self):
        config = parse_generator_config({
            "kind": "single_job_ramp_up",
            "short_name": "ramp",
            "job_name": "folder/job",
        })
        assert isinstance(config, SingleJobRampUpConfig)
        assert config.concurrent_run_count == 1
        assert config.ramp_up_millis == 0
        assert config.use_jitter is True

    def test_config_round_trip_keeps_identity(self):
        gen = SingleJobLinearRampUpGenerator(
            job_name="folder/job",
            concurrent_run_count=8,
            ramp_up_millis=4000,
            use_jitter=False,
            short_name="ramp",
            description="ramps",
        )
        rebuilt = generator_from_config(config_from_generator(gen))
        assert rebuilt.generator_id == gen.generator_id
        assert rebuilt.to_config() == gen.to_config()

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_generator_config({"kind": "trivial", "short_name": "x"})
        assert exc_info.value.code is ErrorCode.CFG_UNKNOWN_KIND

    def test_missing_required_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_generator_config({"kind": "single_job_ramp_up", "short_name": "x"})
        assert exc_info.value.code is ErrorCode.VAL_EMPTY_FIELD
        assert exc_info.value.context.field_name == "job_name"

    def test_negative_ramp_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_generator_config({
                "kind": "single_job_ramp_up",
                "short_name": "x",
                "job_name": "j",
                "ramp_up_millis": -5,
            })
        assert exc_info.value.code is ErrorCode.VAL_FIELD_OUT_OF_RANGE

    def test_malformed_short_name_rejected(self):
        with pytest.raises(ValidationError):
            parse_generator_config({"kind": "regex_immediate", "short_name": "bad/name"})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            parse_generator_config({"kind": "regex_immediate", "short_name": "x", "ramp_up_millis": 5})

    def test_typed_config_accepted(self):
        gen = generator_from_config(RegexImmediateConfig(short_name="typed"))
        assert gen.short_name == "typed"
        assert gen.job_name_regex is None
