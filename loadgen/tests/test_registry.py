"""
Tests for the generator registry

Covers:
1. Register / re-register (state preservation, extension adoption)
2. Unregister (idempotence, quiesce hook, fresh state on return)
3. Sync (add/remove/update, idempotence, list validation)
4. Lookups and lifecycle events
"""

from unittest.mock import MagicMock

import pytest

from loadgen.runtime.errors import ErrorCode, ValidationError
from loadgen.runtime.events import GeneratorEventType
from loadgen.runtime.generators import (
    RegexMatchImmediateGenerator,
    SingleJobLinearRampUpGenerator,
)
from loadgen.runtime.models import LoadTestMode, TimedExtension
from loadgen.runtime.registry import GeneratorRegistry


def _regex(generator_id="gen-1", short_name="regex", **kwargs):
    return RegexMatchImmediateGenerator(generator_id=generator_id, short_name=short_name, **kwargs)


def _ramp(generator_id="gen-2", short_name="ramp", **kwargs):
    kwargs.setdefault("job_name", "folder/job")
    return SingleJobLinearRampUpGenerator(generator_id=generator_id, short_name=short_name, **kwargs)


@pytest.fixture
def registry():
    return GeneratorRegistry()


# =============================================================================
# Test: Registration
# =============================================================================


class TestRegister:
    """Tests for register / add_or_update."""

    def test_register_new(self, registry):
        gen = _regex()
        state = registry.register(gen)

        assert "gen-1" in registry
        assert len(registry) == 1
        assert registry.get_generator("gen-1") is gen
        assert registry.get_state("gen-1") is state
        assert state.mode is LoadTestMode.IDLE

    def test_reregister_preserves_state(self, registry):
        state = registry.register(_regex(concurrent_run_count=1))
        state.mode = LoadTestMode.LOAD_TEST
        state.add_queued(3)

        replacement = _regex(concurrent_run_count=9)
        again = registry.register(replacement)

        assert again is state
        assert registry.get_generator("gen-1") is replacement
        assert state.mode is LoadTestMode.LOAD_TEST
        assert state.queued_count == 3

    def test_reconfigure_adopts_timed_extension(self, registry):
        state = registry.register(_regex(generator_id="shared", short_name="x"))
        assert state.extension is None

        registry.register(_ramp(generator_id="shared", short_name="x"))
        assert registry.get_state("shared") is state
        assert isinstance(state.extension, TimedExtension)

    def test_reconfigure_keeps_existing_extension(self, registry):
        state = registry.register(_ramp())
        state.extension.start_time_millis = 1234

        registry.register(_ramp(ramp_up_millis=5000))
        assert state.extension.start_time_millis == 1234

    def test_add_or_update_alias(self, registry):
        state = registry.add_or_update(_regex())
        assert registry.get_state("gen-1") is state

    def test_duplicate_short_name_rejected(self, registry):
        registry.register(_regex(generator_id="a", short_name="same"))

        with pytest.raises(ValidationError) as exc_info:
            registry.register(_regex(generator_id="b", short_name="same"))
        assert exc_info.value.code is ErrorCode.VAL_DUPLICATE_SHORT_NAME
        assert "b" not in registry

    def test_same_id_may_keep_short_name(self, registry):
        registry.register(_regex(short_name="same"))
        registry.register(_regex(short_name="same", concurrent_run_count=4))
        assert len(registry) == 1


# =============================================================================
# Test: Unregistration
# =============================================================================


class TestUnregister:
    """Tests for unregister."""

    def test_unregister_removes(self, registry):
        gen = _regex()
        registry.register(gen)

        assert registry.unregister(gen) is True
        assert "gen-1" not in registry
        assert registry.get("gen-1") is None

    def test_unregister_unknown_is_noop(self, registry):
        assert registry.unregister("missing") is False
        assert registry.unregister(_regex()) is False

    def test_unregister_twice(self, registry):
        registry.register(_regex())
        assert registry.unregister("gen-1") is True
        assert registry.unregister("gen-1") is False

    def test_quiesce_hook_runs_before_removal(self, registry):
        gen = _regex()
        registry.register(gen)
        seen = []

        def hook(g):
            seen.append((g, g.generator_id in registry))

        registry.set_quiesce_hook(hook)
        registry.unregister("gen-1")

        assert seen == [(gen, True)]

    def test_register_after_unregister_gets_fresh_state(self, registry):
        state = registry.register(_regex())
        state.mode = LoadTestMode.LOAD_TEST
        state.add_queued(2)

        registry.unregister("gen-1")
        fresh = registry.register(_regex())

        assert fresh is not state
        assert fresh.mode is LoadTestMode.IDLE
        assert fresh.queued_count == 0

    def test_short_name_free_after_unregister(self, registry):
        registry.register(_regex(generator_id="a", short_name="taken"))
        registry.unregister("a")
        registry.register(_regex(generator_id="b", short_name="taken"))
        assert registry.get_by_short_name("taken").generator_id == "b"


# =============================================================================
# Test: Sync
# =============================================================================


class TestSync:
    """Tests for replacing the whole configured list."""

    def test_sync_adds_and_removes(self, registry):
        a, b, c = _regex("a", "a"), _regex("b", "b"), _regex("c", "c")
        registry.sync([a, b])

        result = registry.sync([b, c])

        assert result.added == ["c"]
        assert result.removed == ["a"]
        assert result.updated == []
        assert {g.generator_id for g in registry.generators()} == {"b", "c"}

    def test_sync_same_list_is_noop(self, registry):
        gens = [_regex("a", "a"), _ramp("b", "b")]
        registry.sync(gens)
        states = {g.generator_id: registry.get_state(g.generator_id) for g in gens}

        result = registry.sync(gens)

        assert not result.changed
        for gen in gens:
            assert registry.get_state(gen.generator_id) is states[gen.generator_id]
            assert registry.get_generator(gen.generator_id) is gen

    def test_sync_reconfigures_in_place(self, registry):
        registry.sync([_ramp("r", "ramp", concurrent_run_count=2)])
        state = registry.get_state("r")
        state.mode = LoadTestMode.RAMP_UP
        state.add_queued(2)

        replacement = _ramp("r", "ramp", concurrent_run_count=10)
        result = registry.sync([replacement])

        assert result.updated == ["r"]
        assert registry.get_state("r") is state
        assert registry.get_generator("r").concurrent_run_count == 10
        assert state.queued_count == 2
        assert state.mode is LoadTestMode.RAMP_UP

    def test_sync_quiesces_removed(self, registry):
        hook = MagicMock()
        registry.set_quiesce_hook(hook)
        a = _regex("a", "a")
        registry.sync([a])

        registry.sync([])

        hook.assert_called_once_with(a)
        assert len(registry) == 0

    def test_sync_duplicate_id_rejected(self, registry):
        with pytest.raises(ValidationError) as exc_info:
            registry.sync([_regex("a", "x"), _regex("a", "y")])
        assert exc_info.value.code is ErrorCode.VAL_DUPLICATE_GENERATOR_ID
        assert len(registry) == 0

    def test_sync_duplicate_short_name_rejected(self, registry):
        registry.sync([_regex("keep", "keep")])

        with pytest.raises(ValidationError) as exc_info:
            registry.sync([_regex("a", "x"), _regex("b", "x")])
        assert exc_info.value.code is ErrorCode.VAL_DUPLICATE_SHORT_NAME
        assert "keep" in registry

    def test_sync_may_swap_short_names(self, registry):
        registry.sync([_regex("a", "one"), _regex("b", "two")])
        registry.sync([_regex("a", "two"), _regex("b", "one")])

        assert registry.get_by_short_name("one").generator_id == "b"
        assert registry.get_by_short_name("two").generator_id == "a"


# =============================================================================
# Test: Lookups and Events
# =============================================================================


class TestLookupsAndEvents:
    """Tests for queries and emitted lifecycle events."""

    def test_get_by_short_name(self, registry):
        registry.register(_regex(short_name="checkout"))
        assert registry.get_by_short_name(" checkout ").generator_id == "gen-1"
        assert registry.get_by_short_name("other") is None

    def test_snapshot_is_immutable_view(self, registry):
        registry.register(_regex("a", "a"))
        snapshot = registry.snapshot()
        registry.register(_regex("b", "b"))

        assert isinstance(snapshot, tuple)
        assert [b.generator_id for b in snapshot] == ["a"]

    def test_to_dict(self, registry):
        registry.register(_ramp())
        data = registry.to_dict()

        assert data["generator_count"] == 1
        entry = data["generators"]["gen-2"]
        assert entry["config"]["kind"] == "single_job_ramp_up"
        assert entry["state"]["mode"] == "idle"
        assert entry["state"]["start_time_millis"] == -1

    def test_events_emitted(self, registry):
        events = []
        registry.events.add_listener(lambda e: events.append((e.event_type, e.generator_id)))

        registry.register(_regex("a", "a"))
        registry.register(_regex("a", "a", concurrent_run_count=3))
        registry.sync([_regex("b", "b")])
        registry.unregister("b")

        assert events == [
            (GeneratorEventType.GENERATOR_ADDED, "a"),
            (GeneratorEventType.GENERATOR_REMOVED, "a"),
            (GeneratorEventType.GENERATOR_ADDED, "b"),
            (GeneratorEventType.GENERATOR_REMOVED, "b"),
        ]

    def test_failing_listener_does_not_break_registry(self, registry):
        registry.events.add_listener(MagicMock(side_effect=RuntimeError("boom")))
        registry.register(_regex())
        assert "gen-1" in registry
