"""Unit tests for configuration dataclasses."""

from dataclasses import FrozenInstanceError

import pytest

from mnemoloop.config import MemoryConfig
from mnemoloop.config import OrchestratorConfig
from mnemoloop.config import ReasoningConfig
from mnemoloop.config import StorageConfig


# ---------------------------------------------------------------------------
# MemoryConfig
# ---------------------------------------------------------------------------


class TestMemoryConfig:
    def test_defaults(self):
        cfg = MemoryConfig()
        assert cfg.persist is True
        assert cfg.storage_key == "memory"
        assert cfg.max_entries == 100
        assert cfg.max_age_seconds == 7 * 24 * 60 * 60
        assert cfg.context_window_size == 20
        assert cfg.flush_debounce_seconds == 0.5

    def test_persisted_log_needs_at_least_one_entry(self):
        with pytest.raises(ValueError, match="max_entries"):
            MemoryConfig(max_entries=0)

    def test_ephemeral_log_may_hold_nothing(self):
        cfg = MemoryConfig(persist=False, max_entries=0)
        assert cfg.max_entries == 0

    def test_rejects_non_positive_age(self):
        with pytest.raises(ValueError, match="max_age_seconds"):
            MemoryConfig(max_age_seconds=0)

    def test_frozen(self):
        cfg = MemoryConfig()
        with pytest.raises(FrozenInstanceError):
            cfg.max_entries = 5  # type: ignore[misc]


# ---------------------------------------------------------------------------
# ReasoningConfig
# ---------------------------------------------------------------------------


class TestReasoningConfig:
    def test_defaults(self):
        cfg = ReasoningConfig()
        assert cfg.max_steps == 10
        assert cfg.max_thinking_seconds == 60.0
        assert cfg.tool_timeout_seconds == 30.0
        assert cfg.tool_retries == 1

    def test_max_steps_must_fit_observation_and_final(self):
        with pytest.raises(ValueError, match="max_steps"):
            ReasoningConfig(max_steps=1)
        assert ReasoningConfig(max_steps=2).max_steps == 2

    @pytest.mark.parametrize(
        "field_name",
        ["max_thinking_seconds", "tool_timeout_seconds"],
    )
    def test_rejects_non_positive_durations(self, field_name):
        with pytest.raises(ValueError, match=field_name):
            ReasoningConfig(**{field_name: 0})

    def test_rejects_negative_retries(self):
        with pytest.raises(ValueError, match="tool_retries"):
            ReasoningConfig(tool_retries=-1)


# ---------------------------------------------------------------------------
# OrchestratorConfig / StorageConfig
# ---------------------------------------------------------------------------


class TestOrchestratorConfig:
    def test_defaults(self):
        cfg = OrchestratorConfig()
        assert cfg.enable_memory is True
        assert cfg.context_resolution is True
        assert cfg.max_memory_context == 10
        assert cfg.record_tool_results is True
        assert cfg.memory == MemoryConfig()
        assert cfg.reasoning == ReasoningConfig()

    def test_rejects_empty_context(self):
        with pytest.raises(ValueError, match="max_memory_context"):
            OrchestratorConfig(max_memory_context=0)


class TestStorageConfig:
    def test_defaults(self):
        cfg = StorageConfig()
        assert cfg.redis_url == "redis://localhost:6379"
        assert cfg.key_prefix == "mnemoloop"
        assert cfg.ttl_seconds is None
