"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
No env-var loading or YAML parsing — just plain defaults that can
be overridden at construction time.  Durations are in seconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field

_SEVEN_DAYS = 7 * 24 * 60 * 60.0


@dataclass(frozen=True)
class MemoryConfig:
    """Retention and persistence settings for the memory log."""

    persist: bool = True
    storage_key: str = "memory"
    max_entries: int = 100
    max_age_seconds: float = _SEVEN_DAYS
    context_window_size: int = 20
    flush_debounce_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.persist and self.max_entries < 1:
            raise ValueError("max_entries must be >= 1 when persistence is enabled")
        if self.max_entries < 0:
            raise ValueError("max_entries must be >= 0")
        if self.max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be > 0")
        if self.context_window_size < 1:
            raise ValueError("context_window_size must be >= 1")
        if self.flush_debounce_seconds < 0:
            raise ValueError("flush_debounce_seconds must be >= 0")


@dataclass(frozen=True)
class ReasoningConfig:
    """Bounds for one reasoning session."""

    max_steps: int = 10
    max_thinking_seconds: float = 60.0
    tool_timeout_seconds: float = 30.0
    tool_retries: int = 1
    # Pause taken at every loop boundary; cancellation and the deadline are
    # only observed there.
    step_delay_seconds: float = 0.01

    def __post_init__(self) -> None:
        if self.max_steps < 2:
            raise ValueError("max_steps must be >= 2")
        if self.max_thinking_seconds <= 0:
            raise ValueError("max_thinking_seconds must be > 0")
        if self.tool_timeout_seconds <= 0:
            raise ValueError("tool_timeout_seconds must be > 0")
        if self.tool_retries < 0:
            raise ValueError("tool_retries must be >= 0")
        if self.step_delay_seconds < 0:
            raise ValueError("step_delay_seconds must be >= 0")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Settings for combining memory and reasoning."""

    memory: MemoryConfig = field(default_factory=MemoryConfig)
    reasoning: ReasoningConfig = field(default_factory=ReasoningConfig)
    enable_memory: bool = True
    context_resolution: bool = True
    max_memory_context: int = 10
    record_tool_results: bool = True

    def __post_init__(self) -> None:
        if self.max_memory_context < 1:
            raise ValueError("max_memory_context must be >= 1")


@dataclass(frozen=True)
class StorageConfig:
    """Redis key-value store settings."""

    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "mnemoloop"
    ttl_seconds: int | None = None
