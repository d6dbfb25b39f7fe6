# config.py
"""Configuration settings for the serial continuity engine.
Uses Pydantic BaseSettings for automatic environment variable loading.
Run-level knobs live in the immutable ``RunConfig`` passed to the sequencer.
"""

from __future__ import annotations

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class ContinuitySettings(BaseSettings):
    """Full configuration for the continuity engine."""

    # API and Model Configuration
    OPENAI_API_BASE: str = "http://127.0.0.1:8080/v1"
    OPENAI_API_KEY: str = "nope"

    LARGE_MODEL: str = "Qwen3-14B"
    SMALL_MODEL: str = "Qwen3-4B"

    # Dynamic Model Assignments (set from base models if not specified in env)
    DRAFTING_MODEL: str | None = None
    SUMMARY_MODEL: str | None = None
    CLASSIFICATION_MODEL: str | None = None

    # Temperature Settings
    TEMPERATURE_DRAFTING: float = 0.8
    TEMPERATURE_SUMMARY: float = 0.5
    TEMPERATURE_CLASSIFICATION: float = 0.2
    TEMPERATURE_DEFAULT: float = 0.6
    LLM_TOP_P: float = 0.8
    MAX_GENERATION_TOKENS: int = 8192

    # LLM Call Settings
    LLM_RETRIES: int = 2
    LLM_RETRY_DELAY_SECONDS: float = 3.0
    BODY_TIMEOUT_SECONDS: float = 180.0
    AUX_TIMEOUT_SECONDS: float = 60.0
    AUX_RETRIES: int = 1
    TIKTOKEN_DEFAULT_ENCODING: str = "cl100k_base"
    FALLBACK_CHARS_PER_TOKEN: float = 4.0
    TOKENIZER_CACHE_SIZE: int = 10

    # Run defaults (copied into RunConfig at run start)
    SUMMARY_INTERVAL: int = 10
    ENTITY_INTERVAL: int = 30
    MIN_COMPLETE_CHARS: int = 500
    MIN_OUTLINE_CHARS: int = 10
    TARGET_WORD_COUNT: int = 2500
    MAX_SUMMARY_CHARS: int = 4000

    # Output
    BASE_OUTPUT_DIR: str = "continuity_output"

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="CONTINUITY_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "continuity_run.log"
    ENABLE_RICH_PROGRESS: bool = True

    @model_validator(mode="after")
    def set_dynamic_model_defaults(self) -> ContinuitySettings:
        if self.DRAFTING_MODEL is None:
            self.DRAFTING_MODEL = self.LARGE_MODEL
        if self.SUMMARY_MODEL is None:
            self.SUMMARY_MODEL = self.LARGE_MODEL
        if self.CLASSIFICATION_MODEL is None:
            self.CLASSIFICATION_MODEL = self.SMALL_MODEL
        return self

    @model_validator(mode="after")
    def check_intervals(self) -> ContinuitySettings:
        if self.SUMMARY_INTERVAL < 1:
            raise ValueError("SUMMARY_INTERVAL must be at least 1")
        if self.ENTITY_INTERVAL < 1:
            raise ValueError("ENTITY_INTERVAL must be at least 1")
        if self.OPENAI_API_KEY == "nope":
            logger.warning(
                "OPENAI_API_KEY is the placeholder value; remote endpoints will reject calls."
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True
    )


settings = ContinuitySettings()


class BoundaryThresholds(BaseModel):
    """Tunable matching thresholds for the boundary validator."""

    model_config = ConfigDict(frozen=True)

    short_event_max_tokens: int = 3
    event_overlap_ratio: float = 0.75
    starting_event_overlap_ratio: float = 0.7
    similarity_error: float = 0.7
    similarity_warning: float = 0.5
    must_complete_min_coverage: float = 0.3


class RunConfig(BaseModel):
    """Immutable per-run configuration handed to the sequencer."""

    model_config = ConfigDict(frozen=True)

    summary_interval: int = Field(default=10, ge=1)
    entity_interval: int = Field(default=30, ge=1)
    min_complete_chars: int = 500
    min_outline_chars: int = 10
    summary_source_min_chars: int = 100
    resume_summary_window: int = 10
    partition_handoff_window: int = 8
    previous_tail_chars: int = 1500
    handoff_tail_chars: int = 3000
    target_word_count: int = 2500
    max_summary_chars: int = 4000
    max_turning_points: int = 20
    roster_limit: int = 6
    pacing_window: int = 5
    enable_event_triggers: bool = True
    enable_pacing: bool = True
    validate_outlines: bool = True
    body_timeout: float = 180.0
    body_retries: int = 2
    aux_timeout: float = 60.0
    aux_retries: int = 1
    thresholds: BoundaryThresholds = Field(default_factory=BoundaryThresholds)

    @classmethod
    def from_settings(
        cls, source: ContinuitySettings | None = None, **overrides: object
    ) -> RunConfig:
        """Build a run configuration from environment settings plus overrides."""
        src = source or settings
        values: dict[str, object] = {
            "summary_interval": src.SUMMARY_INTERVAL,
            "entity_interval": src.ENTITY_INTERVAL,
            "min_complete_chars": src.MIN_COMPLETE_CHARS,
            "min_outline_chars": src.MIN_OUTLINE_CHARS,
            "target_word_count": src.TARGET_WORD_COUNT,
            "max_summary_chars": src.MAX_SUMMARY_CHARS,
            "body_timeout": src.BODY_TIMEOUT_SECONDS,
            "body_retries": src.LLM_RETRIES,
            "aux_timeout": src.AUX_TIMEOUT_SECONDS,
            "aux_retries": src.AUX_RETRIES,
        }
        values.update(overrides)
        return cls(**values)
