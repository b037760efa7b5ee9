# config.py
"""Configuration settings for the Cadence continuity and pacing engine.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class CadenceSettings(BaseSettings):
    """Full configuration for the Cadence system."""

    # Provider Configuration (OpenAI-compatible chat completions endpoint)
    OPENAI_API_BASE: str = "http://127.0.0.1:8080/v1"
    OPENAI_API_KEY: str = "nope"

    DEFAULT_MODEL: str = "Qwen3-14B"
    SUMMARY_MODEL: str | None = None
    PACING_MODEL: str | None = None
    DRAFTING_MODEL: str | None = None
    MINING_MODEL: str | None = None

    # Provider timeouts (seconds)
    PROVIDER_CONNECT_TIMEOUT: float = 15.0
    PROVIDER_READ_TIMEOUT: float = 120.0
    PROVIDER_STREAM_READ_TIMEOUT: float = 300.0

    # A single attempt per call; retries belong to the task layer.
    LLM_RETRY_ATTEMPTS: int = 1
    LLM_RETRY_DELAY_SECONDS: float = 3.0
    LLM_TOP_P: float = 0.8
    MAX_GENERATION_TOKENS: int = 4096
    TIKTOKEN_DEFAULT_ENCODING: str = "cl100k_base"
    FALLBACK_CHARS_PER_TOKEN: float = 4.0
    TOKENIZER_CACHE_SIZE: int = 10
    ENABLE_LLM_NO_THINK_DIRECTIVE: bool = True

    # Concurrency
    MAX_CONCURRENT_LLM_CALLS: int = 10
    WORKER_POOL_SIZE: int = 10
    SHUTDOWN_GRACE_SECONDS: float = 30.0
    FANOUT_BATCH_SIZE: int = 10

    # Temperature Settings
    TEMPERATURE_SUMMARY: float = 0.3
    TEMPERATURE_PACING: float = 0.7
    TEMPERATURE_ORACLE: float = 0.0
    TEMPERATURE_MOTIVATION: float = 0.3
    TEMPERATURE_ANALYSIS: float = 0.3
    TEMPERATURE_DRAFTING: float = 0.8
    TEMPERATURE_MINING: float = 1.0

    # Max output tokens per call type
    MAX_SUMMARY_TOKENS: int = 400
    MAX_ENHANCE_TOKENS: int = 1200
    MAX_ORACLE_TOKENS: int = 16
    MAX_MOTIVATION_TOKENS: int = 800
    MAX_ANALYSIS_TOKENS: int = 200
    MAX_MINING_TOKENS: int = 300

    # Memory bank
    MEMORY_SUMMARY_WINDOW: int = 20
    MEMORY_CONTEXT_MAX_TOKENS: int = 4096
    MEMORY_MAX_CHARACTERS_IN_CONTEXT: int = 8
    MEMORY_MAX_RELATIONSHIP_LINES: int = 3
    MEMORY_RECENT_CHRONICLE_CHAPTERS: int = 10

    # Character relevance ranking
    RANK_SCORE_PROTAGONIST: int = 100
    RANK_SCORE_MAJOR: int = 60
    RANK_SCORE_MINOR: int = 30
    RANK_RECENT_WINDOW: int = 5
    RANK_RECENT_BOOST: int = 30
    RANK_NEAR_WINDOW: int = 20
    RANK_NEAR_BOOST: int = 10
    RANK_STALE_WINDOW: int = 50
    RANK_STALE_PENALTY: int = 20
    RANK_ACTIVE_BOOST: int = 20
    RANK_INACTIVE_PENALTY: int = 10
    INACTIVE_CHARACTER_THRESHOLD: int = 30

    # Chapter summaries
    SUMMARY_MAX_CHARS: int = 1000
    SUMMARY_MIN_WORDS: int = 80
    SUMMARY_MAX_WORDS: int = 150
    SUMMARY_SENTENCE_CUTOFF_RATIO: float = 0.7
    SUMMARY_FALLBACK_CHARS: int = 200
    SUMMARY_CACHE_SIZE: int = 32

    # Rewrite detection
    REWRITE_SIMILARITY_THRESHOLD: float = 0.5
    REWRITE_SAMPLE_CHARS: int = 1000

    # Pacing defaults for lazily created progress rows
    PACING_DEFAULT_ENABLED: bool = True
    PACING_DEFAULT_START_CHAPTER: int = 1

    # Generation tasks
    TASK_MAX_RETRIES: int = 3

    # Persistence
    STORAGE_BACKEND: str = "memory"
    NEO4J_URI: str = "bolt://localhost:7687"
    NEO4J_USER: str = "neo4j"
    NEO4J_PASSWORD: str = "cadence_password"
    NEO4J_DATABASE: str | None = "neo4j"

    # Logging
    LOG_LEVEL_STR: str = Field("INFO", alias="CADENCE_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "cadence_run.log"
    LOG_DIR: str = "logs"
    ENABLE_RICH_LOGGING: bool = True

    @model_validator(mode="after")
    def set_dynamic_model_defaults(self) -> CadenceSettings:
        if self.SUMMARY_MODEL is None:
            self.SUMMARY_MODEL = self.DEFAULT_MODEL
        if self.PACING_MODEL is None:
            self.PACING_MODEL = self.DEFAULT_MODEL
        if self.DRAFTING_MODEL is None:
            self.DRAFTING_MODEL = self.DEFAULT_MODEL
        if self.MINING_MODEL is None:
            self.MINING_MODEL = self.DEFAULT_MODEL
        return self

    @model_validator(mode="after")
    def check_thresholds(self) -> CadenceSettings:
        if not 0.0 <= self.REWRITE_SIMILARITY_THRESHOLD <= 1.0:
            raise ValueError("REWRITE_SIMILARITY_THRESHOLD must be within [0, 1]")
        if not 0.0 < self.SUMMARY_SENTENCE_CUTOFF_RATIO < 1.0:
            raise ValueError("SUMMARY_SENTENCE_CUTOFF_RATIO must be within (0, 1)")
        if self.WORKER_POOL_SIZE < 1 or self.FANOUT_BATCH_SIZE < 1:
            raise ValueError("WORKER_POOL_SIZE and FANOUT_BATCH_SIZE must be positive")
        if self.STORAGE_BACKEND not in {"memory", "neo4j"}:
            raise ValueError("STORAGE_BACKEND must be 'memory' or 'neo4j'")
        return self

    @model_validator(mode="after")
    def warn_default_neo4j_password(self) -> CadenceSettings:
        if self.STORAGE_BACKEND == "neo4j" and self.NEO4J_PASSWORD == "cadence_password":
            logger.warning(
                "NEO4J_PASSWORD is using the default value. Set it in the environment."
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", extra="ignore", populate_by_name=True
    )


settings = CadenceSettings()
