"""
Configuration for Clarity.

Supports loading from:
1. Environment variables (highest priority)
2. YAML config file
3. Default values (fallback)
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from clarity.models.quota import QuotaCategory, QuotaPolicy, ResetPolicy


class LLMConfig(BaseModel):
    """LLM provider configuration."""

    provider: str = "openai"  # openai, ollama
    model: str = "gpt-4o-mini"
    base_url: str | None = None
    api_key: str | None = None
    temperature: float = 0.3
    max_tokens: int = 1000
    # Upper bound for every inference call; expiry counts as a failed call
    timeout: float = 30.0


class StorageConfig(BaseModel):
    """Persistence configuration."""

    backend: str = "sqlite"
    db_path: str = "data/clarity.db"


class QuotaConfig(BaseModel):
    """Free-tier allowances per category."""

    notes_limit: int = 5
    notes_reset: ResetPolicy = ResetPolicy.NEVER
    extraction_limit: int = 30
    extraction_reset: ResetPolicy = ResetPolicy.MONTHLY
    resolution_limit: int = 10
    resolution_reset: ResetPolicy = ResetPolicy.MONTHLY
    daily_digest_limit: int = 31
    daily_digest_reset: ResetPolicy = ResetPolicy.MONTHLY
    free_grant: bool = True

    def policies(self) -> dict[QuotaCategory, QuotaPolicy]:
        """Policy per category as consumed by QuotaLedger."""
        return {
            QuotaCategory.NOTES: QuotaPolicy(maximum=self.notes_limit, reset=self.notes_reset),
            QuotaCategory.EXTRACTION: QuotaPolicy(
                maximum=self.extraction_limit, reset=self.extraction_reset
            ),
            QuotaCategory.RESOLUTION: QuotaPolicy(
                maximum=self.resolution_limit, reset=self.resolution_reset
            ),
            QuotaCategory.DAILY_DIGEST: QuotaPolicy(
                maximum=self.daily_digest_limit, reset=self.daily_digest_reset
            ),
        }


class MatcherConfig(BaseModel):
    """Project matching configuration."""

    auto_assign_threshold: float = 0.6
    high_confidence_threshold: float = 0.85
    max_aliases: int = 12


class SessionConfig(BaseModel):
    """Session snapshot configuration."""

    freshness_minutes: int = 15
    stalled_after_days: int = 7
    commitment_warning_days: int = 5
    decision_followup_days: int = 3
    momentum_window_days: int = 7
    max_warnings: int = 8


class ExtractionConfig(BaseModel):
    """Per-note extraction configuration."""

    max_input_chars: int = 8000
    sample_chunk_chars: int = 2000
    max_tokens: int = 1500
    temperature: float = 0.3


class DigestConfig(BaseModel):
    """Daily digest configuration."""

    recent_notes_window: int = 15
    note_preview_chars: int = 100
    max_tokens: int = 1000
    temperature: float = 0.3


class UrlFetchConfig(BaseModel):
    """URL metadata fetch configuration."""

    enabled: bool = True
    timeout: float = 10.0
    user_agent: str = "clarity-notes/1.0"
    max_bytes: int = 512_000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"
    file_rotation: str = "10 MB"
    file_retention: str = "7 days"
    compression: str = "zip"
    serialize: bool = True


class Config(BaseModel):
    """Main configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    matcher: MatcherConfig = Field(default_factory=MatcherConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    url_fetch: UrlFetchConfig = Field(default_factory=UrlFetchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "Config":
        """
        Load configuration from environment variables.

        Priority: .env file -> system environment variables -> defaults

        Args:
            env_file: Optional path to .env file (default: .env in project root)

        Returns:
            Config instance

        Environment variables:
            CLARITY_LLM_PROVIDER: LLM provider (openai, ollama)
            CLARITY_LLM_MODEL: LLM model name
            CLARITY_LLM_BASE_URL: LLM base URL
            CLARITY_LLM_API_KEY: LLM API key (for OpenAI)
            CLARITY_LLM_TIMEOUT: Per-call inference timeout in seconds
            CLARITY_DB_PATH: SQLite database path
            CLARITY_QUOTA_*_LIMIT: Per-category allowance
            CLARITY_MATCH_THRESHOLD: Auto-assign confidence threshold
            CLARITY_URL_FETCH_ENABLED: Toggle URL metadata fetching
        """
        if env_file:
            load_dotenv(env_file)
        elif Path(".env").exists():
            load_dotenv()

        def get_env(key: str, default: Any = None) -> Any:
            """Get environment variable with type conversion."""
            value = os.getenv(key)
            if value is None:
                return default
            if value == "":
                return default
            # bool before int: bool is an int subclass
            if isinstance(default, bool):
                return str(value).lower() in ("true", "1", "yes")
            if isinstance(default, int):
                return int(value)
            if isinstance(default, float):
                return float(value)
            return value

        return cls(
            llm=LLMConfig(
                provider=get_env("CLARITY_LLM_PROVIDER", "openai"),
                model=get_env("CLARITY_LLM_MODEL", "gpt-4o-mini"),
                base_url=get_env("CLARITY_LLM_BASE_URL"),
                api_key=get_env("CLARITY_LLM_API_KEY"),
                temperature=get_env("CLARITY_LLM_TEMPERATURE", 0.3),
                max_tokens=get_env("CLARITY_LLM_MAX_TOKENS", 1000),
                timeout=get_env("CLARITY_LLM_TIMEOUT", 30.0),
            ),
            storage=StorageConfig(
                backend=get_env("CLARITY_STORAGE_BACKEND", "sqlite"),
                db_path=get_env("CLARITY_DB_PATH", "data/clarity.db"),
            ),
            quota=QuotaConfig(
                notes_limit=get_env("CLARITY_QUOTA_NOTES_LIMIT", 5),
                extraction_limit=get_env("CLARITY_QUOTA_EXTRACTION_LIMIT", 30),
                resolution_limit=get_env("CLARITY_QUOTA_RESOLUTION_LIMIT", 10),
                daily_digest_limit=get_env("CLARITY_QUOTA_DAILY_DIGEST_LIMIT", 31),
                free_grant=get_env("CLARITY_QUOTA_FREE_GRANT", True),
            ),
            matcher=MatcherConfig(
                auto_assign_threshold=get_env("CLARITY_MATCH_THRESHOLD", 0.6),
                max_aliases=get_env("CLARITY_MATCH_MAX_ALIASES", 12),
            ),
            session=SessionConfig(
                freshness_minutes=get_env("CLARITY_SESSION_FRESHNESS_MINUTES", 15),
                stalled_after_days=get_env("CLARITY_SESSION_STALLED_DAYS", 7),
            ),
            url_fetch=UrlFetchConfig(
                enabled=get_env("CLARITY_URL_FETCH_ENABLED", True),
                timeout=get_env("CLARITY_URL_FETCH_TIMEOUT", 10.0),
            ),
            logging=LoggingConfig(
                level=get_env("CLARITY_LOG_LEVEL", "INFO"),
                log_to_file=get_env("CLARITY_LOG_TO_FILE", True),
                log_dir=get_env("CLARITY_LOG_DIR", "logs"),
                file_rotation=get_env("CLARITY_LOG_FILE_ROTATION", "10 MB"),
                file_retention=get_env("CLARITY_LOG_FILE_RETENTION", "7 days"),
                compression=get_env("CLARITY_LOG_COMPRESSION", "zip"),
                serialize=get_env("CLARITY_LOG_SERIALIZE", True),
            ),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            yaml.YAMLError: If YAML is invalid
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env_or_yaml(
        cls, yaml_path: str | Path | None = None, env_file: str | Path | None = None
    ) -> "Config":
        """
        Load configuration with priority: env vars > YAML > defaults.

        Args:
            yaml_path: Optional path to YAML config
            env_file: Optional path to .env file

        Returns:
            Config instance
        """
        if yaml_path and Path(yaml_path).exists():
            with open(yaml_path) as f:
                config_dict = yaml.safe_load(f) or {}
        else:
            config_dict = {}

        env_config = cls.from_env(env_file=env_file)

        final_dict = {**config_dict}

        # Sections whose env values differ from defaults override YAML
        default = cls()
        for section in ("llm", "storage", "quota", "matcher", "session", "url_fetch", "logging"):
            env_section = getattr(env_config, section)
            if env_section != getattr(default, section):
                final_dict[section] = env_section.model_dump()

        return cls(**final_dict) if final_dict else env_config


# Default config instance
default_config = Config()
