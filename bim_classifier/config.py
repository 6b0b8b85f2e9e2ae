"""Configuration management and validation for the BIM classifier."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60


@dataclass
class BimClassifierConfig:
    """Configuration class with comprehensive validation."""

    # Element store
    database_url: str = "sqlite:///bim_elements.db"

    # Cache backing store; None keeps the cache in process memory
    redis_url: Optional[str] = None
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS

    # LLM settings
    model_name: str = "openai:gpt-4.1-mini"
    temperature: float = 0.0

    # Aggregation settings
    sample_size: int = 50

    # Dispatch settings
    max_concurrency: int = 1

    # Resilience settings
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout_seconds: float = 30.0

    def __post_init__(self):
        """Validate configuration parameters after initialization."""
        self._validate_all_parameters()
        self._load_environment_variables()

    def _validate_all_parameters(self):
        """Run all validation checks."""
        self._validate_database_url()
        self._validate_sample_size()
        self._validate_concurrency()
        self._validate_resilience()
        self._validate_cache_settings()
        self._validate_llm_settings()

    def _validate_database_url(self):
        """Validate database URL format."""
        if not self.database_url:
            raise ConfigurationError(
                "database_url cannot be empty",
                parameter="database_url",
                suggested_fix="Provide a valid database URL (e.g., 'sqlite:///bim.db')",
            )

        supported_schemes = ["sqlite", "postgresql", "mysql", "mssql"]
        if not any(
            self.database_url.startswith(f"{scheme}") for scheme in supported_schemes
        ):
            raise ConfigurationError(
                f"database_url scheme not supported. Supported schemes: {supported_schemes}",
                parameter="database_url",
                suggested_fix="Use a sqlite:, postgresql:, mysql: or mssql: URL",
            )

    def _validate_sample_size(self):
        """Validate the per-pattern sample bound."""
        if not (1 <= self.sample_size <= 500):
            raise ConfigurationError(
                f"sample_size ({self.sample_size}) must be between 1 and 500 inclusive",
                parameter="sample_size",
                suggested_fix="Set sample_size to a value between 1 and 500",
            )

    def _validate_concurrency(self):
        """Validate the classification concurrency bound."""
        if not (1 <= self.max_concurrency <= 64):
            raise ConfigurationError(
                f"max_concurrency ({self.max_concurrency}) must be between 1 and 64 inclusive",
                parameter="max_concurrency",
                suggested_fix="Use 1 for sequential dispatch or a small parallel bound",
            )

    def _validate_resilience(self):
        """Validate retry, backoff and timeout settings."""
        if not (0 <= self.max_retries <= 10):
            raise ConfigurationError(
                f"max_retries ({self.max_retries}) must be between 0 and 10 inclusive",
                parameter="max_retries",
                suggested_fix="Set max_retries to a value between 0 and 10",
            )

        if self.base_delay < 0:
            raise ConfigurationError(
                f"base_delay ({self.base_delay}) cannot be negative",
                parameter="base_delay",
            )

        if self.max_delay < self.base_delay:
            raise ConfigurationError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})",
                parameter="max_delay",
                suggested_fix=f"Set max_delay to at least {self.base_delay}",
            )

        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                f"timeout_seconds ({self.timeout_seconds}) must be positive",
                parameter="timeout_seconds",
            )

    def _validate_cache_settings(self):
        """Validate cache expiry and backing store URL."""
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError(
                f"cache_ttl_seconds ({self.cache_ttl_seconds}) must be positive",
                parameter="cache_ttl_seconds",
                suggested_fix=f"Use the default of {DEFAULT_CACHE_TTL_SECONDS} seconds",
            )

        if self.redis_url and not self.redis_url.startswith(
            ("redis://", "rediss://", "unix://")
        ):
            raise ConfigurationError(
                f"redis_url scheme not supported: {self.redis_url}",
                parameter="redis_url",
                suggested_fix="Use a redis://, rediss:// or unix:// URL",
            )

    def _validate_llm_settings(self):
        """Validate LLM model settings."""
        if not self.model_name:
            raise ConfigurationError(
                "model_name cannot be empty",
                parameter="model_name",
                suggested_fix="Specify a model name (e.g., 'openai:gpt-4.1-mini')",
            )

        if not (0.0 <= self.temperature <= 2.0):
            raise ConfigurationError(
                f"temperature ({self.temperature}) must be between 0.0 and 2.0",
                parameter="temperature",
            )

    def _load_environment_variables(self):
        """Load configuration from environment variables."""
        env_mappings = {
            "BIM_DATABASE_URL": "database_url",
            "BIM_REDIS_URL": "redis_url",
            "BIM_MODEL_NAME": "model_name",
            "BIM_TEMPERATURE": ("temperature", float),
            "BIM_SAMPLE_SIZE": ("sample_size", int),
            "BIM_CACHE_TTL_SECONDS": ("cache_ttl_seconds", int),
            "BIM_MAX_CONCURRENCY": ("max_concurrency", int),
            "BIM_MAX_RETRIES": ("max_retries", int),
            "BIM_BASE_DELAY": ("base_delay", float),
            "BIM_MAX_DELAY": ("max_delay", float),
            "BIM_TIMEOUT_SECONDS": ("timeout_seconds", float),
        }

        loaded = False
        for env_var, config_attr in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value:
                loaded = True
                if isinstance(config_attr, tuple):
                    attr_name, attr_type = config_attr
                    try:
                        setattr(self, attr_name, attr_type(env_value))
                    except ValueError:
                        raise ConfigurationError(
                            f"Invalid value for {env_var}: {env_value}",
                            parameter=attr_name,
                            suggested_fix=f"Provide a valid {attr_type.__name__} value",
                        )
                else:
                    setattr(self, config_attr, env_value)

        if loaded:
            logger.debug("Applied BIM_* environment overrides")
            # Re-validate after loading environment variables
            self._validate_all_parameters()
