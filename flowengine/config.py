"""Configuration management for the workflow engine."""

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .core.exceptions import ConfigurationError
from .models.core import BackoffStrategy, WorkflowSettings

ENV_PREFIX = "FLOWENGINE_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EngineConfig(BaseModel):
    """Engine configuration settings."""

    # Database settings
    database_url: str = Field(
        default="sqlite:///./flowengine.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Execution settings
    max_concurrent_executions: int = Field(
        default=10,
        description="Maximum number of executions driven at the same time"
    )
    max_parallel_steps: int = Field(
        default=8,
        description="Maximum number of steps running at the same time across all executions"
    )
    default_retry_limit: int = Field(default=1, description="Attempts per step when a workflow sets none")
    default_retry_backoff: BackoffStrategy = Field(default=BackoffStrategy.CONSTANT)
    default_retry_delay: float = Field(default=1.0, description="Base retry delay in seconds")
    default_step_timeout: Optional[float] = Field(default=None, description="Per-step timeout in seconds")
    default_wait_timeout: float = Field(
        default=24 * 60 * 60,
        description="Deadline for suspend-and-wait steps in seconds"
    )
    sweep_interval: float = Field(default=1.0, description="Seconds between timeout sweeps")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    structured_logging: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('max_concurrent_executions', 'max_parallel_steps', 'default_retry_limit')
    @classmethod
    def validate_positive_counts(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator('default_step_timeout', 'default_wait_timeout', 'sweep_interval')
    @classmethod
    def validate_timeouts(cls, v):
        """Validate timeout values."""
        if v is not None and v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator('default_retry_delay')
    @classmethod
    def validate_retry_delay(cls, v):
        if v < 0:
            raise ValueError("Retry delay cannot be negative")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.lower().startswith("sqlite")

    def workflow_defaults(self) -> WorkflowSettings:
        """Settings applied to workflows that leave a field unset."""
        return WorkflowSettings(
            retry_limit=self.default_retry_limit,
            retry_backoff=self.default_retry_backoff,
            retry_delay=self.default_retry_delay,
            timeout=self.default_step_timeout,
            wait_timeout=self.default_wait_timeout
        )

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """Create configuration from environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None or value == "":
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            try:
                return type_func(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{key}: {value!r}",
                                         config_key=f"{ENV_PREFIX}{key}") from e

        return cls(
            database_url=get_env("DATABASE_URL", "sqlite:///./flowengine.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            max_concurrent_executions=get_env("MAX_CONCURRENT_EXECUTIONS", 10, int),
            max_parallel_steps=get_env("MAX_PARALLEL_STEPS", 8, int),
            default_retry_limit=get_env("DEFAULT_RETRY_LIMIT", 1, int),
            default_retry_backoff=get_env("DEFAULT_RETRY_BACKOFF", BackoffStrategy.CONSTANT, BackoffStrategy),
            default_retry_delay=get_env("DEFAULT_RETRY_DELAY", 1.0, float),
            default_step_timeout=get_env("DEFAULT_STEP_TIMEOUT", None, float),
            default_wait_timeout=get_env("DEFAULT_WAIT_TIMEOUT", 24 * 60 * 60, float),
            sweep_interval=get_env("SWEEP_INTERVAL", 1.0, float),
            log_level=get_env("LOG_LEVEL", LogLevel.INFO, LogLevel),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=get_env("LOG_FILE", None),
            structured_logging=get_env("STRUCTURED_LOGGING", False, bool)
        )


# Global configuration instance
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> EngineConfig:
    """Load configuration from a .env file and environment variables."""
    global _config
    from dotenv import load_dotenv

    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = EngineConfig.from_env()
    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: EngineConfig) -> None:
    """Validate configuration settings that depend on the environment."""
    errors = []

    if config.is_sqlite and ":memory:" not in config.database_url:
        db_path = config.database_url.split(":///", 1)[-1]
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.is_sqlite and config.max_concurrent_executions > 50:
        errors.append("SQLite serialises writes; use at most 50 concurrent executions")

    if errors:
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")


def get_development_config() -> EngineConfig:
    """Get development configuration."""
    return EngineConfig(
        log_level=LogLevel.DEBUG,
        database_echo=True,
        default_retry_delay=0.5
    )


def get_testing_config() -> EngineConfig:
    """Get testing configuration."""
    return EngineConfig(
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        max_concurrent_executions=4,
        max_parallel_steps=4,
        default_retry_delay=0.0,
        sweep_interval=0.1
    )
