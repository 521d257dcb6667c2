"""Configuration management for the workflow engine."""

import logging
import os
from dataclasses import dataclass


@dataclass
class WorkflowEngineConfig:
    """Configuration class for the workflow engine."""

    # Definition limits
    max_nesting_depth: int = 32
    max_parallel_actions: int = 64

    # Loop defaults
    default_loop_count: int = 60
    default_loop_timeout: str = "PT1H"

    # Retry action default policy interval
    default_retry_interval: str = "PT1S"

    # Instance polling
    wait_poll_interval_ms: int = 10
    wait_timeout_ms: int = 30_000

    # Collaborators
    http_timeout_seconds: float = 30.0
    rate_limit_max_wait_seconds: float | None = None  # None waits as long as needed

    # Runtime Configuration
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> "WorkflowEngineConfig":
        """Create configuration from environment variables."""
        max_wait = os.getenv("LOOMFLOW_RATE_LIMIT_MAX_WAIT")
        return cls(
            max_nesting_depth=int(os.getenv("LOOMFLOW_MAX_NESTING_DEPTH", "32")),
            max_parallel_actions=int(os.getenv("LOOMFLOW_MAX_PARALLEL_ACTIONS", "64")),
            default_loop_count=int(os.getenv("LOOMFLOW_DEFAULT_LOOP_COUNT", "60")),
            default_loop_timeout=os.getenv("LOOMFLOW_DEFAULT_LOOP_TIMEOUT", "PT1H"),
            default_retry_interval=os.getenv("LOOMFLOW_DEFAULT_RETRY_INTERVAL", "PT1S"),
            wait_poll_interval_ms=int(os.getenv("LOOMFLOW_WAIT_POLL_INTERVAL_MS", "10")),
            wait_timeout_ms=int(os.getenv("LOOMFLOW_WAIT_TIMEOUT_MS", "30000")),
            http_timeout_seconds=float(os.getenv("LOOMFLOW_HTTP_TIMEOUT", "30")),
            rate_limit_max_wait_seconds=float(max_wait) if max_wait else None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> tuple[bool, list[str]]:
        """Validate configuration settings."""
        errors = []

        if self.max_nesting_depth <= 0:
            errors.append("max_nesting_depth must be positive")

        if self.max_parallel_actions <= 0:
            errors.append("max_parallel_actions must be positive")

        if self.default_loop_count <= 0:
            errors.append("default_loop_count must be positive")

        if not self.default_loop_timeout.startswith("PT"):
            errors.append("default_loop_timeout must be an ISO-8601 duration such as PT1H")

        if not self.default_retry_interval.startswith("PT"):
            errors.append("default_retry_interval must be an ISO-8601 duration such as PT1S")

        if self.wait_poll_interval_ms <= 0:
            errors.append("wait_poll_interval_ms must be positive")

        if self.wait_timeout_ms <= 0:
            errors.append("wait_timeout_ms must be positive")

        if self.http_timeout_seconds <= 0:
            errors.append("http_timeout_seconds must be positive")

        if self.rate_limit_max_wait_seconds is not None and self.rate_limit_max_wait_seconds < 0:
            errors.append("rate_limit_max_wait_seconds cannot be negative")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_log_levels:
            errors.append(f"log_level must be one of {valid_log_levels}")

        return len(errors) == 0, errors

    def __post_init__(self):
        """Post-initialization validation."""
        is_valid, errors = self.validate()
        if not is_valid:
            raise ValueError(f"Invalid configuration: {', '.join(errors)}")


def configure_logging(config: WorkflowEngineConfig | None = None) -> None:
    """Set up root logging for applications embedding the engine."""
    config = config or get_config()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger().setLevel(getattr(logging, config.log_level))


# Global configuration instance
_config: WorkflowEngineConfig | None = None


def get_config() -> WorkflowEngineConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = WorkflowEngineConfig.from_environment()
    return _config


def set_config(config: WorkflowEngineConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
