"""
Configuration module for patchmend.

Handles loading environment variables from .env files and system environment,
and resolves the reconciliation settings used by the orchestrator.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

from .constants import (
    DEFAULT_COMPLEXITY_THRESHOLD,
    DEFAULT_CONTEXT_RADIUS,
    DEFAULT_GENERATOR_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RATE_LIMIT_SECONDS,
    DEFAULT_VALIDATOR_TIMEOUT,
    ENV_VARS,
    ERROR_MESSAGES,
)
from .exceptions import ConfigurationError

T = TypeVar("T")


def load_environment_variables() -> None:
    """
    Load environment variables from .env file if it exists.

    This function looks for .env files in the following order:
    1. Current working directory
    2. User's home directory
    3. Directory containing the patchmend package

    Values already present in the environment are never overridden.
    """
    # Possible .env file locations in order of preference
    env_paths = [
        Path.cwd() / ".env",  # Current working directory
        Path.home() / ".env",  # User's home directory
        Path(__file__).parent.parent.parent / ".env",  # Project root
    ]

    for env_path in env_paths:
        if env_path.exists() and env_path.is_file():
            load_dotenv(env_path, override=False)
            break


def get_required_env_var(var_name: str, description: Optional[str] = None) -> str:
    """
    Get a required environment variable.

    Args:
        var_name: Name of the environment variable
        description: Optional description of what the variable is used for

    Returns:
        The value of the environment variable

    Raises:
        SystemExit: If the environment variable is not set
    """
    value = os.getenv(var_name)
    if not value:
        error_msg = f"Error: {var_name} environment variable not set"
        if description:
            error_msg += f"\n{description}"
        print(error_msg)
        raise SystemExit(1)
    return value


def get_optional_env_var(var_name: str, default: str = "") -> str:
    """
    Get an optional environment variable with a default value.

    Args:
        var_name: Name of the environment variable
        default: Default value if the variable is not set

    Returns:
        The value of the environment variable or the default value
    """
    return os.getenv(var_name, default)


def _env_value(key: str, convert: Callable[[str], T], default: T) -> T:
    var_name = ENV_VARS[key]
    raw = os.getenv(var_name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return convert(raw.strip())
    except ValueError as e:
        raise ConfigurationError(
            ERROR_MESSAGES["INVALID_SETTING"].format(name=var_name, value=raw)
        ) from e


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(value)


@dataclass(frozen=True)
class ReconcileSettings:
    """Tunables for one reconciliation run."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    rate_limit_seconds: float = DEFAULT_RATE_LIMIT_SECONDS
    generator_timeout: float = DEFAULT_GENERATOR_TIMEOUT
    validator_timeout: float = DEFAULT_VALIDATOR_TIMEOUT
    context_radius: int = DEFAULT_CONTEXT_RADIUS
    complexity_threshold: int = DEFAULT_COMPLEXITY_THRESHOLD
    skip_validation: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be a positive integer")
        if self.rate_limit_seconds < 0:
            raise ConfigurationError("rate_limit_seconds must not be negative")
        if self.generator_timeout <= 0 or self.validator_timeout <= 0:
            raise ConfigurationError("timeouts must be positive")
        if self.context_radius < 1:
            raise ConfigurationError("context_radius must be a positive integer")
        if self.complexity_threshold < 1:
            raise ConfigurationError("complexity_threshold must be a positive integer")

    @classmethod
    def from_env(cls) -> "ReconcileSettings":
        """
        Build settings from environment variables, falling back to defaults.

        Raises:
            ConfigurationError: If a variable is set to an invalid value
        """
        return cls(
            max_attempts=_env_value("MAX_ATTEMPTS", int, DEFAULT_MAX_ATTEMPTS),
            rate_limit_seconds=_env_value(
                "RATE_LIMIT_SECONDS", float, DEFAULT_RATE_LIMIT_SECONDS
            ),
            generator_timeout=_env_value(
                "GENERATOR_TIMEOUT", float, DEFAULT_GENERATOR_TIMEOUT
            ),
            validator_timeout=_env_value(
                "VALIDATOR_TIMEOUT", float, DEFAULT_VALIDATOR_TIMEOUT
            ),
            context_radius=_env_value("CONTEXT_RADIUS", int, DEFAULT_CONTEXT_RADIUS),
            complexity_threshold=_env_value(
                "COMPLEXITY_THRESHOLD", int, DEFAULT_COMPLEXITY_THRESHOLD
            ),
            skip_validation=_env_value("SKIP_VALIDATION", _parse_bool, False),
        )
