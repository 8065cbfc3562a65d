"""
Configuration for contact migration.

This module provides:
- MigrationConfig: Settings shared by the service, extractors and stores
- DEFAULT_USERNAME: Audit username used when the source system sends none
- GENERATED_ID_START: First destination id handed out for nested records
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_USERNAME = "MIGRATION"

# Source identifiers are reserved below this value.
GENERATED_ID_START = 20_000_000


def _int(name: str, value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}.") from None


def _float(name: str, value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}.") from None


def _optional_float(name: str, value: str | None, default: float | None) -> float | None:
    if value is None:
        return default
    if value.strip().lower() in ("", "none", "off"):
        return None
    try:
        return float(value)
    except ValueError:
        raise ValueError(
            f"{name} must be a number of seconds or 'none', got {value!r}."
        ) from None


def _bool(name: str, value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be true or false, got {value!r}.")


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for contact migration.

    Attributes:
        default_username: Written to created_by when an item carries no
            create username
        generated_id_start: First generated destination id for nested
            records (and the seed for store id sequences)
        lock_timeout: Seconds to wait for the per-contact lock
            (None = wait forever)
        lock_retry_interval: Seconds between lock attempts while waiting
        enable_tracing: Whether components create OpenTelemetry spans

    Example:
        >>> config = MigrationConfig(lock_timeout=5.0)
        >>> service = ContactMigrationService(store, config=config)
        >>>
        >>> # Or from CONTACT_MIGRATION_* environment variables
        >>> config = MigrationConfig.from_env()
    """

    default_username: str = DEFAULT_USERNAME
    generated_id_start: int = GENERATED_ID_START
    lock_timeout: float | None = 30.0
    lock_retry_interval: float = 0.1
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.default_username:
            raise ValueError(
                "default_username must not be empty. "
                f"Use {DEFAULT_USERNAME!r} (default) or the name of the migrating job."
            )

        if self.generated_id_start < 1:
            raise ValueError(
                f"generated_id_start must be positive, got {self.generated_id_start}. "
                f"Use a value above the highest source id, like {GENERATED_ID_START} (default)."
            )

        if self.lock_timeout is not None and self.lock_timeout <= 0:
            raise ValueError(
                f"lock_timeout must be positive or None, got {self.lock_timeout}. "
                "Use None to wait for the lock indefinitely."
            )

        if self.lock_retry_interval <= 0:
            raise ValueError(
                f"lock_retry_interval must be positive, got {self.lock_retry_interval}."
            )

    @classmethod
    def from_env(cls, prefix: str = "CONTACT_MIGRATION_") -> MigrationConfig:
        """
        Build a configuration from environment variables.

        Reads ``{prefix}DEFAULT_USERNAME``, ``{prefix}GENERATED_ID_START``,
        ``{prefix}LOCK_TIMEOUT`` ("none" disables the timeout),
        ``{prefix}LOCK_RETRY_INTERVAL`` and ``{prefix}ENABLE_TRACING``.
        Unset variables keep their defaults.

        Args:
            prefix: Prefix shared by all variable names

        Returns:
            A validated MigrationConfig

        Raises:
            ValueError: If a variable cannot be parsed or a value is invalid
        """
        defaults = cls()

        def env(name: str) -> tuple[str, str | None]:
            return f"{prefix}{name}", os.getenv(f"{prefix}{name}")

        return cls(
            default_username=os.getenv(f"{prefix}DEFAULT_USERNAME") or defaults.default_username,
            generated_id_start=_int(*env("GENERATED_ID_START"), defaults.generated_id_start),
            lock_timeout=_optional_float(*env("LOCK_TIMEOUT"), defaults.lock_timeout),
            lock_retry_interval=_float(*env("LOCK_RETRY_INTERVAL"), defaults.lock_retry_interval),
            enable_tracing=_bool(*env("ENABLE_TRACING"), defaults.enable_tracing),
        )


__all__ = [
    "DEFAULT_USERNAME",
    "GENERATED_ID_START",
    "MigrationConfig",
]
