"""Process settings with environment variable overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_ADMIN_NAMESPACE = "spawnr"
LOCAL_IDENTITY = "local"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "spawnr"
CLUSTER_SECRET_LABEL = "spawnr.io/cluster"


def _first_env(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return default


def _default_kubeconfig() -> str:
    return _first_env("SPAWNR_KUBECONFIG", "KUBECONFIG") or str(Path.home() / ".kube" / "config")


@dataclass(frozen=True)
class Settings:
    """Runtime settings. Every field can be overridden from the environment."""

    admin_namespace: str = field(
        default_factory=lambda: _first_env("SPAWNR_NAMESPACE", "POD_NAMESPACE", default=DEFAULT_ADMIN_NAMESPACE)
    )
    ambient_region: str | None = field(default_factory=lambda: _first_env("SPAWNR_AMBIENT_REGION", "AWS_REGION"))
    kubeconfig_path: str = field(default_factory=_default_kubeconfig)
    aws_cli: str = field(default_factory=lambda: os.environ.get("SPAWNR_AWS_CLI", "aws"))
    exchange_timeout_seconds: float = field(
        default_factory=lambda: float(os.environ.get("SPAWNR_EXCHANGE_TIMEOUT_SECONDS", "30"))
    )
    api_timeout_seconds: float = field(
        default_factory=lambda: float(os.environ.get("SPAWNR_API_TIMEOUT_SECONDS", "30"))
    )
    watch_timeout_seconds: int = field(
        default_factory=lambda: int(os.environ.get("SPAWNR_WATCH_TIMEOUT_SECONDS", "300"))
    )
    heal_workers: int = field(default_factory=lambda: int(os.environ.get("SPAWNR_HEAL_WORKERS", "4")))
    transport: str = field(default_factory=lambda: os.environ.get("SPAWNR_TRANSPORT", "stdio"))


_VALID_TRANSPORTS = {"stdio", "sse", "streamable-http"}


def get_settings() -> Settings:
    """Return settings with environment variable overrides applied."""
    return Settings()


def validate_settings(settings: Settings) -> None:
    """Validate settings at startup.

    Raises RuntimeError listing every invalid value found.
    """
    errors: list[str] = []
    if not settings.admin_namespace:
        errors.append("admin namespace is empty")
    if settings.exchange_timeout_seconds <= 0:
        errors.append("SPAWNR_EXCHANGE_TIMEOUT_SECONDS must be positive")
    if settings.api_timeout_seconds <= 0:
        errors.append("SPAWNR_API_TIMEOUT_SECONDS must be positive")
    if settings.watch_timeout_seconds <= 0:
        errors.append("SPAWNR_WATCH_TIMEOUT_SECONDS must be positive")
    if settings.heal_workers < 1:
        errors.append("SPAWNR_HEAL_WORKERS must be at least 1")
    if settings.transport not in _VALID_TRANSPORTS:
        valid = ", ".join(sorted(_VALID_TRANSPORTS))
        errors.append(f"SPAWNR_TRANSPORT must be one of: {valid}")

    if errors:
        detail = "; ".join(errors)
        msg = f"Configuration errors: {detail}."
        raise RuntimeError(msg)
