"""Process-wide wiring of settings, descriptor store, resolver and connection registry."""

from __future__ import annotations

import threading
from dataclasses import dataclass

import structlog

from spawnr.clients.descriptor_store import DescriptorStore
from spawnr.clients.identity import AwsCliIdentityExchange
from spawnr.clients.registry import ConnectionRegistry
from spawnr.clients.resolver import ClientResolver
from spawnr.config import Settings, get_settings

log = structlog.get_logger()


@dataclass(frozen=True)
class Runtime:
    settings: Settings
    identity: AwsCliIdentityExchange
    store: DescriptorStore
    resolver: ClientResolver
    registry: ConnectionRegistry


def build_runtime(settings: Settings | None = None) -> Runtime:
    """Wire every component and resolve the initial (local) connection.

    Raises:
        ResolutionError: If no ambient credentials are available.
    """
    settings = settings or get_settings()
    identity = AwsCliIdentityExchange(settings)
    store = DescriptorStore(settings, identity)
    resolver = ClientResolver(settings, store, identity)
    registry = ConnectionRegistry.start(resolver)
    log.info("runtime_ready", admin_namespace=settings.admin_namespace, cluster=registry.current_identity)
    return Runtime(settings=settings, identity=identity, store=store, resolver=resolver, registry=registry)


_runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process runtime, building it on first use."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = build_runtime()
        return _runtime


def set_runtime(runtime: Runtime | None) -> None:
    """Install a prebuilt runtime, or clear it so the next call rebuilds."""
    global _runtime
    with _runtime_lock:
        _runtime = runtime
