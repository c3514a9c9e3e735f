"""The single active cluster connection shared by every workload operation."""

from __future__ import annotations

import threading

import structlog

from spawnr.clients.resolver import ClientHandle, ClientResolver

log = structlog.get_logger()


class ConnectionRegistry:
    """Holds the current ClientHandle and swaps it atomically.

    A switch resolves the replacement with no lock held and only then takes the
    lock to publish it, so blocking I/O never runs inside the critical section.
    The lock serialises writers only. Readers take the published reference
    without locking, since rebinding one attribute is atomic, so they never
    wait on each other or on a switch and never see a half-built handle. A
    failed resolution leaves the previous handle installed.
    """

    def __init__(self, resolver: ClientResolver, initial: ClientHandle) -> None:
        self._resolver = resolver
        self._handle = initial
        self._lock = threading.Lock()

    @classmethod
    def start(cls, resolver: ClientResolver) -> ConnectionRegistry:
        """Create a registry bound to the ambient (``local``) cluster."""
        initial = resolver.resolve("")
        log.info("registry_started", cluster=initial.identity, server=initial.server)
        return cls(resolver, initial)

    def current(self) -> ClientHandle:
        return self._handle

    @property
    def current_identity(self) -> str:
        return self.current().identity

    def switch_to(self, identity: str) -> ClientHandle:
        """Resolve ``identity`` and install it as the current handle.

        Switching to the already active identity re-resolves and republishes.

        Raises:
            ResolutionError: If resolution fails; the current handle is unchanged.
        """
        log.info("cluster_switch_requested", cluster=identity or "local")
        replacement = self._resolver.resolve(identity)

        with self._lock:
            previous = self._handle
            self._handle = replacement

        log.info(
            "cluster_switched",
            previous_cluster=previous.identity,
            previous_server=previous.server,
            cluster=replacement.identity,
            server=replacement.server,
            trust_policy=replacement.trust_policy,
        )
        return replacement
