"""Resolve a cluster identity into a fully authenticated, immutable client handle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

import structlog
from kubernetes import client as k8s_client

from spawnr.clients import build_remote_api_client, load_ambient_api_client
from spawnr.clients.descriptor_store import DescriptorStore, provider_region
from spawnr.clients.identity import AwsCliIdentityExchange
from spawnr.config import LOCAL_IDENTITY, Settings
from spawnr.errors import (
    DescriptorNotFoundError,
    ExchangeError,
    PersistenceError,
    ResolutionError,
    ResolutionFailure,
)
from spawnr.models import ClusterDescriptor

log = structlog.get_logger()

TrustPolicy = Literal["verify", "skip-verification"]


@dataclass(frozen=True)
class ClientHandle:
    """An authenticated ApiClient plus the configuration it was built from.

    Handles are never mutated; a cluster switch builds a new one.
    """

    identity: str
    server: str
    trust_policy: TrustPolicy
    api_client: k8s_client.ApiClient = field(repr=False, compare=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def insecure(self) -> bool:
        return self.trust_policy == "skip-verification"


def _trust_policy(api_client: k8s_client.ApiClient) -> TrustPolicy:
    return "verify" if api_client.configuration.verify_ssl else "skip-verification"


class ClientResolver:
    """Stateless factory from cluster identity to ClientHandle.

    Nothing is cached: every call performs a fresh token exchange.
    """

    def __init__(
        self,
        settings: Settings,
        store: DescriptorStore,
        identity: AwsCliIdentityExchange,
    ) -> None:
        self._kubeconfig_path = settings.kubeconfig_path
        self._store = store
        self._identity = identity

    def resolve(self, identity: str) -> ClientHandle:
        """Build a handle for ``identity``; ``""`` and ``local`` select ambient credentials.

        Raises:
            ResolutionError: With the failing stage as ``kind``.
            PersistenceError: If the descriptor store itself cannot be read.
        """
        if not identity or identity == LOCAL_IDENTITY:
            return self._resolve_local()
        return self._resolve_remote(identity)

    def _resolve_local(self) -> ClientHandle:
        try:
            api_client = load_ambient_api_client(self._kubeconfig_path)
        except Exception as e:
            log.error("local_credentials_unavailable", kubeconfig=self._kubeconfig_path, error=str(e))
            raise ResolutionError(ResolutionFailure.NO_LOCAL_CREDENTIALS, LOCAL_IDENTITY, str(e)) from e

        handle = ClientHandle(
            identity=LOCAL_IDENTITY,
            server=api_client.configuration.host,
            trust_policy=_trust_policy(api_client),
            api_client=api_client,
        )
        log.info("client_resolved", cluster=LOCAL_IDENTITY, server=handle.server)
        return handle

    def _resolve_remote(self, identity: str) -> ClientHandle:
        try:
            descriptor = self._store.get(identity)
        except DescriptorNotFoundError:
            raise ResolutionError(ResolutionFailure.UNKNOWN_CLUSTER, identity) from None

        trust_anchor = descriptor.trust_anchor or self._heal(descriptor)

        try:
            token = self._identity.exchange_token(
                descriptor.cluster_identity,
                descriptor.assumable_role,
                provider_region(descriptor),
            )
        except ExchangeError as e:
            raise ResolutionError(ResolutionFailure.TOKEN_EXCHANGE_FAILED, identity, e.message) from e

        if not trust_anchor:
            log.warning("insecure_transport", cluster=identity, endpoint=descriptor.endpoint)

        try:
            api_client = build_remote_api_client(
                descriptor.cluster_identity,
                descriptor.endpoint,
                token,
                trust_anchor,
            )
        except Exception as e:
            log.error("client_build_failed", cluster=identity, error=str(e))
            raise ResolutionError(ResolutionFailure.CLIENT_BUILD_FAILED, identity, str(e)) from e

        handle = ClientHandle(
            identity=descriptor.cluster_identity,
            server=api_client.configuration.host,
            trust_policy=_trust_policy(api_client),
            api_client=api_client,
        )
        log.info("client_resolved", cluster=identity, server=handle.server, trust_policy=handle.trust_policy)
        return handle

    def _heal(self, descriptor: ClusterDescriptor) -> str | None:
        """Fetch a missing trust anchor and save it best-effort. None when unavailable."""
        if not descriptor.assumable_role:
            return None
        try:
            anchor = self._identity.fetch_trust_anchor(
                descriptor.cluster_identity,
                descriptor.assumable_role,
                provider_region(descriptor),
            )
        except ExchangeError as e:
            log.warning("trust_anchor_fetch_failed", cluster=descriptor.cluster_identity, error=str(e))
            return None

        try:
            self._store.update_trust_anchor(descriptor.cluster_identity, anchor)
        except (PersistenceError, DescriptorNotFoundError) as e:
            log.warning("trust_anchor_persist_failed", cluster=descriptor.cluster_identity, error=str(e))
        return anchor
