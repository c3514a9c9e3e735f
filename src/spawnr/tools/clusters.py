"""Cluster tools: list, describe, register, remove, switch and inspect the active connection."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import structlog

from spawnr.clients.descriptor_store import provider_region
from spawnr.clients.resolver import ClientHandle
from spawnr.config import LOCAL_IDENTITY
from spawnr.errors import DescriptorNotFoundError, PersistenceError, ReservedIdentityError
from spawnr.models import (
    LOCAL_DESCRIPTOR,
    ActiveClusterOutput,
    ClusterDescriptor,
    ClusterInfo,
    ClusterListOutput,
    ClusterSummary,
    OperationResult,
    RegisterClusterInput,
    ToolError,
)
from spawnr.runtime import get_runtime
from spawnr.validation import validate_cluster_identity, validate_endpoint, validate_role

log = structlog.get_logger()

LOCAL_REGION = "local"
INSECURE_WARNING = "Connected without certificate verification: no CA certificate is stored for this cluster."


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


def _summarise(descriptor: ClusterDescriptor, active: str, local_region: str) -> ClusterSummary:
    if descriptor.is_local:
        return ClusterSummary(
            cluster_identity=descriptor.cluster_identity,
            friendly_name=descriptor.friendly_name,
            endpoint=descriptor.endpoint,
            region=local_region,
            is_local=True,
            has_trust_anchor=False,
            insecure=False,
            active=active == LOCAL_IDENTITY,
        )
    return ClusterSummary(
        cluster_identity=descriptor.cluster_identity,
        friendly_name=descriptor.friendly_name,
        endpoint=descriptor.endpoint,
        region=descriptor.effective_region(),
        is_local=False,
        has_trust_anchor=descriptor.has_trust_anchor,
        insecure=not descriptor.has_trust_anchor,
        active=active == descriptor.cluster_identity,
    )


def _active_output(handle: ClientHandle, message: str) -> ActiveClusterOutput:
    warnings = [INSECURE_WARNING] if handle.insecure else []
    return ActiveClusterOutput(
        cluster_identity=handle.identity,
        server=handle.server,
        trust_policy=handle.trust_policy,
        message=message,
        timestamp=_now(),
        warnings=warnings,
    )


async def list_clusters_handler() -> ClusterListOutput:
    """List ``local`` plus every registered cluster, healing missing CA data on the way.

    A store failure still returns the local entry, with the failure in ``errors``.
    """
    runtime = get_runtime()
    active = runtime.registry.current_identity
    errors: list[ToolError] = []

    try:
        descriptors = await asyncio.to_thread(runtime.store.list_descriptors)
    except PersistenceError as e:
        log.warning("descriptor_listing_degraded", error=str(e))
        descriptors = [LOCAL_DESCRIPTOR]
        errors.append(ToolError(error=e.message, source="descriptor-store", cluster=LOCAL_IDENTITY))

    local_region = runtime.settings.ambient_region or LOCAL_REGION
    clusters = [_summarise(d, active, local_region) for d in descriptors]
    insecure = sum(1 for c in clusters if c.insecure)

    summary = f"{len(clusters)} cluster{'s' if len(clusters) != 1 else ''}, active: {active}"
    if insecure:
        summary += f", {insecure} without CA certificate"

    return ClusterListOutput(
        clusters=clusters,
        active_cluster=active,
        summary=summary,
        timestamp=_now(),
        errors=errors,
    )


async def describe_cluster_handler(cluster_identity: str) -> ClusterInfo:
    """Describe a cluster through the identity provider.

    Registered clusters are described in their recorded or derived region.
    """
    runtime = get_runtime()
    if cluster_identity == LOCAL_IDENTITY:
        handle = runtime.registry.current()
        return ClusterInfo(
            name=LOCAL_IDENTITY,
            region=runtime.settings.ambient_region or LOCAL_REGION,
            status="ACTIVE",
            endpoint=handle.server if handle.identity == LOCAL_IDENTITY else None,
        )

    validate_cluster_identity(cluster_identity)
    region: str | None = None
    try:
        descriptor = await asyncio.to_thread(runtime.store.get, cluster_identity)
        region = provider_region(descriptor)
    except DescriptorNotFoundError:
        log.debug("describe_unregistered_cluster", cluster=cluster_identity)

    return await asyncio.to_thread(runtime.identity.describe_cluster, cluster_identity, region)


async def register_cluster_handler(request: RegisterClusterInput) -> OperationResult:
    """Persist a new cluster descriptor. CA data is optional and healed later when absent."""
    if request.cluster_identity == LOCAL_IDENTITY:
        raise ReservedIdentityError(LOCAL_IDENTITY, "register")
    validate_cluster_identity(request.cluster_identity)
    validate_role(request.assumable_role)
    validate_endpoint(request.endpoint)

    descriptor = ClusterDescriptor(
        cluster_identity=request.cluster_identity,
        friendly_name=request.friendly_name,
        endpoint=request.endpoint,
        assumable_role=request.assumable_role,
        trust_anchor=request.trust_anchor or None,
    )
    runtime = get_runtime()
    await asyncio.to_thread(runtime.store.register, descriptor)
    return OperationResult(
        message=f"Cluster {request.cluster_identity} added successfully",
        cluster=request.cluster_identity,
        timestamp=_now(),
    )


async def remove_cluster_handler(cluster_identity: str) -> OperationResult:
    """Delete a cluster descriptor. ``local`` can never be removed."""
    if cluster_identity == LOCAL_IDENTITY:
        raise ReservedIdentityError(LOCAL_IDENTITY, "remove")
    validate_cluster_identity(cluster_identity)

    runtime = get_runtime()
    await asyncio.to_thread(runtime.store.remove, cluster_identity)
    if runtime.registry.current_identity == cluster_identity:
        log.warning("active_cluster_removed", cluster=cluster_identity)
    return OperationResult(
        message=f"Cluster {cluster_identity} deleted successfully",
        cluster=cluster_identity,
        timestamp=_now(),
    )


async def switch_cluster_handler(cluster_identity: str) -> ActiveClusterOutput:
    """Resolve a fresh connection and make it the active one.

    On failure the previous connection stays active and the error propagates.
    """
    runtime = get_runtime()
    handle = await asyncio.to_thread(runtime.registry.switch_to, cluster_identity)
    return _active_output(handle, f"Switched to cluster {handle.identity}")


async def current_cluster_handler() -> ActiveClusterOutput:
    handle = get_runtime().registry.current()
    return _active_output(handle, f"Active cluster is {handle.identity}")
