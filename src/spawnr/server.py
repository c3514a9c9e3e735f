"""MCP server entry point and tool registration."""

from __future__ import annotations

import sys
import time
from collections.abc import Awaitable

import structlog
from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel

from spawnr.config import get_settings, validate_settings
from spawnr.errors import SpawnrError
from spawnr.models import CreateJobInput, RegisterClusterInput, scrub_sensitive_values
from spawnr.runtime import build_runtime, set_runtime
from spawnr.tools.clusters import (
    current_cluster_handler,
    describe_cluster_handler,
    list_clusters_handler,
    register_cluster_handler,
    remove_cluster_handler,
    switch_cluster_handler,
)
from spawnr.tools.workloads import (
    create_job_handler,
    delete_job_handler,
    get_deployment_handler,
    get_job_handler,
    get_job_logs_handler,
    list_deployments_handler,
    list_jobs_handler,
    list_namespaces_handler,
    watch_job_handler,
)

# Configure structlog for JSON output to stderr
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

log = structlog.get_logger()

mcp = FastMCP("Spawnr")


async def _invoke(tool: str, call: Awaitable[BaseModel], **context: str | None) -> str:
    """Await a handler and render its result, converting failures into scrubbed RuntimeErrors."""
    start = time.monotonic()
    try:
        result = await call
    except (SpawnrError, ValueError) as e:
        sanitised = scrub_sensitive_values(str(e))
        client_error = isinstance(e, ValueError) or e.is_client_error
        level = log.warning if client_error else log.error
        level("tool_failed", tool=tool, error=sanitised, error_type=type(e).__name__, **context)
        raise RuntimeError(sanitised) from None
    except Exception as e:
        sanitised = scrub_sensitive_values(str(e))
        log.error("tool_failed", tool=tool, error=sanitised, error_type=type(e).__name__, **context)
        raise RuntimeError(sanitised) from None

    log.info("tool_completed", tool=tool, latency_ms=_elapsed_ms(start), **context)
    return scrub_sensitive_values(result.model_dump_json(indent=2))


# --- Cluster tools ---


@mcp.tool()
async def list_clusters() -> str:
    """List the local cluster and every registered remote cluster.

    Each entry reports its derived region, whether it is the synthesized local
    entry, whether a CA certificate is stored, and whether it is active.
    Clusters missing a CA certificate are repaired on the way when possible.
    """
    return await _invoke("list_clusters", list_clusters_handler())


@mcp.tool()
async def describe_cluster(cluster_identity: str) -> str:
    """Describe a cluster (status, endpoint, version) through the AWS CLI.

    Args:
        cluster_identity: Cluster name as known to AWS, or 'local'.
    """
    return await _invoke("describe_cluster", describe_cluster_handler(cluster_identity), cluster=cluster_identity)


@mcp.tool()
async def register_cluster(
    cluster_identity: str,
    friendly_name: str,
    assumable_role: str,
    endpoint: str,
    trust_anchor: str | None = None,
) -> str:
    """Register a remote EKS cluster reachable through an assumable IAM role.

    Args:
        cluster_identity: The cluster's real name in EKS; used as its unique key.
        friendly_name: Display label.
        assumable_role: IAM role ARN exchanged for a short-lived token.
        endpoint: API server URL, e.g. https://<hash>.<region>.eks.amazonaws.com.
        trust_anchor: Base64 CA certificate data. Omit to fetch it lazily.
    """
    try:
        request = RegisterClusterInput(
            cluster_identity=cluster_identity,
            friendly_name=friendly_name,
            assumable_role=assumable_role,
            endpoint=endpoint,
            trust_anchor=trust_anchor,
        )
    except ValueError as e:
        raise RuntimeError(str(e)) from None
    return await _invoke("register_cluster", register_cluster_handler(request), cluster=cluster_identity)


@mcp.tool()
async def remove_cluster(cluster_identity: str) -> str:
    """Remove a registered cluster. The 'local' cluster cannot be removed.

    Args:
        cluster_identity: Identity of the cluster to remove.
    """
    return await _invoke("remove_cluster", remove_cluster_handler(cluster_identity), cluster=cluster_identity)


@mcp.tool()
async def switch_cluster(cluster_identity: str) -> str:
    """Make a cluster the target of all subsequent workload tools.

    A fresh token is exchanged on every switch. If the switch fails, the
    previously active cluster stays active.

    Args:
        cluster_identity: 'local' or a registered cluster identity.
    """
    return await _invoke("switch_cluster", switch_cluster_handler(cluster_identity), cluster=cluster_identity)


@mcp.tool()
async def current_cluster() -> str:
    """Show the active cluster, its API server and TLS verification policy."""
    return await _invoke("current_cluster", current_cluster_handler())


# --- Workload tools ---


@mcp.tool()
async def list_namespaces() -> str:
    """List namespaces on the active cluster."""
    return await _invoke("list_namespaces", list_namespaces_handler())


@mcp.tool()
async def list_deployments(namespace: str = "default") -> str:
    """List deployments in a namespace on the active cluster.

    Args:
        namespace: Namespace to list. Defaults to 'default'.
    """
    return await _invoke("list_deployments", list_deployments_handler(namespace), namespace=namespace)


@mcp.tool()
async def get_deployment(namespace: str, name: str) -> str:
    """Show one deployment's replicas, containers and images.

    Args:
        namespace: Namespace of the deployment.
        name: Deployment name.
    """
    return await _invoke("get_deployment", get_deployment_handler(namespace, name), namespace=namespace)


@mcp.tool()
async def create_job(namespace: str, deployment: str, command: str, job_name: str) -> str:
    """Spawn a one-off Job from a deployment's pod template.

    The first container runs `/bin/sh -c <command>`, pods never restart, and the
    Job is labeled app.kubernetes.io/managed-by=spawnr.

    Args:
        namespace: Namespace of the source deployment; the Job is created there too.
        deployment: Source deployment name.
        command: Shell command to run.
        job_name: Desired Job name; sanitised into a valid resource name.
    """
    try:
        request = CreateJobInput(namespace=namespace, deployment=deployment, command=command, job_name=job_name)
    except ValueError as e:
        raise RuntimeError(str(e)) from None
    return await _invoke("create_job", create_job_handler(request), namespace=namespace)


@mcp.tool()
async def get_job(namespace: str, name: str) -> str:
    """Show a Job's status counters and timestamps.

    Args:
        namespace: Namespace of the Job.
        name: Job name.
    """
    return await _invoke("get_job", get_job_handler(namespace, name), namespace=namespace)


@mcp.tool()
async def delete_job(namespace: str, name: str) -> str:
    """Delete a Job and its pods.

    Args:
        namespace: Namespace of the Job.
        name: Job name.
    """
    return await _invoke("delete_job", delete_job_handler(namespace, name), namespace=namespace)


@mcp.tool()
async def get_job_logs(namespace: str, name: str) -> str:
    """Fetch logs from the first pod of a Job.

    Args:
        namespace: Namespace of the Job.
        name: Job name.
    """
    return await _invoke("get_job_logs", get_job_logs_handler(namespace, name), namespace=namespace)


@mcp.tool()
async def watch_job(namespace: str, name: str, timeout_seconds: int | None = None) -> str:
    """Follow a Job's change events until it succeeds, fails, or the timeout elapses.

    Args:
        namespace: Namespace of the Job.
        name: Job name.
        timeout_seconds: Watch duration cap. Defaults to SPAWNR_WATCH_TIMEOUT_SECONDS.
    """
    return await _invoke("watch_job", watch_job_handler(namespace, name, timeout_seconds), namespace=namespace)


@mcp.tool()
async def list_jobs() -> str:
    """List every spawnr-managed Job across all namespaces of the active cluster."""
    return await _invoke("list_jobs", list_jobs_handler())


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def main() -> None:
    settings = get_settings()
    validate_settings(settings)
    # The initial connection is resolved before serving so missing credentials fail fast.
    set_runtime(build_runtime(settings))
    mcp.run(transport=settings.transport)


if __name__ == "__main__":
    main()
