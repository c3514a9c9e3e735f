"""Workload tools: namespaces, deployments, and the Jobs spawned from them.

Every handler captures the active connection exactly once, so a cluster switch
that lands mid-call cannot split one operation across two clusters.
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog

from spawnr.clients.k8s_jobs import K8sJobsClient, deployment_summary
from spawnr.jobs import build_job_from_deployment, sanitize_job_name
from spawnr.models import (
    CreateJobInput,
    DeploymentListOutput,
    DeploymentSummary,
    JobListOutput,
    JobLogsOutput,
    JobSummary,
    JobWatchOutput,
    NamespaceListOutput,
    NamespaceSummary,
    OperationResult,
)
from spawnr.runtime import get_runtime
from spawnr.validation import validate_namespace, validate_resource_name

log = structlog.get_logger()

DEFAULT_NAMESPACE = "default"
MAX_WATCH_SECONDS = 3600


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


def _capture_jobs_client() -> K8sJobsClient:
    runtime = get_runtime()
    return K8sJobsClient(runtime.registry.current(), runtime.settings.api_timeout_seconds)


async def list_namespaces_handler() -> NamespaceListOutput:
    jobs = _capture_jobs_client()
    namespaces = await jobs.list_namespaces()
    return NamespaceListOutput(
        cluster=jobs.cluster,
        namespaces=[NamespaceSummary(**ns) for ns in namespaces],
        timestamp=_now(),
    )


async def list_deployments_handler(namespace: str | None = None) -> DeploymentListOutput:
    namespace = namespace or DEFAULT_NAMESPACE
    validate_namespace(namespace)
    jobs = _capture_jobs_client()
    deployments = await jobs.list_deployments(namespace)
    return DeploymentListOutput(
        cluster=jobs.cluster,
        namespace=namespace,
        deployments=[DeploymentSummary(**d) for d in deployments],
        timestamp=_now(),
    )


async def get_deployment_handler(namespace: str, name: str) -> DeploymentSummary:
    validate_namespace(namespace)
    validate_resource_name(name, "deployment")
    jobs = _capture_jobs_client()
    deployment = await jobs.get_deployment(namespace, name)
    return DeploymentSummary(**deployment_summary(deployment))


async def create_job_handler(request: CreateJobInput) -> JobSummary:
    """Spawn a Job from a deployment's pod template with the command overridden.

    The requested job name is sanitised into a valid resource name first.
    """
    validate_namespace(request.namespace)
    validate_resource_name(request.deployment, "deployment")
    job_name = sanitize_job_name(request.job_name)

    jobs = _capture_jobs_client()
    deployment = await jobs.get_deployment(request.namespace, request.deployment)
    job = build_job_from_deployment(deployment, job_name, request.namespace, request.command)
    created = await jobs.create_job(request.namespace, job)
    log.info(
        "job_spawned",
        cluster=jobs.cluster,
        namespace=request.namespace,
        deployment=request.deployment,
        job=job_name,
    )
    return JobSummary(**created)


async def get_job_handler(namespace: str, name: str) -> JobSummary:
    validate_namespace(namespace)
    validate_resource_name(name, "job")
    jobs = _capture_jobs_client()
    return JobSummary(**await jobs.get_job(namespace, name))


async def delete_job_handler(namespace: str, name: str) -> OperationResult:
    validate_namespace(namespace)
    validate_resource_name(name, "job")
    jobs = _capture_jobs_client()
    await jobs.delete_job(namespace, name)
    return OperationResult(message="Job deleted successfully", cluster=jobs.cluster, timestamp=_now())


async def get_job_logs_handler(namespace: str, name: str) -> JobLogsOutput:
    validate_namespace(namespace)
    validate_resource_name(name, "job")
    jobs = _capture_jobs_client()
    logs = await jobs.get_job_logs(namespace, name)
    return JobLogsOutput(cluster=jobs.cluster, namespace=namespace, job_name=name, logs=logs, timestamp=_now())


async def watch_job_handler(namespace: str, name: str, timeout_seconds: int | None = None) -> JobWatchOutput:
    """Follow a job's watch events until it finishes or the timeout elapses."""
    validate_namespace(namespace)
    validate_resource_name(name, "job")
    runtime = get_runtime()
    timeout = timeout_seconds or runtime.settings.watch_timeout_seconds
    timeout = max(1, min(timeout, MAX_WATCH_SECONDS))

    jobs = _capture_jobs_client()
    events, finished = await jobs.watch_job_events(namespace, name, timeout)
    return JobWatchOutput(
        cluster=jobs.cluster,
        namespace=namespace,
        job_name=name,
        events=events,
        finished=finished,
        timestamp=_now(),
    )


async def list_jobs_handler() -> JobListOutput:
    """List every spawnr-managed job on the active cluster."""
    jobs = _capture_jobs_client()
    managed = [JobSummary(**j) for j in await jobs.list_managed_jobs()]
    running = sum(1 for j in managed if j.status == "running")
    failed = sum(1 for j in managed if j.status == "failed")
    summary = f"{len(managed)} managed job{'s' if len(managed) != 1 else ''} on {jobs.cluster}"
    if running or failed:
        summary += f" ({running} running, {failed} failed)"
    return JobListOutput(cluster=jobs.cluster, jobs=managed, summary=summary, timestamp=_now())
