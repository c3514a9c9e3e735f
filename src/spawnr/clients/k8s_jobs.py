"""Workload operations (namespaces, deployments, jobs) bound to one captured client handle."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog
from kubernetes import client as k8s_client
from kubernetes import watch as k8s_watch
from kubernetes.client.rest import ApiException

from spawnr.clients.resolver import ClientHandle
from spawnr.config import MANAGED_BY_LABEL, MANAGED_BY_VALUE

log = structlog.get_logger()

MANAGED_JOB_SELECTOR = f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"
NO_PODS_MESSAGE = "No pods found for this job"
JOB_SUCCEEDED_MESSAGE = "Job completed successfully"
JOB_FAILED_MESSAGE = "Job failed"


def _iso(ts: Any) -> str | None:
    if isinstance(ts, datetime):
        return ts.isoformat()
    return str(ts) if ts else None


def job_status(job: k8s_client.V1Job) -> str:
    status = job.status
    if status is None:
        return "pending"
    if status.succeeded:
        return "succeeded"
    if status.failed:
        return "failed"
    if status.active:
        return "running"
    return "pending"


def job_summary(job: k8s_client.V1Job) -> dict[str, Any]:
    """Flatten a V1Job into the fields the tools report."""
    status = job.status
    return {
        "name": job.metadata.name,
        "namespace": job.metadata.namespace,
        "active": (status.active or 0) if status else 0,
        "succeeded": (status.succeeded or 0) if status else 0,
        "failed": (status.failed or 0) if status else 0,
        "status": job_status(job),
        "start_time": _iso(status.start_time) if status else None,
        "completion_time": _iso(status.completion_time) if status else None,
        "labels": job.metadata.labels or {},
    }


def deployment_summary(deployment: k8s_client.V1Deployment) -> dict[str, Any]:
    """Flatten a V1Deployment into replica counts and container images."""
    containers = deployment.spec.template.spec.containers or []
    return {
        "name": deployment.metadata.name,
        "namespace": deployment.metadata.namespace,
        "replicas": deployment.spec.replicas or 0,
        "ready_replicas": (deployment.status.ready_replicas or 0) if deployment.status else 0,
        "containers": [c.name for c in containers],
        "images": [c.image for c in containers if c.image],
    }


class K8sJobsClient:
    """Wrapper around the Core, Apps and Batch APIs of a single ClientHandle.

    The handle is fixed at construction; a concurrent cluster switch does not
    retarget an instance that is already in use.
    """

    def __init__(self, handle: ClientHandle, request_timeout: float) -> None:
        self._handle = handle
        self._timeout = request_timeout
        self._core = k8s_client.CoreV1Api(handle.api_client)
        self._apps = k8s_client.AppsV1Api(handle.api_client)
        self._batch = k8s_client.BatchV1Api(handle.api_client)

    @property
    def handle(self) -> ClientHandle:
        return self._handle

    @property
    def cluster(self) -> str:
        return self._handle.identity

    async def list_namespaces(self) -> list[dict[str, Any]]:
        """List namespaces with their phase."""
        try:
            namespaces = await asyncio.to_thread(self._core.list_namespace, _request_timeout=self._timeout)
        except Exception:
            log.error("failed_to_list_namespaces", cluster=self.cluster, server=self._handle.server)
            raise

        log.debug("namespaces_listed", cluster=self.cluster, count=len(namespaces.items))
        return [
            {"name": ns.metadata.name, "status": ns.status.phase if ns.status else None}
            for ns in namespaces.items
        ]

    async def list_deployments(self, namespace: str) -> list[dict[str, Any]]:
        """List deployments in a namespace with replica counts and container images."""
        try:
            deployments = await asyncio.to_thread(
                self._apps.list_namespaced_deployment,
                namespace,
                _request_timeout=self._timeout,
            )
        except Exception:
            log.error("failed_to_list_deployments", cluster=self.cluster, namespace=namespace)
            raise

        return [deployment_summary(d) for d in deployments.items]

    async def get_deployment(self, namespace: str, name: str) -> k8s_client.V1Deployment:
        try:
            return await asyncio.to_thread(
                self._apps.read_namespaced_deployment,
                name,
                namespace,
                _request_timeout=self._timeout,
            )
        except Exception:
            log.error("failed_to_get_deployment", cluster=self.cluster, namespace=namespace, deployment=name)
            raise

    async def create_job(self, namespace: str, job: k8s_client.V1Job) -> dict[str, Any]:
        try:
            created = await asyncio.to_thread(
                self._batch.create_namespaced_job,
                namespace,
                job,
                _request_timeout=self._timeout,
            )
        except Exception:
            log.error("failed_to_create_job", cluster=self.cluster, namespace=namespace, job=job.metadata.name)
            raise
        log.info("job_created", cluster=self.cluster, namespace=namespace, job=created.metadata.name)
        return job_summary(created)

    async def get_job(self, namespace: str, name: str) -> dict[str, Any]:
        try:
            job = await asyncio.to_thread(
                self._batch.read_namespaced_job,
                name,
                namespace,
                _request_timeout=self._timeout,
            )
        except Exception:
            log.error("failed_to_get_job", cluster=self.cluster, namespace=namespace, job=name)
            raise
        return job_summary(job)

    async def delete_job(self, namespace: str, name: str) -> None:
        """Delete a job's pods, then the job itself with foreground propagation.

        Pod listing or deletion failures are logged and do not stop the job deletion.
        """
        await asyncio.to_thread(self._delete_job_pods, namespace, name)
        try:
            await asyncio.to_thread(
                self._batch.delete_namespaced_job,
                name,
                namespace,
                propagation_policy="Foreground",
                _request_timeout=self._timeout,
            )
        except Exception:
            log.error("failed_to_delete_job", cluster=self.cluster, namespace=namespace, job=name)
            raise
        log.info("job_deleted", cluster=self.cluster, namespace=namespace, job=name)

    def _delete_job_pods(self, namespace: str, name: str) -> None:
        try:
            pods = self._core.list_namespaced_pod(
                namespace,
                label_selector=f"job-name={name}",
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            log.warning("failed_to_list_job_pods", cluster=self.cluster, job=name, status=e.status)
            return

        for pod in pods.items:
            try:
                self._core.delete_namespaced_pod(
                    pod.metadata.name,
                    namespace,
                    propagation_policy="Foreground",
                    _request_timeout=self._timeout,
                )
            except ApiException as e:
                log.warning("failed_to_delete_job_pod", cluster=self.cluster, pod=pod.metadata.name, status=e.status)

    async def get_job_logs(self, namespace: str, name: str) -> str:
        """Return logs of the first pod created for the job."""
        try:
            return await asyncio.to_thread(self._read_job_logs, namespace, name)
        except Exception:
            log.error("failed_to_get_job_logs", cluster=self.cluster, namespace=namespace, job=name)
            raise

    def _read_job_logs(self, namespace: str, name: str) -> str:
        job = self._batch.read_namespaced_job(name, namespace, _request_timeout=self._timeout)
        pods = self._core.list_namespaced_pod(
            namespace,
            label_selector=f"job-name={job.metadata.name}",
            _request_timeout=self._timeout,
        )
        if not pods.items:
            return NO_PODS_MESSAGE
        return self._core.read_namespaced_pod_log(
            pods.items[0].metadata.name,
            namespace,
            _request_timeout=self._timeout,
        )

    async def watch_job_events(self, namespace: str, name: str, timeout_seconds: int) -> tuple[list[str], bool]:
        """Watch one job until it succeeds, fails, or the watch times out.

        Returns the collected event lines and whether the job reached a terminal state.
        """
        return await asyncio.to_thread(self._watch_job, namespace, name, timeout_seconds)

    def _watch_job(self, namespace: str, name: str, timeout_seconds: int) -> tuple[list[str], bool]:
        events: list[str] = []
        watcher = k8s_watch.Watch()
        try:
            for event in watcher.stream(
                self._batch.list_namespaced_job,
                namespace,
                field_selector=f"metadata.name={name}",
                timeout_seconds=timeout_seconds,
            ):
                job = event["object"]
                events.append(f"Job {job.metadata.name}: {event['type']}")
                status = job.status
                if status is not None and status.succeeded:
                    events.append(JOB_SUCCEEDED_MESSAGE)
                    return events, True
                if status is not None and status.failed:
                    events.append(JOB_FAILED_MESSAGE)
                    return events, True
        except ApiException as e:
            log.error("failed_to_watch_job", cluster=self.cluster, namespace=namespace, job=name, status=e.status)
            events.append(f"Error watching job: {e.reason}")
        finally:
            watcher.stop()
        return events, False

    async def list_managed_jobs(self) -> list[dict[str, Any]]:
        """List spawnr-managed jobs across every namespace.

        Namespaces whose jobs cannot be listed are logged and skipped.
        """
        namespaces = await self.list_namespaces()
        return await asyncio.to_thread(self._collect_managed_jobs, [ns["name"] for ns in namespaces])

    def _collect_managed_jobs(self, namespaces: list[str]) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        for namespace in namespaces:
            try:
                jobs = self._batch.list_namespaced_job(
                    namespace,
                    label_selector=MANAGED_JOB_SELECTOR,
                    _request_timeout=self._timeout,
                )
            except ApiException as e:
                log.warning("failed_to_list_jobs_in_namespace", cluster=self.cluster, namespace=namespace, status=e.status)
                continue
            results.extend(job_summary(job) for job in jobs.items)
        return results
