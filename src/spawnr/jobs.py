"""Translate a Deployment's pod template into a one-off, labeled Job."""

from __future__ import annotations

import copy
import re

from kubernetes import client as k8s_client

from spawnr.config import MANAGED_BY_LABEL, MANAGED_BY_VALUE

MAX_NAME_LENGTH = 63
DEFAULT_JOB_NAME = "job"
SHELL_ENTRYPOINT = ["/bin/sh", "-c"]

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]")
_LEADING_NON_ALNUM = re.compile(r"^[^a-z0-9]+")


def sanitize_job_name(name: str) -> str:
    """Turn free text into a valid Kubernetes resource name.

    Lowercases, maps spaces and underscores to hyphens, drops any other invalid
    character, and caps the result at 63 characters. Falls back to ``job``.
    """
    name = name.lower().replace(" ", "-").replace("_", "-")
    name = _INVALID_NAME_CHARS.sub("", name)
    name = name.strip("-")
    name = _LEADING_NON_ALNUM.sub("", name)
    name = name[:MAX_NAME_LENGTH].rstrip("-")
    return name or DEFAULT_JOB_NAME


def build_job_from_deployment(
    deployment: k8s_client.V1Deployment,
    job_name: str,
    namespace: str,
    command: str,
) -> k8s_client.V1Job:
    """Build a Job that runs ``command`` in the deployment's first container.

    The pod template is deep-copied so the deployment object is left untouched.
    Both the Job and its pods carry the managed-by label, and pods never restart.
    """
    template = copy.deepcopy(deployment.spec.template)
    pod_metadata = template.metadata or k8s_client.V1ObjectMeta()
    pod_metadata.labels = dict(pod_metadata.labels or {})
    pod_metadata.labels[MANAGED_BY_LABEL] = MANAGED_BY_VALUE

    pod_spec = template.spec
    if pod_spec.containers:
        first = pod_spec.containers[0]
        first.command = list(SHELL_ENTRYPOINT)
        first.args = [command]
    pod_spec.restart_policy = "Never"

    return k8s_client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=k8s_client.V1ObjectMeta(
            name=job_name,
            namespace=namespace,
            labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
        ),
        spec=k8s_client.V1JobSpec(
            template=k8s_client.V1PodTemplateSpec(metadata=pod_metadata, spec=pod_spec),
        ),
    )
