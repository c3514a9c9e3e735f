"""Pydantic v2 models for cluster descriptors, tool inputs, outputs, and errors."""

from __future__ import annotations

import re
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from spawnr.config import LOCAL_IDENTITY

UNKNOWN_REGION = "unknown"


# --- Cluster descriptors ---


class ClusterDescriptor(BaseModel):
    """How to reach and authenticate to one cluster."""

    model_config = ConfigDict(frozen=True)

    cluster_identity: str
    friendly_name: str
    endpoint: str
    assumable_role: str
    trust_anchor: str | None = None
    region: str | None = None

    @property
    def is_local(self) -> bool:
        return self.cluster_identity == LOCAL_IDENTITY

    @property
    def has_trust_anchor(self) -> bool:
        return bool(self.trust_anchor)

    @property
    def needs_healing(self) -> bool:
        return not self.is_local and not self.has_trust_anchor and bool(self.assumable_role)

    def effective_region(self) -> str:
        return self.region or derive_region(self.endpoint)


LOCAL_DESCRIPTOR = ClusterDescriptor(
    cluster_identity=LOCAL_IDENTITY,
    friendly_name="Local Cluster",
    endpoint="",
    assumable_role="",
)


# <hash>.<region>.eks.<provider domain>
_EKS_HOST_PATTERN = re.compile(r"^(?:[^.]+\.)+([^.]+)\.eks\.", re.IGNORECASE)


def derive_region(endpoint: str) -> str:
    """Extract the region label that precedes the provider's ``.eks.`` domain.

    Returns ``"unknown"`` when the endpoint host does not follow that layout.
    """
    if not endpoint:
        return UNKNOWN_REGION
    host = urlparse(endpoint).hostname or endpoint
    match = _EKS_HOST_PATTERN.match(host)
    if match is None:
        return UNKNOWN_REGION
    return match.group(1)


# --- Shared error model ---


class ToolError(BaseModel):
    """Structured, non-fatal problem reported alongside a tool result."""

    error: str
    source: str
    cluster: str


# --- Output scrubbing ---

_BEARER_TOKEN_PATTERN = re.compile(r"k8s-aws-v1\.[A-Za-z0-9_\-]+")
_ACCESS_KEY_PATTERN = re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b")
_SECRET_FIELD_PATTERN = re.compile(r'("(?:SecretAccessKey|SessionToken|token)"\s*:\s*)"[^"]*"')


def scrub_sensitive_values(text: str) -> str:
    """Remove bearer tokens and temporary AWS credentials from text.

    Role ARNs, endpoints and CLI diagnostics are preserved.
    """
    if not text:
        return text
    result = _SECRET_FIELD_PATTERN.sub(r'\1"[REDACTED]"', text)
    result = _BEARER_TOKEN_PATTERN.sub("[REDACTED_TOKEN]", result)
    result = _ACCESS_KEY_PATTERN.sub("[REDACTED_KEY_ID]", result)
    return result


# --- Cluster tool models ---


class RegisterClusterInput(BaseModel):
    """Input parameters for register_cluster."""

    cluster_identity: str = Field(min_length=1)
    friendly_name: str = Field(min_length=1)
    assumable_role: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    trust_anchor: str | None = None


class ClusterSummary(BaseModel):
    """One entry of the cluster listing."""

    cluster_identity: str
    friendly_name: str
    endpoint: str
    region: str
    is_local: bool
    has_trust_anchor: bool
    insecure: bool
    active: bool = False


class ClusterListOutput(BaseModel):
    """Output for list_clusters."""

    clusters: list[ClusterSummary]
    active_cluster: str
    summary: str
    timestamp: str
    errors: list[ToolError] = Field(default_factory=list)


class ClusterInfo(BaseModel):
    """Provider-side details for a remote cluster."""

    name: str
    region: str
    status: str
    endpoint: str | None = None
    version: str | None = None


class ActiveClusterOutput(BaseModel):
    """Output for switch_cluster and current_cluster."""

    cluster_identity: str
    server: str
    trust_policy: Literal["verify", "skip-verification"]
    message: str
    timestamp: str
    warnings: list[str] = Field(default_factory=list)


class OperationResult(BaseModel):
    """Generic acknowledgement for mutating tools."""

    message: str
    cluster: str
    timestamp: str


# --- Workload tool models ---


class NamespaceSummary(BaseModel):
    name: str
    status: str | None = None


class DeploymentSummary(BaseModel):
    name: str
    namespace: str
    replicas: int = 0
    ready_replicas: int = 0
    containers: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)


class CreateJobInput(BaseModel):
    """Input parameters for create_job."""

    namespace: str = Field(min_length=1)
    deployment: str = Field(min_length=1)
    command: str = Field(min_length=1)
    job_name: str = Field(min_length=1)


class JobSummary(BaseModel):
    name: str
    namespace: str
    active: int = 0
    succeeded: int = 0
    failed: int = 0
    status: Literal["running", "succeeded", "failed", "pending"]
    start_time: str | None = None
    completion_time: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)


class NamespaceListOutput(BaseModel):
    cluster: str
    namespaces: list[NamespaceSummary]
    timestamp: str


class DeploymentListOutput(BaseModel):
    cluster: str
    namespace: str
    deployments: list[DeploymentSummary]
    timestamp: str


class JobListOutput(BaseModel):
    cluster: str
    jobs: list[JobSummary]
    summary: str
    timestamp: str


class JobLogsOutput(BaseModel):
    cluster: str
    namespace: str
    job_name: str
    logs: str
    timestamp: str


class JobWatchOutput(BaseModel):
    cluster: str
    namespace: str
    job_name: str
    events: list[str]
    finished: bool
    timestamp: str
