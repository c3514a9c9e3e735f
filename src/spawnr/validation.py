"""Input validation helpers for MCP tool parameters."""

from __future__ import annotations

import re
from urllib.parse import urlparse

# RFC 1123 label: lowercase alphanumeric and hyphens, 1-63 chars, starts/ends with alphanumeric
_NAMESPACE_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")

# RFC 1123 subdomain, used for Secret, Deployment and Job names
_RESOURCE_NAME_RE = re.compile(r"^[a-z0-9]([a-z0-9\-.]{0,251}[a-z0-9])?$")

_WHITESPACE_RE = re.compile(r"\s")

_VALID_ENDPOINT_SCHEMES = {"https", "http"}


def validate_namespace(namespace: str | None) -> None:
    """Validate a Kubernetes namespace name against RFC 1123."""
    if namespace is None:
        return
    if not _NAMESPACE_RE.match(namespace):
        msg = f"Invalid namespace: {namespace!r}. Must be a valid RFC 1123 label."
        raise ValueError(msg)


def validate_resource_name(name: str, kind: str = "resource") -> None:
    """Validate a Deployment or Job name against RFC 1123 subdomain rules."""
    if not _RESOURCE_NAME_RE.match(name):
        msg = f"Invalid {kind} name: {name!r}. Must be a valid RFC 1123 subdomain."
        raise ValueError(msg)


def validate_cluster_identity(identity: str) -> None:
    """Validate a cluster identity, which doubles as the descriptor Secret name."""
    if not _RESOURCE_NAME_RE.match(identity):
        msg = (
            f"Invalid cluster identity: {identity!r}. Must be lowercase alphanumeric, "
            "'-' or '.', and start and end with an alphanumeric character."
        )
        raise ValueError(msg)


def validate_endpoint(endpoint: str) -> None:
    """Validate that an endpoint is an absolute http(s) URL with a host."""
    parsed = urlparse(endpoint)
    if parsed.scheme not in _VALID_ENDPOINT_SCHEMES or not parsed.hostname:
        msg = f"Invalid endpoint: {endpoint!r}. Must be an absolute https:// URL."
        raise ValueError(msg)


def validate_role(role: str) -> None:
    """Validate an assumable role identifier."""
    if not role or _WHITESPACE_RE.search(role):
        msg = f"Invalid role: {role!r}. Must be a non-empty identifier without whitespace."
        raise ValueError(msg)
