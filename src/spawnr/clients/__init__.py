"""Client factories for the Kubernetes API and the external identity provider."""

from __future__ import annotations

from typing import Any

import structlog
from kubernetes import client as k8s_client

# Every factory here returns an isolated ApiClient and never touches the SDK's
# process-wide default Configuration, so handles for different clusters can
# coexist in one process.
from kubernetes.config import (
    ConfigException,
    load_incluster_config,
    new_client_from_config,
    new_client_from_config_dict,
)

log = structlog.get_logger()


def load_ambient_api_client(kubeconfig_path: str) -> k8s_client.ApiClient:
    """Build an ApiClient from in-cluster credentials, falling back to a kubeconfig file.

    Args:
        kubeconfig_path: Developer kubeconfig used when not running inside a cluster.

    Raises:
        ConfigException: If neither source yields a usable configuration.
    """
    configuration = k8s_client.Configuration()
    try:
        load_incluster_config(client_configuration=configuration)
    except ConfigException:
        log.debug("incluster_config_unavailable", kubeconfig=kubeconfig_path)
        return new_client_from_config(config_file=kubeconfig_path, persist_config=False)
    return k8s_client.ApiClient(configuration)


def transient_kubeconfig(
    cluster_name: str,
    endpoint: str,
    token: str,
    trust_anchor: str | None,
) -> dict[str, Any]:
    """Assemble a single-context kubeconfig dict for a bearer-token connection.

    Without a trust anchor the cluster entry skips TLS verification.
    """
    cluster: dict[str, Any] = {"server": endpoint}
    if trust_anchor:
        cluster["certificate-authority-data"] = trust_anchor
    else:
        cluster["insecure-skip-tls-verify"] = True

    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": cluster_name, "cluster": cluster}],
        "users": [{"name": cluster_name, "user": {"token": token}}],
        "contexts": [{"name": cluster_name, "context": {"cluster": cluster_name, "user": cluster_name}}],
        "current-context": cluster_name,
    }


def build_remote_api_client(
    cluster_name: str,
    endpoint: str,
    token: str,
    trust_anchor: str | None,
) -> k8s_client.ApiClient:
    """Create an isolated ApiClient for a remote cluster from throwaway configuration."""
    kubeconfig = transient_kubeconfig(cluster_name, endpoint, token, trust_anchor)
    return new_client_from_config_dict(kubeconfig, context=cluster_name, persist_config=False)
