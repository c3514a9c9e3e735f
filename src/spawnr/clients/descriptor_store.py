"""Cluster connection descriptors persisted as labeled Secrets in the admin namespace."""

from __future__ import annotations

import base64
import threading
from concurrent.futures import ThreadPoolExecutor

import structlog
from kubernetes import client as k8s_client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from spawnr.clients import load_ambient_api_client
from spawnr.clients.identity import AwsCliIdentityExchange
from spawnr.config import CLUSTER_SECRET_LABEL, Settings
from spawnr.errors import (
    DescriptorNotFoundError,
    DuplicateIdentityError,
    ExchangeError,
    PersistenceError,
    ReservedIdentityError,
)
from spawnr.models import LOCAL_DESCRIPTOR, UNKNOWN_REGION, ClusterDescriptor, derive_region

log = structlog.get_logger()

KEY_CLUSTER_NAME = "cluster-name"
KEY_FRIENDLY_NAME = "friendly-name"
KEY_ROLE = "role-arn"
KEY_ENDPOINT = "endpoint"
KEY_TRUST_ANCHOR = "certificate-authority-data"
KEY_REGION = "region"

CLUSTER_SELECTOR = f"{CLUSTER_SECRET_LABEL}=true"


def _encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def _decode(data: dict[str, str], key: str) -> str:
    raw = data.get(key)
    if not raw:
        return ""
    return base64.b64decode(raw).decode()


def descriptor_from_secret(secret: k8s_client.V1Secret) -> ClusterDescriptor:
    """Decode a cluster Secret into a descriptor."""
    data = secret.data or {}
    return ClusterDescriptor(
        cluster_identity=_decode(data, KEY_CLUSTER_NAME) or secret.metadata.name,
        friendly_name=_decode(data, KEY_FRIENDLY_NAME) or secret.metadata.name,
        endpoint=_decode(data, KEY_ENDPOINT),
        assumable_role=_decode(data, KEY_ROLE),
        trust_anchor=_decode(data, KEY_TRUST_ANCHOR) or None,
        region=_decode(data, KEY_REGION) or None,
    )


def secret_from_descriptor(descriptor: ClusterDescriptor) -> k8s_client.V1Secret:
    """Encode a descriptor as a labeled Opaque Secret named after its identity."""
    data = {
        KEY_CLUSTER_NAME: _encode(descriptor.cluster_identity),
        KEY_FRIENDLY_NAME: _encode(descriptor.friendly_name),
        KEY_ROLE: _encode(descriptor.assumable_role),
        KEY_ENDPOINT: _encode(descriptor.endpoint),
    }
    if descriptor.trust_anchor:
        data[KEY_TRUST_ANCHOR] = _encode(descriptor.trust_anchor)
    if descriptor.region:
        data[KEY_REGION] = _encode(descriptor.region)

    return k8s_client.V1Secret(
        metadata=k8s_client.V1ObjectMeta(
            name=descriptor.cluster_identity,
            labels={CLUSTER_SECRET_LABEL: "true"},
        ),
        type="Opaque",
        data=data,
    )


def _unreachable(action: str, error: HTTPError) -> PersistenceError:
    log.error("descriptor_store_unreachable", action=action, error=str(error))
    return PersistenceError(f"Failed to {action}: {error}")


def provider_region(descriptor: ClusterDescriptor) -> str | None:
    """Region to pass to the identity provider, or None to let it decide."""
    region = descriptor.effective_region()
    return None if region == UNKNOWN_REGION else region


class DescriptorStore:
    """CRUD over cluster descriptors with lazy trust-anchor healing on list.

    Records are independent Secrets keyed by identity; the API server's
    per-object atomicity is the only concurrency control.
    """

    def __init__(
        self,
        settings: Settings,
        identity: AwsCliIdentityExchange,
        api_client: k8s_client.ApiClient | None = None,
    ) -> None:
        self._namespace = settings.admin_namespace
        self._kubeconfig_path = settings.kubeconfig_path
        self._timeout = settings.api_timeout_seconds
        self._heal_workers = settings.heal_workers
        self._identity = identity
        self._api_client = api_client
        self._api: k8s_client.CoreV1Api | None = None
        self._lock = threading.Lock()

    @property
    def namespace(self) -> str:
        return self._namespace

    def _get_api(self) -> k8s_client.CoreV1Api:
        with self._lock:
            if self._api is None:
                api_client = self._api_client
                if api_client is None:
                    try:
                        api_client = load_ambient_api_client(self._kubeconfig_path)
                    except Exception as e:
                        msg = f"No credentials available for the descriptor store: {e}"
                        raise PersistenceError(msg) from e
                self._api = k8s_client.CoreV1Api(api_client)
            return self._api

    def register(self, descriptor: ClusterDescriptor) -> ClusterDescriptor:
        """Persist a new descriptor. The trust anchor is stored as given, possibly empty.

        Raises:
            ReservedIdentityError: If the identity is ``local``.
            DuplicateIdentityError: If a descriptor with this identity exists.
            PersistenceError: If the Secret cannot be created.
        """
        if descriptor.is_local:
            raise ReservedIdentityError(descriptor.cluster_identity, "register")

        api = self._get_api()
        try:
            api.create_namespaced_secret(
                self._namespace,
                secret_from_descriptor(descriptor),
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            if e.status == 409:
                raise DuplicateIdentityError(descriptor.cluster_identity) from None
            log.error("failed_to_create_descriptor", cluster=descriptor.cluster_identity, status=e.status)
            msg = f"Failed to create cluster secret '{descriptor.cluster_identity}': {e.reason}"
            raise PersistenceError(msg) from e
        except HTTPError as e:
            raise _unreachable(f"create cluster secret '{descriptor.cluster_identity}'", e) from e

        log.info(
            "descriptor_registered",
            cluster=descriptor.cluster_identity,
            namespace=self._namespace,
            has_trust_anchor=descriptor.has_trust_anchor,
        )
        return descriptor

    def get(self, identity: str) -> ClusterDescriptor:
        """Load one descriptor by identity.

        Raises:
            DescriptorNotFoundError: If no cluster Secret has this name.
            PersistenceError: If the store cannot be read.
        """
        api = self._get_api()
        try:
            secret = api.read_namespaced_secret(identity, self._namespace, _request_timeout=self._timeout)
        except ApiException as e:
            if e.status == 404:
                raise DescriptorNotFoundError(identity) from None
            log.error("failed_to_read_descriptor", cluster=identity, status=e.status)
            msg = f"Failed to read cluster secret '{identity}': {e.reason}"
            raise PersistenceError(msg) from e
        except HTTPError as e:
            raise _unreachable(f"read cluster secret '{identity}'", e) from e

        labels = secret.metadata.labels or {}
        if labels.get(CLUSTER_SECRET_LABEL) != "true":
            raise DescriptorNotFoundError(identity)
        try:
            return descriptor_from_secret(secret)
        except ValueError as e:
            log.error("undecodable_descriptor", cluster=identity, error=str(e))
            msg = f"Cluster secret '{identity}' holds undecodable data"
            raise PersistenceError(msg) from e

    def list_descriptors(self) -> list[ClusterDescriptor]:
        """Return ``local`` followed by every persisted descriptor, healing missing anchors.

        Heal failures are logged and the affected descriptor is returned unchanged.
        Secrets that cannot be decoded are logged and skipped.

        Raises:
            PersistenceError: If the cluster Secrets cannot be listed.
        """
        api = self._get_api()
        try:
            secrets = api.list_namespaced_secret(
                self._namespace,
                label_selector=CLUSTER_SELECTOR,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            log.error("failed_to_list_descriptors", namespace=self._namespace, status=e.status)
            msg = f"Failed to list cluster secrets in namespace '{self._namespace}': {e.reason}"
            raise PersistenceError(msg) from e
        except HTTPError as e:
            raise _unreachable(f"list cluster secrets in namespace '{self._namespace}'", e) from e

        descriptors = self._decode_all(secrets.items)
        pending = [d for d in descriptors if d.needs_healing]
        healed: dict[str, ClusterDescriptor] = {}
        if pending:
            workers = min(self._heal_workers, len(pending))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="heal") as pool:
                for result in pool.map(self.heal, pending):
                    healed[result.cluster_identity] = result

        return [LOCAL_DESCRIPTOR, *(healed.get(d.cluster_identity, d) for d in descriptors)]

    def _decode_all(self, secrets: list[k8s_client.V1Secret]) -> list[ClusterDescriptor]:
        descriptors: list[ClusterDescriptor] = []
        for secret in secrets:
            try:
                descriptors.append(descriptor_from_secret(secret))
            except ValueError as e:
                log.warning("undecodable_descriptor_skipped", secret=secret.metadata.name, error=str(e))
        return descriptors

    def heal(self, descriptor: ClusterDescriptor) -> ClusterDescriptor:
        """Fetch and persist a missing trust anchor.

        Returns the healed descriptor, or the input unchanged when the fetch or
        the write fails.
        """
        if not descriptor.needs_healing:
            return descriptor

        log.info("descriptor_missing_trust_anchor", cluster=descriptor.cluster_identity)
        try:
            anchor = self._identity.fetch_trust_anchor(
                descriptor.cluster_identity,
                descriptor.assumable_role,
                provider_region(descriptor),
            )
        except ExchangeError as e:
            log.warning("trust_anchor_heal_failed", cluster=descriptor.cluster_identity, error=str(e))
            return descriptor

        try:
            self.update_trust_anchor(descriptor.cluster_identity, anchor)
        except (PersistenceError, DescriptorNotFoundError) as e:
            log.warning("trust_anchor_persist_failed", cluster=descriptor.cluster_identity, error=str(e))
            return descriptor

        return descriptor.model_copy(update={"trust_anchor": anchor})

    def update_trust_anchor(self, identity: str, trust_anchor: str) -> None:
        """Write the trust anchor into an existing descriptor.

        Raises:
            DescriptorNotFoundError: If the descriptor was removed concurrently.
            PersistenceError: If the Secret cannot be patched.
        """
        api = self._get_api()
        body = {"data": {KEY_TRUST_ANCHOR: _encode(trust_anchor)}}
        try:
            api.patch_namespaced_secret(identity, self._namespace, body, _request_timeout=self._timeout)
        except ApiException as e:
            if e.status == 404:
                raise DescriptorNotFoundError(identity) from None
            msg = f"Failed to update cluster secret '{identity}' with CA certificate: {e.reason}"
            raise PersistenceError(msg) from e
        except HTTPError as e:
            raise _unreachable(f"update cluster secret '{identity}'", e) from e
        log.info("descriptor_trust_anchor_saved", cluster=identity)

    def remove(self, identity: str) -> None:
        """Delete a descriptor.

        Raises:
            DescriptorNotFoundError: If no cluster Secret has this name.
            PersistenceError: If the Secret cannot be deleted.
        """
        self.get(identity)
        api = self._get_api()
        try:
            api.delete_namespaced_secret(identity, self._namespace, _request_timeout=self._timeout)
        except ApiException as e:
            if e.status == 404:
                raise DescriptorNotFoundError(identity) from None
            log.error("failed_to_delete_descriptor", cluster=identity, status=e.status)
            msg = f"Failed to delete cluster secret '{identity}': {e.reason}"
            raise PersistenceError(msg) from e
        except HTTPError as e:
            raise _unreachable(f"delete cluster secret '{identity}'", e) from e
        log.info("descriptor_removed", cluster=identity, namespace=self._namespace)
