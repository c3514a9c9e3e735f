"""Tests for ClientResolver: local fallback, remote resolution stages, insecure fallback."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from urllib3.exceptions import ReadTimeoutError

from conftest import EKS_ENDPOINT, ROLE_ARN, make_descriptor, make_settings
from spawnr.clients import transient_kubeconfig
from spawnr.clients.descriptor_store import DescriptorStore, secret_from_descriptor
from spawnr.clients.resolver import ClientResolver
from spawnr.config import LOCAL_IDENTITY
from spawnr.errors import (
    DescriptorNotFoundError,
    ExchangeError,
    PersistenceError,
    ResolutionError,
    ResolutionFailure,
)

_LOAD_AMBIENT = "spawnr.clients.resolver.load_ambient_api_client"
_BUILD_REMOTE = "spawnr.clients.resolver.build_remote_api_client"


def _api_client(host: str, verify_ssl: bool = True) -> MagicMock:
    api_client = MagicMock()
    api_client.configuration.host = host
    api_client.configuration.verify_ssl = verify_ssl
    return api_client


@pytest.fixture
def resolver(mock_store: MagicMock, mock_identity: MagicMock) -> ClientResolver:
    return ClientResolver(make_settings(), mock_store, mock_identity)


class TestResolveLocal:
    @pytest.mark.parametrize("identity", ["", LOCAL_IDENTITY])
    def test_ambient_credentials(self, resolver: ClientResolver, mock_identity: MagicMock, identity: str) -> None:
        with patch(_LOAD_AMBIENT, return_value=_api_client("https://10.96.0.1:443")) as load:
            handle = resolver.resolve(identity)

        assert handle.identity == LOCAL_IDENTITY
        assert handle.server == "https://10.96.0.1:443"
        assert handle.trust_policy == "verify"
        load.assert_called_once_with("/nonexistent/kubeconfig")
        mock_identity.exchange_token.assert_not_called()

    def test_no_local_credentials(self, resolver: ClientResolver) -> None:
        with patch(_LOAD_AMBIENT, side_effect=Exception("Invalid kube-config file. No configuration found.")):
            with pytest.raises(ResolutionError) as exc_info:
                resolver.resolve("")

        assert exc_info.value.kind == ResolutionFailure.NO_LOCAL_CREDENTIALS
        assert "No configuration found" in exc_info.value.details


class TestResolveRemote:
    def test_verified_connection(
        self, resolver: ClientResolver, mock_store: MagicMock, mock_identity: MagicMock
    ) -> None:
        mock_store.get.return_value = make_descriptor()
        with patch(_BUILD_REMOTE, return_value=_api_client(EKS_ENDPOINT)) as build:
            handle = resolver.resolve("prod-west")

        assert handle.identity == "prod-west"
        assert handle.server == EKS_ENDPOINT
        assert handle.trust_policy == "verify"
        assert handle.insecure is False
        mock_identity.exchange_token.assert_called_once_with("prod-west", ROLE_ARN, "us-west-2")
        build.assert_called_once_with("prod-west", EKS_ENDPOINT, "k8s-aws-v1.dG9rZW4", "Q0EtREFUQQ==")

    def test_every_resolve_exchanges_a_fresh_token(
        self, resolver: ClientResolver, mock_store: MagicMock, mock_identity: MagicMock
    ) -> None:
        mock_store.get.return_value = make_descriptor()
        with patch(_BUILD_REMOTE, return_value=_api_client(EKS_ENDPOINT)):
            first = resolver.resolve("prod-west")
            second = resolver.resolve("prod-west")

        assert first is not second
        assert mock_identity.exchange_token.call_count == 2

    def test_unknown_cluster(self, resolver: ClientResolver, mock_store: MagicMock) -> None:
        mock_store.get.side_effect = DescriptorNotFoundError("ghost")
        with pytest.raises(ResolutionError) as exc_info:
            resolver.resolve("ghost")

        assert exc_info.value.kind == ResolutionFailure.UNKNOWN_CLUSTER
        assert exc_info.value.status_code == 404

    def test_store_failure_propagates(self, resolver: ClientResolver, mock_store: MagicMock) -> None:
        mock_store.get.side_effect = PersistenceError("Failed to read cluster secret")
        with pytest.raises(PersistenceError):
            resolver.resolve("prod-west")

    def test_token_exchange_failure(
        self, resolver: ClientResolver, mock_store: MagicMock, mock_identity: MagicMock
    ) -> None:
        mock_store.get.return_value = make_descriptor()
        mock_identity.exchange_token.side_effect = ExchangeError(
            "aws eks get-token failed with exit code 255", "ExpiredToken: The security token included is expired"
        )
        with patch(_BUILD_REMOTE) as build:
            with pytest.raises(ResolutionError) as exc_info:
                resolver.resolve("prod-west")

        assert exc_info.value.kind == ResolutionFailure.TOKEN_EXCHANGE_FAILED
        assert "ExpiredToken" in exc_info.value.details
        build.assert_not_called()

    def test_client_build_failure(self, resolver: ClientResolver, mock_store: MagicMock) -> None:
        mock_store.get.return_value = make_descriptor()
        with patch(_BUILD_REMOTE, side_effect=ValueError("bad certificate data")):
            with pytest.raises(ResolutionError) as exc_info:
                resolver.resolve("prod-west")
        assert exc_info.value.kind == ResolutionFailure.CLIENT_BUILD_FAILED


class TestMissingTrustAnchor:
    def test_anchor_fetched_and_saved(
        self, resolver: ClientResolver, mock_store: MagicMock, mock_identity: MagicMock
    ) -> None:
        mock_store.get.return_value = make_descriptor(trust_anchor=None)
        with patch(_BUILD_REMOTE, return_value=_api_client(EKS_ENDPOINT)) as build:
            handle = resolver.resolve("prod-west")

        assert handle.trust_policy == "verify"
        mock_store.update_trust_anchor.assert_called_once_with("prod-west", "RkVUQ0hFRC1DQQ==")
        assert build.call_args.args[3] == "RkVUQ0hFRC1DQQ=="

    def test_unsaved_anchor_still_used(
        self, resolver: ClientResolver, mock_store: MagicMock, mock_identity: MagicMock
    ) -> None:
        mock_store.get.return_value = make_descriptor(trust_anchor=None)
        mock_store.update_trust_anchor.side_effect = PersistenceError("Forbidden")
        with patch(_BUILD_REMOTE, return_value=_api_client(EKS_ENDPOINT)) as build:
            resolver.resolve("prod-west")

        assert build.call_args.args[3] == "RkVUQ0hFRC1DQQ=="

    def test_falls_back_to_unverified_transport(
        self, resolver: ClientResolver, mock_store: MagicMock, mock_identity: MagicMock
    ) -> None:
        mock_store.get.return_value = make_descriptor(trust_anchor=None)
        mock_identity.fetch_trust_anchor.side_effect = ExchangeError("aws eks describe-cluster failed", "denied")
        with patch(_BUILD_REMOTE, return_value=_api_client(EKS_ENDPOINT, verify_ssl=False)) as build:
            handle = resolver.resolve("prod-west")

        assert handle.trust_policy == "skip-verification"
        assert handle.insecure is True
        assert build.call_args.args[3] is None
        mock_store.update_trust_anchor.assert_not_called()


class TestStoreTransportFailures:
    @pytest.fixture
    def core_api(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def real_store(self, core_api: MagicMock, mock_identity: MagicMock) -> DescriptorStore:
        with patch("spawnr.clients.descriptor_store.k8s_client.CoreV1Api", return_value=core_api):
            store = DescriptorStore(make_settings(), mock_identity, api_client=MagicMock())
            store._get_api()
        return store

    def test_patch_timeout_while_healing_does_not_fail_resolve(
        self, real_store: DescriptorStore, core_api: MagicMock, mock_identity: MagicMock
    ) -> None:
        core_api.read_namespaced_secret.return_value = secret_from_descriptor(make_descriptor(trust_anchor=None))
        core_api.patch_namespaced_secret.side_effect = ReadTimeoutError(None, None, "Read timed out.")
        mock_identity.fetch_trust_anchor.return_value = "QUJD"
        resolver = ClientResolver(make_settings(), real_store, mock_identity)

        with patch(_BUILD_REMOTE, return_value=_api_client(EKS_ENDPOINT)) as build:
            handle = resolver.resolve("prod-west")

        assert handle.trust_policy == "verify"
        assert build.call_args.args[3] == "QUJD"

    def test_read_timeout_surfaces_as_persistence_error(
        self, real_store: DescriptorStore, core_api: MagicMock, mock_identity: MagicMock
    ) -> None:
        core_api.read_namespaced_secret.side_effect = ReadTimeoutError(None, None, "Read timed out.")
        resolver = ClientResolver(make_settings(), real_store, mock_identity)

        with pytest.raises(PersistenceError, match="Read timed out"):
            resolver.resolve("prod-west")
        mock_identity.exchange_token.assert_not_called()


class TestTransientKubeconfig:
    def test_with_trust_anchor(self) -> None:
        config = transient_kubeconfig("prod-west", EKS_ENDPOINT, "tok", "Q0E=")
        cluster = config["clusters"][0]["cluster"]
        assert cluster["certificate-authority-data"] == "Q0E="
        assert "insecure-skip-tls-verify" not in cluster
        assert config["users"][0]["user"] == {"token": "tok"}
        assert config["current-context"] == "prod-west"

    def test_without_trust_anchor(self) -> None:
        cluster = transient_kubeconfig("prod-west", EKS_ENDPOINT, "tok", None)["clusters"][0]["cluster"]
        assert cluster["insecure-skip-tls-verify"] is True
        assert "certificate-authority-data" not in cluster
