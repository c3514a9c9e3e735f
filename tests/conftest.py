"""Shared test fixtures for all test modules."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from spawnr.clients.resolver import ClientHandle
from spawnr.config import Settings
from spawnr.models import ClusterDescriptor
from spawnr.runtime import Runtime, set_runtime

EKS_ENDPOINT = "https://ABCDEF0123456789.gr7.us-west-2.eks.amazonaws.com"
ROLE_ARN = "arn:aws:iam::123456789012:role/spawnr-access"


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "admin_namespace": "spawnr",
        "ambient_region": None,
        "kubeconfig_path": "/nonexistent/kubeconfig",
        "aws_cli": "aws",
        "exchange_timeout_seconds": 5.0,
        "api_timeout_seconds": 5.0,
        "watch_timeout_seconds": 60,
        "heal_workers": 2,
        "transport": "stdio",
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def make_handle(
    identity: str = "local",
    server: str = "https://127.0.0.1:6443",
    insecure: bool = False,
) -> ClientHandle:
    return ClientHandle(
        identity=identity,
        server=server,
        trust_policy="skip-verification" if insecure else "verify",
        api_client=MagicMock(name=f"api_client[{identity}]"),
    )


def make_descriptor(
    identity: str = "prod-west",
    trust_anchor: str | None = "Q0EtREFUQQ==",
    endpoint: str = EKS_ENDPOINT,
    role: str = ROLE_ARN,
    region: str | None = None,
) -> ClusterDescriptor:
    return ClusterDescriptor(
        cluster_identity=identity,
        friendly_name=identity.replace("-", " ").title(),
        endpoint=endpoint,
        assumable_role=role,
        trust_anchor=trust_anchor,
        region=region,
    )


@pytest.fixture
def settings() -> Settings:
    """Settings with deterministic values, independent of the environment."""
    return make_settings()


@pytest.fixture
def local_handle() -> ClientHandle:
    return make_handle()


@pytest.fixture
def mock_identity() -> MagicMock:
    """Stand-in for AwsCliIdentityExchange."""
    identity = MagicMock()
    identity.fetch_trust_anchor.return_value = "RkVUQ0hFRC1DQQ=="
    identity.exchange_token.return_value = "k8s-aws-v1.dG9rZW4"
    return identity


@pytest.fixture
def mock_store() -> MagicMock:
    """Stand-in for DescriptorStore."""
    return MagicMock()


@pytest.fixture
def mock_registry(local_handle: ClientHandle) -> MagicMock:
    registry = MagicMock()
    registry.current.return_value = local_handle
    registry.current_identity = local_handle.identity
    return registry


@pytest.fixture
def runtime(settings: Settings, mock_identity: MagicMock, mock_store: MagicMock, mock_registry: MagicMock):
    """Install a Runtime built from mocks for the duration of one test."""
    rt = Runtime(
        settings=settings,
        identity=mock_identity,
        store=mock_store,
        resolver=MagicMock(),
        registry=mock_registry,
    )
    set_runtime(rt)
    yield rt
    set_runtime(None)
