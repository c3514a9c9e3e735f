"""Identity exchange through the AWS CLI: trust anchors, bearer tokens, cluster details."""

from __future__ import annotations

import json
import os
import subprocess
from typing import Any

import structlog

from spawnr.config import Settings
from spawnr.errors import ExchangeError
from spawnr.models import ClusterInfo

log = structlog.get_logger()

FALLBACK_REGION = "us-east-1"
_SESSION_NAME_PREFIX = "spawnr-"
_MAX_SESSION_NAME = 64


class AwsCliIdentityExchange:
    """Wrapper around the ``aws`` command line tool.

    Every call runs one blocking subprocess bounded by the exchange timeout and
    is attempted exactly once. Failures raise ExchangeError carrying the tool's
    stderr verbatim.
    """

    def __init__(self, settings: Settings) -> None:
        self._cli = settings.aws_cli
        self._timeout = settings.exchange_timeout_seconds
        self._ambient_region = settings.ambient_region

    def _run(self, args: list[str], action: str, env: dict[str, str] | None = None) -> str:
        cmd = [self._cli, *args]
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env=env,
                check=False,
            )
        except FileNotFoundError as e:
            msg = f"{action} failed: executable {self._cli!r} not found"
            raise ExchangeError(msg) from e
        except subprocess.TimeoutExpired as e:
            msg = f"{action} timed out after {self._timeout:g}s"
            raise ExchangeError(msg) from e

        if completed.returncode != 0:
            log.error("identity_exchange_failed", action=action, exit_code=completed.returncode)
            msg = f"{action} failed with exit code {completed.returncode}"
            raise ExchangeError(msg, completed.stderr or "")
        return completed.stdout

    @staticmethod
    def _region_args(region: str | None) -> list[str]:
        return ["--region", region] if region else []

    def _assumed_role_env(self, cluster_identity: str, role: str, region: str | None) -> dict[str, str]:
        session_name = (_SESSION_NAME_PREFIX + cluster_identity)[:_MAX_SESSION_NAME]
        output = self._run(
            [
                "sts",
                "assume-role",
                "--role-arn",
                role,
                "--role-session-name",
                session_name,
                "--output",
                "json",
                *self._region_args(region),
            ],
            action="aws sts assume-role",
        )
        try:
            credentials = json.loads(output)["Credentials"]
            assumed = {
                "AWS_ACCESS_KEY_ID": credentials["AccessKeyId"],
                "AWS_SECRET_ACCESS_KEY": credentials["SecretAccessKey"],
                "AWS_SESSION_TOKEN": credentials["SessionToken"],
            }
        except (ValueError, KeyError, TypeError) as e:
            msg = "aws sts assume-role returned malformed output"
            raise ExchangeError(msg) from e

        env = {k: v for k, v in os.environ.items() if k != "AWS_PROFILE"}
        env.update(assumed)
        return env

    def fetch_trust_anchor(self, cluster_identity: str, role: str, region: str | None = None) -> str:
        """Fetch the cluster's CA bundle (base64) under the assumed role.

        Raises:
            ExchangeError: If the role cannot be assumed, the describe call fails,
                or the provider returns no certificate data.
        """
        env = self._assumed_role_env(cluster_identity, role, region)
        output = self._run(
            [
                "eks",
                "describe-cluster",
                "--name",
                cluster_identity,
                "--query",
                "cluster.certificateAuthority.data",
                "--output",
                "text",
                *self._region_args(region),
            ],
            action="aws eks describe-cluster",
            env=env,
        )
        anchor = output.strip()
        if not anchor or anchor == "None":
            msg = f"No certificate authority data returned for cluster '{cluster_identity}'"
            raise ExchangeError(msg, output)
        log.info("trust_anchor_fetched", cluster=cluster_identity)
        return anchor

    def exchange_token(self, cluster_identity: str, role: str, region: str | None = None) -> str:
        """Exchange the assumable role for a short-lived bearer token.

        Raises:
            ExchangeError: If the CLI fails or its output has no ``status.token``.
        """
        output = self._run(
            [
                "eks",
                "get-token",
                "--cluster-name",
                cluster_identity,
                "--role-arn",
                role,
                "--output",
                "json",
                *self._region_args(region),
            ],
            action="aws eks get-token",
        )
        try:
            token = json.loads(output)["status"]["token"]
        except (ValueError, KeyError, TypeError) as e:
            msg = "aws eks get-token returned malformed output"
            raise ExchangeError(msg) from e
        if not isinstance(token, str) or not token:
            msg = "aws eks get-token returned an empty token"
            raise ExchangeError(msg)
        return token

    def default_region(self) -> str:
        """Return the ambient region, the CLI's configured region, or us-east-1."""
        if self._ambient_region:
            return self._ambient_region
        try:
            configured = self._run(["configure", "get", "region"], action="aws configure get region").strip()
        except ExchangeError:
            log.debug("cli_region_unavailable", fallback=FALLBACK_REGION)
            return FALLBACK_REGION
        return configured or FALLBACK_REGION

    def describe_cluster(self, cluster_identity: str, region: str | None = None) -> ClusterInfo:
        """Describe a cluster with the ambient AWS identity."""
        region = region or self.default_region()
        output = self._run(
            ["eks", "describe-cluster", "--name", cluster_identity, "--output", "json", "--region", region],
            action="aws eks describe-cluster",
        )
        try:
            cluster: dict[str, Any] = json.loads(output)["cluster"]
        except (ValueError, KeyError, TypeError) as e:
            msg = "aws eks describe-cluster returned malformed output"
            raise ExchangeError(msg) from e

        return ClusterInfo(
            name=cluster.get("name") or cluster_identity,
            region=region,
            status=cluster.get("status") or "UNKNOWN",
            endpoint=cluster.get("endpoint"),
            version=cluster.get("version"),
        )
