"""Error taxonomy for descriptor storage, identity exchange and client resolution."""

from __future__ import annotations

from enum import StrEnum


class SpawnrError(Exception):
    """Base class for errors surfaced to tool callers.

    ``status_code`` is the HTTP-equivalent class of the failure: 4xx for caller
    errors, 5xx for infrastructure failures.
    """

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500


class DuplicateIdentityError(SpawnrError):
    status_code = 409

    def __init__(self, identity: str) -> None:
        super().__init__(f"Cluster '{identity}' is already registered")
        self.identity = identity


class DescriptorNotFoundError(SpawnrError):
    status_code = 404

    def __init__(self, identity: str) -> None:
        super().__init__(f"Cluster '{identity}' is not registered")
        self.identity = identity


class ReservedIdentityError(SpawnrError):
    status_code = 400

    def __init__(self, identity: str, action: str) -> None:
        super().__init__(f"Cannot {action} cluster '{identity}': the identity is reserved")
        self.identity = identity


class PersistenceError(SpawnrError):
    """The descriptor backing store rejected a create, update or delete."""

    status_code = 500


class ExchangeError(SpawnrError):
    """The external identity provider failed.

    ``diagnostic`` holds the external tool's output verbatim.
    """

    status_code = 502

    def __init__(self, message: str, diagnostic: str = "") -> None:
        full = f"{message}: {diagnostic.strip()}" if diagnostic.strip() else message
        super().__init__(full)
        self.diagnostic = diagnostic


class ResolutionFailure(StrEnum):
    NO_LOCAL_CREDENTIALS = "NoLocalCredentials"
    UNKNOWN_CLUSTER = "UnknownCluster"
    TOKEN_EXCHANGE_FAILED = "TokenExchangeFailed"
    CLIENT_BUILD_FAILED = "ClientBuildFailed"


_RESOLUTION_STATUS = {
    ResolutionFailure.NO_LOCAL_CREDENTIALS: 500,
    ResolutionFailure.UNKNOWN_CLUSTER: 404,
    ResolutionFailure.TOKEN_EXCHANGE_FAILED: 502,
    ResolutionFailure.CLIENT_BUILD_FAILED: 500,
}


class ResolutionError(SpawnrError):
    """A cluster identity could not be turned into a usable client."""

    def __init__(self, kind: ResolutionFailure, identity: str, details: str = "") -> None:
        message = f"{kind.value} for cluster '{identity or 'local'}'"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)
        self.kind = kind
        self.identity = identity
        self.details = details
        self.status_code = _RESOLUTION_STATUS[kind]
