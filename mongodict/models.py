"""Shared dataclasses and enums used across connection/resolver modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle states of the single client owned by a resolver."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    FAILED = "failed"


class LookupStatus(str, Enum):
    """Outcome category of a single lookup."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Why a lookup failed."""

    CONFIG = "config"
    AUTH = "auth"
    UNAVAILABLE = "unavailable"
    QUERY = "query"


@dataclass(frozen=True, slots=True)
class LookupResult:
    """Result of resolving one key against the table.

    A miss is not an error: callers rely on ``status`` to tell "no such key"
    apart from "backend failed" so they can defer instead of reject.
    """

    status: LookupStatus
    value: str | None = None
    error: ErrorKind | None = None
    detail: str | None = None

    @classmethod
    def hit(cls, value: str) -> LookupResult:
        return cls(status=LookupStatus.FOUND, value=value)

    @classmethod
    def miss(cls) -> LookupResult:
        return cls(status=LookupStatus.NOT_FOUND)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str | None = None) -> LookupResult:
        return cls(status=LookupStatus.ERROR, error=kind, detail=detail)

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND

    @property
    def failed(self) -> bool:
        return self.status is LookupStatus.ERROR

    @property
    def should_defer(self) -> bool:
        """True when the failure is worth retrying later rather than rejecting."""

        return self.error in (ErrorKind.UNAVAILABLE, ErrorKind.QUERY)


__all__ = ["ConnectionState", "ErrorKind", "LookupResult", "LookupStatus"]
