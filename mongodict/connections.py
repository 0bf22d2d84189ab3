"""Connection lifecycle for the MongoDB table backend."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from pymongo import MongoClient
from pymongo.errors import ConfigurationError, ConnectionFailure, OperationFailure, PyMongoError

from .config import SRV_SCHEME, ConnectionConfig
from .models import ConnectionState

LOG = logging.getLogger(__name__)

ClientFactory = Callable[..., MongoClient]

APP_NAME = "mongodict"
# AuthenticationFailed, UserNotFound
AUTH_FAILURE_CODES = frozenset({11, 18})


class ConnectError(RuntimeError):
    """Raised when the manager cannot establish a usable session."""


class AuthError(ConnectError):
    """Raised when the server rejects the configured credentials."""


class TransientError(ConnectError):
    """Raised for transport failures (refused, dropped, timed out) worth one retry."""


class ClientConfigError(ConnectError):
    """Raised when the driver rejects the client options built from the table."""


class ConnectionManager:
    """Owns the single MongoClient behind a resolver.

    States move ``DISCONNECTED -> CONNECTING -> AUTHENTICATING -> CONNECTED``;
    a transport failure drops back to ``DISCONNECTED``; rejected credentials
    or client options park the manager in ``FAILED`` for good.
    """

    def __init__(self, config: ConnectionConfig, *, client_factory: ClientFactory | None = None) -> None:
        self._config = config
        self._client_factory = client_factory
        self._client: MongoClient | None = None
        self._state = ConnectionState.DISCONNECTED
        self._connected_at: datetime | None = None
        self._latency_ms: int | None = None
        self._fatal: ConnectError | None = None

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._client is not None

    @property
    def connected_at(self) -> datetime | None:
        return self._connected_at

    @property
    def latency_ms(self) -> int | None:
        """Time the last successful connect (ping plus auth) took."""

        return self._latency_ms

    @property
    def client(self) -> MongoClient:
        if not self.connected:
            raise ConnectError(f"Not connected to {self._config.display_target}")
        return self._client  # type: ignore[return-value]

    def connect(self) -> MongoClient:
        """Open a fresh client, check the transport and authenticate."""

        if self._state is ConnectionState.FAILED:
            fatal = self._fatal or AuthError(f"Authentication to {self._config.display_target} failed")
            raise type(fatal)(f"{fatal}; not retrying")
        self._release()
        target = self._config.display_target
        LOG.info("Connecting to MongoDB server", extra={"target": target})
        started = time.perf_counter()
        self._transition(ConnectionState.CONNECTING)
        try:
            client = self._open_client()
        except ConfigurationError as exc:
            if (self._config.uri or "").startswith(SRV_SCHEME):
                # SRV lookups fail with ConfigurationError when DNS is down.
                self._transition(ConnectionState.DISCONNECTED)
                raise TransientError(f"Cannot resolve MongoDB SRV record for {target}: {exc}") from exc
            error = ClientConfigError(f"Invalid client options for {target}: {exc}")
            self._fail(error)
            LOG.error("MongoDB client options rejected", extra={"target": target, "reason": str(exc)})
            raise error from exc
        except PyMongoError as exc:
            self._transition(ConnectionState.DISCONNECTED)
            raise ConnectError(f"Failed to create client for {target}: {exc}") from exc
        try:
            self._handshake(client)
        except AuthError as exc:
            self._discard(client)
            self._fail(exc)
            LOG.error(
                "MongoDB authentication failed",
                extra={"target": target, "user": self._config.username},
            )
            raise
        except ConnectError:
            self._discard(client)
            self._transition(ConnectionState.DISCONNECTED)
            LOG.warning("Connect to MongoDB server failed", extra={"target": target})
            raise
        self._client = client
        self._latency_ms = int((time.perf_counter() - started) * 1000)
        self._connected_at = datetime.now(tz=timezone.utc)
        self._transition(ConnectionState.CONNECTED)
        return client

    def ensure_connected(self) -> MongoClient:
        """Return the live client, connecting first if needed."""

        if self.connected:
            return self._client  # type: ignore[return-value]
        return self.connect()

    def reconnect(self) -> MongoClient:
        """Drop the current client and run the full connect path again."""

        LOG.warning("Reconnecting to MongoDB server", extra={"target": self._config.display_target})
        self.mark_disconnected()
        return self.connect()

    def mark_disconnected(self) -> None:
        """Record a transport failure seen by a caller."""

        if self._state is ConnectionState.FAILED:
            return
        self._release()
        self._transition(ConnectionState.DISCONNECTED)

    def ping(self) -> bool:
        """Check liveness of the current client without reconnecting."""

        if not self.connected:
            return False
        target = self._config.display_target
        try:
            self._client.admin.command("ping")  # type: ignore[union-attr]
        except ConnectionFailure:
            LOG.warning("MongoDB server stopped answering", extra={"target": target})
            self.mark_disconnected()
            return False
        except OperationFailure as exc:
            if _is_auth_failure(exc):
                error = AuthError(f"MongoDB no longer accepts credentials for '{self._config.username}' at {target}")
                self._release()
                self._fail(error)
                LOG.error("MongoDB authentication failed", extra={"target": target, "user": self._config.username})
                raise error from exc
            LOG.warning("MongoDB ping failed", extra={"target": target, "reason": str(exc)})
            self.mark_disconnected()
            return False
        except PyMongoError as exc:
            LOG.warning("MongoDB ping failed", extra={"target": target, "reason": str(exc)})
            self.mark_disconnected()
            return False
        return True

    def close(self) -> None:
        """Release the client; the manager can connect again afterwards."""

        self._release()
        if self._state is not ConnectionState.FAILED:
            self._transition(ConnectionState.DISCONNECTED)

    def __enter__(self) -> ConnectionManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _open_client(self) -> MongoClient:
        factory = self._client_factory or MongoClient
        timeout = self._config.timeout_ms
        kwargs: dict[str, Any] = {
            "appname": APP_NAME,
            "connectTimeoutMS": timeout,
            "serverSelectionTimeoutMS": timeout,
            "socketTimeoutMS": timeout,
            # Retries are bounded by the resolver, not the driver.
            "retryReads": False,
        }
        if self._config.has_credentials:
            kwargs["username"] = self._config.username
            kwargs["password"] = self._config.password
            kwargs["authSource"] = self._config.authentication_source
        if self._config.uri:
            return factory(self._config.uri, **kwargs)
        return factory(self._config.host, self._config.port, **kwargs)

    def _handshake(self, client: MongoClient) -> None:
        target = self._config.display_target
        try:
            client.admin.command("ping")
            if self._config.has_credentials:
                self._transition(ConnectionState.AUTHENTICATING)
                self._authenticate(client)
        except OperationFailure as exc:
            if _is_auth_failure(exc):
                raise AuthError(
                    f"MongoDB rejected credentials for '{self._config.username}' at {target}"
                ) from exc
            raise ConnectError(f"Handshake with {target} failed: {exc}") from exc
        except ConnectionFailure as exc:
            raise TransientError(f"Cannot reach MongoDB server {target}: {exc}") from exc
        except PyMongoError as exc:
            raise ConnectError(f"Handshake with {target} failed: {exc}") from exc

    def _authenticate(self, client: MongoClient) -> None:
        source = self._config.authentication_source
        status = client[source].command("connectionStatus")
        users = (status.get("authInfo") or {}).get("authenticatedUsers") or []
        if not any(user.get("user") == self._config.username for user in users):
            raise AuthError(f"MongoDB did not authenticate '{self._config.username}' against '{source}'")

    def _release(self) -> None:
        client, self._client = self._client, None
        self._connected_at = None
        if client is not None:
            self._discard(client)

    def _discard(self, client: MongoClient) -> None:
        try:
            client.close()
        except PyMongoError:
            LOG.debug("Ignoring error while closing MongoDB client", exc_info=True)

    def _fail(self, error: ConnectError) -> None:
        self._fatal = error
        self._transition(ConnectionState.FAILED)

    def _transition(self, state: ConnectionState) -> None:
        if state is not self._state:
            LOG.debug(
                "Connection state change",
                extra={"target": self._config.display_target, "from": self._state.value, "to": state.value},
            )
        self._state = state


def _is_auth_failure(exc: OperationFailure) -> bool:
    if exc.code in AUTH_FAILURE_CODES:
        return True
    return "authentication failed" in str(exc).lower()


__all__ = [
    "AuthError",
    "ClientConfigError",
    "ClientFactory",
    "ConnectError",
    "ConnectionManager",
    "TransientError",
]
