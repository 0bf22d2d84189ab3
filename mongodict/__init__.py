"""MongoDB-backed lookup tables for mail address rewriting."""

from __future__ import annotations

__version__ = "0.3.0"

from .address import normalize_address
from .config import ConfigError, ConnectionConfig, config_from_mapping, load_config
from .connections import AuthError, ClientConfigError, ConnectError, ConnectionManager, TransientError
from .models import ConnectionState, ErrorKind, LookupResult, LookupStatus
from .query import QueryError, QueryExecutor
from .resolver import LookupTable, MongoResolver, SurrogateResolver, open_table

__all__ = [
    "AuthError",
    "ClientConfigError",
    "ConfigError",
    "ConnectError",
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionState",
    "ErrorKind",
    "LookupResult",
    "LookupStatus",
    "LookupTable",
    "MongoResolver",
    "QueryError",
    "QueryExecutor",
    "SurrogateResolver",
    "TransientError",
    "__version__",
    "config_from_mapping",
    "load_config",
    "normalize_address",
    "open_table",
]
