"""Table configuration loading helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping
from urllib.parse import parse_qs, unquote, urlsplit

import tomllib

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pymongo.errors import ConfigurationError as PymongoConfigurationError
from pymongo.uri_parser import parse_uri

LOG = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 27017
DEFAULT_TIMEOUT_MS = 1000
MAX_RECONNECTS = 5

URI_SCHEMES = ("mongodb://", "mongodb+srv://")
SRV_SCHEME = "mongodb+srv://"

# Table file option name -> ConnectionConfig field.
_OPTION_FIELDS: Mapping[str, str] = {
    "uri": "uri",
    "host": "host",
    "port": "port",
    "user": "username",
    "password": "password",
    "auth_source": "auth_source",
    "dbname": "dbname",
    "collection": "collection",
    "key": "key_field",
    "value": "value_field",
    "timeout": "timeout_ms",
    "document_fallback": "document_fallback",
    "max_reconnects": "max_reconnects",
    "connect_on_open": "connect_on_open",
}
_FIELD_OPTIONS = {field: option for option, field in _OPTION_FIELDS.items()}
KNOWN_OPTIONS = frozenset(_OPTION_FIELDS) | {"auth"}

_FLAG = TypeAdapter(bool)


class ConfigError(ValueError):
    """Raised when a table configuration cannot be read or is invalid."""


class ConnectionConfig(BaseModel):
    """Typed, immutable view of one MongoDB table file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    uri: str | None = None
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    auth_source: str | None = None
    dbname: str = Field(min_length=1)
    collection: str = Field(min_length=1)
    key_field: str = Field(min_length=1)
    value_field: str | None = None
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    document_fallback: bool = True
    max_reconnects: int = Field(default=1, ge=0, le=MAX_RECONNECTS)
    connect_on_open: bool = False

    @field_validator("uri")
    @classmethod
    def _check_uri(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(URI_SCHEMES):
            raise ValueError("must start with 'mongodb://' or 'mongodb+srv://'")
        return value

    @model_validator(mode="after")
    def _check_credentials(self) -> ConnectionConfig:
        if self.password is not None and not self.username:
            raise ValueError("password given without user")
        if self.username and self.password is None:
            raise ValueError("user given without password")
        return self

    @property
    def has_credentials(self) -> bool:
        return bool(self.username)

    @property
    def authentication_source(self) -> str:
        """Database the credentials are checked against."""

        return self.auth_source or self.dbname

    @property
    def display_target(self) -> str:
        """Connection target safe to log (no credentials)."""

        if self.uri:
            return _strip_userinfo(self.uri)
        return f"{self.host}:{self.port}"

    @property
    def namespace(self) -> str:
        return f"{self.dbname}.{self.collection}"


def load_config(name: str | Path) -> ConnectionConfig:
    """Read a table file and convert it into a ConnectionConfig."""

    return config_from_mapping(read_table_file(name))


def config_from_mapping(options: Mapping[str, object]) -> ConnectionConfig:
    """Convert a flat option mapping into a validated ConnectionConfig.

    Credentials may be given as ``user``/``password`` options or embedded in
    ``uri``; both end up in the same ``username``/``password`` fields, with the
    explicit options taking precedence. ``auth = no`` drops any credentials.
    """

    values = {str(key).strip().lower(): value for key, value in options.items()}
    for key in sorted(set(values) - KNOWN_OPTIONS):
        LOG.debug("Ignoring unknown table option", extra={"option": key})

    data: dict[str, object] = {}
    for option, field in _OPTION_FIELDS.items():
        value = _text(values.get(option))
        if value is not None:
            data[field] = value

    uri = data.get("uri")
    if isinstance(uri, str) and uri.startswith(URI_SCHEMES):
        username, password, database, auth_source = _uri_parts(uri)
        if username and "username" not in data:
            data["username"] = username
            if password is not None:
                data.setdefault("password", password)
        if database:
            data.setdefault("dbname", database)
        if auth_source:
            data.setdefault("auth_source", auth_source)

    auth = _text(values.get("auth"))
    if auth is not None:
        try:
            enabled = _FLAG.validate_python(auth)
        except ValidationError as exc:
            raise ConfigError(f"auth: expected a boolean, got {auth!r}") from exc
        if not enabled:
            data.pop("username", None)
            data.pop("password", None)
        elif not data.get("username"):
            raise ConfigError("auth: enabled but no user configured")

    try:
        return ConnectionConfig(**data)
    except ValidationError as exc:
        raise ConfigError(_describe(exc)) from exc


def read_table_file(name: str | Path) -> dict[str, str]:
    """Read a table file into a flat option mapping.

    ``.toml`` files are parsed with tomllib (top-level scalars only); anything
    else uses the ``name = value`` format of Postfix table files.
    """

    path = Path(name)
    try:
        if path.suffix == ".toml":
            with path.open("rb") as handle:
                raw = tomllib.load(handle)
            return {
                str(key): _scalar(value)
                for key, value in raw.items()
                if not isinstance(value, (dict, list))
            }
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"open {path}: {exc.strerror or exc}") from exc
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    return parse_table_text(text, source=str(path))


def parse_table_text(text: str, *, source: str = "<string>") -> dict[str, str]:
    """Parse ``name = value`` lines; indented lines continue the previous one."""

    logical: list[tuple[int, str]] = []
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if line[0].isspace() and logical:
            first, previous = logical[-1]
            logical[-1] = (first, f"{previous} {stripped}")
            continue
        logical.append((number, stripped))

    options: dict[str, str] = {}
    for number, entry in logical:
        key, sep, value = entry.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError(f"{source}, line {number}: expected 'name = value'")
        options[key] = value.strip()
    return options


def _uri_parts(uri: str) -> tuple[str | None, str | None, str | None, str | None]:
    """Return (username, password, database, authSource) embedded in a URI."""

    if uri.startswith(SRV_SCHEME):
        # SRV URIs are resolved through DNS by parse_uri; defer that to connect time.
        parts = urlsplit(uri)
        query = {key.lower(): values[-1] for key, values in parse_qs(parts.query).items()}
        username = unquote(parts.username) if parts.username else None
        password = unquote(parts.password) if parts.password is not None else None
        return username, password, parts.path.lstrip("/") or None, query.get("authsource")
    try:
        parsed = parse_uri(uri)
    except (PymongoConfigurationError, ValueError) as exc:
        raise ConfigError(f"uri: {exc}") from exc
    # Older drivers lowercase option names; current ones keep "authSource".
    options = {str(key).lower(): value for key, value in (parsed.get("options") or {}).items()}
    return parsed.get("username"), parsed.get("password"), parsed.get("database"), options.get("authsource")


def _strip_userinfo(uri: str) -> str:
    scheme, sep, rest = uri.partition("://")
    authority, slash, tail = rest.partition("/")
    if "@" in authority:
        authority = authority.rsplit("@", 1)[1]
    return f"{scheme}{sep}{authority}{slash}{tail}"


def _describe(exc: ValidationError) -> str:
    problems: list[str] = []
    for error in exc.errors():
        loc = error.get("loc") or ()
        field = str(loc[0]) if loc else "config"
        problems.append(f"{_FIELD_OPTIONS.get(field, field)}: {error.get('msg')}")
    return "; ".join(problems)


def _text(value: object) -> object:
    if isinstance(value, str):
        return value.strip() or None
    return value


def _scalar(value: object) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


__all__ = [
    "ConfigError",
    "ConnectionConfig",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_TIMEOUT_MS",
    "KNOWN_OPTIONS",
    "config_from_mapping",
    "load_config",
    "parse_table_text",
    "read_table_file",
]
