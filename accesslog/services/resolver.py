"""Tag resolution for access log lines.

``FieldResolver.resolve(tag, exchange)`` turns one template tag into the
string that replaces it. Resolution is a pure read of the exchange and
never raises for an unknown or missing value: every tag yields a string,
possibly empty.

Dispatch order:
  1. exact tag name (fixed vocabulary, plus short aliases)
  2. parameterized prefixes (``header:``, ``query:``, ``form:``, ``cookie:``)
  3. anything else resolves to ``""``
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple

from starlette.requests import Request
from starlette.routing import Match

from accesslog.services.timestamp import TimestampCache

# ---- Tag vocabulary ----

TAG_TIME = "time"
TAG_REFERER = "referer"
TAG_PROTOCOL = "protocol"
TAG_IP = "ip"
TAG_IPS = "ips"
TAG_HOST = "host"
TAG_METHOD = "method"
TAG_PATH = "path"
TAG_URL = "url"
TAG_USER_AGENT = "user-agent"
TAG_LATENCY = "latency"
TAG_STATUS = "status"
TAG_BODY = "body"
TAG_BYTES_SENT = "bytes-sent"
TAG_BYTES_RECEIVED = "bytes-received"
TAG_REQUEST_PROTOCOL = "request-protocol"
TAG_ROUTE = "route"
TAG_ERROR = "error"

PREFIX_HEADER = "header:"
PREFIX_QUERY = "query:"
PREFIX_FORM = "form:"
PREFIX_COOKIE = "cookie:"

# Short spellings accepted for compatibility with older format strings
TAG_ALIASES = {
    "ua": TAG_USER_AGENT,
    "bytesSent": TAG_BYTES_SENT,
    "bytesReceived": TAG_BYTES_RECEIVED,
    "reqProtocol": TAG_REQUEST_PROTOCOL,
}

# Combined Log Format placeholder for a missing field
MISSING = "-"


@dataclass
class Exchange:
    """Everything known about one request/response pair.

    ``request`` is built from the ASGI scope; the remaining fields are
    filled in by the access log middleware while the request runs.
    """

    request: Request
    status_code: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    body: bytes = b""
    form: Dict[str, str] = field(default_factory=dict)
    error: Optional[BaseException] = None

    @property
    def scope(self):
        return self.request.scope

    def attached_error(self) -> Optional[BaseException]:
        """The raised error, or one the handler stored as ``request.state.error``."""
        if self.error is not None:
            return self.error
        state = self.scope.get("state")
        if state is None:
            return None
        if isinstance(state, Mapping):
            return state.get("error")
        return getattr(state, "error", None)


# ---- Field extractors ----

def _client_ip(exchange: Exchange) -> str:
    client = exchange.request.client
    return client.host if client and client.host else ""


def _host(exchange: Exchange) -> str:
    host = exchange.request.headers.get("host")
    if host:
        return host
    return exchange.request.url.hostname or ""


def _original_url(exchange: Exchange) -> str:
    scope = exchange.scope
    raw_path = scope.get("raw_path")
    if raw_path:
        # Some servers leave the query string on raw_path
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = scope.get("path", "")
    query = scope.get("query_string", b"")
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


def _request_protocol(exchange: Exchange) -> str:
    if exchange.scope.get("http_version") == "1.1":
        return "HTTP/1.1"
    return "unknown"


def route_path(scope) -> str:
    """Registered path pattern of the route that handled ``scope``.

    FastAPI records the matched route in ``scope["route"]``; for plain
    Starlette routers the router's routes are matched against the scope.
    """
    route = scope.get("route")
    path = getattr(route, "path", None)
    if isinstance(path, str):
        return path
    router = scope.get("router")
    for candidate in getattr(router, "routes", ()):
        match, _ = candidate.matches(scope)
        if match == Match.FULL:
            return getattr(candidate, "path", "")
    return ""


def _error(exchange: Exchange) -> str:
    error = exchange.attached_error()
    return "" if error is None else str(error)


def _query_value(exchange: Exchange, key: str) -> str:
    # First occurrence wins for repeated keys
    values = exchange.request.query_params.getlist(key)
    return values[0] if values else ""


def _form_value(exchange: Exchange, key: str) -> str:
    return exchange.form.get(key, "")


class FieldResolver:
    """Maps tag names to values for one exchange.

    ``timestamp`` is the shared cache backing ``${time}``; without one the
    tag resolves to ``""``. With ``combined_log`` a missing Referer or
    User-Agent is rendered as ``-``.
    """

    def __init__(self, timestamp: Optional[TimestampCache] = None, combined_log: bool = False):
        self.timestamp = timestamp
        self.combined_log = combined_log

        self._fields: Dict[str, Callable[[Exchange], str]] = {
            TAG_TIME: self._time,
            TAG_REFERER: lambda ex: self._combined_header(ex, "referer"),
            TAG_USER_AGENT: lambda ex: self._combined_header(ex, "user-agent"),
            TAG_PROTOCOL: lambda ex: ex.scope.get("scheme", "http"),
            TAG_IP: _client_ip,
            TAG_IPS: lambda ex: ex.request.headers.get("x-forwarded-for", ""),
            TAG_HOST: _host,
            TAG_METHOD: lambda ex: ex.request.method,
            TAG_PATH: lambda ex: ex.scope.get("path", ""),
            TAG_URL: _original_url,
            TAG_STATUS: lambda ex: str(ex.status_code),
            TAG_BODY: lambda ex: ex.body.decode("utf-8", errors="replace"),
            TAG_BYTES_SENT: lambda ex: str(ex.bytes_sent),
            TAG_BYTES_RECEIVED: lambda ex: str(ex.bytes_received),
            TAG_REQUEST_PROTOCOL: _request_protocol,
            TAG_ROUTE: lambda ex: route_path(ex.scope),
            TAG_ERROR: _error,
        }
        for alias, target in TAG_ALIASES.items():
            self._fields[alias] = self._fields[target]

        # Checked in order, only when the exact lookup misses
        self._prefixes: Tuple[Tuple[str, Callable[[Exchange, str], str]], ...] = (
            (PREFIX_HEADER, lambda ex, key: ex.request.headers.get(key, "")),
            (PREFIX_QUERY, _query_value),
            (PREFIX_FORM, _form_value),
            (PREFIX_COOKIE, lambda ex, key: ex.request.cookies.get(key, "")),
        )

    def _time(self, exchange: Exchange) -> str:
        if self.timestamp is None:
            return ""
        return self.timestamp.current()

    def _combined_header(self, exchange: Exchange, name: str) -> str:
        value = exchange.request.headers.get(name, "")
        if self.combined_log and not value:
            return MISSING
        return value

    def resolve(self, tag: str, exchange: Exchange) -> str:
        """Return the value for ``tag``; ``""`` for unknown tags."""
        extractor = self._fields.get(tag)
        if extractor is not None:
            return extractor(exchange)
        for prefix, lookup in self._prefixes:
            if tag.startswith(prefix):
                return lookup(exchange, tag[len(prefix):])
        return ""
