"""Access log middleware: one formatted line per HTTP request.

Implemented as pure ASGI middleware (not BaseHTTPMiddleware) so the
response body can be counted as it streams and the line is only rendered
once the downstream app has finished sending.

Per request:
  ENTER      -> filter predicate; filtered requests are passed through untouched
  TIMED-RUN  -> start clock, run the app, stop clock (also on errors)
  RENDER     -> template rendered into a pooled buffer
  FLUSH      -> one write() to the output sink

Logging never changes the response: render errors end up inside the line,
sink errors go to this module's logger, and exceptions raised by the app
are logged and re-raised unchanged.
"""

import io
import logging
import time
from typing import Dict, Optional

from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from accesslog.schemas import AccessLogConfig
from accesslog.services.renderer import Renderer
from accesslog.services.resolver import (
    PREFIX_FORM,
    TAG_BODY,
    TAG_TIME,
    Exchange,
    FieldResolver,
)
from accesslog.services.template import compile_template
from accesslog.services.timestamp import TimestampCache
from accesslog.utils.buffer_pool import BufferPool

logger = logging.getLogger(__name__)

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def _parse_form(scope: Scope, body: bytes) -> Dict[str, str]:
    """Parse an already-read form body. Malformed forms yield no fields."""
    content_type = Request(scope).headers.get("content-type", "")
    if not body or not content_type.startswith(_FORM_CONTENT_TYPES):
        return {}

    async def receive_body() -> Message:
        return {"type": "http.request", "body": body, "more_body": False}

    try:
        form = await Request(scope, receive_body).form()
    except Exception as e:
        logger.warning(f"Could not parse form body for access log: {e}")
        return {}

    fields: Dict[str, str] = {}
    try:
        for key, value in form.multi_items():
            if key in fields:
                continue
            if isinstance(value, str):
                fields[key] = value
            else:
                fields[key] = getattr(value, "filename", None) or ""
    finally:
        await form.close()
    return fields


class AccessLogMiddleware:
    """Writes one access log line per HTTP request to ``config.output``.

    Usage:
        app.add_middleware(AccessLogMiddleware, combined_log=True)
        app.add_middleware(AccessLogMiddleware, config=AccessLogConfig(...))
    """

    def __init__(self, app: ASGIApp, config: Optional[AccessLogConfig] = None,
                 pool: Optional[BufferPool] = None, **options):
        if config is not None and options:
            raise TypeError("Pass either config or keyword options, not both")
        self.app = app
        self.config = config if config is not None else AccessLogConfig(**options)
        self.output = self.config.output
        self._text_output = isinstance(self.output, io.TextIOBase)

        self.template = compile_template(self.config.format)

        # The refresh job only exists when some line actually shows the time
        self.timestamp: Optional[TimestampCache] = None
        if self.template.uses(TAG_TIME):
            self.timestamp = TimestampCache(self.config.time_format)
            self.timestamp.start()

        self.resolver = FieldResolver(self.timestamp, combined_log=self.config.combined_log)
        self.renderer = Renderer(self.template, self.resolver, pool=pool)

        self._wants_form = self.template.uses_prefix(PREFIX_FORM)
        self._wants_body = self._wants_form or self.template.uses(TAG_BODY)

    def close(self):
        """Stop the timestamp refresh job, if any."""
        if self.timestamp is not None:
            self.timestamp.stop()

    def _skip(self, request: Request) -> bool:
        if self.config.filter is None:
            return False
        try:
            return bool(self.config.filter(request))
        except Exception:
            logger.exception("Access log filter failed; logging the request anyway")
            return False

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        exchange = Exchange(Request(scope))
        if self._skip(exchange.request):
            await self.app(scope, receive, send)
            return

        body_complete = False

        async def counting_receive() -> Message:
            nonlocal body_complete
            message = await receive()
            if message["type"] == "http.request":
                exchange.bytes_received += len(message.get("body", b""))
                if not message.get("more_body", False):
                    body_complete = True
            return message

        async def send_wrapper(message: Message):
            if message["type"] == "http.response.start":
                exchange.status_code = message["status"]
            elif message["type"] == "http.response.body":
                exchange.bytes_sent += len(message.get("body", b""))
            await send(message)

        start = time.perf_counter_ns()
        try:
            downstream_receive = counting_receive
            if self._wants_body:
                downstream_receive = await self._buffer_body(exchange, receive)
                body_complete = True
            await self.app(scope, downstream_receive, send_wrapper)
        except Exception as e:
            exchange.error = e
            if not exchange.status_code:
                # Nothing was sent; the server answers with a 500
                exchange.status_code = 500
            raise
        finally:
            stop = time.perf_counter_ns()
            if not body_complete:
                exchange.bytes_received = max(exchange.bytes_received, _declared_length(exchange))
            self._log(exchange, start, stop)

    async def _buffer_body(self, exchange: Exchange, receive: Receive) -> Receive:
        """Read the whole request body and return a receive() that replays it."""
        chunks = []
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                break
            chunks.append(message.get("body", b""))
            more_body = message.get("more_body", False)

        body = b"".join(chunks)
        exchange.body = body
        exchange.bytes_received = len(body)
        if self._wants_form:
            exchange.form = await _parse_form(exchange.scope, body)

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        return replay

    def _log(self, exchange: Exchange, start_ns: int, stop_ns: int):
        self._write(self.renderer.render_line(exchange, start_ns, stop_ns))

    def _write(self, data: bytes):
        try:
            if self._text_output:
                self.output.write(data.decode("utf-8", errors="replace"))
            else:
                self.output.write(data)
        except Exception as e:
            logger.error(f"Failed to write access log line: {e}")


def _declared_length(exchange: Exchange) -> int:
    """Content-Length of a body the app did not read to the end."""
    try:
        return int(exchange.request.headers.get("content-length", "0"))
    except ValueError:
        return 0
