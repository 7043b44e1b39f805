"""Render compiled templates into access log lines."""

from typing import Optional

from accesslog.services.resolver import TAG_LATENCY, Exchange, FieldResolver
from accesslog.services.template import Template
from accesslog.utils.buffer_pool import BufferPool, default_pool
from accesslog.utils.datetime_helpers import format_duration


class Renderer:
    """Executes a template against a :class:`FieldResolver`.

    Literal segments are encoded once here; per request only tag values
    are encoded. ``latency`` is computed from the start/stop times the
    caller measured instead of going through the resolver.
    """

    def __init__(self, template: Template, resolver: FieldResolver,
                 pool: Optional[BufferPool] = None):
        self.template = template
        self.resolver = resolver
        self.pool = pool if pool is not None else default_pool
        self._parts = tuple(
            (segment.text, None) if segment.is_tag else (None, segment.text.encode("utf-8"))
            for segment in template
        )

    def render_into(self, buffer: bytearray, exchange: Exchange,
                    start_ns: int, stop_ns: int) -> None:
        """Append the rendered line to ``buffer``."""
        for tag, literal in self._parts:
            if tag is None:
                buffer += literal
            elif tag == TAG_LATENCY:
                buffer += format_duration(stop_ns - start_ns).encode("utf-8")
            else:
                buffer += self.resolver.resolve(tag, exchange).encode("utf-8")

    def render(self, exchange: Exchange, start_ns: int, stop_ns: int) -> bytes:
        """Render one line using a pooled buffer and return a copy of it."""
        with self.pool.borrow() as buffer:
            self.render_into(buffer, exchange, start_ns, stop_ns)
            return bytes(buffer)

    def render_line(self, exchange: Exchange, start_ns: int, stop_ns: int) -> bytes:
        """Render one line, never raising.

        If a field fails to resolve, the error text is appended after
        whatever was already rendered, and that partial line is returned.
        """
        with self.pool.borrow() as buffer:
            try:
                self.render_into(buffer, exchange, start_ns, stop_ns)
            except Exception as e:
                buffer += str(e).encode("utf-8", errors="replace")
            return bytes(buffer)
