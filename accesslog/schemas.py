"""Pydantic models for access log configuration.

``AccessLogConfig`` is validated once when the middleware is built, so a
bad option fails at startup instead of on the first request.
"""

import sys
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from starlette.requests import Request

from accesslog.utils.datetime_helpers import COMBINED_TIME_FORMAT, DEFAULT_TIME_FORMAT

DEFAULT_FORMAT = "${time} ${method} ${path} - ${ip} - ${status} - ${latency}\n"

# Apache combined log format: https://httpd.apache.org/docs/2.4/logs.html#combined
# The two dashes after the client address stand for the identd identity and
# the authenticated user, neither of which is known here.
COMBINED_FORMAT = (
    '${ip} - - [${time}] "${method} ${url} ${request-protocol}" '
    "${status} ${bytes-sent} ${referer} ${user-agent}\n"
)


class AccessLogConfig(BaseModel):
    """Options for :class:`~accesslog.middleware.access_log.AccessLogMiddleware`.

    Empty ``format`` / ``time_format`` mean "not supplied": they fall back to
    the combined layout when ``combined_log`` is set, otherwise to the plain
    defaults. An explicit value always wins.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Requests for which this returns True are not logged
    filter: Optional[Callable[[Request], bool]] = None
    format: str = ""
    time_format: str = ""  # strftime layout
    output: Optional[Any] = None  # anything with write(); stderr when unset
    combined_log: bool = False

    @field_validator("output")
    @classmethod
    def _check_output(cls, value):
        if value is not None and not callable(getattr(value, "write", None)):
            raise ValueError("output must provide a write() method")
        return value

    @model_validator(mode="after")
    def _apply_defaults(self):
        if self.combined_log:
            self.format = self.format or COMBINED_FORMAT
            self.time_format = self.time_format or COMBINED_TIME_FORMAT
        self.format = self.format or DEFAULT_FORMAT
        self.time_format = self.time_format or DEFAULT_TIME_FORMAT
        if self.output is None:
            self.output = sys.stderr
        return self

    @classmethod
    def from_settings(cls, settings, **overrides) -> "AccessLogConfig":
        """Build a config from environment settings; ``overrides`` take precedence."""
        values = {
            "format": settings.format or "",
            "time_format": settings.time_format or "",
            "combined_log": settings.combined_log,
        }
        values.update(overrides)
        return cls(**values)
