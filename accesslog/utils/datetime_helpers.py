"""Time helpers for access log lines.

Timestamps are rendered in the server's local timezone so that the ``%z``
directive of the Combined Log Format layout carries a real offset.
Durations follow the compact ``1h2m3.5s`` / ``12.345ms`` notation used by
most HTTP access logs.
"""

import datetime
import re


# Layout defaults (strftime directives)
DEFAULT_TIME_FORMAT = "%H:%M:%S"
COMBINED_TIME_FORMAT = "%d/%b/%Y:%H:%M:%S %z"

_NANOS_PER_SECOND = 1_000_000_000

# Month names are fixed to English whatever LC_TIME says
_MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)
_MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
_MONTH_DIRECTIVE = re.compile(r"%[%bB]")


def localnow() -> datetime.datetime:
    """Return the current local time as a timezone-aware datetime."""
    return datetime.datetime.now().astimezone()


def format_timestamp(dt: datetime.datetime, time_format: str = DEFAULT_TIME_FORMAT) -> str:
    """Format a datetime with a strftime layout.

    ``%b`` and ``%B`` always give English month names, as the Combined Log
    Format expects. Other directives are left to ``strftime``.
    """
    def _month(match):
        directive = match.group()
        if directive == "%b":
            return _MONTH_ABBREVIATIONS[dt.month - 1]
        if directive == "%B":
            return _MONTH_NAMES[dt.month - 1]
        return directive

    return dt.strftime(_MONTH_DIRECTIVE.sub(_month, time_format))


def _split_fraction(value: int, precision: int):
    """Split ``value / 10**precision`` into its integer part and a
    ``.ddd`` suffix with trailing zeros removed (empty when exact)."""
    whole, frac = divmod(value, 10 ** precision)
    if not frac:
        return whole, ""
    digits = str(frac).rjust(precision, "0").rstrip("0")
    return whole, "." + digits


def format_duration(nanoseconds: int) -> str:
    """Render a nanosecond count as a human-readable duration.

    Sub-second values use the largest unit that keeps the integer part
    non-zero (``ns``, ``µs`` or ``ms``); longer values are broken down into
    hours, minutes and fractional seconds::

        0           -> "0s"
        512         -> "512ns"
        1_500       -> "1.5µs"
        12_345_000  -> "12.345ms"
        90 * 10**9  -> "1m30s"
    """
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    value = abs(nanoseconds)

    if value < _NANOS_PER_SECOND:
        if value < 1_000:
            precision, unit = 0, "ns"
        elif value < 1_000_000:
            precision, unit = 3, "µs"
        else:
            precision, unit = 6, "ms"
        whole, frac = _split_fraction(value, precision)
        return f"{sign}{whole}{frac}{unit}"

    seconds, frac = _split_fraction(value, 9)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)

    text = f"{seconds}{frac}s"
    if minutes or hours:
        text = f"{minutes}m{text}"
    if hours:
        text = f"{hours}h{text}"
    return sign + text
