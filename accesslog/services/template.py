"""Access log format templates.

A format string such as ``"${time} ${method} ${path}\\n"`` is compiled once
into an immutable sequence of segments, each either literal text or a tag
name. Compilation never fails: broken placeholders are kept as literal text
so that a typo in a custom format cannot take the server down.

Malformed placeholders:
  - ``${method`` (no closing marker) is literal up to the end of the string.
  - ``${}`` (empty name) is literal.
  - ``${a${b}`` keeps ``${a`` as literal and parses ``${b}`` as a tag.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterator, List, Tuple

START_TAG = "${"
END_TAG = "}"


@dataclass(frozen=True)
class Segment:
    """One piece of a compiled template."""

    text: str
    is_tag: bool = False


@dataclass(frozen=True)
class Template:
    source: str
    segments: Tuple[Segment, ...]

    def __iter__(self) -> Iterator[Segment]:
        return iter(self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    @property
    def tags(self) -> FrozenSet[str]:
        return frozenset(s.text for s in self.segments if s.is_tag)

    def uses(self, tag: str) -> bool:
        """True when the template contains ``${tag}``."""
        return tag in self.tags

    def uses_prefix(self, prefix: str) -> bool:
        """True when any tag starts with ``prefix`` (e.g. ``"form:"``)."""
        return any(tag.startswith(prefix) for tag in self.tags)


def _append_literal(segments: List[Segment], text: str) -> None:
    if not text:
        return
    if segments and not segments[-1].is_tag:
        segments[-1] = Segment(segments[-1].text + text)
    else:
        segments.append(Segment(text))


def compile_template(source: str, start: str = START_TAG, end: str = END_TAG) -> Template:
    """Compile ``source`` into a :class:`Template`."""
    segments: List[Segment] = []
    pos = 0
    while True:
        open_at = source.find(start, pos)
        if open_at < 0:
            _append_literal(segments, source[pos:])
            break

        name_at = open_at + len(start)
        close_at = source.find(end, name_at)
        if close_at < 0:
            # Unterminated placeholder
            _append_literal(segments, source[pos:])
            break

        reopen_at = source.find(start, name_at, close_at)
        if reopen_at >= 0:
            _append_literal(segments, source[pos:reopen_at])
            pos = reopen_at
            continue

        name = source[name_at:close_at]
        if not name:
            _append_literal(segments, source[pos:close_at + len(end)])
        else:
            _append_literal(segments, source[pos:open_at])
            segments.append(Segment(name, is_tag=True))
        pos = close_at + len(end)

    return Template(source=source, segments=tuple(segments))
