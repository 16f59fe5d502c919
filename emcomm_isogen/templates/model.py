"""Structured model of vendor configuration templates.

Vendor templates mix ordinary text with reserved ``{{NAME}}`` tokens that
the vendor's runtime wrapper substitutes every time an application starts.
A template is parsed into lines of segments, each either ``FixedText`` or
``ReservedPlaceholder``, so placeholder tokens are carried as opaque values
and rendered back byte for byte.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass

# Vendor runtime substitution syntax, e.g. {{ET_CALLSIGN}}
PLACEHOLDER_PATTERN = re.compile(r"\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}")


@dataclass(frozen=True)
class FixedText:
    """Literal template text."""

    text: str


@dataclass(frozen=True)
class ReservedPlaceholder:
    """A vendor runtime token, never resolved at build time."""

    name: str

    @property
    def token(self) -> str:
        """The token as it appears in the template."""
        return "{{" + self.name + "}}"


Segment = FixedText | ReservedPlaceholder
Line = tuple[Segment, ...]


def parse_line(text: str) -> Line:
    """Split one line of template text into segments."""
    segments: list[Segment] = []
    pos = 0
    for match in PLACEHOLDER_PATTERN.finditer(text):
        if match.start() > pos:
            segments.append(FixedText(text[pos : match.start()]))
        segments.append(ReservedPlaceholder(match.group(1)))
        pos = match.end()
    if pos < len(text):
        segments.append(FixedText(text[pos:]))
    return tuple(segments)


def render_line(line: Line) -> str:
    """Render a line of segments back to text."""
    return "".join(
        seg.token if isinstance(seg, ReservedPlaceholder) else seg.text
        for seg in line
    )


def fixed_line(text: str) -> Line:
    """Build a line that must contain no placeholders.

    Raises:
        ValueError: If ``text`` contains placeholder syntax.
    """
    if PLACEHOLDER_PATTERN.search(text):
        raise ValueError(f"Generated text must not contain placeholders: {text!r}")
    return (FixedText(text),)


@dataclass(frozen=True)
class Template:
    """A parsed template: an ordered sequence of lines with line endings."""

    lines: tuple[Line, ...]

    @classmethod
    def parse(cls, text: str) -> Template:
        """Parse template text, keeping line endings verbatim."""
        return cls(tuple(parse_line(line) for line in text.splitlines(keepends=True)))

    def render(self) -> str:
        """Render the template back to text."""
        return "".join(render_line(line) for line in self.lines)

    def placeholders(self) -> list[str]:
        """Placeholder names in document order."""
        return [
            seg.name
            for line in self.lines
            for seg in line
            if isinstance(seg, ReservedPlaceholder)
        ]

    def placeholder_counts(self) -> Counter[str]:
        """Multiset of placeholder names."""
        return Counter(self.placeholders())


__all__ = [
    "PLACEHOLDER_PATTERN",
    "FixedText",
    "Line",
    "ReservedPlaceholder",
    "Segment",
    "Template",
    "fixed_line",
    "parse_line",
    "render_line",
]
