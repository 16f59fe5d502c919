"""Vendor template patching.

This module handles:
- Removing directive blocks inserted by an earlier build (by their markers)
- Inserting a new generated block right after a stable anchor line
- Refusing any change that would alter the vendor's reserved placeholders

Patching the same template twice with the same directives yields the same
text as patching it once.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from pathlib import Path

from emcomm_isogen.errors import CustomizationWarning
from emcomm_isogen.templates.model import Line, Template, fixed_line, render_line

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "emcomm-isogen"


class TemplatePatchError(CustomizationWarning):
    """A template could not be patched safely; the template is left as is."""

    def __init__(self, message: str, code: str = "template_patch_error") -> None:
        super().__init__(message, code)


def block_markers(marker: str = DEFAULT_MARKER, comment: str = "#") -> tuple[str, str]:
    """Return the begin and end marker lines of a generated block."""
    return (
        f"{comment} BEGIN {marker} generated directives",
        f"{comment} END {marker} generated directives",
    )


def strip_generated(
    lines: Sequence[Line],
    marker: str = DEFAULT_MARKER,
    comment: str = "#",
) -> tuple[list[Line], int]:
    """Remove previously generated blocks.

    Args:
        lines: Parsed template lines.
        marker: Generator marker name.
        comment: Comment prefix of the template's format.

    Returns:
        Tuple of (remaining lines, number of blocks removed).

    Raises:
        TemplatePatchError: If a block has no end marker.
    """
    begin, end = block_markers(marker, comment)
    kept: list[Line] = []
    removed = 0
    inside = False
    for line in lines:
        text = render_line(line).strip()
        if not inside and text == begin:
            inside = True
            continue
        if inside:
            if text == end:
                inside = False
                removed += 1
            continue
        kept.append(line)

    if inside:
        raise TemplatePatchError(
            f"Unterminated generated block (missing '{end}')",
            code="unterminated_block",
        )
    return kept, removed


def _find_anchor(lines: Sequence[Line], anchor: re.Pattern[str]) -> int | None:
    for index, line in enumerate(lines):
        if anchor.search(render_line(line)):
            return index
    return None


def patch_template(
    text: str,
    directives: Sequence[str],
    anchor: str | re.Pattern[str] | None = None,
    marker: str = DEFAULT_MARKER,
    comment: str = "#",
) -> str:
    """Insert generated directives into vendor template text.

    Args:
        text: Current template text.
        directives: Directive lines to insert (without line endings). An
            empty sequence only removes earlier generated blocks.
        anchor: Regex matching the line the block must follow; the block is
            appended at the end when None.
        marker: Generator marker name.
        comment: Comment prefix of the template's format.

    Returns:
        Patched template text.

    Raises:
        TemplatePatchError: If a directive contains placeholder syntax, the
            anchor is missing, or the reserved placeholders would change.
    """
    template = Template.parse(text)
    before = template.placeholders()

    lines, removed = strip_generated(template.lines, marker, comment)
    if removed:
        logger.debug("Removed %d previously generated block(s)", removed)

    if directives:
        begin, end = block_markers(marker, comment)
        try:
            block = [fixed_line(f"{line}\n") for line in (begin, *directives, end)]
        except ValueError as e:
            raise TemplatePatchError(str(e), code="placeholder_in_directive") from e

        if anchor is None:
            position = len(lines)
        else:
            pattern = re.compile(anchor) if isinstance(anchor, str) else anchor
            index = _find_anchor(lines, pattern)
            if index is None:
                raise TemplatePatchError(
                    f"Anchor line /{pattern.pattern}/ not found in template",
                    code="anchor_missing",
                )
            position = index + 1

        # The block must start on its own line
        if position > 0 and not render_line(lines[position - 1]).endswith("\n"):
            lines[position - 1] = (*lines[position - 1], *fixed_line("\n"))
        lines[position:position] = block

    patched = Template(tuple(lines))
    after = patched.placeholders()
    if after != before:
        raise TemplatePatchError(
            f"Refusing patch that changes reserved placeholders: {before} -> {after}",
            code="placeholder_changed",
        )
    return patched.render()


def patch_template_file(
    path: Path,
    directives: Sequence[str],
    anchor: str | re.Pattern[str] | None = None,
    marker: str = DEFAULT_MARKER,
    comment: str = "#",
) -> bool:
    """Patch a vendor template file in place.

    Args:
        path: Template file.
        directives: Directive lines to insert.
        anchor: Regex matching the line the block must follow.
        marker: Generator marker name.
        comment: Comment prefix of the template's format.

    Returns:
        True if the file content changed.

    Raises:
        TemplatePatchError: If the template is missing or cannot be patched.
    """
    if not path.is_file():
        raise TemplatePatchError(f"Template not found: {path}", code="template_missing")

    original = path.read_text()
    patched = patch_template(original, directives, anchor, marker, comment)
    if patched == original:
        logger.debug("Template %s already up to date", path)
        return False

    path.write_text(patched)
    logger.info("Patched template %s", path)
    return True


__all__ = [
    "DEFAULT_MARKER",
    "TemplatePatchError",
    "block_markers",
    "patch_template",
    "patch_template_file",
    "strip_generated",
]
