"""Vendor template handling.

This module handles:
- Parsing templates into fixed text and reserved placeholder segments
- Patching generated directives into templates without touching placeholders
"""

from emcomm_isogen.templates.model import (
    FixedText,
    ReservedPlaceholder,
    Template,
    parse_line,
)
from emcomm_isogen.templates.patcher import (
    TemplatePatchError,
    patch_template,
    patch_template_file,
    strip_generated,
)

__all__ = [
    # Model
    "FixedText",
    "ReservedPlaceholder",
    "Template",
    "parse_line",
    # Patcher
    "TemplatePatchError",
    "patch_template",
    "patch_template_file",
    "strip_generated",
]
