"""
Source row validation.

Rows are checked before any embedding request is made so that malformed
data never costs provider quota. The only way to obtain a ColorRecord from
raw source fields is `validate_row`.
"""

import re

from core.errors import ValidationError
from core.models import ColorRecord, NAME_MAX_LENGTH

HEX_MARKER = "#"
_HEX_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


def parse_curated(marker: str) -> bool:
    """A non-empty curation marker means the name was reviewed by a human."""
    return bool((marker or "").strip())


def validate_row(name: str, hex_color: str, marker: str = "") -> ColorRecord:
    """Validate raw (name, hex, marker) fields and return a ColorRecord.

    Raises ValidationError naming the first field that failed.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("name", "empty")
    if len(name) >= NAME_MAX_LENGTH:
        raise ValidationError("name", f"longer than {NAME_MAX_LENGTH - 1} characters")

    hex_color = (hex_color or "").strip()
    if not _HEX_RE.match(hex_color):
        raise ValidationError("hex_color", f"{hex_color!r} is not a #RRGGBB color")

    return ColorRecord(
        name=name,
        hex_color=hex_color[len(HEX_MARKER):],
        is_curated=parse_curated(marker),
    )
