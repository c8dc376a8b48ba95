"""
Reads descriptive metadata out of a downloaded font binary with fontTools.

TrueType, OpenType/CFF, WOFF and WOFF2 (brotli) are all parsed by TTFont.
Nothing here raises: a font that cannot be parsed simply has no metadata.
"""

import io
import logging
from datetime import datetime, timezone
from typing import Optional

from fontTools.ttLib import TTFont

from app.errors import MetadataExtractionFailure
from app.models import EmbeddingPermissions, FontMetadata

logger = logging.getLogger(__name__)

# sfnt / WOFF container signatures
FONT_SIGNATURES = (b"\x00\x01\x00\x00", b"OTTO", b"true", b"typ1", b"wOFF", b"wOF2", b"ttcf")

# Seconds between the 1904-01-01 font epoch and the Unix epoch
MAC_EPOCH_OFFSET = 2082844800

NAME_FAMILY = 1
NAME_UNIQUE_ID = 3
NAME_FULL = 4
NAME_VERSION = 5
NAME_COPYRIGHT = 0
NAME_MANUFACTURER = 8
NAME_DESIGNER = 9
NAME_VENDOR_URL = 11
NAME_LICENSE = 13
NAME_LICENSE_URL = 14
NAME_TYPOGRAPHIC_FAMILY = 16

FS_TYPE_RESTRICTED = 0x0002
FS_TYPE_PREVIEW_PRINT = 0x0004
FS_TYPE_EDITABLE = 0x0008


def is_likely_parseable(raw_bytes: bytes) -> bool:
    return bool(raw_bytes) and len(raw_bytes) >= 12 and raw_bytes[:4] in FONT_SIGNATURES


def _name(name_table, name_id: int) -> Optional[str]:
    # Windows Unicode English first, then Mac Roman, then anything
    record = (
        name_table.getName(name_id, 3, 1, 0x409)
        or name_table.getName(name_id, 1, 0, 0)
    )
    if record is None:
        record = next((r for r in name_table.names if r.nameID == name_id), None)
    if record is None:
        return None
    try:
        value = record.toUnicode().strip()
    except UnicodeDecodeError:
        return None
    return value or None


def _creation_date(font: TTFont) -> Optional[str]:
    if "head" not in font:
        return None
    created = getattr(font["head"], "created", 0)
    if not created:
        return None
    try:
        return datetime.fromtimestamp(created - MAC_EPOCH_OFFSET, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


def _embedding_permissions(font: TTFont) -> Optional[EmbeddingPermissions]:
    if "OS/2" not in font:
        return None
    fs_type = getattr(font["OS/2"], "fsType", None)
    if fs_type is None:
        return None
    return EmbeddingPermissions(
        installable=(fs_type & 0x0001) == 0,
        editable=(fs_type & FS_TYPE_EDITABLE) == 0,
        preview_and_print=(fs_type & FS_TYPE_PREVIEW_PRINT) == 0,
        restricted_license=(fs_type & FS_TYPE_RESTRICTED) != 0,
    )


def _read_metadata(raw_bytes: bytes) -> FontMetadata:
    with TTFont(io.BytesIO(raw_bytes), lazy=True, fontNumber=0) as font:
        if "name" not in font:
            raise MetadataExtractionFailure("Font has no name table")
        names = font["name"]
        family = _name(names, NAME_TYPOGRAPHIC_FAMILY) or _name(names, NAME_FAMILY)
        return FontMetadata(
            font_name=_name(names, NAME_FAMILY) or _name(names, NAME_FULL),
            font_family=family,
            full_font_name=_name(names, NAME_FULL),
            foundry=_name(names, NAME_MANUFACTURER) or _name(names, NAME_VENDOR_URL),
            copyright=_name(names, NAME_COPYRIGHT),
            version=_name(names, NAME_VERSION),
            license_info=_name(names, NAME_LICENSE) or _name(names, NAME_LICENSE_URL),
            embedding_permissions=_embedding_permissions(font),
            unique_identifier=_name(names, NAME_UNIQUE_ID),
            creation_date=_creation_date(font),
            designer=_name(names, NAME_DESIGNER),
        )


def extract_metadata(raw_bytes: bytes, source_url: str = "") -> Optional[FontMetadata]:
    """
    Parse ``raw_bytes`` and return its metadata, or None when unavailable.

    Any parse problem (truncated file, unknown container, missing tables,
    WOFF2 without brotli) is logged and swallowed.
    """
    if not is_likely_parseable(raw_bytes):
        logger.info("[metadata] %s does not look like a font binary, skipping", source_url or "font")
        return None
    try:
        return _read_metadata(raw_bytes)
    except Exception as e:
        failure = e if isinstance(e, MetadataExtractionFailure) else MetadataExtractionFailure(str(e))
        logger.warning("[metadata] Could not extract metadata for %s: %s", source_url or "font", failure)
        return None
