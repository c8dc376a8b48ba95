"""
Data model for a single font inspection run.

Every record is created fresh per run. The pydantic models serialize with
camelCase aliases (``fileName``, ``elementCount`` ...) so stored results and
API payloads keep the JSON shape the frontend reads.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class FontFormat(str, Enum):
    WOFF2 = "woff2"
    WOFF = "woff"
    TTF = "ttf"
    OTF = "otf"
    EOT = "eot"
    UNKNOWN = "unknown"


class FontOrigin(str, Enum):
    SELF_HOSTED = "self-hosted"
    GOOGLE_FONTS = "Google Fonts"
    ADOBE_FONTS = "Adobe Fonts"
    HOEFLER = "Hoefler&Co"
    MONOTYPE = "Monotype"
    CDN = "CDN"
    OTHER = "other"


class EmbeddingPermissions(_Record):
    installable: bool
    editable: bool
    preview_and_print: bool
    restricted_license: bool


class FontMetadata(_Record):
    """Values read from a font binary's name/head/OS2 tables. Any field may be missing."""
    font_name: Optional[str] = None
    font_family: Optional[str] = None
    full_font_name: Optional[str] = None
    foundry: Optional[str] = None
    copyright: Optional[str] = None
    version: Optional[str] = None
    license_info: Optional[str] = None
    embedding_permissions: Optional[EmbeddingPermissions] = None
    unique_identifier: Optional[str] = None
    creation_date: Optional[str] = None
    designer: Optional[str] = None

    def summary(self) -> str:
        parts = []
        if self.font_name:
            parts.append(f"Name: {self.font_name}")
        if self.foundry:
            parts.append(f"Foundry: {self.foundry}")
        if self.version:
            parts.append(f"Version: {self.version}")
        perms = self.embedding_permissions
        if perms:
            flags = [
                label for label, on in (
                    ("Installable", perms.installable),
                    ("Editable", perms.editable),
                    ("Preview&Print", perms.preview_and_print),
                    ("Restricted", perms.restricted_license),
                ) if on
            ]
            if flags:
                parts.append(f"Permissions: {', '.join(flags)}")
        return " | ".join(parts) or "No metadata available"


class DownloadedFontResource(_Record):
    file_name: str
    format: FontFormat = FontFormat.UNKNOWN
    byte_size: int = 0
    source_url: str
    origin: FontOrigin = FontOrigin.SELF_HOSTED
    metadata: Optional[FontMetadata] = None


class FontFaceDeclaration(_Record):
    family_name: str
    source_descriptor: str = ""
    weight: Optional[str] = None
    style: Optional[str] = None
    is_dynamic: bool = False
    service: Optional[str] = None


class ActiveFontUsage(_Record):
    raw_family_name: str
    element_count: int = 0
    sample_text: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        # Older stored results use family/count/elements/preview
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "rawFamilyName" not in data and "raw_family_name" not in data and "family" in data:
            data["raw_family_name"] = data.pop("family")
        if "elementCount" not in data and "element_count" not in data:
            for key in ("count", "elements"):
                if data.get(key) is not None:
                    data["element_count"] = data.pop(key)
                    break
        if "sampleText" not in data and "sample_text" not in data and "preview" in data:
            data["sample_text"] = data.pop("preview")
        return data


class CanonicalFontGroup(_Record):
    canonical_family_name: str
    usages: list[ActiveFontUsage] = Field(default_factory=list)
    downloaded_fonts: list[DownloadedFontResource] = Field(default_factory=list)
    declarations: list[FontFaceDeclaration] = Field(default_factory=list)
    total_element_count: int = 0
    usage_percentage: float = 0.0
    is_dynamic: bool = False

    @property
    def has_source(self) -> bool:
        return bool(self.downloaded_fonts or self.declarations)

    @property
    def raw_family_names(self) -> list[str]:
        return [u.raw_family_name for u in self.usages]


class Dimensions(_Record):
    width: int
    height: int


class ScreenshotData(_Record):
    original: str
    annotated: str
    captured_at: datetime
    dimensions: Dimensions
    annotation_count: int = 0


class InspectOptions(_Record):
    capture_screenshots: bool = False
    user_id: Optional[str] = None
    inspection_id: Optional[str] = None
    project_id: Optional[str] = None


class InspectionResult(_Record):
    url: str
    inspection_id: Optional[str] = None
    downloaded_fonts: list[DownloadedFontResource] = Field(default_factory=list)
    font_face_declarations: list[FontFaceDeclaration] = Field(default_factory=list)
    active_fonts: list[ActiveFontUsage] = Field(default_factory=list)
    font_groups: list[CanonicalFontGroup] = Field(default_factory=list)
    screenshots: Optional[ScreenshotData] = None
    inspected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass
class AnnotationRecord:
    """One visual marker on the annotated screenshot. Never persisted."""
    canonical_family_name: str
    color: str
    bounding_box: BoundingBox
    priority: int
    section: str = "other"
    text: str = ""
    annotation_id: Optional[str] = None
