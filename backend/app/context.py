"""
Per-run state for one inspection.

Everything a component needs to remember during a run (processed response
URLs, captured fonts, the matcher and its caches, colour assignments) hangs
off an InspectionContext created by inspect() and dropped when it returns.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Optional

from app.config import Settings, get_settings, load_font_aliases
from app.font_matching import FontNameMatcher
from app.models import DownloadedFontResource, InspectOptions


@dataclass
class InspectionContext:
    url: str
    settings: Settings
    options: InspectOptions
    matcher: FontNameMatcher
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    processed_urls: set[str] = field(default_factory=set)
    downloaded_fonts: list[DownloadedFontResource] = field(default_factory=list)
    color_assignments: dict[str, str] = field(default_factory=dict)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    capture_complete: bool = False

    @classmethod
    def create(cls, url: str, options: Optional[InspectOptions] = None,
               settings: Optional[Settings] = None) -> "InspectionContext":
        settings = settings or get_settings()
        matcher = FontNameMatcher(
            aliases=load_font_aliases(settings),
            min_substring_length=settings.min_substring_match_length,
        )
        return cls(
            url=url,
            settings=settings,
            options=options or InspectOptions(),
            matcher=matcher,
        )

    @property
    def inspection_id(self) -> str:
        """Shared key of the stored row and its screenshot directory."""
        return self.options.inspection_id or self.run_id

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
