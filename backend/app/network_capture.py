"""
Network capture: records every font file the page downloads.

FontCapture listens to page responses for the whole capture phase (from
before navigation until drain() is awaited). Each font response is read
once, identified by its URL, and turned into a DownloadedFontResource with
whatever metadata the binary yields.
"""

import asyncio
import logging
import re
from typing import Callable, Optional
from urllib.parse import urlparse

from playwright.async_api import Page, Response, Route

from app.context import InspectionContext
from app.font_matching import file_name_from_url
from app.font_metadata import extract_metadata
from app.models import DownloadedFontResource, FontFormat, FontMetadata, FontOrigin

logger = logging.getLogger(__name__)

FONT_URL_RE = re.compile(r"\.(woff2?|ttf|otf|eot)($|\?)", re.IGNORECASE)

# Checked in order; first substring hit wins
ORIGIN_PATTERNS = [
    (("fonts.googleapis.com", "fonts.gstatic.com"), FontOrigin.GOOGLE_FONTS),
    (("use.typekit.net", "p.typekit.net"), FontOrigin.ADOBE_FONTS),
    (("cloud.typography.com",), FontOrigin.HOEFLER),
    (("fast.fonts.net",), FontOrigin.MONOTYPE),
]

# .woff2 must be tested before .woff
FORMAT_PATTERNS = [
    (".woff2", FontFormat.WOFF2),
    (".woff", FontFormat.WOFF),
    (".ttf", FontFormat.TTF),
    (".otf", FontFormat.OTF),
    (".eot", FontFormat.EOT),
]

TRACKING_MARKERS = ("tracking", "analytics")

MetadataExtractor = Callable[[bytes, str], Optional[FontMetadata]]


def is_font_response(url: str, content_type: str = "") -> bool:
    return "font" in (content_type or "").lower() or bool(FONT_URL_RE.search(url or ""))


def font_file_name(url: str) -> str:
    return file_name_from_url(url) or url


def detect_font_format(url: str) -> FontFormat:
    lowered = (url or "").lower()
    for needle, fmt in FORMAT_PATTERNS:
        if needle in lowered:
            return fmt
    return FontFormat.UNKNOWN


def classify_font_origin(url: str) -> FontOrigin:
    lowered = (url or "").lower()
    for needles, origin in ORIGIN_PATTERNS:
        if any(n in lowered for n in needles):
            return origin
    host = urlparse(lowered).hostname or ""
    if "cdn" in host:
        return FontOrigin.CDN
    return FontOrigin.SELF_HOSTED


def is_tracking_request(url: str, resource_type: str) -> bool:
    lowered = (url or "").lower()
    return resource_type == "image" and any(m in lowered for m in TRACKING_MARKERS)


def dedupe_fonts_by_file_name(fonts: list[DownloadedFontResource]) -> list[DownloadedFontResource]:
    """One resource per file name, keeping the larger download. Sorted by name."""
    by_name: dict[str, DownloadedFontResource] = {}
    for font in fonts:
        kept = by_name.get(font.file_name)
        if kept is None or font.byte_size > kept.byte_size:
            by_name[font.file_name] = font
    return [by_name[name] for name in sorted(by_name)]


class FontCapture:
    """Collects font downloads for one run. Not reusable across runs."""

    def __init__(self, context: InspectionContext,
                 metadata_extractor: MetadataExtractor = extract_metadata):
        self.context = context
        self.metadata_extractor = metadata_extractor
        self._pending: set[asyncio.Task] = set()
        self._closed = False

    @property
    def fonts(self) -> list[DownloadedFontResource]:
        return self.context.downloaded_fonts

    def __len__(self) -> int:
        return len(self.context.downloaded_fonts)

    async def attach(self, page: Page) -> None:
        """Start listening. Must run before navigation so early fonts are seen."""
        page.on("response", self._on_response)
        await page.route("**/*", self._handle_route)

    async def _handle_route(self, route: Route) -> None:
        request = route.request
        if is_tracking_request(request.url, request.resource_type):
            await route.abort()
        else:
            await route.continue_()

    def _on_response(self, response: Response) -> None:
        if self._closed:
            return
        task = asyncio.ensure_future(self.handle_response(response))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def handle_response(self, response: Response) -> Optional[DownloadedFontResource]:
        url = response.url
        if url in self.context.processed_urls:
            return None
        content_type = (response.headers or {}).get("content-type", "")
        if not is_font_response(url, content_type):
            return None
        self.context.processed_urls.add(url)

        try:
            body = await response.body()
        except Exception as e:
            logger.debug("[capture] Could not read body for %s: %s", url, e)
            return None
        if not body:
            return None

        file_name = font_file_name(url)
        metadata = await asyncio.to_thread(self.metadata_extractor, body, url)

        font = DownloadedFontResource(
            file_name=file_name,
            format=detect_font_format(url),
            byte_size=len(body),
            source_url=url,
            origin=classify_font_origin(url),
            metadata=metadata,
        )
        if self._closed:
            # Arrived after the capture phase ended
            return None
        self.context.downloaded_fonts.append(font)

        info = f" | Metadata: {metadata.summary()}" if metadata else ""
        logger.info("[capture] Font detected: %s (%s, %d bytes) from %s%s",
                    file_name, font.format.value, font.byte_size, font.origin.value, info)
        return font

    async def drain(self) -> list[DownloadedFontResource]:
        """Wait for in-flight responses, then stop accepting new ones."""
        while self._pending:
            results = await asyncio.gather(*list(self._pending), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.warning("[capture] Error processing font response: %s", result)
        self._closed = True
        self.context.capture_complete = True
        logger.info("[capture] Capture complete: %d font files", len(self.context.downloaded_fonts))
        return list(self.context.downloaded_fonts)
