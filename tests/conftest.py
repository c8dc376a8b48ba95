"""
Pytest configuration and fixtures for font inspector tests.

No test needs a real browser: pages and responses are small fakes that
answer page.evaluate() by script, and fonts are built in memory.
"""

import asyncio
import io

import pytest
from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen

from app.config import Settings
from app.context import InspectionContext
from app.font_matching import FontNameMatcher
from app.models import (
    ActiveFontUsage,
    DownloadedFontResource,
    FontFaceDeclaration,
    FontFormat,
    FontMetadata,
    FontOrigin,
    InspectOptions,
)


def build_font(family: str = "Test Sans", style: str = "Regular", fs_type: int = 0) -> bytes:
    """A minimal but valid TrueType font with a populated name table."""
    fb = FontBuilder(1000, isTTF=True)
    fb.setupGlyphOrder([".notdef", "A"])
    fb.setupCharacterMap({65: "A"})

    pen = TTGlyphPen(None)
    pen.moveTo((0, 0))
    pen.lineTo((0, 500))
    pen.lineTo((500, 500))
    pen.closePath()
    fb.setupGlyf({".notdef": TTGlyphPen(None).glyph(), "A": pen.glyph()})
    fb.setupHorizontalMetrics({".notdef": (500, 0), "A": (500, 0)})
    fb.setupHorizontalHeader(ascent=800, descent=-200)
    fb.setupNameTable({
        "familyName": family,
        "styleName": style,
        "fullName": f"{family} {style}",
        "uniqueFontIdentifier": f"{family.replace(' ', '')}-{style}",
        "version": "Version 1.000",
        "copyright": "Copyright 2024 Test Foundry",
        "manufacturer": "Test Foundry",
        "designer": "A. Designer",
        "licenseDescription": "SIL Open Font License",
    })
    fb.setupOS2(fsType=fs_type)
    fb.setupPost()

    buf = io.BytesIO()
    fb.font.save(buf)
    return buf.getvalue()


def run(coro):
    """Run a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


class FakeResponse:
    def __init__(self, url: str, body: bytes = b"", content_type: str = "", fail: bool = False):
        self.url = url
        self.headers = {"content-type": content_type} if content_type else {}
        self._body = body
        self._fail = fail

    async def body(self) -> bytes:
        if self._fail:
            raise RuntimeError("Response body is unavailable for redirect responses")
        return self._body


class FakePage:
    """
    Answers evaluate() from a {script: result} map. A result that is an
    exception is raised; a callable is called with the argument.
    """

    def __init__(self, results: dict | None = None, goto_errors: list | None = None):
        self.results = results or {}
        self.goto_errors = list(goto_errors or [])
        self.goto_calls: list[tuple[str, str, int]] = []
        self.evaluate_calls: list[tuple[str, object]] = []
        self.handlers: dict[str, list] = {}
        self.routes: list = []
        self.screenshots = 0
        self.waited_ms = 0

    async def goto(self, url, wait_until="load", timeout=30000):
        self.goto_calls.append((url, wait_until, timeout))
        if self.goto_errors:
            error = self.goto_errors.pop(0)
            if error is not None:
                raise error

    async def evaluate(self, script, arg=None):
        self.evaluate_calls.append((script, arg))
        result = self.results.get(script)
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            result = result(arg)
            if asyncio.iscoroutine(result):
                result = await result
        return result

    async def wait_for_timeout(self, ms):
        self.waited_ms += ms

    async def screenshot(self, full_page=False, type="png"):
        self.screenshots += 1
        return build_png()

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))


def build_png(width: int = 64, height: int = 48) -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (width, height), color="white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def settings(tmp_path):
    """Settings with short timeouts and a temp screenshot dir."""
    return Settings(
        page_load_timeout=1000,
        font_ready_timeout=200,
        animation_settle_timeout=100,
        media_load_timeout=100,
        lazy_load_probe_delay=10,
        final_settle_delay=0,
        settle_timeout=2.0,
        inspection_timeout=5,
        screenshot_dir=str(tmp_path / "screenshots"),
        font_aliases={},
        font_aliases_file="",
    )


@pytest.fixture
def matcher():
    return FontNameMatcher(aliases={"sfns": "sf pro", "product sans": "google sans"})


@pytest.fixture
def context(settings):
    return InspectionContext.create("https://example.com", InspectOptions(), settings)


@pytest.fixture
def font_bytes():
    return build_font()


def make_font(file_name: str, url: str | None = None, size: int = 1000,
              family: str | None = None, origin: FontOrigin = FontOrigin.SELF_HOSTED) -> DownloadedFontResource:
    return DownloadedFontResource(
        file_name=file_name,
        format=FontFormat.WOFF2,
        byte_size=size,
        source_url=url or f"https://example.com/fonts/{file_name}",
        origin=origin,
        metadata=FontMetadata(font_family=family, font_name=family) if family else None,
    )


def make_decl(family: str, src: str = "", weight: str | None = None, dynamic: bool = False) -> FontFaceDeclaration:
    return FontFaceDeclaration(family_name=family, source_descriptor=src, weight=weight, is_dynamic=dynamic)


def make_usage(name: str, count: int, sample: str = "Sample text") -> ActiveFontUsage:
    return ActiveFontUsage(raw_family_name=name, element_count=count, sample_text=sample)
