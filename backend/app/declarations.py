"""
@font-face declaration extraction.

Three sources feed the declaration list:
  1. CSSFontFaceRule objects in every stylesheet the page can read.
  2. Cross-origin sheets the page cannot read, fetched with httpx and
     parsed with tinycss2.
  3. Service supplements: Adobe Fonts (Typekit) kits injected by script are
     reported as dynamic declarations, and Google Fonts files are turned
     back into declarations when their CSS was not available.

The result is unordered; the resolver never depends on its order.
"""

import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx
import tinycss2

from app.config import Settings, get_settings
from app.font_matching import (
    CAMEL_BOUNDARY_RE,
    URL_IN_SRC_RE,
    extract_source_urls,
    file_name_from_url,
    strip_quotes,
    urls_match,
)
from app.models import DownloadedFontResource, FontFaceDeclaration, FontOrigin

logger = logging.getLogger(__name__)

STYLESHEET_FETCH_TIMEOUT = 10.0  # seconds, per sheet
ADOBE_FONTS_SERVICE = "Adobe Fonts"
GOOGLE_FONTS_SERVICE = "Google Fonts"
WEIGHT_IN_NAME_RE = re.compile(r"(\d{3})")


# ---------------------------------------------------------------------------
# In-page scripts
# ---------------------------------------------------------------------------

STYLESHEET_RULES_JS = """
() => {
    const rules = [];
    const blocked = [];
    const visited = new Set();

    const readFace = (rule) => ({
        family: rule.style.getPropertyValue('font-family'),
        src: rule.style.getPropertyValue('src'),
        weight: rule.style.getPropertyValue('font-weight') || null,
        style: rule.style.getPropertyValue('font-style') || null,
        base: (rule.parentStyleSheet && rule.parentStyleSheet.href) || document.baseURI,
    });

    const visit = (sheet) => {
        if (!sheet || visited.has(sheet)) return;
        visited.add(sheet);
        let list;
        try {
            list = sheet.cssRules;
        } catch (e) {
            // Cross-origin sheet without CORS headers
            if (sheet.href) blocked.push(sheet.href);
            return;
        }
        walk(list || []);
    };

    const walk = (list) => {
        for (const rule of Array.from(list)) {
            if (rule instanceof CSSFontFaceRule) {
                rules.push(readFace(rule));
            } else if (rule instanceof CSSImportRule) {
                visit(rule.styleSheet);
            } else if (rule.cssRules) {
                walk(rule.cssRules);
            }
        }
    };

    for (const sheet of Array.from(document.styleSheets)) visit(sheet);

    const googleRefs = [];
    document.querySelectorAll('link[href*="fonts.googleapis.com"]').forEach(link => {
        googleRefs.push(link.href);
    });
    document.querySelectorAll('style').forEach(style => {
        const text = style.textContent || '';
        const re = /@import\\s+(?:url\\()?['"]?([^'")\\s]*fonts\\.googleapis\\.com[^'")\\s]*)/gi;
        let m;
        while ((m = re.exec(text)) !== null) googleRefs.push(m[1]);
    });

    return { rules, blocked, googleRefs };
}
"""

TYPEKIT_JS = """
() => {
    const found = [];
    const hasKit = document.querySelector('script[src*="typekit.net"], link[href*="typekit.net"]') !== null;
    const tk = window.Typekit;
    if (tk && tk.config && tk.config.f) {
        for (const key of Object.keys(tk.config.f)) {
            const font = tk.config.f[key];
            if (font && font.family) {
                found.push({
                    family: font.family,
                    src: font.src || '',
                    weight: (font.descriptors && font.descriptors.weight) || null,
                    style: (font.descriptors && font.descriptors.style) || null,
                });
            }
        }
    }
    for (const sheet of Array.from(document.styleSheets)) {
        let list;
        try { list = sheet.cssRules || []; } catch (e) { continue; }
        for (const rule of Array.from(list)) {
            if (rule instanceof CSSFontFaceRule && /use\\.typekit\\.net/.test(rule.cssText)) {
                found.push({
                    family: rule.style.getPropertyValue('font-family'),
                    src: rule.style.getPropertyValue('src'),
                    weight: rule.style.getPropertyValue('font-weight') || null,
                    style: rule.style.getPropertyValue('font-style') || null,
                });
            }
        }
    }
    return { hasKit, fonts: found };
}
"""


# ---------------------------------------------------------------------------
# CSS text parsing
# ---------------------------------------------------------------------------

def _absolutize_src(src: str, base_url: Optional[str]) -> str:
    if not base_url:
        return src

    def repl(match: re.Match) -> str:
        target = match.group(1)
        if target.startswith("data:"):
            return match.group(0)
        return f'url("{urljoin(base_url, target)}")'

    return URL_IN_SRC_RE.sub(repl, src)


def parse_font_face_css(css_text: str, base_url: Optional[str] = None) -> list[FontFaceDeclaration]:
    """
    Every @font-face rule in a raw stylesheet, including ones nested in
    @media/@supports blocks. Relative src URLs are resolved against
    ``base_url`` when given. Rules without a family or src are dropped.
    """
    declarations: list[FontFaceDeclaration] = []
    rules = tinycss2.parse_stylesheet(css_text or "", skip_comments=True, skip_whitespace=True)
    _collect_font_faces(rules, base_url, declarations)
    return declarations


def _collect_font_faces(rules, base_url: Optional[str], out: list[FontFaceDeclaration]) -> None:
    for rule in rules:
        if rule.type != "at-rule" or rule.content is None:
            continue
        if rule.lower_at_keyword == "font-face":
            fields: dict[str, str] = {}
            for decl in tinycss2.parse_declaration_list(rule.content, skip_comments=True, skip_whitespace=True):
                if decl.type == "declaration":
                    fields[decl.lower_name] = tinycss2.serialize(decl.value).strip()
            family = strip_quotes(fields.get("font-family", ""))
            src = fields.get("src", "")
            if family and src:
                out.append(FontFaceDeclaration(
                    family_name=family,
                    source_descriptor=_absolutize_src(src, base_url),
                    weight=fields.get("font-weight") or None,
                    style=fields.get("font-style") or None,
                ))
        elif rule.lower_at_keyword in ("media", "supports", "layer"):
            nested = tinycss2.parse_rule_list(rule.content, skip_comments=True, skip_whitespace=True)
            _collect_font_faces(nested, base_url, out)


def _declaration_from_page(raw: dict, **extra) -> Optional[FontFaceDeclaration]:
    family = strip_quotes(raw.get("family") or "")
    if not family:
        return None
    # CSSOM keeps src relative to the sheet it came from
    src = _absolutize_src((raw.get("src") or "").strip(), raw.get("base"))
    return FontFaceDeclaration(
        family_name=family,
        source_descriptor=src,
        weight=raw.get("weight") or None,
        style=raw.get("style") or None,
        **extra,
    )


async def fetch_stylesheets(hrefs: list[str], settings: Settings) -> list[FontFaceDeclaration]:
    """Fetch sheets the page could not read. Failures are skipped."""
    declarations: list[FontFaceDeclaration] = []
    if not hrefs:
        return declarations

    headers = {"User-Agent": settings.user_agent, "Accept": "text/css,*/*;q=0.1"}
    async with httpx.AsyncClient(timeout=STYLESHEET_FETCH_TIMEOUT, follow_redirects=True,
                                 headers=headers) as client:
        for href in sorted(set(hrefs)):
            try:
                resp = await client.get(href)
                resp.raise_for_status()
            except httpx.HTTPError as e:
                logger.info("[declarations] Skipping stylesheet %s: %s", href, e)
                continue
            found = parse_font_face_css(resp.text, base_url=str(resp.url))
            logger.info("[declarations] %d @font-face rules in %s", len(found), href)
            declarations.extend(found)
    return declarations


# ---------------------------------------------------------------------------
# Service supplements
# ---------------------------------------------------------------------------

async def detect_dynamic_font_services(page) -> list[FontFaceDeclaration]:
    """Adobe Fonts kits injected by script, as dynamic declarations."""
    try:
        data = await page.evaluate(TYPEKIT_JS) or {}
    except Exception as e:
        logger.warning("[declarations] Dynamic font service detection failed: %s", e)
        return []

    fonts = data.get("fonts") or []
    if not data.get("hasKit") and not fonts:
        return []

    declarations = []
    for raw in fonts:
        decl = _declaration_from_page(raw, is_dynamic=True, service=ADOBE_FONTS_SERVICE)
        if decl:
            declarations.append(decl)
    logger.info("[declarations] Found %d dynamic (Adobe Fonts) declarations", len(declarations))
    return declarations


def _google_family_from_url(url: str) -> Optional[str]:
    match = re.search(r"/s/([^/]+)/", urlparse(url).path)
    if not match:
        return None
    slug = CAMEL_BOUNDARY_RE.sub(" ", match.group(1))
    return slug[:1].upper() + slug[1:]


def _is_google_font(font: DownloadedFontResource) -> bool:
    return font.origin == FontOrigin.GOOGLE_FONTS or "fonts.gstatic.com" in font.source_url


def reconstruct_google_font_declarations(google_refs: list[str],
                                         downloaded_fonts: list[DownloadedFontResource],
                                         existing: Optional[list[FontFaceDeclaration]] = None) -> list[FontFaceDeclaration]:
    """
    Rebuild @font-face rules for downloaded Google Fonts files.

    Only runs when the page references Google Fonts CSS, and skips files
    already covered by the src of an existing declaration.
    """
    if not google_refs:
        return []

    covered = [u for d in (existing or []) for u in extract_source_urls(d.source_descriptor)]
    declarations = []
    for font in downloaded_fonts:
        if not _is_google_font(font):
            continue
        if any(urls_match(font.source_url, u) for u in covered):
            continue

        meta = font.metadata
        family = (meta.font_family or meta.font_name) if meta else None
        family = family or _google_family_from_url(font.source_url)
        if not family:
            continue

        name = file_name_from_url(font.source_url) or font.file_name
        weight_match = WEIGHT_IN_NAME_RE.search(name)
        declarations.append(FontFaceDeclaration(
            family_name=family,
            source_descriptor=f'url("{font.source_url}")',
            weight=weight_match.group(1) if weight_match else "400",
            style="italic" if "italic" in name.lower() else "normal",
            service=GOOGLE_FONTS_SERVICE,
        ))

    if declarations:
        logger.info("[declarations] Reconstructed %d Google Fonts declarations", len(declarations))
    return declarations


def _merge(declarations: list[FontFaceDeclaration]) -> list[FontFaceDeclaration]:
    # Same rule seen twice (page + dynamic scan) collapses; the dynamic copy wins
    merged: dict[tuple, FontFaceDeclaration] = {}
    for decl in declarations:
        key = (decl.family_name.casefold(), decl.source_descriptor, decl.weight, decl.style)
        kept = merged.get(key)
        if kept is None or (decl.is_dynamic and not kept.is_dynamic):
            merged[key] = decl
    return list(merged.values())


async def extract_font_face_declarations(page, downloaded_fonts: list[DownloadedFontResource],
                                         settings: Optional[Settings] = None) -> list[FontFaceDeclaration]:
    settings = settings or get_settings()
    declarations: list[FontFaceDeclaration] = []

    try:
        data = await page.evaluate(STYLESHEET_RULES_JS) or {}
    except Exception as e:
        logger.warning("[declarations] Stylesheet scan failed: %s", e)
        data = {}

    for raw in data.get("rules") or []:
        decl = _declaration_from_page(raw)
        if decl:
            declarations.append(decl)
    logger.info("[declarations] %d @font-face rules in readable stylesheets", len(declarations))

    google_refs = data.get("googleRefs") or []
    declarations.extend(await fetch_stylesheets(data.get("blocked") or [], settings))
    declarations.extend(await detect_dynamic_font_services(page))
    declarations.extend(reconstruct_google_font_declarations(google_refs, downloaded_fonts, declarations))

    merged = _merge(declarations)
    logger.info("[declarations] Total @font-face declarations: %d", len(merged))
    return merged
