"""
Screenshot annotator.

Takes a full-page screenshot, outlines a representative set of text elements
with the canonical family they render in, and takes a second screenshot.

The page only does what needs the DOM: collecting candidate elements and
drawing the overlay. Matching, scoring, deduplication, selection and
colouring happen here on typed records, so the in-page scripts never see
resolver state.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.config import AnnotationPriorities
from app.context import InspectionContext
from app.errors import AnnotationFailure, ScreenshotCaptureFailure
from app.font_matching import FontNameMatcher, is_system_font, primary_family
from app.image_utils import image_dimensions
from app.models import AnnotationRecord, BoundingBox, CanonicalFontGroup, Dimensions, ScreenshotData
from app.screenshot_store import LocalScreenshotStore

logger = logging.getLogger(__name__)

PALETTE = [
    "#FF6B6B", "#4ECDC4", "#45B7D1", "#96CEB4", "#FFEAA7",
    "#DDA0DD", "#98D8C8", "#F7DC6F", "#BB8FCE", "#85C1E9",
]

CANDIDATE_TAGS = [
    "h1", "h2", "h3", "h4", "h5", "h6", "p", "span", "div", "a", "button",
    "label", "li", "td", "th", "blockquote", "figcaption",
]
SEMANTIC_TAGS = {"p", "span", "a", "button", "label", "strong", "em"}
GENERIC_TEXTS = ["click here", "read more", "learn more", "more", "menu"]

SECTIONS = ["header", "main", "sidebar", "footer", "other"]

ANNOTATION_ATTR = "data-font-annotation-id"


# ---------------------------------------------------------------------------
# In-page scripts
# ---------------------------------------------------------------------------

CANDIDATES_JS = """
({ tags, viewportMultiplier, attr }) => {
    const blockTags = ['DIV', 'P', 'SECTION', 'ARTICLE', 'HEADER', 'FOOTER',
                       'H1', 'H2', 'H3', 'H4', 'H5', 'H6', 'UL', 'OL', 'NAV'];
    const docHeight = Math.max(
        document.documentElement.scrollHeight,
        document.body ? document.body.scrollHeight : 0
    );

    const sectionOf = (el, rect) => {
        if (el.closest('header, nav, [role="banner"], [role="navigation"]')) return 'header';
        if (el.closest('footer, [role="contentinfo"]')) return 'footer';
        if (el.closest('aside, [role="complementary"]')) return 'sidebar';
        if (el.closest('main, article, [role="main"]')) return 'main';

        const top = rect.top + window.scrollY;
        if (rect.right < 0 || rect.left > window.innerWidth) return 'other';
        if (top < window.innerHeight * 0.15) return 'header';
        if (docHeight > window.innerHeight && top > docHeight - window.innerHeight * 0.25) return 'footer';
        const narrow = rect.width < window.innerWidth * 0.25;
        if (narrow && (rect.left > window.innerWidth * 0.7 || rect.right < window.innerWidth * 0.3)) return 'sidebar';
        return 'main';
    };

    const out = [];
    let nextId = 0;
    for (const el of document.querySelectorAll(tags.join(', '))) {
        if (!(el instanceof HTMLElement)) continue;
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') continue;

        const hasDirectText = Array.from(el.childNodes).some(node =>
            node.nodeType === Node.TEXT_NODE && node.textContent && node.textContent.trim().length >= 3
        );
        if (!hasDirectText) continue;

        const tag = el.tagName.toLowerCase();
        const text = (el.textContent || '').trim();
        if (tag === 'div') {
            const children = Array.from(el.children);
            if (children.length > 2 || children.some(c => blockTags.includes(c.tagName))) continue;
            const childText = children.reduce((n, c) => n + ((c.textContent || '').length), 0);
            if (childText > text.length * 0.7) continue;
        }
        if (text.length < 3) continue;

        const rect = el.getBoundingClientRect();
        if (rect.width < 10 || rect.height < 10) continue;
        if (rect.bottom < 0 || rect.top > window.innerHeight * viewportMultiplier) continue;

        const id = String(nextId++);
        el.setAttribute(attr, id);
        out.push({
            id,
            tag,
            fontFamily: style.fontFamily || '',
            text: text.substring(0, 80),
            textLength: text.length,
            fontSize: parseFloat(style.fontSize) || 0,
            parentTag: el.parentElement ? el.parentElement.tagName.toLowerCase() : 'none',
            rect: { x: rect.left, y: rect.top, width: rect.width, height: rect.height },
            viewport: { width: window.innerWidth, height: window.innerHeight },
            section: sectionOf(el, rect),
        });
    }
    return out;
}
"""

RENDER_JS = """
({ annotations, attr }) => {
    let drawn = 0;
    for (const a of annotations) {
        const el = document.querySelector(`[${attr}="${a.id}"]`);
        if (!el) continue;
        const rect = el.getBoundingClientRect();

        el.style.outline = `3px solid ${a.color}`;
        el.style.outlineOffset = '2px';

        const label = document.createElement('div');
        label.textContent = a.label;
        Object.assign(label.style, {
            position: 'absolute',
            fontSize: '11px',
            backgroundColor: a.color,
            color: 'white',
            padding: '2px 6px',
            borderRadius: '3px',
            whiteSpace: 'nowrap',
            fontFamily: 'Arial, sans-serif',
            fontWeight: 'bold',
            pointerEvents: 'none',
            zIndex: '999999',
            boxShadow: '0 2px 4px rgba(0,0,0,0.4)',
            lineHeight: '1.2',
        });
        const below = rect.top < 30;
        label.style.top = below
            ? `${rect.bottom + window.scrollY + 5}px`
            : `${rect.top + window.scrollY - 25}px`;
        label.style.left = rect.left < 0
            ? `${window.scrollX + 5}px`
            : `${rect.left + window.scrollX}px`;

        const connector = document.createElement('div');
        Object.assign(connector.style, {
            position: 'absolute',
            left: `${rect.left + window.scrollX + rect.width / 2 - 1}px`,
            top: below ? `${rect.bottom + window.scrollY}px` : `${rect.top + window.scrollY - 5}px`,
            width: '2px',
            height: '5px',
            backgroundColor: a.color,
            pointerEvents: 'none',
            zIndex: '999998',
        });

        document.body.appendChild(label);
        document.body.appendChild(connector);
        drawn++;
    }
    return drawn;
}
"""

PAGE_DIMENSIONS_JS = """
() => {
    window.scrollTo(0, 0);
    return {
        width: Math.max(document.documentElement.scrollWidth, document.body ? document.body.scrollWidth : 0),
        height: Math.max(document.documentElement.scrollHeight, document.body ? document.body.scrollHeight : 0),
    };
}
"""


# ---------------------------------------------------------------------------
# Typed candidate records
# ---------------------------------------------------------------------------

@dataclass
class AnnotationCandidate:
    annotation_id: str
    tag: str
    font_family: str
    text: str
    text_length: int
    font_size: float
    parent_tag: str
    bounding_box: BoundingBox
    viewport_width: float
    viewport_height: float
    section: str = "other"

    @classmethod
    def from_payload(cls, data: dict) -> "AnnotationCandidate":
        rect = data.get("rect") or {}
        viewport = data.get("viewport") or {}
        section = data.get("section") or "other"
        return cls(
            annotation_id=str(data.get("id", "")),
            tag=(data.get("tag") or "").lower(),
            font_family=data.get("fontFamily") or "",
            text=data.get("text") or "",
            text_length=int(data.get("textLength") or len(data.get("text") or "")),
            font_size=float(data.get("fontSize") or 0),
            parent_tag=(data.get("parentTag") or "none").lower(),
            bounding_box=BoundingBox(
                x=float(rect.get("x", 0)), y=float(rect.get("y", 0)),
                width=float(rect.get("width", 0)), height=float(rect.get("height", 0)),
            ),
            viewport_width=float(viewport.get("width") or 0),
            viewport_height=float(viewport.get("height") or 0),
            section=section if section in SECTIONS else "other",
        )


def score_candidate(candidate: AnnotationCandidate, priorities: Optional[AnnotationPriorities] = None) -> int:
    p = priorities or AnnotationPriorities()
    score = p.base
    tag = candidate.tag
    box = candidate.bounding_box

    if len(tag) == 2 and tag[0] == "h" and tag[1] in "123456":
        score += p.heading_max_bonus - int(tag[1])
    if tag in SEMANTIC_TAGS:
        score += p.semantic_tag_bonus

    if box.area > p.large_area_threshold:
        score += p.large_area_bonus
    if box.y < candidate.viewport_height:
        score += p.first_viewport_bonus
        if box.y < candidate.viewport_height / 2:
            score += p.above_fold_bonus
    else:
        score += p.deep_section_bonus

    if candidate.text_length > p.long_text_threshold:
        score += p.long_text_bonus
    if candidate.text_length < p.short_text_threshold:
        score -= p.short_text_penalty

    if box.x < candidate.viewport_width / 3:
        score += p.left_column_bonus

    lowered = candidate.text.lower()
    if any(generic in lowered for generic in GENERIC_TEXTS):
        score -= p.generic_text_penalty
    return score


def fingerprint(candidate: AnnotationCandidate, family: str) -> str:
    length = candidate.text_length
    text_category = "short" if length <= 10 else "medium" if length <= 30 else "long"
    size = int(candidate.font_size)
    size_category = "small" if size < 14 else "medium" if size <= 18 else "large"
    return f"{candidate.tag}-{family}-{text_category}-{size_category}-{candidate.parent_tag}"


def _sort_key(record: AnnotationRecord):
    return (-record.priority, int(record.annotation_id) if (record.annotation_id or "").isdigit() else 0)


def deduplicate_candidates(records: list[tuple[str, AnnotationRecord]]) -> list[AnnotationRecord]:
    """Keep the highest-priority record per fingerprint. Input is (fingerprint, record)."""
    best: dict[str, AnnotationRecord] = {}
    for fp, record in records:
        kept = best.get(fp)
        if kept is None or _sort_key(record) < _sort_key(kept):
            best[fp] = record
    return sorted(best.values(), key=_sort_key)


def select_annotations(records: list[AnnotationRecord], max_annotations: int) -> list[AnnotationRecord]:
    """
    One representative per non-empty section first (best priority in that
    section), then the rest by global priority, never more than max_annotations.
    """
    if max_annotations <= 0:
        return []
    ranked = sorted(records, key=_sort_key)

    selected: list[AnnotationRecord] = []
    for section in SECTIONS:
        representative = next((r for r in ranked if r.section == section), None)
        if representative is not None:
            selected.append(representative)

    if len(selected) > max_annotations:
        selected = sorted(selected, key=_sort_key)[:max_annotations]

    chosen = {id(r) for r in selected}
    for record in ranked:
        if len(selected) >= max_annotations:
            break
        if id(record) not in chosen:
            selected.append(record)
            chosen.add(id(record))
    return sorted(selected, key=_sort_key)


def assign_colors(families: list[str], assignments: Optional[dict[str, str]] = None) -> dict[str, str]:
    """First-seen order from the fixed palette, wrapping when exhausted."""
    assignments = assignments if assignments is not None else {}
    for family in families:
        if family not in assignments:
            assignments[family] = PALETTE[len(assignments) % len(PALETTE)]
    return assignments


def annotatable_groups(groups: list[CanonicalFontGroup]) -> list[CanonicalFontGroup]:
    """Groups worth labelling: in use, and not a plain system font with nothing downloaded."""
    return [
        g for g in groups
        if g.total_element_count > 0
        and not (is_system_font(g.canonical_family_name) and not g.downloaded_fonts)
    ]


def build_annotations(candidates: list[AnnotationCandidate], groups: list[CanonicalFontGroup],
                      matcher: FontNameMatcher, colors: dict[str, str],
                      priorities: Optional[AnnotationPriorities] = None,
                      max_annotations: int = 50) -> list[AnnotationRecord]:
    names = [
        (group.canonical_family_name, name)
        for group in groups
        for name in [group.canonical_family_name, *group.raw_family_names]
    ]

    scored: list[tuple[str, AnnotationRecord]] = []
    for candidate in candidates:
        family = primary_family(candidate.font_family)
        hit = matcher.best_match(family, names) if family else None
        if hit is None:
            continue
        canonical = hit[0]
        record = AnnotationRecord(
            canonical_family_name=canonical,
            color=colors[canonical],
            bounding_box=candidate.bounding_box,
            priority=score_candidate(candidate, priorities),
            section=candidate.section,
            text=candidate.text,
            annotation_id=candidate.annotation_id,
        )
        scored.append((fingerprint(candidate, canonical), record))

    unique = deduplicate_candidates(scored)
    selected = select_annotations(unique, max_annotations)
    logger.info("[annotate] %d candidates -> %d after dedup -> %d selected",
                len(scored), len(unique), len(selected))
    return selected


async def _evaluate(page, script: str, arg: dict):
    try:
        return await page.evaluate(script, arg)
    except Exception as e:
        raise AnnotationFailure(f"Could not add font annotations: {e}", details=str(e)) from e


async def _render_annotations(page, eligible: list[CanonicalFontGroup], context: InspectionContext) -> int:
    settings = context.settings
    colors = assign_colors([g.canonical_family_name for g in eligible], context.color_assignments)

    payload = await _evaluate(page, CANDIDATES_JS, {
        "tags": CANDIDATE_TAGS,
        "viewportMultiplier": settings.annotation_viewport_multiplier,
        "attr": ANNOTATION_ATTR,
    })
    try:
        candidates = [AnnotationCandidate.from_payload(item) for item in payload or []]
    except (AttributeError, TypeError, ValueError) as e:
        raise AnnotationFailure(f"Unreadable annotation candidates: {e}", details=payload) from e

    selected = build_annotations(candidates, eligible, context.matcher, colors,
                                 settings.annotation_priorities, settings.max_annotations)
    if not selected:
        return 0

    rendered = await _evaluate(page, RENDER_JS, {
        "annotations": [
            {"id": r.annotation_id, "label": r.canonical_family_name, "color": r.color}
            for r in selected
        ],
        "attr": ANNOTATION_ATTR,
    })
    return int(rendered or 0)


async def annotate_page(page, groups: list[CanonicalFontGroup], context: InspectionContext) -> int:
    """Draw the overlay. An AnnotationFailure is logged and counts as zero annotations."""
    eligible = annotatable_groups(groups)
    if not eligible:
        return 0
    try:
        return await _render_annotations(page, eligible, context)
    except AnnotationFailure as e:
        logger.error("[annotate] %s", e.message)
        return 0


async def _full_page_png(page) -> bytes:
    try:
        return await page.screenshot(full_page=True, type="png")
    except Exception as e:
        raise ScreenshotCaptureFailure(f"Full-page screenshot failed: {e}", details=str(e)) from e


async def capture_annotated_screenshots(page, groups: list[CanonicalFontGroup], context: InspectionContext,
                                        store: Optional[LocalScreenshotStore] = None) -> Optional[ScreenshotData]:
    """
    Original + annotated full-page PNGs, stored through ``store``.

    Returns None when screenshots were not requested, are disabled in this
    environment, or capture failed. Never raises.
    """
    settings, options = context.settings, context.options
    if not options.capture_screenshots:
        return None
    if not settings.enable_screenshots:
        logger.info("[annotate] Screenshot capture skipped: disabled in this environment")
        return None

    store = store or LocalScreenshotStore(settings.screenshot_dir)
    user_id = options.user_id or "anonymous"
    inspection_id = context.inspection_id

    try:
        dims = await page.evaluate(PAGE_DIMENSIONS_JS) or {}
        await page.wait_for_timeout(500)
        original = await _full_page_png(page)
        count = await annotate_page(page, groups, context)
        annotated = await _full_page_png(page)
    except ScreenshotCaptureFailure as e:
        logger.error("[annotate] %s", e.message)
        return None
    except Exception as e:
        logger.error("[annotate] Screenshot capture failed: %s", e)
        return None

    width, height = image_dimensions(original)
    if not width or not height:
        width, height = int(dims.get("width") or 0), int(dims.get("height") or 0)
    captured_at = datetime.now(timezone.utc)

    try:
        paths = await asyncio.to_thread(
            store.save_inspection_screenshots, user_id, inspection_id, original, annotated,
            {
                "url": context.url,
                "capturedAt": captured_at.isoformat(),
                "dimensions": {"width": width, "height": height},
                "annotationCount": count,
            },
        )
    except (OSError, ValueError) as e:
        logger.error("[annotate] Could not store screenshots: %s", e)
        return None

    logger.info("[annotate] Screenshots saved with %d annotations", count)
    return ScreenshotData(
        original=store.relative(paths.original),
        annotated=store.relative(paths.annotated),
        captured_at=captured_at,
        dimensions=Dimensions(width=width, height=height),
        annotation_count=count,
    )
