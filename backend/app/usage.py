"""Counts which font families the rendered page actually uses for text."""

import logging

from app.errors import classify_navigation_error
from app.font_matching import primary_family
from app.models import ActiveFontUsage

logger = logging.getLogger(__name__)

SAMPLE_TEXT_LENGTH = 50

# Only elements that own a text node are counted, so a wrapper <div> does
# not inherit the count of every paragraph inside it.
ACTIVE_FONTS_JS = """
(sampleLength) => {
    const counts = new Map();
    const samples = {};

    const directText = (el) => {
        let text = '';
        for (const node of el.childNodes) {
            if (node.nodeType === Node.TEXT_NODE) text += node.textContent;
        }
        return text.trim();
    };

    for (const el of document.querySelectorAll('*')) {
        const text = directText(el);
        if (!text) continue;
        const fontFamily = window.getComputedStyle(el).fontFamily;
        if (!fontFamily) continue;
        const primary = fontFamily.split(',')[0].trim().replace(/["']/g, '');
        if (!primary) continue;
        counts.set(primary, (counts.get(primary) || 0) + 1);
        if (!(primary in samples)) samples[primary] = text.substring(0, sampleLength);
    }

    return Array.from(counts.entries()).map(([family, count]) => ({
        rawFamilyName: family,
        elementCount: count,
        sampleText: samples[family],
    }));
}
"""


def sort_usages(usages: list[ActiveFontUsage]) -> list[ActiveFontUsage]:
    return sorted(usages, key=lambda u: (-u.element_count, u.raw_family_name))


async def analyze_active_fonts(page) -> list[ActiveFontUsage]:
    """One ActiveFontUsage per distinct primary computed family, most used first."""
    try:
        raw = await page.evaluate(ACTIVE_FONTS_JS, SAMPLE_TEXT_LENGTH)
    except Exception as e:
        failure = classify_navigation_error(e)
        logger.error("[usage] Active font analysis failed: %s", failure.message)
        raise failure from e

    usages = []
    for item in raw or []:
        usage = ActiveFontUsage.model_validate(item)
        usage.raw_family_name = primary_family(usage.raw_family_name)
        if usage.raw_family_name:
            usages.append(usage)

    usages = sort_usages(usages)
    logger.info("[usage] Active fonts: %s",
                ", ".join(f"{u.raw_family_name} ({u.element_count})" for u in usages) or "none")
    return usages
