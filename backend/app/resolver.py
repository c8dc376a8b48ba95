"""
Font identity resolver.

Reconciles the three observations of a page's fonts into canonical groups:

    active usages   -> define the groups (every usage lands in exactly one)
    declarations    -> join the group whose usage names they best match
    downloaded files-> join exactly one group, by embedded metadata name,
                       by the src URLs of the group's declarations, or by
                       file name, whichever match is most specific

Every choice is ranked by (strategy, evidence, group key), so the result does
not depend on the order the inputs were observed in.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from app.font_matching import FontNameMatcher, MatchStrategy, compound_form, extract_source_urls, urls_match
from app.models import ActiveFontUsage, CanonicalFontGroup, DownloadedFontResource, FontFaceDeclaration
from app.network_capture import dedupe_fonts_by_file_name

logger = logging.getLogger(__name__)

# Evidence for a downloaded file, most authoritative first
EVIDENCE_METADATA = 0
EVIDENCE_SOURCE_URL = 1
EVIDENCE_FILE_NAME = 2


@dataclass
class _Bucket:
    key: str
    usages: list[ActiveFontUsage] = field(default_factory=list)
    declarations: list[FontFaceDeclaration] = field(default_factory=list)
    fonts: list[DownloadedFontResource] = field(default_factory=list)

    def names(self) -> list[str]:
        return [u.raw_family_name for u in self.usages] or [d.family_name for d in self.declarations]


def _group_key(matcher: FontNameMatcher, raw: str) -> str:
    return compound_form(matcher.canonical(raw))


def _candidates(buckets: dict[str, _Bucket]) -> Iterable[tuple[str, str]]:
    for key in sorted(buckets):
        for name in buckets[key].names():
            yield key, name


def _best_bucket(matcher: FontNameMatcher, name: Optional[str],
                 buckets: dict[str, _Bucket]) -> Optional[tuple[str, MatchStrategy]]:
    if not name:
        return None
    return matcher.best_match(name, _candidates(buckets))


def _rank_font(matcher: FontNameMatcher, font: DownloadedFontResource,
               buckets: dict[str, _Bucket]) -> Optional[tuple[MatchStrategy, int, str]]:
    """Best (strategy, evidence, key) for a downloaded file, or None."""
    ranked: list[tuple[MatchStrategy, int, str]] = []

    meta = font.metadata
    if meta:
        for name in (meta.font_family, meta.font_name):
            hit = _best_bucket(matcher, name, buckets)
            if hit:
                ranked.append((hit[1], EVIDENCE_METADATA, hit[0]))

    for key, bucket in buckets.items():
        for decl in bucket.declarations:
            if any(urls_match(font.source_url, u) for u in extract_source_urls(decl.source_descriptor)):
                ranked.append((MatchStrategy.EXACT, EVIDENCE_SOURCE_URL, key))
                break

    hit = _best_bucket(matcher, font.file_name, buckets)
    if hit:
        ranked.append((hit[1], EVIDENCE_FILE_NAME, hit[0]))

    return min(ranked) if ranked else None


def _canonical_name(bucket: _Bucket) -> str:
    for font in bucket.fonts:
        if font.metadata and font.metadata.font_family:
            return font.metadata.font_family
    if bucket.declarations:
        return min(d.family_name for d in bucket.declarations)
    if bucket.usages:
        top = min(bucket.usages, key=lambda u: (-u.element_count, u.raw_family_name))
        return top.raw_family_name
    return bucket.key


def resolve_font_groups(downloaded: list[DownloadedFontResource],
                        declarations: list[FontFaceDeclaration],
                        usages: list[ActiveFontUsage],
                        matcher: Optional[FontNameMatcher] = None) -> list[CanonicalFontGroup]:
    matcher = matcher or FontNameMatcher()
    fonts = dedupe_fonts_by_file_name(downloaded)

    # 1. Usages define the groups
    buckets: dict[str, _Bucket] = {}
    for usage in sorted(usages, key=lambda u: (u.raw_family_name, u.element_count)):
        key = _group_key(matcher, usage.raw_family_name) or usage.raw_family_name
        buckets.setdefault(key, _Bucket(key)).usages.append(usage)

    # 2. Declarations join the best-matching usage group
    orphan_dynamic: dict[str, _Bucket] = {}
    unmatched_declarations = 0
    usage_keys = dict(buckets)
    for decl in sorted(declarations, key=lambda d: (d.family_name, d.source_descriptor,
                                                    d.weight or "", d.style or "", d.is_dynamic)):
        hit = _best_bucket(matcher, decl.family_name, usage_keys)
        if hit:
            buckets[hit[0]].declarations.append(decl)
        elif decl.is_dynamic:
            # A script-served family is still evidence of a font in use
            key = _group_key(matcher, decl.family_name) or decl.family_name
            orphan_dynamic.setdefault(key, _Bucket(key)).declarations.append(decl)
        else:
            unmatched_declarations += 1
    for key, bucket in orphan_dynamic.items():
        if key in buckets:
            buckets[key].declarations.extend(bucket.declarations)
        else:
            buckets[key] = bucket

    # 3. Each downloaded file joins exactly one group
    unmatched_fonts = 0
    for font in fonts:
        ranked = _rank_font(matcher, font, buckets)
        if ranked is None:
            unmatched_fonts += 1
            continue
        strategy, evidence, key = ranked
        buckets[key].fonts.append(font)
        logger.debug("[resolver] %s -> %s (%s, evidence %d)", font.file_name, key, strategy.name.lower(), evidence)

    # 4. Totals and percentages once every assignment is final
    total = sum(u.element_count for u in usages)
    groups = []
    for key in sorted(buckets):
        bucket = buckets[key]
        count = sum(u.element_count for u in bucket.usages)
        groups.append(CanonicalFontGroup(
            canonical_family_name=_canonical_name(bucket),
            usages=sorted(bucket.usages, key=lambda u: (-u.element_count, u.raw_family_name)),
            downloaded_fonts=bucket.fonts,
            declarations=bucket.declarations,
            total_element_count=count,
            usage_percentage=(count / total * 100) if total else 0.0,
            is_dynamic=any(d.is_dynamic for d in bucket.declarations) and not bucket.fonts,
        ))

    groups.sort(key=lambda g: (-g.total_element_count, g.canonical_family_name.casefold(),
                               g.canonical_family_name))
    logger.info("[resolver] %d canonical groups (%d files, %d declarations unmatched)",
                len(groups), unmatched_fonts, unmatched_declarations)
    return groups
