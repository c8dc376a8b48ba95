"""
Font name normalization and matching.

The three observations of a font (file name, @font-face family, computed
font-family) rarely agree on spelling: "Roboto-Regular.woff2", "'Roboto'",
"roboto" and "NanumGothic" / "Nanum Gothic" all need to land together.
Everything here is pure and run-scoped: a FontNameMatcher is created per
inspection and its cache dies with it.
"""

import re
from enum import IntEnum
from typing import Iterable, Optional
from urllib.parse import urlparse

FONT_EXTENSION_RE = re.compile(r"\.(woff2?|ttf|otf|eot)$", re.IGNORECASE)
URL_IN_SRC_RE = re.compile(r"url\(\s*['\"]?([^'\")\s]+)['\"]?\s*\)", re.IGNORECASE)
GOOGLE_FONTS_PATH_RE = re.compile(r"^/s/([^/]+)/([^/]+)/")

# A token made only of weight/style words (also glued forms like "bolditalic")
STYLE_TOKEN_RE = re.compile(
    r"^(?:semi|demi|extra|ultra|bold|light|black|thin|medium|regular|heavy|book|"
    r"normal|hairline|roman|italic|oblique|variable|webfont|web|subset|vf)+$"
)
NUMERIC_TOKEN_RE = re.compile(r"^\d+$")
CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
SEPARATOR_RE = re.compile(r"[\s\-_.+]+")

# Words too common across families to prove a match on their own
GENERIC_WORDS = {
    "sans", "serif", "mono", "pro", "display", "text", "std", "neue", "new",
    "font", "fonts", "ui", "system", "the", "regular", "web",
}

SYSTEM_FONTS = {
    "-apple-system", "system-ui", "blinkmacsystemfont", "segoe ui",
    "helvetica neue", "arial", "sans-serif", "apple color emoji",
    "segoe ui emoji", "segoe ui symbol", "times", "times new roman", "serif",
    "courier", "courier new", "monospace", "georgia", "palatino", "book antiqua",
    "trebuchet ms", "lucida grande", "helvetica", "verdana", "tahoma",
}


class MatchStrategy(IntEnum):
    """Lower value = more specific."""
    EXACT = 0
    ALIAS = 1
    COMPOUND = 2
    SUBSTRING = 3
    WORD_SET = 4


def strip_quotes(value: str) -> str:
    return (value or "").replace('"', "").replace("'", "").strip()


def primary_family(font_family: str) -> str:
    """First entry of a computed font-family list, unquoted."""
    return strip_quotes((font_family or "").split(",")[0])


def file_name_from_url(url: str) -> str:
    path = urlparse(url).path if "://" in url else url.split("?")[0].split("#")[0]
    return path.rstrip("/").split("/")[-1]


def normalize_font_name(raw: str) -> str:
    """
    Reduce any font identifier to a comparable family key.

    "Roboto-Regular.woff2" -> "roboto", "'Open Sans'" -> "open sans",
    "NanumGothic-Bold" -> "nanum gothic", "Inter-Variable-400" -> "inter".
    """
    name = strip_quotes(raw)
    if not name:
        return ""
    if "/" in name or "?" in name:
        name = file_name_from_url(name)
    name = FONT_EXTENSION_RE.sub("", name)
    name = CAMEL_BOUNDARY_RE.sub(" ", name)
    tokens = [t for t in SEPARATOR_RE.split(name.casefold()) if t]
    if not tokens:
        return ""

    # Weight/style words end the family part; the first token always stays
    for i, token in enumerate(tokens[1:], start=1):
        if STYLE_TOKEN_RE.match(token):
            tokens = tokens[:i]
            break

    while len(tokens) > 1 and NUMERIC_TOKEN_RE.match(tokens[-1]):
        tokens.pop()

    return " ".join(tokens)


def compound_form(normalized: str) -> str:
    return normalized.replace(" ", "")


def significant_words(normalized: str) -> set[str]:
    return {w for w in normalized.split() if len(w) >= 3 and w not in GENERIC_WORDS}


def is_system_font(family: str) -> bool:
    return strip_quotes(family).casefold() in SYSTEM_FONTS


class FontNameMatcher:
    """
    Applies the matching strategies in order of specificity.

    One instance lives for one inspection run; ``aliases`` maps an alias
    name to its published family name (both are normalized on the way in).
    """

    def __init__(self, aliases: Optional[dict[str, str]] = None, min_substring_length: int = 4):
        self.min_substring_length = min_substring_length
        self._cache: dict[str, str] = {}
        self.aliases: dict[str, str] = {}
        for alias, canonical in (aliases or {}).items():
            key, value = self.normalize(alias), self.normalize(canonical)
            if key and value:
                self.aliases[key] = value
                self.aliases.setdefault(compound_form(key), value)

    def normalize(self, raw: str) -> str:
        if raw not in self._cache:
            self._cache[raw] = normalize_font_name(raw)
        return self._cache[raw]

    def canonical(self, raw: str) -> str:
        """Normalized name with brand aliases applied."""
        normalized = self.normalize(raw)
        return self.aliases.get(normalized) or self.aliases.get(compound_form(normalized)) or normalized

    def match(self, a: str, b: str) -> Optional[MatchStrategy]:
        na, nb = self.normalize(a), self.normalize(b)
        if not na or not nb:
            return None
        if na == nb:
            return MatchStrategy.EXACT
        if self.canonical(a) == self.canonical(b):
            return MatchStrategy.ALIAS

        ca, cb = compound_form(na), compound_form(nb)
        if ca == cb:
            return MatchStrategy.COMPOUND

        shorter, longer = (ca, cb) if len(ca) <= len(cb) else (cb, ca)
        if len(shorter) >= self.min_substring_length and shorter in longer:
            return MatchStrategy.SUBSTRING

        if significant_words(na) & significant_words(nb):
            return MatchStrategy.WORD_SET
        return None

    def best_match(self, name: str, candidates: Iterable[tuple[str, str]]) -> Optional[tuple[str, MatchStrategy]]:
        """
        Pick the most specific match among ``(key, candidate_name)`` pairs.

        Ties on strategy go to the smallest key, so the outcome never depends
        on the order candidates were observed in.
        """
        best: Optional[tuple[str, MatchStrategy]] = None
        for key, candidate in candidates:
            strategy = self.match(name, candidate)
            if strategy is None:
                continue
            if best is None or (strategy, key) < (best[1], best[0]):
                best = (key, strategy)
        return best


# ---------------------------------------------------------------------------
# @font-face src URLs
# ---------------------------------------------------------------------------

def extract_source_urls(source_descriptor: str) -> list[str]:
    """All url(...) targets in an @font-face src value, data: URIs excluded."""
    return [
        u for u in URL_IN_SRC_RE.findall(source_descriptor or "")
        if u and not u.startswith("data:")
    ]


def urls_match(downloaded_url: str, css_url: str) -> bool:
    """
    Does a captured font URL correspond to a url() in a src descriptor?

    Handles relative CSS URLs, Google Fonts family/version paths and
    same-host services that vary only the trailing segments.
    """
    if not downloaded_url or not css_url:
        return False
    if downloaded_url == css_url:
        return True

    downloaded = urlparse(downloaded_url)
    css = urlparse(css_url)

    if downloaded.netloc and css.netloc:
        if downloaded.hostname != css.hostname:
            return False
        if downloaded.path == css.path:
            return True
        if downloaded.hostname == "fonts.gstatic.com":
            dm = GOOGLE_FONTS_PATH_RE.match(downloaded.path)
            cm = GOOGLE_FONTS_PATH_RE.match(css.path)
            return bool(dm and cm and dm.groups() == cm.groups())
        return _common_path_prefix(downloaded.path, css.path) >= 2 and \
            file_name_from_url(downloaded_url) == file_name_from_url(css_url)

    # Relative url() in CSS: compare whole trailing path segments, then file name
    css_path = css.path.lstrip("./")
    if css_path and downloaded.path.endswith("/" + css_path):
        return True
    d_name, c_name = file_name_from_url(downloaded_url), file_name_from_url(css_url)
    return bool(d_name) and d_name == c_name


def _common_path_prefix(a: str, b: str) -> int:
    a_parts = [s for s in a.split("/") if s]
    b_parts = [s for s in b.split("/") if s]
    common = 0
    for x, y in zip(a_parts, b_parts):
        if x != y:
            break
        common += 1
    return common
