from pydantic import BaseModel
from pydantic_settings import BaseSettings
from functools import lru_cache
import json
import logging
import os
import tempfile

logger = logging.getLogger(__name__)

DEFAULT_ALIASES_PATH = os.path.join(os.path.dirname(__file__), "data", "font_aliases.json")


class AnnotationPriorities(BaseModel):
    """Additive scoring constants for annotation candidates (empirically tuned)."""
    base: int = 1
    heading_max_bonus: int = 15       # h1 gets 15 - 1, h2 gets 15 - 2, ...
    semantic_tag_bonus: int = 3
    large_area_bonus: int = 4
    large_area_threshold: int = 1000  # px^2
    first_viewport_bonus: int = 5
    above_fold_bonus: int = 2
    deep_section_bonus: int = 3       # keeps below-the-fold sections competitive
    left_column_bonus: int = 1
    long_text_bonus: int = 2
    long_text_threshold: int = 20
    short_text_penalty: int = 2
    short_text_threshold: int = 5
    generic_text_penalty: int = 3


class Settings(BaseSettings):
    supabase_url: str = ""
    supabase_key: str = ""

    # Browser
    chrome_path: str = ""
    browser_launch_timeout: int = 60000  # milliseconds
    page_load_timeout: int = 30000  # milliseconds
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    )

    # Whole run
    inspection_timeout: int = 120  # seconds

    # Load settling
    font_ready_timeout: int = 5000  # milliseconds
    animation_settle_timeout: int = 1000  # milliseconds
    media_load_timeout: int = 3000  # milliseconds
    lazy_load_max_attempts: int = 1
    lazy_load_probe_delay: int = 500  # milliseconds
    final_settle_delay: int = 500  # milliseconds
    settle_timeout: float = 20.0  # seconds, cap for the whole detector

    # Font matching
    min_substring_match_length: int = 4
    font_aliases_file: str = ""
    font_aliases: dict[str, str] = {}

    # Screenshots
    enable_screenshots: bool = False
    max_annotations: int = 50
    annotation_viewport_multiplier: float = 3.0
    annotation_priorities: AnnotationPriorities = AnnotationPriorities()
    screenshot_dir: str = os.path.join(tempfile.gettempdir(), "font-inspector-screenshots")

    class Config:
        # Look for .env in the repo root (two levels up from backend/app/)
        # In production, env vars are injected directly; .env is optional
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"
        extra = "ignore"


@lru_cache()
def get_settings():
    settings = Settings()
    if not settings.chrome_path:
        settings.chrome_path = os.environ.get("CHROME_PATH") or os.environ.get("GOOGLE_CHROME_BIN") or ""
    return settings


def _read_alias_file(path: str) -> dict:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Alias file {path} must contain a JSON object")
    return data


def load_font_aliases(settings: Settings | None = None) -> dict[str, str]:
    """
    Build the brand alias map used by the matcher.

    The bundled defaults are always loaded; a configured alias file and the
    inline ``font_aliases`` setting override them in that order. Keys and
    values are case-folded so lookups can use normalized names directly.
    """
    settings = settings or get_settings()
    merged: dict[str, str] = {}

    sources = [DEFAULT_ALIASES_PATH]
    if settings.font_aliases_file:
        sources.append(settings.font_aliases_file)

    for path in sources:
        try:
            merged.update(_read_alias_file(path))
        except (OSError, ValueError) as e:
            logger.warning("[config] Could not load font aliases from %s: %s", path, e)

    merged.update(settings.font_aliases)
    return {
        str(alias).strip().casefold(): str(canonical).strip().casefold()
        for alias, canonical in merged.items()
        if str(alias).strip() and str(canonical).strip()
    }
