"""
Decides when a page is settled enough to inspect.

Navigation first (network idle, falling back to lighter wait conditions),
then two phases of in-page probes run side by side:

    phase 1: document.fonts.ready        +  CSS animations/transitions ending
    phase 2: <img>/<video> loading        +  lazy-load scroll probe

and a short fixed delay. Every probe has its own timeout both inside the page
and on the Python side, and the whole detector is capped by settle_timeout,
so a page with an infinite animation still returns on time.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.config import Settings
from app.errors import NavigationCause, NavigationFailure, classify_navigation_error

logger = logging.getLogger(__name__)

# (wait_until, share of page_load_timeout)
NAVIGATION_STRATEGIES = [
    ("networkidle", 1.0),
    ("load", 0.75),
    ("domcontentloaded", 0.5),
]

# Grace on top of an in-page timeout before Python gives up on the evaluate call
PROBE_GRACE_SECONDS = 1.0


# ---------------------------------------------------------------------------
# In-page probes
# ---------------------------------------------------------------------------

FONTS_READY_JS = """
() => new Promise((resolve) => {
    if (!('fonts' in document)) {
        resolve('unsupported');
        return;
    }
    document.fonts.ready
        .then(() => resolve('ready'))
        .catch(() => resolve('failed'));
})
"""

ANIMATIONS_SETTLED_JS = """
(timeoutMs) => new Promise((resolve) => {
    const done = (state, count) => resolve({ state, count });

    // Web Animations API sees CSS animations and transitions that are actually running
    if (typeof document.getAnimations === 'function') {
        const running = document.getAnimations().filter(a => a.playState === 'running');
        if (running.length === 0) {
            done('none', 0);
            return;
        }
        const timer = setTimeout(() => done('timeout', running.length), timeoutMs);
        Promise.all(running.map(a => a.finished.catch(() => null))).then(() => {
            clearTimeout(timer);
            done('finished', running.length);
        });
        return;
    }

    const animated = Array.from(document.querySelectorAll('*')).filter(el => {
        const style = window.getComputedStyle(el);
        return style.animationName !== 'none';
    });
    if (animated.length === 0) {
        done('none', 0);
        return;
    }
    let completed = 0;
    const timer = setTimeout(() => done('timeout', animated.length), timeoutMs);
    const onEnd = () => {
        completed++;
        if (completed >= animated.length) {
            clearTimeout(timer);
            done('finished', animated.length);
        }
    };
    animated.forEach(el => {
        el.addEventListener('animationend', onEnd, { once: true });
        el.addEventListener('transitionend', onEnd, { once: true });
    });
})
"""

MEDIA_LOADED_JS = """
(timeoutMs) => new Promise((resolve) => {
    const media = [
        ...Array.from(document.querySelectorAll('img')),
        ...Array.from(document.querySelectorAll('video')),
    ];
    const total = media.length;
    if (total === 0) {
        resolve({ state: 'none', total: 0, loaded: 0 });
        return;
    }
    let loaded = 0;
    let finished = false;
    const timer = setTimeout(() => {
        finished = true;
        resolve({ state: 'timeout', total, loaded });
    }, timeoutMs);
    const onDone = () => {
        loaded++;
        if (!finished && loaded >= total) {
            finished = true;
            clearTimeout(timer);
            resolve({ state: 'loaded', total, loaded });
        }
    };
    media.forEach(el => {
        if (el instanceof HTMLImageElement) {
            if (el.complete) {
                onDone();
            } else {
                el.addEventListener('load', onDone, { once: true });
                el.addEventListener('error', onDone, { once: true });
            }
        } else if (el.readyState >= 2) {
            onDone();
        } else {
            el.addEventListener('loadeddata', onDone, { once: true });
            el.addEventListener('error', onDone, { once: true });
        }
    });
})
"""

LAZY_LOAD_PROBE_JS = """
async ({ maxAttempts, delayMs }) => {
    const initialHeight = document.body ? document.body.scrollHeight : 0;
    let lastHeight = initialHeight;
    let attempts = 0;
    while (attempts < maxAttempts) {
        window.scrollTo(0, document.body.scrollHeight);
        await new Promise(r => setTimeout(r, delayMs));
        attempts++;
        const newHeight = document.body.scrollHeight;
        if (newHeight <= lastHeight) break;
        lastHeight = newHeight;
    }
    window.scrollTo(0, 0);
    return { initialHeight, finalHeight: lastHeight, attempts, grew: lastHeight > initialHeight };
}
"""

PAGE_SUMMARY_JS = """
() => ({
    images: document.querySelectorAll('img').length,
    videos: document.querySelectorAll('video').length,
    scripts: document.querySelectorAll('script').length,
    stylesheets: document.querySelectorAll('link[rel="stylesheet"], style').length,
    textLength: document.body ? (document.body.innerText || '').length : 0,
    pageHeight: Math.max(
        document.documentElement.scrollHeight,
        document.body ? document.body.scrollHeight : 0
    ),
})
"""


@dataclass
class SettleReport:
    navigation_strategy: Optional[str] = None
    probes: dict[str, Any] = field(default_factory=dict)
    timed_out: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    page_summary: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

async def navigate(page, url: str, settings: Settings,
                   fonts_captured: Callable[[], int] = lambda: 0) -> str:
    """
    Load ``url``, preferring network idle and relaxing the wait condition on timeout.

    Connection-level errors (DNS, refused, TLS ...) fail immediately. If every
    strategy times out but fonts were already captured, the page is usable.
    """
    last_error: Optional[BaseException] = None
    for wait_until, share in NAVIGATION_STRATEGIES:
        timeout = int(settings.page_load_timeout * share)
        try:
            logger.info("[settle] Navigating to %s (wait_until=%s, timeout=%dms)", url, wait_until, timeout)
            await page.goto(url, wait_until=wait_until, timeout=timeout)
            return wait_until
        except Exception as e:
            failure = classify_navigation_error(e)
            if failure.cause != NavigationCause.TIMEOUT:
                raise failure from e
            last_error = e
            logger.warning("[settle] Navigation with %s failed: %s", wait_until, e)
            captured = fonts_captured()
            if captured:
                logger.info("[settle] Proceeding anyway, %d fonts already captured", captured)
                return f"{wait_until}-partial"

    raise classify_navigation_error(last_error) from last_error


# ---------------------------------------------------------------------------
# Settling
# ---------------------------------------------------------------------------

async def _probe(page, name: str, script: str, arg: Any, timeout_ms: int, report: SettleReport) -> None:
    try:
        if arg is None:
            call = page.evaluate(script)
        else:
            call = page.evaluate(script, arg)
        result = await asyncio.wait_for(call, timeout=timeout_ms / 1000 + PROBE_GRACE_SECONDS)
        report.probes[name] = result
        if isinstance(result, dict) and result.get("state") == "timeout":
            report.timed_out.append(name)
    except asyncio.TimeoutError:
        report.timed_out.append(name)
        logger.info("[settle] %s probe timed out, continuing", name)
    except Exception as e:
        report.failed.append(name)
        logger.warning("[settle] %s probe failed (continuing): %s", name, e)


async def _run_phases(page, settings: Settings, report: SettleReport) -> None:
    logger.info("[settle] Phase 1: font readiness + animation settling")
    await asyncio.gather(
        _probe(page, "fonts", FONTS_READY_JS, None, settings.font_ready_timeout, report),
        _probe(page, "animations", ANIMATIONS_SETTLED_JS, settings.animation_settle_timeout,
               settings.animation_settle_timeout, report),
    )

    logger.info("[settle] Phase 2: media loading + lazy-load probe")
    lazy_budget = settings.lazy_load_max_attempts * settings.lazy_load_probe_delay
    await asyncio.gather(
        _probe(page, "media", MEDIA_LOADED_JS, settings.media_load_timeout,
               settings.media_load_timeout, report),
        _probe(page, "lazy_load", LAZY_LOAD_PROBE_JS,
               {"maxAttempts": settings.lazy_load_max_attempts, "delayMs": settings.lazy_load_probe_delay},
               lazy_budget, report),
    )

    await page.wait_for_timeout(settings.final_settle_delay)


async def wait_for_page_settled(page, settings: Settings, report: Optional[SettleReport] = None) -> SettleReport:
    """Block until the page looks stable or settle_timeout elapses. Never raises for slow pages."""
    report = report or SettleReport()
    try:
        await asyncio.wait_for(_run_phases(page, settings, report), timeout=settings.settle_timeout)
    except asyncio.TimeoutError:
        report.timed_out.append("settle")
        logger.warning("[settle] Page did not settle within %.1fs, inspecting anyway", settings.settle_timeout)
    return report


async def settle(page, url: str, settings: Settings,
                 fonts_captured: Callable[[], int] = lambda: 0) -> SettleReport:
    """Navigate, wait for the page to settle, and summarize what loaded."""
    report = SettleReport()
    report.navigation_strategy = await navigate(page, url, settings, fonts_captured)
    await wait_for_page_settled(page, settings, report)

    # The page must still be scriptable after settling; a destroyed context is fatal
    try:
        report.page_summary = await page.evaluate(PAGE_SUMMARY_JS) or {}
    except Exception as e:
        raise NavigationFailure(
            "Website loading failed during content analysis (possibly due to JavaScript errors)",
            cause=NavigationCause.SCRIPT_EVALUATION,
            details=str(e),
        ) from e

    logger.info("[settle] Page settled: %s (timed out: %s)", report.page_summary, report.timed_out or "none")
    return report
