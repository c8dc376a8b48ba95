"""
Runs one font inspection end to end.

    browser session -> capture attach -> settle -> capture drain
      -> declarations -> active usage -> resolve -> (screenshots) -> result

The whole run is bounded by settings.inspection_timeout. Only launch and
navigation failures escape inspect(); every other stage degrades.
"""

import asyncio
import logging
import time
from typing import AsyncGenerator, Awaitable, Callable, Optional

from app.annotator import capture_annotated_screenshots
from app.browser import browser_session
from app.config import Settings, get_settings
from app.context import InspectionContext
from app.declarations import extract_font_face_declarations
from app.errors import InspectionError, InspectionTimeout, NavigationFailure
from app.load_detector import settle
from app.models import InspectionResult, InspectOptions
from app.network_capture import FontCapture, dedupe_fonts_by_file_name
from app.resolver import resolve_font_groups
from app.screenshot_store import LocalScreenshotStore
from app.sse_utils import ERROR, RESULT, WARNING, done_event, sse_event, step_event
from app.usage import analyze_active_fonts

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict], Awaitable[None]]


def normalize_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise NavigationFailure("A URL is required")
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url


async def _report(progress: Optional[ProgressCallback], stage: str, **data) -> None:
    if progress is None:
        return
    try:
        await progress(stage, data)
    except Exception as e:
        logger.warning("[inspect] Progress callback failed at %s: %s", stage, e)


async def _inspect_page(page, context: InspectionContext, store: Optional[LocalScreenshotStore],
                        progress: Optional[ProgressCallback]) -> InspectionResult:
    settings = context.settings
    capture = FontCapture(context)
    await capture.attach(page)

    await _report(progress, "loading", message=f"Loading {context.url}...")
    report = await settle(page, context.url, settings, fonts_captured=lambda: len(capture))
    await _report(progress, "settled", strategy=report.navigation_strategy,
                  timed_out=report.timed_out, summary=report.page_summary)

    downloaded = dedupe_fonts_by_file_name(await capture.drain())
    await _report(progress, "fonts_captured", count=len(downloaded))

    declarations = await extract_font_face_declarations(page, downloaded, settings)
    await _report(progress, "declarations", count=len(declarations))

    usages = await analyze_active_fonts(page)
    await _report(progress, "active_fonts", count=len(usages))

    groups = resolve_font_groups(downloaded, declarations, usages, context.matcher)
    await _report(progress, "resolved", groups=len(groups))

    screenshots = None
    if context.options.capture_screenshots:
        await _report(progress, "screenshots", message="Capturing screenshots...")
        screenshots = await capture_annotated_screenshots(page, groups, context, store)

    return InspectionResult(
        url=context.url,
        inspection_id=context.inspection_id,
        downloaded_fonts=downloaded,
        font_face_declarations=declarations,
        active_fonts=usages,
        font_groups=groups,
        screenshots=screenshots,
    )


async def _run(context: InspectionContext, store: Optional[LocalScreenshotStore],
               progress: Optional[ProgressCallback]) -> InspectionResult:
    async with browser_session(context.settings, context.cancel_event) as session:
        try:
            return await _inspect_page(session.page, context, store, progress)
        except asyncio.CancelledError:
            # Timeout or caller abort; the session cleanup reads this flag
            context.cancel_event.set()
            raise


async def inspect(url: str, options: Optional[InspectOptions] = None, settings: Optional[Settings] = None,
                  store: Optional[LocalScreenshotStore] = None,
                  progress: Optional[ProgressCallback] = None,
                  context: Optional[InspectionContext] = None) -> InspectionResult:
    """
    Inspect the fonts of one page.

    Raises BrowserLaunchFailure or NavigationFailure (InspectionTimeout when
    the outer timeout expires). The browser is released on every exit path.
    """
    settings = settings or get_settings()
    context = context or InspectionContext.create(normalize_url(url), options, settings)
    start = time.time()
    logger.info("[inspect] === INSPECTION START: %s (run %s) ===", context.url, context.run_id)

    try:
        result = await asyncio.wait_for(_run(context, store, progress), timeout=settings.inspection_timeout)
    except asyncio.TimeoutError as e:
        logger.error("[inspect] Inspection of %s timed out after %ss", context.url, settings.inspection_timeout)
        raise InspectionTimeout(settings.inspection_timeout) from e
    except asyncio.CancelledError:
        context.cancel_event.set()
        logger.info("[inspect] Inspection of %s cancelled", context.url)
        raise
    except InspectionError as e:
        logger.error("[inspect] Inspection of %s failed: %s", context.url, e.message)
        raise

    logger.info("[inspect] === INSPECTION DONE in %.1fs: %d files, %d declarations, %d groups ===",
                time.time() - start, len(result.downloaded_fonts),
                len(result.font_face_declarations), len(result.font_groups))
    return result


def error_payload(error: InspectionError, url: str) -> dict:
    return {
        "error": error.message,
        "details": error.details,
        "cause": getattr(getattr(error, "cause", None), "value", None),
        "url": url,
    }


async def inspect_streaming(url: str, options: Optional[InspectOptions] = None,
                            settings: Optional[Settings] = None,
                            store: Optional[LocalScreenshotStore] = None) -> AsyncGenerator[str, None]:
    """inspect() with progress as server-sent events, saving the result when a database is configured."""
    try:
        url = normalize_url(url)
    except NavigationFailure as e:
        yield sse_event(ERROR, error_payload(e, url))
        yield done_event(None, e.message)
        return

    options = options or InspectOptions()
    queue: asyncio.Queue = asyncio.Queue()

    async def progress(stage: str, data: dict) -> None:
        await queue.put(step_event(stage, **data))

    yield step_event("starting", message=f"Inspecting {url}...")
    task = asyncio.create_task(inspect(url, options, settings, store, progress))

    getter = None
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
                continue
            getter.cancel()
            break
        while not queue.empty():
            yield queue.get_nowait()
    finally:
        # A client disconnect closes the generator while both tasks may be pending
        if getter is not None and not getter.done():
            getter.cancel()
        if not task.done():
            task.cancel()

    try:
        result = task.result()
    except InspectionError as e:
        yield sse_event(ERROR, error_payload(e, url))
        yield done_event(None, e.message)
        return
    except Exception as e:
        logger.exception("[inspect] Unexpected failure inspecting %s", url)
        yield sse_event(ERROR, {"error": f"Inspection failed: {e}", "url": url})
        yield done_event(None, str(e))
        return

    inspection_id = result.inspection_id
    try:
        from app.database import save_inspection
        record = await save_inspection(result, user_id=options.user_id, project_id=options.project_id)
        inspection_id = record.get("id") or inspection_id
    except Exception as e:
        logger.info("[inspect] DB skip: %s", e)
        yield sse_event(WARNING, {"message": f"DB skip: {e}"})

    yield sse_event(RESULT, {"inspection_id": inspection_id, "result": result.to_json_dict()})
    yield done_event(inspection_id)
