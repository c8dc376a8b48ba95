from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel

from app.config import get_settings
from app.errors import BrowserLaunchFailure, InspectionError
from app.inspector import error_payload, inspect, inspect_streaming, normalize_url
from app.models import InspectOptions
from app.screenshot_store import LocalScreenshotStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    settings = get_settings()
    logger.info("[startup] Screenshots %s, storing under %s",
                "enabled" if settings.enable_screenshots else "disabled", settings.screenshot_dir)
    yield


app = FastAPI(title="Font Inspector API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class InspectRequest(BaseModel):
    url: str
    capture_screenshots: bool = False
    user_id: str | None = None
    project_id: str | None = None
    save: bool = True


def _options(request: InspectRequest) -> InspectOptions:
    return InspectOptions(
        capture_screenshots=request.capture_screenshots,
        user_id=request.user_id,
        project_id=request.project_id,
    )


def _store() -> LocalScreenshotStore:
    return LocalScreenshotStore(get_settings().screenshot_dir)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Font inspector is running"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/inspect")
async def inspect_endpoint(request: InspectRequest):
    """Inspect the fonts of a single page."""
    try:
        url = normalize_url(request.url)
        result = await inspect(url, _options(request), settings=get_settings(), store=_store())
    except BrowserLaunchFailure as e:
        return JSONResponse(status_code=503, content=error_payload(e, request.url))
    except InspectionError as e:
        return JSONResponse(status_code=422, content=error_payload(e, request.url))
    except Exception as e:
        logger.exception("[inspect] Unexpected failure for %s", request.url)
        raise HTTPException(status_code=500, detail=f"Inspection failed: {str(e)}")

    payload = {"inspection_id": result.inspection_id, "result": result.to_json_dict()}
    if request.save:
        try:
            from app.database import save_inspection
            record = await save_inspection(result, user_id=request.user_id, project_id=request.project_id)
            payload["inspection_id"] = record.get("id") or result.inspection_id
        except Exception as e:
            logger.info("[inspect] DB skip: %s", e)
            payload["warning"] = f"DB skip: {e}"
    return payload


@app.post("/inspect/stream")
async def inspect_stream(request: InspectRequest):
    """Inspect with real-time streaming progress via SSE."""

    async def event_stream():
        async for event in inspect_streaming(request.url, _options(request), settings=get_settings(),
                                             store=_store()):
            yield event

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "Access-Control-Allow-Origin": "*",
        },
    )


@app.get("/inspections")
async def list_inspections(limit: int = 20, project_id: str | None = None):
    """List recent inspections from Supabase."""
    try:
        from app.database import get_inspections
        inspections = await get_inspections(limit=min(limit, 50), project_id=project_id)
        return {"inspections": inspections}
    except Exception as e:
        return {"inspections": [], "error": str(e)}


@app.get("/inspections/{inspection_id}")
async def get_inspection_detail(inspection_id: str):
    """Get full details of an inspection from Supabase."""
    try:
        from app.database import get_inspection
        inspection = await get_inspection(inspection_id)
        if not inspection:
            raise HTTPException(status_code=404, detail="Inspection not found")
        return inspection
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.delete("/inspections/{inspection_id}")
async def delete_inspection_endpoint(inspection_id: str, user_id: str | None = None):
    """Delete an inspection and, when the owner is given, its local screenshots."""
    response = {"status": "deleted"}
    try:
        from app.database import delete_inspection
        await delete_inspection(inspection_id)
    except Exception as e:
        logger.info("[inspections] DB skip: %s", e)
        response["warning"] = f"DB skip: {e}"

    if user_id:
        try:
            response["screenshots_deleted"] = _store().delete(user_id, inspection_id)
        except (OSError, ValueError) as e:
            raise HTTPException(status_code=500, detail=str(e))
    return response


@app.get("/screenshots/{user_id}/{inspection_id}/{kind}")
async def get_screenshot(user_id: str, inspection_id: str, kind: str):
    """Serve a stored screenshot: original, annotated or preview."""
    try:
        paths = _store().paths_for(user_id, inspection_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    path = {"original": paths.original, "annotated": paths.annotated, "preview": paths.preview}.get(kind)
    if path is None:
        raise HTTPException(status_code=400, detail="kind must be original, annotated or preview")
    if not os.path.exists(path):
        raise HTTPException(status_code=404, detail="Screenshot not found")
    return FileResponse(path, media_type="image/jpeg" if kind == "preview" else "image/png")
