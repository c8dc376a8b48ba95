"""
Supabase client for inspection record CRUD.
"""

from typing import Optional

from app.config import get_settings
from app.models import InspectionResult

TABLE = "inspections"


def _get_client():
    """Get a Supabase client. Raises if credentials are missing."""
    settings = get_settings()
    url = settings.supabase_url
    key = settings.supabase_key
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in .env")
    from supabase import create_client
    return create_client(url, key)


def inspection_record(result: InspectionResult, user_id: Optional[str] = None,
                      project_id: Optional[str] = None) -> dict:
    """Row shape for an inspection, keyed by the run's inspection id when it has one."""
    data = result.to_json_dict()
    row = {
        "url": result.url,
        "user_id": user_id,
        "project_id": project_id,
        "downloaded_fonts": data["downloadedFonts"],
        "font_face_declarations": data["fontFaceDeclarations"],
        "active_fonts": data["activeFonts"],
        "font_groups": data["fontGroups"],
        "screenshots": data["screenshots"],
        "inspected_at": data["inspectedAt"],
    }
    if result.inspection_id:
        row["id"] = result.inspection_id
    return row


async def save_inspection(result: InspectionResult, user_id: Optional[str] = None,
                          project_id: Optional[str] = None) -> dict:
    """Insert an inspection record. Returns the inserted row."""
    client = _get_client()
    response = client.table(TABLE).insert(inspection_record(result, user_id, project_id)).execute()
    return response.data[0] if response.data else {}


async def get_inspections(limit: int = 20, project_id: Optional[str] = None) -> list:
    """Get recent inspections."""
    client = _get_client()
    query = (
        client.table(TABLE)
        .select("id, url, user_id, project_id, font_groups, screenshots, inspected_at, created_at")
    )
    if project_id:
        query = query.eq("project_id", project_id)
    response = query.order("created_at", desc=True).limit(limit).execute()
    return response.data


async def get_inspection(inspection_id: str) -> dict:
    """Get a single inspection by ID."""
    client = _get_client()
    response = (
        client.table(TABLE)
        .select("*")
        .eq("id", inspection_id)
        .single()
        .execute()
    )
    return response.data


async def delete_inspection(inspection_id: str) -> bool:
    """Delete an inspection record."""
    client = _get_client()
    client.table(TABLE).delete().eq("id", inspection_id).execute()
    return True
