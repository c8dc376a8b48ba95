"""Server-sent event framing for inspection progress."""
import json

# Event types emitted by /inspect/stream, in the order a client sees them
STEP = "step"
WARNING = "warning"
RESULT = "result"
ERROR = "error"
DONE = "done"


def sse_event(event_type: str, data: dict) -> str:
    """Format a Server-Sent Event string. Non-JSON values (datetimes) are stringified."""
    payload = {"type": event_type, **data}
    return f"data: {json.dumps(payload, default=str)}\n\n"


def step_event(step: str, **data) -> str:
    return sse_event(STEP, {"step": step, **data})


def done_event(inspection_id: str | None, error: str | None = None) -> str:
    data = {"inspection_id": inspection_id}
    if error is not None:
        data["error"] = error
    return sse_event(DONE, data)
