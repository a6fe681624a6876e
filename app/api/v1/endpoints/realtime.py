"""Server-sent events stream of appointment updates."""

import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from app.core.realtime import format_sse
from app.dependencies import CurrentUser, Realtime

router = APIRouter(prefix="/realtime", tags=["Realtime"])

KEEPALIVE_SECONDS = 15


@router.get("/events", summary="Subscribe to appointment events")
async def stream_events(
    request: Request,
    current_user: CurrentUser,
    hub: Realtime,
) -> StreamingResponse:
    """
    Stream appointment events for the authenticated user.

    Each event is a ``text/event-stream`` frame whose ``event`` is the
    booking event name and whose ``data`` is the JSON payload. A comment
    line is sent when nothing happened for a while.
    """
    user_id = str(current_user["id"])
    queue = hub.connect(user_id)

    async def event_stream():
        try:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event)
        finally:
            hub.disconnect(user_id, queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
