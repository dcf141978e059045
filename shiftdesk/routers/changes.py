from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from shiftdesk.errors import ApiError
from shiftdesk.security import SessionContext, require_member
from shiftdesk.services.change_feed import ChangeFeed

router = APIRouter(tags=["changes"])


@router.get("/api/changes/stream")
async def change_stream(
    request: Request,
    topics: str | None = Query(default=None, description="Comma separated topic filter"),
    _session: SessionContext = Depends(require_member),
) -> StreamingResponse:
    feed: ChangeFeed | None = getattr(request.app.state, "change_feed", None)
    if feed is None:
        raise ApiError(status_code=503, code="CHANGE_FEED_UNAVAILABLE", message="Change feed is not running.")
    wanted = {topic.strip() for topic in topics.split(",") if topic.strip()} if topics else None
    return StreamingResponse(
        feed.stream(wanted),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
