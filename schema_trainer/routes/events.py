"""Server-Sent Events streams over notification channels.

Streams are async generators on the event loop, so an idle subscriber
holds no worker thread and cannot starve the synchronous routes.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from schema_trainer.routes.dependencies import get_heartbeat, get_hub
from schema_trainer.services.notifications import AsyncSubscription, NotificationHub, user_channel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])

TERMINAL_EVENTS = ("completed", "failed", "cancelled")


def format_frame(frame: Dict[str, Any]) -> str:
    return f"event: {frame['event']}\ndata: {json.dumps(frame)}\n\n"


async def event_stream(
    subscription: AsyncSubscription,
    heartbeat: float,
    initial: Optional[Dict[str, Any]] = None,
    close_on_terminal: bool = False,
    request: Optional[Request] = None,
) -> AsyncIterator[str]:
    """Render a subscription as SSE text; comment lines keep idle proxies open.

    The stream ends when the client disconnects or, with
    ``close_on_terminal``, after a terminal event.
    """
    with subscription:
        if initial is not None:
            yield format_frame(initial)
            if close_on_terminal and initial["event"] in TERMINAL_EVENTS:
                return
        while True:
            if request is not None and await request.is_disconnected():
                logger.debug(f"Subscriber on {subscription.channel} disconnected")
                return
            frame = await subscription.next_event(timeout=heartbeat)
            if frame is None:
                yield ": keep-alive\n\n"
                continue
            yield format_frame(frame)
            if close_on_terminal and frame.get("event") in TERMINAL_EVENTS:
                return


def sse_response(stream: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/users/{user_id}/events")
async def stream_user_events(
    user_id: str,
    request: Request,
    hub: NotificationHub = Depends(get_hub),
    heartbeat: float = Depends(get_heartbeat),
):
    """Stream lifecycle events of every job requested by ``user_id``."""
    subscription = hub.subscribe_async(user_channel(user_id))
    logger.info(f"User {user_id} subscribed to job events")
    return sse_response(event_stream(subscription, heartbeat, request=request))
