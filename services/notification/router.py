"""
services/notification/router.py
Live notification stream (Server-Sent Events) for the signed-in account.
"""

import asyncio
import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from config.settings import settings
from services.notification.dispatcher import (
    Notification,
    NotificationDispatcher,
    get_dispatcher,
)
from shared.middleware.auth import get_current_user
from shared.models.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def event_stream(
    request: Request,
    dispatcher: NotificationDispatcher,
    account_id: str,
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    """Subscribe for the lifetime of the connection and relay events."""
    queue: asyncio.Queue[Notification] = asyncio.Queue()
    listener = queue.put_nowait
    dispatcher.subscribe(account_id, listener)
    logger.info(f"Notification stream opened for account {account_id}")

    try:
        yield _sse("connected", {"account_id": account_id})
        while not await request.is_disconnected():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield _sse("ping", {})
                continue
            yield _sse(event.type, event.to_dict())
    finally:
        dispatcher.unsubscribe(account_id, listener)
        logger.info(f"Notification stream closed for account {account_id}")


@router.get("/stream")
async def stream_notifications(
    request: Request,
    current_user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return StreamingResponse(
        event_stream(
            request,
            dispatcher,
            str(current_user.id),
            settings.NOTIFICATION_STREAM_KEEPALIVE_SECONDS,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
