# sitemetrics/stream.py

import asyncio
import logging
import uuid
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from sitemetrics.context import MetricsContext
from sitemetrics.dependencies import get_context
from sitemetrics.event_stream import StreamChannel, now_ms
from sitemetrics.schemas import RealtimeEvent

logger = logging.getLogger(__name__)

router = APIRouter()


async def stream_frames(
    request: Request,
    context: MetricsContext,
    client_id: str,
    channel: StreamChannel,
) -> AsyncIterator[str]:
    """Relay frames from the channel until the client goes away or is pruned"""
    poll_seconds = context.config.stream_poll_seconds
    try:
        while not channel.closed:
            if await request.is_disconnected():
                break
            frame = await asyncio.to_thread(channel.receive, poll_seconds)
            if frame is not None:
                yield frame
    finally:
        channel.close()
        context.event_stream.remove_client(client_id, channel)
        logger.debug(f"Event stream for client {client_id} closed")


@router.get("/api/events")
async def event_stream(
    request: Request,
    client_id: Optional[str] = None,
    context: MetricsContext = Depends(get_context),
) -> StreamingResponse:
    """Server-Sent Events stream of metrics, status and heartbeats"""
    client_id = client_id or uuid.uuid4().hex
    channel = StreamChannel(maxsize=context.config.stream_buffer_size)

    context.event_stream.add_client(client_id, channel)
    context.event_stream.send_to(client_id, RealtimeEvent(
        type="connection",
        timestamp=now_ms(),
        client_id=client_id,
        message="Connected to metrics stream",
    ))

    return StreamingResponse(
        stream_frames(request, context, client_id, channel),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
