"""Server-Sent Events stream of UI notifications.

Example JS client:
```javascript
const events = new EventSource('/api/events');
events.addEventListener('import-progress', (e) => updateProgress(JSON.parse(e.data)));
events.addEventListener('library-updated', (e) => refreshLibrary(JSON.parse(e.data)));
events.addEventListener('sync-complete', (e) => showSyncToast(JSON.parse(e.data)));
```
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from soundvault.api.dependencies import get_event_broadcaster
from soundvault.infrastructure.notifications import EventBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter()

# Disconnect check interval while no events arrive
_IDLE_POLL_SECONDS = 15.0


@router.get("/events")
async def stream_events(
    request: Request,
    broadcaster: EventBroadcaster = Depends(get_event_broadcaster),
) -> EventSourceResponse:
    """Stream import-progress, library-updated and sync-complete events."""

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        async with broadcaster.subscribe() as queue:
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        event = await asyncio.wait_for(
                            queue.get(), timeout=_IDLE_POLL_SECONDS
                        )
                    except TimeoutError:
                        continue
                    yield {"event": event.name, "data": json.dumps(event.to_dict())}
            except asyncio.CancelledError:
                logger.debug("SSE connection cancelled")
                raise

    return EventSourceResponse(event_generator())
