"""
Event API Routes

Live collection snapshots for the desk UI:
- Current snapshot of a collection
- Server-Sent Events stream of snapshots, newest state first on connect

Streams wait on the event loop, not in a worker thread, so open streams
never take threads away from the request routes.
"""

import asyncio
import json
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from loguru import logger

from shelfdesk.api.dependencies import Settings, get_notifier, get_app_settings
from shelfdesk.api.schemas import Collection, SnapshotResponse
from shelfdesk.notifications.notifier import ChangeNotifier, Snapshot

router = APIRouter(prefix="/events", tags=["events"])


def format_sse(snapshot: Snapshot) -> str:
    """One SSE frame carrying a snapshot."""
    data = json.dumps(snapshot.to_dict(), default=str)
    return f"id: {snapshot.version}\nevent: {snapshot.collection}\ndata: {data}\n\n"


@router.get("/{collection}/snapshot", response_model=SnapshotResponse)
def get_snapshot(
    collection: Collection,
    notifier: ChangeNotifier = Depends(get_notifier),
):
    """Get the most recent snapshot of a collection."""
    return SnapshotResponse(**notifier.latest(collection.value).to_dict())


@router.get("/{collection}/stream")
async def stream_snapshots(
    collection: Collection,
    max_events: Optional[int] = Query(None, ge=1, description="Close after this many snapshots"),
    notifier: ChangeNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_app_settings),
):
    """
    Stream snapshots of a collection as Server-Sent Events.

    The first event is the current state. A client that falls behind
    skips straight to the newest snapshot. Comment lines are sent as
    keepalives while nothing changes.
    """
    keepalive = settings.stream_keepalive_seconds
    loop = asyncio.get_running_loop()
    ready = asyncio.Event()

    def wake() -> None:
        # Runs on the publishing thread
        loop.call_soon_threadsafe(ready.set)

    async def generate() -> AsyncGenerator[str, None]:
        """Generate SSE events."""
        # Priming loads the collection, so it runs off the event loop
        subscription = await run_in_threadpool(notifier.subscribe, collection.value, wake)
        sent = 0
        try:
            while max_events is None or sent < max_events:
                ready.clear()
                snapshot = subscription.get_nowait()
                if snapshot is None:
                    if subscription.closed:
                        return
                    try:
                        await asyncio.wait_for(ready.wait(), timeout=keepalive)
                    except asyncio.TimeoutError:
                        yield ": keepalive\n\n"
                    continue
                yield format_sse(snapshot)
                sent += 1
        finally:
            subscription.close()
            logger.debug(
                f"Stream on {collection.value} closed after {sent} event(s), "
                f"{subscription.replaced} skipped"
            )

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
