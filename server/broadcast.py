"""
Server-sent events (SSE) broadcasting module.

This module handles real-time updates via Server-Sent Events, managing
subscriber connections and pushing quest and marker changes to all clients.

Author: Matthew Picone (mail@matthewpicone.com)
Date: 2025-12-17
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, Set

# Global set of SSE subscribers (asyncio.Queue instances)
subscribers: Set[asyncio.Queue] = set()


async def event_generator(queue: asyncio.Queue):
    """Generate SSE events from the queue.

    Args:
        queue: Async queue to read events from.

    Yields:
        SSE formatted event strings.
    """
    try:
        while True:
            data = await queue.get()
            yield f"data: {json.dumps(data)}\n\n"
    except asyncio.CancelledError:
        pass
    finally:
        subscribers.discard(queue)


def publish(payload: Dict[str, Any]):
    """Push a payload to every subscriber without waiting.

    Args:
        payload: JSON serialisable event body.
    """
    for queue in list(subscribers):
        queue.put_nowait(payload)


def marker_event(event: str, marker) -> None:
    """Marker listener forwarding marker changes to subscribers."""
    publish({
        "type": f"marker_{event}",
        "time": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "marker": marker.to_dict(),
    })


def notify_quests_updated(count: int):
    """Broadcast that the quest sequence changed.

    Args:
        count: Number of quests after the change.
    """
    publish({
        "type": "quests_update",
        "time": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "count": count,
    })
