"""
Quest Map FastAPI Application

Main entry point for the Quest Map application, serving the REST API for
placing and chaining quests and the real-time update stream.

Author: Matthew Picone (mail@matthewpicone.com)
Date: 2025-12-17
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse

from database import init_db
from logic.config import load_config
from server.broadcast import event_generator, subscribers
from server.quests import router as quests_router

config = load_config()
logging.basicConfig(
    level=config["log_level"],
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Quest Map", lifespan=lifespan)

# Include all routers
app.include_router(quests_router)

# ============================================================
# SSE Endpoint
# ============================================================


@app.get("/api/stream")
async def stream(request: Request):
    """Server-Sent Events (SSE) endpoint for real-time updates.

    Clients connect to this endpoint to receive quest sequence changes and
    marker updates (popup refreshes and removals).

    Args:
        request: FastAPI request object.

    Returns:
        StreamingResponse with text/event-stream content type.
    """
    queue = asyncio.Queue()
    subscribers.add(queue)

    return StreamingResponse(event_generator(queue), media_type="text/event-stream")
