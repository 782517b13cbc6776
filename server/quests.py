"""
Quest API routes.

This module exposes the quest sequence over HTTP: listing, adding, moving
and removing quests, nearest-quest lookup, and clusters for low zoom levels.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel

from database import DocumentStore
from logic.config import load_config
from logic.geo import LngLat, WebMercatorProjection, parse_radius
from logic.markers import cluster_center, create_marker, update_marker_popup
from logic.persistence import PersistenceQueue, QuestRepository
from logic.quests import QuestService
from server.broadcast import marker_event, notify_quests_updated

router = APIRouter()

_service: Optional[QuestService] = None


class QuestLocation(BaseModel):
    """Request model for placing a quest."""

    lng: float
    lat: float


class QuestMove(BaseModel):
    """Request model for relocating a quest."""

    id: int
    lng: float
    lat: float


class QuestId(BaseModel):
    id: int


def build_quest_service(store=None, collection: Optional[str] = None) -> QuestService:
    """Wire a quest service to a document store.

    Args:
        store: Document-store client. Defaults to the configured database.
        collection: Collection name. Defaults to the configured one.

    Returns:
        A quest service with its own persistence queue.
    """
    config = load_config()
    repository = QuestRepository(store or DocumentStore(), collection or config["collection"])
    return QuestService(PersistenceQueue(repository), repository)


def get_quest_service() -> QuestService:
    global _service
    if _service is None:
        _service = build_quest_service()
    return _service


async def hydrated(service: QuestService):
    """Load quests on first use and make sure each one has a marker."""
    quests = await service.get_all()
    for quest in quests:
        if quest.marker is None:
            create_marker(quest, on_change=marker_event)
    return quests


def require_quest(service: QuestService, quest_id: int):
    quest = service.find_by_id(quest_id)
    if quest is None:
        raise HTTPException(404, f"Quest {quest_id} not found")
    return quest


def projection_from_query(
    zoom: Optional[float],
    center_lng: float,
    center_lat: float,
    width: float,
    height: float,
) -> Optional[WebMercatorProjection]:
    if zoom is None:
        return None
    return WebMercatorProjection(LngLat(center_lng, center_lat), zoom, width, height)


def radius_from_query(meters, pixels, projection, default_pixels):
    if meters is None and pixels is None and projection is not None:
        pixels = default_pixels
    try:
        return parse_radius(meters=meters, pixels=pixels, projection=projection)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("/api/quests")
async def list_quests(service: QuestService = Depends(get_quest_service)):
    """Get every quest in sequence order.

    Returns:
        Dictionary with the list of quests.
    """
    quests = await hydrated(service)
    return {"quests": [q.to_dict() for q in quests]}


@router.post("/api/quests/add")
async def add_quest(payload: QuestLocation = Body(...), service: QuestService = Depends(get_quest_service)):
    """Place a new quest at the end of the sequence.

    Args:
        payload: Coordinate of the new quest.

    Returns:
        The created quest.
    """
    await hydrated(service)

    quest = await service.add(LngLat(payload.lng, payload.lat))
    create_marker(quest, on_change=marker_event)

    notify_quests_updated(len(service))
    return quest.to_dict()


@router.post("/api/quests/move")
async def move_quest(payload: QuestMove = Body(...), service: QuestService = Depends(get_quest_service)):
    """Relocate a quest, e.g. after its marker was dragged.

    Raises:
        HTTPException: If the quest does not exist.
    """
    await hydrated(service)
    quest = require_quest(service, payload.id)

    quest.location = LngLat(payload.lng, payload.lat)
    quest.marker.location = quest.location
    update_marker_popup(quest)

    await service.update_quest(quest)
    notify_quests_updated(len(service))
    return quest.to_dict()


@router.post("/api/quests/delete")
async def delete_quest(payload: QuestId = Body(...), service: QuestService = Depends(get_quest_service)):
    """Remove a quest; later quests move up by one.

    Raises:
        HTTPException: If the quest does not exist.
    """
    await hydrated(service)
    quest = require_quest(service, payload.id)

    await service.remove(quest)

    notify_quests_updated(len(service))
    return {"success": True, "id": payload.id}


@router.post("/api/quests/delete_all")
async def delete_all_quests(service: QuestService = Depends(get_quest_service)):
    await hydrated(service)
    await service.remove_all()

    notify_quests_updated(0)
    return {"success": True}


@router.get("/api/quests/nearest")
async def nearest_quest(
    lng: float,
    lat: float,
    meters: Optional[float] = Query(None, gt=0),
    pixels: Optional[float] = Query(None, gt=0),
    zoom: Optional[float] = None,
    center_lng: float = 0.0,
    center_lat: float = 0.0,
    width: float = 0.0,
    height: float = 0.0,
    service: QuestService = Depends(get_quest_service),
):
    """Find the quest nearest to a point.

    Either ``meters`` or ``pixels`` bounds the search; a pixel bound needs the
    map view (``zoom`` and optionally centre and viewport size). Without an
    explicit bound the configured pixel radius is used.

    Returns:
        Dictionary with the quest, or None when nothing is close enough.
    """
    await hydrated(service)

    projection = projection_from_query(zoom, center_lng, center_lat, width, height)
    radius = radius_from_query(meters, pixels, projection, load_config()["nearest_radius_pixels"])

    quest = service.get_nearest(LngLat(lng, lat), radius)
    return {"quest": quest.to_dict() if quest is not None else None}


@router.get("/api/quests/clusters")
async def quest_clusters(
    zoom: float,
    meters: Optional[float] = Query(None, gt=0),
    pixels: Optional[float] = Query(None, gt=0),
    center_lng: float = 0.0,
    center_lat: float = 0.0,
    width: float = 0.0,
    height: float = 0.0,
    service: QuestService = Depends(get_quest_service),
):
    """Get quest clusters for the current map view.

    At or above the configured zoom threshold individual markers are shown
    and no clusters are returned.

    Returns:
        Dictionary with one cluster per quest, each holding its centre and
        the ids of its members.
    """
    config = load_config()
    threshold = config["cluster_zoom_threshold"]

    quests = await hydrated(service)

    if zoom >= threshold:
        return {"zoom_threshold": threshold, "show_markers": True, "clusters": []}

    projection = projection_from_query(zoom, center_lng, center_lat, width, height)
    radius = radius_from_query(meters, pixels, projection, config["cluster_radius_pixels"])

    clusters = []
    for quest, cluster in zip(quests, service.get_clusters(radius)):
        center = cluster_center(cluster)
        clusters.append({
            "quest_id": quest.id,
            "count": len(cluster),
            "center": center.to_dict() if center is not None else None,
            "quest_ids": [q.id for q in cluster],
        })

    return {"zoom_threshold": threshold, "show_markers": False, "clusters": clusters}
