"""
Tests for the quest API routes.

Run with: python -m pytest tests/test_routes.py
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

import main
from logic.persistence import QuestRepository
from server import broadcast
from server.quests import build_quest_service, get_quest_service


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(main, "init_db", lambda: None)
    monkeypatch.setenv("QUEST_MAP_CLUSTER_ZOOM", "10")
    monkeypatch.setenv("QUEST_MAP_CLUSTER_PIXELS", "60")

    service = build_quest_service(store=store, collection="quests")
    main.app.dependency_overrides[get_quest_service] = lambda: service
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def events():
    queue = asyncio.Queue()
    broadcast.subscribers.add(queue)
    yield queue
    broadcast.subscribers.discard(queue)


def drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


def add(client, lng, lat):
    response = client.post("/api/quests/add", json={"lng": lng, "lat": lat})
    assert response.status_code == 200
    return response.json()


def test_add_and_list(client):
    assert add(client, 10, 20)["id"] == 1
    assert add(client, 30, 40)["id"] == 2
    add(client, 50, 60)

    quests = client.get("/api/quests").json()["quests"]

    assert [q["id"] for q in quests] == [1, 2, 3]
    assert [q["next"] for q in quests] == [2, 3, None]
    assert quests[0]["location"] == {"lng": 10, "lat": 20}


def test_add_requires_coordinates(client):
    response = client.post("/api/quests/add", json={"lng": 10})
    assert response.status_code == 422


def test_delete_renumbers(client, store):
    for lng, lat in [(10, 20), (30, 40), (50, 60)]:
        add(client, lng, lat)

    response = client.post("/api/quests/delete", json={"id": 2})
    assert response.status_code == 200

    quests = client.get("/api/quests").json()["quests"]
    assert [q["id"] for q in quests] == [1, 2]
    assert quests[0]["next"] == 2
    assert quests[1]["location"] == {"lng": 50, "lat": 60}

    stored = asyncio.run(QuestRepository(store, "quests").load())
    assert sorted(q.id for q in stored) == [1, 2]


def test_delete_unknown_quest(client):
    response = client.post("/api/quests/delete", json={"id": 7})
    assert response.status_code == 404


def test_delete_all(client):
    add(client, 10, 20)
    add(client, 30, 40)

    assert client.post("/api/quests/delete_all").json() == {"success": True}
    assert client.get("/api/quests").json()["quests"] == []


def test_move_persists_location(client, store):
    add(client, 10, 20)

    response = client.post("/api/quests/move", json={"id": 1, "lng": 11, "lat": 21})
    assert response.status_code == 200
    assert response.json()["location"] == {"lng": 11, "lat": 21}

    stored = asyncio.run(QuestRepository(store, "quests").load())
    assert (stored[0].location.lng, stored[0].location.lat) == (11, 21)


def test_move_unknown_quest(client):
    response = client.post("/api/quests/move", json={"id": 3, "lng": 0, "lat": 0})
    assert response.status_code == 404


def test_nearest_in_meters(client):
    add(client, 0, 0)
    add(client, 0, 1)

    response = client.get("/api/quests/nearest", params={"lng": 0, "lat": 0.9, "meters": 50_000})
    assert response.json()["quest"]["id"] == 2

    response = client.get("/api/quests/nearest", params={"lng": 0, "lat": 0.5, "meters": 10})
    assert response.json()["quest"] is None


def test_nearest_in_pixels(client):
    add(client, 0, 0)

    params = {"lng": 0.01, "lat": 0, "pixels": 20, "zoom": 5}
    assert client.get("/api/quests/nearest", params=params).json()["quest"]["id"] == 1


def test_nearest_needs_a_bound(client):
    assert client.get("/api/quests/nearest", params={"lng": 0, "lat": 0}).status_code == 400
    assert client.get("/api/quests/nearest", params={"lng": 0, "lat": 0, "pixels": 5}).status_code == 400


def test_clusters_hidden_when_zoomed_in(client):
    add(client, 0, 0)

    data = client.get("/api/quests/clusters", params={"zoom": 12}).json()

    assert data["show_markers"] is True
    assert data["clusters"] == []


def test_clusters_when_zoomed_out(client):
    add(client, 0, 0)
    add(client, 0.1, 0)
    add(client, 60, 0)

    data = client.get("/api/quests/clusters", params={"zoom": 3}).json()

    assert data["show_markers"] is False
    assert [c["quest_ids"] for c in data["clusters"]] == [[1, 2], [1, 2], [3]]
    assert data["clusters"][0]["center"] == {"lng": pytest.approx(0.05), "lat": 0}
    assert data["clusters"][2]["count"] == 1


def test_events_are_broadcast(client, events):
    add(client, 10, 20)
    add(client, 30, 40)
    drain(events)

    client.post("/api/quests/delete", json={"id": 1})

    assert [e["type"] for e in drain(events)] == ["marker_popup", "marker_remove", "quests_update"]


@pytest.mark.asyncio
async def test_event_generator_formats_sse():
    queue = asyncio.Queue()
    broadcast.subscribers.add(queue)
    broadcast.publish({"type": "quests_update", "count": 1})

    generator = broadcast.event_generator(queue)
    frame = await generator.__anext__()
    await generator.aclose()

    assert frame == 'data: {"type": "quests_update", "count": 1}\n\n'
    assert queue not in broadcast.subscribers
