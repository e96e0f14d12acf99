import pytest
from aiohttp.test_utils import TestClient, TestServer

from dmroommap.core.registry import DMRoomMapRegistry
from dmroommap.infra.event_bus import EventBus
from dmroommap.interfaces.web_interface import WebInterface


@pytest.fixture
def registry():
    return DMRoomMapRegistry()


@pytest.mark.asyncio
async def test_unavailable_without_map(registry):
    web_iface = WebInterface("127.0.0.1", 0, registry)
    async with TestClient(TestServer(web_iface.build_app())) as client:
        resp = await client.get("/api/debug/dm")

        assert resp.status == 503
        assert "error" in await resp.json()


@pytest.mark.asyncio
async def test_full_map(registry, fake_source):
    registry.create(fake_source)
    web_iface = WebInterface("127.0.0.1", 0, registry)
    async with TestClient(TestServer(web_iface.build_app())) as client:
        resp = await client.get("/api/debug/dm")
        data = await resp.json()

        assert resp.status == 200
        assert data["running"] is False
        assert data["user_to_rooms"]["@bob:example.org"] == ["!b1:example.org"]


@pytest.mark.asyncio
async def test_rooms_for_user(registry, fake_source):
    registry.create(fake_source)
    web_iface = WebInterface("127.0.0.1", 0, registry)
    async with TestClient(TestServer(web_iface.build_app())) as client:
        resp = await client.get("/api/debug/dm/users/@alice:example.org")
        data = await resp.json()

        assert data == {
            "user_id": "@alice:example.org",
            "rooms": ["!a1:example.org", "!a2:example.org"],
        }

        resp = await client.get("/api/debug/dm/users/@nobody:example.org")
        assert (await resp.json())["rooms"] == []


@pytest.mark.asyncio
async def test_user_for_room(registry, fake_source):
    registry.create(fake_source)
    web_iface = WebInterface("127.0.0.1", 0, registry)
    async with TestClient(TestServer(web_iface.build_app())) as client:
        resp = await client.get("/api/debug/dm/rooms/!b1:example.org")
        assert (await resp.json()) == {"room_id": "!b1:example.org", "user_id": "@bob:example.org"}

        resp = await client.get("/api/debug/dm/rooms/!none:example.org")
        assert (await resp.json())["user_id"] is None


@pytest.mark.asyncio
async def test_events_lists_recent_notifications(registry):
    bus = EventBus()
    bus.emit("account_data", key="m.push_rules")
    bus.emit("account_data", key="m.direct")
    bus.emit("unrelated", key="ignored")
    web_iface = WebInterface("127.0.0.1", 0, registry, event_bus=bus)
    async with TestClient(TestServer(web_iface.build_app())) as client:
        resp = await client.get("/api/debug/dm/events")
        events = (await resp.json())["events"]
        assert resp.status == 200
        assert [ev["key"] for ev in events] == ["m.direct", "m.push_rules"]

        resp = await client.get("/api/debug/dm/events?limit=1")
        assert [ev["key"] for ev in (await resp.json())["events"]] == ["m.direct"]

        resp = await client.get("/api/debug/dm/events?limit=lots")
        assert resp.status == 400


@pytest.mark.asyncio
async def test_events_empty_without_bus(registry):
    web_iface = WebInterface("127.0.0.1", 0, registry)
    async with TestClient(TestServer(web_iface.build_app())) as client:
        resp = await client.get("/api/debug/dm/events")

        assert (await resp.json()) == {"events": []}
