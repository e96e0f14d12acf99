"""
Web Interface

Read-only debug API over the shared DM room map:

  GET /api/debug/dm                    full m.direct view
  GET /api/debug/dm/users/{user_id}    DM rooms with one user
  GET /api/debug/dm/rooms/{room_id}    DM partner of one room
  GET /api/debug/dm/events             recent account-data notifications
"""

import asyncio
import json
import logging
from typing import Optional

from aiohttp import web

from dmroommap.core.dm_room_map import DMRoomMap
from dmroommap.core.registry import DMRoomMapRegistry
from dmroommap.infra.event_bus import EventBus
from dmroommap.interfaces.matrix_source import ACCOUNT_DATA_TOPIC

logger = logging.getLogger(__name__)


class WebInterface:
    """Runs an aiohttp web server exposing the registry's current DM room map."""

    def __init__(self, host: str, port: int, registry: DMRoomMapRegistry,
                 event_bus: Optional[EventBus] = None) -> None:
        self._host = host
        self._port = port
        self._registry = registry
        self._bus = event_bus

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/debug/dm",                    self._api_dm)
        app.router.add_get("/api/debug/dm/users/{user_id}",    self._api_dm_user)
        app.router.add_get("/api/debug/dm/rooms/{room_id}",    self._api_dm_room)
        app.router.add_get("/api/debug/dm/events",             self._api_dm_events)
        return app

    async def run(self) -> None:
        runner = web.AppRunner(self.build_app(), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        logger.info("Debug API listening on http://%s:%d/api/debug/dm", self._host, self._port)

        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await runner.cleanup()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _json(data, status: int = 200) -> web.Response:
        return web.Response(text=json.dumps(data), status=status,
                            content_type="application/json")

    def _current_map(self) -> Optional[DMRoomMap]:
        return self._registry.get()

    def _unavailable(self) -> web.Response:
        return self._json({"error": "DM room map not available"}, status=503)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _api_dm(self, _request: web.Request) -> web.Response:
        dm_map = self._current_map()
        if dm_map is None:
            return self._unavailable()
        return self._json({
            "user_to_rooms": dm_map.user_to_rooms,
            "running": dm_map.is_running,
        })

    async def _api_dm_user(self, request: web.Request) -> web.Response:
        dm_map = self._current_map()
        if dm_map is None:
            return self._unavailable()
        user_id = request.match_info["user_id"]
        return self._json({
            "user_id": user_id,
            "rooms": dm_map.get_dm_rooms_for_user_id(user_id),
        })

    async def _api_dm_room(self, request: web.Request) -> web.Response:
        dm_map = self._current_map()
        if dm_map is None:
            return self._unavailable()
        room_id = request.match_info["room_id"]
        return self._json({
            "room_id": room_id,
            "user_id": dm_map.get_user_id_for_room_id(room_id),
        })

    async def _api_dm_events(self, request: web.Request) -> web.Response:
        if self._bus is None:
            return self._json({"events": []})
        try:
            limit = int(request.query.get("limit", "50"))
        except ValueError:
            return self._json({"error": "limit must be an integer"}, status=400)
        events = self._bus.history(ACCOUNT_DATA_TOPIC, limit=max(limit, 1))
        return self._json({"events": [
            {"key": ev.data.get("key"), "timestamp": ev.timestamp} for ev in events
        ]})
