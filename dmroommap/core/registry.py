"""Holder for the process-wide shared DMRoomMap.

The registry never starts or stops the maps it holds; whoever creates one
owns its ``start()`` / ``stop()`` lifecycle.
"""

import logging
from typing import Optional

from dmroommap.core.dm_room_map import DMRoomMap
from dmroommap.core.types import AccountDataSource

logger = logging.getLogger(__name__)


class DMRoomMapRegistry:

    def __init__(self) -> None:
        self._current: Optional[DMRoomMap] = None

    def create(self, source: AccountDataSource) -> DMRoomMap:
        """Build a new (not started) map over *source* and make it the shared one."""
        dm_room_map = DMRoomMap(source)
        self.replace(dm_room_map)
        return dm_room_map

    def replace(self, dm_room_map: Optional[DMRoomMap]) -> Optional[DMRoomMap]:
        """Install *dm_room_map* and return the previous one, untouched."""
        previous, self._current = self._current, dm_room_map
        if previous is not None and previous.is_running:
            logger.debug("Replacing shared DMRoomMap that is still running")
        return previous

    def get(self) -> Optional[DMRoomMap]:
        return self._current

    def clear(self) -> Optional[DMRoomMap]:
        return self.replace(None)


shared_registry = DMRoomMapRegistry()
