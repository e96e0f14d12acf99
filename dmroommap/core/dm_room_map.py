"""
DM Room Map

Flips the ``m.direct`` account-data map ({user_id: [room_id, ...]}) so that
"which user is this room a DM with?" is a dict lookup.

The forward map is read once at construction.  ``start()`` keeps it up to
date from account-data notifications; without ``start()`` the object is a
static snapshot that still answers both queries.

Some clients file DM rooms under the viewer's own user id instead of the
other participant's.  When an update carries such entries they are re-filed
under a guessed partner and the corrected map is written back, at most once
per instance so several devices do not keep fighting over the same fix.
"""

import logging
from typing import Callable, Optional

from dmroommap.core.types import (
    DIRECT_EVENT_TYPE,
    UNKNOWN_DM_USER,
    AccountDataSource,
    RoomHandle,
    Subscription,
    coerce_direct_content,
)

logger = logging.getLogger(__name__)


def invert_direct_map(user_to_rooms: dict[str, list[str]]) -> dict[str, str]:
    """Build room -> user.  A room listed under several users goes to the last one."""
    room_to_user: dict[str, str] = {}
    for user_id, room_ids in user_to_rooms.items():
        for room_id in room_ids:
            room_to_user[room_id] = user_id
    return room_to_user


def repair_self_dms(user_to_rooms: dict[str, list[str]], my_user_id: str,
                    get_room: Callable[[str], Optional[RoomHandle]]) -> dict[str, list[str]]:
    """Return a copy of *user_to_rooms* with rooms filed under *my_user_id* re-filed.

    Each such room goes to the partner guessed by its room handle, or to the
    ``UNKNOWN_DM_USER`` bucket when the room is unknown or no guess is
    possible, so it stays marked as a DM.  The input mapping is not modified.
    """
    repaired = {user_id: list(room_ids) for user_id, room_ids in user_to_rooms.items()
                if user_id != my_user_id}
    for room_id in user_to_rooms.get(my_user_id, []):
        room = get_room(room_id)
        guessed = room.guess_dm_user_id() if room is not None else None
        if not guessed or guessed == my_user_id:
            guessed = UNKNOWN_DM_USER
        repaired.setdefault(guessed, []).append(room_id)
    return repaired


class DMRoomMap:
    """Bidirectional user <-> DM room index over one account's ``m.direct``."""

    def __init__(self, source: AccountDataSource) -> None:
        self._source = source
        self._user_to_rooms: dict[str, list[str]] = coerce_direct_content(
            source.get_account_data(DIRECT_EVENT_TYPE)
        )
        self._room_to_user: Optional[dict[str, str]] = None
        self._subscription: Optional[Subscription] = None
        # See _on_account_data.
        self._has_sent_direct_patch = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        if self._subscription is not None:
            logger.warning("DMRoomMap.start() called twice — ignoring")
            return
        self._populate_room_to_user()
        self._subscription = self._source.subscribe_account_data(self._on_account_data)
        logger.debug("DMRoomMap listening (%d users, %d rooms)",
                     len(self._user_to_rooms), len(self._room_to_user))

    def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.dispose()
            logger.debug("DMRoomMap stopped listening")

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _on_account_data(self, event_type: str) -> None:
        if event_type != DIRECT_EVENT_TYPE:
            return
        user_to_rooms = coerce_direct_content(self._source.get_account_data(DIRECT_EVENT_TYPE))
        my_user_id = self._source.get_user_id()
        if user_to_rooms.get(my_user_id):
            logger.warning("m.direct lists %d room(s) under our own user id %s — repairing",
                           len(user_to_rooms[my_user_id]), my_user_id)
            user_to_rooms = self.repair_self_dms(user_to_rooms, my_user_id)
            # Several devices may spot the same corruption; only send our
            # corrected version once.
            if not self._has_sent_direct_patch:
                self._has_sent_direct_patch = True
                logger.info("Writing repaired m.direct back to the account")
                self._source.set_account_data(DIRECT_EVENT_TYPE, user_to_rooms)
        self._user_to_rooms = user_to_rooms
        self._populate_room_to_user()

    def repair_self_dms(self, user_to_rooms: dict[str, list[str]],
                        my_user_id: Optional[str] = None) -> dict[str, list[str]]:
        if my_user_id is None:
            my_user_id = self._source.get_user_id()
        return repair_self_dms(user_to_rooms, my_user_id, self._source.get_room)

    def _populate_room_to_user(self) -> None:
        self._room_to_user = invert_direct_map(self._user_to_rooms)
        logger.debug("Rebuilt DM room index: %d rooms", len(self._room_to_user))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def user_to_rooms(self) -> dict[str, list[str]]:
        return {user_id: list(room_ids) for user_id, room_ids in self._user_to_rooms.items()}

    def get_dm_rooms_for_user_id(self, user_id: str) -> list[str]:
        # No entry means zero conversations with that user, not an error.
        return list(self._user_to_rooms.get(user_id, []))

    def get_user_id_for_room_id(self, room_id: str) -> Optional[str]:
        if self._room_to_user is None:
            # Built lazily so callers that only need get_dm_rooms_for_user_id
            # never pay for the inversion.
            self._populate_room_to_user()
        user_id = self._room_to_user.get(room_id)
        if user_id is not None:
            return user_id
        # Not in the map; a pending invite may still carry the is_direct hint.
        room = self._source.get_room(room_id)
        if room is not None:
            return room.get_dm_inviter()
        return None
