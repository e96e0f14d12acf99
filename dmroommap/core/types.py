"""
Shared types for the DM room index.

The index never talks to a Matrix client directly; it only sees the narrow
``AccountDataSource`` / ``RoomHandle`` protocols below.  The mautrix-backed
implementation lives in ``dmroommap.interfaces.matrix_source``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

# Account-data event type holding the {user_id: [room_id, ...]} mapping.
DIRECT_EVENT_TYPE = "m.direct"

# Bucket for repaired rooms whose partner could not be guessed.
UNKNOWN_DM_USER = ""


class RoomHandle(Protocol):
    def guess_dm_user_id(self) -> Optional[str]:
        """Best guess at the other participant of a DM room."""

    def get_dm_inviter(self) -> Optional[str]:
        """Inviter of a pending invite flagged ``is_direct``, if any."""


class AccountDataSource(Protocol):
    def get_account_data(self, event_type: str) -> Optional[dict]: ...

    def set_account_data(self, event_type: str, content: dict) -> None: ...

    def get_user_id(self) -> str: ...

    def get_room(self, room_id: str) -> Optional[RoomHandle]: ...

    def subscribe_account_data(self, callback: Callable[[str], Any]) -> "Subscription": ...


@dataclass
class Subscription:
    """Handle for a registered listener.  ``dispose()`` removes it exactly once."""
    sub_id: str
    _cancel: Optional[Callable[[str], None]] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def dispose(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel(self.sub_id)


def coerce_direct_content(content: Any) -> dict[str, list[str]]:
    """Normalise raw ``m.direct`` content into ``{user_id: [room_id, ...]}``.

    Entries that do not have that shape are dropped with a warning instead of
    breaking lookups later.  Duplicates are kept as-is.
    """
    if content is None:
        return {}
    if hasattr(content, "serialize") and not isinstance(content, dict):
        content = content.serialize()
    if not isinstance(content, dict):
        logger.warning("m.direct content is %s, not a mapping — ignoring it",
                       type(content).__name__)
        return {}

    result: dict[str, list[str]] = {}
    for user_id, room_ids in content.items():
        if not isinstance(user_id, str):
            logger.warning("m.direct: skipping non-string user id %r", user_id)
            continue
        if not isinstance(room_ids, list):
            logger.warning("m.direct: skipping %s, rooms are %s not a list",
                           user_id, type(room_ids).__name__)
            continue
        rooms = []
        for room_id in room_ids:
            if isinstance(room_id, str):
                rooms.append(room_id)
            else:
                logger.warning("m.direct: skipping non-string room id %r for %s",
                               room_id, user_id)
        result[user_id] = rooms
    return result
