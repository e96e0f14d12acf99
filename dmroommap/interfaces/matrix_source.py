"""
Matrix account-data source

Adapts a mautrix ``Client`` to the ``AccountDataSource`` protocol the DM
room map is written against:

  - account data is cached locally: ``prime()`` fetches ``m.direct`` once,
    later changes arrive as sync account-data events;
  - every cache change is published on the event bus as ``account_data``;
  - rooms are looked up in the client's ``MemoryStateStore`` plus a table of
    pending invites that were flagged ``is_direct``;
  - writes go out as tracked background tasks whose failures are only logged.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from mautrix.client import Client, InternalEventType
from mautrix.client.state_store.memory import MemoryStateStore
from mautrix.errors import MNotFound
from mautrix.types import EventType, Membership, RoomID

from dmroommap.core.types import DIRECT_EVENT_TYPE, Subscription
from dmroommap.infra.event_bus import Event, EventBus

logger = logging.getLogger(__name__)

ACCOUNT_DATA_TOPIC = "account_data"

# Memberships that make someone a plausible DM partner.
_PARTNER_MEMBERSHIPS = (Membership.JOIN, Membership.INVITE)

# Membership changes that end a pending invite, whoever made them.
_SETTLED_MEMBERSHIP_EVENTS = (
    InternalEventType.JOIN,
    InternalEventType.LEAVE,
    InternalEventType.REJECT_INVITE,
    InternalEventType.DISINVITE,
    InternalEventType.KICK,
    InternalEventType.BAN,
)


def _serialize_content(content: Any) -> Optional[dict]:
    """Get a plain dict from event content regardless of whether it is a dict or typed object."""
    if content is None:
        return None
    if isinstance(content, dict):
        return dict(content)
    if hasattr(content, "serialize"):
        return content.serialize()
    return None


class MatrixRoomHandle:
    """Read-only view of one room as seen by the state store."""

    def __init__(self, room_id: str, my_user_id: str,
                 members: dict, dm_inviter: Optional[str]) -> None:
        self.room_id = room_id
        self._my_user_id = my_user_id
        self._members = members
        self._dm_inviter = dm_inviter

    def get_dm_inviter(self) -> Optional[str]:
        return self._dm_inviter

    def guess_dm_user_id(self) -> Optional[str]:
        # We are assuming this room is a DM, so the first other member found
        # is good enough.
        if self._dm_inviter:
            return self._dm_inviter
        for user_id, member in self._members.items():
            if user_id == self._my_user_id:
                continue
            if getattr(member, "membership", None) in _PARTNER_MEMBERSHIPS:
                return str(user_id)
        return None


class MatrixAccountDataSource:
    """
    Account-data and room lookups backed by a mautrix client.

    Call ``attach()`` before the sync loop starts so account-data and
    membership events reach the cache, then ``prime()`` to load the current
    ``m.direct`` content.
    """

    def __init__(self, client: Client, event_bus: Optional[EventBus] = None) -> None:
        self._client = client
        self._bus = event_bus or EventBus()
        self._account_data: dict[str, dict] = {}
        # room_id -> inviter, for pending invites flagged is_direct
        self._direct_invites: dict[str, str] = {}
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self) -> None:
        self._client.add_event_handler(EventType.DIRECT, self._on_direct)
        self._client.add_event_handler(InternalEventType.INVITE, self._on_invite)
        for event_type in _SETTLED_MEMBERSHIP_EVENTS:
            self._client.add_event_handler(event_type, self._on_membership_settled)

    def detach(self) -> None:
        self._client.remove_event_handler(EventType.DIRECT, self._on_direct)
        self._client.remove_event_handler(InternalEventType.INVITE, self._on_invite)
        for event_type in _SETTLED_MEMBERSHIP_EVENTS:
            self._client.remove_event_handler(event_type, self._on_membership_settled)

    async def prime(self) -> None:
        """Fetch the current ``m.direct`` content from the homeserver."""
        try:
            content = await self._client.get_account_data(EventType.DIRECT)
        except MNotFound:
            logger.info("No m.direct account data on the server yet")
            self._account_data.pop(DIRECT_EVENT_TYPE, None)
            return
        self._account_data[DIRECT_EVENT_TYPE] = _serialize_content(content) or {}
        logger.info("Loaded m.direct with %d user(s)", len(self._account_data[DIRECT_EVENT_TYPE]))

    async def close(self) -> None:
        """Wait for outstanding account-data writes."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # AccountDataSource
    # ------------------------------------------------------------------

    def get_account_data(self, event_type: str) -> Optional[dict]:
        return self._account_data.get(event_type)

    def set_account_data(self, event_type: str, content: dict) -> None:
        # The homeserver echoes the new content through sync; the local
        # cache is only updated from there.
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("set_account_data(%s) dropped — no running event loop", event_type)
            return
        task = loop.create_task(self._put_account_data(event_type, content),
                                name=f"set-account-data-{event_type}")
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def get_user_id(self) -> str:
        return str(self._client.mxid)

    def get_room(self, room_id: str) -> Optional[MatrixRoomHandle]:
        members = self._members_of(room_id)
        inviter = self._direct_invites.get(room_id)
        if members is None and inviter is None:
            return None
        return MatrixRoomHandle(room_id, self.get_user_id(), members or {}, inviter)

    def subscribe_account_data(self, callback: Callable[[str], Any]) -> Subscription:
        def _deliver(event: Event) -> Any:
            return callback(event.data["key"])
        return self._bus.subscribe(ACCOUNT_DATA_TOPIC, _deliver)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _members_of(self, room_id: str) -> Optional[dict]:
        store = self._client.state_store
        if not isinstance(store, MemoryStateStore):
            return None
        return store.members.get(RoomID(room_id))

    async def _put_account_data(self, event_type: str, content: dict) -> None:
        try:
            await self._client.set_account_data(EventType.find(event_type, EventType.Class.ACCOUNT_DATA),
                                                content)
            logger.info("Account data %s updated on the server", event_type)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to update account data %s: %s", event_type, exc)

    def _update_account_data(self, event_type: str, content: dict) -> None:
        self._account_data[event_type] = content
        self._bus.emit(ACCOUNT_DATA_TOPIC, key=event_type)

    async def _on_direct(self, evt) -> None:
        self._update_account_data(DIRECT_EVENT_TYPE, _serialize_content(evt.content) or {})

    async def _on_invite(self, evt) -> None:
        if evt.state_key != self.get_user_id():
            return
        if getattr(evt.content, "is_direct", False):
            self._direct_invites[str(evt.room_id)] = str(evt.sender)
            logger.debug("Direct invite to %s from %s", evt.room_id, evt.sender)

    async def _on_membership_settled(self, evt) -> None:
        if evt.state_key == self.get_user_id():
            self._direct_invites.pop(str(evt.room_id), None)
