import pytest

from dmroommap.core.types import DIRECT_EVENT_TYPE, Subscription


class FakeRoom:
    def __init__(self, guess=None, inviter=None):
        self.guess = guess
        self.inviter = inviter

    def guess_dm_user_id(self):
        return self.guess

    def get_dm_inviter(self):
        return self.inviter


class FakeSource:
    """In-memory AccountDataSource that delivers notifications synchronously."""

    def __init__(self, direct=None, user_id="@me:example.org", rooms=None):
        self.account_data = {}
        if direct is not None:
            self.account_data[DIRECT_EVENT_TYPE] = direct
        self.user_id = user_id
        self.rooms = rooms or {}
        self.writes = []
        self._listeners = {}
        self._next_id = 0

    def get_account_data(self, event_type):
        return self.account_data.get(event_type)

    def set_account_data(self, event_type, content):
        self.writes.append((event_type, content))

    def get_user_id(self):
        return self.user_id

    def get_room(self, room_id):
        return self.rooms.get(room_id)

    def subscribe_account_data(self, callback):
        self._next_id += 1
        sub_id = f"fake_{self._next_id}"
        self._listeners[sub_id] = callback
        return Subscription(sub_id=sub_id, _cancel=self._listeners.pop)

    @property
    def listener_count(self):
        return len(self._listeners)

    def push(self, event_type, content):
        """Simulate a sync delivering new account data."""
        self.account_data[event_type] = content
        for callback in list(self._listeners.values()):
            callback(event_type)


@pytest.fixture
def fake_source():
    return FakeSource(direct={
        "@alice:example.org": ["!a1:example.org", "!a2:example.org"],
        "@bob:example.org": ["!b1:example.org"],
    })


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def make_room():
    return FakeRoom
