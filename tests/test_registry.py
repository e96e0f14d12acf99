from dmroommap.core.dm_room_map import DMRoomMap
from dmroommap.core.registry import DMRoomMapRegistry, shared_registry


def test_empty_registry_returns_none():
    assert DMRoomMapRegistry().get() is None


def test_create_installs_unstarted_map(fake_source):
    registry = DMRoomMapRegistry()

    dm_map = registry.create(fake_source)

    assert registry.get() is dm_map
    assert not dm_map.is_running
    assert dm_map.get_dm_rooms_for_user_id("@bob:example.org") == ["!b1:example.org"]


def test_create_replaces_without_stopping_previous(fake_source):
    registry = DMRoomMapRegistry()
    first = registry.create(fake_source)
    first.start()

    second = registry.create(fake_source)

    assert registry.get() is second
    assert first.is_running
    assert fake_source.listener_count == 1
    first.stop()


def test_replace_returns_previous(fake_source):
    registry = DMRoomMapRegistry()
    first = registry.create(fake_source)
    other = DMRoomMap(fake_source)

    previous = registry.replace(other)

    assert previous is first
    assert registry.get() is other


def test_clear_drops_reference(fake_source):
    registry = DMRoomMapRegistry()
    dm_map = registry.create(fake_source)

    assert registry.clear() is dm_map
    assert registry.get() is None


def test_shared_registry_is_a_registry():
    assert isinstance(shared_registry, DMRoomMapRegistry)
