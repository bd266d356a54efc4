"""PeerRegistry 테스트."""

from modules.signaling import PeerRegistry


def test_add_and_members():
    registry = PeerRegistry()
    registry.add("x", "A")
    registry.add("x", "B")

    assert registry.members("x") == {"A", "B"}
    assert registry.ordered_members("x") == ["A", "B"]
    assert registry.is_member("x", "A")
    assert registry.room_of("A") == "x"


def test_remove_reports_empty_room_and_deletes_it():
    registry = PeerRegistry()
    registry.add("x", "A")
    registry.add("x", "B")

    assert registry.remove("x", "A") is False
    assert registry.has_room("x")
    assert registry.remove("x", "B") is True
    assert not registry.has_room("x")
    assert registry.room_ids() == []
    assert registry.room_of("B") is None


def test_remove_unknown_peer_is_noop():
    registry = PeerRegistry()
    registry.add("x", "A")

    assert registry.remove("x", "ghost") is False
    assert registry.members("x") == {"A"}
    # 없는 룸
    assert registry.remove("nope", "A") is True
    assert registry.members("x") == {"A"}


def test_members_returns_copy():
    registry = PeerRegistry()
    registry.add("x", "A")

    members = registry.members("x")
    members.add("intruder")

    assert registry.members("x") == {"A"}
    assert registry.members("missing") == set()


def test_rooms_of_tracks_reverse_index():
    registry = PeerRegistry()
    registry.add("x", "A")
    registry.add("y", "B")

    assert registry.rooms_of("A") == {"x"}
    assert registry.rooms_of("nobody") == set()
    registry.remove("x", "A")
    assert registry.rooms_of("A") == set()
