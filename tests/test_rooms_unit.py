from __future__ import annotations

from chatwave.realtime.connections import Connection
from chatwave.realtime.rooms import RoomMembershipManager, group_room_name


def test_group_room_name_prefix() -> None:
    assert group_room_name("g1") == "group:g1"
    assert group_room_name(42) == "group:42"


def test_join_reports_only_new_memberships(make_socket) -> None:
    rooms = RoomMembershipManager()
    connection = Connection("alice", make_socket())

    assert rooms.join(connection, ["group:a", "group:b"]) == ["group:a", "group:b"]
    assert rooms.join(connection, ["group:a", "group:c"]) == ["group:c"]
    assert connection.rooms == {"group:a", "group:b", "group:c"}
    assert rooms.room_names() == ["group:a", "group:b", "group:c"]


def test_leave_removes_empty_rooms(make_socket) -> None:
    rooms = RoomMembershipManager()
    alice = Connection("alice", make_socket())
    bob = Connection("bob", make_socket())
    rooms.join(alice, ["group:a"])
    rooms.join(bob, ["group:a"])

    assert rooms.leave(alice, "group:a") is True
    assert rooms.leave(alice, "group:a") is False
    assert rooms.members("group:a") == [bob]

    rooms.leave(bob, "group:a")
    assert rooms.room_names() == []


def test_drop_connection_clears_every_membership(make_socket) -> None:
    rooms = RoomMembershipManager()
    alice = Connection("alice", make_socket())
    rooms.join(alice, ["group:a", "group:b"])

    assert rooms.drop_connection(alice) == ["group:a", "group:b"]
    assert alice.rooms == set()
    assert rooms.members("group:a") == []


def test_deliveries_exclude_sender(make_socket) -> None:
    rooms = RoomMembershipManager()
    alice = Connection("alice", make_socket())
    bob = Connection("bob", make_socket())
    rooms.join(alice, ["group:a"])
    rooms.join(bob, ["group:a"])

    outbox = rooms.deliveries("group:a", {"type": "newGroupMessage"}, exclude=[alice])

    assert [delivery.connection for delivery in outbox] == [bob]
    assert rooms.deliveries("group:missing", {"type": "x"}) == []


def test_close_room_detaches_members(make_socket) -> None:
    rooms = RoomMembershipManager()
    alice = Connection("alice", make_socket())
    rooms.join(alice, ["call-1", "group:a"])

    assert rooms.close_room("call-1") == [alice]
    assert alice.rooms == {"group:a"}
    assert rooms.close_room("call-1") == []
