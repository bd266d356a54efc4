"""MessageRouter / PeerChannel 테스트."""

import asyncio

import pytest

from conftest import FakeWebSocket, settle
from modules.shared import MessageType, NotInRoomError, TransportDrop
from modules.signaling import PeerChannel


async def test_route_delivers_payload_verbatim_with_sender(router, registry, connect):
    connect("A")
    ws_b = connect("B")
    registry.add("x", "A")
    registry.add("x", "B")

    payload = {"type": "offer", "sdp": "v=0\r\n..."}
    assert router.route(MessageType.OFFER, payload, "x", "B", from_peer_id="A") is True
    await router.flush("B")

    assert ws_b.sent == [{
        "type": "offer",
        "data": {"payload": payload, "from_peer_id": "A"},
    }]


async def test_route_preserves_order_per_target(router, registry, connect):
    connect("A")
    ws_b = connect("B")
    registry.add("x", "A")
    registry.add("x", "B")

    router.route(MessageType.OFFER, {"sdp": "o"}, "x", "B", from_peer_id="A")
    for index in range(5):
        router.route(MessageType.ICE_CANDIDATE, {"candidate": f"c{index}"}, "x", "B", from_peer_id="A")
    await router.flush("B")

    assert ws_b.types() == ["offer"] + ["ice-candidate"] * 5
    candidates = [m["data"]["payload"]["candidate"] for m in ws_b.of_type("ice-candidate")]
    assert candidates == ["c0", "c1", "c2", "c3", "c4"]


async def test_route_to_missing_target_is_dropped(router, registry, connect):
    connect("A")
    registry.add("x", "A")

    assert router.route(MessageType.ANSWER, {}, "x", "B", from_peer_id="A") is False


async def test_route_to_target_in_other_room_is_dropped(router, registry, connect):
    connect("A")
    ws_c = connect("C")
    registry.add("x", "A")
    registry.add("y", "C")

    assert router.route(MessageType.OFFER, {}, "x", "C", from_peer_id="A") is False
    await settle()
    assert ws_c.sent == []


async def test_route_from_non_member_is_rejected(router, registry, connect):
    connect("A")
    connect("B")
    registry.add("x", "B")

    with pytest.raises(NotInRoomError):
        router.route(MessageType.OFFER, {}, "x", "B", from_peer_id="A")


async def test_broadcast_excludes_and_counts(router, registry, connect):
    sockets = {peer: connect(peer) for peer in "ABC"}
    for peer in "ABC":
        registry.add("x", peer)

    delivered = router.broadcast("x", {"type": "peer-joined", "data": {"peer_id": "C"}}, exclude=["C"])
    await asyncio.gather(*(router.flush(peer) for peer in "ABC"))

    assert delivered == 2
    assert sockets["A"].types() == ["peer-joined"]
    assert sockets["B"].types() == ["peer-joined"]
    assert sockets["C"].sent == []


async def test_send_to_unknown_peer_returns_false(router):
    assert router.send("nobody", {"type": "error", "data": {}}) is False


async def test_failed_socket_closes_channel(router, registry, connect):
    connect("A", FakeWebSocket(fail=True))

    assert router.send("A", {"type": "peer-id", "data": {}}) is True
    await settle()

    assert not router.is_connected("A")
    assert router.send("A", {"type": "peer-id", "data": {}}) is False


async def test_disconnect_removes_channel(router, connect):
    connect("A")
    assert router.is_connected("A")

    await router.disconnect("A")
    await router.disconnect("A")

    assert not router.is_connected("A")


async def test_channel_rejects_after_close():
    channel = PeerChannel("A", FakeWebSocket())
    channel.start()
    await channel.close()

    with pytest.raises(TransportDrop):
        channel.send({"type": "x"})


async def test_channel_full_queue_drops():
    websocket = FakeWebSocket()
    websocket.gate = asyncio.Event()
    channel = PeerChannel("A", websocket, queue_size=1)
    channel.start()

    channel.send({"type": "first"})
    await settle()  # writer가 첫 메시지를 꺼내 gate에서 대기
    channel.send({"type": "second"})
    with pytest.raises(TransportDrop):
        channel.send({"type": "third"})

    websocket.gate.set()
    assert await channel.flush(1.0) is True
    assert websocket.types() == ["first", "second"]
    await channel.close()


async def test_flush_times_out_on_stuck_socket():
    websocket = FakeWebSocket()
    websocket.gate = asyncio.Event()
    channel = PeerChannel("A", websocket)
    channel.start()
    channel.send({"type": "stuck"})

    assert await channel.flush(0.05) is False
    await channel.close()
