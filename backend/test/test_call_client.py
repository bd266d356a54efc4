"""CallClient 테스트 - 메시지 처리와 세션 생성/정리."""

import asyncio

from conftest import FakeCapability, FakeSignalingChannel, settle
from modules.negotiation import CallClient, NegotiationRole, NegotiationState
from modules.negotiation.config import NegotiationConfig

S = NegotiationState
FAST = NegotiationConfig(MAX_ATTEMPTS=3, RETRY_DELAY=0.01, MEDIA_ACQUIRE_TIMEOUT=0.2)


def message(message_type, **data):
    return {"type": message_type, "data": data}


async def joined_client(capability=None, peers=(), peer_id="me"):
    capability = capability or FakeCapability()
    channel = FakeSignalingChannel()
    client = CallClient(channel, capability, config=FAST)
    client.handle_message(message("peer-id", peer_id=peer_id))
    await client.join("x")
    client.handle_message(message("room-joined", room_id="x", is_initiator=not peers, peers=list(peers)))
    await settle()
    return client, channel, capability


async def test_join_acquires_media_then_requests_room():
    capability = FakeCapability()
    channel = FakeSignalingChannel()
    client = CallClient(channel, capability, config=FAST)
    client.handle_message(message("peer-id", peer_id="me"))

    await client.join("x")

    assert client.peer_id == "me"
    assert len(client.local_media.tracks) == 2
    assert channel.sent == [{"type": "join-room", "data": {"room_id": "x"}}]
    await client.close()


async def test_media_failure_falls_back_to_receive_only():
    channel = FakeSignalingChannel()
    client = CallClient(channel, FakeCapability(fail_media=True), config=FAST)

    await client.join("x")

    assert client.local_media.tracks == []
    assert channel.of_type("join-room")
    await client.close()


async def test_media_timeout_falls_back_to_receive_only():
    channel = FakeSignalingChannel()
    client = CallClient(channel, FakeCapability(media_delay=5.0), config=FAST)

    await client.join("x")

    assert client.local_media.tracks == []
    assert channel.of_type("join-room")
    await client.close()


async def test_room_joined_starts_offer_to_each_existing_peer():
    client, channel, capability = await joined_client(peers=["p1", "p2"])

    offers = channel.of_type("offer")
    assert {o["data"]["target_peer_id"] for o in offers} == {"p1", "p2"}
    assert all(o["data"]["room_id"] == "x" for o in offers)
    for peer in ("p1", "p2"):
        session = client.sessions[peer]
        assert session.local_role is NegotiationRole.OFFERER
        assert session.state is S.HAVE_LOCAL_OFFER
        assert len(session.local_tracks) == 2
    assert client.is_initiator is False
    await client.close()


async def test_peer_joined_waits_for_offer():
    client, channel, _ = await joined_client()

    client.handle_message(message("peer-joined", peer_id="p9"))
    await settle()

    session = client.sessions["p9"]
    assert session.local_role is NegotiationRole.ANSWERER
    assert session.state is S.IDLE
    assert channel.of_type("offer") == []
    assert client.peer_states() == {"p9": S.IDLE}
    await client.close()


async def test_unsolicited_offer_creates_session_and_answers():
    client, channel, _ = await joined_client()

    client.handle_message(message("offer", payload={"type": "offer", "sdp": "o"}, from_peer_id="p5"))
    await settle()

    assert client.sessions["p5"].state is S.STABLE
    [answer] = channel.of_type("answer")
    assert answer["data"]["target_peer_id"] == "p5"
    assert answer["data"]["payload"]["type"] == "answer"
    await client.close()


async def test_answer_and_candidates_are_routed_to_session():
    client, channel, _ = await joined_client(peers=["p1"])
    session = client.sessions["p1"]

    client.handle_message(message("ice-candidate", payload={"candidate": "c0"}, from_peer_id="p1"))
    client.handle_message(message("answer", payload={"type": "answer", "sdp": "a"}, from_peer_id="p1"))
    client.handle_message(message("ice-candidate", payload={"candidate": "c1"}, from_peer_id="p1"))
    await settle()

    assert session.state is S.STABLE
    assert [c["candidate"] for c in session.connection.added_candidates] == ["c0", "c1"]
    await client.close()


async def test_messages_from_unknown_peer_are_ignored():
    client, channel, _ = await joined_client()

    client.handle_message(message("answer", payload={}, from_peer_id="ghost"))
    client.handle_message(message("ice-candidate", payload={}, from_peer_id="ghost"))
    client.handle_message(message("error", code="not-in-room", message="nope"))
    client.handle_message(message("something-else"))
    await settle()

    assert client.sessions == {}
    await client.close()


async def test_out_of_order_answer_is_contained_per_peer():
    client, channel, _ = await joined_client(peers=["p1"])
    client.handle_message(message("peer-joined", peer_id="p2"))

    # p2 세션은 idle이므로 answer는 거부되지만 p1은 계속 진행
    client.handle_message(message("answer", payload={"type": "answer", "sdp": "a"}, from_peer_id="p2"))
    client.handle_message(message("answer", payload={"type": "answer", "sdp": "a"}, from_peer_id="p1"))
    await settle()

    assert client.sessions["p2"].state is S.IDLE
    assert client.sessions["p1"].state is S.STABLE
    await client.close()


async def test_peer_disconnected_closes_and_removes_session():
    client, channel, capability = await joined_client(peers=["p1"])
    connection = client.sessions["p1"].connection

    client.handle_message(message("peer-disconnected", peer_id="p1"))
    await settle()

    assert "p1" not in client.sessions
    assert connection.closed
    assert client.peer_states()["p1"] is S.CLOSED
    await client.close()


async def test_close_right_after_peer_disconnected_finishes_session(capability):
    client, channel, _ = await joined_client(capability, peers=["p1"])
    session = client.sessions["p1"]
    connection = session.connection
    connection.emit_state("failed")  # 재시도 타이머 예약

    client.handle_message(message("peer-disconnected", peer_id="p1"))
    await client.close()

    assert session.state is S.CLOSED
    assert connection.closed
    await asyncio.sleep(0.05)
    assert [call for call in connection.calls if call[0] == "create_offer"] == [("create_offer", False)]


async def test_stale_messages_after_leave_are_ignored():
    client, channel, capability = await joined_client(peers=["p1"])
    client.leave()
    await settle()
    connections_before = len(capability.connections)

    client.handle_message(message("offer", payload={"type": "offer", "sdp": "o"}, from_peer_id="p7"))
    client.handle_message(message("peer-joined", peer_id="p8"))
    await settle()

    assert client.sessions == {}
    assert len(capability.connections) == connections_before
    assert channel.of_type("answer") == []
    await client.close()


async def test_screen_share_renegotiates_every_session():
    client, channel, _ = await joined_client(peers=["p1", "p2"])
    for peer in ("p1", "p2"):
        client.handle_message(message("answer", payload={"type": "answer", "sdp": "a"}, from_peer_id=peer))
    await settle()

    track = await client.start_screen_share()

    for peer in ("p1", "p2"):
        session = client.sessions[peer]
        assert session.state is S.HAVE_LOCAL_OFFER
        assert track in session.local_tracks
    assert len(channel.of_type("offer")) == 4

    # 공유 중에 들어온 피어도 화면 트랙을 받음
    client.handle_message(message("peer-joined", peer_id="p3"))
    assert track in client.sessions["p3"].local_tracks

    await client.stop_screen_share()
    assert track.stopped
    assert track not in client.sessions["p1"].local_tracks
    await client.close()


async def test_mute_and_video_off_do_not_renegotiate():
    client, channel, _ = await joined_client(peers=["p1"])
    client.handle_message(message("answer", payload={"type": "answer", "sdp": "a"}, from_peer_id="p1"))
    await settle()

    client.set_audio_enabled(False)
    client.set_video_enabled(False)
    await settle()

    assert [t.enabled for t in client.local_media.tracks] == [False, False]
    assert client.sessions["p1"].state is S.STABLE
    assert len(channel.of_type("offer")) == 1

    client.set_audio_enabled(True)
    assert client.local_media.audio_tracks[0].enabled is True
    await client.close()


async def test_leave_sends_leave_room_and_closes_sessions():
    client, channel, _ = await joined_client(peers=["p1"])
    session = client.sessions["p1"]

    client.leave()
    await settle()

    assert channel.of_type("leave-room") == [{"type": "leave-room", "data": {}}]
    assert client.sessions == {}
    assert session.state is S.CLOSED
    assert client.room_id is None
    await client.close()


async def test_close_releases_everything():
    client, channel, capability = await joined_client(peers=["p1"])
    tracks = list(client.local_media.tracks)
    session = client.sessions["p1"]

    await client.close()
    await client.close()

    assert not client.alive
    assert session.state is S.CLOSED
    assert all(track.stopped for track in tracks)
    assert channel.closed

    client.handle_message(message("peer-joined", peer_id="late"))
    assert client.sessions == {}


async def test_close_during_media_acquisition():
    capability = FakeCapability(media_delay=5.0)
    channel = FakeSignalingChannel()
    client = CallClient(channel, capability, config=NegotiationConfig(MEDIA_ACQUIRE_TIMEOUT=10.0))

    join = asyncio.create_task(client.join("x"))
    await settle()
    await client.close()
    await join

    assert channel.of_type("join-room") == []
    assert capability.acquired == []


async def test_run_processes_messages_until_channel_ends():
    capability = FakeCapability()
    channel = FakeSignalingChannel()
    client = CallClient(channel, capability, config=FAST)
    channel.feed(message("peer-id", peer_id="me"))
    channel.feed(message("room-joined", room_id="x", is_initiator=True, peers=[]))
    channel.feed(message("offer", payload={"type": "offer", "sdp": "o"}, from_peer_id="p1"))

    run = asyncio.create_task(client.run("x"))
    await settle(50)
    channel.feed(None)
    await asyncio.wait_for(run, 1.0)

    assert client.peer_id == "me"
    assert channel.of_type("answer")
    assert not client.alive
    assert channel.closed
