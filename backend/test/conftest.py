"""테스트 공용 가짜 객체.

실제 네트워크/미디어 없이 시그널링 서버와 협상 세션을 검증하기 위한
WebSocket, 미디어 기능, 시그널링 채널 대역을 제공합니다.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from modules.negotiation import LocalMedia
from modules.shared import MediaAcquisitionError
from modules.signaling import MessageRouter, PeerRegistry, RoomManager


async def settle(rounds: int = 20) -> None:
    """대기 중인 태스크들이 진행되도록 이벤트 루프를 여러 번 양보합니다."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ----------------------------------------------------------------------
# server side
# ----------------------------------------------------------------------

class FakeWebSocket:
    """send_json만 구현한 WebSocket 대역."""

    def __init__(self, fail: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None

    async def send_json(self, message: Dict[str, Any]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(message)

    def types(self) -> List[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["type"] == message_type]


@pytest.fixture
def registry():
    return PeerRegistry()


@pytest.fixture
def router(registry):
    return MessageRouter(registry)


@pytest.fixture
def room_manager(registry, router):
    return RoomManager(registry, router, flush_timeout=1.0)


@pytest.fixture
async def connect(router):
    """피어를 가짜 WebSocket으로 라우터에 연결하는 헬퍼."""
    sockets: Dict[str, FakeWebSocket] = {}

    def _connect(peer_id: str, websocket: Optional[FakeWebSocket] = None) -> FakeWebSocket:
        websocket = websocket or FakeWebSocket()
        router.connect(peer_id, websocket)
        sockets[peer_id] = websocket
        return websocket

    yield _connect
    await router.close_all()


# ----------------------------------------------------------------------
# client side
# ----------------------------------------------------------------------

class FakeTrack:
    def __init__(self, kind: str, label: str = ""):
        self.kind = kind
        self.label = label or kind
        self.enabled = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True

    def __repr__(self) -> str:
        return f"FakeTrack({self.label})"


class FakeSender:
    def __init__(self, track: Any):
        self.track = track


class FakeConnection:
    """PeerConnectionHandle 대역. 모든 호출을 calls에 기록합니다."""

    def __init__(self, index: int):
        self.index = index
        self.on_ice_candidate = None
        self.on_track = None
        self.on_connection_state_change = None
        self.calls: List[tuple] = []
        self.senders: List[FakeSender] = []
        self.added_candidates: List[Dict[str, Any]] = []
        self.local: Optional[Dict[str, str]] = None
        self.remote: Optional[Dict[str, str]] = None
        self.closed = False
        self.offer_count = 0
        self.fail_remote_description = False
        self.fail_offer = False
        # set_remote_description 도중 호출됨 (비동기 작업 중 연결 이벤트 흉내)
        self.during_remote_description = None
        # 설정되면 create_offer가 이 이벤트를 기다림
        self.offer_gate: Optional[asyncio.Event] = None

    @property
    def local_description(self) -> Optional[Dict[str, str]]:
        return self.local

    @property
    def active_tracks(self) -> List[Any]:
        return [s.track for s in self.senders if s.track is not None]

    def add_track(self, track: Any) -> FakeSender:
        sender = FakeSender(track)
        self.senders.append(sender)
        self.calls.append(("add_track", track))
        return sender

    def remove_track(self, sender: FakeSender) -> None:
        self.calls.append(("remove_track", sender.track))
        sender.track = None

    async def create_offer(self, ice_restart: bool = False) -> Dict[str, str]:
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        if self.fail_offer:
            raise RuntimeError("offer failed")
        self.offer_count += 1
        self.calls.append(("create_offer", ice_restart))
        tracks = ",".join(t.label for t in self.active_tracks)
        return {"type": "offer", "sdp": f"offer-{self.index}-{self.offer_count}[{tracks}]"}

    async def create_answer(self) -> Dict[str, str]:
        self.calls.append(("create_answer",))
        tracks = ",".join(t.label for t in self.active_tracks)
        return {"type": "answer", "sdp": f"answer-{self.index}[{tracks}]"}

    async def set_local_description(self, description: Dict[str, str]) -> None:
        await asyncio.sleep(0)
        self.calls.append(("set_local_description", description["type"]))
        self.local = description

    async def set_remote_description(self, description: Dict[str, str]) -> None:
        await asyncio.sleep(0)
        if self.during_remote_description is not None:
            self.during_remote_description()
        if self.fail_remote_description:
            raise ValueError("bad sdp")
        self.calls.append(("set_remote_description", description["type"]))
        self.remote = description

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self.calls.append(("add_ice_candidate", candidate.get("candidate")))
        self.added_candidates.append(candidate)

    async def rollback(self) -> None:
        self.calls.append(("rollback",))

    async def close(self) -> None:
        self.closed = True
        self.calls.append(("close",))

    # 테스트에서 미디어 이벤트를 흉내낼 때 사용
    def emit_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.on_ice_candidate:
            self.on_ice_candidate(candidate)

    def emit_state(self, state: str) -> None:
        if self.on_connection_state_change:
            self.on_connection_state_change(state)


class FakeCapability:
    """MediaCapability 대역."""

    def __init__(self, fail_media: bool = False, media_delay: float = 0.0):
        self.connections: List[FakeConnection] = []
        self.fail_media = fail_media
        self.media_delay = media_delay
        self.acquired: List[LocalMedia] = []

    async def acquire_local_tracks(self, constraints: Optional[Dict[str, Any]] = None) -> LocalMedia:
        if self.media_delay:
            await asyncio.sleep(self.media_delay)
        if self.fail_media:
            raise MediaAcquisitionError("permission denied")
        media = LocalMedia([FakeTrack("audio", "mic"), FakeTrack("video", "cam")])
        self.acquired.append(media)
        return media

    async def acquire_display_track(self, constraints: Optional[Dict[str, Any]] = None) -> FakeTrack:
        return FakeTrack("video", "screen")

    def create_connection(self) -> FakeConnection:
        connection = FakeConnection(len(self.connections))
        self.connections.append(connection)
        return connection


class FakeSignalingChannel:
    """CallClient용 시그널링 채널 대역."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def send(self, message: Dict[str, Any]) -> None:
        self.sent.append(message)

    def feed(self, message: Dict[str, Any]) -> None:
        self.incoming.put_nowait(message)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        message = await self.incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def close(self) -> None:
        self.closed = True

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["type"] == message_type]


class Outbox:
    """NegotiationSession의 send 콜백을 기록합니다."""

    def __init__(self):
        self.messages: List[tuple] = []

    def __call__(self, message_type, payload) -> None:
        self.messages.append((message_type.value, payload))

    def types(self) -> List[str]:
        return [t for t, _ in self.messages]

    def payloads(self, message_type: str) -> List[Any]:
        return [p for t, p in self.messages if t == message_type]


@pytest.fixture
def capability():
    return FakeCapability()


@pytest.fixture
def outbox():
    return Outbox()
