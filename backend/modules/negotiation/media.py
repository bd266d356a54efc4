"""미디어 기능(외부 협력자) 인터페이스.

협상 세션은 실제 미디어 전송을 직접 구현하지 않고 이 인터페이스를 통해
런타임이 제공하는 기능(aiortc, 브라우저 등)을 사용합니다. 테스트에서는
같은 인터페이스를 구현한 가짜 기능을 주입합니다.

Session descriptions are plain dicts ``{"type": "offer" | "answer", "sdp": str}``
and ICE candidates are dicts ``{"candidate": str, "sdpMid": str, "sdpMLineIndex": int}``.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

SessionDescription = Dict[str, str]
IceCandidate = Dict[str, Any]


class LocalTrack(Protocol):
    """로컬 송신 트랙. enabled는 음소거/비디오 끄기에 사용됨."""

    kind: str
    enabled: bool

    def stop(self) -> None: ...


class PeerConnectionHandle(Protocol):
    """피어 연결 하나. 콜백 속성은 세션이 설정함."""

    on_ice_candidate: Optional[Callable[[IceCandidate], None]]
    on_track: Optional[Callable[[Any], None]]
    on_connection_state_change: Optional[Callable[[str], None]]

    @property
    def local_description(self) -> Optional[SessionDescription]:
        """setLocalDescription 이후의 description (수집된 candidate가 SDP에 포함될 수 있음)."""
        ...

    def add_track(self, track: Any) -> Any: ...

    def remove_track(self, sender: Any) -> None: ...

    async def create_offer(self, ice_restart: bool = False) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    async def rollback(self) -> None:
        """보류 중인 로컬 offer를 되돌립니다 (have-local-offer → stable)."""
        ...

    async def close(self) -> None: ...


@dataclass
class LocalMedia:
    """획득한 로컬 트랙 묶음 (카메라/마이크)."""

    tracks: List[Any] = field(default_factory=list)

    @property
    def audio_tracks(self) -> List[Any]:
        return [t for t in self.tracks if t.kind == "audio"]

    @property
    def video_tracks(self) -> List[Any]:
        return [t for t in self.tracks if t.kind == "video"]

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


class MediaCapability(Protocol):
    """런타임이 제공하는 미디어 기능."""

    def acquire_local_tracks(self, constraints: Optional[Dict[str, Any]] = None) -> Awaitable[LocalMedia]: ...

    def acquire_display_track(self, constraints: Optional[Dict[str, Any]] = None) -> Awaitable[Any]: ...

    def create_connection(self) -> PeerConnectionHandle: ...
