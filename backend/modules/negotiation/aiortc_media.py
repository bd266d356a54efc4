"""aiortc 기반 미디어 기능 구현.

MediaCapability / PeerConnectionHandle 인터페이스를 aiortc의
RTCPeerConnection과 MediaPlayer로 구현합니다.

aiortc 제약:
    - trickle ICE 이벤트를 내보내지 않음. 수집된 candidate는
      setLocalDescription 이후 localDescription SDP에 포함됨
    - removeTrack이 없으므로 sender.replaceTrack(None)으로 송신 중지
    - rollback이 없으므로 보류 중인 로컬 offer를 직접 되돌림 (재협상 glare)
    - createOffer에 iceRestart 옵션이 없음 (플래그는 로그만 남김)

Constraints Format:
    {
        "audio": {"file": "default", "format": "pulse"} | False,
        "video": {"file": "/dev/video0", "format": "v4l2",
                  "options": {"video_size": "640x480"}} | False
    }
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer, MediaRelay
from aiortc.sdp import candidate_from_sdp

from .media import IceCandidate, LocalMedia, SessionDescription
from .tracks import ToggleableTrack
from ..shared import MediaAcquisitionError
from ..signaling.config import ice_config

logger = logging.getLogger(__name__)

DEFAULT_CONSTRAINTS: Dict[str, Any] = {
    "audio": {"file": "default", "format": "pulse"},
    "video": {"file": "/dev/video0", "format": "v4l2", "options": {"video_size": "640x480"}},
}

DEFAULT_DISPLAY_CONSTRAINTS: Dict[str, Any] = {
    "file": ":0.0",
    "format": "x11grab",
    "options": {"video_size": "1280x720", "framerate": "15"},
}


def build_rtc_configuration() -> RTCConfiguration:
    """ICE 서버 설정으로 RTCConfiguration을 생성합니다."""
    ice_servers = []
    for server in ice_config.as_ice_servers():
        ice_servers.append(RTCIceServer(
            urls=[server["urls"]],
            username=server.get("username"),
            credential=server.get("credential"),
        ))
    if not ice_config.has_turn_server:
        logger.warning("[WebRTC] TURN 서버 설정 없음 - STUN만 사용")
    return RTCConfiguration(iceServers=ice_servers)


class AiortcConnection:
    """RTCPeerConnection 하나를 감싼 PeerConnectionHandle 구현.

    로컬 트랙은 MediaRelay 구독(proxy)으로 추가합니다. 같은 원본 트랙을
    여러 연결에 직접 addTrack하면 sender들이 원본의 recv()를 나눠 가져
    피어마다 프레임 일부만 받게 됩니다.
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None, relay: Optional[MediaRelay] = None):
        self.pc = RTCPeerConnection(configuration=configuration)
        self.relay = relay or MediaRelay()
        self.on_ice_candidate: Optional[Callable[[IceCandidate], None]] = None
        self.on_track: Optional[Callable[[Any], None]] = None
        self.on_connection_state_change: Optional[Callable[[str], None]] = None

        # sender -> 이 연결 전용 relay proxy
        self._proxies: Dict[Any, MediaStreamTrack] = {}

        @self.pc.on("track")
        def on_track(track: MediaStreamTrack):
            if self.on_track:
                self.on_track(track)

        @self.pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[WebRTC] 연결 상태: {self.pc.connectionState}")
            if self.on_connection_state_change:
                self.on_connection_state_change(self.pc.connectionState)

    @property
    def local_description(self) -> Optional[SessionDescription]:
        description = self.pc.localDescription
        if description is None:
            return None
        return {"type": description.type, "sdp": description.sdp}

    def add_track(self, track: Any) -> Any:
        proxy = self.relay.subscribe(track)
        sender = self.pc.addTrack(proxy)
        self._proxies[sender] = proxy
        return sender

    def remove_track(self, sender: Any) -> None:
        sender.replaceTrack(None)
        proxy = self._proxies.pop(sender, None)
        if proxy is not None:
            proxy.stop()

    async def create_offer(self, ice_restart: bool = False) -> SessionDescription:
        if ice_restart:
            logger.debug("[WebRTC] aiortc는 iceRestart 옵션을 지원하지 않음 - 일반 offer 생성")
        offer = await self.pc.createOffer()
        return {"type": offer.type, "sdp": offer.sdp}

    async def create_answer(self) -> SessionDescription:
        answer = await self.pc.createAnswer()
        return {"type": answer.type, "sdp": answer.sdp}

    async def set_local_description(self, description: SessionDescription) -> None:
        await self.pc.setLocalDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        sdp = candidate.get("candidate") or ""
        if not sdp:
            # end-of-candidates
            return
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:"):]
        ice_candidate = candidate_from_sdp(sdp)
        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self.pc.addIceCandidate(ice_candidate)

    async def rollback(self) -> None:
        """보류 중인 로컬 offer를 되돌려 stable로 복귀합니다.

        aiortc는 type="rollback" description을 지원하지 않으므로 setLocalDescription(offer)가
        바꾼 보류 description과 signaling 상태만 되돌립니다. 이전에 협상된 연결은 유지됨.
        """
        if self.pc.signalingState != "have-local-offer":
            return
        self.pc._RTCPeerConnection__pendingLocalDescription = None
        self.pc._RTCPeerConnection__setSignalingState("stable")
        logger.info("[WebRTC] 로컬 offer rollback")

    async def close(self) -> None:
        for proxy in self._proxies.values():
            proxy.stop()
        self._proxies.clear()
        await self.pc.close()


class AiortcMediaCapability:
    """aiortc MediaPlayer로 로컬 장치를 열고 AiortcConnection을 생성합니다.

    Attributes:
        configuration (RTCConfiguration): 새 연결에 사용할 ICE 설정
        players (List[MediaPlayer]): 지금까지 연 장치
        relay (MediaRelay): 로컬 트랙을 모든 연결에 나눠 주는 릴레이 (연결마다 구독)
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None):
        self.configuration = configuration or build_rtc_configuration()
        self.players: List[MediaPlayer] = []
        self.relay = MediaRelay()

    async def _open_player(self, device: Dict[str, Any]) -> MediaPlayer:
        loop = asyncio.get_running_loop()
        try:
            # 장치 열기는 블로킹 호출
            player = await loop.run_in_executor(
                None,
                lambda: MediaPlayer(device["file"], format=device.get("format"), options=device.get("options") or {}),
            )
        except Exception as e:
            raise MediaAcquisitionError(f"cannot open {device.get('file')}: {e}") from e
        self.players.append(player)
        return player

    async def acquire_local_tracks(self, constraints: Optional[Dict[str, Any]] = None) -> LocalMedia:
        """카메라/마이크 트랙을 획득합니다.

        Raises:
            MediaAcquisitionError: 장치를 열 수 없거나 요청한 트랙이 없는 경우
        """
        constraints = DEFAULT_CONSTRAINTS if constraints is None else constraints
        media = LocalMedia()
        try:
            for kind, label in (("audio", "microphone"), ("video", "camera")):
                device = constraints.get(kind)
                if not device:
                    continue
                player = await self._open_player(device)
                source = getattr(player, kind)
                if source is None:
                    raise MediaAcquisitionError(f"{device.get('file')} has no {kind} track")
                media.tracks.append(ToggleableTrack(source, label=label))
                logger.info(f"[Media] {label} 획득: {device.get('file')}")
        except BaseException:
            media.stop()
            raise
        return media

    async def acquire_display_track(self, constraints: Optional[Dict[str, Any]] = None) -> Any:
        """화면 캡처 트랙을 획득합니다."""
        device = constraints or DEFAULT_DISPLAY_CONSTRAINTS
        player = await self._open_player(device)
        if player.video is None:
            raise MediaAcquisitionError(f"{device.get('file')} has no video track")
        logger.info(f"[Media] 화면 캡처 획득: {device.get('file')}")
        return ToggleableTrack(player.video, label="screen")

    def create_connection(self) -> AiortcConnection:
        return AiortcConnection(self.configuration, relay=self.relay)
