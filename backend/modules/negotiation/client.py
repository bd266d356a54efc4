"""통화 클라이언트 모듈.

시그널링 채널과 미디어 기능을 묶어 룸에 입장하고, 원격 피어마다
NegotiationSession을 생성/관리합니다.

Message Flow:
    1. peer-id 수신 → 로컬 피어 ID 저장
    2. join(room_id): 로컬 미디어 획득 (실패 시 수신 전용) → join-room 전송
    3. room-joined → 기존 피어마다 offerer 세션 생성, offer 동시 시작
    4. peer-joined → answerer 세션 생성 (offer 대기)
    5. offer/answer/ice-candidate → 해당 세션으로 전달
    6. peer-disconnected → 세션 종료 및 제거

Note:
    - 메시지마다 태스크를 생성하지만 세션 내부 잠금이 FIFO이므로
      같은 피어에 대한 메시지는 도착 순서대로 처리됨
    - 한 피어의 오류는 해당 세션 안에서 처리되고 다른 피어에 영향 없음
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from .config import NegotiationConfig, negotiation_config
from .media import LocalMedia, MediaCapability
from .session import NegotiationSession
from .states import NegotiationRole, NegotiationState
from ..shared import (
    JoinRoomData,
    MediaAcquisitionError,
    MessageType,
    RelayData,
    SignalingError,
    TransportDrop,
    envelope,
)

logger = logging.getLogger(__name__)

# 룸에 있을 때만 의미가 있는 메시지 (leave 이후 늦게 도착한 것은 무시)
_ROOM_SCOPED = (
    MessageType.PEER_JOINED,
    MessageType.OFFER,
    MessageType.ANSWER,
    MessageType.ICE_CANDIDATE,
)


class CallClient:
    """룸 기반 메시 통화 클라이언트.

    Attributes:
        channel: send(dict)/async 반복/close()를 제공하는 시그널링 채널
        capability (MediaCapability): 로컬 미디어 및 연결 생성 기능
        peer_id (Optional[str]): 서버가 할당한 로컬 피어 ID
        room_id (Optional[str]): 현재 룸 ID
        is_initiator (bool): 룸을 생성한 피어인지 여부
        sessions (Dict[str, NegotiationSession]): 원격 피어 ID → 협상 세션
        local_media (LocalMedia): 획득한 카메라/마이크 트랙 (수신 전용이면 비어 있음)
        screen_track (Optional[Any]): 화면 공유 트랙

    Examples:
        >>> client = CallClient(channel, AiortcMediaCapability())
        >>> await client.run("room-1")
    """

    def __init__(
        self,
        channel: Any,
        capability: MediaCapability,
        constraints: Optional[Dict[str, Any]] = None,
        config: NegotiationConfig = negotiation_config,
        on_peer_state: Optional[Callable[[str, NegotiationState], None]] = None,
        on_remote_track: Optional[Callable[[str, Any], None]] = None,
    ):
        self.channel = channel
        self.capability = capability
        self.constraints = constraints
        self.config = config
        self.on_peer_state = on_peer_state
        self.on_remote_track = on_remote_track

        self.peer_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.is_initiator = False
        self.sessions: Dict[str, NegotiationSession] = {}
        self.local_media = LocalMedia()
        self.screen_track: Optional[Any] = None

        self._alive = True
        self._media_task: Optional[asyncio.Future] = None
        self._tasks: Set[asyncio.Task] = set()
        # 세션 종료 태스크는 취소하지 않고 close()에서 완료를 기다림
        self._closing: Set[asyncio.Task] = set()
        self._peer_states: Dict[str, NegotiationState] = {}

    @property
    def alive(self) -> bool:
        return self._alive

    # ------------------------------------------------------------------
    # room
    # ------------------------------------------------------------------

    async def join(self, room_id: str) -> None:
        """로컬 미디어를 획득한 뒤 룸 입장을 요청합니다.

        Args:
            room_id (str): 입장할 룸 ID

        Note:
            - 미디어 획득 실패/타임아웃 시 수신 전용으로 계속 진행
            - 획득 중 close()가 호출되면 join-room을 보내지 않음
        """
        self.local_media = await self._acquire_local_media()
        if not self._alive:
            return
        logger.info(f"[Client] 룸 입장 요청: {room_id} (로컬 트랙 {len(self.local_media.tracks)}개)")
        self._send(envelope(MessageType.JOIN_ROOM, JoinRoomData(room_id=room_id)))

    async def _acquire_local_media(self) -> LocalMedia:
        self._media_task = asyncio.ensure_future(
            self.capability.acquire_local_tracks(self.constraints)
        )
        try:
            media = await asyncio.wait_for(self._media_task, timeout=self.config.MEDIA_ACQUIRE_TIMEOUT)
        except MediaAcquisitionError as e:
            logger.warning(f"[Client] 로컬 미디어 획득 실패, 수신 전용으로 진행: {e}")
            return LocalMedia()
        except asyncio.TimeoutError:
            logger.warning(f"[Client] 로컬 미디어 획득 시간 초과 "
                           f"({self.config.MEDIA_ACQUIRE_TIMEOUT}s), 수신 전용으로 진행")
            return LocalMedia()
        except asyncio.CancelledError:
            if self._alive:
                raise
            return LocalMedia()
        finally:
            self._media_task = None

        if not self._alive:
            media.stop()
            return LocalMedia()
        return media

    def leave(self) -> None:
        """룸에서 나가고 모든 세션을 종료합니다. 로컬 미디어는 유지됩니다."""
        if self.room_id is None:
            return
        self._send(envelope(MessageType.LEAVE_ROOM))
        logger.info(f"[Client] 룸 퇴장: {self.room_id}")
        self.room_id = None
        for remote_peer_id in list(self.sessions):
            self._close_session(remote_peer_id)

    def request_rooms(self) -> None:
        self._send(envelope(MessageType.GET_ROOMS))

    # ------------------------------------------------------------------
    # incoming messages
    # ------------------------------------------------------------------

    async def listen(self) -> None:
        """채널이 닫힐 때까지 수신 메시지를 처리합니다."""
        async for message in self.channel:
            if not self._alive:
                break
            self.handle_message(message)

    def handle_message(self, message: Dict[str, Any]) -> None:
        """서버 메시지 하나를 처리합니다. 세션 작업은 태스크로 실행됩니다."""
        if not self._alive:
            return
        message_type = message.get("type")
        data = message.get("data") or {}

        if self.room_id is None and message_type in _ROOM_SCOPED:
            logger.debug(f"[Client] 룸 밖에서 받은 {message_type} 무시")
            return

        if message_type == MessageType.PEER_ID:
            self.peer_id = data.get("peer_id")
            logger.info(f"[Client] 피어 ID 할당: {self.peer_id}")

        elif message_type == MessageType.ROOM_JOINED:
            self.room_id = data.get("room_id")
            self.is_initiator = bool(data.get("is_initiator"))
            peers: List[str] = data.get("peers") or []
            logger.info(f"[Client] 룸 {self.room_id} 입장 완료 "
                        f"(initiator={self.is_initiator}, 기존 피어 {len(peers)}명)")
            for remote_peer_id in peers:
                if remote_peer_id in self.sessions:
                    continue
                session = self._create_session(remote_peer_id, NegotiationRole.OFFERER)
                self._spawn(session.start_offer(), remote_peer_id)

        elif message_type == MessageType.PEER_JOINED:
            remote_peer_id = data.get("peer_id")
            if remote_peer_id and remote_peer_id not in self.sessions:
                logger.info(f"[Client] 새 피어 입장: {remote_peer_id} (offer 대기)")
                self._create_session(remote_peer_id, NegotiationRole.ANSWERER)

        elif message_type == MessageType.OFFER:
            remote_peer_id = data.get("from_peer_id")
            if not remote_peer_id:
                logger.warning("[Client] 발신자 없는 offer 무시")
                return
            session = self.sessions.get(remote_peer_id)
            if session is None:
                logger.info(f"[Client] 미리 알지 못한 피어의 offer: {remote_peer_id}")
                session = self._create_session(remote_peer_id, NegotiationRole.ANSWERER)
            self._spawn(session.handle_offer(data.get("payload")), remote_peer_id)

        elif message_type == MessageType.ANSWER:
            self._dispatch(data, "handle_answer")

        elif message_type == MessageType.ICE_CANDIDATE:
            self._dispatch(data, "handle_ice_candidate")

        elif message_type == MessageType.PEER_DISCONNECTED:
            remote_peer_id = data.get("peer_id")
            logger.info(f"[Client] 피어 퇴장: {remote_peer_id}")
            self._close_session(remote_peer_id)

        elif message_type == MessageType.ROOMS_LIST:
            logger.info(f"[Client] 룸 목록: {data.get('rooms')}")

        elif message_type == MessageType.ERROR:
            logger.warning(f"[Client] 서버 오류 [{data.get('code')}]: {data.get('message')}")

        else:
            logger.warning(f"[Client] 알 수 없는 메시지 타입: {message_type}")

    def _dispatch(self, data: Dict[str, Any], method: str) -> None:
        remote_peer_id = data.get("from_peer_id")
        session = self.sessions.get(remote_peer_id)
        if session is None:
            logger.warning(f"[Client] 세션 없는 피어의 메시지 무시: {remote_peer_id}")
            return
        self._spawn(getattr(session, method)(data.get("payload")), remote_peer_id)

    # ------------------------------------------------------------------
    # sessions
    # ------------------------------------------------------------------

    def _outbound_tracks(self) -> List[Any]:
        tracks = list(self.local_media.tracks)
        if self.screen_track is not None:
            tracks.append(self.screen_track)
        return tracks

    def _create_session(self, remote_peer_id: str, role: NegotiationRole) -> NegotiationSession:
        session = NegotiationSession(
            remote_peer_id,
            role,
            self.capability,
            send=lambda message_type, payload: self._send_relay(remote_peer_id, message_type, payload),
            local_tracks=self._outbound_tracks(),
            local_peer_id=self.peer_id,
            config=self.config,
            on_state_change=self._handle_state_change,
            on_remote_track=self.on_remote_track,
        )
        self.sessions[remote_peer_id] = session
        self._peer_states[remote_peer_id] = session.state
        return session

    def _close_session(self, remote_peer_id: Optional[str]) -> None:
        session = self.sessions.pop(remote_peer_id, None)
        if session is None:
            return
        task = asyncio.create_task(self._guard(session.close(), remote_peer_id))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _handle_state_change(self, remote_peer_id: str, state: NegotiationState) -> None:
        self._peer_states[remote_peer_id] = state
        if state is NegotiationState.FAILED:
            logger.error(f"[Client] 피어 {remote_peer_id} 연결 실패 (재시도 한도 초과)")
        if self.on_peer_state:
            self.on_peer_state(remote_peer_id, state)

    def peer_states(self) -> Dict[str, NegotiationState]:
        """원격 피어별 연결 표시 상태 (종료된 피어는 closed로 남음)."""
        return dict(self._peer_states)

    def _spawn(self, coro, remote_peer_id: Optional[str]) -> asyncio.Task:
        task = asyncio.create_task(self._guard(coro, remote_peer_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro, remote_peer_id: Optional[str]) -> None:
        try:
            await coro
        except SignalingError as e:
            logger.warning(f"[Client] 피어 {remote_peer_id} [{e.code}]: {e}")
        except Exception as e:
            logger.error(f"[Client] 피어 {remote_peer_id} 처리 오류: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # outgoing messages
    # ------------------------------------------------------------------

    def _send(self, message: Dict[str, Any]) -> None:
        try:
            self.channel.send(message)
        except TransportDrop as e:
            logger.warning(f"[Client] [TransportDrop] {e}")

    def _send_relay(self, remote_peer_id: str, message_type: MessageType, payload: Any) -> None:
        if not self._alive or self.room_id is None:
            return
        data = RelayData(payload=payload, room_id=self.room_id, target_peer_id=remote_peer_id)
        self._send(envelope(message_type, data))

    # ------------------------------------------------------------------
    # media controls
    # ------------------------------------------------------------------

    async def start_screen_share(self, constraints: Optional[Dict[str, Any]] = None) -> Any:
        """화면 공유를 시작합니다. 모든 세션이 재협상됩니다.

        Raises:
            MediaAcquisitionError: 화면 캡처를 획득할 수 없는 경우
        """
        if self.screen_track is not None:
            return self.screen_track
        track = await self.capability.acquire_display_track(constraints)
        if not self._alive:
            track.stop()
            return None
        self.screen_track = track
        logger.info(f"[Client] 화면 공유 시작 (세션 {len(self.sessions)}개 재협상)")
        await asyncio.gather(*(
            self._guard(session.add_track(track), remote_peer_id)
            for remote_peer_id, session in list(self.sessions.items())
        ))
        return track

    async def stop_screen_share(self) -> None:
        """화면 공유를 중지합니다. 모든 세션이 재협상됩니다."""
        track, self.screen_track = self.screen_track, None
        if track is None:
            return
        logger.info(f"[Client] 화면 공유 중지 (세션 {len(self.sessions)}개 재협상)")
        await asyncio.gather(*(
            self._guard(session.remove_track(track), remote_peer_id)
            for remote_peer_id, session in list(self.sessions.items())
        ))
        track.stop()

    def set_audio_enabled(self, enabled: bool) -> None:
        """마이크 음소거/해제. 협상 상태는 변하지 않습니다."""
        for track in self.local_media.audio_tracks:
            track.enabled = enabled

    def set_video_enabled(self, enabled: bool) -> None:
        """카메라 끄기/켜기. 협상 상태는 변하지 않습니다."""
        for track in self.local_media.video_tracks:
            track.enabled = enabled

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def run(self, room_id: str) -> None:
        """룸에 입장하고 연결이 끊길 때까지 메시지를 처리합니다."""
        listener = asyncio.create_task(self.listen())
        try:
            await self.join(room_id)
            await listener
        finally:
            listener.cancel()
            await self.close()

    async def close(self) -> None:
        """모든 세션과 로컬 미디어를 정리합니다. 여러 번 호출해도 안전함.

        Cleanup Steps:
            1. liveness 플래그 해제 (이후 비동기 결과 무시)
            2. 진행 중인 미디어 획득 및 메시지 처리 태스크 취소
            3. 모든 세션 종료 (재시도 타이머 취소 포함)
            4. 로컬 트랙 및 화면 공유 트랙 종료
            5. 시그널링 채널 종료
        """
        if not self._alive:
            return
        self._alive = False

        if self._media_task is not None:
            self._media_task.cancel()

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        sessions = list(self.sessions.values())
        self.sessions.clear()
        await asyncio.gather(*(session.close() for session in sessions), return_exceptions=True)
        await asyncio.gather(*list(self._closing), return_exceptions=True)

        self.local_media.stop()
        self.local_media = LocalMedia()
        if self.screen_track is not None:
            self.screen_track.stop()
            self.screen_track = None

        await self.channel.close()
        logger.info("[Client] 종료 완료")
