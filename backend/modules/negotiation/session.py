"""피어 쌍 협상 세션 모듈.

원격 피어 하나에 대한 offer/answer/ICE 교환을 명시적인 상태 기계로
구동합니다. 미디어 기능(PeerConnectionHandle)의 비동기 작업은 같은 세션
안에서 순서대로 await되며, 서로 다른 원격 피어의 세션은 독립적으로 동시에
진행됩니다.

주요 기능:
    - offer 생성/전송 (offerer), offer 수신 후 answer 생성/전송 (answerer)
    - 원격 description 설정 전에 도착한 ICE candidate 버퍼링 및 순서대로 적용
    - 트랙 추가/제거 시 ICE restart 재협상 (화면 공유 시작/중지)
    - 연결 실패 시 제한된 자동 재시도 후 failed 상태 전환
    - glare(동시 offer) 처리: 피어 ID가 작은 쪽이 자신의 offer를 버리고 응답

Classes:
    NegotiationSession: 원격 피어 하나에 대한 협상 상태 기계

See Also:
    states.py: 상태 및 전이 표
    client.py: 세션들을 생성/소유하는 CallClient
"""
import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from .config import NegotiationConfig, negotiation_config
from .media import IceCandidate, MediaCapability, PeerConnectionHandle, SessionDescription
from .states import NegotiationRole, NegotiationState, check_transition
from ..shared import MessageType, NegotiationFailure, OutOfOrderMessageError

logger = logging.getLogger(__name__)

SendFn = Callable[[MessageType, Any], None]
StateCallback = Callable[[str, NegotiationState], None]
TrackCallback = Callable[[str, Any], None]


class NegotiationSession:
    """원격 피어 하나에 대한 협상 상태 기계.

    Attributes:
        remote_peer_id (str): 상대 피어 ID
        local_peer_id (Optional[str]): 로컬 피어 ID (glare 시 polite 판정에 사용)
        local_role (NegotiationRole): offerer 또는 answerer
        state (NegotiationState): 현재 협상 상태
        pending_ice_candidates (Deque[IceCandidate]): 원격 description 설정 전 수신한 candidate
        connection (PeerConnectionHandle): 미디어 기능이 제공한 피어 연결
        connection_state (str): 마지막으로 보고된 연결 상태 (new/connecting/connected/failed...)
        failure_count (int): 연속 연결 실패 횟수
        negotiated_tracks (List[Any]): 마지막 offer/answer 생성 시점의 송신 트랙

    Concurrency:
        - 세션 내부 작업은 asyncio.Lock으로 직렬화 (Lock은 FIFO이므로 도착 순서 유지)
        - close()는 잠금을 기다리지 않음. 진행 중인 작업은 await 이후 생존 여부를
          확인하고 결과를 적용하지 않음

    Examples:
        >>> session = NegotiationSession("B", NegotiationRole.OFFERER, capability, send)
        >>> await session.start_offer()
        >>> session.state
        <NegotiationState.HAVE_LOCAL_OFFER: 'have-local-offer'>
        >>> await session.handle_answer({"type": "answer", "sdp": "..."})
        >>> session.state
        <NegotiationState.STABLE: 'stable'>
    """

    def __init__(
        self,
        remote_peer_id: str,
        local_role: NegotiationRole,
        capability: MediaCapability,
        send: SendFn,
        local_tracks: Iterable[Any] = (),
        local_peer_id: Optional[str] = None,
        config: NegotiationConfig = negotiation_config,
        on_state_change: Optional[StateCallback] = None,
        on_remote_track: Optional[TrackCallback] = None,
    ):
        """NegotiationSession 초기화.

        Args:
            remote_peer_id (str): 상대 피어 ID
            local_role (NegotiationRole): 이 세션에서 로컬의 역할
            capability (MediaCapability): 연결 생성에 사용할 미디어 기능
            send (SendFn): (메시지 타입, payload)를 상대에게 보내는 함수. 블로킹되지 않아야 함
            local_tracks (Iterable[Any]): 처음부터 송신할 로컬 트랙
            local_peer_id (Optional[str]): 로컬 피어 ID
            config (NegotiationConfig): 재시도 설정
            on_state_change (Optional[StateCallback]): 상태 변경 알림 (UI 표시용)
            on_remote_track (Optional[TrackCallback]): 원격 트랙 수신 알림
        """
        self.remote_peer_id = remote_peer_id
        self.local_peer_id = local_peer_id
        self.local_role = local_role
        self.state = NegotiationState.IDLE
        self.pending_ice_candidates: Deque[IceCandidate] = deque()
        self.connection_state = "new"
        self.failure_count = 0
        self.negotiated_tracks: List[Any] = []

        self._capability = capability
        self._send = send
        self._config = config
        self._on_state_change = on_state_change
        self._on_remote_track = on_remote_track

        self._lock = asyncio.Lock()
        self._has_remote_description = False
        self._renegotiation_pending = False

        # 로컬 description 전송 전에 생성된 로컬 candidate는 전송 후에 보냄
        self._hold_candidates = True
        self._outgoing_candidates: List[IceCandidate] = []

        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._retry_task: Optional[asyncio.Task] = None

        # track -> sender (삽입 순서 유지)
        self._senders: Dict[Any, Any] = {}
        self.connection: PeerConnectionHandle = self._open_connection(list(local_tracks))

    # ------------------------------------------------------------------
    # properties
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self.state is NegotiationState.CLOSED

    @property
    def _active(self) -> bool:
        # await 도중 close() 또는 failed 전환이 일어났으면 결과를 적용하지 않음
        return self.state not in (NegotiationState.CLOSED, NegotiationState.FAILED)

    @property
    def local_tracks(self) -> List[Any]:
        return list(self._senders)

    @property
    def has_remote_description(self) -> bool:
        return self._has_remote_description

    def _is_polite(self) -> bool:
        return self.local_peer_id is not None and self.local_peer_id < self.remote_peer_id

    # ------------------------------------------------------------------
    # connection wiring
    # ------------------------------------------------------------------

    def _open_connection(self, tracks: List[Any]) -> PeerConnectionHandle:
        connection = self._capability.create_connection()
        connection.on_ice_candidate = self._on_local_ice_candidate
        connection.on_track = self._on_track
        connection.on_connection_state_change = self._on_connection_state_change
        self._senders = {track: connection.add_track(track) for track in tracks}
        return connection

    @staticmethod
    def _unbind(connection: PeerConnectionHandle) -> None:
        connection.on_ice_candidate = None
        connection.on_track = None
        connection.on_connection_state_change = None

    async def _recreate_connection(self) -> None:
        """로컬 offer를 버리기 위해 같은 트랙으로 새 연결을 만듭니다."""
        old = self.connection
        self._unbind(old)
        self.connection = self._open_connection(list(self._senders))
        self._has_remote_description = False
        self._outgoing_candidates.clear()
        try:
            await old.close()
        except Exception as e:
            logger.warning(f"[Negotiation] {self._tag} 이전 연결 종료 실패: {e}")

    @property
    def _tag(self) -> str:
        return f"peer={self.remote_peer_id[:8]}"

    def _transition(self, new_state: NegotiationState) -> None:
        check_transition(self.state, new_state)
        old_state = self.state
        self.state = new_state
        logger.info(f"[Negotiation] {self._tag} 상태: {old_state.value} -> {new_state.value}")
        if self._on_state_change and old_state is not new_state:
            try:
                self._on_state_change(self.remote_peer_id, new_state)
            except Exception as e:
                logger.error(f"[Negotiation] 상태 변경 콜백 오류: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # offer / answer
    # ------------------------------------------------------------------

    async def start_offer(self, ice_restart: bool = False) -> None:
        """offer를 생성해 상대에게 전송합니다 (idle/stable → have-local-offer).

        Args:
            ice_restart (bool): ICE restart 플래그. 재협상/재시도 시 True

        Note:
            - 호출 시점의 송신 트랙 집합이 offer에 반영됨
            - 세션이 closed/failed이면 아무 작업도 하지 않음
        """
        async with self._lock:
            await self._start_offer_locked(ice_restart)

    async def _start_offer_locked(self, ice_restart: bool) -> None:
        if self.state in (NegotiationState.CLOSED, NegotiationState.FAILED):
            return
        self._transition(NegotiationState.HAVE_LOCAL_OFFER)
        self._hold_candidates = True
        connection = self.connection

        try:
            offer = await connection.create_offer(ice_restart=ice_restart)
            if not self._active or connection is not self.connection:
                return
            await connection.set_local_description(offer)
            if not self._active or connection is not self.connection:
                return
        except Exception as e:
            logger.error(f"[Negotiation] {self._tag} offer 생성 실패: {e}")
            self._register_failure(f"offer creation failed: {e}")
            return

        self.negotiated_tracks = list(self._senders)
        logger.info(f"[Negotiation] {self._tag} offer 전송 (ice_restart={ice_restart}, "
                    f"트랙 {len(self.negotiated_tracks)}개)")
        self._send(MessageType.OFFER, connection.local_description or offer)
        self._release_candidates()

    async def handle_offer(self, offer: SessionDescription) -> None:
        """원격 offer를 적용하고 answer를 전송합니다.

        Args:
            offer (SessionDescription): 원격 offer

        Raises:
            OutOfOrderMessageError: glare에서 이 쪽이 offer를 유지하는 경우 (offer 무시)

        Note:
            - idle/stable에서 수락 (stable은 원격 재협상)
            - have-local-offer(glare): polite 측이면 로컬 offer를 버리고 수락
              (첫 협상은 연결을 새로 만들고, 재협상은 rollback 후 응답하고 다시 offer)
            - 원격 description 설정 직후 버퍼링된 candidate를 도착 순서대로 적용
        """
        async with self._lock:
            if self.closed:
                logger.debug(f"[Negotiation] {self._tag} closed 세션 offer 무시")
                return
            if self.state is NegotiationState.FAILED:
                raise OutOfOrderMessageError(f"offer from {self.remote_peer_id} on failed session")

            if self.state is NegotiationState.HAVE_LOCAL_OFFER:
                if not self._is_polite():
                    raise OutOfOrderMessageError(
                        f"glare with {self.remote_peer_id}: keeping local offer"
                    )
                if self._has_remote_description:
                    # 재협상 중 glare: 연결은 유지하고 로컬 offer만 되돌린 뒤 응답 후 다시 offer
                    logger.info(f"[Negotiation] {self._tag} 재협상 glare - 로컬 offer rollback 후 원격 offer 수락")
                    try:
                        await self.connection.rollback()
                    except Exception as e:
                        logger.error(f"[Negotiation] {self._tag} rollback 실패: {e}")
                        self._register_failure(f"rollback failed: {e}")
                        return
                    if not self._active:
                        return
                    self._renegotiation_pending = True
                else:
                    logger.info(f"[Negotiation] {self._tag} glare - 로컬 offer 폐기 후 원격 offer 수락")
                    await self._recreate_connection()
                    if not self._active:
                        return
                    self.local_role = NegotiationRole.ANSWERER

            self._transition(NegotiationState.HAVE_REMOTE_OFFER)
            self._hold_candidates = True
            connection = self.connection

            try:
                await connection.set_remote_description(offer)
                if not self._active:
                    return
                self._has_remote_description = True
                await self._apply_pending_candidates()
                if not self._active:
                    return

                answer = await connection.create_answer()
                if not self._active:
                    return
                await connection.set_local_description(answer)
                if not self._active:
                    return
            except Exception as e:
                logger.error(f"[Negotiation] {self._tag} offer 처리 실패: {e}")
                self._register_failure(f"answer creation failed: {e}")
                return

            self.negotiated_tracks = list(self._senders)
            logger.info(f"[Negotiation] {self._tag} answer 전송")
            self._send(MessageType.ANSWER, connection.local_description or answer)
            self._release_candidates()
            self._transition(NegotiationState.STABLE)
            await self._renegotiate_if_pending()

    async def handle_answer(self, answer: SessionDescription) -> None:
        """원격 answer를 적용합니다 (have-local-offer → stable).

        Raises:
            OutOfOrderMessageError: 대응하는 로컬 offer가 없는 경우. 세션 상태는 변하지 않음
        """
        async with self._lock:
            if self.closed:
                logger.debug(f"[Negotiation] {self._tag} closed 세션 answer 무시")
                return
            if self.state is not NegotiationState.HAVE_LOCAL_OFFER:
                raise OutOfOrderMessageError(
                    f"answer from {self.remote_peer_id} in state {self.state.value}"
                )

            try:
                await self.connection.set_remote_description(answer)
                if not self._active:
                    return
                self._has_remote_description = True
                await self._apply_pending_candidates()
                if not self._active:
                    return
            except Exception as e:
                logger.error(f"[Negotiation] {self._tag} answer 적용 실패: {e}")
                self._register_failure(f"answer rejected: {e}")
                return

            self._transition(NegotiationState.STABLE)
            await self._renegotiate_if_pending()

    # ------------------------------------------------------------------
    # ICE
    # ------------------------------------------------------------------

    async def handle_ice_candidate(self, candidate: IceCandidate) -> None:
        """원격 ICE candidate를 적용하거나, 원격 description이 없으면 버퍼링합니다."""
        async with self._lock:
            if self.closed:
                return
            if not self._has_remote_description:
                self.pending_ice_candidates.append(candidate)
                logger.debug(f"[Negotiation] {self._tag} ICE candidate 버퍼링 "
                             f"({len(self.pending_ice_candidates)}개 대기)")
                return
            await self._add_candidate(candidate)

    async def _apply_pending_candidates(self) -> None:
        if self.pending_ice_candidates:
            logger.info(f"[Negotiation] {self._tag} 버퍼링된 ICE candidate "
                        f"{len(self.pending_ice_candidates)}개 적용")
        while self.pending_ice_candidates and self._active:
            await self._add_candidate(self.pending_ice_candidates.popleft())

    async def _add_candidate(self, candidate: IceCandidate) -> None:
        try:
            await self.connection.add_ice_candidate(candidate)
        except Exception as e:
            logger.warning(f"[Negotiation] {self._tag} ICE candidate 추가 실패: {e}")

    def _on_local_ice_candidate(self, candidate: Optional[IceCandidate]) -> None:
        if self.closed or not candidate:
            return
        if self._hold_candidates:
            self._outgoing_candidates.append(candidate)
            return
        self._send(MessageType.ICE_CANDIDATE, candidate)

    def _release_candidates(self) -> None:
        self._hold_candidates = False
        outgoing, self._outgoing_candidates = self._outgoing_candidates, []
        for candidate in outgoing:
            self._send(MessageType.ICE_CANDIDATE, candidate)

    # ------------------------------------------------------------------
    # tracks / renegotiation
    # ------------------------------------------------------------------

    async def add_track(self, track: Any) -> None:
        """송신 트랙을 추가하고 재협상합니다 (화면 공유 시작)."""
        async with self._lock:
            if self.closed or track in self._senders:
                return
            self._senders[track] = self.connection.add_track(track)
            logger.info(f"[Negotiation] {self._tag} {getattr(track, 'kind', '?')} 트랙 추가")
            await self._request_renegotiation()

    async def remove_track(self, track: Any) -> None:
        """송신 트랙을 제거하고 재협상합니다 (화면 공유 중지)."""
        async with self._lock:
            if self.closed or track not in self._senders:
                return
            sender = self._senders.pop(track)
            try:
                self.connection.remove_track(sender)
            except Exception as e:
                logger.warning(f"[Negotiation] {self._tag} 트랙 제거 실패: {e}")
            logger.info(f"[Negotiation] {self._tag} {getattr(track, 'kind', '?')} 트랙 제거")
            await self._request_renegotiation()

    async def _request_renegotiation(self) -> None:
        if self.state is NegotiationState.STABLE:
            await self._start_offer_locked(ice_restart=True)
        elif self.state in (NegotiationState.HAVE_LOCAL_OFFER, NegotiationState.HAVE_REMOTE_OFFER):
            # 진행 중인 협상이 stable에 도달하면 재협상
            self._renegotiation_pending = True
        # idle: 다음 offer/answer에 트랙이 포함됨

    async def _renegotiate_if_pending(self) -> None:
        if self._renegotiation_pending and self.state is NegotiationState.STABLE:
            self._renegotiation_pending = False
            logger.info(f"[Negotiation] {self._tag} 보류된 재협상 시작")
            await self._start_offer_locked(ice_restart=True)

    def _on_track(self, track: Any) -> None:
        if self.closed:
            return
        logger.info(f"[Negotiation] {self._tag} 원격 {getattr(track, 'kind', '?')} 트랙 수신")
        if self._on_remote_track:
            self._on_remote_track(self.remote_peer_id, track)

    # ------------------------------------------------------------------
    # failure / retry
    # ------------------------------------------------------------------

    def _on_connection_state_change(self, connection_state: str) -> None:
        if self.closed:
            return
        self.connection_state = connection_state
        logger.info(f"[Negotiation] {self._tag} 연결 상태: {connection_state}")
        if connection_state == "connected":
            self.failure_count = 0
            self._cancel_retry()
        elif connection_state == "failed":
            self._register_failure("connectivity failed")

    def _register_failure(self, reason: str) -> None:
        if self.state in (NegotiationState.CLOSED, NegotiationState.FAILED):
            return
        self.failure_count += 1
        if self.failure_count >= self._config.MAX_ATTEMPTS:
            self._cancel_retry()
            failure = NegotiationFailure(
                f"negotiation with {self.remote_peer_id} failed after {self.failure_count} attempts: {reason}"
            )
            logger.error(f"[Negotiation] {self._tag} {failure}")
            self._transition(NegotiationState.FAILED)
            return

        logger.warning(f"[Negotiation] {self._tag} 연결 실패 "
                       f"({self.failure_count}/{self._config.MAX_ATTEMPTS}): {reason}")
        if self.state is NegotiationState.HAVE_REMOTE_OFFER:
            # answer를 만들지 못했고 로컬에서 재시도할 방법이 없음
            self._cancel_retry()
            logger.error(f"[Negotiation] {self._tag} 원격 offer 처리 불가: {reason}")
            self._transition(NegotiationState.FAILED)
        elif self.local_role is NegotiationRole.OFFERER or self.state is NegotiationState.HAVE_LOCAL_OFFER:
            # 로컬에서 시작한 offer는 역할과 관계없이 재시도. 연결 실패 재시도는 offerer만
            self._schedule_retry()

    def _schedule_retry(self) -> None:
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self._config.RETRY_DELAY, self._fire_retry)

    def _fire_retry(self) -> None:
        self._retry_handle = None
        if self.closed:
            return
        self._retry_task = asyncio.create_task(self._retry())

    async def _retry(self) -> None:
        async with self._lock:
            if self.state in (NegotiationState.STABLE, NegotiationState.HAVE_LOCAL_OFFER):
                logger.info(f"[Negotiation] {self._tag} ICE restart 재시도 #{self.failure_count}")
                await self._start_offer_locked(ice_restart=True)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        if self._retry_task is not None and not self._retry_task.done():
            if self._retry_task is not asyncio.current_task():
                self._retry_task.cancel()
        self._retry_task = None

    # ------------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """세션을 종료하고 리소스를 해제합니다. 여러 번 호출해도 안전함.

        Cleanup Steps:
            1. closed 상태로 전환 (이후 메시지/비동기 결과 무시)
            2. 재시도 타이머 및 태스크 취소
            3. 버퍼링된 candidate 제거
            4. 송신 sender 해제 및 연결 종료
        """
        if self.closed:
            return
        self._transition(NegotiationState.CLOSED)
        self._cancel_retry()
        self.pending_ice_candidates.clear()
        self._outgoing_candidates.clear()

        connection = self.connection
        self._unbind(connection)
        for sender in self._senders.values():
            try:
                connection.remove_track(sender)
            except Exception as e:
                logger.debug(f"[Negotiation] {self._tag} sender 해제 실패: {e}")
        self._senders.clear()

        try:
            await connection.close()
        except Exception as e:
            logger.warning(f"[Negotiation] {self._tag} 연결 종료 실패: {e}")
        logger.info(f"[Negotiation] {self._tag} 세션 종료")
