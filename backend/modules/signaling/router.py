"""시그널링 메시지 라우터 모듈.

같은 룸 안에서 송신 피어의 메시지를 대상 피어의 WebSocket으로 전달합니다.
라우터는 payload를 검사하거나 수정하지 않으며, 대상이 연결되어 있지 않으면
메시지를 버립니다 (fire-and-forget).

순서 보장:
    각 피어 연결은 하나의 PeerChannel(FIFO 큐 + writer 태스크)을 가집니다.
    route()는 큐에 넣기만 하므로 블로킹되지 않고, 같은 대상에게 보낸 메시지는
    송신 순서대로 기록됩니다. 서로 다른 대상 간의 순서는 보장하지 않습니다.

Classes:
    PeerChannel: 피어 하나에 대한 순서 보장 아웃바운드 채널
    MessageRouter: 피어 ID → 채널 매핑과 라우팅
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import WebSocket

from .config import signaling_config
from .registry import PeerRegistry
from ..shared import MessageType, NotInRoomError, RelayedData, TransportDrop, envelope

logger = logging.getLogger(__name__)


class PeerChannel:
    """피어 하나에 대한 순서 보장 아웃바운드 채널.

    Attributes:
        peer_id (str): 채널 소유 피어 ID
        websocket (WebSocket): 실제 전송에 사용하는 WebSocket (send_json 필요)
    """

    def __init__(self, peer_id: str, websocket: WebSocket, queue_size: int = 0):
        self.peer_id = peer_id
        self.websocket = websocket
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self._writer: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """writer 태스크를 시작합니다. 실행 중인 이벤트 루프 안에서 호출해야 함."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def send(self, message: Dict[str, Any]) -> None:
        """메시지를 큐에 넣습니다.

        Raises:
            TransportDrop: 채널이 닫혔거나 큐가 가득 찬 경우
        """
        if self._closed:
            raise TransportDrop(f"channel for {self.peer_id[:8]} is closed")
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            raise TransportDrop(f"outbound queue full for {self.peer_id[:8]}")

    async def flush(self, timeout: Optional[float] = None) -> bool:
        """지금까지 큐에 들어간 메시지가 모두 기록될 때까지 대기합니다.

        Returns:
            bool: 제한 시간 안에 모두 기록되었으면 True
        """
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"[Channel] 피어 {self.peer_id[:8]} flush 타임아웃 ({timeout}s)")
            return False

    async def close(self) -> None:
        """채널을 닫고 남은 메시지를 버립니다. 여러 번 호출해도 안전함."""
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None
        self._drain()

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()

    async def _write_loop(self) -> None:
        try:
            while True:
                message = await self._queue.get()
                try:
                    if not self._closed:
                        await self.websocket.send_json(message)
                except Exception as e:
                    logger.error(f"[Channel] 피어 {self.peer_id[:8]} 전송 실패: {e}")
                    self._closed = True
                finally:
                    self._queue.task_done()
        finally:
            # flush() 대기자가 깨어나도록 남은 항목 정리
            self._drain()


class MessageRouter:
    """연결된 피어들 사이에서 시그널링 메시지를 라우팅합니다.

    Attributes:
        registry (PeerRegistry): 룸 멤버십 조회용 레지스트리 (읽기 전용으로 사용)
        channels (Dict[str, PeerChannel]): 피어 ID → 아웃바운드 채널

    Examples:
        >>> router = MessageRouter(registry)
        >>> router.connect("A", ws_a)
        >>> router.route("offer", {"sdp": "..."}, "x", "B", from_peer_id="A")
        True
    """

    def __init__(self, registry: PeerRegistry, queue_size: int = signaling_config.QUEUE_SIZE):
        self.registry = registry
        self.queue_size = queue_size
        self.channels: Dict[str, PeerChannel] = {}

    def connect(self, peer_id: str, websocket: WebSocket) -> PeerChannel:
        """피어의 아웃바운드 채널을 등록하고 writer를 시작합니다."""
        channel = PeerChannel(peer_id, websocket, self.queue_size)
        channel.start()
        self.channels[peer_id] = channel
        logger.info(f"Peer {peer_id[:8]} channel opened. Connected peers: {len(self.channels)}")
        return channel

    async def disconnect(self, peer_id: str) -> None:
        channel = self.channels.pop(peer_id, None)
        if channel is not None:
            await channel.close()
            logger.info(f"Peer {peer_id[:8]} channel closed. Connected peers: {len(self.channels)}")

    def is_connected(self, peer_id: str) -> bool:
        channel = self.channels.get(peer_id)
        return channel is not None and not channel.closed

    def send(self, peer_id: str, message: Dict[str, Any]) -> bool:
        """서버가 생성한 메시지를 피어에게 보냅니다.

        Returns:
            bool: 큐에 들어갔으면 True, 대상에 도달할 수 없어 버려졌으면 False
        """
        channel = self.channels.get(peer_id)
        if channel is None:
            logger.warning(f"[TransportDrop] {message.get('type')} -> {peer_id[:8]}: 연결되지 않은 피어")
            return False
        try:
            channel.send(message)
        except TransportDrop as e:
            logger.warning(f"[TransportDrop] {message.get('type')} -> {peer_id[:8]}: {e}")
            return False
        return True

    async def flush(self, peer_id: str, timeout: Optional[float] = signaling_config.FLUSH_TIMEOUT) -> bool:
        channel = self.channels.get(peer_id)
        if channel is None:
            return False
        return await channel.flush(timeout)

    def broadcast(self, room_id: str, message: Dict[str, Any], exclude: Iterable[str] = ()) -> int:
        """룸의 모든 멤버(제외 목록 제외)에게 메시지를 보냅니다.

        Returns:
            int: 큐에 들어간 메시지 수
        """
        excluded = set(exclude)
        delivered = 0
        for peer_id in self.registry.ordered_members(room_id):
            if peer_id in excluded:
                continue
            if self.send(peer_id, message):
                delivered += 1
        return delivered

    def route(
        self,
        message_type: MessageType,
        payload: Any,
        room_id: str,
        target_peer_id: str,
        from_peer_id: str,
    ) -> bool:
        """릴레이 메시지를 같은 룸의 대상 피어에게 전달합니다.

        Args:
            message_type (MessageType): offer / answer / ice-candidate
            payload (Any): SDP 또는 ICE candidate. 그대로 전달됨
            room_id (str): 송신자가 지정한 룸 ID
            target_peer_id (str): 대상 피어 ID
            from_peer_id (str): 송신 피어 ID (대상에게 전달되는 발신자 표시)

        Returns:
            bool: 큐에 들어갔으면 True, 버려졌으면 False

        Raises:
            NotInRoomError: 송신자가 room_id의 멤버가 아닌 경우
        """
        message_type = MessageType(message_type)
        if not self.registry.is_member(room_id, from_peer_id):
            raise NotInRoomError(f"peer {from_peer_id} is not a member of room '{room_id}'")

        if not self.registry.is_member(room_id, target_peer_id):
            logger.warning(
                f"[TransportDrop] {message_type.value} {from_peer_id[:8]} -> {target_peer_id[:8]}: "
                f"룸 '{room_id}'에 없는 대상"
            )
            return False

        message = envelope(message_type, RelayedData(payload=payload, from_peer_id=from_peer_id))
        routed = self.send(target_peer_id, message)
        if routed:
            log = logger.debug if message_type is MessageType.ICE_CANDIDATE else logger.info
            log(f"[{from_peer_id[:8]}] {message_type.value} -> {target_peer_id[:8]} (room: '{room_id}')")
        return routed

    async def close_all(self) -> None:
        for peer_id in list(self.channels):
            await self.disconnect(peer_id)
