"""룸 생명주기 관리 모듈.

이 모듈은 메시 통화 시스템의 룸(방) 생성/입장/퇴장과 initiator 선출을
담당합니다. 여러 개의 독립적인 룸을 동시에 관리하며, 같은 룸에 대한
join/leave 호출은 룸별 asyncio.Lock으로 직렬화합니다. 서로 다른 룸은 서로를
막지 않습니다.

주요 기능:
    - 룸 생성 및 삭제 (첫 입장 시 자동 생성/비어있을 때 즉시 삭제)
    - 참가자 입장/퇴장 관리 및 room-joined / peer-joined / peer-disconnected 알림
    - initiator 선출 및 재선출 (룸이 비어있지 않은 동안 항상 멤버 중 하나)
    - 룸 상태 모니터링 (참가자 수, 참가자 목록)

Architecture:
    - rooms: Dict[str, Room] - 룸 ID → 룸 메타데이터 (initiator 등)
    - registry: PeerRegistry - 룸 ID ↔ 피어 ID 멤버십 장부
    - router: MessageRouter - 알림 전송에 사용

Classes:
    Room: 룸 메타데이터를 담는 데이터 클래스
    JoinResult: join() 결과
    RoomManager: 룸 생명주기 관리 클래스

Examples:
    기본 사용법:
        >>> manager = RoomManager(registry, router)
        >>> result = await manager.join("peer-123", "x")
        >>> result.is_initiator
        True

See Also:
    routes/signaling.py: WebSocket 시그널링 엔드포인트
    modules/signaling/router.py: 메시지 라우팅
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from .registry import PeerRegistry
from .router import MessageRouter
from ..shared import (
    AlreadyInRoomError,
    MessageType,
    PeerData,
    RoomJoinedData,
    envelope,
)

logger = logging.getLogger(__name__)


@dataclass
class Room:
    """룸 메타데이터.

    멤버 목록은 PeerRegistry에 있으며, 이 객체는 RoomManager만 수정합니다.

    Attributes:
        room_id (str): 룸 식별자
        initiator (str): 현재 initiator 피어 ID. 항상 현재 멤버 중 하나
        created_at (float): 생성 시각 (epoch seconds)
    """
    room_id: str
    initiator: str
    created_at: float = field(default_factory=time.time)


@dataclass
class JoinResult:
    """join() 결과.

    Attributes:
        is_initiator (bool): 새 룸을 만든 경우 True
        existing_peers (List[str]): 입장 직전의 멤버 목록 (참가 순서, 본인 제외)
    """
    is_initiator: bool
    existing_peers: List[str] = field(default_factory=list)


@dataclass
class _RoomLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class RoomManager:
    """룸 생성/입장/퇴장을 관리하는 핵심 클래스.

    Attributes:
        registry (PeerRegistry): 멤버십 장부
        router (MessageRouter): 알림 전송용 라우터
        rooms (Dict[str, Room]): 룸 ID를 키로 하는 룸 메타데이터
        flush_timeout (Optional[float]): room-joined 응답 전송 대기 시간

    Concurrency:
        - 룸별 asyncio.Lock으로 같은 룸의 join/leave를 직렬화
        - 잠금 객체는 참조 카운트가 0이 되면 제거됨 (빈 룸이 잠금을 남기지 않음)
        - 서로 다른 룸의 join/leave는 동시에 진행됨

    Examples:
        >>> manager = RoomManager(registry, router)
        >>> await manager.join("A", "x")
        JoinResult(is_initiator=True, existing_peers=[])
        >>> await manager.join("B", "x")
        JoinResult(is_initiator=False, existing_peers=['A'])
        >>> await manager.leave("A")
        ['x']
        >>> manager.get_room("x").initiator
        'B'
    """

    def __init__(
        self,
        registry: PeerRegistry,
        router: MessageRouter,
        flush_timeout: Optional[float] = None,
    ):
        """RoomManager 초기화.

        Args:
            registry (PeerRegistry): 멤버십 장부 (라우터와 공유)
            router (MessageRouter): 알림 전송용 라우터
            flush_timeout (Optional[float]): None이면 라우터 기본값 사용
        """
        self.registry = registry
        self.router = router
        self.flush_timeout = flush_timeout

        # room_id -> Room
        self.rooms: Dict[str, Room] = {}

        # room_id -> 룸별 직렬화 잠금
        self._locks: Dict[str, _RoomLock] = {}

    @asynccontextmanager
    async def _serialized(self, room_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(room_id)
        if entry is None:
            entry = self._locks[room_id] = _RoomLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(room_id, None)

    async def join(self, peer_id: str, room_id: str) -> JoinResult:
        """피어를 룸에 입장시키고 관련 알림을 전송합니다.

        룸이 없으면 이 피어를 유일한 멤버이자 initiator로 새 룸을 만듭니다.
        룸이 있으면 기존 멤버 스냅샷(본인 제외)을 응답으로 돌려줍니다.

        Args:
            peer_id (str): 입장하는 피어 ID
            room_id (str): 룸 ID

        Returns:
            JoinResult: initiator 여부와 기존 멤버 목록

        Raises:
            AlreadyInRoomError: 피어가 이미 어떤 룸에 속해 있는 경우

        Note:
            - room-joined 응답은 입장하는 피어에게 먼저 전송 완료(flush)된 후에
              기존 멤버들에게 peer-joined가 전송됨
            - 기존 멤버는 peer-joined를 받으면 새 피어의 offer를 기다림
              (새 피어가 existing_peers를 보고 offer를 보냄)
        """
        current_room = self.registry.room_of(peer_id)
        if current_room is not None:
            raise AlreadyInRoomError(
                f"peer {peer_id} is already a member of room '{current_room}'"
            )

        async with self._serialized(room_id):
            existing_peers = self.registry.ordered_members(room_id)
            room = self.rooms.get(room_id)

            if room is None:
                room = self.rooms[room_id] = Room(room_id=room_id, initiator=peer_id)
                logger.info(f"Room '{room_id}' created with initiator {peer_id[:8]}")

            self.registry.add(room_id, peer_id)
            result = JoinResult(is_initiator=not existing_peers, existing_peers=existing_peers)

            logger.info(f"Peer {peer_id[:8]} joined room '{room_id}'. "
                        f"Room has {len(existing_peers) + 1} peers")

            self.router.send(peer_id, envelope(
                MessageType.ROOM_JOINED,
                RoomJoinedData(
                    room_id=room_id,
                    is_initiator=result.is_initiator,
                    peers=result.existing_peers,
                ),
            ))
            if existing_peers:
                if self.flush_timeout is None:
                    await self.router.flush(peer_id)
                else:
                    await self.router.flush(peer_id, self.flush_timeout)
                self.router.broadcast(
                    room_id,
                    envelope(MessageType.PEER_JOINED, PeerData(peer_id=peer_id)),
                    exclude=[peer_id],
                )

        return result

    async def leave(self, peer_id: str) -> List[str]:
        """피어를 속한 모든 룸에서 퇴장시킵니다.

        Args:
            peer_id (str): 퇴장할 피어 ID

        Returns:
            List[str]: 영향을 받은 룸 ID 목록. 어떤 룸에도 없었으면 빈 리스트

        Note:
            - 마지막 참가자가 퇴장하면 룸이 즉시 삭제됨
            - initiator가 퇴장하면 가장 먼저 입장한 남은 멤버가 initiator가 됨
            - 남은 멤버들에게 peer-disconnected 알림 전송
            - 존재하지 않는 피어 ID는 아무 작업도 하지 않음 (오류 아님)
        """
        affected = []
        for room_id in sorted(self.registry.rooms_of(peer_id)):
            async with self._serialized(room_id):
                if not self.registry.is_member(room_id, peer_id):
                    continue

                is_empty = self.registry.remove(room_id, peer_id)
                affected.append(room_id)

                if is_empty:
                    self.rooms.pop(room_id, None)
                    logger.info(f"Room '{room_id}' deleted (empty)")
                    continue

                room = self.rooms[room_id]
                remaining = self.registry.ordered_members(room_id)
                if room.initiator == peer_id:
                    room.initiator = remaining[0]
                    logger.info(f"Room '{room_id}' initiator reassigned to {room.initiator[:8]}")

                logger.info(f"Peer {peer_id[:8]} left room '{room_id}'. "
                            f"Room has {len(remaining)} peers")

                self.router.broadcast(
                    room_id,
                    envelope(MessageType.PEER_DISCONNECTED, PeerData(peer_id=peer_id)),
                )

        return affected

    def get_room(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def get_room_peers(self, room_id: str) -> List[str]:
        """특정 룸의 모든 피어 ID를 참가 순서대로 반환합니다."""
        return self.registry.ordered_members(room_id)

    def get_peer_room(self, peer_id: str) -> Optional[str]:
        return self.registry.room_of(peer_id)

    def get_room_count(self, room_id: str) -> int:
        """특정 룸의 현재 참가자 수. 룸이 없으면 0."""
        return len(self.registry.ordered_members(room_id))

    def get_room_list(self) -> List[dict]:
        """모든 룸의 정보를 리스트로 반환합니다.

        Returns:
            List[dict]: 룸 정보 딕셔너리의 리스트
                - room_id (str): 룸 ID
                - initiator (str): 현재 initiator
                - peer_count (int): 현재 참가자 수
                - peers (List[str]): 참가자 ID (참가 순서)
                - created_at (float): 생성 시각
        """
        return [
            {
                "room_id": room.room_id,
                "initiator": room.initiator,
                "peer_count": self.get_room_count(room.room_id),
                "peers": self.get_room_peers(room.room_id),
                "created_at": room.created_at,
            }
            for room in self.rooms.values()
        ]
