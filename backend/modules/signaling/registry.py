"""피어 레지스트리 모듈.

어떤 피어가 어떤 룸에 속하는지만 기록하는 순수 자료구조입니다.
I/O나 동시성 제어는 하지 않으며, 룸 단위 직렬화는 RoomManager가 담당합니다.

Architecture:
    - rooms: Dict[str, Dict[str, None]] - 룸 ID → 참가 순서가 유지되는 피어 ID 집합
    - peer_to_rooms: Dict[str, Set[str]] - 피어 ID → 룸 ID (빠른 역조회용)
"""
import logging
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class PeerRegistry:
    """룸 멤버십 장부.

    Examples:
        >>> registry = PeerRegistry()
        >>> registry.add("x", "A")
        >>> registry.add("x", "B")
        >>> registry.members("x") == {"A", "B"}
        True
        >>> registry.remove("x", "A")
        False
        >>> registry.remove("x", "B")
        True
    """

    def __init__(self):
        # room_id -> {peer_id: None} (dict는 삽입 순서를 유지)
        self.rooms: Dict[str, Dict[str, None]] = {}

        # peer_id -> {room_id}
        self.peer_to_rooms: Dict[str, Set[str]] = {}

    def add(self, room_id: str, peer_id: str) -> None:
        """피어를 룸에 추가합니다. 룸이 없으면 생성됩니다."""
        self.rooms.setdefault(room_id, {})[peer_id] = None
        self.peer_to_rooms.setdefault(peer_id, set()).add(room_id)

    def remove(self, room_id: str, peer_id: str) -> bool:
        """피어를 룸에서 제거합니다.

        존재하지 않는 피어를 제거하면 아무 작업도 하지 않습니다.

        Returns:
            bool: 제거 후 룸이 비어 있으면 True. 비어 있는 룸은 장부에서 삭제됨
        """
        members = self.rooms.get(room_id)
        if members is None:
            return True

        members.pop(peer_id, None)
        rooms = self.peer_to_rooms.get(peer_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self.peer_to_rooms[peer_id]

        if not members:
            del self.rooms[room_id]
            return True
        return False

    def members(self, room_id: str) -> Set[str]:
        return set(self.rooms.get(room_id, {}))

    def ordered_members(self, room_id: str) -> List[str]:
        """참가 순서대로 정렬된 멤버 목록."""
        return list(self.rooms.get(room_id, {}))

    def has_room(self, room_id: str) -> bool:
        return room_id in self.rooms

    def is_member(self, room_id: str, peer_id: str) -> bool:
        return peer_id in self.rooms.get(room_id, {})

    def rooms_of(self, peer_id: str) -> Set[str]:
        return set(self.peer_to_rooms.get(peer_id, ()))

    def room_of(self, peer_id: str) -> Optional[str]:
        """피어가 속한 룸. 설계상 피어는 최대 하나의 룸에만 속함."""
        rooms = self.peer_to_rooms.get(peer_id)
        if not rooms:
            return None
        return next(iter(rooms))

    def room_ids(self) -> List[str]:
        return list(self.rooms)
