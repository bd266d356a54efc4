"""Health Check API 라우터.

서비스 상태 확인을 위한 엔드포인트들을 제공합니다.
"""

from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter

if TYPE_CHECKING:
    from modules.signaling import MessageRouter, RoomManager

router = APIRouter(prefix="/api/health", tags=["health"])

_router: Optional["MessageRouter"] = None
_room_manager: Optional["RoomManager"] = None


def init_health(message_router: "MessageRouter", room_manager: "RoomManager"):
    global _router, _room_manager
    _router = message_router
    _room_manager = room_manager


@router.get("")
async def health_check():
    """시그널링 서버 상태를 확인합니다.

    Returns:
        dict: 상태, 활성 룸 수, 연결된 피어 수
    """
    if _router is None or _room_manager is None:
        return {"status": "not_initialized"}

    return {
        "status": "ok",
        "rooms": len(_room_manager.rooms),
        "connected_peers": len(_router.channels),
    }
