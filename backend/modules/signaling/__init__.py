"""시그널링 서버 모듈.

룸 멤버십 장부, 메시지 라우팅, 룸 생명주기 관리를 제공합니다.

Classes:
    PeerRegistry: 룸 ↔ 피어 멤버십 장부
    PeerChannel: 피어별 순서 보장 아웃바운드 채널
    MessageRouter: 같은 룸 내 피어 간 메시지 라우팅
    RoomManager: 룸 생성/입장/퇴장 및 initiator 관리
    Room: 룸 메타데이터
    JoinResult: join() 결과

Config:
    ice_config: ICE 서버 설정
    signaling_config: 아웃바운드 채널 설정
"""

from .registry import PeerRegistry
from .router import PeerChannel, MessageRouter
from .room_manager import RoomManager, Room, JoinResult
from .config import (
    ice_config,
    signaling_config,
    ICEServerConfig,
    SignalingConfig,
)

__all__ = [
    # Classes
    "PeerRegistry",
    "PeerChannel",
    "MessageRouter",
    "RoomManager",
    "Room",
    "JoinResult",
    # Config
    "ice_config",
    "signaling_config",
    "ICEServerConfig",
    "SignalingConfig",
]
