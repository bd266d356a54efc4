"""Backend modules package.

이 패키지는 룸 기반 WebRTC 메시 통화의 시그널링 서버와 클라이언트 측
협상 모듈을 포함합니다.

Modules:
    shared: 메시지 봉투(DTO)와 공통 예외
    signaling: 피어 장부, 메시지 라우팅, 룸 생명주기 관리 (서버)
    negotiation: 피어 쌍 협상 상태 기계와 통화 클라이언트 (클라이언트)

NOTE: aiortc 구현(negotiation.aiortc_media)은 필요한 곳에서 직접 import합니다.
"""

from .shared import MessageType, SignalMessage, envelope, SignalingError
from .signaling import PeerRegistry, MessageRouter, RoomManager
from .negotiation import NegotiationSession, NegotiationState, CallClient

__all__ = [
    # Shared
    "MessageType",
    "SignalMessage",
    "envelope",
    "SignalingError",
    # Signaling server
    "PeerRegistry",
    "MessageRouter",
    "RoomManager",
    # Negotiation client
    "NegotiationSession",
    "NegotiationState",
    "CallClient",
]
