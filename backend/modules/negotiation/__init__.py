"""클라이언트 측 협상 모듈.

원격 피어마다 offer/answer/ICE 교환을 명시적인 상태 기계로 관리하고,
룸 입장부터 종료까지의 클라이언트 흐름을 제공합니다.

Classes:
    NegotiationSession: 피어 쌍 하나의 협상 상태 기계
    CallClient: 시그널링 채널과 세션들을 묶은 통화 클라이언트
    WebSocketSignalingChannel: websockets 기반 시그널링 채널
    AiortcMediaCapability: aiortc 기반 미디어 기능 (aiortc_media에서 직접 import)
    ToggleableTrack: 음소거/비디오 끄기를 지원하는 송신 트랙 (tracks에서 직접 import)

Protocols:
    MediaCapability, PeerConnectionHandle: 미디어 기능 인터페이스
"""

from .states import NegotiationState, NegotiationRole, TRANSITIONS, can_transition, check_transition
from .media import MediaCapability, PeerConnectionHandle, LocalMedia, LocalTrack
from .session import NegotiationSession
from .client import CallClient
from .transport import WebSocketSignalingChannel
from .config import negotiation_config, NegotiationConfig

__all__ = [
    # State machine
    "NegotiationState",
    "NegotiationRole",
    "TRANSITIONS",
    "can_transition",
    "check_transition",
    # Media interface
    "MediaCapability",
    "PeerConnectionHandle",
    "LocalMedia",
    "LocalTrack",
    # Classes
    "NegotiationSession",
    "CallClient",
    "WebSocketSignalingChannel",
    # Config
    "negotiation_config",
    "NegotiationConfig",
]
