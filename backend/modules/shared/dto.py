"""Lightweight shared DTOs for the signaling wire protocol.

서버와 클라이언트가 WebSocket으로 주고받는 메시지의 형태를 정의합니다.
모든 메시지는 ``{"type": ..., "data": {...}}`` 봉투(envelope)를 사용합니다.
"""

from enum import Enum
from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    """시그널링 메시지 타입."""

    PEER_ID = "peer-id"
    JOIN_ROOM = "join-room"
    ROOM_JOINED = "room-joined"
    PEER_JOINED = "peer-joined"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    PEER_DISCONNECTED = "peer-disconnected"
    LEAVE_ROOM = "leave-room"
    GET_ROOMS = "get-rooms"
    ROOMS_LIST = "rooms-list"
    ERROR = "error"


# 피어 간에 그대로 릴레이되는 메시지
RELAY_TYPES = frozenset({MessageType.OFFER, MessageType.ANSWER, MessageType.ICE_CANDIDATE})


class SignalMessage(BaseModel):
    """모든 시그널링 메시지의 봉투."""

    type: MessageType
    data: Dict[str, Any] = Field(default_factory=dict)


class JoinRoomData(BaseModel):
    room_id: str = Field(min_length=1)


class RelayData(BaseModel):
    """클라이언트 → 서버 릴레이 요청. payload는 검사하지 않음."""

    payload: Any = None
    room_id: str = Field(min_length=1)
    target_peer_id: str = Field(min_length=1)


class RelayedData(BaseModel):
    """서버 → 대상 클라이언트로 전달되는 릴레이 메시지."""

    payload: Any = None
    from_peer_id: str


class RoomJoinedData(BaseModel):
    room_id: str
    is_initiator: bool
    peers: List[str] = Field(default_factory=list)


class PeerData(BaseModel):
    """peer-joined / peer-disconnected / peer-id 공통 데이터."""

    peer_id: str


class ErrorData(BaseModel):
    code: str
    message: str


def envelope(message_type: MessageType, data: Union[BaseModel, Dict[str, Any], None] = None) -> Dict[str, Any]:
    """데이터 모델(또는 dict)을 전송 가능한 dict 봉투로 변환합니다."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return {"type": message_type.value, "data": data or {}}
