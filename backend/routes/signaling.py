"""WebRTC 시그널링 WebSocket 라우터.

WebRTC 메시 통화를 위한 WebSocket 엔드포인트를 제공합니다.
룸 입장/퇴장, 피어 간 offer/answer/ICE candidate 릴레이를 담당합니다.
서버는 SDP와 candidate 내용을 해석하지 않고 그대로 전달합니다.
"""

import logging
import uuid
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from modules.shared import (
    ErrorData,
    JoinRoomData,
    MessageType,
    PeerData,
    RELAY_TYPES,
    RelayData,
    SignalingError,
    SignalMessage,
    envelope,
)

if TYPE_CHECKING:
    from modules.signaling import MessageRouter, RoomManager

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 매니저 참조 (app.py에서 설정됨)
_router: Optional["MessageRouter"] = None
_room_manager: Optional["RoomManager"] = None


def init_managers(message_router: "MessageRouter", room_manager: "RoomManager"):
    """매니저 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 매니저 참조를 설정합니다.

    Args:
        message_router: MessageRouter 인스턴스
        room_manager: RoomManager 인스턴스
    """
    global _router, _room_manager
    _router = message_router
    _room_manager = room_manager
    logger.info("시그널링 라우터 매니저 초기화 완료")


def _error(code: str, message: str) -> dict:
    return envelope(MessageType.ERROR, ErrorData(code=code, message=message))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebRTC 시그널링을 위한 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - join-room: 룸 입장 (room_id 필요)
        - offer / answer / ice-candidate: 같은 룸의 대상 피어에게 릴레이
        - leave-room: 현재 룸에서 퇴장
        - get-rooms: 활성 룸 목록 요청

    Note:
        - 잘못된 메시지는 error 응답 후 연결 유지
        - 그 밖의 예외나 연결 종료 시 룸에서 퇴장 처리
    """
    if _router is None or _room_manager is None:
        logger.error("매니저가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()

    peer_id = str(uuid.uuid4())
    _router.connect(peer_id, websocket)
    logger.info(f"피어 {peer_id} 연결됨")

    # 클라이언트에 peer ID 전송
    _router.send(peer_id, envelope(MessageType.PEER_ID, PeerData(peer_id=peer_id)))

    try:
        while True:
            raw = await websocket.receive_json()
            try:
                await _dispatch(peer_id, raw)
            except ValidationError as e:
                logger.warning(f"피어 {peer_id[:8]} 잘못된 메시지: {e.errors()[:1]}")
                _router.send(peer_id, _error("invalid-message", str(e)))
            except SignalingError as e:
                logger.warning(f"피어 {peer_id[:8]} [{e.code}] {e}")
                _router.send(peer_id, _error(e.code, e.message))

    except WebSocketDisconnect:
        logger.info(f"피어 {peer_id} 연결 끊김")
    except Exception as e:
        logger.error(f"피어 {peer_id}의 WebSocket 연결 중 오류: {e}")
    finally:
        await _room_manager.leave(peer_id)
        await _router.disconnect(peer_id)
        logger.info(f"피어 {peer_id} 정리 완료")


async def _dispatch(peer_id: str, raw: dict):
    """메시지 하나를 타입별 처리기로 전달합니다."""
    message = SignalMessage.model_validate(raw)
    message_type = message.type

    if message_type == MessageType.JOIN_ROOM:
        join_data = JoinRoomData.model_validate(message.data)
        await _room_manager.join(peer_id, join_data.room_id)

    elif message_type in RELAY_TYPES:
        relay = RelayData.model_validate(message.data)
        _router.route(message_type, relay.payload, relay.room_id, relay.target_peer_id, from_peer_id=peer_id)

    elif message_type == MessageType.LEAVE_ROOM:
        await _room_manager.leave(peer_id)

    elif message_type == MessageType.GET_ROOMS:
        _router.send(peer_id, envelope(MessageType.ROOMS_LIST, {"rooms": _room_manager.get_room_list()}))

    else:
        logger.warning(f"처리할 수 없는 메시지 타입: {message_type.value}")
        _router.send(peer_id, _error("unsupported-type", f"cannot handle '{message_type.value}' from a client"))
