"""시그널링/협상 공통 예외 정의.

서버(룸 관리, 메시지 라우팅)와 클라이언트(협상 세션, 미디어 획득)가
공유하는 예외 계층입니다. 모든 실패는 해당 룸 또는 피어 쌍에 국한되며,
한 피어의 실패가 다른 피어의 세션을 중단시키지 않습니다.
"""

from typing import Optional


class SignalingError(Exception):
    """시그널링 계층 예외의 기반 클래스.

    Attributes:
        code (str): 클라이언트에 전달되는 오류 코드
    """

    code = "signaling-error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class TransportDrop(SignalingError):
    """대상 피어에 도달할 수 없어 메시지가 버려짐. 재시도하지 않음."""

    code = "transport-drop"


class AlreadyInRoomError(SignalingError):
    """이미 룸에 속한 피어가 다시 join을 시도함."""

    code = "already-in-room"


class NotInRoomError(SignalingError):
    """룸에 속하지 않은 피어가 룸 메시지를 보냄."""

    code = "not-in-room"


class OutOfOrderMessageError(SignalingError):
    """현재 협상 상태에서 받을 수 없는 메시지 (예: offer 없이 도착한 answer)."""

    code = "out-of-order"


class InvalidTransitionError(OutOfOrderMessageError):
    """정의되지 않은 협상 상태 전이."""

    code = "invalid-transition"


class NegotiationFailure(SignalingError):
    """ICE/연결 수립 실패. 제한된 재시도 후 피어별 failed 상태로 전환."""

    code = "negotiation-failure"


class MediaAcquisitionError(SignalingError):
    """로컬 미디어 획득 실패. 수신 전용 모드로 계속 진행."""

    code = "media-acquisition-failure"
