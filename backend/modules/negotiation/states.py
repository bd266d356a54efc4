"""협상 상태와 전이 규칙.

피어 쌍 하나의 offer/answer 협상 상태를 명시적인 데이터로 정의합니다.
하위 미디어 기능(RTCPeerConnection)의 암묵적인 signalingState에 의존하지
않고, 이 표에 있는 전이만 허용합니다.

State Diagram:
    idle --(로컬이 offerer)--> have-local-offer --(answer 수신)--> stable
    idle --(offer 수신)--> have-remote-offer --(answer 전송)--> stable
    stable --(트랙 변경 재협상)--> have-local-offer
    stable --(원격 재협상 offer)--> have-remote-offer
    have-local-offer --(ICE restart 재전송)--> have-local-offer
    have-local-offer --(glare, polite 측 롤백)--> have-remote-offer
    (closed 제외 모든 상태) --> failed | closed
    failed --> closed
"""

from enum import Enum
from typing import Dict, FrozenSet

from ..shared import InvalidTransitionError


class NegotiationState(str, Enum):
    IDLE = "idle"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    STABLE = "stable"
    FAILED = "failed"
    CLOSED = "closed"


class NegotiationRole(str, Enum):
    OFFERER = "offerer"
    ANSWERER = "answerer"


_S = NegotiationState

TRANSITIONS: Dict[NegotiationState, FrozenSet[NegotiationState]] = {
    _S.IDLE: frozenset({_S.HAVE_LOCAL_OFFER, _S.HAVE_REMOTE_OFFER, _S.FAILED, _S.CLOSED}),
    _S.HAVE_LOCAL_OFFER: frozenset({
        _S.STABLE, _S.HAVE_LOCAL_OFFER, _S.HAVE_REMOTE_OFFER, _S.FAILED, _S.CLOSED,
    }),
    _S.HAVE_REMOTE_OFFER: frozenset({_S.STABLE, _S.FAILED, _S.CLOSED}),
    _S.STABLE: frozenset({_S.HAVE_LOCAL_OFFER, _S.HAVE_REMOTE_OFFER, _S.FAILED, _S.CLOSED}),
    _S.FAILED: frozenset({_S.CLOSED}),
    _S.CLOSED: frozenset(),
}


def can_transition(current: NegotiationState, new: NegotiationState) -> bool:
    return new in TRANSITIONS[current]


def check_transition(current: NegotiationState, new: NegotiationState) -> None:
    """전이가 허용되지 않으면 InvalidTransitionError를 발생시킵니다."""
    if not can_transition(current, new):
        raise InvalidTransitionError(f"{current.value} -> {new.value} is not a valid transition")
