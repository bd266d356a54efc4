"""Shared DTOs, error types and wire definitions used across services.

Only lightweight, common data models should live here. Do not place
service-specific logic or heavy dependencies (e.g., aiortc, FastAPI)
in this package.
"""

from .dto import (
    MessageType,
    RELAY_TYPES,
    SignalMessage,
    JoinRoomData,
    RelayData,
    RelayedData,
    RoomJoinedData,
    PeerData,
    ErrorData,
    envelope,
)
from .errors import (
    SignalingError,
    TransportDrop,
    AlreadyInRoomError,
    NotInRoomError,
    OutOfOrderMessageError,
    InvalidTransitionError,
    NegotiationFailure,
    MediaAcquisitionError,
)

__all__ = [
    # Wire protocol
    "MessageType",
    "RELAY_TYPES",
    "SignalMessage",
    "JoinRoomData",
    "RelayData",
    "RelayedData",
    "RoomJoinedData",
    "PeerData",
    "ErrorData",
    "envelope",
    # Errors
    "SignalingError",
    "TransportDrop",
    "AlreadyInRoomError",
    "NotInRoomError",
    "OutOfOrderMessageError",
    "InvalidTransitionError",
    "NegotiationFailure",
    "MediaAcquisitionError",
]
