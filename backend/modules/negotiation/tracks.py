"""로컬 송신 트랙 모듈.

원본 미디어 트랙(마이크, 카메라, 화면)을 감싸 음소거/비디오 끄기를
지원하는 트랙을 제공합니다. 트랙을 연결에서 제거하지 않고 프레임만
비우므로 재협상이 필요하지 않습니다.
"""

import logging
from aiortc import MediaStreamTrack

logger = logging.getLogger(__name__)


class ToggleableTrack(MediaStreamTrack):
    """enabled 플래그로 프레임 전송을 켜고 끌 수 있는 트랙.

    Attributes:
        kind (str): 트랙 종류 ("audio" 또는 "video")
        track (MediaStreamTrack): 원본 트랙
        enabled (bool): False이면 무음/검은 화면 프레임을 전송
        label (str): 로그 표시용 이름 (예: "camera", "screen")

    Note:
        - 비활성 상태에서도 프레임 타이밍(pts)은 원본을 그대로 따름
        - stop() 호출 시 원본 트랙도 함께 종료

    Examples:
        >>> mic = ToggleableTrack(player.audio, label="microphone")
        >>> mic.enabled = False  # 음소거
        >>> frame = await mic.recv()  # 무음 프레임
    """

    def __init__(self, track: MediaStreamTrack, label: str = ""):
        """ToggleableTrack 초기화.

        Args:
            track (MediaStreamTrack): 감쌀 원본 트랙
            label (str): 로그 표시용 이름
        """
        super().__init__()
        self.kind = track.kind
        self.track = track
        self.label = label or track.kind
        self._enabled = True

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        logger.info(f"[Media] {self.label} 트랙 {'활성' if enabled else '비활성'}")

    async def recv(self):
        """원본 트랙에서 프레임을 받아 반환합니다. 비활성 상태면 프레임을 비웁니다."""
        frame = await self.track.recv()
        if self._enabled:
            return frame

        for index, plane in enumerate(frame.planes):
            # yuv 비디오의 색차 평면은 128이 무채색
            fill = 128 if self.kind == "video" and index > 0 else 0
            plane.update(bytes([fill]) * plane.buffer_size)
        return frame

    def stop(self) -> None:
        super().stop()
        self.track.stop()
