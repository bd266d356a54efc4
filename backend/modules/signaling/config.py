"""시그널링 모듈 설정.

브라우저/클라이언트에 내려줄 ICE 서버 목록과 피어별 아웃바운드 채널
설정. 값은 config/.env 또는 프로세스 환경변수에서 읽습니다.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Optional, List, Dict, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)

# 커스텀 STUN 유무와 관계없이 항상 포함
PUBLIC_STUN_URLS: Tuple[str, ...] = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
)


def _split_urls(value: Optional[str]) -> Tuple[str, ...]:
    """쉼표로 구분된 URL 목록을 튜플로 변환합니다 (빈 항목 제거)."""
    if not value:
        return ()
    return tuple(url.strip() for url in value.split(",") if url.strip())


# ============================================================
# NAT 통과용 ICE 서버
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """메시 통화 참가자들이 공유하는 ICE 서버 목록.

    STUN은 언제나 제공하고, TURN은 URL과 자격 증명이 모두 있을 때만
    목록에 넣습니다. 자격 증명이 빠진 TURN 항목은 브라우저가
    RTCPeerConnection 생성 자체를 거부하기 때문입니다.

    Attributes:
        stun_urls: 운영자가 지정한 STUN 서버 (공개 STUN보다 앞에 배치)
        turn_urls: relay용 TURN 서버 (turn:/turns:)
        turn_username: TURN 사용자명
        turn_credential: TURN 비밀번호
        public_stun_urls: 기본 공개 STUN 서버
    """

    stun_urls: Tuple[str, ...] = ()
    turn_urls: Tuple[str, ...] = ()
    turn_username: Optional[str] = None
    turn_credential: Optional[str] = None
    public_stun_urls: Tuple[str, ...] = PUBLIC_STUN_URLS

    @classmethod
    def from_env(cls) -> "ICEServerConfig":
        """STUN_SERVER_URL / TURN_* 환경변수에서 설정을 만듭니다.

        URL 변수는 ``"turn:a:3478,turns:a:5349"`` 처럼 여러 개를 받을 수 있습니다.
        """
        return cls(
            stun_urls=_split_urls(os.getenv("STUN_SERVER_URL")),
            turn_urls=_split_urls(os.getenv("TURN_SERVER_URL")),
            turn_username=os.getenv("TURN_USERNAME") or None,
            turn_credential=os.getenv("TURN_CREDENTIAL") or None,
        )

    @property
    def has_turn_server(self) -> bool:
        """TURN relay 사용 가능 여부."""
        return bool(self.turn_urls and self.turn_username and self.turn_credential)

    def as_ice_servers(self) -> List[Dict[str, str]]:
        """RTCPeerConnection ``iceServers`` 형식으로 변환합니다.

        URL마다 한 항목을 만들고, 같은 STUN URL은 한 번만 넣습니다.

        Returns:
            List[Dict[str, str]]: ``[{"urls": ...}, {"urls": ..., "username": ..., "credential": ...}]``
        """
        servers = []
        seen = set()
        for url in self.stun_urls + self.public_stun_urls:
            if url in seen:
                continue
            seen.add(url)
            servers.append({"urls": url})
        if self.has_turn_server:
            for url in self.turn_urls:
                servers.append({
                    "urls": url,
                    "username": self.turn_username,
                    "credential": self.turn_credential,
                })
        return servers


# ============================================================
# 시그널링 채널 설정
# ============================================================

@dataclass(frozen=True)
class SignalingConfig:
    """WebSocket 아웃바운드 채널 설정."""

    # room-joined 응답 전송 완료 대기 시간 (초)
    FLUSH_TIMEOUT: float = float(os.getenv("SIGNALING_FLUSH_TIMEOUT", "5.0"))

    # 피어별 아웃바운드 큐 크기 (0 = 무제한)
    QUEUE_SIZE: int = int(os.getenv("SIGNALING_QUEUE_SIZE", "0"))


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig.from_env()
signaling_config = SignalingConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[Signaling Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[Signaling Config] TURN relay 사용: {ice_config.has_turn_server}")
if ice_config.turn_urls and not ice_config.has_turn_server:
    logger.warning("[Signaling Config] TURN URL은 있으나 자격 증명 누락 - TURN 제외")
if ice_config.stun_urls:
    logger.info(f"[Signaling Config] 커스텀 STUN: {', '.join(ice_config.stun_urls)}")
