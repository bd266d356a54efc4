"""협상 모듈 설정.

재시도 횟수, 재시도 지연, 미디어 획득 타임아웃 등 클라이언트 측 협상
관련 상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class NegotiationConfig:
    """피어 쌍 협상 설정."""

    # 연결 실패 허용 횟수 (이 횟수에 도달하면 failed 상태)
    MAX_ATTEMPTS: int = int(os.getenv("NEGOTIATION_MAX_ATTEMPTS", "3"))

    # 연결 실패 후 ICE restart 재협상까지 대기 시간 (초)
    RETRY_DELAY: float = float(os.getenv("NEGOTIATION_RETRY_DELAY", "1.0"))

    # 로컬 미디어 획득 타임아웃 (초)
    MEDIA_ACQUIRE_TIMEOUT: float = float(os.getenv("MEDIA_ACQUIRE_TIMEOUT", "10.0"))


negotiation_config = NegotiationConfig()

logger.info(
    f"[Negotiation Config] 최대 시도: {negotiation_config.MAX_ATTEMPTS}, "
    f"재시도 지연: {negotiation_config.RETRY_DELAY}s"
)
