"""FastAPI WebRTC Signaling Server with Room Support.

이 모듈은 룸 기반 WebRTC 메시(mesh) 통화를 위한 시그널링 서버를
제공합니다. FastAPI와 WebSocket을 사용하여 같은 룸의 피어들이 서로
offer/answer/ICE candidate를 교환하도록 중계합니다.

주요 기능:
    - 룸 기반 피어 관리 (여러 룸 동시 지원, 룸별 직렬화)
    - WebRTC offer/answer/ICE candidate 릴레이 (내용 해석 없음)
    - 실시간 참가자 입/퇴장 알림
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - Mesh 패턴: 미디어는 피어 간 직접 전송, 서버는 시그널링만 담당
    - PeerRegistry: 룸 ↔ 피어 멤버십 장부
    - MessageRouter: 피어별 순서 보장 아웃바운드 채널
    - RoomManager: 룸 생성/입장/퇴장 및 알림 순서 보장
"""
import logging
from contextlib import asynccontextmanager
import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from modules.signaling import PeerRegistry, MessageRouter, RoomManager, ice_config
from routes import health_router, init_health, signaling_router, init_signaling_managers
from dotenv import load_dotenv
from pathlib import Path

# 환경변수 로드 (config/.env)
load_dotenv(Path(__file__).parent / "config" / ".env")


# 로그 설정
os.makedirs("logs", exist_ok=True)
log_filename = f"logs/server_{__import__('datetime').datetime.now().strftime('%Y%m%d')}.log"

# 환경별 로그 레벨 설정 (환경변수로 제어)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# 로그 보관 기간 (일) - 기본 60일 (2개월)
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))


def cleanup_old_logs(log_dir: str = "logs", retention_days: int = LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    import glob
    from datetime import datetime, timedelta

    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            date_str = os.path.basename(log_file).replace("server_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={LOG_LEVEL}, env={ENV}")


# 글로벌 매니저 인스턴스
registry = PeerRegistry()
message_router = MessageRouter(registry)
room_manager = RoomManager(registry, message_router)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Note:
        - 시작: 오래된 로그 정리
        - 종료: 모든 피어의 아웃바운드 채널 종료
    """
    logger.info("WebRTC 시그널링 서버 시작 중...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")

    yield

    logger.info("서버 종료 중...")
    await message_router.close_all()
    logger.info("모든 피어 채널 정리 완료")


app = FastAPI(title="WebRTC Mesh Signaling Server", lifespan=lifespan)

# CORS - 개발 환경에서는 모든 로컬 네트워크 허용
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}|172\.\d{1,3}\.\d{1,3}\.\d{1,3}):\d+$|^https://.*\.ngrok(-free)?\.(app|dev|io)$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)

# 라우터에 매니저 인스턴스 전달
init_signaling_managers(message_router, room_manager)
init_health(message_router, room_manager)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트."""
    return {"status": "ok", "service": "webrtc-mesh-signaling"}


@app.get("/api/rooms")
async def get_rooms_api():
    """활성화된 모든 룸의 목록을 조회합니다.

    Returns:
        dict: ``{"rooms": [{room_id, initiator, peer_count, peers, created_at}, ...]}``
    """
    return {"rooms": room_manager.get_room_list()}


@app.get("/api/turn-credentials")
async def get_turn_credentials():
    """클라이언트가 RTCPeerConnection에 사용할 ICE 서버 목록을 제공합니다.

    Returns:
        list: ICE servers 배열 (STUN + 설정된 경우 TURN)

    Environment Variables:
        TURN_SERVER_URL, TURN_USERNAME, TURN_CREDENTIAL: TURN 서버 (URL은 쉼표로 여러 개)
        STUN_SERVER_URL: 커스텀 STUN 서버 (선택, 쉼표로 여러 개)

    Examples:
        [
            {"urls": "stun:stun.l.google.com:19302"},
            {"urls": "turn:turn.example.com:3478", "username": "user", "credential": "pass"}
        ]
    """
    ice_servers = ice_config.as_ice_servers()
    if ice_config.has_turn_server:
        logger.info("ICE 서버 제공: STUN + TURN")
    else:
        logger.info("ICE 서버 제공: STUN만 (TURN 미설정)")
    return ice_servers


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())
