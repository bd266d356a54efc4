"""클라이언트 측 시그널링 채널.

websockets 라이브러리로 시그널링 서버에 연결하고, 보내는 메시지를
큐에 넣어 단일 writer 태스크가 순서대로 전송합니다. send()는 블로킹되지
않으므로 협상 세션이 await 없이 메시지를 보낼 수 있고, 호출 순서가
그대로 전송 순서가 됩니다.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ..shared import TransportDrop

logger = logging.getLogger(__name__)


class WebSocketSignalingChannel:
    """시그널링 서버와의 WebSocket 연결.

    Attributes:
        url (str): 시그널링 서버 URL (예: ws://localhost:8000/ws)
        ws: websockets 클라이언트 연결 (connect() 이후)

    Examples:
        >>> channel = WebSocketSignalingChannel("ws://localhost:8000/ws")
        >>> await channel.connect()
        >>> channel.send({"type": "join-room", "data": {"room_id": "r1"}})
        >>> async for message in channel:
        ...     print(message["type"])
    """

    def __init__(self, url: str):
        self.url = url
        self.ws = None
        self._queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def connect(self) -> None:
        self.ws = await websockets.connect(self.url)
        self._writer = asyncio.create_task(self._write_loop())
        logger.info(f"[Signaling] 서버 연결됨: {self.url}")

    def send(self, message: Dict[str, Any]) -> None:
        """메시지를 전송 큐에 넣습니다.

        Raises:
            TransportDrop: 채널이 이미 닫힌 경우
        """
        if self._closed:
            raise TransportDrop(f"signaling channel closed, dropping {message.get('type')}")
        self._queue.put_nowait(message)

    async def _write_loop(self) -> None:
        try:
            while True:
                message = await self._queue.get()
                if message is None:
                    break
                await self.ws.send(json.dumps(message))
        except ConnectionClosed as e:
            logger.warning(f"[Signaling] 전송 중 연결 종료: {e}")
            self._closed = True

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._read_loop()

    async def _read_loop(self) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for raw in self.ws:
                try:
                    yield json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"[Signaling] JSON 파싱 실패: {raw!r:.80}")
        except ConnectionClosed as e:
            logger.info(f"[Signaling] 서버 연결 종료: {e}")
        finally:
            self._closed = True

    async def close(self) -> None:
        if self.ws is None:
            return
        self._closed = True
        if self._writer is not None and not self._writer.done():
            # 대기 중인 메시지를 보낸 뒤 writer 종료
            self._queue.put_nowait(None)
            try:
                await asyncio.wait_for(self._writer, timeout=2.0)
            except asyncio.TimeoutError:
                logger.warning("[Signaling] 전송 대기 시간 초과 - 남은 메시지 폐기")
        await self.ws.close()
        logger.info("[Signaling] 연결 해제")
