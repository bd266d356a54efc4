#!/usr/bin/env python3
"""WebRTC 메시 통화 CLI 클라이언트.

시그널링 서버에 연결해 룸에 입장하고, 같은 룸의 모든 피어와 aiortc로
피어 연결을 맺습니다. 수신한 원격 트랙은 MediaBlackhole로 소비합니다.

Usage:
    python client.py --server ws://localhost:8000/ws --room demo
    python client.py --room demo --no-camera --no-mic   # 수신 전용
"""
import argparse
import asyncio
import logging
import os

from aiortc.contrib.media import MediaBlackhole

from modules.negotiation import CallClient, WebSocketSignalingChannel
from modules.negotiation.aiortc_media import AiortcMediaCapability, DEFAULT_CONSTRAINTS

logger = logging.getLogger("client")


def build_constraints(args) -> dict:
    constraints = {"audio": False, "video": False}
    if not args.no_mic:
        constraints["audio"] = dict(DEFAULT_CONSTRAINTS["audio"], file=args.audio_device)
    if not args.no_camera:
        constraints["video"] = dict(DEFAULT_CONSTRAINTS["video"], file=args.video_device)
    return constraints


async def main(args) -> None:
    sinks = []

    def on_remote_track(remote_peer_id, track):
        logger.info(f"원격 {track.kind} 트랙 수신: {remote_peer_id[:8]}")
        sink = MediaBlackhole()
        sink.addTrack(track)
        sinks.append(sink)
        asyncio.ensure_future(sink.start())

    def on_peer_state(remote_peer_id, state):
        logger.info(f"피어 {remote_peer_id[:8]} 상태: {state.value}")

    channel = WebSocketSignalingChannel(args.server)
    await channel.connect()
    client = CallClient(
        channel,
        AiortcMediaCapability(),
        constraints=build_constraints(args),
        on_peer_state=on_peer_state,
        on_remote_track=on_remote_track,
    )
    try:
        await client.run(args.room)
    finally:
        for sink in sinks:
            await sink.stop()


def parse_args():
    ap = argparse.ArgumentParser(description="WebRTC mesh call client")
    ap.add_argument("--server", default=os.getenv("SIGNALING_URL", "ws://localhost:8000/ws"),
                    help="WS signaling URL")
    ap.add_argument("--room", required=True, help="room id to join")
    ap.add_argument("--no-camera", action="store_true", help="disable camera")
    ap.add_argument("--no-mic", action="store_true", help="disable mic")
    ap.add_argument("--video-device", default=DEFAULT_CONSTRAINTS["video"]["file"])
    ap.add_argument("--audio-device", default=DEFAULT_CONSTRAINTS["audio"]["file"])
    ap.add_argument("--verbose", "-v", action="store_true")
    return ap.parse_args()


if __name__ == "__main__":
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(main(args))
    except KeyboardInterrupt:
        pass
