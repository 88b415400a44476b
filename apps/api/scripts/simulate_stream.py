"""Drive a producer on the streamer edge and a viewer on the viewer edge.

Run the broker first (``signal-broker``), then::

    python scripts/simulate_stream.py --stream-id demo --frames 5
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging

import websockets

logger = logging.getLogger("simulate_stream")


async def _expect(ws, kind: str) -> dict:
    while True:
        message = json.loads(await ws.recv())
        if message.get("type") == kind:
            return message
        logger.info("skipping %s while waiting for %s", message.get("type"), kind)


async def run(streamer_url: str, viewer_url: str, stream_id: str, frames: int) -> None:
    async with websockets.connect(streamer_url) as producer, websockets.connect(viewer_url) as viewer:
        producer_hello = await _expect(producer, "connected")
        viewer_hello = await _expect(viewer, "connected")
        logger.info("producer=%s viewer=%s", producer_hello["connectionId"], viewer_hello["connectionId"])

        await producer.send(json.dumps({
            "type": "producer-register",
            "streamId": stream_id,
            "metadata": {"name": "simulated camera"},
        }))
        ready = await _expect(producer, "producer-ready")
        logger.info("stream ready: %s", ready["streamId"])

        await viewer.send(json.dumps({"type": "consumer-join", "streamId": stream_id}))
        reply = json.loads(await viewer.recv())
        if reply.get("type") != "consumer-ready":
            raise SystemExit(f"join failed: {reply}")

        await viewer.send(json.dumps({
            "type": "offer",
            "streamId": stream_id,
            "payload": {"sdp": "v=0 simulated", "type": "offer"},
        }))
        offer = await _expect(producer, "offer")
        logger.info("producer got offer from %s", offer["sender"])

        await producer.send(json.dumps({
            "type": "answer",
            "target": offer["sender"],
            "payload": {"sdp": "v=0 simulated", "type": "answer"},
        }))
        answer = await _expect(viewer, "answer")
        logger.info("viewer got answer from %s", answer["sender"])

        for index in range(frames):
            await producer.send(json.dumps({"type": "data", "streamId": stream_id, "payload": {"frame": index}}))
            frame = await _expect(viewer, "data")
            logger.info("viewer got frame %s", frame["payload"]["frame"])

    logger.info("done")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--streamer-url", default="ws://localhost:5000/ws")
    parser.add_argument("--viewer-url", default="ws://localhost:5001/ws")
    parser.add_argument("--stream-id", default="demo")
    parser.add_argument("--frames", type=int, default=3)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    asyncio.run(run(args.streamer_url, args.viewer_url, args.stream_id, args.frames))


if __name__ == "__main__":
    main()
