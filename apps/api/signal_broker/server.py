"""Serve both broker edges and the telemetry apps from one process.

The edges must share a process because the bridge between them is in-memory.
"""
from __future__ import annotations

import asyncio
import logging

import uvicorn

from .core.config import Settings, get_settings
from .main import Deployment, build_deployment

logger = logging.getLogger(__name__)


def _server(app, config: Settings, port: int) -> uvicorn.Server:
    server_config = uvicorn.Config(
        app,
        host=config.host,
        port=port,
        log_level=config.log_level.lower(),
    )
    return uvicorn.Server(server_config)


async def serve(deployment: Deployment, config: Settings) -> None:
    servers = [
        _server(deployment.streamer_app, config, config.streamer_port),
        _server(deployment.viewer_app, config, config.viewer_port),
        _server(deployment.gps_input_app, config, config.gps_input_port),
        _server(deployment.gps_output_app, config, config.gps_output_port),
    ]
    logger.info("Streamer edge on %s:%s (ws /ws, API /api/streams)", config.host, config.streamer_port)
    logger.info("Viewer edge on %s:%s", config.host, config.viewer_port)
    logger.info("GPS input on %s:%s, GPS output on %s:%s",
                config.host, config.gps_input_port, config.host, config.gps_output_port)
    await asyncio.gather(*(server.serve() for server in servers))


def main() -> None:
    config = get_settings()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(serve(build_deployment(config), config))


if __name__ == "__main__":
    main()
