"""FastAPI applications for the streamer edge, viewer edge and GPS telemetry."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from .core.config import Settings, settings
from .routers import streams as streams_router
from .routers import telemetry as telemetry_router
from .services.bridge import StreamBridge
from .services.broker import BrokerInstance
from .services.telemetry import TelemetryStore

STREAMER_INSTANCE = "streamer"
VIEWER_INSTANCE = "viewer"


def _apply_cors(app: FastAPI, config: Settings) -> None:
    if config.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


def create_broker_app(broker: BrokerInstance, config: Settings = settings) -> FastAPI:
    """Build the signaling app for one broker edge."""

    app = FastAPI(title=f"Stream Signaling Broker ({broker.name})", version="0.1.0")
    app.state.broker = broker
    _apply_cors(app, config)
    app.include_router(streams_router.router, tags=["signaling"])

    @app.get("/api/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Simple liveness probe."""

        return {"status": "ok", "instance": broker.name}

    @app.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        """Allow HEAD for uptime monitors that only need the status code."""

        return Response(status_code=200)

    return app


def create_telemetry_app(
    store: TelemetryStore,
    *,
    port: int,
    output: bool,
    config: Settings = settings,
) -> FastAPI:
    """Build the GPS input app (``output=False``) or the GPS output app."""

    title = "GPS Telemetry Output" if output else "GPS Telemetry Input"
    app = FastAPI(title=title, version="0.1.0")
    app.state.telemetry = store
    app.state.port = port
    _apply_cors(app, config)
    app.include_router(
        telemetry_router.output_router if output else telemetry_router.input_router,
        tags=["telemetry"],
    )
    return app


@dataclass(slots=True)
class Deployment:
    """Every app served by one process, sharing one bridge and one store."""

    bridge: StreamBridge
    streamer: BrokerInstance
    viewer: BrokerInstance
    telemetry: TelemetryStore
    streamer_app: FastAPI
    viewer_app: FastAPI
    gps_input_app: FastAPI
    gps_output_app: FastAPI


def build_deployment(config: Settings = settings) -> Deployment:
    """Wire the streamer and viewer edges to a shared bridge."""

    bridge = StreamBridge()
    streamer = BrokerInstance(
        STREAMER_INSTANCE,
        bridge=bridge,
        accepts_producers=True,
        collision_policy=config.stream_id_collision,
    )
    viewer = BrokerInstance(
        VIEWER_INSTANCE,
        bridge=bridge,
        accepts_producers=False,
        collision_policy=config.stream_id_collision,
    )
    store = TelemetryStore(max_history=config.gps_history_size)
    return Deployment(
        bridge=bridge,
        streamer=streamer,
        viewer=viewer,
        telemetry=store,
        streamer_app=create_broker_app(streamer, config),
        viewer_app=create_broker_app(viewer, config),
        gps_input_app=create_telemetry_app(store, port=config.gps_input_port, output=False, config=config),
        gps_output_app=create_telemetry_app(store, port=config.gps_output_port, output=True, config=config),
    )


deployment = build_deployment()
app = deployment.streamer_app
viewer_app = deployment.viewer_app
gps_input_app = deployment.gps_input_app
gps_output_app = deployment.gps_output_app
