"""KUBECHAOS - chaos survival training over a mock Kubernetes cluster.

Main FastAPI application.
"""

import asyncio
import random
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.config import settings
from app.routers import chaos_router, ws_router
from app.routers.ws import SessionEventBridge


# ---------------------------------------------------------------------------
# Subsystem startup helpers
# ---------------------------------------------------------------------------

def _create_chaos_mode(app: FastAPI):
    """Wire the event bus, collaborators and ChaosMode. Returns mode or None."""
    if not settings.chaos_enabled:
        return None

    from comms.event_bus import EventBus
    from simulation import ChaosMode, ClusterState, IncidentEngine, ScoringEngine

    event_bus = EventBus()
    cluster = ClusterState()
    incidents = IncidentEngine(
        event_bus,
        cluster,
        combo_window=settings.incident_combo_window,
        rng=random.Random(settings.incident_seed),
    )
    scoring = ScoringEngine()
    mode = ChaosMode(
        event_bus,
        incidents,
        scoring,
        cluster,
        tick_interval=settings.chaos_tick_interval,
        game_over_threshold=settings.chaos_game_over_threshold,
    )

    app.state.event_bus = event_bus
    app.state.cluster_state = cluster
    app.state.incident_engine = incidents
    app.state.scoring_engine = scoring
    app.state.chaos_mode = mode
    logger.info(f"Chaos mode ready (tick {settings.chaos_tick_interval}s)")
    return mode


def _shutdown_subsystems(app: FastAPI) -> None:
    """Shut down all subsystems in reverse startup order."""
    bridge = getattr(app.state, "ws_bridge", None)
    if bridge is not None:
        logger.info("Stopping WebSocket bridge...")
        bridge.stop()

    mode = getattr(app.state, "chaos_mode", None)
    if mode is not None:
        logger.info("Destroying chaos session...")
        incidents = getattr(app.state, "incident_engine", None)
        mode.destroy()
        if incidents is not None:
            incidents.stop()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    app.state.chaos_mode = None
    app.state.ws_bridge = None

    mode = _create_chaos_mode(app)
    if mode is not None and settings.ws_bridge_enabled:
        bridge = SessionEventBridge(app.state.event_bus, asyncio.get_running_loop())
        bridge.start()
        app.state.ws_bridge = bridge

    logger.info(f"{settings.app_name} online")

    yield

    _shutdown_subsystems(app)
    logger.info(f"{settings.app_name} shutting down...")


# Create FastAPI app
app = FastAPI(
    title="KUBECHAOS",
    description="Chaos survival session over a mock Kubernetes cluster",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chaos_router)
app.include_router(ws_router)


@app.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "ok", "app": settings.app_name}


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
