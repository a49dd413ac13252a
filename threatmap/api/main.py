"""
threatmap - Main API Server

FastAPI application exposing the live threat working set, its map/globe
geometry, and the mitigate command to presentation adapters.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from threatmap.config import get_settings
from threatmap.engine import digest, geo
from threatmap.engine.monitor import ThreatMonitor
from threatmap.models.digest import DashboardDigest
from threatmap.models.geometry import Bounds, GlobeArc, MapPath
from threatmap.models.mitigation import MitigationResult
from threatmap.models.threat import ThreatEvent

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ============================================================================
# Data Models
# ============================================================================

class ThreatView(ThreatEvent):
    """A working-set event plus its time- and request-dependent flags."""
    fresh: bool = False
    pending: bool = False


class RefreshResponse(BaseModel):
    refreshed: bool
    kept: Optional[int] = None
    total: int


# ============================================================================
# Helper Functions
# ============================================================================

def get_monitor(request: Request) -> ThreatMonitor:
    return request.app.state.monitor


def to_view(monitor: ThreatMonitor, event: ThreatEvent, now: datetime) -> ThreatView:
    return ThreatView(
        **event.model_dump(),
        fresh=monitor.store.is_fresh(event, now),
        pending=monitor.coordinator.is_pending(event.id),
    )


# ============================================================================
# App factory
# ============================================================================

def create_app(monitor: Optional[ThreatMonitor] = None) -> FastAPI:
    """Build the API around *monitor*, or one built from get_settings().

    The lifespan starts the monitor's feeds on startup and stops them on
    shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.monitor.start()
        try:
            yield
        finally:
            await app.state.monitor.stop()

    app = FastAPI(
        title="threatmap API",
        description="Live threat working set, geometry and mitigation commands",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if monitor is None:
        settings = get_settings()
        settings.validate_for("api")
        monitor = ThreatMonitor.from_settings(settings)
    app.state.monitor = monitor

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "healthy", "service": "threatmap API", "version": VERSION}

    @app.get("/health")
    async def health_check(request: Request):
        """Detailed health check."""
        m = get_monitor(request)
        channel = m.feed.channel
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "monitor_running": m.running,
            "stream_connected": bool(channel and channel.connected),
            "threats": len(m.store),
            "capacity": m.store.capacity,
            "feed": dict(m.feed.stats),
        }

    # ------------------------------------------------------------------
    # Working set
    # ------------------------------------------------------------------

    @app.get("/api/v1/threats", response_model=List[ThreatView])
    async def list_threats(request: Request, attack_type: Optional[str] = None):
        """Current working set, newest first, with fresh/pending flags."""
        m = get_monitor(request)
        now = datetime.now(timezone.utc)
        events = digest.filter_by_type(m.store.current_view(), attack_type)
        return [to_view(m, e, now) for e in events]

    @app.post("/api/v1/threats/refresh", response_model=RefreshResponse)
    async def refresh_threats(request: Request):
        """Manual snapshot refresh. A failed fetch keeps the previous set."""
        m = get_monitor(request)
        kept = await m.feed.refresh()
        return RefreshResponse(refreshed=kept is not None, kept=kept, total=len(m.store))

    @app.get("/api/v1/threats/{threat_id}", response_model=ThreatView)
    async def get_threat(threat_id: str, request: Request):
        m = get_monitor(request)
        event = m.store.get(threat_id)
        if event is None:
            raise HTTPException(status_code=404, detail=f"Threat '{threat_id}' not in working set")
        return to_view(m, event, datetime.now(timezone.utc))

    @app.post("/api/v1/threats/{threat_id}/mitigate", response_model=MitigationResult)
    async def mitigate_threat(threat_id: str, request: Request):
        """
        Mitigate a threat.

        Always answers 200: a backend rejection comes back with
        outcome="rejected" and the backend's message in "error".
        """
        m = get_monitor(request)
        result = await m.mitigate(threat_id)
        logger.info(f"Mitigation for {threat_id}: {result.outcome.value}")
        return result

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @app.get("/api/v1/map/paths", response_model=List[MapPath])
    async def map_paths(request: Request, attack_type: Optional[str] = None):
        m = get_monitor(request)
        return geo.map_paths(digest.filter_by_type(m.store.current_view(), attack_type))

    @app.get("/api/v1/map/bounds", response_model=Optional[Bounds])
    async def map_bounds(request: Request, attack_type: Optional[str] = None):
        """Frame for the 2D map; null when nothing is drawable."""
        m = get_monitor(request)
        events = digest.filter_by_type(m.store.current_view(), attack_type)
        return geo.bounds_for(geo.renderable(events))

    @app.get("/api/v1/globe/arcs", response_model=List[GlobeArc])
    async def globe_arcs(request: Request, attack_type: Optional[str] = None):
        m = get_monitor(request)
        events = digest.filter_by_type(m.store.current_view(), attack_type)
        return geo.globe_arcs(events, radius=m.globe_radius, segments=m.arc_segments)

    # ------------------------------------------------------------------
    # Digest
    # ------------------------------------------------------------------

    @app.get("/api/v1/stats", response_model=DashboardDigest)
    async def stats(request: Request, attack_type: Optional[str] = None):
        m = get_monitor(request)
        events = digest.filter_by_type(m.store.current_view(), attack_type)
        return digest.build_digest(events, window=m.store.freshness_window)

    return app


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "threatmap.api.main:create_app",
        factory=True,
        host=settings.api_host or "0.0.0.0",
        port=settings.api_port or 8000,
        log_level=settings.log_level.lower(),
    )
