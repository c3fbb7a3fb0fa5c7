"""Chaos session control API — start, pause, resume, restart, exit, resolve, scores."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

router = APIRouter(prefix="/api/chaos", tags=["chaos"])


class ResolveIncident(BaseModel):
    action: str = "manual"


def _get_mode(request: Request):
    """Retrieve the ChaosMode from app state."""
    mode = getattr(request.app.state, "chaos_mode", None)
    if mode is None:
        raise HTTPException(503, "Chaos session not available")
    return mode


def _get_scoring(request: Request):
    scoring = getattr(request.app.state, "scoring_engine", None)
    if scoring is None:
        raise HTTPException(503, "Scoring not available")
    return scoring


@router.get("/state")
async def get_session_state(request: Request):
    """Get current session status."""
    return _get_mode(request).get_status()


@router.post("/start")
async def start_session(request: Request):
    """Start a fresh session from idle or after game over."""
    mode = _get_mode(request)
    if mode.state in ("playing", "paused"):
        raise HTTPException(400, f"Cannot start session in state: {mode.state}")
    mode.start()
    return {"status": "started", "state": mode.state}


@router.post("/pause")
async def pause_session(request: Request):
    mode = _get_mode(request)
    if mode.state != "playing":
        raise HTTPException(400, f"Cannot pause session in state: {mode.state}")
    mode.pause()
    return {"status": "paused", "state": mode.state}


@router.post("/resume")
async def resume_session(request: Request):
    mode = _get_mode(request)
    if mode.state != "paused":
        raise HTTPException(400, f"Cannot resume session in state: {mode.state}")
    mode.resume()
    return {"status": "resumed", "state": mode.state}


@router.post("/restart")
async def restart_session(request: Request):
    """Throw away the current session and start over."""
    mode = _get_mode(request)
    mode.restart()
    return {"status": "restarted", "state": mode.state}


@router.post("/exit")
async def exit_session(request: Request):
    mode = _get_mode(request)
    mode.exit()
    return {"status": "exited", "state": mode.state}


@router.get("/report")
async def get_final_report(request: Request):
    """Final report of the last session that ended in game over."""
    mode = _get_mode(request)
    if mode.final_report is None:
        raise HTTPException(404, "No finished session")
    return mode.final_report


@router.get("/scores")
async def get_scores(request: Request):
    """Longest survival and recent finished sessions."""
    return _get_scoring(request).get_stats()


@router.post("/incidents/{incident_id}/resolve")
async def resolve_incident(incident_id: str, body: ResolveIncident, request: Request):
    """Resolve an active incident. XP and health are applied via the event bus."""
    mode = _get_mode(request)
    if mode.state != "playing":
        raise HTTPException(400, f"Cannot resolve incidents in state: {mode.state}")
    result = mode.resolve_incident(incident_id, body.action)
    if result is None:
        # Session left playing between the check and the locked resolve
        if mode.state != "playing":
            raise HTTPException(400, f"Cannot resolve incidents in state: {mode.state}")
        raise HTTPException(404, f"Incident not found: {incident_id}")
    return {"status": "resolved", "id": incident_id, **result}
