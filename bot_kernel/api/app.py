"""
Supervisor API — FastAPI endpoints.

Exposes running sessions for:
- Listing and inspecting sessions (active tier, debug markers, game counters)
- Pause / resume / stop control
- Run history queries
"""

import time
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from bot_kernel.history.store import RunHistoryStore
from bot_kernel.models.history import FinishReason
from bot_kernel.session.context import Session


# --- Response Models ---

class DebugMarkerView(BaseModel):
    last_action: str
    last_step: str


class GameCountersView(BaseModel):
    blacklisted_items: int
    picked_up_items: int
    is_picking_items: bool
    is_stuck: bool
    weapon_swap_failures: int


class SessionSummary(BaseModel):
    name: str
    active_priority: str
    stopped: bool


class SessionDetail(SessionSummary):
    area_id: int
    game_duration_seconds: float
    debug: Dict[str, DebugMarkerView]
    current_game: GameCountersView


class ControlResponse(BaseModel):
    name: str
    action: str
    requested: bool


def _summary(session: Session) -> SessionSummary:
    return SessionSummary(
        name=session.name,
        active_priority=session.arbitrator.active.name.lower(),
        stopped=session.is_stopped,
    )


def _detail(session: Session) -> SessionDetail:
    game = session.current_game
    return SessionDetail(
        **_summary(session).model_dump(),
        area_id=session.snapshot.player.area_id,
        game_duration_seconds=round(time.monotonic() - session.game_started_at, 1),
        debug={
            tier.name.lower(): DebugMarkerView(**marker.model_dump())
            for tier, marker in sorted(session.debug.items())
        },
        current_game=GameCountersView(
            blacklisted_items=len(game.blacklisted_items),
            picked_up_items=len(game.picked_up_items),
            is_picking_items=game.is_picking_items,
            is_stuck=game.is_stuck,
            weapon_swap_failures=game.weapon_swap_failures,
        ),
    )


# --- Application Factory ---

def create_app(
    sessions: Optional[Dict[str, Session]] = None,
    history: Optional[RunHistoryStore] = None,
) -> FastAPI:
    """
    Create the supervisor API over a registry of sessions keyed by name.
    All components are injectable for testing.
    """
    registry = sessions if sessions is not None else {}
    store = history or RunHistoryStore()

    app = FastAPI(
        title="Bot Kernel Supervisor",
        description="Inspect and control running game sessions",
        version="0.1.0",
    )

    app.state.sessions = registry
    app.state.history = store

    def _get(name: str) -> Session:
        session = registry.get(name)
        if session is None:
            raise HTTPException(404, "Session not found")
        return session

    # --- Sessions ---

    @app.get("/sessions", response_model=List[SessionSummary])
    def list_sessions():
        return [_summary(s) for _, s in sorted(registry.items())]

    @app.get("/sessions/{name}", response_model=SessionDetail)
    def get_session(name: str):
        return _detail(_get(name))

    @app.post("/sessions/{name}/pause", response_model=ControlResponse)
    def pause_session(name: str):
        session = _get(name)
        if session.is_stopped:
            raise HTTPException(409, "Session is stopped")
        session.pause()
        return ControlResponse(name=name, action="pause", requested=True)

    @app.post("/sessions/{name}/resume", response_model=ControlResponse)
    def resume_session(name: str):
        session = _get(name)
        if session.is_stopped:
            raise HTTPException(409, "Session is stopped")
        session.resume()
        return ControlResponse(name=name, action="resume", requested=True)

    @app.post("/sessions/{name}/stop", response_model=ControlResponse)
    def stop_session(name: str):
        session = _get(name)
        session.stop()
        return ControlResponse(name=name, action="stop", requested=True)

    # --- History ---

    @app.get("/history")
    def get_history(
        limit: int = Query(50, ge=1),
        reason: Optional[FinishReason] = None,
        session: Optional[str] = None,
    ):
        if reason is not None:
            records = store.by_reason(reason)
        elif session is not None:
            records = store.by_session(session)
        else:
            records = store.recent(limit)
        if session is not None:
            records = [r for r in records if r.session == session]
        return [r.model_dump(mode="json") for r in records[-limit:]]

    @app.get("/history/verify")
    def verify_history():
        return {"valid": store.verify_chain_integrity(), "count": store.count()}

    return app
