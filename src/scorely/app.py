"""FastAPI surface for the live-session engine.

Provides endpoints for:
    - Creating sessions (opens the pairing window)
    - Looking up a live session (404 when unknown)
    - Evicting a session and its retained snapshot
    - Read-only match history queries

Live score traffic never goes through HTTP; it flows over MQTT.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException, Query, status

from scorely.errors import SessionNotFound
from scorely.models import CreateSessionBody
from scorely.publisher import build_snapshot

if TYPE_CHECKING:
    from scorely.dispatcher import Dispatcher
    from scorely.storage import MatchHistoryStore


def _session_json(dispatcher: Dispatcher, session_id: str) -> dict[str, Any]:
    session = dispatcher.store.get(session_id)
    snapshot = build_snapshot(session, session.last_update)
    return {
        **snapshot.model_dump(by_alias=True),
        "locationId": session.location_id,
        "pairingOpen": session.pairing_open,
        "pairingExpiresAt": session.pairing_expires_at,
        "createdAt": session.created_at,
        "startedAt": session.started_at,
        "endedAt": session.ended_at,
    }


def mk_app(dispatcher: Dispatcher, history: MatchHistoryStore) -> FastAPI:
    app = FastAPI(title="Scorely", description="Live two-team score tracking over MQTT.")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "sessions": len(dispatcher.store),
            "admission": {k.value: v for k, v in dispatcher.admission.stats.items()},
        }

    @app.post("/sessions", status_code=status.HTTP_201_CREATED)
    def create_session(body: CreateSessionBody) -> dict[str, Any]:
        history.add_location(body.location_id)
        session = dispatcher.create_session(body.location_id)
        return _session_json(dispatcher, session.session_id)

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str) -> dict[str, Any]:
        try:
            return _session_json(dispatcher, session_id)
        except SessionNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @app.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_session(session_id: str) -> None:
        try:
            dispatcher.cleanup(session_id)
        except SessionNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @app.get("/history")
    def get_history(
        location_id: str | None = Query(default=None, alias="locationId"),
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
    ) -> list[dict[str, Any]]:
        matches = history.get_match_history(location_id=location_id, limit=limit, offset=offset)
        return [m.model_dump(by_alias=True) for m in matches]

    @app.get("/locations")
    def get_locations() -> list[dict[str, Any]]:
        return history.get_locations()

    @app.get("/locations/{location_id}/stats")
    def get_location_stats(location_id: str, days: int = Query(default=30, ge=1)) -> dict[str, Any]:
        return dict(history.get_location_stats(location_id, days))

    return app
