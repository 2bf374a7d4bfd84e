"""FastAPI endpoints for encounters, phase actions and websocket view sync."""

from __future__ import annotations

from collections import defaultdict
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .access import can_modify, can_view, generate_token
from .config import TrackerSettings, load_settings
from .engine import apply_tracker_action
from .errors import InvalidState, NotFound, StoreFailure, TrackerError
from .models import EncounterAccess
from .reactions import ReactionRoller
from .store import TrackerStore, create_store
from .view import build_phase_view

logger = logging.getLogger(__name__)


class CreateEncounterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class CreateEncounterResponse(BaseModel):
    encounter_id: str
    host_token: str
    player_token: str


class ParticipantEnvelope(BaseModel):
    token: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)


class ParticipantResponse(BaseModel):
    participant_id: str
    name: str


class PhaseViewResponse(BaseModel):
    view: dict[str, Any]


class ActionEnvelope(BaseModel):
    token: str = Field(min_length=1)
    action: dict[str, Any]


class ActionResponse(BaseModel):
    view: dict[str, Any]
    events: list[dict[str, Any]]


_STATUS_BY_ERROR: dict[type[TrackerError], int] = {
    NotFound: 404,
    InvalidState: 409,
    StoreFailure: 503,
}


class EncounterWebSocketHub:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, encounter_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[encounter_id].add(websocket)

    def disconnect(self, encounter_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(encounter_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(encounter_id, None)

    async def send_view(self, websocket: WebSocket, view: dict[str, Any]) -> None:
        await websocket.send_json({"type": "phases.full", "view": view})

    async def broadcast_view(self, encounter_id: str, view: dict[str, Any]) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in self._connections.get(encounter_id, set()):
            try:
                await self.send_view(websocket, view)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(encounter_id=encounter_id, websocket=websocket)


def create_app(
    store: TrackerStore | None = None,
    settings: TrackerSettings | None = None,
    roller: ReactionRoller | None = None,
) -> FastAPI:
    app = FastAPI(title="Phase Tracker API", version="0.1.0")
    app_settings = settings if settings is not None else load_settings()
    tracker_store = store if store is not None else create_store(app_settings.database_url, app_settings.server_salt)
    websocket_hub = EncounterWebSocketHub()
    app.state.websocket_hub = websocket_hub
    app.state.settings = app_settings

    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
        status_code = next((code for kind, code in _STATUS_BY_ERROR.items() if isinstance(exc, kind)), 500)
        logger.info("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})

    def get_store() -> TrackerStore:
        return tracker_store

    def require_access(local_store: TrackerStore, encounter_id: str, token: str, modify: bool) -> EncounterAccess:
        access = local_store.get_encounter_access(encounter_id=encounter_id, raw_token=token)
        if access is None:
            raise HTTPException(status_code=404, detail="Encounter not found or token invalid")
        allowed = can_modify if modify else can_view
        if not allowed(access.role, app_settings.gm_only):
            raise HTTPException(status_code=403, detail="Action not allowed")
        return access

    @app.post("/api/encounters", response_model=CreateEncounterResponse)
    def create_encounter(
        payload: CreateEncounterRequest,
        local_store: TrackerStore = Depends(get_store),
    ) -> CreateEncounterResponse:
        created = local_store.create_encounter(
            name=payload.name,
            host_token=generate_token(),
            player_token=generate_token(),
        )
        return CreateEncounterResponse(
            encounter_id=created.encounter_id,
            host_token=created.host_token,
            player_token=created.player_token,
        )

    @app.post("/api/encounters/{encounter_id}/participants", response_model=ParticipantResponse)
    async def add_participant(
        encounter_id: str,
        payload: ParticipantEnvelope,
        local_store: TrackerStore = Depends(get_store),
    ) -> ParticipantResponse:
        require_access(local_store, encounter_id, payload.token, modify=True)
        participant = local_store.add_participant(encounter_id=encounter_id, name=payload.name)
        access = local_store.get_encounter_access(encounter_id=encounter_id, raw_token=payload.token)
        if access is not None:
            view = await run_in_threadpool(build_phase_view, local_store, access.encounter)
            await websocket_hub.broadcast_view(encounter_id, view)
        return ParticipantResponse(participant_id=participant.participant_id, name=participant.name)

    @app.get("/api/encounters/{encounter_id}/phases", response_model=PhaseViewResponse)
    def get_phases(
        encounter_id: str,
        token: str = Query(min_length=1),
        local_store: TrackerStore = Depends(get_store),
    ) -> PhaseViewResponse:
        access = require_access(local_store, encounter_id, token, modify=False)
        return PhaseViewResponse(view=build_phase_view(local_store, access.encounter))

    @app.post("/api/encounters/{encounter_id}/actions", response_model=ActionResponse)
    async def post_action(
        encounter_id: str,
        payload: ActionEnvelope,
        local_store: TrackerStore = Depends(get_store),
    ) -> ActionResponse:
        access = require_access(local_store, encounter_id, payload.token, modify=True)
        result = await apply_tracker_action(
            local_store,
            access.encounter,
            payload.action,
            clear_on_round_advance=app_settings.clear_on_round_advance,
            roller=roller,
        )
        view = await run_in_threadpool(build_phase_view, local_store, result.encounter)
        await websocket_hub.broadcast_view(encounter_id, view)
        return ActionResponse(view=view, events=result.engine_events)

    @app.websocket("/ws/encounters/{encounter_id}")
    async def encounter_ws(
        websocket: WebSocket,
        encounter_id: str,
        local_store: TrackerStore = Depends(get_store),
    ) -> None:
        token = websocket.query_params.get("token")
        if token is None or token == "":
            await websocket.close(code=1008)
            return
        access = local_store.get_encounter_access(encounter_id=encounter_id, raw_token=token)
        if access is None or not can_view(access.role, app_settings.gm_only):
            await websocket.close(code=1008)
            return

        await websocket_hub.connect(encounter_id=encounter_id, websocket=websocket)
        view = await run_in_threadpool(build_phase_view, local_store, access.encounter)
        await websocket_hub.send_view(websocket=websocket, view=view)

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(encounter_id=encounter_id, websocket=websocket)

    return app


app = create_app()
