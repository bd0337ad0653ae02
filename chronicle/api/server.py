"""
Chronicle Engine: Read API Server
=================================

Read-only API over stored sessions: projected state, raw events, derived
relationships and milestones. Nothing here mutates a store.

Endpoints:
- GET /health
- GET /api/v1/sessions
- GET /api/v1/sessions/{session_id}/state
- GET /api/v1/sessions/{session_id}/events
- GET /api/v1/sessions/{session_id}/relationships
- GET /api/v1/sessions/{session_id}/milestones?pair=A|B

Usage:
    uvicorn chronicle.api.server:app --reload
"""
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..contracts.base import MissingSnapshotError, sort_pair
from ..engine import ChronicleEngine, EngineConfig
from ..observability import get_logger, setup_logging
from ..storage import StorageBackend
from ..temporal.event_log import canonical_from_chat
from .mapper import map_events, map_milestone, map_projection, map_relationship

logger = get_logger(__name__)

# =============================================================================
# INFRASTRUCTURE SETUP
# =============================================================================

engine_config: Optional[EngineConfig] = None
storage_backend: Optional[StorageBackend] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the session storage on startup."""
    global engine_config, storage_backend

    engine_config = EngineConfig.from_env()
    setup_logging(engine_config.observability.log_level, engine_config.observability.json_logs)
    storage_backend = engine_config.storage.create_backend()
    logger.info("storage ready (%s)", engine_config.storage.backend_type)

    yield

    logger.info("shutting down")
    storage_backend = None
    engine_config = None


app = FastAPI(
    title="Chronicle Engine API",
    version="0.1.0",
    description="Read layer for event-sourced narrative state",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET"],  # read-only
    allow_headers=["*"],
)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class SessionList(BaseModel):
    sessions: List[str]


class StateResponse(BaseModel):
    session_id: str
    message_id: int
    swipe_id: int
    state: Dict[str, Any]


class EventsResponse(BaseModel):
    session_id: str
    state_events: List[Dict[str, Any]]
    narrative_events: List[Dict[str, Any]]


class RelationshipResponse(BaseModel):
    pair: List[str]
    status: str
    a_to_b: Dict[str, List[str]]
    b_to_a: Dict[str, List[str]]
    milestone_event_ids: List[str]
    milestones: List[str]


class RelationshipList(BaseModel):
    session_id: str
    relationships: List[RelationshipResponse]


class MilestoneResponse(BaseModel):
    milestone_type: str
    pair: List[str]
    event_id: str
    message_id: int
    description: Optional[str] = None


class MilestoneList(BaseModel):
    session_id: str
    pair: List[str]
    milestones: List[MilestoneResponse]


# =============================================================================
# HELPERS
# =============================================================================

def _open_session(session_id: str, swipes: Optional[str] = None) -> ChronicleEngine:
    if storage_backend is None:
        raise HTTPException(status_code=503, detail="Storage not initialized")
    if session_id not in storage_backend.list_sessions():
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")

    engine = ChronicleEngine(session_id, config=engine_config, backend=storage_backend)
    if swipes:
        try:
            engine.set_canonical_swipes([int(s) for s in swipes.split(",")])
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid swipes list: {swipes}")
    return engine


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health")
async def health_check():
    if storage_backend is None:
        raise HTTPException(status_code=503, detail="Storage not initialized")
    return {"status": "online", "backend": engine_config.storage.backend_type}


@app.get("/api/v1/sessions", response_model=SessionList)
async def list_sessions():
    if storage_backend is None:
        raise HTTPException(status_code=503, detail="Storage not initialized")
    return {"sessions": storage_backend.list_sessions()}


@app.get("/api/v1/sessions/{session_id}/state", response_model=StateResponse)
async def get_state(
    session_id: str,
    message_id: Optional[int] = Query(None, ge=0),
    swipe_id: Optional[int] = Query(None, ge=0),
    swipes: Optional[str] = Query(None, description="Comma-separated canonical swipe per message"),
):
    """
    Projected state at a message (default: the last message with events).

    409 when strict projection is configured and the session has no
    initial projection.
    """
    engine = _open_session(session_id, swipes)
    resolver = canonical_from_chat([int(s) for s in swipes.split(",")]) if swipes else None
    if message_id is None:
        message_id = max(engine.store.last_message_with_events(), 0)
    if swipe_id is None:
        swipe_id = resolver(message_id) if resolver else 0

    try:
        projection = engine.project_at(message_id, swipe_id)
    except MissingSnapshotError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return map_projection(session_id, message_id, swipe_id, projection)


@app.get("/api/v1/sessions/{session_id}/events", response_model=EventsResponse)
async def get_events(session_id: str, message_id: Optional[int] = Query(None, ge=0)):
    engine = _open_session(session_id)
    if message_id is None:
        return map_events(session_id, engine.store.get_active_events(),
                          engine.store.get_active_narrative_events())
    events = engine.events_at(message_id)
    return map_events(session_id, events["state"], events["narrative"])


@app.get("/api/v1/sessions/{session_id}/relationships", response_model=RelationshipList)
async def get_relationships(session_id: str):
    engine = _open_session(session_id)
    return {
        "session_id": session_id,
        "relationships": [map_relationship(r) for r in engine.relationships()],
    }


@app.get("/api/v1/sessions/{session_id}/milestones", response_model=MilestoneList)
async def get_milestones(session_id: str, pair: str = Query(..., description="Two names joined by |")):
    names = [name.strip() for name in pair.split("|")]
    if len(names) != 2 or not all(names):
        raise HTTPException(status_code=400, detail=f"Invalid pair: {pair}")
    engine = _open_session(session_id)
    sorted_pair = sort_pair(names[0], names[1])
    return {
        "session_id": session_id,
        "pair": list(sorted_pair),
        "milestones": [map_milestone(m) for m in engine.milestones(sorted_pair)],
    }
