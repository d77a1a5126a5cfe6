"""
REST API for matchday.
Thin wrappers around the service layer; services own authorization,
validation and transactions. Domain errors map to status codes in one handler.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Generator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from matchday.auth import create_access_token, decode_token, hash_password, verify_password
from matchday.config import get_settings
from matchday.errors import (
    DuplicateSignup,
    LoginRequired,
    MatchdayError,
    NotFound,
    Unauthorized,
    ValidationError,
)
from matchday.models import (
    CurrentUserPlayer,
    ExistingPlayer,
    Identity,
    MatchSpec,
    MatchType,
    MatchUpdate,
    NewPlayer,
    PlayerUpdate,
    Position,
    SignupUpdate,
    Team,
)
from matchday.persistence import UserRepository, get_connection, init_db
from matchday.persistence.db import get_db_path
from matchday.services import (
    AdminRegistry,
    AuthorizationGate,
    MatchService,
    PlayerRegistry,
    RosterEngine,
    app_stats,
    build_preview,
)

_settings = get_settings()
logging.basicConfig(
    level=getattr(logging, _settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

_MAX_PASSWORD_BYTES = 72


def _truncate_password(s: str) -> str:
    """Cap password input at 72 UTF-8 bytes."""
    b = s.encode("utf-8")
    if len(b) <= _MAX_PASSWORD_BYTES:
        return s
    return b[:_MAX_PASSWORD_BYTES].decode("utf-8", errors="replace")


@contextmanager
def db_conn() -> Generator:
    """Yield a DB connection, ensure close on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    init_db(db_path=get_db_path())
    logger.info("Database ready at %s", get_db_path())
    yield


# ---------- FastAPI app ----------
app = FastAPI(
    title="Matchday API",
    description="Football match scheduling and roster signups",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_ERROR: list[tuple[type[MatchdayError], int]] = [
    (LoginRequired, 401),
    (Unauthorized, 403),
    (DuplicateSignup, 409),
    (ValidationError, 400),
    (NotFound, 404),
]


@app.exception_handler(MatchdayError)
async def matchday_error_handler(request: Request, exc: MatchdayError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content=exc.to_dict())


security = HTTPBearer(auto_error=False)

gate = AuthorizationGate()
admin_registry = AdminRegistry()
players = PlayerRegistry(gate)
matches = MatchService(gate)
roster = RosterEngine(gate, players)


# ---------- Request models ----------


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6)
    name: str | None = Field(None, max_length=50)


class LoginRequest(BaseModel):
    email: str
    password: str


class CreateMatchRequest(BaseModel):
    starts_at: datetime
    ends_at: datetime
    location: str
    capacity: int = 18
    is_private: bool = False
    match_type: MatchType = MatchType.FRIENDLY
    total_cost: float | None = None
    rented_by_player_id: str | None = None
    rented_by_name: str | None = None
    description: str | None = None


class UpdateMatchRequest(BaseModel):
    """Omitted fields stay unchanged; explicit null clears total_cost / description."""
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    location: str | None = None
    capacity: int | None = None
    is_private: bool | None = None
    match_type: MatchType | None = None
    total_cost: float | None = None
    description: str | None = None


class SignupRequest(BaseModel):
    """Exactly one way to name the player: player_id, display_name, or as_self."""
    team: Team
    position: Position | None = None
    player_id: str | None = None
    display_name: str | None = None
    as_self: bool = False


class UpsertSignupRequest(BaseModel):
    team: Team
    position: Position | None = None


class UpdateSignupRequest(BaseModel):
    team: Team | None = None
    position: Position | None = None


class RegisterPlayerRequest(BaseModel):
    display_name: str
    image_url: str | None = None
    preferred_position: Position | None = None


class UpdatePlayerRequest(BaseModel):
    display_name: str | None = None
    image_url: str | None = None
    preferred_position: Position | None = None


def _get_current_user_id(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str | None:
    """Return user_id from JWT or None if no/invalid token."""
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def _identity(user_id: str | None) -> Identity:
    # is_admin is resolved by the services from stored state on every call
    return Identity(actor_id=user_id)


# ---------- Accounts ----------


@app.post("/auth/register")
def register(req: RegisterRequest) -> dict[str, Any]:
    """Create account. Allow-listed emails become admins on first authentication."""
    email = req.email.strip().lower()
    with db_conn() as conn:
        user_repo = UserRepository()
        if user_repo.get_by_email(conn, email):
            raise HTTPException(status_code=400, detail="Email already registered")
        try:
            user = user_repo.create(conn, email, hash_password(_truncate_password(req.password)), name=req.name)
        except sqlite3.IntegrityError:
            # lost a race with a concurrent registration of the same email
            raise HTTPException(status_code=400, detail="Email already registered") from None
        is_admin = admin_registry.enroll(conn, user)
        token = create_access_token(user.id)
        return {"user_id": user.id, "email": user.email, "is_admin": is_admin, "token": token}


@app.post("/auth/login")
def login(req: LoginRequest) -> dict[str, Any]:
    """Returns JWT token."""
    with db_conn() as conn:
        user = UserRepository().get_by_email(conn, req.email.strip().lower())
        if user is None or not user.password_hash or not verify_password(
            _truncate_password(req.password), user.password_hash
        ):
            raise HTTPException(status_code=401, detail="Invalid email or password")
        is_admin = admin_registry.enroll(conn, user)
        token = create_access_token(user.id)
        return {"user_id": user.id, "email": user.email, "is_admin": is_admin, "token": token}


@app.get("/me")
def me(user_id: str | None = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        identity = gate.resolve_identity(conn, user_id)
        out: dict[str, Any] = identity.to_dict()
        if identity.is_authenticated:
            user = UserRepository().get(conn, identity.actor_id)
            out["user"] = user.to_dict() if user else None
        return out


# ---------- Matches ----------


@app.get("/matches")
def list_matches(
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    """Upcoming matches, soonest first. Private matches are redacted for non-admins."""
    with db_conn() as conn:
        views = matches.list_upcoming_views(conn, _identity(user_id), limit=limit)
        return {"matches": [v.to_dict() for v in views]}


@app.post("/matches", status_code=201)
def create_match(
    req: CreateMatchRequest,
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    with db_conn() as conn:
        match = matches.create_match(conn, _identity(user_id), MatchSpec(**req.model_dump()))
        return match.to_dict()


@app.get("/matches/{match_id}")
def get_match(match_id: str, user_id: str | None = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        return matches.get_match_view(conn, _identity(user_id), match_id).to_dict()


@app.patch("/matches/{match_id}")
def update_match(
    match_id: str,
    req: UpdateMatchRequest,
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    explicit = req.model_fields_set
    update = MatchUpdate(
        starts_at=req.starts_at,
        ends_at=req.ends_at,
        location=req.location,
        capacity=req.capacity,
        is_private=req.is_private,
        match_type=req.match_type,
        total_cost=req.total_cost,
        clear_total_cost="total_cost" in explicit and req.total_cost is None,
        description=req.description,
        clear_description="description" in explicit and req.description is None,
    )
    with db_conn() as conn:
        return matches.update_match(conn, _identity(user_id), match_id, update).to_dict()


@app.delete("/matches/{match_id}")
def delete_match(match_id: str, user_id: str | None = Depends(_get_current_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        matches.delete_match(conn, _identity(user_id), match_id)
        return {"match_id": match_id, "deleted": True}


@app.get("/matches/{match_id}/preview")
def match_preview(match_id: str, user_id: str | None = Depends(_get_current_user_id)) -> dict[str, Any]:
    """Link-preview title and description, built from the caller's view only."""
    with db_conn() as conn:
        identity = gate.resolve_identity(conn, user_id)
        match = matches.get_match(conn, match_id)
        summary = roster.capacity_summary(conn, match_id)
        return build_preview(match, identity.is_admin, summary.total)


# ---------- Signups ----------


@app.post("/matches/{match_id}/signups", status_code=201)
def create_signup(
    match_id: str,
    req: SignupRequest,
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    identity = _identity(user_id)
    with db_conn() as conn:
        if req.as_self:
            name = req.display_name
            if not name and user_id:
                user = UserRepository().get(conn, user_id)
                name = user.name if user else None
            choice = CurrentUserPlayer(display_name=name or "")
        elif req.player_id:
            choice = ExistingPlayer(player_id=req.player_id)
        elif req.display_name:
            choice = NewPlayer(display_name=req.display_name)
        else:
            raise HTTPException(status_code=400, detail="Provide player_id, display_name or as_self")
        signup = roster.signup(conn, identity, match_id, choice, req.team, req.position)
        out = signup.to_dict()
        out["capacity"] = roster.capacity_summary(conn, match_id).to_dict()
        return out


@app.get("/matches/{match_id}/signups")
def list_signups(match_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        return {"signups": [s.to_dict() for s in roster.list_signups(conn, match_id)]}


@app.put("/matches/{match_id}/signups/{player_id}")
def upsert_signup(
    match_id: str,
    player_id: str,
    req: UpsertSignupRequest,
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    with db_conn() as conn:
        signup = roster.upsert_signup(conn, _identity(user_id), match_id, player_id, req.team, req.position)
        return signup.to_dict()


@app.patch("/matches/{match_id}/signups/{player_id}")
def update_signup(
    match_id: str,
    player_id: str,
    req: UpdateSignupRequest,
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    update = SignupUpdate(
        team=req.team,
        position=req.position,
        clear_position="position" in req.model_fields_set and req.position is None,
    )
    with db_conn() as conn:
        return roster.update_signup(conn, _identity(user_id), match_id, player_id, update).to_dict()


@app.delete("/matches/{match_id}/signups/{player_id}")
def delete_signup(
    match_id: str,
    player_id: str,
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    with db_conn() as conn:
        roster.delete_signup(conn, _identity(user_id), match_id, player_id)
        return {"match_id": match_id, "player_id": player_id, "deleted": True}


# ---------- Lineups ----------


@app.get("/matches/{match_id}/lineup")
def get_lineup(match_id: str, team: Team, mode: str = "all") -> dict[str, Any]:
    with db_conn() as conn:
        entries = roster.get_lineup(conn, match_id, team, mode=mode)
        return {"match_id": match_id, "team": team.value, "lineup": [e.to_dict() for e in entries]}


@app.get("/matches/{match_id}/lineups")
def get_lineups(match_id: str, mode: str = "all") -> dict[str, Any]:
    """Both teams plus the capacity summary."""
    with db_conn() as conn:
        lineups = roster.get_lineups(conn, match_id, mode=mode)
        return {
            "match_id": match_id,
            "white": [e.to_dict() for e in lineups[Team.WHITE.value]],
            "black": [e.to_dict() for e in lineups[Team.BLACK.value]],
            "capacity": roster.capacity_summary(conn, match_id).to_dict(),
        }


# ---------- Players ----------


@app.get("/players/search")
def search_players(q: str = "", limit: int = Query(default=10, ge=1, le=50)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"players": [p.to_dict() for p in players.search(conn, q, limit=limit)]}


@app.get("/players")
def list_players(limit: int = Query(default=500, ge=1, le=1000)) -> dict[str, Any]:
    with db_conn() as conn:
        return {"players": [p.to_dict() for p in players.list_players(conn, limit=limit)]}


@app.post("/players", status_code=201)
def register_player(
    req: RegisterPlayerRequest,
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    """Open to anyone for a new name; changing an existing player needs admin or self."""
    with db_conn() as conn:
        player = players.register_player(
            conn, req.display_name, req.image_url, req.preferred_position, identity=_identity(user_id)
        )
        return player.to_dict()


@app.get("/players/{player_id}")
def get_player(player_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        return players.get_player(conn, player_id).to_dict()


@app.patch("/players/{player_id}")
def update_player(
    player_id: str,
    req: UpdatePlayerRequest,
    user_id: str | None = Depends(_get_current_user_id),
) -> dict[str, Any]:
    explicit = req.model_fields_set
    update = PlayerUpdate(
        display_name=req.display_name,
        image_url=req.image_url,
        clear_image_url="image_url" in explicit and req.image_url is None,
        preferred_position=req.preferred_position,
        clear_preferred_position="preferred_position" in explicit and req.preferred_position is None,
    )
    with db_conn() as conn:
        return players.update_player(conn, _identity(user_id), player_id, update).to_dict()


# ---------- Stats ----------


@app.get("/stats")
def stats() -> dict[str, Any]:
    with db_conn() as conn:
        return app_stats(conn)


# ---------- Run with: uvicorn matchday.api:app --reload ----------
