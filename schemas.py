from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import GameStatus


# ── 快取與回傳用的狀態快照（不可變） ────────────────────────────────────────

class PlayerState(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    user_id: int
    role_id: Optional[int] = None
    is_alive: bool = True
    votes_for: Optional[int] = None


class GameState(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    game_id: int
    guild_id: int
    status: GameStatus
    day_phase: bool
    day_number: int
    votes_to_hang: int = 4
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    phase_changed_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    players: Tuple[PlayerState, ...] = ()

    @property
    def alive_players(self) -> Tuple[PlayerState, ...]:
        return tuple(p for p in self.players if p.is_alive)

    def get_player(self, user_id: int) -> Optional[PlayerState]:
        return next((p for p in self.players if p.user_id == user_id), None)


class ServerConfigState(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    guild_id: int
    prefix: str
    starting_number: int


class TallyEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_id: int
    count: int
    voters: Tuple[int, ...] = ()
    # 票數達到處決門檻
    reached_threshold: bool = False


class AdvanceResult(BaseModel):
    game_id: int
    applied: bool
    new_day_phase: bool
    new_day_number: int
    votes_to_hang: Optional[int] = None
    elimination_ranking: List[TallyEntry] = []


def build_game_state(game, players) -> GameState:
    """ORM row -> 不可變快照（快取只存快照，不存 ORM instance）"""
    return GameState(
        game_id=game.game_id,
        guild_id=game.guild_id,
        status=game.status,
        day_phase=game.day_phase,
        day_number=game.day_number,
        votes_to_hang=game.votes_to_hang,
        created_by=game.created_by,
        created_at=game.created_at,
        phase_changed_at=game.phase_changed_at,
        ended_at=game.ended_at,
        players=tuple(PlayerState.model_validate(p) for p in players),
    )


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateGameRequest(BaseModel):
    creator_user_id: int


class CreateGameResponse(BaseModel):
    game_id: int


class JoinGameRequest(BaseModel):
    user_id: int


class CastVoteRequest(BaseModel):
    voter_id: int
    target_id: int


class AdvanceRequest(BaseModel):
    # 呼叫端看到的階段；提供的話，只有目前階段仍相同時才會推進
    expected_day_phase: Optional[bool] = None
    expected_day_number: Optional[int] = None


class ServerConfigUpdate(BaseModel):
    prefix: str = Field(min_length=1, max_length=16)
    starting_number: int = Field(default=1, ge=0)

    @field_validator("prefix")
    @classmethod
    def prefix_has_no_whitespace(cls, v: str) -> str:
        if any(ch.isspace() for ch in v):
            raise ValueError("prefix must not contain whitespace")
        return v


class GameSettingsUpdate(BaseModel):
    votes_to_hang: int = Field(ge=1, le=20)


class ActionResponse(BaseModel):
    status: str = "ok"
