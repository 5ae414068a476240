"""
Match document schema.

The canonical match lives in a remote document store and is shared by both
captains' clients. Field names on the wire are camelCase; snake_case is
accepted on input. Index-keyed maps are validated to the 0-3 round-index range
(lineup history is keyed by 1-based round number).
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

ROUND_COUNT = 4
POSITIONS_PER_ROUND = 4
AWAY_POSITION_LETTERS = ("A", "B", "C", "D")


def away_letter(home_position: int) -> str:
    """Away slot letter paired with a home position index."""
    return AWAY_POSITION_LETTERS[home_position]


class MatchStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"


class SubstitutionRecord(BaseModel):
    timestamp: datetime
    team: Literal["home", "away"]
    position: int = Field(ge=0, le=POSITIONS_PER_ROUND - 1)
    old_player_id: Optional[str] = Field(default=None, alias="oldPlayerId")
    new_player_id: str = Field(alias="newPlayerId")
    performed_by: str = Field(alias="performedBy")

    class Config:
        populate_by_name = True


class Frame(BaseModel):
    round: int = Field(ge=1, le=ROUND_COUNT)
    home_position: int = Field(ge=0, le=POSITIONS_PER_ROUND - 1, alias="homePosition")
    away_position: str = Field(alias="awayPosition")
    home_player_id: Optional[str] = Field(default=None, alias="homePlayerId")
    away_player_id: Optional[str] = Field(default=None, alias="awayPlayerId")
    is_complete: bool = Field(default=False, alias="isComplete")
    winner_player_id: Optional[str] = Field(default=None, alias="winnerPlayerId")
    substitution_history: List[SubstitutionRecord] = Field(default_factory=list, alias="substitutionHistory")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_slot_and_winner(self):
        expected = away_letter(self.home_position)
        if self.away_position != expected:
            raise ValueError(
                f"awayPosition {self.away_position!r} does not pair with homePosition "
                f"{self.home_position} (expected {expected!r})"
            )
        if self.is_complete and self.winner_player_id not in (self.home_player_id, self.away_player_id):
            raise ValueError(
                f"winnerPlayerId {self.winner_player_id!r} did not play frame "
                f"{self.round}-{self.home_position}"
            )
        return self


def _check_lineup(lineup: Optional[List[str]], label: str) -> Optional[List[str]]:
    if lineup is None:
        return None
    if len(lineup) != POSITIONS_PER_ROUND:
        raise ValueError(f"{label} must have exactly {POSITIONS_PER_ROUND} players, got {len(lineup)}")
    seen = set()
    for player_id in lineup:
        if player_id in seen:
            raise ValueError(f"{label} lists player {player_id!r} at two positions")
        seen.add(player_id)
    return list(lineup)


class RoundLineup(BaseModel):
    """Roster fielded by each team for one round. A missing side inherits."""

    home_lineup: Optional[List[str]] = Field(default=None, alias="homeLineup")
    away_lineup: Optional[List[str]] = Field(default=None, alias="awayLineup")

    class Config:
        populate_by_name = True

    @field_validator("home_lineup")
    @classmethod
    def validate_home_lineup(cls, v):
        return _check_lineup(v, "homeLineup")

    @field_validator("away_lineup")
    @classmethod
    def validate_away_lineup(cls, v):
        return _check_lineup(v, "awayLineup")

    def for_team(self, is_home_team: bool) -> Optional[List[str]]:
        return self.home_lineup if is_home_team else self.away_lineup


class MatchParticipants(BaseModel):
    home_team: List[str] = Field(default_factory=list, alias="homeTeam")
    away_team: List[str] = Field(default_factory=list, alias="awayTeam")

    class Config:
        populate_by_name = True

    def for_team(self, is_home_team: bool) -> List[str]:
        return self.home_team if is_home_team else self.away_team


def _check_round_index_map(v: Dict[int, bool], label: str) -> Dict[int, bool]:
    for key in v:
        if not 0 <= key < ROUND_COUNT:
            raise ValueError(f"{label} key {key} outside round-index range 0-{ROUND_COUNT - 1}")
    return dict(v)


class Match(BaseModel):
    id: str
    home_team_id: str = Field(alias="homeTeamId")
    away_team_id: str = Field(alias="awayTeamId")
    status: MatchStatus = MatchStatus.scheduled
    current_round: int = Field(default=1, ge=1, le=ROUND_COUNT, alias="currentRound")
    frames: List[Frame]
    round_locked_status: Dict[int, bool] = Field(default_factory=dict, alias="roundLockedStatus")
    home_confirmed_rounds: Dict[int, bool] = Field(default_factory=dict, alias="homeConfirmedRounds")
    away_confirmed_rounds: Dict[int, bool] = Field(default_factory=dict, alias="awayConfirmedRounds")
    lineup_history: Dict[int, RoundLineup] = Field(alias="lineupHistory")
    match_participants: MatchParticipants = Field(alias="matchParticipants")
    version: int = 0
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    class Config:
        populate_by_name = True

    @field_validator("round_locked_status")
    @classmethod
    def validate_round_locked_status(cls, v):
        return _check_round_index_map(v, "roundLockedStatus")

    @field_validator("home_confirmed_rounds")
    @classmethod
    def validate_home_confirmed_rounds(cls, v):
        return _check_round_index_map(v, "homeConfirmedRounds")

    @field_validator("away_confirmed_rounds")
    @classmethod
    def validate_away_confirmed_rounds(cls, v):
        return _check_round_index_map(v, "awayConfirmedRounds")

    @field_validator("lineup_history")
    @classmethod
    def validate_lineup_history(cls, v):
        for round_number in v:
            if not 1 <= round_number <= ROUND_COUNT:
                raise ValueError(f"lineupHistory round {round_number} outside 1-{ROUND_COUNT}")
        starting = v.get(1)
        if starting is None or starting.home_lineup is None or starting.away_lineup is None:
            raise ValueError("lineupHistory[1] must hold both starting lineups")
        return dict(v)

    @field_validator("frames")
    @classmethod
    def validate_frames(cls, v):
        expected = ROUND_COUNT * POSITIONS_PER_ROUND
        if len(v) != expected:
            raise ValueError(f"match must have exactly {expected} frames, got {len(v)}")
        slots = {(f.round, f.home_position) for f in v}
        if len(slots) != expected:
            raise ValueError("each (round, homePosition) pair must occur exactly once")
        return v

    @model_validator(mode="after")
    def check_starting_roster_registered(self):
        starting = self.lineup_history[1]
        for is_home, lineup in ((True, starting.home_lineup), (False, starting.away_lineup)):
            registered = set(self.match_participants.for_team(is_home))
            strangers = [p for p in lineup if p not in registered]
            if strangers:
                side = "home" if is_home else "away"
                raise ValueError(f"{side} starting lineup has unregistered players: {strangers}")
        return self

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def frame_index(self, round_number: int, home_position: int) -> int:
        """List index of the frame for (round, homePosition)."""
        for idx, frame in enumerate(self.frames):
            if frame.round == round_number and frame.home_position == home_position:
                return idx
        raise KeyError(f"no frame for round {round_number} position {home_position}")

    def round_frames(self, round_number: int) -> List[Frame]:
        return sorted(
            (f for f in self.frames if f.round == round_number),
            key=lambda f: f.home_position,
        )

    def is_round_complete(self, round_index: int) -> bool:
        """All frames of the 0-based round index are scored."""
        frames = self.round_frames(round_index + 1)
        return len(frames) == POSITIONS_PER_ROUND and all(f.is_complete for f in frames)

    def is_round_locked(self, round_index: int) -> bool:
        return bool(self.round_locked_status.get(round_index))

    def starting_lineup(self, is_home_team: bool) -> List[str]:
        return list(self.lineup_history[1].for_team(is_home_team))

    def to_document(self) -> dict:
        """JSON-ready dict using wire field names."""
        return self.model_dump(mode="json", by_alias=True)
