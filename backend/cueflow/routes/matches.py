"""
Match API Routes
Create and read shared match records, apply partial writes, score frames,
and expose the derived game flow and substitution eligibility.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator

from cueflow.database import get_match_store
from cueflow.models.match import POSITIONS_PER_ROUND
from cueflow.services.game_flow import derive_game_flow
from cueflow.services.lineup_history import LineupHistory
from cueflow.services.match_setup import build_match
from cueflow.services.match_store import MatchSyncError, SqlMatchStore
from cueflow.services.scoring import ScoringError, frame_score_updates
from cueflow.services.substitution_eligibility import check_substitution_eligibility, target_round_for
from cueflow.utils.match_guards import require_match, sync_error_to_http

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class MatchCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    home_team_id: str = Field(alias="homeTeamId")
    away_team_id: str = Field(alias="awayTeamId")
    home_participants: List[str] = Field(alias="homeParticipants")
    away_participants: List[str] = Field(alias="awayParticipants")
    home_lineup: List[str] = Field(alias="homeLineup")
    away_lineup: List[str] = Field(alias="awayLineup")

    @field_validator("home_lineup", "away_lineup")
    @classmethod
    def validate_lineup_size(cls, v):
        if len(v) != POSITIONS_PER_ROUND:
            raise ValueError(f"lineup must have exactly {POSITIONS_PER_ROUND} players")
        return v


class MatchPatchRequest(BaseModel):
    updates: Dict[str, Any]

    @field_validator("updates")
    @classmethod
    def validate_updates(cls, v):
        if not v:
            raise ValueError("updates must not be empty")
        return v


class FrameScoreRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    winner_player_id: str = Field(alias="winnerPlayerId")


class EligibilityResponse(BaseModel):
    eligible: bool
    target_round: int
    violations: List[Dict[str, Any]]


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/matches", status_code=201)
def create_match(payload: MatchCreateRequest, store: SqlMatchStore = Depends(get_match_store)):
    try:
        match = build_match(
            payload.id,
            payload.home_team_id,
            payload.away_team_id,
            payload.home_participants,
            payload.away_participants,
            payload.home_lineup,
            payload.away_lineup,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        match = store.create(match)
    except MatchSyncError as e:
        raise sync_error_to_http(e)
    return match.to_document()


@router.get("/matches/{match_id}")
def get_match(match_id: str, store: SqlMatchStore = Depends(get_match_store)):
    return require_match(store, match_id).to_document()


@router.patch("/matches/{match_id}")
def patch_match(match_id: str, payload: MatchPatchRequest, store: SqlMatchStore = Depends(get_match_store)):
    try:
        match = store.apply_patch(match_id, payload.updates)
    except MatchSyncError as e:
        raise sync_error_to_http(e)
    return match.to_document()


@router.post("/matches/{match_id}/frames/{round_number}/{position}/score")
def score_frame(
    match_id: str,
    round_number: int,
    position: int,
    payload: FrameScoreRequest,
    store: SqlMatchStore = Depends(get_match_store),
):
    match = require_match(store, match_id)
    try:
        updates = frame_score_updates(match, round_number, position, payload.winner_player_id)
    except ScoringError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        match = store.apply_patch(match_id, updates)
    except MatchSyncError as e:
        raise sync_error_to_http(e)
    logger.info(f"Scored frame {round_number}-{position} of match {match_id}: {payload.winner_player_id}")
    return match.to_document()


@router.get("/matches/{match_id}/game-flow")
def get_game_flow(match_id: str, store: SqlMatchStore = Depends(get_match_store)):
    match = require_match(store, match_id)
    return derive_game_flow(match).to_dict()


@router.get("/matches/{match_id}/eligibility", response_model=EligibilityResponse)
def get_eligibility(
    match_id: str,
    position: int = Query(..., ge=0, le=POSITIONS_PER_ROUND - 1),
    is_home_team: bool = Query(...),
    player_id: str = Query(...),
    round_index: int = Query(..., description="Locked round index; the target round is round_index + 2"),
    store: SqlMatchStore = Depends(get_match_store),
):
    match = require_match(store, match_id)
    eligible, violations = check_substitution_eligibility(
        match, LineupHistory.from_match(match), position, is_home_team, player_id, round_index
    )
    return EligibilityResponse(
        eligible=eligible,
        target_round=target_round_for(round_index),
        violations=[v.to_dict() for v in violations],
    )
