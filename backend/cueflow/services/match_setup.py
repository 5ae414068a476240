"""
Match setup: builds a scheduled match document from the two round-1 rosters.
"""

import logging
from typing import List

from cueflow.models.match import (
    POSITIONS_PER_ROUND,
    ROUND_COUNT,
    Frame,
    Match,
    MatchParticipants,
    MatchStatus,
    RoundLineup,
    away_letter,
)

logger = logging.getLogger(__name__)


def validate_starting_lineup(lineup: List[str], participants: List[str], side: str) -> None:
    """Raise ValueError unless `lineup` is 4 distinct registered players."""
    if len(lineup) != POSITIONS_PER_ROUND:
        raise ValueError(f"{side} lineup must have exactly {POSITIONS_PER_ROUND} players, got {len(lineup)}")
    if len(set(lineup)) != len(lineup):
        raise ValueError(f"{side} lineup lists the same player twice")
    unregistered = [p for p in lineup if p not in participants]
    if unregistered:
        raise ValueError(f"{side} lineup has unregistered players: {unregistered}")


def generate_frames(home_lineup: List[str], away_lineup: List[str]) -> List[Frame]:
    """
    16 frames, one per (round, homePosition).

    Every round is seeded with the round-1 roster; later rounds are rewritten
    when the game advances past a substitution window.
    """
    frames = []
    for round_number in range(1, ROUND_COUNT + 1):
        for position in range(POSITIONS_PER_ROUND):
            frames.append(
                Frame(
                    round=round_number,
                    home_position=position,
                    away_position=away_letter(position),
                    home_player_id=home_lineup[position],
                    away_player_id=away_lineup[position],
                )
            )
    return frames


def build_match(
    match_id: str,
    home_team_id: str,
    away_team_id: str,
    home_participants: List[str],
    away_participants: List[str],
    home_lineup: List[str],
    away_lineup: List[str],
) -> Match:
    validate_starting_lineup(home_lineup, home_participants, "home")
    validate_starting_lineup(away_lineup, away_participants, "away")

    match = Match(
        id=match_id,
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        status=MatchStatus.scheduled,
        current_round=1,
        frames=generate_frames(home_lineup, away_lineup),
        round_locked_status={},
        home_confirmed_rounds={},
        away_confirmed_rounds={},
        lineup_history={1: RoundLineup(home_lineup=list(home_lineup), away_lineup=list(away_lineup))},
        match_participants=MatchParticipants(home_team=list(home_participants), away_team=list(away_participants)),
        version=0,
    )
    logger.info(f"Built match {match_id}: {home_team_id} vs {away_team_id}")
    return match
