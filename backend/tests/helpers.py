"""Match builders shared by the test modules."""

from typing import List, Optional

from cueflow.models.match import Match, MatchStatus, RoundLineup
from cueflow.services.match_setup import build_match

HOME_PLAYERS = ["h1", "h2", "h3", "h4", "h5", "h6"]
AWAY_PLAYERS = ["a1", "a2", "a3", "a4", "a5", "a6"]


def new_match(match_id: str = "m1") -> Match:
    return build_match(
        match_id,
        "home-team",
        "away-team",
        HOME_PLAYERS,
        AWAY_PLAYERS,
        HOME_PLAYERS[:4],
        AWAY_PLAYERS[:4],
    )


def started(match: Match, current_round: int = 1) -> Match:
    return match.model_copy(update={"status": MatchStatus.in_progress, "current_round": current_round})


def with_round_scored(match: Match, round_number: int) -> Match:
    """Every frame of the round won by its home player."""
    frames = [
        f.model_copy(update={"is_complete": True, "winner_player_id": f.home_player_id})
        if f.round == round_number
        else f
        for f in match.frames
    ]
    return match.model_copy(update={"frames": frames})


def with_round_locked(match: Match, round_index: int) -> Match:
    return match.model_copy(update={"round_locked_status": {**match.round_locked_status, round_index: True}})


def with_confirmed(match: Match, round_index: int, home: bool = False, away: bool = False) -> Match:
    return match.model_copy(
        update={
            "home_confirmed_rounds": {**match.home_confirmed_rounds, round_index: home},
            "away_confirmed_rounds": {**match.away_confirmed_rounds, round_index: away},
        }
    )


def with_lineup(
    match: Match, round_number: int, home: Optional[List[str]] = None, away: Optional[List[str]] = None
) -> Match:
    history = dict(match.lineup_history)
    history[round_number] = RoundLineup(home_lineup=home, away_lineup=away)
    return match.model_copy(update={"lineup_history": history})
