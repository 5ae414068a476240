"""
Frame scoring.

Builds the partial write that records a frame's winner. Only frames of the
current, unlocked round of an in-progress match can be scored.
"""

from typing import Any, Dict

from cueflow.models.match import Match, MatchStatus


class ScoringError(ValueError):
    pass


def frame_score_updates(match: Match, round_number: int, position: int, winner_player_id: str) -> Dict[str, Any]:
    if match.status != MatchStatus.in_progress:
        raise ScoringError(f"Match {match.id} is {match.status.value}, not in progress")
    if round_number != match.current_round:
        raise ScoringError(f"Round {round_number} is not the current round ({match.current_round})")
    if match.is_round_locked(round_number - 1):
        raise ScoringError(f"Round {round_number} is locked")

    try:
        idx = match.frame_index(round_number, position)
    except KeyError as e:
        raise ScoringError(str(e)) from e

    frame = match.frames[idx]
    if winner_player_id not in (frame.home_player_id, frame.away_player_id):
        raise ScoringError(
            f"Player {winner_player_id} did not play frame {round_number}-{frame.home_position}{frame.away_position}"
        )

    return {
        f"frames.{idx}.isComplete": True,
        f"frames.{idx}.winnerPlayerId": winner_player_id,
    }
