"""
Substitution Eligibility

Can a player fill a position in the round about to be played?

The window opened by locking round index R edits target round T = R + 2
(1-based). Rules, applied in order; the first failure decides:
- PARTICIPANT: candidate is one of the team's registered match participants
- SINGLE_POSITION: candidate does not already hold a different position in T
  (already sitting at the requested position is a no-op and passes)
- DOUBLE_BOOKING (T == 2): a starter already moved from their round-1 slot to
  another round-2 slot cannot be used for yet another slot
- REST (T >= 3): anyone in the team's T-1 lineup sits out T
- OUT_MIGRATION (T >= 3): a T-1 player leaving their slot cannot be dropped
  into a different slot of T

Lineups for T and T-1 are resolved through LineupHistory (staged entry,
nearest earlier recorded round, then the round-1 roster).
"""

import logging
from typing import List, Optional, Tuple

from cueflow.models.match import POSITIONS_PER_ROUND, ROUND_COUNT, Match
from cueflow.services.lineup_history import LineupHistory

logger = logging.getLogger(__name__)

RULE_INVALID_TARGET = "INVALID_TARGET"
RULE_PARTICIPANT = "PARTICIPANT"
RULE_SINGLE_POSITION = "SINGLE_POSITION"
RULE_DOUBLE_BOOKING = "DOUBLE_BOOKING"
RULE_REST = "REST"
RULE_OUT_MIGRATION = "OUT_MIGRATION"

FIRST_SUBSTITUTION_ROUND = 2


class EligibilityViolation:
    """Represents a failed eligibility rule"""

    def __init__(self, rule: str, player_id: str, target_round: int, position: int, message: str):
        self.rule = rule
        self.player_id = player_id
        self.target_round = target_round
        self.position = position
        self.message = message

    def to_dict(self) -> dict:
        return {
            "rule": self.rule,
            "player_id": self.player_id,
            "target_round": self.target_round,
            "position": self.position,
            "message": self.message,
        }

    def __repr__(self):
        return f"EligibilityViolation({self.rule}: {self.message})"


def target_round_for(round_index: int) -> int:
    """Round number edited while round index `round_index` is locked."""
    return round_index + 2


def _slot_of(lineup: List[str], player_id: str) -> Optional[int]:
    return lineup.index(player_id) if player_id in lineup else None


def check_substitution_eligibility(
    match: Match,
    history: LineupHistory,
    position: int,
    is_home_team: bool,
    player_id: str,
    round_index: int,
) -> Tuple[bool, List[EligibilityViolation]]:
    """
    Check whether `player_id` may take `position` in round `round_index + 2`.

    Read-only over `match` and `history`.

    Returns:
        (is_eligible, violations)
        - violations holds the first failing rule, empty when eligible
    """
    target = target_round_for(round_index)

    def fail(rule: str, message: str) -> Tuple[bool, List[EligibilityViolation]]:
        logger.debug(f"Ineligible {player_id} for round {target} position {position}: {message}")
        return False, [EligibilityViolation(rule, player_id, target, position, message)]

    if not FIRST_SUBSTITUTION_ROUND <= target <= ROUND_COUNT:
        return fail(RULE_INVALID_TARGET, f"No substitution window for round {target}")
    if not 0 <= position < POSITIONS_PER_ROUND:
        return fail(RULE_INVALID_TARGET, f"Position {position} outside 0-{POSITIONS_PER_ROUND - 1}")

    # Rule 1: registered participant
    participants = match.match_participants.for_team(is_home_team)
    if not participants:
        side = "home" if is_home_team else "away"
        logger.warning(f"Match {match.id} has no registered {side} participants")
    if player_id not in participants:
        return fail(RULE_PARTICIPANT, f"Player {player_id} is not registered for this match")

    target_lineup = history.lineup_for(target, is_home_team)
    held = _slot_of(target_lineup, player_id)

    if target == FIRST_SUBSTITUTION_ROUND:
        # Rules 2-3 against the round-1 baseline
        if held is not None and held != position:
            started = _slot_of(history.lineup_for(1, is_home_team), player_id)
            if started is not None and started != held:
                return fail(
                    RULE_DOUBLE_BOOKING,
                    f"Player {player_id} already moved from position {started} to {held} "
                    f"and cannot also fill position {position} in round {target}",
                )
            return fail(
                RULE_SINGLE_POSITION,
                f"Player {player_id} already plays position {held} in round {target}",
            )
        return True, []

    # Rule 2
    if held is not None and held != position:
        return fail(
            RULE_SINGLE_POSITION,
            f"Player {player_id} already plays position {held} in round {target}",
        )

    # Rules 4-5: mandatory rest after the immediately preceding round only
    previous_lineup = history.lineup_for(target - 1, is_home_team)
    played = _slot_of(previous_lineup, player_id)
    if played is not None:
        if played != position and target_lineup[played] != player_id:
            return fail(
                RULE_OUT_MIGRATION,
                f"Player {player_id} is leaving position {played} and cannot also fill "
                f"position {position} in round {target}",
            )
        return fail(
            RULE_REST,
            f"Player {player_id} played round {target - 1} and must sit out round {target}",
        )

    return True, []


def is_eligible(
    match: Match,
    history: LineupHistory,
    position: int,
    is_home_team: bool,
    player_id: str,
    round_index: int,
) -> bool:
    eligible, _ = check_substitution_eligibility(match, history, position, is_home_team, player_id, round_index)
    return eligible
