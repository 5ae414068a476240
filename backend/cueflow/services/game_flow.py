"""
Match game-flow state machine.

Each client holds one GameFlowStore. Local events go through `transition`,
which validates and returns a new GameFlowState; a rejected event leaves the
state unchanged apart from `error`. Snapshots of the remote record arrive as
Reconcile events and are handled by `derive_game_flow`, which recomputes the
state from the record alone so that both captains' clients agree whatever
their local history.

Lifecycle:
    SETUP -> SCORING_ROUND -> ROUND_COMPLETED -> SUBSTITUTION_PHASE
          -> AWAITING_CONFIRMATIONS -> TRANSITIONING_TO_NEXT_ROUND
          -> SCORING_ROUND ... -> MATCH_COMPLETED (terminal)
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, ClassVar, Dict, List, Optional, Set, Union

from cueflow.models.match import ROUND_COUNT, Match, MatchStatus
from cueflow.services.confirmation import Confirmations
from cueflow.services.lineup_history import LineupHistory
from cueflow.services.substitution_eligibility import check_substitution_eligibility, target_round_for

logger = logging.getLogger(__name__)


class GameState(str, Enum):
    SETUP = "setup"
    SCORING_ROUND = "scoring_round"
    ROUND_COMPLETED = "round_completed"
    SUBSTITUTION_PHASE = "substitution_phase"
    AWAITING_CONFIRMATIONS = "awaiting_confirmations"
    TRANSITIONING_TO_NEXT_ROUND = "transitioning_to_next_round"
    MATCH_COMPLETED = "match_completed"


class GameEvent(str, Enum):
    START_MATCH = "start_match"
    COMPLETE_ROUND = "complete_round"
    LOCK_ROUND = "lock_round"
    MAKE_SUBSTITUTION = "make_substitution"
    CONFIRM_HOME_LINEUP = "confirm_home_lineup"
    CONFIRM_AWAY_LINEUP = "confirm_away_lineup"
    EDIT_HOME_LINEUP = "edit_home_lineup"
    EDIT_AWAY_LINEUP = "edit_away_lineup"
    ADVANCE_ROUND = "advance_round"
    RESET_GAME_FLOW = "reset_game_flow"
    RECONCILE = "reconcile"
    SET_ERROR = "set_error"


# ============================================================================
# Events
# ============================================================================


@dataclass(frozen=True)
class StartMatch:
    kind: ClassVar[GameEvent] = GameEvent.START_MATCH


@dataclass(frozen=True)
class CompleteRound:
    kind: ClassVar[GameEvent] = GameEvent.COMPLETE_ROUND


@dataclass(frozen=True)
class LockRound:
    round_index: int
    kind: ClassVar[GameEvent] = GameEvent.LOCK_ROUND


@dataclass(frozen=True)
class MakeSubstitution:
    position: int
    is_home_team: bool
    player_id: str
    round_index: int
    kind: ClassVar[GameEvent] = GameEvent.MAKE_SUBSTITUTION


@dataclass(frozen=True)
class ConfirmHomeLineup:
    round_index: int
    kind: ClassVar[GameEvent] = GameEvent.CONFIRM_HOME_LINEUP


@dataclass(frozen=True)
class ConfirmAwayLineup:
    round_index: int
    kind: ClassVar[GameEvent] = GameEvent.CONFIRM_AWAY_LINEUP


@dataclass(frozen=True)
class EditHomeLineup:
    round_index: int
    kind: ClassVar[GameEvent] = GameEvent.EDIT_HOME_LINEUP


@dataclass(frozen=True)
class EditAwayLineup:
    round_index: int
    kind: ClassVar[GameEvent] = GameEvent.EDIT_AWAY_LINEUP


@dataclass(frozen=True)
class AdvanceRound:
    round_index: int
    kind: ClassVar[GameEvent] = GameEvent.ADVANCE_ROUND


@dataclass(frozen=True)
class ResetGameFlow:
    kind: ClassVar[GameEvent] = GameEvent.RESET_GAME_FLOW


@dataclass(frozen=True)
class Reconcile:
    match: Match
    kind: ClassVar[GameEvent] = GameEvent.RECONCILE


@dataclass(frozen=True)
class SetError:
    error: Optional[str]
    kind: ClassVar[GameEvent] = GameEvent.SET_ERROR


GameFlowEvent = Union[
    StartMatch,
    CompleteRound,
    LockRound,
    MakeSubstitution,
    ConfirmHomeLineup,
    ConfirmAwayLineup,
    EditHomeLineup,
    EditAwayLineup,
    AdvanceRound,
    ResetGameFlow,
    Reconcile,
    SetError,
]


# ============================================================================
# State
# ============================================================================


@dataclass(frozen=True)
class GameFlowState:
    state: GameState = GameState.SETUP
    current_round: int = 1
    confirmations: Confirmations = field(default_factory=Confirmations)
    lineup_history: Optional[LineupHistory] = None
    match: Optional[Match] = None
    version: Optional[int] = None
    error: Optional[str] = None

    @property
    def home_team_confirmed(self) -> Dict[int, bool]:
        return dict(self.confirmations.home)

    @property
    def away_team_confirmed(self) -> Dict[int, bool]:
        return dict(self.confirmations.away)

    @property
    def substitution_round_index(self) -> int:
        """Round index whose lock opened the current substitution window."""
        return self.current_round - 1

    def to_dict(self) -> dict:
        lineups = {}
        if self.lineup_history is not None:
            for round_number in range(1, ROUND_COUNT + 1):
                entry = self.lineup_history.to_round_lineup(round_number)
                lineups[round_number] = {"home_lineup": entry.home_lineup, "away_lineup": entry.away_lineup}
        return {
            "state": self.state.value,
            "current_round": self.current_round,
            "home_team_confirmed": self.home_team_confirmed,
            "away_team_confirmed": self.away_team_confirmed,
            "lineup_history": lineups,
            "version": self.version,
            "error": self.error,
        }


# States in which each local event may fire
ALLOWED_STATES: Dict[GameEvent, Set[GameState]] = {
    GameEvent.START_MATCH: {GameState.SETUP},
    GameEvent.COMPLETE_ROUND: {GameState.SCORING_ROUND},
    GameEvent.LOCK_ROUND: {GameState.ROUND_COMPLETED},
    GameEvent.MAKE_SUBSTITUTION: {GameState.SUBSTITUTION_PHASE, GameState.AWAITING_CONFIRMATIONS},
    GameEvent.CONFIRM_HOME_LINEUP: {GameState.SUBSTITUTION_PHASE, GameState.AWAITING_CONFIRMATIONS},
    GameEvent.CONFIRM_AWAY_LINEUP: {GameState.SUBSTITUTION_PHASE, GameState.AWAITING_CONFIRMATIONS},
    GameEvent.EDIT_HOME_LINEUP: {GameState.SUBSTITUTION_PHASE, GameState.AWAITING_CONFIRMATIONS},
    GameEvent.EDIT_AWAY_LINEUP: {GameState.SUBSTITUTION_PHASE, GameState.AWAITING_CONFIRMATIONS},
    GameEvent.ADVANCE_ROUND: {GameState.TRANSITIONING_TO_NEXT_ROUND},
}


def _reject(state: GameFlowState, message: str) -> GameFlowState:
    logger.info(f"Rejected in {state.state.value}: {message}")
    return replace(state, error=message)


def _window_state(confirmations: Confirmations, round_index: int) -> GameState:
    count = confirmations.confirmed_count(round_index)
    if count == 2:
        return GameState.TRANSITIONING_TO_NEXT_ROUND
    if count == 1:
        return GameState.AWAITING_CONFIRMATIONS
    return GameState.SUBSTITUTION_PHASE


def _check_window(state: GameFlowState, round_index: int) -> Optional[str]:
    if round_index != state.substitution_round_index:
        return (
            f"Round index {round_index} is not the open substitution window "
            f"(round index {state.substitution_round_index})"
        )
    return None


# ============================================================================
# Reconciliation
# ============================================================================


def derive_game_flow(match: Match) -> GameFlowState:
    """
    Recompute the client state from a match record alone.

    1. Every round locked -> MATCH_COMPLETED
    2. Scheduled -> SETUP
    3. Current round locked -> SUBSTITUTION_PHASE / AWAITING_CONFIRMATIONS /
       TRANSITIONING_TO_NEXT_ROUND by how many teams confirmed
    4. Current round fully scored -> ROUND_COMPLETED
    5. Otherwise -> SCORING_ROUND
    """
    base = GameFlowState(
        current_round=match.current_round,
        confirmations=Confirmations.from_match(match),
        lineup_history=LineupHistory.from_match(match),
        match=match,
        version=match.version,
    )

    if match.current_round > 1:
        for is_home, side in ((True, "home"), (False, "away")):
            if not base.lineup_history.has_override(match.current_round, is_home):
                logger.warning(
                    f"Match {match.id}: no lineup history for round {match.current_round} ({side}); "
                    f"falling back to the nearest earlier lineup"
                )

    if all(match.is_round_locked(r) for r in range(ROUND_COUNT)):
        return replace(
            base,
            state=GameState.MATCH_COMPLETED,
            current_round=max(f.round for f in match.frames),
        )

    if match.status == MatchStatus.scheduled:
        return replace(base, state=GameState.SETUP)

    round_index = match.current_round - 1
    if match.is_round_locked(round_index):
        return replace(base, state=_window_state(base.confirmations, round_index))
    if match.is_round_complete(round_index):
        return replace(base, state=GameState.ROUND_COMPLETED)
    return replace(base, state=GameState.SCORING_ROUND)


def _on_reconcile(state: GameFlowState, event: Reconcile) -> GameFlowState:
    match = event.match
    if state.version is not None and match.version < state.version:
        logger.debug(f"Ignoring stale snapshot v{match.version} (have v{state.version})")
        return state
    if state.match == match:
        return state
    return derive_game_flow(match)


# ============================================================================
# Local transitions
# ============================================================================


def _on_start_match(state: GameFlowState, event: StartMatch) -> GameFlowState:
    match = state.match
    if match is not None and match.status != MatchStatus.scheduled:
        # Local state was reset under a live record; fall back to what the record says
        derived = derive_game_flow(match)
        logger.info(f"Rejected start: match {match.id} is already {match.status.value}")
        return replace(derived, error=f"Match already {match.status.value}; cannot start again")
    return replace(state, state=GameState.SCORING_ROUND, current_round=1, error=None)


def _on_complete_round(state: GameFlowState, event: CompleteRound) -> GameFlowState:
    if state.match is None:
        return _reject(state, "No match loaded")
    if not state.match.is_round_complete(state.current_round - 1):
        return _reject(state, f"Round {state.current_round} still has unscored frames")
    return replace(state, state=GameState.ROUND_COMPLETED, error=None)


def _on_lock_round(state: GameFlowState, event: LockRound) -> GameFlowState:
    r = event.round_index
    if state.match is None:
        return _reject(state, "No match loaded")
    if r != state.current_round - 1:
        return _reject(state, f"Round index {r} is not the current round")
    if not state.match.is_round_complete(r):
        return _reject(state, "Cannot lock round - all frames must be scored first.")
    next_state = GameState.MATCH_COMPLETED if r == ROUND_COUNT - 1 else GameState.SUBSTITUTION_PHASE
    return replace(
        state,
        state=next_state,
        confirmations=state.confirmations.reset_window(r),
        error=None,
    )


def _on_make_substitution(state: GameFlowState, event: MakeSubstitution) -> GameFlowState:
    window_error = _check_window(state, event.round_index)
    if window_error:
        return _reject(state, window_error)
    if state.match is None or state.lineup_history is None:
        return _reject(state, "No match loaded")
    if state.confirmations.is_confirmed(event.round_index, event.is_home_team):
        side = "Home" if event.is_home_team else "Away"
        return _reject(state, f"{side} lineup is already confirmed; edit it before substituting")

    eligible, violations = check_substitution_eligibility(
        state.match,
        state.lineup_history,
        event.position,
        event.is_home_team,
        event.player_id,
        event.round_index,
    )
    if not eligible:
        return _reject(state, f"Invalid substitution - {violations[0].message}")

    history = state.lineup_history.with_substitution(
        target_round_for(event.round_index), event.is_home_team, event.position, event.player_id
    )
    return replace(state, lineup_history=history, error=None)


def _confirm(state: GameFlowState, round_index: int, is_home_team: bool) -> GameFlowState:
    window_error = _check_window(state, round_index)
    if window_error:
        return _reject(state, window_error)
    confirmations = state.confirmations.confirm(round_index, is_home_team)
    return replace(
        state,
        state=_window_state(confirmations, round_index),
        confirmations=confirmations,
        error=None,
    )


def _edit(state: GameFlowState, round_index: int, is_home_team: bool) -> GameFlowState:
    window_error = _check_window(state, round_index)
    if window_error:
        return _reject(state, window_error)
    confirmations = state.confirmations.unconfirm(round_index, is_home_team)
    return replace(
        state,
        state=_window_state(confirmations, round_index),
        confirmations=confirmations,
        error=None,
    )


def _on_confirm_home(state: GameFlowState, event: ConfirmHomeLineup) -> GameFlowState:
    return _confirm(state, event.round_index, True)


def _on_confirm_away(state: GameFlowState, event: ConfirmAwayLineup) -> GameFlowState:
    return _confirm(state, event.round_index, False)


def _on_edit_home(state: GameFlowState, event: EditHomeLineup) -> GameFlowState:
    return _edit(state, event.round_index, True)


def _on_edit_away(state: GameFlowState, event: EditAwayLineup) -> GameFlowState:
    return _edit(state, event.round_index, False)


def _on_advance_round(state: GameFlowState, event: AdvanceRound) -> GameFlowState:
    window_error = _check_window(state, event.round_index)
    if window_error:
        return _reject(state, window_error)
    if not state.confirmations.both_confirmed(event.round_index):
        return _reject(state, "Both captains must confirm before advancing")
    next_round = target_round_for(event.round_index)
    logger.info(f"Advancing from round {state.current_round} to round {next_round}")
    return replace(state, state=GameState.SCORING_ROUND, current_round=next_round, error=None)


def _on_reset(state: GameFlowState, event: ResetGameFlow) -> GameFlowState:
    history = state.lineup_history.starting_only() if state.lineup_history is not None else None
    return GameFlowState(
        state=GameState.SETUP,
        current_round=1,
        lineup_history=history,
        match=state.match,
        version=state.version,
    )


def _on_set_error(state: GameFlowState, event: SetError) -> GameFlowState:
    return replace(state, error=event.error)


_HANDLERS: Dict[type, Callable] = {
    StartMatch: _on_start_match,
    CompleteRound: _on_complete_round,
    LockRound: _on_lock_round,
    MakeSubstitution: _on_make_substitution,
    ConfirmHomeLineup: _on_confirm_home,
    ConfirmAwayLineup: _on_confirm_away,
    EditHomeLineup: _on_edit_home,
    EditAwayLineup: _on_edit_away,
    AdvanceRound: _on_advance_round,
    ResetGameFlow: _on_reset,
    Reconcile: _on_reconcile,
    SetError: _on_set_error,
}


def transition(state: GameFlowState, event: GameFlowEvent) -> GameFlowState:
    """Apply one event. Never raises for invalid transitions; sets `error` instead."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unhandled game flow event: {event!r}")

    allowed = ALLOWED_STATES.get(event.kind)
    if allowed is not None and state.state not in allowed:
        return _reject(state, f"{event.kind.name} is not allowed while {state.state.value}")

    return handler(state, event)


# ============================================================================
# Container
# ============================================================================


class GameFlowStore:
    """
    Per-client state container: one dispatch entry point, read-only state.

    Not thread-safe; each client drives its own instance from one thread.
    """

    def __init__(self, initial: Optional[GameFlowState] = None):
        self._state = initial if initial is not None else GameFlowState()
        self._listeners: List[Callable[[GameFlowState], None]] = []

    @property
    def state(self) -> GameFlowState:
        return self._state

    def dispatch(self, event: GameFlowEvent) -> GameFlowState:
        previous = self._state
        self._state = transition(previous, event)
        if self._state is previous:
            return previous
        if self._state.state != previous.state:
            logger.info(f"Game flow {previous.state.value} -> {self._state.state.value} on {event.kind.value}")
        for listener in list(self._listeners):
            listener(self._state)
        return self._state

    def add_listener(self, listener: Callable[[GameFlowState], None]) -> Callable[[], None]:
        """Register a state observer; returns a callable that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove
