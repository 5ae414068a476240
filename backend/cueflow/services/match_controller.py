"""
Game Flow Controller

Action API for one captain's client. Every action validates and applies
locally first, then mirrors a partial write to the match store. Snapshots
pushed by the store are reconciled into the local state.

Actions return True when the local transition was accepted and the remote
write landed; False otherwise, with the reason in `state.error`.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from cueflow.models.match import ROUND_COUNT, Match, MatchStatus, SubstitutionRecord
from cueflow.services.game_flow import (
    AdvanceRound,
    CompleteRound,
    ConfirmAwayLineup,
    ConfirmHomeLineup,
    EditAwayLineup,
    EditHomeLineup,
    GameFlowEvent,
    GameFlowState,
    GameFlowStore,
    GameState,
    LockRound,
    MakeSubstitution,
    Reconcile,
    ResetGameFlow,
    SetError,
    StartMatch,
)
from cueflow.services.confirmation import confirmation_field
from cueflow.services.lineup_history import LineupHistory
from cueflow.services.match_store import MatchSubscription, MatchSyncClient, MatchSyncError
from cueflow.services.scoring import ScoringError, frame_score_updates
from cueflow.services.substitution_eligibility import is_eligible, target_round_for

logger = logging.getLogger(__name__)


def lineup_field(is_home_team: bool) -> str:
    return "homeLineup" if is_home_team else "awayLineup"


def advance_updates(match: Match, history: LineupHistory, round_number: int, performed_by: str) -> Dict[str, Any]:
    """
    Partial write that makes `round_number` playable.

    Pins both teams' lineups as explicit lineupHistory cells and moves the
    new occupants into the round's frames, appending to each changed frame's
    substitution log.
    """
    updates: Dict[str, Any] = {"currentRound": round_number}
    lineups = {}
    for is_home in (True, False):
        lineups[is_home] = history.lineup_for(round_number, is_home)
        updates[f"lineupHistory.{round_number}.{lineup_field(is_home)}"] = lineups[is_home]

    now = datetime.utcnow()
    for frame in match.round_frames(round_number):
        idx = match.frame_index(round_number, frame.home_position)
        if frame.is_complete:
            logger.warning(f"Match {match.id}: frame {idx} already scored; occupants left unchanged")
            continue

        entries = list(frame.substitution_history)
        for is_home in (True, False):
            current = frame.home_player_id if is_home else frame.away_player_id
            incoming = lineups[is_home][frame.home_position]
            if current == incoming:
                continue
            updates[f"frames.{idx}.{'homePlayerId' if is_home else 'awayPlayerId'}"] = incoming
            entries.append(
                SubstitutionRecord(
                    timestamp=now,
                    team="home" if is_home else "away",
                    position=frame.home_position,
                    old_player_id=current,
                    new_player_id=incoming,
                    performed_by=performed_by,
                )
            )

        if len(entries) != len(frame.substitution_history):
            updates[f"frames.{idx}.substitutionHistory"] = [
                e.model_dump(mode="json", by_alias=True) for e in entries
            ]
    return updates


class GameFlowController:
    def __init__(
        self,
        match_id: str,
        sync: MatchSyncClient,
        performed_by: str,
        store: Optional[GameFlowStore] = None,
    ):
        self.match_id = match_id
        self.sync = sync
        self.performed_by = performed_by
        self.store = store if store is not None else GameFlowStore()

    @property
    def state(self) -> GameFlowState:
        return self.store.state

    # ------------------------------------------------------------------
    # Remote sync
    # ------------------------------------------------------------------

    def attach(self) -> MatchSubscription:
        """Scoped subscription feeding snapshots into this controller."""
        return self.sync.subscribe(self.match_id, self.on_snapshot)

    def on_snapshot(self, document: Dict[str, Any]) -> None:
        try:
            match = Match.model_validate(document)
        except ValidationError as e:
            logger.warning(f"Malformed snapshot for match {self.match_id}: {e.error_count()} errors")
            self.store.dispatch(SetError(f"Malformed match snapshot: {e.errors()[0]['msg']}"))
            return
        self.store.dispatch(Reconcile(match))

    def _dispatch(self, event: GameFlowEvent) -> bool:
        return self.store.dispatch(event).error is None

    async def _write(self, updates: Dict[str, Any]) -> bool:
        try:
            await self.sync.patch(self.match_id, updates)
        except MatchSyncError as e:
            logger.error(f"Write to match {self.match_id} failed: {e}")
            self.store.dispatch(SetError(str(e)))
            return False
        return True

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def start_match(self) -> bool:
        if not self._dispatch(StartMatch()):
            return False
        return await self._write({"status": MatchStatus.in_progress.value, "currentRound": 1})

    async def score_frame(self, round_number: int, position: int, winner_player_id: str) -> bool:
        state = self.state
        if state.state not in (GameState.SCORING_ROUND, GameState.ROUND_COMPLETED):
            self.store.dispatch(SetError(f"Frames cannot be scored while {state.state.value}"))
            return False
        if state.match is None:
            self.store.dispatch(SetError("No match loaded"))
            return False
        try:
            updates = frame_score_updates(state.match, round_number, position, winner_player_id)
        except ScoringError as e:
            self.store.dispatch(SetError(str(e)))
            return False
        return await self._write(updates)

    def complete_round(self) -> bool:
        return self._dispatch(CompleteRound())

    async def lock_round(self, round_index: int) -> bool:
        if not self._dispatch(LockRound(round_index)):
            return False
        updates: Dict[str, Any] = {
            f"roundLockedStatus.{round_index}": True,
            f"{confirmation_field(True)}.{round_index}": False,
            f"{confirmation_field(False)}.{round_index}": False,
        }
        if round_index == ROUND_COUNT - 1:
            updates["status"] = MatchStatus.completed.value
        return await self._write(updates)

    def can_substitute(self, position: int, is_home_team: bool, player_id: str, round_index: int) -> bool:
        state = self.state
        if state.match is None or state.lineup_history is None:
            return False
        return is_eligible(state.match, state.lineup_history, position, is_home_team, player_id, round_index)

    async def make_substitution(self, position: int, is_home_team: bool, player_id: str, round_index: int) -> bool:
        if not self._dispatch(MakeSubstitution(position, is_home_team, player_id, round_index)):
            return False
        target = target_round_for(round_index)
        lineup = self.state.lineup_history.lineup_for(target, is_home_team)
        return await self._write({f"lineupHistory.{target}.{lineup_field(is_home_team)}": lineup})

    async def _set_confirmation(self, event: GameFlowEvent, round_index: int, is_home_team: bool, value: bool) -> bool:
        if not self._dispatch(event):
            return False
        return await self._write({f"{confirmation_field(is_home_team)}.{round_index}": value})

    async def confirm_home_lineup(self, round_index: int) -> bool:
        return await self._set_confirmation(ConfirmHomeLineup(round_index), round_index, True, True)

    async def confirm_away_lineup(self, round_index: int) -> bool:
        return await self._set_confirmation(ConfirmAwayLineup(round_index), round_index, False, True)

    async def edit_home_lineup(self, round_index: int) -> bool:
        return await self._set_confirmation(EditHomeLineup(round_index), round_index, True, False)

    async def edit_away_lineup(self, round_index: int) -> bool:
        return await self._set_confirmation(EditAwayLineup(round_index), round_index, False, False)

    async def advance_round(self, round_index: int) -> bool:
        if not self._dispatch(AdvanceRound(round_index)):
            return False
        state = self.state
        updates = advance_updates(
            state.match, state.lineup_history, target_round_for(round_index), self.performed_by
        )
        return await self._write(updates)

    def reset_game_flow(self) -> None:
        """Local only; the next snapshot re-derives state from the record."""
        self.store.dispatch(ResetGameFlow())
