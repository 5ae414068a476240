"""
Lineup History Store

Per-round rosters keyed by 1-based round number:
- Round 1 is the starting roster, fixed at match start and never rewritten
- Rounds 2-4 are created lazily on the first substitution into that round,
  seeded from the nearest earlier recorded lineup (copy-on-write per team)
- A round with no entry for a team inherits the nearest earlier one

Instances are immutable; every mutation returns a new LineupHistory.
"""

from typing import Dict, List, Optional, Tuple

from cueflow.models.match import POSITIONS_PER_ROUND, ROUND_COUNT, Match, RoundLineup


class LineupHistoryError(ValueError):
    """Raised for writes the store never accepts (round 1, bad indexes)."""


class LineupHistory:
    def __init__(
        self,
        starting_home: List[str],
        starting_away: List[str],
        overrides: Optional[Dict[int, Dict[bool, Tuple[str, ...]]]] = None,
    ):
        self._starting = {
            True: tuple(starting_home[:POSITIONS_PER_ROUND]),
            False: tuple(starting_away[:POSITIONS_PER_ROUND]),
        }
        # round_number -> {is_home_team: lineup}
        self._overrides: Dict[int, Dict[bool, Tuple[str, ...]]] = {
            r: dict(teams) for r, teams in (overrides or {}).items()
        }

    @classmethod
    def from_match(cls, match: Match) -> "LineupHistory":
        """Build from the record's lineupHistory (round 1 is the starting roster)."""
        overrides: Dict[int, Dict[bool, Tuple[str, ...]]] = {}
        for round_number, entry in match.lineup_history.items():
            if round_number == 1:
                continue
            teams = {}
            for is_home in (True, False):
                lineup = entry.for_team(is_home)
                if lineup is not None:
                    teams[is_home] = tuple(lineup)
            if teams:
                overrides[round_number] = teams
        return cls(match.starting_lineup(True), match.starting_lineup(False), overrides)

    def starting_only(self) -> "LineupHistory":
        """Copy that keeps only the round-1 roster."""
        return LineupHistory(list(self._starting[True]), list(self._starting[False]))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def has_override(self, round_number: int, is_home_team: bool) -> bool:
        return is_home_team in self._overrides.get(round_number, {})

    def lineup_for(self, round_number: int, is_home_team: bool) -> List[str]:
        """
        Resolve a team's roster for a round.

        Nearest round <= round_number with a recorded lineup wins; with none
        recorded, the round-1 roster is used.
        """
        for r in range(round_number, 1, -1):
            teams = self._overrides.get(r)
            if teams and is_home_team in teams:
                return list(teams[is_home_team])
        return list(self._starting[is_home_team])

    def changed_positions(self, round_number: int, is_home_team: bool) -> List[Tuple[int, str, str]]:
        """(position, previous player, new player) for cells that differ from round_number - 1."""
        if round_number <= 1:
            return []
        previous = self.lineup_for(round_number - 1, is_home_team)
        current = self.lineup_for(round_number, is_home_team)
        return [
            (pos, previous[pos], current[pos])
            for pos in range(POSITIONS_PER_ROUND)
            if previous[pos] != current[pos]
        ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def with_substitution(
        self, round_number: int, is_home_team: bool, position: int, player_id: str
    ) -> "LineupHistory":
        """Return a copy where one (team, position) cell of one round is replaced."""
        if round_number == 1:
            raise LineupHistoryError("Round 1 lineup is fixed at match start")
        if not 1 < round_number <= ROUND_COUNT:
            raise LineupHistoryError(f"Round {round_number} outside 2-{ROUND_COUNT}")
        if not 0 <= position < POSITIONS_PER_ROUND:
            raise LineupHistoryError(f"Position {position} outside 0-{POSITIONS_PER_ROUND - 1}")

        lineup = self.lineup_for(round_number, is_home_team)
        lineup[position] = player_id

        clone = LineupHistory(list(self._starting[True]), list(self._starting[False]), self._overrides)
        clone._overrides.setdefault(round_number, {})[is_home_team] = tuple(lineup)
        return clone

    def to_round_lineup(self, round_number: int) -> RoundLineup:
        """Explicit entry for a round, both teams resolved."""
        return RoundLineup(
            home_lineup=self.lineup_for(round_number, True),
            away_lineup=self.lineup_for(round_number, False),
        )

    def __eq__(self, other):
        if not isinstance(other, LineupHistory):
            return NotImplemented
        return self._starting == other._starting and self._overrides == other._overrides

    def __repr__(self):
        return f"LineupHistory(starting={self._starting!r}, overrides={self._overrides!r})"
