"""
Two-captain lineup confirmation.

One boolean per team per round index. The substitution window opened by
locking round index R is confirmed under key R; advancing requires both
teams' flags for R. Editing clears only the editing team's flag. There is no
timeout: the window stays open until both captains act.
"""
from dataclasses import dataclass, field
from typing import Dict

from cueflow.models.match import Match


@dataclass(frozen=True)
class Confirmations:
    home: Dict[int, bool] = field(default_factory=dict)
    away: Dict[int, bool] = field(default_factory=dict)

    @classmethod
    def from_match(cls, match: Match) -> "Confirmations":
        return cls(home=dict(match.home_confirmed_rounds), away=dict(match.away_confirmed_rounds))

    def is_confirmed(self, round_index: int, is_home_team: bool) -> bool:
        flags = self.home if is_home_team else self.away
        return bool(flags.get(round_index))

    def both_confirmed(self, round_index: int) -> bool:
        return self.is_confirmed(round_index, True) and self.is_confirmed(round_index, False)

    def confirmed_count(self, round_index: int) -> int:
        return int(self.is_confirmed(round_index, True)) + int(self.is_confirmed(round_index, False))

    def set(self, round_index: int, is_home_team: bool, value: bool) -> "Confirmations":
        """Copy with one team's flag for `round_index` replaced."""
        if is_home_team:
            return Confirmations(home={**self.home, round_index: value}, away=dict(self.away))
        return Confirmations(home=dict(self.home), away={**self.away, round_index: value})

    def confirm(self, round_index: int, is_home_team: bool) -> "Confirmations":
        return self.set(round_index, is_home_team, True)

    def unconfirm(self, round_index: int, is_home_team: bool) -> "Confirmations":
        return self.set(round_index, is_home_team, False)

    def reset_window(self, round_index: int) -> "Confirmations":
        """Clear both teams' flags for a freshly opened window."""
        return self.set(round_index, True, False).set(round_index, False, False)


def confirmation_field(is_home_team: bool) -> str:
    """Wire field holding a team's confirmation flags."""
    return "homeConfirmedRounds" if is_home_team else "awayConfirmedRounds"
