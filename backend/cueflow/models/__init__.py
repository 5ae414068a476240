from cueflow.models.match import (
    Frame,
    Match,
    MatchParticipants,
    MatchStatus,
    RoundLineup,
    SubstitutionRecord,
)
from cueflow.models.match_record import MatchRecord

__all__ = [
    "Frame",
    "Match",
    "MatchParticipants",
    "MatchStatus",
    "MatchRecord",
    "RoundLineup",
    "SubstitutionRecord",
]
