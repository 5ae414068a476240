# Force SQLModel table registration at test discovery time
from cueflow.models.match_record import MatchRecord  # noqa: F401
