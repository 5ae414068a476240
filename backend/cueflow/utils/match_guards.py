"""
Match Guards

Translate match store failures into HTTP errors:
- MatchNotFound -> 404
- MatchAlreadyExists / MatchWriteConflict -> 409
- InvalidPatchPath / MatchPatchRejected -> 422
"""

from fastapi import HTTPException

from cueflow.models.match import Match
from cueflow.services.match_store import (
    InvalidPatchPath,
    MatchAlreadyExists,
    MatchNotFound,
    MatchPatchRejected,
    MatchSyncError,
    MatchWriteConflict,
    SqlMatchStore,
)


def sync_error_to_http(error: MatchSyncError) -> HTTPException:
    if isinstance(error, MatchNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, MatchAlreadyExists):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, MatchWriteConflict):
        return HTTPException(status_code=409, detail=f"MATCH_WRITE_CONFLICT: {error}")
    if isinstance(error, InvalidPatchPath):
        return HTTPException(status_code=422, detail=f"INVALID_PATCH_PATH: {error}")
    if isinstance(error, MatchPatchRejected):
        return HTTPException(status_code=422, detail=f"MATCH_PATCH_REJECTED: {error}")
    return HTTPException(status_code=500, detail=str(error))


def require_match(store: SqlMatchStore, match_id: str) -> Match:
    """
    Load a match or raise 404.

    Raises:
        HTTPException 404: Match not found
    """
    try:
        return store.get(match_id)
    except MatchNotFound as e:
        raise sync_error_to_http(e)
