"""
Match Sync Store

The shared match record both captains' clients read and write:
- Partial writes by dotted field path (`frames.7.isComplete`,
  `lineupHistory.3.homeLineup`), never whole-document replaces
- Every accepted write re-validates the document, bumps `version` and is
  pushed to all subscribers of that match, the writer included
- Subscriptions are scoped handles: acquire on enter, release on exit
"""

import copy
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session

from cueflow.models.match import Match, MatchStatus
from cueflow.models.match_record import MatchRecord

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Dict[str, Any]], None]

# Read-apply-write cycles tried before giving up on a contended match
PATCH_ATTEMPTS = 5

# Top-level document fields a client may write; id/version/updatedAt are store-managed
PATCHABLE_FIELDS = {
    "homeTeamId",
    "awayTeamId",
    "status",
    "currentRound",
    "frames",
    "roundLockedStatus",
    "homeConfirmedRounds",
    "awayConfirmedRounds",
    "lineupHistory",
    "matchParticipants",
}


class MatchSyncError(Exception):
    """Base class for failures talking to the match store."""


class MatchNotFound(MatchSyncError):
    pass


class MatchAlreadyExists(MatchSyncError):
    pass


class InvalidPatchPath(MatchSyncError):
    pass


class MatchPatchRejected(MatchSyncError):
    """The patched document would break a match invariant."""


class MatchWriteConflict(MatchSyncError):
    """Concurrent writers kept moving the record's version."""


class MatchSyncClient(Protocol):
    def subscribe(self, match_id: str, on_snapshot: SnapshotListener) -> "MatchSubscription":
        ...

    async def patch(self, match_id: str, updates: Dict[str, Any]) -> Match:
        ...


class MatchSubscription:
    """
    Scoped listener registration.

    `with store.subscribe(match_id, listener):` registers the listener, delivers
    the current record at once, and unregisters on exit. close() may be
    called more than once.
    """

    def __init__(self, store: "SqlMatchStore", match_id: str, listener: SnapshotListener):
        self.store = store
        self.match_id = match_id
        self.listener = listener
        self.active = False

    def open(self) -> "MatchSubscription":
        if self.active:
            return self
        self.store._add_listener(self.match_id, self.listener)
        self.active = True
        try:
            document = self.store.get_document(self.match_id)
        except MatchNotFound:
            self.close()
            raise
        self.listener(document)
        return self

    def close(self) -> None:
        if not self.active:
            return
        self.store._remove_listener(self.match_id, self.listener)
        self.active = False

    def __enter__(self) -> "MatchSubscription":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ============================================================================
# Dotted-path application
# ============================================================================


def _list_index(container: list, key: str, path: str) -> int:
    try:
        idx = int(key)
    except ValueError:
        raise InvalidPatchPath(f"{path}: {key!r} is not a list index")
    if not 0 <= idx < len(container):
        raise InvalidPatchPath(f"{path}: index {idx} out of range (0-{len(container) - 1})")
    return idx


def apply_path(document: Dict[str, Any], path: str, value: Any) -> None:
    """Set `value` at a dotted path inside `document`, creating missing map entries."""
    parts = path.split(".") if path else []
    if not parts or any(p == "" for p in parts):
        raise InvalidPatchPath(f"Malformed field path {path!r}")
    if parts[0] not in PATCHABLE_FIELDS:
        raise InvalidPatchPath(f"Field {parts[0]!r} cannot be patched")

    target: Any = document
    for key in parts[:-1]:
        if isinstance(target, list):
            target = target[_list_index(target, key, path)]
        elif isinstance(target, dict):
            if target.get(key) is None:
                target[key] = {}
            target = target[key]
        else:
            raise InvalidPatchPath(f"{path}: cannot descend into {key!r}")

    last = parts[-1]
    if isinstance(target, list):
        target[_list_index(target, last, path)] = value
    elif isinstance(target, dict):
        target[last] = value
    else:
        raise InvalidPatchPath(f"{path}: parent of {last!r} is not a container")


def check_protected_fields(before: Match, after: Match) -> None:
    """Reject writes to fields that never change once set."""
    for idx, (old, new) in enumerate(zip(before.frames, after.frames)):
        if (old.round, old.home_position, old.away_position) != (new.round, new.home_position, new.away_position):
            raise MatchPatchRejected(
                f"frames.{idx}: frame identity is fixed "
                f"(round {old.round}, position {old.home_position}{old.away_position})"
            )
    if before.status == MatchStatus.scheduled:
        return
    if after.lineup_history[1] != before.lineup_history[1]:
        raise MatchPatchRejected("lineupHistory.1 is fixed once the match has started")
    if after.match_participants != before.match_participants:
        raise MatchPatchRejected("matchParticipants is fixed once the match has started")


# ============================================================================
# SQL-backed store
# ============================================================================


class SqlMatchStore:
    """MatchSyncClient over a SQLModel engine; one JSON document per match."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._listeners: Dict[str, List[SnapshotListener]] = {}
        self._lock = threading.Lock()
        self._write_locks: Dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_document(self, match_id: str) -> Dict[str, Any]:
        with Session(self.engine) as session:
            record = session.get(MatchRecord, match_id)
            if record is None:
                raise MatchNotFound(f"Match {match_id} not found")
            return copy.deepcopy(record.data)

    def get(self, match_id: str) -> Match:
        return Match.model_validate(self.get_document(match_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, match: Match) -> Match:
        with Session(self.engine) as session:
            if session.get(MatchRecord, match.id) is not None:
                raise MatchAlreadyExists(f"Match {match.id} already exists")
            now = datetime.utcnow()
            match = match.model_copy(update={"updated_at": now})
            record = MatchRecord(
                id=match.id,
                version=match.version,
                data=match.to_document(),
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            session.commit()
        logger.info(f"Created match {match.id} (v{match.version})")
        return match

    def apply_patch(self, match_id: str, updates: Dict[str, Any]) -> Match:
        """
        Apply a partial write and notify subscribers.

        The row is only replaced if its version still matches the one read;
        on a mismatch the paths are re-applied to the fresh document.

        Raises:
            MatchNotFound: unknown match
            InvalidPatchPath: empty patch, unknown field or bad index
            MatchPatchRejected: result fails validation or touches a fixed field
            MatchWriteConflict: version kept moving for PATCH_ATTEMPTS tries
        """
        if not updates:
            raise InvalidPatchPath("Empty patch")

        with self._match_lock(match_id):
            for attempt in range(1, PATCH_ATTEMPTS + 1):
                written = self._write_once(match_id, updates)
                if written is not None:
                    break
                logger.debug(f"Match {match_id} changed under patch (attempt {attempt}/{PATCH_ATTEMPTS})")
            else:
                raise MatchWriteConflict(f"Match {match_id} kept changing; patch not applied")

        after, snapshot = written
        logger.info(f"Patched match {match_id} -> v{after.version}: {sorted(updates)}")
        self._notify(match_id, snapshot)
        return after

    def _write_once(self, match_id: str, updates: Dict[str, Any]) -> Optional[Tuple[Match, Dict[str, Any]]]:
        """One read-apply-validate-write cycle; None when the row moved on."""
        with Session(self.engine) as session:
            record = session.get(MatchRecord, match_id)
            if record is None:
                raise MatchNotFound(f"Match {match_id} not found")
            read_version = record.version

            before = Match.model_validate(record.data)
            document = copy.deepcopy(record.data)
            for path, value in updates.items():
                apply_path(document, path, value)

            try:
                after = Match.model_validate(document)
            except ValidationError as e:
                raise MatchPatchRejected(f"Patch rejected for match {match_id}: {e}") from e
            check_protected_fields(before, after)

            now = datetime.utcnow()
            after = after.model_copy(update={"version": read_version + 1, "updated_at": now})
            snapshot = after.to_document()
            result = session.connection().execute(
                update(MatchRecord)
                .where(MatchRecord.id == match_id, MatchRecord.version == read_version)
                .values(data=snapshot, version=after.version, updated_at=now)
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()

        return after, snapshot

    def _match_lock(self, match_id: str) -> threading.Lock:
        with self._lock:
            return self._write_locks.setdefault(match_id, threading.Lock())

    async def patch(self, match_id: str, updates: Dict[str, Any]) -> Match:
        return self.apply_patch(match_id, updates)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, match_id: str, on_snapshot: SnapshotListener) -> MatchSubscription:
        return MatchSubscription(self, match_id, on_snapshot)

    def subscriber_count(self, match_id: Optional[str] = None) -> int:
        with self._lock:
            if match_id is not None:
                return len(self._listeners.get(match_id, []))
            return sum(len(v) for v in self._listeners.values())

    def _add_listener(self, match_id: str, listener: SnapshotListener) -> None:
        with self._lock:
            self._listeners.setdefault(match_id, []).append(listener)

    def _remove_listener(self, match_id: str, listener: SnapshotListener) -> None:
        with self._lock:
            listeners = self._listeners.get(match_id, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(match_id, None)

    def _notify(self, match_id: str, snapshot: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(match_id, []))
        for listener in listeners:
            try:
                listener(copy.deepcopy(snapshot))
            except Exception:
                # Keep delivering to the remaining listeners
                logger.exception(f"Snapshot listener failed for match {match_id}")
