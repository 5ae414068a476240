"""
Test suite for the SQL-backed match store

- Create/read round trip and duplicate handling
- Dotted-path partial writes, version bump, validation
- Fixed fields: frame identity, the round-1 lineup and participants after start
- Concurrent and stale writers never lose an update
- Scoped subscriptions and push delivery
"""

import asyncio
import copy
import threading

import pytest
from sqlmodel import Session

from cueflow.models.match import MatchStatus
from cueflow.models.match_record import MatchRecord
from cueflow.services.match_store import (
    InvalidPatchPath,
    MatchAlreadyExists,
    MatchNotFound,
    PATCH_ATTEMPTS,
    MatchPatchRejected,
    MatchWriteConflict,
    SqlMatchStore,
    apply_path,
    check_protected_fields,
)
from cueflow.services import match_store
from cueflow.utils.match_guards import sync_error_to_http
from tests.helpers import HOME_PLAYERS, new_match


@pytest.fixture
def stored(store: SqlMatchStore):
    return store.create(new_match())


def test_create_and_get_round_trip(store: SqlMatchStore, stored):
    match = store.get("m1")

    assert match.to_document() == stored.to_document()
    assert match.version == 0
    assert match.updated_at is not None
    assert len(match.frames) == 16


def test_create_duplicate_rejected(store: SqlMatchStore, stored):
    with pytest.raises(MatchAlreadyExists):
        store.create(new_match())


def test_get_unknown_match(store: SqlMatchStore):
    with pytest.raises(MatchNotFound):
        store.get("nope")


def test_patch_bumps_version_and_persists(store: SqlMatchStore, session: Session, stored):
    match = store.apply_patch("m1", {"status": "in_progress", "roundLockedStatus.0": True})

    assert match.status == MatchStatus.in_progress
    assert match.is_round_locked(0)
    assert match.version == 1

    record = session.get(MatchRecord, "m1")
    assert record.version == 1
    assert record.data["roundLockedStatus"] == {"0": True}


def test_patch_creates_intermediate_entries(store: SqlMatchStore, stored):
    match = store.apply_patch("m1", {"lineupHistory.2.homeLineup": ["h1", "h5", "h3", "h4"]})

    assert match.lineup_history[2].home_lineup == ["h1", "h5", "h3", "h4"]
    assert match.lineup_history[2].away_lineup is None


def test_team_keyed_cells_do_not_clobber(store: SqlMatchStore, stored):
    store.apply_patch("m1", {"lineupHistory.2.homeLineup": ["h1", "h5", "h3", "h4"]})
    match = store.apply_patch("m1", {"lineupHistory.2.awayLineup": ["a5", "a2", "a3", "a4"]})

    assert match.lineup_history[2].home_lineup == ["h1", "h5", "h3", "h4"]
    assert match.lineup_history[2].away_lineup == ["a5", "a2", "a3", "a4"]
    assert match.version == 2


def test_async_patch(store: SqlMatchStore, stored):
    match = asyncio.run(store.patch("m1", {"frames.0.isComplete": True, "frames.0.winnerPlayerId": "a1"}))

    assert match.frames[0].is_complete
    assert match.frames[0].winner_player_id == "a1"


@pytest.mark.parametrize(
    "updates",
    [
        {},
        {"version": 7},
        {"id": "other"},
        {"frames.16.isComplete": True},
        {"frames.x.isComplete": True},
        {"status.value": "x"},
        {"frames..isComplete": True},
    ],
)
def test_invalid_paths_rejected(store: SqlMatchStore, stored, updates):
    with pytest.raises(InvalidPatchPath):
        store.apply_patch("m1", updates)

    assert store.get("m1").version == 0


@pytest.mark.parametrize(
    "updates",
    [
        {"lineupHistory.2.homeLineup": ["h1", "h1", "h3", "h4"]},
        {"roundLockedStatus.4": True},
        {"currentRound": 5},
        {"frames.0.isComplete": True, "frames.0.winnerPlayerId": "h9"},
    ],
)
def test_invalid_documents_rejected(store: SqlMatchStore, stored, updates):
    with pytest.raises(MatchPatchRejected):
        store.apply_patch("m1", updates)


def test_frame_identity_is_fixed(store: SqlMatchStore, stored):
    # Swapping two frames' slots keeps the document valid but moves identities
    updates = {
        "frames.0.homePosition": 1,
        "frames.0.awayPosition": "B",
        "frames.1.homePosition": 0,
        "frames.1.awayPosition": "A",
    }

    with pytest.raises(MatchPatchRejected, match="frame identity"):
        store.apply_patch("m1", updates)


def test_round_one_lineup_fixed_after_start(store: SqlMatchStore, stored):
    # Allowed while scheduled
    store.apply_patch("m1", {"lineupHistory.1.homeLineup": ["h1", "h2", "h3", "h5"]})
    store.apply_patch("m1", {"status": "in_progress"})

    with pytest.raises(MatchPatchRejected, match="lineupHistory.1"):
        store.apply_patch("m1", {"lineupHistory.1.homeLineup": ["h1", "h2", "h3", "h6"]})


def test_participants_fixed_after_start(store: SqlMatchStore, stored):
    store.apply_patch("m1", {"matchParticipants.homeTeam": HOME_PLAYERS + ["h7"]})
    store.apply_patch("m1", {"status": "in_progress"})

    with pytest.raises(MatchPatchRejected, match="matchParticipants"):
        store.apply_patch("m1", {"matchParticipants.homeTeam": HOME_PLAYERS + ["h7", "h8"]})
    assert store.get("m1").match_participants.home_team == HOME_PLAYERS + ["h7"]


# ============================================================================
# Concurrent writers
# ============================================================================


def _write_behind_store(store: SqlMatchStore, field: str, value):
    """Commit a change to m1 the way another process would, bypassing the store."""
    with Session(store.engine) as other:
        record = other.get(MatchRecord, "m1")
        data = copy.deepcopy(record.data)
        data[field] = value
        data["version"] = record.version + 1
        record.data = data
        record.version += 1
        other.add(record)
        other.commit()


def test_parallel_writers_all_land(store: SqlMatchStore, stored):
    cells = [
        {"homeConfirmedRounds.0": True},
        {"awayConfirmedRounds.0": True},
        {"homeConfirmedRounds.1": True},
        {"awayConfirmedRounds.1": True},
        {"lineupHistory.2.homeLineup": ["h1", "h5", "h3", "h4"]},
        {"lineupHistory.2.awayLineup": ["a5", "a2", "a3", "a4"]},
        {"roundLockedStatus.3": False},
        {"currentRound": 2},
    ]
    errors = []
    start = threading.Barrier(len(cells))

    def write(updates):
        start.wait()
        try:
            store.apply_patch("m1", updates)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=write, args=(updates,)) for updates in cells]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    match = store.get("m1")
    assert match.version == len(cells)
    assert match.home_confirmed_rounds == {0: True, 1: True}
    assert match.away_confirmed_rounds == {0: True, 1: True}
    assert match.lineup_history[2].home_lineup == ["h1", "h5", "h3", "h4"]
    assert match.lineup_history[2].away_lineup == ["a5", "a2", "a3", "a4"]
    assert match.round_locked_status == {3: False}
    assert match.current_round == 2


def test_stale_read_is_reapplied(store: SqlMatchStore, stored, monkeypatch):
    # Another writer commits between this patch's read and its write
    calls = []

    def check_then_race(before, after):
        calls.append(before.version)
        if len(calls) == 1:
            _write_behind_store(store, "awayConfirmedRounds", {"0": True})
        check_protected_fields(before, after)

    monkeypatch.setattr(match_store, "check_protected_fields", check_then_race)
    match = store.apply_patch("m1", {"homeConfirmedRounds.0": True})

    assert calls == [0, 1]
    assert match.version == 2
    assert match.home_confirmed_rounds == {0: True}
    assert match.away_confirmed_rounds == {0: True}
    assert store.get("m1").to_document() == match.to_document()


def test_write_conflict_after_repeated_races(store: SqlMatchStore, stored, monkeypatch):
    snapshots = []

    def always_race(before, after):
        _write_behind_store(store, "currentRound", before.current_round)

    monkeypatch.setattr(match_store, "check_protected_fields", always_race)
    with store.subscribe("m1", snapshots.append):
        with pytest.raises(MatchWriteConflict):
            store.apply_patch("m1", {"homeConfirmedRounds.0": True})

    match = store.get("m1")
    assert match.version == PATCH_ATTEMPTS
    assert match.home_confirmed_rounds == {}
    # Only the initial delivery; a failed patch notifies nobody
    assert len(snapshots) == 1
    assert sync_error_to_http(MatchWriteConflict("m1")).status_code == 409


def test_patch_unknown_match(store: SqlMatchStore):
    with pytest.raises(MatchNotFound):
        store.apply_patch("nope", {"status": "in_progress"})


def test_apply_path_on_plain_document():
    document = {"roundLockedStatus": {}, "frames": [{"isComplete": False}]}

    apply_path(document, "roundLockedStatus.1", True)
    apply_path(document, "frames.0.isComplete", True)

    assert document == {"roundLockedStatus": {"1": True}, "frames": [{"isComplete": True}]}


# ============================================================================
# Subscriptions
# ============================================================================


def test_subscription_delivers_current_then_updates(store: SqlMatchStore, stored):
    received = []

    with store.subscribe("m1", received.append) as subscription:
        assert subscription.active
        assert store.subscriber_count("m1") == 1
        store.apply_patch("m1", {"status": "in_progress"})

    assert [doc["version"] for doc in received] == [0, 1]
    assert received[1]["status"] == "in_progress"
    assert store.subscriber_count() == 0


def test_no_delivery_after_release(store: SqlMatchStore, stored):
    received = []
    subscription = store.subscribe("m1", received.append)

    with subscription:
        pass
    subscription.close()
    store.apply_patch("m1", {"status": "in_progress"})

    assert len(received) == 1
    assert not subscription.active


def test_every_subscriber_sees_each_write(store: SqlMatchStore, stored):
    home, away = [], []

    with store.subscribe("m1", home.append), store.subscribe("m1", away.append):
        store.apply_patch("m1", {"homeConfirmedRounds.0": True})

    assert home[-1]["homeConfirmedRounds"] == {"0": True}
    assert away[-1] == home[-1]


def test_failing_listener_does_not_block_others(store: SqlMatchStore, stored):
    received = []

    def broken(document):
        if document["version"] > 0:
            raise RuntimeError("listener bug")

    with store.subscribe("m1", broken), store.subscribe("m1", received.append):
        match = store.apply_patch("m1", {"status": "in_progress"})

    assert match.version == 1
    assert received[-1]["version"] == 1


def test_subscribe_unknown_match(store: SqlMatchStore):
    with pytest.raises(MatchNotFound):
        with store.subscribe("nope", lambda doc: None):
            pass

    assert store.subscriber_count() == 0
