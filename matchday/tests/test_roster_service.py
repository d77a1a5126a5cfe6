"""
Tests for the roster engine: signups, uniqueness, capacity, lineup ordering.
"""
from __future__ import annotations

import dataclasses
import sqlite3
import threading
from datetime import timedelta

import pytest

from conftest import match_spec
from matchday.config import get_settings
from matchday.datetime_utils import utcnow
from matchday.errors import (
    DuplicateSignup,
    LoginRequired,
    MatchFull,
    NotFound,
    Unauthorized,
    Unexpected,
    ValidationError,
)
from matchday.models import (
    ANONYMOUS,
    CurrentUserPlayer,
    ExistingPlayer,
    MatchType,
    NewPlayer,
    PlayerUpdate,
    Position,
    SignupUpdate,
    Team,
)
from matchday.persistence.db import get_connection
from matchday.persistence.repositories import MatchRepository, SignupRepository
from matchday.services.match_service import MatchService
from matchday.services.player_service import PlayerRegistry
from matchday.services.roster_service import RosterEngine


@pytest.fixture
def roster():
    return RosterEngine()


@pytest.fixture
def match(db_conn, admin):
    return MatchService().create_match(db_conn, admin, match_spec(capacity=18))


@pytest.fixture
def training(db_conn, admin):
    return MatchService().create_match(
        db_conn, admin, match_spec(match_type=MatchType.TRAINING, capacity=2)
    )


def test_two_signups_leave_sixteen_spots(db_conn, roster, match):
    roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ana"), Team.WHITE, Position.GK)
    roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ben"), Team.BLACK, Position.CB)
    summary = roster.capacity_summary(db_conn, match.id)
    assert summary.white_count == 1
    assert summary.black_count == 1
    assert summary.total == 2
    assert summary.spots_remaining == 16
    assert not summary.is_full


def test_duplicate_signup_rejected(db_conn, roster, match):
    roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ana"), Team.WHITE)
    with pytest.raises(DuplicateSignup):
        roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ana"), Team.BLACK)
    signups = roster.list_signups(db_conn, match.id)
    assert len(signups) == 1
    assert signups[0].team == "white"


def test_concurrent_duplicate_signup_leaves_one_row(db_conn, roster, match):
    ana = PlayerRegistry().find_or_create_by_name(db_conn, "Ana")
    barrier = threading.Barrier(2)
    results = []

    def sign_up(team):
        conn = get_connection()
        try:
            barrier.wait()
            results.append(roster.signup(conn, ANONYMOUS, match.id, ExistingPlayer(ana.id), team))
        except DuplicateSignup as e:
            results.append(e)
        finally:
            conn.close()

    threads = [threading.Thread(target=sign_up, args=(t,)) for t in (Team.WHITE, Team.BLACK)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert len(results) == 2
    assert sum(isinstance(r, DuplicateSignup) for r in results) == 1
    assert SignupRepository().count_by_match(db_conn, match.id) == 1


def test_lineup_entries_are_immutable(db_conn, roster, match):
    roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ana"), Team.WHITE, Position.GK)
    lineup = roster.get_lineup(db_conn, match.id, Team.WHITE)
    with pytest.raises(dataclasses.FrozenInstanceError):
        lineup[0].display_name = "Mallory"
    lineup.clear()
    again = roster.get_lineup(db_conn, match.id, Team.WHITE)
    assert [e.display_name for e in again] == ["Ana"]


def test_primary_key_violation_maps_to_duplicate(db_conn, roster, match, monkeypatch):
    ana = PlayerRegistry().find_or_create_by_name(db_conn, "Ana")
    roster.signup(db_conn, ANONYMOUS, match.id, ExistingPlayer(ana.id), Team.WHITE)
    # a concurrent writer got there between the pre-check and the insert
    monkeypatch.setattr(SignupRepository, "get", lambda self, conn, m, p: None)
    with pytest.raises(DuplicateSignup):
        roster.signup(db_conn, ANONYMOUS, match.id, ExistingPlayer(ana.id), Team.BLACK)


def test_signup_unknown_match_or_player(db_conn, roster, match):
    with pytest.raises(NotFound):
        roster.signup(db_conn, ANONYMOUS, "missing", NewPlayer("Ana"), Team.WHITE)
    with pytest.raises(NotFound):
        roster.signup(db_conn, ANONYMOUS, match.id, ExistingPlayer("missing"), Team.WHITE)


def test_signup_rejects_bad_team_and_position(db_conn, roster, match):
    with pytest.raises(ValidationError):
        roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ana"), "red")
    with pytest.raises(ValidationError):
        roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ana"), Team.WHITE, "libero")


def test_failed_signup_does_not_create_player(db_conn, roster, training):
    roster.signup(db_conn, ANONYMOUS, training.id, NewPlayer("Ana"), Team.WHITE)
    roster.signup(db_conn, ANONYMOUS, training.id, NewPlayer("Ben"), Team.BLACK)
    with pytest.raises(MatchFull):
        roster.signup(db_conn, ANONYMOUS, training.id, NewPlayer("Cid"), Team.WHITE)
    assert PlayerRegistry().search(db_conn, "Cid") == []


def test_capacity_enforced(db_conn, roster, training):
    roster.signup(db_conn, ANONYMOUS, training.id, NewPlayer("Ana"), Team.WHITE)
    roster.signup(db_conn, ANONYMOUS, training.id, NewPlayer("Ben"), Team.WHITE)
    assert roster.capacity_summary(db_conn, training.id).is_full
    with pytest.raises(MatchFull):
        roster.signup(db_conn, ANONYMOUS, training.id, NewPlayer("Cid"), Team.BLACK)


def test_capacity_display_only_when_not_enforced(db_conn, roster, training):
    get_settings().enforce_capacity = False
    for name in ["Ana", "Ben", "Cid"]:
        roster.signup(db_conn, ANONYMOUS, training.id, NewPlayer(name), Team.WHITE)
    summary = roster.capacity_summary(db_conn, training.id)
    assert summary.total == 3
    assert summary.spots_remaining == 0
    assert summary.is_full


def test_signup_closed_once_match_started(db_conn, roster, admin):
    starts = utcnow() - timedelta(minutes=10)
    started = MatchRepository().create(
        db_conn, starts, starts + timedelta(hours=1), "Old Pitch", 18, False, "friendly", admin.actor_id
    )
    with pytest.raises(ValidationError, match="already started"):
        roster.signup(db_conn, ANONYMOUS, started.id, NewPlayer("Ana"), Team.WHITE)


def test_signup_as_current_user(db_conn, roster, match, member):
    signup = roster.signup(db_conn, member, match.id, CurrentUserPlayer("Member"), Team.BLACK)
    assert signup.player_id == member.actor_id
    with pytest.raises(LoginRequired):
        roster.signup(db_conn, ANONYMOUS, match.id, CurrentUserPlayer("Ghost"), Team.BLACK)


def test_lineup_position_order(db_conn, roster, match):
    order = [Position.ST2, Position.CM, Position.GK, Position.RB, Position.ST1, Position.LB, Position.CB]
    for i, pos in enumerate(order):
        roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer(f"Player {i}"), Team.WHITE, pos)
    roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Late Sub"), Team.WHITE)
    roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Other Team"), Team.BLACK, Position.GK)

    lineup = roster.get_lineup(db_conn, match.id, Team.WHITE)
    assert [e.position for e in lineup] == ["gk", "lb", "cb", "rb", "cm", "st1", "st2", None]
    assert [e.position_order for e in lineup] == [1, 2, 3, 4, 5, 6, 7, 99]
    assert lineup[0].position_label == "Goalkeeper"
    assert lineup[-1].display_name == "Late Sub"
    assert lineup[-1].position_label is None

    positioned = roster.get_lineup(db_conn, match.id, Team.WHITE, mode="positioned")
    assert len(positioned) == 7
    with pytest.raises(ValidationError):
        roster.get_lineup(db_conn, match.id, Team.WHITE, mode="bench")


def test_unpositioned_sorted_by_signup_time(db_conn, roster, match):
    for name in ["First", "Second", "Third"]:
        roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer(name), Team.BLACK)
    names = [e.display_name for e in roster.get_lineup(db_conn, match.id, Team.BLACK)]
    assert names == ["First", "Second", "Third"]


def test_get_lineups_both_teams(db_conn, roster, match):
    roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ana"), Team.WHITE)
    lineups = roster.get_lineups(db_conn, match.id)
    assert set(lineups) == {"white", "black"}
    assert [e.display_name for e in lineups["white"]] == ["Ana"]
    assert lineups["black"] == []
    with pytest.raises(NotFound):
        roster.get_lineup(db_conn, "missing", Team.WHITE)


def test_lineup_shows_live_name_snapshot_kept(db_conn, roster, match, admin):
    signup = roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Ana"), Team.WHITE)
    roster.get_lineup(db_conn, match.id, Team.WHITE)
    PlayerRegistry().update_player(db_conn, admin, signup.player_id, PlayerUpdate(display_name="Ana Maria"))
    assert roster.get_lineup(db_conn, match.id, Team.WHITE)[0].display_name == "Ana Maria"
    assert roster.list_signups(db_conn, match.id)[0].display_name_snapshot == "Ana"


def test_upsert_signup_is_idempotent(db_conn, roster, match, member):
    me = PlayerRegistry().ensure_user_player(db_conn, member, "Member")
    first = roster.upsert_signup(db_conn, member, match.id, me.id, Team.WHITE, Position.CM)
    second = roster.upsert_signup(db_conn, member, match.id, me.id, Team.WHITE, Position.CM)
    assert first.team == second.team == "white"
    assert second.position == "cm"
    assert roster.capacity_summary(db_conn, match.id).total == 1


def test_upsert_signup_overwrites_team_and_position(db_conn, roster, match, member):
    me = PlayerRegistry().ensure_user_player(db_conn, member, "Member")
    roster.upsert_signup(db_conn, member, match.id, me.id, Team.WHITE, Position.CM)
    moved = roster.upsert_signup(db_conn, member, match.id, me.id, Team.BLACK, None)
    assert moved.team == "black"
    assert moved.position is None
    assert moved.updated_at is not None
    summary = roster.capacity_summary(db_conn, match.id)
    assert (summary.white_count, summary.black_count) == (0, 1)


def test_upsert_overwrite_requires_admin_or_self(db_conn, roster, match, member):
    other = PlayerRegistry().find_or_create_by_name(db_conn, "Someone")
    roster.upsert_signup(db_conn, ANONYMOUS, match.id, other.id, Team.WHITE)
    with pytest.raises(Unauthorized):
        roster.upsert_signup(db_conn, member, match.id, other.id, Team.BLACK)
    assert roster.list_signups(db_conn, match.id)[0].team == "white"


def test_upsert_new_row_counts_against_capacity(db_conn, roster, training):
    registry = PlayerRegistry()
    for name in ["Ana", "Ben"]:
        roster.upsert_signup(db_conn, ANONYMOUS, training.id, registry.find_or_create_by_name(db_conn, name).id, Team.WHITE)
    cid = registry.find_or_create_by_name(db_conn, "Cid")
    with pytest.raises(MatchFull):
        roster.upsert_signup(db_conn, ANONYMOUS, training.id, cid.id, Team.WHITE)


def test_update_signup(db_conn, roster, match, member, admin):
    signup = roster.signup(db_conn, member, match.id, CurrentUserPlayer("Member"), Team.WHITE, Position.GK)
    updated = roster.update_signup(db_conn, member, match.id, signup.player_id, SignupUpdate(team=Team.BLACK))
    assert updated.team == "black"
    assert updated.position == "gk"
    cleared = roster.update_signup(db_conn, admin, match.id, signup.player_id, SignupUpdate(clear_position=True))
    assert cleared.position is None
    with pytest.raises(NotFound):
        roster.update_signup(db_conn, admin, match.id, "missing", SignupUpdate(team=Team.WHITE))


def test_update_signup_other_member_denied(db_conn, roster, match, member):
    signup = roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Someone"), Team.WHITE)
    with pytest.raises(Unauthorized):
        roster.update_signup(db_conn, member, match.id, signup.player_id, SignupUpdate(team=Team.BLACK))


def test_delete_signup(db_conn, roster, match, member, admin):
    mine = roster.signup(db_conn, member, match.id, CurrentUserPlayer("Member"), Team.WHITE)
    theirs = roster.signup(db_conn, ANONYMOUS, match.id, NewPlayer("Someone"), Team.BLACK)
    with pytest.raises(Unauthorized):
        roster.delete_signup(db_conn, member, match.id, theirs.player_id)
    roster.delete_signup(db_conn, member, match.id, mine.player_id)
    roster.delete_signup(db_conn, admin, match.id, theirs.player_id)
    assert roster.capacity_summary(db_conn, match.id).total == 0
    assert roster.get_lineup(db_conn, match.id, Team.WHITE) == []
    with pytest.raises(NotFound):
        roster.delete_signup(db_conn, admin, match.id, mine.player_id)


def test_store_failure_is_unexpected(db_conn, roster, match):
    db_conn.execute("DROP TABLE signups")
    with pytest.raises(Unexpected):
        roster.list_signups(db_conn, match.id)


def test_signups_table_rejects_duplicate_pair(db_conn, match):
    player = PlayerRegistry().find_or_create_by_name(db_conn, "Ana")
    repo = SignupRepository()
    repo.create(db_conn, match.id, player.id, "white", None, "Ana")
    with pytest.raises(sqlite3.IntegrityError):
        repo.create(db_conn, match.id, player.id, "black", None, "Ana")
