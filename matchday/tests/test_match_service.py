"""
Tests for the match store: admin guards, validation rules, upcoming listing.
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import match_spec
from matchday.datetime_utils import utcnow
from matchday.errors import LoginRequired, NotFound, Unauthorized, ValidationError
from matchday.models import ANONYMOUS, MatchType, MatchUpdate, NewPlayer, Team
from matchday.persistence.repositories import MatchRepository
from matchday.services.match_service import MatchService
from matchday.services.player_service import PlayerRegistry
from matchday.services.roster_service import RosterEngine
from matchday.services.view_cache import get_view_cache


@pytest.fixture
def service():
    return MatchService()


def test_admin_creates_match(db_conn, service, admin):
    match = service.create_match(db_conn, admin, match_spec(total_cost=90.0))
    assert match.created_by == admin.actor_id
    assert match.created_by_label == "Boss"
    assert match.capacity == 18
    assert match.cost_per_player == 5.0
    assert service.get_match(db_conn, match.id).location == "Riverside Pitch 3"


def test_non_admin_cannot_create(db_conn, service, member):
    with pytest.raises(Unauthorized):
        service.create_match(db_conn, member, match_spec())
    with pytest.raises(LoginRequired):
        service.create_match(db_conn, ANONYMOUS, match_spec())
    assert service.list_upcoming(db_conn) == []


def test_end_must_follow_start(db_conn, service, admin):
    spec = match_spec()
    spec.ends_at = spec.starts_at
    with pytest.raises(ValidationError, match="end after"):
        service.create_match(db_conn, admin, spec)


@pytest.mark.parametrize("match_type,capacity,ok", [
    (MatchType.TRAINING, 1, True),
    (MatchType.TRAINING, 6, True),
    (MatchType.TRAINING, 7, False),
    (MatchType.FRIENDLY, 13, False),
    (MatchType.FRIENDLY, 14, True),
    (MatchType.TOURNAMENT, 18, True),
    (MatchType.TOURNAMENT, 19, False),
])
def test_capacity_depends_on_match_type(db_conn, service, admin, match_type, capacity, ok):
    spec = match_spec(match_type=match_type, capacity=capacity)
    if ok:
        assert service.create_match(db_conn, admin, spec).capacity == capacity
    else:
        with pytest.raises(ValidationError, match="capacity"):
            service.create_match(db_conn, admin, spec)


def test_field_rules(db_conn, service, admin):
    with pytest.raises(ValidationError):
        service.create_match(db_conn, admin, match_spec(location="ab"))
    with pytest.raises(ValidationError):
        service.create_match(db_conn, admin, match_spec(total_cost=-1.0))
    with pytest.raises(ValidationError):
        service.create_match(db_conn, admin, match_spec(total_cost=501.0))
    with pytest.raises(ValidationError):
        service.create_match(db_conn, admin, match_spec(description="x" * 501))
    with pytest.raises(ValidationError):
        service.create_match(db_conn, admin, match_spec(rented_by_name=None))
    starts = utcnow() + timedelta(days=2)
    with pytest.raises(ValidationError, match="4 hours"):
        service.create_match(db_conn, admin, match_spec(starts_at=starts, ends_at=starts + timedelta(hours=5)))


def test_past_start_rejected(db_conn, service, admin):
    starts = utcnow() - timedelta(hours=3)
    with pytest.raises(ValidationError, match="future"):
        service.create_match(db_conn, admin, match_spec(starts_at=starts, ends_at=starts + timedelta(hours=2)))


def test_organizer_player_must_exist(db_conn, service, admin):
    with pytest.raises(ValidationError, match="Organizer"):
        service.create_match(db_conn, admin, match_spec(rented_by_name=None, rented_by_player_id="nope"))
    organizer = PlayerRegistry().find_or_create_by_name(db_conn, "Rita")
    match = service.create_match(db_conn, admin, match_spec(rented_by_name=None, rented_by_player_id=organizer.id))
    assert match.rented_by_player_id == organizer.id


def test_list_upcoming_sorted_and_excludes_past(db_conn, service, admin):
    later = service.create_match(db_conn, admin, match_spec(
        starts_at=utcnow() + timedelta(days=3), ends_at=utcnow() + timedelta(days=3, hours=2)))
    sooner = service.create_match(db_conn, admin, match_spec(
        starts_at=utcnow() + timedelta(days=1), ends_at=utcnow() + timedelta(days=1, hours=2)))
    past_start = utcnow() - timedelta(days=1)
    MatchRepository().create(
        db_conn, past_start, past_start + timedelta(hours=2), "Old Pitch", 18, False, "friendly", admin.actor_id
    )
    upcoming = service.list_upcoming(db_conn)
    assert [m.id for m in upcoming] == [sooner.id, later.id]
    assert [m.id for m in service.list_upcoming(db_conn, limit=1)] == [sooner.id]


def test_list_upcoming_reflects_writes(db_conn, service, admin):
    assert service.list_upcoming(db_conn) == []
    match = service.create_match(db_conn, admin, match_spec())
    assert [m.id for m in service.list_upcoming(db_conn)] == [match.id]
    service.delete_match(db_conn, admin, match.id)
    assert service.list_upcoming(db_conn) == []


def test_update_match(db_conn, service, admin):
    match = service.create_match(db_conn, admin, match_spec(total_cost=100.0, description="Bring bibs"))
    updated = service.update_match(
        db_conn, admin, match.id, MatchUpdate(location="Hill Park", clear_total_cost=True, clear_description=True)
    )
    assert updated.location == "Hill Park"
    assert updated.total_cost is None
    assert updated.description is None
    assert service.get_match(db_conn, match.id).location == "Hill Park"


def test_update_match_revalidates_merged_result(db_conn, service, admin):
    match = service.create_match(db_conn, admin, match_spec())
    with pytest.raises(ValidationError):
        service.update_match(db_conn, admin, match.id, MatchUpdate(match_type=MatchType.TRAINING))
    with pytest.raises(ValidationError):
        service.update_match(db_conn, admin, match.id, MatchUpdate(ends_at=match.starts_at - timedelta(hours=1)))
    assert service.get_match(db_conn, match.id).match_type == "friendly"


def test_update_capacity_not_below_signups(db_conn, service, admin):
    match = service.create_match(db_conn, admin, match_spec(match_type=MatchType.TRAINING, capacity=4))
    roster = RosterEngine()
    for name in ["Ana", "Ben", "Cid"]:
        roster.signup(db_conn, admin, match.id, NewPlayer(display_name=name), Team.WHITE)
    with pytest.raises(ValidationError, match="already signed up"):
        service.update_match(db_conn, admin, match.id, MatchUpdate(capacity=2))
    assert service.update_match(db_conn, admin, match.id, MatchUpdate(capacity=3)).capacity == 3


def test_update_match_requires_admin(db_conn, service, admin, member):
    match = service.create_match(db_conn, admin, match_spec())
    with pytest.raises(Unauthorized):
        service.update_match(db_conn, member, match.id, MatchUpdate(location="Elsewhere"))
    with pytest.raises(NotFound):
        service.update_match(db_conn, admin, "missing", MatchUpdate(location="Elsewhere"))


def test_non_admin_delete_leaves_match(db_conn, service, admin, member):
    match = service.create_match(db_conn, admin, match_spec())
    with pytest.raises(Unauthorized):
        service.delete_match(db_conn, member, match.id)
    assert service.get_match(db_conn, match.id).id == match.id


def test_delete_cascades_signups(db_conn, service, admin):
    match = service.create_match(db_conn, admin, match_spec())
    RosterEngine().signup(db_conn, admin, match.id, NewPlayer(display_name="Ana"), Team.BLACK)
    service.delete_match(db_conn, admin, match.id)
    with pytest.raises(NotFound):
        service.get_match(db_conn, match.id)
    count = db_conn.execute("SELECT COUNT(*) FROM signups WHERE match_id = ?", (match.id,)).fetchone()[0]
    assert count == 0
    with pytest.raises(NotFound):
        service.delete_match(db_conn, admin, match.id)



def test_unknown_ids_do_not_fill_the_cache(db_conn, service):
    for i in range(100):
        with pytest.raises(NotFound):
            service.get_match(db_conn, f"missing-{i}")
    assert len(get_view_cache()) == 0
