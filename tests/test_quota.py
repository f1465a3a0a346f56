# tests/test_quota.py
from listing_aggregator import quota
from listing_aggregator.models import PlanType, User
from listing_aggregator.quota import ReservationStatus, UNLIMITED


def test_remaining_quota_free_plan():
    assert quota.remaining_quota(PlanType.FREE, 0) == 25
    assert quota.remaining_quota("free", 24) == 1
    assert quota.remaining_quota("free", 25) == 0
    assert quota.remaining_quota("free", 40) == 0


def test_remaining_quota_pro_is_unlimited():
    assert quota.remaining_quota(PlanType.PRO, 0) is UNLIMITED
    assert quota.remaining_quota("pro", 10_000) is UNLIMITED


def test_unknown_plan_is_treated_as_free():
    assert quota.remaining_quota("enterprise", 5) == 20


def test_check_listing_limit():
    assert quota.check_listing_limit("free", 3) == (True, None)
    ok, message = quota.check_listing_limit("free", 25)
    assert not ok
    assert "25 listings" in message
    assert quota.check_listing_limit("pro", 500) == (True, None)


def test_reservation_accepted(db, make_user):
    make_user("u1", listings_count=10)
    r = quota.reserve_listing_slots(db, "u1", "free", 5)
    db.commit()
    assert r.granted == 5
    assert r.status is ReservationStatus.ACCEPTED
    assert db.get(User, "u1").listings_count == 15


def test_reservation_partial_near_limit(db, make_user):
    make_user("u1", listings_count=22)
    r = quota.reserve_listing_slots(db, "u1", "free", 5)
    db.commit()
    assert (r.requested, r.granted) == (5, 3)
    assert r.status is ReservationStatus.PARTIAL
    assert db.get(User, "u1").listings_count == 25


def test_reservation_rejected_at_limit(db, make_user):
    make_user("u1", listings_count=25)
    r = quota.reserve_listing_slots(db, "u1", "free", 2)
    db.commit()
    assert r.granted == 0
    assert r.status is ReservationStatus.REJECTED
    assert db.get(User, "u1").listings_count == 25


def test_reservation_pro_has_no_cap(db, make_user):
    make_user("u1", plan=PlanType.PRO, listings_count=100)
    r = quota.reserve_listing_slots(db, "u1", "pro", 50)
    db.commit()
    assert r.granted == 50
    assert db.get(User, "u1").listings_count == 150


def test_rollback_releases_reservation(db, make_user):
    make_user("u1", listings_count=1)
    quota.reserve_listing_slots(db, "u1", "free", 4)
    db.rollback()
    assert db.get(User, "u1").listings_count == 1


def test_release_never_goes_negative(db, make_user):
    make_user("u1", listings_count=1)
    quota.release_listing_slots(db, "u1", 3)
    db.commit()
    assert db.get(User, "u1").listings_count == 0
