import random
import re
import threading
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from spinwheel import spin as spin_module
from spinwheel.errors import ExhaustionError, NotFoundError, NotVerifiedError, PolicyViolationError
from spinwheel.models import Campaign, Location, SpinResult, User
from spinwheel.spin import NO_PRIZES_USER_MESSAGE, SpinCommand, SpinFailed, spin

from conftest import STORE_LAT, STORE_LON


def _cmd(world, user=None, lat=STORE_LAT, lon=STORE_LON, **kw):
    return SpinCommand(
        user_id=(user or world.user).id,
        campaign_id=world.campaign.id,
        location_id=world.location.id,
        latitude=lat,
        longitude=lon,
        device_id=kw.pop("device_id", "device-1"),
        **kw,
    )


def _spin_count(session_factory) -> int:
    with session_factory() as s:
        return s.scalar(select(func.count(SpinResult.id)))


def test_winning_spin_is_recorded_and_counted(db, session_factory, world, add_prize):
    prize = add_prize(world.campaign, "Airtime", probability=1.0)
    outcome = spin(db, _cmd(world, ip_address="10.0.0.1", user_agent="pytest"), now=world.now)

    assert outcome.is_win
    assert outcome.prize.id == prize.id
    assert re.fullmatch(r"PO-[0-9A-F]{8}", outcome.redemption_code)
    assert outcome.expires_at == world.now + timedelta(days=30)

    with session_factory() as s:
        row = s.get(SpinResult, outcome.spin_id)
        assert row.is_win
        assert row.redemption_status == "redeemed"
        assert row.redemption_code == outcome.redemption_code
        assert row.device_id == "device-1"
        assert row.ip_address == "10.0.0.1"

        user = s.get(User, world.user.id)
        assert (user.total_spins, user.total_wins) == (1, 1)
        assert user.last_spin_date is not None
        assert user.device_id == "device-1"

        campaign = s.get(Campaign, world.campaign.id)
        assert (campaign.total_spins, campaign.total_wins) == (1, 1)
        assert s.get(Location, world.location.id).total_spins == 1


def test_losing_spin_has_no_code(db, session_factory, world, add_prize):
    add_prize(world.campaign, "Try Again", type="No Win", probability=1.0)
    outcome = spin(db, _cmd(world), now=world.now)

    assert not outcome.is_win
    assert outcome.redemption_code is None
    assert outcome.expires_at is None
    with session_factory() as s:
        row = s.get(SpinResult, outcome.spin_id)
        assert row.redemption_status == "lossprize"
        user = s.get(User, world.user.id)
        assert (user.total_spins, user.total_wins) == (1, 0)
        assert s.get(Campaign, world.campaign.id).total_wins == 0


def test_second_spin_hits_cooldown(db, session_factory, world, add_prize):
    add_prize(world.campaign, "Try Again", type="No Win", probability=1.0)
    spin(db, _cmd(world), now=world.now)

    with pytest.raises(PolicyViolationError) as exc:
        spin(db, _cmd(world), now=world.now + timedelta(days=1))
    assert exc.value.code == "COOLDOWN_ACTIVE"
    assert exc.value.details["days_remaining"] == 6
    assert _spin_count(session_factory) == 1

    spin(db, _cmd(world), now=world.now + timedelta(days=7))
    assert _spin_count(session_factory) == 2


def test_unverified_user_cannot_spin(db, session_factory, world, add_prize, make_user):
    add_prize(world.campaign, "Airtime", probability=1.0)
    user = make_user(world.location, verified=False)
    with pytest.raises(NotVerifiedError):
        spin(db, _cmd(world, user=user), now=world.now)
    assert _spin_count(session_factory) == 0


def test_spin_out_of_range(db, world, add_prize):
    add_prize(world.campaign, "Airtime", probability=1.0)
    with pytest.raises(PolicyViolationError) as exc:
        spin(db, _cmd(world, lat=STORE_LAT + 0.05), now=world.now)
    assert exc.value.code == "OUT_OF_RANGE"


def test_exhausted_campaign_refuses_spin(db, session_factory, world, add_prize, make_user, record_spin):
    prize = add_prize(world.campaign, "Airtime", probability=1.0, max_total=1)
    record_spin(make_user(world.location), world.campaign, world.location, prize)

    with pytest.raises(ExhaustionError) as exc:
        spin(db, _cmd(world), now=world.now)
    assert exc.value.code == "PRIZES_EXHAUSTED"
    assert exc.value.message == NO_PRIZES_USER_MESSAGE
    assert exc.value.status_code == 409

    with session_factory() as s:
        assert s.get(User, world.user.id).total_spins == 0
        assert s.get(Campaign, world.campaign.id).total_spins == 0
    assert _spin_count(session_factory) == 1


def test_campaign_daily_cap_applies_across_stores(db, world, add_prize, make_location, make_user, record_spin):
    prize = add_prize(world.campaign, "Airtime", probability=0.5, max_per_day=1)
    add_prize(world.campaign, "Try Again", type="No Win", probability=0.5)
    elsewhere = make_location(name="Lekki", lat=6.4474, lon=3.4647)
    record_spin(make_user(elsewhere), world.campaign, elsewhere, prize)

    with pytest.raises(PolicyViolationError) as exc:
        spin(db, _cmd(world), now=world.now)
    assert exc.value.code == "CAMPAIGN_DAILY_LIMIT"
    assert exc.value.details == {"limit": 1, "count": 1}


def test_unknown_campaign(db, world):
    cmd = _cmd(world)
    cmd.campaign_id = uuid.uuid4()
    with pytest.raises(NotFoundError) as exc:
        spin(db, cmd, now=world.now)
    assert exc.value.code == "CAMPAIGN_NOT_FOUND"


def test_failure_mid_transaction_rolls_everything_back(db, session_factory, world, add_prize, monkeypatch):
    add_prize(world.campaign, "Airtime", probability=1.0)

    def broken(_db):
        raise RuntimeError("code generator down")

    monkeypatch.setattr(spin_module, "unique_redemption_code", broken)
    with pytest.raises(SpinFailed) as exc:
        spin(db, _cmd(world), now=world.now)
    assert exc.value.status_code == 500

    assert _spin_count(session_factory) == 0
    with session_factory() as s:
        user = s.get(User, world.user.id)
        assert user.total_spins == 0
        assert user.last_spin_date is None
        assert s.get(Location, world.location.id).total_spins == 0


def test_sequential_spins_never_exceed_max_total(db, session_factory, world, add_prize, make_user):
    prize = add_prize(world.campaign, "Airtime", probability=0.6, max_total=3)
    add_prize(world.campaign, "Try Again", type="No Win", probability=0.4)
    users = [make_user(world.location) for _ in range(25)]

    rng = random.Random(3)
    for user in users:
        spin(db, _cmd(world, user=user), now=world.now, rng=rng)

    with session_factory() as s:
        wins = s.scalar(
            select(func.count(SpinResult.id)).where(
                SpinResult.prize_id == prize.id, SpinResult.is_win.is_(True)
            )
        )
        assert wins == 3
        assert s.get(Campaign, world.campaign.id).total_spins == 25


def test_concurrent_spins_never_exceed_max_total(db, session_factory, world, add_prize, make_user):
    prize = add_prize(world.campaign, "Airtime", probability=1.0, max_total=3)
    users = [make_user(world.location) for _ in range(10)]
    db.close()

    results, errors = [], []
    start = threading.Barrier(len(users))

    def worker(user_id):
        cmd = SpinCommand(
            user_id=user_id, campaign_id=world.campaign.id, location_id=world.location.id,
            latitude=STORE_LAT, longitude=STORE_LON, device_id=f"device-{user_id}",
        )
        with session_factory() as session:
            start.wait()
            try:
                results.append(spin(session, cmd, now=world.now))
            except ExhaustionError as exc:
                errors.append(exc.code)

    threads = [threading.Thread(target=worker, args=(u.id,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(results) == 3
    assert errors == ["PRIZES_EXHAUSTED"] * 7
    with session_factory() as s:
        wins = s.scalar(select(func.count(SpinResult.id)).where(SpinResult.prize_id == prize.id))
        assert wins == 3
        campaign = s.get(Campaign, world.campaign.id)
        assert (campaign.total_spins, campaign.total_wins) == (3, 3)


def test_concurrent_spins_never_exceed_daily_cap(db, session_factory, world, add_prize, make_user):
    prize = add_prize(world.campaign, "Airtime", probability=1.0, max_per_day=3)
    users = [make_user(world.location) for _ in range(10)]
    db.close()

    results, refusals = [], []
    start = threading.Barrier(len(users))

    def worker(user_id):
        cmd = SpinCommand(
            user_id=user_id, campaign_id=world.campaign.id, location_id=world.location.id,
            latitude=STORE_LAT, longitude=STORE_LON, device_id=f"device-{user_id}",
        )
        with session_factory() as session:
            start.wait()
            try:
                results.append(spin(session, cmd, now=world.now))
            except (ExhaustionError, PolicyViolationError) as exc:
                refusals.append(exc.code)

    threads = [threading.Thread(target=worker, args=(u.id,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(results) == 3
    assert refusals == ["CAMPAIGN_DAILY_LIMIT"] * 7
    with session_factory() as s:
        wins = s.scalar(select(func.count(SpinResult.id)).where(SpinResult.prize_id == prize.id))
        assert wins == 3
