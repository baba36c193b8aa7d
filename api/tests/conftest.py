import os

# keep the module-level engine away from any real database
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from spinwheel import admin as admin_routes
from spinwheel.db import Base, get_db, make_engine
from spinwheel.main import app, get_sms_gateway
from spinwheel.models import Admin, Campaign, Location, LocationCampaign, Prize, PrizeRule, SpinResult, User
from spinwheel.otp import SmsGateway
from spinwheel.security import hash_password, make_admin_token
from spinwheel.utils import utcnow

STORE_LAT, STORE_LON = 6.6018, 3.3515


@pytest.fixture
def engine(tmp_path):
    # a file database, so threads see each other's commits and locks
    eng = make_engine(f"sqlite:///{tmp_path / 'spinwheel-test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def now():
    return utcnow()


@pytest.fixture
def make_location(db):
    def _make(lat=STORE_LAT, lon=STORE_LON, radius=500, **kw):
        loc = Location(
            name=kw.pop("name", "Shoprite Ikeja"),
            latitude=lat, longitude=lon, radius_meters=radius,
            state=kw.pop("state", "Lagos"), city=kw.pop("city", "Ikeja"),
            **kw,
        )
        db.add(loc)
        db.commit()
        return loc
    return _make


@pytest.fixture
def make_campaign(db, now):
    def _make(locations=(), **kw):
        campaign = Campaign(
            name=kw.pop("name", "Spin to Win"),
            start_date=kw.pop("start_date", now - timedelta(days=1)),
            end_date=kw.pop("end_date", now + timedelta(days=30)),
            status=kw.pop("status", "active"),
            spin_cooldown_days=kw.pop("spin_cooldown_days", 7),
            **kw,
        )
        db.add(campaign)
        db.flush()
        for loc in locations:
            db.add(LocationCampaign(location_id=loc.id, campaign_id=campaign.id))
        db.commit()
        return campaign
    return _make


@pytest.fixture
def add_prize(db, now):
    """Prize plus its rule in ``campaign``; rules keep insertion order."""
    counter = iter(range(10_000))

    def _add(campaign, name="Airtime", type="Airtime", probability=0.5,
             max_per_day=None, max_total=None, is_active=True):
        prize = Prize(name=name, type=type, is_active=is_active)
        db.add(prize)
        db.flush()
        rule = PrizeRule(
            campaign_id=campaign.id, prize_id=prize.id, probability=probability,
            max_per_day=max_per_day, max_total=max_total,
            created_at=now + timedelta(microseconds=next(counter)),
        )
        db.add(rule)
        db.commit()
        return prize
    return _add


@pytest.fixture
def make_user(db):
    counter = iter(range(10_000))

    def _make(location, verified=True, **kw):
        n = next(counter)
        user = User(
            full_name=kw.pop("full_name", f"Test User {n}"),
            phone_number=kw.pop("phone_number", f"23480300{n:05d}"),
            gender="Female",
            store_outlet_id=location.id,
            consent_given=True,
            phone_verified=verified,
            **kw,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def record_spin(db, now):
    """Insert a spin result directly, bypassing the spin transaction."""
    def _record(user, campaign, location, prize, is_win=True, at=None):
        row = SpinResult(
            user_id=user.id, campaign_id=campaign.id, location_id=location.id, prize_id=prize.id,
            is_win=is_win, latitude=location.latitude, longitude=location.longitude,
            device_id="seed-device", spin_date=at or now,
            redemption_status="redeemed" if is_win else "lossprize",
        )
        db.add(row)
        db.commit()
        return row
    return _record


@pytest.fixture
def world(make_location, make_campaign, make_user, now):
    """One store, one running campaign mapped to it, one verified user."""
    location = make_location()
    campaign = make_campaign(locations=[location])
    user = make_user(location)
    return SimpleNamespace(location=location, campaign=campaign, user=user, now=now)


@pytest.fixture(autouse=True)
def _reset_login_limiter():
    admin_routes._failed.clear()
    yield
    admin_routes._failed.clear()


@pytest.fixture
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_sms_gateway] = lambda: SmsGateway(api_key="")
    # no context manager: startup would create tables on the default engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_admin(db):
    def _make(username="admin", password="correct-horse", role="superadmin"):
        admin = Admin(username=username, password_hash=hash_password(password), role=role)
        db.add(admin)
        db.commit()
        return admin
    return _make


@pytest.fixture
def superadmin_headers(make_admin):
    return {"Authorization": f"Bearer {make_admin_token(make_admin())}"}


@pytest.fixture
def editor_headers(make_admin):
    admin = make_admin(username="editor", role="admin")
    return {"Authorization": f"Bearer {make_admin_token(admin)}"}
