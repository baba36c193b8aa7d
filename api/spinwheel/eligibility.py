"""Pre-spin eligibility checks.

The ``ensure_*`` guards raise on the first failed condition and are shared
with the spin transaction, which re-runs them against its locked view.
``check_eligibility`` is the advisory, read-only variant: it reserves nothing
and turns the first failure into a verdict.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from .errors import NotFoundError, NotVerifiedError, PolicyViolationError, SpinWheelError, StateInvalidError
from .geofence import verify_location
from .models import Campaign, Location, User
from .prizes import campaign_rules, count_wins, daily_win_limit
from .utils import as_utc, day_bounds, local_date, utcnow, whole_days_between

logger = logging.getLogger(__name__)


@dataclass
class Eligibility:
    eligible: bool
    reason: str
    code: str | None = None
    status_code: int = 200
    details: dict[str, Any] = field(default_factory=dict)


def ensure_user_verified(user: User | None) -> User:
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    if not user.phone_verified:
        raise NotVerifiedError("Phone number not verified")
    return user


def ensure_campaign_running(campaign: Campaign | None, now: datetime) -> Campaign:
    if campaign is None:
        raise NotFoundError("Campaign not found", code="CAMPAIGN_NOT_FOUND")
    if campaign.status != "active":
        raise StateInvalidError("Campaign is not active", code="CAMPAIGN_INACTIVE")
    today = local_date(now)
    if not local_date(campaign.start_date) <= today <= local_date(campaign.end_date):
        raise StateInvalidError("Campaign is not currently running", code="CAMPAIGN_NOT_RUNNING")
    return campaign


def ensure_within_geofence(db: Session, lat: float, lon: float, location_id: uuid.UUID) -> float:
    result = verify_location(db, lat, lon, location_id)
    if not result.found:
        if db.get(Location, location_id) is not None:
            raise StateInvalidError("Location is inactive", code="LOCATION_INACTIVE")
        raise NotFoundError(result.message, code="LOCATION_NOT_FOUND")
    if not result.valid:
        raise PolicyViolationError(
            result.message,
            code="OUT_OF_RANGE",
            distance_meters=round(result.distance_meters, 2),
            allowed_radius=result.allowed_radius,
        )
    return result.distance_meters


def next_spin_date(user: User, campaign: Campaign) -> datetime | None:
    if user.last_spin_date is None:
        return None
    return as_utc(user.last_spin_date) + timedelta(days=campaign.spin_cooldown_days)


def ensure_cooldown_elapsed(user: User, campaign: Campaign, now: datetime) -> None:
    if user.last_spin_date is None:
        return
    days_since = whole_days_between(user.last_spin_date, now)
    if days_since < campaign.spin_cooldown_days:
        days_remaining = campaign.spin_cooldown_days - days_since
        raise PolicyViolationError(
            f"You can spin again in {days_remaining} day(s)",
            code="COOLDOWN_ACTIVE",
            next_spin_date=next_spin_date(user, campaign).isoformat(),
            days_remaining=days_remaining,
        )


def ensure_daily_caps(
    db: Session,
    campaign_id: uuid.UUID,
    location_id: uuid.UUID,
    now: datetime,
    user_id: uuid.UUID | None = None,
    campaign_wide: bool = False,
) -> None:
    """Enforce the campaign's smallest positive max_per_day as a daily win cap.

    The location scope is always checked; the user scope when ``user_id`` is
    given and the campaign scope when ``campaign_wide`` is set. Campaigns whose
    rules never set max_per_day have no daily cap.
    """
    limit = daily_win_limit(campaign_rules(db, campaign_id))
    if limit is None:
        return
    since, until = day_bounds(now)

    if user_id is not None:
        user_wins = count_wins(db, campaign_id, user_id=user_id, since=since, until=until)
        if user_wins >= limit:
            raise PolicyViolationError(
                f"Maximum wins per day reached ({limit} wins). "
                f"You have already won {user_wins} time(s) today.",
                code="USER_DAILY_LIMIT", limit=limit, count=user_wins,
            )

    if campaign_wide:
        campaign_wins = count_wins(db, campaign_id, since=since, until=until)
        if campaign_wins >= limit:
            raise PolicyViolationError(
                f"Maximum wins per day reached ({limit} wins). "
                f"The campaign has already reached {campaign_wins} win(s) today.",
                code="CAMPAIGN_DAILY_LIMIT", limit=limit, count=campaign_wins,
            )

    location_wins = count_wins(db, campaign_id, location_id=location_id, since=since, until=until)
    if location_wins >= limit:
        raise PolicyViolationError(
            f"Maximum wins per location reached ({limit} wins). "
            "This location has already reached the daily win limit.",
            code="LOCATION_DAILY_LIMIT", limit=limit, count=location_wins,
        )


def check_eligibility(
    db: Session,
    user_id: uuid.UUID,
    campaign_id: uuid.UUID,
    location_id: uuid.UUID,
    lat: float,
    lon: float,
    now: datetime | None = None,
) -> Eligibility:
    now = now or utcnow()
    try:
        user = ensure_user_verified(db.get(User, user_id))
        campaign = ensure_campaign_running(db.get(Campaign, campaign_id), now)
        ensure_within_geofence(db, lat, lon, location_id)
        ensure_cooldown_elapsed(user, campaign, now)
        ensure_daily_caps(db, campaign_id, location_id, now, user_id=user_id)
    except SpinWheelError as exc:
        logger.info("user %s not eligible for campaign %s: %s", user_id, campaign_id, exc.code)
        return Eligibility(
            eligible=False,
            reason=exc.message,
            code=exc.code,
            status_code=exc.status_code,
            details=exc.details,
        )
    return Eligibility(eligible=True, reason="User is eligible to spin")
