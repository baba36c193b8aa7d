"""Spin transaction: re-check, draw, record, count, all or nothing.

Concurrency is handled by the database, not by in-process locks. The
campaign row is locked first (``SELECT ... FOR UPDATE``), then the user row,
so spins of one campaign run one after another. Once a spin holds the lock,
every win counted by the limit checks is committed, and nothing else can
insert a win until this transaction ends. That keeps max_total and
max_per_day exact at campaign and location scope. This relies on READ
COMMITTED (the PostgreSQL default): each count sees the wins committed by the
previous lock holder. SQLite gets the same ordering from BEGIN IMMEDIATE (see
``db.make_engine``).
"""
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .config import settings
from .db import atomic
from .eligibility import (
    ensure_campaign_running, ensure_cooldown_elapsed, ensure_daily_caps,
    ensure_user_verified, ensure_within_geofence,
)
from .errors import ExhaustionError, SpinWheelError
from .models import Campaign, Location, Prize, SpinResult, User
from .prizes import is_winning_prize, select_prize, unique_redemption_code
from .utils import utcnow

logger = logging.getLogger(__name__)

NO_PRIZES_USER_MESSAGE = (
    "No prizes available. All prizes have reached their daily or location limits. "
    "Please try again later."
)


@dataclass
class SpinCommand:
    user_id: uuid.UUID
    campaign_id: uuid.UUID
    location_id: uuid.UUID
    latitude: float
    longitude: float
    device_id: str
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class SpinOutcome:
    spin_id: uuid.UUID
    prize: Prize
    is_win: bool
    redemption_code: str | None
    expires_at: datetime | None


class SpinFailed(SpinWheelError):
    """Unexpected failure inside the spin transaction; safe to retry."""
    status_code = 500
    default_code = "SPIN_FAILED"


def _lock(db: Session, model, pk: uuid.UUID):
    return db.scalar(select(model).where(model.id == pk).with_for_update())


def spin(
    db: Session,
    cmd: SpinCommand,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> SpinOutcome:
    now = now or utcnow()
    try:
        with atomic(db):
            campaign = _lock(db, Campaign, cmd.campaign_id)
            user = _lock(db, User, cmd.user_id)

            user = ensure_user_verified(user)
            campaign = ensure_campaign_running(campaign, now)
            ensure_within_geofence(db, cmd.latitude, cmd.longitude, cmd.location_id)
            ensure_cooldown_elapsed(user, campaign, now)
            ensure_daily_caps(db, campaign.id, cmd.location_id, now, campaign_wide=True)

            prize = select_prize(db, campaign.id, cmd.location_id, now=now, rng=rng)
            is_win = is_winning_prize(prize)

            result = SpinResult(
                user_id=user.id,
                campaign_id=campaign.id,
                location_id=cmd.location_id,
                prize_id=prize.id,
                is_win=is_win,
                latitude=cmd.latitude,
                longitude=cmd.longitude,
                device_id=cmd.device_id,
                ip_address=cmd.ip_address,
                user_agent=cmd.user_agent,
                spin_date=now,
            )
            if is_win:
                # no separate hand-over step: a win is redeemed on the spot
                result.redemption_code = unique_redemption_code(db)
                result.redemption_status = "redeemed"
                result.redeemed_at = now
                result.expires_at = now + timedelta(days=settings.redemption_expiry_days)
            else:
                result.redemption_status = "lossprize"
            db.add(result)

            user.total_spins += 1
            user.total_wins += int(is_win)
            user.last_spin_date = now
            if cmd.device_id:
                user.device_id = cmd.device_id
            if cmd.ip_address:
                user.ip_address = cmd.ip_address

            campaign.total_spins += 1
            campaign.total_wins += int(is_win)

            db.execute(
                update(Location)
                .where(Location.id == cmd.location_id)
                .values(total_spins=Location.total_spins + 1)
            )
            db.flush()
    except ExhaustionError as exc:
        if exc.code == "PRIZES_EXHAUSTED":
            logger.info("campaign %s exhausted at location %s", cmd.campaign_id, cmd.location_id)
            raise ExhaustionError(NO_PRIZES_USER_MESSAGE, code=exc.code) from exc
        raise
    except SpinWheelError as exc:
        logger.info("spin refused for user %s: %s", cmd.user_id, exc.code)
        raise
    except Exception as exc:
        logger.exception("spin failed for user %s in campaign %s", cmd.user_id, cmd.campaign_id)
        raise SpinFailed("Failed to spin wheel") from exc

    logger.info(
        "spin %s user=%s campaign=%s prize=%s win=%s",
        result.id, user.id, campaign.id, prize.id, is_win,
    )
    return SpinOutcome(
        spin_id=result.id,
        prize=prize,
        is_win=is_win,
        redemption_code=result.redemption_code,
        expires_at=result.expires_at,
    )
