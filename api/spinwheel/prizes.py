"""Prize selection: which prizes are awardable right now, and which one a spin wins.

Weights come from each prize's PrizeRule in the campaign. Prizes knocked out
by their caps drop out of the draw entirely, so their weight is shared
proportionally by the prizes still awardable instead of turning into extra
"no win" mass. The loss outcome ("Try Again") is an ordinary weighted
candidate, never a silent fallback.
"""
import logging
import random
import uuid
from datetime import datetime
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import settings
from .errors import ConfigurationError, ExhaustionError
from .models import Prize, PrizeRule, SpinResult
from .utils import day_bounds, utcnow

logger = logging.getLogger(__name__)

LOSS_PRIZE_TYPES = ("lossprize", "No Win")
LOSS_PRIZE_NAME = "try again"

PRIZES_EXHAUSTED_MESSAGE = (
    "No prizes available. All prizes have reached their daily or location limits."
)

_system_rng = random.SystemRandom()


def is_winning_prize(prize: Prize) -> bool:
    prize_type = (prize.type or "").strip()
    prize_name = (prize.name or "").strip()
    return prize_type not in LOSS_PRIZE_TYPES and prize_name.lower() != LOSS_PRIZE_NAME


def count_wins(
    db: Session,
    campaign_id: uuid.UUID,
    prize_id: uuid.UUID | None = None,
    location_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> int:
    stmt = select(func.count(SpinResult.id)).where(
        SpinResult.campaign_id == campaign_id,
        SpinResult.is_win.is_(True),
    )
    if prize_id is not None:
        stmt = stmt.where(SpinResult.prize_id == prize_id)
    if location_id is not None:
        stmt = stmt.where(SpinResult.location_id == location_id)
    if user_id is not None:
        stmt = stmt.where(SpinResult.user_id == user_id)
    if since is not None:
        stmt = stmt.where(SpinResult.spin_date >= since)
    if until is not None:
        stmt = stmt.where(SpinResult.spin_date < until)
    return db.scalar(stmt) or 0


def campaign_rules(db: Session, campaign_id: uuid.UUID) -> list[PrizeRule]:
    return list(
        db.scalars(
            select(PrizeRule).where(PrizeRule.campaign_id == campaign_id).order_by(PrizeRule.created_at)
        )
    )


def daily_win_limit(rules: Sequence[PrizeRule]) -> int | None:
    """Smallest positive max_per_day across the rules; None means unlimited."""
    limits = [r.max_per_day for r in rules if r.max_per_day is not None and r.max_per_day > 0]
    return min(limits) if limits else None


def filter_prizes_by_limits(
    db: Session,
    prizes: Sequence[Prize],
    rules_by_prize: dict[uuid.UUID, PrizeRule],
    campaign_id: uuid.UUID,
    location_id: uuid.UUID,
    now: datetime | None = None,
) -> list[Prize]:
    day_start, day_end = day_bounds(now or utcnow())
    awardable = []
    for prize in prizes:
        rule = rules_by_prize.get(prize.id)
        if rule is None:
            continue

        # max_total of 0 switches the prize off; max_per_day of 0 means no daily cap
        if rule.max_total is not None:
            total = count_wins(db, campaign_id, prize_id=prize.id)
            if total >= rule.max_total:
                logger.debug("prize %s reached max_total %s", prize.id, rule.max_total)
                continue

        if rule.max_per_day is not None and rule.max_per_day > 0:
            campaign_today = count_wins(
                db, campaign_id, prize_id=prize.id, since=day_start, until=day_end
            )
            if campaign_today >= rule.max_per_day:
                continue
            location_today = count_wins(
                db, campaign_id, prize_id=prize.id, location_id=location_id,
                since=day_start, until=day_end,
            )
            if location_today >= rule.max_per_day:
                continue

        awardable.append(prize)
    return awardable


def weighted_choice(candidates: Sequence[tuple[Prize, float]], rng: random.Random | None = None) -> Prize:
    if not candidates:
        raise ValueError("No candidates to draw from")
    rng = rng or _system_rng
    total = sum(max(weight, 0.0) for _, weight in candidates)
    if total <= 0:
        return rng.choice([prize for prize, _ in candidates])

    draw = rng.random() * total
    cumulative = 0.0
    for prize, weight in candidates:
        if weight <= 0:
            continue
        cumulative += weight
        if cumulative >= draw:
            return prize
    # float rounding can leave draw a hair above the final sum
    return [prize for prize, weight in candidates if weight > 0][-1]


def _load_awardable(
    db: Session, campaign_id: uuid.UUID, location_id: uuid.UUID, now: datetime | None
) -> tuple[list[Prize], dict[uuid.UUID, PrizeRule]]:
    rules = campaign_rules(db, campaign_id)
    if not rules:
        raise ConfigurationError(
            f"No prize rules configured for this campaign. Please add prize rules to campaign {campaign_id}",
            code="NO_PRIZE_RULES",
        )
    rules_by_prize = {r.prize_id: r for r in rules}

    prizes = list(
        db.scalars(
            select(Prize).where(Prize.id.in_(list(rules_by_prize)), Prize.is_active.is_(True))
        )
    )
    if not prizes:
        total_prizes = db.scalar(
            select(func.count(Prize.id)).where(Prize.id.in_(list(rules_by_prize)))
        ) or 0
        if total_prizes == 0:
            raise ConfigurationError(
                f"No prizes found for the configured prize rules in campaign {campaign_id}. "
                "Please check prize rule configurations.",
                code="NO_PRIZES_CONFIGURED",
            )
        raise ConfigurationError(
            f"No active prizes available for this campaign. Found {total_prizes} prize(s) "
            "but none are active. Please activate prizes in the admin panel.",
            code="NO_ACTIVE_PRIZES",
        )

    # keep the draw order stable: the campaign's rule order
    order = {r.prize_id: i for i, r in enumerate(rules)}
    prizes.sort(key=lambda p: order[p.id])
    return filter_prizes_by_limits(db, prizes, rules_by_prize, campaign_id, location_id, now), rules_by_prize


def select_prize(
    db: Session,
    campaign_id: uuid.UUID,
    location_id: uuid.UUID,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> Prize:
    """Draw one prize for a spin. Call inside the spin transaction."""
    awardable, rules_by_prize = _load_awardable(db, campaign_id, location_id, now)
    if not awardable:
        raise ExhaustionError(PRIZES_EXHAUSTED_MESSAGE, code="PRIZES_EXHAUSTED")
    return weighted_choice(
        [(p, float(rules_by_prize[p.id].probability or 0)) for p in awardable], rng
    )


def get_available_prizes(
    db: Session, campaign_id: uuid.UUID, location_id: uuid.UUID, now: datetime | None = None
) -> list[Prize]:
    """Prizes a spin could land on right now. Empty when nothing is configured."""
    try:
        awardable, _ = _load_awardable(db, campaign_id, location_id, now)
    except ConfigurationError as exc:
        logger.info("no prizes for campaign %s: %s", campaign_id, exc.code)
        return []
    return awardable


def generate_redemption_code() -> str:
    return f"{settings.redemption_code_prefix}-{uuid.uuid4().hex[:8].upper()}"


def unique_redemption_code(db: Session, attempts: int = 5) -> str:
    for _ in range(attempts):
        candidate = generate_redemption_code()
        taken = db.scalar(select(SpinResult.id).where(SpinResult.redemption_code == candidate))
        if taken is None:
            return candidate
    raise RuntimeError("Could not generate a unique redemption code")
