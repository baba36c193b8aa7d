"""Demo data: one running campaign, a handful of stores, and a full prize wheel.

Run with ``python -m spinwheel.seed`` from the ``api`` directory. Seeding is
skipped when a campaign already exists.
"""
import logging
import os
import secrets
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .db import Base, SessionLocal, engine
from .models import Admin, Campaign, Location, LocationCampaign, Prize, PrizeRule
from .security import hash_password
from .utils import utcnow

logger = logging.getLogger(__name__)

DEMO_LOCATIONS = [
    ("Shoprite Ikeja City Mall", "supermarket", "Obafemi Awolowo Way, Ikeja", "Lagos", "Ikeja", 6.6018, 3.3515),
    ("Shoprite Lekki", "supermarket", "Admiralty Way, Lekki Phase 1", "Lagos", "Lekki", 6.4474, 3.4647),
    ("Justrite Victoria Island", "supermarket", "Akin Adesola Street", "Lagos", "Victoria Island", 6.4281, 3.4219),
    ("Ebeano Supermarket Abuja", "supermarket", "Wuse 2", "FCT", "Abuja", 9.0643, 7.4894),
    ("Market Square Port Harcourt", "openmarket", "Trans Amadi", "Rivers", "Port Harcourt", 4.8156, 7.0498),
    ("City Mall Kano", "supermarket", "Zoo Road", "Kano", "Kano", 11.9956, 8.5265),
]

# name, type, color, probability, max_per_day, max_total, value
DEMO_PRIZES = [
    ("Free Power Oil 1L", "Product", "#FFD700", 0.05, 50, 1000, "1500"),
    ("N500 Discount Voucher", "Discount Voucher", "#10B981", 0.15, 100, 10000, "500"),
    ("N200 Airtime", "Airtime", "#3B82F6", 0.20, 150, 10000, "200"),
    ("Power Oil Branded T-Shirt", "Merchandise", "#EC4899", 0.10, 30, 500, "3000"),
    ("Wellness Gift Pack", "Wellness Pack", "#8B5CF6", 0.03, 10, 200, "8000"),
    ("Try Again", "No Win", "#6B7280", 0.47, None, None, None),
]


def seed_demo_data(db: Session, admin_password: str | None = None) -> Campaign | None:
    if db.scalar(select(func.count(Campaign.id))):
        logger.info("campaigns already exist, skipping seed")
        return None

    admin = db.scalar(select(Admin).where(Admin.username == "admin"))
    if admin is None:
        password = admin_password or secrets.token_urlsafe(12)
        admin = Admin(
            username="admin",
            email="admin@example.com",
            full_name="Campaign Admin",
            password_hash=hash_password(password),
            role="superadmin",
        )
        db.add(admin)
        if admin_password is None:
            logger.info("[DEV] seeded admin password: %s", password)

    locations = [
        Location(
            name=name, type=kind, address=address, state=state, city=city,
            latitude=lat, longitude=lon, radius_meters=500,
        )
        for name, kind, address, state, city, lat, lon in DEMO_LOCATIONS
    ]
    db.add_all(locations)

    now = utcnow()
    campaign = Campaign(
        name="Spin to Win",
        description="Spin the wheel at participating stores and win prizes.",
        start_date=now,
        end_date=now + timedelta(days=90),
        status="active",
        max_spins_per_user=1,
        spin_cooldown_days=7,
        total_budget=Decimal("5000000"),
    )
    db.add(campaign)
    db.flush()
    campaign.created_by_id = admin.id

    db.add_all(LocationCampaign(location_id=loc.id, campaign_id=campaign.id) for loc in locations)

    for i, (name, kind, color, probability, per_day, total, value) in enumerate(DEMO_PRIZES):
        prize = Prize(name=name, type=kind, color=color)
        db.add(prize)
        db.flush()
        db.add(PrizeRule(
            campaign_id=campaign.id,
            prize_id=prize.id,
            probability=probability,
            max_per_day=per_day,
            max_total=total,
            value=Decimal(value) if value else None,
            # rule order is the wheel order
            created_at=now + timedelta(microseconds=i),
        ))

    db.commit()
    logger.info(
        "seeded campaign %s with %d locations and %d prizes",
        campaign.id, len(locations), len(DEMO_PRIZES),
    )
    return campaign


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed_demo_data(session, admin_password=os.getenv("SEED_ADMIN_PASSWORD"))
