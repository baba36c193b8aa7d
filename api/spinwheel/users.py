import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ConflictError, StateInvalidError
from .models import Location, User
from .schemas import RegisterRequest

logger = logging.getLogger(__name__)


def find_by_phone(db: Session, phone_number: str) -> User | None:
    return db.scalar(select(User).where(User.phone_number == phone_number))


def register_user(db: Session, payload: RegisterRequest) -> tuple[User, bool]:
    """Create the user, or return the existing one for this phone number.

    Returns ``(user, created)``.
    """
    existing = find_by_phone(db, payload.phone_number)
    if existing is not None:
        return existing, False

    location = db.get(Location, payload.store_outlet)
    if location is None or not location.is_active:
        raise StateInvalidError("Invalid or inactive store location", code="LOCATION_INACTIVE")

    user = User(
        full_name=payload.full_name.strip(),
        phone_number=payload.phone_number,
        email=payload.email,
        gender=payload.gender,
        state=payload.state,
        city=payload.city,
        store_outlet_id=location.id,
        consent_given=payload.consent_given,
        device_id=payload.device_id,
        ip_address=payload.ip_address,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # lost a race with a concurrent registration of the same phone
        existing = find_by_phone(db, payload.phone_number)
        if existing is None:
            raise ConflictError("Registration failed", code="REGISTRATION_CONFLICT")
        return existing, False
    db.refresh(user)
    logger.info("registered user %s at outlet %s", user.id, location.id)
    return user, True


def mark_phone_verified(db: Session, phone_number: str) -> int:
    res = db.execute(
        update(User).where(User.phone_number == phone_number).values(phone_verified=True)
    )
    db.commit()
    return res.rowcount
