import logging
import math
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .db import get_db
from .errors import ConflictError, NotFoundError
from .models import Admin, Campaign, Location, LocationCampaign, Prize, PrizeRule, SpinResult, User
from .schemas import (
    AdminCreate, AdminLoginRequest, AdminLoginResponse, AdminOut,
    CampaignIn, CampaignOut, CampaignUpdate,
    LocationIn, LocationOut, LocationUpdate,
    Page, PrizeIn, PrizeOut, PrizeRuleIn, PrizeRuleOut, PrizeRuleUpdate, PrizeUpdate,
    SpinHistoryOut, UserOut,
)
from .security import hash_password, make_admin_token, require_admin, require_role, verify_password
from .utils import as_utc, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

editor = require_role("admin", "superadmin")
superadmin = require_role("superadmin")


# --- Login rate limiting (per client IP, in-process) ---

_failed: dict[str, list[float]] = {}
MAX_ATTEMPTS = 5
WINDOW_SEC = 15 * 60  # 15 minutes

def _now_s() -> float: return utcnow().timestamp()

def _rate_limit(ip: str):
    t = _now_s()
    arr = [x for x in _failed.get(ip, []) if t - x < WINDOW_SEC]
    _failed[ip] = arr
    if len(arr) >= MAX_ATTEMPTS:
        raise HTTPException(status_code=429, detail="Too many failed login attempts, please wait before retrying.")

def _mark_fail(ip: str):
    _failed.setdefault(ip, []).append(_now_s())

def _clear_fail(ip: str):
    _failed.pop(ip, None)


def _get_or_404(db: Session, model, pk: uuid.UUID, label: str):
    obj = db.get(model, pk)
    if obj is None:
        raise NotFoundError(f"{label} not found", code=f"{label.upper().replace(' ', '_')}_NOT_FOUND")
    return obj


def _paginate(db: Session, stmt, page: int, limit: int) -> tuple[list, int, int]:
    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = db.scalars(stmt.offset((page - 1) * limit).limit(limit)).all()
    return list(rows), total, math.ceil(total / limit) if total else 0


# --- Auth ---

@router.post("/login", response_model=AdminLoginResponse)
def admin_login(body: AdminLoginRequest, request: Request, db: Session = Depends(get_db)):
    ip = request.client.host if request.client else "unknown"
    _rate_limit(ip)

    admin = db.scalar(select(Admin).where(Admin.username == body.username))
    if admin is None or not verify_password(body.password, admin.password_hash):
        _mark_fail(ip)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not admin.is_active:
        raise HTTPException(status_code=401, detail="Account is inactive")

    _clear_fail(ip)
    admin.last_login = utcnow()
    db.commit()
    return AdminLoginResponse(token=make_admin_token(admin), admin=AdminOut.model_validate(admin))


@router.get("/profile", response_model=AdminOut)
def admin_profile(admin: Admin = Depends(require_admin)):
    return admin


@router.post("/admins", response_model=AdminOut, status_code=status.HTTP_201_CREATED)
def create_admin(body: AdminCreate, db: Session = Depends(get_db), _=Depends(superadmin)):
    clash = select(Admin.id).where(Admin.username == body.username)
    if body.email:
        clash = select(Admin.id).where((Admin.username == body.username) | (Admin.email == body.email))
    if db.scalar(clash) is not None:
        raise ConflictError("Admin already exists with this username or email")
    admin = Admin(
        username=body.username,
        email=body.email,
        password_hash=hash_password(body.password),
        full_name=body.full_name,
        role=body.role,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    return admin


# --- Campaigns ---

def _set_campaign_locations(db: Session, campaign: Campaign, location_ids: list[uuid.UUID]):
    for loc_id in location_ids:
        _get_or_404(db, Location, loc_id, "Location")
    db.query(LocationCampaign).filter(LocationCampaign.campaign_id == campaign.id).delete()
    for loc_id in dict.fromkeys(location_ids):
        db.add(LocationCampaign(location_id=loc_id, campaign_id=campaign.id))


@router.post("/campaigns", response_model=CampaignOut, status_code=status.HTTP_201_CREATED)
def create_campaign(body: CampaignIn, db: Session = Depends(get_db), admin: Admin = Depends(editor)):
    if as_utc(body.end_date) < as_utc(body.start_date):
        raise HTTPException(status_code=422, detail="end_date must not be before start_date")
    fields = body.model_dump(exclude={"location_ids"})
    fields["start_date"], fields["end_date"] = as_utc(body.start_date), as_utc(body.end_date)
    campaign = Campaign(**fields, created_by_id=admin.id)
    db.add(campaign)
    db.flush()
    _set_campaign_locations(db, campaign, body.location_ids)
    db.commit()
    db.refresh(campaign)
    logger.info("campaign %s created by %s", campaign.id, admin.username)
    return campaign


@router.get("/campaigns", response_model=list[CampaignOut])
def list_campaigns(db: Session = Depends(get_db), _=Depends(require_admin)):
    return db.scalars(select(Campaign).order_by(Campaign.created_at.desc())).all()


@router.get("/campaigns/{campaign_id}", response_model=CampaignOut)
def get_campaign(campaign_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin)):
    return _get_or_404(db, Campaign, campaign_id, "Campaign")


@router.put("/campaigns/{campaign_id}", response_model=CampaignOut)
def update_campaign(
    campaign_id: uuid.UUID, body: CampaignUpdate, db: Session = Depends(get_db), _=Depends(editor)
):
    campaign = _get_or_404(db, Campaign, campaign_id, "Campaign")
    changes = body.model_dump(exclude_unset=True, exclude={"location_ids"})
    for key, value in changes.items():
        if value is None and key != "total_budget":
            continue
        if key in ("start_date", "end_date"):
            value = as_utc(value)
        setattr(campaign, key, value)
    if as_utc(campaign.end_date) < as_utc(campaign.start_date):
        db.rollback()
        raise HTTPException(status_code=422, detail="end_date must not be before start_date")
    if body.location_ids is not None:
        _set_campaign_locations(db, campaign, body.location_ids)
    db.commit()
    db.refresh(campaign)
    return campaign


@router.delete("/campaigns/{campaign_id}")
def delete_campaign(campaign_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(superadmin)):
    campaign = _get_or_404(db, Campaign, campaign_id, "Campaign")
    spins = db.scalar(select(func.count(SpinResult.id)).where(SpinResult.campaign_id == campaign_id)) or 0
    if spins:
        raise ConflictError("Campaign has spin results. Complete or pause it instead.")
    db.query(PrizeRule).filter(PrizeRule.campaign_id == campaign_id).delete()
    db.query(LocationCampaign).filter(LocationCampaign.campaign_id == campaign_id).delete()
    db.delete(campaign)
    db.commit()
    return {"success": True, "message": "Campaign deleted successfully"}


# --- Locations ---

@router.post("/locations", response_model=LocationOut, status_code=status.HTTP_201_CREATED)
def create_location(body: LocationIn, db: Session = Depends(get_db), _=Depends(editor)):
    location = Location(**body.model_dump())
    db.add(location)
    db.commit()
    db.refresh(location)
    return location


@router.get("/locations", response_model=list[LocationOut])
def list_locations(
    is_active: Optional[bool] = None,
    state: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    stmt = select(Location).order_by(Location.name)
    if is_active is not None:
        stmt = stmt.where(Location.is_active.is_(is_active))
    if state:
        stmt = stmt.where(Location.state.ilike(f"%{state}%"))
    return db.scalars(stmt).all()


@router.get("/locations/{location_id}", response_model=LocationOut)
def get_location(location_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin)):
    return _get_or_404(db, Location, location_id, "Location")


@router.put("/locations/{location_id}", response_model=LocationOut)
def update_location(
    location_id: uuid.UUID, body: LocationUpdate, db: Session = Depends(get_db), _=Depends(editor)
):
    location = _get_or_404(db, Location, location_id, "Location")
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None and key in ("name", "type", "latitude", "longitude", "radius_meters", "is_active"):
            continue
        setattr(location, key, value)
    db.commit()
    db.refresh(location)
    return location


@router.delete("/locations/{location_id}")
def delete_location(location_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(superadmin)):
    location = _get_or_404(db, Location, location_id, "Location")
    spins = db.scalar(select(func.count(SpinResult.id)).where(SpinResult.location_id == location_id)) or 0
    users = db.scalar(select(func.count(User.id)).where(User.store_outlet_id == location_id)) or 0
    if spins or users:
        raise ConflictError("Location is in use (users or spins exist). Deactivate it instead.")
    db.query(LocationCampaign).filter(LocationCampaign.location_id == location_id).delete()
    db.delete(location)
    db.commit()
    return {"success": True, "message": "Location deleted successfully"}


# --- Prizes ---

@router.post("/prizes", response_model=PrizeOut, status_code=status.HTTP_201_CREATED)
def create_prize(body: PrizeIn, db: Session = Depends(get_db), _=Depends(editor)):
    prize = Prize(**body.model_dump())
    db.add(prize)
    db.commit()
    db.refresh(prize)
    return prize


@router.get("/prizes", response_model=list[PrizeOut])
def list_prizes(
    campaign_id: Optional[uuid.UUID] = None,
    type: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    stmt = select(Prize).order_by(Prize.created_at.desc())
    if campaign_id is not None:
        stmt = stmt.join(PrizeRule, PrizeRule.prize_id == Prize.id).where(PrizeRule.campaign_id == campaign_id)
    if type:
        stmt = stmt.where(Prize.type == type)
    if is_active is not None:
        stmt = stmt.where(Prize.is_active.is_(is_active))
    return db.scalars(stmt).all()


@router.get("/prizes/{prize_id}", response_model=PrizeOut)
def get_prize(prize_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin)):
    return _get_or_404(db, Prize, prize_id, "Prize")


@router.put("/prizes/{prize_id}", response_model=PrizeOut)
def update_prize(prize_id: uuid.UUID, body: PrizeUpdate, db: Session = Depends(get_db), _=Depends(editor)):
    prize = _get_or_404(db, Prize, prize_id, "Prize")
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None and key in ("name", "type", "color", "is_active"):
            continue
        setattr(prize, key, value)
    db.commit()
    db.refresh(prize)
    return prize


@router.delete("/prizes/{prize_id}")
def delete_prize(prize_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(superadmin)):
    prize = _get_or_404(db, Prize, prize_id, "Prize")

    spin_cnt = db.scalar(select(func.count(SpinResult.id)).where(SpinResult.prize_id == prize_id)) or 0
    if spin_cnt:
        raise ConflictError(
            "Prize is in use (spin results exist). Deactivate it instead.", code="PRIZE_IN_USE"
        )

    db.query(PrizeRule).filter(PrizeRule.prize_id == prize_id).delete()
    db.delete(prize)
    db.commit()
    return {"success": True, "message": "Prize deleted successfully"}


# --- Prize rules ---

@router.post("/prize-rules", response_model=PrizeRuleOut, status_code=status.HTTP_201_CREATED)
def create_prize_rule(body: PrizeRuleIn, db: Session = Depends(get_db), _=Depends(editor)):
    _get_or_404(db, Campaign, body.campaign_id, "Campaign")
    _get_or_404(db, Prize, body.prize_id, "Prize")
    existing = db.scalar(
        select(PrizeRule.id).where(
            PrizeRule.campaign_id == body.campaign_id, PrizeRule.prize_id == body.prize_id
        )
    )
    if existing is not None:
        raise ConflictError(
            "Rule already exists for this campaign-prize combination", code="PRIZE_RULE_EXISTS"
        )
    rule = PrizeRule(**body.model_dump())
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@router.get("/prize-rules", response_model=Page[PrizeRuleOut])
def list_prize_rules(
    campaign_id: Optional[uuid.UUID] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    stmt = select(PrizeRule).order_by(PrizeRule.created_at.desc())
    if campaign_id is not None:
        stmt = stmt.where(PrizeRule.campaign_id == campaign_id)
    rows, total, pages = _paginate(db, stmt, page, limit)
    items = [PrizeRuleOut.model_validate(r) for r in rows]
    return Page[PrizeRuleOut](items=items, total=total, page=page, total_pages=pages)


@router.get("/prize-rules/{rule_id}", response_model=PrizeRuleOut)
def get_prize_rule(rule_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin)):
    return _get_or_404(db, PrizeRule, rule_id, "Prize rule")


@router.put("/prize-rules/{rule_id}", response_model=PrizeRuleOut)
def update_prize_rule(
    rule_id: uuid.UUID, body: PrizeRuleUpdate, db: Session = Depends(get_db), _=Depends(editor)
):
    rule = _get_or_404(db, PrizeRule, rule_id, "Prize rule")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("probability", 0) is None:
        # probability is required on the rule; null means "leave as is"
        changes.pop("probability")
    for key, value in changes.items():
        setattr(rule, key, value)
    db.commit()
    db.refresh(rule)
    return rule


@router.delete("/prize-rules/{rule_id}")
def delete_prize_rule(rule_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(superadmin)):
    rule = _get_or_404(db, PrizeRule, rule_id, "Prize rule")
    db.delete(rule)
    db.commit()
    return {"success": True, "message": "Prize rule deleted successfully"}


# --- Users & spin history ---

@router.get("/users", response_model=Page[UserOut])
def list_users(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    stmt = select(User).order_by(User.registered_at.desc())
    if search:
        like = f"%{search}%"
        stmt = stmt.where(User.full_name.ilike(like) | User.phone_number.ilike(like))
    rows, total, pages = _paginate(db, stmt, page, limit)
    items = [UserOut.model_validate(r) for r in rows]
    return Page[UserOut](items=items, total=total, page=page, total_pages=pages)


@router.get("/spins/history", response_model=Page[SpinHistoryOut])
def spin_history(
    campaign_id: Optional[uuid.UUID] = None,
    location_id: Optional[uuid.UUID] = None,
    is_win: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    stmt = select(SpinResult).order_by(SpinResult.spin_date.desc())
    if campaign_id is not None:
        stmt = stmt.where(SpinResult.campaign_id == campaign_id)
    if location_id is not None:
        stmt = stmt.where(SpinResult.location_id == location_id)
    if is_win is not None:
        stmt = stmt.where(SpinResult.is_win.is_(is_win))
    rows, total, pages = _paginate(db, stmt, page, limit)
    items = [SpinHistoryOut.model_validate(r) for r in rows]
    return Page[SpinHistoryOut](items=items, total=total, page=page, total_pages=pages)
