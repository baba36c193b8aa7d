import logging
import os
import uuid
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import admin
from .config import settings
from .db import Base, SessionLocal, engine, get_db, ping
from .eligibility import check_eligibility
from .errors import NotFoundError, SpinWheelError
from .geofence import list_locations, nearby_locations
from .models import Admin, Campaign, Location, LocationCampaign, Prize, PrizeRule
from .otp import SmsGateway, send_otp, verify_otp
from .prizes import get_available_prizes
from .schemas import (
    AvailablePrizesResponse, CampaignDetail, EligibilityRequest, EligibilityResponse,
    LocationOut, OtpRequest, OtpResponse, OtpVerifyRequest, OtpVerifyResponse,
    PrizeSummary, RegisterRequest, RegisterResponse, SpinOutcomeOut, SpinRequest, SpinResponse,
    UserSummary,
)
from .spin import SpinCommand, spin
from .users import mark_phone_verified, register_user

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(levelname)s - [%(name)s] - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Spin Wheel Campaign API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,           # exact list
    allow_origin_regex=settings.allowed_origin_regex, # regex (e.g. r"^https://.*\.vercel\.app$")
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin.router)


def bootstrap_admin(db: Session) -> Optional[Admin]:
    """Create the first superadmin from ADMIN_PASSWORD_HASH when there is none."""
    if not settings.admin_password_hash:
        return None
    if db.scalar(select(Admin.id).limit(1)) is not None:
        return None
    first = Admin(
        username=settings.admin_bootstrap_username,
        password_hash=settings.admin_password_hash,
        role="superadmin",
    )
    db.add(first)
    db.commit()
    logger.info("bootstrapped superadmin %r", first.username)
    return first


@app.on_event("startup")
def startup():
    # Dev convenience: create tables if they don't exist
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        bootstrap_admin(db)


@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail), "code": "HTTP_ERROR"})

@app.exception_handler(RequestValidationError)
async def validation_exc_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"message": "Validation error", "code": "VALIDATION_ERROR", "errors": jsonable_encoder(exc.errors())},
    )

@app.exception_handler(SpinWheelError)
async def spin_wheel_exc_handler(request: Request, exc: SpinWheelError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


def get_sms_gateway() -> SmsGateway:
    return SmsGateway()


@app.get("/health")
def health(db: Session = Depends(get_db)):
    return {"ok": ping(db)}


@app.post("/api/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, response: Response, db: Session = Depends(get_db)):
    user, created = register_user(db, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
    return RegisterResponse(
        success=True,
        message="User registered successfully" if created else "User already exists",
        user_id=user.id,
        user=UserSummary.model_validate(user),
    )


@app.post("/api/otp/request", response_model=OtpResponse)
def request_otp(
    payload: OtpRequest,
    db: Session = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
):
    issued = send_otp(db, payload.phone_number, gateway=gateway)
    return OtpResponse(success=issued.success, message=issued.message, expires_at=issued.expires_at)


@app.post("/api/otp/verify", response_model=OtpVerifyResponse)
def verify_phone(payload: OtpVerifyRequest, db: Session = Depends(get_db)):
    result = verify_otp(db, payload.phone_number, payload.otp)
    if result.success:
        mark_phone_verified(db, payload.phone_number)
    return OtpVerifyResponse(success=result.success, message=result.message)


@app.post("/api/eligibility", response_model=EligibilityResponse)
def eligibility(payload: EligibilityRequest, db: Session = Depends(get_db)):
    verdict = check_eligibility(
        db,
        user_id=payload.user_id,
        campaign_id=payload.campaign_id,
        location_id=payload.location_id,
        lat=payload.latitude,
        lon=payload.longitude,
    )
    body = EligibilityResponse(
        eligible=verdict.eligible, reason=verdict.reason, code=verdict.code, **verdict.details
    )
    return JSONResponse(status_code=verdict.status_code, content=jsonable_encoder(body, exclude_none=True))


@app.post("/api/spin", response_model=SpinResponse)
def spin_wheel(payload: SpinRequest, request: Request, db: Session = Depends(get_db)):
    cmd = SpinCommand(
        user_id=payload.user_id,
        campaign_id=payload.campaign_id,
        location_id=payload.location_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        device_id=payload.device_id,
        ip_address=payload.ip_address or (request.client.host if request.client else None),
        user_agent=request.headers.get("user-agent"),
    )
    outcome = spin(db, cmd)
    return SpinResponse(
        success=True,
        result=SpinOutcomeOut(
            prize=PrizeSummary.model_validate(outcome.prize),
            is_win=outcome.is_win,
            redemption_code=outcome.redemption_code,
            expires_at=outcome.expires_at,
            spin_id=outcome.spin_id,
        ),
    )


@app.get("/api/locations", response_model=List[LocationOut])
def locations(
    state: Optional[str] = None,
    city: Optional[str] = None,
    latitude: Optional[float] = Query(default=None, ge=-90, le=90),
    longitude: Optional[float] = Query(default=None, ge=-180, le=180),
    campaign_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
):
    rows = list_locations(db, campaign_id=campaign_id, state=state, city=city, lat=latitude, lon=longitude)
    out = []
    for loc, distance in rows:
        item = LocationOut.model_validate(loc)
        item.distance = distance
        out.append(item)
    return out


@app.get("/api/locations/nearby", response_model=List[LocationOut])
def locations_nearby(
    latitude: float = Query(ge=-90, le=90),
    longitude: float = Query(ge=-180, le=180),
    db: Session = Depends(get_db),
):
    out = []
    for loc, distance in nearby_locations(db, latitude, longitude):
        item = LocationOut.model_validate(loc)
        item.distance = distance
        out.append(item)
    return out


@app.get("/api/campaign/active/{campaign_id}", response_model=CampaignDetail)
def active_campaign(campaign_id: uuid.UUID, db: Session = Depends(get_db)):
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError("No active campaign found", code="CAMPAIGN_NOT_FOUND")

    prizes = db.scalars(
        select(Prize)
        .join(PrizeRule, PrizeRule.prize_id == Prize.id)
        .where(PrizeRule.campaign_id == campaign.id, Prize.is_active.is_(True))
        .order_by(PrizeRule.created_at)
    ).all()
    locations = db.scalars(
        select(Location)
        .join(LocationCampaign, LocationCampaign.location_id == Location.id)
        .where(LocationCampaign.campaign_id == campaign.id, Location.is_active.is_(True))
        .order_by(Location.name)
    ).all()
    return CampaignDetail(
        id=campaign.id,
        name=campaign.name,
        description=campaign.description,
        start_date=campaign.start_date,
        end_date=campaign.end_date,
        prizes=[PrizeSummary.model_validate(p) for p in prizes],
        locations=[LocationOut.model_validate(loc) for loc in locations],
    )


@app.get("/api/prizes/available", response_model=AvailablePrizesResponse)
def available_prizes(campaign_id: uuid.UUID, location_id: uuid.UUID, db: Session = Depends(get_db)):
    prizes = get_available_prizes(db, campaign_id, location_id)
    return AvailablePrizesResponse(
        success=True,
        prizes=[PrizeSummary.model_validate(p) for p in prizes],
        count=len(prizes),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "spinwheel.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=False,
    )
