import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Generic, List, Literal, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator

from .utils import normalize_phone

T = TypeVar("T")

CampaignStatus = Literal["draft", "active", "paused", "completed"]
LocationType = Literal["supermarket", "openmarket", "retailstore", "other"]
AdminRole = Literal["admin", "superadmin"]


def _phone(v: str) -> str:
    digits = normalize_phone(v)
    if len(digits) < 7:
        raise ValueError("Phone number looks invalid")
    return digits


PhoneNumber = Annotated[str, AfterValidator(_phone)]


# --- Public: registration & OTP ---

class RegisterRequest(BaseModel):
    full_name: str = Field(min_length=1, max_length=120)
    phone_number: PhoneNumber
    email: Optional[EmailStr] = None
    gender: Literal["Male", "Female", "Other"]
    state: Optional[str] = None
    city: Optional[str] = None
    store_outlet: uuid.UUID
    consent_given: bool
    device_id: Optional[str] = None
    ip_address: Optional[str] = None

    @field_validator("consent_given")
    @classmethod
    def consent_required(cls, v: bool) -> bool:
        if not v:
            raise ValueError("Consent is required to take part")
        return v


class UserSummary(BaseModel):
    id: uuid.UUID
    full_name: str
    phone_number: str
    phone_verified: bool
    class Config:
        from_attributes = True


class RegisterResponse(BaseModel):
    success: bool
    message: str
    user_id: uuid.UUID
    user: UserSummary


class OtpRequest(BaseModel):
    phone_number: PhoneNumber


class OtpResponse(BaseModel):
    success: bool
    message: str
    expires_at: Optional[datetime] = None


class OtpVerifyRequest(BaseModel):
    phone_number: PhoneNumber
    otp: str = Field(min_length=1, max_length=12)


class OtpVerifyResponse(BaseModel):
    success: bool
    message: str


# --- Public: eligibility & spin ---

class SpinRequest(BaseModel):
    user_id: uuid.UUID
    campaign_id: uuid.UUID
    location_id: uuid.UUID
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    device_id: str = Field(min_length=1)
    ip_address: Optional[str] = None


class EligibilityRequest(BaseModel):
    user_id: uuid.UUID
    campaign_id: uuid.UUID
    location_id: uuid.UUID
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    device_id: Optional[str] = None


class EligibilityResponse(BaseModel):
    eligible: bool
    reason: str
    code: Optional[str] = None
    distance_meters: Optional[float] = None
    allowed_radius: Optional[int] = None
    next_spin_date: Optional[datetime] = None
    days_remaining: Optional[int] = None
    limit: Optional[int] = None
    count: Optional[int] = None


class PrizeSummary(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    type: str
    color: str
    class Config:
        from_attributes = True


class SpinOutcomeOut(BaseModel):
    prize: PrizeSummary
    is_win: bool
    redemption_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    spin_id: uuid.UUID


class SpinResponse(BaseModel):
    success: bool
    result: SpinOutcomeOut


class AvailablePrizesResponse(BaseModel):
    success: bool
    prizes: List[PrizeSummary]
    count: int


# --- Locations & campaigns ---

class LocationIn(BaseModel):
    name: str = Field(min_length=1)
    type: LocationType = "other"
    address: str = ""
    city: str = ""
    state: str = ""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_meters: int = Field(gt=0, default=500)
    is_active: bool = True
    contact_person: Optional[str] = None
    contact_phone: Optional[str] = None


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[LocationType] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    radius_meters: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None
    contact_person: Optional[str] = None
    contact_phone: Optional[str] = None


class LocationOut(BaseModel):
    id: uuid.UUID
    name: str
    type: str
    address: str
    city: str
    state: str
    latitude: float
    longitude: float
    radius_meters: int
    is_active: bool
    contact_person: Optional[str] = None
    contact_phone: Optional[str] = None
    total_spins: int
    distance: Optional[float] = None
    class Config:
        from_attributes = True


class CampaignIn(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    start_date: datetime
    end_date: datetime
    status: CampaignStatus = "draft"
    spin_cooldown_days: int = Field(ge=0, default=7)
    max_spins_per_user: int = Field(ge=1, default=1)
    total_budget: Optional[Decimal] = Field(default=None, ge=0)
    location_ids: List[uuid.UUID] = []


class CampaignUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[CampaignStatus] = None
    spin_cooldown_days: Optional[int] = Field(default=None, ge=0)
    max_spins_per_user: Optional[int] = Field(default=None, ge=1)
    total_budget: Optional[Decimal] = Field(default=None, ge=0)
    location_ids: Optional[List[uuid.UUID]] = None


class CampaignOut(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    start_date: datetime
    end_date: datetime
    status: str
    spin_cooldown_days: int
    max_spins_per_user: int
    total_budget: Optional[Decimal] = None
    spent_budget: Decimal
    total_participants: int
    total_spins: int
    total_wins: int
    class Config:
        from_attributes = True


class CampaignDetail(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    start_date: datetime
    end_date: datetime
    prizes: List[PrizeSummary]
    locations: List[LocationOut]


# --- Prizes & rules ---

class PrizeIn(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    type: str = Field(min_length=1)
    color: str = Field(default="#FFD700", pattern=r"^#[0-9A-Fa-f]{6}$")
    is_active: bool = True


class PrizeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    type: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    is_active: Optional[bool] = None


class PrizeOut(PrizeSummary):
    is_active: bool


class PrizeRuleIn(BaseModel):
    campaign_id: uuid.UUID
    prize_id: uuid.UUID
    probability: float = Field(ge=0, le=1)
    max_per_day: Optional[int] = Field(default=None, ge=0)
    max_total: Optional[int] = Field(default=None, ge=0)
    value: Optional[Decimal] = Field(default=None, ge=0)


class PrizeRuleUpdate(BaseModel):
    probability: Optional[float] = Field(default=None, ge=0, le=1)
    max_per_day: Optional[int] = Field(default=None, ge=0)
    max_total: Optional[int] = Field(default=None, ge=0)
    value: Optional[Decimal] = Field(default=None, ge=0)


class PrizeRuleOut(BaseModel):
    id: uuid.UUID
    campaign_id: uuid.UUID
    prize_id: uuid.UUID
    probability: float
    max_per_day: Optional[int] = None
    max_total: Optional[int] = None
    value: Optional[Decimal] = None
    class Config:
        from_attributes = True


# --- Admin ---

class AdminLoginRequest(BaseModel):
    username: str
    password: str


class AdminOut(BaseModel):
    id: uuid.UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    last_login: Optional[datetime] = None
    class Config:
        from_attributes = True


class AdminLoginResponse(BaseModel):
    token: str
    admin: AdminOut


class AdminCreate(BaseModel):
    username: str = Field(min_length=3, max_length=80)
    email: Optional[EmailStr] = None
    password: str = Field(min_length=8)
    full_name: Optional[str] = None
    role: AdminRole = "admin"


class UserOut(BaseModel):
    id: uuid.UUID
    full_name: str
    phone_number: str
    email: Optional[str] = None
    gender: Optional[str] = None
    store_outlet_id: uuid.UUID
    phone_verified: bool
    last_spin_date: Optional[datetime] = None
    total_spins: int
    total_wins: int
    registered_at: datetime
    class Config:
        from_attributes = True


class SpinHistoryOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    campaign_id: uuid.UUID
    prize_id: uuid.UUID
    location_id: uuid.UUID
    is_win: bool
    redemption_code: Optional[str] = None
    redemption_status: str
    spin_date: datetime
    class Config:
        from_attributes = True


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    total_pages: int
