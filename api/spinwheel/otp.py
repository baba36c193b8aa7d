"""Phone verification codes.

Codes are stored before anything is sent: SMS delivery is best effort, and a
gateway failure never fails issuance. Requesting a new code deletes every
earlier code for the phone number, so at most one is live at a time.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .config import settings
from .models import OTP
from .utils import as_utc, random_digits, utcnow

logger = logging.getLogger(__name__)


@dataclass
class OtpIssued:
    success: bool
    message: str
    expires_at: datetime


@dataclass
class OtpVerification:
    success: bool
    message: str


def format_phone_number(phone: str, country_code: str | None = None) -> str:
    """International form without '+', e.g. 08031234567 -> 2348031234567."""
    cc = country_code or settings.sms_country_code
    p = re.sub(r"[\s\-()]", "", phone.strip())
    if p.startswith("+"):
        return p[1:]
    if p.startswith(cc):
        return p
    if p.startswith("0"):
        return cc + p[1:]
    return cc + p


class SmsGateway:
    """Termii-style SMS sender."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        sender_id: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        self.api_key = settings.sms_api_key if api_key is None else api_key
        self.api_url = api_url or settings.sms_api_url
        self.sender_id = sender_id or settings.sms_sender_id
        self.timeout = timeout or settings.sms_timeout_seconds
        self.client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def send(self, to: str, text: str) -> None:
        payload = {
            "to": to,
            "from": self.sender_id,
            "sms": text,
            "type": "plain",
            "channel": "dnd",
            "api_key": self.api_key,
        }
        if self.client is not None:
            response = self.client.post(self.api_url, json=payload, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.api_url, json=payload)
        response.raise_for_status()


def send_otp(
    db: Session,
    phone_number: str,
    gateway: SmsGateway | None = None,
    now: datetime | None = None,
) -> OtpIssued:
    now = now or utcnow()
    code = random_digits(settings.otp_length)
    expires_at = now + timedelta(minutes=settings.otp_expiry_minutes)

    db.execute(delete(OTP).where(OTP.phone_number == phone_number))
    db.add(OTP(phone_number=phone_number, code=code, expires_at=expires_at, created_at=now))
    db.commit()

    gateway = gateway or SmsGateway()
    to = format_phone_number(phone_number)
    if gateway.enabled:
        try:
            gateway.send(
                to,
                f"Your verification code is {code}. Valid for {settings.otp_expiry_minutes} minutes.",
            )
            logger.info("OTP sent to %s", to)
        except httpx.HTTPError as exc:
            logger.warning("SMS sending failed for %s: %s", to, exc)
    else:
        logger.info("[DEV] OTP for %s: %s", phone_number, code)

    return OtpIssued(success=True, message="OTP sent successfully", expires_at=expires_at)


def verify_otp(db: Session, phone_number: str, code: str, now: datetime | None = None) -> OtpVerification:
    now = now or utcnow()
    if settings.otp_test_bypass_enabled and code == settings.otp_test_bypass_code:
        logger.warning("OTP test bypass used for %s", phone_number)
        return OtpVerification(True, "Phone number verified successfully (test override)")

    record = db.scalar(
        select(OTP)
        .where(OTP.phone_number == phone_number, OTP.verified.is_(False))
        .order_by(OTP.created_at.desc())
        .limit(1)
    )
    if record is None:
        return OtpVerification(False, "No OTP found. Please request a new one.")

    if now > as_utc(record.expires_at):
        return OtpVerification(False, "OTP has expired. Please request a new one.")

    max_attempts = settings.otp_max_attempts
    if record.attempts >= max_attempts:
        return OtpVerification(
            False, "Maximum verification attempts exceeded. Please request a new OTP."
        )

    record.attempts += 1
    if record.code != code:
        db.commit()
        return OtpVerification(
            False, f"Invalid OTP. {max_attempts - record.attempts} attempts remaining."
        )

    record.verified = True
    db.commit()
    return OtpVerification(True, "Phone number verified successfully")
