import os
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
if ENV_PATH.exists():
    # ensure .env values override empty/previous env
    load_dotenv(ENV_PATH, override=True)
    # BOM-safe fallback: if key was \ufeffDATABASE_URL
    if not os.getenv("DATABASE_URL"):
        for line in ENV_PATH.read_text(encoding="utf-8").splitlines():
            line = line.lstrip("\ufeff")
            if line.startswith("DATABASE_URL="):
                os.environ["DATABASE_URL"] = line.split("=", 1)[1].strip()
                break


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./spinwheel.db")
    db_echo: bool = _flag("DB_ECHO")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    jwt_secret: str = os.getenv("JWT_SECRET", "dev_change_me")
    admin_token_hours: int = int(os.getenv("ADMIN_TOKEN_HOURS", "24"))
    # superadmin created on startup when the admins table is empty
    admin_bootstrap_username: str = os.getenv("ADMIN_BOOTSTRAP_USERNAME", "superadmin")
    admin_password_hash: str = os.getenv("ADMIN_PASSWORD_HASH", "")  # bcrypt hash

    allowed_origins: list[str] = [
        o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
    ]
    allowed_origin_regex: str | None = os.getenv("ALLOWED_ORIGIN_REGEX") or None

    # OTP
    otp_length: int = int(os.getenv("OTP_LENGTH", "6"))
    otp_expiry_minutes: int = int(os.getenv("OTP_EXPIRY_MINUTES", "10"))
    otp_max_attempts: int = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))
    # staging/test only: accepts otp_test_bypass_code for any phone number
    otp_test_bypass_enabled: bool = _flag("OTP_TEST_BYPASS_ENABLED")
    otp_test_bypass_code: str = os.getenv("OTP_TEST_BYPASS_CODE", "123456")

    # SMS gateway (Termii-compatible)
    sms_api_key: str = os.getenv("SMS_API_KEY", "")
    sms_api_url: str = os.getenv("SMS_API_URL", "https://v3.api.termii.com/api/sms/send")
    sms_sender_id: str = os.getenv("SMS_SENDER_ID", "PowerOil")
    sms_country_code: str = os.getenv("SMS_COUNTRY_CODE", "234")
    sms_timeout_seconds: float = float(os.getenv("SMS_TIMEOUT_SECONDS", "10"))

    # Spins
    redemption_code_prefix: str = os.getenv("REDEMPTION_CODE_PREFIX", "PO")
    redemption_expiry_days: int = int(os.getenv("REDEMPTION_EXPIRY_DAYS", "30"))
    campaign_timezone: str = os.getenv("CAMPAIGN_TIMEZONE", "UTC")

settings = Settings()
