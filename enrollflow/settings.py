import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    # "memory" or "redis"
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").lower()

    # Workflow state envelope
    STATE_STORAGE_KEY: str = os.getenv("STATE_STORAGE_KEY", "enrollment_state")
    STATE_SCHEMA_VERSION: str = os.getenv("STATE_SCHEMA_VERSION", "1.0.0")
    STATE_TTL_MINUTES: float = float(os.getenv("STATE_TTL_MINUTES", "10"))
    # Empty key = plain JSON in the slot. Obfuscation only, not encryption.
    STATE_OBFUSCATION_KEY: str = os.getenv("STATE_OBFUSCATION_KEY", "")
    AUTOSAVE_DEBOUNCE_MS: int = int(os.getenv("AUTOSAVE_DEBOUNCE_MS", "1000"))

    # Session timeout supervisor (kept equal to STATE_TTL_MINUTES by default so both expire together)
    SESSION_TIMEOUT_MINUTES: float = float(os.getenv("SESSION_TIMEOUT_MINUTES", "10"))
    SESSION_WARNING_LEAD_SECONDS: int = int(os.getenv("SESSION_WARNING_LEAD_SECONDS", "120"))

    # Secondary platform registration
    REGISTRATION_MAX_ATTEMPTS: int = int(os.getenv("REGISTRATION_MAX_ATTEMPTS", "3"))
    REGISTRATION_BASE_DELAY_MS: int = int(os.getenv("REGISTRATION_BASE_DELAY_MS", "2000"))
    REGISTRATION_MAX_DELAY_MS: int = int(os.getenv("REGISTRATION_MAX_DELAY_MS", "30000"))
    # 0.0 keeps the deterministic schedule (attempt 2 waits 4s, attempt 3 waits 8s)
    REGISTRATION_JITTER: float = float(os.getenv("REGISTRATION_JITTER", "0.0"))

    SECONDARY_PLATFORM_URL: str = os.getenv("SECONDARY_PLATFORM_URL", "")
    SECONDARY_PLATFORM_API_KEY: str = os.getenv("SECONDARY_PLATFORM_API_KEY", "")
    SECONDARY_TIMEOUT_SEC: float = float(os.getenv("SECONDARY_TIMEOUT_SEC", "10"))

    # Payment gateway
    PAYMENT_VERIFY_URL: str = os.getenv("PAYMENT_VERIFY_URL", "")
    PAYMENT_VERIFY_TIMEOUT_SEC: float = float(os.getenv("PAYMENT_VERIFY_TIMEOUT_SEC", "15"))
    PAYMENT_GATEWAY_SECRET: str = os.getenv("PAYMENT_GATEWAY_SECRET", "")
    PAYMENT_CURRENCY: str = os.getenv("PAYMENT_CURRENCY", "INR")
    PAYMENT_SESSION_TTL_MINUTES: int = int(os.getenv("PAYMENT_SESSION_TTL_MINUTES", "30"))
    PAYMENT_HISTORY_LIMIT: int = int(os.getenv("PAYMENT_HISTORY_LIMIT", "10"))
    CONFIRMATION_MAX_RETRIES: int = int(os.getenv("CONFIRMATION_MAX_RETRIES", "3"))

    # OTP / auth
    OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))
    OTP_LOCKOUT_MINUTES: int = int(os.getenv("OTP_LOCKOUT_MINUTES", "5"))
    OTP_SEND_MAX_ATTEMPTS: int = int(os.getenv("OTP_SEND_MAX_ATTEMPTS", "3"))
    OTP_SEND_BASE_DELAY_MS: int = int(os.getenv("OTP_SEND_BASE_DELAY_MS", "1000"))

    # Confirmation display defaults
    COURT_LOCATION: str = os.getenv("COURT_LOCATION", "PlayOn Sports Arena - E City")
    COACH_NAME: str = os.getenv("COACH_NAME", "Coach Playgram")
    COACH_CONTACT: str = os.getenv("COACH_CONTACT", "+91-9876543210")
    SUPPORT_EMAIL: str = os.getenv("SUPPORT_EMAIL", "support@playgram.com")

    # Observability
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"
    ERROR_LOG_LIMIT: int = int(os.getenv("ERROR_LOG_LIMIT", "100"))

settings = Settings()
