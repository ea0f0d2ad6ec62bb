import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./salonbook.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", False)
    REDIS_URL = os.getenv("REDIS_URL", "").strip()
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

    SALON_TIMEZONE = os.getenv("SALON_TIMEZONE", "Asia/Tokyo").strip()

    DEFAULT_AVAILABLE_SHEETS = _get_int("DEFAULT_AVAILABLE_SHEETS", 3)
    DEFAULT_RESERVATION_INTERVAL_MINUTES = _get_int("DEFAULT_RESERVATION_INTERVAL_MINUTES", 30)
    DEFAULT_TODAY_FIRST_LATER_MINUTES = _get_int("DEFAULT_TODAY_FIRST_LATER_MINUTES", 30)
    DEFAULT_RESERVATION_LIMIT_DAYS = _get_int("DEFAULT_RESERVATION_LIMIT_DAYS", 60)
    DEFAULT_AVAILABLE_CANCEL_DAYS = _get_int("DEFAULT_AVAILABLE_CANCEL_DAYS", 1)

    BOOKING_LOCK_TIMEOUT_SECONDS = _get_int("BOOKING_LOCK_TIMEOUT_SECONDS", 10)
    BOOKING_LOCK_PREFIX = os.getenv("BOOKING_LOCK_PREFIX", "salonbook.booking").strip()

    SECURITY_HEADERS_ENABLED = _get_bool("SECURITY_HEADERS_ENABLED", True)


settings = Settings()
