import os
from dotenv import load_dotenv
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


JWT_SECRET_KEY = str(os.getenv('JWT_SECRET_KEY', 'change-me'))
JWT_ALGORITHM = str(os.getenv('JWT_ALGORITHM', 'HS256'))
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv('ACCESS_TOKEN_EXPIRE_MINUTES', 15))
DATABASE_URL=os.getenv('DATABASE_URL')
FRONTEND_URL=os.getenv('FRONTEND_URL')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# Scheduling
DEFAULT_TIMEZONE = os.getenv('DEFAULT_TIMEZONE', 'UTC')
DEFAULT_SLOT_DURATION = int(os.getenv('DEFAULT_SLOT_DURATION', 30))
MIN_ADVANCE_BOOKING_MINUTES = int(os.getenv('MIN_ADVANCE_BOOKING_MINUTES', 60))
CANCELLATION_NOTICE_HOURS = int(os.getenv('CANCELLATION_NOTICE_HOURS', 24))
CHECK_IN_OPENS_MINUTES = int(os.getenv('CHECK_IN_OPENS_MINUTES', 60))
CHECK_IN_CLOSES_MINUTES = int(os.getenv('CHECK_IN_CLOSES_MINUTES', 15))
MAX_AVAILABILITY_RANGE_DAYS = int(os.getenv('MAX_AVAILABILITY_RANGE_DAYS', 62))

# an available exception without times falls back to the weekly window
EXCEPTION_FALLBACK_TO_WEEKLY = _env_bool('EXCEPTION_FALLBACK_TO_WEEKLY', True)
INCLUDE_EMPTY_DAYS = _env_bool('INCLUDE_EMPTY_DAYS', False)
