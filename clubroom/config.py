import os

# -----------------------------------------
# Runtime settings (environment overrides)
# -----------------------------------------
DATABASE_URL = os.getenv("CLUBROOM_DATABASE_URL", "sqlite:///./clubroom.db")

SECRET_KEY = os.getenv("CLUBROOM_SECRET_KEY", "CHANGE_THIS_SECRET_IN_REAL_PROJECT")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("CLUBROOM_TOKEN_MINUTES", "60"))

RATE_LIMIT = os.getenv("CLUBROOM_RATE_LIMIT", "60/minute")
RATE_LIMIT_ENABLED = os.getenv("CLUBROOM_RATE_LIMIT_ENABLED", "1") not in ("0", "false", "False")

# How far ahead a member may book, and how early they must cancel
BOOKING_HORIZON_DAYS = int(os.getenv("CLUBROOM_BOOKING_HORIZON_DAYS", "14"))
CANCEL_NOTICE_HOURS = int(os.getenv("CLUBROOM_CANCEL_NOTICE_HOURS", "5"))

# Shared secret sent by the payment gateway; empty disables the check
WEBHOOK_SECRET = os.getenv("CLUBROOM_WEBHOOK_SECRET", "")

LOG_LEVEL = os.getenv("CLUBROOM_LOG_LEVEL", "INFO")
