import os

MATCH_WINDOW_DAYS = int(os.getenv("MATCH_WINDOW_DAYS", "7"))
DAILY_SWIPE_LIMIT = int(os.getenv("DAILY_SWIPE_LIMIT", "50"))
SWIPE_LIMIT_REACHED = -1

DISCOVERY_TIMEOUT_SECONDS = float(os.getenv("DISCOVERY_TIMEOUT_SECONDS", "8"))
EXCLUSION_CACHE_SIZE = int(os.getenv("EXCLUSION_CACHE_SIZE", "1000"))
EXCLUSION_CACHE_TTL_SECONDS = int(os.getenv("EXCLUSION_CACHE_TTL_SECONDS", "300"))
PROFILE_FETCH_TIMEOUT_SECONDS = float(os.getenv("PROFILE_FETCH_TIMEOUT_SECONDS", "8"))
READ_RETRY_ATTEMPTS = int(os.getenv("READ_RETRY_ATTEMPTS", "3"))
READ_RETRY_DELAY_SECONDS = float(os.getenv("READ_RETRY_DELAY_SECONDS", "2"))

MESSAGE_MAX_LENGTH = int(os.getenv("MESSAGE_MAX_LENGTH", "2000"))
LETTER_MAX_LENGTH = int(os.getenv("LETTER_MAX_LENGTH", "2000"))
REPORT_MAX_LENGTH = int(os.getenv("REPORT_MAX_LENGTH", "1000"))
DEFAULT_MIN_AGE = int(os.getenv("DEFAULT_MIN_AGE", "18"))
DEFAULT_MAX_AGE = int(os.getenv("DEFAULT_MAX_AGE", "100"))

JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "")
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "60"))
DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

NOTIFICATIONS_ENABLED = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"
ONESIGNAL_APP_ID = os.getenv("ONESIGNAL_APP_ID", "")
ONESIGNAL_API_KEY = os.getenv("ONESIGNAL_API_KEY", "")
ONESIGNAL_API_URL = os.getenv("ONESIGNAL_API_URL", "https://onesignal.com/api/v1/notifications")
ONESIGNAL_TIMEOUT_SECONDS = float(os.getenv("ONESIGNAL_TIMEOUT_SECONDS", "5"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]

RL_LETTER_SEND_LIMIT = int(os.getenv("RL_LETTER_SEND_LIMIT", "20"))
RL_MESSAGE_SEND_LIMIT = int(os.getenv("RL_MESSAGE_SEND_LIMIT", "120"))
RL_MATCH_ACTION_LIMIT = int(os.getenv("RL_MATCH_ACTION_LIMIT", "100"))
RL_COUPON_LIMIT = int(os.getenv("RL_COUPON_LIMIT", "10"))
RL_REPORT_LIMIT = int(os.getenv("RL_REPORT_LIMIT", "5"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))

# action -> (max requests, window seconds), counted per signed-in user
RATE_LIMITS = {
    "letter_send": (RL_LETTER_SEND_LIMIT, RL_WINDOW_SECONDS),
    "message_send": (RL_MESSAGE_SEND_LIMIT, RL_WINDOW_SECONDS),
    "match_action": (RL_MATCH_ACTION_LIMIT, RL_WINDOW_SECONDS),
    "coupon": (RL_COUPON_LIMIT, RL_WINDOW_SECONDS),
    "report": (RL_REPORT_LIMIT, 3600),
}
