import os
import sys


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]


# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", None)

if DATABASE_URL is None:
    print("NEED DATABASE_URL! e.g. DATABASE_URL=sqlite:///./kassa.db")
    sys.exit(1)

SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
SITE_URL = os.environ.get("SITE_URL", "http://localhost:8081").rstrip("/")
ALLOWED_ORIGINS = _env_list(
    "ALLOWED_ORIGINS", "http://localhost:8081,http://127.0.0.1:8081"
)

# 'stripe' | 'mockpay'
PAYMENT_PROCESSOR = os.environ.get("PAYMENT_PROCESSOR", "mockpay").lower()
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/payments/webhook"
)

SWISH_NUMBER = os.environ.get("SWISH_NUMBER", "1230558973")
SWISH_CURRENCY = os.environ.get("SWISH_CURRENCY", "SEK").upper()

GUEST_TOKEN_TTL_SECONDS = int(
    os.environ.get("GUEST_TOKEN_TTL_SECONDS", str(24 * 60 * 60))
)
ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "TN")
ORDER_NUMBER_ATTEMPTS = int(os.environ.get("ORDER_NUMBER_ATTEMPTS", "5"))

TEA_HONEY_DISCOUNT_BPS = int(os.environ.get("TEA_HONEY_DISCOUNT_BPS", "1000"))

NOTIFY_URL = os.environ.get("NOTIFY_URL", "")
INTERNAL_FUNCTION_SECRET = os.environ.get("INTERNAL_FUNCTION_SECRET", "")

REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = int(os.environ.get("REDIS_MAX_CONN", "64"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.environ.get("LOG_JSON", "0") == "1"

SUPPORTED_LANGS = ("en", "sv")
DEFAULT_LANG = "en"
