import time
import re
import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from typing import Optional

from . import config


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def normalize_lang(value: object) -> str:
    raw = str(value or "").strip().lower()
    if raw in config.SUPPORTED_LANGS:
        return raw
    return config.DEFAULT_LANG


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def new_guest_token() -> str:
    # 256 bits, url safe
    return secrets.token_hex(32)


# ----------------------------
# Passwords (pbkdf2_sha256$iterations$salt$hash)
# ----------------------------
_PBKDF2_ITERATIONS = 240_000


def hash_password(password: str, *, salt: Optional[str] = None,
                  iterations: int = _PBKDF2_ITERATIONS) -> str:
    salt = salt or secrets.token_hex(16)
    dk = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt.encode(), iterations
    )
    return f"pbkdf2_sha256${iterations}${salt}${dk.hex()}"


def verify_password(password: str, encoded: Optional[str]) -> bool:
    if not encoded:
        return False
    try:
        algo, iterations, salt, _ = encoded.split("$", 3)
    except ValueError:
        return False
    if algo != "pbkdf2_sha256":
        return False
    candidate = hash_password(password, salt=salt, iterations=int(iterations))
    return ct_equal(candidate, encoded)
