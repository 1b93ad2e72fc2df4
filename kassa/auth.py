from __future__ import annotations
import uuid
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import Forbidden, Unauthenticated, ValidationError
from .helpers import hash_password, now_ts, verify_password
from .infra.logs import get_logger
from .model.db import User, UserRole

logger = get_logger("auth")

ADMIN_ROLE = "admin"
SESSION_KEY = "user_id"


# ----------------------------
# Users & roles
# ----------------------------
async def create_user(db: AsyncSession, email: str, password: str,
                      roles: tuple = ()) -> User:
    user = User(
        id=uuid.uuid4().hex,
        email=email.strip().lower(),
        password_hash=hash_password(password),
        created_at=now_ts(),
    )
    db.add(user)
    await db.flush()
    for role in roles:
        db.add(UserRole(user_id=user.id, role=role))
    await db.flush()
    return user


async def has_role(db: AsyncSession, user_id: str, role: str) -> bool:
    row = (await db.execute(
        select(UserRole.user_id).where(
            UserRole.user_id == user_id, UserRole.role == role,
        )
    )).first()
    return row is not None


async def authenticate(db: AsyncSession, email: str,
                       password: str) -> Optional[User]:
    async with db.begin():
        user = (await db.execute(
            select(User).where(User.email == email.strip().lower())
        )).scalar_one_or_none()
    # hash anyway so unknown emails cost the same
    encoded = user.password_hash if user else hash_password("x")
    if verify_password(password, encoded) and user is not None:
        return user
    return None


# ----------------------------
# Session
# ----------------------------
def current_user_id(request: Request) -> Optional[str]:
    return request.session.get(SESSION_KEY)


async def login(request: Request, db: AsyncSession, payload: dict) -> dict:
    email = str(payload.get("email") or "")
    password = str(payload.get("password") or "")
    if not email or not password:
        raise ValidationError("Missing credentials", code="missing_credentials")
    user = await authenticate(db, email, password)
    if user is None:
        logger.info("login_failed", email=email.strip().lower())
        raise Unauthenticated("Invalid credentials", code="bad_credentials")
    request.session[SESSION_KEY] = user.id
    logger.info("login_ok", user_id=user.id)
    return {"ok": True, "user_id": user.id}


def logout(request: Request) -> dict:
    request.session.clear()
    return {"ok": True}


def make_require_admin(get_db):
    """Build the admin guard bound to the app's session dependency."""

    async def require_admin(
        request: Request, db: AsyncSession = Depends(get_db),
    ) -> str:
        user_id = current_user_id(request)
        if not user_id:
            raise Unauthenticated("Unauthorized", code="unauthenticated")
        async with db.begin():
            ok = await has_role(db, user_id, ADMIN_ROLE)
        if not ok:
            logger.warning("admin_denied", user_id=user_id)
            raise Forbidden("Forbidden", code="not_admin")
        return user_id

    return require_admin
