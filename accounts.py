"""
User accounts: registration, login, admin bootstrap and the profile used
at checkout.
"""

from typing import Any, Dict, Optional, Tuple

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError

from database import Database, users
from errors import ConflictError, NotFoundError, ValidationError
from logging_config import get_logger
from schemas import PROFILE_FIELDS
from security import create_token, hash_password, principal_from_user, verify_password
from settings import Settings

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6
PROFILE_VALUE_MAX = 120

INVALID_CREDENTIALS = "Invalid credentials"

# (column, label reported when missing)
CHECKOUT_REQUIREMENTS = (
    ("full_name", "Full name"),
    ("phone", "Phone"),
    ("address_line1", "Address"),
    ("city", "City"),
    ("country", "Country"),
)


def normalize_email(raw: Optional[str]) -> str:
    """Return the canonical lowercase form of an address, or "" if invalid."""
    value = str(raw or "").strip()
    if not value:
        return ""
    try:
        info = validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return ""
    return info.normalized.lower()


def safe_user(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": int(row["id"]),
        "email": row["email"],
        "username": row.get("username"),
        "is_admin": bool(row.get("is_admin")),
        "role": row.get("role"),
    }


_AUTH_COLUMNS = (
    users.c.id,
    users.c.email,
    users.c.username,
    users.c.password_hash,
    users.c.is_admin,
    users.c.role,
)


async def register(
    db: Database, settings: Settings, email: str, username: Optional[str], password: str
) -> Tuple[Dict[str, Any], str]:
    email_norm = normalize_email(email)
    uname = (str(username or "").strip()) or (email_norm.split("@")[0] if email_norm else "")
    password = str(password or "")

    if not email_norm or not uname or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Invalid registration data")

    taken_email = await db.scalar(select(users.c.id).where(func.lower(users.c.email) == email_norm))
    if taken_email is not None:
        raise ConflictError("Email already registered")

    taken_username = await db.scalar(
        select(users.c.id).where(func.lower(users.c.username) == uname.lower())
    )
    if taken_username is not None:
        raise ConflictError("Username already registered")

    try:
        user_id = await db.insert(
            insert(users).values(
                email=email_norm,
                username=uname,
                password_hash=hash_password(password),
                role="USER",
                is_admin=False,
            )
        )
    except IntegrityError as exc:
        # lost a race against a concurrent registration
        raise ConflictError("Email or username already registered") from exc

    user = {"id": user_id, "email": email_norm, "username": uname, "is_admin": False, "role": "USER"}
    logger.info("user_registered", user_id=user_id)
    return user, create_token(principal_from_user(user), settings)


async def login(db: Database, settings: Settings, identifier: str, password: str) -> Tuple[Dict[str, Any], str]:
    """Authenticate by e-mail or username.

    Every failure raises the same ValidationError so callers cannot tell an
    unknown account from a wrong password.
    """
    who = str(identifier or "").strip()
    password = str(password or "")
    if not who or not password:
        raise ValidationError(INVALID_CREDENTIALS)

    email_norm = normalize_email(who)
    if email_norm:
        stmt = select(*_AUTH_COLUMNS).where(func.lower(users.c.email) == email_norm)
    else:
        stmt = select(*_AUTH_COLUMNS).where(func.lower(users.c.username) == who.lower())

    row = await db.fetch_one(stmt.limit(1))
    if row is None or not verify_password(row["password_hash"], password):
        logger.info("login_failed")
        raise ValidationError(INVALID_CREDENTIALS)

    user = safe_user(row)
    return user, create_token(principal_from_user(user), settings)


async def ensure_admin(db: Database, email: str, password: str) -> int:
    """Make sure an administrator with this e-mail exists (idempotent)."""
    email_norm = normalize_email(email)
    if not email_norm or len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError("Invalid admin credentials in configuration")

    existing = await db.fetch_one(
        select(users.c.id, users.c.is_admin).where(func.lower(users.c.email) == email_norm)
    )
    if existing is not None:
        if not existing["is_admin"]:
            await db.execute(
                update(users).where(users.c.id == existing["id"]).values(is_admin=True, role="ADMIN")
            )
            logger.info("admin_promoted", user_id=existing["id"])
        return existing["id"]

    base = email_norm.split("@")[0]
    taken = await db.scalar(select(users.c.id).where(func.lower(users.c.username) == base.lower()))
    username = base if taken is None else email_norm
    user_id = await db.insert(
        insert(users).values(
            email=email_norm,
            username=username,
            password_hash=hash_password(password),
            role="ADMIN",
            is_admin=True,
        )
    )
    logger.info("admin_created", user_id=user_id)
    return user_id


# ---------------
# Profile
# ---------------

_PROFILE_COLUMNS = [users.c.id, users.c.email, users.c.username] + [users.c[f] for f in PROFILE_FIELDS]


async def get_profile(db: Database, user_id: int) -> Dict[str, Any]:
    row = await db.fetch_one(select(*_PROFILE_COLUMNS).where(users.c.id == user_id))
    if row is None:
        raise NotFoundError("User not found")
    return row


async def update_profile(db: Database, user_id: int, fields: Dict[str, Any]) -> int:
    """Update the whitelisted profile fields present in `fields`.

    Values are trimmed and truncated; None clears a field. Returns the
    number of rows touched (0 when nothing was supplied).
    """
    values = {}
    for key in PROFILE_FIELDS:
        if key not in fields:
            continue
        raw = fields[key]
        values[key] = None if raw is None else str(raw).strip()[:PROFILE_VALUE_MAX]
    if not values:
        return 0
    return await db.execute(update(users).where(users.c.id == user_id).values(**values))


async def profile_readiness(db: Database, user_id: int) -> Dict[str, Any]:
    row = await db.fetch_one(
        select(*[users.c[column] for column, _ in CHECKOUT_REQUIREMENTS]).where(users.c.id == user_id)
    )
    row = row or {}
    missing = [label for column, label in CHECKOUT_REQUIREMENTS if not (row.get(column) or "").strip()]
    return {"ok": not missing, "missing": missing}
