# loyalty/utils/auth.py

import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from dotenv import load_dotenv
from jose import jwt, JWTError
from passlib.context import CryptContext

from loyalty.models.user import Role
from loyalty.utils.dates import utc_now

load_dotenv()

# Shared secret for signing access tokens, set it in .env
JWT_SECRET = os.environ.get("JWT_SECRET", "jwt_secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("JWT_EXPIRE_MINUTES", 7 * 24 * 60))
RESET_TOKEN_TTL = timedelta(days=7)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=int(os.environ.get("BCRYPT_ROUNDS", 12)),
)

_PASSWORD_SPECIALS = re.compile(r"[!@#$%^&*]")


@dataclass(frozen=True)
class Identity:
    """Caller of the current request, resolved from the bearer token."""
    id: int
    utorid: str
    role: Role

    def has_role(self, minimum: Role) -> bool:
        return self.role >= minimum


class InvalidToken(Exception):
    pass


def password_problem(password: str) -> Optional[str]:
    """
    8-20 chars with at least one upper, one lower, one digit and one of !@#$%^&*.
    Returns a message describing what is wrong, or None.
    """
    if not isinstance(password, str) or not (8 <= len(password) <= 20):
        return "password must be between 8 and 20 characters"
    if (
        not re.search(r"[a-z]", password)
        or not re.search(r"[A-Z]", password)
        or not re.search(r"\d", password)
        or not _PASSWORD_SPECIALS.search(password)
    ):
        return (
            "password must include at least one uppercase letter, one lowercase letter, "
            "one number, and one special character"
        )
    return None


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(user_id: int, utorid: str, role: Role) -> Tuple[str, datetime]:
    """Signed JWT plus its expiry (naive UTC)."""
    expires_at = utc_now() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "utorid": utorid,
        "role": role.value,
        "exp": expires_at.replace(tzinfo=timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=ALGORITHM), expires_at


def decode_access_token(token: str) -> Identity:
    """
    Verifies signature and expiry. Every failure becomes InvalidToken so the
    caller can't tell a malformed token from an expired or forged one.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
        return Identity(
            id=int(payload["sub"]),
            utorid=str(payload["utorid"]),
            role=Role(payload["role"]),
        )
    except (JWTError, KeyError, ValueError, TypeError) as e:
        raise InvalidToken(str(e)) from e


def new_reset_token() -> Tuple[str, datetime]:
    return str(uuid.uuid4()), utc_now() + RESET_TOKEN_TTL
