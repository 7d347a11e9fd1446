"""
Credential check against the user table.

The gate needs to tell three outcomes apart: no matching user, a matching
user without the admin flag, and a lookup that blew up. The last one is only
logged; callers fold it into "invalid credentials".
"""
import logging
from dataclasses import dataclass
from typing import Optional

import bcrypt
from sqlalchemy.exc import SQLAlchemyError

from models.user import User

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


def hash_password(plain_password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash stored on the row
        return False


def normalize_username(value: str) -> str:
    return (value or "").strip().lower()


@dataclass(frozen=True)
class CredentialCheck:
    user: Optional[User] = None
    has_admin_access: bool = False
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.user is not None


class CredentialValidator:
    """Looks up one user by email and checks the secret with bcrypt."""

    def validate(self, username: str, password: str) -> CredentialCheck:
        email = normalize_username(username)
        if not email or not password:
            return CredentialCheck()

        try:
            user = User.query.filter_by(email=email).limit(1).first()
        except SQLAlchemyError as exc:
            logger.error("Admin credential lookup failed", exc_info=exc)
            return CredentialCheck(error=str(exc))

        if user is None or not verify_password(password, user.password_hash):
            return CredentialCheck()

        return CredentialCheck(user=user, has_admin_access=bool(user.is_admin))

    __call__ = validate
