from __future__ import annotations

import logging
import re
from typing import List, Optional

from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ChatBackend.crud import users as users_crud
from ChatBackend.errors import DuplicateIdentityError, ValidationError
from ChatBackend.models.user_model import User
from ChatBackend.schemas.auth import UserOut
from ChatBackend.schemas.common import iso


logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

NAME_MIN, NAME_MAX = 2, 50
PASSWORD_MIN, PASSWORD_MAX = 6, 128

# Fixed work factor; hashes with fewer rounds are flagged by needs_update
PASSWORD_HASH_ROUNDS = 600000

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
    pbkdf2_sha256__rounds=PASSWORD_HASH_ROUNDS,
    pbkdf2_sha256__min_rounds=PASSWORD_HASH_ROUNDS,
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


# passlib compares digests in constant time
def verify_password(plain_password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(plain_password, password_hash)
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def initials(name: str) -> str:
    return "".join(word[0] for word in (name or "").split() if word).upper()


def public_profile(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        initials=initials(user.name),
        created_at=iso(user.created_at),
        updated_at=iso(user.updated_at),
    )


# Owns identity records: registration, credential checks, lookup by id
class AuthService:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _validate_signup(name: str, email: str, password: str) -> List[str]:
        errors: List[str] = []
        trimmed = name.strip()
        if len(trimmed) < NAME_MIN:
            errors.append(f"Name must be at least {NAME_MIN} characters long")
        elif len(trimmed) > NAME_MAX:
            errors.append(f"Name cannot exceed {NAME_MAX} characters")
        if not EMAIL_RE.match(normalize_email(email)):
            errors.append("Please provide a valid email address")
        if len(password) < PASSWORD_MIN:
            errors.append(f"Password must be at least {PASSWORD_MIN} characters long")
        elif len(password) > PASSWORD_MAX:
            errors.append(f"Password cannot exceed {PASSWORD_MAX} characters")
        return errors

    def register(self, name: Optional[str], email: Optional[str], password: Optional[str]) -> User:
        if not name or not email or not password:
            raise ValidationError("Please provide name, email, and password")

        errors = self._validate_signup(name, email, password)
        if errors:
            raise ValidationError(errors[0], errors=errors)

        normalized = normalize_email(email)
        if users_crud.get_user_by_email(self.db, normalized) is not None:
            logger.info("Signup rejected, email already registered: %s", normalized)
            raise DuplicateIdentityError()

        try:
            user = users_crud.create_user(self.db, name.strip(), normalized, hash_password(password))
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent signup for the same email
            self.db.rollback()
            raise DuplicateIdentityError()

        logger.info("User registered: %s (id=%s)", user.email, user.id)
        return user

    # Returns None for unknown email and wrong password alike
    def verify_credentials(self, email: Optional[str], password: Optional[str]) -> Optional[User]:
        if not email or not password:
            return None
        user = users_crud.get_user_by_email(self.db, normalize_email(email))
        if user is None:
            pwd_context.dummy_verify()
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    def find_by_id(self, user_id: int) -> Optional[User]:
        return users_crud.get_user_by_id(self.db, user_id)
