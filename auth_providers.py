import logging
import os
import threading
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

from passlib.context import CryptContext

import database
from models import User

logger = logging.getLogger(__name__)

# Password hashing context - Using Argon2 only
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

PROFILE_FIELDS = ("username", "full_name", "avatar_url")
ADMIN_FIELDS = ("is_active", "role", "email_confirmed_at")


class AuthError(Exception):
    pass


class DuplicateUserError(AuthError):
    pass


class InvalidCredentialsError(AuthError):
    pass


class EmailNotConfirmedError(AuthError):
    pass


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    """Generate password hash using argon2."""
    return pwd_context.hash(password)


def _email_list(variable: str) -> List[str]:
    return [e.strip().lower() for e in os.getenv(variable, "").split(",") if e.strip()]


def role_for_email(email: str) -> str:
    email = email.lower()
    if email in _email_list("SUPER_ADMIN_EMAILS"):
        return "super_admin"
    if email in _email_list("ADMIN_EMAILS"):
        return "admin"
    return "user"


def email_confirmation_required() -> bool:
    return os.getenv("REQUIRE_EMAIL_CONFIRMATION", "false").lower() == "true"


@dataclass
class UserRecord:
    id: str
    email: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: str = "user"
    is_active: bool = True
    email_confirmed_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "super_admin")

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"

    @property
    def display_name(self) -> str:
        return self.username or self.full_name or "User"

    def profile(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.display_name,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
            "email_confirmed": self.email_confirmed_at is not None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_dict(self) -> dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


class DatabaseAuthProvider:
    """Managed identity store: the ``users`` table with argon2 password hashes."""

    name = "database"

    def _record(self, user: User) -> UserRecord:
        return UserRecord(
            id=user.id,
            email=user.email,
            username=user.username,
            full_name=user.full_name,
            avatar_url=user.avatar_url,
            role=user.role,
            is_active=user.is_active,
            email_confirmed_at=user.email_confirmed_at,
            last_sign_in_at=user.last_sign_in_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    def create_user(self, email: str, password: str, username: str, full_name: str,
                    avatar_url: Optional[str] = None) -> UserRecord:
        email = email.lower()
        with database.SessionLocal() as db:
            if db.query(User).filter(User.email == email).first():
                raise DuplicateUserError("User already registered")
            user = User(
                email=email,
                hashed_password=get_password_hash(password),
                username=username,
                full_name=full_name,
                avatar_url=avatar_url or None,
                role=role_for_email(email),
                email_confirmed_at=None if email_confirmation_required() else datetime.utcnow(),
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return self._record(user)

    def authenticate(self, email: str, password: str) -> UserRecord:
        with database.SessionLocal() as db:
            user = db.query(User).filter(User.email == email.lower()).first()
            if not user or not verify_password(password, user.hashed_password):
                raise InvalidCredentialsError("Invalid login credentials")
            if user.email_confirmed_at is None:
                raise EmailNotConfirmedError("Email not confirmed")
            user.last_sign_in_at = datetime.utcnow()
            db.commit()
            db.refresh(user)
            return self._record(user)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with database.SessionLocal() as db:
            user = db.get(User, user_id)
            return self._record(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with database.SessionLocal() as db:
            user = db.query(User).filter(User.email == email.lower()).first()
            return self._record(user) if user else None

    def update_user(self, user_id: str, **changes) -> UserRecord:
        with database.SessionLocal() as db:
            user = db.get(User, user_id)
            if user is None:
                raise AuthError("User not found")
            for key, value in changes.items():
                if key in PROFILE_FIELDS + ADMIN_FIELDS:
                    setattr(user, key, value)
            db.commit()
            db.refresh(user)
            return self._record(user)

    def set_password(self, user_id: str, password: str) -> None:
        with database.SessionLocal() as db:
            user = db.get(User, user_id)
            if user is None:
                raise AuthError("User not found")
            user.hashed_password = get_password_hash(password)
            db.commit()

    def delete_user(self, user_id: str) -> bool:
        with database.SessionLocal() as db:
            user = db.get(User, user_id)
            if user is None:
                return False
            db.delete(user)
            db.commit()
            return True

    def list_users(self) -> List[UserRecord]:
        with database.SessionLocal() as db:
            return [self._record(u) for u in db.query(User).order_by(User.created_at.desc()).all()]

    def sign_out(self, user_id: str) -> None:
        # Tokens are stateless; there is no server-side session to end
        logger.info("User %s signed out", user_id)

    def upsert_oauth_user(self, email: str, full_name: Optional[str] = None,
                          avatar_url: Optional[str] = None) -> UserRecord:
        email = email.lower()
        with database.SessionLocal() as db:
            user = db.query(User).filter(User.email == email).first()
            if user is None:
                user = User(
                    email=email,
                    username=email.split("@")[0],
                    full_name=full_name,
                    avatar_url=avatar_url,
                    role=role_for_email(email),
                    email_confirmed_at=datetime.utcnow(),
                )
                db.add(user)
            elif avatar_url and not user.avatar_url:
                user.avatar_url = avatar_url
            user.last_sign_in_at = datetime.utcnow()
            db.commit()
            db.refresh(user)
            return self._record(user)


class InMemoryAuthProvider:
    """
    Development identity store kept in a process-local dict.

    Lets the rest of the service run without the managed backend. Users are
    lost on restart and are not shared between processes.
    """

    name = "memory"

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._hashes: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _by_email(self, email: str) -> Optional[UserRecord]:
        email = email.lower()
        for user in self._users.values():
            if user.email == email:
                return user
        return None

    def create_user(self, email: str, password: str, username: str, full_name: str,
                    avatar_url: Optional[str] = None) -> UserRecord:
        with self._lock:
            if self._by_email(email):
                raise DuplicateUserError("User already registered")
            user = UserRecord(
                id=str(uuid.uuid4()),
                email=email.lower(),
                username=username,
                full_name=full_name,
                avatar_url=avatar_url or None,
                role=role_for_email(email),
                email_confirmed_at=datetime.utcnow(),
            )
            self._users[user.id] = user
            self._hashes[user.id] = get_password_hash(password)
            return user

    def authenticate(self, email: str, password: str) -> UserRecord:
        user = self._by_email(email)
        if not user or not verify_password(password, self._hashes.get(user.id)):
            raise InvalidCredentialsError("Invalid login credentials")
        user.last_sign_in_at = datetime.utcnow()
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        return self._by_email(email)

    def update_user(self, user_id: str, **changes) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            raise AuthError("User not found")
        for key, value in changes.items():
            if key in PROFILE_FIELDS + ADMIN_FIELDS:
                setattr(user, key, value)
        user.updated_at = datetime.utcnow()
        return user

    def set_password(self, user_id: str, password: str) -> None:
        if user_id not in self._users:
            raise AuthError("User not found")
        self._hashes[user_id] = get_password_hash(password)

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            self._hashes.pop(user_id, None)
            return self._users.pop(user_id, None) is not None

    def list_users(self) -> List[UserRecord]:
        return sorted(self._users.values(), key=lambda u: u.created_at, reverse=True)

    def sign_out(self, user_id: str) -> None:
        logger.info("Development user %s signed out", user_id)

    def upsert_oauth_user(self, email: str, full_name: Optional[str] = None,
                          avatar_url: Optional[str] = None) -> UserRecord:
        raise NotImplementedError("OAuth sign-in is not available with development authentication")


_provider = None


def get_auth_provider():
    global _provider
    if _provider is None:
        if os.getenv("DEV_AUTH", "false").lower() == "true":
            _provider = InMemoryAuthProvider()
        else:
            _provider = DatabaseAuthProvider()
        logger.info("Identity backend: %s", _provider.name)
    return _provider


def set_auth_provider(provider) -> None:
    global _provider
    _provider = provider
