from datetime import datetime, timezone
from typing import List, Optional, Protocol

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from amc_portal.core.exceptions import ConflictError
from amc_portal.models.token_blacklist import TokenBlacklist
from amc_portal.models.user import User, UserRole
from amc_portal.models.user_session import UserSession

logger = structlog.get_logger(__name__)


def _naive_utc(value: datetime) -> datetime:
    """Columns are naive UTC; accept aware datetimes from callers."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CredentialStore(Protocol):
    def find_user_by_username_or_email(self, identifier: str, email: Optional[str] = None) -> Optional[User]: ...

    def find_user_by_id(self, user_id: int) -> Optional[User]: ...

    def insert_user(
        self,
        *,
        username: str,
        password_hash: str,
        role: UserRole = UserRole.USER,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
        department: Optional[str] = None,
    ) -> User: ...

    def record_login(self, user: User) -> None: ...

    def insert_blacklist_entry(
        self, token_id: str, expires_at: datetime, reason: str = "logout", user_id: Optional[int] = None
    ) -> bool: ...

    def is_blacklisted(self, token_id: str, now: datetime) -> bool: ...

    def insert_session_audit(
        self,
        user_id: int,
        token_fingerprint: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None: ...

    def mark_session_inactive(self, token_fingerprint: str) -> int: ...


class SqlCredentialStore:
    """Credential store over a request-scoped SQLAlchemy session.

    Every write commits on its own so a failed best-effort write never
    leaves the session in a half-flushed state for the caller.
    """

    def __init__(self, db: Session):
        self.db = db

    # ============= USERS =============

    def find_user_by_username_or_email(self, identifier: str, email: Optional[str] = None) -> Optional[User]:
        """Single lookup matching the username, or the email (defaults to the identifier)."""
        conditions = [User.username == identifier, User.email == (email or identifier)]
        return self.db.query(User).filter(or_(*conditions)).first()

    def find_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def insert_user(
        self,
        *,
        username: str,
        password_hash: str,
        role: UserRole = UserRole.USER,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
        department: Optional[str] = None,
    ) -> User:
        user = User(
            username=username,
            password_hash=password_hash,
            role=UserRole(role),
            email=email,
            full_name=full_name,
            phone=phone,
            department=department,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(reason="unique constraint on insert") from exc
        self.db.refresh(user)
        return user

    def record_login(self, user: User) -> None:
        user.updated_at = datetime.utcnow()
        self.db.commit()

    def list_users(self, limit: int = 100, offset: int = 0) -> List[User]:
        return self.db.query(User).order_by(User.id).offset(offset).limit(limit).all()

    def set_user_active(self, user_id: int, is_active: bool) -> Optional[User]:
        user = self.find_user_by_id(user_id)
        if not user:
            return None
        user.is_active = is_active
        self.db.commit()
        self.db.refresh(user)
        return user

    # ============= BLACKLIST =============

    def insert_blacklist_entry(
        self, token_id: str, expires_at: datetime, reason: str = "logout", user_id: Optional[int] = None
    ) -> bool:
        """Returns False when the identifier was already blacklisted."""
        existing = self.db.query(TokenBlacklist.id).filter(TokenBlacklist.token_id == token_id).first()
        if existing:
            return False

        self.db.add(
            TokenBlacklist(
                token_id=token_id,
                user_id=user_id,
                expires_at=_naive_utc(expires_at),
                reason=reason,
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent logout for the same token.
            self.db.rollback()
            return False
        return True

    def is_blacklisted(self, token_id: str, now: datetime) -> bool:
        return (
            self.db.query(TokenBlacklist.id)
            .filter(
                TokenBlacklist.token_id == token_id,
                TokenBlacklist.expires_at > _naive_utc(now),
            )
            .first()
            is not None
        )

    def purge_expired_blacklist(self, now: datetime) -> int:
        deleted = (
            self.db.query(TokenBlacklist)
            .filter(TokenBlacklist.expires_at < _naive_utc(now))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    # ============= SESSION AUDIT =============

    def insert_session_audit(
        self,
        user_id: int,
        token_fingerprint: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.db.add(
            UserSession(
                user_id=user_id,
                token_hash=token_fingerprint,
                expires_at=_naive_utc(expires_at),
                ip_address=ip_address,
                user_agent=(user_agent or "Unknown")[:255],
            )
        )
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def mark_session_inactive(self, token_fingerprint: str) -> int:
        updated = (
            self.db.query(UserSession)
            .filter(UserSession.token_hash == token_fingerprint, UserSession.is_active.is_(True))
            .update({"is_active": False}, synchronize_session=False)
        )
        self.db.commit()
        return updated

    def purge_expired_sessions(self, now: datetime) -> int:
        deleted = (
            self.db.query(UserSession)
            .filter(or_(UserSession.expires_at < _naive_utc(now), UserSession.is_active.is_(False)))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    def rollback(self) -> None:
        self.db.rollback()
