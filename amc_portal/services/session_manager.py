"""
Session lifecycle over an access/refresh token pair.

Anonymous -> Authenticated (access valid) -> access expired, refresh valid
-> Refreshed (new pair) -> Revoked (blacklisted).

Refresh does not invalidate the refresh token it was given: any number of
refreshes may be made with a still-valid, non-revoked refresh token.
"""

import contextlib
import hashlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import structlog

from amc_portal.core.exceptions import (
    AccountDisabledError,
    AuthenticationError,
    ConflictError,
    RevokedTokenError,
    UserNotFoundError,
)
from amc_portal.core.security import (
    ACCESS_TOKEN,
    REFRESH_TOKEN,
    TokenCodec,
    dummy_verify,
    hash_password,
    token_identifier,
    verify_password,
)
from amc_portal.models.user import User, UserRole
from amc_portal.schemas.token import TokenPair
from amc_portal.schemas.user import UserCreate, UserResponse
from amc_portal.services.credential_store import CredentialStore

logger = structlog.get_logger(__name__)


def token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class ClientInfo:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class AuthResult:
    user: User
    tokens: TokenPair

    def user_view(self) -> UserResponse:
        return UserResponse.model_validate(self.user)


@dataclass
class Identity:
    user: User
    claims: Dict[str, Any]


class SessionManager:
    def __init__(self, store: CredentialStore, codec: TokenCodec):
        self.store = store
        self.codec = codec

    # ============= ISSUE =============

    def register(self, user_in: UserCreate, client: Optional[ClientInfo] = None) -> AuthResult:
        """Create an account and sign it in.

        Raises:
            ConflictError: username or email already taken.
        """
        existing = self.store.find_user_by_username_or_email(
            user_in.username, email=user_in.email or user_in.username
        )
        if existing:
            logger.warning("registration_conflict", existing_user_id=existing.id)
            raise ConflictError()

        user = self.store.insert_user(
            username=user_in.username,
            password_hash=hash_password(user_in.password),
            role=UserRole(user_in.role),
            email=user_in.email,
            full_name=user_in.full_name,
            phone=user_in.phone,
            department=user_in.department,
        )

        tokens = self.codec.mint_pair(user)
        self._record_session(user, tokens.access_token, client)

        logger.info("user_registered", user_id=user.id, role=user.role.value)
        return AuthResult(user=user, tokens=tokens)

    def login(self, identifier: str, password: str, client: Optional[ClientInfo] = None) -> AuthResult:
        """Authenticate by username or email.

        Unknown users and wrong passwords raise the same AuthenticationError;
        only the log line tells them apart.

        Raises:
            AuthenticationError: credentials do not match an account.
            AccountDisabledError: credentials are valid but the account is inactive.
        """
        user = self.store.find_user_by_username_or_email(identifier)

        if not user:
            dummy_verify()
            logger.warning("login_failed", reason="unknown_user")
            raise AuthenticationError(reason="unknown user")

        if not verify_password(password, user.password_hash):
            logger.warning("login_failed", reason="password_mismatch", user_id=user.id)
            raise AuthenticationError(reason="password mismatch")

        if not user.is_active:
            logger.warning("login_failed", reason="account_disabled", user_id=user.id)
            raise AccountDisabledError()

        tokens = self.codec.mint_pair(user)
        self._record_session(user, tokens.access_token, client)
        self._best_effort("last_login_update_failed", self.store.record_login, user, user_id=user.id)

        logger.info("user_logged_in", user_id=user.id)
        return AuthResult(user=user, tokens=tokens)

    def refresh(self, refresh_token: str) -> TokenPair:
        """Mint a new pair from a refresh token.

        Raises:
            RevokedTokenError, ExpiredTokenError, InvalidTokenError,
            UserNotFoundError, AccountDisabledError
        """
        self._ensure_not_revoked(refresh_token, "Refresh token has been revoked")
        claims = self.codec.verify(refresh_token, REFRESH_TOKEN)

        user = self.store.find_user_by_id(claims["id"])
        if not user:
            logger.warning("refresh_failed", reason="user_not_found", user_id=claims["id"])
            raise UserNotFoundError()
        if not user.is_active:
            logger.warning("refresh_failed", reason="account_disabled", user_id=user.id)
            raise AccountDisabledError("User account is disabled")

        tokens = self.codec.mint_pair(user)
        logger.info("token_refreshed", user_id=user.id)
        return tokens

    # ============= REVOKE =============

    def logout(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None,
               reason: str = "logout") -> None:
        """Blacklist whichever tokens were presented. Never raises."""
        for token in (access_token, refresh_token):
            if token:
                self.revoke(token, reason=reason)

        if access_token:
            self._best_effort(
                "session_deactivate_failed",
                self.store.mark_session_inactive,
                token_fingerprint(access_token),
            )

        logger.info(
            "user_logged_out",
            access_token_presented=bool(access_token),
            refresh_token_presented=bool(refresh_token),
        )

    def revoke(self, token: str, reason: str = "logout") -> bool:
        """Blacklist a single token until its natural expiry.

        Returns True only when a new blacklist entry was written. Repeating
        a revocation, or revoking an unreadable token, returns False.
        """
        decoded = self.codec.decode_unsafe(token)
        if not decoded:
            logger.info("token_revoke_skipped", reason="undecodable")
            return False

        payload = decoded["payload"]
        expires_at = self.codec.expiration(token)
        if expires_at is None:
            logger.info("token_revoke_skipped", reason="no_expiry")
            return False

        user_id = payload.get("id")
        revoked = self._best_effort(
            "token_revoke_failed",
            self.store.insert_blacklist_entry,
            token_identifier(payload, token),
            expires_at,
            reason,
            user_id if isinstance(user_id, int) else None,
            token_type=payload.get("type"),
        )
        if revoked:
            logger.info("token_revoked", token_type=payload.get("type"), user_id=user_id, reason=reason)
        return revoked

    # ============= VERIFY =============

    def verify_access(self, access_token: str) -> Dict[str, Any]:
        return self.resolve_identity(access_token).claims

    def resolve_identity(self, access_token: str) -> Identity:
        """Full access check: blacklist, signature and claims, then the live user row.

        Raises:
            RevokedTokenError, ExpiredTokenError, InvalidTokenError,
            UserNotFoundError, AccountDisabledError
        """
        self._ensure_not_revoked(access_token, "Token has been revoked")
        claims = self.codec.verify(access_token, ACCESS_TOKEN)

        user = self.store.find_user_by_id(claims["id"])
        if not user:
            raise UserNotFoundError()
        if not user.is_active:
            raise AccountDisabledError("User account is disabled")

        return Identity(user=user, claims=claims)

    # ============= HELPERS =============

    def _ensure_not_revoked(self, token: str, message: str) -> None:
        decoded = self.codec.decode_unsafe(token)
        if not decoded:
            # Left to the codec to report as malformed.
            return
        token_id = token_identifier(decoded["payload"], token)
        if self.store.is_blacklisted(token_id, self.codec.now()):
            logger.warning("revoked_token_used", token_type=decoded["payload"].get("type"))
            raise RevokedTokenError(message)

    def _record_session(self, user: User, access_token: str, client: Optional[ClientInfo]) -> bool:
        client = client or ClientInfo()
        return self._best_effort(
            "session_audit_failed",
            self.store.insert_session_audit,
            user.id,
            token_fingerprint(access_token),
            self.codec.expiration(access_token),
            client.ip_address,
            client.user_agent,
            user_id=user.id,
        )

    def _best_effort(self, event: str, operation: Callable[..., Any], *args, **log_context) -> bool:
        """Run a side effect whose failure must not fail the caller."""
        try:
            result = operation(*args)
        except Exception as exc:
            logger.warning(event, error_type=type(exc).__name__, **log_context)
            rollback = getattr(self.store, "rollback", None)
            if rollback:
                with contextlib.suppress(Exception):
                    rollback()
            return False
        return result is not False
