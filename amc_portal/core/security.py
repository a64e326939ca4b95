import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError
from passlib.context import CryptContext

from amc_portal.core.config import TokenConfig, settings
from amc_portal.core.exceptions import (
    ExpiredTokenError,
    MalformedTokenError,
    TokenSignatureError,
    ValidationError,
    WrongAudienceError,
    WrongIssuerError,
    WrongTokenTypeError,
)
from amc_portal.schemas.token import TokenPair

logger = structlog.get_logger(__name__)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Hash password using bcrypt (safe wrapper)"""
    password_bytes = password.encode("utf-8")

    if len(password_bytes) > MAX_PASSWORD_BYTES:
        raise ValidationError("Password is too long")

    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify plain password against hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def dummy_verify() -> None:
    """Spend the same hashing work as a real check when there is no user to check against."""
    pwd_context.dummy_verify()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _role_value(role) -> Optional[str]:
    return getattr(role, "value", role)


def new_token_id() -> str:
    """128 random bits, hex encoded."""
    return secrets.token_hex(16)


def token_identifier(payload: Optional[Dict[str, Any]], token: Optional[str] = None) -> Optional[str]:
    """Identifier used for blacklisting: jti, then sid/rid, then the token tail."""
    if payload:
        for claim in ("jti", "sid", "rid"):
            value = payload.get(claim)
            if value:
                return str(value)
    if token:
        return token[-20:]
    return None


class TokenCodec:
    """Mints and parses signed access/refresh claims sets.

    Pure apart from signing: no database access happens here.
    """

    def __init__(self, config: TokenConfig, clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(cls, app_settings=settings) -> "TokenCodec":
        return cls(app_settings.token_config())

    def now(self) -> datetime:
        return self._clock()

    def _encode(self, claims: Dict[str, Any], lifetime: timedelta) -> str:
        issued_at = self.now()
        to_encode = claims.copy()
        to_encode.update(
            {
                "iat": int(issued_at.timestamp()),
                "exp": int((issued_at + lifetime).timestamp()),
                "iss": self.config.issuer,
                "aud": self.config.audience,
            }
        )
        return jwt.encode(to_encode, self.config.secret, algorithm=self.config.algorithm)

    @staticmethod
    def _require_id(user) -> int:
        user_id = getattr(user, "id", None)
        if user_id is None:
            raise ValueError("Cannot mint a token for a user without an id")
        return user_id

    def mint_access_token(self, user, expires_delta: Optional[timedelta] = None) -> str:
        user_id = self._require_id(user)
        claims = {
            "sub": str(user_id),
            "id": user_id,
            "username": user.username,
            "role": _role_value(user.role),
            "email": user.email,
            "type": ACCESS_TOKEN,
            "sid": new_token_id(),
        }
        return self._encode(claims, expires_delta if expires_delta is not None else self.config.access_ttl)

    def mint_refresh_token(self, user, expires_delta: Optional[timedelta] = None) -> str:
        user_id = self._require_id(user)
        claims = {
            "sub": str(user_id),
            "id": user_id,
            "username": user.username,
            "type": REFRESH_TOKEN,
            "rid": new_token_id(),
        }
        return self._encode(claims, expires_delta if expires_delta is not None else self.config.refresh_ttl)

    def mint_pair(self, user) -> TokenPair:
        # Read the user once so both tokens describe the same snapshot.
        snapshot = _UserSnapshot(
            id=user.id,
            username=user.username,
            role=_role_value(user.role),
            email=user.email,
        )
        return TokenPair(
            access_token=self.mint_access_token(snapshot),
            refresh_token=self.mint_refresh_token(snapshot),
            expires_in=self.config.access_expires_in,
            refresh_expires_in=self.config.refresh_expires_in,
        )

    def verify(self, token: str, expected_type: str) -> Dict[str, Any]:
        """Return the verified claims or raise a typed token error."""
        if not token or not isinstance(token, str):
            raise MalformedTokenError(reason="empty token")

        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedTokenError(reason=str(exc)) from exc

        try:
            payload = jwt.decode(
                token,
                self.config.secret,
                algorithms=[self.config.algorithm],
                options={"verify_aud": False, "verify_iss": False, "verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise MalformedTokenError(reason=str(exc)) from exc
        except JWTError as exc:
            raise TokenSignatureError(reason=str(exc)) from exc

        # Expiry is measured on the codec clock, the same one used to mint.
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise MalformedTokenError(reason="token has no expiry")
        if self.now().timestamp() > exp:
            raise ExpiredTokenError(reason=f"expired at {exp}")

        if payload.get("iss") != self.config.issuer:
            raise WrongIssuerError(reason=f"issuer {payload.get('iss')!r}")

        audience = payload.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if self.config.audience not in audiences:
            raise WrongAudienceError(reason=f"audience {audience!r}")

        if payload.get("type") != expected_type:
            raise WrongTokenTypeError(reason=f"expected {expected_type}, got {payload.get('type')!r}")

        if payload.get("id") is None:
            raise MalformedTokenError(reason="token has no subject id")

        return payload

    def decode_unsafe(self, token: str) -> Optional[Dict[str, Any]]:
        """Parse header and payload without checking the signature. Never use for authorization."""
        if not token or not isinstance(token, str):
            return None
        try:
            return {
                "header": jwt.get_unverified_header(token),
                "payload": jwt.get_unverified_claims(token),
            }
        except JWTError:
            return None

    def expiration(self, token: str) -> Optional[datetime]:
        decoded = self.decode_unsafe(token)
        if not decoded:
            return None
        exp = decoded["payload"].get("exp")
        if not isinstance(exp, (int, float)):
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)

    def is_expired(self, token: str) -> bool:
        expires_at = self.expiration(token)
        if expires_at is None:
            return True
        return self.now() > expires_at

    def describe(self) -> Dict[str, str]:
        return {
            "accessTokenExpiry": self.config.access_expires_in,
            "refreshTokenExpiry": self.config.refresh_expires_in,
            "issuer": self.config.issuer,
            "audience": self.config.audience,
            "algorithm": self.config.algorithm,
        }


class _UserSnapshot:
    __slots__ = ("id", "username", "role", "email")

    def __init__(self, id, username, role, email):
        self.id = id
        self.username = username
        self.role = role
        self.email = email
