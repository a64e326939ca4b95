from functools import lru_cache
from typing import Optional

import structlog
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from amc_portal.core.config import settings
from amc_portal.core.exceptions import AuthError, ForbiddenError, InternalError, MissingTokenError
from amc_portal.core.security import TokenCodec
from amc_portal.db.session import get_db
from amc_portal.models.user import User, UserRole
from amc_portal.schemas.user import UserResponse
from amc_portal.services.credential_store import SqlCredentialStore
from amc_portal.services.session_manager import ClientInfo, Identity, SessionManager

logger = structlog.get_logger(__name__)


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec.from_settings(settings)


def get_credential_store(db: Session = Depends(get_db)) -> SqlCredentialStore:
    return SqlCredentialStore(db)


def get_session_manager(
    store: SqlCredentialStore = Depends(get_credential_store),
    codec: TokenCodec = Depends(get_token_codec),
) -> SessionManager:
    return SessionManager(store, codec)


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def extract_bearer_token(request: Request) -> Optional[str]:
    """Return the token from ``Authorization: Bearer <token>``, or None."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    scheme, _, token = auth_header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def get_current_identity(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
) -> Identity:
    """Authenticate the request and attach the user to ``request.state``."""
    token = extract_bearer_token(request)
    if not token:
        raise MissingTokenError()

    try:
        identity = manager.resolve_identity(token)
        request.state.user = UserResponse.model_validate(identity.user)
    except AuthError as exc:
        logger.info("auth_rejected", kind=exc.kind.value, reason=exc.reason, path=request.url.path)
        raise
    except Exception as exc:
        logger.exception("auth_gate_error", error_type=type(exc).__name__, path=request.url.path)
        raise InternalError("Authentication error") from exc

    request.state.token = token
    return identity


def get_current_user(identity: Identity = Depends(get_current_identity)) -> User:
    return identity.user


def require_role(*roles):
    """Second-stage check; expects get_current_identity to have run first."""
    if len(roles) == 1 and isinstance(roles[0], (list, tuple, set)):
        roles = tuple(roles[0])
    allowed = [getattr(role, "value", role) for role in roles]

    def role_checker(request: Request) -> UserResponse:
        current_user = getattr(request.state, "user", None)
        if current_user is None:
            raise MissingTokenError("Authentication required")

        if current_user.role not in allowed:
            logger.warning(
                "role_forbidden",
                user_id=current_user.id,
                role=current_user.role,
                required=allowed,
                path=request.url.path,
            )
            raise ForbiddenError(f"Insufficient permissions. Required role: {' or '.join(allowed)}")

        return current_user

    return role_checker


require_admin = require_role(UserRole.ADMIN)
