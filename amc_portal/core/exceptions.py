import enum
from typing import Any, Dict, List, Optional, Tuple

from fastapi import status


class AuthErrorKind(str, enum.Enum):
    VALIDATION = "validation_error"
    CONFLICT = "conflict"
    AUTHENTICATION = "authentication_failed"
    ACCOUNT_DISABLED = "account_disabled"
    MISSING_TOKEN = "missing_token"
    EXPIRED_TOKEN = "token_expired"
    MALFORMED_TOKEN = "malformed_token"
    INVALID_SIGNATURE = "invalid_signature"
    WRONG_ISSUER = "wrong_issuer"
    WRONG_AUDIENCE = "wrong_audience"
    WRONG_TOKEN_TYPE = "wrong_token_type"
    REVOKED_TOKEN = "token_revoked"
    USER_NOT_FOUND = "user_not_found"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INTERNAL = "internal_error"


# Exactly one status code and client-facing message per kind.
ERROR_RESPONSES: Dict[AuthErrorKind, Tuple[int, str]] = {
    AuthErrorKind.VALIDATION: (status.HTTP_400_BAD_REQUEST, "Invalid input data"),
    AuthErrorKind.CONFLICT: (status.HTTP_409_CONFLICT, "Username or email already exists"),
    AuthErrorKind.AUTHENTICATION: (status.HTTP_401_UNAUTHORIZED, "Invalid username or password"),
    AuthErrorKind.ACCOUNT_DISABLED: (
        status.HTTP_401_UNAUTHORIZED,
        "Your account has been disabled. Please contact an administrator.",
    ),
    AuthErrorKind.MISSING_TOKEN: (status.HTTP_401_UNAUTHORIZED, "No token provided"),
    AuthErrorKind.EXPIRED_TOKEN: (status.HTTP_401_UNAUTHORIZED, "Token expired. Please login again"),
    AuthErrorKind.MALFORMED_TOKEN: (status.HTTP_401_UNAUTHORIZED, "Invalid token"),
    AuthErrorKind.INVALID_SIGNATURE: (status.HTTP_401_UNAUTHORIZED, "Invalid token"),
    AuthErrorKind.WRONG_ISSUER: (status.HTTP_401_UNAUTHORIZED, "Invalid token"),
    AuthErrorKind.WRONG_AUDIENCE: (status.HTTP_401_UNAUTHORIZED, "Invalid token"),
    AuthErrorKind.WRONG_TOKEN_TYPE: (status.HTTP_401_UNAUTHORIZED, "Invalid token type"),
    AuthErrorKind.REVOKED_TOKEN: (status.HTTP_401_UNAUTHORIZED, "Token has been revoked"),
    AuthErrorKind.USER_NOT_FOUND: (status.HTTP_401_UNAUTHORIZED, "User not found"),
    AuthErrorKind.FORBIDDEN: (status.HTTP_403_FORBIDDEN, "Insufficient permissions"),
    AuthErrorKind.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Resource not found"),
    AuthErrorKind.INTERNAL: (status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"),
}


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class AuthError(APIError):
    """Base for the closed set of errors raised by the auth core.

    ``message`` is what the client sees; ``reason`` is an optional internal
    detail for logs only.
    """

    kind: AuthErrorKind = AuthErrorKind.INTERNAL

    def __init__(self, message: Optional[str] = None, *, reason: Optional[str] = None,
                 errors: Optional[List[Any]] = None):
        status_code, default_message = ERROR_RESPONSES[self.kind]
        super().__init__(status_code, message or default_message, errors)
        self.reason = reason


class ValidationError(AuthError):
    kind = AuthErrorKind.VALIDATION


class ConflictError(AuthError):
    kind = AuthErrorKind.CONFLICT


class AuthenticationError(AuthError):
    kind = AuthErrorKind.AUTHENTICATION


class AccountDisabledError(AuthError):
    kind = AuthErrorKind.ACCOUNT_DISABLED


class MissingTokenError(AuthError):
    kind = AuthErrorKind.MISSING_TOKEN


class ExpiredTokenError(AuthError):
    kind = AuthErrorKind.EXPIRED_TOKEN


class InvalidTokenError(AuthError):
    kind = AuthErrorKind.MALFORMED_TOKEN


class MalformedTokenError(InvalidTokenError):
    kind = AuthErrorKind.MALFORMED_TOKEN


class TokenSignatureError(InvalidTokenError):
    kind = AuthErrorKind.INVALID_SIGNATURE


class WrongIssuerError(InvalidTokenError):
    kind = AuthErrorKind.WRONG_ISSUER


class WrongAudienceError(InvalidTokenError):
    kind = AuthErrorKind.WRONG_AUDIENCE


class WrongTokenTypeError(InvalidTokenError):
    kind = AuthErrorKind.WRONG_TOKEN_TYPE


class RevokedTokenError(AuthError):
    kind = AuthErrorKind.REVOKED_TOKEN


class UserNotFoundError(AuthError):
    kind = AuthErrorKind.USER_NOT_FOUND


class ForbiddenError(AuthError):
    kind = AuthErrorKind.FORBIDDEN


class NotFoundError(AuthError):
    kind = AuthErrorKind.NOT_FOUND


class InternalError(AuthError):
    kind = AuthErrorKind.INTERNAL
