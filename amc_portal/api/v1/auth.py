from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from amc_portal.api.deps import (
    extract_bearer_token,
    get_client_info,
    get_current_identity,
    get_current_user,
    get_session_manager,
)
from amc_portal.core.exceptions import ValidationError
from amc_portal.models.user import User
from amc_portal.schemas.token import LogoutRequest, RefreshRequest
from amc_portal.schemas.user import UserCreate, UserLogin, UserResponse
from amc_portal.services.session_manager import AuthResult, ClientInfo, Identity, SessionManager
from amc_portal.utils.response import success

router = APIRouter()


def _auth_payload(result: AuthResult) -> dict:
    return {"user": result.user_view(), **result.tokens.as_response()}


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    description="""
Creates a new user account, signs it in and returns a token pair.

Validation:
1. Username and email must be unique
2. Password must contain upper and lower case letters, a digit and a special character
3. Password is hashed before persistence
""",
    responses={
        201: {"description": "Registration successful"},
        400: {"description": "Validation error"},
        409: {"description": "Username or email already exists"},
    },
)
def register(
    user_in: UserCreate,
    client: ClientInfo = Depends(get_client_info),
    manager: SessionManager = Depends(get_session_manager),
):
    result = manager.register(user_in, client)
    return success(data=_auth_payload(result), message="User registered successfully")


@router.post(
    "/login",
    response_model=dict,
    summary="Login user",
    description="""
Authenticates a user by username or email and returns a token pair.

Behavior:
1. Validates credentials
2. Ensures user is active
3. Issues access and refresh tokens
""",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials or account disabled"},
    },
)
def login(
    credentials: UserLogin,
    client: ClientInfo = Depends(get_client_info),
    manager: SessionManager = Depends(get_session_manager),
):
    result = manager.login(credentials.username, credentials.password, client)
    return success(data=_auth_payload(result), message="Login successful")


@router.post("/refresh", response_model=dict)
def refresh_token(
    payload: Optional[RefreshRequest] = None,
    manager: SessionManager = Depends(get_session_manager),
):
    if payload is None or not payload.refresh_token:
        raise ValidationError("Refresh token is required")

    tokens = manager.refresh(payload.refresh_token)
    return success(data=tokens.as_response(), message="Token refreshed successfully")


@router.post("/logout", response_model=dict)
def logout(
    request: Request,
    payload: Optional[LogoutRequest] = None,
    manager: SessionManager = Depends(get_session_manager),
):
    manager.logout(
        access_token=extract_bearer_token(request),
        refresh_token=payload.refresh_token if payload else None,
    )
    return success(message="Logout successful")


@router.get("/me", response_model=dict)
def get_current_user_profile(current_user: User = Depends(get_current_user)):
    """Get current user profile"""
    return success(
        data={"user": UserResponse.model_validate(current_user), "authenticated": True},
        message="User profile retrieved",
    )


@router.get("/verify", response_model=dict)
def verify_token(identity: Identity = Depends(get_current_identity)):
    claims = identity.claims
    expires_at = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
    return success(
        data={
            "valid": True,
            "user": {
                "id": claims["id"],
                "username": claims.get("username"),
                "role": claims.get("role"),
                "email": claims.get("email"),
            },
            "expiresAt": expires_at.isoformat().replace("+00:00", "Z"),
        },
        message="Token is valid",
    )
