import structlog
from fastapi import APIRouter, Depends, Query

from amc_portal.api.deps import get_credential_store, get_current_identity, require_admin
from amc_portal.core.exceptions import NotFoundError, ValidationError
from amc_portal.schemas.user import UserResponse, UserStatusUpdate
from amc_portal.services.credential_store import SqlCredentialStore
from amc_portal.utils.response import success

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(get_current_identity), Depends(require_admin)])


@router.get("/", response_model=dict)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: SqlCredentialStore = Depends(get_credential_store),
):
    """List user accounts (admin only)"""
    users = store.list_users(limit=limit, offset=(page - 1) * limit)
    return success(
        data=[UserResponse.model_validate(user) for user in users],
        message="Users retrieved",
    )


@router.patch("/{user_id}/status", response_model=dict)
def update_user_status(
    user_id: int,
    status_update: UserStatusUpdate,
    current_user: UserResponse = Depends(require_admin),
    store: SqlCredentialStore = Depends(get_credential_store),
):
    """Activate or deactivate an account. Deactivation takes effect on the user's next request."""
    if user_id == current_user.id and not status_update.is_active:
        raise ValidationError("You cannot deactivate your own user")

    user = store.set_user_active(user_id, status_update.is_active)
    if not user:
        raise NotFoundError("User not found")

    logger.info(
        "user_status_changed",
        admin_user_id=current_user.id,
        user_id=user.id,
        is_active=user.is_active,
    )
    return success(data=UserResponse.model_validate(user), message="User status updated")
