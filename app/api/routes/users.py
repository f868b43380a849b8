import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from app.api.deps import get_account_service, get_revocation_store, require_admin
from app.core.exceptions import ForbiddenError, NotFoundError, ServiceUnavailableError
from app.models import User
from app.schemas.users import ActivationResponse, UpdateActivationRequest, UserSessionsResponse
from app.services.account_service import AccountService
from app.services.revocation_store import RevocationStore, RevocationStoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


@router.patch("/{user_id}/activation", response_model=ActivationResponse)
def update_activation(
    user_id: UUID,
    data: UpdateActivationRequest,
    admin: User = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
):
    """
    Activate or deactivate a user (Admin only).
    Deactivation also ends the user's sessions.
    """
    if user_id == admin.id and not data.is_active:
        raise ForbiddenError("Cannot deactivate your own account")

    user = accounts.set_activation(str(user_id), data.is_active, actor_id=str(admin.id), reason=data.reason)

    return ActivationResponse(
        id=user.id,
        is_active=user.is_active,
        message=f"User {'activated' if user.is_active else 'deactivated'} successfully",
    )


@router.get("/{user_id}/sessions", response_model=UserSessionsResponse)
def get_user_sessions(
    user_id: UUID,
    admin: User = Depends(require_admin),
    accounts: AccountService = Depends(get_account_service),
    store: RevocationStore = Depends(get_revocation_store),
):
    """
    Count the live refresh tokens of a user (Admin only).
    """
    if not accounts.users.find_by_id(user_id):
        raise NotFoundError("User")

    try:
        tokens = store.list_user_tokens(str(user_id))
    except RevocationStoreError as e:
        logger.error(f"Could not list sessions of user {user_id}: {e}")
        raise ServiceUnavailableError("Session store")

    return UserSessionsResponse(user_id=user_id, active_sessions=len(tokens))
