from fastapi import APIRouter, Depends, status

from app.api.deps import get_account_service, get_current_user
from app.models import User
from app.schemas.users import StaffProfileRequest, StaffProfileResponse
from app.services.account_service import AccountService


router = APIRouter(prefix="/staff", tags=["Staff"])


@router.post("/profile", response_model=StaffProfileResponse, status_code=status.HTTP_201_CREATED)
def complete_staff_profile(
    data: StaffProfileRequest,
    current_user: User = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
):
    """
    Complete the staff profile that admin accounts are asked for on first login.
    """
    profile = accounts.complete_staff_profile(current_user, data.position, data.department)
    return StaffProfileResponse.model_validate(profile)
