from fastapi import APIRouter

from roshnii.schemas.user import UserResponse
from roshnii.utils.auth import CurrentUser

router = APIRouter(tags=["Users"])


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUser) -> UserResponse:
    return UserResponse.model_validate(current_user)
