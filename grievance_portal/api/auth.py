"""Session API Routes."""

from fastapi import APIRouter

from ..core import CurrentUserDep
from ..schemas import MeResponse, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=MeResponse, summary="Current user profile")
async def me(current_user: CurrentUserDep):
    """Return the profile the session credential resolves to."""
    return MeResponse(user=UserResponse.model_validate(current_user.user))
