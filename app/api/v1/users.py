"""Profile routes for the authenticated caller."""

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.v1.auth import ServiceDep, _unwrap, get_current_user
from app.schemas.auth import CurrentUser, UpdateUserRequest, UserDto

router = APIRouter()

CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]


@router.get("/me", response_model=UserDto)
def get_me(current_user: CurrentUserDep, service: ServiceDep) -> UserDto:
    """Return the stored profile of the caller. 404 if the account no longer exists."""
    return _unwrap(service.get_profile(current_user.id))


@router.patch("/me", response_model=UserDto)
def update_me(body: UpdateUserRequest, current_user: CurrentUserDep, service: ServiceDep) -> UserDto:
    return _unwrap(service.update_user_name(current_user.id, body.user_name))
