from fastapi import APIRouter, Depends
from pydantic import BaseModel

from scheduler.auth.dependencies import get_current_user
from scheduler.models.user import User

router = APIRouter(tags=["auth"])


class CurrentUserResponse(BaseModel):
    id: int
    email: str
    name: str | None = None
    role: str
    grade_id: int | None = None

    class Config:
        from_attributes = True


@router.get("/me", response_model=CurrentUserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
