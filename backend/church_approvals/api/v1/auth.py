from fastapi import APIRouter, Depends

from church_approvals.core.deps import get_current_user
from church_approvals.models.user import User
from church_approvals.schemas.auth import UserOut

router = APIRouter()


@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return current_user
