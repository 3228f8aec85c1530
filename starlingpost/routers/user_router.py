# starlingpost/routers/user_router.py
from fastapi import APIRouter, Depends
from starlingpost.dependencies.auth import get_current_user
from starlingpost.schemas.platform_schema import IdentityClaims

router = APIRouter(prefix="/users", tags=["users"])

@router.get("/me", response_model=IdentityClaims)
async def me(current_user: IdentityClaims = Depends(get_current_user)):
    return current_user
