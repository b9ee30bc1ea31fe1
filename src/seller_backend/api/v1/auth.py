"""Authentication endpoints."""

from fastapi import APIRouter, Depends

from seller_backend.core.auth import TokenData, create_access_token, get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/token/{user_id}")
async def get_token(user_id: str) -> dict[str, str]:
    """Create a test token for a user.

    WARNING: This endpoint is for development only. In production, tokens
    are issued by the dashboard's own sign-in flow.
    """
    token = create_access_token(user_id)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me")
async def read_current_user(
    current_user: TokenData = Depends(get_current_user),
) -> dict[str, str]:
    """Echo the authenticated user and when their token expires."""
    return {"user_id": current_user.user_id, "token_expires": str(current_user.exp)}
