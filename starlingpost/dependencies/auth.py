# starlingpost/dependencies/auth.py
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from starlingpost.infrastructure.identity import FirebaseIdentity, IdentityError
from starlingpost.schemas.platform_schema import IdentityClaims

bearer_scheme = HTTPBearer(auto_error=False)


def get_identity() -> FirebaseIdentity:
    return FirebaseIdentity()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    identity: FirebaseIdentity = Depends(get_identity),
) -> IdentityClaims:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")
    try:
        return await identity.verify_token(credentials.credentials)
    except IdentityError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")


async def get_admin_user(user: IdentityClaims = Depends(get_current_user)) -> IdentityClaims:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin required")
    return user
