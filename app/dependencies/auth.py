from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer
from app.utils.auth_token import verify_access_token
import logging

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


async def get_current_user(credentials=Depends(security)):
    """
    Extract and verify the current user from the JWT token.

    1. Extracts the Bearer token from the Authorization header
    2. Verifies the token signature and expiration
    3. Returns the caller identity or raises 401
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access denied. No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(credentials.credentials)

    if not payload:
        logger.warning("Token verification failed - token is expired or invalid")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired or invalid",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("user_id") or payload.get("id") or payload.get("sub")
    if not user_id:
        logger.error("Token missing required user_id")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing required user information",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {
        "user_id": str(user_id),
        "email": payload.get("email"),
        "role": payload.get("role"),
    }
