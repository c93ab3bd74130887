from jose import JWTError, jwt
from datetime import timedelta
import logging
from app.config import SECRET_KEY, ACCESS_TOKEN_EXPIRE_HOURS
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def create_access_token(data: dict, expires_delta: timedelta = None):
    """Sign an access token; the back-office login service uses the same key."""
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_access_token(token: str) -> dict | None:
    """
    Verify an access token.

    python-jose checks expiration while decoding and raises
    ExpiredSignatureError (a JWTError) for stale tokens.

    Returns:
        dict: Token payload if valid
        None: If token is expired or invalid
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        logger.debug("Access token verified successfully")
        return payload
    except JWTError as e:
        logger.warning(f"Access token verification failed: {str(e)}")
        return None
