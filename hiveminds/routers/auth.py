from fastapi import HTTPException, status, Depends
from fastapi.security import OAuth2PasswordBearer # For JWT extraction
from jose import JWTError, jwt # For JWT handling
from pydantic import BaseModel, ValidationError # For token payload validation
import logging

from .. import config

# Tokens are issued by the identity provider; this service only validates them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

logger = logging.getLogger(__name__)


# --- Token Payload Model ---
class TokenData(BaseModel):
    sub: str # Subject: the identity provider's user id


def decode_access_token(token: str) -> dict:
    """Validates signature, expiry and (if configured) audience. Raises JWTError on any failure."""
    if not config.JWT_SECRET_KEY:
        raise JWTError("JWT_SECRET_KEY is not configured")
    options = {} if config.JWT_AUDIENCE else {"verify_aud": False}
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        audience=config.JWT_AUDIENCE or None,
        options=options,
    )


# --- Secure Dependency for Authenticated User ---
async def get_current_user(token: str = Depends(oauth2_scheme)) -> str:
    """
    Dependency that verifies the JWT token from the Authorization header
    and returns the user's id (subject of the token).
    Raises HTTPException 401 if the token is invalid or expired.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized - user must be logged in",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        user_id: str | None = payload.get("sub")
        if user_id is None:
            logger.warning("Token payload missing 'sub' (user id) claim.")
            raise credentials_exception

        token_data = TokenData(sub=user_id)

    except JWTError as e:
        logger.warning(f"JWT Error during token decoding: {e}")
        raise credentials_exception
    except ValidationError as e:
        logger.warning(f"JWT payload validation error: {e}")
        raise credentials_exception

    return token_data.sub
