from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fastapi import Depends, HTTPException, status
from config import config
import logging
import secrets

logger = logging.getLogger(__name__)

# Tokens come from VALID_TOKENS (comma separated) in the environment
bearer_scheme = HTTPBearer()


def is_valid_token(token: str) -> bool:
    return any(secrets.compare_digest(token, valid) for valid in config.valid_tokens)


def get_current_client(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)):
    """Guards every route, including manual sweeps. Returns the caller's token."""
    if credentials.scheme != "Bearer" or not is_valid_token(credentials.credentials):
        logger.info("rejected request with invalid bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing Bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
