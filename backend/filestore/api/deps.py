import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from filestore.core.config import Settings, get_settings
from filestore.core.security import (
    InsufficientScopeError,
    KeySourceUnavailable,
    Principal,
    TokenError,
    TokenValidator,
)
from filestore.services.storage import StorageService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_storage(request: Request) -> StorageService:
    return request.app.state.storage


def get_token_validator(request: Request) -> TokenValidator:
    return request.app.state.token_validator


def get_app_settings() -> Settings:
    return get_settings()


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    validator: TokenValidator = Depends(get_token_validator),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return await validator.validate(credentials.credentials)
    except InsufficientScopeError as exc:
        logger.info("Rejected token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient scope",
        ) from None
    except KeySourceUnavailable as exc:
        logger.error("Cannot validate bearer token, identity provider unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable.",
        ) from None
    except TokenError as exc:
        logger.info("Rejected token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
