from typing import Any, Dict

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import AuthenticationError, AuthorizationError
from storefront.core.metrics import AUTH_TOKEN_VALIDATION_TOTAL, PERMISSION_CHECK_TOTAL

bearer_scheme = HTTPBearer(auto_error=False)


def authentication_get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Dict[str, Any]:
    AUTH_TOKEN_VALIDATION_TOTAL.labels(
        service=settings.SERVICE_NAME,
        result="attempt",
    ).inc()
    if credentials is None:
        logger.warning("Request without bearer token")
        AUTH_TOKEN_VALIDATION_TOTAL.labels(
            service=settings.SERVICE_NAME,
            result="missing",
        ).inc()
        raise AuthenticationError("Authentication required")

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Access token expired during validation")
        AUTH_TOKEN_VALIDATION_TOTAL.labels(
            service=settings.SERVICE_NAME,
            result="expired",
        ).inc()
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        logger.error("Invalid access token during validation")
        AUTH_TOKEN_VALIDATION_TOTAL.labels(
            service=settings.SERVICE_NAME,
            result="invalid",
        ).inc()
        raise AuthenticationError("Invalid token")

    logger.info(
        "Access token validated for user_id='{user_id}', name='{name}'",
        user_id=payload.get("id"),
        name=payload.get("sub"),
    )
    AUTH_TOKEN_VALIDATION_TOTAL.labels(
        service=settings.SERVICE_NAME,
        result="success",
    ).inc()
    return {
        "id": payload.get("id"),
        "name": payload.get("sub"),
        "email": payload.get("email"),
        "role_name": payload.get("role_name"),
        "permissions": payload.get("permissions", []),
    }


def has_permission(user: Dict[str, Any], permission: str) -> bool:
    return permission in (user.get("permissions") or [])


def permission_required(required_permission: str):
    def _checker(user: Dict[str, Any] = Depends(authentication_get_current_user)) -> Dict[str, Any]:
        if not has_permission(user, required_permission):
            logger.warning(
                "Permission '{required_permission}' denied for user_id='{user_id}'",
                required_permission=required_permission,
                user_id=user.get("id"),
            )
            PERMISSION_CHECK_TOTAL.labels(
                service=settings.SERVICE_NAME,
                permission=required_permission,
                result="denied",
            ).inc()
            raise AuthorizationError(f"Permission '{required_permission}' required")

        PERMISSION_CHECK_TOTAL.labels(
            service=settings.SERVICE_NAME,
            permission=required_permission,
            result="granted",
        ).inc()
        return user

    return _checker
