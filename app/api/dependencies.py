"""
FastAPI Dependencies - Viewer authentication and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from app.config import settings
from app.exceptions import (
    USER_FACING_MESSAGES,
    AuthenticationRequiredError,
    ExternalErrorCategory,
)
from app.models.domain import ViewerContext
from app.services.payment_provider import PaymentProvider
from app.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

# Bearer token scheme for JWT auth
bearer_scheme = HTTPBearer(auto_error=False)


def decode_viewer_token(token: str) -> ViewerContext:
    """
    Verify an HS256 access token from the auth provider.

    The subject claim carries the user id.

    Raises:
        AuthenticationRequiredError: If the token is invalid or has no usable subject
    """
    options = {"require": ["sub", "exp"]}
    try:
        if settings.auth_jwt_audience:
            claims = jwt.decode(
                token,
                settings.auth_jwt_secret,
                algorithms=["HS256"],
                audience=settings.auth_jwt_audience,
                options=options,
            )
        else:
            claims = jwt.decode(
                token,
                settings.auth_jwt_secret,
                algorithms=["HS256"],
                options={**options, "verify_aud": False},
            )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationRequiredError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.info("viewer_token_rejected", error=str(exc))
        raise AuthenticationRequiredError("Invalid token") from exc

    try:
        user_id = UUID(str(claims["sub"]))
    except ValueError as exc:
        raise AuthenticationRequiredError("Invalid token subject") from exc

    email = claims.get("email")
    return ViewerContext(user_id=user_id, email=email if isinstance(email, str) else None)


async def get_optional_viewer(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> ViewerContext | None:
    """
    Resolve the viewer when a valid token is present.

    Missing or invalid tokens read as anonymous so public pages keep working.
    """
    if credentials is None:
        return None
    try:
        return decode_viewer_token(credentials.credentials)
    except AuthenticationRequiredError:
        return None


async def require_viewer(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> ViewerContext:
    """
    FastAPI dependency requiring an authenticated viewer.

    Raises:
        HTTPException 401 if no token or invalid token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_viewer_token(credentials.credentials)
    except AuthenticationRequiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_payment_provider() -> PaymentProvider:
    """Stripe provider built from settings; 502 when Stripe is not configured."""
    if not settings.stripe_configured:
        logger.error("stripe_not_configured")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=USER_FACING_MESSAGES[ExternalErrorCategory.CONFIGURATION],
        )
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
