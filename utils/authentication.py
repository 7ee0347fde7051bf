"""
Authentication Module

Derives the owner's identity for owner-only routes from trusted sources only:
the service API key (X-API-Key) plus a Supabase-issued JWT. Client-supplied
user ids are never trusted. Share-token routes do not use this module; the
token itself is the credential there.

Also provides the bearer-secret check used by the scheduled snapshot job.
"""

import hmac
import logging
from typing import Optional

import jwt
from fastapi import Header, HTTPException

from utils.settings import get_settings

logger = logging.getLogger(__name__)


class AuthenticationService:
    """Verifies credentials against the configured secrets."""

    @staticmethod
    def get_user_id_from_auth_token(auth_token: str) -> Optional[str]:
        """
        Derive the user id from a Supabase access token.

        Args:
            auth_token: JWT without the "Bearer " prefix

        Returns:
            User id (the `sub` claim) if the token is valid, None otherwise
        """
        supabase_jwt_secret = get_settings().supabase_jwt_secret

        if not auth_token:
            logger.warning("No auth token provided")
            return None

        if not supabase_jwt_secret:
            logger.error("SUPABASE_JWT_SECRET not configured")
            return None

        try:
            payload = jwt.decode(
                auth_token,
                supabase_jwt_secret,
                algorithms=["HS256"],
                audience="authenticated",
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Token has expired")
            return None
        except jwt.InvalidAudienceError:
            logger.warning("Invalid token audience")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        user_id = payload.get("sub")
        if not user_id:
            logger.warning("Token valid but missing 'sub' (user ID)")
            return None
        return user_id

    @staticmethod
    def secrets_match(provided: Optional[str], expected: Optional[str]) -> bool:
        """Constant-time comparison; an unset expected secret never matches."""
        if not provided or not expected:
            return False
        return hmac.compare_digest(provided.encode(), expected.encode())


def _strip_bearer(value: Optional[str]) -> Optional[str]:
    if value and value.startswith("Bearer "):
        return value[7:]
    return value


def get_authenticated_user_id(
    api_key: Optional[str] = Header(None, alias="X-API-Key"),
    auth_token: Optional[str] = Header(None, alias="Authorization"),
) -> str:
    """
    FastAPI dependency returning the authenticated owner's user id.

    Raises:
        HTTPException(401): If the API key or JWT is missing or invalid
    """
    if not api_key:
        logger.warning("Authentication failed - no API key provided")
        raise HTTPException(status_code=401, detail="Authentication required - API key missing")

    if not AuthenticationService.secrets_match(api_key, get_settings().backend_api_key):
        logger.warning("Authentication failed - invalid API key")
        raise HTTPException(status_code=401, detail="Authentication required - invalid API key")

    user_id = AuthenticationService.get_user_id_from_auth_token(_strip_bearer(auth_token))
    if user_id:
        return user_id

    logger.warning("Authentication failed - no valid JWT token provided")
    raise HTTPException(status_code=401, detail="Authentication required - valid JWT token required")


def verify_cron_secret(authorization: Optional[str] = Header(None, alias="Authorization")) -> None:
    """
    FastAPI dependency guarding scheduled jobs with `Authorization: Bearer <CRON_SECRET>`.

    Raises:
        HTTPException(401): If the secret is missing, wrong, or not configured
    """
    if not AuthenticationService.secrets_match(_strip_bearer(authorization), get_settings().cron_secret):
        logger.warning("Rejected scheduled job call - invalid cron secret")
        raise HTTPException(status_code=401, detail="Unauthorized")
