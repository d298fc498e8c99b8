"""
Request authentication for the API.

Operators and users present an HS256 bearer token. The cron trigger
presents a shared secret header instead.
"""
import hmac
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
import structlog
from fastapi import Depends, Header, HTTPException, status

from crown_settlement.config import Settings, get_settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    uid: str
    is_operator: bool = False


def _bearer_token(authorization: Optional[str]) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization Bearer token.",
        )
    return token.strip()


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    """
    Verify a bearer token.

    Raises:
        HTTPException: 401 if the token is invalid, expired or has no subject
    """
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
        )
    except jwt.PyJWTError as e:
        logger.warning("bearer_token_rejected", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token.",
        )

    if not claims.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")
    return claims


def is_operator(claims: Dict[str, Any], settings: Settings) -> bool:
    # Allow-list membership or an explicit admin claim
    return claims.get("admin") is True or claims["sub"] in settings.get_operator_uids_list()


async def require_user(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """Any authenticated caller."""
    claims = decode_token(_bearer_token(authorization), settings)
    return Principal(uid=claims["sub"], is_operator=is_operator(claims, settings))


async def require_operator(principal: Principal = Depends(require_user)) -> Principal:
    """Authenticated caller on the operator allow-list."""
    if not principal.is_operator:
        logger.warning("operator_access_denied", uid=principal.uid)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized (admin only).",
        )
    return principal


async def require_cron_secret(
    x_cron_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Shared-secret check for the scheduler trigger."""
    if not settings.cron_secret:
        logger.error("cron_secret_not_configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    if not x_cron_secret or not hmac.compare_digest(
        x_cron_secret.encode("utf-8"), settings.cron_secret.encode("utf-8")
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
