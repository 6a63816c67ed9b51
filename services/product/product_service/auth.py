"""
Product Service - request authorization

Token issuance and user validation belong to the user service and the
API gateway. This service only checks the shared secrets the gateway and
sibling services present:

  X-Service-Token: <SERVICE_TOKEN>    every /api/products route
  Authorization: Bearer <ADMIN_TOKEN> admin-only routes
"""

import hmac
import logging

from fastapi import Header, Request

from .errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)


def _bearer(value: str | None) -> str | None:
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return value.strip()


def _matches(presented: str, expected: str) -> bool:
    return bool(expected) and hmac.compare_digest(presented.encode(), expected.encode())


async def require_service_token(
    request: Request,
    x_service_token: str | None = Header(default=None),
) -> None:
    token = _bearer(x_service_token)
    if not token:
        raise UnauthorizedError("No service token provided")
    if not _matches(token, request.app.state.settings.service_token):
        logger.warning("Invalid service token on %s %s", request.method, request.url.path)
        raise UnauthorizedError("Invalid service token")


async def require_admin(
    request: Request,
    authorization: str | None = Header(default=None),
) -> None:
    token = _bearer(authorization)
    if not token or not _matches(token, request.app.state.settings.admin_token):
        raise ForbiddenError("Not authorized as admin")
