"""
Bearer authentication dependency.

Every ``/api`` route except the OAuth callbacks requires
``Authorization: Bearer <Firebase ID token>``. The verified uid is returned to
the handler and bound into the logging context.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, Request

from ..clients.firebase import IdentityServiceUnavailable, IdentityVerificationError
from ..errors import ProviderUnreachable, ServiceNotConfigured, Unauthorized
from ..services.container import ServiceContainer
from ..utils.logging import get_logger, set_request_context

logger = get_logger(__name__)


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the process-wide service container."""
    return request.app.state.container


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("Unauthorized: No token provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Unauthorized: Malformed authorization header")
    return token.strip()


async def get_current_user_id(
    container: Annotated[ServiceContainer, Depends(get_container)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    Verify the caller's identity token.

    Raises:
        Unauthorized: Missing, malformed or rejected token
        ServiceNotConfigured: Identity verification is not configured
    """
    token = extract_bearer_token(authorization)

    verifier = container.identity_verifier
    if verifier is None:
        raise ServiceNotConfigured("Identity verification is not configured")

    try:
        user_id = await verifier.verify(token)
    except IdentityVerificationError as e:
        logger.info("Rejected identity token", reason=str(e))
        raise Unauthorized("Unauthorized: Invalid token", log_detail=str(e)) from e
    except IdentityServiceUnavailable as e:
        raise ProviderUnreachable("Identity service", log_detail=str(e)) from e

    set_request_context(user_id=user_id)
    return user_id


CurrentUser = Annotated[str, Depends(get_current_user_id)]
Container = Annotated[ServiceContainer, Depends(get_container)]
