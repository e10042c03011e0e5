"""
Health check endpoints for service monitoring.

Provides /healthz endpoints for load balancers and monitoring systems
to verify the service is running and its credential store is reachable.
"""

from typing import Any, Dict

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse

from ..db import CredentialStoreError
from ..middleware.auth import Container
from ..utils.logging import get_logger

# Create router for health endpoints
router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/healthz",
    response_model=Dict[str, str],
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Returns service health status and version information",
    response_description="Service is healthy",
)
async def health_check(response: Response, container: Container) -> Dict[str, str]:
    """
    Health check endpoint for monitoring and load balancer probes.

    Example response:
        {"status": "ok", "version": "1.0.0", "environment": "development"}
    """
    logger.debug("Health check requested")
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"

    settings = container.settings
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.app_env,
    }


@router.get(
    "/healthz/live",
    response_model=Dict[str, str],
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    include_in_schema=False,
)
async def liveness_probe() -> Dict[str, str]:
    """Returns 200 if the process is alive, regardless of dependencies."""
    return {"status": "alive"}


@router.get(
    "/healthz/ready",
    summary="Readiness probe",
    include_in_schema=False,
)
async def readiness_probe(container: Container) -> Any:
    """
    Readiness probe: the credential store must answer a ping.

    Also lists which integrations have their client credentials configured.
    """
    integrations: Dict[str, bool] = {
        provider.value: config.configured for provider, config in container.providers.items()
    }

    try:
        await container.store.ping()
    except CredentialStoreError as e:
        logger.warning("Readiness check failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ready": False, "store": "unavailable", "integrations": integrations},
        )

    return {"ready": True, "store": "ok", "integrations": integrations}
