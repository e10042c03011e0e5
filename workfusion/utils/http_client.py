"""
Shared outbound HTTP client construction.

One ``httpx.AsyncClient`` is built per process by the service container and
injected into every component that talks to a provider. Each call is bounded
by explicit connect/read/write/pool timeouts so a stalled provider cannot hang
a request indefinitely.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import Settings
from .logging import get_logger

logger = get_logger(__name__)


@dataclass
class TimeoutConfig:
    """HTTP timeout configuration for provider calls."""

    connect_timeout: float = 5.0
    read_timeout: float = 20.0
    write_timeout: float = 20.0
    pool_timeout: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "TimeoutConfig":
        total = float(settings.provider_timeout_seconds)
        return cls(
            connect_timeout=min(5.0, total),
            read_timeout=total,
            write_timeout=total,
            pool_timeout=min(5.0, total),
        )

    def to_httpx(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.pool_timeout,
        )


def create_http_client(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Build the process-wide provider client.

    Args:
        settings: Application settings (timeouts)
        transport: Optional transport override, e.g. ``httpx.MockTransport`` in tests
    """
    timeout = TimeoutConfig.from_settings(settings).to_httpx()
    limits = httpx.Limits(
        max_keepalive_connections=20,
        max_connections=100,
        keepalive_expiry=30.0,
    )

    client = httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        follow_redirects=False,
        transport=transport,
        headers={"User-Agent": f"{settings.app_name.replace(' ', '-')}/{settings.app_version}"},
    )

    logger.info(
        "Provider HTTP client initialized",
        read_timeout=timeout.read,
        connect_timeout=timeout.connect,
    )
    return client


def parse_response_body(response: httpx.Response):
    """Return the decoded JSON body, falling back to text for non-JSON replies."""
    try:
        return response.json()
    except ValueError:
        return response.text
