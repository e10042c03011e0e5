"""
Resilient access to the credential store.

Every read and write goes through ``with_retry``: store-unavailable errors are
retried with exponential backoff, rejected input fails on the first attempt,
and an exhausted write is reported to the caller rather than dropped.
"""

from typing import Any, Awaitable, Callable, Mapping, Optional

import structlog

from ..config import Settings
from ..db.store import CredentialStore, CredentialStoreError, StoreUnavailableError
from ..errors import StoreError
from ..utils.retry import RetryPolicy, with_retry
from ..utils.types import IntegrationCredential, Provider, WriteResult

logger = structlog.get_logger(__name__)


def is_store_unavailable(error: BaseException) -> bool:
    return isinstance(error, StoreUnavailableError)


def store_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.store_retry_max_attempts,
        base_delay=settings.store_retry_base_delay_ms / 1000.0,
        max_delay=settings.store_retry_max_delay_ms / 1000.0,
    )


class ResilientCredentialStore:
    """Wraps a ``CredentialStore`` with the bounded retry policy."""

    def __init__(
        self,
        store: CredentialStore,
        policy: RetryPolicy,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.store = store
        self.policy = policy
        self._sleep = sleep

    async def write_credential(
        self, user_id: str, provider: Provider, fields: Mapping[str, Any]
    ) -> WriteResult:
        """
        Merge ``fields`` into the user's record for ``provider``.

        Returns:
            WriteResult with the number of attempts made and, on failure, the
            last underlying store error
        """
        attempts = 0

        async def _attempt() -> None:
            nonlocal attempts
            attempts += 1
            await self.store.merge(user_id, provider, fields)

        try:
            await with_retry(
                _attempt,
                self.policy,
                retry_on=is_store_unavailable,
                sleep=self._sleep,
                operation_name="credential_write",
            )
        except CredentialStoreError as e:
            logger.error(
                "Credential write failed",
                user_id=user_id,
                provider=Provider(provider).value,
                attempts=attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            return WriteResult(success=False, attempts=attempts, error=e)

        return WriteResult(success=True, attempts=attempts)

    async def read_credential(
        self, user_id: str, provider: Provider
    ) -> Optional[IntegrationCredential]:
        """
        Read the user's record for ``provider``.

        Raises:
            StoreError: If the store stays unavailable or rejects the read
        """
        try:
            return await with_retry(
                lambda: self.store.get(user_id, provider),
                self.policy,
                retry_on=is_store_unavailable,
                sleep=self._sleep,
                operation_name="credential_read",
            )
        except CredentialStoreError as e:
            logger.error(
                "Credential read failed",
                user_id=user_id,
                provider=Provider(provider).value,
                error=str(e),
            )
            raise StoreError(log_detail=str(e), message="Failed to load integration state") from e

    async def write_or_raise(
        self, user_id: str, provider: Provider, fields: Mapping[str, Any]
    ) -> WriteResult:
        """``write_credential`` for callers that cannot continue after a failed write."""
        result = await self.write_credential(user_id, provider, fields)
        if not result.success:
            raise StoreError(log_detail=str(result.error)) from result.error
        return result
