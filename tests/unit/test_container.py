"""
Tests for service container construction from settings.
"""

from workfusion.db import SqlCredentialStore
from workfusion.services.container import build_container
from workfusion.utils.types import Provider


class TestBuildContainer:
    async def test_builds_sql_store_without_firebase(self, test_settings):
        settings = test_settings.model_copy(update={"database_url": "sqlite+aiosqlite:///:memory:"})

        container = await build_container(settings)
        try:
            assert isinstance(container.store, SqlCredentialStore)
            assert container.identity_verifier is None
            assert container.insights.client is None
            assert set(container.providers) == set(Provider)

            await container.credentials.write_or_raise("u1", Provider.PLAID, {"access_token": "a", "connected": True})
            credential = await container.credentials.read_credential("u1", Provider.PLAID)
            assert credential.access_token == "a"
        finally:
            await container.close()

    async def test_close_is_idempotent(self, test_settings):
        settings = test_settings.model_copy(update={"database_url": "sqlite+aiosqlite:///:memory:"})
        container = await build_container(settings)

        await container.close()
        await container.close()
