"""
Tests for the SQL credential store against in-memory SQLite.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from workfusion.db import (
    IntegrationCredentialRecord,
    SqlCredentialStore,
    StoreUnavailableError,
    StoreWriteRejectedError,
    create_engine,
    create_session_factory,
    create_tables,
)
from workfusion.db.repositories import classify_sqlalchemy_error
from workfusion.services.credential_store import ResilientCredentialStore
from workfusion.utils.crypto import CryptoService
from workfusion.utils.retry import RetryPolicy
from workfusion.utils.types import Provider


@pytest.fixture
async def sql_store(test_settings):
    settings = test_settings.model_copy(update={"database_url": "sqlite+aiosqlite:///:memory:"})
    engine = create_engine(settings)
    await create_tables(engine)
    store = SqlCredentialStore(
        create_session_factory(engine), CryptoService(settings.fernet_key, rotated_keys=""), engine=engine
    )
    yield store
    await engine.dispose()


class TestSqlCredentialStore:
    async def test_merge_creates_record_and_get_reads_it_back(self, sql_store, now):
        await sql_store.merge(
            "u1",
            Provider.XERO,
            {
                "access_token": "access-1",
                "refresh_token": "refresh-1",
                "expires_at": now + timedelta(minutes=30),
                "connected": True,
                "connected_at": now,
                "provider_metadata": {"tenant_id": "t-1"},
            },
        )

        credential = await sql_store.get("u1", Provider.XERO)

        assert credential.access_token == "access-1"
        assert credential.refresh_token == "refresh-1"
        assert credential.expires_at == now + timedelta(minutes=30)
        assert credential.connected is True
        assert credential.provider_metadata == {"tenant_id": "t-1"}

    async def test_tokens_are_encrypted_at_rest(self, sql_store):
        await sql_store.merge("u1", Provider.PAYPAL, {"access_token": "plain-access", "connected": True})

        async with sql_store.session_factory() as session:
            record = (await session.execute(select(IntegrationCredentialRecord))).scalar_one()

        assert record.access_token_ciphertext is not None
        assert b"plain-access" not in record.access_token_ciphertext

    async def test_partial_merge_keeps_other_fields(self, sql_store, now):
        await sql_store.merge(
            "u1",
            Provider.XERO,
            {"access_token": "a", "refresh_token": "r", "connected": True, "connected_at": now},
        )

        await sql_store.merge(
            "u1", Provider.XERO, {"connected": False, "last_error": "revoked", "disconnected_at": now}
        )

        credential = await sql_store.get("u1", Provider.XERO)
        assert credential.connected is False
        assert credential.last_error == "revoked"
        assert credential.access_token == "a"
        assert credential.refresh_token == "r"
        assert credential.connected_at == now

    async def test_metadata_is_merged_not_replaced(self, sql_store):
        await sql_store.merge("u1", Provider.PLAID, {"provider_metadata": {"item_id": "i-1"}})
        await sql_store.merge("u1", Provider.PLAID, {"provider_metadata": {"institution": "Chase"}})

        credential = await sql_store.get("u1", Provider.PLAID)
        assert credential.provider_metadata == {"item_id": "i-1", "institution": "Chase"}

    async def test_one_record_per_user_and_provider(self, sql_store):
        await sql_store.merge("u1", Provider.XERO, {"access_token": "x"})
        await sql_store.merge("u1", Provider.PAYPAL, {"access_token": "p"})
        await sql_store.merge("u1", Provider.XERO, {"access_token": "x2"})

        async with sql_store.session_factory() as session:
            records = (await session.execute(select(IntegrationCredentialRecord))).scalars().all()

        assert len(records) == 2
        assert (await sql_store.get("u1", Provider.XERO)).access_token == "x2"
        assert (await sql_store.get("u1", Provider.PAYPAL)).access_token == "p"

    async def test_missing_record_returns_none(self, sql_store):
        assert await sql_store.get("nobody", Provider.XERO) is None

    async def test_unknown_field_is_rejected(self, sql_store):
        with pytest.raises(StoreWriteRejectedError):
            await sql_store.merge("u1", Provider.XERO, {"colour": "blue"})

    async def test_null_metadata_is_rejected(self, sql_store):
        await sql_store.merge("u1", Provider.XERO, {"provider_metadata": {"tenant_id": "t-1"}})

        with pytest.raises(StoreWriteRejectedError):
            await sql_store.merge("u1", Provider.XERO, {"provider_metadata": None})

        credential = await sql_store.get("u1", Provider.XERO)
        assert credential.provider_metadata == {"tenant_id": "t-1"}

    async def test_null_metadata_comes_back_as_failed_write(self, sql_store, fake_sleep):
        resilient = ResilientCredentialStore(sql_store, RetryPolicy(max_attempts=3), sleep=fake_sleep)
        await resilient.write_credential("u1", Provider.XERO, {"access_token": "a"})

        result = await resilient.write_credential("u1", Provider.XERO, {"provider_metadata": None})

        assert result.success is False
        assert result.attempts == 1
        assert isinstance(result.error, StoreWriteRejectedError)

    async def test_ping_succeeds(self, sql_store):
        await sql_store.ping()


class TestErrorClassification:
    def test_operational_error_is_transient(self):
        error = OperationalError("SELECT 1", {}, Exception("connection reset"))

        assert isinstance(classify_sqlalchemy_error(error), StoreUnavailableError)

    def test_integrity_error_is_transient(self):
        error = IntegrityError("INSERT", {}, Exception("duplicate key"))

        assert isinstance(classify_sqlalchemy_error(error), StoreUnavailableError)

    def test_programming_error_is_terminal(self):
        error = ProgrammingError("SELECT", {}, Exception("no such column"))

        assert isinstance(classify_sqlalchemy_error(error), StoreWriteRejectedError)
