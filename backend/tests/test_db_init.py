"""
Database Initialization Tests
=============================

Tests for:
1. apply_schema creates every collection and index on a fresh database
2. A second run is a no-op ([SKIP] for everything but the version stamp)
3. --dry-run makes no changes
4. Production environment guard
"""

import pytest

from token_wallet.db_init import (
    SCHEMA_VERSION,
    REQUIRED_COLLECTIONS,
    REQUIRED_INDEXES,
    apply_schema,
    production_block_reason,
)


class TestApplySchema:
    @pytest.mark.asyncio
    async def test_fresh_database(self, db):
        lines = await apply_schema(db)

        assert sorted(await db.list_collection_names()) == sorted(REQUIRED_COLLECTIONS)
        for collection_name, _, options in REQUIRED_INDEXES:
            indexes = await db[collection_name].index_information()
            assert options["name"] in indexes, f"Missing index {options['name']} on {collection_name}"

        checkout_index = (await db.payments.index_information())["idx_checkout_request_id_unique"]
        assert checkout_index["unique"] is True
        assert checkout_index["sparse"] is True

        stamp = await db.docstore_meta.find_one({"_id": "docstore_init"})
        assert stamp["version"] == SCHEMA_VERSION
        assert sum(1 for line in lines if "[CREATE]" in line) == len(REQUIRED_COLLECTIONS) + len(REQUIRED_INDEXES)

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, db):
        await apply_schema(db)
        lines = await apply_schema(db)

        assert not any("[CREATE]" in line for line in lines), "Second run should not create anything"
        assert sum(1 for line in lines if "[SKIP]" in line) == len(REQUIRED_COLLECTIONS) + len(REQUIRED_INDEXES)
        assert await db.docstore_meta.count_documents({}) == 1

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, db):
        lines = await apply_schema(db, dry_run=True)

        assert all("[DRY-RUN]" in line for line in lines)
        assert await db.list_collection_names() == []

    @pytest.mark.asyncio
    async def test_unique_email_enforced_after_init(self, db):
        from pymongo.errors import DuplicateKeyError

        await apply_schema(db)
        await db.users.insert_one({"id": "u1", "email": "a@example.com", "tokens": 0})

        with pytest.raises(DuplicateKeyError):
            await db.users.insert_one({"id": "u2", "email": "a@example.com", "tokens": 0})


class TestProductionGuard:
    def test_development_allowed(self, monkeypatch):
        monkeypatch.delenv("APP_ENV", raising=False)
        assert production_block_reason() is None

    def test_production_requires_confirmation(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.delenv("DOCSTORE_INIT_CONFIRM", raising=False)
        reason = production_block_reason()
        assert reason is not None
        assert "DOCSTORE_INIT_CONFIRM=YES" in reason

    def test_production_with_confirmation(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("DOCSTORE_INIT_CONFIRM", "YES")
        assert production_block_reason() is None
