"""
Tests for the alert store and its persistence backends.

============================================================
TEST PRINCIPLES:
- Mutations replace the snapshot, never edit it
- Every mutation is persisted
- Corrupt persisted state degrades to empty, never raises
============================================================
"""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import inspect

from alerts.exceptions import DuplicateAlertError
from alerts.models import Alert, AlertDirection
from alerts.persistence import InMemoryPersistence, JsonFilePersistence, SqlPersistence
from alerts.store import DEFAULT_STORAGE_KEY, AlertStore
from alerts.validator import AlertIdGenerator
from database.engine import DatabaseInitializationError, create_database_engine, to_async_url
from price_sources.models import PriceSource


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def store(persistence):
    return AlertStore(persistence)


def make_alert(alert_id=1, symbol="ETH", source=PriceSource.SPOT, target="1900", direction=AlertDirection.BELOW):
    return Alert(
        id=alert_id,
        symbol=symbol,
        target_price=Decimal(target),
        reference_price=Decimal("2000"),
        direction=direction,
        source=source,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


# ============================================================
# MUTATIONS
# ============================================================

class TestAlertStoreMutations:
    """Tests for add / remove / list."""

    @pytest.mark.asyncio
    async def test_add_and_list_in_creation_order(self, store):
        await store.add(make_alert(1))
        await store.add(make_alert(2))

        assert [a.id for a in store.list()] == [1, 2]
        assert len(store) == 2
        assert 1 in store
        assert store.get(2).id == 2

    @pytest.mark.asyncio
    async def test_snapshot_is_not_mutated(self, store):
        await store.add(make_alert(1))
        before = store.list()

        await store.add(make_alert(2))

        assert len(before) == 1
        assert len(store.list()) == 2

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store):
        await store.add(make_alert(1))

        with pytest.raises(DuplicateAlertError):
            await store.add(make_alert(1, symbol="BTC"))

        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, store, persistence):
        await store.add(make_alert(1))

        assert await store.remove(1) is True
        blob_after_first = await persistence.read(DEFAULT_STORAGE_KEY)
        assert await store.remove(1) is False

        assert len(store) == 0
        assert await persistence.read(DEFAULT_STORAGE_KEY) == blob_after_first

    @pytest.mark.asyncio
    async def test_every_mutation_persists_current_snapshot(self, store, persistence):
        await store.add(make_alert(1))
        await store.add(make_alert(2))
        await store.remove(1)

        data = json.loads(await persistence.read(DEFAULT_STORAGE_KEY))
        assert [record["id"] for record in data] == [2]

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(self):
        failing = InMemoryPersistence()
        failing.write = AsyncMock(side_effect=OSError("disk full"))
        store = AlertStore(failing)

        await store.add(make_alert(1))

        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_listeners_receive_snapshot(self, store):
        listener = AsyncMock()
        store.register_listener(listener)

        await store.add(make_alert(1))

        listener.assert_awaited_once_with(store.list())

    @pytest.mark.asyncio
    async def test_listener_error_does_not_break_mutation(self, store):
        store.register_listener(AsyncMock(side_effect=RuntimeError("boom")))

        await store.add(make_alert(1))

        assert len(store) == 1


# ============================================================
# RESTORE
# ============================================================

class TestAlertStoreRestore:
    """Tests for restore and corrupt-state handling."""

    @pytest.mark.asyncio
    async def test_restore_round_trip(self, persistence):
        first = AlertStore(persistence)
        await first.add(make_alert(1))
        await first.add(make_alert(2, source=PriceSource.DEX))

        second = AlertStore(persistence)
        restored = await second.restore()

        assert restored == first.list()

    @pytest.mark.asyncio
    async def test_missing_state_is_empty(self, store):
        assert await store.restore() == ()

    @pytest.mark.asyncio
    async def test_invalid_json_is_empty(self):
        persistence = InMemoryPersistence({DEFAULT_STORAGE_KEY: "{not json"})
        store = AlertStore(persistence)

        assert await store.restore() == ()
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_read_failure_is_empty(self):
        persistence = InMemoryPersistence()
        persistence.read = AsyncMock(side_effect=OSError("unreadable"))

        assert await AlertStore(persistence).restore() == ()

    def test_wrong_shape_is_empty(self):
        assert AlertStore.restore_from_blob('{"id": 1}') == ()
        assert AlertStore.restore_from_blob("") == ()
        assert AlertStore.restore_from_blob(None) == ()

    def test_malformed_records_skipped_and_duplicates_collapsed(self):
        good = make_alert(1).to_dict()
        duplicate = dict(good, symbol="BTC")
        blob = json.dumps([good, {"id": 2}, "junk", duplicate, make_alert(3).to_dict()])

        restored = AlertStore.restore_from_blob(blob)

        assert [a.id for a in restored] == [1, 3]
        assert restored[0].symbol == "ETH"

    def test_non_finite_id_is_skipped(self):
        infinite = dict(make_alert(1).to_dict(), id=float("inf"))
        blob = json.dumps([infinite, make_alert(2).to_dict()])

        assert "Infinity" in blob
        assert [a.id for a in AlertStore.restore_from_blob(blob)] == [2]
        assert AlertStore.restore_from_blob('[{"id": 1e999}]') == ()

    @pytest.mark.asyncio
    async def test_deeply_nested_json_is_empty(self):
        depth = 200000
        persistence = InMemoryPersistence({DEFAULT_STORAGE_KEY: "[" * depth + "]" * depth})

        assert await AlertStore(persistence).restore() == ()

    @pytest.mark.asyncio
    async def test_restore_advances_id_generator(self, persistence):
        await AlertStore(persistence).add(make_alert(5000))
        ids = AlertIdGenerator(clock=lambda: 1.0)

        await AlertStore(persistence, id_generator=ids).restore()

        assert ids.next_id() == 5001


# ============================================================
# PERSISTENCE BACKENDS
# ============================================================

class TestJsonFilePersistence:
    """Tests for JsonFilePersistence."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path):
        persistence = JsonFilePersistence(tmp_path / "state")

        assert await persistence.read("cryptopricer-alerts") is None
        await persistence.write("cryptopricer-alerts", "[]")

        assert await persistence.read("cryptopricer-alerts") == "[]"
        assert persistence.path_for("cryptopricer-alerts").exists()

    def test_key_is_sanitized(self, tmp_path):
        persistence = JsonFilePersistence(tmp_path)
        assert persistence.path_for("../evil key").name == ".._evil_key.json"

    @pytest.mark.asyncio
    async def test_store_survives_restart(self, tmp_path):
        await AlertStore(JsonFilePersistence(tmp_path)).add(make_alert(7))

        restored = await AlertStore(JsonFilePersistence(tmp_path)).restore()

        assert [a.id for a in restored] == [7]


class TestSqlPersistence:
    """Tests for SqlPersistence against in-memory SQLite."""

    @pytest.fixture
    def sql_persistence(self):
        return SqlPersistence(create_database_engine("sqlite://"))

    @pytest.mark.asyncio
    async def test_insert_and_update(self, sql_persistence):
        assert await sql_persistence.read("k") is None

        await sql_persistence.write("k", "one")
        await sql_persistence.write("k", "two")

        assert await sql_persistence.read("k") == "two"

    @pytest.mark.asyncio
    async def test_store_round_trip(self, sql_persistence):
        await AlertStore(sql_persistence).add(make_alert(1))

        restored = await AlertStore(sql_persistence).restore()

        assert [a.id for a in restored] == [1]
        await sql_persistence.close()

    @pytest.mark.asyncio
    async def test_initialize_creates_table_once(self, sql_persistence):
        await sql_persistence.initialize()
        await sql_persistence.initialize()

        async with sql_persistence._engine.connect() as conn:
            tables = await conn.run_sync(lambda sync: inspect(sync).get_table_names())

        assert "key_value_store" in tables
        await sql_persistence.close()

    @pytest.mark.asyncio
    async def test_unopenable_database_raises_on_initialize(self, tmp_path):
        engine = create_database_engine(f"sqlite:///{tmp_path}/missing/dir/state.db")
        persistence = SqlPersistence(engine)

        with pytest.raises(DatabaseInitializationError):
            await persistence.initialize()
        await persistence.close()


class TestAsyncIo:
    """Storage I/O never blocks the event loop."""

    def test_async_driver_urls(self):
        assert to_async_url("sqlite:///alerts.db") == "sqlite+aiosqlite:///alerts.db"
        assert to_async_url("sqlite://") == "sqlite+aiosqlite://"
        assert to_async_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
        assert to_async_url("sqlite+aiosqlite:///a.db") == "sqlite+aiosqlite:///a.db"

    def test_malformed_url_rejected(self):
        with pytest.raises(ValueError):
            to_async_url("alerts.db")

    def test_engine_uses_async_driver(self):
        engine = create_database_engine("sqlite://")
        assert engine.url.drivername == "sqlite+aiosqlite"

    @pytest.mark.asyncio
    async def test_file_io_runs_in_worker_thread(self, tmp_path, monkeypatch):
        offloaded = []
        to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr("alerts.persistence.asyncio.to_thread", recording_to_thread)
        persistence = JsonFilePersistence(tmp_path)

        await persistence.write("k", "[]")
        assert await persistence.read("k") == "[]"

        assert offloaded == ["_write_file", "_read_file"]
