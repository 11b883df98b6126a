"""
Tests for the command line entrypoint and runtime wiring.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import json

import pytest

import app
from alerts.persistence import InMemoryPersistence, JsonFilePersistence, SqlPersistence
from core.config import AppConfig
from core.runtime import build_persistence, build_services
from database.engine import DatabaseInitializationError
from price_sources.models import (
    PriceBoard,
    PriceHistory,
    PricePoint,
    PriceQuote,
    PriceSource,
    SourceHealth,
    SourceStatus,
    utc_now,
)


# ============================================================
# FIXTURES
# ============================================================

def quote(source, value):
    return PriceQuote(source=source, symbol="ETH", value=Decimal(value) if value else None)


class StubRegistry:
    """Registry stand-in with fixed ETH prices."""

    def __init__(self, spot="2000", dex="1990", best=None):
        self.prices = {PriceSource.SPOT: spot, PriceSource.DEX: dex, PriceSource.BEST: best}
        self.closed = False

    async def fetch_quote(self, symbol, source):
        return quote(source, self.prices[source])

    async def fetch_board(self, symbol):
        return PriceBoard(
            symbol=symbol.upper(),
            spot=quote(PriceSource.SPOT, self.prices[PriceSource.SPOT]),
            dex=quote(PriceSource.DEX, self.prices[PriceSource.DEX]),
            best=quote(PriceSource.BEST, self.prices[PriceSource.BEST]),
            fee=Decimal("0.84"),
        )

    async def fetch_history(self, symbol, days=7):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        points = tuple(
            PricePoint(timestamp=start + timedelta(hours=i), price=Decimal(p))
            for i, p in enumerate(["100", "90", "120", "110"])
        )
        return PriceHistory(symbol=symbol.upper(), days=days, points=points)

    def get_all_health(self):
        return {"spot": SourceHealth(status=SourceStatus.HEALTHY, last_check=utc_now())}

    async def close(self):
        self.closed = True


@pytest.fixture
def services():
    config = AppConfig(storage_backend="memory")
    return build_services(config, persistence=InMemoryPersistence(), registry=StubRegistry())


def parse(*argv):
    return app.create_parser().parse_args(list(argv))


# ============================================================
# ARGUMENTS
# ============================================================

class TestArguments:
    """Tests for parser and argument validation."""

    def test_defaults(self):
        args = parse()

        assert args.mode == "prices"
        assert args.symbol == "eth"
        assert args.days == 7
        assert app.validate_args(args) == []

    def test_alert_requires_target(self):
        assert "--target is required for alert mode" in app.validate_args(parse("--mode", "alert"))

    def test_remove_requires_alert_id(self):
        assert "--alert-id is required for remove mode" in app.validate_args(parse("-m", "remove"))

    def test_unknown_source(self):
        errors = app.validate_args(parse("--source", "CEX"))
        assert "--source must be one of: Spot, DEX, Best" in errors

    def test_unsupported_period_rejected(self):
        with pytest.raises(SystemExit):
            parse("--days", "14")

    def test_cli_overrides_config(self):
        args = parse("--log-level", "DEBUG", "--interval", "5")

        config = app.build_config(args)

        assert config.log_level == "DEBUG"
        assert config.monitor_interval_seconds == 5.0

    def test_main_rejects_invalid_args(self, capsys):
        assert app.main(["--mode", "alert"]) == 1
        assert "--target is required" in capsys.readouterr().err


# ============================================================
# WIRING
# ============================================================

class TestRuntime:
    """Tests for persistence selection and service wiring."""

    def test_build_persistence(self, tmp_path):
        assert isinstance(build_persistence(AppConfig(storage_backend="memory")), InMemoryPersistence)
        assert isinstance(
            build_persistence(AppConfig(storage_backend="file", storage_path=str(tmp_path))),
            JsonFilePersistence,
        )
        assert isinstance(
            build_persistence(AppConfig(storage_backend="sql", database_url="sqlite://")),
            SqlPersistence,
        )

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_persistence(AppConfig(storage_backend="redis"))

    def test_telegram_sink_added_when_configured(self):
        config = AppConfig(telegram_bot_token="token", telegram_chat_id="1, 2")

        services = build_services(config, persistence=InMemoryPersistence(), registry=StubRegistry())

        assert [s.name for s in services.dispatcher.sinks] == ["log", "telegram"]
        assert services.monitor.interval_seconds == 30.0

    @pytest.mark.asyncio
    async def test_close_releases_registry(self, services):
        await services.close()
        assert services.registry.closed


# ============================================================
# OUTPUT
# ============================================================

class TestFormatBoard:
    """Tests for format_board."""

    def test_marks_cheapest_when_no_best_quote(self):
        board = PriceBoard(
            symbol="ETH",
            spot=quote(PriceSource.SPOT, "2000"),
            dex=quote(PriceSource.DEX, "1990"),
            best=quote(PriceSource.BEST, None),
        )

        lines = app.format_board(board).splitlines()

        assert lines[0] == "ETH prices"
        assert not lines[2].endswith("* best")
        assert lines[3].endswith("* best")
        assert "$1,990.00" in lines[4]

    def test_unavailable_and_demo(self):
        board = PriceBoard(
            symbol="BTC",
            spot=quote(PriceSource.SPOT, None),
            dex=quote(PriceSource.DEX, None),
            best=quote(PriceSource.BEST, None),
            demo=True,
        )

        text = app.format_board(board)

        assert text.splitlines()[0] == "BTC prices (demo data)"
        assert "unavailable" in text
        assert "* best" not in text


# ============================================================
# MODES
# ============================================================

class TestModes:
    """Tests for the mode handlers."""

    @pytest.mark.asyncio
    async def test_prices(self, services, capsys):
        assert await app.run_prices(services, parse("--mode", "prices")) == 0

        out = capsys.readouterr().out
        assert "$2,000.00" in out
        assert "Fee" in out

    @pytest.mark.asyncio
    async def test_history(self, services, capsys):
        assert await app.run_history(services, parse("--mode", "history", "--days", "30")) == 0

        out = capsys.readouterr().out
        assert "ETH 30-Day trend (4 points)" in out
        assert "change +10.00%" in out

    @pytest.mark.asyncio
    async def test_create_list_and_remove_alert(self, services, capsys):
        shown = []
        services.toasts.register_listener(shown.append)

        args = parse("--mode", "alert", "--direction", "below", "--target", "1900")
        assert await app.run_create_alert(services, args) == 0

        alert = services.store.list()[0]
        assert alert.reference_price == Decimal("2000")
        assert shown[0].kind == "success"

        assert await app.run_list_alerts(services, parse("--mode", "alerts")) == 0
        assert str(alert.id) in capsys.readouterr().out

        args = parse("--mode", "remove", "--alert-id", str(alert.id))
        assert await app.run_remove_alert(services, args) == 0
        assert len(services.store) == 0
        assert "removed" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_rejected_alert(self, services, capsys):
        args = parse("--mode", "alert", "--direction", "above", "--target", "1500")

        assert await app.run_create_alert(services, args) == 1
        assert len(services.store) == 0
        assert "must be higher than current price" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_single_cycle_monitor(self, services, capsys):
        await app.run_create_alert(services, parse("-m", "alert", "--direction", "below", "--target", "1950"))
        services.registry.prices[PriceSource.SPOT] = "1900"

        assert await app.run_monitor(services, parse("-m", "monitor", "--single-cycle")) == 0

        assert "1 triggered" in capsys.readouterr().out
        assert len(services.store) == 0
        assert services.history.entries()[0].title == "ETH Spot Price Alert"

    @pytest.mark.asyncio
    async def test_run_application_closes_services(self, services):
        with patch.object(app, "build_services", return_value=services):
            code = await app.run_application(parse("--mode", "alerts"), services.config)

        assert code == 0
        assert services.registry.closed

    @pytest.mark.asyncio
    async def test_prices_json(self, services, capsys):
        assert await app.run_prices(services, parse("--mode", "prices", "--json")) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["symbol"] == "ETH"
        assert data["spot"]["value"] == "2000"
        assert data["best"]["value"] is None
        assert data["best_value"] == "1990"
        assert data["fee"] == "0.84"
        assert data["sources"] == {"spot": "healthy"}

    @pytest.mark.asyncio
    async def test_single_cycle_monitor_json(self, services, capsys):
        await app.run_create_alert(services, parse("-m", "alert", "--direction", "below", "--target", "1950"))
        alert = services.store.list()[0]
        capsys.readouterr()
        services.registry.prices[PriceSource.SPOT] = "1900"

        args = parse("-m", "monitor", "--single-cycle", "--json")
        assert await app.run_monitor(services, args) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["groups"] == 1
        assert data["triggered"][0]["alert"]["id"] == alert.id
        assert data["triggered"][0]["price"] == "1900"


# ============================================================
# STARTUP FAILURES
# ============================================================

class TestStartupFailures:
    """Storage that cannot be built or opened ends with exit code 1, not a traceback."""

    @pytest.fixture
    def sql_env(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "sql")
        return monkeypatch

    def test_malformed_database_url(self, sql_env):
        sql_env.setenv("DATABASE_URL", "not-a-database-url")

        assert app.main(["--mode", "alerts"]) == 1

    def test_unopenable_sqlite_file(self, sql_env, tmp_path):
        sql_env.setenv("DATABASE_URL", f"sqlite:///{tmp_path}/missing/dir/alerts.db")

        assert app.main(["--mode", "alerts"]) == 1

    @pytest.mark.asyncio
    async def test_build_failure_is_caught(self):
        error = DatabaseInitializationError("boom")
        with patch.object(app, "build_services", side_effect=error):
            code = await app.run_application(parse("--mode", "alerts"), AppConfig())

        assert code == 1
