"""
Tests for the HTTP-backed price sources and the registry.

HTTP is never touched: `_make_request` / `fetch_raw` are mocked.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from core.config import AppConfig
from price_sources.exceptions import FetchError, NormalizationError, RateLimitError
from price_sources.models import PriceQuote, PriceSource, SourceStatus
from price_sources.providers import (
    BestPriceSource,
    DemoPriceSource,
    DexQuoteSource,
    HistorySource,
    NetworkFeeSource,
    SpotPriceSource,
    downsample,
    parse_history,
)
from price_sources.registry import PriceSourceRegistry, create_registry


BASE_URL = "https://prices.test"


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def spot_source():
    return SpotPriceSource(base_url=BASE_URL, max_retries=1)


@pytest.fixture
def no_sleep():
    with patch("price_sources.base.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


def server_error(status=503):
    return FetchError(message=f"HTTP {status}", source_name="test", status_code=status)


# ============================================================
# SPOT / BEST
# ============================================================

class TestSpotPriceSource:
    """Tests for SpotPriceSource."""

    @pytest.mark.asyncio
    async def test_fetch_builds_request_and_normalizes(self, spot_source):
        request = AsyncMock(return_value={"price": 2345.67})
        with patch.object(spot_source, "_make_request", request):
            quote = await spot_source.fetch("ETH")

        request.assert_awaited_once_with("GET", f"{BASE_URL}/price/spot", params={"coin": "eth"})
        assert quote.value == Decimal("2345.67")
        assert spot_source.get_health().status == SourceStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_fetch_failure_gives_unavailable_quote(self, spot_source):
        with patch.object(spot_source, "_make_request", AsyncMock(side_effect=server_error())):
            quote = await spot_source.fetch("ETH")

        assert quote.value is None
        assert quote.source == PriceSource.SPOT
        assert spot_source.get_health().consecutive_failures == 1
        assert len(spot_source.get_incidents()) == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_never_escapes(self, spot_source):
        with patch.object(spot_source, "_make_request", AsyncMock(side_effect=KeyError("x"))):
            quote = await spot_source.fetch("ETH")

        assert not quote.is_available

    @pytest.mark.asyncio
    async def test_invalid_json_gives_unavailable_quote(self, spot_source):
        error = NormalizationError(message="Invalid JSON", source_name="spot")
        with patch.object(spot_source, "_make_request", AsyncMock(side_effect=error)):
            quote = await spot_source.fetch("ETH")

        assert quote.value is None

    @pytest.mark.asyncio
    async def test_unusable_payload_is_unavailable(self, spot_source):
        with patch.object(spot_source, "_make_request", AsyncMock(return_value={"price": "NaN"})):
            quote = await spot_source.fetch("ETH")

        assert quote.value is None

    @pytest.mark.asyncio
    async def test_best_source_request(self):
        source = BestPriceSource(base_url=BASE_URL, max_retries=1)
        request = AsyncMock(return_value={"best_price": {"price_usd": 2348.5}})
        with patch.object(source, "_make_request", request):
            quote = await source.fetch("ETH")

        request.assert_awaited_once_with("GET", f"{BASE_URL}/best_price", params={"symbol": "eth"})
        assert quote.value == Decimal("2348.5")


# ============================================================
# RETRY / HEALTH
# ============================================================

class TestRetryAndHealth:
    """Tests for retry policy and health tracking."""

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, no_sleep):
        source = SpotPriceSource(base_url=BASE_URL, max_retries=3)
        request = AsyncMock(side_effect=[server_error(), server_error(), {"price": 10}])
        with patch.object(source, "_make_request", request):
            quote = await source.fetch("ETH")

        assert quote.value == Decimal("10")
        assert request.await_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, no_sleep):
        source = SpotPriceSource(base_url=BASE_URL, max_retries=3)
        request = AsyncMock(side_effect=server_error(404))
        with patch.object(source, "_make_request", request):
            quote = await source.fetch("ETH")

        assert quote.value is None
        assert request.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, no_sleep):
        source = SpotPriceSource(base_url=BASE_URL, max_retries=2)
        limited = RateLimitError(message="Rate limit exceeded", source_name="spot", retry_after_seconds=7)
        request = AsyncMock(side_effect=[limited, {"price": 10}])
        with patch.object(source, "_make_request", request):
            quote = await source.fetch("ETH")

        assert quote.value == Decimal("10")
        no_sleep.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_degraded_then_unavailable(self, spot_source):
        with patch.object(spot_source, "_make_request", AsyncMock(side_effect=server_error())):
            for _ in range(3):
                await spot_source.fetch("ETH")
            assert spot_source.get_health().status == SourceStatus.DEGRADED

            for _ in range(2):
                await spot_source.fetch("ETH")
            assert spot_source.get_health().status == SourceStatus.UNAVAILABLE
            assert not spot_source.is_usable()

    @pytest.mark.asyncio
    async def test_recovery_resets_failures(self, spot_source):
        with patch.object(spot_source, "_make_request", AsyncMock(side_effect=server_error())):
            for _ in range(3):
                await spot_source.fetch("ETH")

        with patch.object(spot_source, "_make_request", AsyncMock(return_value={"price": 1})):
            await spot_source.fetch("ETH")

        health = spot_source.get_health()
        assert health.status == SourceStatus.HEALTHY
        assert health.consecutive_failures == 0


# ============================================================
# DEX
# ============================================================

class TestDexQuoteSource:
    """Tests for DexQuoteSource."""

    @pytest.mark.asyncio
    async def test_quote_request_parameters(self):
        source = DexQuoteSource(base_url=BASE_URL, max_retries=1)
        request = AsyncMock(return_value={"price": {"destAmount": "20000000", "destDecimals": 6}})
        with patch.object(source, "_make_request", request):
            quote = await source.fetch("sol")

        request.assert_awaited_once_with(
            "GET",
            f"{BASE_URL}/dex/paraswap_quote",
            params={"sell_token": "USDC", "buy_token": "SOL", "amount": "10000"},
        )
        assert quote.value == Decimal("500")

    @pytest.mark.asyncio
    async def test_native_asset_fetches_fee_estimate(self):
        fee_source = NetworkFeeSource(base_url=BASE_URL, max_retries=1)
        source = DexQuoteSource(base_url=BASE_URL, fee_source=fee_source, max_retries=1)

        quote_payload = {"price": {"destAmount": "4000000000000000000", "destDecimals": 18}}
        fee_request = AsyncMock(return_value={"result": {"ProposeGasPrice": "10"}})
        with patch.object(source, "_make_request", AsyncMock(return_value=quote_payload)), \
                patch.object(fee_source, "_make_request", fee_request):
            quote = await source.fetch("eth")

        fee_request.assert_awaited_once_with("GET", f"{BASE_URL}/fees/eth")
        assert quote.value == Decimal("2500")
        assert quote.auxiliary_fee == Decimal("0.84")

    @pytest.mark.asyncio
    async def test_fee_failure_keeps_quote(self):
        fee_source = NetworkFeeSource(base_url=BASE_URL, max_retries=1)
        source = DexQuoteSource(base_url=BASE_URL, fee_source=fee_source, max_retries=1)

        quote_payload = {"price": {"destAmount": "4000000000000000000", "destDecimals": 18}}
        with patch.object(source, "_make_request", AsyncMock(return_value=quote_payload)), \
                patch.object(fee_source, "_make_request", AsyncMock(side_effect=server_error())):
            quote = await source.fetch("eth")

        assert quote.value == Decimal("2500")
        assert quote.auxiliary_fee is None

    @pytest.mark.asyncio
    async def test_other_assets_skip_fee_estimate(self):
        fee_source = NetworkFeeSource(base_url=BASE_URL, max_retries=1)
        source = DexQuoteSource(base_url=BASE_URL, fee_source=fee_source, max_retries=1)
        fee_request = AsyncMock()

        payload = {"price": {"destAmount": "20000000", "destDecimals": 6}}
        with patch.object(source, "_make_request", AsyncMock(return_value=payload)), \
                patch.object(fee_source, "_make_request", fee_request):
            await source.fetch("sol")

        fee_request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fee_estimate_skipped_when_not_requested(self):
        fee_source = NetworkFeeSource(base_url=BASE_URL, max_retries=1)
        source = DexQuoteSource(base_url=BASE_URL, fee_source=fee_source, max_retries=1)
        fee_request = AsyncMock()

        quote_payload = {"price": {"destAmount": "4000000000000000000", "destDecimals": 18}}
        with patch.object(source, "_make_request", AsyncMock(return_value=quote_payload)), \
                patch.object(fee_source, "_make_request", fee_request):
            quote = await source.fetch("eth", with_fee=False)

        fee_request.assert_not_awaited()
        assert quote.value == Decimal("2500")
        assert quote.auxiliary_fee is None


# ============================================================
# HISTORY
# ============================================================

class TestHistory:
    """Tests for history parsing and downsampling."""

    def test_parse_history_drops_unusable_samples(self):
        raw = {"prices": [
            [1700000000000, 2000.5],
            [None, 2001],
            [1700000060000, 0],
            [1700000120000, "abc"],
            [1700000180000, "2002"],
            "garbage",
        ]}

        points = parse_history(raw)

        assert [p.price for p in points] == [Decimal("2000.5"), Decimal("2002")]
        assert points[0].timestamp.year == 2023

    def test_parse_history_wrong_shape(self):
        assert parse_history(None) == []
        assert parse_history({"prices": "nope"}) == []
        assert parse_history([[1, 2]]) == []

    def test_downsample_keeps_every_step(self):
        points = list(range(400))

        result = downsample(points, 150)

        # step = ceil(400 / 150) = 3
        assert result[:3] == [0, 3, 6]
        assert len(result) == 134
        assert len(result) <= 150

    def test_downsample_short_series_untouched(self):
        assert downsample([1, 2, 3], 150) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_fetch_history(self):
        source = HistorySource(base_url=BASE_URL, max_retries=1)
        payload = {"prices": [[1700000000000 + i * 60000, 2000 + i] for i in range(300)]}
        request = AsyncMock(return_value=payload)
        with patch.object(source, "_make_request", request):
            history = await source.fetch_history("ETH", days=30)

        request.assert_awaited_once_with("GET", f"{BASE_URL}/history/eth", params={"days": "30"})
        assert history.symbol == "ETH"
        assert history.period_label == "30-Day"
        assert len(history.points) == 150

    @pytest.mark.asyncio
    async def test_fetch_history_failure_is_empty(self):
        source = HistorySource(base_url=BASE_URL, max_retries=1)
        with patch.object(source, "_make_request", AsyncMock(side_effect=server_error())):
            history = await source.fetch_history("ETH", days=7)

        assert history.is_empty
        assert history.latest() is None


# ============================================================
# REGISTRY
# ============================================================

def stub_source(source_cls, value=None, error=None):
    source = source_cls(base_url=BASE_URL, max_retries=1)
    if error is not None:
        source.fetch = AsyncMock(side_effect=error)
    else:
        source.fetch = AsyncMock(return_value=PriceQuote(
            source=source.price_source,
            symbol="ETH",
            value=Decimal(value) if value is not None else None,
        ))
    return source


class TestPriceSourceRegistry:
    """Tests for PriceSourceRegistry."""

    @pytest.mark.asyncio
    async def test_fetch_board(self):
        registry = PriceSourceRegistry()
        registry.register(stub_source(SpotPriceSource, "2000"))
        registry.register(stub_source(DexQuoteSource, "1990"))
        registry.register(stub_source(BestPriceSource, "1995"))

        board = await registry.fetch_board("eth")

        assert board.spot.value == Decimal("2000")
        assert board.dex.value == Decimal("1990")
        assert board.best.value == Decimal("1995")
        assert not board.demo

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_sources(self):
        registry = PriceSourceRegistry()
        registry.register(stub_source(SpotPriceSource, "2000"))
        registry.register(stub_source(DexQuoteSource, error=RuntimeError("boom")))
        registry.register(stub_source(BestPriceSource, None))

        board = await registry.fetch_board("eth")

        assert board.spot.value == Decimal("2000")
        assert board.dex.value is None
        assert board.best.value is None
        assert not board.demo

    @pytest.mark.asyncio
    async def test_demo_fallback_when_nothing_live(self):
        registry = PriceSourceRegistry(demo_fallback=True)
        registry.register(stub_source(SpotPriceSource, None))

        board = await registry.fetch_board("btc")

        assert board.demo
        assert board.spot.value == Decimal("2345.67") * 20
        assert board.fee == Decimal("5.0")

    @pytest.mark.asyncio
    async def test_no_demo_fallback_when_disabled(self):
        registry = PriceSourceRegistry(demo_fallback=False)

        board = await registry.fetch_board("eth")

        assert not board.demo
        assert board.spot.value is None

    @pytest.mark.asyncio
    async def test_fetch_quote_unregistered_source(self):
        registry = PriceSourceRegistry()
        quote = await registry.fetch_quote("eth", PriceSource.BEST)
        assert quote.value is None

    @pytest.mark.asyncio
    async def test_fetch_history_rejects_unsupported_period(self):
        history_source = HistorySource(base_url=BASE_URL)
        history_source.fetch_history = AsyncMock()
        registry = PriceSourceRegistry(history_source=history_source)

        history = await registry.fetch_history("eth", days=3)

        assert history.is_empty
        history_source.fetch_history.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_quote_makes_one_request_per_group(self):
        fee_source = NetworkFeeSource(base_url=BASE_URL, max_retries=1)
        dex = DexQuoteSource(base_url=BASE_URL, fee_source=fee_source, max_retries=1)
        registry = PriceSourceRegistry(demo_fallback=False)
        registry.register(dex)

        quote_payload = {"price": {"destAmount": "4000000000000000000", "destDecimals": 18}}
        quote_request = AsyncMock(return_value=quote_payload)
        fee_request = AsyncMock(return_value={"result": {"ProposeGasPrice": "10"}})
        with patch.object(dex, "_make_request", quote_request), \
                patch.object(fee_source, "_make_request", fee_request):
            quote = await registry.fetch_quote("eth", PriceSource.DEX)
            assert quote.value == Decimal("2500")
            assert quote_request.await_count == 1
            fee_request.assert_not_awaited()

            board = await registry.fetch_board("eth")

        fee_request.assert_awaited_once()
        assert board.fee == Decimal("0.84")

    def test_create_registry_wires_all_sources(self):
        registry = create_registry(AppConfig(api_base_url=BASE_URL))

        assert registry.list_sources() == [PriceSource.SPOT, PriceSource.DEX, PriceSource.BEST]
        assert registry.get_source(PriceSource.SPOT).base_url == BASE_URL
        assert "history" in registry.get_all_health()


class TestDemoPriceSource:
    """Tests for DemoPriceSource."""

    def test_multipliers(self):
        demo = DemoPriceSource()
        assert demo.multiplier("eth") == Decimal("1")
        assert demo.multiplier("SOL") == Decimal("0.5")
        assert demo.multiplier("doge") == Decimal("0.0001")

    def test_fee_only_on_dex(self):
        demo = DemoPriceSource()
        assert demo.quote("eth", PriceSource.DEX).auxiliary_fee == Decimal("5.0")
        assert demo.quote("eth", PriceSource.SPOT).auxiliary_fee is None
