"""Tests for the gateway scatter/gather helpers."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

from hyperliquid_consensus_tracker.ingestor.fetch import fetch_fills_for_wallets, fetch_mark_prices


class TestFetchFillsForWallets:
    """Tests for fetch_fills_for_wallets."""

    async def test_collects_per_wallet(self, fill_factory) -> None:
        gateway = AsyncMock()
        gateway.fills.side_effect = lambda address: [fill_factory(1)] if address == "0xa" else []

        result = await fetch_fills_for_wallets(gateway, ["0xa", "0xb"])

        assert set(result) == {"0xa", "0xb"}
        assert len(result["0xa"]) == 1
        assert result["0xb"] == []

    async def test_failure_degrades_to_empty(self, fill_factory) -> None:
        async def fills(address: str):
            if address == "0xbad":
                raise RuntimeError("boom")
            return [fill_factory(2)]

        gateway = AsyncMock()
        gateway.fills.side_effect = fills

        result = await fetch_fills_for_wallets(gateway, ["0xbad", "0xgood"])

        assert result["0xbad"] == []
        assert len(result["0xgood"]) == 1

    async def test_timeout_degrades_to_empty(self) -> None:
        async def slow(address: str):
            await asyncio.sleep(1)
            return []

        gateway = AsyncMock()
        gateway.fills.side_effect = slow

        result = await fetch_fills_for_wallets(gateway, ["0xa"], timeout_seconds=0.01)

        assert result == {"0xa": []}

    async def test_deduplicates_addresses(self) -> None:
        gateway = AsyncMock()
        gateway.fills.return_value = []

        await fetch_fills_for_wallets(gateway, ["0xa", "0xa", "0xb"])

        assert gateway.fills.await_count == 2


class TestFetchMarkPrices:
    """Tests for fetch_mark_prices."""

    async def test_one_call_per_instrument(self) -> None:
        gateway = AsyncMock()
        gateway.mark_price.return_value = Decimal("10")

        prices = await fetch_mark_prices(gateway, ["BTC", "BTC", "ETH"])

        assert prices == {"BTC": Decimal("10"), "ETH": Decimal("10")}
        assert gateway.mark_price.await_count == 2

    async def test_failures_and_bad_values_become_zero(self) -> None:
        async def price(instrument: str) -> Decimal:
            if instrument == "ERR":
                raise RuntimeError("down")
            if instrument == "NEG":
                return Decimal("-1")
            if instrument == "NAN":
                return Decimal("NaN")
            return Decimal("5")

        gateway = AsyncMock()
        gateway.mark_price.side_effect = price

        prices = await fetch_mark_prices(gateway, ["ERR", "NEG", "NAN", "OK"])

        assert prices == {
            "ERR": Decimal("0"),
            "NEG": Decimal("0"),
            "NAN": Decimal("0"),
            "OK": Decimal("5"),
        }
