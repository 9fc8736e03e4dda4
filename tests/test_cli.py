"""Tests for the command line entry point."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from hyperliquid_consensus_tracker.__main__ import build_parser, main
from hyperliquid_consensus_tracker.config import clear_settings_cache
from hyperliquid_consensus_tracker.explorer import AssetPosition, WalletData, WalletLookupError


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    """Point the CLI at a fresh SQLite database."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.delenv("REDIS_URL", raising=False)
    clear_settings_cache()
    assert main(["init-db"]) == 0
    yield tmp_path
    clear_settings_cache()


class TestParser:
    """Tests for argument parsing."""

    def test_wallet_add(self) -> None:
        args = build_parser().parse_args(["wallets", "add", "0xabc"])
        assert (args.command, args.wallet_command, args.address) == ("wallets", "add", "0xabc")

    def test_signals_list_limit(self) -> None:
        args = build_parser().parse_args(["--dry-run", "signals", "list", "--limit", "3"])
        assert args.dry_run is True
        assert args.limit == 3

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_explore_wallet_option(self) -> None:
        args = build_parser().parse_args(["explore", "--wallet", "0xabc"])
        assert (args.coin, args.wallet) == (None, "0xabc")

    def test_explore_needs_coin_or_wallet(self) -> None:
        with pytest.raises(SystemExit):
            main(["explore"])
        with pytest.raises(SystemExit):
            main(["explore", "BTC", "--wallet", "0xabc"])


class TestCommands:
    """Tests for running commands end to end against SQLite."""

    def test_wallet_registry_commands(self, cli_env, capsys) -> None:
        assert main(["wallets", "add", "0xABC"]) == 0
        assert main(["wallets", "add", "0xdef"]) == 0
        assert main(["wallets", "remove", "0xDEF"]) == 0
        capsys.readouterr()

        assert main(["wallets", "list"]) == 0

        out = capsys.readouterr().out
        assert "0xabc" in out
        assert "0xdef" not in out

    def test_duplicate_wallet_fails(self, cli_env, capsys) -> None:
        main(["wallets", "add", "0xabc"])

        assert main(["wallets", "add", "0xABC"]) == 1
        assert "already tracked" in capsys.readouterr().err

    def test_delete_missing_signal_fails(self, cli_env, capsys) -> None:
        assert main(["signals", "delete", "BTC-LONG-1"]) == 1
        assert "Signal not found" in capsys.readouterr().err

    def test_summary_on_empty_store(self, cli_env, capsys) -> None:
        assert main(["summary"]) == 0
        assert "Win rate: 0.00%" in capsys.readouterr().out

    def test_config_is_redacted(self, cli_env, monkeypatch, capsys) -> None:
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "secret-token")
        clear_settings_cache()

        assert main(["config"]) == 0

        out = capsys.readouterr().out
        assert "secret-token" not in out
        assert json.loads(out)["database_url"].endswith("cli.db")

    def test_explore_wallet(self, cli_env, capsys) -> None:
        data = WalletData(
            address="0xabc",
            account_value=Decimal("25000.50"),
            unrealized_pnl=Decimal("500.00"),
            roi=Decimal("20.00"),
            positions=(
                AssetPosition(
                    coin="BTC",
                    size=Decimal("0.5000"),
                    entry_price=Decimal("50000.0000"),
                    position_value=Decimal("25500.00"),
                    unrealized_pnl=Decimal("500.00"),
                    margin_used=Decimal("2500.00"),
                    return_on_equity=Decimal("20.00"),
                ),
            ),
        )

        with patch("hyperliquid_consensus_tracker.__main__.get_wallet_data", AsyncMock(return_value=data)):
            assert main(["explore", "--wallet", "0xABC"]) == 0

        out = capsys.readouterr().out
        assert "unrealized_pnl=500.00  roi=20.00%" in out
        assert "BTC  size=0.5000" in out

    def test_explore_wallet_lookup_failure(self, cli_env, capsys) -> None:
        failure = AsyncMock(side_effect=WalletLookupError("Failed to fetch wallet data for 0xabc"))

        with patch("hyperliquid_consensus_tracker.__main__.get_wallet_data", failure):
            assert main(["explore", "--wallet", "0xabc"]) == 1

        assert "Failed to fetch wallet data" in capsys.readouterr().err

    def test_registry_writes_take_redis_lock(self, cli_env, monkeypatch) -> None:
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
        clear_settings_cache()
        redis = AsyncMock()
        redis.set.return_value = True
        redis.get.return_value = None

        with patch("hyperliquid_consensus_tracker.__main__.Redis") as redis_cls:
            redis_cls.from_url.return_value = redis
            assert main(["wallets", "add", "0xabc"]) == 0

        redis_cls.from_url.assert_called_once_with("redis://localhost:6379/0")
        redis.set.assert_awaited_once()
        assert redis.set.call_args.kwargs["nx"] is True
        redis.aclose.assert_awaited_once()
