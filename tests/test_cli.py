"""Tests for the CLI commands that read persisted state."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from sniperbot.cli import cli
from sniperbot.engine.models import BUY, TAKE_PROFIT, ExitThresholds, Trade
from sniperbot.storage.history import HistoryStore
from sniperbot.config import StorageConfig
from sniperbot.observability.logger import configure_logging

from conftest import T0


@pytest.fixture(autouse=True)
def _logging_to_real_stderr():
    # Bind log handlers before CliRunner swaps sys.stderr for its buffer
    configure_logging(level="WARNING", fmt="console")


def _write_config(tmp_path) -> tuple[str, str]:
    db_path = str(tmp_path / "h.db")
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        f"storage:\n  sqlite_path: {db_path}\n"
        f"observability:\n  log_level: WARNING\n  log_file: {tmp_path / 'bot.log'}\n"
    )
    return str(cfg_path), db_path


class TestCli:
    def test_config_prints_json(self, tmp_path):
        cfg_path, _ = _write_config(tmp_path)
        result = CliRunner().invoke(cli, ["--config", cfg_path, "config"])
        assert result.exit_code == 0
        assert '"take_profit"' in result.output

    def test_history_and_stats(self, tmp_path):
        cfg_path, db_path = _write_config(tmp_path)
        store = HistoryStore(StorageConfig(sqlite_path=db_path))
        store.append(Trade(
            venue="binance", instrument="BTC/USDT", side=BUY, strategy="m",
            thresholds=ExitThresholds(5.0, 2.0, 3600), entry_price=100.0, created_at=T0,
        ).closed(TAKE_PROFIT, 106.0, T0 + 60))
        store.close()

        runner = CliRunner()
        history = runner.invoke(cli, ["--config", cfg_path, "history"])
        assert history.exit_code == 0
        assert "Trade History (1 of 1)" in history.output

        stats = runner.invoke(cli, ["--config", cfg_path, "stats"])
        assert stats.exit_code == 0
        assert "100.0%" in stats.output

    def test_status_without_engine_run(self, tmp_path):
        cfg_path, _ = _write_config(tmp_path)
        result = CliRunner().invoke(cli, ["--config", cfg_path, "status"])
        assert result.exit_code == 0
        assert "No engine status" in result.output

    def test_status_shows_persisted_state(self, tmp_path):
        cfg_path, db_path = _write_config(tmp_path)
        store = HistoryStore(StorageConfig(sqlite_path=db_path))
        store.set_state("engine_status", json.dumps({"running": False, "cycle_count": 7}))
        store.close()
        result = CliRunner().invoke(cli, ["--config", cfg_path, "status"])
        assert result.exit_code == 0
        assert "cycle_count" in result.output
