"""Tests for the priceledger CLI against a temporary SQLite file."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from priceledger import cli
from priceledger.config import reset_config

RATES_FILE = Path(__file__).parents[2] / "config" / "exchange_rates.yaml"

runner = CliRunner()


@pytest.fixture
def db_env(tmp_path, monkeypatch):
    """Point DATABASE_URL at a fresh SQLite file and create the schema."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setattr(cli.console, "width", 200)
    reset_config()

    result = runner.invoke(cli.app, ["init"])
    assert result.exit_code == 0, result.output
    return tmp_path


def _invoke(*args: str):
    return runner.invoke(cli.app, list(args))


class TestCli:
    """End-to-end CLI flows."""

    def test_init_reports_database(self, db_env):
        result = _invoke("init", "--drop")

        assert result.exit_code == 0
        assert "Database initialized" in result.output

    def test_load_rates_and_convert(self, db_env):
        result = _invoke("load-rates", str(RATES_FILE))
        assert result.exit_code == 0, result.output
        assert "Loaded 3 exchange rates" in result.output

        result = _invoke("convert", "100", "CNY", "IDR", "--as-of", "2024-06-01T00:00:00")
        assert result.exit_code == 0, result.output
        assert "220000 IDR" in result.output

    def test_convert_missing_rate_fails(self, db_env):
        result = _invoke("convert", "100", "CNY", "IDR")

        assert result.exit_code == 1
        assert "NotFoundError" in result.output

    def test_schedule_resolve_unschedule(self, db_env):
        _invoke("load-rates", str(RATES_FILE))

        result = _invoke(
            "schedule", "P1", "channel",
            "--from", "2099-01-01T00:00",
            "--cny", "100",
            "--linkage", "primary_is_cny",
            "--reason", "launch",
        )
        assert result.exit_code == 0, result.output
        assert "Scheduled channel price for P1" in result.output
        assert "IDR 220000" in result.output

        result = _invoke("resolve", "P1", "channel", "--as-of", "2099-06-01T00:00:00")
        assert result.exit_code == 0, result.output
        assert "CNY 100.00" in result.output

        result = _invoke("changelog", "P1")
        assert result.exit_code == 0, result.output
        assert "create" in result.output

        result = _invoke("history", "P1")
        assert result.exit_code == 0, result.output
        assert "pending" in result.output

        result = _invoke("check", "P1")
        assert result.exit_code == 0, result.output
        assert "consistent" in result.output

    def test_schedule_today_is_rejected(self, db_env):
        result = _invoke("schedule", "P1", "cost", "--from", "2000-01-01T00:00", "--cny", "1")

        assert result.exit_code == 1
        assert "ConflictError" in result.output

    def test_schedule_bad_amount(self, db_env):
        result = _invoke("schedule", "P1", "cost", "--from", "2099-01-01T00:00", "--cny", "abc")

        assert result.exit_code != 0

    def test_schedule_non_finite_amount(self, db_env):
        result = _invoke("schedule", "P1", "cost", "--from", "2099-01-01T00:00", "--cny", "NaN")

        assert result.exit_code != 0
        assert "finite" in result.output
        assert not isinstance(result.exception, ArithmeticError)

    def test_empty_history(self, db_env):
        result = _invoke("history", "NOPE")

        assert result.exit_code == 0
        assert "No price history" in result.output


class TestRatesCommands:
    """Exchange rate maintenance."""

    def test_add_list_and_history(self, db_env):
        result = _invoke("rates", "add", "CNY", "IDR", "2200", "--from", "2024-01-01T00:00:00")
        assert result.exit_code == 0, result.output
        assert "Added CNY->IDR rate 2200" in result.output

        result = _invoke(
            "rates", "add", "CNY", "IDR", "2250", "--from", "2024-07-01T00:00:00", "--reason", "July"
        )
        assert result.exit_code == 0, result.output

        result = _invoke("rates", "list", "--as-of", "2024-03-01T00:00:00")
        assert result.exit_code == 0, result.output
        assert "2200" in result.output

        result = _invoke("rates", "history", "--from", "CNY")
        assert result.exit_code == 0, result.output
        assert "2 rates" in result.output

        result = _invoke("convert", "100", "CNY", "IDR", "--as-of", "2024-08-01T00:00:00")
        assert "225000 IDR" in result.output

    def test_duplicate_start_rejected(self, db_env):
        _invoke("rates", "add", "CNY", "IDR", "2200", "--from", "2024-01-01T00:00:00")

        result = _invoke("rates", "add", "CNY", "IDR", "2300", "--from", "2024-01-01T00:00:00")

        assert result.exit_code == 1
        assert "ConflictError" in result.output

    def test_zero_rate_rejected(self, db_env):
        result = _invoke("rates", "add", "CNY", "IDR", "0")

        assert result.exit_code != 0

    def test_list_empty(self, db_env):
        result = _invoke("rates", "list")

        assert result.exit_code == 0
        assert "No exchange rates in force" in result.output


class TestLinkCommand:
    """The link command needs no database."""

    def test_link_cny_primary(self):
        result = _invoke("link", "100", "CNY", "--rate", "2200")

        assert result.exit_code == 0
        assert "IDR 220000" in result.output

    def test_link_non_primary(self):
        result = _invoke("link", "100", "IDR", "--rate", "2200")

        assert result.exit_code == 0
        assert "No derivation" in result.output

    def test_link_zero_rate(self):
        result = _invoke("link", "100", "CNY", "--rate", "0")

        assert result.exit_code == 1
