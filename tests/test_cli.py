from datetime import date, timedelta

import pytest
from click.testing import CliRunner

import scheduler
from cli import cli
from conftest import make_listing


@pytest.fixture
def runner(store):
    today = date.today()
    store.insert_batch([
        make_listing("A", price=650000, city="Ajax", postal_code="L1S1R6",
                     first_seen=today, last_seen=today),
        make_listing("B", price=420000, city="Cambridge", postal_code="N1R1A1",
                     first_seen=today - timedelta(days=45), last_seen=today),
    ])
    store.upsert_daily_stat(today, 1, 0, 2)
    return CliRunner()


def test_stats(runner):
    result = runner.invoke(cli, ["stats"])

    assert result.exit_code == 0
    assert "New today:           1" in result.output
    assert "Total active:        2" in result.output


def test_listings_postal_filter(runner):
    result = runner.invoke(cli, ["listings", "--postal", "l1s"])

    assert result.exit_code == 0
    assert "1 listings" in result.output
    assert "650,000" in result.output
    assert "420,000" not in result.output


def test_aging(runner):
    result = runner.invoke(cli, ["aging", "--days", "30"])

    assert result.exit_code == 0
    assert "1 active listings older than 30 days" in result.output


def test_history(runner):
    result = runner.invoke(cli, ["history"])

    assert result.exit_code == 0
    assert date.today().isoformat() in result.output


def test_sync_failure_exits_nonzero(runner, monkeypatch):
    monkeypatch.setattr(scheduler, "run_sync", lambda cycle_date=None: {"error": "blocked"})

    result = runner.invoke(cli, ["sync"])

    assert result.exit_code == 1
    assert "Error: blocked" in result.output
