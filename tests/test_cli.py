"""Tests for the click command surface."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from buyburn.cli import cli
from buyburn.clock import wall_clock
from buyburn.config_store import ConfigStore, RiskParameters, _compute_config_signature
from buyburn.wal import WALReader

SECRET = "cli-test-secret"


def test_paper_run_default_succeeds() -> None:
    result = CliRunner().invoke(cli, ["paper", "run"])
    assert result.exit_code == 0, result.output
    assert '"burned"' in result.output
    assert '"engine_base": 9000000000000000000' in result.output


def test_paper_run_deviation_exits_non_zero() -> None:
    result = CliRunner().invoke(cli, ["paper", "run", "--mean-tick", "100", "--current-tick", "210"])
    assert result.exit_code == 1
    assert "PRICE_DEVIATION_EXCEEDED" in result.output


def test_paper_run_journals_to_wal(tmp_path: Path) -> None:
    wal_path = tmp_path / "wal" / "run.jsonl"
    result = CliRunner().invoke(cli, ["paper", "run", "--wal-path", str(wal_path)])
    assert result.exit_code == 0, result.output

    types = [r["record_type"] for r in WALReader(str(wal_path)).read_all()]
    assert types[-2:] == ["ACTION_INTENT", "ACTION_RESULT"]


def test_config_init_requires_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BUYBURN_STATE_SECRET", raising=False)
    result = CliRunner().invoke(cli, ["config", "init", "--owner", "alice"])
    assert result.exit_code == 1
    assert "BUYBURN_STATE_SECRET" in result.output


def test_config_init_rejects_bad_bps() -> None:
    result = CliRunner().invoke(
        cli, ["config", "init", "--owner", "alice", "--secret", "s", "--max-deviation-bps", "70000"],
    )
    assert result.exit_code == 1
    assert "Invalid parameters" in result.output


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "buyburn" in result.output


# ── Stored configuration ──────────────────────────────────────────────────────

def _row(store: ConfigStore) -> dict:
    c = store.config
    return {
        "owner": store.owner,
        "version": store.version,
        "max_amount_per_action": c.max_amount_per_action,
        "min_action_delay": c.min_action_delay,
        "last_action_timestamp": c.last_action_timestamp,
        "max_deviation_bps": c.max_deviation_bps,
        "paused": c.paused,
        "config_signature": _compute_config_signature(store, SECRET),
    }


def _stored(last_action_timestamp: int = 0, **kwargs) -> dict:
    store = ConfigStore(owner="alice")
    store.initialize("alice", RiskParameters(**kwargs))
    if last_action_timestamp:
        store.record_action_timestamp(last_action_timestamp)
    return _row(store)


@pytest.fixture
def db_conn(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """A connection behind a mocked pool; fetchrow returns the stored row."""
    conn = AsyncMock()
    conn.fetchrow.return_value = _stored()
    conn.transaction = MagicMock()
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.fetchrow = conn.fetchrow
    pool.execute = conn.execute

    monkeypatch.setattr("buyburn.db.get_pool", AsyncMock(return_value=pool))
    monkeypatch.setattr("buyburn.db.close_pool", AsyncMock())
    monkeypatch.setenv("BUYBURN_STATE_SECRET", SECRET)
    return conn


def test_config_pause_saves_paused_row(db_conn: AsyncMock) -> None:
    result = CliRunner().invoke(cli, ["config", "pause", "--caller", "alice"])
    assert result.exit_code == 0, result.output
    assert '"paused": true' in result.output

    args = db_conn.execute.call_args[0]
    assert args[7] is True


def test_config_unpause_saves_unpaused_row(db_conn: AsyncMock) -> None:
    db_conn.fetchrow.return_value = _stored(paused=True)
    result = CliRunner().invoke(cli, ["config", "unpause", "--caller", "alice"])
    assert result.exit_code == 0, result.output
    assert db_conn.execute.call_args[0][7] is False


def test_config_pause_by_stranger_denied(db_conn: AsyncMock) -> None:
    result = CliRunner().invoke(cli, ["config", "pause", "--caller", "mallory"])
    assert result.exit_code == 1
    assert "ACCESS_DENIED" in result.output
    db_conn.execute.assert_not_awaited()


def test_config_set_updates_named_fields(db_conn: AsyncMock) -> None:
    result = CliRunner().invoke(
        cli, ["config", "set", "--caller", "alice", "--min-delay", "60", "--max-deviation-bps", "25"],
    )
    assert result.exit_code == 0, result.output

    args = db_conn.execute.call_args[0]
    assert args[4] == 60
    assert args[6] == 25


def test_config_set_requires_a_field(db_conn: AsyncMock) -> None:
    result = CliRunner().invoke(cli, ["config", "set", "--caller", "alice"])
    assert result.exit_code == 1
    db_conn.execute.assert_not_awaited()


def test_config_set_rejects_bad_bps(db_conn: AsyncMock) -> None:
    result = CliRunner().invoke(cli, ["config", "set", "--caller", "alice", "--max-deviation-bps", "70000"])
    assert result.exit_code == 1
    assert "Invalid parameters" in result.output
    db_conn.execute.assert_not_awaited()


def test_config_upgrade_applies_once(db_conn: AsyncMock) -> None:
    db_conn.fetchrow.return_value = _stored(last_action_timestamp=1234, min_action_delay=60)
    result = CliRunner().invoke(
        cli, ["config", "upgrade", "--caller", "alice", "--version", "2", "--max-amount", "5"],
    )
    assert result.exit_code == 0, result.output

    args = db_conn.execute.call_args[0]
    assert args[2] == 2
    assert args[3] == 5
    assert args[4] == 60
    assert args[5] == 1234

    db_conn.execute.reset_mock()
    result = CliRunner().invoke(cli, ["config", "upgrade", "--caller", "alice", "--version", "1"])
    assert result.exit_code == 1
    assert "VERSION_ALREADY_APPLIED" in result.output
    db_conn.execute.assert_not_awaited()


def test_config_update_without_stored_config(db_conn: AsyncMock) -> None:
    db_conn.fetchrow.return_value = None
    result = CliRunner().invoke(cli, ["config", "pause", "--caller", "alice"])
    assert result.exit_code == 1
    assert "config init" in result.output


def test_config_update_tampered_row(db_conn: AsyncMock) -> None:
    row = _stored()
    row["paused"] = True
    db_conn.fetchrow.return_value = row
    result = CliRunner().invoke(cli, ["config", "unpause", "--caller", "alice"])
    assert result.exit_code == 1
    assert "CONFIG_TAMPER" in result.output


def test_paper_run_persist_saves_action_timestamp(db_conn: AsyncMock) -> None:
    before = wall_clock()
    result = CliRunner().invoke(cli, ["paper", "run", "--persist"])
    assert result.exit_code == 0, result.output

    args = db_conn.execute.call_args[0]
    assert args[5] >= before


def test_paper_run_persist_rate_limited_across_runs(db_conn: AsyncMock) -> None:
    db_conn.fetchrow.return_value = _stored(last_action_timestamp=wall_clock() - 10)
    result = CliRunner().invoke(cli, ["paper", "run", "--persist"])
    assert result.exit_code == 1
    assert "RATE_LIMITED" in result.output
    db_conn.execute.assert_not_awaited()


def test_paper_run_persist_without_stored_config(db_conn: AsyncMock) -> None:
    db_conn.fetchrow.return_value = None
    result = CliRunner().invoke(cli, ["paper", "run", "--persist"])
    assert result.exit_code == 1
    assert "config init" in result.output
