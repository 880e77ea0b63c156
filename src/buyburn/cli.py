"""BuyBurn CLI entrypoint.

Single command entrypoint supporting:
  db migrate
  wal replay
  config show | config init | config set | config pause | config unpause | config upgrade
  paper run [--persist]
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import click

# ─── Logging setup ────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger("buyburn")

SECRET_ENV = "BUYBURN_STATE_SECRET"


def _state_secret(secret: Optional[str]) -> str:
    value = secret or os.environ.get(SECRET_ENV, "")
    if not value:
        click.echo("No state secret: pass --secret or set {}".format(SECRET_ENV), err=True)
        sys.exit(1)
    return value


# ─── Root CLI ─────────────────────────────────────────────────────────────────

@click.group()
@click.version_option(version="1.0.0", prog_name="buyburn")
def cli() -> None:
    """BuyBurn — fee-funded buyback-and-burn engine."""
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# DB commands
# ═══════════════════════════════════════════════════════════════════════════════

@cli.group()
def db() -> None:
    """Database operations."""
    pass


@db.command("migrate")
@click.option(
    "--migrations-dir", default=None,
    help="Path to migrations directory (default: auto-detect)",
)
def db_migrate(migrations_dir: Optional[str]) -> None:
    """Run pending database migrations."""
    from buyburn.db import close_pool, get_pool, run_migrations, run_sync

    mdir = Path(migrations_dir) if migrations_dir else None

    async def _run_migrate() -> List[str]:
        try:
            pool = await get_pool()
            return await run_migrations(pool, mdir)
        finally:
            await close_pool()

    applied = run_sync(_run_migrate())
    if applied:
        click.echo("Applied {} migration(s): {}".format(len(applied), ", ".join(applied)))
    else:
        click.echo("All migrations already applied.")


@db.command("status")
@click.option("--migrations-dir", default=None, help="Path to migrations directory")
def db_status(migrations_dir: Optional[str]) -> None:
    """List migrations not yet applied."""
    from buyburn.db import close_pool, get_pool, pending_migrations, run_sync

    mdir = Path(migrations_dir) if migrations_dir else None

    async def _run_status() -> List[Any]:
        try:
            pool = await get_pool()
            return await pending_migrations(pool, mdir)
        finally:
            await close_pool()

    pending = run_sync(_run_status())
    for name, _ in pending:
        click.echo("pending: {}".format(name))
    if not pending:
        click.echo("Schema up to date.")


# ═══════════════════════════════════════════════════════════════════════════════
# WAL commands
# ═══════════════════════════════════════════════════════════════════════════════

@cli.group()
def wal() -> None:
    """Action journal operations."""
    pass


@wal.command("replay")
@click.option("--wal-path", default="data/wal.jsonl", help="Path to WAL file")
def wal_replay(wal_path: str) -> None:
    """Replay WAL records into the database."""
    from buyburn.db import close_pool, get_pool, run_sync
    from buyburn.wal import WALSyncError, replay_wal

    async def _run_replay() -> Dict[str, int]:
        try:
            pool = await get_pool()
            return await replay_wal(wal_path, pool)
        finally:
            await close_pool()

    try:
        stats = run_sync(_run_replay())
        click.echo(
            "WAL replay complete: inserted={} skipped={} open_intents={}".format(
                stats["inserted"], stats["skipped"], stats["open_intents"],
            )
        )
    except WALSyncError as e:
        click.echo("WAL replay failed: {}".format(e), err=True)
        sys.exit(1)


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIG commands
# ═══════════════════════════════════════════════════════════════════════════════

@cli.group()
def config() -> None:
    """Stored engine configuration."""
    pass


@config.command("show")
@click.option("--secret", default=None, help="State signing secret (default: $BUYBURN_STATE_SECRET)")
def config_show(secret: Optional[str]) -> None:
    """Print the stored configuration after verifying its signature."""
    from buyburn.config_store import ConfigSignatureError, load_config_store
    from buyburn.db import close_pool, get_pool, run_sync

    key = _state_secret(secret)

    async def _run_show() -> Any:
        try:
            pool = await get_pool()
            return await load_config_store(pool, key)
        finally:
            await close_pool()

    try:
        store = run_sync(_run_show())
    except ConfigSignatureError as e:
        click.echo("✗ CONFIG_TAMPER: {}".format(e), err=True)
        sys.exit(1)

    if store is None:
        click.echo("No configuration stored. Run: buyburn config init")
        return
    click.echo(json.dumps(store.to_dict(), indent=2, sort_keys=True))


@config.command("init")
@click.option("--owner", required=True, help="Owner principal")
@click.option("--max-amount", default=None, type=int, help="max_amount_per_action")
@click.option("--min-delay", default=None, type=int, help="min_action_delay (seconds)")
@click.option("--max-deviation-bps", default=None, type=int, help="max_deviation_bps")
@click.option("--secret", default=None, help="State signing secret (default: $BUYBURN_STATE_SECRET)")
def config_init(
    owner: str,
    max_amount: Optional[int],
    min_delay: Optional[int],
    max_deviation_bps: Optional[int],
    secret: Optional[str],
) -> None:
    """Create the stored configuration (no-op if it already exists)."""
    from buyburn.config_store import RiskParameters, initialise_config_store
    from buyburn.db import close_pool, get_pool, run_sync

    key = _state_secret(secret)
    overrides = {
        k: v for k, v in (
            ("max_amount_per_action", max_amount),
            ("min_action_delay", min_delay),
            ("max_deviation_bps", max_deviation_bps),
        ) if v is not None
    }
    try:
        params = RiskParameters(**overrides)
    except ValueError as e:
        click.echo("Invalid parameters: {}".format(e), err=True)
        sys.exit(1)

    async def _run_init() -> Any:
        try:
            pool = await get_pool()
            return await initialise_config_store(pool, key, owner, params)
        finally:
            await close_pool()

    store = run_sync(_run_init())
    click.echo("Config at version {} (owner={})".format(store.version, store.owner))


def _update_stored_config(secret: Optional[str], mutate: Callable[[Any], None]) -> Any:
    """Load, mutate, re-sign and save the stored config; exit 1 on any refusal."""
    from buyburn.config_store import (
        ConfigNotInitialised,
        ConfigSignatureError,
        update_config_store,
    )
    from buyburn.db import close_pool, get_pool, run_sync
    from buyburn.errors import EngineError

    key = _state_secret(secret)

    async def _run_update() -> Any:
        try:
            pool = await get_pool()
            return await update_config_store(pool, key, mutate)
        finally:
            await close_pool()

    try:
        store = run_sync(_run_update())
    except ConfigSignatureError as e:
        click.echo("✗ CONFIG_TAMPER: {}".format(e), err=True)
        sys.exit(1)
    except ConfigNotInitialised as e:
        click.echo("✗ {}".format(e), err=True)
        sys.exit(1)
    except EngineError as e:
        click.echo("✗ {}: {}".format(e.code, e), err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo("Invalid parameters: {}".format(e), err=True)
        sys.exit(1)

    click.echo(json.dumps(store.to_dict(), indent=2, sort_keys=True))
    return store


@config.command("set")
@click.option("--caller", required=True, help="Principal making the change (must be the owner)")
@click.option("--max-amount", default=None, type=int, help="max_amount_per_action")
@click.option("--min-delay", default=None, type=int, help="min_action_delay (seconds)")
@click.option("--max-deviation-bps", default=None, type=int, help="max_deviation_bps")
@click.option("--secret", default=None, help="State signing secret (default: $BUYBURN_STATE_SECRET)")
def config_set(
    caller: str,
    max_amount: Optional[int],
    min_delay: Optional[int],
    max_deviation_bps: Optional[int],
    secret: Optional[str],
) -> None:
    """Change individual risk parameters."""
    if max_amount is None and min_delay is None and max_deviation_bps is None:
        click.echo("Nothing to set: pass at least one parameter", err=True)
        sys.exit(1)

    def _mutate(store: Any) -> None:
        if max_amount is not None:
            store.set_max_amount_per_action(caller, max_amount)
        if min_delay is not None:
            store.set_min_action_delay(caller, min_delay)
        if max_deviation_bps is not None:
            store.set_max_deviation_bps(caller, max_deviation_bps)

    _update_stored_config(secret, _mutate)


@config.command("pause")
@click.option("--caller", required=True, help="Principal making the change (must be the owner)")
@click.option("--secret", default=None, help="State signing secret (default: $BUYBURN_STATE_SECRET)")
def config_pause(caller: str, secret: Optional[str]) -> None:
    """Engage the kill-switch."""
    _update_stored_config(secret, lambda store: store.set_paused(caller, True))


@config.command("unpause")
@click.option("--caller", required=True, help="Principal making the change (must be the owner)")
@click.option("--secret", default=None, help="State signing secret (default: $BUYBURN_STATE_SECRET)")
def config_unpause(caller: str, secret: Optional[str]) -> None:
    """Release the kill-switch."""
    _update_stored_config(secret, lambda store: store.set_paused(caller, False))


@config.command("upgrade")
@click.option("--caller", required=True, help="Principal making the change (must be the owner)")
@click.option("--version", "version", required=True, type=int, help="New config version (> current)")
@click.option("--max-amount", default=None, type=int, help="max_amount_per_action (default: keep)")
@click.option("--min-delay", default=None, type=int, help="min_action_delay (default: keep)")
@click.option("--max-deviation-bps", default=None, type=int, help="max_deviation_bps (default: keep)")
@click.option("--secret", default=None, help="State signing secret (default: $BUYBURN_STATE_SECRET)")
def config_upgrade(
    caller: str,
    version: int,
    max_amount: Optional[int],
    min_delay: Optional[int],
    max_deviation_bps: Optional[int],
    secret: Optional[str],
) -> None:
    """Apply a versioned reinitialisation; each version applies once."""
    from buyburn.config_store import RiskParameters

    def _mutate(store: Any) -> None:
        params = RiskParameters(
            max_amount_per_action=store.max_amount_per_action if max_amount is None else max_amount,
            min_action_delay=store.min_action_delay if min_delay is None else min_delay,
            max_deviation_bps=store.max_deviation_bps if max_deviation_bps is None else max_deviation_bps,
            paused=store.paused,
        )
        store.reinitialize(caller, version, params)

    _update_stored_config(secret, _mutate)


# ═══════════════════════════════════════════════════════════════════════════════
# PAPER commands
# ═══════════════════════════════════════════════════════════════════════════════

@cli.group()
def paper() -> None:
    """Simulated dry runs."""
    pass


def _paper_action(setup: Any, fees: int, mean_tick: int, current_tick: int) -> Optional[Any]:
    """Accrue fees, shape the price, run one harvest-and-swap.

    Prints the result and returns None, or returns the EngineError.
    """
    from buyburn.errors import EngineError
    from buyburn.paper import BASE_ASSET, PAPER_OPERATOR

    setup.custodian_v1.accrue(1, BASE_ASSET, fees)
    setup.move_price(mean_tick, current_tick)
    try:
        result = setup.engine.harvest_and_swap(PAPER_OPERATOR, PAPER_OPERATOR)
    except EngineError as e:
        return e

    click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))
    click.echo(json.dumps(setup.balances(), indent=2, sort_keys=True))
    return None


@paper.command("run")
@click.option("--fees", default=10 ** 19, type=int, help="Fees accrued on the default source")
@click.option("--mean-tick", default=0, type=int, help="Reference mean tick")
@click.option("--current-tick", default=0, type=int, help="Current tick at action time")
@click.option("--max-amount", default=10 ** 18, type=int, help="max_amount_per_action")
@click.option("--max-deviation-bps", default=10, type=int, help="max_deviation_bps")
@click.option("--wal-path", default=None, help="Journal the run to this WAL file")
@click.option(
    "--persist", is_flag=True, default=False,
    help="Use the stored config (wall clock, stored risk parameters) and save it back",
)
@click.option("--secret", default=None, help="State signing secret for --persist")
def paper_run(
    fees: int,
    mean_tick: int,
    current_tick: int,
    max_amount: int,
    max_deviation_bps: int,
    wal_path: Optional[str],
    persist: bool,
    secret: Optional[str],
) -> None:
    """Run one harvest-and-swap action against paper collaborators."""
    from buyburn.clock import wall_clock
    from buyburn.config_store import (
        ConfigNotInitialised,
        ConfigSignatureError,
        RiskParameters,
        load_config_store,
        save_if_dirty,
    )
    from buyburn.db import close_pool, get_pool, run_sync
    from buyburn.paper import PaperSetup
    from buyburn.wal import WALWriter

    key = _state_secret(secret) if persist else ""

    writer = WALWriter(wal_path) if wal_path else None
    if writer is not None:
        writer.open()

    async def _run_persisted() -> Any:
        try:
            pool = await get_pool()
            store = await load_config_store(pool, key)
            if store is None:
                raise ConfigNotInitialised("No configuration stored. Run: buyburn config init")
            setup = PaperSetup(store=store, tick=mean_tick, start_ts=wall_clock(), wal=writer)
            error = _paper_action(setup, fees, mean_tick, current_tick)
            await save_if_dirty(pool, store, key)
            return error
        finally:
            await close_pool()

    try:
        if persist:
            try:
                error = run_sync(_run_persisted())
            except ConfigSignatureError as e:
                click.echo("✗ CONFIG_TAMPER: {}".format(e), err=True)
                sys.exit(1)
            except ConfigNotInitialised as e:
                click.echo(str(e), err=True)
                sys.exit(1)
        else:
            setup = PaperSetup(
                params=RiskParameters(
                    max_amount_per_action=max_amount,
                    max_deviation_bps=max_deviation_bps,
                ),
                tick=mean_tick,
                wal=writer,
            )
            error = _paper_action(setup, fees, mean_tick, current_tick)

        if error is not None:
            click.echo("✗ {}: {}".format(error.code, error), err=True)
            sys.exit(1)
    finally:
        if writer is not None:
            writer.close()


if __name__ == "__main__":
    cli()
