# Overview: kassa-terminal console script; sync, journal inspection and staff receipt reconciliation.

# Commands Legend:
# Configure with KASSA_SERVER_URL, KASSA_API_TOKEN, KASSA_JOURNAL_PATH (see config.py).
#
# - kassa-terminal sync
#   Run one sync pass and print the result.
# - kassa-terminal pending
#   List sales in the local journal that have not reached the server.
# - kassa-terminal watch
#   Probe the server every KASSA_SYNC_INTERVAL seconds and sync when online. Ctrl+C to stop.
# - kassa-terminal reconcile
#   Merge the server staff receipt list into the local cache and push local edits.
# - kassa-terminal login --username cashier
#   Print a bearer token for KASSA_API_TOKEN.

import logging
import time

import click

from ..time_utils import to_utc_z
from .api_client import ServerClient
from .config import TerminalConfig
from .connectivity import ConnectivityMonitor
from .errors import ApiError, NetworkError, StorageError
from .journal import SaleJournal
from .staff_cache import StaffReceiptCache
from .sync import SyncCoordinator


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
@click.pass_context
def main(ctx, verbose):
    """Kassa till tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = TerminalConfig.from_env()


def _open_journal(config: TerminalConfig) -> SaleJournal:
    try:
        return SaleJournal.open(config.journal_path)
    except StorageError as e:
        raise click.ClickException(str(e))


@main.command('sync')
@click.pass_obj
def sync_command(config):
    """Run one sync pass."""
    journal = _open_journal(config)
    with ServerClient.from_config(config) as client:
        result = SyncCoordinator(journal, client, batch_size=config.sync_batch_size).sync()

    click.echo(f"PASS synced {result.synced}, failed {result.failed}")
    for err in result.errors:
        who = err.get("local_id") or f"{err.get('count', 0)} sales"
        click.echo(f"FAIL {who}: {err.get('message')}")
    if result.failed:
        raise SystemExit(1)


@main.command('pending')
@click.pass_obj
def pending_command(config):
    """List unsynced sales."""
    sales = _open_journal(config).list_pending()
    if not sales:
        click.echo("No pending sales")
        return
    for sale in sales:
        kind = "return" if sale.is_return else "sale"
        line = f"{sale.local_id}  {to_utc_z(sale.created_at)}  {kind:<6} {sale.total_cents:>8}  {sale.sync_status}"
        if sale.last_error:
            line += f"  ({sale.attempts} attempts, last error: {sale.last_error})"
        click.echo(line)


@main.command('watch')
@click.option('--interval', type=float, default=None, help='Seconds between probes')
@click.pass_obj
def watch_command(config, interval):
    """Keep syncing while the server is reachable."""
    journal = _open_journal(config)
    client = ServerClient.from_config(config)
    coordinator = SyncCoordinator(journal, client, batch_size=config.sync_batch_size)
    monitor = ConnectivityMonitor(
        on_sync=coordinator.sync,
        probe=client.ping,
        has_pending=lambda: journal.count_pending() > 0,
    )
    monitor.subscribe(lambda online: click.echo("ONLINE" if online else "OFFLINE"))

    monitor.start(interval or config.sync_interval)
    monitor.tick()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("Exiting on Ctrl+C")
    finally:
        monitor.stop()
        monitor.wait_idle(timeout=config.http_timeout)
        client.close()


@main.command('reconcile')
@click.pass_obj
def reconcile_command(config):
    """Reconcile the staff receipt cache with the server."""
    try:
        cache = StaffReceiptCache.open(config.journal_path)
    except StorageError as e:
        raise click.ClickException(str(e))

    with ServerClient.from_config(config) as client:
        try:
            result = cache.reconcile(client)
        except (NetworkError, ApiError) as e:
            raise click.ClickException(f"Server unavailable: {e}")

    click.echo(
        f"PASS inserted {result.inserted}, updated {result.updated}, "
        f"pushed {result.pushed}, push failures {result.push_failed}"
    )


@main.command('login')
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True)
@click.pass_obj
def login_command(config, username, password):
    """Log in and print a bearer token."""
    with ServerClient.from_config(config) as client:
        try:
            body = client.login(username, password)
        except (NetworkError, ApiError) as e:
            raise click.ClickException(str(e))
    click.echo(body["token"])


if __name__ == '__main__':
    main()
