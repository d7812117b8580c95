# channel_sync/cli/run_sync.py
import asyncio
import json

import click

from channel_sync.core.enums import PlatformName, SyncTrigger
from channel_sync.core.exceptions import BaseServiceError
from channel_sync.core.logging_config import configure_logging
from channel_sync.integrations.setup import setup_sync_engine


def _print_report(report):
    click.echo(f"\nSync {report.sync_run_id} for seller {report.seller_id}")
    click.echo(f"  synced={report.synced} new={report.new} failed={report.failed}")
    for result in report.credentials:
        line = (
            f"  - {result.platform} [{result.account or result.credential_id}]: {result.outcome.value} "
            f"(orders {result.orders_synced}/{result.orders_fetched}, listings checked {result.listings_checked})"
        )
        if result.requires_reconnect:
            line += " -> reconnect required"
        click.echo(line)
        for error in result.errors:
            click.echo(f"      ! {error}")


@click.group()
def cli():
    """Channel sync maintenance commands"""
    configure_logging()


@cli.command("run-sync")
@click.option("--seller", "seller_id", help="Seller to sync")
@click.option("--platform", type=click.Choice([p.value for p in PlatformName]), help="Only sync this platform")
@click.option("--all", "sync_all", is_flag=True, help="Sync every seller with an active credential")
@click.option("--json", "as_json", is_flag=True, help="Print the run reports as JSON")
def run_sync(seller_id, platform, sync_all, as_json):
    """Run an order and listing sync for one seller or for all of them"""
    if not seller_id and not sync_all:
        raise click.UsageError("Pass --seller or --all")

    async def _run():
        orchestrator = setup_sync_engine()
        if sync_all:
            return await orchestrator.run_scheduled()
        return [await orchestrator.run_sync(seller_id, platform, trigger=SyncTrigger.MANUAL)]

    try:
        reports = asyncio.run(_run())
    except BaseServiceError as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in reports], indent=2))
        return
    if not reports:
        click.echo("No sellers with active credentials")
    for report in reports:
        _print_report(report)


@cli.command("refresh-tokens")
def refresh_tokens():
    """Rotate access tokens that are close to expiry"""

    async def _refresh():
        orchestrator = setup_sync_engine()
        return await orchestrator.credential_service.refresh_expiring()

    try:
        summary = asyncio.run(_refresh())
    except BaseServiceError as e:
        raise click.ClickException(str(e))

    click.echo(
        f"Checked {summary['checked']}: refreshed {summary['refreshed']}, revoked {summary['revoked']}, "
        f"failed {summary['failed']}, skipped {summary['skipped']}"
    )


@cli.command("purge-events")
@click.option("--days", type=int, default=None, help="Retention in days (defaults to SYNC_EVENT_RETENTION_DAYS)")
def purge_events(days):
    """Delete sync events older than the retention window"""

    async def _purge():
        orchestrator = setup_sync_engine()
        return await orchestrator.purge_events(days)

    deleted = asyncio.run(_purge())
    click.echo(f"Deleted {deleted} sync events")


if __name__ == "__main__":
    cli()
