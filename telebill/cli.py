import json

import click
from flask.cli import with_appcontext

from telebill.services import get_reconciliation_service


@click.command('process-billing')
@click.option('--dry-run', is_flag=True, help='List due billing records without charging them')
@with_appcontext
def process_billing(dry_run):
    """Run scheduled billing now"""
    click.echo("Running scheduled billing" + (" (dry run)..." if dry_run else "..."))

    summary = get_reconciliation_service().run(trigger_type='cli', dry_run=dry_run)

    if dry_run:
        click.echo(f"{summary.total_due} billing record(s) due")
        for entry in summary.processed:
            click.echo(
                f"   #{entry['billing_id']} {entry['phone_number']} "
                f"{entry['amount']:.4f} {entry['currency']} ({entry['transaction_type']})"
            )
        return

    click.echo(f"Run {summary.run_id}: {summary.status}")
    click.echo(f"   Due:       {summary.total_due}")
    click.echo(f"   Paid:      {summary.processed_count}")
    click.echo(f"   Failed:    {summary.failed_count}")
    click.echo(f"   Skipped:   {summary.skipped_count}")
    click.echo(f"   Duration:  {summary.duration_ms}ms")

    if summary.errors:
        click.echo(f"\nErrors ({summary.error_count} total):")
        for error in summary.errors:
            click.echo(f"   [{error['kind']}] billing {error['billing_id']} {error['phone_number'] or ''}: {error['error']}")

    if summary.status in ('failed', 'skipped'):
        raise SystemExit(1)


@click.command('billing-status')
@with_appcontext
def billing_status():
    """Show scheduled billing counts and the last run"""
    status = get_reconciliation_service().get_status()

    click.echo("Scheduled Billing Status")
    click.echo("=" * 40)
    click.echo(f"Pending (due):     {status['pending_due']}")
    click.echo(f"Pending (future):  {status['pending_future']}")
    click.echo(f"Paid today:        {status['processed_today']}")
    click.echo(f"Failed today:      {status['failed_today']}")

    last = status['last_execution']
    if last:
        click.echo(f"\nLast run: {last['started_at']} ({last['trigger_type']}) -> {last['status']}")
        click.echo(json.dumps({k: last[k] for k in ('processed', 'failed', 'skipped', 'duration_ms')}))
    else:
        click.echo("\nNo billing runs recorded yet")


def register_commands(app):
    app.cli.add_command(process_billing)
    app.cli.add_command(billing_status)
