"""
Flask CLI commands.

Commands:
- flask init-db: Create database tables
- flask reconcile-sales: Retry queued sale steps
"""

import click
from flask import current_app

from pharmapos.database import create_all
from pharmapos.exceptions import BackendError
from pharmapos.services.backend_service import get_backend
from pharmapos.services.reconciliation_service import process_pending_tasks


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables on the configured database."""
        create_all()
        click.echo(click.style('✅ Database tables created.', fg='green', bold=True))

    @app.cli.command('reconcile-sales')
    @click.option('--tenant-id', type=int, default=None, help='Only tasks of this tenant')
    @click.option('--limit', type=int, default=None, help='Max tasks to process')
    def reconcile_sales(tenant_id, limit):
        """Retry combo tracking and lot deductions that failed during sales."""
        limit = limit or current_app.config['RECONCILE_BATCH_SIZE']
        try:
            stats = process_pending_tasks(get_backend(), tenant_id=tenant_id, limit=limit)
        except BackendError as e:
            click.echo(click.style(f'❌ Backend error: {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(f"Processed: {stats['processed']}")
        click.echo(click.style(f"  done:   {stats['done']}", fg='green'))
        click.echo(click.style(f"  retry:  {stats['retry']}", fg='yellow'))
        click.echo(click.style(f"  failed: {stats['failed']}", fg='red'))
