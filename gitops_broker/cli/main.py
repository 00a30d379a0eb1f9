"""Command line companion for operators and pipelines.

``git pull`` / ``git push`` use the same fast-forward-then-rebase pull and
push-with-one-retry policy as the broker, so a working copy maintained by
hand stays compatible with what the broker expects.
"""

import json
import logging

import click
import git
from tabulate import tabulate

from gitops_broker import __version__
from gitops_broker.exceptions import GitOpsBrokerError
from gitops_broker.logging_config import setup_logging
from gitops_broker.models.instance import OperationState, OperationStatus
from gitops_broker.storage.codec import codec
from gitops_broker.storage.file_store import FileInstanceStore
from gitops_broker.storage.git_repository import SyncedRepository

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR_NAME = "gitops-broker CLI"
DEFAULT_AUTHOR_EMAIL = "gitops-broker-cli@localhost"

repo_argument = click.argument('repo', default='.', type=click.Path(file_okay=False))


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def cli(verbose):
    """gitops-broker CLI - inspect and synchronize the instance repository."""
    if verbose:
        setup_logging(level='DEBUG', structured=False)


@cli.group('git')
def git_cli():
    """Run git pull/push with the broker's conflict policy."""
    pass


@git_cli.command('pull')
@repo_argument
def git_pull(repo):
    """Fast-forward, or rebase local commits onto the remote."""
    try:
        SyncedRepository.open_existing(repo).pull()
    except GitOpsBrokerError as e:
        click.echo(f"❌ Pull failed: {e}", err=True)
        raise click.Abort()

    click.echo("✅ Repository is up to date")


@git_cli.command('push')
@repo_argument
@click.option('--name', default=DEFAULT_AUTHOR_NAME, help='Commit author name')
@click.option('--email', default=DEFAULT_AUTHOR_EMAIL, help='Commit author email')
@click.option('--message', '-m', default='Commit changes', help='Commit message')
def git_push(repo, name, email, message):
    """Commit all changes and push, pulling once if the push is rejected."""
    try:
        repository = SyncedRepository.open_existing(repo)
        with repository.locked():
            committed = repository.commit(f"gitops-broker CLI: {message}", author=git.Actor(name, email))
            repository.push()
    except GitOpsBrokerError as e:
        click.echo(f"❌ Push failed: {e}", err=True)
        raise click.Abort()

    if committed:
        click.echo(f"✅ Committed and pushed {repository.head_commit()[:8]}")
    else:
        click.echo("✅ Nothing to commit, pushed existing history")


@cli.command('list')
@repo_argument
@click.option('--format', '-f', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
def list_instances(repo, output_format):
    """List service instances and their last operation status."""
    store = FileInstanceStore(repo)
    try:
        rows = []
        for record in store.list_instances():
            status = store.read_status(record.id)
            rows.append({
                'id': record.id,
                'service': record.service_definition_id,
                'plan': record.plan_id,
                'deleted': record.deleted,
                'status': status.status.value,
                'description': status.description,
            })
    except GitOpsBrokerError as e:
        click.echo(f"❌ Failed to list instances: {e}", err=True)
        raise click.Abort()

    if output_format == 'json':
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        click.echo("No service instances found")
        return

    headers = ['ID', 'Service', 'Plan', 'Deleted', 'Status', 'Description']
    click.echo(tabulate([list(row.values()) for row in rows], headers=headers, tablefmt='grid'))


@cli.command('show')
@click.argument('instance_id')
@repo_argument
def show_instance(instance_id, repo):
    """Show the instance record and its status."""
    store = FileInstanceStore(repo)
    try:
        record = store.read_instance(instance_id)
        status = store.read_status(instance_id)
    except GitOpsBrokerError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    click.echo(codec.encode_instance(record).decode('utf-8'), nl=False)
    click.echo("---")
    click.echo(codec.encode_status(status).decode('utf-8'), nl=False)


@cli.command('update')
@click.argument('instance_id')
@repo_argument
@click.option('--status', '-s', 'state', required=True,
              type=click.Choice([state.value for state in OperationState]),
              help='Operation state to report')
@click.option('--description', '-d', required=True, help='Human readable status description')
def update_status(instance_id, repo, state, description):
    """Report the outcome of the pipeline for an instance (run 'git push' afterwards)."""
    store = FileInstanceStore(repo)
    try:
        if not store.instance_exists(instance_id):
            click.echo(f"❌ Service instance '{instance_id}' not found", err=True)
            raise click.Abort()
        store.write_status(instance_id, OperationStatus(status=OperationState(state), description=description))
    except GitOpsBrokerError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    click.echo(f"✅ Status of {instance_id} set to '{state}'")


@cli.command()
def version():
    """Show version information."""
    click.echo("gitops-broker CLI")
    click.echo(f"Version: {__version__}")


def main():
    """Main entry point."""
    cli()


if __name__ == '__main__':
    main()
