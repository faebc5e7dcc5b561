# rocket/__main__.py
"""
Command line entry point

    rocket init [ROOT]
    rocket serve [ROOT]
    rocket migrate up|down|force [ROOT]
    rocket migrate steps N [ROOT]
"""

import os
import logging

import click

from rocket.app import Rocket
from rocket.config.settings import load_environment
from rocket.core.exceptions import MigrationError, NoChangeError, RocketError
from rocket.core.paths import InitPaths, check_dot_env, init_paths

logger = logging.getLogger(__name__)

root_argument = click.argument('root', default='.', type=click.Path(file_okay=False))


def _dsn() -> str:
    dsn = os.environ.get('DATABASE_CONN_STR', '')
    if not dsn:
        raise click.ClickException("DATABASE_CONN_STR must be set to run migrations")
    return dsn


def _migrator_app(root: str) -> Rocket:
    # Migrations only need the root and the environment, not a booted app
    logger.info(load_environment(root))
    app = Rocket()
    app.root_path = root
    return app


@click.group()
@click.version_option(package_name='rocket-scaffold')
def cli():
    """Rocket web application scaffold"""
    logging.basicConfig(level=logging.INFO, format='%(levelname)s\t%(asctime)s %(message)s',
                        datefmt='%Y/%m/%d %H:%M:%S')


@cli.command()
@root_argument
def init(root):
    """Create the working directories and an empty .env"""
    try:
        init_paths(InitPaths(root_path=root))
        env_path = check_dot_env(root)
    except RocketError as e:
        raise click.ClickException(str(e))
    click.echo(f"Initialized {os.path.abspath(root)} ({env_path})")


@cli.command()
@root_argument
def serve(root):
    """Boot the application and serve HTTP on $PORT"""
    app = Rocket()
    try:
        app.initialize(root)
        app.serve()
    except RocketError as e:
        raise click.ClickException(str(e))


@cli.group()
def migrate():
    """Run schema migrations from ROOT/migrations"""


@migrate.command('up')
@root_argument
def migrate_up(root):
    app = _migrator_app(root)
    try:
        app.migrate_up(_dsn())
    except MigrationError as e:
        raise click.ClickException(str(e))
    click.echo("Migrations applied")


@migrate.command('down')
@root_argument
def migrate_down(root):
    app = _migrator_app(root)
    try:
        app.migrate_down_all(_dsn())
    except NoChangeError:
        click.echo("Nothing to revert")
        return
    except MigrationError as e:
        raise click.ClickException(str(e))
    click.echo("All migrations reverted")


@migrate.command('steps')
@click.argument('n', type=int)
@root_argument
def migrate_steps(n, root):
    app = _migrator_app(root)
    try:
        app.steps(n, _dsn())
    except MigrationError as e:
        raise click.ClickException(str(e))
    click.echo(f"Migrated {n:+d} steps")


@migrate.command('force')
@click.option('--to', 'version', type=int, default=-1, show_default=True,
              help="Version to record as applied and clean")
@root_argument
def migrate_force(version, root):
    app = _migrator_app(root)
    try:
        app.migrate_force(_dsn(), version)
    except MigrationError as e:
        raise click.ClickException(str(e))
    click.echo(f"Forced version {version}")


if __name__ == '__main__':
    cli()
