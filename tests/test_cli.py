import os

from click.testing import CliRunner

from rocket.__main__ import cli
from rocket.core.exceptions import ConfigMissingError, StorageUnavailableError
from rocket.core.paths import FOLDER_NAMES


def test_init_creates_layout_and_env(root):
    result = CliRunner().invoke(cli, ['init', root])

    assert result.exit_code == 0, result.output
    assert os.path.isfile(os.path.join(root, '.env'))
    for folder in FOLDER_NAMES:
        assert os.path.isdir(os.path.join(root, folder))


def test_migrate_requires_dsn(root):
    CliRunner().invoke(cli, ['init', root])

    result = CliRunner().invoke(cli, ['migrate', 'up', root])

    assert result.exit_code == 1
    assert 'DATABASE_CONN_STR' in result.output


def test_migrate_up_and_steps(root, tmp_path, monkeypatch):
    runner = CliRunner()
    runner.invoke(cli, ['init', root])
    with open(os.path.join(root, 'migrations', '1_users.up.sql'), 'w') as fh:
        fh.write('CREATE TABLE users (id INTEGER PRIMARY KEY);')
    with open(os.path.join(root, 'migrations', '1_users.down.sql'), 'w') as fh:
        fh.write('DROP TABLE users;')
    monkeypatch.setenv('DATABASE_CONN_STR', f"sqlite:///{tmp_path / 'cli.db'}")

    assert runner.invoke(cli, ['migrate', 'up', root]).exit_code == 0
    assert runner.invoke(cli, ['migrate', 'up', root]).exit_code == 0

    result = runner.invoke(cli, ['migrate', 'steps', '--', '-1', root])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli, ['migrate', 'down', root])
    assert result.exit_code == 0
    assert 'Nothing to revert' in result.output


def test_serve_fails_on_unreachable_database(root, monkeypatch):
    def unreachable(db_type, dsn):
        raise StorageUnavailableError('no route to host')

    monkeypatch.setattr('rocket.app.open_relational', unreachable)
    monkeypatch.setenv('DATABASE_TYPE', 'postgres')

    result = CliRunner().invoke(cli, ['serve', root])

    assert result.exit_code == 1


def test_serve_reports_boot_config_errors(root, monkeypatch):
    monkeypatch.setenv('CACHE', 'remote-kv')

    result = CliRunner().invoke(cli, ['serve', root])

    assert result.exit_code == 1
    assert 'REDIS_HOST' in result.output
    assert not isinstance(result.exception, ConfigMissingError)
