from pathlib import Path

import pytest

from db_backup.runner import CommandResult


class FakeRunner:
    """Records invocations instead of spawning processes.

    xtrabackup creates its ``--target-dir`` and tar creates its archive so
    later stages find what the real tools would leave behind.
    """

    def __init__(self, returncodes=None):
        self.calls = []
        self.returncodes = returncodes or {}

    def __call__(self, program, args, **kwargs):
        args = [str(arg) for arg in args]
        self.calls.append((program, args, kwargs))
        name = Path(program).name
        code = self.returncodes.get(name, 0)
        if code == 0 and name == 'xtrabackup':
            for arg in args:
                if arg.startswith('--target-dir='):
                    Path(arg.split('=', 1)[1]).mkdir(parents=True, exist_ok=True)
        if code == 0 and name == 'tar':
            Path(args[1]).write_bytes(b'archive')
        if kwargs.get('stdout') is not None:
            kwargs['stdout'].write('-- dump\n')
        return CommandResult(program=program, args=tuple(args), returncode=code)

    @property
    def programs(self):
        return [Path(program).name for program, _, _ in self.calls]

    def args_for(self, name):
        for program, args, _ in self.calls:
            if Path(program).name == name:
                return args
        raise AssertionError(f'{name} was not called')


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests
            raise requests.HTTPError(f'{self.status_code} error')


@pytest.fixture
def fake_run():
    return FakeRunner()


@pytest.fixture
def fake_which():
    return lambda name: f'/usr/bin/{name}'


@pytest.fixture
def posts(monkeypatch):
    """Capture webhook POSTs made through requests."""
    sent = []

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
        return FakeResponse()

    monkeypatch.setattr('db_backup.notify.requests.post', fake_post)
    return sent


@pytest.fixture
def config_data(tmp_path):
    return {
        'backup_type': 'full',
        'backup_dir': str(tmp_path / 'backups'),
        'mysql': {
            'defaults_file': '/etc/my.cnf',
            'user': 'backup',
            'password': 's3cret',
        },
        'xtrabackup': {'bin': '/usr/bin/xtrabackup'},
    }


@pytest.fixture
def make_run():
    """Build a fake runner with per-program exit codes."""
    return FakeRunner
