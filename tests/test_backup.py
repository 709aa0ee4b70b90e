import logging
import os
import stat
import sys
from datetime import datetime

import pytest

from db_backup.backup import (
    BackupError,
    BackupRunner,
    XtraBackupExecutor,
    build_xtrabackup_args,
    find_latest_full,
    log_to_file,
    make_backup_name,
)
from db_backup.config import BackupConfig, validate_config
from db_backup.notify import STATUS_FAILURE, STATUS_SUCCESS
from db_backup.retention import RetentionError

NOW = datetime(2024, 1, 4, 3, 0, 0)


def _config(data, which=lambda name: f'/usr/bin/{name}'):
    return validate_config(BackupConfig.from_dict(data), which=which)


def _runner(config, fake_run, fake_which, skip_remote=False):
    return BackupRunner.from_config(
        config,
        skip_remote=skip_remote,
        run=fake_run,
        which=fake_which,
        clock=lambda: NOW,
    )


def test_backup_name_format():
    assert make_backup_name('mysql', 'full', NOW) == 'mysql_full_20240104_030000'


def test_find_latest_full_picks_greatest_name(tmp_path):
    for name in ('mysql_full_20240101_000000', 'mysql_full_20240102_000000', 'mysql_incr_20240103_000000'):
        (tmp_path / name).mkdir()
    (tmp_path / 'mysql_full_20240109_000000.tar.gz').write_bytes(b'')
    assert find_latest_full(tmp_path, 'mysql') == tmp_path / 'mysql_full_20240102_000000'


def test_find_latest_full_without_full_backup(tmp_path):
    (tmp_path / 'mysql_incr_20240103_000000').mkdir()
    with pytest.raises(BackupError, match='no full backup found'):
        find_latest_full(tmp_path, 'mysql')


def test_xtrabackup_args_with_host_and_port(config_data):
    config = _config(config_data)
    args = build_xtrabackup_args(config, '/b/mysql_full_x')
    assert args == [
        '--defaults-file=/etc/my.cnf',
        '--user=backup',
        '--password=s3cret',
        '--backup',
        '--target-dir=/b/mysql_full_x',
        '--parallel=2',
        '--ftwrl-wait-timeout=300',
        '--backup-lock-timeout=300',
        '--host=127.0.0.1',
        '--port=3306',
    ]


def test_xtrabackup_args_socket_compress_basedir_and_extra(config_data):
    config_data['mysql']['socket'] = '/tmp/mysql.sock'
    config_data['xtrabackup'].update(compress=True, compress_threads=4, extra_args=['--slave-info'])
    config = _config(config_data)
    args = build_xtrabackup_args(config, '/b/t', basedir='/b/mysql_full_1')
    assert '--socket=/tmp/mysql.sock' in args
    assert not any(arg.startswith('--host=') for arg in args)
    assert args[-4:] == [
        '--compress',
        '--compress-threads=4',
        '--incremental-basedir=/b/mysql_full_1',
        '--slave-info',
    ]


def test_incremental_without_full_never_spawns_engine(config_data, fake_run):
    config_data['backup_type'] = 'incr'
    config = _config(config_data)
    executor = XtraBackupExecutor(config, run=fake_run, clock=lambda: NOW)
    result = executor.prepare()
    with pytest.raises(BackupError, match='no full backup found'):
        executor.execute(result)
    assert fake_run.calls == []


def test_incremental_uses_latest_full(config_data, fake_run, fake_which, posts, tmp_path):
    config_data['backup_type'] = 'incr'
    backups = tmp_path / 'backups'
    (backups / 'mysql_full_20240101_000000').mkdir(parents=True)
    (backups / 'mysql_full_20240102_000000').mkdir()
    result = _runner(_config(config_data), fake_run, fake_which).run_backup()
    assert result.backup_name == 'mysql_incr_20240104_030000'
    args = fake_run.args_for('xtrabackup')
    assert f'--incremental-basedir={backups / "mysql_full_20240102_000000"}' in args


def test_full_backup_pipeline(config_data, fake_run, fake_which, posts, tmp_path):
    config_data['feishu'] = {'enabled': True, 'webhook': 'https://hook', 'keyword': 'kw'}
    result = _runner(_config(config_data), fake_run, fake_which).run_backup()

    backups = tmp_path / 'backups'
    assert result.target_dir == backups / 'mysql_full_20240104_030000'
    assert result.archive_path == result.target_dir
    assert result.log_path == backups / 'log' / 'mysql_full_20240104_030000.log'
    assert fake_run.programs == ['xtrabackup']
    assert fake_run.calls[0][2]['sink'] is not None
    log_text = result.log_path.read_text(encoding='utf-8')
    assert 'starting backup: mysql_full_20240104_030000' in log_text
    assert 'backup finished' in log_text
    assert len(posts) == 1
    assert f'状态: {STATUS_SUCCESS}' in posts[0]['json']['content']['text']


def test_tar_archive_and_remote_copy(config_data, fake_run, fake_which, posts, tmp_path):
    config_data['tar_archive'] = True
    config_data['remote'] = {'enabled': True, 'user': 'bk', 'host': 'store', 'port': 2222, 'dest_dir': '/srv'}
    result = _runner(_config(config_data), fake_run, fake_which).run_backup()

    assert result.archive_path == tmp_path / 'backups' / 'mysql_full_20240104_030000.tar.gz'
    assert fake_run.programs == ['xtrabackup', 'tar', 'scp']
    assert fake_run.args_for('tar') == [
        '-czf',
        str(result.archive_path),
        '-C',
        str(tmp_path / 'backups'),
        'mysql_full_20240104_030000',
    ]
    assert fake_run.args_for('scp') == ['-P', '2222', str(result.archive_path), 'bk@store:/srv']


def test_skip_remote_flag_suppresses_scp(config_data, fake_run, fake_which, posts):
    config_data['tar_archive'] = True
    config_data['remote'] = {'enabled': True, 'user': 'bk', 'host': 'store', 'dest_dir': '/srv'}
    _runner(_config(config_data), fake_run, fake_which, skip_remote=True).run_backup()
    assert 'scp' not in fake_run.programs


def test_engine_failure_sends_one_failure_notification(config_data, fake_which, posts, make_run):
    config_data['feishu'] = {'enabled': True, 'webhook': 'https://hook', 'keyword': 'kw'}
    config_data['remote'] = {'enabled': True, 'user': 'bk', 'host': 'store', 'dest_dir': '/srv'}
    fake_run = make_run(returncodes={"xtrabackup": 1})
    runner = _runner(_config(config_data), fake_run, fake_which)
    with pytest.raises(BackupError, match='exited with code 1') as excinfo:
        runner.run_backup()

    assert 'see log' in str(excinfo.value)
    assert fake_run.programs == ['xtrabackup']
    assert len(posts) == 1
    text = posts[0]['json']['content']['text']
    assert text.startswith('kw\n')
    assert f'状态: {STATUS_FAILURE}' in text
    assert '备份名: mysql_full_20240104_030000' in text
    assert '错误: xtrabackup exited with code 1' in text


def test_unwritable_log_file_sends_one_failure_notification(config_data, fake_run, fake_which, posts, tmp_path):
    config_data['feishu'] = {'enabled': True, 'webhook': 'https://hook', 'keyword': 'kw'}
    (tmp_path / 'backups' / 'log' / 'mysql_full_20240104_030000.log').mkdir(parents=True)
    with pytest.raises(BackupError, match='open log file'):
        _runner(_config(config_data), fake_run, fake_which).run_backup()
    assert fake_run.calls == []
    assert len(posts) == 1
    text = posts[0]['json']['content']['text']
    assert f'状态: {STATUS_FAILURE}' in text
    assert 'open log file' in text


def test_retention_failure_sends_one_failure_notification(config_data, fake_run, fake_which, posts, monkeypatch):
    config_data['retention_days'] = 7
    config_data['feishu'] = {'enabled': True, 'webhook': 'https://hook', 'keyword': 'kw'}

    def broken_sweep(*args, **kwargs):
        raise RetentionError('Cannot remove old backup')

    monkeypatch.setattr('db_backup.backup.sweep_backups', broken_sweep)
    with pytest.raises(RetentionError):
        _runner(_config(config_data), fake_run, fake_which).run_backup()
    assert len(posts) == 1
    assert '错误: Cannot remove old backup' in posts[0]['json']['content']['text']


def test_retention_runs_after_backup(config_data, fake_run, fake_which, posts, tmp_path):
    config_data['retention_days'] = 7
    old = tmp_path / 'backups' / 'mysql_full_20231201_000000'
    old.mkdir(parents=True)
    stamp = datetime(2023, 12, 1).timestamp()
    os.utime(old, (stamp, stamp))
    result = _runner(_config(config_data), fake_run, fake_which).run_backup()
    assert not old.exists()
    assert result.target_dir.exists()


@pytest.mark.skipif(sys.platform.startswith('win'), reason='needs an executable script')
def test_password_is_masked_in_run_log(config_data, fake_which, tmp_path):
    received = tmp_path / 'received.txt'
    engine = tmp_path / 'fake-xtrabackup'
    engine.write_text(
        f'#!{sys.executable}\n'
        'import pathlib, sys\n'
        f'pathlib.Path({str(received)!r}).write_text("\\n".join(sys.argv[1:]))\n'
        'print("xtrabackup: completed OK!")\n',
        encoding='utf-8',
    )
    engine.chmod(engine.stat().st_mode | stat.S_IEXEC)
    config_data['xtrabackup'] = {'bin': str(engine)}

    runner = BackupRunner.from_config(_config(config_data), which=fake_which, clock=lambda: NOW)
    result = runner.run_backup()

    log_text = result.log_path.read_text(encoding='utf-8')
    assert '--password=***' in log_text
    assert 's3cret' not in log_text
    assert 'completed OK!' in log_text
    assert '--password=s3cret' in received.read_text()


def test_run_log_gets_info_while_outer_handlers_keep_caller_level(tmp_path, caplog):
    package = logging.getLogger('db_backup')
    previous = package.level
    package.setLevel(logging.WARNING)
    try:
        with log_to_file(tmp_path / 'run.log'):
            stage = logging.getLogger('db_backup.backup')
            stage.info('stage message')
            stage.warning('stage warning')
        assert package.level == logging.WARNING
        assert package.propagate
    finally:
        package.setLevel(previous)

    log_text = (tmp_path / 'run.log').read_text(encoding='utf-8')
    assert 'stage message' in log_text
    assert 'stage warning' in log_text
    messages = [record.getMessage() for record in caplog.records]
    assert 'stage warning' in messages
    assert 'stage message' not in messages
