import pytest

from db_backup.archive import ArchiveError, archive_directory, archive_path_for
from db_backup.config import RemoteConfig
from db_backup.remote import RemoteCopyError, RemoteShipper


def test_archive_path_is_a_sibling(tmp_path):
    assert archive_path_for(tmp_path / 'mysql_full_1') == tmp_path / 'mysql_full_1.tar.gz'


def test_archive_directory(tmp_path, fake_run, fake_which):
    target = tmp_path / 'mysql_full_1'
    target.mkdir()
    archive = archive_directory(target, which=fake_which, run=fake_run)
    assert archive == tmp_path / 'mysql_full_1.tar.gz'
    program, args, _ = fake_run.calls[0]
    assert program == '/usr/bin/tar'
    assert args == ['-czf', str(archive), '-C', str(tmp_path), 'mysql_full_1']


def test_archive_leaves_files_untouched(tmp_path, fake_run, fake_which):
    single = tmp_path / 'mysql.sql'
    single.write_text('dump', encoding='utf-8')
    assert archive_directory(single, which=fake_which, run=fake_run) == single
    assert fake_run.calls == []


def test_archive_requires_tar(tmp_path, fake_run):
    (tmp_path / 'd').mkdir()
    with pytest.raises(ArchiveError, match='tar not found'):
        archive_directory(tmp_path / 'd', which=lambda name: None, run=fake_run)


def test_archive_failure(tmp_path, fake_which, make_run):
    (tmp_path / 'd').mkdir()
    with pytest.raises(ArchiveError, match='exit code 2'):
        archive_directory(tmp_path / 'd', which=fake_which, run=make_run(returncodes={'tar': 2}))


def test_archive_missing_target(tmp_path, fake_run, fake_which):
    with pytest.raises(ArchiveError, match='does not exist'):
        archive_directory(tmp_path / 'gone', which=fake_which, run=fake_run)


def _remote():
    return RemoteConfig(enabled=True, user='bk', host='store', port=22, dest_dir='/srv/backup')


def test_ship_runs_scp(tmp_path, fake_run):
    archive = tmp_path / 'mysql_full_1.tar.gz'
    archive.write_bytes(b'x')
    RemoteShipper(_remote(), run=fake_run).ship(archive)
    assert fake_run.calls[0][0] == 'scp'
    assert fake_run.calls[0][1] == ['-P', '22', str(archive), 'bk@store:/srv/backup']


def test_ship_failure(tmp_path, make_run):
    archive = tmp_path / 'a.tar.gz'
    archive.write_bytes(b'x')
    with pytest.raises(RemoteCopyError, match='exit code 1'):
        RemoteShipper(_remote(), run=make_run(returncodes={'scp': 1})).ship(archive)


def test_ship_rejects_directories(tmp_path, fake_run):
    with pytest.raises(RemoteCopyError, match='tar_archive'):
        RemoteShipper(_remote(), run=fake_run).ship(tmp_path)
    assert fake_run.calls == []
