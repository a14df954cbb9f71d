"""Tests for installing patch and plugin updates."""

import io
import zipfile

import pytest

from artifacts import (
    InstallReport, LocalArtifact, PluginUpdateCandidate, ReleaseInfo, RemoteArtifact, Source,
    UpdateCandidate, PATCH, PLUGIN, FAILURE_ARCHIVE, FAILURE_COMPATIBILITY, FAILURE_DOWNLOAD,
    FAILURE_INTEGRITY,
)
from fingerprint import md5_bytes
from host_version import HostVersion
from installer import ArchiveError, PatchInstaller, PluginInstaller, extract_archive

from conftest import FakeResponse, write_plugin

PATCH_SOURCE = Source(PATCH, 'alice', 'patches')
PLUGIN_SOURCE = Source(PLUGIN, 'bob', 'clock.koplugin')
ZIP_URL = 'https://example.com/clock.zip'


def build_zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def patch_candidate(data_paths, name, old, new, remote_md5=None):
    path = data_paths.patches_dir / f'{name}.lua'
    path.write_text(old, encoding='utf-8')
    local = LocalArtifact(name, path, md5=md5_bytes(old), size=len(old), filename=path.name)
    remote = RemoteArtifact(path.name, path.name, size=len(new), source=PATCH_SOURCE)
    return UpdateCandidate(local, remote, PATCH_SOURCE,
                           remote_md5=remote_md5 or md5_bytes(new), content=new.encode('utf-8'))


def plugin_candidate(data_paths, installed=True):
    local = None
    if installed:
        plugin_dir = write_plugin(data_paths.plugins_dir, 'clock.koplugin', 'name = "clock",\nversion = "1.0",')
        local = LocalArtifact('clock', plugin_dir, version='1.0', entry='clock.koplugin')
    release = ReleaseInfo('v1.1')
    release.select_asset({'browser_download_url': ZIP_URL, 'name': 'clock.zip', 'size': 10})
    return PluginUpdateCandidate(local, PLUGIN_SOURCE, release)


# --- Archives ---


def test_extract_strips_single_root(tmp_path):
    zip_path = tmp_path / 'p.zip'
    zip_path.write_bytes(build_zip({'clock.koplugin/main.lua': 'x', 'clock.koplugin/lib/a.lua': 'y',
                                    '__MACOSX/clock.koplugin/._main.lua': 'junk'}))
    extract_archive(zip_path, tmp_path / 'out')
    assert (tmp_path / 'out' / 'main.lua').read_text() == 'x'
    assert (tmp_path / 'out' / 'lib' / 'a.lua').read_text() == 'y'
    assert not (tmp_path / 'out' / '__MACOSX').exists()


def test_extract_rejects_multiple_roots(tmp_path):
    zip_path = tmp_path / 'p.zip'
    zip_path.write_bytes(build_zip({'a/main.lua': 'x', 'b/main.lua': 'y'}))
    with pytest.raises(ArchiveError):
        extract_archive(zip_path, tmp_path / 'out')


def test_extract_rejects_escaping_member(tmp_path):
    zip_path = tmp_path / 'p.zip'
    zip_path.write_bytes(build_zip({'../evil.lua': 'x'}))
    with pytest.raises(ArchiveError):
        extract_archive(zip_path, tmp_path / 'out', strip_root=False)


# --- Patches ---


def test_patch_install_replaces_file_and_keeps_backup(data_paths, scanner):
    candidate = patch_candidate(data_paths, '2-clock', 'return "A"', 'return "B"')
    result = PatchInstaller(scanner, HostVersion()).install(candidate)

    assert result == {'success': True}
    assert (data_paths.patches_dir / '2-clock.lua').read_text() == 'return "B"'
    assert (data_paths.patches_dir / '2-clock.lua.old').read_text() == 'return "A"'
    assert not (data_paths.patches_dir / '2-clock.lua.new').exists()


def test_integrity_failure_does_not_stop_batch(data_paths, scanner):
    bad = patch_candidate(data_paths, '2-bad', 'return "A"', 'return "B"', remote_md5='0' * 32)
    good = patch_candidate(data_paths, '2-good', 'return 1', 'return 2')

    report = PatchInstaller(scanner, HostVersion()).install_all([bad, good])

    assert report.succeeded == ['2-good']
    assert report.failed == ['2-bad']
    assert report.reasons['2-bad'] == FAILURE_INTEGRITY
    assert (data_paths.patches_dir / '2-bad.lua').read_text() == 'return "A"'
    assert not (data_paths.patches_dir / '2-bad.lua.new').exists()
    assert (data_paths.patches_dir / '2-good.lua').read_text() == 'return 2'


def test_compatibility_failure_keeps_installed_patch(data_paths, scanner):
    new = 'if require("version"):korDoesNotMeet("v2030.01") then return end\nreturn 2'
    candidate = patch_candidate(data_paths, '2-future', 'return 1', new)

    result = PatchInstaller(scanner, HostVersion(override='v2024.11')).install(candidate)

    assert not result['success']
    assert result['reason'] == FAILURE_COMPATIBILITY
    assert (data_paths.patches_dir / '2-future.lua').read_text() == 'return 1'


def test_patch_downloaded_when_content_missing(data_paths, session, scanner):
    candidate = patch_candidate(data_paths, '2-clock', 'return "A"', 'return "B"')
    candidate.content = None
    candidate.remote.download_url = 'https://raw.githubusercontent.com/alice/patches/main/2-clock.lua'
    session.route(candidate.remote.download_url, FakeResponse(200, 'return "B"'))

    assert PatchInstaller(scanner, HostVersion()).install(candidate)['success']
    assert (data_paths.patches_dir / '2-clock.lua').read_text() == 'return "B"'


def test_patch_download_failure(data_paths, scanner):
    candidate = patch_candidate(data_paths, '2-clock', 'return "A"', 'return "B"')
    candidate.content = None
    result = PatchInstaller(scanner, HostVersion()).install(candidate)
    assert result['reason'] == FAILURE_DOWNLOAD


# --- Plugins ---


def test_plugin_update(data_paths, session, scanner):
    session.route(ZIP_URL, FakeResponse(200, build_zip({
        'clock-1.1/_meta.lua': 'return { name = "clock", version = "1.1" }',
        'clock-1.1/main.lua': 'return {}',
    })))
    candidate = plugin_candidate(data_paths)

    result = PluginInstaller(scanner, data_paths).install(candidate)

    plugin_dir = data_paths.plugins_dir / 'clock.koplugin'
    assert result == {'success': True}
    assert 'version = "1.1"' in (plugin_dir / '_meta.lua').read_text()
    assert (data_paths.plugins_dir / 'clock.koplugin.old' / '_meta.lua').exists()
    assert not (data_paths.cache_dir / 'clock.koplugin.zip').exists()


def test_new_plugin_install(data_paths, session, scanner):
    session.route(ZIP_URL, FakeResponse(200, build_zip({'clock.koplugin/main.lua': 'return {}'})))
    result = PluginInstaller(scanner, data_paths).install(plugin_candidate(data_paths, installed=False))
    assert result['success']
    assert (data_paths.plugins_dir / 'clock.koplugin' / 'main.lua').exists()


def test_bad_archive_restores_previous_plugin(data_paths, session, scanner):
    session.route(ZIP_URL, FakeResponse(200, build_zip({'a/main.lua': 'x', 'b/main.lua': 'y'})))
    candidate = plugin_candidate(data_paths)

    report = PluginInstaller(scanner, data_paths).install_all([candidate], report=InstallReport())

    assert report.reasons == {'clock': FAILURE_ARCHIVE}
    assert 'version = "1.0"' in (data_paths.plugins_dir / 'clock.koplugin' / '_meta.lua').read_text()


def test_plugin_without_asset(data_paths, scanner):
    candidate = plugin_candidate(data_paths)
    candidate.release.zip_url = None
    result = PluginInstaller(scanner, data_paths).install(candidate)
    assert result['reason'] == FAILURE_DOWNLOAD


def test_shared_report_collects_both_kinds(data_paths, session, scanner):
    session.route(ZIP_URL, FakeResponse(200, build_zip({'clock/main.lua': 'return {}'})))
    report = InstallReport()
    patches = [patch_candidate(data_paths, '2-clock', 'return "A"', 'return "B"')]
    progress = []

    PatchInstaller(scanner, HostVersion()).install_all(patches, progress.append, report)
    PluginInstaller(scanner, data_paths).install_all([plugin_candidate(data_paths)], progress.append, report)

    assert sorted(report.succeeded) == ['2-clock', 'clock']
    assert len(progress) == 2
