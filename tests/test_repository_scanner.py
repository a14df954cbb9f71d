"""Tests for the GitHub repository scanner."""

import requests

from artifacts import Source, PATCH, PLUGIN
from fingerprint import md5_bytes
from repository_scanner import GitHubCredentials, RateLimiter, RemoteScanner, asset_pattern_to_regex

from conftest import FakeResponse, FakeSession, contents_entry

PATCH_SOURCE = Source(PATCH, 'alice', 'patches')
PLUGIN_SOURCE = Source(PLUGIN, 'bob', 'clock.koplugin', asset_pattern='*.koplugin.zip')

CONTENTS_URL = 'https://api.github.com/repos/alice/patches/contents/?ref=main'
MANIFEST_URL = 'https://raw.githubusercontent.com/alice/patches/main/updates.json'
RELEASE_URL = 'https://api.github.com/repos/bob/clock.koplugin/releases/latest'


# --- Asset patterns ---


def test_glob_pattern_matches_suffix():
    matcher = asset_pattern_to_regex('*.koplugin.zip')
    assert matcher.search('readest-v1.2.0.koplugin.zip')
    assert not matcher.search('readest-v1.2.0.AppImage')
    assert not matcher.search('readest.koplugin.zip.sha256')


def test_glob_dots_are_literal():
    matcher = asset_pattern_to_regex('plugin.zip')
    assert matcher.search('plugin.zip')
    assert not matcher.search('pluginxzip')


def test_regex_pattern_is_used_as_is():
    matcher = asset_pattern_to_regex(r'clock-v\d+\.zip')
    assert matcher.search('clock-v12.zip')
    assert not matcher.search('clock-vX.zip')


def test_default_pattern_is_any_zip():
    matcher = asset_pattern_to_regex(None)
    assert matcher.search('anything.zip')
    assert not matcher.search('anything.tar.gz')


# --- Credentials and rate limiting ---


def test_token_sent_to_github_hosts_only():
    credentials = GitHubCredentials(' ghp_secret ')
    assert credentials.headers_for('https://api.github.com/repos/a/b') == {'Authorization': 'token ghp_secret'}
    assert credentials.headers_for('https://raw.githubusercontent.com/a/b/main/x.lua')
    assert credentials.headers_for('https://example.com/file.zip') == {}


def test_token_from_environment(monkeypatch):
    monkeypatch.setenv('GITHUB_TOKEN', 'ghp_env')
    assert GitHubCredentials.from_settings(None).token == 'ghp_env'


def test_rate_limiter_spaces_requests():
    now = [100.0]
    slept = []

    def sleep(seconds):
        slept.append(seconds)
        now[0] += seconds

    limiter = RateLimiter(0.5, clock=lambda: now[0], sleep=sleep)
    limiter.wait()
    now[0] += 0.2
    limiter.wait()
    assert len(slept) == 1
    assert abs(slept[0] - 0.3) < 1e-9


# --- Listing patches ---


def test_list_files_merges_manifest(session, scanner):
    session.route(MANIFEST_URL, FakeResponse(200, {'patches': [
        {'name': '2-clock.lua', 'md5': 'feed', 'description': 'Clock in the footer', 'author': 'alice'},
    ]}))
    session.route(CONTENTS_URL, FakeResponse(200, [
        contents_entry('2-clock.lua', 'return 1'),
        contents_entry('README.md', '# readme'),
        {'type': 'dir', 'name': 'old.lua', 'path': 'old.lua'},
    ]))

    scan = scanner.list_files(PATCH_SOURCE)
    assert not scan.transient_failure
    assert [a.patch_name for a in scan.items] == ['2-clock']
    artifact = scan.items[0]
    assert artifact.md5 == 'feed'
    assert artifact.description == 'Clock in the footer'
    assert artifact.repo_owner == 'alice'


def test_manifest_md5_is_lower_cased(session, scanner):
    session.route(MANIFEST_URL, FakeResponse(200, {'patches': [{'name': '2-clock.lua', 'md5': 'FEED01'}]}))
    session.route(CONTENTS_URL, FakeResponse(200, [contents_entry('2-clock.lua', 'return 1')]))

    scan = scanner.list_files(PATCH_SOURCE)
    assert scan.items[0].md5 == 'feed01'


def test_list_files_fingerprints_installed_patches(session, scanner):
    session.route(CONTENTS_URL, FakeResponse(200, [
        contents_entry('2-clock.lua', 'return 1'),
        contents_entry('2-other.lua', 'return 2'),
    ]))
    session.route('https://raw.githubusercontent.com/dl/2-clock.lua', FakeResponse(200, 'return 1'))

    scan = scanner.list_files(PATCH_SOURCE, fingerprint_names=['2-clock'])
    by_name = {a.patch_name: a for a in scan.items}
    assert by_name['2-clock'].md5 == md5_bytes('return 1')
    assert by_name['2-other'].md5 is None
    assert 'https://raw.githubusercontent.com/dl/2-other.lua' not in session.urls()


def test_list_files_rate_limited(session, scanner):
    session.route(CONTENTS_URL, FakeResponse(403))
    scan = scanner.list_files(PATCH_SOURCE)
    assert scan.rate_limited
    assert scan.items == []


def test_list_files_timeout_is_transient(session, scanner):
    session.route(CONTENTS_URL, requests.exceptions.Timeout('slow'))
    scan = scanner.list_files(PATCH_SOURCE)
    assert scan.failed
    assert scan.transient_failure


def test_list_files_missing_repo_is_not_transient(scanner):
    scan = scanner.list_files(PATCH_SOURCE)
    assert not scan.transient_failure
    assert scan.items == []


def test_contents_url_includes_subdirectory(scanner):
    source = Source(PATCH, 'loeffner', 'KOReader.patches', path='project-title')
    assert scanner.contents_url(source) == (
        'https://api.github.com/repos/loeffner/KOReader.patches/contents/project-title?ref=main'
    )


# --- Releases ---


def test_latest_release_selects_matching_asset(session, scanner):
    session.route(RELEASE_URL, FakeResponse(200, {
        'tag_name': 'v1.2.0',
        'name': 'Clock 1.2',
        'body': '* faster',
        'assets': [
            {'name': 'clock-v1.2.0.AppImage', 'browser_download_url': 'https://example.com/app'},
            {'name': 'clock-v1.2.0.koplugin.zip', 'browser_download_url': 'https://example.com/zip', 'size': 2048},
        ],
    }))

    scan = scanner.latest_release(PLUGIN_SOURCE)
    release = scan.items[0]
    assert release.version == '1.2.0'
    assert release.zip_url == 'https://example.com/zip'
    assert release.zip_size == 2048


def test_latest_release_without_matching_asset(session, scanner):
    session.route(RELEASE_URL, FakeResponse(200, {'tag_name': 'v2', 'assets': [{'name': 'source.tar.gz'}]}))
    release = scanner.latest_release(PLUGIN_SOURCE).items[0]
    assert release.zip_url is None


def test_latest_release_missing(scanner):
    scan = scanner.latest_release(PLUGIN_SOURCE)
    assert scan.items == []
    assert not scan.transient_failure


def test_latest_release_too_many_requests(session, scanner):
    session.route(RELEASE_URL, FakeResponse(429))
    assert scanner.latest_release(PLUGIN_SOURCE).rate_limited


def test_authorization_header_sent_with_token(session):
    scanner = RemoteScanner(GitHubCredentials('ghp_x'), session=session, rate_limiter=RateLimiter(0))
    scanner.latest_release(PLUGIN_SOURCE)
    url, headers = session.calls[0]
    assert url == RELEASE_URL
    assert headers['Authorization'] == 'token ghp_x'


# --- Downloads ---


def test_download_writes_file(session, scanner, tmp_path):
    response = FakeResponse(200, b'x' * 20000)
    session.route('https://example.com/zip', response)
    dest = tmp_path / 'sub' / 'plugin.zip'
    assert scanner.download('https://example.com/zip', dest)
    assert dest.read_bytes() == b'x' * 20000
    assert response.closed


def test_download_failure_leaves_no_file(scanner, tmp_path):
    dest = tmp_path / 'plugin.zip'
    assert not scanner.download('https://example.com/none', dest)
    assert not dest.exists()


def test_is_online():
    assert RemoteScanner(GitHubCredentials(), session=FakeSession()).is_online()
    assert not RemoteScanner(GitHubCredentials(), session=FakeSession(online=False)).is_online()
