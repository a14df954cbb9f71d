"""Shared fixtures: fake GitHub HTTP layer and a KOReader data directory."""

import json
import os

import pytest
import requests

os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')

from config import DataPaths
from repository_scanner import GitHubCredentials, RateLimiter, RemoteScanner


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        if body is None:
            body = b''
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode('utf-8')
        self.content = body
        self.closed = False

    def json(self):
        return json.loads(self.content)

    def iter_content(self, chunk_size=8192):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Answers GET requests from a url -> response (or exception) map.

    Unknown URLs answer 404. Every call is recorded in `calls` as
    (url, headers).
    """

    def __init__(self, routes=None, online=True):
        self.routes = dict(routes or {})
        self.online = online
        self.calls = []

    def route(self, url, response):
        self.routes[url] = response

    def get(self, url, headers=None, timeout=None, stream=False):
        self.calls.append((url, headers or {}))
        answer = self.routes.get(url)
        if answer is None:
            return FakeResponse(404)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer()
        return answer

    def head(self, url, headers=None, timeout=None):
        if not self.online:
            raise requests.exceptions.ConnectionError('offline')
        return FakeResponse(200)

    def urls(self):
        return [url for url, _ in self.calls]


def contents_entry(name, content, path=None):
    """GitHub contents-API entry for a .lua file."""
    body = content.encode('utf-8') if isinstance(content, str) else content
    return {
        'type': 'file',
        'name': name,
        'path': path or name,
        'size': len(body),
        'sha': 'sha-' + name,
        'download_url': f'https://raw.githubusercontent.com/dl/{name}',
    }


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def scanner(session):
    return RemoteScanner(GitHubCredentials(None), session=session, rate_limiter=RateLimiter(interval=0))


@pytest.fixture
def data_paths(tmp_path):
    paths = DataPaths(tmp_path / 'koreader')
    paths.patches_dir.mkdir(parents=True)
    paths.plugins_dir.mkdir(parents=True)
    paths.ensure_directories()
    return paths


@pytest.fixture(scope='session')
def qapp():
    from PyQt6.QtCore import QCoreApplication
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


def write_plugin(plugins_dir, entry, meta):
    """Create <entry>/_meta.lua with the given Lua table body."""
    plugin_dir = plugins_dir / entry
    plugin_dir.mkdir(parents=True, exist_ok=True)
    (plugin_dir / '_meta.lua').write_text(f'local _ = require("gettext")\nreturn {{\n{meta}\n}}\n',
                                          encoding='utf-8')
    (plugin_dir / 'main.lua').write_text('return {}\n', encoding='utf-8')
    return plugin_dir
