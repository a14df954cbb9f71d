"""
Repository Scanner
Lists patch files and latest plugin releases published on GitHub
"""

import json
import logging
import os
import re
import time
from pathlib import Path
from urllib.parse import urlparse

import requests

import config
from artifacts import RemoteArtifact, ReleaseInfo, ScanResult, PATCH_EXTENSION, strip_patch_extension
from fingerprint import md5_bytes

logger = logging.getLogger(__name__)

OK = 'ok'
MISSING = 'missing'
RATE_LIMITED = 'rate_limited'
FAILED = 'failed'
ERROR = 'error'

GITHUB_HOSTS = ('github.com', 'api.github.com', 'raw.githubusercontent.com')
MANIFEST_NAME = 'updates.json'


def asset_pattern_to_regex(pattern=None):
    """Translate a release-asset filter into a compiled regex.

    Glob patterns ('*.koplugin.zip') have '*' turned into '.*' and every
    other character matched literally. Patterns containing a backslash are
    taken as regexes already. The result is always anchored to the end of
    the asset name; no pattern means "any .zip file".
    """
    if not pattern:
        return re.compile(r'\.zip$')

    if '\\' in pattern:
        regex = pattern
    else:
        glob = pattern[:-1] if pattern.endswith('$') else pattern
        regex = ''.join('.*' if ch == '*' else '.' if ch == '?' else re.escape(ch) for ch in glob)
    if not regex.endswith('$'):
        regex += '$'

    try:
        return re.compile(regex)
    except re.error as e:
        logger.warning(f"Invalid asset pattern {pattern!r} ({e}), matching it literally")
        return re.compile(re.escape(pattern) + '$')


class GitHubCredentials:
    """Access token for the GitHub API, read once per session."""

    def __init__(self, token=None):
        self._token = (token or '').strip() or None

    @property
    def token(self):
        return self._token

    @classmethod
    def from_settings(cls, settings_store=None):
        token = None
        if settings_store is not None:
            token = settings_store.get_setting('github_token')
        if not token:
            token = os.environ.get('GITHUB_TOKEN')
        return cls(token)

    def headers_for(self, url):
        """Authorization header for GitHub hosts only."""
        if not self._token:
            return {}
        host = urlparse(url).netloc.lower()
        if host in GITHUB_HOSTS:
            return {'Authorization': f'token {self._token}'}
        return {}


class RateLimiter:
    """Keeps a fixed minimum interval between consecutive requests."""

    def __init__(self, interval=config.REQUEST_INTERVAL, clock=time.monotonic, sleep=time.sleep):
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self._last_request = None

    def wait(self):
        if self.interval <= 0:
            return
        now = self.clock()
        if self._last_request is not None:
            remaining = self.interval - (now - self._last_request)
            if remaining > 0:
                self.sleep(remaining)
                now = self.clock()
        self._last_request = now


class RemoteScanner:
    API_ROOT = 'https://api.github.com'
    RAW_ROOT = 'https://raw.githubusercontent.com'

    def __init__(self, credentials, session=None, rate_limiter=None,
                 timeout=config.REQUEST_TIMEOUT, download_timeout=config.DOWNLOAD_TIMEOUT):
        """Initialize repository scanner.

        Args:
            credentials: GitHubCredentials - Session token holder
            session: Optional requests.Session - HTTP session to reuse
            rate_limiter: Optional RateLimiter - Delay applied before every request
            timeout: int - Seconds for API calls
            download_timeout: int - Seconds for file downloads
        """
        self.credentials = credentials
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout = timeout
        self.download_timeout = download_timeout

    def contents_url(self, source):
        url = f"{self.API_ROOT}/repos/{source.owner}/{source.repo}/contents/"
        if source.path:
            url += source.path
        return f"{url}?ref={source.branch}"

    def raw_url(self, owner, repo, branch, file_path):
        return f"{self.RAW_ROOT}/{owner}/{repo}/{branch}/{file_path}"

    def release_url(self, source):
        return f"{self.API_ROOT}/repos/{source.owner}/{source.repo}/releases/latest"

    def _request(self, url, accept='application/json', stream=False, timeout=None):
        """Issue a rate-limited GET.

        Returns:
            tuple - (outcome, response) where outcome is one of
            OK, MISSING, RATE_LIMITED, FAILED, ERROR and response is None
            unless the request completed
        """
        headers = {'User-Agent': config.USER_AGENT, 'Accept': accept}
        headers.update(self.credentials.headers_for(url))

        self.rate_limiter.wait()
        try:
            response = self.session.get(url, headers=headers, timeout=timeout or self.timeout, stream=stream)
        except requests.exceptions.Timeout:
            logger.warning(f"Request timed out: {url}")
            return FAILED, None
        except requests.exceptions.RequestException as e:
            logger.warning(f"Network error for {url}: {e}")
            return FAILED, None

        status = response.status_code
        if status == 200:
            return OK, response
        if status in (403, 429):
            logger.warning(f"Rate limited by GitHub API ({status}): {url}")
            return RATE_LIMITED, response
        if status == 404:
            return MISSING, response
        logger.warning(f"HTTP request returned code {status}: {url}")
        return ERROR, response

    def fetch_manifest(self, source):
        """Fetch the optional updates.json manifest of a patch source.

        Returns:
            tuple - (dict patch name -> manifest entry, outcome)
        """
        manifest_path = f"{source.path}/{MANIFEST_NAME}" if source.path else MANIFEST_NAME
        url = self.raw_url(source.owner, source.repo, source.branch, manifest_path)
        outcome, response = self._request(url)
        if outcome != OK:
            return {}, outcome

        try:
            data = json.loads(response.content)
        except ValueError:
            logger.warning(f"Ignoring malformed {MANIFEST_NAME} in {source.display_name}")
            return {}, outcome

        entries = data.get('patches') if isinstance(data, dict) else None
        manifest = {}
        for entry in entries or []:
            if not isinstance(entry, dict):
                continue
            key = entry.get('name') or entry.get('filename')
            if key:
                manifest[strip_patch_extension(str(key))] = entry
        logger.debug(f"Loaded {len(manifest)} manifest entries from {source.display_name}")
        return manifest, outcome

    def list_files(self, source, fingerprint_names=()):
        """List patch files available at a patch source.

        Args:
            source: Source - Patch source to scan
            fingerprint_names: iterable - Patch names installed locally; their
                MD5 is computed from the file body when the manifest has none

        Returns:
            ScanResult - items are RemoteArtifact objects
        """
        logger.info(f"Scanning repository: {source.display_name}")

        manifest, outcome = self.fetch_manifest(source)
        if outcome == RATE_LIMITED:
            return ScanResult(rate_limited=True)

        outcome, response = self._request(self.contents_url(source), accept='application/vnd.github.v3+json')
        if outcome == RATE_LIMITED:
            return ScanResult(rate_limited=True)
        if outcome == FAILED:
            return ScanResult(failed=True)
        if outcome != OK:
            logger.warning(f"Failed to get repository contents for {source.display_name}")
            return ScanResult()

        try:
            files = response.json()
        except ValueError:
            files = None
        if not isinstance(files, list):
            logger.warning(f"Invalid repository contents response for {source.display_name}")
            return ScanResult()

        wanted = set(fingerprint_names)
        items = []
        for entry in files:
            if not isinstance(entry, dict):
                continue
            name = entry.get('name') or ''
            if entry.get('type') != 'file' or not name.endswith(PATCH_EXTENSION):
                continue

            artifact = RemoteArtifact(
                name,
                entry.get('path') or name,
                size=entry.get('size'),
                download_url=entry.get('download_url'),
                sha=entry.get('sha'),
                source=source,
            )

            meta = manifest.get(artifact.patch_name)
            if meta:
                artifact.description = meta.get('description')
                artifact.author = meta.get('author')
                artifact.version = meta.get('version')
                md5 = meta.get('md5')
                artifact.md5 = str(md5).strip().lower() if md5 else None

            if not artifact.md5 and artifact.patch_name in wanted:
                content = self.fetch_content(artifact)
                if content is not None:
                    artifact.md5 = md5_bytes(content)
                    logger.debug(f"Computed MD5 on-the-fly for {artifact.patch_name}")

            items.append(artifact)

        logger.info(f"Found {len(items)} patches in {source.display_name}")
        return ScanResult(items=items)

    def fetch_content(self, artifact):
        """Download a patch body.

        Returns:
            bytes - File content, or None on any failure
        """
        url = artifact.download_url or self.raw_url(
            artifact.repo_owner, artifact.repo_name, artifact.repo_branch, artifact.path
        )
        outcome, response = self._request(url, accept='*/*')
        if outcome != OK:
            logger.warning(f"Failed to get file content: {url}")
            return None
        return response.content

    def latest_release(self, source):
        """Fetch the latest release of a plugin source.

        Returns:
            ScanResult - items holds a single ReleaseInfo whose zip_* fields
            point at the first asset matching the source's asset pattern
            (left empty when nothing matches); no items if there is no release
        """
        url = self.release_url(source)
        outcome, response = self._request(url, accept='application/vnd.github.v3+json')
        if outcome == RATE_LIMITED:
            return ScanResult(rate_limited=True)
        if outcome == FAILED:
            return ScanResult(failed=True)
        if outcome == MISSING:
            logger.debug(f"No releases published for {source.display_name}")
            return ScanResult()
        if outcome != OK:
            logger.warning(f"Failed to get latest release: {url}")
            return ScanResult()

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or not data.get('tag_name'):
            logger.warning(f"Invalid release response for {source.display_name}")
            return ScanResult()

        release = ReleaseInfo.from_api(data)
        matcher = asset_pattern_to_regex(source.asset_pattern)
        for asset in release.assets:
            if isinstance(asset, dict) and matcher.search(asset.get('name') or ''):
                release.select_asset(asset)
                break
        return ScanResult(items=[release])

    def download(self, url, dest):
        """Stream a file to dest, removing partial output on failure.

        Returns:
            bool - True if the file was fully written
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        outcome, response = self._request(url, accept='*/*', stream=True, timeout=self.download_timeout)
        if outcome != OK:
            logger.warning(f"Download failed ({outcome}): {url}")
            return False

        try:
            with open(dest, 'wb') as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
        except (OSError, requests.exceptions.RequestException) as e:
            logger.warning(f"Download interrupted for {url}: {e}")
            dest.unlink(missing_ok=True)
            return False
        finally:
            response.close()

        logger.info(f"File downloaded: {dest}")
        return True

    def is_online(self):
        """Cheap connectivity probe against the GitHub API."""
        try:
            self.session.head(self.API_ROOT, headers={'User-Agent': config.USER_AGENT}, timeout=5)
        except requests.exceptions.RequestException:
            return False
        return True
