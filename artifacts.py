"""
Artifacts
Value types shared by the scanner, reconciler and installers
"""

PATCH = 'patch'
PLUGIN = 'plugin'

PATCH_EXTENSION = '.lua'
DISABLED_SUFFIX = '.disabled'
PLUGIN_SUFFIX = '.koplugin'

STATUS_UPDATES = 'updates'
STATUS_NO_UPDATES = 'no_updates'
STATUS_RATE_LIMITED = 'rate_limited'
STATUS_CANCELLED = 'cancelled'

FAILURE_DOWNLOAD = 'download'
FAILURE_INTEGRITY = 'integrity'
FAILURE_COMPATIBILITY = 'compatibility'
FAILURE_ARCHIVE = 'archive'
FAILURE_FILESYSTEM = 'filesystem'


def strip_patch_extension(filename):
    """Return a patch name from a file name ('foo.lua' -> 'foo')."""
    if filename.endswith(DISABLED_SUFFIX):
        filename = filename[:-len(DISABLED_SUFFIX)]
    if filename.endswith(PATCH_EXTENSION):
        filename = filename[:-len(PATCH_EXTENSION)]
    return filename


def strip_version_prefix(version):
    """Drop a leading 'v' tag prefix ('v1.2.0' -> '1.2.0')."""
    version = str(version)
    if version[:1] in ('v', 'V'):
        return version[1:]
    return version


def strip_plugin_suffix(name):
    if name.endswith(PLUGIN_SUFFIX):
        return name[:-len(PLUGIN_SUFFIX)]
    return name


class Source:
    """A configured repository contributing patches or plugin releases.

    Sources are treated as immutable for a session. Identity is
    (owner, repo, path); kind decides which section of the override file
    the source belongs to.
    """

    def __init__(self, kind, owner, repo, branch=None, path='', asset_pattern=None, description=''):
        if kind not in (PATCH, PLUGIN):
            raise ValueError(f"Unknown source kind: {kind}")
        self.kind = kind
        self.owner = owner
        self.repo = repo
        self.branch = (branch or 'main') if kind == PATCH else None
        self.path = (path or '').strip('/') if kind == PATCH else ''
        self.asset_pattern = asset_pattern if kind == PLUGIN else None
        self.description = description or ''

    @property
    def identity(self):
        return (self.owner, self.repo, self.path)

    @property
    def display_name(self):
        name = f"{self.owner}/{self.repo}"
        if self.path:
            name = f"{name}/{self.path}"
        return name

    @property
    def repo_url(self):
        return f"https://github.com/{self.owner}/{self.repo}"

    def to_dict(self):
        data = {'owner': self.owner, 'repo': self.repo}
        if self.kind == PATCH:
            data['branch'] = self.branch
            data['path'] = self.path
        elif self.asset_pattern:
            data['asset_pattern'] = self.asset_pattern
        if self.description:
            data['description'] = self.description
        return data

    @classmethod
    def from_dict(cls, kind, data):
        """Build a Source from an override-file entry.

        Raises:
            ValueError - if the entry is not an object or lacks owner/repo
        """
        if not isinstance(data, dict):
            raise ValueError(f"Source entry must be an object, got {type(data).__name__}")
        owner = data.get('owner')
        repo = data.get('repo')
        if not owner or not repo:
            raise ValueError("Source entry requires 'owner' and 'repo'")
        return cls(
            kind,
            str(owner),
            str(repo),
            branch=data.get('branch'),
            path=data.get('path') or '',
            asset_pattern=data.get('asset_pattern'),
            description=data.get('description') or '',
        )

    def __eq__(self, other):
        if not isinstance(other, Source):
            return NotImplemented
        return self.kind == other.kind and self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.kind,) + self.identity)

    def __repr__(self):
        return f"Source({self.kind}, {self.display_name})"


class RemoteArtifact:
    """A patch file published in a source repository."""

    FIELDS = (
        'name', 'patch_name', 'path', 'sha', 'size', 'download_url', 'md5',
        'description', 'author', 'version',
        'repo_owner', 'repo_name', 'repo_path', 'repo_branch', 'repo_url',
    )

    def __init__(self, name, path, size=0, download_url=None, sha=None, md5=None, source=None,
                 description=None, author=None, version=None):
        self.name = name
        self.patch_name = strip_patch_extension(name)
        self.path = path
        self.sha = sha
        self.size = size or 0
        self.download_url = download_url
        self.md5 = md5
        self.description = description
        self.author = author
        self.version = version
        self.repo_owner = source.owner if source else None
        self.repo_name = source.repo if source else None
        self.repo_path = source.path if source else ''
        self.repo_branch = source.branch if source else 'main'
        self.repo_url = source.repo_url if source else None

    def to_dict(self):
        return {field: getattr(self, field) for field in self.FIELDS}

    @classmethod
    def from_dict(cls, data):
        artifact = cls(data['name'], data.get('path') or data['name'])
        for field in cls.FIELDS:
            if field in data:
                setattr(artifact, field, data[field])
        artifact.size = artifact.size or 0
        artifact.repo_branch = artifact.repo_branch or 'main'
        artifact.repo_path = artifact.repo_path or ''
        return artifact

    def __repr__(self):
        return f"RemoteArtifact({self.patch_name}, md5={self.md5})"


class LocalArtifact:
    """An installed patch file or plugin directory."""

    def __init__(self, name, path, md5=None, size=0, filename=None, fullname=None, version=None,
                 description='', entry=None):
        self.name = name
        self.path = path
        self.md5 = md5
        self.size = size or 0
        self.filename = filename
        self.fullname = fullname or name
        self.version = version
        self.description = description or ''
        self.entry = entry

    def __repr__(self):
        return f"LocalArtifact({self.name})"


class ReleaseInfo:
    """Latest release of a plugin source and the asset chosen for install."""

    def __init__(self, tag_name, name=None, body='', published_at=None, html_url=None, assets=None):
        self.tag_name = tag_name or ''
        self.version = strip_version_prefix(self.tag_name)
        self.name = name or self.tag_name
        self.body = body or ''
        self.published_at = published_at
        self.html_url = html_url
        self.assets = assets or []
        self.zip_url = None
        self.zip_name = None
        self.zip_size = 0

    def select_asset(self, asset):
        self.zip_url = asset.get('browser_download_url')
        self.zip_name = asset.get('name')
        self.zip_size = asset.get('size') or 0

    @classmethod
    def from_api(cls, data):
        return cls(
            data.get('tag_name'),
            name=data.get('name'),
            body=data.get('body'),
            published_at=data.get('published_at'),
            html_url=data.get('html_url'),
            assets=data.get('assets') or [],
        )


class ScanResult:
    """Outcome of one remote call against one source.

    rate_limited marks a 403/429 answer, failed marks a transient transport
    error (timeout, connection reset). Both leave items empty.
    """

    def __init__(self, items=None, rate_limited=False, failed=False):
        self.items = items if items is not None else []
        self.rate_limited = rate_limited
        self.failed = failed

    @property
    def transient_failure(self):
        return self.rate_limited or self.failed

    def __repr__(self):
        return f"ScanResult(items={len(self.items)}, rate_limited={self.rate_limited}, failed={self.failed})"


class UpdateCandidate:
    """A local patch paired with a differing remote version."""

    def __init__(self, local, remote, source, remote_md5=None, content=None, is_newer=False):
        self.local = local
        self.remote = remote
        self.source = source
        self.remote_md5 = remote_md5
        self.content = content
        self.is_newer = is_newer

    @property
    def name(self):
        return self.local.name

    def __repr__(self):
        return f"UpdateCandidate({self.name} from {self.source.display_name})"


class PluginUpdateCandidate:
    """An installed (or installable) plugin paired with a newer release."""

    def __init__(self, installed, source, release, is_newer=False):
        self.installed = installed
        self.source = source
        self.release = release
        self.is_newer = is_newer

    @property
    def name(self):
        if self.installed:
            return self.installed.name
        return strip_plugin_suffix(self.source.repo)

    @property
    def entry(self):
        """Directory name the plugin is (or will be) installed under."""
        if self.installed and self.installed.entry:
            return self.installed.entry
        return f"{strip_plugin_suffix(self.source.repo)}{PLUGIN_SUFFIX}"

    def __repr__(self):
        return f"PluginUpdateCandidate({self.name} -> {self.release.version})"


class CheckResult:
    """Result of one check-for-updates pass."""

    def __init__(self, patch_updates=None, plugin_updates=None, remote_artifacts=None,
                 rate_limit_hit=False, cancelled=False, used_cache=False, ignored_count=0):
        self.patch_updates = patch_updates or []
        self.plugin_updates = plugin_updates or []
        self.remote_artifacts = remote_artifacts or {}
        self.rate_limit_hit = rate_limit_hit
        self.cancelled = cancelled
        self.used_cache = used_cache
        self.ignored_count = ignored_count

    @property
    def status(self):
        if self.cancelled:
            return STATUS_CANCELLED
        if self.rate_limit_hit:
            return STATUS_RATE_LIMITED
        if self.patch_updates or self.plugin_updates:
            return STATUS_UPDATES
        return STATUS_NO_UPDATES


class InstallReport:
    """Succeeded/failed artifact names collected while a batch runs."""

    def __init__(self):
        self.succeeded = []
        self.failed = []
        self.reasons = {}

    def add_success(self, name):
        self.succeeded.append(name)

    def add_failure(self, name, reason):
        self.failed.append(name)
        self.reasons[name] = reason

    @property
    def empty(self):
        return not self.succeeded and not self.failed

    def __repr__(self):
        return f"InstallReport(succeeded={self.succeeded}, failed={self.failed})"
