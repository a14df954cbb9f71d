"""
Update Checker
Reconciles installed patches and plugins against the configured repositories
"""

import logging
import re

import config
from artifacts import (
    CheckResult, UpdateCandidate, PluginUpdateCandidate,
    strip_version_prefix, strip_plugin_suffix,
)
from cache_store import build_cache_key
from fingerprint import md5_bytes

logger = logging.getLogger(__name__)


def _no_progress(text):
    pass


def _not_cancelled():
    return False


def _version_parts(version):
    return [int(part) if part.isdigit() else 0 for part in re.split(r'[.-]', version) if part]


def is_version_newer(remote, installed):
    """Dotted-numeric comparison of two version strings.

    Versions may be numbers or carry a leading 'v'. Components are split on
    '.' and '-'; non-numeric components count as 0 and the shorter version
    is padded with zeros.

    Returns:
        bool - True only if remote is strictly greater than installed
    """
    if remote is None or installed is None:
        return False
    remote = strip_version_prefix(remote)
    installed = strip_version_prefix(installed)
    if remote == installed:
        return False

    remote_parts = _version_parts(remote)
    installed_parts = _version_parts(installed)
    length = max(len(remote_parts), len(installed_parts))
    remote_parts += [0] * (length - len(remote_parts))
    installed_parts += [0] * (length - len(installed_parts))
    return remote_parts > installed_parts


def match_plugin_to_source(source, installed):
    """Find the installed plugin a plugin source publishes.

    Strategies are tried in order over all installed plugins: exact name,
    repository name without '.koplugin', case-insensitive name, and finally
    the plugin's directory name.

    Args:
        source: Source - Plugin source
        installed: dict - plugin name -> LocalArtifact

    Returns:
        LocalArtifact - or None if no installed plugin matches
    """
    repo = source.repo
    repo_base = strip_plugin_suffix(repo)

    strategies = (
        lambda name, plugin: name == repo,
        lambda name, plugin: name == repo_base,
        lambda name, plugin: name.lower() == repo.lower(),
        lambda name, plugin: bool(plugin.entry) and strip_plugin_suffix(plugin.entry) in (repo, repo_base),
    )
    for matches in strategies:
        for name, plugin in installed.items():
            if matches(name, plugin):
                return plugin
    return None


class UpdateChecker:
    def __init__(self, registry, scanner, inventory, cache_store, ignore_list=None,
                 threshold=config.RATE_LIMIT_THRESHOLD):
        """Initialize update checker.

        Args:
            registry: SourceRegistry - Configured repositories
            scanner: RemoteScanner - GitHub access
            inventory: LocalInventory - Installed patches and plugins
            cache_store: CacheStore - Repository scan snapshot
            ignore_list: Optional IgnoreList - Patches never offered as updates
            threshold: int - Consecutive failed sources that abort a scan
        """
        self.registry = registry
        self.scanner = scanner
        self.inventory = inventory
        self.cache_store = cache_store
        self.ignore_list = ignore_list
        self.threshold = threshold

    def check_patches(self, force_refresh=False, progress=None, is_cancelled=None):
        """Find installed patches whose repository copy differs.

        Args:
            force_refresh: bool - Ignore a valid cached scan
            progress: Optional callable(str) - Progress text sink
            is_cancelled: Optional callable() -> bool - Polled between steps

        Returns:
            CheckResult - patch_updates plus the merged remote map
        """
        progress = progress or _no_progress
        is_cancelled = is_cancelled or _not_cancelled

        sources = self.registry.patch_sources()
        local_patches = self.inventory.scan_patches()
        cache_key = build_cache_key(sources)
        result = CheckResult()

        snapshot = None if force_refresh else self.cache_store.load(cache_key)
        if snapshot is not None:
            logger.info(f"Using cached repository patches: {len(snapshot.artifacts)} patches")
            progress("Using cached data...")
            remote = snapshot.artifacts
            result.used_cache = True
        else:
            remote = self._scan_sources(sources, list(local_patches), progress, is_cancelled, result)
            # a cancel during the last source is only visible here
            if result.cancelled or is_cancelled():
                result.cancelled = True
                return result
            if not result.rate_limit_hit:
                progress("Saving cache...")
                self.cache_store.save(cache_key, remote)
        result.remote_artifacts = remote

        progress("Checking for updates...")
        ignored = self.ignore_list.load() if self.ignore_list else set()
        total = len(local_patches)
        for index, (name, local) in enumerate(local_patches.items(), 1):
            if is_cancelled():
                result.cancelled = True
                return result

            entry = remote.get(name)
            if entry is None:
                continue
            artifact, source = entry

            progress(f"Checking patch {index}/{total}: {name}")
            candidate = self._compare_patch(local, artifact, source)
            if candidate is None or not candidate.is_newer:
                continue
            if name in ignored:
                result.ignored_count += 1
                continue

            logger.info(f"Update found for patch: {name}")
            result.patch_updates.append(candidate)

        logger.info(f"Found {len(result.patch_updates)} patch updates")
        return result

    def _scan_sources(self, sources, local_names, progress, is_cancelled, result):
        """Scan patch sources in order, first source wins per patch name."""
        merged = {}
        consecutive_failures = 0
        total = len(sources)

        logger.info("Scanning all repositories (this may take a while)...")
        for index, source in enumerate(sources, 1):
            if is_cancelled():
                result.cancelled = True
                return merged

            progress(f"Scanning repository {index}/{total}: {source.display_name}")
            scan = self.scanner.list_files(source, fingerprint_names=local_names)

            if scan.transient_failure:
                consecutive_failures += 1
                if consecutive_failures >= self.threshold:
                    logger.warning("Rate limit hit multiple times, stopping scan")
                    result.rate_limit_hit = True
                    break
                continue
            consecutive_failures = 0

            for artifact in scan.items:
                if artifact.patch_name not in merged:
                    merged[artifact.patch_name] = (artifact, source)

        return merged

    def _compare_patch(self, local, remote, source):
        """Pair local with remote and decide whether remote is a different version.

        Fingerprints are compared when both are known. Otherwise a size
        difference triggers a download whose fingerprint confirms the change.
        Content is only fetched for a pair that may be stale.

        Returns:
            UpdateCandidate - with is_newer set, or None if the body could not be fetched
        """
        if local.md5 and remote.md5:
            if local.md5 == remote.md5:
                return UpdateCandidate(local, remote, source, remote_md5=remote.md5, is_newer=False)
            content = self.scanner.fetch_content(remote)
            if content is None:
                return None
            return UpdateCandidate(local, remote, source, remote_md5=remote.md5, content=content, is_newer=True)

        if remote.size == local.size:
            return UpdateCandidate(local, remote, source, is_newer=False)

        content = self.scanner.fetch_content(remote)
        if content is None:
            return None
        remote_md5 = md5_bytes(content)
        is_newer = not (local.md5 and remote_md5 == local.md5)
        if is_newer:
            logger.debug(f"Size differs for patch {local.name}: {local.size} -> {remote.size}")
        return UpdateCandidate(local, remote, source, remote_md5=remote_md5, content=content, is_newer=is_newer)

    def check_plugins(self, progress=None, is_cancelled=None):
        """Find installed plugins with a newer latest release.

        Returns:
            CheckResult - plugin_updates only
        """
        progress = progress or _no_progress
        is_cancelled = is_cancelled or _not_cancelled

        progress("Checking for plugin updates...")
        installed = self.inventory.scan_plugins()
        result = CheckResult()
        consecutive_failures = 0
        sources = self.registry.plugin_sources()

        for index, source in enumerate(sources, 1):
            if is_cancelled():
                result.cancelled = True
                return result

            plugin = match_plugin_to_source(source, installed)
            if plugin is None:
                continue

            progress(f"Checking plugin {index}/{len(sources)}: {plugin.fullname}")
            scan = self.scanner.latest_release(source)
            if scan.transient_failure:
                consecutive_failures += 1
                if consecutive_failures >= self.threshold:
                    logger.warning("Rate limit hit multiple times, stopping plugin check")
                    result.rate_limit_hit = True
                    break
                continue
            consecutive_failures = 0

            if not scan.items:
                continue
            release = scan.items[0]
            candidate = PluginUpdateCandidate(plugin, source, release,
                                              is_newer=is_version_newer(release.version, plugin.version))
            if not candidate.is_newer:
                continue
            if not release.zip_url:
                pattern_info = f" (pattern: {source.asset_pattern})" if source.asset_pattern else ''
                logger.warning(f"No matching asset found for plugin: {plugin.name}{pattern_info}")
                continue

            logger.info(f"Update found for plugin: {plugin.name} installed: {plugin.version} "
                        f"available: {release.version}")
            result.plugin_updates.append(candidate)

        logger.info(f"Found {len(result.plugin_updates)} plugin updates")
        return result

    def check_all(self, force_refresh=False, progress=None, is_cancelled=None):
        """Check patches, then plugins, and merge both into one result."""
        result = self.check_patches(force_refresh, progress, is_cancelled)
        if result.cancelled:
            return result

        plugins = self.check_plugins(progress, is_cancelled)
        result.plugin_updates = plugins.plugin_updates
        result.rate_limit_hit = result.rate_limit_hit or plugins.rate_limit_hit
        result.cancelled = plugins.cancelled
        return result

    def check_new_plugins(self, progress=None, is_cancelled=None):
        """List plugin sources that are not installed yet and have a release.

        Returns:
            CheckResult - plugin_updates holds candidates with installed=None
        """
        progress = progress or _no_progress
        is_cancelled = is_cancelled or _not_cancelled

        installed = self.inventory.scan_plugins(include_defaults=True)
        result = CheckResult()
        consecutive_failures = 0
        sources = self.registry.plugin_sources()

        for index, source in enumerate(sources, 1):
            if is_cancelled():
                result.cancelled = True
                return result
            if match_plugin_to_source(source, installed) is not None:
                continue

            progress(f"Checking repository {index}/{len(sources)}: {source.display_name}")
            scan = self.scanner.latest_release(source)
            if scan.transient_failure:
                consecutive_failures += 1
                if consecutive_failures >= self.threshold:
                    result.rate_limit_hit = True
                    break
                continue
            consecutive_failures = 0

            if scan.items and scan.items[0].zip_url:
                result.plugin_updates.append(PluginUpdateCandidate(None, source, scan.items[0], is_newer=True))

        logger.info(f"Found {len(result.plugin_updates)} installable plugins")
        return result
