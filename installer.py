"""
Installer
Installs patch and plugin updates with backup, integrity and compatibility checks
"""

import logging
import os
import shutil
import stat
import sys
import zipfile
from pathlib import Path

from artifacts import (
    InstallReport,
    FAILURE_DOWNLOAD, FAILURE_INTEGRITY, FAILURE_COMPATIBILITY, FAILURE_ARCHIVE, FAILURE_FILESYSTEM,
)
from fingerprint import md5_file

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = '.old'
TEMP_SUFFIX = '.new'
IGNORED_ARCHIVE_ROOTS = ('__MACOSX',)


class ArchiveError(Exception):
    """Raised when a release archive does not have the expected layout."""


def _handle_remove_readonly(func, path, exc):
    """Clear the read-only bit and retry (files copied off FAT e-readers)."""
    os.chmod(path, stat.S_IWRITE)
    func(path)


def _remove_directory_safe(path):
    """Remove a directory tree, retrying read-only entries.

    Args:
        path: str/Path - Directory to remove

    Raises:
        OSError - if the tree could not be removed
    """
    path = Path(path)
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError:
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_handle_remove_readonly)
        else:
            shutil.rmtree(path, onerror=_handle_remove_readonly)


def extract_archive(zip_path, dest, strip_root=True):
    """Extract a zip file into dest.

    With strip_root the archive must hold exactly one top-level directory;
    its contents become the contents of dest.

    Args:
        zip_path: str/Path - Archive to extract
        dest: str/Path - Target directory (created if missing)
        strip_root: bool - Drop the single top-level folder

    Raises:
        ArchiveError - for an unexpected layout or a member escaping dest
        zipfile.BadZipFile - if the file is not a zip archive
    """
    dest = Path(dest)
    with zipfile.ZipFile(zip_path, 'r') as archive:
        members = [
            m for m in archive.infolist()
            if m.filename.split('/', 1)[0] not in IGNORED_ARCHIVE_ROOTS
        ]
        if not members:
            raise ArchiveError('Archive is empty')

        root = None
        if strip_root:
            roots = {m.filename.split('/', 1)[0] for m in members}
            if len(roots) != 1:
                raise ArchiveError(f'Expected a single top-level folder, found {len(roots)} entries')
            root = roots.pop()
            if not all(m.filename.startswith(root + '/') for m in members):
                raise ArchiveError('Top-level entry is a file, not a folder')

        dest.mkdir(parents=True, exist_ok=True)
        dest_resolved = dest.resolve()

        for member in members:
            name = member.filename[len(root) + 1:] if root else member.filename
            if not name:
                continue

            target = (dest / name).resolve()
            if target != dest_resolved and dest_resolved not in target.parents:
                raise ArchiveError(f'Archive member escapes target folder: {member.filename}')

            if member.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member) as src, open(target, 'wb') as dst:
                shutil.copyfileobj(src, dst)


def _failure(reason, error):
    return {'success': False, 'reason': reason, 'error': error}


class PatchInstaller:
    def __init__(self, scanner, host_version):
        """Initialize patch installer.

        Args:
            scanner: RemoteScanner - Used when a candidate carries no content
            host_version: HostVersion - Running KOReader version
        """
        self.scanner = scanner
        self.host_version = host_version

    def install(self, candidate):
        """Install one patch update.

        The current file is copied to '<file>.old', the new content is
        written to '<file>.new' and must match the fingerprint recorded when
        the update was found and meet the patch's KOReader version marker
        before it replaces the installed file.

        Args:
            candidate: UpdateCandidate - Patch to install

        Returns:
            dict - Result with keys:
            - success: bool - Whether the patch was replaced
            - reason: str - Failure kind (download, integrity, compatibility, filesystem)
            - error: str - Error message if failed
        """
        local_path = Path(candidate.local.path)
        backup_path = local_path.with_name(local_path.name + BACKUP_SUFFIX)
        temp_path = local_path.with_name(local_path.name + TEMP_SUFFIX)

        try:
            if local_path.exists():
                shutil.copy2(local_path, backup_path)
        except OSError as e:
            logger.error(f"Failed to backup patch {local_path}: {e}")
            return _failure(FAILURE_FILESYSTEM, f'Backup failed: {e}')

        if candidate.content is not None:
            content = candidate.content
            if isinstance(content, str):
                content = content.encode('utf-8')
            try:
                temp_path.write_bytes(content)
            except OSError as e:
                logger.error(f"Failed to write temp patch file: {e}")
                return _failure(FAILURE_FILESYSTEM, str(e))
        else:
            remote = candidate.remote
            url = remote.download_url or self.scanner.raw_url(
                remote.repo_owner, remote.repo_name, remote.repo_branch, remote.path
            )
            if not self.scanner.download(url, temp_path):
                logger.error(f"Failed to download patch {candidate.name}")
                return _failure(FAILURE_DOWNLOAD, 'Download failed')

        downloaded_md5 = md5_file(temp_path)
        if downloaded_md5 is None or downloaded_md5 != candidate.remote_md5:
            logger.error(f"MD5 mismatch for downloaded patch {candidate.name}")
            temp_path.unlink(missing_ok=True)
            return _failure(FAILURE_INTEGRITY, 'Downloaded file does not match the repository checksum')

        if not self.host_version.meets_requirement_file(temp_path):
            logger.warning(f"Patch {candidate.name} does not meet version requirement")
            temp_path.unlink(missing_ok=True)
            return _failure(FAILURE_COMPATIBILITY, 'Requires a newer KOReader version')

        try:
            os.replace(temp_path, local_path)
        except OSError as e:
            logger.error(f"Failed to install patch {local_path}: {e}")
            temp_path.unlink(missing_ok=True)
            return _failure(FAILURE_FILESYSTEM, str(e))

        logger.info(f"Patch installed: {candidate.name}")
        return {'success': True}

    def install_all(self, candidates, progress=None, report=None):
        """Install a batch of patch updates.

        Args:
            candidates: list - UpdateCandidate objects
            progress: Optional callable(str) - Progress text sink
            report: Optional InstallReport - Collector filled as items complete

        Returns:
            InstallReport - Succeeded and failed patch names
        """
        return _install_batch(self, candidates, 'patch', progress, report)


class PluginInstaller:
    def __init__(self, scanner, paths):
        """Initialize plugin installer.

        Args:
            scanner: RemoteScanner - Downloads release assets
            paths: DataPaths - KOReader data directory layout
        """
        self.scanner = scanner
        self.paths = paths

    def install(self, candidate):
        """Install (or update) one plugin from its release archive.

        The installed directory is copied to '<entry>.old' first. If the new
        archive cannot be extracted that copy is put back.

        Args:
            candidate: PluginUpdateCandidate - Plugin and release to install

        Returns:
            dict - Result with keys success, reason and error (see PatchInstaller.install)
        """
        release = candidate.release
        if not release.zip_url:
            return _failure(FAILURE_DOWNLOAD, 'Release has no matching asset')

        plugin_dir = self.paths.plugins_dir / candidate.entry
        backup_dir = self.paths.plugins_dir / f"{candidate.entry}{BACKUP_SUFFIX}"
        zip_path = self.paths.cache_dir / f"{candidate.entry}.zip"

        try:
            _remove_directory_safe(backup_dir)
            if plugin_dir.exists():
                shutil.copytree(plugin_dir, backup_dir)
        except OSError as e:
            logger.error(f"Failed to backup plugin {plugin_dir}: {e}")
            return _failure(FAILURE_FILESYSTEM, f'Backup failed: {e}')

        try:
            if not self.scanner.download(release.zip_url, zip_path):
                return _failure(FAILURE_DOWNLOAD, 'Download failed')

            try:
                _remove_directory_safe(plugin_dir)
            except OSError as e:
                logger.error(f"Failed to remove old plugin directory: {e}")
                return _failure(FAILURE_FILESYSTEM, str(e))

            try:
                extract_archive(zip_path, plugin_dir, strip_root=True)
            except (ArchiveError, zipfile.BadZipFile, OSError) as e:
                logger.error(f"Failed to extract plugin ZIP for {candidate.name}: {e}")
                self._restore_backup(plugin_dir, backup_dir)
                return _failure(FAILURE_ARCHIVE, str(e))
        finally:
            zip_path.unlink(missing_ok=True)

        logger.info(f"Plugin installed: {candidate.name} {release.version}")
        return {'success': True}

    def _restore_backup(self, plugin_dir, backup_dir):
        if not backup_dir.exists():
            return
        try:
            _remove_directory_safe(plugin_dir)
            shutil.copytree(backup_dir, plugin_dir)
            logger.info(f"Restored previous version of {plugin_dir.name}")
        except OSError as e:
            logger.error(f"Failed to restore plugin backup {backup_dir}: {e}")

    def install_all(self, candidates, progress=None, report=None):
        """Install a batch of plugin updates (see PatchInstaller.install_all)."""
        return _install_batch(self, candidates, 'plugin', progress, report)


def _install_batch(installer, candidates, label, progress, report):
    report = report if report is not None else InstallReport()
    total = len(candidates)
    for index, candidate in enumerate(candidates, 1):
        if progress:
            progress(f"Installing {label} {index}/{total}: {candidate.name}")
        try:
            result = installer.install(candidate)
        except Exception as e:
            logger.exception(f"Unexpected error installing {label} {candidate.name}")
            result = _failure(FAILURE_FILESYSTEM, str(e))

        if result['success']:
            report.add_success(candidate.name)
        else:
            report.add_failure(candidate.name, result['reason'])
    return report
