"""
Host Version
KOReader version lookup and the minimum-version check applied to patches
"""

import logging
import re
from pathlib import Path

import config

logger = logging.getLogger(__name__)

_VERSION = re.compile(r'v(\d{4})\.(\d{2})\.?(\d{0,2})-?(\d*)')
_REQUIREMENT = re.compile(r':korDoesNotMeet\("(v.+)"\)')

GIT_REV_FILENAME = 'git-rev'


def normalize_version(rev):
    """Turn a KOReader revision ('v2024.11.1-56-g...') into a comparable int.

    Returns:
        int - year*10^8 + month*10^6 + point*10^4 + revision, or None if rev
        is not a KOReader version string
    """
    if not rev:
        return None
    match = _VERSION.search(str(rev))
    if not match:
        return None
    year, month, point, revision = match.groups()
    return int(year) * 10**8 + int(month) * 10**6 + int(point or 0) * 10**4 + int(revision or 0)


class HostVersion:
    def __init__(self, install_dir=None, override=None):
        """Initialize host version lookup.

        Args:
            install_dir: Optional str/Path - KOReader installation holding git-rev
            override: Optional str - Version string set by the user, wins over git-rev
        """
        self.install_dir = Path(install_dir) if install_dir else None
        self.override = override
        self._current = None
        self._resolved = False

    def current(self):
        """Normalized running version, or None when it cannot be determined."""
        if not self._resolved:
            self._current = normalize_version(self._read_revision())
            self._resolved = True
            if self._current is None:
                logger.info("KOReader version unknown, patch version requirements will not be enforced")
        return self._current

    def _read_revision(self):
        if self.override:
            return self.override
        if not self.install_dir:
            return None
        rev_file = self.install_dir / GIT_REV_FILENAME
        try:
            return rev_file.read_text(encoding='utf-8').strip()
        except OSError:
            return None

    def meets_requirement(self, lines):
        """Check a patch's minimum-version marker against the running version.

        Args:
            lines: iterable of str - Patch lines; only the first few are read

        Returns:
            bool - False only when a marker names a newer version than the host
        """
        current = self.current()
        for index, line in enumerate(lines):
            if index >= config.VERSION_CHECK_LINES:
                break
            match = _REQUIREMENT.search(line)
            if not match:
                continue
            required = normalize_version(match.group(1))
            if required is not None and current is not None and current < required:
                logger.warning(f"Patch requires KOReader {match.group(1)}")
                return False
        return True

    def meets_requirement_file(self, path):
        try:
            with open(path, 'r', encoding='utf-8', errors='replace') as f:
                return self.meets_requirement(f)
        except OSError:
            return True
