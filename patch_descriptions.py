"""
Patch Descriptions
Resolves a patch description from user edits, repository manifests or the
patch's own header comments, and keeps the list of ignored patches
"""

import json
import logging
import re
from pathlib import Path

from artifacts import strip_patch_extension

logger = logging.getLogger(__name__)

_DECORATIVE = re.compile(r'^[=\-_.*#]+$')
_METADATA = re.compile(r'^(@|version|requires)')


def parse_from_comments(content):
    """Build a description from the leading '--' comment block of a patch.

    Long-comment brackets, decorative rulers, metadata lines (@tags,
    version, requires) and template text ("Edit your ...") are skipped.
    Parsing stops at the first code line after the description starts.

    Returns:
        str - Joined description lines, or None if nothing usable was found
    """
    if not content:
        return None
    if isinstance(content, bytes):
        content = content.decode('utf-8', errors='replace')

    lines = []
    for line in content.splitlines():
        if not line.strip():
            continue
        if not line.startswith('--'):
            if lines:
                break
            continue

        comment = line[2:].strip()
        if not comment or comment.startswith('[[') or comment.endswith(']]'):
            continue
        if _DECORATIVE.match(comment) or _METADATA.match(comment):
            continue
        if re.search(r'[Ee]dit your', comment):
            continue
        lines.append(comment)

    return '\n'.join(lines) if lines else None


class PatchDescriptions:
    def __init__(self, descriptions_file):
        self.descriptions_file = Path(descriptions_file)

    def load(self):
        """Load user-edited descriptions (patch name -> text)."""
        if not self.descriptions_file.exists():
            return {}
        try:
            with open(self.descriptions_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable descriptions file: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, descriptions):
        try:
            self.descriptions_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.descriptions_file, 'w', encoding='utf-8') as f:
                json.dump(descriptions, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save patch descriptions: {e}")
            return False
        return True

    def set_description(self, name, description):
        descriptions = self.load()
        descriptions[name] = description or ''
        return self.save(descriptions)

    def get_description(self, name, remote=None, content=None):
        """Resolve the description of a patch.

        Args:
            name: str - Patch name (no extension)
            remote: Optional RemoteArtifact - carries the manifest description
            content: Optional str/bytes - Patch body for comment parsing

        Returns:
            str - Description, or None when no source has one
        """
        local = self.load().get(name)
        if local:
            return local
        if remote is not None and remote.description:
            return remote.description
        return parse_from_comments(content)


class IgnoreList:
    """Patch names excluded from update results, one per line."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self):
        if not self.path.exists():
            return set()
        try:
            text = self.path.read_text(encoding='utf-8')
        except OSError as e:
            logger.warning(f"Could not read ignore list {self.path}: {e}")
            return set()

        ignored = set()
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            ignored.add(strip_patch_extension(line))
        return ignored

    def add(self, name):
        name = strip_patch_extension(name)
        if name in self.load():
            return True
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            existing = self.path.read_text(encoding='utf-8') if self.path.exists() else ''
            if existing and not existing.endswith('\n'):
                existing += '\n'
            self.path.write_text(f"{existing}{name}\n", encoding='utf-8')
        except OSError as e:
            logger.error(f"Failed to update ignore list: {e}")
            return False
        logger.info(f"Ignoring patch: {name}")
        return True

    def remove(self, name):
        name = strip_patch_extension(name)
        if not self.path.exists():
            return False
        try:
            lines = self.path.read_text(encoding='utf-8').splitlines()
            kept = [line for line in lines if strip_patch_extension(line.strip()) != name]
            if len(kept) == len(lines):
                return False
            self.path.write_text('\n'.join(kept) + ('\n' if kept else ''), encoding='utf-8')
        except OSError as e:
            logger.error(f"Failed to update ignore list: {e}")
            return False
        return True
