"""
Source Registry
Merges built-in repository lists with the user's override file
"""

import json
import logging
from pathlib import Path

import config
from artifacts import Source, PATCH, PLUGIN

logger = logging.getLogger(__name__)

SECTIONS = (('patches', PATCH), ('plugins', PLUGIN))


class SourceRegistry:
    def __init__(self, config_file, default_patches=None, default_plugins=None):
        """Initialize source registry.

        Args:
            config_file: str/Path - Path to updatesmanager_config.json
            default_patches: Optional list - Built-in patch repository dicts
            default_plugins: Optional list - Built-in plugin repository dicts
        """
        self.config_file = Path(config_file)
        if default_patches is None:
            default_patches = config.DEFAULT_PATCH_REPOS
        if default_plugins is None:
            default_plugins = config.DEFAULT_PLUGIN_REPOS
        self.defaults = (
            [Source.from_dict(PATCH, entry) for entry in default_patches] +
            [Source.from_dict(PLUGIN, entry) for entry in default_plugins]
        )
        self.user = []

    def load(self):
        """Load the ordered source list.

        Defaults come first, followed by user overrides in file order.
        Duplicates are kept so a repository listed twice is scanned twice.

        Returns:
            list - Source objects (patch sources before plugin sources)
        """
        self.user = self._load_user_sources()
        user_patches = [s for s in self.user if s.kind == PATCH]
        user_plugins = [s for s in self.user if s.kind == PLUGIN]
        default_patches = [s for s in self.defaults if s.kind == PATCH]
        default_plugins = [s for s in self.defaults if s.kind == PLUGIN]
        return default_patches + user_patches + default_plugins + user_plugins

    def _load_user_sources(self):
        if not self.config_file.exists():
            return []
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable source overrides {self.config_file}: {e}")
            return []

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed source overrides {self.config_file}")
            return []

        sources = []
        for section, kind in SECTIONS:
            entries = data.get(section) or []
            if not isinstance(entries, list):
                logger.warning(f"Ignoring '{section}' in {self.config_file}: expected a list")
                continue
            for entry in entries:
                try:
                    sources.append(Source.from_dict(kind, entry))
                except ValueError as e:
                    logger.warning(f"Skipping invalid {kind} source {entry!r}: {e}")
        return sources

    def save(self, sources):
        """Persist the user-supplied sources.

        Args:
            sources: list - Source objects added by the user (defaults excluded)

        Returns:
            bool - True if written
        """
        payload = {
            section: [s.to_dict() for s in sources if s.kind == kind]
            for section, kind in SECTIONS
        }
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError) as e:
            logger.error(f"Failed to write repository configuration: {e}")
            return False
        self.user = list(sources)
        return True

    def user_sources(self):
        return list(self.user)

    def patch_sources(self):
        return [s for s in self.load() if s.kind == PATCH]

    def plugin_sources(self):
        return [s for s in self.load() if s.kind == PLUGIN]

    def add_source(self, source):
        """Append a user source and persist the override file."""
        self.user = self._load_user_sources()
        return self.save(self.user + [source])

    def remove_source(self, source):
        """Remove the first user source with the same identity and kind."""
        self.user = self._load_user_sources()
        remaining = list(self.user)
        for index, existing in enumerate(remaining):
            if existing.kind == source.kind and existing.identity == source.identity:
                del remaining[index]
                return self.save(remaining)
        return False
