"""
Local Inventory
Enumerates the patches and plugins installed in a KOReader data directory
"""

import logging

import config
from artifacts import LocalArtifact, PATCH_EXTENSION, DISABLED_SUFFIX, PLUGIN_SUFFIX, strip_patch_extension, strip_plugin_suffix
from fingerprint import md5_file
from meta_parser import MetaParser

logger = logging.getLogger(__name__)

META_FILENAME = '_meta.lua'


class LocalInventory:
    def __init__(self, paths, default_plugins=None):
        """Initialize inventory.

        Args:
            paths: DataPaths - KOReader data directory layout
            default_plugins: Optional set - Plugin names bundled with KOReader
        """
        self.paths = paths
        self.default_plugins = config.DEFAULT_PLUGINS if default_plugins is None else frozenset(default_plugins)

    def scan_patches(self):
        """Scan installed patch files.

        Returns:
            dict - patch name -> LocalArtifact
        """
        patches_dir = self.paths.patches_dir
        if not patches_dir.is_dir():
            logger.info(f"Patches directory does not exist: {patches_dir}")
            return {}

        patches = {}
        for entry in sorted(patches_dir.iterdir()):
            if not entry.is_file():
                continue
            if entry.name.endswith(DISABLED_SUFFIX) or not entry.name.endswith(PATCH_EXTENSION):
                continue

            try:
                size = entry.stat().st_size
            except OSError:
                size = 0

            name = strip_patch_extension(entry.name)
            patches[name] = LocalArtifact(
                name,
                entry,
                md5=md5_file(entry),
                size=size,
                filename=entry.name,
            )

        logger.info(f"Found {len(patches)} local patches")
        return patches

    def scan_plugins(self, include_defaults=False):
        """Scan installed plugin directories.

        Args:
            include_defaults: bool - Also list plugins bundled with KOReader

        Returns:
            dict - plugin name -> LocalArtifact
        """
        plugins_dir = self.paths.plugins_dir
        if not plugins_dir.is_dir():
            logger.info(f"Plugins directory does not exist: {plugins_dir}")
            return {}

        plugins = {}
        for entry in sorted(plugins_dir.iterdir()):
            if not entry.is_dir() or not entry.name.endswith(PLUGIN_SUFFIX):
                continue

            parser = MetaParser(entry / META_FILENAME)
            if not parser.parse():
                continue

            name = parser.name or strip_plugin_suffix(entry.name)
            if not include_defaults and name in self.default_plugins:
                continue

            version = parser.version
            version = str(version).strip() if version is not None else 'unknown'

            plugins[name] = LocalArtifact(
                name,
                entry,
                fullname=parser.fullname or name,
                version=version,
                description=parser.description or '',
                entry=entry.name,
            )

        logger.info(f"Found {len(plugins)} installed plugins")
        return plugins
