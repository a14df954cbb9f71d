"""
Cache Store
Persists the merged repository scan, keyed by the configured source list
"""

import json
import logging
import time
from pathlib import Path

import config
from artifacts import RemoteArtifact, Source, PATCH

logger = logging.getLogger(__name__)


def build_cache_key(sources):
    """Serialize an ordered source list into the snapshot key.

    The format ("owner/repo/path;" per source) is shared with the
    on-device plugin so both can read the same cache file.
    """
    return ''.join(f"{s.owner}/{s.repo}/{s.path or ''};" for s in sources)


class CacheSnapshot:
    def __init__(self, cache_key, artifacts, timestamp):
        """Initialize snapshot.

        Args:
            cache_key: str - Key the snapshot was captured under
            artifacts: dict - patch name -> (RemoteArtifact, Source)
            timestamp: float - Unix time of capture
        """
        self.cache_key = cache_key
        self.artifacts = artifacts
        self.timestamp = timestamp


class CacheStore:
    def __init__(self, cache_file, max_age=config.CACHE_MAX_AGE, clock=time.time):
        self.cache_file = Path(cache_file)
        self.max_age = max_age
        self.clock = clock

    def load(self, cache_key):
        """Load the snapshot if it is fresh and captured for cache_key.

        Returns:
            CacheSnapshot - or None when missing, malformed, stale or keyed differently
        """
        raw = self._read()
        if raw is None:
            return None

        timestamp = raw.get('timestamp') or 0
        data = raw.get('data')
        if not isinstance(data, dict) or not isinstance(timestamp, (int, float)):
            logger.debug("Cache file has unexpected shape, ignoring")
            return None

        age = self.clock() - timestamp
        if age >= self.max_age:
            logger.info(f"Repository cache expired ({int(age)}s old)")
            return None
        if data.get('cache_key') != cache_key:
            logger.info("Repository list changed since last scan, cache invalidated")
            return None

        artifacts = {}
        for name, entry in (data.get('patches') or {}).items():
            try:
                artifacts[name] = (
                    RemoteArtifact.from_dict(entry['patch']),
                    Source.from_dict(PATCH, entry['repo_config']),
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Dropping malformed cache entry {name}: {e}")
        return CacheSnapshot(cache_key, artifacts, timestamp)

    def _read(self):
        if not self.cache_file.exists():
            return None
        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache file {self.cache_file}: {e}")
            return None
        return raw if isinstance(raw, dict) else None

    def save(self, cache_key, artifacts):
        """Write a snapshot of a complete scan.

        Args:
            cache_key: str - Key built from the scanned sources
            artifacts: dict - patch name -> (RemoteArtifact, Source)

        Returns:
            CacheSnapshot - the written snapshot, or None if writing failed
        """
        timestamp = int(self.clock())
        payload = {
            'timestamp': timestamp,
            'data': {
                'cache_key': cache_key,
                'patches': {
                    name: {'patch': artifact.to_dict(), 'repo_config': source.to_dict()}
                    for name, (artifact, source) in artifacts.items()
                },
            },
        }
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.cache_file, 'w', encoding='utf-8') as f:
                json.dump(payload, f, ensure_ascii=False)
        except (OSError, TypeError) as e:
            logger.error(f"Failed to write repository cache: {e}")
            return None
        return CacheSnapshot(cache_key, dict(artifacts), timestamp)

    def clear(self):
        """Delete the cache file. Returns True if something was removed."""
        if not self.cache_file.exists():
            return False
        try:
            self.cache_file.unlink()
        except OSError as e:
            logger.warning(f"Failed to remove cache file {self.cache_file}: {e}")
            return False
        return True
