"""
Fingerprint
MD5 content addressing used for change detection and download verification
"""

import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


def md5_bytes(content):
    """Return the hex MD5 digest of in-memory content.

    Args:
        content: bytes/str - Content to hash (str is encoded as UTF-8)

    Returns:
        str - Lowercase hex digest
    """
    if isinstance(content, str):
        content = content.encode('utf-8')
    return hashlib.md5(content).hexdigest()


def md5_file(path):
    """Return the hex MD5 digest of a file, or None if it cannot be read."""
    digest = hashlib.md5()
    try:
        with open(Path(path), 'rb') as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
                digest.update(chunk)
    except OSError as e:
        logger.warning(f"Failed to calculate MD5 for {path}: {e}")
        return None
    return digest.hexdigest()
