"""
Settings Store
Manages the updates-manager.json file holding application settings
"""

import json
import logging
from pathlib import Path
from datetime import datetime

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = 'updates-manager.json'


class SettingsStore:
    def __init__(self, base_dir):
        self.base_dir = Path(base_dir)
        self.settings_file = self.base_dir / SETTINGS_FILENAME
        self.data = self._load_settings()

    def _load_settings(self):
        """Load settings from updates-manager.json"""
        if self.settings_file.exists():
            try:
                with open(self.settings_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.warning(f"Ignoring malformed settings file {self.settings_file}")
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read settings file {self.settings_file}: {e}")
        return self._create_empty_structure()

    def _create_empty_structure(self):
        """Create empty settings structure"""
        return {
            'version': '1.0',
            'last_updated': datetime.now().isoformat(),
            'settings': {}
        }

    def save_settings(self):
        """Save settings to updates-manager.json"""
        self.data['last_updated'] = datetime.now().isoformat()
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)
            return True
        except OSError as e:
            logger.error(f"Error saving settings: {e}")
            return False

    def is_configured(self):
        return bool(self.get_setting('koreader_data_path', ''))

    def get_setting(self, key, default=None):
        """Get a setting value"""
        if not isinstance(self.data.get('settings'), dict):
            self.data['settings'] = {}
        return self.data['settings'].get(key, default)

    def set_setting(self, key, value):
        """Set a setting value"""
        if not isinstance(self.data.get('settings'), dict):
            self.data['settings'] = {}
        self.data['settings'][key] = value
        return self.save_settings()

    def get_all_settings(self):
        """Get all settings"""
        if not isinstance(self.data.get('settings'), dict):
            self.data['settings'] = {}
        return self.data['settings']
