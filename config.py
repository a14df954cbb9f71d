"""
Configuration
KOReader data-directory layout, default repositories and tuning constants
"""

from pathlib import Path

USER_AGENT = "KOReader-UpdatesManager/1.0"

CACHE_MAX_AGE = 3600  # seconds
REQUEST_INTERVAL = 0.5  # seconds between GitHub requests
REQUEST_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 120
RATE_LIMIT_THRESHOLD = 3
VERSION_CHECK_LINES = 3

PROGRESS_POLL_MS = 500
PROGRESS_THROTTLE_SECONDS = 0.3
SYNC_RESULT_DELAY_MS = 100


DEFAULT_PATCH_REPOS = [
    {'owner': 'joshuacant', 'repo': 'KOReader.patches', 'branch': 'main', 'path': '',
     'description': "Joshua Cant's patches"},
    {'owner': 'angelsangita', 'repo': 'Koreader-Patches', 'branch': 'main', 'path': '',
     'description': "Angelsangita's patches"},
    {'owner': 'SeriousHornet', 'repo': 'KOReader.patches', 'branch': 'main', 'path': '',
     'description': "SeriousHornet's patches"},
    {'owner': 'sebdelsol', 'repo': 'KOReader.patches', 'branch': 'main', 'path': '',
     'description': "Sebdelsol's patches"},
    {'owner': 'zenixlabs', 'repo': 'koreader-frankenpatches-public', 'branch': 'main', 'path': '',
     'description': "Zenixlabs patches"},
    {'owner': 'omer-faruq', 'repo': 'koreader-user-patches', 'branch': 'main', 'path': '',
     'description': "Omer Faruq's patches"},
    {'owner': 'loeffner', 'repo': 'KOReader.patches', 'branch': 'main', 'path': 'project-title',
     'description': "Loeffner's project-title patches"},
    {'owner': 'advokatb', 'repo': 'KOReader-Patches', 'branch': 'main', 'path': '',
     'description': "Advokatb's patches"},
]

DEFAULT_PLUGIN_REPOS = [
    {'owner': 'loeffner', 'repo': 'WeatherLockscreen', 'description': "Weather Lockscreen plugin"},
    {'owner': 'advokatb', 'repo': 'readingstreak.koplugin', 'description': "Reading Streak plugin"},
    {'owner': 'advokatb', 'repo': 'updatesmanager.koplugin', 'description': "Updates Manager plugin"},
    {'owner': 'bozo22', 'repo': 'imagebookmarks.koplugin', 'description': "Image Bookmarks plugin"},
    {'owner': 'roygbyte', 'repo': 'weather.koplugin', 'description': "Weather plugin"},
    {'owner': 'marinov752', 'repo': 'emailtokoreader.koplugin', 'description': "Email to KOReader plugin"},
    {'owner': 'omer-faruq', 'repo': 'memobook.koplugin', 'description': "Memo Book plugin"},
    {'owner': '0zd3m1r', 'repo': 'koreader-booknotes-plugin', 'description': "Book Notes plugin"},
    {'owner': 'omer-faruq', 'repo': 'rssreader.koplugin', 'description': "RSS Reader plugin"},
    {'owner': '0zd3m1r', 'repo': 'koreader-xray-plugin', 'description': "X-Ray plugin"},
    {'owner': 'Billiam', 'repo': 'crashlog.koplugin', 'description': "Crash Log plugin"},
    {'owner': 'kodermike', 'repo': 'airplanemode.koplugin', 'description': "Airplane Mode plugin"},
    {'owner': 'kristianpennacchia', 'repo': 'zzz-readermenuredesign.koplugin',
     'description': "Reader Menu Redesign plugin"},
    {'owner': 'kristianpennacchia', 'repo': 'wordreference.koplugin', 'description': "WordReference plugin"},
    {'owner': 'patelneeraj', 'repo': 'filebrowserplus.koplugin', 'description': "File Browser Plus plugin"},
    {'owner': 'omer-faruq', 'repo': 'webbrowser.koplugin', 'description': "Web Browser plugin"},
    {'owner': 'Billiam', 'repo': 'hardcoverapp.koplugin', 'description': "Hardcover App plugin"},
    {'owner': 'omer-faruq', 'repo': 'assistant.koplugin', 'description': "AI Assistant plugin"},
    {'owner': 'monk-blade', 'repo': 'multiline-toc-koreader', 'description': "Multiline TOC plugin"},
    {'owner': '0xmiki', 'repo': 'telegramhighlights.koplugin', 'description': "Telegram Highlights plugin"},
    {'owner': 'Evgeniy-94', 'repo': 'TelegramDownloader.koplugin', 'description': "Telegram Downloader plugin"},
    {'owner': 'joshuacant', 'repo': 'ProjectTitle', 'description': "Project Title plugin"},
    {'owner': 'JoeBumm', 'repo': 'Koreader-Menu-customizer', 'description': "Menu Customizer plugin"},
]

# Plugins shipped with KOReader itself; hidden from the installed list
DEFAULT_PLUGINS = frozenset([
    'archiveviewer', 'autodim', 'autostandby', 'autosuspend', 'autoturn', 'autowarmth',
    'batterystat', 'bookshortcuts', 'calibre', 'coverbrowser', 'coverimage', 'docsettingtweak',
    'exporter', 'externalkeyboard', 'gestures', 'hello', 'hotkeys', 'httpinspector', 'japanese',
    'keepalive', 'kosync', 'movetoarchive', 'newsdownloader', 'opds', 'perceptionexpander',
    'profiles', 'qrclipboard', 'readtimer', 'SSH', 'statistics', 'systemstat', 'terminal',
    'texteditor', 'timesync', 'vocabbuilder', 'wallabag',
])


class DataPaths:
    """File layout under a KOReader data directory."""

    def __init__(self, data_dir):
        """Initialize paths.

        Args:
            data_dir: str/Path - KOReader data directory (holds patches/, plugins/, settings/)
        """
        self.data_dir = Path(data_dir)
        self.patches_dir = self.data_dir / 'patches'
        self.plugins_dir = self.data_dir / 'plugins'
        self.settings_dir = self.data_dir / 'settings'
        self.config_file = self.settings_dir / 'updatesmanager_config.json'
        self.cache_dir = self.settings_dir / 'updatesmanager_cache'
        self.cache_file = self.cache_dir / 'repository_cache.json'
        self.progress_file = self.cache_dir / 'progress.txt'
        self.descriptions_file = self.settings_dir / 'updatesmanager_patch_descriptions.json'
        self.ignored_patches_file = self.settings_dir / 'updatesmanager_ignored_patches.txt'

    def ensure_directories(self):
        self.settings_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
