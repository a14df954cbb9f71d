"""
KOReader Updates Manager
A PyQt6 desktop companion that keeps KOReader user patches and plugins up to date
"""

__version__ = "1.0"

import sys
import os
import logging
from datetime import datetime
from pathlib import Path

from PyQt6.QtWidgets import (QApplication, QMainWindow, QWidget, QVBoxLayout,
                             QHBoxLayout, QLabel, QLineEdit, QPushButton,
                             QTabWidget, QMessageBox, QProgressDialog, QGroupBox,
                             QTextEdit, QTextBrowser, QDialog, QDialogButtonBox,
                             QFormLayout, QFileDialog, QInputDialog, QStyle,
                             QTreeWidget, QTreeWidgetItem, QCheckBox, QSplitter, QComboBox)
from PyQt6.QtCore import Qt, QObject, pyqtSignal
from PyQt6.QtGui import QFont, QIcon, QGuiApplication

import qdarktheme

import config
from artifacts import Source, PATCH, PLUGIN, InstallReport, STATUS_CANCELLED, STATUS_RATE_LIMITED, STATUS_NO_UPDATES
from cache_store import CacheStore
from host_version import HostVersion
from installer import PatchInstaller, PluginInstaller
from local_inventory import LocalInventory
from patch_descriptions import PatchDescriptions, IgnoreList
from repository_scanner import GitHubCredentials, RemoteScanner
from settings_store import SettingsStore
from source_registry import SourceRegistry
from task_runner import TaskRunner
from update_checker import UpdateChecker

logger = logging.getLogger(__name__)

FAILURE_LABELS = {
    'download': 'download failed',
    'integrity': 'checksum mismatch',
    'compatibility': 'needs a newer KOReader',
    'archive': 'unexpected archive layout',
    'filesystem': 'could not write files',
}


class LogBridge(QObject):
    message = pyqtSignal(str)


class QtLogHandler(logging.Handler):
    """Mirrors log records into the activity log, from any thread."""

    def __init__(self, level=logging.INFO):
        super().__init__(level)
        self.bridge = LogBridge()
        self.setFormatter(logging.Formatter('%(message)s'))

    def emit(self, record):
        try:
            self.bridge.message.emit(self.format(record))
        except RuntimeError:
            # bridge already deleted during shutdown
            pass


class UpdatesListDialog(QDialog):
    def __init__(self, patch_updates, plugin_updates, descriptions, ignore_list, parent=None):
        """Initialize update selection dialog.

        Args:
            patch_updates: list - UpdateCandidate objects
            plugin_updates: list - PluginUpdateCandidate objects
            descriptions: PatchDescriptions - Description resolver
            ignore_list: IgnoreList - Ignored patches file
            parent: Optional QWidget - Parent window
        """
        super().__init__(parent)
        self.descriptions = descriptions
        self.ignore_list = ignore_list
        self.setWindowTitle("Available updates")
        self.setModal(True)
        self.setMinimumSize(700, 480)

        layout = QVBoxLayout(self)
        layout.addWidget(QLabel("Select the updates to install:"))

        splitter = QSplitter(Qt.Orientation.Vertical)
        self.tree = QTreeWidget()
        self.tree.setHeaderLabels(["Name", "Source"])
        self.tree.setColumnWidth(0, 300)
        self.tree.currentItemChanged.connect(self.show_details)
        splitter.addWidget(self.tree)

        self.details = QTextBrowser()
        self.details.setOpenExternalLinks(True)
        splitter.addWidget(self.details)
        layout.addWidget(splitter)

        self._add_section("Patches", 'patch', patch_updates)
        self._add_section("Plugins", 'plugin', plugin_updates)

        buttons = QHBoxLayout()
        self.ignore_btn = QPushButton("Ignore patch")
        self.ignore_btn.setToolTip("Never offer updates for the selected patch again")
        self.ignore_btn.clicked.connect(self.ignore_selected_patch)
        buttons.addWidget(self.ignore_btn)
        buttons.addStretch()

        button_box = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel)
        button_box.button(QDialogButtonBox.StandardButton.Ok).setText("Install selected")
        button_box.accepted.connect(self.accept)
        button_box.rejected.connect(self.reject)
        buttons.addWidget(button_box)
        layout.addLayout(buttons)

    def _add_section(self, label, kind, candidates):
        if not candidates:
            return
        section = QTreeWidgetItem(self.tree)
        section.setText(0, f"{label} ({len(candidates)})")
        font = QFont()
        font.setBold(True)
        section.setFont(0, font)
        section.setExpanded(True)

        for candidate in sorted(candidates, key=lambda c: c.name.lower()):
            item = QTreeWidgetItem(section)
            if kind == 'plugin':
                installed = candidate.installed.version if candidate.installed else 'not installed'
                item.setText(0, f"{candidate.name} ({installed} → {candidate.release.version})")
            else:
                item.setText(0, candidate.name)
            item.setText(1, candidate.source.display_name)
            item.setFlags(item.flags() | Qt.ItemFlag.ItemIsUserCheckable)
            item.setCheckState(0, Qt.CheckState.Checked)
            item.setData(0, Qt.ItemDataRole.UserRole, {'kind': kind, 'candidate': candidate})

    def show_details(self, item, previous=None):
        data = item.data(0, Qt.ItemDataRole.UserRole) if item else None
        if not data:
            self.details.clear()
            return

        candidate = data['candidate']
        if data['kind'] == 'patch':
            remote = candidate.remote
            description = self.descriptions.get_description(candidate.name, remote, candidate.content)
            lines = [
                f"**{candidate.name}**",
                "",
                f"Repository: [{candidate.source.display_name}]({candidate.source.repo_url})",
            ]
            if remote.author:
                lines.append(f"Author: {remote.author}")
            if remote.version:
                lines.append(f"Version: {remote.version}")
            lines += ["", description or "_No description available._"]
        else:
            release = candidate.release
            lines = [
                f"**{release.name}**",
                "",
                f"Repository: [{candidate.source.display_name}]({candidate.source.repo_url})",
                f"Published: {release.published_at or 'unknown'}",
                f"Asset: {release.zip_name} ({release.zip_size // 1024} KB)",
                "",
                release.body or "_No release notes._",
            ]
        self.details.setMarkdown("  \n".join(lines))

    def ignore_selected_patch(self):
        item = self.tree.currentItem()
        data = item.data(0, Qt.ItemDataRole.UserRole) if item else None
        if not data or data['kind'] != 'patch':
            QMessageBox.information(self, "Ignore patch", "Select a patch to ignore.")
            return
        name = data['candidate'].name
        if self.ignore_list.add(name):
            item.parent().removeChild(item)

    def selected(self):
        """Return (patch candidates, plugin candidates) that are checked."""
        patches, plugins = [], []
        for i in range(self.tree.topLevelItemCount()):
            section = self.tree.topLevelItem(i)
            for j in range(section.childCount()):
                item = section.child(j)
                if item.checkState(0) != Qt.CheckState.Checked:
                    continue
                data = item.data(0, Qt.ItemDataRole.UserRole)
                (patches if data['kind'] == 'patch' else plugins).append(data['candidate'])
        return patches, plugins


class SettingsDialog(QDialog):

    def __init__(self, settings_store, parent=None):
        """Initialize settings dialog.

        Args:
            settings_store: SettingsStore - Application settings
            parent: Optional QWidget - Parent window
        """
        super().__init__(parent)
        self.settings_store = settings_store
        self.setWindowTitle("Settings")
        self.setModal(True)
        self.setMinimumWidth(500)

        layout = QVBoxLayout(self)
        form_layout = QFormLayout()

        data_label = QLabel("KOReader data folder:")
        data_label.setToolTip("Folder holding patches/, plugins/ and settings/ (the .adds/koreader folder on most devices)")
        self.data_input = QLineEdit(self.settings_store.get_setting('koreader_data_path', ''))
        form_layout.addRow(data_label, self._with_browse(self.data_input, "Select KOReader data folder"))

        install_label = QLabel("KOReader install folder:")
        install_label.setToolTip("Folder holding the git-rev file; used to check patch version requirements")
        self.install_input = QLineEdit(self.settings_store.get_setting('koreader_install_path', ''))
        self.install_input.setPlaceholderText("Usually the same as the data folder")
        form_layout.addRow(install_label, self._with_browse(self.install_input, "Select KOReader install folder"))

        version_label = QLabel("KOReader version:")
        version_label.setToolTip("Overrides the version read from git-rev, e.g. v2024.11")
        self.version_input = QLineEdit(self.settings_store.get_setting('host_version', '') or '')
        self.version_input.setPlaceholderText("auto")
        form_layout.addRow(version_label, self.version_input)

        token_label = QLabel("GitHub Token:")
        token_label.setToolTip("Token for GitHub API (increases rate limit)")
        self.token_input = QLineEdit()
        self.token_input.setEchoMode(QLineEdit.EchoMode.Password)
        self.token_input.setPlaceholderText("ghp_xxxxxxxxxxxxxxxxxxxx")
        existing_token = self.settings_store.get_setting('github_token', '')
        if existing_token:
            self.token_input.setText(existing_token)

        token_layout = QHBoxLayout()
        token_layout.addWidget(self.token_input)
        self.show_token_btn = QPushButton("Show")
        self.show_token_btn.setMaximumWidth(60)
        self.show_token_btn.clicked.connect(self.toggle_token_visibility)
        token_layout.addWidget(self.show_token_btn)
        form_layout.addRow(token_label, token_layout)

        help_text = QLabel(
            "Without a token GitHub allows about 60 API calls per hour, which a full\n"
            "scan of all repositories can exceed. Create a fine-grained token with\n"
            "'Public repositories' access and paste it above."
        )
        help_text.setWordWrap(True)
        help_text.setStyleSheet("color: gray; font-size: 10pt; padding: 10px;")

        layout.addLayout(form_layout)
        layout.addWidget(help_text)

        button_box = QDialogButtonBox(QDialogButtonBox.StandardButton.Save | QDialogButtonBox.StandardButton.Cancel)
        button_box.accepted.connect(self.save_settings)
        button_box.rejected.connect(self.reject)
        layout.addWidget(button_box)

    def _with_browse(self, line_edit, caption):
        row = QHBoxLayout()
        row.addWidget(line_edit)
        browse_btn = QPushButton("Browse...")
        browse_btn.clicked.connect(lambda: self._browse_folder(line_edit, caption))
        row.addWidget(browse_btn)
        return row

    def _browse_folder(self, line_edit, caption):
        folder = QFileDialog.getExistingDirectory(self, caption, line_edit.text() or os.path.expanduser("~"))
        if folder:
            line_edit.setText(folder)

    def toggle_token_visibility(self):
        """Toggle GitHub token visibility between password and plain text."""
        if self.token_input.echoMode() == QLineEdit.EchoMode.Password:
            self.token_input.setEchoMode(QLineEdit.EchoMode.Normal)
            self.show_token_btn.setText("Hide")
        else:
            self.token_input.setEchoMode(QLineEdit.EchoMode.Password)
            self.show_token_btn.setText("Show")

    def save_settings(self):
        """Validate and store settings, then close the dialog."""
        data_path = self.data_input.text().strip()
        if not data_path or not os.path.isdir(data_path):
            QMessageBox.warning(self, "Invalid Path",
                                "The KOReader data folder does not exist or is not a directory.")
            return

        if not confirm_data_path(self, data_path):
            return

        install_path = self.install_input.text().strip()
        if install_path and not os.path.isdir(install_path):
            QMessageBox.warning(self, "Invalid Path", "The KOReader install folder does not exist.")
            return

        token = self.token_input.text().strip()
        if token and not (token.startswith('ghp_') or token.startswith('github_pat_')):
            QMessageBox.warning(
                self,
                "Invalid Token",
                "GitHub tokens typically start with 'ghp_' or 'github_pat_'.\n"
                "Are you sure this is correct?"
            )
            return

        self.settings_store.set_setting('koreader_data_path', data_path)
        self.settings_store.set_setting('koreader_install_path', install_path)
        self.settings_store.set_setting('host_version', self.version_input.text().strip() or None)
        self.settings_store.set_setting('github_token', token)
        self.accept()


def confirm_data_path(parent, folder):
    """Ask for confirmation when a folder does not look like a KOReader data folder."""
    if os.path.isdir(os.path.join(folder, 'patches')) or os.path.isdir(os.path.join(folder, 'plugins')):
        return True
    reply = QMessageBox.question(
        parent,
        "Confirm path",
        f"The selected folder doesn't contain 'patches' or 'plugins' folders.\n"
        f"Are you sure this is your KOReader data folder?\n\n"
        f"Path: {folder}",
        QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No
    )
    return reply == QMessageBox.StandardButton.Yes


class RepositoriesDialog(QDialog):
    """Lists the configured repositories and edits the user overrides."""

    def __init__(self, registry, parent=None):
        """Initialize repositories dialog.

        Args:
            registry: SourceRegistry - Built-in and user repositories
            parent: Optional QWidget - Parent window
        """
        super().__init__(parent)
        self.registry = registry
        self.changed = False
        self.setWindowTitle("Repositories")
        self.setModal(True)
        self.resize(700, 520)

        layout = QVBoxLayout(self)

        file_label = QLabel(f"Configuration file:\n{self.registry.config_file}")
        file_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        layout.addWidget(file_label)

        self.summary_label = QLabel()
        layout.addWidget(self.summary_label)

        self.tree = QTreeWidget()
        self.tree.setHeaderLabels(["Repository", "Type", "Origin", "Branch / Path / Asset"])
        self.tree.setRootIsDecorated(False)
        self.tree.setColumnWidth(0, 260)
        layout.addWidget(self.tree)

        add_group = QGroupBox("Add repository")
        form_layout = QFormLayout(add_group)
        self.kind_input = QComboBox()
        self.kind_input.addItem("Patches", PATCH)
        self.kind_input.addItem("Plugin", PLUGIN)
        self.kind_input.currentIndexChanged.connect(self._kind_changed)
        form_layout.addRow("Type:", self.kind_input)
        self.owner_input = QLineEdit()
        self.owner_input.setPlaceholderText("github-user")
        form_layout.addRow("Owner:", self.owner_input)
        self.repo_input = QLineEdit()
        self.repo_input.setPlaceholderText("repository")
        form_layout.addRow("Repository:", self.repo_input)
        self.branch_input = QLineEdit()
        self.branch_input.setPlaceholderText("main")
        form_layout.addRow("Branch:", self.branch_input)
        self.path_input = QLineEdit()
        self.path_input.setPlaceholderText("Subfolder holding the patches (optional)")
        form_layout.addRow("Path:", self.path_input)
        self.pattern_input = QLineEdit()
        self.pattern_input.setPlaceholderText("*.koplugin.zip (optional)")
        form_layout.addRow("Asset pattern:", self.pattern_input)
        layout.addWidget(add_group)

        buttons = QHBoxLayout()
        self.add_btn = QPushButton("Add")
        self.add_btn.clicked.connect(self.add_repository)
        buttons.addWidget(self.add_btn)
        self.remove_btn = QPushButton("Remove Selected")
        self.remove_btn.clicked.connect(self.remove_repository)
        buttons.addWidget(self.remove_btn)
        buttons.addStretch()
        close_box = QDialogButtonBox(QDialogButtonBox.StandardButton.Close)
        close_box.rejected.connect(self.reject)
        buttons.addWidget(close_box)
        layout.addLayout(buttons)

        self._kind_changed()
        self.refresh()

    def refresh(self):
        """Reload the repository list and the custom repository counts."""
        self.tree.clear()
        sources = self.registry.load()
        custom = self.registry.user_sources()

        for source in sources:
            is_custom = any(source is s for s in custom)
            if source.kind == PATCH:
                detail = source.branch + (f" / {source.path}" if source.path else '')
            else:
                detail = source.asset_pattern or ''
            item = QTreeWidgetItem([
                source.display_name,
                "Patches" if source.kind == PATCH else "Plugin",
                "Custom" if is_custom else "Built-in",
                detail,
            ])
            item.setData(0, Qt.ItemDataRole.UserRole, {'source': source, 'custom': is_custom})
            if source.description:
                item.setToolTip(0, source.description)
            self.tree.addTopLevelItem(item)

        if self.registry.config_file.exists():
            patch_count = sum(1 for s in custom if s.kind == PATCH)
            plugin_count = sum(1 for s in custom if s.kind == PLUGIN)
            self.summary_label.setText(f"Custom repositories: {patch_count} patch, {plugin_count} plugin")
        else:
            self.summary_label.setText("No custom configuration file found. Using default repositories.")

    def _kind_changed(self):
        is_patch = self.kind_input.currentData() == PATCH
        self.branch_input.setEnabled(is_patch)
        self.path_input.setEnabled(is_patch)
        self.pattern_input.setEnabled(not is_patch)

    def add_repository(self):
        """Validate the form and append a user repository."""
        kind = self.kind_input.currentData()
        entry = {
            'owner': self.owner_input.text().strip(),
            'repo': self.repo_input.text().strip(),
        }
        if kind == PATCH:
            entry['branch'] = self.branch_input.text().strip() or None
            entry['path'] = self.path_input.text().strip()
        else:
            entry['asset_pattern'] = self.pattern_input.text().strip() or None

        try:
            source = Source.from_dict(kind, entry)
        except ValueError as e:
            QMessageBox.warning(self, "Invalid Repository", str(e))
            return

        if not self.registry.add_source(source):
            QMessageBox.critical(self, "Error", "Could not write the repository configuration file.")
            return
        self.changed = True
        self.owner_input.clear()
        self.repo_input.clear()
        self.path_input.clear()
        self.pattern_input.clear()
        self.refresh()

    def remove_repository(self):
        """Remove the selected user repository; built-in ones cannot be removed."""
        item = self.tree.currentItem()
        data = item.data(0, Qt.ItemDataRole.UserRole) if item else None
        if not data:
            return
        if not data['custom']:
            QMessageBox.information(self, "Built-in Repository", "Built-in repositories cannot be removed.")
            return

        source = data['source']
        reply = QMessageBox.question(
            self,
            "Confirm Remove",
            f"Remove {source.display_name} from the custom repositories?",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No
        )
        if reply != QMessageBox.StandardButton.Yes:
            return
        if self.registry.remove_source(source):
            self.changed = True
        self.refresh()


class UpdatesManagerUI(QMainWindow):
    def __init__(self):
        """Initialize KOReader Updates Manager application."""
        super().__init__()

        # base directory based on whether frozen (bundled) or not
        if getattr(sys, 'frozen', False):
            base_dir = os.path.dirname(sys.executable)
        else:
            base_dir = os.path.dirname(os.path.abspath(__file__))

        self.settings_store = SettingsStore(base_dir)
        self.progress_dialog = None
        self.runner = None

        self.log_handler = QtLogHandler()
        self.log_handler.bridge.message.connect(self.log)
        logging.getLogger().addHandler(self.log_handler)

        self.init_ui()
        self.resize(900, 700)
        self.show()
        self._center_widget(self)

        if not self.settings_store.is_configured():
            data_path = self._prompt_for_data_path()
            if not data_path:
                QMessageBox.critical(None, "Error", "A KOReader data folder is required to continue.")
                sys.exit(1)
            self.settings_store.set_setting('koreader_data_path', data_path)

        self._build_services()
        self.refresh_installed_lists()

    def _prompt_for_data_path(self):
        """Prompt user to select the KOReader data folder.

        Returns:
            str - Selected path or None if cancelled
        """
        result = self._show_centered_message(
            QMessageBox.Icon.Information,
            "First time setup",
            "Welcome to KOReader Updates Manager!",
            "Please select the KOReader data folder of your device (it contains 'patches' and 'plugins').",
            QMessageBox.StandardButton.Ok | QMessageBox.StandardButton.Cancel
        )
        if result == QMessageBox.StandardButton.Cancel:
            return None

        folder = QFileDialog.getExistingDirectory(self, "Select KOReader data folder", os.path.expanduser("~"))
        if folder and not confirm_data_path(self, folder):
            return self._prompt_for_data_path()
        return folder

    def _build_services(self):
        """Create the scanning and installing services for the configured folder."""
        data_path = self.settings_store.get_setting('koreader_data_path')
        install_path = self.settings_store.get_setting('koreader_install_path') or data_path

        self.paths = config.DataPaths(data_path)
        try:
            self.paths.ensure_directories()
        except OSError as e:
            self.log(f"Could not create settings folders: {e}")

        credentials = GitHubCredentials.from_settings(self.settings_store)
        self.scanner = RemoteScanner(credentials)
        self.registry = SourceRegistry(self.paths.config_file)
        self.inventory = LocalInventory(self.paths)
        self.cache_store = CacheStore(self.paths.cache_file)
        self.descriptions = PatchDescriptions(self.paths.descriptions_file)
        self.ignore_list = IgnoreList(self.paths.ignored_patches_file)
        self.host_version = HostVersion(install_path, self.settings_store.get_setting('host_version'))
        self.checker = UpdateChecker(self.registry, self.scanner, self.inventory, self.cache_store, self.ignore_list)
        self.patch_installer = PatchInstaller(self.scanner, self.host_version)
        self.plugin_installer = PluginInstaller(self.scanner, self.paths)
        self.runner = TaskRunner(self.paths.progress_file, self)

        token_state = "with GitHub token" if credentials.token else "without GitHub token"
        self.statusBar().showMessage(f"KOReader: {data_path} | {token_state}")

    def init_ui(self):
        """Initialize the user interface"""
        self.setWindowTitle("KOReader Updates Manager")

        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout(central_widget)

        # Update check section
        check_group = QGroupBox("Check for updates")
        check_layout = QHBoxLayout()

        self.check_all_btn = QPushButton("Check all")
        self.check_all_btn.clicked.connect(lambda: self.check_for_updates('all'))
        self._set_icon(self.check_all_btn, 'refresh')
        check_layout.addWidget(self.check_all_btn)

        self.check_patches_btn = QPushButton("Patches only")
        self.check_patches_btn.clicked.connect(lambda: self.check_for_updates('patches'))
        check_layout.addWidget(self.check_patches_btn)

        self.check_plugins_btn = QPushButton("Plugins only")
        self.check_plugins_btn.clicked.connect(lambda: self.check_for_updates('plugins'))
        check_layout.addWidget(self.check_plugins_btn)

        self.force_refresh_check = QCheckBox("Ignore cache")
        self.force_refresh_check.setToolTip("Rescan every repository even if the last scan is less than an hour old")
        check_layout.addWidget(self.force_refresh_check)

        check_layout.addStretch()

        self.install_new_btn = QPushButton("Install new plugin...")
        self.install_new_btn.clicked.connect(self.install_new_plugin)
        self._set_icon(self.install_new_btn, 'add')
        check_layout.addWidget(self.install_new_btn)

        self.clear_cache_btn = QPushButton("Clear cache")
        self.clear_cache_btn.clicked.connect(self.clear_cache)
        self._set_icon(self.clear_cache_btn, 'clear')
        check_layout.addWidget(self.clear_cache_btn)

        check_group.setLayout(check_layout)
        main_layout.addWidget(check_group)

        # Installed lists
        self.tabs = QTabWidget()

        patches_widget = QWidget()
        patches_layout = QVBoxLayout(patches_widget)
        self.patches_list = QTreeWidget()
        self.patches_list.setHeaderLabels(["Patch", "Size"])
        self.patches_list.setColumnWidth(0, 500)
        self.patches_list.itemClicked.connect(self.show_artifact_info)
        patches_layout.addWidget(self.patches_list)

        patch_buttons = QHBoxLayout()
        self.edit_description_btn = QPushButton("Edit description")
        self.edit_description_btn.clicked.connect(self.edit_description)
        self._set_icon(self.edit_description_btn, 'save')
        patch_buttons.addWidget(self.edit_description_btn)

        self.unignore_btn = QPushButton("Stop ignoring")
        self.unignore_btn.clicked.connect(self.unignore_patch)
        patch_buttons.addWidget(self.unignore_btn)

        self.refresh_btn = QPushButton("Refresh list")
        self.refresh_btn.clicked.connect(self.refresh_installed_lists)
        self._set_icon(self.refresh_btn, 'refresh')
        patch_buttons.addWidget(self.refresh_btn)
        patch_buttons.addStretch()
        patches_layout.addLayout(patch_buttons)
        self.tabs.addTab(patches_widget, "Patches (0)")

        plugins_widget = QWidget()
        plugins_layout = QVBoxLayout(plugins_widget)
        self.plugins_list = QTreeWidget()
        self.plugins_list.setHeaderLabels(["Plugin", "Version"])
        self.plugins_list.setColumnWidth(0, 500)
        self.plugins_list.itemClicked.connect(self.show_artifact_info)
        plugins_layout.addWidget(self.plugins_list)
        self.tabs.addTab(plugins_widget, "Plugins (0)")

        main_layout.addWidget(self.tabs)

        # Info panel
        self.info_group = QGroupBox("Details")
        info_layout = QVBoxLayout()
        self.info_text = QTextEdit()
        self.info_text.setReadOnly(True)
        self.info_text.setMaximumHeight(150)
        info_layout.addWidget(self.info_text)
        self.info_group.setLayout(info_layout)
        main_layout.addWidget(self.info_group)

        # Log window
        log_group = QGroupBox("Activity log")
        log_layout = QVBoxLayout()
        self.log_text = QTextEdit()
        self.log_text.setReadOnly(True)
        self.log_text.setMaximumHeight(150)
        log_layout.addWidget(self.log_text)

        log_controls = QHBoxLayout()
        self.clear_log_btn = QPushButton("Clear log")
        self.clear_log_btn.clicked.connect(lambda: self.log_text.clear())
        self._set_icon(self.clear_log_btn, 'remove')
        log_controls.addWidget(self.clear_log_btn)

        self.settings_btn = QPushButton("Settings")
        self.settings_btn.clicked.connect(self.open_settings)
        self._set_icon(self.settings_btn, 'settings')
        log_controls.addWidget(self.settings_btn)

        self.repos_btn = QPushButton("Repositories")
        self.repos_btn.clicked.connect(self.open_repositories)
        log_controls.addWidget(self.repos_btn)

        log_controls.addStretch()
        log_layout.addLayout(log_controls)
        log_group.setLayout(log_layout)
        main_layout.addWidget(log_group)

        self.log("KOReader Updates Manager started")

    def _set_icon(self, button, key):
        icon = self._std_icon(key)
        if not icon.isNull():
            button.setIcon(icon)

    def _center_widget(self, widget, parent=None):
        """Center a widget on screen or within parent.

        Args:
            widget: QWidget - Widget to center
            parent: Optional QWidget - Parent widget for relative positioning
        """
        parent = parent or self
        if parent is not widget and parent.isVisible():
            parent_geom = parent.geometry()
            x = parent_geom.x() + (parent_geom.width() - widget.width()) // 2
            y = parent_geom.y() + (parent_geom.height() - widget.height()) // 2
        else:
            screen = QGuiApplication.primaryScreen()
            if screen is None:
                return
            scr = screen.availableGeometry()
            x = scr.x() + (scr.width() - widget.width()) // 2
            y = scr.y() + (scr.height() - widget.height()) // 2
        widget.move(max(x, 0), max(y, 0))

    def _show_centered_message(self, icon, title, text, informative=None, buttons=QMessageBox.StandardButton.Ok):
        """Show centered message dialog.

        Args:
            icon: QMessageBox.Icon - Message box icon type
            title: str - Dialog title
            text: str - Main message text
            informative: Optional str - Informative text
            buttons: QMessageBox buttons - Buttons to show

        Returns:
            int - Button clicked
        """
        msg = QMessageBox(self)
        msg.setIcon(icon)
        msg.setWindowTitle(title)
        msg.setText(text)
        if informative:
            msg.setInformativeText(informative)
        msg.setStandardButtons(buttons)
        msg.setMinimumSize(420, 140)
        msg.show()
        self._center_widget(msg)
        return msg.exec()

    def log(self, message):
        """Add a message to the log."""
        timestamp = datetime.now().strftime("%H:%M:%S")
        self.log_text.append(f"[{timestamp}] {message}")

    def _create_progress(self, label, cancel_text, minimum, maximum):
        """Create and show progress dialog.

        Args:
            label: str - Progress label text
            cancel_text: Optional str - Cancel button text, None for no button
            minimum: int - Minimum progress value
            maximum: int - Maximum progress value

        Returns:
            QProgressDialog - Progress dialog widget
        """
        dlg = QProgressDialog(label, cancel_text, minimum, maximum, self)
        dlg.setWindowModality(Qt.WindowModality.WindowModal)
        dlg.setWindowTitle(label)
        width = min(max(450, int(self.width() * 0.85)), 1000)
        dlg.setFixedWidth(width)
        dlg.setMinimumDuration(0)
        if cancel_text is None:
            dlg.setCancelButton(None)
        dlg.show()
        self._center_widget(dlg)
        return dlg

    def _close_progress(self):
        if self.progress_dialog is None:
            return
        try:
            self.progress_dialog.canceled.disconnect()
        except TypeError:
            pass
        self.progress_dialog.close()
        self.progress_dialog = None

    def _update_progress(self, text):
        if self.progress_dialog is not None:
            self.progress_dialog.setLabelText(text)

    def _std_icon(self, key):
        """Get standard icon by key name.

        Args:
            key: str - Icon key ('add', 'remove', 'refresh', ...)

        Returns:
            QIcon - Standard icon or empty icon if key not found
        """
        mapping = {
            'add': 'SP_FileDialogNewFolder',
            'remove': 'SP_TrashIcon',
            'save': 'SP_DialogSaveButton',
            'refresh': 'SP_BrowserReload',
            'settings': 'SP_FileDialogDetailedView',
            'clear': 'SP_DialogResetButton',
        }
        enum_name = mapping.get(key)
        if not enum_name:
            return QIcon()
        sp = getattr(QStyle.StandardPixmap, enum_name, None)
        if sp is None:
            return QIcon()
        return QApplication.style().standardIcon(sp)

    def _busy(self):
        if self.runner is not None and self.runner.is_busy():
            self.log("Another task is still running")
            return True
        return False

    def _ensure_online(self):
        """Check connectivity, offering to retry while offline.

        Returns:
            bool - True once GitHub is reachable
        """
        while not self.scanner.is_online():
            result = self._show_centered_message(
                QMessageBox.Icon.Warning,
                "No connection",
                "GitHub cannot be reached.",
                "Connect to the internet and retry.",
                QMessageBox.StandardButton.Retry | QMessageBox.StandardButton.Cancel
            )
            if result != QMessageBox.StandardButton.Retry:
                self.log("Update check aborted: offline")
                return False
        return True

    # Installed lists

    def refresh_installed_lists(self):
        """Refresh installed patch and plugin lists."""
        self.patches_list.clear()
        self.plugins_list.clear()

        ignored = self.ignore_list.load()
        patches = self.inventory.scan_patches()
        for name in sorted(patches, key=str.lower):
            patch = patches[name]
            item = QTreeWidgetItem(self.patches_list)
            item.setText(0, f"{name} (ignored)" if name in ignored else name)
            item.setText(1, f"{patch.size} B")
            item.setData(0, Qt.ItemDataRole.UserRole, {'kind': 'patch', 'artifact': patch})

        plugins = self.inventory.scan_plugins()
        for name in sorted(plugins, key=str.lower):
            plugin = plugins[name]
            item = QTreeWidgetItem(self.plugins_list)
            item.setText(0, plugin.fullname)
            item.setText(1, plugin.version)
            item.setData(0, Qt.ItemDataRole.UserRole, {'kind': 'plugin', 'artifact': plugin})

        self.tabs.setTabText(0, f"Patches ({len(patches)})")
        self.tabs.setTabText(1, f"Plugins ({len(plugins)})")

    def show_artifact_info(self, item, column=0):
        """Display details of an installed patch or plugin.

        Args:
            item: QTreeWidgetItem - Selected item
        """
        data = item.data(0, Qt.ItemDataRole.UserRole)
        artifact = data['artifact']

        if data['kind'] == 'patch':
            content = None
            try:
                content = Path(artifact.path).read_bytes()
            except OSError:
                pass
            description = self.descriptions.get_description(artifact.name, None, content)
            info_text = f"Name: {artifact.name}\n"
            info_text += f"File: {artifact.path}\n"
            info_text += f"MD5: {artifact.md5 or 'unknown'}\n"
            if description:
                info_text += f"\n{description}\n"
        else:
            info_text = f"Name: {artifact.fullname} ({artifact.name})\n"
            info_text += f"Version: {artifact.version}\n"
            info_text += f"Folder: {artifact.path}\n"
            if artifact.description:
                info_text += f"\n{artifact.description}\n"

        self.info_text.setPlainText(info_text)

    def _selected_patch(self):
        item = self.patches_list.currentItem()
        if item is None:
            self._show_centered_message(QMessageBox.Icon.Information, "No patch selected", "Select a patch first.")
            return None
        return item.data(0, Qt.ItemDataRole.UserRole)['artifact']

    def edit_description(self):
        """Edit the local description of the selected patch."""
        patch = self._selected_patch()
        if patch is None:
            return
        current = self.descriptions.load().get(patch.name, '')
        text, ok = QInputDialog.getMultiLineText(self, "Edit description", f"Description for {patch.name}:", current)
        if ok and self.descriptions.set_description(patch.name, text.strip()):
            self.log(f"Description saved for {patch.name}")
            self.show_artifact_info(self.patches_list.currentItem())

    def unignore_patch(self):
        patch = self._selected_patch()
        if patch is None:
            return
        if self.ignore_list.remove(patch.name):
            self.log(f"Updates for {patch.name} will be shown again")
            self.refresh_installed_lists()

    def clear_cache(self):
        """Delete the repository scan cache."""
        if self._busy():
            return
        if self.cache_store.clear():
            self.log("Repository cache cleared")
        else:
            self.log("Repository cache is already empty")

    # Checking

    def check_for_updates(self, mode):
        """Scan repositories in the background and offer found updates.

        Args:
            mode: str - 'all', 'patches' or 'plugins'
        """
        if self._busy() or not self._ensure_online():
            return

        force_refresh = self.force_refresh_check.isChecked()
        checker = self.checker

        def workload(channel, is_cancelled):
            if mode == 'patches':
                return checker.check_patches(force_refresh, channel.write, is_cancelled)
            if mode == 'plugins':
                return checker.check_plugins(channel.write, is_cancelled)
            return checker.check_all(force_refresh, channel.write, is_cancelled)

        self.log(f"Checking for {'updates' if mode == 'all' else mode + ' updates'}...")
        self.progress_dialog = self._create_progress("Checking for updates...", "Cancel", 0, 0)
        self.progress_dialog.canceled.connect(self.runner.cancel)
        self.runner.start(
            workload,
            on_result=self.check_finished,
            on_cancel=self.check_cancelled,
            on_progress=self._update_progress,
            on_error=self.task_failed,
        )

    def check_cancelled(self):
        self._close_progress()
        self.log("Update check cancelled")
        self._show_centered_message(QMessageBox.Icon.Information, "Cancelled", "Update check cancelled.")

    def task_failed(self, message):
        self._close_progress()
        self.log(f"Task failed: {message}")
        self._show_centered_message(QMessageBox.Icon.Critical, "Error", "The task failed.", message)

    def check_finished(self, result):
        """Handle completion of an update check.

        Args:
            result: CheckResult - Updates found by the checker
        """
        self._close_progress()

        if result.used_cache:
            self.log("Used cached repository data (less than an hour old)")
        if result.ignored_count:
            self.log(f"{result.ignored_count} ignored patch update(s) hidden")

        status = result.status
        if status == STATUS_CANCELLED:
            self.check_cancelled()
            return

        if status == STATUS_RATE_LIMITED:
            self.log("GitHub API rate limit exceeded, results may be incomplete")
            self._show_centered_message(
                QMessageBox.Icon.Warning,
                "Rate limit exceeded",
                "GitHub API rate limit exceeded.",
                "Some repositories were not checked. Please wait before retrying or configure "
                "a GitHub token in Settings for higher limits."
            )
            if not result.patch_updates and not result.plugin_updates:
                return

        if status == STATUS_NO_UPDATES:
            self.log("No updates available")
            self._show_centered_message(QMessageBox.Icon.Information, "No updates",
                                        "All patches and plugins are up to date.")
            return

        self.log(f"Found {len(result.patch_updates)} patch and {len(result.plugin_updates)} plugin update(s)")
        dialog = UpdatesListDialog(result.patch_updates, result.plugin_updates,
                                   self.descriptions, self.ignore_list, self)
        if dialog.exec() != QDialog.DialogCode.Accepted:
            return

        patches, plugins = dialog.selected()
        if patches or plugins:
            self.install_updates(patches, plugins)

    # Installing

    def install_updates(self, patches, plugins):
        """Install selected updates in the background.

        Args:
            patches: list - UpdateCandidate objects
            plugins: list - PluginUpdateCandidate objects
        """
        if self._busy():
            return

        report = InstallReport()
        patch_installer = self.patch_installer
        plugin_installer = self.plugin_installer

        def workload(channel, is_cancelled):
            patch_installer.install_all(patches, channel.write, report)
            plugin_installer.install_all(plugins, channel.write, report)
            return report

        self.log(f"Installing {len(patches) + len(plugins)} update(s)...")
        self.progress_dialog = self._create_progress("Installing updates...", None, 0, 0)
        self.runner.start(
            workload,
            on_result=self.install_finished,
            on_progress=self._update_progress,
            on_error=lambda message: self.install_finished(report, message),
            cancellable=False,
        )

    def install_finished(self, report, error=None):
        """Show the outcome of an install batch.

        Args:
            report: InstallReport - Succeeded and failed names
            error: Optional str - Error that interrupted the batch
        """
        self._close_progress()
        self.refresh_installed_lists()

        for name in report.succeeded:
            self.log(f"{name} updated successfully")
        for name in report.failed:
            self.log(f"{name} failed: {FAILURE_LABELS.get(report.reasons.get(name), 'unknown error')}")

        summary = f"Installed: {len(report.succeeded)}\nFailed: {len(report.failed)}"
        details = []
        if report.succeeded:
            details.append("Updated:\n" + "\n".join(f"  {name}" for name in report.succeeded))
        if report.failed:
            details.append("Failed:\n" + "\n".join(
                f"  {name} ({FAILURE_LABELS.get(report.reasons.get(name), 'unknown error')})"
                for name in report.failed
            ))
        if error:
            details.append(f"Interrupted: {error}")
        if report.succeeded:
            details.append("Restart KOReader to apply the updates.")

        icon = QMessageBox.Icon.Warning if report.failed or error else QMessageBox.Icon.Information
        self._show_centered_message(icon, "Installation complete", summary, "\n\n".join(details))

    def install_new_plugin(self):
        """List plugin repositories that are not installed and offer one for install."""
        if self._busy() or not self._ensure_online():
            return

        checker = self.checker

        def workload(channel, is_cancelled):
            return checker.check_new_plugins(channel.write, is_cancelled)

        self.progress_dialog = self._create_progress("Looking for plugins...", "Cancel", 0, 0)
        self.progress_dialog.canceled.connect(self.runner.cancel)
        self.runner.start(
            workload,
            on_result=self.new_plugins_found,
            on_cancel=self.check_cancelled,
            on_progress=self._update_progress,
            on_error=self.task_failed,
        )

    def new_plugins_found(self, result):
        self._close_progress()
        if result.status == STATUS_RATE_LIMITED:
            self._show_centered_message(QMessageBox.Icon.Warning, "Rate limit exceeded",
                                        "GitHub API rate limit exceeded.",
                                        "Some repositories were not checked.")
        candidates = sorted(result.plugin_updates, key=lambda c: c.name.lower())
        if not candidates:
            if result.status != STATUS_RATE_LIMITED:
                self._show_centered_message(QMessageBox.Icon.Information, "No plugins",
                                            "No new plugins are available to install.")
            return

        labels = [f"{c.name} {c.release.version} ({c.source.display_name})" for c in candidates]
        choice, ok = QInputDialog.getItem(self, "Install new plugin", "Plugin:", labels, 0, False)
        if not ok:
            return
        candidate = candidates[labels.index(choice)]
        self.install_updates([], [candidate])

    # Settings

    def open_settings(self):
        """Open application settings dialog."""
        if self._busy():
            return
        dialog = SettingsDialog(self.settings_store, self)
        if dialog.exec() == QDialog.DialogCode.Accepted:
            self._build_services()
            self.refresh_installed_lists()
            self.log("Settings saved")

    def open_repositories(self):
        """Show the configured repositories and edit the custom ones."""
        if self._busy():
            return
        dialog = RepositoriesDialog(self.registry, self)
        dialog.exec()
        if dialog.changed:
            sources = self.registry.load()
            self.log(f"Repository list updated: {len(sources)} repositories configured")

    def closeEvent(self, event):
        if self.runner is not None:
            self.runner.cancel()
            self.runner.wait_for_threads()
        logging.getLogger().removeHandler(self.log_handler)
        super().closeEvent(event)


def main():
    """Main application entry point. Initialize and run the KOReader Updates Manager."""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app = QApplication(sys.argv)
    app.setApplicationName("KOReader Updates Manager")
    try:
        qdarktheme.setup_theme()
    except Exception:
        try:
            app.setStyleSheet(qdarktheme.load_stylesheet())
        except Exception:
            pass
    window = UpdatesManagerUI()
    window.show()
    sys.exit(app.exec())


if __name__ == '__main__':
    main()
