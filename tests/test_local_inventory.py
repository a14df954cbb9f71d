"""Tests for the installed patch and plugin inventory."""

from fingerprint import md5_bytes
from local_inventory import LocalInventory
from meta_parser import MetaParser

from conftest import write_plugin


# --- Patches ---


def test_scan_patches(data_paths):
    (data_paths.patches_dir / '2-clock.lua').write_text('return 1', encoding='utf-8')
    (data_paths.patches_dir / '2-off.lua.disabled').write_text('return 2', encoding='utf-8')
    (data_paths.patches_dir / 'notes.txt').write_text('hi', encoding='utf-8')
    (data_paths.patches_dir / '2-clock.lua.old').write_text('return 0', encoding='utf-8')

    patches = LocalInventory(data_paths).scan_patches()
    assert list(patches) == ['2-clock']
    patch = patches['2-clock']
    assert patch.md5 == md5_bytes('return 1')
    assert patch.size == len('return 1')
    assert patch.filename == '2-clock.lua'


def test_missing_patches_dir(tmp_path):
    from config import DataPaths
    assert LocalInventory(DataPaths(tmp_path / 'nowhere')).scan_patches() == {}


# --- Plugins ---


def test_numeric_version_is_stringified(data_paths):
    write_plugin(data_paths.plugins_dir, 'clock.koplugin',
                 'name = "clock",\nfullname = _("Clock"),\nversion = 1.0,')
    plugins = LocalInventory(data_paths).scan_plugins()
    assert plugins['clock'].version == '1.0'
    assert plugins['clock'].fullname == 'Clock'
    assert plugins['clock'].entry == 'clock.koplugin'


def test_numeric_version_keeps_source_text(data_paths):
    write_plugin(data_paths.plugins_dir, 'clock.koplugin', 'name = "clock",\nversion = 1.10,')
    assert LocalInventory(data_paths).scan_plugins()['clock'].version == '1.10'


def test_missing_version_is_unknown(data_paths):
    write_plugin(data_paths.plugins_dir, 'notes.koplugin', 'name = "notes",')
    assert LocalInventory(data_paths).scan_plugins()['notes'].version == 'unknown'


def test_name_falls_back_to_directory(data_paths):
    write_plugin(data_paths.plugins_dir, 'weather.koplugin', 'fullname = "Weather",\nversion = "v0.3",')
    plugins = LocalInventory(data_paths).scan_plugins()
    assert plugins['weather'].version == 'v0.3'


def test_default_plugins_excluded(data_paths):
    write_plugin(data_paths.plugins_dir, 'statistics.koplugin', 'name = "statistics",')
    write_plugin(data_paths.plugins_dir, 'clock.koplugin', 'name = "clock",')
    (data_paths.plugins_dir / 'broken.koplugin').mkdir()

    inventory = LocalInventory(data_paths)
    assert list(inventory.scan_plugins()) == ['clock']
    assert set(inventory.scan_plugins(include_defaults=True)) == {'clock', 'statistics'}


def test_meta_parser_long_string_and_escapes(tmp_path):
    meta = tmp_path / '_meta.lua'
    meta.write_text('return {\n'
                    '    name = "quote",\n'
                    '    fullname = _("Say \\"hi\\""),\n'
                    '    description = _([[Multi\nline]]),\n'
                    '    version = 2,\n'
                    '}\n', encoding='utf-8')
    parser = MetaParser(str(meta))
    assert parser.parse()
    assert parser.fullname == 'Say "hi"'
    assert parser.description == 'Multi\nline'
    assert parser.version == '2'


def test_meta_parser_rejects_non_descriptor(tmp_path):
    meta = tmp_path / '_meta.lua'
    meta.write_text('print("hello")\n', encoding='utf-8')
    assert not MetaParser(str(meta)).parse()
