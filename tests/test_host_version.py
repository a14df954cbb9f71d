"""Tests for KOReader version lookup and patch requirements."""

from host_version import HostVersion, normalize_version


def test_normalize_version():
    assert normalize_version('v2024.11') == 202411000000
    assert normalize_version('v2024.11.1-56-gabcdef') == 202411010056
    assert normalize_version('nightly') is None
    assert normalize_version(None) is None


def test_version_from_git_rev(tmp_path):
    (tmp_path / 'git-rev').write_text('v2024.04-12-g1234\n', encoding='utf-8')
    assert HostVersion(tmp_path).current() == normalize_version('v2024.04-12')


def test_override_wins(tmp_path):
    (tmp_path / 'git-rev').write_text('v2024.04', encoding='utf-8')
    assert HostVersion(tmp_path, override='v2025.01').current() == normalize_version('v2025.01')


def test_requirement_marker():
    host = HostVersion(override='v2024.04')
    newer = ['-- needs newer', 'if require("version"):korDoesNotMeet("v2024.11") then return end']
    older = ['if require("version"):korDoesNotMeet("v2023.10") then return end']
    assert not host.meets_requirement(newer)
    assert host.meets_requirement(older)


def test_marker_below_checked_lines_is_ignored():
    host = HostVersion(override='v2024.04')
    lines = ['--', '--', '--', 'if v:korDoesNotMeet("v2030.01") then return end']
    assert host.meets_requirement(lines)


def test_unknown_host_version_passes(tmp_path):
    patch = tmp_path / 'p.lua'
    patch.write_text('if v:korDoesNotMeet("v2030.01") then return end\n', encoding='utf-8')
    assert HostVersion(tmp_path).meets_requirement_file(patch)
