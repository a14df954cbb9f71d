"""Tests for MD5 fingerprints."""

from fingerprint import md5_bytes, md5_file


def test_md5_bytes_known_digest():
    assert md5_bytes(b'') == 'd41d8cd98f00b204e9800998ecf8427e'
    assert md5_bytes(b'hello') == '5d41402abc4b2a76b9719d911017c592'


def test_md5_bytes_encodes_text():
    assert md5_bytes('hello') == md5_bytes(b'hello')


def test_md5_file_matches_content(tmp_path):
    path = tmp_path / 'patch.lua'
    path.write_bytes(b'-- patch\nreturn true\n' * 1000)
    assert md5_file(path) == md5_bytes(path.read_bytes())


def test_md5_file_missing_returns_none(tmp_path):
    assert md5_file(tmp_path / 'missing.lua') is None
