"""Tests for the file listing."""

from spa_deploy.fs_helper import read_recursively


def test_read_recursively(spa_folder):
    """Every file is listed relative to the folder, with forward slashes."""
    assert read_recursively(str(spa_folder)) == ["index.html", "static/main.abc123.css", "static/main.abc123.js"]


def test_empty_folder(tmp_path):
    (tmp_path / "empty").mkdir()
    assert read_recursively(str(tmp_path)) == []
