"""Shared fixtures for tailpipe tests."""

import json
import logging

import pytest


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the user's .env and environment overrides."""
    for key in ("TAILPIPE_CONFIG_PATH", "TAILPIPE_WATCH_DIR", "TAILPIPE_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """CLI tests call logging.basicConfig; keep levels from leaking."""
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)


@pytest.fixture()
def watch_dir(tmp_path):
    path = tmp_path / "watch"
    path.mkdir()
    return path


def _append_jsonl(path, *records, newline=True):
    text = "\n".join(json.dumps(r) for r in records)
    if newline and records:
        text += "\n"
    with open(path, "a", encoding="utf-8") as f:
        f.write(text)


@pytest.fixture()
def write_jsonl():
    """Append records as JSONL. The last line omits its newline if ``newline`` is False."""
    return _append_jsonl
