"""
Shared fixtures and helpers for the Churn Vector Mod Manager test suite.
"""

import json
import zipfile
from pathlib import Path

import pytest

from mod_manager import ModManager


def write_mod(
    parent: Path,
    folder: str,
    title: str = "Test Mod",
    *,
    enabled: bool = True,
    manifest: dict | None = None,
    files: dict[str, bytes] | None = None,
) -> Path:
    """Create a mod folder with a manifest and optional extra files."""
    mod_dir = parent / folder
    mod_dir.mkdir(parents=True)
    data = manifest if manifest is not None else {
        "title": title,
        "description": f"{title} description",
        "publishedFileId": 1234567890123,
        "tags": ["Test"],
    }
    name = "info.json" if enabled else "info.json.DISABLED"
    (mod_dir / name).write_text(json.dumps(data), encoding="utf-8")
    for relpath, payload in (files or {}).items():
        dst = mod_dir / relpath
        dst.parent.mkdir(parents=True, exist_ok=True)
        dst.write_bytes(payload)
    return mod_dir


def make_zip(path: Path, members: dict[str, bytes | str]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return path


@pytest.fixture
def mods_dir(tmp_path):
    """A fresh, existing mods folder."""
    mods = tmp_path / "mods"
    mods.mkdir()
    return mods


@pytest.fixture
def messages():
    return []


@pytest.fixture
def manager(mods_dir, messages):
    return ModManager(mods_dir, log_callback=messages.append)
