#!/usr/bin/env python3
"""
Host file access and autostart tests.
"""

import sys

import pytest

from celestis.integrations.files import (
    IMPORT_FILE_TYPES, AvatarEntry, find_default_2d_avatar, list_internal_avatars,
    read_internal_avatar, read_model_file,
)
from celestis.integrations.system import autostart_command, disable_autostart, enable_autostart

@pytest.fixture
def assets(tmp_path):
    avatars = tmp_path / "avatars"
    avatars.mkdir()
    for name in ("Zed.vrm", "alice.GLB", "default-2d.png", "notes.txt", "portrait.JPG"):
        (avatars / name).write_bytes(name.encode())
    (avatars / "subdir.vrm").mkdir()
    return tmp_path

def test_list_internal_avatars(assets):
    names = [entry.name for entry in list_internal_avatars(assets)]
    assert names == ["alice.GLB", "default-2d.png", "portrait.JPG", "Zed.vrm"]

def test_list_without_directory(tmp_path):
    assert list_internal_avatars(tmp_path / "nowhere") == []

def test_read_internal_avatar(assets):
    assert read_internal_avatar(assets, "Zed.vrm") == b"Zed.vrm"

def test_read_missing_internal_avatar(assets):
    with pytest.raises(FileNotFoundError, match="File not found: ghost.vrm"):
        read_internal_avatar(assets, "ghost.vrm")

def test_read_internal_avatar_stays_inside_directory(assets):
    (assets / "secret.vrm").write_bytes(b"secret")
    with pytest.raises(FileNotFoundError):
        read_internal_avatar(assets, "../secret.vrm")

def test_read_model_file(tmp_path):
    path = tmp_path / "model.vrm"
    path.write_bytes(b"glTF")
    assert read_model_file(path) == b"glTF"
    with pytest.raises(OSError):
        read_model_file(tmp_path / "missing.vrm")

def test_default_2d_avatar_preference(assets):
    entries = list_internal_avatars(assets)
    assert find_default_2d_avatar(entries).name == "default-2d.png"

    others = [e for e in entries if e.name != "default-2d.png"]
    assert find_default_2d_avatar(others).name == "portrait.JPG"

    models_only = [e for e in entries if not e.is_image]
    assert find_default_2d_avatar(models_only) is None

def test_preferred_name_is_case_insensitive(tmp_path):
    entries = [AvatarEntry("a.png", tmp_path / "a.png"), AvatarEntry("Default.PNG", tmp_path / "Default.PNG")]
    assert find_default_2d_avatar(entries).name == "Default.PNG"

def test_import_file_types_cover_models_and_images():
    patterns = " ".join(pattern for _, pattern in IMPORT_FILE_TYPES)
    for ext in ("*.vrm", "*.glb", "*.gltf", "*.png", "*.*"):
        assert ext in patterns

def test_autostart_command_quotes_paths():
    command = autostart_command(r"C:\Program Files\Celestis\python.exe", [r"C:\apps\main.py"])
    assert command == r'"C:\Program Files\Celestis\python.exe" C:\apps\main.py'

@pytest.mark.skipif(sys.platform == "win32", reason="registry is only touched on Windows")
def test_autostart_is_noop_off_windows():
    assert enable_autostart("/usr/bin/python3") is False
    assert disable_autostart() is False
