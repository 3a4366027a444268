"""
Host file access: bundled avatars under ``assets/avatars`` and user-chosen
model files.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ..models.avatar import IMAGE_EXTENSIONS, MODEL_EXTENSIONS

logger = logging.getLogger(__name__)

AVATAR_EXTENSIONS = MODEL_EXTENSIONS | IMAGE_EXTENSIONS
PREFERRED_2D_AVATARS = ("default-2d.png", "default.png", "avatar-2d.png")

# Filters for the native open-file dialog
IMPORT_FILE_TYPES = [
    ("VRM Files", "*.vrm"),
    ("GLTF Files", "*.gltf *.glb"),
    ("Image Files", "*.png *.jpg *.jpeg *.webp *.gif"),
    ("All Files", "*.*"),
]

@dataclass
class AvatarEntry:
    name: str
    path: Path

    @property
    def is_image(self) -> bool:
        return self.path.suffix.lower() in IMAGE_EXTENSIONS

def avatars_dir(assets_dir) -> Path:
    return Path(assets_dir) / "avatars"

def list_internal_avatars(assets_dir) -> List[AvatarEntry]:
    """Bundled avatars with a supported extension, sorted by name."""
    directory = avatars_dir(assets_dir)
    if not directory.is_dir():
        return []

    try:
        entries = [
            AvatarEntry(name=p.name, path=p)
            for p in directory.iterdir()
            if p.is_file() and p.suffix.lower() in AVATAR_EXTENSIONS
        ]
    except OSError as e:
        logger.error(f"Error listing internal avatars: {e}")
        return []

    entries.sort(key=lambda e: e.name.lower())
    logger.debug(f"Found {len(entries)} internal avatars in {directory}")
    return entries

def read_internal_avatar(assets_dir, file_name: str) -> bytes:
    """Bytes of a bundled avatar; the name must stay inside the avatars directory."""
    directory = avatars_dir(assets_dir).resolve()
    full_path = (directory / file_name).resolve()
    if directory not in full_path.parents or not full_path.is_file():
        raise FileNotFoundError(f"File not found: {file_name}")
    return full_path.read_bytes()

def read_model_file(path) -> bytes:
    """Bytes of a user-selected model or image."""
    path = Path(path)
    logger.info(f"Reading model file: {path}")
    data = path.read_bytes()
    logger.info(f"File read successfully, size: {len(data)} bytes")
    return data

def find_default_2d_avatar(entries: Sequence[AvatarEntry]) -> Optional[AvatarEntry]:
    """Preferred default image if bundled, else the first image."""
    by_name = {e.name.lower(): e for e in entries}
    for preferred in PREFERRED_2D_AVATARS:
        if preferred in by_name:
            return by_name[preferred]
    return next((e for e in entries if e.is_image), None)
