"""
Avatar Model - Loads VRM/GLTF/GLB models and 2D avatar images.

Model files are frequently mislabeled or half-broken, so loading is a chain of
strategies: each one is tried in turn and the first that yields a usable
avatar wins. Parsing itself is delegated to pygltflib and Pillow.
"""

import base64
import enum
import hashlib
import io
import json
import logging
import os
import struct
import tempfile
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from PIL import Image
from pygltflib import GLTF2

logger = logging.getLogger(__name__)

GLB_MAGIC = b"glTF"
GLB_CHUNK_JSON = 0x4E4F534A
GLB_CHUNK_BIN = 0x004E4942
GLB_HEADER_SIZE = 12

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif"}
MODEL_EXTENSIONS = {".vrm", ".glb", ".gltf"}

COMPONENT_DTYPES = {
    5120: np.int8,    # BYTE
    5121: np.uint8,   # UNSIGNED_BYTE
    5122: np.int16,   # SHORT
    5123: np.uint16,  # UNSIGNED_SHORT
    5125: np.uint32,  # UNSIGNED_INT
    5126: np.float32  # FLOAT
}

TYPE_COMPONENTS = {
    'SCALAR': 1, 'VEC2': 2, 'VEC3': 3, 'VEC4': 4,
    'MAT2': 4, 'MAT3': 9, 'MAT4': 16
}

class AvatarLoadError(Exception):
    """Raised when no strategy could turn a file into an avatar."""

class AvatarFormat(enum.Enum):
    IMAGE = "image"
    GLB = "glb"
    GLTF_JSON = "gltf_json"
    FBX = "fbx"
    UNKNOWN = "unknown"

@dataclass
class GlbHeader:
    version: int
    length: int

@dataclass
class LoadedAvatar:
    """Result of a successful load."""
    name: str
    format: AvatarFormat
    gltf: Optional[GLTF2] = None
    image: Optional[Image.Image] = None
    is_vrm: bool = False
    vrm_version: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    mesh_count: int = 0
    vertex_count: int = 0
    bounds: Optional[Tuple[np.ndarray, np.ndarray]] = None
    strategy: str = ""

    @property
    def is_image(self) -> bool:
        return self.image is not None

    @property
    def has_geometry(self) -> bool:
        return self.vertex_count > 0

    @property
    def display_name(self) -> str:
        return self.meta.get("title") or self.name

def _looks_like_image(data: bytes) -> bool:
    return (
        data.startswith(b"\x89PNG\r\n\x1a\n")
        or data.startswith(b"\xff\xd8\xff")
        or data[:6] in (b"GIF87a", b"GIF89a")
        or (data[:4] == b"RIFF" and data[8:12] == b"WEBP")
    )

def is_fbx(data: bytes) -> bool:
    """Binary ``Kaydara FBX Binary`` or ASCII ``; FBX`` header."""
    if len(data) >= 18 and data[:18] == b"Kaydara FBX Binary":
        return True
    head = data[:10].decode("ascii", errors="ignore")
    return "; FBX" in head or head.startswith("FBX")

def _looks_like_gltf_json(data: bytes) -> bool:
    head = data[:1000].decode("utf-8", errors="ignore")
    if '"asset"' in head:
        return True
    lowered = head.lower()
    return "gltf" in lowered and any(k in head for k in ('"version"', '"scene', '"nodes"', '"meshes"'))

def detect_format(data: bytes, name: str = "") -> AvatarFormat:
    """Guess the file format from magic bytes, then from the extension."""
    if data[:4] == GLB_MAGIC:
        return AvatarFormat.GLB
    if _looks_like_image(data):
        return AvatarFormat.IMAGE
    if is_fbx(data):
        return AvatarFormat.FBX
    if _looks_like_gltf_json(data):
        return AvatarFormat.GLTF_JSON

    ext = Path(name).suffix.lower()
    if ext in IMAGE_EXTENSIONS:
        return AvatarFormat.IMAGE
    if ext in (".glb", ".vrm"):
        return AvatarFormat.GLB
    if ext == ".gltf":
        return AvatarFormat.GLTF_JSON
    if ext == ".fbx":
        return AvatarFormat.FBX
    return AvatarFormat.UNKNOWN

def validate_glb_header(data: bytes) -> GlbHeader:
    """Check the 12-byte GLB header."""
    if len(data) < GLB_HEADER_SIZE:
        raise AvatarLoadError("File too small to be a valid GLB/VRM")
    magic, version, length = struct.unpack_from("<4sII", data, 0)
    if magic != GLB_MAGIC:
        raise AvatarLoadError("Missing glTF magic")
    if version != 2:
        raise AvatarLoadError(f"Unsupported GLB version: {version}")
    if length > len(data):
        raise AvatarLoadError(f"GLB declares {length} bytes but only {len(data)} are present")
    return GlbHeader(version=version, length=length)

def split_glb(data: bytes) -> Tuple[str, bytes]:
    """Return the JSON chunk text and the (possibly empty) BIN chunk."""
    header = validate_glb_header(data)
    offset = GLB_HEADER_SIZE
    json_text: Optional[str] = None
    binary = b""

    while offset + 8 <= header.length:
        chunk_length, chunk_type = struct.unpack_from("<II", data, offset)
        offset += 8
        chunk = data[offset:offset + chunk_length]
        if len(chunk) < chunk_length:
            raise AvatarLoadError("Truncated GLB chunk")
        if chunk_type == GLB_CHUNK_JSON and json_text is None:
            json_text = chunk.decode("utf-8").rstrip(" \x00")
        elif chunk_type == GLB_CHUNK_BIN and not binary:
            binary = bytes(chunk)
        offset += chunk_length

    if json_text is None:
        raise AvatarLoadError("GLB has no JSON chunk")
    return json_text, binary

def _gltf_from_text(text: str) -> GLTF2:
    data = json.loads(text)
    if not isinstance(data, dict) or "asset" not in data:
        raise AvatarLoadError("JSON document is not a glTF asset")
    return GLTF2.from_json(text)

def read_accessor(gltf: GLTF2, accessor_idx: int, base_dir: Optional[Path] = None) -> np.ndarray:
    """Decode a glTF accessor into a numpy array of shape (count, components)."""
    if accessor_idx is None or accessor_idx >= len(gltf.accessors or []):
        raise ValueError(f"Invalid accessor index: {accessor_idx}")

    accessor = gltf.accessors[accessor_idx]
    dtype = np.dtype(COMPONENT_DTYPES[accessor.componentType])
    components = TYPE_COMPONENTS[accessor.type]

    if accessor.bufferView is None:
        # Accessors without a view are all zeros by definition
        return np.zeros((accessor.count, components), dtype=dtype)

    view = gltf.bufferViews[accessor.bufferView]
    buffer_data = _buffer_bytes(gltf, view.buffer, base_dir)

    offset = (view.byteOffset or 0) + (accessor.byteOffset or 0)
    element_size = components * dtype.itemsize
    stride = view.byteStride or element_size

    if stride == element_size:
        end = offset + accessor.count * element_size
        if end > len(buffer_data):
            raise ValueError(f"Accessor {accessor_idx} runs past the end of its buffer")
        data = np.frombuffer(buffer_data[offset:end], dtype=dtype)
    else:
        # Interleaved: view each element through a strided window
        needed = offset + (accessor.count - 1) * stride + element_size if accessor.count else offset
        if needed > len(buffer_data):
            raise ValueError(f"Accessor {accessor_idx} runs past the end of its buffer")
        rows = [
            np.frombuffer(buffer_data[offset + i * stride: offset + i * stride + element_size], dtype=dtype)
            for i in range(accessor.count)
        ]
        data = np.concatenate(rows) if rows else np.zeros(0, dtype=dtype)

    return data.reshape(-1, components)

def _buffer_bytes(gltf: GLTF2, buffer_idx: int, base_dir: Optional[Path]) -> bytes:
    buffer = gltf.buffers[buffer_idx]
    uri = getattr(buffer, "uri", None)

    if not uri:
        try:
            blob = gltf.binary_blob()
        except AttributeError:
            blob = None
        if not blob:
            raise ValueError(f"Buffer {buffer_idx} has no uri and the file has no binary chunk")
        return bytes(blob)

    if uri.startswith("data:"):
        _, encoded = uri.split(",", 1)
        return base64.b64decode(encoded)

    if base_dir is None:
        raise ValueError(f"External buffer '{uri}' cannot be resolved without a base directory")
    return (Path(base_dir) / uri).read_bytes()

def _vrm_info(gltf: GLTF2) -> Tuple[bool, Optional[str], Dict[str, Any]]:
    extensions = gltf.extensions or {}
    used = set(gltf.extensionsUsed or [])

    if "VRMC_vrm" in extensions or "VRMC_vrm" in used:
        meta = (extensions.get("VRMC_vrm") or {}).get("meta") or {}
        authors = meta.get("authors") or []
        return True, "1.0", {"title": meta.get("name"), "author": ", ".join(authors) or None,
                             "version": meta.get("version")}

    if "VRM" in extensions or "VRM" in used:
        meta = (extensions.get("VRM") or {}).get("meta") or {}
        return True, "0.x", {"title": meta.get("title"), "author": meta.get("author"),
                             "version": meta.get("version")}

    return False, None, {}

def _geometry_stats(gltf: GLTF2, base_dir: Optional[Path]) -> Tuple[int, int, Optional[Tuple[np.ndarray, np.ndarray]]]:
    mesh_count = len(gltf.meshes or [])
    vertex_count = 0
    mins: List[np.ndarray] = []
    maxs: List[np.ndarray] = []

    for mesh in gltf.meshes or []:
        for primitive in mesh.primitives or []:
            position = getattr(primitive.attributes, "POSITION", None)
            if position is None:
                continue
            accessor = gltf.accessors[position]
            if not accessor.count:
                continue
            vertex_count += accessor.count
            if accessor.min and accessor.max:
                mins.append(np.asarray(accessor.min[:3], dtype=np.float64))
                maxs.append(np.asarray(accessor.max[:3], dtype=np.float64))
            else:
                try:
                    points = read_accessor(gltf, position, base_dir).astype(np.float64)
                    mins.append(points.min(axis=0))
                    maxs.append(points.max(axis=0))
                except ValueError as e:
                    logger.debug(f"Could not compute bounds for accessor {position}: {e}")

    bounds = (np.min(mins, axis=0), np.max(maxs, axis=0)) if mins else None
    return mesh_count, vertex_count, bounds

class AvatarLoader:
    """Turns files or buffers into ``LoadedAvatar`` objects."""

    # Parsed avatars keyed by sha256 of the file contents and the directory
    # external buffers resolve against
    _cache: "OrderedDict[Tuple[str, str], LoadedAvatar]" = OrderedDict()
    cache_size = 8

    def __init__(self):
        self._strategies: Dict[str, Callable[[bytes, str, Optional[Path]], LoadedAvatar]] = {
            "image": self._load_image,
            "glb-container": self._load_glb_container,
            "gltf-json": self._load_gltf_json,
            "pygltflib-binary": self._load_with_pygltflib,
        }

    def load_path(self, path) -> LoadedAvatar:
        """Read ``path`` and load it."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Avatar file not found: {path}")
        logger.info(f"Reading avatar file: {path}")
        data = path.read_bytes()
        logger.info(f"File read successfully, size: {len(data)} bytes")
        return self.load_bytes(data, path.name, base_dir=path.parent)

    def load_bytes(self, data: bytes, name: str = "avatar", base_dir: Optional[Path] = None) -> LoadedAvatar:
        """Try every strategy on ``data``; raise ``AvatarLoadError`` if all fail."""
        if not data:
            raise AvatarLoadError(f"Empty avatar file: {name}")

        key = (hashlib.sha256(data).hexdigest(), str(base_dir or ""))
        cached = self._cache.get(key)
        if cached is not None:
            logger.info(f"Using cached avatar data for {name}")
            self._cache.move_to_end(key)
            return cached if cached.name == name else replace(cached, name=name)

        detected = detect_format(data, name)
        logger.info(f"Loading avatar '{name}' ({len(data)} bytes, detected {detected.value})")

        if detected is AvatarFormat.FBX:
            raise AvatarLoadError(f"FBX models are not supported, convert '{name}' to VRM or GLB")

        errors = []
        for strategy_name in self._strategy_order(detected):
            try:
                avatar = self._strategies[strategy_name](data, name, base_dir)
            except Exception as e:
                logger.debug(f"Strategy '{strategy_name}' failed for {name}: {e}")
                errors.append(f"{strategy_name}: {e}")
                continue

            avatar.strategy = strategy_name
            logger.info(f"Avatar '{name}' loaded via {strategy_name}")
            self._remember(key, avatar)
            return avatar

        logger.error(f"All loaders failed for {name}: {'; '.join(errors)}")
        raise AvatarLoadError(f"Unsupported or corrupt avatar file: {name}")

    def _strategy_order(self, detected: AvatarFormat) -> List[str]:
        if detected is AvatarFormat.IMAGE:
            return ["image", "glb-container", "gltf-json", "pygltflib-binary"]
        if detected is AvatarFormat.GLTF_JSON:
            return ["gltf-json", "glb-container", "pygltflib-binary", "image"]
        return ["glb-container", "pygltflib-binary", "gltf-json", "image"]

    def _remember(self, key: Tuple[str, str], avatar: LoadedAvatar):
        self._cache[key] = avatar
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    @classmethod
    def clear_cache(cls):
        cls._cache.clear()

    def _load_image(self, data: bytes, name: str, base_dir: Optional[Path]) -> LoadedAvatar:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            image = img.convert("RGBA")
        return LoadedAvatar(name=name, format=AvatarFormat.IMAGE, image=image)

    def _load_glb_container(self, data: bytes, name: str, base_dir: Optional[Path]) -> LoadedAvatar:
        json_text, binary = split_glb(data)
        gltf = _gltf_from_text(json_text)
        if binary:
            gltf.set_binary_blob(binary)
        return self._model_avatar(gltf, name, AvatarFormat.GLB, base_dir)

    def _load_gltf_json(self, data: bytes, name: str, base_dir: Optional[Path]) -> LoadedAvatar:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Failed to decode {name} as utf-8; using replacement fallback")
            text = data.decode("utf-8", errors="replace")
        gltf = _gltf_from_text(text.lstrip("\ufeff"))
        return self._model_avatar(gltf, name, AvatarFormat.GLTF_JSON, base_dir)

    def _load_with_pygltflib(self, data: bytes, name: str, base_dir: Optional[Path]) -> LoadedAvatar:
        if data[:4] != GLB_MAGIC:
            raise AvatarLoadError("Missing glTF magic")
        # pygltflib's own reader wants a file on disk
        fd, tmp_path = tempfile.mkstemp(suffix=".glb")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            gltf = GLTF2.load_binary(tmp_path)
        finally:
            os.unlink(tmp_path)
        if gltf is None:
            raise AvatarLoadError("pygltflib could not read the file")
        return self._model_avatar(gltf, name, AvatarFormat.GLB, base_dir)

    def _model_avatar(self, gltf: GLTF2, name: str, fmt: AvatarFormat, base_dir: Optional[Path]) -> LoadedAvatar:
        is_vrm, vrm_version, meta = _vrm_info(gltf)
        mesh_count, vertex_count, bounds = _geometry_stats(gltf, base_dir)
        logger.debug(f"{name}: vrm={is_vrm} ({vrm_version}), meshes={mesh_count}, vertices={vertex_count}")
        # Keep the directory around for external buffers
        gltf._path = base_dir
        return LoadedAvatar(
            name=name,
            format=fmt,
            gltf=gltf,
            is_vrm=is_vrm,
            vrm_version=vrm_version,
            meta={k: v for k, v in meta.items() if v},
            mesh_count=mesh_count,
            vertex_count=vertex_count,
            bounds=bounds,
        )
