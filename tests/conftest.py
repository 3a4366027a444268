"""
Shared fixtures: in-memory glTF/GLB assets and a clean avatar cache.
"""

import base64
import io
import json
import struct

import pytest
from PIL import Image

from celestis.models.avatar import AvatarLoader

TRIANGLE = struct.pack("<9f", 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 2.0, 0.0)

def _pad(data: bytes, filler: bytes) -> bytes:
    return data + filler * ((4 - len(data) % 4) % 4)

def triangle_gltf(extensions=None, with_bounds=True, uri=None) -> dict:
    """A one-triangle glTF document, 2 units tall."""
    accessor = {"bufferView": 0, "componentType": 5126, "count": 3, "type": "VEC3"}
    if with_bounds:
        accessor["min"] = [0.0, 0.0, 0.0]
        accessor["max"] = [1.0, 2.0, 0.0]
    buffer = {"byteLength": len(TRIANGLE)}
    if uri is not None:
        buffer["uri"] = uri
    doc = {
        "asset": {"version": "2.0", "generator": "celestis-tests"},
        "scene": 0,
        "scenes": [{"nodes": [0]}],
        "nodes": [{"mesh": 0}],
        "meshes": [{"primitives": [{"attributes": {"POSITION": 0}}]}],
        "accessors": [accessor],
        "bufferViews": [{"buffer": 0, "byteOffset": 0, "byteLength": len(TRIANGLE)}],
        "buffers": [buffer],
    }
    if extensions:
        doc["extensions"] = extensions
        doc["extensionsUsed"] = list(extensions)
    return doc

def build_glb(doc: dict, binary: bytes = TRIANGLE) -> bytes:
    json_chunk = _pad(json.dumps(doc).encode("utf-8"), b" ")
    bin_chunk = _pad(binary, b"\x00")
    body = struct.pack("<II", len(json_chunk), 0x4E4F534A) + json_chunk
    if binary:
        body += struct.pack("<II", len(bin_chunk), 0x004E4942) + bin_chunk
    return struct.pack("<4sII", b"glTF", 2, 12 + len(body)) + body

def data_uri_gltf() -> bytes:
    uri = "data:application/octet-stream;base64," + base64.b64encode(TRIANGLE).decode("ascii")
    return json.dumps(triangle_gltf(uri=uri)).encode("utf-8")

def png_bytes(size=(8, 12), color=(200, 40, 90, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()

@pytest.fixture(autouse=True)
def clean_avatar_cache():
    AvatarLoader.clear_cache()
    yield
    AvatarLoader.clear_cache()

@pytest.fixture
def triangle_glb() -> bytes:
    return build_glb(triangle_gltf())

@pytest.fixture
def vrm1_glb() -> bytes:
    ext = {"VRMC_vrm": {"specVersion": "1.0", "meta": {"name": "Alicia", "authors": ["Nico", "Dwango"]}}}
    return build_glb(triangle_gltf(extensions=ext))

@pytest.fixture
def vrm0_glb() -> bytes:
    ext = {"VRM": {"exporterVersion": "UniVRM-0.99", "meta": {"title": "Seed-san", "author": "VirtualCast"}}}
    return build_glb(triangle_gltf(extensions=ext))

@pytest.fixture
def png_avatar() -> bytes:
    return png_bytes()
