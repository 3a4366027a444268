"""
Avatar renderers.

``Avatar3DRenderer`` draws VRM/GLTF meshes with ModernGL into an offscreen
framebuffer and hands frames to the window as Pillow images.
``Avatar2DRenderer`` needs no GPU: it composes a 2D avatar image (or a
placeholder panel) with Pillow.

``select_renderer`` decides between them. Getting an OpenGL context can hang
or fail depending on drivers, so the 3D path is raced against a timeout and
the 2D renderer takes over when it loses.
"""

import asyncio
import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pyrr
from PIL import Image, ImageDraw, ImageFont

try:
    import moderngl
    _MODERNGL_AVAILABLE = True
except Exception:
    moderngl = None  # type: ignore
    _MODERNGL_AVAILABLE = False

from .animation import IdleBreathing, TalkAnimation
from .layout import AvatarPlacement, fit_avatar
from ..core.settings import UserSettings
from ..models.avatar import AvatarLoadError, LoadedAvatar, read_accessor

logger = logging.getLogger(__name__)

BACKGROUND_TOP = (26, 32, 54)
BACKGROUND_BOTTOM = (52, 36, 78)

VERTEX_SHADER = """
#version 330 core

in vec3 in_position;
in vec3 in_normal;

uniform mat4 mvp_matrix;
uniform mat4 model_matrix;

out vec3 world_normal;

void main() {
    world_normal = mat3(model_matrix) * in_normal;
    gl_Position = mvp_matrix * vec4(in_position, 1.0);
}
"""

FRAGMENT_SHADER = """
#version 330 core

in vec3 world_normal;

uniform vec4 base_color;
uniform vec3 light_dir;

out vec4 frag_color;

void main() {
    vec3 n = normalize(world_normal);
    // Toon-ish two band shading
    float ndl = max(dot(n, normalize(light_dir)), 0.0);
    float shade = ndl > 0.35 ? 1.0 : 0.72;
    frag_color = vec4(base_color.rgb * shade, base_color.a);
}
"""

class RendererUnavailable(Exception):
    """Raised when no OpenGL context could be created."""

def _context_strategies() -> List[Tuple[str, Callable[[], Any]]]:
    return [
        ("window", lambda: moderngl.create_context()),
        ("standalone", lambda: moderngl.create_standalone_context()),
        ("egl", lambda: moderngl.create_standalone_context(backend="egl")),
    ]

def acquire_3d_backend() -> Tuple[Any, str]:
    """Try each way of obtaining a ModernGL context; first success wins."""
    if not _MODERNGL_AVAILABLE:
        raise RendererUnavailable("ModernGL is not installed")

    failures = []
    for name, factory in _context_strategies():
        try:
            ctx = factory()
        except Exception as e:
            logger.debug(f"ModernGL '{name}' context failed: {e}")
            failures.append(f"{name}: {e}")
            continue
        logger.info(f"Created ModernGL {name} context ({ctx.info.get('GL_RENDERER', 'unknown')})")
        return ctx, name

    raise RendererUnavailable("Failed to create ModernGL context: " + "; ".join(failures))

def _gradient_background(size: Tuple[int, int]) -> Image.Image:
    width, height = size
    t = np.linspace(0.0, 1.0, height)[:, None]
    top = np.array(BACKGROUND_TOP, dtype=np.float64)
    bottom = np.array(BACKGROUND_BOTTOM, dtype=np.float64)
    rows = (top * (1 - t) + bottom * t).astype(np.uint8)
    pixels = np.repeat(rows[:, None, :], width, axis=1)
    alpha = np.full((height, width, 1), 255, dtype=np.uint8)
    return Image.fromarray(np.concatenate([pixels, alpha], axis=2), "RGBA")

class Avatar2DRenderer:
    """Pillow-based renderer for image avatars and the no-GPU fallback."""

    engine = "2d"

    def __init__(self, size: Tuple[int, int] = (420, 560), clock: Callable[[], float] = time.monotonic):
        self.size = size
        self._clock = clock
        self.image: Optional[Image.Image] = None
        self.avatar: Optional[LoadedAvatar] = None
        self.status = ""
        self.talk: Optional[TalkAnimation] = None
        self.idle = IdleBreathing()
        self.frame_count = 0
        self._background: Optional[Image.Image] = None
        self._started = clock()

    async def initialize(self):
        self._background = _gradient_background(self.size)
        logger.info("2D renderer initialized")

    def set_status(self, status: str):
        self.status = status

    def resize(self, size: Tuple[int, int]):
        if size != self.size and size[0] > 0 and size[1] > 0:
            self.size = size
            self._background = _gradient_background(size)

    async def load_avatar(self, avatar: LoadedAvatar):
        if not avatar.is_image:
            raise AvatarLoadError("3D engine not ready - cannot load VRM model")
        self.avatar = avatar
        self.image = avatar.image
        logger.info(f"2D image buffered for drawing: {avatar.name}")

    def clear_avatar(self):
        self.avatar = None
        self.image = None

    def animate(self, kind: str):
        if kind == "talk":
            self.talk = TalkAnimation(clock=self._clock)
            self.talk.start()

    def _sway_offset(self) -> int:
        if self.talk is None or not self.talk.active:
            return 0
        # Same curve as the 3D yaw, mapped onto pixels
        return int(round(self.talk.yaw() * 200))

    async def render_frame(self) -> Image.Image:
        return self.draw()

    def draw(self) -> Image.Image:
        self.frame_count += 1
        frame = (self._background or _gradient_background(self.size)).copy()

        if self.image is not None:
            width, height = self.size
            img = self.image.copy()
            img.thumbnail((int(width * 0.9), int(height * 0.9)))
            bob = self.idle.sample(self._clock() - self._started)
            x = (width - img.width) // 2 + self._sway_offset()
            y = (height - img.height) // 2 - int(bob * height * 0.5)
            frame.alpha_composite(img, (max(x, 0), max(y, 0)))
        else:
            self._draw_placeholder(frame)

        return frame

    def _draw_placeholder(self, frame: Image.Image):
        draw = ImageDraw.Draw(frame)
        width, height = self.size
        draw.rounded_rectangle([(10, 10), (width - 10, height - 10)], radius=18,
                               fill=(20, 20, 20, 160), outline=(120, 110, 170, 255))
        try:
            font = ImageFont.truetype("arial.ttf", 22)
            font_sm = ImageFont.truetype("arial.ttf", 14)
        except OSError:
            font = ImageFont.load_default()
            font_sm = ImageFont.load_default()
        draw.text((28, 28), "Celestis", font=font, fill=(255, 255, 255, 255))
        draw.text((28, 64), self.status or "No avatar loaded", font=font_sm, fill=(200, 200, 200, 255))

    async def shutdown(self):
        self.clear_avatar()
        logger.info("2D renderer shutdown complete")

class Avatar3DRenderer:
    """ModernGL renderer. All GL calls run on one dedicated render thread."""

    engine = "3d"

    def __init__(self, size: Tuple[int, int] = (420, 560), fov: float = 50.0,
                 acquire: Optional[Callable[[], Tuple[Any, str]]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.size = size
        self.fov = fov
        self._acquire = acquire or acquire_3d_backend
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="celestis-gl")
        self._acquisition: Optional[Future] = None

        self.ctx = None
        self.backend: Optional[str] = None
        self.program = None
        self.fbo = None
        self.primitives: List[Dict[str, Any]] = []

        self.avatar: Optional[LoadedAvatar] = None
        self.placement: Optional[AvatarPlacement] = None
        self.talk: Optional[TalkAnimation] = None
        self.idle = IdleBreathing()
        self._started = clock()
        self.frame_count = 0

        # Image avatars are shown over the 3D view
        self.overlay = Avatar2DRenderer(size, clock=clock)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    async def initialize(self):
        """Acquire a context and build GL resources. Raises ``RendererUnavailable``."""
        self._acquisition = self._executor.submit(self._acquire)
        self.ctx, self.backend = await asyncio.wrap_future(self._acquisition)
        await self._run(self._setup_gl)
        await self.overlay.initialize()
        logger.info(f"3D renderer initialized ({self.backend} context)")

    def _setup_gl(self):
        self.ctx.enable(moderngl.DEPTH_TEST)
        self.program = self.ctx.program(vertex_shader=VERTEX_SHADER, fragment_shader=FRAGMENT_SHADER)
        self._create_framebuffer()

    def _create_framebuffer(self):
        width, height = self.size
        self.fbo = self.ctx.framebuffer(
            color_attachments=[self.ctx.renderbuffer((width, height), 4)],
            depth_attachment=self.ctx.depth_renderbuffer((width, height)),
        )

    def set_status(self, status: str):
        self.overlay.set_status(status)

    async def load_avatar(self, avatar: LoadedAvatar):
        if avatar.is_image:
            await self.overlay.load_avatar(avatar)
            return
        if not avatar.has_geometry:
            raise AvatarLoadError("VRM file contains no valid 3D geometry")

        # The previous model stays on screen unless the upload succeeds
        await self._run(self._upload_model, avatar)
        self.avatar = avatar
        self.overlay.clear_avatar()
        bounds_min, bounds_max = avatar.bounds
        self.placement = fit_avatar(bounds_min, bounds_max, self.fov)
        logger.info(f"Avatar '{avatar.name}' scaled by factor {self.placement.scale:.2f}")

    def _upload_model(self, avatar: LoadedAvatar):
        try:
            meshes = list(self._decode_meshes(avatar))
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AvatarLoadError(f"Invalid mesh data in {avatar.name}: {e}") from e

        primitives = []
        for vertices, indices, color in meshes:
            vbo = self.ctx.buffer(vertices.tobytes())
            ibo = self.ctx.buffer(indices.tobytes())
            vao = self.ctx.vertex_array(
                self.program, [(vbo, "3f 3f", "in_position", "in_normal")], ibo
            )
            primitives.append({"vao": vao, "vbo": vbo, "ibo": ibo, "color": color})

        self._release_primitives()
        self.primitives = primitives
        logger.debug(f"Uploaded {len(self.primitives)} primitives")

    def _decode_meshes(self, avatar: LoadedAvatar):
        """Yield interleaved position/normal vertices, indices and color per triangle primitive."""
        gltf = avatar.gltf
        base_dir = getattr(gltf, "_path", None)

        for mesh in gltf.meshes or []:
            for primitive in mesh.primitives or []:
                if primitive.mode not in (None, 4):  # TRIANGLES only
                    continue
                position_idx = getattr(primitive.attributes, "POSITION", None)
                if position_idx is None:
                    continue

                positions = read_accessor(gltf, position_idx, base_dir).astype("f4")
                normal_idx = getattr(primitive.attributes, "NORMAL", None)
                if normal_idx is not None:
                    normals = read_accessor(gltf, normal_idx, base_dir).astype("f4")
                else:
                    normals = np.zeros_like(positions)
                    normals[:, 1] = 1.0

                if primitive.indices is not None:
                    indices = read_accessor(gltf, primitive.indices, base_dir).astype("u4").ravel()
                else:
                    indices = np.arange(len(positions), dtype="u4")

                vertices = np.hstack([positions, normals]).astype("f4")
                yield vertices, indices, self._material_color(gltf, primitive.material)

    @staticmethod
    def _material_color(gltf, material_idx: Optional[int]) -> Tuple[float, float, float, float]:
        if material_idx is None or material_idx >= len(gltf.materials or []):
            return (0.85, 0.82, 0.9, 1.0)
        pbr = gltf.materials[material_idx].pbrMetallicRoughness
        if pbr is not None and pbr.baseColorFactor:
            return tuple(pbr.baseColorFactor)
        return (0.85, 0.82, 0.9, 1.0)

    def _release_primitives(self):
        for prim in self.primitives:
            for key in ("vao", "vbo", "ibo"):
                prim[key].release()
        self.primitives = []

    def animate(self, kind: str):
        if kind != "talk":
            return
        if self.avatar is None:
            self.overlay.animate(kind)
            return
        self.talk = TalkAnimation(clock=self._clock)
        self.talk.start()

    def model_matrix(self) -> np.ndarray:
        placement = self.placement
        yaw = self.talk.yaw() if self.talk else 0.0
        bob = self.idle.sample(self._clock() - self._started)
        scale = pyrr.matrix44.create_from_scale([placement.scale] * 3, dtype="f4")
        rotation = pyrr.matrix44.create_from_y_rotation(yaw, dtype="f4")
        translation = pyrr.matrix44.create_from_translation(
            placement.position + np.array([0.0, bob, 0.0]), dtype="f4"
        )
        # pyrr matrices are row-major: applied left to right
        return scale @ rotation @ translation

    async def render_frame(self) -> Image.Image:
        if self.avatar is None or self.placement is None:
            return self.overlay.draw()
        return await self._run(self._draw)

    def _draw(self) -> Image.Image:
        self.frame_count += 1
        width, height = self.size
        placement = self.placement

        view = pyrr.matrix44.create_look_at(
            placement.camera_position, placement.camera_target, [0.0, 1.0, 0.0], dtype="f4"
        )
        projection = pyrr.matrix44.create_perspective_projection(
            self.fov, width / max(height, 1), 0.1, 100.0, dtype="f4"
        )
        model = self.model_matrix()
        mvp = model @ view @ projection

        self.fbo.use()
        self.fbo.clear(*(c / 255.0 for c in BACKGROUND_TOP), 1.0)
        self.program["mvp_matrix"].write(mvp.astype("f4").tobytes())
        self.program["model_matrix"].write(model.astype("f4").tobytes())
        self.program["light_dir"].value = (0.4, 1.0, 0.6)

        for prim in self.primitives:
            self.program["base_color"].value = prim["color"]
            prim["vao"].render(moderngl.TRIANGLES)

        data = self.fbo.read(components=4)
        return Image.frombytes("RGBA", (width, height), data).transpose(Image.Transpose.FLIP_TOP_BOTTOM)

    def resize(self, size: Tuple[int, int]):
        if size == self.size or size[0] <= 0 or size[1] <= 0:
            return
        self.size = size
        self.overlay.resize(size)
        if self.ctx is not None:
            self._executor.submit(self._recreate_framebuffer)

    def _recreate_framebuffer(self):
        if self.fbo is not None:
            self.fbo.release()
        self._create_framebuffer()

    def abandon(self):
        """Give up on a context that is still being acquired.

        A context that turns up afterwards is released on the render thread
        and never attached to this renderer.
        """
        pending = self._acquisition
        if pending is not None and not pending.done():
            pending.add_done_callback(self._release_late_context)
        self._executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _release_late_context(future: Future):
        if future.cancelled() or future.exception() is not None:
            return
        ctx, backend = future.result()
        logger.info(f"Releasing {backend} context that arrived after the 3D timeout")
        ctx.release()

    async def shutdown(self):
        try:
            if self.ctx is not None:
                await self._run(self._release_gl)
        except Exception as e:
            logger.error(f"Error during renderer shutdown: {e}")
        finally:
            self._executor.shutdown(wait=False)
        logger.info("3D renderer shutdown complete")

    def _release_gl(self):
        self._release_primitives()
        for resource in (self.fbo, self.program):
            if resource is not None:
                resource.release()
        self.ctx.release()

async def select_renderer(settings: UserSettings, size: Tuple[int, int] = (420, 560), fov: float = 50.0,
                          acquire: Optional[Callable[[], Tuple[Any, str]]] = None):
    """Return an initialized renderer, falling back to 2D when 3D is slow or broken.

    A timeout also switches ``settings.renderer_engine`` to ``"2d"`` and records
    the requested engine in ``settings.previous_renderer``.
    """
    if settings.renderer_engine == "3d":
        renderer = Avatar3DRenderer(size, fov, acquire=acquire)
        timeout = settings.renderer_timeout_ms / 1000.0
        try:
            await asyncio.wait_for(renderer.initialize(), timeout=timeout)
            return renderer
        except asyncio.TimeoutError:
            logger.warning(f"3D renderer not ready after {timeout:.1f}s - switching to 2D renderer fallback")
            renderer.abandon()
            settings.previous_renderer = settings.renderer_engine
            settings.renderer_engine = "2d"
        except RendererUnavailable as e:
            logger.warning(f"3D renderer unavailable: {e}")
            renderer.abandon()
        except Exception as e:
            logger.error(f"Error setting up 3D renderer: {e}", exc_info=True)
            renderer.abandon()

    fallback = Avatar2DRenderer(size)
    await fallback.initialize()
    return fallback
