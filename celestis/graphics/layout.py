"""
Avatar layout math: framing a model in front of the camera and placing the
avatar panel next to the chat.
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

TARGET_HEIGHT = 1.7
MIN_SCALE = 0.1
MAX_SCALE = 10.0
DISTANCE_MARGIN = 1.15
MAX_IN_CHAT_HEIGHT = 720

@dataclass
class AvatarPlacement:
    """Where the model goes and where the camera looks from."""
    scale: float
    position: np.ndarray
    camera_position: np.ndarray
    camera_target: np.ndarray
    camera_distance: float

def fit_avatar(bounds_min: Sequence[float], bounds_max: Sequence[float], fov_deg: float = 50.0) -> AvatarPlacement:
    """Scale the model to a human height, stand it on y=0 and frame it on the right."""
    bmin = np.asarray(bounds_min, dtype=np.float64)
    bmax = np.asarray(bounds_max, dtype=np.float64)
    size = bmax - bmin

    if size[1] <= 0:
        return AvatarPlacement(
            scale=1.0,
            position=np.zeros(3),
            camera_position=np.array([0.0, 1.6, 3.0]),
            camera_target=np.array([0.0, 1.6, 0.0]),
            camera_distance=3.0,
        )

    scale = TARGET_HEIGHT / max(size[1], 0.0001)
    scale = min(max(scale, MIN_SCALE), MAX_SCALE)

    scaled_min = bmin * scale
    scaled_size = size * scale
    scaled_center = (bmin + bmax) * 0.5 * scale

    position = np.array([-scaled_center[0], -scaled_min[1], -scaled_center[2]])
    max_dimension = float(scaled_size.max())

    # Bounding sphere must fit the vertical field of view: r <= d * sin(fov/2)
    radius = float(np.linalg.norm(scaled_size) * 0.5) or max_dimension * 0.5
    fov_rad = math.radians(fov_deg or 50.0)
    min_distance = radius / max(math.sin(fov_rad / 2), 0.0001)
    desired = min_distance * DISTANCE_MARGIN

    min_clamp = max(1.2, max_dimension * 0.6)
    max_clamp = max(10.0, max_dimension * 6, desired)
    distance = min(max(desired, min_clamp), max_clamp)

    # Keep the avatar clear of the chat column
    right_nudge = min(max(max_dimension * 0.45, distance * 0.28), max_dimension * 1.2)
    position[0] += right_nudge

    camera_position = np.array([distance + right_nudge, max(1.2, max_dimension * 0.6), distance])
    look_y = max(0.8, scaled_size[1] * 0.5)
    camera_target = np.array([position[0], look_y, 0.0])

    return AvatarPlacement(
        scale=scale,
        position=position,
        camera_position=camera_position,
        camera_target=camera_target,
        camera_distance=distance,
    )

def in_chat_overlay_height(chat_height: float) -> float:
    """Height of the avatar panel when docked inside the chat area."""
    return min(chat_height * 0.85, MAX_IN_CHAT_HEIGHT)

def scroll_parallax_shift(scroll_y: float, document_height: float, viewport_height: float) -> float:
    """Vertical offset for the floating avatar as the chat scrolls; 0 at mid-scroll."""
    max_shift = min(viewport_height * 0.08, 120)
    scrollable = max(document_height - viewport_height, 1)
    t = min(max(scroll_y / scrollable, 0.0), 1.0)
    return (t - 0.5) * max_shift * 0.9

def floating_panel_origin(window_size: Tuple[int, int], panel_size: Tuple[int, int], margin: int = 16) -> Tuple[int, int]:
    """Top-left corner of the avatar panel docked to the right edge, vertically centred."""
    win_w, win_h = window_size
    panel_w, panel_h = panel_size
    return max(win_w - panel_w - margin, 0), max((win_h - panel_h) // 2, 0)
