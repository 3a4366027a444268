#!/usr/bin/env python3
"""
Avatar framing and animation math.
"""

import math

import numpy as np
import pytest

from celestis.graphics.animation import IdleBreathing, TalkAnimation
from celestis.graphics.layout import (
    MAX_IN_CHAT_HEIGHT, fit_avatar, floating_panel_origin, in_chat_overlay_height, scroll_parallax_shift,
)

class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

def test_fit_scales_to_human_height():
    placement = fit_avatar([0, 0, 0], [0.5, 17.0, 0.3])
    assert placement.scale == pytest.approx(0.1)
    # Feet on the floor
    assert placement.position[1] == pytest.approx(0.0)

def test_fit_clamps_scale():
    tiny = fit_avatar([0, 0, 0], [0.001, 0.001, 0.001])
    huge = fit_avatar([0, 0, 0], [100, 1000, 100])
    assert tiny.scale == 10.0
    assert huge.scale == 0.1

def test_fit_camera_sees_the_model():
    placement = fit_avatar([-0.3, 0.0, -0.2], [0.3, 1.7, 0.2], fov_deg=50)
    size = np.array([0.6, 1.7, 0.4]) * placement.scale
    radius = np.linalg.norm(size) / 2
    assert placement.camera_distance >= radius / math.sin(math.radians(25))
    assert placement.camera_distance >= 1.2
    # Nudged right, camera looking at the nudged model
    assert placement.position[0] > 0
    assert placement.camera_target[0] == pytest.approx(placement.position[0])
    assert placement.camera_target[1] >= 0.8

def test_fit_degenerate_bounds():
    placement = fit_avatar([0, 1, 0], [1, 1, 1])
    assert placement.scale == 1.0
    np.testing.assert_allclose(placement.position, [0, 0, 0])

def test_in_chat_height_is_capped():
    assert in_chat_overlay_height(400) == pytest.approx(340)
    assert in_chat_overlay_height(2000) == MAX_IN_CHAT_HEIGHT

def test_scroll_parallax():
    assert scroll_parallax_shift(500, 2000, 1000) == pytest.approx(0.0)
    top = scroll_parallax_shift(0, 2000, 1000)
    bottom = scroll_parallax_shift(1000, 2000, 1000)
    assert top == pytest.approx(-36.0)
    assert bottom == pytest.approx(36.0)
    # Clamped past the end
    assert scroll_parallax_shift(5000, 2000, 1000) == pytest.approx(bottom)

def test_floating_panel_origin():
    assert floating_panel_origin((1200, 800), (420, 560)) == (764, 120)
    assert floating_panel_origin((300, 300), (420, 560)) == (0, 0)

def test_talk_animation_restores_yaw():
    clock = FakeClock()
    talk = TalkAnimation(base_yaw=0.25, clock=clock)
    assert talk.yaw() == 0.25
    assert not talk.active

    talk.start()
    clock.now += 0.3
    assert talk.active
    assert talk.yaw() == pytest.approx(0.25 + math.sin(300 * 0.005) * 0.05)

    clock.now += 2.0
    assert talk.finished
    assert talk.yaw() == 0.25

def test_idle_breathing_loops():
    idle = IdleBreathing()
    assert idle.sample(0.0) == pytest.approx(0.0)
    assert idle.sample(0.5) == pytest.approx(0.01)
    assert idle.sample(1.0) == pytest.approx(0.02)
    assert idle.sample(3.0) == pytest.approx(0.02)
