"""Companion display state.

The listener writes, the render engine reads. Each write swaps in a new
immutable DisplayState under a single lock, so readers on another thread
always see a complete snapshot.
"""

from __future__ import annotations

import dataclasses
import math
import threading
from dataclasses import dataclass

from PIL import Image, ImageDraw

from ..config import FaceStyle

SUN_COLOR = (255, 193, 7, 255)


def clear_sky_glyph(size: int) -> Image.Image:
    """Draw the clear-sky sun used until the first image push arrives."""
    icon = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(icon)
    center = (size - 1) / 2
    radius = size * 0.22
    draw.ellipse(
        (center - radius, center - radius, center + radius, center + radius),
        fill=SUN_COLOR,
    )
    inner, outer = size * 0.32, size * 0.46
    ray_width = max(1, size // 16)
    for step in range(8):
        angle = step * math.pi / 4
        dx, dy = math.cos(angle), math.sin(angle)
        draw.line(
            (center + dx * inner, center + dy * inner, center + dx * outer, center + dy * outer),
            fill=SUN_COLOR,
            width=ray_width,
        )
    return icon


@dataclass(frozen=True, eq=False)
class DisplayState:
    """What the watch face shows for weather.

    Attributes:
        high_text: Pre-formatted high temperature.
        low_text: Pre-formatted low temperature.
        icon: Decoded condition icon.
    """

    high_text: str
    low_text: str
    icon: Image.Image

    @classmethod
    def initial(cls, style: FaceStyle) -> DisplayState:
        """Built-in values shown until a push arrives."""
        icon: Image.Image
        if style.placeholder_icon:
            with Image.open(style.placeholder_icon) as image:
                image.load()
                icon = image.copy()
        else:
            icon = clear_sky_glyph(style.icon_size)
        return cls(
            high_text=style.placeholder_high,
            low_text=style.placeholder_low,
            icon=icon,
        )


class DisplayStateHolder:
    """Thread-safe owner of the current DisplayState."""

    def __init__(self, initial: DisplayState) -> None:
        self._lock = threading.Lock()
        self._state = initial

    def get(self) -> DisplayState:
        with self._lock:
            return self._state

    def set_temperatures(self, high_text: str, low_text: str) -> DisplayState:
        """Replace both temperature strings; the icon is kept."""
        with self._lock:
            self._state = dataclasses.replace(
                self._state, high_text=high_text, low_text=low_text
            )
            return self._state

    def set_icon(self, icon: Image.Image) -> DisplayState:
        """Replace the icon; the temperature strings are kept."""
        with self._lock:
            self._state = dataclasses.replace(self._state, icon=icon)
            return self._state
