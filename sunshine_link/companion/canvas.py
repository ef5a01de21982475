"""Pillow drawing of watch face frames."""

from __future__ import annotations

from dataclasses import dataclass

from PIL import Image, ImageDraw, ImageFont, ImageOps

from ..config import FaceStyle

_SEPARATOR_GAP = 5
_SEPARATOR_LENGTH = 35
_TEMPERATURE_BASELINE = 30


@dataclass(frozen=True, eq=False)
class WatchFrame:
    """Everything one redraw needs, captured at draw time.

    Attributes:
        time_text: Clock text (seconds only in interactive mode).
        high_text: High temperature, left of the separator.
        low_text: Low temperature, right of the separator.
        icon: Weather icon bitmap.
        ambient: Draw the ambient (black) background.
        desaturate_icon: Draw the icon in grayscale.
        antialias: Antialias text (off for low-bit ambient screens).
    """

    time_text: str
    high_text: str
    low_text: str
    icon: Image.Image
    ambient: bool = False
    desaturate_icon: bool = False
    antialias: bool = True


class FaceRenderer:
    """Draw WatchFrames onto fresh Pillow images using a FaceStyle."""

    def __init__(self, style: FaceStyle) -> None:
        self._style = style
        self._time_font = self._load_font(style.time_text_size)
        self._weather_font = self._load_font(style.weather_text_size)

    @property
    def style(self) -> FaceStyle:
        return self._style

    def _load_font(self, size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
        if self._style.font_path:
            return ImageFont.truetype(self._style.font_path, size)
        return ImageFont.load_default(size=size)

    def render(self, frame: WatchFrame) -> Image.Image:
        """Draw background, icon, time, separator and temperatures."""
        style = self._style
        background = style.ambient_background_color if frame.ambient else style.background_color
        image = Image.new("RGB", (style.width, style.height), background)
        draw = ImageDraw.Draw(image)
        draw.fontmode = "L" if frame.antialias else "1"

        center_x = style.width // 2

        icon = _desaturate(frame.icon) if frame.desaturate_icon else frame.icon.convert("RGBA")
        image.paste(icon, (center_x - icon.width // 2, style.content_y_offset), icon)

        draw.text(
            (center_x, style.time_y_offset),
            frame.time_text,
            font=self._time_font,
            fill=style.text_color,
            anchor="ms",
        )

        line_start_y = style.content_y_offset + icon.height + _SEPARATOR_GAP
        draw.line(
            [(center_x, line_start_y), (center_x, line_start_y + _SEPARATOR_LENGTH)],
            fill=style.separator_color,
            width=1,
        )

        text_y = line_start_y + _TEMPERATURE_BASELINE
        offset_x = style.weather_text_size
        draw.text(
            (center_x - offset_x, text_y),
            frame.high_text,
            font=self._weather_font,
            fill=style.text_color,
            anchor="ms",
        )
        draw.text(
            (center_x + offset_x, text_y),
            frame.low_text,
            font=self._weather_font,
            fill=style.text_color,
            anchor="ms",
        )
        return image


def _desaturate(icon: Image.Image) -> Image.Image:
    """Grayscale copy of an icon that keeps its alpha channel."""
    rgba = icon.convert("RGBA")
    gray = ImageOps.grayscale(rgba).convert("RGBA")
    gray.putalpha(rgba.getchannel("A"))
    return gray
