"""Weather domain data structures.

Snapshots read from the local weather store, the diff that decides which
payloads a sync cycle pushes, and the display helpers that turn a reading
into what the companion shows (temperature strings and condition icons).
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from PIL import Image

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeatherSnapshot:
    """Point-in-time reading of today's weather.

    A field is None when the store has no reading for it. None never equals
    a real reading, so the first real data after an empty store counts as a
    change, while two empty reads compare equal.

    Attributes:
        high_temp_c: High temperature in Celsius.
        low_temp_c: Low temperature in Celsius.
        condition_id: OpenWeatherMap condition code.
    """

    high_temp_c: float | None
    low_temp_c: float | None
    condition_id: int | None

    UNKNOWN: ClassVar[WeatherSnapshot]

    @property
    def has_temperatures(self) -> bool:
        return self.high_temp_c is not None and self.low_temp_c is not None


WeatherSnapshot.UNKNOWN = WeatherSnapshot(None, None, None)


@dataclass(frozen=True)
class SnapshotDiff:
    """Which parts of the companion display a sync cycle must refresh."""

    temperatures_changed: bool
    condition_changed: bool

    @property
    def any_changed(self) -> bool:
        return self.temperatures_changed or self.condition_changed


def diff_snapshots(before: WeatherSnapshot, after: WeatherSnapshot) -> SnapshotDiff:
    """Compare two snapshots field by field.

    Temperatures and condition are independent. A change toward an unknown
    value is not reported since there is nothing new to display.
    """
    temperatures_changed = after.has_temperatures and (
        before.high_temp_c != after.high_temp_c
        or before.low_temp_c != after.low_temp_c
    )
    condition_changed = (
        after.condition_id is not None and before.condition_id != after.condition_id
    )
    return SnapshotDiff(
        temperatures_changed=temperatures_changed,
        condition_changed=condition_changed,
    )


def format_temperature(celsius: float, *, metric: bool = True) -> str:
    """Format a Celsius reading for display, e.g. "32°".

    Imperial output converts to Fahrenheit first.
    """
    value = celsius if metric else celsius * 1.8 + 32
    return f"{value:.0f}°"


def icon_key_for_condition(condition_id: int) -> str:
    """Map an OpenWeatherMap condition code to a small-art icon key.

    Based on https://openweathermap.org/weather-conditions
    """
    if 200 <= condition_id <= 232:
        return "ic_storm"
    if 300 <= condition_id <= 321:
        return "ic_light_rain"
    if 500 <= condition_id <= 504:
        return "ic_rain"
    if condition_id == 511:
        return "ic_snow"
    if 520 <= condition_id <= 531:
        return "ic_rain"
    if 600 <= condition_id <= 622:
        return "ic_snow"
    if 701 <= condition_id <= 761:
        return "ic_fog"
    if condition_id in (761, 771, 781):
        return "ic_storm"
    if condition_id == 800:
        return "ic_clear"
    if condition_id == 801:
        return "ic_light_clouds"
    if 802 <= condition_id <= 804:
        return "ic_cloudy"
    if 900 <= condition_id <= 906:
        return "ic_storm"
    if 958 <= condition_id <= 962:
        return "ic_storm"
    if 951 <= condition_id <= 957:
        return "ic_clear"

    _LOGGER.warning("Unknown weather condition id %d", condition_id)
    return "ic_storm"


class DirectoryIconResolver:
    """Resolve condition icons from a directory of ``<icon_key>.png`` files."""

    def __init__(self, icon_dir: Path | str) -> None:
        self._icon_dir = Path(icon_dir)

    def resolve(self, condition_id: int) -> Image.Image:
        """Load the icon for a condition code.

        Raises:
            FileNotFoundError: If the icon file is missing.
        """
        path = self._icon_dir / f"{icon_key_for_condition(condition_id)}.png"
        with Image.open(path) as image:
            image.load()
            return image.copy()


def encode_png(image: Image.Image) -> bytes:
    """Encode a bitmap as lossless PNG bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
