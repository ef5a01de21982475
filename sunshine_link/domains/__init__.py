"""Domain-specific data structures and helpers."""

from .weather import (
    DirectoryIconResolver,
    SnapshotDiff,
    WeatherSnapshot,
    diff_snapshots,
    encode_png,
    format_temperature,
    icon_key_for_condition,
)

__all__ = [
    "DirectoryIconResolver",
    "SnapshotDiff",
    "WeatherSnapshot",
    "diff_snapshots",
    "encode_png",
    "format_temperature",
    "icon_key_for_condition",
]
