"""Companion-side display state, push listener and watch face engine."""

from .assets import decode_bitmap, load_bitmap_from_asset
from .canvas import FaceRenderer, WatchFrame
from .display import DisplayState, DisplayStateHolder
from .listener import AssetLoader, CompanionListener
from .render import (
    EngineRegistry,
    RenderMode,
    RenderState,
    WatchFaceEngine,
    build_watch_face,
    format_clock,
    next_tick_delay_ms,
)

__all__ = [
    "AssetLoader",
    "CompanionListener",
    "DisplayState",
    "DisplayStateHolder",
    "EngineRegistry",
    "FaceRenderer",
    "RenderMode",
    "RenderState",
    "WatchFaceEngine",
    "WatchFrame",
    "build_watch_face",
    "decode_bitmap",
    "format_clock",
    "load_bitmap_from_asset",
    "next_tick_delay_ms",
]
