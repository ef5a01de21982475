"""Configuration loading for Sunshine Link nodes.

A node is configured from one YAML file. Every section is optional and
missing keys keep their defaults. Configuration is treated as data: the
loaded dataclasses are frozen and passed explicitly to the components that
need them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, get_args, get_type_hints
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml


class ConfigLoadError(Exception):
    """Error loading or validating a configuration file."""


@dataclass(frozen=True)
class HubConfig:
    """Where the data-layer hub listens.

    Attributes:
        host: Hub hostname or IP.
        port: Hub port.
        path: WebSocket path.
    """

    host: str = "127.0.0.1"
    port: int = 8765
    path: str = "/link"


@dataclass(frozen=True)
class SessionConfig:
    """Channel session timing.

    Attributes:
        connect_timeout: Socket connect plus hello budget (seconds).
        delivery_timeout: How long a push waits for its result (seconds).
        blocking_connect_timeout: Bound for the one-shot asset channel (seconds).
        ping_interval: WebSocket keepalive interval (seconds).
    """

    connect_timeout: float = 15.0
    delivery_timeout: float = 30.0
    blocking_connect_timeout: float = 10.0
    ping_interval: int = 20


@dataclass(frozen=True)
class SyncConfig:
    """Primary-side sync job settings.

    Attributes:
        urgent: Mark pushes urgent (advisory delivery hint).
        metric: Display Celsius (True) or Fahrenheit (False).
        icon_dir: Directory holding ``<icon_key>.png`` condition icons.
    """

    urgent: bool = True
    metric: bool = True
    icon_dir: str = "icons"


@dataclass(frozen=True)
class FaceStyle:
    """Watch face drawing style, owned by the render component.

    Attributes:
        width: Surface width in pixels.
        height: Surface height in pixels.
        background_color: Interactive background.
        ambient_background_color: Ambient background.
        text_color: Time and temperature text.
        separator_color: Vertical mark between high and low.
        time_text_size: Time font size.
        weather_text_size: Temperature font size.
        time_y_offset: Baseline of the time text.
        content_y_offset: Top of the weather icon.
        icon_size: Edge of the placeholder icon.
        placeholder_high: High text shown before any push.
        placeholder_low: Low text shown before any push.
        placeholder_icon: Optional PNG shown before any push.
        font_path: Optional TrueType font; Pillow's default font otherwise.
        time_zone: IANA zone name, None for host local time.
    """

    width: int = 320
    height: int = 320
    background_color: str = "#03A9F4"
    ambient_background_color: str = "#000000"
    text_color: str = "#FFFFFF"
    separator_color: str = "#FFFFFF"
    time_text_size: int = 40
    weather_text_size: int = 28
    time_y_offset: int = 90
    content_y_offset: int = 130
    icon_size: int = 64
    placeholder_high: str = "--"
    placeholder_low: str = "--"
    placeholder_icon: str | None = None
    font_path: str | None = None
    time_zone: str | None = None


@dataclass(frozen=True)
class LinkConfig:
    """Complete node configuration."""

    node_id: str = "node"
    hub: HubConfig = field(default_factory=HubConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    face: FaceStyle = field(default_factory=FaceStyle)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigLoadError(f"File not found: {path}")
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as err:
        raise ConfigLoadError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Top level of {path} must be a mapping")
    return data


def _build_section(cls: type[Any], data: Any, section: str) -> Any:
    """Build a frozen section dataclass from a mapping, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Section '{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigLoadError(f"Unknown keys in '{section}': {', '.join(unknown)}")

    hints = get_type_hints(cls)
    for name, value in data.items():
        if not _matches_type(value, hints[name]):
            raise ConfigLoadError(
                f"{section}.{name} has wrong type: expected {_type_name(hints[name])}, "
                f"got {type(value).__name__}"
            )
    return cls(**data)


def _matches_type(value: Any, expected: Any) -> bool:
    """Check a YAML scalar against a field annotation.

    YAML integers are accepted for float fields; booleans only for bool fields.
    """
    members = get_args(expected)
    if members:
        return any(_matches_type(value, member) for member in members)
    if expected is type(None):
        return value is None
    if isinstance(value, bool):
        return expected is bool
    if expected is float:
        return isinstance(value, (int, float))
    return isinstance(value, expected)


def _type_name(expected: Any) -> str:
    members = get_args(expected)
    if members:
        return " or ".join(_type_name(member) for member in members)
    return "null" if expected is type(None) else expected.__name__


def _check_time_zone(name: str | None) -> None:
    if name is None:
        return
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ModuleNotFoundError, ValueError) as err:
        raise ConfigLoadError(f"face.time_zone is not a known zone: {name}") from err


def parse_config(data: dict[str, Any]) -> LinkConfig:
    """Build a LinkConfig from an already-parsed mapping."""
    config = LinkConfig(
        node_id=str(data.get("node_id", "node")),
        hub=_build_section(HubConfig, data.get("hub"), "hub"),
        session=_build_section(SessionConfig, data.get("session"), "session"),
        sync=_build_section(SyncConfig, data.get("sync"), "sync"),
        face=_build_section(FaceStyle, data.get("face"), "face"),
    )

    if not 0 < config.hub.port < 65536:
        raise ConfigLoadError(f"hub.port out of range: {config.hub.port}")
    if not config.hub.path.startswith("/"):
        raise ConfigLoadError(f"hub.path must start with '/': {config.hub.path}")
    for name in ("connect_timeout", "delivery_timeout", "blocking_connect_timeout"):
        if getattr(config.session, name) <= 0:
            raise ConfigLoadError(f"session.{name} must be positive")
    if config.face.width <= 0 or config.face.height <= 0:
        raise ConfigLoadError("face.width and face.height must be positive")
    _check_time_zone(config.face.time_zone)
    return config


def load_config(path: Path | str) -> LinkConfig:
    """Load a node configuration file.

    Raises:
        ConfigLoadError: If the file is missing, unparsable or invalid.
    """
    return parse_config(_load_yaml(Path(path)))
