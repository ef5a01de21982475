"""Watch face render engine.

Lifecycle and redraw control for the companion watch face:
- Render state machine (hidden, visible interactive, visible ambient)
- Per-second update timer aligned to wall-clock second boundaries
- Coalesced redraws that read DisplayState and the clock at draw time
- Session and listener wiring tied to visibility

Timer callbacks never hold the engine itself. They carry an integer handle
into an EngineRegistry, so a destroyed engine is simply no longer found.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
import time
from collections.abc import Callable
from datetime import datetime, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo

from PIL import Image

from ..config import FaceStyle, LinkConfig
from ..session import ChannelSession
from .assets import load_bitmap_from_asset
from .canvas import FaceRenderer, WatchFrame
from .display import DisplayState, DisplayStateHolder
from .listener import CompanionListener

_LOGGER = logging.getLogger(__name__)

INTERACTIVE_UPDATE_RATE_MS = 1000

Surface = Callable[[Image.Image], None]


class RenderMode(Enum):
    """Display mode reported by the host."""

    INTERACTIVE = "interactive"
    AMBIENT = "ambient"


class RenderState(Enum):
    """Combined visibility and mode of the watch face."""

    HIDDEN = "hidden"
    VISIBLE_INTERACTIVE = "visible_interactive"
    VISIBLE_AMBIENT = "visible_ambient"


def next_tick_delay_ms(now_ms: int) -> int:
    """Milliseconds until the next whole-second boundary (1..1000)."""
    return INTERACTIVE_UPDATE_RATE_MS - (now_ms % INTERACTIVE_UPDATE_RATE_MS)


def format_clock(moment: datetime, *, seconds: bool) -> str:
    """12-hour clock text; hour 0 reads as 12."""
    hour = moment.hour % 12 or 12
    if seconds:
        return f"{hour}:{moment.minute:02d}:{moment.second:02d}"
    return f"{hour}:{moment.minute:02d}"


class EngineRegistry:
    """Integer handles for engines referenced from scheduled callbacks."""

    def __init__(self) -> None:
        self._engines: dict[int, WatchFaceEngine] = {}
        self._ids = itertools.count(1)

    def register(self, engine: WatchFaceEngine) -> int:
        handle = next(self._ids)
        self._engines[handle] = engine
        return handle

    def get(self, handle: int) -> WatchFaceEngine | None:
        return self._engines.get(handle)

    def release(self, handle: int) -> None:
        self._engines.pop(handle, None)

    def __len__(self) -> int:
        return len(self._engines)


_REGISTRY = EngineRegistry()


def _on_update_time(registry: EngineRegistry, handle: int) -> None:
    engine = registry.get(handle)
    if engine is None:
        return
    engine.handle_update_time()


class WatchFaceEngine:
    """Render engine for one watch face instance.

    Usage:
        engine = WatchFaceEngine(style, display, surface, session=session, listener=listener)
        engine.on_create()
        engine.on_visibility_changed(True)
        ...
        await engine.destroy()
    """

    def __init__(
        self,
        style: FaceStyle,
        display: DisplayStateHolder,
        surface: Surface,
        *,
        session: ChannelSession | None = None,
        listener: CompanionListener | None = None,
        renderer: FaceRenderer | None = None,
        clock: Callable[[], float] = time.time,
        loop: asyncio.AbstractEventLoop | None = None,
        registry: EngineRegistry | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            style: Drawing style and optional fixed time zone
            display: Display state shared with the listener
            surface: Receives every rendered frame
            session: Channel session opened while visible
            listener: Listener registered on the session while connected
            renderer: Frame renderer; built from ``style`` when omitted
            clock: Wall clock in seconds since the epoch
            loop: Event loop; the running loop at ``on_create`` when omitted
            registry: Handle registry for timer callbacks
        """
        self._style = style
        self._display = display
        self._surface = surface
        self._session = session
        self._listener = listener
        self._renderer = renderer or FaceRenderer(style)
        self._clock = clock
        self._loop = loop
        self._registry = registry or _REGISTRY

        self._visible = False
        self._mode = RenderMode.INTERACTIVE
        self._low_bit_ambient = False
        self._tz: tzinfo | None = self._default_time_zone()

        self._handle: int | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._draw_handle: asyncio.Handle | None = None
        self._session_close_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._destroyed = False

    @property
    def node_id(self) -> str:
        return self._session.node_id if self._session else "companion"

    @property
    def state(self) -> RenderState:
        if not self._visible:
            return RenderState.HIDDEN
        if self._mode is RenderMode.AMBIENT:
            return RenderState.VISIBLE_AMBIENT
        return RenderState.VISIBLE_INTERACTIVE

    @property
    def handle(self) -> int | None:
        """Registry handle, None before on_create and after destroy."""
        return self._handle

    @property
    def timer_running(self) -> bool:
        return self._timer is not None

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # -------------------------------------------------------------------------
    # Host events
    # -------------------------------------------------------------------------

    def on_create(self) -> None:
        """Register with the handle registry and wire session callbacks."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._handle = self._registry.register(self)

        if self._listener is not None:
            self._listener.on_updated(self.invalidate)
        if self._session is not None:
            self._session.on_connected(self._on_connected)
            self._session.on_disconnected(self._on_disconnected)
            self._session.on_connection_failed(self._on_connection_failed)

    def on_visibility_changed(self, visible: bool) -> None:
        """Connect while visible and disconnect while hidden."""
        if self._destroyed:
            return
        self._visible = visible

        if visible:
            # Time zone may have changed while hidden
            self._tz = self._default_time_zone()
            self._open_session()
            self.invalidate()
        else:
            self._close_session_soon()

        self._update_timer()

    def on_ambient_mode_changed(self, ambient: bool) -> None:
        if self._destroyed:
            return
        mode = RenderMode.AMBIENT if ambient else RenderMode.INTERACTIVE
        if mode is not self._mode:
            self._mode = mode
            self.invalidate()
        self._update_timer()

    def on_properties_changed(self, *, low_bit_ambient: bool) -> None:
        """Record display capabilities reported by the host."""
        self._low_bit_ambient = low_bit_ambient

    def on_time_tick(self) -> None:
        """Host minute tick; the only clock source while ambient."""
        self.invalidate()

    def on_timezone_changed(self, tz: tzinfo | None = None) -> None:
        self._tz = tz if tz is not None else self._default_time_zone()
        self.invalidate()

    # -------------------------------------------------------------------------
    # Drawing
    # -------------------------------------------------------------------------

    def invalidate(self) -> None:
        """Request a redraw; requests before the draw runs coalesce."""
        if self._destroyed or self._loop is None or self._draw_handle is not None:
            return
        self._draw_handle = self._loop.call_soon(self._draw)

    def compose_frame(self, now: float | None = None) -> WatchFrame:
        """Capture clock, mode and DisplayState into one frame."""
        if now is None:
            now = self._clock()
        state = self._display.get()
        ambient = self._mode is RenderMode.AMBIENT
        low_bit = ambient and self._low_bit_ambient
        moment = datetime.fromtimestamp(now, tz=self._tz)
        return WatchFrame(
            time_text=format_clock(moment, seconds=not ambient),
            high_text=state.high_text,
            low_text=state.low_text,
            icon=state.icon,
            ambient=ambient,
            desaturate_icon=low_bit,
            antialias=not low_bit,
        )

    def handle_update_time(self) -> None:
        """Timer fired: redraw and re-arm for the next second boundary."""
        self._timer = None
        if self._destroyed:
            return
        self.invalidate()
        if self._should_timer_be_running():
            self._arm_timer()

    def _draw(self) -> None:
        self._draw_handle = None
        if self._destroyed or not self._visible:
            return
        try:
            self._surface(self._renderer.render(self.compose_frame()))
        except Exception as err:
            _LOGGER.exception("[%s] Draw failed: %s", self.node_id, err)

    # -------------------------------------------------------------------------
    # Update timer
    # -------------------------------------------------------------------------

    def _should_timer_be_running(self) -> bool:
        return self.state is RenderState.VISIBLE_INTERACTIVE

    def _update_timer(self) -> None:
        self._cancel_timer()
        if self._should_timer_be_running():
            self._arm_timer()

    def _arm_timer(self) -> None:
        if self._loop is None or self._handle is None:
            return
        delay_ms = next_tick_delay_ms(int(self._clock() * 1000))
        self._timer = self._loop.call_later(
            delay_ms / 1000, _on_update_time, self._registry, self._handle
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # -------------------------------------------------------------------------
    # Session wiring
    # -------------------------------------------------------------------------

    def _open_session(self) -> None:
        if self._session is None or self._loop is None:
            return
        closing = self._session_close_task
        if closing is not None and not closing.done():
            self._track(self._loop.create_task(self._open_after(closing)))
        else:
            self._session.open()

    async def _open_after(self, closing: asyncio.Task[None]) -> None:
        await closing
        if self._visible and not self._destroyed and self._session is not None:
            self._session.open()

    def _close_session_soon(self) -> None:
        if self._session is None or self._loop is None:
            return
        if self._listener is not None:
            self._session.remove_data_listener(self._listener.on_push)
        if self._session_close_task is None or self._session_close_task.done():
            task = self._loop.create_task(self._session.close())
            self._session_close_task = task
            self._track(task)

    def _track(self, task: asyncio.Task[None]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_connected(self) -> None:
        _LOGGER.debug("[%s] Connection successful", self.node_id)
        if self._session is not None and self._listener is not None:
            self._session.add_data_listener(self._listener.on_push)

    def _on_disconnected(self) -> None:
        _LOGGER.debug("[%s] Connection suspended", self.node_id)

    def _on_connection_failed(self, err: Exception) -> None:
        _LOGGER.debug("[%s] Connection failed: %s", self.node_id, err)

    def _default_time_zone(self) -> tzinfo | None:
        if self._style.time_zone:
            return ZoneInfo(self._style.time_zone)
        return None

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def destroy(self) -> None:
        """Stop the timer, drop the listener and close the session, once."""
        if self._destroyed:
            return
        self._destroyed = True

        try:
            self._cancel_timer()
            if self._draw_handle is not None:
                self._draw_handle.cancel()
                self._draw_handle = None
            if self._handle is not None:
                self._registry.release(self._handle)
                self._handle = None
        finally:
            try:
                if self._session is not None:
                    if self._listener is not None:
                        self._session.remove_data_listener(self._listener.on_push)
                    closing = self._session_close_task
                    if closing is not None and not closing.done():
                        await closing
                    await self._session.close()
            finally:
                if self._listener is not None:
                    await self._listener.close()
                for task in list(self._tasks):
                    task.cancel()
                _LOGGER.debug("[%s] Watch face destroyed", self.node_id)


def build_watch_face(
    config: LinkConfig,
    surface: Surface,
    *,
    clock: Callable[[], float] = time.time,
    loop: asyncio.AbstractEventLoop | None = None,
) -> WatchFaceEngine:
    """Assemble display state, listener, session and engine from config."""
    style = config.face
    display = DisplayStateHolder(DisplayState.initial(style))
    asset_loader = functools.partial(
        load_bitmap_from_asset,
        host=config.hub.host,
        port=config.hub.port,
        node_id=config.node_id,
        path=config.hub.path,
        timeout=config.session.blocking_connect_timeout,
    )
    listener = CompanionListener(display, asset_loader, node_id=config.node_id)
    session = ChannelSession.from_config(config)
    return WatchFaceEngine(
        style,
        display,
        surface,
        session=session,
        listener=listener,
        clock=clock,
        loop=loop,
    )
