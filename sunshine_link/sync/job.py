"""Diff-triggered sync job.

One run of the job refreshes the local weather store and pushes to the
companion only what changed:

1. Read the ``before`` snapshot.
2. Run the refresh collaborator (slow, failure-prone, errors absorbed).
3. Tell the scheduler the job is finished. Its deadline covers the refresh
   only; pushing is a best-effort side activity.
4. Read the ``after`` snapshot.
5. Diff and push an InfoPayload and/or an ImagePayload.

Cancellation is cooperative: the token is checked between the steps above
and never interrupts a send, so the companion only ever sees whole payloads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from PIL import Image

from ..domains.weather import (
    SnapshotDiff,
    WeatherSnapshot,
    diff_snapshots,
    encode_png,
    format_temperature,
)
from ..push import ImagePayload, InfoPayload, PushTransport, observe_delivery

_LOGGER = logging.getLogger(__name__)


class JobState(Enum):
    """Lifecycle of a SyncJob run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, eq=False)
class JobParameters:
    """Opaque scheduler token for one job invocation.

    Attributes:
        tag: Scheduler job tag.
        extras: Scheduler-supplied extras, passed through untouched.
    """

    tag: str
    extras: Mapping[str, Any] = field(default_factory=lambda: {})


class CancellationToken:
    """Advisory cancellation flag checked by the job at its checkpoints."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class WeatherStore(Protocol):
    """Query surface of the local weather store."""

    def query_latest_snapshot(self) -> WeatherSnapshot:
        """Return today's reading, WeatherSnapshot.UNKNOWN when empty."""
        ...


class IconResolver(Protocol):
    """Resolves condition codes to icon bitmaps."""

    def resolve(self, condition_id: int) -> Image.Image:
        ...


FinishCallback = Callable[[JobParameters, bool], None]


class SyncJob:
    """Refresh local weather, diff, and push changes to the companion."""

    def __init__(
        self,
        store: WeatherStore,
        refresh: Callable[[], None],
        transport: PushTransport,
        icon_resolver: IconResolver,
        *,
        formatter: Callable[[float], str] = format_temperature,
        urgent: bool = True,
    ) -> None:
        self._store = store
        self._refresh = refresh
        self._transport = transport
        self._icon_resolver = icon_resolver
        self._format = formatter
        self._urgent = urgent
        self._state = JobState.IDLE

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def node_id(self) -> str:
        return self._transport.session.node_id

    async def run(
        self,
        params: JobParameters,
        finish: FinishCallback,
        token: CancellationToken,
    ) -> JobState:
        """Run one sync cycle.

        ``finish`` is called exactly once: with False right after the
        refresh, or with True when the run is cancelled or fails before that.

        Returns:
            COMPLETED or CANCELLED.
        """
        if self._state is JobState.RUNNING:
            raise RuntimeError("Sync job is already running")

        self._state = JobState.RUNNING
        finished = False

        def report(reschedule: bool) -> None:
            nonlocal finished
            if finished:
                return
            finished = True
            _LOGGER.debug(
                "[%s] Job %s finished (reschedule=%s)",
                self.node_id,
                params.tag,
                reschedule,
            )
            finish(params, reschedule)

        try:
            self._state = await self._run_cycle(params, report, token)
        except Exception as err:
            _LOGGER.exception(
                "[%s] Sync job %s failed: %s", self.node_id, params.tag, err
            )
            report(True)
            self._state = JobState.COMPLETED
        finally:
            if self._state is JobState.RUNNING:
                # Task cancelled from outside (service teardown)
                self._state = JobState.CANCELLED
            report(True)
        return self._state

    async def _run_cycle(
        self,
        params: JobParameters,
        report: Callable[[bool], None],
        token: CancellationToken,
    ) -> JobState:
        _LOGGER.info("[%s] Sync job %s started", self.node_id, params.tag)

        before = self._store.query_latest_snapshot()
        if token.cancelled:
            return self._abandon(params, report, "before refresh")

        await self._refresh_local_weather()
        if token.cancelled:
            return self._abandon(params, report, "after refresh")

        report(False)

        after = self._store.query_latest_snapshot()
        if token.cancelled:
            return self._abandon(params, report, "before push")

        diff = diff_snapshots(before, after)
        if not diff.any_changed:
            _LOGGER.debug("[%s] Weather unchanged, nothing to push", self.node_id)
            return JobState.COMPLETED

        await self._push_changes(diff, after)
        return JobState.COMPLETED

    def _abandon(
        self,
        params: JobParameters,
        report: Callable[[bool], None],
        checkpoint: str,
    ) -> JobState:
        _LOGGER.info(
            "[%s] Sync job %s cancelled %s", self.node_id, params.tag, checkpoint
        )
        report(True)
        return JobState.CANCELLED

    async def _refresh_local_weather(self) -> None:
        try:
            await asyncio.to_thread(self._refresh)
        except Exception as err:
            # The store keeps its previous reading, so the diff suppresses pushes.
            _LOGGER.warning("[%s] Weather refresh failed: %s", self.node_id, err)

    async def _push_changes(self, diff: SnapshotDiff, after: WeatherSnapshot) -> None:
        session = self._transport.session
        if not session.is_connected:
            # A failed connect is reported by the session; sends then resolve
            # NOT_CONNECTED and the next scheduled run retries.
            await session.connect()

        high, low = after.high_temp_c, after.low_temp_c
        if diff.temperatures_changed and high is not None and low is not None:
            payload = InfoPayload(high_display=self._format(high), low_display=self._format(low))
            observe_delivery(
                self._transport.send_info(payload, urgent=self._urgent),
                "weather info",
                node_id=self.node_id,
            )

        condition_id = after.condition_id
        if diff.condition_changed and condition_id is not None:
            try:
                image_bytes = await asyncio.to_thread(self._icon_png, condition_id)
            except (OSError, ValueError) as err:
                _LOGGER.warning(
                    "[%s] No icon for condition %d: %s", self.node_id, condition_id, err
                )
                return
            observe_delivery(
                self._transport.send_image(
                    ImagePayload(image_bytes=image_bytes), urgent=self._urgent
                ),
                "weather image",
                node_id=self.node_id,
            )

    def _icon_png(self, condition_id: int) -> bytes:
        return encode_png(self._icon_resolver.resolve(condition_id))
