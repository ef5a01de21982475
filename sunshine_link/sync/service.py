"""Scheduler-facing boundary for the sync job.

The external scheduler drives this service through ``on_start_job`` and
``on_stop_job`` and is told about completion through its ``finish``
callback. The service owns the channel session used for pushing: it opens it
on creation and closes it exactly once on destruction.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Callable

from ..config import LinkConfig
from ..domains.weather import DirectoryIconResolver, format_temperature
from ..errors import LinkConnectError
from ..push import PushTransport
from ..session import ChannelSession
from .job import (
    CancellationToken,
    FinishCallback,
    JobParameters,
    JobState,
    SyncJob,
    WeatherStore,
)

_LOGGER = logging.getLogger(__name__)


class SyncJobService:
    """Run SyncJob invocations on background tasks."""

    def __init__(
        self,
        job: SyncJob,
        session: ChannelSession,
        finish: FinishCallback,
        *,
        stop_timeout: float = 5.0,
    ) -> None:
        """Initialize service.

        Args:
            job: Job executed for every scheduler invocation
            session: Session the job pushes through (owned by this service)
            finish: Scheduler completion callback
            stop_timeout: How long destruction waits for a cancelled job (seconds)
        """
        self._job = job
        self._session = session
        self._finish = finish
        self._stop_timeout = stop_timeout

        self._running: tuple[JobParameters, asyncio.Task[JobState], CancellationToken] | None = None
        self._destroyed = False

    @property
    def node_id(self) -> str:
        return self._session.node_id

    @property
    def running_job(self) -> asyncio.Task[JobState] | None:
        """Task of the job currently running, if any."""
        return self._running[1] if self._running else None

    def on_create(self) -> None:
        """Wire session callbacks and start connecting."""
        self._session.on_connected(self._on_connected)
        self._session.on_disconnected(self._on_disconnected)
        self._session.on_connection_failed(self._on_connection_failed)
        self._session.open()

    def on_start_job(self, params: JobParameters) -> bool:
        """Start a job run in the background.

        Returns:
            True while work is pending (the run reports through ``finish``),
            False when the job could not be started.
        """
        if self._destroyed:
            _LOGGER.warning("[%s] Job %s refused: service destroyed", self.node_id, params.tag)
            return False
        if self._running is not None:
            _LOGGER.warning(
                "[%s] Job %s refused: %s still running",
                self.node_id,
                params.tag,
                self._running[0].tag,
            )
            return False

        token = CancellationToken()
        task = asyncio.get_running_loop().create_task(
            self._job.run(params, self._finish, token)
        )
        entry = (params, task, token)
        self._running = entry

        def _clear(_: asyncio.Task[JobState]) -> None:
            if self._running is entry:
                self._running = None

        task.add_done_callback(_clear)
        return True

    def on_stop_job(self, params: JobParameters) -> bool:
        """Scheduler revoked the execution slot.

        Returns:
            True, asking the scheduler to run the job again later.
        """
        if self._running is not None and self._running[0] is params:
            _LOGGER.info("[%s] Stopping job %s", self.node_id, params.tag)
            self._running[2].cancel()
        return True

    async def on_destroy(self) -> None:
        """Cancel any running job and close the session exactly once."""
        if self._destroyed:
            return
        self._destroyed = True

        try:
            if self._running is not None:
                _, task, token = self._running
                token.cancel()
                done, _ = await asyncio.wait({task}, timeout=self._stop_timeout)
                if not done:
                    _LOGGER.warning(
                        "[%s] Job did not reach a checkpoint in %.1fs, cancelling",
                        self.node_id,
                        self._stop_timeout,
                    )
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
        finally:
            await self._session.close()

    def _on_connected(self) -> None:
        _LOGGER.debug("[%s] Connection successful", self.node_id)

    def _on_disconnected(self) -> None:
        _LOGGER.debug("[%s] Connection suspended", self.node_id)

    def _on_connection_failed(self, err: LinkConnectError) -> None:
        _LOGGER.debug("[%s] Connection failed: %s", self.node_id, err)


def build_sync_service(
    config: LinkConfig,
    store: WeatherStore,
    refresh: Callable[[], None],
    finish: FinishCallback,
) -> SyncJobService:
    """Assemble session, transport, job and service from config."""
    session = ChannelSession.from_config(config)
    job = SyncJob(
        store,
        refresh,
        PushTransport(session),
        DirectoryIconResolver(config.sync.icon_dir),
        formatter=functools.partial(format_temperature, metric=config.sync.metric),
        urgent=config.sync.urgent,
    )
    return SyncJobService(job, session, finish)
