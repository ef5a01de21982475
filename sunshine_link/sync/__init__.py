"""Primary-side synchronization: the diff-triggered job and its scheduler boundary."""

from .job import (
    CancellationToken,
    FinishCallback,
    IconResolver,
    JobParameters,
    JobState,
    SyncJob,
    WeatherStore,
)
from .service import SyncJobService, build_sync_service

__all__ = [
    "CancellationToken",
    "FinishCallback",
    "IconResolver",
    "JobParameters",
    "JobState",
    "SyncJob",
    "SyncJobService",
    "WeatherStore",
    "build_sync_service",
]
