"""
Background sweeper for the shared temporary directory.

Sessions clean up after themselves; the sweeper reclaims what crashed or
abandoned sessions left behind. It knows nothing about ownership and removes
any regular file older than the retention window, so a session whose
pipeline runs longer than that window can lose an in-flight file. Files
vanishing under the sweeper (a session cleaning up concurrently) are normal.
"""

import asyncio
import contextlib
import os
import time
from typing import Optional

from agi_tts.core.temp_resources import DEFAULT_TEMP_DIR, ensure_temp_dir, remove_path
from agi_tts.errors import CleanupError
from agi_tts.logging_config import get_logger
from agi_tts.metrics import ARTIFACTS_DELETED, CLEANUP_FAILURES

logger = get_logger(__name__)

DEFAULT_MAX_AGE_SECONDS = 60 * 60
DEFAULT_INTERVAL_SECONDS = 60 * 60


def sweep_once(directory: str, max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS, now: Optional[float] = None) -> int:
    """
    Delete files in ``directory`` last modified before ``now - max_age_seconds``.

    Never raises; returns the number of files removed.
    """
    if now is None:
        now = time.time()
    threshold = now - max_age_seconds

    try:
        entries = list(os.scandir(directory))
    except FileNotFoundError:
        logger.debug("Temporary directory missing; nothing to sweep", directory=directory)
        return 0
    except OSError as e:
        logger.error("Error listing temporary directory", directory=directory, error=str(e))
        return 0

    removed = 0
    for entry in entries:
        try:
            if not entry.is_file(follow_symlinks=False):
                continue
            mtime = entry.stat(follow_symlinks=False).st_mtime
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Error inspecting temporary file", file_path=entry.path, error=str(e))
            continue

        if mtime >= threshold:
            logger.debug("Temporary file kept", file_path=entry.path, age_seconds=round(now - mtime, 1))
            continue

        try:
            if remove_path(entry.path):
                removed += 1
                ARTIFACTS_DELETED.labels(actor="sweeper").inc()
                logger.info("Old temporary file removed", file_path=entry.path)
        except CleanupError as e:
            CLEANUP_FAILURES.labels(actor="sweeper").inc()
            logger.warning("Error removing old temporary file", file_path=entry.path, error=e.message)

    return removed


class BackgroundSweeper:
    """Periodic sweep task: once at start, every ``interval_seconds``, once at stop."""

    def __init__(
        self,
        directory: str = DEFAULT_TEMP_DIR,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        self.directory = directory
        self.max_age_seconds = max_age_seconds
        self.interval_seconds = interval_seconds
        self.sweeps_completed = 0
        self.files_removed = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> int:
        removed = sweep_once(self.directory, self.max_age_seconds)
        self.sweeps_completed += 1
        self.files_removed += removed
        logger.info("Temporary directory swept",
                    directory=self.directory,
                    removed=removed,
                    max_age_seconds=self.max_age_seconds)
        return removed

    async def start(self) -> None:
        if self.running:
            logger.warning("Sweeper already running")
            return
        try:
            ensure_temp_dir(self.directory)
            logger.info("Temporary directory ready", directory=self.directory)
        except OSError as e:
            logger.error("Error creating temporary directory", directory=self.directory, error=str(e))
        self.sweep()
        self._task = asyncio.create_task(self._loop(), name="tts-temp-sweeper")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self.sweep()
        logger.info("Sweeper stopped", sweeps=self.sweeps_completed, files_removed=self.files_removed)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.error("Periodic sweep failed", error=str(e), exc_info=True)
