"""
Scratch directories for compilations.

Every request compiles in its own ``compile-<ms>-<random>`` directory under
the temp root, removed as soon as the request finishes. Anything a crashed
process leaves behind is swept by ``cleanup_stale`` on startup and then on a
fixed interval by a background task.

Usage
-----
    from app.services.workspace import workspace

    async with workspace.work_dir() as work_dir:
        outcome = await compiler.compile(source, work_dir)
"""
from __future__ import annotations

import asyncio
import logging
import os
import secrets
import shutil
import string
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Union

import aiofiles.os

from app.config import settings

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def new_work_dir_name() -> str:
    """Unique directory name: epoch milliseconds plus 9 random base36 characters."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"compile-{int(time.time() * 1000)}-{suffix}"


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class Workspace:
    """Owns the temp root and the per-request directories beneath it."""

    def __init__(self, root: Union[str, Path, None] = None) -> None:
        self.root = Path(root or settings.TEMP_DIR)
        self._cleanup_task: Optional[asyncio.Task] = None

    async def ensure_root(self) -> Path:
        await aiofiles.os.makedirs(self.root, exist_ok=True)
        return self.root

    @asynccontextmanager
    async def work_dir(self) -> AsyncIterator[Path]:
        """Create a fresh directory, yield it, and always remove it afterwards."""
        path = self.root / new_work_dir_name()
        await aiofiles.os.makedirs(path, exist_ok=True)
        try:
            yield path
        finally:
            try:
                await asyncio.to_thread(shutil.rmtree, path, False)
            except OSError as exc:
                logger.error("Error cleaning up work directory %s: %s", path, exc)

    # ------------------------------------------------------------------
    # Stale entry cleanup
    # ------------------------------------------------------------------

    def _cleanup_stale_sync(self, max_age: float) -> int:
        if not self.root.is_dir():
            return 0

        now = time.time()
        removed = 0
        for entry in os.scandir(self.root):
            path = Path(entry.path)
            try:
                age = now - entry.stat(follow_symlinks=False).st_mtime
                if age <= max_age:
                    continue
                _remove_path(path)
                removed += 1
            except OSError as exc:
                logger.warning("Could not remove stale entry %s: %s", path, exc)
        return removed

    async def cleanup_stale(self, max_age: Optional[float] = None) -> int:
        """
        Remove files and directories under the root older than *max_age* seconds.

        Returns the number of entries removed.
        """
        max_age = max_age if max_age is not None else settings.STALE_FILE_MAX_AGE_SECONDS
        removed = await asyncio.to_thread(self._cleanup_stale_sync, max_age)
        if removed:
            logger.info("Removed %d stale entr%s from %s", removed, "y" if removed == 1 else "ies", self.root)
        return removed

    def is_cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def start_periodic_cleanup(
        self,
        interval: Optional[float] = None,
        max_age: Optional[float] = None,
    ) -> asyncio.Task:
        """Launch the background sweep. Calling it twice returns the running task."""
        if self.is_cleanup_running():
            return self._cleanup_task

        interval = interval if interval is not None else settings.CLEANUP_INTERVAL_SECONDS

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.cleanup_stale(max_age)
                except Exception as exc:
                    logger.error("Periodic cleanup failed: %s", exc, exc_info=True)

        self._cleanup_task = asyncio.create_task(_loop())
        logger.info("Periodic cleanup started (every %ss) for %s", interval, self.root)
        return self._cleanup_task

    async def stop_periodic_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


# Module-level singleton instance
workspace = Workspace()


def get_workspace() -> Workspace:
    """FastAPI dependency returning the shared workspace."""
    return workspace
