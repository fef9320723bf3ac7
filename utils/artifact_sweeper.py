"""Helpers to remove expired screenshot files from the artifacts directory."""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Callable, Iterable

from services.artifact_store import IMAGE_EXTENSIONS

logger = logging.getLogger(__name__)


class ArtifactSweeper:
    """Delete screenshot files older than the configured time-to-live."""

    def __init__(
        self,
        directory: Path,
        ttl_seconds: float = 1_800,
        clock: Callable[[], float] = time.time,
        extensions: Iterable[str] = IMAGE_EXTENSIONS,
    ) -> None:
        """
        Args:
            directory: Directory holding persisted screenshots.
            ttl_seconds: Age threshold in seconds; files older than this are removed.
            clock: Wall-clock source compared against file modification times.
            extensions: Lower-case suffixes considered screenshot artifacts.
        """
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._extensions = tuple(extensions)

    async def sweep(self) -> int:
        """Delete expired artifacts and return how many were removed."""
        return await asyncio.to_thread(self._sweep_once)

    def _sweep_once(self) -> int:
        now = self._clock()
        removed = 0
        try:
            entries = list(os.scandir(self.directory))
        except FileNotFoundError:
            return 0
        except OSError as exc:
            logger.error("Cannot list %s: %s", self.directory, exc)
            return 0

        for entry in entries:
            if not entry.name.lower().endswith(self._extensions):
                continue
            try:
                if not entry.is_file():
                    continue
                if now - entry.stat().st_mtime > self.ttl_seconds:
                    os.unlink(entry.path)
                    removed += 1
            except OSError as exc:
                logger.error("Failed to sweep %s: %s", entry.name, exc)

        if removed:
            logger.info("Removed %d expired screenshot(s)", removed)
        return removed

    async def run_periodic(self, interval_seconds: float = 60) -> None:
        """
        Repeatedly sweep at the given interval until cancelled.

        Args:
            interval_seconds: Seconds to sleep between sweeps.
        """
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Screenshot sweep failed: %s", exc)
