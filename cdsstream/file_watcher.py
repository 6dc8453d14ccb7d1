"""Polling watcher that reports file creation, deletion and modification."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

FileChangeCallback = Callable[[Path, bool], None]


@dataclass
class _WatchInfo:
    path: Path
    callback: Optional[FileChangeCallback]
    exists: bool
    last_write_time: Optional[int] = None


class FileWatcher:
    """Polls watched paths and calls ``callback(path, exists)`` on changes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._watched: dict[str, _WatchInfo] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._interval = 1.0

    def watch(self, path: Union[str, os.PathLike], callback: Optional[FileChangeCallback]) -> None:
        """Start watching ``path``; replaces any earlier watch on it."""
        path = Path(path)
        info = _WatchInfo(path=path, callback=callback, exists=path.exists())
        if info.exists:
            try:
                info.last_write_time = path.stat().st_mtime_ns
            except OSError as exc:
                logger.warning("Failed to get last write time for %s: %s", path, exc)
        with self._lock:
            self._watched[str(path)] = info
        logger.info("Watching path: %s (exists: %s)", path, info.exists)

    def unwatch(self, path: Union[str, os.PathLike]) -> None:
        """Stop watching ``path``."""
        with self._lock:
            self._watched.pop(str(Path(path)), None)
        logger.info("Stopped watching path: %s", path)

    def start(self, check_interval: float = 1.0) -> None:
        """Poll in a background thread every ``check_interval`` seconds."""
        if self._thread is not None:
            logger.warning("FileWatcher already running")
            return
        self._interval = check_interval
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        logger.info("FileWatcher started with interval: %.0fms", check_interval * 1000)

    def stop(self) -> None:
        """Stop the background thread, if running."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join()
        self._thread = None
        logger.info("FileWatcher stopped")

    def check_for_changes(self) -> None:
        """Check every watched path once and report what changed."""
        with self._lock:
            for key, info in self._watched.items():
                try:
                    exists_now = info.path.exists()
                    if exists_now != info.exists:
                        info.exists = exists_now
                        if info.callback is not None:
                            info.callback(info.path, exists_now)
                        logger.debug("File %s existence changed to: %s", key, exists_now)
                        continue
                    if exists_now:
                        write_time = info.path.stat().st_mtime_ns
                        if write_time != info.last_write_time:
                            info.last_write_time = write_time
                            if info.callback is not None:
                                info.callback(info.path, True)
                            logger.debug("File %s was modified", key)
                except Exception as exc:  # noqa: BLE001 - one bad path must not stop the rest
                    logger.error("Error checking file %s: %s", key, exc)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.check_for_changes()
            self._stop_event.wait(self._interval)