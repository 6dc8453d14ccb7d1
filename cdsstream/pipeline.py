"""Capture pipeline model: dynamic per-peer UDP branches and frame statistics."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Optional

from cdsstream.pipeline_layout import (
    CameraDevice,
    NoPortAvailableError,
    PipelineConfig,
    PortAllocator,
    StreamType,
    build_pipeline_string,
    tee_name,
)

logger = logging.getLogger(__name__)

_MAX_PIPELINE_DEVICES = 2
_FPS_WINDOW = 1.0
_FPS_SMOOTHING = 0.1


@dataclass
class DynamicStreamInfo:
    """A per-peer branch hanging off one of the encoder tees."""

    peer_id: str
    device: CameraDevice
    type: StreamType
    port: int
    active: bool = False


@dataclass
class StreamStatistics:
    """Frame counters for one camera."""

    frames_processed: int = 0
    current_fps: float = 0.0
    average_fps: float = 0.0


@dataclass
class _FpsWindow:
    last_time: float
    last_frame_count: int = 0


class Pipeline:
    """Tracks the pipeline's tees, dynamic UDP sinks, port usage and frame rates."""

    def __init__(self, config: PipelineConfig) -> None:
        logger.info("Creating pipeline with %d cameras", config.cameras)
        self._config = config
        self._pipeline_string = build_pipeline_string(config)
        logger.debug("Pipeline string length: %d", len(self._pipeline_string))
        self._tees = {
            tee_name(CameraDevice(i), stream_type)
            for i in range(min(len(config.videos), _MAX_PIPELINE_DEVICES))
            for stream_type in StreamType
        }
        self._ports = PortAllocator(config.base_port, config.cameras)
        self._streams: dict[str, DynamicStreamInfo] = {}
        self._stream_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats: dict[CameraDevice, StreamStatistics] = {}
        self._fps_windows: dict[CameraDevice, _FpsWindow] = {}
        self._running = False

    @property
    def pipeline_string(self) -> str:
        """The launch description the pipeline is built from."""
        return self._pipeline_string

    def add_dynamic_stream(
        self, peer_id: str, device: CameraDevice, stream_type: StreamType
    ) -> int:
        """Attach a UDP branch for ``peer_id`` and return its port.

        Raises ValueError if the peer already has a stream or the device has no
        tee, and NoPortAvailableError when the port range is exhausted.
        """
        device = CameraDevice(device)
        stream_type = StreamType(stream_type)
        with self._stream_lock:
            if peer_id in self._streams:
                logger.warning("Stream already exists for peer: %s", peer_id)
                raise ValueError(f"Stream already exists for peer: {peer_id}")
            port = self._ports.allocate()
            name = tee_name(device, stream_type)
            if name not in self._tees:
                self._ports.release(port)
                logger.error("Tee element not found: %s", name)
                raise ValueError(f"Tee element not found: {name}")
            self._streams[peer_id] = DynamicStreamInfo(
                peer_id=peer_id,
                device=device,
                type=stream_type,
                port=port,
                active=True,
            )
        logger.info(
            "Added dynamic stream for peer %s on port %d (device: %d, type: %d)",
            peer_id, port, device, stream_type,
        )
        return port

    def remove_dynamic_stream(self, peer_id: str) -> None:
        """Detach the peer's branch and free its port; KeyError if unknown."""
        with self._stream_lock:
            info = self._streams.pop(peer_id, None)
            if info is None:
                logger.warning("Stream not found for peer: %s", peer_id)
                raise KeyError(peer_id)
            info.active = False
            self._ports.release(info.port)
        logger.info("Removed dynamic stream for peer: %s", peer_id)

    def get_dynamic_stream_info(self, peer_id: str) -> Optional[DynamicStreamInfo]:
        """A copy of the peer's stream info, or None."""
        with self._stream_lock:
            info = self._streams.get(peer_id)
            return replace(info) if info is not None else None

    def active_peer_ids(self) -> list[str]:
        """Peers whose branch is currently active."""
        with self._stream_lock:
            return [peer_id for peer_id, info in self._streams.items() if info.active]

    def add_stream(
        self, peer_id: str, device: CameraDevice, stream_type: StreamType
    ) -> bool:
        """Like add_dynamic_stream, but report failure as False."""
        try:
            self.add_dynamic_stream(peer_id, device, stream_type)
        except (ValueError, NoPortAvailableError) as exc:
            logger.error("Failed to add stream for peer %s: %s", peer_id, exc)
            return False
        return True

    def remove_stream(self, peer_id: str) -> bool:
        """Like remove_dynamic_stream, but report an unknown peer as False."""
        try:
            self.remove_dynamic_stream(peer_id)
        except KeyError:
            return False
        return True

    def start(self) -> None:
        """Mark the pipeline as playing."""
        if self._running:
            logger.warning("Pipeline already running")
            return
        logger.info("Starting pipeline")
        self._running = True

    def stop(self) -> None:
        """Drop every dynamic branch and mark the pipeline as stopped."""
        if not self._running:
            return
        logger.info("Stopping pipeline")
        self._running = False
        for peer_id in self.active_peer_ids():
            self.remove_stream(peer_id)
        logger.info("Pipeline stopped")

    @property
    def is_running(self) -> bool:
        """Whether the pipeline is playing."""
        return self._running

    def record_frame(self, device: CameraDevice, now: Optional[float] = None) -> None:
        """Count one processed frame for ``device`` at monotonic time ``now``."""
        device = CameraDevice(device)
        now = time.monotonic() if now is None else now
        with self._stats_lock:
            stats = self._stats.setdefault(device, StreamStatistics())
            window = self._fps_windows.setdefault(device, _FpsWindow(last_time=now))
            stats.frames_processed += 1
            elapsed = now - window.last_time
            if elapsed >= _FPS_WINDOW:
                stats.current_fps = (stats.frames_processed - window.last_frame_count) / elapsed
                window.last_frame_count = stats.frames_processed
                window.last_time = now
                if stats.average_fps == 0:
                    stats.average_fps = stats.current_fps
                else:
                    stats.average_fps = (
                        stats.average_fps * (1 - _FPS_SMOOTHING)
                        + stats.current_fps * _FPS_SMOOTHING
                    )

    def statistics(self, device: CameraDevice) -> StreamStatistics:
        """A snapshot of the device's counters, empty if none were recorded."""
        with self._stats_lock:
            stats = self._stats.get(CameraDevice(device))
            return replace(stats) if stats is not None else StreamStatistics()