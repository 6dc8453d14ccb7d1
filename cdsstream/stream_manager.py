"""Keeps track of per-peer streams and the ports assigned to them."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Optional

from cdsstream.pipeline import Pipeline
from cdsstream.pipeline_layout import CameraDevice, NoPortAvailableError, StreamType

logger = logging.getLogger(__name__)

_BASE_PORT = 5000
_MAX_PORT = 6000


@dataclass
class StreamConfig:
    """A stream handed out to one peer."""

    peer_id: str
    device: CameraDevice
    type: StreamType
    port: int
    active: bool = True


def _parse_device(source: str) -> CameraDevice:
    if "RGB" in source or "rgb" in source:
        return CameraDevice.RGB
    if "Thermal" in source or "thermal" in source:
        return CameraDevice.THERMAL
    return CameraDevice.RGB


def _parse_type(source: str) -> StreamType:
    if "sub" in source or "secondary" in source:
        return StreamType.SECONDARY
    return StreamType.MAIN


class StreamManager:
    """Creates and removes per-peer streams on a pipeline."""

    def __init__(self, pipeline: Pipeline) -> None:
        self._pipeline = pipeline
        self._lock = threading.Lock()
        self._streams: dict[str, StreamConfig] = {}
        self._used_ports: set[int] = set()

    def create_stream(self, peer_id: str, source: str) -> StreamConfig:
        """Create a stream for ``peer_id`` from a source description.

        Raises ValueError if the peer already has one, NoPortAvailableError if
        no port is free and RuntimeError if the pipeline refuses the stream.
        """
        with self._lock:
            if peer_id in self._streams:
                logger.warning("Stream already exists for peer: %s", peer_id)
                raise ValueError(f"Stream already exists for peer: {peer_id}")
            device = _parse_device(source)
            stream_type = _parse_type(source)
            port = self._allocate_port()
            if not self._pipeline.add_stream(peer_id, device, stream_type):
                self._used_ports.discard(port)
                logger.error("Failed to add stream to pipeline")
                raise RuntimeError(f"Failed to add stream to pipeline for peer: {peer_id}")
            config = StreamConfig(peer_id=peer_id, device=device, type=stream_type, port=port)
            self._streams[peer_id] = config
        logger.info(
            "Created stream for peer %s on port %d (device: %d, type: %d)",
            peer_id, port, device, stream_type,
        )
        return replace(config)

    def remove_stream(self, peer_id: str) -> None:
        """Remove the peer's stream; KeyError if it has none."""
        with self._lock:
            config = self._streams.pop(peer_id, None)
            if config is None:
                logger.warning("Stream not found for peer: %s", peer_id)
                raise KeyError(peer_id)
            self._pipeline.remove_stream(peer_id)
            self._used_ports.discard(config.port)
        logger.info("Removed stream for peer: %s", peer_id)

    def remove_all_streams(self) -> None:
        """Remove every stream and free every port."""
        with self._lock:
            logger.info("Removing all %d streams", len(self._streams))
            for peer_id in self._streams:
                self._pipeline.remove_stream(peer_id)
            self._streams.clear()
            self._used_ports.clear()

    def get_stream_config(self, peer_id: str) -> Optional[StreamConfig]:
        """A copy of the peer's stream, or None."""
        with self._lock:
            config = self._streams.get(peer_id)
            return replace(config) if config is not None else None

    def all_streams(self) -> list[StreamConfig]:
        """Copies of every stream."""
        with self._lock:
            return [replace(config) for config in self._streams.values()]

    def is_stream_active(self, peer_id: str) -> bool:
        """Whether the peer has an active stream."""
        with self._lock:
            config = self._streams.get(peer_id)
            return config is not None and config.active

    def active_stream_count(self) -> int:
        """Number of active streams."""
        with self._lock:
            return sum(1 for config in self._streams.values() if config.active)

    def _allocate_port(self) -> int:
        for port in range(_BASE_PORT, _MAX_PORT, 2):
            if port not in self._used_ports:
                self._used_ports.add(port)
                return port
        logger.error("Failed to allocate port for stream")
        raise NoPortAvailableError(f"No available ports in range {_BASE_PORT}-{_MAX_PORT}")