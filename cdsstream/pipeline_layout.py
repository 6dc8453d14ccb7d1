"""Static layout of the capture pipeline: devices, stream kinds, ports and launch string."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum

logger = logging.getLogger(__name__)

RECORDER_PORT = 7000
EVENT_RECORDER_PORT = 7100
_RESERVED_RECORDING_PORTS = range(7000, 7200)
_MAX_PIPELINE_DEVICES = 2


class CameraDevice(IntEnum):
    """Physical camera a stream comes from."""

    RGB = 0
    THERMAL = 1


class StreamType(IntEnum):
    """Encoder branch of a camera."""

    MAIN = 0
    SECONDARY = 1


class ProcessType(IntEnum):
    """Consumer of a UDP stream."""

    SENDER = 0
    RECORDER = 1
    EVENT_RECORDER = 2


@dataclass
class VideoSourceConfig:
    """Launch-string fragments that make up one camera's branches."""

    src: str = ""
    record: str = ""
    infer: str = ""
    enc: str = ""
    enc2: str = ""
    snapshot: str = ""


@dataclass
class PipelineConfig:
    """Settings for the whole capture pipeline."""

    cameras: int = 2
    base_port: int = 5000
    max_stream_count: int = 10
    videos: list[VideoSourceConfig] = field(default_factory=list)
    snapshot_path: str = "/tmp"

    @property
    def device_count(self) -> int:
        """Number of configured video sources."""
        return len(self.videos)


class NoPortAvailableError(RuntimeError):
    """Raised when every port in the dynamic range is taken."""


def get_udp_port(
    process: ProcessType,
    device: CameraDevice,
    stream: StreamType,
    index: int,
    base_port: int = 5000,
) -> int:
    """Return the UDP port a given process uses for a device's stream."""
    if process is ProcessType.SENDER:
        port = base_port + index * 2
    elif process is ProcessType.RECORDER:
        port = RECORDER_PORT
    else:
        port = EVENT_RECORDER_PORT
    port += int(device)
    if stream is StreamType.SECONDARY:
        port += 100
    return port


def tee_name(device: CameraDevice, stream_type: StreamType) -> str:
    """Name of the tee element that fans out a device's encoder output."""
    kind = "main" if stream_type is StreamType.MAIN else "sub"
    return f"stream_tee_{kind}_{int(device)}"


def build_pipeline_string(config: PipelineConfig) -> str:
    """Assemble the launch description for at most two configured cameras."""
    parts: list[str] = []
    for i, video in enumerate(config.videos[:_MAX_PIPELINE_DEVICES]):
        parts.append(f"{video.src} ")
        parts.append(f"{video.record} ")
        if video.infer:
            parts.append(f"{video.infer} ")
        parts.append(f"{video.enc} ")
        parts.append(f"tee name=stream_tee_main_{i} allow-not-linked=true ")
        parts.append(f"stream_tee_main_{i}. ! queue ! fakesink ")
        parts.append(f"{video.enc2} ")
        parts.append(f"tee name=stream_tee_sub_{i} allow-not-linked=true ")
        parts.append(f"stream_tee_sub_{i}. ! queue ! fakesink ")
        parts.append(f"{video.snapshot} ")
        parts.append(f"location={config.snapshot_path}/cam{i}_snapshot.jpg ")
    return "".join(parts)


class PortAllocator:
    """Hands out even ports for dynamic streams, skipping reserved ones."""

    def __init__(self, base_port: int = 5000, cameras: int = 2) -> None:
        self._start = base_port + 100
        self._end = base_port + 1000
        self._used: set[int] = {RECORDER_PORT, RECORDER_PORT + 1}
        for i in range(cameras):
            self._used.add(base_port + i * 2)
            self._used.add(base_port + i * 2 + 1)

    def allocate(self) -> int:
        """Reserve and return the lowest free dynamic port."""
        for port in range(self._start, self._end, 2):
            if port in _RESERVED_RECORDING_PORTS:
                continue
            if port not in self._used:
                self._used.add(port)
                logger.debug("Allocated port: %d", port)
                return port
        logger.error("No available ports in range %d-%d", self._start, self._end)
        raise NoPortAvailableError(
            f"No available ports in range {self._start}-{self._end}"
        )

    def release(self, port: int) -> bool:
        """Free ``port``; returns False if it was not in use."""
        if port in self._used:
            self._used.discard(port)
            logger.debug("Released port: %d", port)
            return True
        logger.warning("Attempted to release unused port: %d", port)
        return False

    def in_use(self, port: int) -> bool:
        """Whether ``port`` is reserved or allocated."""
        return port in self._used