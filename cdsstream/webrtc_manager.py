"""Manages WebRTC peers, each fed from its own dynamic pipeline stream."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Callable, Optional, Protocol

from cdsstream.pipeline import Pipeline
from cdsstream.pipeline_layout import CameraDevice, StreamType

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str, str], None]


class PeerState(IntEnum):
    """Lifecycle of a single WebRTC peer."""

    NEW = 0
    CONNECTING = 1
    CONNECTED = 2
    CLOSED = 3


class _Peer(Protocol):
    def connect_to_stream(self, port: int) -> bool: ...

    def create_offer(self) -> bool: ...

    def set_remote_description(self, sdp_type: str, sdp: str) -> bool: ...

    def add_ice_candidate(self, candidate: str, mline_index: int) -> bool: ...

    def disconnect(self) -> None: ...

    @property
    def is_connected(self) -> bool: ...

    def statistics(self) -> Any: ...


# peer_factory(peer_id, *, on_ice_candidate, on_offer_created, on_state_change, on_error)
PeerFactory = Callable[..., _Peer]


@dataclass
class PeerInfo:
    """What the manager knows about one peer."""

    peer_id: str
    device: CameraDevice
    stream_type: StreamType
    connected_time: float
    state: PeerState = PeerState.NEW


@dataclass
class GlobalStatistics:
    """Totals across every peer; ``average_bitrate`` is in Mbit/s per active peer."""

    total_peers: int = 0
    active_peers: int = 0
    total_bytes_sent: int = 0
    average_bitrate: float = 0.0


@dataclass
class _PeerContext:
    info: PeerInfo
    peer: _Peer
    stream_port: int = 0


def parse_source(source: str) -> CameraDevice:
    """Camera named by a source description; RGB when nothing matches."""
    if "RGB" in source or "rgb" in source or source == "0":
        return CameraDevice.RGB
    if "Thermal" in source or "thermal" in source or source == "1":
        return CameraDevice.THERMAL
    return CameraDevice.RGB


def parse_stream_type(source: str) -> StreamType:
    """Encoder branch named by a source description; MAIN when nothing matches."""
    if "sub" in source or "secondary" in source or "enc2" in source:
        return StreamType.SECONDARY
    return StreamType.MAIN


class WebRTCManager:
    """Creates, tracks and tears down WebRTC peers attached to a pipeline.

    ``peer_factory`` is called as ``peer_factory(peer_id, on_ice_candidate=...,
    on_offer_created=..., on_state_change=..., on_error=...)`` and returns the
    peer object that does the actual media negotiation.
    """

    def __init__(self, pipeline: Pipeline, peer_factory: PeerFactory) -> None:
        self._pipeline = pipeline
        self._peer_factory = peer_factory
        self._lock = threading.RLock()
        self._peers: dict[str, _PeerContext] = {}
        self._pending_lock = threading.Lock()
        self._pending: set[str] = set()
        self._message_callback: Optional[MessageCallback] = None

    def set_message_callback(self, callback: Optional[MessageCallback]) -> None:
        """Set the receiver of outgoing ``(peer_id, type, data)`` signalling messages."""
        self._message_callback = callback

    def add_peer(self, peer_id: str, source: str) -> PeerInfo:
        """Add a peer, connect it to a new stream and start an offer.

        Raises ValueError if the peer exists and RuntimeError if the stream or
        the connection cannot be set up.
        """
        return self._add_peer(peer_id, source, create_offer=True)

    def add_peer_async(self, peer_id: str, source: str) -> threading.Thread:
        """Add a peer on a background thread and return that thread.

        Raises ValueError if a connection for the peer is already in progress.
        """
        with self._pending_lock:
            if peer_id in self._pending:
                logger.warning("Peer %s connection already in progress", peer_id)
                raise ValueError(f"Peer {peer_id} connection already in progress")
            self._pending.add(peer_id)

        def runner() -> None:
            logger.info("Starting async peer connection: %s", peer_id)
            try:
                self._add_peer(peer_id, source, create_offer=False)
            except Exception as exc:  # noqa: BLE001 - reported, thread must not die loudly
                logger.error("Peer connection failed: %s (%s)", peer_id, exc)
            else:
                logger.info("Peer connection completed: %s", peer_id)
            finally:
                with self._pending_lock:
                    self._pending.discard(peer_id)

        thread = threading.Thread(target=runner, daemon=True)
        thread.start()
        return thread

    def remove_peer(self, peer_id: str) -> None:
        """Disconnect the peer and drop its stream; KeyError if unknown."""
        with self._lock:
            context = self._peers.get(peer_id)
            if context is None:
                logger.warning("Peer not found: %s", peer_id)
                raise KeyError(peer_id)
            logger.info("Removing peer: %s", peer_id)
            context.peer.disconnect()
            self._pipeline.remove_stream(peer_id)
            self._peers.pop(peer_id, None)
            logger.info("Peer removed: %s (remaining peers: %d)", peer_id, len(self._peers))

    def remove_all_peers(self) -> None:
        """Remove every peer."""
        logger.info("Removing all peers")
        with self._lock:
            peer_ids = list(self._peers)
        for peer_id in peer_ids:
            try:
                self.remove_peer(peer_id)
            except KeyError:
                pass

    def handle_offer(self, peer_id: str, sdp: str) -> bool:
        """Pass a remote offer to the peer; KeyError if unknown."""
        logger.debug("Handling offer from peer: %s", peer_id)
        return self._peer(peer_id).set_remote_description("offer", sdp)

    def handle_answer(self, peer_id: str, sdp: str) -> bool:
        """Pass a remote answer to the peer; KeyError if unknown."""
        logger.debug("Handling answer from peer: %s", peer_id)
        return self._peer(peer_id).set_remote_description("answer", sdp)

    def handle_ice_candidate(self, peer_id: str, candidate: str, mline_index: int) -> bool:
        """Pass a remote ICE candidate to the peer; KeyError if unknown."""
        logger.debug("Adding ICE candidate for peer: %s", peer_id)
        return self._peer(peer_id).add_ice_candidate(candidate, mline_index)

    def get_peer_info(self, peer_id: str) -> Optional[PeerInfo]:
        """A copy of the peer's info, or None."""
        with self._lock:
            context = self._peers.get(peer_id)
            return replace(context.info) if context is not None else None

    def all_peers(self) -> list[PeerInfo]:
        """Copies of every peer's info."""
        with self._lock:
            return [replace(context.info) for context in self._peers.values()]

    def peer_count(self) -> int:
        """Number of peers."""
        with self._lock:
            return len(self._peers)

    def global_statistics(self) -> GlobalStatistics:
        """Totals over all peers; only connected peers contribute traffic."""
        with self._lock:
            stats = GlobalStatistics(total_peers=len(self._peers))
            for context in self._peers.values():
                if context.peer.is_connected:
                    stats.active_peers += 1
                    stats.total_bytes_sent += context.peer.statistics().bytes_sent
        if stats.active_peers > 0:
            stats.average_bitrate = (stats.total_bytes_sent * 8) / (
                stats.active_peers * 1_000_000.0
            )
        return stats

    def _peer(self, peer_id: str) -> _Peer:
        with self._lock:
            context = self._peers.get(peer_id)
            if context is None:
                logger.error("Peer not found: %s", peer_id)
                raise KeyError(peer_id)
            return context.peer

    def _add_peer(self, peer_id: str, source: str, create_offer: bool) -> PeerInfo:
        with self._lock:
            if peer_id in self._peers:
                logger.warning("Peer already exists: %s", peer_id)
                raise ValueError(f"Peer already exists: {peer_id}")
            logger.info("Adding peer: %s with source: %s", peer_id, source)

            info = PeerInfo(
                peer_id=peer_id,
                device=parse_source(source),
                stream_type=parse_stream_type(source),
                connected_time=time.monotonic(),
            )
            peer = self._peer_factory(
                peer_id,
                on_ice_candidate=lambda c, i: self._on_ice_candidate(peer_id, c, i),
                on_offer_created=lambda sdp: self._on_offer_created(peer_id, sdp),
                on_state_change=lambda old, new: self._on_state_change(peer_id, old, new),
                on_error=lambda err: self._on_error(peer_id, err),
            )

            if not self._pipeline.add_stream(peer_id, info.device, info.stream_type):
                logger.error("Failed to add stream to pipeline for peer: %s", peer_id)
                raise RuntimeError(f"Failed to add stream to pipeline for peer: {peer_id}")

            context = _PeerContext(info=info, peer=peer)
            self._peers[peer_id] = context

            try:
                self._connect(context)
            except RuntimeError:
                logger.error("Failed to create peer connection for: %s", peer_id)
                self._pipeline.remove_stream(peer_id)
                self._peers.pop(peer_id, None)
                raise

            if create_offer:
                logger.info("Creating offer for peer: %s", peer_id)
                if not peer.create_offer():
                    logger.error("Failed to create offer for peer: %s", peer_id)

            logger.info("Peer added successfully: %s", peer_id)
            return replace(context.info)

    def _connect(self, context: _PeerContext) -> None:
        peer_id = context.info.peer_id
        stream = self._pipeline.get_dynamic_stream_info(peer_id)
        if stream is None:
            raise RuntimeError(f"No dynamic stream info found for peer: {peer_id}")
        context.stream_port = stream.port
        logger.info("Using dynamic stream port %d for peer %s", stream.port, peer_id)
        if not context.peer.connect_to_stream(stream.port):
            raise RuntimeError(f"Failed to connect WebRTC peer {peer_id} to stream")

    def _on_ice_candidate(self, peer_id: str, candidate: str, mline_index: int) -> None:
        logger.debug("ICE candidate for peer %s: %s", peer_id, candidate)
        if self._message_callback is not None:
            data = json.dumps(
                {"candidate": candidate, "mlineIndex": mline_index}, separators=(",", ":")
            )
            self._message_callback(peer_id, "candidate", data)

    def _on_offer_created(self, peer_id: str, sdp: str) -> None:
        logger.debug("Offer created for peer: %s", peer_id)
        if self._message_callback is not None:
            self._message_callback(peer_id, "offer", sdp)

    def _on_state_change(self, peer_id: str, old: PeerState, new: PeerState) -> None:
        with self._lock:
            context = self._peers.get(peer_id)
            if context is not None:
                context.info.state = PeerState(new)
            logger.info("Peer %s state changed: %d -> %d", peer_id, old, new)
            if new == PeerState.CONNECTED:
                logger.info("WebRTC connection established for peer: %s", peer_id)
                self._log_connection_stats()

    def _on_error(self, peer_id: str, error: str) -> None:
        logger.error("WebRTC error for peer %s: %s", peer_id, error)
        try:
            self.remove_peer(peer_id)
        except KeyError:
            pass

    def _log_connection_stats(self) -> None:
        contexts = list(self._peers.values())
        connected = sum(1 for c in contexts if c.peer.is_connected)
        devices = Counter(c.info.device for c in contexts)
        types = Counter(c.info.stream_type for c in contexts)
        logger.info("=== WebRTC Connection Statistics ===")
        logger.info("Total peers: %d", len(contexts))
        logger.info("Connected peers: %d", connected)
        logger.info("RGB streams: %d", devices[CameraDevice.RGB])
        logger.info("Thermal streams: %d", devices[CameraDevice.THERMAL])
        logger.info("Main streams: %d", types[StreamType.MAIN])
        logger.info("Secondary streams: %d", types[StreamType.SECONDARY])