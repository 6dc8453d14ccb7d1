import json
import threading
from dataclasses import dataclass

import pytest

from cdsstream.pipeline import Pipeline
from cdsstream.pipeline_layout import (
    CameraDevice,
    PipelineConfig,
    StreamType,
    VideoSourceConfig,
)
from cdsstream.webrtc_manager import (
    PeerState,
    WebRTCManager,
    parse_source,
    parse_stream_type,
)


@dataclass
class _Stats:
    bytes_sent: int = 0


class FakePeer:
    def __init__(self, peer_id, connect_ok=True, **callbacks):
        self.peer_id = peer_id
        self.callbacks = callbacks
        self.connect_ok = connect_ok
        self.connected_port = None
        self.offers = 0
        self.remote = []
        self.candidates = []
        self.disconnected = False
        self.is_connected = False
        self.bytes_sent = 0

    def connect_to_stream(self, port):
        self.connected_port = port
        return self.connect_ok

    def create_offer(self):
        self.offers += 1
        return True

    def set_remote_description(self, sdp_type, sdp):
        self.remote.append((sdp_type, sdp))
        return True

    def add_ice_candidate(self, candidate, mline_index):
        self.candidates.append((candidate, mline_index))
        return True

    def disconnect(self):
        self.disconnected = True

    def statistics(self):
        return _Stats(self.bytes_sent)


class Factory:
    def __init__(self, connect_ok=True, gate=None):
        self.peers = {}
        self.connect_ok = connect_ok
        self.gate = gate

    def __call__(self, peer_id, **callbacks):
        if self.gate is not None:
            self.gate.wait(5)
        peer = FakePeer(peer_id, connect_ok=self.connect_ok, **callbacks)
        self.peers[peer_id] = peer
        return peer


def make_pipeline(videos=2):
    config = PipelineConfig(videos=[VideoSourceConfig() for _ in range(videos)])
    return Pipeline(config)


@pytest.fixture
def setup():
    pipeline = make_pipeline()
    factory = Factory()
    manager = WebRTCManager(pipeline, factory)
    return manager, pipeline, factory


@pytest.mark.parametrize(
    "source, expected",
    [
        ("RGB", CameraDevice.RGB),
        ("rgb_main", CameraDevice.RGB),
        ("0", CameraDevice.RGB),
        ("Thermal", CameraDevice.THERMAL),
        ("thermal_sub", CameraDevice.THERMAL),
        ("1", CameraDevice.THERMAL),
        ("other", CameraDevice.RGB),
    ],
)
def test_parse_source(source, expected):
    assert parse_source(source) is expected


@pytest.mark.parametrize(
    "source, expected",
    [
        ("RGB_sub", StreamType.SECONDARY),
        ("secondary", StreamType.SECONDARY),
        ("enc2", StreamType.SECONDARY),
        ("RGB", StreamType.MAIN),
    ],
)
def test_parse_stream_type(source, expected):
    assert parse_stream_type(source) is expected


def test_add_peer_connects_to_pipeline_stream_and_offers(setup):
    manager, pipeline, factory = setup
    info = manager.add_peer("p1", "thermal_sub")
    assert info.device is CameraDevice.THERMAL
    assert info.stream_type is StreamType.SECONDARY
    assert info.state is PeerState.NEW
    stream = pipeline.get_dynamic_stream_info("p1")
    assert factory.peers["p1"].connected_port == stream.port
    assert factory.peers["p1"].offers == 1
    assert manager.peer_count() == 1


def test_add_duplicate_peer_raises(setup):
    manager, _, _ = setup
    manager.add_peer("p1", "RGB")
    with pytest.raises(ValueError):
        manager.add_peer("p1", "RGB")
    assert manager.peer_count() == 1


def test_add_peer_fails_when_pipeline_lacks_tee():
    manager = WebRTCManager(make_pipeline(videos=1), Factory())
    with pytest.raises(RuntimeError):
        manager.add_peer("p1", "thermal")
    assert manager.peer_count() == 0


def test_add_peer_connect_failure_rolls_back():
    pipeline = make_pipeline()
    manager = WebRTCManager(pipeline, Factory(connect_ok=False))
    with pytest.raises(RuntimeError):
        manager.add_peer("p1", "RGB")
    assert manager.peer_count() == 0
    assert pipeline.get_dynamic_stream_info("p1") is None


def test_remove_peer(setup):
    manager, pipeline, factory = setup
    manager.add_peer("p1", "RGB")
    manager.remove_peer("p1")
    assert factory.peers["p1"].disconnected
    assert pipeline.get_dynamic_stream_info("p1") is None
    assert manager.get_peer_info("p1") is None


def test_remove_unknown_peer_raises(setup):
    manager, _, _ = setup
    with pytest.raises(KeyError):
        manager.remove_peer("ghost")


def test_remove_all_peers(setup):
    manager, pipeline, _ = setup
    manager.add_peer("a", "RGB")
    manager.add_peer("b", "thermal")
    manager.remove_all_peers()
    assert manager.peer_count() == 0
    assert pipeline.active_peer_ids() == []


def test_handle_answer_offer_and_candidate_forwarded(setup):
    manager, _, factory = setup
    manager.add_peer("p1", "RGB")
    assert manager.handle_answer("p1", "v=0 answer")
    assert manager.handle_offer("p1", "v=0 offer")
    assert manager.handle_ice_candidate("p1", "candidate:1", 0)
    peer = factory.peers["p1"]
    assert peer.remote == [("answer", "v=0 answer"), ("offer", "v=0 offer")]
    assert peer.candidates == [("candidate:1", 0)]


def test_handlers_raise_for_unknown_peer(setup):
    manager, _, _ = setup
    with pytest.raises(KeyError):
        manager.handle_answer("ghost", "v=0")
    with pytest.raises(KeyError):
        manager.handle_ice_candidate("ghost", "c", 0)


def test_ice_candidate_and_offer_reach_message_callback(setup):
    manager, _, factory = setup
    sent = []
    manager.set_message_callback(lambda *msg: sent.append(msg))
    manager.add_peer("p1", "RGB")
    callbacks = factory.peers["p1"].callbacks
    callbacks["on_ice_candidate"]("candidate:abc", 1)
    callbacks["on_offer_created"]("v=0 sdp")
    peer_id, kind, data = sent[0]
    assert (peer_id, kind) == ("p1", "candidate")
    assert json.loads(data) == {"candidate": "candidate:abc", "mlineIndex": 1}
    assert sent[1] == ("p1", "offer", "v=0 sdp")


def test_state_change_updates_info(setup):
    manager, _, factory = setup
    manager.add_peer("p1", "RGB")
    factory.peers["p1"].callbacks["on_state_change"](PeerState.NEW, PeerState.CONNECTED)
    assert manager.get_peer_info("p1").state is PeerState.CONNECTED


def test_error_removes_peer(setup):
    manager, _, factory = setup
    manager.add_peer("p1", "RGB")
    factory.peers["p1"].callbacks["on_error"]("boom")
    assert manager.peer_count() == 0
    assert factory.peers["p1"].disconnected


def test_global_statistics(setup):
    manager, _, factory = setup
    manager.add_peer("a", "RGB")
    manager.add_peer("b", "RGB_sub")
    factory.peers["a"].is_connected = True
    factory.peers["a"].bytes_sent = 1_000_000
    factory.peers["b"].bytes_sent = 500
    stats = manager.global_statistics()
    assert stats.total_peers == 2
    assert stats.active_peers == 1
    assert stats.total_bytes_sent == 1_000_000
    assert stats.average_bitrate == pytest.approx(8.0)


def test_global_statistics_without_active_peers(setup):
    manager, _, _ = setup
    manager.add_peer("a", "RGB")
    stats = manager.global_statistics()
    assert (stats.active_peers, stats.average_bitrate) == (0, 0.0)


def test_all_peers_lists_every_peer(setup):
    manager, _, _ = setup
    manager.add_peer("a", "RGB")
    manager.add_peer("b", "thermal")
    assert sorted(info.peer_id for info in manager.all_peers()) == ["a", "b"]


def test_add_peer_async_adds_without_offer(setup):
    manager, pipeline, factory = setup
    thread = manager.add_peer_async("p1", "RGB")
    thread.join(5)
    assert manager.peer_count() == 1
    assert factory.peers["p1"].offers == 0
    assert pipeline.get_dynamic_stream_info("p1") is not None and True


def test_add_peer_async_rejects_in_progress():
    gate = threading.Event()
    manager = WebRTCManager(make_pipeline(), Factory(gate=gate))
    thread = manager.add_peer_async("p1", "RGB")
    try:
        with pytest.raises(ValueError):
            manager.add_peer_async("p1", "RGB")
    finally:
        gate.set()
        thread.join(5)
    assert manager.peer_count() == 1
    second = manager.add_peer_async("p1", "RGB")
    second.join(5)
    assert manager.peer_count() == 1