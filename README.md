# cdsstream

Building blocks for a camera streaming service. The package describes the
capture pipeline's layout, hands out UDP ports for per-viewer streams, keeps
track of WebRTC peers attached to those streams, and provides a few small
utilities: a whitelisted shell command runner, a polling file watcher and a
timing-metrics collector.

It has no third-party dependencies.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `cdsstream.pipeline_layout`
  - Enums `CameraDevice` (`RGB`, `THERMAL`), `StreamType` (`MAIN`,
    `SECONDARY`) and `ProcessType` (`SENDER`, `RECORDER`, `EVENT_RECORDER`).
  - `VideoSourceConfig` holds the launch-string fragments of one camera
    (`src`, `record`, `infer`, `enc`, `enc2`, `snapshot`).
  - `PipelineConfig` holds `cameras`, `base_port`, `max_stream_count`,
    `videos` and `snapshot_path`.
  - `build_pipeline_string(config)` assembles the launch description for at
    most two cameras, adding a `stream_tee_main_<i>` and `stream_tee_sub_<i>`
    tee for each.
  - `tee_name(device, stream_type)` gives the name of such a tee.
  - `get_udp_port(process, device, stream, index, base_port=5000)` computes
    the fixed port a process uses: `base_port + 2*index` for senders, 7000
    for the recorder, 7100 for the event recorder, plus the device number,
    plus 100 for the secondary stream.
  - `PortAllocator(base_port, cameras)` hands out even ports from
    `base_port + 100` up to `base_port + 1000`, skipping 7000–7199 and the
    static camera ports. `allocate()` raises `NoPortAvailableError` when the
    range is full; `release(port)` returns `False` for a port not in use;
    `in_use(port)` reports the state.

- `cdsstream.pipeline`
  - `Pipeline(config)` builds the launch string (`pipeline_string`) and
    tracks dynamic per-peer branches. `add_dynamic_stream(peer_id, device,
    stream_type)` returns the allocated port and raises `ValueError` for a
    duplicate peer or a device without a tee; `remove_dynamic_stream`
    raises `KeyError` for an unknown peer. `add_stream` / `remove_stream`
    report the same outcomes as `True` / `False`.
  - `get_dynamic_stream_info(peer_id)` returns a `DynamicStreamInfo` copy or
    `None`; `active_peer_ids()` lists peers with an active branch.
  - `start()`, `stop()` (which drops every branch) and `is_running`.
  - `record_frame(device, now=None)` counts a frame and updates the
    `StreamStatistics` (`frames_processed`, `current_fps` over windows of at
    least one second, and `average_fps` smoothed with a factor of 0.1);
    `statistics(device)` returns a snapshot.

- `cdsstream.stream_manager`
  - `StreamManager(pipeline)` creates streams from source strings.
    `create_stream(peer_id, source)` picks the device (`"RGB"`/`"rgb"` or
    `"Thermal"`/`"thermal"`, RGB otherwise) and type (`"sub"` or
    `"secondary"` means `SECONDARY`), assigns its own even port from
    5000–5999, registers the stream with the pipeline and returns a
    `StreamConfig`. It raises `ValueError` for a duplicate peer,
    `NoPortAvailableError` when out of ports and `RuntimeError` when the
    pipeline refuses the stream.
  - `remove_stream` (raises `KeyError` when unknown), `remove_all_streams`,
    `get_stream_config`, `all_streams`, `is_stream_active`,
    `active_stream_count`.

- `cdsstream.webrtc_manager`
  - `parse_source(source)` and `parse_stream_type(source)` map a source
    string to a `CameraDevice` (also `"0"` → RGB, `"1"` → THERMAL) and a
    `StreamType` (also `"enc2"` → SECONDARY).
  - `WebRTCManager(pipeline, peer_factory)` manages peers. The factory is
    called as `peer_factory(peer_id, on_ice_candidate=..., on_offer_created=...,
    on_state_change=..., on_error=...)` and must return an object with
    `connect_to_stream(port)`, `create_offer()`,
    `set_remote_description(sdp_type, sdp)`, `add_ice_candidate(candidate,
    mline_index)`, `disconnect()`, an `is_connected` property and
    `statistics()` returning something with `bytes_sent`.
  - `add_peer(peer_id, source)` adds a pipeline stream, connects the peer
    to its port and asks it for an offer, returning a `PeerInfo`;
    `add_peer_async` does the same (without the offer) on a background
    thread and returns the thread.
  - `remove_peer`, `remove_all_peers`, `handle_offer`, `handle_answer`,
    `handle_ice_candidate` (these raise `KeyError` for unknown peers),
    `get_peer_info`, `all_peers`, `peer_count`, `global_statistics`.
  - Outgoing signalling goes to the callback set with
    `set_message_callback(callback)`, called as `(peer_id, type, data)`
    where type is `"offer"` (data is the SDP) or `"candidate"` (data is
    JSON `{"candidate": ..., "mlineIndex": ...}`). A peer reporting an
    error is removed; `PeerState` changes are stored on its `PeerInfo`.

- `cdsstream.command_executor`
  - `CommandExecutor` runs commands through `/bin/sh` only if they were
    registered with `register_allowed_command(name, command)` or fully
    match an allowed pattern (by default `echo …`, `ls -[la]* …` and
    `cat /proc/…`; add more with `register_allowed_pattern`, which raises
    `ValueError` on a bad expression).
  - `execute(command_name, args=(), config=None)` appends the arguments,
    escaped with `sanitize_argument`, and returns a `CommandResult`
    (`exit_code`, `output`, `error`, `execution_time` in seconds). It raises
    `CommandNotAllowedError` for anything else. `CommandConfig` sets
    `timeout`, `working_directory`, `environment`, `max_output_size` and
    `capture_stderr`; a timed-out command is killed and gets exit code -1.
  - `execute_async(...)` runs on a thread and passes the result to a
    callback.

- `cdsstream.file_watcher`
  - `FileWatcher` polls watched paths. `watch(path, callback)` registers a
    `callback(path, exists)` that is called when the path appears,
    disappears or its modification time changes. `check_for_changes()`
    checks once; `start(check_interval=1.0)` and `stop()` run the checks on
    a background thread.

- `cdsstream.performance`
  - `PerformanceMonitor.record_metric(name, microseconds)` keeps
    `Metrics` (`count`, `total_time`, `min_time`, `max_time`, `avg_time`);
    `get_metrics`, `get_all_metrics` and `reset`.

## Examples

```python
from cdsstream.pipeline import Pipeline
from cdsstream.pipeline_layout import (
    CameraDevice, PipelineConfig, StreamType, VideoSourceConfig,
)

config = PipelineConfig(videos=[VideoSourceConfig(src="videotestsrc !", enc="x264enc !")])
pipeline = Pipeline(config)
port = pipeline.add_dynamic_stream("viewer-1", CameraDevice.RGB, StreamType.MAIN)
print(port)  # 5100
pipeline.remove_dynamic_stream("viewer-1")
```

```python
from cdsstream.command_executor import CommandExecutor

executor = CommandExecutor()
executor.register_allowed_command("say", "echo")
result = executor.execute("say", ["hello"])
print(result.exit_code, result.output)  # 0 hello
```

```python
from cdsstream.performance import PerformanceMonitor

monitor = PerformanceMonitor()
monitor.record_metric("decode", 120)
monitor.record_metric("decode", 80)
print(monitor.get_metrics("decode").avg_time)  # 100.0
```

## What it does not do

- It does not move any video. `Pipeline` models tees, ports and branches
  and builds the launch string, but runs no media framework; the peer
  objects that negotiate and send media must be supplied through
  `WebRTCManager`'s peer factory.
- It does not parse or produce signalling-server messages and has no
  network client; outgoing offers and candidates only reach the callback
  you set.
- It does not record clips to disk.
- It has no command-line program or long-running service of its own.