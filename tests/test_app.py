"""Tests wiring the application services together."""

import asyncio
import io
import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from n2k_bridge.app import BridgeApp
from n2k_bridge.config import load_config
from n2k_bridge.exceptions import DeviceMappingError


class FakeSignalKClient:
    def __init__(self, values: Dict[str, Any] | None = None) -> None:
        self.values = values or {}
        self.callback = None
        self.paths: List[str] = []
        self.stopped = False

    async def start(self, callback, paths) -> None:
        self.callback = callback
        self.paths = list(paths)

    async def stop(self) -> None:
        self.stopped = True

    async def fetch_path(self, path: str, timeout: float = 5.0) -> Any:
        return self.values.get(path)


def _config(tmp_path: Path, mode: str = "stream", trigger: str = "event"):
    config_path = tmp_path / "n2k-bridge.cfg"
    config_path.write_text(
        f"""
[signalk]
mode = {mode}
poll_interval_seconds = 0.1

[output]
transport = stdout
convention = named

[conversion]
trigger = {trigger}

[battery house]
instance = 0

[engine port]
instance = 1
revolutions_unit = rad/s
""".strip()
        + "\n",
        encoding="utf-8",
    )
    return load_config(config_path)


def _records(stream: io.StringIO) -> List[Dict[str, Any]]:
    return [json.loads(line) for line in stream.getvalue().splitlines()]


@pytest.mark.asyncio
async def test_stream_mode_subscribes_and_emits(tmp_path):
    signalk = FakeSignalKClient()
    stream = io.StringIO()
    app = BridgeApp(_config(tmp_path), signalk_client=signalk, stream=stream)

    await app.start_services()
    try:
        assert "propulsion.port.revolutions" in signalk.paths
        assert "electrical.batteries.house.voltage" in signalk.paths

        signalk.callback("propulsion.port.revolutions", 209.44)
    finally:
        await app.stop_services()

    assert signalk.stopped
    assert _records(stream) == [{"pgn": 127488, "Engine Instance": 1, "Speed": 2000.0}]


@pytest.mark.asyncio
async def test_poll_mode_feeds_engine(tmp_path):
    signalk = FakeSignalKClient(
        {
            "electrical.batteries.house.voltage": {"value": 12.5},
            "electrical.batteries.house.capacity.stateOfCharge": {"value": 0.93},
        }
    )
    stream = io.StringIO()
    app = BridgeApp(_config(tmp_path, mode="poll"), signalk_client=signalk, stream=stream)

    await app.start_services()
    try:
        for _ in range(20):
            if len(stream.getvalue().splitlines()) >= 2:
                break
            await asyncio.sleep(0.05)
    finally:
        await app.stop_services()

    records = _records(stream)
    assert {"pgn": 127508, "Battery Instance": 0, "Voltage": 12.5} in records
    assert {
        "pgn": 127506,
        "DC Instance": 0,
        "DC Type": "Battery",
        "State of Charge": 93,
    } in records


@pytest.mark.asyncio
async def test_run_stops_on_shutdown_request(tmp_path):
    signalk = FakeSignalKClient()
    app = BridgeApp(
        _config(tmp_path, trigger="periodic"), signalk_client=signalk, stream=io.StringIO()
    )

    task = asyncio.create_task(app.run())
    await asyncio.sleep(0.05)
    assert app.engine is not None and app.engine.running

    app.request_shutdown()
    await asyncio.wait_for(task, timeout=1.0)

    assert not app.engine.running
    assert signalk.stopped


class FakeMQTTClient:
    def __init__(self) -> None:
        self.handlers = []
        self.published: List[Any] = []
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def register_disconnect_handler(self, handler) -> None:
        self.handlers.append(handler)

    def is_connected(self) -> bool:
        return self.connected

    def publish(self, topic, payload, qos=0, retain=False) -> None:
        self.published.append((topic, json.loads(payload)))

    def drop(self, rc: int) -> None:
        self.connected = False
        for handler in self.handlers:
            handler(rc)


def _write_config(tmp_path: Path, body: str):
    config_path = tmp_path / "n2k-bridge.cfg"
    config_path.write_text(body.strip() + "\n", encoding="utf-8")
    return load_config(config_path)


@pytest.mark.asyncio
async def test_conflicting_engines_do_not_stop_batteries(tmp_path, caplog):
    config = _write_config(
        tmp_path,
        """
[output]
transport = stdout
convention = named

[conversion]
trigger = event

[battery house]
instance = 0

[engine port]
instance = 1
revolutions_unit = rad/s

[engine starboard]
instance = 1
revolutions_unit = rad/s
""",
    )
    signalk = FakeSignalKClient()
    stream = io.StringIO()
    app = BridgeApp(config, signalk_client=signalk, stream=stream)

    with caplog.at_level("ERROR", logger="n2k_bridge.conversion.mapping"):
        await app.start_services()
    try:
        assert "propulsion.port.revolutions" not in signalk.paths
        signalk.callback("electrical.batteries.house.voltage", 12.5)
        signalk.callback("propulsion.port.revolutions", 209.44)
    finally:
        await app.stop_services()

    assert _records(stream) == [{"pgn": 127508, "Battery Instance": 0, "Voltage": 12.5}]
    assert "instance 1 is used by both 'port' and 'starboard'" in caplog.text


@pytest.mark.asyncio
async def test_start_fails_when_every_mapping_conflicts(tmp_path):
    config = _write_config(
        tmp_path,
        """
[output]
transport = stdout

[engine port]
instance = 1
""",
    )
    app = BridgeApp(config, signalk_client=FakeSignalKClient(), stream=io.StringIO())

    with pytest.raises(DeviceMappingError):
        await app.start_services()


@pytest.mark.asyncio
async def test_mqtt_drop_is_logged_and_counted(tmp_path, caplog):
    config = _write_config(
        tmp_path,
        """
[output]
transport = mqtt
convention = named
topic_prefix = boat/n2k

[conversion]
trigger = event

[battery house]
instance = 0
""",
    )
    signalk = FakeSignalKClient()
    mqtt_client = FakeMQTTClient()
    app = BridgeApp(config, signalk_client=signalk, mqtt_client=mqtt_client)

    await app.start_services()
    try:
        assert len(mqtt_client.handlers) == 1
        signalk.callback("electrical.batteries.house.voltage", 12.5)

        with caplog.at_level("WARNING", logger="n2k_bridge.app"):
            mqtt_client.drop(7)
        signalk.callback("electrical.batteries.house.capacity.stateOfCharge", 0.93)
    finally:
        await app.stop_services()

    assert app.mqtt_disconnects == 1
    assert "Lost MQTT connection (rc=7)" in caplog.text
    assert mqtt_client.published == [
        ("boat/n2k/127508", {"pgn": 127508, "Battery Instance": 0, "Voltage": 12.5})
    ]


def test_clean_mqtt_disconnect_is_not_counted(tmp_path):
    app = BridgeApp(_config(tmp_path))

    app._on_mqtt_disconnect(0)

    assert app.mqtt_disconnects == 0
