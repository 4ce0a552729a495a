"""Shared fakes for the OBS request surface and the MQTT client."""

import asyncio
import json
import sys
from pathlib import Path

import aiomqtt
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bambu_obs.config import Settings  # noqa: E402
from bambu_obs.const import MEDIA_STATE_PLAYING, OBS_NOT_FOUND  # noqa: E402
from bambu_obs.obs import ObsRequestError  # noqa: E402


class FakeObs:
    """In-memory stand-in for ObsWebsocket's request methods."""

    def __init__(self):
        self.inputs = {}
        self.scenes = []
        self.current_scene = None
        self.video = {
            "baseWidth": 1920,
            "baseHeight": 1080,
            "outputWidth": 1920,
            "outputHeight": 1080,
            "fpsNumerator": 30,
            "fpsDenominator": 1,
        }
        self.streaming = False
        self.recording = False
        self.virtual_cam = False
        self.media_states = []
        self.calls = []
        self.connected_listeners = []
        self.disconnected_listeners = []
        self._next_id = 1

    def count(self, method):
        return sum(1 for name, _ in self.calls if name == method)

    def calls_for(self, method):
        return [args for name, args in self.calls if name == method]

    def add_connected_listener(self, cb):
        self.connected_listeners.append(cb)

    def add_disconnected_listener(self, cb):
        self.disconnected_listeners.append(cb)

    async def async_start(self):
        pass

    async def async_stop(self):
        pass

    async def get_video_settings(self):
        self.calls.append(("get_video_settings", ()))
        return dict(self.video)

    async def set_video_settings(self, settings):
        self.calls.append(("set_video_settings", (settings,)))
        self.video = dict(settings)

    async def get_scene_names(self):
        return list(self.scenes)

    async def create_scene(self, scene):
        self.calls.append(("create_scene", (scene,)))
        self.scenes.append(scene)

    async def set_current_program_scene(self, scene):
        self.calls.append(("set_current_program_scene", (scene,)))
        self.current_scene = scene

    async def get_input_list(self):
        return [{"inputName": n, "inputKind": i["kind"]} for n, i in self.inputs.items()]

    async def get_input_settings(self, name):
        self.calls.append(("get_input_settings", (name,)))
        if name not in self.inputs:
            raise ObsRequestError("GetInputSettings", OBS_NOT_FOUND, "No source was found")
        return dict(self.inputs[name]["settings"])

    async def set_input_settings(self, name, settings, overlay=True):
        self.calls.append(("set_input_settings", (name, settings)))
        self.inputs[name]["settings"].update(settings)

    async def create_input(self, scene, name, kind, settings, enabled=True):
        self.calls.append(("create_input", (scene, name, kind)))
        item_id = self._next_id
        self._next_id += 1
        self.inputs[name] = {"kind": kind, "settings": dict(settings), "item_id": item_id}
        return item_id

    async def remove_input(self, name):
        self.calls.append(("remove_input", (name,)))
        del self.inputs[name]

    async def get_media_state(self, name):
        self.calls.append(("get_media_state", (name,)))
        if self.media_states:
            return self.media_states.pop(0)
        return MEDIA_STATE_PLAYING

    async def get_scene_item_id(self, scene, source, offset=0):
        return self.inputs[source]["item_id"]

    async def get_scene_item_transform(self, scene, item_id):
        return {"positionX": 0, "positionY": 0}

    async def set_scene_item_transform(self, scene, item_id, transform):
        self.calls.append(("set_scene_item_transform", (item_id, transform)))

    async def set_scene_item_index(self, scene, item_id, index):
        self.calls.append(("set_scene_item_index", (item_id, index)))

    async def set_scene_item_locked(self, scene, item_id, locked):
        self.calls.append(("set_scene_item_locked", (item_id, locked)))

    async def is_stream_active(self):
        return self.streaming

    async def start_stream(self):
        self.calls.append(("start_stream", ()))
        self.streaming = True

    async def stop_stream(self):
        self.calls.append(("stop_stream", ()))
        self.streaming = False

    async def is_recording(self):
        return self.recording

    async def is_virtual_cam_active(self):
        return self.virtual_cam


class FakeMessage:
    def __init__(self, payload):
        self.payload = payload
        self.topic = "device/SERIAL/report"


class FakeMqttClient:
    """Mimics the parts of aiomqtt.Client the supervisor uses."""

    def __init__(self, connect_error=None, payloads=(), drop_error=None, subscribe_error=None):
        self.connect_error = connect_error
        self.subscribe_error = subscribe_error
        self.payloads = list(payloads)
        self.drop_error = drop_error
        self.subscriptions = []
        self.entered = False
        self.exited = False

    async def __aenter__(self):
        if self.connect_error is not None:
            raise self.connect_error
        self.entered = True
        return self

    async def __aexit__(self, *exc):
        self.exited = True

    async def subscribe(self, topic):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append(topic)

    @property
    def messages(self):
        return self._messages()

    async def _messages(self):
        for payload in self.payloads:
            yield FakeMessage(payload)
        if self.drop_error is not None:
            raise self.drop_error
        # stay connected until cancelled
        await asyncio.Event().wait()


class ClientFactory:
    """Hands out prepared clients in order and counts how many were made."""

    def __init__(self, *clients):
        self.clients = list(clients)
        self.made = []

    def __call__(self):
        client = self.clients.pop(0) if self.clients else FakeMqttClient()
        self.made.append(client)
        return client


def refused(rc=None):
    if rc is None:
        return aiomqtt.MqttError("Connection refused")
    return aiomqtt.MqttCodeError(rc, "Connection refused")


def status_report(**overrides):
    body = {
        "command": "push_status",
        "chamber_temper": 35.0,
        "bed_temper": 60.0,
        "bed_target_temper": 60,
        "nozzle_temper": 219.5,
        "nozzle_target_temper": 220,
        "cooling_fan_speed": "15",
        "big_fan1_speed": "0",
        "big_fan2_speed": "6",
        "mc_percent": 42,
        "layer_num": 12,
        "total_layer_num": 200,
        "mc_remaining_time": 75,
        "subtask_name": "benchy",
        "stg_cur": 0,
        "ams": {
            "tray_now": "1",
            "ams": [{"id": "0", "tray": [{"id": "0", "tray_type": "PLA"}, {"id": "1", "tray_type": "PETG"}]}],
        },
    }
    body.update(overrides)
    return json.dumps({"print": body}).encode()


@pytest.fixture
def fake_obs():
    return FakeObs()


@pytest.fixture
def settings_dict(tmp_path):
    return {
        "bambu": {
            "ip_address": "192.168.1.50",
            "password": "12345678",
            "serial": "01S00A000000000",
            "path_to_sdp": str(tmp_path / "ffmpeg.sdp"),
        },
        "obs": {"ws_address": "ws://localhost:4455", "ws_password": "secret"},
        "app": {"image_dir": str(tmp_path / "images"), "exit_on_idle": False},
    }


@pytest.fixture
def settings(settings_dict):
    return Settings.from_dict(settings_dict)
