"""Tests for overlay provisioning on OBS connection events."""

import asyncio
import logging

import pytest

from bambu_obs.layout import build_layout
from bambu_obs.obs import DisconnectInfo, ObsNotConnectedError
from bambu_obs.render import RenderTargetSupervisor
from bambu_obs.resources import ResourceReconciler

SCENE = "Bambu Stream"


@pytest.fixture
def layout(tmp_path):
    return build_layout(tmp_path, SCENE, str(tmp_path / "ffmpeg.sdp"))


def supervisor(obs, layout, shutdowns, **kwargs):
    reconciler = ResourceReconciler(obs, SCENE, backoff=0, media_poll=0)
    return RenderTargetSupervisor(obs, reconciler, layout, on_shutdown=lambda: shutdowns.append(True), **kwargs)


class TestInitialize:
    @pytest.mark.asyncio
    async def test_provisions_every_input(self, fake_obs, layout):
        shutdowns = []
        render = supervisor(fake_obs, layout, shutdowns)

        await render.initialize()

        assert render.initialized
        assert fake_obs.current_scene == SCENE
        expected = {layout.stream.name, layout.backdrop.name} | {d.name for d in layout.inputs}
        assert set(fake_obs.inputs) == expected
        assert render.overlay.get("layers").name == "Layers"
        assert render.overlay.get("preview_image").name == "PreviewImage"
        assert fake_obs.count("start_stream") == 0
        assert shutdowns == []

    @pytest.mark.asyncio
    async def test_z_order(self, fake_obs, layout):
        render = supervisor(fake_obs, layout, [])

        await render.initialize()

        indexes = [index for _, index in fake_obs.calls_for("set_scene_item_index")]
        assert indexes == list(range(len(layout.inputs) + 2))

    @pytest.mark.asyncio
    async def test_second_connect_reuses_inputs(self, fake_obs, layout):
        render = supervisor(fake_obs, layout, [])

        await render.initialize()
        created = fake_obs.count("create_input")
        await render.initialize()

        assert fake_obs.count("create_input") == created

    @pytest.mark.asyncio
    async def test_starts_stream_when_configured(self, fake_obs, layout):
        render = supervisor(fake_obs, layout, [], start_stream_on_startup=True)

        await render.initialize()

        assert fake_obs.count("start_stream") == 1

    @pytest.mark.asyncio
    async def test_resize_while_streaming_shuts_down(self, fake_obs, layout, caplog):
        fake_obs.video.update(outputWidth=1280, outputHeight=720)
        fake_obs.streaming = True
        shutdowns = []
        render = supervisor(fake_obs, layout, shutdowns)

        await render.initialize()

        assert shutdowns == [True]
        assert not render.initialized
        assert "Failed to initialize OBS inputs" in caplog.text

    @pytest.mark.asyncio
    async def test_disconnect_during_init_waits_for_reconnect(self, fake_obs, layout):
        async def gone():
            raise ObsNotConnectedError("OBS is not connected")

        fake_obs.get_video_settings = gone
        shutdowns = []
        render = supervisor(fake_obs, layout, shutdowns)

        await render.initialize()

        assert shutdowns == []
        assert not render.initialized


class TestConnectionEvents:
    @pytest.mark.asyncio
    async def test_connect_event_provisions(self, fake_obs, layout):
        render = supervisor(fake_obs, layout, [])

        for cb in fake_obs.connected_listeners:
            cb()
        await render._init_task

        assert render.initialized
        await render.close()

    @pytest.mark.asyncio
    async def test_disconnect_clears_overlay_and_waits(self, fake_obs, layout, caplog):
        shutdowns = []
        render = supervisor(fake_obs, layout, shutdowns)
        await render.initialize()

        for cb in fake_obs.disconnected_listeners:
            cb(DisconnectInfo(1006, "connection lost"))

        assert render.overlay is None
        assert shutdowns == []
        assert "Waiting for OBS reconnection..." in caplog.text

    @pytest.mark.asyncio
    async def test_auth_failure_shuts_down(self, fake_obs, layout):
        shutdowns = []
        supervisor(fake_obs, layout, shutdowns)

        for cb in fake_obs.disconnected_listeners:
            cb(DisconnectInfo(4009, "Authentication failed"))

        assert shutdowns == [True]

    @pytest.mark.asyncio
    async def test_exit_on_disconnect(self, fake_obs, layout):
        shutdowns = []
        supervisor(fake_obs, layout, shutdowns, exit_on_disconnect=True)

        for cb in fake_obs.disconnected_listeners:
            cb(DisconnectInfo(1006, "connection lost"))

        assert shutdowns == [True]

    @pytest.mark.asyncio
    async def test_disconnect_cancels_running_init(self, fake_obs, layout):
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.Event().wait()

        fake_obs.get_video_settings = slow
        render = supervisor(fake_obs, layout, [])
        fake_obs.connected_listeners[0]()
        await started.wait()
        task = render._init_task

        fake_obs.disconnected_listeners[0](DisconnectInfo(1006, "connection lost"))

        with pytest.raises(asyncio.CancelledError):
            await task


class TestDump:
    @pytest.mark.asyncio
    async def test_dump_lists_items_then_shuts_down(self, fake_obs, layout, caplog):
        caplog.set_level(logging.INFO, logger="bambu_obs.render")
        render = supervisor(fake_obs, layout, [])
        await render.initialize()
        shutdowns = []
        dump = supervisor(fake_obs, layout, shutdowns, print_scene_items_and_exit=True)

        fake_obs.connected_listeners[-1]()
        await dump._init_task

        assert shutdowns == [True]
        assert "Video settings" in caplog.text
        assert "Layers" in caplog.text
