"""Tests for stream start/stop and exit decisions on stage changes."""

import asyncio
import logging

import pytest

from bambu_obs.const import IDLE_STAGE
from bambu_obs.obs import ObsNotConnectedError
from bambu_obs.stage import StagePolicy

PRINTING = 0


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def policy(fake_obs, exits, **kwargs):
    return StagePolicy(fake_obs, on_exit=lambda: exits.append(True), **kwargs)


async def settle(stage):
    async def drained():
        while stage.has_pending:
            await asyncio.sleep(0)

    await asyncio.wait_for(drained(), 1)


class TestStartStop:
    @pytest.mark.asyncio
    async def test_print_lifecycle(self, fake_obs, caplog):
        caplog.set_level(logging.INFO, logger="bambu_obs.stage")
        exits = []
        stage = policy(
            fake_obs,
            exits,
            stop_stream_on_idle=True,
            start_stream_on_startup=True,
            delay=0,
            spacing=0,
        )

        await stage.evaluate(PRINTING)
        await stage.evaluate(IDLE_STAGE)
        await stage.evaluate(IDLE_STAGE)
        await settle(stage)
        await stage.evaluate(PRINTING)

        assert [name for name, _ in fake_obs.calls] == ["start_stream", "stop_stream", "start_stream"]
        assert caplog.text.count("Print complete!") == 1
        assert exits == []

    @pytest.mark.asyncio
    async def test_start_only_when_enabled(self, fake_obs):
        stage = policy(fake_obs, [])

        await stage.evaluate(PRINTING)

        assert fake_obs.count("start_stream") == 0

    @pytest.mark.asyncio
    async def test_already_streaming_not_restarted(self, fake_obs):
        fake_obs.streaming = True
        stage = policy(fake_obs, [], start_stream_on_startup=True)

        await stage.evaluate(PRINTING)

        assert fake_obs.count("start_stream") == 0

    @pytest.mark.asyncio
    async def test_no_start_while_idle_actions_pending(self, fake_obs):
        fake_obs.streaming = True
        stage = policy(fake_obs, [], stop_stream_on_idle=True, start_stream_on_startup=True, delay=60)

        await stage.evaluate(IDLE_STAGE)
        fake_obs.streaming = False
        await stage.evaluate(PRINTING)

        assert stage.has_pending
        assert fake_obs.count("start_stream") == 0
        await stage.close()
        assert not stage.has_pending


class TestDeferred:
    @pytest.mark.asyncio
    async def test_stop_then_exit_in_order(self, fake_obs):
        fake_obs.streaming = True
        sleep = RecordingSleep()
        stage = StagePolicy(
            fake_obs,
            on_exit=lambda: fake_obs.calls.append(("exit", ())),
            stop_stream_on_idle=True,
            exit_on_idle=True,
            sleep=sleep,
        )

        await stage.evaluate(IDLE_STAGE)
        await settle(stage)

        assert sleep.delays == [5.0, 0.25, 0.25]
        assert [name for name, _ in fake_obs.calls] == ["stop_stream", "exit"]
        assert not stage.has_pending

    @pytest.mark.asyncio
    async def test_one_batch_at_a_time(self, fake_obs):
        sleep = RecordingSleep()
        exits = []
        stage = policy(fake_obs, exits, exit_on_idle=True, sleep=sleep)

        await stage.evaluate(IDLE_STAGE)
        await stage.evaluate(IDLE_STAGE)
        await settle(stage)

        assert exits == [True]

    @pytest.mark.asyncio
    async def test_stop_skipped_if_stream_already_stopped(self, fake_obs):
        fake_obs.streaming = True
        stage = policy(fake_obs, [], stop_stream_on_idle=True, sleep=RecordingSleep())

        await stage.evaluate(IDLE_STAGE)
        fake_obs.streaming = False
        await settle(stage)

        assert fake_obs.count("stop_stream") == 0

    @pytest.mark.asyncio
    async def test_failed_action_does_not_block_the_rest(self, fake_obs):
        fake_obs.streaming = True
        exits = []
        stage = policy(fake_obs, exits, stop_stream_on_idle=True, exit_on_idle=True, sleep=RecordingSleep())

        async def unreachable():
            raise ObsNotConnectedError("OBS is not connected")

        fake_obs.stop_stream = unreachable

        await stage.evaluate(IDLE_STAGE)
        await settle(stage)

        assert exits == [True]

    @pytest.mark.asyncio
    async def test_idle_without_stream_only_exits(self, fake_obs):
        exits = []
        stage = policy(fake_obs, exits, stop_stream_on_idle=True, exit_on_idle=True, sleep=RecordingSleep())

        await stage.evaluate(IDLE_STAGE)
        await settle(stage)

        assert exits == [True]
        assert fake_obs.count("stop_stream") == 0


class TestLastStage:
    @pytest.mark.asyncio
    async def test_recorded_even_when_obs_fails(self, fake_obs):
        async def broken():
            raise ObsNotConnectedError("OBS is not connected")

        fake_obs.is_stream_active = broken
        stage = policy(fake_obs, [], start_stream_on_startup=True)

        with pytest.raises(ObsNotConnectedError):
            await stage.evaluate(PRINTING)

        assert stage.last_stage == PRINTING

    @pytest.mark.asyncio
    async def test_close_cancels_timer(self, fake_obs):
        exits = []
        stage = policy(fake_obs, exits, exit_on_idle=True, delay=60)

        await stage.evaluate(IDLE_STAGE)
        await stage.close()
        await asyncio.sleep(0)

        assert exits == []
        assert not stage.has_pending
