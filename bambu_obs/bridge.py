from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from .config import Settings
from .files import PrintFileSource
from .layout import build_layout
from .mqtt import BambuMQTT, ConnectError
from .obs import ObsNotConnectedError, ObsWebsocket
from .pipeline import MessagePipeline
from .render import RenderTargetSupervisor
from .resources import ResourceReconciler
from .stage import StagePolicy
from .telemetry import TelemetryProjector

_LOGGER = logging.getLogger(__name__)


class BambuObsBridge:
    """Printer MQTT reports in, OBS overlay updates out.

    Owns both connections, the message pipeline and the shutdown signal.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        files: Optional[PrintFileSource] = None,
        obs: Any = None,
        mqtt_client_factory: Optional[Callable[[], Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._settings = settings
        self._log = logger or _LOGGER
        self._stop = asyncio.Event()
        self.exit_code = 0

        bambu, obs_cfg, app = settings.bambu, settings.obs, settings.app

        self.obs = obs or ObsWebsocket(obs_cfg.ws_address, obs_cfg.ws_password)
        self.reconciler = ResourceReconciler(
            self.obs,
            obs_cfg.scene,
            force_recreate=obs_cfg.force_create_inputs,
            lock_inputs=obs_cfg.lock_inputs,
        )
        self.render = RenderTargetSupervisor(
            self.obs,
            self.reconciler,
            build_layout(app.image_dir, obs_cfg.stream_source, bambu.path_to_sdp),
            on_shutdown=self._fatal,
            start_stream_on_startup=obs_cfg.start_stream_on_startup,
            exit_on_disconnect=app.exit_on_obs_disconnect,
            print_scene_items_and_exit=app.print_scene_items_and_exit,
        )
        self.projector = TelemetryProjector(self.reconciler, files)
        self.stage_policy = StagePolicy(
            self.obs,
            on_exit=self.request_stop,
            stop_stream_on_idle=obs_cfg.stop_stream_on_printer_idle,
            exit_on_idle=app.exit_on_idle,
            start_stream_on_startup=obs_cfg.start_stream_on_startup,
        )
        self.pipeline = MessagePipeline(self._process_message, on_exit=self.request_stop)
        self.mqtt = BambuMQTT(
            bambu.ip_address,
            bambu.serial,
            bambu.password,
            port=bambu.mqtt_port,
            username=bambu.username,
            on_message=self.pipeline.offer,
            on_fatal=self._fatal,
            stop_event=self._stop,
            exit_on_disconnect=app.exit_on_bambu_disconnect,
            client_factory=mqtt_client_factory,
        )

    def request_stop(self) -> None:
        if not self._stop.is_set():
            self._log.info("Shutting down")
            self._stop.set()

    def _fatal(self) -> None:
        self.exit_code = 1
        self.request_stop()

    async def _process_message(self, payload: Any) -> None:
        try:
            status = await self.projector.project(payload, self.render.overlay)
            if status is not None:
                await self.stage_policy.evaluate(status.stage)
        except ObsNotConnectedError as e:
            # OBS went away, or we are shutting down
            self._log.debug("Dropped message: %s", e)
        except ValueError as e:
            self._log.debug("Bad message from printer: %s", e)

    async def run(self) -> int:
        tasks: list[asyncio.Task] = []
        await self.obs.async_start()
        try:
            try:
                await self.mqtt.connect()
            except ConnectError as e:
                self._log.error("Bambu MQTT failure: %s", e)
                self.exit_code = 1
                return self.exit_code

            tasks.append(asyncio.create_task(self.pipeline.run()))
            tasks.append(asyncio.create_task(self.mqtt.run()))
            await self._stop.wait()
        finally:
            # aborts reconnect loops and stops the consumer
            self._stop.set()
            self.pipeline.close()
            for task in tasks:
                task.cancel()
            for result in await asyncio.gather(*tasks, return_exceptions=True):
                if isinstance(result, Exception):
                    self._log.error("Background task failed: %r", result)
            await self.stage_policy.close()
            await self.render.close()
            await self.mqtt.disconnect()
            await self.obs.async_stop()
        return self.exit_code
