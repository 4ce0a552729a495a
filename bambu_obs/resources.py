from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .const import (
    COLOR_INPUT_KIND,
    IMAGE_INPUT_KIND,
    MEDIA_STATE_PLAYING,
    OBS_NOT_FOUND,
    PROVISION_BACKOFF_SEC,
    TEXT_INPUT_KIND,
    VIDEO_FPS,
    VIDEO_HEIGHT,
    VIDEO_INPUT_KIND,
    VIDEO_WIDTH,
)
from .models import InputHandle, ResourceDescriptor, ResourceKind
from .obs import ObsRequestError

_LOGGER = logging.getLogger(__name__)

INPUT_KINDS = {
    ResourceKind.TEXT: TEXT_INPUT_KIND,
    ResourceKind.IMAGE: IMAGE_INPUT_KIND,
    ResourceKind.COLOR: COLOR_INPUT_KIND,
    ResourceKind.VIDEO: VIDEO_INPUT_KIND,
}


class ProvisioningError(Exception):
    """OBS cannot be brought into the shape the overlay needs."""


class ResourceReconciler:
    """Idempotently provisions the overlay's inputs in one OBS scene.

    ``obs`` is anything exposing the request surface of
    :class:`bambu_obs.obs.ObsWebsocket`. Inputs are keyed by name; an
    existing input is reused unless ``force_recreate`` is set.
    """

    def __init__(
        self,
        obs: Any,
        scene: str,
        *,
        force_recreate: bool = False,
        lock_inputs: bool = False,
        backoff: float = PROVISION_BACKOFF_SEC,
        media_poll: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ):
        self._obs = obs
        self._scene = scene
        self._force = force_recreate
        self._lock = lock_inputs
        self._backoff_sec = backoff
        self._media_poll = media_poll
        self._log = logger or _LOGGER

    @property
    def scene(self) -> str:
        return self._scene

    async def _backoff(self) -> None:
        # keep provisioning from flooding OBS
        await asyncio.sleep(self._backoff_sec)

    async def find_input(self, name: str) -> Optional[Dict[str, Any]]:
        """Current settings of the named input, or None if it doesn't exist."""
        try:
            return await self._obs.get_input_settings(name)
        except ObsRequestError as e:
            if e.code == OBS_NOT_FOUND:
                return None
            raise

    async def ensure_video_settings(self) -> None:
        settings = await self._obs.get_video_settings()
        if (
            settings.get("baseWidth") == VIDEO_WIDTH
            and settings.get("outputWidth") == VIDEO_WIDTH
            and settings.get("baseHeight") == VIDEO_HEIGHT
            and settings.get("outputHeight") == VIDEO_HEIGHT
        ):
            return

        if (
            await self._obs.is_recording()
            or await self._obs.is_stream_active()
            or await self._obs.is_virtual_cam_active()
        ):
            raise ProvisioningError(
                "Cannot change output video settings while recording, streaming, or virtual camera "
                f"is active. Output settings must be {VIDEO_WIDTH}x{VIDEO_HEIGHT}."
            )

        self._log.info("Setting video settings to %sx%s", VIDEO_WIDTH, VIDEO_HEIGHT)
        settings = dict(settings)
        settings["baseWidth"] = settings["outputWidth"] = VIDEO_WIDTH
        settings["baseHeight"] = settings["outputHeight"] = VIDEO_HEIGHT
        settings["fpsNumerator"] = VIDEO_FPS
        settings["fpsDenominator"] = 1
        await self._obs.set_video_settings(settings)
        await self._backoff()

    async def ensure_scene(self) -> None:
        if self._scene in await self._obs.get_scene_names():
            return
        self._log.info("Creating scene %s", self._scene)
        await self._obs.create_scene(self._scene)
        await self._obs.set_current_program_scene(self._scene)
        await self._backoff()

    async def ensure(self, descriptor: ResourceDescriptor) -> InputHandle:
        existing = await self.find_input(descriptor.name)
        if existing is not None:
            if not self._force:
                return await self._reuse(descriptor, existing)
            self._log.info("Recreating %s", descriptor.name)
            await self._obs.remove_input(descriptor.name)
            await self._backoff()
        return await self._create(descriptor)

    async def _reuse(self, descriptor: ResourceDescriptor, existing: Dict[str, Any]) -> InputHandle:
        handle = InputHandle(descriptor, dict(existing))
        # icons always start from their default file
        if descriptor.icon_path and existing.get("file") != descriptor.icon_path:
            self._log.debug("Resetting %s to %s", descriptor.name, descriptor.icon_path)
            handle.settings["file"] = descriptor.icon_path
            await self._obs.set_input_settings(descriptor.name, {"file": descriptor.icon_path})
            await self._backoff()
        return handle

    async def _create(self, descriptor: ResourceDescriptor) -> InputHandle:
        settings = dict(descriptor.settings)
        if descriptor.kind is ResourceKind.VIDEO and not settings.get("input"):
            raise ProvisioningError(f"No stream input configured for {descriptor.name} (set path_to_sdp)")

        self._log.info("Creating %s source %s", descriptor.kind.value, descriptor.name)
        item_id = await self._obs.create_input(self._scene, descriptor.name, INPUT_KINDS[descriptor.kind], settings)

        if descriptor.kind is ResourceKind.VIDEO:
            # transforms only apply once the media is playing
            await self._wait_for_playback(descriptor.name)

        await self._obs.set_scene_item_transform(self._scene, item_id, descriptor.scene_item_transform())
        if descriptor.z_index is not None:
            await self._obs.set_scene_item_index(self._scene, item_id, descriptor.z_index)
        if self._lock:
            await self._obs.set_scene_item_locked(self._scene, item_id, True)

        await self._backoff()
        return InputHandle(descriptor, await self._obs.get_input_settings(descriptor.name))

    async def _wait_for_playback(self, name: str) -> None:
        while await self._obs.get_media_state(name) != MEDIA_STATE_PLAYING:
            self._log.info("Waiting for stream to start... (Make sure you enabled streaming in Bambu Studio)")
            await asyncio.sleep(self._media_poll)

    # ---------- Mutators used per message ----------

    async def update_text(self, handle: Optional[InputHandle], text: str) -> None:
        if handle is None:
            self._log.warning("Tried to update text of a null input")
            return
        if handle.settings.get("text") == text:
            return
        handle.settings["text"] = text
        await self._obs.set_input_settings(handle.name, {"text": text})

    async def set_icon_state(self, handle: Optional[InputHandle], enabled: bool, refresh: bool = False) -> None:
        """Point a toggle icon at its on/off file. ``refresh`` resends an unchanged path."""
        if handle is None:
            self._log.warning("Tried to set icon state of a null input")
            return
        path = handle.descriptor.icon_for(enabled)
        if not refresh and handle.settings.get("file") == path:
            return
        handle.settings["file"] = path
        await self._obs.set_input_settings(handle.name, {"file": path})
