from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .layout import Layout
from .models import InputHandle
from .obs import DisconnectInfo, ObsNotConnectedError, ObsRequestError
from .resources import ResourceReconciler

_LOGGER = logging.getLogger(__name__)


@dataclass
class Overlay:
    """Handles of the provisioned inputs, by layout key."""

    handles: Dict[str, InputHandle] = field(default_factory=dict)

    def get(self, key: str) -> Optional[InputHandle]:
        return self.handles.get(key)


class RenderTargetSupervisor:
    """Provisions the overlay every time the OBS connection becomes ready."""

    def __init__(
        self,
        obs: Any,
        reconciler: ResourceReconciler,
        layout: Layout,
        *,
        on_shutdown: Callable[[], None],
        start_stream_on_startup: bool = False,
        exit_on_disconnect: bool = False,
        print_scene_items_and_exit: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self._obs = obs
        self._reconciler = reconciler
        self._layout = layout
        self._on_shutdown = on_shutdown
        self._start_stream = start_stream_on_startup
        self._exit_on_disconnect = exit_on_disconnect
        self._print_and_exit = print_scene_items_and_exit
        self._log = logger or _LOGGER

        self.overlay: Optional[Overlay] = None
        self._init_task: Optional[asyncio.Task] = None

        obs.add_connected_listener(self._on_connected)
        obs.add_disconnected_listener(self._on_disconnected)

    @property
    def initialized(self) -> bool:
        return self.overlay is not None

    def _on_connected(self) -> None:
        self._log.info("Connected to OBS WebSocket")
        self._cancel_init()
        if self._print_and_exit:
            self._init_task = asyncio.create_task(self._dump_and_exit())
        else:
            self._init_task = asyncio.create_task(self.initialize())

    def _on_disconnected(self, info: DisconnectInfo) -> None:
        self.overlay = None
        self._cancel_init()
        self._log.warning("OBS WebSocket disconnected: %s (%s)", info.reason, info.code)

        if info.auth_failed:
            self._log.error("OBS WebSocket authentication failed. Check your OBS settings.")
            self._on_shutdown()
            return

        if self._exit_on_disconnect:
            self._on_shutdown()
        else:
            self._log.warning("Waiting for OBS reconnection...")

    def _cancel_init(self) -> None:
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()

    async def initialize(self) -> None:
        r = self._reconciler
        try:
            await r.ensure_video_settings()
            await r.ensure_scene()
            await r.ensure(self._layout.stream)
            await r.ensure(self._layout.backdrop)

            keys = {name: key for key, name in self._layout.keys.items()}
            overlay = Overlay()
            for descriptor in self._layout.inputs:
                handle = await r.ensure(descriptor)
                if descriptor.name in keys:
                    overlay.handles[keys[descriptor.name]] = handle
            self.overlay = overlay

            if self._start_stream and not await self._obs.is_stream_active():
                await self._obs.start_stream()
        except asyncio.CancelledError:
            raise
        except ObsNotConnectedError as e:
            # provisioning resumes after the next connect
            self._log.debug("OBS went away during initialization: %s", e)
        except Exception:
            self._log.exception("Failed to initialize OBS inputs. Is your OBS Studio set up correctly?")
            self._on_shutdown()
        else:
            self._log.info("OBS overlay ready (%s inputs)", len(overlay.handles))

    async def dump_scene_items(self) -> None:
        """Log video settings and every input's transform and settings."""
        video = await self._obs.get_video_settings()
        self._log.info("Video settings:\n%s", json.dumps(video, indent=2))
        scene = self._reconciler.scene
        for item in await self._obs.get_input_list():
            source = item.get("inputName")
            try:
                item_id = await self._obs.get_scene_item_id(scene, source)
                transform = await self._obs.get_scene_item_transform(scene, item_id)
                settings = await self._obs.get_input_settings(source)
            except ObsRequestError as e:
                self._log.debug("Failed to get scene item %s: %s", source, e)
                continue
            self._log.info(
                "%s %s:\n%s\nSettings:\n%s",
                item.get("inputKind"),
                source,
                json.dumps(transform, indent=2),
                json.dumps(settings, indent=2),
            )

    async def _dump_and_exit(self) -> None:
        try:
            await self.dump_scene_items()
        except ObsNotConnectedError as e:
            self._log.debug("OBS went away while listing scene items: %s", e)
        except Exception:
            self._log.exception("Failed to list scene items")
        finally:
            self._on_shutdown()

    async def close(self) -> None:
        task, self._init_task = self._init_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
