from __future__ import annotations

import asyncio
import base64
import contextlib
import hashlib
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from .const import (
    OBS_AUTH_FAILED,
    OBS_REQUEST_TIMEOUT,
    OBS_RPC_VERSION,
    OBS_SUBPROTOCOL,
    RECONNECT_BACKOFF,
)
from .models import ConnectionState

_LOGGER = logging.getLogger(__name__)

# websocket v5 opcodes
OP_HELLO = 0
OP_IDENTIFY = 1
OP_IDENTIFIED = 2
OP_EVENT = 5
OP_REQUEST = 6
OP_REQUEST_RESPONSE = 7


class ObsError(Exception):
    """Base error for the OBS websocket client."""


class ObsNotConnectedError(ObsError):
    """No identified session; raised by requests racing a disconnect or shutdown."""


class ObsConnectionClosed(ObsError):
    def __init__(self, code: Optional[int]):
        super().__init__(f"connection closed (code {code})")
        self.code = code


class ObsRequestError(ObsError):
    def __init__(self, request_type: str, code: Optional[int], comment: Optional[str] = None):
        super().__init__(f"{request_type} failed with code {code}: {comment or ''}".rstrip(": "))
        self.request_type = request_type
        self.code = code
        self.comment = comment


@dataclass
class DisconnectInfo:
    code: Optional[int]
    reason: str

    @property
    def auth_failed(self) -> bool:
        return self.code == OBS_AUTH_FAILED


def auth_string(password: str, salt: str, challenge: str) -> str:
    secret = base64.b64encode(hashlib.sha256((password + salt).encode()).digest())
    return base64.b64encode(hashlib.sha256(secret + challenge.encode()).digest()).decode()


class ObsWebsocket:
    """OBS websocket (v5) client. Reconnects on its own and notifies listeners."""

    def __init__(
        self,
        url: str,
        password: str = "",
        *,
        backoff: Optional[List[float]] = None,
        request_timeout: float = OBS_REQUEST_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self._url = url
        self._password = password or ""
        self._backoff = list(backoff or RECONNECT_BACKOFF)
        self._timeout = request_timeout
        self._sleep = sleep
        self._log = logger or _LOGGER

        self._session: Optional[aiohttp.ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._identified = False
        self._pending: Dict[str, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self.state = ConnectionState.DISCONNECTED

        self._connected_listeners: list[Callable[[], None]] = []
        self._disconnected_listeners: list[Callable[[DisconnectInfo], None]] = []

    # ---------- Public API ----------

    def add_connected_listener(self, cb: Callable[[], None]) -> None:
        self._connected_listeners.append(cb)

    def add_disconnected_listener(self, cb: Callable[[DisconnectInfo], None]) -> None:
        self._disconnected_listeners.append(cb)

    @property
    def is_connected(self) -> bool:
        return self._identified and self._ws is not None and not self._ws.closed

    async def async_start(self) -> None:
        self._session = aiohttp.ClientSession()
        self._task = asyncio.create_task(self._runner())

    async def async_stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._ws and not self._ws.closed:
            await self._ws.close()
        if self._session:
            await self._session.close()
            self._session = None
        if self.state is not ConnectionState.FAILED:
            self.state = ConnectionState.DISCONNECTED

    async def call(self, request_type: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one request and wait for its response data."""
        ws = self._ws
        if ws is None or ws.closed or not self._identified:
            raise ObsNotConnectedError(f"{request_type}: OBS websocket is not connected")

        request_id = str(next(self._ids))
        fut = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        envelope = {
            "op": OP_REQUEST,
            "d": {"requestType": request_type, "requestId": request_id, "requestData": data or {}},
        }
        try:
            await ws.send_str(json.dumps(envelope))
            resp = await asyncio.wait_for(fut, self._timeout)
        except ConnectionResetError as e:
            raise ObsNotConnectedError(f"{request_type}: {e}") from e
        except asyncio.TimeoutError as e:
            raise ObsError(f"{request_type}: no response within {self._timeout}s") from e
        finally:
            self._pending.pop(request_id, None)

        status = resp.get("requestStatus") or {}
        if not status.get("result"):
            raise ObsRequestError(request_type, status.get("code"), status.get("comment"))
        return resp.get("responseData") or {}

    # ---------- Requests ----------

    async def get_video_settings(self) -> Dict[str, Any]:
        return await self.call("GetVideoSettings")

    async def set_video_settings(self, settings: Dict[str, Any]) -> None:
        await self.call("SetVideoSettings", settings)

    async def get_scene_names(self) -> List[str]:
        data = await self.call("GetSceneList")
        return [s.get("sceneName") for s in data.get("scenes", [])]

    async def create_scene(self, scene: str) -> None:
        await self.call("CreateScene", {"sceneName": scene})

    async def set_current_program_scene(self, scene: str) -> None:
        await self.call("SetCurrentProgramScene", {"sceneName": scene})

    async def get_input_list(self) -> List[Dict[str, Any]]:
        data = await self.call("GetInputList")
        return data.get("inputs", [])

    async def get_input_settings(self, name: str) -> Dict[str, Any]:
        data = await self.call("GetInputSettings", {"inputName": name})
        return data.get("inputSettings") or {}

    async def set_input_settings(self, name: str, settings: Dict[str, Any], overlay: bool = True) -> None:
        await self.call(
            "SetInputSettings",
            {"inputName": name, "inputSettings": settings, "overlay": overlay},
        )

    async def create_input(
        self, scene: str, name: str, kind: str, settings: Dict[str, Any], enabled: bool = True
    ) -> int:
        data = await self.call(
            "CreateInput",
            {
                "sceneName": scene,
                "inputName": name,
                "inputKind": kind,
                "inputSettings": settings,
                "sceneItemEnabled": enabled,
            },
        )
        return int(data["sceneItemId"])

    async def remove_input(self, name: str) -> None:
        await self.call("RemoveInput", {"inputName": name})

    async def get_media_state(self, name: str) -> Optional[str]:
        data = await self.call("GetMediaInputStatus", {"inputName": name})
        return data.get("mediaState")

    async def get_scene_item_id(self, scene: str, source: str, offset: int = 0) -> int:
        data = await self.call(
            "GetSceneItemId", {"sceneName": scene, "sourceName": source, "searchOffset": offset}
        )
        return int(data["sceneItemId"])

    async def get_scene_item_transform(self, scene: str, item_id: int) -> Dict[str, Any]:
        data = await self.call("GetSceneItemTransform", {"sceneName": scene, "sceneItemId": item_id})
        return data.get("sceneItemTransform") or {}

    async def set_scene_item_transform(self, scene: str, item_id: int, transform: Dict[str, Any]) -> None:
        await self.call(
            "SetSceneItemTransform",
            {"sceneName": scene, "sceneItemId": item_id, "sceneItemTransform": transform},
        )

    async def set_scene_item_index(self, scene: str, item_id: int, index: int) -> None:
        await self.call(
            "SetSceneItemIndex", {"sceneName": scene, "sceneItemId": item_id, "sceneItemIndex": index}
        )

    async def set_scene_item_locked(self, scene: str, item_id: int, locked: bool) -> None:
        await self.call(
            "SetSceneItemLocked", {"sceneName": scene, "sceneItemId": item_id, "sceneItemLocked": locked}
        )

    async def is_stream_active(self) -> bool:
        data = await self.call("GetStreamStatus")
        return bool(data.get("outputActive"))

    async def start_stream(self) -> None:
        await self.call("StartStream")

    async def stop_stream(self) -> None:
        await self.call("StopStream")

    async def is_recording(self) -> bool:
        data = await self.call("GetRecordStatus")
        return bool(data.get("outputActive"))

    async def is_virtual_cam_active(self) -> bool:
        data = await self.call("GetVirtualCamStatus")
        return bool(data.get("outputActive"))

    # ---------- Internal: WS loop ----------

    async def _runner(self):
        backoffs = iter(self._backoff)
        self.state = ConnectionState.CONNECTING
        while True:
            info = DisconnectInfo(None, "connection closed")
            try:
                self._log.info("Connecting to OBS WebSocket at %s", self._url)
                async with self._session.ws_connect(
                    self._url, protocols=(OBS_SUBPROTOCOL,), timeout=10
                ) as ws:
                    self._ws = ws
                    await self._identify(ws)
                    self._identified = True
                    self.state = ConnectionState.CONNECTED
                    backoffs = iter(self._backoff)
                    for cb in list(self._connected_listeners):
                        cb()
                    await self._recv_loop(ws)
                    info = DisconnectInfo(ws.close_code, "closed by OBS")
            except ObsConnectionClosed as e:
                info = DisconnectInfo(e.code, str(e))
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ObsError, ValueError) as e:
                info = DisconnectInfo(None, str(e) or type(e).__name__)
            finally:
                self._identified = False
                self._ws = None
                self._fail_pending()

            for cb in list(self._disconnected_listeners):
                cb(info)
            if info.auth_failed:
                self.state = ConnectionState.FAILED
                self._log.debug("Authentication rejected, not reconnecting")
                return
            self.state = ConnectionState.RECONNECTING
            delay = next(backoffs, self._backoff[-1])
            self._log.debug("OBS WebSocket closed (%s); retrying in %ss", info.reason, delay)
            await self._sleep(delay)

    async def _receive_op(self, ws: aiohttp.ClientWebSocketResponse, op: int) -> Dict[str, Any]:
        msg = await ws.receive(timeout=self._timeout)
        if msg.type != aiohttp.WSMsgType.TEXT:
            code = ws.close_code
            if code is None and msg.type == aiohttp.WSMsgType.CLOSE:
                code = msg.data
            raise ObsConnectionClosed(code)
        data = json.loads(msg.data)
        if data.get("op") != op:
            raise ObsError(f"Expected op {op}, got {data.get('op')}")
        return data.get("d") or {}

    async def _identify(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        hello = await self._receive_op(ws, OP_HELLO)
        identify: Dict[str, Any] = {"rpcVersion": OBS_RPC_VERSION, "eventSubscriptions": 0}
        auth = hello.get("authentication")
        if auth:
            identify["authentication"] = auth_string(self._password, auth["salt"], auth["challenge"])
        await ws.send_str(json.dumps({"op": OP_IDENTIFY, "d": identify}))
        await self._receive_op(ws, OP_IDENTIFIED)
        self._log.debug("Identified with OBS WebSocket %s", hello.get("obsWebSocketVersion"))

    async def _recv_loop(self, ws: aiohttp.ClientWebSocketResponse):
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except ValueError as e:
                    self._log.debug("Bad JSON from OBS: %s", e)
                    continue
                self._dispatch(data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ObsError(f"WS error: {ws.exception()}")

    def _dispatch(self, data: Dict[str, Any]) -> None:
        op = data.get("op")
        d = data.get("d") or {}
        if op == OP_REQUEST_RESPONSE:
            fut = self._pending.pop(d.get("requestId"), None)
            if fut is not None and not fut.done():
                fut.set_result(d)
        elif op == OP_EVENT:
            self._log.debug("OBS event %s", d.get("eventType"))

    def _fail_pending(self) -> None:
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(ObsNotConnectedError("OBS websocket disconnected"))
