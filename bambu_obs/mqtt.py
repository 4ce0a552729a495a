from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from typing import Any, Callable, Optional

import aiomqtt

from .const import (
    DEFAULT_MQTT_PORT,
    DEFAULT_USERNAME,
    MQTT_RECONNECT_INTERVAL,
    NOT_AUTHORIZED_CODES,
    REPORT_TOPIC,
)
from .models import ConnectionState

_LOGGER = logging.getLogger(__name__)


class ConnectError(Exception):
    """The broker rejected the connection or subscription."""

    def __init__(self, message: str, not_authorized: bool = False):
        super().__init__(message)
        self.not_authorized = not_authorized


def is_not_authorized(err: Optional[BaseException]) -> bool:
    if err is None:
        return False
    if isinstance(err, ConnectError):
        return err.not_authorized
    rc = getattr(err, "rc", None)
    code = getattr(rc, "value", rc)
    try:
        return int(code) in NOT_AUTHORIZED_CODES
    except (TypeError, ValueError):
        return False


class BambuMQTT:
    """Printer report subscription with its own reconnection state machine."""

    def __init__(
        self,
        host: str,
        serial: str,
        password: str,
        *,
        on_message: Callable[[Any], Any],
        on_fatal: Callable[[], None],
        stop_event: asyncio.Event,
        port: int = DEFAULT_MQTT_PORT,
        username: str = DEFAULT_USERNAME,
        exit_on_disconnect: bool = False,
        reconnect_interval: float = MQTT_RECONNECT_INTERVAL,
        client_factory: Optional[Callable[[], Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._host = host
        self._port = port
        self._serial = serial
        self._username = username
        self._password = password
        self._on_message = on_message
        self._on_fatal = on_fatal
        self._stop = stop_event
        self._exit_on_disconnect = exit_on_disconnect
        self._interval = reconnect_interval
        self._client_factory = client_factory
        self._log = logger or _LOGGER

        self._client: Any = None
        self._stack: Optional[contextlib.AsyncExitStack] = None
        # held by whichever task owns the retry loop
        self._gate = asyncio.Lock()
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0

    @property
    def topic(self) -> str:
        return REPORT_TOPIC.format(serial=self._serial)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    # ---------- Connection ----------

    @staticmethod
    def _tls_context() -> ssl.SSLContext:
        # printers use self-signed certificates
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def _make_client(self) -> Any:
        if self._client_factory:
            return self._client_factory()
        return aiomqtt.Client(
            self._host,
            port=self._port,
            username=self._username,
            password=self._password,
            identifier=f"bambu_obs_{self._serial}",
            tls_context=self._tls_context(),
            keepalive=15,
        )

    async def _open(self) -> None:
        """Connect a fresh client and subscribe. Subscriptions never survive a reconnect."""
        stack = contextlib.AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._make_client())
        except aiomqtt.MqttError as e:
            raise ConnectError(f"Failed to connect to Bambu MQTT: {e}", is_not_authorized(e)) from e
        try:
            await client.subscribe(self.topic)
        except aiomqtt.MqttError as e:
            with contextlib.suppress(aiomqtt.MqttError):
                await stack.aclose()
            raise ConnectError(f"Failed to subscribe to {self.topic}: {e}", is_not_authorized(e)) from e
        self._client = client
        self._stack = stack
        self.state = ConnectionState.CONNECTED

    async def connect(self) -> None:
        self.state = ConnectionState.CONNECTING
        try:
            await self._open()
        except ConnectError as e:
            self.state = ConnectionState.FAILED if e.not_authorized else ConnectionState.DISCONNECTED
            raise
        self._log.info("Connected to Bambu MQTT at %s:%s (%s)", self._host, self._port, self.topic)

    async def _close_client(self) -> None:
        stack, self._stack = self._stack, None
        self._client = None
        if stack is None:
            return
        try:
            await stack.aclose()
        except aiomqtt.MqttError as e:
            self._log.debug("Error closing MQTT client: %s", e)

    async def disconnect(self) -> None:
        await self._close_client()
        if self.state is not ConnectionState.FAILED:
            self.state = ConnectionState.DISCONNECTED
        self._log.debug("Bambu MQTT disconnected")

    # ---------- Receive loop ----------

    async def run(self) -> None:
        """Deliver messages to ``on_message`` until stopped or failed."""
        while not self._stop.is_set():
            client = self._client
            if client is None or self.state is not ConnectionState.CONNECTED:
                return
            reason: Optional[BaseException] = None
            try:
                async for message in client.messages:
                    self._on_message(message.payload)
            except aiomqtt.MqttError as e:
                reason = e
            if self._stop.is_set():
                return
            self.state = ConnectionState.DISCONNECTED
            await self.handle_disconnect(reason)

    async def handle_disconnect(self, reason: Optional[BaseException]) -> None:
        self._log.warning("Bambu MQTT disconnected: %s", reason or "connection closed")

        if self._gate.locked():
            # another task is already reconnecting
            return

        async with self._gate:
            if is_not_authorized(reason):
                self._log.error("Bambu MQTT authentication failed. Check your Bambu settings.")
                self.state = ConnectionState.FAILED
                self._on_fatal()
                return

            if self._exit_on_disconnect:
                self._on_fatal()
                return

            self.state = ConnectionState.RECONNECTING
            self._log.warning("Waiting for Bambu MQTT reconnection...")
            await self._close_client()
            await self._reconnect_loop()

    async def _reconnect_loop(self) -> None:
        while not self._stop.is_set():
            self.reconnect_attempts += 1
            try:
                await self._open()
            except ConnectError as e:
                if e.not_authorized:
                    self._log.error("Bambu MQTT authentication failed. Check your Bambu settings.")
                    self.state = ConnectionState.FAILED
                    self._on_fatal()
                    return
                self._log.debug("Failed to reconnect to Bambu MQTT: %s", e)
            else:
                self._log.info("Reconnected to Bambu MQTT")
                return
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), self._interval)
        self.state = ConnectionState.DISCONNECTED
