from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

import websockets
from websockets import exceptions as ws_exceptions

from ..lemmy_client import (
    LemmyAuthError,
    LemmyCredentials,
    NotConnectedError,
    build_request,
    insecure_websocket_url,
    normalize_instance,
    secure_websocket_url,
)


NOT_AUTHENTICATED_ERRORS = {"not_logged_in", "not_authenticated"}
BAD_CREDENTIALS_ERRORS = {
    "bad credentials",
    "bad_credentials",
    "incorrect_login",
    "password_incorrect",
    "couldnt_find_that_username_or_email",
}

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, ws_exceptions.WebSocketException)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    CLOSING_BY_REQUEST = "closing_by_request"


class ConnectionManager:
    """Owns the single websocket to the instance and its login session.

    Connects over wss:// first and falls back to ws:// once per attempt. A
    dropped connection schedules one reconnect after the retry backoff unless
    the drop was requested through stop(). Rejected credentials close the
    connection for good; wait_closed() then raises LemmyAuthError.
    """

    def __init__(
        self,
        instance: str,
        *,
        credentials: Optional[LemmyCredentials],
        on_frame: Callable[[str], Awaitable[None]],
        logger,
        on_connected: Optional[Callable[[], Awaitable[None]]] = None,
        minutes_before_retry_connection: float = 5,
        on_connection_failed: Optional[Callable[[Optional[BaseException]], Any]] = None,
        on_connection_error: Optional[Callable[[BaseException], Any]] = None,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
    ):
        self.instance = normalize_instance(instance)
        self.credentials = credentials
        self.logger = logger
        self.minutes_before_retry_connection = minutes_before_retry_connection
        self.state = ConnectionState.DISCONNECTED
        self.auth: Optional[str] = None
        self._on_frame = on_frame
        self._on_connected = on_connected
        self._on_connection_failed = on_connection_failed
        self._on_connection_error = on_connection_error
        self._connect = connect or websockets.connect
        self._websocket: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._send_tasks: Set[asyncio.Task] = set()
        self._halted = False
        self._fatal_error: Optional[BaseException] = None
        self._finished = asyncio.Event()
        # Bumped by stop(); a connect attempt started before it must not act afterwards.
        self._stop_generation = 0

    @property
    def connected(self) -> bool:
        return self._websocket is not None and self.state in {
            ConnectionState.CONNECTED,
            ConnectionState.AUTHENTICATED,
        }

    @property
    def authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED and bool(self.auth)

    @property
    def ready(self) -> bool:
        """Connected, and logged in when credentials are configured."""
        return self.connected and (self.credentials is None or self.authenticated)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            self.logger.debug("Connection state %s -> %s", self.state.value, state.value)
        self.state = state

    async def start(self) -> bool:
        if self.state in {ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED}:
            return True
        if self.state is ConnectionState.CLOSING_BY_REQUEST:
            self.logger.warning("Start ignored while a requested shutdown is in progress.")
            return False

        self._halted = False
        self._fatal_error = None
        self._finished.clear()
        self._set_state(ConnectionState.CONNECTING)
        generation = self._stop_generation
        last_error: Optional[BaseException] = None
        for url in (secure_websocket_url(self.instance), insecure_websocket_url(self.instance)):
            try:
                websocket = await self._connect(url)
            except TRANSPORT_ERRORS as e:
                self.logger.warning("Connection attempt failed url=%s error=%s", url, e)
                last_error = e
                if self._stop_generation != generation:
                    break
                continue
            except asyncio.CancelledError:
                if self._stop_generation == generation and self.state is ConnectionState.CONNECTING:
                    self._set_state(ConnectionState.DISCONNECTED)
                raise
            if self._stop_generation != generation or self.state is not ConnectionState.CONNECTING:
                # stop() ran while the handshake was in flight.
                await websocket.close()
                return False
            self._websocket = websocket
            self._set_state(ConnectionState.CONNECTED)
            self.logger.info("Connected to Lemmy instance url=%s", url)
            self._reader = asyncio.create_task(self._read_loop(websocket))
            self.login()
            if self._on_connected is not None:
                await self._on_connected()
            return True

        if self._stop_generation != generation:
            self.logger.info("Connection attempt abandoned after stop instance=%s", self.instance)
            return False
        self._set_state(ConnectionState.DISCONNECTED)
        self.logger.error("Connection failed instance=%s error=%s", self.instance, last_error)
        if self._on_connection_failed is not None:
            self._on_connection_failed(last_error)
        self.schedule_reconnect()
        return False

    async def stop(self) -> None:
        self._stop_generation += 1
        self._set_state(ConnectionState.CLOSING_BY_REQUEST)
        self._cancel_reconnect()
        websocket = self._websocket
        if websocket is not None:
            self.logger.info("Closing connection instance=%s", self.instance)
            await websocket.close()
        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        for task in list(self._send_tasks):
            task.cancel()
        self._reader = None
        self._websocket = None
        self.auth = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._finished.set()

    async def wait_closed(self) -> None:
        await self._finished.wait()
        if self._fatal_error is not None:
            raise self._fatal_error

    def schedule_reconnect(self) -> None:
        if self._halted or self.state in {
            ConnectionState.CLOSING_BY_REQUEST,
            ConnectionState.CONNECTING,
        }:
            return
        if self.connected:
            return
        if self.reconnect_pending and self._reconnect_task is not asyncio.current_task():
            return
        delay = float(self.minutes_before_retry_connection) * 60
        self.logger.info("Reconnect scheduled instance=%s in_minutes=%s", self.instance, self.minutes_before_retry_connection)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        # _reconnect_task keeps pointing here until start() returns so stop() can cancel it.
        try:
            await asyncio.sleep(delay)
            await self.start()
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def send(self, frame: str) -> None:
        websocket = self._websocket
        if websocket is None:
            raise NotConnectedError("Must be connected to send requests")
        task = asyncio.create_task(self._send(websocket, frame))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def _send(self, websocket, frame: str) -> None:
        try:
            await websocket.send(frame)
        except ws_exceptions.ConnectionClosed as e:
            self.logger.warning("Send failed; connection closed error=%s", e)

    def login(self) -> bool:
        if self.credentials is None or self._websocket is None:
            return False
        self.logger.info("Logging in username=%s source=%s", self.credentials.username, self.credentials.source)
        self.send(
            build_request(
                "Login",
                {
                    "username_or_email": self.credentials.username,
                    "password": self.credentials.password,
                },
            )
        )
        return True

    def mark_authenticated(self, jwt: Any) -> None:
        if not isinstance(jwt, str) or not jwt:
            self.logger.warning("Login response carried no jwt")
            return
        self.auth = jwt
        if self._websocket is not None:
            self._set_state(ConnectionState.AUTHENTICATED)
        self.logger.info("Logged in instance=%s", self.instance)

    def handle_service_error(self, code: str, op: Optional[str] = None) -> None:
        if code in NOT_AUTHENTICATED_ERRORS:
            self.logger.warning("Not logged in op=%s; re-authenticating", op)
            self.auth = None
            if self.state is ConnectionState.AUTHENTICATED:
                self._set_state(ConnectionState.CONNECTED)
            self.login()
            return
        if code in BAD_CREDENTIALS_ERRORS:
            username = self.credentials.username if self.credentials else None
            raise LemmyAuthError(f"Lemmy rejected the login for {username}@{self.instance}: {code}")
        self.logger.warning("Service error op=%s error=%s", op, code)

    async def _read_loop(self, websocket) -> None:
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                try:
                    await self._on_frame(message)
                except LemmyAuthError as e:
                    self.logger.error("Authentication failed; closing connection error=%s", e)
                    self._fatal_error = e
                    self._halted = True
                    await websocket.close()
                    break
                except Exception as e:
                    self.logger.error("Inbound frame handling failed error=%s", e)
        except ws_exceptions.ConnectionClosed as e:
            self.logger.warning("Connection error instance=%s error=%s", self.instance, e)
            if self._on_connection_error is not None:
                self._on_connection_error(e)
        finally:
            self._handle_disconnect(websocket)

    def _handle_disconnect(self, websocket) -> None:
        if self._websocket is not websocket:
            return
        self.logger.info("Connection closed instance=%s", self.instance)
        self._websocket = None
        self.auth = None
        if self.state is ConnectionState.CLOSING_BY_REQUEST:
            return
        self._set_state(ConnectionState.DISCONNECTED)
        if self._halted:
            self._cancel_reconnect()
            self._finished.set()
            return
        self.schedule_reconnect()
