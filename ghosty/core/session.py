"""
Session transport for the venue's websocket API.
Owns one duplex connection at a time: connect, authorize, keep-alive,
receive-dispatch and automatic reconnect after loss.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional
import structlog
import websockets
from websockets.exceptions import ConnectionClosed

from ..shared.types import Session, SessionState
from ..shared.constants import (
    DEFAULT_APP_ID, MSG_AUTHORIZE, MSG_BALANCE, PING_INTERVAL_S,
    RECONNECT_DELAY_S, WS_ENDPOINT
)
from ..shared.utils import parse_json_message, serialize_to_json
from .protocol import authorize_request, error_message, parse_balance_message, ping_request

logger = structlog.get_logger(__name__)

ConnectFactory = Callable[[str], Awaitable[Any]]


class SessionTransport:
    """Websocket session with an explicit connection state machine.

    States run ``DISCONNECTED -> CONNECTING -> AUTHORIZING -> READY`` and back
    to ``DISCONNECTED`` on loss; failures pass through ``ERROR``. Every loss
    schedules one reconnect after a constant delay, for as long as the session
    is still wanted.
    """

    def __init__(self,
                 endpoint: str = WS_ENDPOINT,
                 app_id: str = DEFAULT_APP_ID,
                 ping_interval: float = PING_INTERVAL_S,
                 reconnect_delay: float = RECONNECT_DELAY_S,
                 connect_factory: Optional[ConnectFactory] = None):
        """Initialize session transport.

        Args:
            endpoint: Websocket endpoint of the venue
            app_id: Application id appended to the endpoint
            ping_interval: Seconds between keep-alive pings
            reconnect_delay: Seconds to wait before reconnecting after loss
            connect_factory: Coroutine function opening a connection for a URL
        """
        self.url = f"{endpoint}?app_id={app_id}"
        self.ping_interval = ping_interval
        self.reconnect_delay = reconnect_delay
        self._connect_factory = connect_factory or websockets.connect

        self._token: Optional[str] = None
        self._wanted = False
        self._state = SessionState.DISCONNECTED

        # One live session at a time
        self._session: Optional[Session] = None
        self._session_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._ready_event: Optional[asyncio.Event] = None

        # Callback functions
        self._message_callbacks: List[Callable[[Dict[str, Any]], None]] = []
        self._ready_callbacks: List[Callable[[], None]] = []
        self._disconnect_callbacks: List[Callable[[], None]] = []
        self._state_callbacks: List[Callable[[SessionState], None]] = []

        self.balance: Optional[float] = None

        self._stats = {
            "connect_attempts": 0,
            "reconnects_scheduled": 0,
            "frames_received": 0,
            "frames_dropped": 0,
            "frames_sent": 0,
            "venue_errors": 0
        }

    def add_message_callback(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Add callback receiving every parsed inbound message in arrival order."""
        self._message_callbacks.append(callback)

    def add_ready_callback(self, callback: Callable[[], None]) -> None:
        """Add callback invoked when the session becomes usable."""
        self._ready_callbacks.append(callback)

    def add_disconnect_callback(self, callback: Callable[[], None]) -> None:
        """Add callback invoked when a session ends."""
        self._disconnect_callbacks.append(callback)

    def add_state_callback(self, callback: Callable[[SessionState], None]) -> None:
        """Add callback invoked on every state transition."""
        self._state_callbacks.append(callback)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_open

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def connect(self, token: str) -> None:
        """Start a session with the given API token.

        Args:
            token: API token sent in the authorize request

        Raises:
            ValueError: If the token is empty
        """
        if not token:
            raise ValueError("API token is required to connect")

        self._token = token
        self._wanted = True

        if self._session is not None:
            logger.warning("Session already active", state=self._state.value)
            return

        self._cancel_reconnect()
        self._start_attempt()

    async def disconnect(self) -> None:
        """Tear down the session for good: no reconnect follows."""
        self._wanted = False
        self._token = None
        self._cancel_reconnect()

        task = self._session_task
        if task and not task.done():
            session = self._session
            if session is not None and session.connection is not None:
                await self._close_connection(session)
                try:
                    await asyncio.wait_for(asyncio.shield(task), timeout=5.0)
                except asyncio.TimeoutError:
                    task.cancel()
            else:
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info("Session disconnected by request")

    async def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the session to reach READY.

        Returns:
            bool: True if the session became ready within the timeout
        """
        if self.is_ready:
            return True
        try:
            await asyncio.wait_for(self._get_ready_event().wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_ready

    def send(self, message: Dict[str, Any]) -> bool:
        """Queue a message on the live session. Fire-and-forget.

        Args:
            message: Request to serialize and send

        Returns:
            bool: True if the message was queued on an open session
        """
        session = self._session
        if session is None or not session.is_open:
            logger.warning(
                "No open session, message not sent",
                request=next(iter(message), None),
                state=self._state.value
            )
            return False
        return self._enqueue(session, message)

    def get_statistics(self) -> Dict[str, Any]:
        """Get transport statistics."""
        return {
            **self._stats,
            "state": self._state.value,
            "connected": self.is_connected,
            "balance": self.balance
        }

    def _get_ready_event(self) -> asyncio.Event:
        if self._ready_event is None:
            self._ready_event = asyncio.Event()
            if self.is_ready:
                self._ready_event.set()
        return self._ready_event

    def _start_attempt(self) -> None:
        self._stats["connect_attempts"] += 1
        self._session_task = asyncio.get_running_loop().create_task(
            self._run_session(self._token)
        )

    async def _run_session(self, token: str) -> None:
        """Run one session attempt from connect to loss."""
        session = Session(token=token)
        self._session = session
        self._set_state(session, SessionState.CONNECTING)
        failed = False

        try:
            try:
                session.connection = await self._connect_factory(self.url)
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.warning("Connection attempt failed", url=self.url, error=str(e))
                failed = True
                return

            logger.info("Connection opened", url=self.url)
            session.is_open = True
            session.outbound = asyncio.Queue()
            self._set_state(session, SessionState.AUTHORIZING)

            loop = asyncio.get_running_loop()
            session.writer_task = loop.create_task(self._writer_loop(session))
            session.keepalive_task = loop.create_task(self._keepalive_loop(session))
            self._enqueue(session, authorize_request(token))

            failed = not await self._receive_loop(session)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Session error", error=str(e), error_type=type(e).__name__)
            failed = True
        finally:
            await self._teardown(session, failed)

    async def _receive_loop(self, session: Session) -> bool:
        """Dispatch inbound frames until the connection ends.

        Returns:
            bool: False if the attempt ended on an authorization failure
        """
        try:
            async for raw in session.connection:
                self._stats["frames_received"] += 1

                data = parse_json_message(raw)
                if data is None:
                    self._stats["frames_dropped"] += 1
                    continue

                if not self._handle_frame(session, data):
                    return False

        except ConnectionClosed as e:
            logger.info("Connection closed by venue", code=getattr(e, "code", None))

        return True

    def _handle_frame(self, session: Session, data: Dict[str, Any]) -> bool:
        """Apply session-level effects of a frame and forward it."""
        msg_type = data.get("msg_type")
        error = error_message(data)
        keep_going = True

        if error:
            self._stats["venue_errors"] += 1
            logger.warning("Venue reported error", msg_type=msg_type, error=error)

        if msg_type == MSG_AUTHORIZE:
            if error:
                logger.error("Authorization rejected", error=error)
                keep_going = False
            else:
                logger.info("Session authorized")
                self._set_state(session, SessionState.READY)
        elif msg_type == MSG_BALANCE:
            balance = parse_balance_message(data)
            if balance is not None:
                self.balance = balance

        for callback in list(self._message_callbacks):
            try:
                callback(data)
            except Exception as e:
                logger.error(
                    "Message callback failed",
                    callback_name=getattr(callback, '__name__', 'unknown'),
                    error=str(e)
                )

        if keep_going and msg_type == MSG_AUTHORIZE:
            self._notify(self._ready_callbacks)

        return keep_going

    async def _writer_loop(self, session: Session) -> None:
        """Send queued frames in order."""
        while True:
            payload = await session.outbound.get()
            try:
                await session.connection.send(payload)
                self._stats["frames_sent"] += 1
            except ConnectionClosed:
                logger.info("Send on closed connection dropped")
                return
            except Exception as e:
                logger.error("Failed to send message, closing connection", error=str(e))
                session.is_open = False
                await self._close_connection(session)
                return

    async def _keepalive_loop(self, session: Session) -> None:
        """Ping at a fixed interval while the connection is open."""
        while True:
            await asyncio.sleep(self.ping_interval)
            if session.is_open:
                self._enqueue(session, ping_request())

    def _enqueue(self, session: Session, message: Dict[str, Any]) -> bool:
        payload = serialize_to_json(message)
        if payload is None or session.outbound is None:
            return False
        session.outbound.put_nowait(payload)
        return True

    async def _teardown(self, session: Session, failed: bool) -> None:
        """Release a finished session and schedule the reconnect."""
        session.is_open = False

        for task in (session.keepalive_task, session.writer_task):
            if task and not task.done():
                task.cancel()

        if session.connection is not None:
            await self._close_connection(session)

        if self._session is session:
            self._session = None

        if failed:
            self._set_state(session, SessionState.ERROR)
        self._set_state(session, SessionState.DISCONNECTED)
        self._notify(self._disconnect_callbacks)

        if self._wanted and self._token:
            self._schedule_reconnect()

    async def _close_connection(self, session: Session) -> None:
        try:
            await session.connection.close()
        except Exception as e:
            logger.debug("Ignoring close error", error=str(e))

    def _schedule_reconnect(self) -> None:
        self._stats["reconnects_scheduled"] += 1
        logger.warning("Session lost, reconnecting", delay_s=self.reconnect_delay)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after_delay()
        )

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect_task = None

        if not self._wanted or not self._token:
            logger.info("Reconnect skipped, session no longer wanted")
            return
        if self._session is not None:
            logger.debug("Reconnect skipped, session already live")
            return

        self._start_attempt()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

    def _set_state(self, session: Session, state: SessionState) -> None:
        session.state = state
        if state is self._state:
            return

        logger.debug("Session state changed", previous=self._state.value, state=state.value)
        self._state = state

        if self._ready_event is not None:
            if state is SessionState.READY:
                self._ready_event.set()
            else:
                self._ready_event.clear()

        for callback in list(self._state_callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error("State callback failed", error=str(e))

    def _notify(self, callbacks: List[Callable[[], None]]) -> None:
        for callback in list(callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(
                    "Session callback failed",
                    callback_name=getattr(callback, '__name__', 'unknown'),
                    error=str(e)
                )
