"""
Device Socket

aiohttp WebSocket transport owned by the connection controller. Opening,
reading and writing run as tasks on the controller's loop and report back
through the SocketEvents callbacks:

    on_socket_open(socket)
    on_socket_message(socket, text)
    on_socket_closed(socket, code, reason)
    on_socket_failure(socket, error)

`send()` never blocks: it queues the frame for the writer task (which keeps
frame order) and returns False once the socket is closing or closed. After a
local `close()` no further callbacks are emitted.
"""
import asyncio
from typing import Callable, Optional, Protocol

import aiohttp
import structlog

from wscontroller import constants

logger = structlog.get_logger()


class SocketEvents(Protocol):
    def on_socket_open(self, socket: "DeviceSocket") -> None:
        ...

    def on_socket_message(self, socket: "DeviceSocket", text: str) -> None:
        ...

    def on_socket_closed(self, socket: "DeviceSocket", code: int, reason: str) -> None:
        ...

    def on_socket_failure(self, socket: "DeviceSocket", error: BaseException) -> None:
        ...


class DeviceSocket:
    """One WebSocket connection to the command server."""

    def __init__(self, url: str, events: SocketEvents, open_timeout: float = 10.0):
        self.url = url
        self._events = events
        self.open_timeout = open_timeout

        self.session: Optional[aiohttp.ClientSession] = None
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None

        self._outbox: asyncio.Queue = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._session_close_task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def closed(self) -> bool:
        return self._closing or self.ws is None or self.ws.closed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Begin connecting in the background."""
        self._reader_task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        try:
            timeout = aiohttp.ClientTimeout(total=None, connect=self.open_timeout, sock_connect=self.open_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self.ws = await self.session.ws_connect(self.url, autoping=True, max_msg_size=0)
        except asyncio.CancelledError:
            await self._release()
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning("[Socket] Open failed", url=self.url, error=str(e))
            await self._release()
            self._emit(self._events.on_socket_failure, e)
            return

        self._writer_task = asyncio.ensure_future(self._write_loop())
        self._emit(self._events.on_socket_open)

        try:
            async for msg in self.ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._emit(self._events.on_socket_message, msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._emit(self._events.on_socket_message, msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = self.ws.exception() or ConnectionError("WebSocket error")
                    logger.warning("[Socket] Receive error", error=str(error))
                    await self._release()
                    self._emit(self._events.on_socket_failure, error)
                    return
        except asyncio.CancelledError:
            await self._release()
            raise
        except Exception as e:
            logger.warning("[Socket] Receive loop crashed", error=str(e))
            await self._release()
            self._emit(self._events.on_socket_failure, e)
            return

        code = self.ws.close_code or constants.CLOSE_ABNORMAL
        reason = str(self.ws.exception() or "")
        await self._release()
        self._emit(self._events.on_socket_closed, int(code), reason)

    async def _write_loop(self) -> None:
        while True:
            text = await self._outbox.get()
            try:
                await self.ws.send_str(text)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("[Socket] Send failed", error=str(e))
                self._emit(self._events.on_socket_failure, e)
                return
            finally:
                self._outbox.task_done()

    def _emit(self, callback: Callable, *args) -> None:
        if self._closing:
            return
        callback(self, *args)

    # =========================================================================
    # Public API
    # =========================================================================

    def send(self, text: str) -> bool:
        if self.closed:
            return False
        self._outbox.put_nowait(text)
        return True

    def close(self, code: int = constants.CLOSE_GOING_AWAY, reason: str = "", grace: float = 1.0) -> None:
        """Flush queued frames and close; hard-cancel if that takes longer than `grace`."""
        if self._closing:
            return
        self._closing = True
        self._close_task = asyncio.ensure_future(self._close(code, reason, grace))

    async def _close(self, code: int, reason: str, grace: float) -> None:
        try:
            await asyncio.wait_for(self._graceful_close(code, reason), timeout=grace)
        except asyncio.TimeoutError:
            logger.debug("[Socket] Close grace expired, cancelling", url=self.url)
        except Exception as e:
            logger.debug("[Socket] Close error", error=str(e))
        self.cancel()

    async def _graceful_close(self, code: int, reason: str) -> None:
        if self.ws is not None and not self.ws.closed:
            if self._writer_task is not None and not self._writer_task.done():
                await self._outbox.join()
            await self.ws.close(code=code, message=reason.encode("utf-8"))

    def cancel(self) -> None:
        """Tear everything down immediately."""
        self._closing = True
        for task in (self._writer_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
        if self.session is not None and not self.session.closed:
            self._session_close_task = asyncio.ensure_future(self.session.close())

    async def _release(self) -> None:
        if self._writer_task is not None and not self._writer_task.done():
            self._writer_task.cancel()
        if self.ws is not None and not self.ws.closed:
            await self.ws.close()
        if self.session is not None and not self.session.closed:
            await self.session.close()


def aiohttp_socket_factory(open_timeout: float = 10.0) -> Callable[[str, SocketEvents], DeviceSocket]:
    def factory(url: str, events: SocketEvents) -> DeviceSocket:
        return DeviceSocket(url, events, open_timeout=open_timeout)
    return factory
