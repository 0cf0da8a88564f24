"""
Docker event relay.

Bridges docker-py's blocking event stream into asyncio so the gateway can
forward daemon events to a chunked HTTP response or a WebSocket.

Architecture:
  - One daemon subscription per subscribe()/relay() call
  - A daemon reader thread pushes events onto an asyncio.Queue and reports
    a stream failure through a Future
  - The consumer waits on three sources at once: the next event, the
    failure Future and the cancellation Event

When more than one source is ready at the same time the order is:
cancellation, then error, then event. Cancellation ends the relay cleanly,
an error closes the subscription and is raised, and a failed write to the
sink is logged and ends the relay. Events are never buffered for a later
subscriber: anything the daemon emits while nobody is subscribed is lost.
"""

import asyncio
import logging
import threading
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from .errors import DockmanError

logger = logging.getLogger(__name__)

_END = object()

Sink = Callable[[Dict[str, Any]], Awaitable[None]]


def _close_opened(opening: asyncio.Future) -> None:
    if opening.cancelled() or opening.exception() is not None:
        return
    try:
        opening.result().close()
    except Exception as e:
        logger.debug(f"Error closing event stream: {e}")
    logger.debug("Docker event subscription closed before first read")


class EventRelay:
    def __init__(self, backend):
        self.backend = backend

    async def subscribe(self, cancel: Optional[asyncio.Event] = None,
                        since: Optional[str] = None, until: Optional[str] = None) -> AsyncIterator[Dict[str, Any]]:
        """Yield daemon events until cancelled, failed or the stream ends."""
        cancel = cancel or asyncio.Event()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        failure: asyncio.Future = loop.create_future()
        closed = threading.Event()

        opening = asyncio.ensure_future(asyncio.to_thread(self.backend.events, since, until))
        try:
            stream = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # the worker thread still finishes opening; close what it returns
            opening.add_done_callback(_close_opened)
            raise
        reader = threading.Thread(
            target=self._pump, args=(stream, loop, queue, failure, closed),
            name="docker-events", daemon=True,
        )
        reader.start()
        logger.debug("Docker event subscription opened")

        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            while True:
                get = asyncio.ensure_future(queue.get())
                await asyncio.wait({get, cancelled, failure}, return_when=asyncio.FIRST_COMPLETED)
                if cancel.is_set():
                    get.cancel()
                    logger.debug("Event relay cancelled by client")
                    return
                if failure.done():
                    get.cancel()
                    raise failure.result()
                item = get.result()
                if item is _END:
                    logger.debug("Docker event stream ended")
                    return
                yield item
        finally:
            cancelled.cancel()
            closed.set()
            try:
                stream.close()
            except Exception as e:
                logger.debug(f"Error closing event stream: {e}")
            logger.debug("Docker event subscription closed")

    async def relay(self, sink: Sink, cancel: Optional[asyncio.Event] = None,
                    since: Optional[str] = None, until: Optional[str] = None) -> None:
        """
        Forward each event to sink until cancellation or failure.

        Daemon errors propagate; sink errors are logged and end the relay.
        """
        async with aclosing(self.subscribe(cancel, since, until)) as events:
            async for event in events:
                try:
                    await sink(event)
                except Exception as e:
                    logger.warning(f"Event sink write failed, closing relay: {e}")
                    return

    @staticmethod
    def _pump(stream, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue,
              failure: asyncio.Future, closed: threading.Event) -> None:
        def post(callback, *args) -> None:
            try:
                loop.call_soon_threadsafe(callback, *args)
            except RuntimeError:
                # loop already closed; nobody is listening anymore
                pass

        def fail(error: Exception) -> None:
            if not failure.done():
                failure.set_result(error)

        try:
            for event in stream:
                if closed.is_set():
                    return
                post(queue.put_nowait, event)
        except Exception as e:
            if closed.is_set():
                return
            logger.error(f"Docker events error: {e}")
            error = e if isinstance(e, DockmanError) else DockmanError(str(e))
            post(fail, error)
        else:
            post(queue.put_nowait, _END)
