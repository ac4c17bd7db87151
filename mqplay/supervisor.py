"""Connection and channel supervision.

Both supervisors are perpetual asyncio loops started with the client.
They never raise: every connectivity failure is funnelled into the
:class:`ErrorSink` and retried after a fixed backoff. Cancelling the
task is the only way to stop a loop.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from mqplay.broker import Broker, ChannelHandle, ConnectionHandle
from mqplay.config import MQConfig
from mqplay.exceptions import ConnectionLostError
from mqplay.metrics import reconnects_total, supervision_errors_total


logger = logging.getLogger(__name__)

T = TypeVar("T")

ChannelHook = Callable[[ChannelHandle], Awaitable[None]]


class LinkState(str, Enum):
    """Lifecycle state of a supervised connection or channel."""
    ABSENT = "absent"
    ESTABLISHING = "establishing"
    ESTABLISHED = "established"


class ErrorSink:
    """Single funnel for supervision failures; logs and never raises."""

    def __init__(self, maxsize: int = 64):
        self._queue: "asyncio.Queue[BaseException]" = asyncio.Queue(maxsize=maxsize)

    async def report(self, error: BaseException) -> None:
        supervision_errors_total.inc()
        await self._queue.put(error)

    async def run(self) -> None:
        """Drain reported errors into the log."""
        while True:
            error = await self._queue.get()
            logger.error(f"caught an error: {error}", exc_info=error)
            self._queue.task_done()

    async def join(self) -> None:
        """Wait until every reported error has been logged."""
        await self._queue.join()


class SupervisedHandle(Generic[T]):
    """Current handle of a supervised link.

    Only the owning supervisor writes it; everybody else reads the value
    through :meth:`get`, never by holding on to an old reference.
    """

    def __init__(self):
        self._value: Optional[T] = None
        self._state = LinkState.ABSENT

    @property
    def state(self) -> LinkState:
        return self._state

    def get(self) -> Optional[T]:
        return self._value

    def establishing(self) -> None:
        self._state = LinkState.ESTABLISHING

    def set(self, value: T) -> None:
        self._value = value
        self._state = LinkState.ESTABLISHED

    def clear(self) -> None:
        self._value = None
        self._state = LinkState.ABSENT


def _lost(what: str, reason: Optional[BaseException]) -> ConnectionLostError:
    error = ConnectionLostError(f"{what} closed: {reason}" if reason else f"{what} closed")
    error.__cause__ = reason
    return error


class ConnectionSupervisor:
    """Keeps one logical broker connection alive."""

    def __init__(self, broker: Broker, config: MQConfig, sink: ErrorSink):
        self.broker = broker
        self.config = config
        self.sink = sink
        self.handle: SupervisedHandle[ConnectionHandle] = SupervisedHandle()

    async def run(self) -> None:
        logger.info("watching for connection")
        while True:
            self.handle.establishing()
            logger.info("connecting to mq")
            try:
                connection = await self.broker.dial(self.config.amqp_url)
            except Exception as e:
                self.handle.clear()
                await self.sink.report(e)
                await asyncio.sleep(self.config.dial_retry_delay)
                continue

            closed = connection.notify_closed()
            self.handle.set(connection)
            logger.info("connected to mq")

            reason = await closed
            self.handle.clear()
            await self.sink.report(_lost("connection", reason))
            reconnects_total.labels(link="connection").inc()
            logger.info(f"reconnecting in {self.config.connection_retry_delay} seconds")
            await asyncio.sleep(self.config.connection_retry_delay)


class ChannelSupervisor:
    """Keeps one logical channel open on the supervised connection.

    Every successful open replays ``on_open`` hooks in registration order;
    the very first one also fires the readiness signal.
    """

    def __init__(
        self,
        connection: SupervisedHandle[ConnectionHandle],
        config: MQConfig,
        sink: ErrorSink,
        ready: "asyncio.Queue[None]",
    ):
        self.connection = connection
        self.config = config
        self.sink = sink
        self.handle: SupervisedHandle[ChannelHandle] = SupervisedHandle()
        self._ready = ready
        self._first_run = True
        self._hooks: List[ChannelHook] = []

    def add_hook(self, hook: ChannelHook) -> None:
        self._hooks.append(hook)

    async def _run_hooks(self, channel: ChannelHandle) -> None:
        for hook in list(self._hooks):
            try:
                await hook(channel)
            except Exception as e:
                await self.sink.report(e)

    async def run(self) -> None:
        logger.info("watching for channel")
        while True:
            connection = self.connection.get()
            if connection is None:
                logger.info(
                    f"not connected to mq, sleeping {self.config.channel_wait_delay} seconds"
                )
                await asyncio.sleep(self.config.channel_wait_delay)
                continue

            self.handle.establishing()
            try:
                channel = await connection.open_channel()
            except Exception as e:
                self.handle.clear()
                await self.sink.report(e)
                await asyncio.sleep(self.config.channel_open_retry_delay)
                continue

            closed = channel.notify_closed()
            self.handle.set(channel)
            logger.info("channel opened")

            await self._run_hooks(channel)
            if self._first_run:
                self._ready.put_nowait(None)
                self._first_run = False

            reason = await closed
            self.handle.clear()
            await self.sink.report(_lost("channel", reason))
            reconnects_total.labels(link="channel").inc()
            logger.info(f"reconnecting in {self.config.channel_retry_delay} seconds")
            await asyncio.sleep(self.config.channel_retry_delay)
