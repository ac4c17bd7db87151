"""Client API for mqplay: supervised connection plus the publish facade."""

import asyncio
import logging
from enum import Enum
from typing import Optional, Set

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel

from mqplay.amqp import AioPikaBroker
from mqplay.broker import Broker, ChannelHandle, ConnectionHandle
from mqplay.config import MQConfig
from mqplay.exceptions import (
    ChannelClosedError,
    ExchangeNotCreatedError,
    NotForSendingError,
    PublishError,
)
from mqplay.metrics import published_total
from mqplay.registry import ExchangeRegistry
from mqplay.supervisor import (
    ChannelHook,
    ChannelSupervisor,
    ConnectionSupervisor,
    ErrorSink,
    LinkState,
)


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ClientMode(str, Enum):
    """What a client is allowed to do."""
    PUBLISHER = "publisher"
    CONSUMER = "consumer"


class MQClient:
    """Supervised broker client.

    ``start()`` launches the error sink, the connection supervisor and the
    channel supervisor as background tasks; they keep running until
    ``stop()``. Publishing and exchange registration operate on whatever
    channel is current at the time of the call.
    """

    def __init__(
        self,
        config: MQConfig,
        mode: Optional[ClientMode] = None,
        broker: Optional[Broker] = None,
    ):
        self.config = config
        self.mode = mode or ClientMode.PUBLISHER
        self.broker = broker or AioPikaBroker()

        self.sink = ErrorSink(config.error_sink_size)
        self.registry = ExchangeRegistry(self.sink)
        self._ready: "asyncio.Queue[None]" = asyncio.Queue(maxsize=1)
        self._connection = ConnectionSupervisor(self.broker, config, self.sink)
        self._channel = ChannelSupervisor(
            self._connection.handle, config, self.sink, self._ready
        )
        self._channel.add_hook(self.registry.replay)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def connection(self) -> Optional[ConnectionHandle]:
        return self._connection.handle.get()

    @property
    def channel(self) -> Optional[ChannelHandle]:
        return self._channel.handle.get()

    @property
    def connection_state(self) -> LinkState:
        return self._connection.handle.state

    @property
    def channel_state(self) -> LinkState:
        return self._channel.handle.state

    def on_channel_open(self, hook: ChannelHook) -> None:
        """Run ``hook`` after the exchange replay on every later channel open."""
        self._channel.add_hook(hook)

    async def start(self) -> None:
        """Start the supervision loops."""
        if self.running:
            return

        logger.info(f"Starting mq client in {self.mode.value} mode")
        for coro in (self.sink.run(), self._connection.run(), self._channel.run()):
            task = asyncio.create_task(coro)
            self._tasks.add(task)

    async def stop(self) -> None:
        """Cancel the supervision loops and close live handles."""
        logger.info("Stopping mq client")
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        channel, connection = self.channel, self.connection
        self._channel.handle.clear()
        self._connection.handle.clear()
        for handle in (channel, connection):
            if handle is None:
                continue
            try:
                await handle.close()
            except Exception as e:
                logger.warning(f"Error while closing {handle}: {e}")

    async def ready(self) -> None:
        """Wait for the first channel to open.

        The signal fires once per client; a second call blocks forever.
        """
        await self._ready.get()

    async def connect_to_exchange(self, name: str, exchange_type: str = "fanout") -> None:
        """Declare an exchange and remember it for publishing and replay."""
        await self.registry.connect_to_exchange(
            self.connection, self.channel, name, exchange_type
        )

    async def send(self, name: str, data: bytes, routing_key: str) -> None:
        """Publish ``data`` to a registered exchange."""
        if self.mode == ClientMode.CONSUMER:
            raise NotForSendingError()

        if name not in self.registry:
            raise ExchangeNotCreatedError(name)

        with tracer.start_as_current_span("send") as span:
            span.set_attributes({
                "messaging.destination": name,
                "messaging.routing_key": routing_key,
            })

            channel = self.channel
            if channel is None:
                error = ChannelClosedError()
                span.set_status(Status(StatusCode.ERROR, str(error)))
                raise error

            try:
                await channel.publish(
                    name,
                    routing_key,
                    data,
                    content_type=self.config.content_type,
                    mandatory=False,
                    immediate=False,
                )
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise PublishError(f"Failed to publish to {name}: {e}") from e

        published_total.labels(exchange=name).inc()
        logger.debug(f"Published {len(data)} bytes to {name}")

    async def publish_event(
        self,
        name: str,
        event: BaseModel,
        routing_key: Optional[str] = None,
    ) -> None:
        """Serialize a pydantic event to JSON and send it."""
        data = event.model_dump_json(by_alias=True).encode("utf-8")
        await self.send(name, data, routing_key or self.config.default_routing_key)

    async def __aenter__(self) -> "MQClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
