"""Delivery dispatcher - consumes every handled exchange and settles deliveries."""

import asyncio
import logging
import time
from typing import AsyncIterator, Optional, Set

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from mqplay.broker import ChannelHandle, IncomingMessage
from mqplay.client import MQClient
from mqplay.context import HandlingContext
from mqplay.exceptions import ChannelClosedError, DeliveryAlreadySettledError
from mqplay.handlers import HandlerRegistry
from mqplay.metrics import deliveries_total
from mqplay.registry import Exchange, declare


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class Delivery:
    """A broker message tagged with the exchange and type it was consumed from.

    Exactly one of :meth:`ack` or :meth:`nack` may be called.
    """

    def __init__(self, exchange: str, exchange_type: str, message: IncomingMessage):
        self.exchange = exchange
        self.type = exchange_type
        self.body = message.body
        self.redelivered = message.redelivered
        self._message = message
        self.settled = False

    def _settle(self) -> None:
        if self.settled:
            raise DeliveryAlreadySettledError(
                f"delivery from {self.exchange}:{self.type} already settled"
            )
        self.settled = True

    async def ack(self) -> None:
        self._settle()
        await self._message.ack(multiple=False)

    async def nack(self, requeue: bool = True) -> None:
        self._settle()
        await self._message.nack(multiple=False, requeue=requeue)

    def __repr__(self) -> str:
        return (
            f"Delivery(exchange={self.exchange!r}, type={self.type!r}, "
            f"redelivered={self.redelivered}, size={len(self.body)})"
        )


class DeliveryDispatcher:
    """Declares one queue per handler key and routes deliveries to handlers.

    Call :meth:`start` once the client is ready. Queues are exclusive and
    auto-deleted, so they are declared again on every later channel open.
    """

    def __init__(self, client: MQClient, handlers: HandlerRegistry):
        self.client = client
        self.handlers = handlers
        self.bus: "asyncio.Queue[Delivery]" = asyncio.Queue(maxsize=client.config.bus_size)
        self.started_at = int(time.time())
        self.running = False
        self._serve_task: Optional[asyncio.Task] = None
        self._forwarders: Set[asyncio.Task] = set()
        client.on_channel_open(self._redeclare)

    def queue_name(self, exchange: str) -> str:
        return f"{exchange}-{self.started_at}"

    async def start(self) -> None:
        """Declare consumers on the current channel and start serving."""
        if self.running:
            return

        channel = self.client.channel
        if channel is None:
            raise ChannelClosedError()

        try:
            await self._declare_consumers(channel)
        except Exception:
            await self._cancel_forwarders()
            raise

        self.running = True
        self._serve_task = asyncio.create_task(self.serve())
        logger.info("running loop")

    async def stop(self) -> None:
        """Cancel the serve loop and all forwarders."""
        logger.info("Stopping dispatcher")
        self.running = False
        await self._cancel_forwarders()
        if self._serve_task is not None:
            self._serve_task.cancel()
            await asyncio.gather(self._serve_task, return_exceptions=True)
            self._serve_task = None

    async def _cancel_forwarders(self) -> None:
        tasks = list(self._forwarders)
        self._forwarders.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _redeclare(self, channel: ChannelHandle) -> None:
        if self.running:
            await self._cancel_forwarders()
            await self._declare_consumers(channel)

    async def _declare_consumers(self, channel: ChannelHandle) -> None:
        logger.info("preparing exchanges")
        for exchange, exchange_type in self.handlers.keys():
            queue_name = self.queue_name(exchange)

            logger.debug(f"declaring exchange {exchange} of type {exchange_type}")
            await declare(channel, Exchange(name=exchange, type=exchange_type))

            logger.debug(f"declaring queue {queue_name}")
            await channel.declare_queue(
                queue_name,
                durable=False,
                auto_delete=True,
                exclusive=True,
            )

            logger.debug(f"binding {queue_name} to {exchange}")
            await channel.bind(queue_name, self.client.config.binding_key, exchange)

            logger.debug(f"beginning to consume from {queue_name}")
            stream = channel.consume(
                queue_name,
                consumer_tag=f"{queue_name}-consumer",
                no_ack=False,
                exclusive=False,
            )
            task = asyncio.create_task(self._forward(exchange, exchange_type, stream))
            self._forwarders.add(task)
            task.add_done_callback(self._forwarders.discard)

            logger.info(f"ready to consume {exchange}:{exchange_type} from {queue_name}")

    async def _forward(
        self,
        exchange: str,
        exchange_type: str,
        stream: AsyncIterator[IncomingMessage],
    ) -> None:
        """Move one queue's messages onto the shared bus, in order."""
        try:
            async for message in stream:
                logger.debug(f"incoming delivery from {exchange}")
                await self.bus.put(Delivery(exchange, exchange_type, message))
        except Exception as e:
            await self.client.sink.report(e)
        logger.info(f"consumer for {exchange}:{exchange_type} finished")

    async def serve(self) -> None:
        """Dispatch deliveries from the bus until cancelled."""
        while True:
            delivery = await self.bus.get()
            try:
                await self.dispatch(delivery)
            except Exception as e:
                await self.client.sink.report(e)

    async def dispatch(self, delivery: Delivery) -> None:
        """Handle one delivery and settle it.

        Success acks. A failure nacks with requeue on first delivery and
        acks (drops) an already redelivered message.
        """
        ctx = HandlingContext.new(delivery.exchange, delivery.type, logger)
        ctx.logger.debug("accepted")

        with tracer.start_as_current_span(
            "dispatch_delivery",
            attributes={
                "messaging.correlation_id": ctx.correlation_id,
                "messaging.destination": delivery.exchange,
                "messaging.exchange_type": delivery.type,
                "messaging.redelivered": delivery.redelivered,
            }
        ) as span:
            try:
                handler = self.handlers.get(delivery.exchange, delivery.type)
                await handler(ctx, delivery)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))

                if not delivery.redelivered:
                    status = "requeued"
                    await delivery.nack(requeue=True)
                else:
                    status = "dropped"
                    await delivery.ack()

                deliveries_total.labels(
                    exchange=delivery.exchange, type=delivery.type, status=status
                ).inc()
                ctx.logger.error(f"unable to handle operation ({status}): {e}")
                return

            await delivery.ack()
            span.set_status(Status(StatusCode.OK))

        deliveries_total.labels(
            exchange=delivery.exchange, type=delivery.type, status="acked"
        ).inc()
        ctx.logger.debug("served")
