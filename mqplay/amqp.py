"""aio-pika implementation of the broker capability."""

import asyncio
import logging
from typing import AsyncIterator, Optional

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractIncomingMessage,
)

from mqplay.broker import Broker, ChannelHandle, ConnectionHandle, IncomingMessage


logger = logging.getLogger(__name__)


def _closed_future(closable) -> "asyncio.Future[Optional[BaseException]]":
    """Bridge aio-pika close callbacks to a one-shot future."""
    future = asyncio.get_running_loop().create_future()

    def on_close(sender, exc: Optional[BaseException] = None) -> None:
        if not future.done():
            future.set_result(exc)

    closable.close_callbacks.add(on_close)
    return future


class AioPikaMessage(IncomingMessage):
    """Incoming aio-pika message."""

    def __init__(self, message: AbstractIncomingMessage):
        self._message = message
        self.body = message.body
        self.redelivered = bool(message.redelivered)

    async def ack(self, multiple: bool = False) -> None:
        await self._message.ack(multiple=multiple)

    async def nack(self, multiple: bool = False, requeue: bool = True) -> None:
        await self._message.nack(multiple=multiple, requeue=requeue)


class AioPikaChannel(ChannelHandle):
    """Channel backed by ``aio_pika.Channel``."""

    def __init__(self, channel: AbstractChannel):
        self._channel = channel

    def notify_closed(self) -> "asyncio.Future[Optional[BaseException]]":
        return _closed_future(self._channel)

    async def declare_exchange(
        self,
        name: str,
        exchange_type: str,
        durable: bool = False,
        auto_delete: bool = False,
        internal: bool = False,
    ) -> None:
        await self._channel.declare_exchange(
            name,
            ExchangeType(exchange_type),
            durable=durable,
            auto_delete=auto_delete,
            internal=internal,
        )

    async def declare_queue(
        self,
        name: str,
        durable: bool = False,
        auto_delete: bool = True,
        exclusive: bool = False,
    ) -> str:
        queue = await self._channel.declare_queue(
            name,
            durable=durable,
            auto_delete=auto_delete,
            exclusive=exclusive,
        )
        return queue.name

    async def bind(self, queue_name: str, routing_key: str, exchange_name: str) -> None:
        queue = await self._channel.get_queue(queue_name, ensure=False)
        await queue.bind(exchange_name, routing_key=routing_key)

    async def consume(
        self,
        queue_name: str,
        consumer_tag: str,
        no_ack: bool = False,
        exclusive: bool = False,
    ) -> AsyncIterator[IncomingMessage]:
        queue = await self._channel.get_queue(queue_name, ensure=False)
        async with queue.iterator(
            consumer_tag=consumer_tag,
            no_ack=no_ack,
            exclusive=exclusive,
        ) as messages:
            async for message in messages:
                yield AioPikaMessage(message)

    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        content_type: str,
        mandatory: bool = False,
        immediate: bool = False,
    ) -> None:
        # RabbitMQ rejects the immediate flag, aio-pika does not expose it.
        if immediate:
            logger.warning("immediate publishing is not supported, ignoring flag")
        exchange = await self._channel.get_exchange(exchange_name, ensure=False)
        await exchange.publish(
            Message(body, content_type=content_type),
            routing_key=routing_key,
            mandatory=mandatory,
        )

    async def close(self) -> None:
        if not self._channel.is_closed:
            await self._channel.close()


class AioPikaConnection(ConnectionHandle):
    """Connection backed by a plain (non-robust) ``aio_pika`` connection."""

    def __init__(self, connection: AbstractConnection):
        self._connection = connection

    def notify_closed(self) -> "asyncio.Future[Optional[BaseException]]":
        return _closed_future(self._connection)

    async def open_channel(self) -> ChannelHandle:
        channel = await self._connection.channel()
        return AioPikaChannel(channel)

    async def close(self) -> None:
        if not self._connection.is_closed:
            await self._connection.close()


class AioPikaBroker(Broker):
    """Dials RabbitMQ with aio-pika; reconnects are left to the supervisors."""

    async def dial(self, url: str) -> ConnectionHandle:
        connection = await aio_pika.connect(url)
        return AioPikaConnection(connection)
