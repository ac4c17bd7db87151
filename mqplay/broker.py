"""Broker capability required by the supervisors and the dispatcher.

The core never talks to a concrete AMQP library directly. It dials,
opens channels and moves messages through the abstract handles below;
``mqplay.amqp`` provides the production implementation and the test
suite provides an in-memory one.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional


class IncomingMessage(ABC):
    """A message handed to a consumer, pending acknowledgement."""

    body: bytes
    redelivered: bool

    @abstractmethod
    async def ack(self, multiple: bool = False) -> None:
        ...

    @abstractmethod
    async def nack(self, multiple: bool = False, requeue: bool = True) -> None:
        ...


class ChannelHandle(ABC):
    """One open channel on a connection."""

    @abstractmethod
    def notify_closed(self) -> "asyncio.Future[Optional[BaseException]]":
        """Return a future resolved with the close reason when the channel closes."""

    @abstractmethod
    async def declare_exchange(
        self,
        name: str,
        exchange_type: str,
        durable: bool = False,
        auto_delete: bool = False,
        internal: bool = False,
    ) -> None:
        ...

    @abstractmethod
    async def declare_queue(
        self,
        name: str,
        durable: bool = False,
        auto_delete: bool = True,
        exclusive: bool = False,
    ) -> str:
        """Declare a queue and return its name."""

    @abstractmethod
    async def bind(self, queue_name: str, routing_key: str, exchange_name: str) -> None:
        ...

    @abstractmethod
    def consume(
        self,
        queue_name: str,
        consumer_tag: str,
        no_ack: bool = False,
        exclusive: bool = False,
    ) -> AsyncIterator[IncomingMessage]:
        """Stream messages from a queue with manual acknowledgement."""

    @abstractmethod
    async def publish(
        self,
        exchange_name: str,
        routing_key: str,
        body: bytes,
        content_type: str,
        mandatory: bool = False,
        immediate: bool = False,
    ) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class ConnectionHandle(ABC):
    """One live broker connection."""

    @abstractmethod
    def notify_closed(self) -> "asyncio.Future[Optional[BaseException]]":
        """Return a future resolved with the close reason when the connection closes."""

    @abstractmethod
    async def open_channel(self) -> ChannelHandle:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class Broker(ABC):
    """Entry point of the capability: dials new connections."""

    @abstractmethod
    async def dial(self, url: str) -> ConnectionHandle:
        ...
