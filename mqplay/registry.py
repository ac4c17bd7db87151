"""Exchange registry: exchanges this process declared, replayed on reconnect."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from mqplay.broker import ChannelHandle, ConnectionHandle
from mqplay.exceptions import ChannelClosedError, ExchangeDeclareError, NotConnectedError
from mqplay.supervisor import ErrorSink


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Exchange:
    """A declared exchange."""
    name: str
    type: str = "fanout"


async def declare(channel: ChannelHandle, exchange: Exchange) -> None:
    """Declare a transient, non auto-deleted exchange."""
    await channel.declare_exchange(
        exchange.name,
        exchange.type,
        durable=False,
        auto_delete=False,
        internal=False,
    )


class ExchangeRegistry:
    """In-memory record of declared exchanges keyed by name."""

    def __init__(self, sink: ErrorSink):
        self.sink = sink
        self._exchanges: Dict[str, Exchange] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, name: str) -> bool:
        return name in self._exchanges

    def __len__(self) -> int:
        return len(self._exchanges)

    def get(self, name: str) -> Optional[Exchange]:
        return self._exchanges.get(name)

    async def connect_to_exchange(
        self,
        connection: Optional[ConnectionHandle],
        channel: Optional[ChannelHandle],
        name: str,
        exchange_type: str,
    ) -> None:
        """Declare ``name`` on the live channel unless already registered."""
        if connection is None:
            raise NotConnectedError()

        if channel is None:
            raise ChannelClosedError()

        async with self._lock:
            if name in self._exchanges:
                # already have this exchange
                return

            exchange = Exchange(name=name, type=exchange_type)
            try:
                await declare(channel, exchange)
            except Exception as e:
                raise ExchangeDeclareError(f"unable to declare exchange {name}: {e}") from e

            self._exchanges[name] = exchange
            logger.info(f"Registered exchange {name} of type {exchange_type}")

    async def replay(self, channel: ChannelHandle) -> None:
        """Re-declare every registered exchange; failures are reported, not raised."""
        async with self._lock:
            exchanges = list(self._exchanges.values())

        for exchange in exchanges:
            try:
                await declare(channel, exchange)
            except Exception as e:
                error = ExchangeDeclareError(f"unable to redeclare exchange {exchange.name}: {e}")
                error.__cause__ = e
                await self.sink.report(error)
        if exchanges:
            logger.info(f"Replayed {len(exchanges)} exchanges")
