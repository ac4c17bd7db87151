"""Handler registry keyed by ``<exchange>:<exchange-type>``."""

import inspect
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Iterator, Tuple

from mqplay.exceptions import HandlerNotFoundError

if TYPE_CHECKING:
    from mqplay.context import HandlingContext
    from mqplay.dispatcher import Delivery


logger = logging.getLogger(__name__)

Handler = Callable[["HandlingContext", "Delivery"], Awaitable[None]]


def handler_key(exchange: str, exchange_type: str) -> str:
    return f"{exchange}:{exchange_type}"


def split_key(key: str) -> Tuple[str, str]:
    exchange, _, exchange_type = key.rpartition(":")
    return exchange, exchange_type


class HandlerRegistry:
    """Explicit handler table, built once at startup and handed to the dispatcher."""

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, exchange: str, exchange_type: str, handler: Handler) -> None:
        """Register a handler for an exchange."""
        if not inspect.iscoroutinefunction(handler):
            raise ValueError(f"Handler {handler.__name__} must be async")

        key = handler_key(exchange, exchange_type)
        if key in self._handlers:
            raise ValueError(f"Handler for {key} already registered")

        self._handlers[key] = handler
        logger.info(f"Registered handler {handler.__name__} for {key}")

    def handler(self, exchange: str, exchange_type: str = "fanout") -> Callable[[Handler], Handler]:
        """Decorator form of :meth:`register`."""
        def decorator(func: Handler) -> Handler:
            self.register(exchange, exchange_type, func)
            return func
        return decorator

    def get(self, exchange: str, exchange_type: str) -> Handler:
        key = handler_key(exchange, exchange_type)
        try:
            return self._handlers[key]
        except KeyError:
            raise HandlerNotFoundError(key) from None

    def keys(self) -> Iterator[Tuple[str, str]]:
        """Yield ``(exchange, type)`` pairs in registration order."""
        for key in self._handlers:
            yield split_key(key)

    def __contains__(self, key: str) -> bool:
        return key in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
