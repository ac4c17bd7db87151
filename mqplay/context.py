"""Per-delivery correlation context."""

import logging
from dataclasses import dataclass, field
from typing import Any, MutableMapping, Tuple

import ulid


class CorrelationLogger(logging.LoggerAdapter):
    """Prefixes records with the correlation id and carries it as ``extra``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"[{self.extra['correlation_id']}] {msg}", kwargs


@dataclass
class HandlingContext:
    """Passed explicitly from the dispatcher to a handler for one delivery."""
    correlation_id: str
    exchange: str
    type: str
    logger: CorrelationLogger = field(repr=False)

    @classmethod
    def new(cls, exchange: str, exchange_type: str, logger: logging.Logger) -> "HandlingContext":
        correlation_id = str(ulid.new())
        adapter = CorrelationLogger(logger, {
            "correlation_id": correlation_id,
            "exchange": exchange,
            "type": exchange_type,
        })
        return cls(
            correlation_id=correlation_id,
            exchange=exchange,
            type=exchange_type,
            logger=adapter,
        )
