"""mqplay - supervised fanout pub/sub over RabbitMQ."""

__version__ = "0.1.0"

from mqplay.client import ClientMode, MQClient
from mqplay.config import MQConfig
from mqplay.dispatcher import Delivery, DeliveryDispatcher
from mqplay.events import AlarmEvent, StateEvent, default_handlers
from mqplay.handlers import HandlerRegistry
from mqplay.registry import Exchange, ExchangeRegistry
from mqplay.exceptions import (
    MQError,
    NotConnectedError,
    ChannelClosedError,
    ExchangeNotCreatedError,
    NotForSendingError,
    PublishError,
    HandlerNotFoundError,
    PayloadDecodeError,
)

__all__ = [
    # Client API
    "MQClient",
    "ClientMode",
    "MQConfig",
    "Exchange",
    "ExchangeRegistry",
    # Consuming
    "Delivery",
    "DeliveryDispatcher",
    "HandlerRegistry",
    "AlarmEvent",
    "StateEvent",
    "default_handlers",
    # Exceptions
    "MQError",
    "NotConnectedError",
    "ChannelClosedError",
    "ExchangeNotCreatedError",
    "NotForSendingError",
    "PublishError",
    "HandlerNotFoundError",
    "PayloadDecodeError",
]
