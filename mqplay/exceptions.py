"""Custom exceptions for mqplay."""


class MQError(Exception):
    """Base exception for mqplay errors."""
    pass


class ConfigurationError(MQError):
    """Configuration-related errors."""
    pass


class NotConnectedError(MQError):
    """No live connection to the broker."""

    def __init__(self, message: str = "not connected to mq"):
        super().__init__(message)


class ChannelClosedError(MQError):
    """No live channel on the current connection."""

    def __init__(self, message: str = "channel is closed"):
        super().__init__(message)


class ConnectionLostError(MQError):
    """Connection or channel was closed underneath the supervisor."""
    pass


class ExchangeDeclareError(MQError):
    """Broker refused to declare an exchange."""
    pass


class NotForSendingError(MQError):
    """Client was constructed in consume-only mode."""

    def __init__(self, message: str = "mq client is not for sending"):
        super().__init__(message)


class ExchangeNotCreatedError(MQError):
    """Publish against an exchange that was never declared by this client."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"exchange has not been created: {name}")


class PublishError(MQError):
    """Error during message publishing."""
    pass


class HandlerNotFoundError(MQError):
    """No handler registered for a delivery's exchange and type."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"no handler registered for {key}")


class PayloadDecodeError(MQError):
    """Delivery body could not be decoded into the expected event."""
    pass


class DeliveryAlreadySettledError(MQError):
    """A delivery was acknowledged or rejected more than once."""
    pass
