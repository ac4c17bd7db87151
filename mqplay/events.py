"""Event payloads and their reference handlers."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mqplay.context import HandlingContext
from mqplay.dispatcher import Delivery
from mqplay.exceptions import PayloadDecodeError
from mqplay.handlers import HandlerRegistry


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AlarmEvent(BaseModel):
    """Something went off."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="Name")
    when: datetime = Field(alias="When")

    @classmethod
    def new(cls, name: str) -> "AlarmEvent":
        """Alarm stamped with the current time."""
        return cls(name=name, when=_now())


class StateEvent(BaseModel):
    """Something changed state."""
    model_config = ConfigDict(populate_by_name=True)

    state: str = Field(alias="State")
    created_at: datetime = Field(alias="CreatedAt")

    @classmethod
    def new(cls, state: str) -> "StateEvent":
        return cls(state=state, created_at=_now())


async def handle_alarm(ctx: HandlingContext, delivery: Delivery) -> None:
    try:
        event = AlarmEvent.model_validate_json(delivery.body)
    except ValidationError as e:
        raise PayloadDecodeError(f"unable to unmarshal data: {e}") from e

    ctx.logger.debug(f"alarm!! {event.model_dump(by_alias=True, mode='json')}")


async def handle_state(ctx: HandlingContext, delivery: Delivery) -> None:
    try:
        event = StateEvent.model_validate_json(delivery.body)
    except ValidationError as e:
        raise PayloadDecodeError(f"unable to unmarshal data: {e}") from e

    ctx.logger.debug(f"new state {event.model_dump(by_alias=True, mode='json')}")


def default_handlers() -> HandlerRegistry:
    """Handlers for the ``alarm`` and ``state`` fanout exchanges."""
    registry = HandlerRegistry()
    registry.register("alarm", "fanout", handle_alarm)
    registry.register("state", "fanout", handle_state)
    return registry
