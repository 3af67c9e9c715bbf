"""Per-target mutation outcomes handed to an event sink after each commit."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from .errors import ItemTreeError
from .models import Item

logger = logging.getLogger(__name__)

Operation = Literal["create", "move", "copy", "recycle", "restore", "reorder"]


@dataclass(frozen=True)
class Success:
    item: Item

    def to_dict(self) -> dict[str, Any]:
        return {"status": "success", "item": self.item.to_dict()}


@dataclass(frozen=True)
class Failure:
    kind: str
    message: str

    @classmethod
    def from_error(cls, error: ItemTreeError) -> Failure:
        return cls(kind=error.kind, message=error.message)

    def to_dict(self) -> dict[str, Any]:
        return {"status": "failure", "kind": self.kind, "message": self.message}


@dataclass(frozen=True)
class MutationEvent:
    operation: Operation
    target_id: str
    outcome: Success | Failure
    actor_id: str | None = None

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "target_id": self.target_id,
            "actor_id": self.actor_id,
            "outcome": self.outcome.to_dict(),
        }


class EventSink(Protocol):
    def emit(self, event: MutationEvent) -> None: ...


class LoggingEventSink:
    def emit(self, event: MutationEvent) -> None:
        if isinstance(event.outcome, Success):
            logger.debug("%s %s succeeded", event.operation, event.target_id)
        else:
            logger.info(
                "%s %s failed: %s (%s)",
                event.operation,
                event.target_id,
                event.outcome.kind,
                event.outcome.message,
            )


@dataclass
class CollectingEventSink:
    events: list[MutationEvent] = field(default_factory=list)

    def emit(self, event: MutationEvent) -> None:
        self.events.append(event)

    def for_operation(self, operation: Operation) -> list[MutationEvent]:
        return [event for event in self.events if event.operation == operation]
