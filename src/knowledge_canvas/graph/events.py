"""Typed diagram change events and the channel that carries them.

The DiagramModel publishes one event per mutation. The Reconciler, the
EditSessionController and the GraphEditor subscribe to the event types
they care about. Dispatch is synchronous and in subscription order, so a
subscriber always sees the model in the state right after the mutation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .models import DiagramLink, DiagramNode

logger = logging.getLogger(__name__)


class ChangeSource(str, Enum):
    """Who caused a model mutation."""

    USER = "user"  # Gesture on the canvas
    REMOTE = "remote"  # Backend update applied by the reconciler
    SESSION = "session"  # Edit session bookkeeping (placeholder cleanup, rollback)


class SelectionIntent(str, Enum):
    """What the user wants to do with a selected item."""

    OPEN_EDIT = "open_edit"
    EXPAND = "expand"


class GeometryKind(str, Enum):
    """Which part of the geometry changed."""

    POSITION = "position"
    ZOOM = "zoom"
    OFFSET = "offset"


class ModelEvent:
    """Base class for diagram change events."""

    source: ChangeSource


@dataclass(frozen=True)
class NodeAdded(ModelEvent):
    node: DiagramNode
    source: ChangeSource = ChangeSource.USER


@dataclass(frozen=True)
class NodeRemoved(ModelEvent):
    node: DiagramNode
    source: ChangeSource = ChangeSource.USER


@dataclass(frozen=True)
class LinkAdded(ModelEvent):
    link: DiagramLink
    source: ChangeSource = ChangeSource.USER


@dataclass(frozen=True)
class LinkRemoved(ModelEvent):
    """A link left the model.

    ``cascade`` is True when the link went away because one of its nodes
    was removed.
    """

    link: DiagramLink
    cascade: bool = False
    source: ChangeSource = ChangeSource.USER


@dataclass(frozen=True)
class LinkEndpointChanged(ModelEvent):
    """The target end of a link was dropped on a node or on empty canvas."""

    link_id: str
    source_node_id: str
    target_node_id: str | None
    source: ChangeSource = ChangeSource.USER
    previous_target_node_id: str | None = None


@dataclass(frozen=True)
class SelectionChanged(ModelEvent):
    item_id: str
    is_link: bool
    selected: bool
    intent: SelectionIntent | None = None
    source: ChangeSource = ChangeSource.USER


@dataclass(frozen=True)
class GeometryChanged(ModelEvent):
    kind: GeometryKind
    node_id: str | None = None
    source: ChangeSource = ChangeSource.USER


EventHandler = Callable[[ModelEvent], None]


@dataclass
class Subscription:
    """A subscription to model events."""

    subscription_id: str
    handler: EventHandler
    event_types: tuple[type[ModelEvent], ...] | None = None  # None = all types
    name: str = ""

    def matches(self, event: ModelEvent) -> bool:
        """Check whether this subscription wants the event."""
        return self.event_types is None or isinstance(event, self.event_types)


class EventChannel:
    """Synchronous publish/subscribe channel for model events."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(
        self,
        handler: EventHandler,
        event_types: tuple[type[ModelEvent], ...] | None = None,
        name: str = "",
    ) -> str:
        """Register a handler.

        Args:
            handler: Called with each matching event
            event_types: Only deliver these event classes (None = all)
            name: Label used in log messages

        Returns:
            Subscription ID
        """
        sub_id = str(uuid.uuid4())
        self._subscriptions[sub_id] = Subscription(
            subscription_id=sub_id,
            handler=handler,
            event_types=event_types,
            name=name or getattr(handler, "__qualname__", "handler"),
        )
        logger.debug(f"Subscribed {self._subscriptions[sub_id].name} ({sub_id})")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription.

        Returns:
            True if the subscription existed
        """
        return self._subscriptions.pop(subscription_id, None) is not None

    def publish(self, event: ModelEvent) -> None:
        """Deliver an event to every matching subscriber.

        A failing handler is logged and does not stop delivery to the rest;
        the model mutation that produced the event has already happened.
        """
        for sub in list(self._subscriptions.values()):
            if not sub.matches(event):
                continue
            try:
                sub.handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler {sub.name} failed on {type(event).__name__}: {e}",
                    exc_info=True,
                )

    @property
    def subscriber_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)
