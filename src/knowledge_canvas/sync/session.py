"""Edit Session Controller.

Tracks the one relation dialog that may be open at a time:

    IDLE -> CREATING_RELATION -> IDLE   (a valid link was drawn)
    IDLE -> EDITING_RELATION  -> IDLE   (a link was opened for edit)

A creation session owns a placeholder link that is already in the model.
Cancelling removes it without a backend call; confirming creates the
relation and binds the placeholder to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..backend.protocols import RelationInput
from ..exceptions import CanvasError, EditSessionError, TransportError
from ..graph.events import ChangeSource, LinkRemoved, ModelEvent, SelectionChanged, SelectionIntent
from ..graph.models import DiagramLink, DiagramNode, RelationEdge

if TYPE_CHECKING:
    from .reconciler import Reconciler

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Edit session states."""

    IDLE = "idle"
    CREATING_RELATION = "creating_relation"
    EDITING_RELATION = "editing_relation"


@dataclass
class CreationSession:
    """A relation being created from a drawn link."""

    from_node: DiagramNode
    to_node: DiagramNode
    link_id: str


@dataclass
class EditingSession:
    """An existing relation opened in the edit dialog."""

    relation_id: str
    link_id: str


class EditSessionController:
    """State machine for relation create/edit dialogs.

    Usually driven by the Reconciler (link drawn) and by SelectionChanged
    events with the OPEN_EDIT intent; the dialog layer resolves a session
    with confirm_creation(), confirm_deletion() or cancel().
    """

    def __init__(self, reconciler: Reconciler):
        self.reconciler = reconciler
        self.model = reconciler.model
        self.state = SessionState.IDLE
        self.creation: CreationSession | None = None
        self.editing: EditingSession | None = None
        self._confirming = False
        self._subscription_id: str | None = self.model.channel.subscribe(
            self._on_event,
            event_types=(SelectionChanged, LinkRemoved),
            name="edit-session",
        )

    @property
    def is_idle(self) -> bool:
        return self.state == SessionState.IDLE

    @property
    def placeholder_link_id(self) -> str | None:
        """Id of the placeholder link of an active creation session."""
        return self.creation.link_id if self.creation else None

    def _reset(self) -> None:
        self.state = SessionState.IDLE
        self.creation = None
        self.editing = None
        self._confirming = False

    def _require(self, state: SessionState) -> None:
        if self.state != state:
            raise EditSessionError(
                f"Expected session state {state.value}, currently {self.state.value}"
            )

    def _on_event(self, event: ModelEvent) -> None:
        if isinstance(event, SelectionChanged):
            if (
                event.is_link
                and event.selected
                and event.intent == SelectionIntent.OPEN_EDIT
                and event.source == ChangeSource.USER
            ):
                if not self.is_idle:
                    logger.warning(
                        f"Ignoring edit of {event.item_id}: session {self.state.value} active"
                    )
                    return
                if not self.model.get_link(event.item_id).labels:
                    logger.debug(f"Link {event.item_id} has no relation to edit")
                    return
                self.begin_edit(event.item_id)
        elif isinstance(event, LinkRemoved):
            if (
                self.creation is not None
                and event.link.link_id == self.creation.link_id
                and event.source != ChangeSource.SESSION
                and not self._confirming
            ):
                logger.info(f"Placeholder {event.link.link_id} removed, creation abandoned")
                self._reset()

    # =========================================================================
    # Relation Creation
    # =========================================================================

    def begin_creation(self, link_id: str) -> CreationSession:
        """Start creating a relation for a drawn, attached link.

        Raises:
            EditSessionError: If a session is already active or the link is loose
        """
        self._require(SessionState.IDLE)
        link = self.model.get_link(link_id)
        if link.target_node_id is None:
            raise EditSessionError(f"Link {link_id} has no target")

        self.creation = CreationSession(
            from_node=self.model.get_node(link.source_node_id),
            to_node=self.model.get_node(link.target_node_id),
            link_id=link_id,
        )
        self.state = SessionState.CREATING_RELATION
        logger.debug(
            f"Creating relation {link.source_node_id} -> {link.target_node_id} "
            f"(placeholder {link_id})"
        )
        return self.creation

    def cancel_creation(self) -> None:
        """Close the creation dialog, removing the placeholder link."""
        self._require(SessionState.CREATING_RELATION)
        link_id = self.creation.link_id
        self._drop_placeholder(link_id)
        self._reset()
        logger.debug(f"Relation creation cancelled, placeholder {link_id} removed")

    def _drop_placeholder(self, link_id: str) -> None:
        if self.model.has_link(link_id):
            self.model.remove_link(link_id, source=ChangeSource.SESSION)

    async def confirm_creation(
        self,
        relationship_type: str,
        first_seen: datetime | None = None,
        last_seen: datetime | None = None,
        weight: int | None = None,
        description: str = "",
        **extra: Any,
    ) -> RelationEdge | None:
        """Create the relation and bind the placeholder link to it.

        On failure the placeholder is removed and the error is reported.

        Returns:
            The created relation, or None if the backend rejected it

        Raises:
            EditSessionError: If no creation session is active
            Exception: Unexpected backend errors, re-raised after cleanup
        """
        self._require(SessionState.CREATING_RELATION)
        if self._confirming:
            raise EditSessionError("Relation creation already being confirmed")
        self._confirming = True
        session = self.creation
        reconciler = self.reconciler

        try:
            try:
                result = await reconciler.backend.create_relation(
                    RelationInput(
                        from_id=session.from_node.node_id,
                        to_id=session.to_node.node_id,
                        relationship_type=relationship_type,
                        first_seen=first_seen,
                        last_seen=last_seen,
                        weight=weight,
                        description=description,
                        extra=extra,
                    )
                )
            except CanvasError as e:
                self._drop_placeholder(session.link_id)
                reconciler.report_error(e)
                return None
            except Exception as e:
                self._drop_placeholder(session.link_id)
                reconciler.report_error(
                    TransportError("create_relation failed", operation="create_relation", cause=e)
                )
                raise

            if not result.ok:
                self._drop_placeholder(session.link_id)
                reconciler.report_error(result)
                return None

            relation: RelationEdge = result.payload
            pair_links = [
                link
                for link in self.model.links_between(
                    session.from_node.node_id, session.to_node.node_id
                )
                if link.link_id != session.link_id
            ]
            if pair_links:
                # The pair was linked meanwhile; keep one link per pair
                self._drop_placeholder(session.link_id)
                self.model.add_label(pair_links[0].link_id, relation.to_label())
            elif self.model.has_link(session.link_id):
                self.model.add_label(session.link_id, relation.to_label())
            else:
                logger.warning(
                    f"Placeholder {session.link_id} gone before relation "
                    f"{relation.relation_id} was created"
                )
            logger.info(
                f"Created relation {relation.relation_id} "
                f"({relation.relationship_type}) on {session.link_id}"
            )
        finally:
            self._reset()

        if reconciler.is_container:
            attached = await reconciler.backend.attach_to_container(
                reconciler.container_id, [relation.relation_id], reconciler.attach_roles
            )
            if not attached.ok:
                reconciler.report_error(attached)
        reconciler.request_save()
        return relation

    # =========================================================================
    # Relation Editing
    # =========================================================================

    def begin_edit(self, link_id: str, relation_id: str | None = None) -> EditingSession:
        """Open a link's relation for editing.

        Args:
            link_id: Selected link
            relation_id: Label to edit (default: the link's first label)

        Raises:
            EditSessionError: If a session is active or the link has no such relation
        """
        self._require(SessionState.IDLE)
        link = self.model.get_link(link_id)
        relation_id = relation_id or link.primary_relation_id
        if relation_id is None or not link.has_relation(relation_id):
            raise EditSessionError(f"Link {link_id} has no relation to edit")

        self.editing = EditingSession(relation_id=relation_id, link_id=link_id)
        self.state = SessionState.EDITING_RELATION
        logger.debug(f"Editing relation {relation_id} on {link_id}")
        return self.editing

    def cancel_edit(self) -> None:
        """Close the edit dialog without changes."""
        self._require(SessionState.EDITING_RELATION)
        self._reset()

    async def confirm_deletion(self) -> bool:
        """Delete the edited relation.

        The label is removed at once; the link goes too when it carried
        only this relation. A backend failure restores both.

        Returns:
            True if the backend deleted the relation

        Raises:
            EditSessionError: If no edit session is active
        """
        self._require(SessionState.EDITING_RELATION)
        editing = self.editing
        reconciler = self.reconciler
        self._reset()

        link = self.model.find_link_by_relation(editing.relation_id)
        snapshot: DiagramLink | None = None
        if link is not None:
            snapshot = DiagramLink(
                source_node_id=link.source_node_id,
                target_node_id=link.target_node_id,
                labels=list(link.labels),
                link_id=link.link_id,
            )
            if len(link.labels) > 1:
                self.model.remove_label(editing.relation_id)
            else:
                self.model.remove_link(link.link_id, source=ChangeSource.SESSION)

        if reconciler.is_container:
            detached = await reconciler.backend.detach_from_container(
                reconciler.container_id, editing.relation_id
            )
            if not detached.ok:
                reconciler.report_error(detached)
                if snapshot is not None:
                    reconciler.restore_link(snapshot, only_relations=[editing.relation_id])
                return False

        result = await reconciler.backend.delete_relation(editing.relation_id)
        if not result.ok:
            reconciler.report_error(result)
            if snapshot is not None:
                reconciler.restore_link(snapshot, only_relations=[editing.relation_id])
            return False

        logger.info(f"Deleted relation {editing.relation_id}")
        reconciler.request_save()
        return True

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def cancel(self) -> None:
        """Abandon whatever session is active (dialog closed, editor unmounted)."""
        if self.state == SessionState.CREATING_RELATION and not self._confirming:
            self.cancel_creation()
        elif self.state == SessionState.EDITING_RELATION:
            self.cancel_edit()

    def close(self) -> None:
        """Stop listening to the model."""
        if self._subscription_id is not None:
            self.model.channel.unsubscribe(self._subscription_id)
            self._subscription_id = None
