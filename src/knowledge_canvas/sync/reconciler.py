"""Reconciler: keeps the diagram model, the domain graph and the view blob in step.

Inbound, it projects backend snapshots onto the DiagramModel. The first
snapshot builds the model; later ones are applied incrementally so the
user's selection, positions and camera survive. Outbound, it listens to
model events tagged ChangeSource.USER and turns them into backend
mutations plus a debounced view save.

Mutations run as background tasks on the event loop. Their results are
MutationResults; a failure rolls the optimistic local change back and is
reported through ``on_error``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Coroutine

from ..backend.protocols import AttachRoles, GraphBackend, MutationResult
from ..config import CanvasConfig
from ..exceptions import CanvasError, DedupConflict, ModelError, StaleUpdateError
from ..graph.diagram import DiagramModel
from ..graph.events import (
    ChangeSource,
    GeometryChanged,
    LinkAdded,
    LinkEndpointChanged,
    LinkRemoved,
    ModelEvent,
    NodeRemoved,
)
from ..graph.models import DiagramLink, DiagramNode, DomainGraph
from ..graph.projector import GraphProjector
from ..view.codec import decode_view_state_or_empty, encode_view_state
from ..view.state import ViewState
from .debouncer import PersistenceDebouncer
from .session import EditSessionController

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[CanvasError], None]


class ChangeKind(str, Enum):
    """Classification of a user change to the diagram."""

    LINK_CREATED = "link_created"
    LINK_DELETED = "link_deleted"
    LINK_RETARGETED = "link_retargeted"
    NODE_DELETED = "node_deleted"
    GEOMETRY = "geometry"
    NONE = "none"


class DrawDecision(str, Enum):
    """What to do with a link the user has just finished drawing."""

    ACCEPT = "accept"
    LOOSE = "loose"  # Dropped on empty canvas
    CIRCULAR = "circular"  # Target is the source
    DUPLICATE = "duplicate"  # Pair already linked


class Reconciler:
    """Synchronizes a DiagramModel with its backend.

    Attributes:
        model: The live diagram
        backend: Graph store
        config: Canvas configuration
        debouncer: View save debouncer (optional)
        session: Edit session controller bound to this reconciler
        graph: Last domain graph applied to the model
    """

    def __init__(
        self,
        model: DiagramModel,
        backend: GraphBackend,
        config: CanvasConfig | None = None,
        debouncer: PersistenceDebouncer | None = None,
        projector: GraphProjector | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self.model = model
        self.backend = backend
        self.config = config or CanvasConfig()
        self.debouncer = debouncer
        self.projector = projector or GraphProjector()
        self.on_error = on_error
        self.session = EditSessionController(self)

        self.graph: DomainGraph | None = None
        self._applied_blob: str | None = None
        self._subscription_id: str | None = None
        self._pending: set[asyncio.Task] = set()
        self._cascade_links: list[DiagramLink] = []
        self._highlight_year: int | None = None

        if debouncer is not None:
            debouncer.set_callback(self.persist_view)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def container_id(self) -> str | None:
        return self.graph.container_id if self.graph else None

    @property
    def is_container(self) -> bool:
        """True when the graph has explicit membership (workspace mode)."""
        return self.graph is not None and self.graph.is_container

    @property
    def attach_roles(self) -> AttachRoles:
        return AttachRoles.from_config(self.config.expansion)

    @property
    def pending_count(self) -> int:
        """Number of backend mutations still in flight."""
        return len(self._pending)

    # =========================================================================
    # Inbound: backend -> model
    # =========================================================================

    def initialize(
        self,
        graph: DomainGraph,
        view_state: ViewState | None = None,
    ) -> None:
        """Build the model from a domain graph and a view state.

        Anything already in the model is discarded. When ``view_state`` is
        omitted the graph's view blob is decoded; an undecodable blob counts
        as an empty view state.
        """
        self._clear_model()

        projected = self.projector.project(graph)
        for node in projected.nodes:
            self.model.add_node(node, source=ChangeSource.REMOTE)
        for link in projected.links:
            self.model.add_link(
                link.source_node_id,
                link.target_node_id,
                labels=list(link.labels),
                link_id=link.link_id,
                source=ChangeSource.REMOTE,
            )

        if view_state is None:
            view_state = decode_view_state_or_empty(graph.view_blob)
        self.apply_incoming_view_state(view_state)

        self.graph = graph
        self._applied_blob = graph.view_blob
        self._apply_highlight()

        if self._subscription_id is None:
            self._subscription_id = self.model.channel.subscribe(
                self.on_topology_change, name="reconciler"
            )

        logger.info(
            f"Initialized {graph.container_id}: {self.model.node_count} nodes, "
            f"{self.model.link_count} links, {self.model.label_count} relations"
        )

    def _clear_model(self) -> None:
        for link_id in list(self.model.links):
            self.model.remove_link(link_id, source=ChangeSource.REMOTE)
        for node_id in list(self.model.nodes):
            self.model.remove_node(node_id, source=ChangeSource.REMOTE)

    def is_stale(self, graph: DomainGraph) -> bool:
        """Whether a domain graph is not newer than the applied one."""
        if self.graph is None:
            return False
        return graph is self.graph or graph.version <= self.graph.version

    def apply_incoming_domain_update(self, graph: DomainGraph) -> bool:
        """Apply a fresh backend snapshot incrementally.

        Nodes and relations are diffed by id. Retained nodes keep their
        position and selection; new nodes are added unplaced.

        Returns:
            False if the update was stale and dropped
        """
        if self.graph is None:
            self.initialize(graph)
            return True
        if self.is_stale(graph):
            logger.debug(
                f"Dropping {StaleUpdateError(graph.version, self.graph.version)}"
            )
            return False

        projected = self.projector.project(graph)
        wanted_nodes = set(projected.node_ids)
        wanted_relations = set(projected.relation_ids)

        # Vanished nodes (their links go with them)
        for node_id in [n for n in self.model.nodes if n not in wanted_nodes]:
            self.model.remove_node(node_id, source=ChangeSource.REMOTE)

        # Vanished relations
        placeholder = self.session.placeholder_link_id
        for relation_id in self.model.relation_ids() - wanted_relations:
            link = self.model.find_link_by_relation(relation_id)
            self.model.remove_label(relation_id)
            if link is not None and not link.labels and link.link_id != placeholder:
                self.model.remove_link(link.link_id, source=ChangeSource.REMOTE)

        # New nodes
        for node in projected.nodes:
            if not self.model.has_node(node.node_id):
                self.model.add_node(node, source=ChangeSource.REMOTE)

        # New relations, folded onto the existing link of their pair
        for projected_link in projected.links:
            for label in projected_link.labels:
                if self.model.find_link_by_relation(label.relation_id) is not None:
                    continue
                existing = [
                    link
                    for link in self.model.links_between(
                        projected_link.source_node_id, projected_link.target_node_id
                    )
                    if link.link_id != placeholder
                ]
                if existing:
                    self.model.add_label(existing[0].link_id, label)
                else:
                    self.model.add_link(
                        projected_link.source_node_id,
                        projected_link.target_node_id,
                        labels=[label],
                        link_id=self._free_link_id(projected_link.link_id),
                        source=ChangeSource.REMOTE,
                    )

        self.graph = graph
        self.apply_incoming_view_blob(graph.view_blob)
        self._apply_highlight()

        logger.debug(
            f"Applied update v{graph.version}: {self.model.node_count} nodes, "
            f"{self.model.link_count} links"
        )
        return True

    def _free_link_id(self, link_id: str) -> str | None:
        return None if self.model.has_link(link_id) else link_id

    def apply_incoming_view_blob(self, blob: Any) -> bool:
        """Apply a persisted view blob if it differs from the applied one.

        Returns:
            False if the blob is absent or already applied
        """
        if not blob or blob == self._applied_blob:
            return False
        self._applied_blob = blob
        self.apply_incoming_view_state(decode_view_state_or_empty(blob))
        return True

    def apply_incoming_view_state(self, view_state: ViewState) -> None:
        """Apply zoom, offset and positions without touching topology.

        Absent fields leave the current values alone. Positions of nodes
        that are not in the model are ignored.
        """
        if view_state.zoom is not None:
            if view_state.zoom > 0:
                self.model.set_zoom(view_state.zoom, source=ChangeSource.REMOTE)
            else:
                logger.warning(f"Ignoring non-positive zoom {view_state.zoom}")

        if view_state.offset_x is not None or view_state.offset_y is not None:
            self.model.set_offset(
                view_state.offset_x if view_state.offset_x is not None else self.model.offset_x,
                view_state.offset_y if view_state.offset_y is not None else self.model.offset_y,
                source=ChangeSource.REMOTE,
            )

        for node_id, position in view_state.node_positions.items():
            if not self.model.has_node(node_id):
                logger.debug(f"View state position for unknown node {node_id}")
                continue
            self.model.set_position(
                node_id, position.x, position.y, source=ChangeSource.REMOTE
            )

    # =========================================================================
    # Outbound: user gestures -> backend
    # =========================================================================

    def classify(self, event: ModelEvent) -> ChangeKind:
        """Classify a model event as topology or geometry."""
        if event.source != ChangeSource.USER:
            return ChangeKind.NONE
        if isinstance(event, LinkEndpointChanged):
            if self._is_bound_link(event.link_id):
                return ChangeKind.LINK_RETARGETED
            return ChangeKind.LINK_CREATED
        if (
            isinstance(event, LinkAdded)
            and event.link.target_node_id is not None
            and not event.link.labels
        ):
            return ChangeKind.LINK_CREATED
        if isinstance(event, LinkRemoved):
            return ChangeKind.NONE if event.cascade else ChangeKind.LINK_DELETED
        if isinstance(event, NodeRemoved):
            return ChangeKind.NODE_DELETED
        if isinstance(event, GeometryChanged):
            return ChangeKind.GEOMETRY
        return ChangeKind.NONE

    def on_topology_change(self, event: ModelEvent) -> ChangeKind:
        """Model event handler."""
        if isinstance(event, LinkRemoved) and event.cascade and event.source == ChangeSource.USER:
            self._cascade_links.append(event.link)

        kind = self.classify(event)
        if kind == ChangeKind.LINK_CREATED:
            link_id = (
                event.link_id if isinstance(event, LinkEndpointChanged) else event.link.link_id
            )
            self._handle_link_drawn(link_id)
        elif kind == ChangeKind.LINK_RETARGETED:
            self._revert_endpoint(event)
        elif kind == ChangeKind.LINK_DELETED:
            self._handle_link_deleted(event.link)
        elif kind == ChangeKind.NODE_DELETED:
            cascaded, self._cascade_links = self._cascade_links, []
            self._handle_node_deleted(event.node, cascaded)
        elif kind == ChangeKind.GEOMETRY:
            self.request_save()
        return kind

    def _is_bound_link(self, link_id: str) -> bool:
        """Whether a link already stands for relations or a pending one."""
        if not self.model.has_link(link_id):
            return False
        return bool(self.model.get_link(link_id).labels) or (
            link_id == self.session.placeholder_link_id
        )

    def _revert_endpoint(self, event: LinkEndpointChanged) -> None:
        # Relations keep their endpoints; a dragged end snaps back
        previous = event.previous_target_node_id
        if previous is None or not self.model.has_node(previous):
            logger.warning(f"Cannot revert endpoint of link {event.link_id}: no previous target")
            return
        logger.debug(f"Link {event.link_id} is bound, reverting its target to {previous}")
        self.model.connect_link(event.link_id, previous, source=ChangeSource.SESSION)

    def check_link_draw(self, link_id: str) -> DrawDecision:
        """Decide whether a drawn link may become a new relation."""
        link = self.model.get_link(link_id)
        if link.target_node_id is None:
            return DrawDecision.LOOSE
        if link.target_node_id == link.source_node_id:
            return DrawDecision.CIRCULAR
        others = [
            other
            for other in self.model.links_between(link.source_node_id, link.target_node_id)
            if other.link_id != link_id
        ]
        if others:
            return DrawDecision.DUPLICATE
        return DrawDecision.ACCEPT

    def _handle_link_drawn(self, link_id: str) -> None:
        if not self.model.has_link(link_id):
            return
        decision = self.check_link_draw(link_id)
        if decision == DrawDecision.ACCEPT:
            if not self.session.is_idle:
                logger.warning(
                    f"Discarding link {link_id}: an edit session is already active"
                )
                self.model.remove_link(link_id, source=ChangeSource.SESSION)
                return
            self.session.begin_creation(link_id)
            return

        link = self.model.get_link(link_id)
        if decision == DrawDecision.DUPLICATE:
            logger.debug(f"Rejected drawn link: {DedupConflict(link.pair)}")
        else:
            logger.debug(f"Discarded {decision.value} link {link_id}")
        self.model.remove_link(link_id, source=ChangeSource.SESSION)

    def _handle_link_deleted(self, link: DiagramLink) -> None:
        if not link.labels:
            return
        if link.pair is not None and self.model.links_between(*link.pair):
            logger.debug(
                f"Link {link.link_id} removed but pair {link.pair} is still linked, "
                "keeping relations"
            )
            return
        self.spawn(self._delete_link_relations(link), name=f"delete-{link.link_id}")

    async def _delete_link_relations(self, link: DiagramLink) -> None:
        failed: list[str] = []
        for relation_id in link.relation_ids:
            if self.is_container:
                result = await self.backend.detach_from_container(
                    self.container_id, relation_id
                )
                if not result.ok:
                    failed.append(relation_id)
                    self.report_error(result)
                    continue
            result = await self.backend.delete_relation(relation_id)
            if not result.ok:
                failed.append(relation_id)
                self.report_error(result)
                continue
            logger.info(f"Deleted relation {relation_id}")

        if failed:
            self.restore_link(link, only_relations=failed)
        self.request_save()

    def _handle_node_deleted(self, node: DiagramNode, cascaded: list[DiagramLink]) -> None:
        if not self.is_container:
            self.request_save()
            return
        self.spawn(self._detach_node(node, cascaded), name=f"detach-{node.node_id}")

    async def _detach_node(self, node: DiagramNode, cascaded: list[DiagramLink]) -> None:
        result = await self.backend.detach_from_container(self.container_id, node.node_id)
        if not result.ok:
            self.report_error(result)
            if not self.model.has_node(node.node_id):
                node.selected = False
                self.model.add_node(node, source=ChangeSource.SESSION)
            for link in cascaded:
                self.restore_link(link)
            return
        logger.info(f"Detached {node.node_id} from {self.container_id}")
        self.request_save()

    def restore_link(
        self,
        link: DiagramLink,
        only_relations: list[str] | None = None,
    ) -> DiagramLink | None:
        """Put a removed link (or some of its labels) back into the model.

        Labels already present elsewhere are skipped. If the pair has been
        linked again in the meantime the labels are folded onto that link.

        Returns:
            The link now carrying the labels, or None if an endpoint is gone
        """
        labels = [
            label
            for label in link.labels
            if (only_relations is None or label.relation_id in only_relations)
            and self.model.find_link_by_relation(label.relation_id) is None
        ]
        if link.target_node_id is None or not (
            self.model.has_node(link.source_node_id)
            and self.model.has_node(link.target_node_id)
        ):
            logger.warning(f"Cannot restore link {link.link_id}: endpoint removed")
            return None

        existing = self.model.links_between(link.source_node_id, link.target_node_id)
        if not labels and link.labels:
            return existing[0] if existing else None
        if existing:
            for label in labels:
                self.model.add_label(existing[0].link_id, label)
            return existing[0]

        restored = self.model.add_link(
            link.source_node_id,
            link.target_node_id,
            labels=labels,
            link_id=self._free_link_id(link.link_id),
            source=ChangeSource.SESSION,
        )
        logger.info(f"Restored link {restored.link_id} after failed mutation")
        return restored

    # =========================================================================
    # Persistence
    # =========================================================================

    def request_save(self) -> bool:
        """Ask the debouncer for a view save."""
        if self.debouncer is None:
            return False
        return self.debouncer.request_save()

    async def persist_view(self) -> MutationResult:
        """Encode the current geometry and write it to the backend."""
        if self.container_id is None:
            raise ModelError("Cannot persist view before initialize()")
        blob = encode_view_state(self.model.serialize_geometry())
        result = await self.backend.patch_view_blob(self.container_id, blob)
        if result.ok:
            self._applied_blob = blob
            logger.info(f"Saved view of {self.container_id}")
        else:
            self.report_error(result)
        return result

    # =========================================================================
    # Styling
    # =========================================================================

    def highlight_first_seen_year(self, year: int | None) -> int:
        """Color links with a relation first seen in ``year``.

        Returns:
            Number of highlighted links
        """
        self._highlight_year = year
        return self._apply_highlight()

    def _apply_highlight(self) -> int:
        style = self.config.style
        highlighted = 0
        for link in self.model.iter_links():
            hit = self._highlight_year is not None and any(
                label.first_seen is not None
                and label.first_seen.year == self._highlight_year
                for label in link.labels
            )
            link.color = style.highlight_link_color if hit else style.default_link_color
            highlighted += int(hit)
        return highlighted

    # =========================================================================
    # Task & Error Plumbing
    # =========================================================================

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        """Run a backend mutation in the background and track it."""
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background mutation {task.get_name()} failed: {error}", exc_info=error)
            if isinstance(error, CanvasError) and self.on_error:
                self.on_error(error)

    async def wait_idle(self) -> None:
        """Wait until every background mutation has completed."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def report_error(self, error: MutationResult | CanvasError) -> None:
        """Log a failure and surface it to the user."""
        if isinstance(error, MutationResult):
            error = error.error or CanvasError(f"{error.operation} failed")
        logger.error(f"Backend mutation failed, local change rolled back: {error}")
        if self.on_error:
            self.on_error(error)

    def close(self) -> None:
        """Stop listening to the model and abandon any edit session."""
        self.session.cancel()
        if self._subscription_id is not None:
            self.model.channel.unsubscribe(self._subscription_id)
            self._subscription_id = None
        self.session.close()
