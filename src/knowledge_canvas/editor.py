"""GraphEditor: one mounted knowledge graph editor.

Wires a DiagramModel, a Reconciler (with its edit session), a per-instance
PersistenceDebouncer and a NeighborhoodExpansionResolver to a backend, and
exposes the gestures a canvas widget produces.

Example:
    editor = GraphEditor(InMemoryGraphBackend(), on_error=show_toast)
    await editor.mount("workspace--1")
    editor.move_node("a", 120, 80)          # debounced view save
    link_id = editor.draw_link("a", "b")    # opens the creation session
    await editor.create_relation("uses")
    await editor.unmount()
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable

from .backend.protocols import GraphBackend
from .config import CanvasConfig
from .exceptions import CanvasError, ModelError
from .graph.diagram import DiagramModel
from .graph.events import ChangeSource, SelectionIntent
from .graph.models import DomainGraph, RelationEdge
from .sync.debouncer import PersistenceDebouncer
from .sync.expansion import ExpansionResult, NeighborhoodExpansionResolver
from .sync.reconciler import ErrorCallback, Reconciler
from .sync.session import EditSessionController

logger = logging.getLogger(__name__)

LayoutFunction = Callable[[dict[str, Any]], "dict[str, Any] | Awaitable[dict[str, Any]]"]

DEFAULT_FIT_PADDING = 40.0


class GraphEditor:
    """Facade over the synchronization engine for one editor instance."""

    def __init__(
        self,
        backend: GraphBackend,
        config: CanvasConfig | None = None,
        on_error: ErrorCallback | None = None,
        is_savable: Callable[[], bool] | None = None,
    ):
        self.backend = backend
        self.config = config or CanvasConfig()
        self.on_error = on_error
        self.is_savable = is_savable

        self.model: DiagramModel | None = None
        self.debouncer: PersistenceDebouncer | None = None
        self.reconciler: Reconciler | None = None
        self.resolver: NeighborhoodExpansionResolver | None = None

    @property
    def mounted(self) -> bool:
        return self.reconciler is not None

    @property
    def session(self) -> EditSessionController:
        return self._require_mounted().session

    def _require_mounted(self) -> Reconciler:
        if self.reconciler is None:
            raise CanvasError("Editor is not mounted")
        return self.reconciler

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def mount(self, container_id: str) -> DomainGraph:
        """Fetch a graph and build the editor around it.

        Raises:
            CanvasError: If already mounted
            TransportError: If the graph cannot be fetched
        """
        if self.mounted:
            raise CanvasError("Editor is already mounted")

        graph = await self.backend.fetch_domain_graph(container_id, self.config.fetch)

        self.model = DiagramModel()
        self.debouncer = PersistenceDebouncer(
            delay=self.config.save.debounce_seconds,
            is_savable=self.is_savable,
            enabled=self.config.save.enabled,
        )
        self.reconciler = Reconciler(
            self.model,
            self.backend,
            config=self.config,
            debouncer=self.debouncer,
            on_error=self.on_error,
        )
        self.resolver = NeighborhoodExpansionResolver(self.reconciler)
        self.resolver.listen()
        self.reconciler.initialize(graph)

        logger.info(f"Mounted editor on {container_id}")
        return graph

    async def unmount(self) -> None:
        """Tear down the editor, dropping any pending view save unfired."""
        if not self.mounted:
            return
        container_id = self.reconciler.container_id
        self.debouncer.close()
        self.resolver.close()
        self.reconciler.close()
        self.reconciler = None
        self.resolver = None
        self.debouncer = None
        logger.info(f"Unmounted editor from {container_id}")

    async def refresh(self) -> bool:
        """Re-fetch the graph and apply it incrementally.

        Returns:
            False if the fetched graph was stale
        """
        reconciler = self._require_mounted()
        graph = await self.backend.fetch_domain_graph(
            reconciler.container_id, self.config.fetch
        )
        return reconciler.apply_incoming_domain_update(graph)

    async def wait_idle(self) -> None:
        """Wait for in-flight mutations and a firing save to finish."""
        if self.reconciler is not None:
            await self.reconciler.wait_idle()
        if self.debouncer is not None:
            await self.debouncer.wait_idle()

    # =========================================================================
    # Gestures
    # =========================================================================

    def move_node(self, node_id: str, x: float, y: float) -> None:
        self._require_mounted()
        self.model.set_position(node_id, x, y, source=ChangeSource.USER)

    def pan(self, offset_x: float, offset_y: float) -> None:
        self._require_mounted()
        self.model.set_offset(offset_x, offset_y, source=ChangeSource.USER)

    def zoom(self, zoom: float) -> None:
        self._require_mounted()
        self.model.set_zoom(zoom, source=ChangeSource.USER)

    def draw_link(self, source_node_id: str, target_node_id: str | None) -> str:
        """Draw a link from a node and drop its end on a node (or nowhere).

        Returns:
            Id of the drawn link; it is gone again if the drop was rejected
        """
        self._require_mounted()
        link = self.model.add_link(source_node_id, source=ChangeSource.USER)
        self.model.connect_link(link.link_id, target_node_id, source=ChangeSource.USER)
        return link.link_id

    def delete_node(self, node_id: str) -> None:
        self._require_mounted()
        self.model.remove_node(node_id, source=ChangeSource.USER)

    def delete_link(self, link_id: str) -> None:
        self._require_mounted()
        self.model.remove_link(link_id, source=ChangeSource.USER)

    def open_link(self, link_id: str) -> None:
        """Select a link with the intent of editing its relation."""
        self._require_mounted()
        self.model.select(link_id, True, intent=SelectionIntent.OPEN_EDIT)

    async def expand(self, node_id: str) -> ExpansionResult:
        """Attach the unloaded neighborhood of a node."""
        self._require_mounted()
        return await self.resolver.expand(node_id)

    # =========================================================================
    # Dialog Resolution
    # =========================================================================

    async def create_relation(self, relationship_type: str, **attributes: Any) -> RelationEdge | None:
        """Confirm the creation dialog."""
        return await self.session.confirm_creation(relationship_type, **attributes)

    async def delete_relation(self) -> bool:
        """Confirm deletion in the edit dialog."""
        return await self.session.confirm_deletion()

    def cancel_dialog(self) -> None:
        """Close whichever relation dialog is open."""
        self.session.cancel()

    # =========================================================================
    # View Tools
    # =========================================================================

    def zoom_to_fit(
        self,
        width: float,
        height: float,
        padding: float = DEFAULT_FIT_PADDING,
    ) -> bool:
        """Fit every placed node into a viewport.

        Returns:
            False if no node has a position
        """
        self._require_mounted()
        positions = [n.position for n in self.model.get_nodes() if n.position is not None]
        if not positions:
            return False

        min_x = min(p.x for p in positions)
        max_x = max(p.x for p in positions)
        min_y = min(p.y for p in positions)
        max_y = max(p.y for p in positions)
        box_w, box_h = max_x - min_x, max_y - min_y
        avail_w = max(width - 2 * padding, 1.0)
        avail_h = max(height - 2 * padding, 1.0)

        scales = []
        if box_w > 0:
            scales.append(avail_w / box_w)
        if box_h > 0:
            scales.append(avail_h / box_h)
        zoom = min(scales) if scales else 1.0

        offset_x = (width - box_w * zoom) / 2 - min_x * zoom
        offset_y = (height - box_h * zoom) / 2 - min_y * zoom
        self.model.set_zoom(zoom, source=ChangeSource.USER)
        self.model.set_offset(offset_x, offset_y, source=ChangeSource.USER)
        return True

    async def auto_distribute(self, layout: LayoutFunction) -> int:
        """Run an external layout over the diagram and apply its positions.

        ``layout`` receives DiagramModel.to_dict() and returns the same
        shape with ``x``/``y`` filled in. It may be sync or async.

        Returns:
            Number of nodes moved
        """
        self._require_mounted()
        output = layout(self.model.to_dict())
        if inspect.isawaitable(output):
            output = await output

        moved = 0
        for entry in output.get("nodes", []):
            node_id = entry.get("id")
            x, y = entry.get("x"), entry.get("y")
            if x is None or y is None:
                continue
            if not self.model.has_node(node_id):
                logger.warning(f"Layout returned unknown node {node_id}")
                continue
            self.model.set_position(node_id, x, y, source=ChangeSource.USER)
            moved += 1
        logger.debug(f"Auto-distributed {moved} nodes")
        return moved

    def highlight_first_seen_year(self, year: int | None) -> int:
        """Highlight links with a relation first seen in ``year`` (None resets)."""
        return self._require_mounted().highlight_first_seen_year(year)

    def get_model(self) -> DiagramModel:
        if self.model is None:
            raise ModelError("Editor has never been mounted")
        return self.model
