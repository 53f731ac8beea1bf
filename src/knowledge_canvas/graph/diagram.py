"""Diagram Model: the live, mutable graph behind the canvas.

The model stores nodes and links in flat id-indexed tables. Links refer to
their endpoints by node id, never by object reference, so the model can be
serialized and diffed without walking object graphs.

Every mutation is synchronous, performs no I/O and publishes one typed
event on the model's EventChannel (see events.py). Callers tag mutations
with a ChangeSource so subscribers can tell user gestures from remote
updates.

Invariants:
    - A link's source (and target, once attached) is a node in the model.
    - Removing a node removes every link touching it first.
    - A relation id appears in at most one label of one link.

Example:
    >>> model = DiagramModel()
    >>> model.add_node(DiagramNode("a", "APT28", "Intrusion-Set"))
    >>> model.add_node(DiagramNode("b", "Sofacy", "Malware"))
    >>> link = model.add_link("a", "b")
    >>> model.link_count
    1
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Iterator

from ..exceptions import ModelError, UnknownLinkError, UnknownNodeError
from ..view.state import ViewState
from .events import (
    ChangeSource,
    EventChannel,
    GeometryChanged,
    GeometryKind,
    LinkAdded,
    LinkEndpointChanged,
    LinkRemoved,
    NodeAdded,
    NodeRemoved,
    SelectionChanged,
    SelectionIntent,
)
from .models import DiagramLink, DiagramNode, Position, RelationLabel, pair_key

logger = logging.getLogger(__name__)

DEFAULT_ZOOM = 1.0


class DiagramModel:
    """The in-memory diagram: nodes, links, labels, selection and camera.

    Thread Safety:
        Not thread-safe. All mutations are expected on the single event
        loop thread that owns the editor.

    Attributes:
        nodes: node_id -> DiagramNode
        links: link_id -> DiagramLink
        zoom: Zoom factor (1.0 = identity)
        offset_x: Horizontal pan offset
        offset_y: Vertical pan offset
        channel: Event channel change notifications are published on
    """

    def __init__(self, channel: EventChannel | None = None) -> None:
        self.nodes: dict[str, DiagramNode] = {}
        self.links: dict[str, DiagramLink] = {}
        self.zoom: float = DEFAULT_ZOOM
        self.offset_x: float = 0.0
        self.offset_y: float = 0.0
        self.channel = channel or EventChannel()

        # Indexes
        self._node_links: dict[str, list[str]] = defaultdict(list)
        self._label_index: dict[str, str] = {}  # relation_id -> link_id

    # =========================================================================
    # Node Operations
    # =========================================================================

    def add_node(
        self, node: DiagramNode, source: ChangeSource = ChangeSource.USER
    ) -> DiagramNode:
        """Add a node.

        Raises:
            ModelError: If a node with the same id exists
        """
        if node.node_id in self.nodes:
            raise ModelError(f"Node {node.node_id} already exists")
        self.nodes[node.node_id] = node
        self.channel.publish(NodeAdded(node=node, source=source))
        return node

    def remove_node(
        self, node_id: str, source: ChangeSource = ChangeSource.USER
    ) -> DiagramNode:
        """Remove a node and every link touching it.

        Links are removed first (published with ``cascade=True``), then the
        node itself.

        Raises:
            UnknownNodeError: If the node is not in the model
        """
        node = self.get_node(node_id)
        for link_id in list(self._node_links.get(node_id, [])):
            self._remove_link(link_id, source, cascade=True)
        del self.nodes[node_id]
        self._node_links.pop(node_id, None)
        self.channel.publish(NodeRemoved(node=node, source=source))
        return node

    def get_node(self, node_id: str) -> DiagramNode:
        """Get a node by id.

        Raises:
            UnknownNodeError: If the node is not in the model
        """
        node = self.nodes.get(node_id)
        if node is None:
            raise UnknownNodeError(node_id)
        return node

    def get_nodes(self) -> list[DiagramNode]:
        """All nodes in insertion order."""
        return list(self.nodes.values())

    def has_node(self, node_id: str) -> bool:
        """Check whether a node is in the model."""
        return node_id in self.nodes

    # =========================================================================
    # Link Operations
    # =========================================================================

    def add_link(
        self,
        source_node_id: str,
        target_node_id: str | None = None,
        labels: list[RelationLabel] | None = None,
        link_id: str | None = None,
        source: ChangeSource = ChangeSource.USER,
    ) -> DiagramLink:
        """Add a link.

        A link without a target is a loose link being drawn; attach it later
        with connect_link().

        Raises:
            UnknownNodeError: If an endpoint is not in the model
            ModelError: If the link id or one of the relations already exists
        """
        self.get_node(source_node_id)
        if target_node_id is not None:
            self.get_node(target_node_id)

        kwargs: dict[str, Any] = {}
        if link_id is not None:
            if link_id in self.links:
                raise ModelError(f"Link {link_id} already exists")
            kwargs["link_id"] = link_id

        labels = list(labels or [])
        for label in labels:
            if label.relation_id in self._label_index:
                raise ModelError(f"Relation {label.relation_id} is already on a link")

        link = DiagramLink(
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            labels=labels,
            **kwargs,
        )
        self.links[link.link_id] = link
        self._index_endpoint(source_node_id, link.link_id)
        if target_node_id is not None and target_node_id != source_node_id:
            self._index_endpoint(target_node_id, link.link_id)
        for label in labels:
            self._label_index[label.relation_id] = link.link_id

        self.channel.publish(LinkAdded(link=link, source=source))
        return link

    def connect_link(
        self,
        link_id: str,
        target_node_id: str | None,
        source: ChangeSource = ChangeSource.USER,
    ) -> DiagramLink:
        """Set the target end of a link (None = dropped on empty canvas).

        Raises:
            UnknownLinkError: If the link is not in the model
            UnknownNodeError: If the target is not in the model
        """
        link = self.get_link(link_id)
        if target_node_id is not None:
            self.get_node(target_node_id)

        old_target = link.target_node_id
        if old_target is not None and old_target != link.source_node_id:
            self._unindex_endpoint(old_target, link_id)
        link.target_node_id = target_node_id
        if target_node_id is not None and target_node_id != link.source_node_id:
            self._index_endpoint(target_node_id, link_id)

        self.channel.publish(
            LinkEndpointChanged(
                link_id=link_id,
                source_node_id=link.source_node_id,
                target_node_id=target_node_id,
                source=source,
                previous_target_node_id=old_target,
            )
        )
        return link

    def remove_link(
        self, link_id: str, source: ChangeSource = ChangeSource.USER
    ) -> DiagramLink:
        """Remove a link and its labels.

        Raises:
            UnknownLinkError: If the link is not in the model
        """
        return self._remove_link(link_id, source, cascade=False)

    def _remove_link(
        self, link_id: str, source: ChangeSource, cascade: bool
    ) -> DiagramLink:
        link = self.get_link(link_id)
        del self.links[link_id]
        self._unindex_endpoint(link.source_node_id, link_id)
        if link.target_node_id is not None:
            self._unindex_endpoint(link.target_node_id, link_id)
        for label in link.labels:
            self._label_index.pop(label.relation_id, None)
        self.channel.publish(LinkRemoved(link=link, cascade=cascade, source=source))
        return link

    def get_link(self, link_id: str) -> DiagramLink:
        """Get a link by id.

        Raises:
            UnknownLinkError: If the link is not in the model
        """
        link = self.links.get(link_id)
        if link is None:
            raise UnknownLinkError(link_id)
        return link

    def get_links(self) -> list[DiagramLink]:
        """All links in insertion order."""
        return list(self.links.values())

    def has_link(self, link_id: str) -> bool:
        """Check whether a link is in the model."""
        return link_id in self.links

    def links_between(self, first: str, second: str) -> list[DiagramLink]:
        """Attached links joining an unordered node pair."""
        key = pair_key(first, second)
        return [
            self.links[link_id]
            for link_id in self._node_links.get(first, [])
            if self.links[link_id].pair == key
        ]

    def links_of(self, node_id: str) -> list[DiagramLink]:
        """Links touching a node."""
        return [self.links[link_id] for link_id in self._node_links.get(node_id, [])]

    def _index_endpoint(self, node_id: str, link_id: str) -> None:
        if link_id not in self._node_links[node_id]:
            self._node_links[node_id].append(link_id)

    def _unindex_endpoint(self, node_id: str, link_id: str) -> None:
        if link_id in self._node_links.get(node_id, []):
            self._node_links[node_id].remove(link_id)

    # =========================================================================
    # Label Operations
    # =========================================================================

    def add_label(self, link_id: str, label: RelationLabel) -> bool:
        """Fold a relation into a link.

        Returns:
            False if the relation is already represented anywhere in the
            model (no-op), True if the label was appended

        Raises:
            UnknownLinkError: If the link is not in the model
        """
        link = self.get_link(link_id)
        if label.relation_id in self._label_index:
            return False
        link.labels.append(label)
        self._label_index[label.relation_id] = link_id
        return True

    def remove_label(self, relation_id: str) -> RelationLabel | None:
        """Drop a relation's label from whichever link carries it.

        Returns:
            The removed label, or None if the relation is not in the model
        """
        link_id = self._label_index.pop(relation_id, None)
        if link_id is None:
            return None
        link = self.links[link_id]
        for index, label in enumerate(link.labels):
            if label.relation_id == relation_id:
                return link.labels.pop(index)
        return None

    def find_link_by_relation(self, relation_id: str) -> DiagramLink | None:
        """The link carrying a relation, if any."""
        link_id = self._label_index.get(relation_id)
        return self.links.get(link_id) if link_id else None

    def relation_ids(self) -> set[str]:
        """Every relation represented in the model."""
        return set(self._label_index)

    # =========================================================================
    # Geometry
    # =========================================================================

    def set_position(
        self,
        node_id: str,
        x: float,
        y: float,
        source: ChangeSource = ChangeSource.USER,
    ) -> None:
        """Move a node.

        Raises:
            UnknownNodeError: If the node is not in the model
        """
        node = self.get_node(node_id)
        node.position = Position(float(x), float(y))
        self.channel.publish(
            GeometryChanged(kind=GeometryKind.POSITION, node_id=node_id, source=source)
        )

    def set_zoom(self, zoom: float, source: ChangeSource = ChangeSource.USER) -> None:
        """Set the zoom factor.

        Raises:
            ModelError: If zoom is not positive
        """
        if zoom <= 0:
            raise ModelError(f"Zoom must be positive, got {zoom}")
        self.zoom = float(zoom)
        self.channel.publish(GeometryChanged(kind=GeometryKind.ZOOM, source=source))

    def set_offset(
        self,
        offset_x: float,
        offset_y: float,
        source: ChangeSource = ChangeSource.USER,
    ) -> None:
        """Set the pan offset."""
        self.offset_x = float(offset_x)
        self.offset_y = float(offset_y)
        self.channel.publish(GeometryChanged(kind=GeometryKind.OFFSET, source=source))

    def serialize_geometry(self) -> ViewState:
        """Snapshot zoom, offset and the position of every placed node."""
        return ViewState(
            zoom=self.zoom,
            offset_x=self.offset_x,
            offset_y=self.offset_y,
            node_positions={
                node.node_id: node.position
                for node in self.nodes.values()
                if node.position is not None
            },
        )

    # =========================================================================
    # Selection
    # =========================================================================

    def select(
        self,
        item_id: str,
        selected: bool = True,
        intent: SelectionIntent | None = None,
        source: ChangeSource = ChangeSource.USER,
    ) -> None:
        """Change the selection state of a node or link.

        Raises:
            ModelError: If the id is neither a node nor a link
        """
        if item_id in self.nodes:
            self.nodes[item_id].selected = selected
            is_link = False
        elif item_id in self.links:
            self.links[item_id].selected = selected
            is_link = True
        else:
            raise ModelError(f"Unknown item: {item_id}")

        self.channel.publish(
            SelectionChanged(
                item_id=item_id,
                is_link=is_link,
                selected=selected,
                intent=intent,
                source=source,
            )
        )

    def selected_ids(self) -> list[str]:
        """Ids of selected nodes and links."""
        return [n.node_id for n in self.nodes.values() if n.selected] + [
            link.link_id for link in self.links.values() if link.selected
        ]

    # =========================================================================
    # Statistics & Serialization
    # =========================================================================

    @property
    def node_count(self) -> int:
        """Number of nodes."""
        return len(self.nodes)

    @property
    def link_count(self) -> int:
        """Number of links."""
        return len(self.links)

    @property
    def label_count(self) -> int:
        """Number of relation labels across all links."""
        return len(self._label_index)

    def iter_links(self, attached_only: bool = False) -> Iterator[DiagramLink]:
        """Iterate over links, optionally skipping loose ones."""
        for link in self.links.values():
            if attached_only and link.target_node_id is None:
                continue
            yield link

    def to_dict(self) -> dict[str, Any]:
        """Serialize the whole diagram (used as layout input)."""
        return {
            "zoom": self.zoom,
            "offsetX": self.offset_x,
            "offsetY": self.offset_y,
            "nodes": [node.to_dict() for node in self.nodes.values()],
            "links": [link.to_dict() for link in self.iter_links(attached_only=True)],
        }

    def __repr__(self) -> str:
        return (
            f"DiagramModel(nodes={self.node_count}, links={self.link_count}, "
            f"labels={self.label_count})"
        )

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self.nodes or item_id in self.links
