"""Graph data models.

Two families of types live here:

Domain types (immutable, backend-authoritative):
    EntityRef, RelationEdge, DomainGraph

Diagram types (mutable, owned by the DiagramModel while an editor is mounted):
    Position, RelationLabel, DiagramNode, DiagramLink

A DiagramLink is the visual edge between two nodes. It may fold several
domain relations between the same unordered node pair into one link, one
RelationLabel per relation. The undirected pair key is the dedup key:

    >>> pair_key("b", "a")
    ('a', 'b')
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


def pair_key(first: str, second: str) -> tuple[str, str]:
    """Undirected identity of a node pair."""
    return (first, second) if first <= second else (second, first)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp as delivered by the backend.

    Accepts datetimes unchanged and a trailing ``Z`` for UTC. Naive values
    are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    """Format a timestamp for the wire."""
    return value.isoformat() if value else None


# =============================================================================
# Domain Types
# =============================================================================


@dataclass(frozen=True)
class EntityRef:
    """A domain entity as returned by the backend."""

    entity_id: str
    name: str = ""
    entity_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"id": self.entity_id, "name": self.name, "type": self.entity_type}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityRef:
        """Create from a backend payload."""
        return cls(
            entity_id=data["id"],
            name=data.get("name") or "",
            entity_type=data.get("type") or data.get("entity_type") or "",
        )


@dataclass(frozen=True)
class RelationEdge:
    """A typed domain relation between two entities.

    Attributes:
        relation_id: Backend id of the relation
        relationship_type: Relation type (e.g. "indicates", "uses")
        from_entity: Source entity
        to_entity: Target entity
        first_seen: Start of the observation window
        last_seen: End of the observation window
        inferred: Whether the backend derived this relation
        weight: Confidence weight (backend scale)
        description: Free text
    """

    relation_id: str
    relationship_type: str
    from_entity: EntityRef
    to_entity: EntityRef
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    inferred: bool = False
    weight: int | None = None
    description: str = ""

    @property
    def pair(self) -> tuple[str, str]:
        """Undirected pair key of the endpoints."""
        return pair_key(self.from_entity.entity_id, self.to_entity.entity_id)

    @property
    def is_self_relation(self) -> bool:
        """True if both endpoints are the same entity."""
        return self.from_entity.entity_id == self.to_entity.entity_id

    def to_label(self) -> RelationLabel:
        """The diagram label representing this relation."""
        return RelationLabel(
            relation_id=self.relation_id,
            relationship_type=self.relationship_type,
            first_seen=self.first_seen,
            last_seen=self.last_seen,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.relation_id,
            "relationship_type": self.relationship_type,
            "from": self.from_entity.to_dict(),
            "to": self.to_entity.to_dict(),
            "first_seen": format_timestamp(self.first_seen),
            "last_seen": format_timestamp(self.last_seen),
            "inferred": self.inferred,
            "weight": self.weight,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], from_entity: EntityRef | None = None) -> RelationEdge:
        """Create from a backend payload.

        Entity-centric queries omit the ``from`` side; pass the root entity
        as ``from_entity`` in that case.
        """
        source = EntityRef.from_dict(data["from"]) if data.get("from") else from_entity
        if source is None:
            raise ValueError(f"Relation {data.get('id')} has no source entity")
        return cls(
            relation_id=data["id"],
            relationship_type=data.get("relationship_type") or "",
            from_entity=source,
            to_entity=EntityRef.from_dict(data["to"]),
            first_seen=parse_timestamp(data.get("first_seen")),
            last_seen=parse_timestamp(data.get("last_seen")),
            inferred=bool(data.get("inferred", False)),
            weight=data.get("weight"),
            description=data.get("description") or "",
        )


@dataclass(frozen=True)
class DomainGraph:
    """Backend snapshot of a graph: members, relations and the view blob.

    In entity mode ``root`` is the focal entity and ``container_id`` is its
    id. In container (workspace) mode ``entities`` lists the explicit members.
    ``version`` increases monotonically with every backend change.
    """

    container_id: str
    root: EntityRef | None = None
    entities: tuple[EntityRef, ...] = ()
    relations: tuple[RelationEdge, ...] = ()
    view_blob: str | None = None
    version: int = 0
    name: str = ""

    @property
    def is_container(self) -> bool:
        """True for workspace-style graphs with explicit membership."""
        return self.root is None or self.root.entity_id != self.container_id

    def entity_ids(self) -> set[str]:
        """Ids of every entity that will appear as a node."""
        ids = {e.entity_id for e in self.entities}
        if self.root is not None:
            ids.add(self.root.entity_id)
        for relation in self.relations:
            ids.add(relation.from_entity.entity_id)
            ids.add(relation.to_entity.entity_id)
        return ids

    def relation_ids(self) -> set[str]:
        """Ids of every relation in the graph."""
        return {r.relation_id for r in self.relations}

    def with_changes(self, **changes: Any) -> DomainGraph:
        """Copy with the given fields replaced."""
        return replace(self, **changes)


# =============================================================================
# Diagram Types
# =============================================================================


@dataclass(frozen=True)
class Position:
    """Screen position of a node."""

    x: float
    y: float


@dataclass(frozen=True)
class RelationLabel:
    """Metadata of one domain relation folded into a DiagramLink."""

    relation_id: str
    relationship_type: str
    first_seen: datetime | None = None
    last_seen: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.relation_id,
            "relationship_type": self.relationship_type,
            "first_seen": format_timestamp(self.first_seen),
            "last_seen": format_timestamp(self.last_seen),
        }


@dataclass
class DiagramNode:
    """A node in the diagram, one per domain entity.

    ``position`` is None until the node is placed, leaving placement to
    the rendering widget.
    """

    node_id: str
    display_name: str = ""
    entity_type: str = ""
    position: Position | None = None
    selected: bool = False

    @classmethod
    def from_entity(cls, entity: EntityRef) -> DiagramNode:
        """Create an unplaced node for a domain entity."""
        return cls(
            node_id=entity.entity_id,
            display_name=entity.name,
            entity_type=entity.entity_type,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.node_id,
            "name": self.display_name,
            "type": self.entity_type,
            "x": self.position.x if self.position else None,
            "y": self.position.y if self.position else None,
        }


@dataclass
class DiagramLink:
    """A visual edge between two nodes.

    ``target_node_id`` is None while a link is being drawn and has not been
    dropped on a node yet.
    """

    source_node_id: str
    target_node_id: str | None = None
    labels: list[RelationLabel] = field(default_factory=list)
    link_id: str = field(default_factory=lambda: f"link-{uuid.uuid4()}")
    color: str | None = None
    selected: bool = False

    @property
    def pair(self) -> tuple[str, str] | None:
        """Undirected pair key, or None for a loose or circular link."""
        if self.target_node_id is None or self.target_node_id == self.source_node_id:
            return None
        return pair_key(self.source_node_id, self.target_node_id)

    @property
    def relation_ids(self) -> list[str]:
        """Relation ids of the labels, in label order."""
        return [label.relation_id for label in self.labels]

    @property
    def primary_relation_id(self) -> str | None:
        """The first folded relation, used when the link is opened for edit."""
        return self.labels[0].relation_id if self.labels else None

    def has_relation(self, relation_id: str) -> bool:
        """Check whether a relation is folded into this link."""
        return any(label.relation_id == relation_id for label in self.labels)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.link_id,
            "source": self.source_node_id,
            "target": self.target_node_id,
            "labels": [label.to_dict() for label in self.labels],
        }
