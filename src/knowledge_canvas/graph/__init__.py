"""Graph data model, diagram model and projector."""

from .models import (
    DiagramLink,
    DiagramNode,
    DomainGraph,
    EntityRef,
    Position,
    RelationEdge,
    RelationLabel,
    pair_key,
    parse_timestamp,
)
from .events import (
    ChangeSource,
    EventChannel,
    GeometryChanged,
    GeometryKind,
    LinkAdded,
    LinkEndpointChanged,
    LinkRemoved,
    ModelEvent,
    NodeAdded,
    NodeRemoved,
    SelectionChanged,
    SelectionIntent,
)
from .diagram import DiagramModel
from .projector import GraphProjector, ProjectedGraph, link_id_for_pair, project

__all__ = [
    # Models
    "DiagramLink",
    "DiagramNode",
    "DomainGraph",
    "EntityRef",
    "Position",
    "RelationEdge",
    "RelationLabel",
    "pair_key",
    "parse_timestamp",
    # Events
    "ChangeSource",
    "EventChannel",
    "GeometryChanged",
    "GeometryKind",
    "LinkAdded",
    "LinkEndpointChanged",
    "LinkRemoved",
    "ModelEvent",
    "NodeAdded",
    "NodeRemoved",
    "SelectionChanged",
    "SelectionIntent",
    # Diagram
    "DiagramModel",
    # Projection
    "GraphProjector",
    "ProjectedGraph",
    "link_id_for_pair",
    "project",
]
