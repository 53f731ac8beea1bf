"""knowledge-canvas: synchronization engine for knowledge graph diagrams.

Keeps three views of one graph consistent:
- the backend domain graph (entities and typed relations)
- the persisted view blob (positions, pan offset, zoom)
- the live DiagramModel a user edits

Quick start:
    from knowledge_canvas import GraphEditor, InMemoryGraphBackend

    editor = GraphEditor(backend)
    await editor.mount("workspace--1")
"""

from .exceptions import (
    CanvasError,
    ConfigurationError,
    DedupConflict,
    EditSessionError,
    ModelError,
    StaleUpdateError,
    TransportError,
    UnknownLinkError,
    UnknownNodeError,
    ViewDecodeError,
)
from .config import (
    BackendConfig,
    CanvasConfig,
    ExpansionConfig,
    FetchConfig,
    SaveConfig,
    StyleConfig,
    load_config,
)
from .graph import (
    ChangeSource,
    DiagramLink,
    DiagramModel,
    DiagramNode,
    DomainGraph,
    EntityRef,
    GraphProjector,
    Position,
    RelationEdge,
    RelationLabel,
    SelectionIntent,
    project,
)
from .view import ViewState, decode_view_state, decode_view_state_or_empty, encode_view_state
from .backend import (
    AttachRoles,
    GraphBackend,
    GraphQLBackend,
    InMemoryGraphBackend,
    MutationResult,
    RelationInput,
)
from .sync import (
    ChangeKind,
    DrawDecision,
    EditSessionController,
    ExpansionResult,
    NeighborhoodExpansionResolver,
    PersistenceDebouncer,
    Reconciler,
    SessionState,
)
from .editor import GraphEditor

__version__ = "0.1.0"

__all__ = [
    # Errors
    "CanvasError",
    "ConfigurationError",
    "DedupConflict",
    "EditSessionError",
    "ModelError",
    "StaleUpdateError",
    "TransportError",
    "UnknownLinkError",
    "UnknownNodeError",
    "ViewDecodeError",
    # Config
    "BackendConfig",
    "CanvasConfig",
    "ExpansionConfig",
    "FetchConfig",
    "SaveConfig",
    "StyleConfig",
    "load_config",
    # Graph
    "ChangeSource",
    "DiagramLink",
    "DiagramModel",
    "DiagramNode",
    "DomainGraph",
    "EntityRef",
    "GraphProjector",
    "Position",
    "RelationEdge",
    "RelationLabel",
    "SelectionIntent",
    "project",
    # View
    "ViewState",
    "decode_view_state",
    "decode_view_state_or_empty",
    "encode_view_state",
    # Backend
    "AttachRoles",
    "GraphBackend",
    "GraphQLBackend",
    "InMemoryGraphBackend",
    "MutationResult",
    "RelationInput",
    # Sync
    "ChangeKind",
    "DrawDecision",
    "EditSessionController",
    "ExpansionResult",
    "NeighborhoodExpansionResolver",
    "PersistenceDebouncer",
    "Reconciler",
    "SessionState",
    # Editor
    "GraphEditor",
]
