"""Pytest configuration for knowledge-canvas tests."""

from datetime import datetime, timezone

import pytest

from knowledge_canvas.backend.memory import InMemoryGraphBackend
from knowledge_canvas.config import CanvasConfig, SaveConfig
from knowledge_canvas.graph.models import DomainGraph, EntityRef, RelationEdge

# Short quiet window so debounce tests stay fast
TEST_DEBOUNCE_SECONDS = 0.05


def entity(entity_id: str, entity_type: str = "Malware") -> EntityRef:
    """Entity named after its id."""
    return EntityRef(entity_id=entity_id, name=entity_id.upper(), entity_type=entity_type)


def relation(
    relation_id: str,
    from_id: str,
    to_id: str,
    relationship_type: str = "related-to",
    first_seen: datetime | None = None,
    inferred: bool = False,
    to_type: str = "Malware",
) -> RelationEdge:
    """Relation between two entities built with entity()."""
    return RelationEdge(
        relation_id=relation_id,
        relationship_type=relationship_type,
        from_entity=entity(from_id),
        to_entity=entity(to_id, to_type),
        first_seen=first_seen,
        inferred=inferred,
    )


def utc(year: int, month: int = 1, day: int = 1) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


@pytest.fixture
def fast_config() -> CanvasConfig:
    """Config with a short debounce window."""
    return CanvasConfig(save=SaveConfig(debounce_seconds=TEST_DEBOUNCE_SECONDS))


@pytest.fixture
def workspace_graph() -> DomainGraph:
    """Workspace with members a, b, c and one a-b relation."""
    return DomainGraph(
        container_id="ws-1",
        entities=(entity("a"), entity("b"), entity("c")),
        relations=(relation("r1", "a", "b"),),
        version=1,
    )


@pytest.fixture
def backend() -> InMemoryGraphBackend:
    """In-memory backend holding workspace ws-1 (a, b, c, r1) and a spare entity d."""
    store = InMemoryGraphBackend()
    for entity_id in ("a", "b", "c", "d"):
        store.add_entity(entity(entity_id))
    store.add_relation(relation("r1", "a", "b"))
    store.add_workspace("ws-1", members=["a", "b", "c", "r1"], name="Workspace 1")
    return store
