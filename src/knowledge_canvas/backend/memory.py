"""In-memory graph backend for testing and development."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from ..config import FetchConfig
from ..exceptions import TransportError
from ..graph.models import DomainGraph, EntityRef, RelationEdge, parse_timestamp
from .protocols import AttachRoles, GraphBackend, MutationResult, RelationInput

logger = logging.getLogger(__name__)


@dataclass
class _Container:
    """Stored container: a workspace, or a root entity in entity mode."""

    container_id: str
    root_id: str | None = None
    name: str = ""
    member_ids: list[str] = field(default_factory=list)
    view_blob: str | None = None


class InMemoryGraphBackend(GraphBackend):
    """Dict-backed graph store.

    Every mutation bumps a backend-wide version counter, so successive
    fetches return DomainGraphs with increasing ``version``.

    Failure injection:
        backend.fail_operations.add("create_relation")

    makes every subsequent create_relation call fail (queries raise
    TransportError, mutations return a failed MutationResult).

    Example:
        backend = InMemoryGraphBackend()
        backend.add_entity(EntityRef("a", "APT28", "Intrusion-Set"))
        backend.add_entity(EntityRef("b", "Sofacy", "Malware"))
        backend.add_workspace("ws-1", members=["a", "b"])
        graph = await backend.fetch_domain_graph("ws-1")
    """

    def __init__(self) -> None:
        self.entities: dict[str, EntityRef] = {}
        self.relations: dict[str, RelationEdge] = {}
        self.containers: dict[str, _Container] = {}
        self.version = 0
        self.fail_operations: set[str] = set()
        self.calls: list[tuple[str, tuple]] = []

    # =========================================================================
    # Seeding
    # =========================================================================

    def add_entity(self, entity: EntityRef, view_blob: str | None = None) -> EntityRef:
        """Store an entity; it can be opened in entity mode by its id."""
        self.entities[entity.entity_id] = entity
        self.containers.setdefault(
            entity.entity_id,
            _Container(container_id=entity.entity_id, root_id=entity.entity_id, name=entity.name),
        ).view_blob = view_blob
        self._bump()
        return entity

    def add_relation(self, relation: RelationEdge) -> RelationEdge:
        """Store a relation (endpoints are stored too)."""
        for entity in (relation.from_entity, relation.to_entity):
            if entity.entity_id not in self.entities:
                self.add_entity(entity)
        self.relations[relation.relation_id] = relation
        self._bump()
        return relation

    def add_workspace(
        self,
        container_id: str,
        members: list[str] | None = None,
        name: str = "",
        view_blob: str | None = None,
    ) -> None:
        """Create a workspace container with explicit members."""
        self.containers[container_id] = _Container(
            container_id=container_id,
            name=name,
            member_ids=list(members or []),
            view_blob=view_blob,
        )
        self._bump()

    def view_blob_of(self, container_id: str) -> str | None:
        """Currently persisted view blob of a container."""
        return self._container(container_id).view_blob

    def call_count(self, operation: str) -> int:
        """Number of calls made to an operation."""
        return sum(1 for name, _ in self.calls if name == operation)

    def _bump(self) -> None:
        self.version += 1

    def _record(self, operation: str, *args) -> bool:
        """Log a call; returns False when the operation is set to fail."""
        self.calls.append((operation, args))
        return operation not in self.fail_operations

    def _container(self, container_id: str) -> _Container:
        container = self.containers.get(container_id)
        if container is None:
            raise TransportError(f"Unknown container: {container_id}")
        return container

    # =========================================================================
    # Queries
    # =========================================================================

    async def fetch_domain_graph(
        self,
        container_id: str,
        filters: FetchConfig | None = None,
    ) -> DomainGraph:
        if not self._record("fetch_domain_graph", container_id, filters):
            raise TransportError("Injected failure", operation="fetch_domain_graph")

        container = self._container(container_id)
        filters = filters or FetchConfig()

        root = self.entities.get(container.root_id) if container.root_id else None
        entities = tuple(
            self.entities[mid] for mid in container.member_ids if mid in self.entities
        )

        relations: list[RelationEdge] = []
        for relation in self.relations.values():
            involves_root = root is not None and root.entity_id in (
                relation.from_entity.entity_id,
                relation.to_entity.entity_id,
            )
            if not involves_root and relation.relation_id not in container.member_ids:
                continue
            if not _matches_filters(relation, filters):
                continue
            relations.append(relation)
            if len(relations) >= filters.count:
                break

        return DomainGraph(
            container_id=container_id,
            root=root,
            entities=entities,
            relations=tuple(relations),
            view_blob=container.view_blob,
            version=self.version,
            name=container.name,
        )

    async def fetch_relations(
        self,
        from_id: str,
        first: int = 30,
        inferred: bool = True,
    ) -> list[RelationEdge]:
        if not self._record("fetch_relations", from_id, first, inferred):
            raise TransportError("Injected failure", operation="fetch_relations")

        result = []
        for relation in self.relations.values():
            if from_id not in (relation.from_entity.entity_id, relation.to_entity.entity_id):
                continue
            if relation.inferred and not inferred:
                continue
            result.append(relation)
            if len(result) >= first:
                break
        return result

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_relation(self, relation: RelationInput) -> MutationResult:
        operation = "create_relation"
        if not self._record(operation, relation):
            return MutationResult.failure("Injected failure", operation=operation)

        from_entity = self.entities.get(relation.from_id)
        to_entity = self.entities.get(relation.to_id)
        if from_entity is None or to_entity is None:
            return MutationResult.failure(
                f"Unknown endpoint in {relation.from_id} -> {relation.to_id}",
                operation=operation,
            )

        edge = RelationEdge(
            relation_id=f"relation--{uuid.uuid4()}",
            relationship_type=relation.relationship_type,
            from_entity=from_entity,
            to_entity=to_entity,
            first_seen=relation.first_seen,
            last_seen=relation.last_seen,
            weight=relation.weight,
            description=relation.description,
        )
        self.relations[edge.relation_id] = edge
        self._bump()
        return MutationResult.success(edge, operation=operation)

    async def delete_relation(self, relation_id: str) -> MutationResult:
        operation = "delete_relation"
        if not self._record(operation, relation_id):
            return MutationResult.failure("Injected failure", operation=operation)

        if self.relations.pop(relation_id, None) is not None:
            for container in self.containers.values():
                if relation_id in container.member_ids:
                    container.member_ids.remove(relation_id)
            self._bump()
        return MutationResult.success(operation=operation)

    async def attach_to_container(
        self,
        container_id: str,
        to_ids: list[str],
        roles: AttachRoles | None = None,
    ) -> MutationResult:
        operation = "attach_to_container"
        if not self._record(operation, container_id, list(to_ids), roles):
            return MutationResult.failure("Injected failure", operation=operation)

        container = self.containers.get(container_id)
        if container is None:
            return MutationResult.failure(
                f"Unknown container: {container_id}", operation=operation
            )
        for member_id in to_ids:
            if member_id not in self.entities and member_id not in self.relations:
                return MutationResult.failure(
                    f"Unknown member: {member_id}", operation=operation
                )

        for member_id in to_ids:
            if member_id not in container.member_ids:
                container.member_ids.append(member_id)
        self._bump()
        return MutationResult.success(
            await self.fetch_domain_graph(container_id), operation=operation
        )

    async def detach_from_container(
        self, container_id: str, member_id: str
    ) -> MutationResult:
        operation = "detach_from_container"
        if not self._record(operation, container_id, member_id):
            return MutationResult.failure("Injected failure", operation=operation)

        container = self.containers.get(container_id)
        if container is None:
            return MutationResult.failure(
                f"Unknown container: {container_id}", operation=operation
            )
        if member_id in container.member_ids:
            container.member_ids.remove(member_id)
            self._bump()
        return MutationResult.success(operation=operation)

    async def patch_view_blob(self, container_id: str, blob: str) -> MutationResult:
        operation = "patch_view_blob"
        if not self._record(operation, container_id, blob):
            return MutationResult.failure("Injected failure", operation=operation)

        container = self.containers.get(container_id)
        if container is None:
            return MutationResult.failure(
                f"Unknown container: {container_id}", operation=operation
            )
        container.view_blob = blob
        self._bump()
        return MutationResult.success(operation=operation)


def _matches_filters(relation: RelationEdge, filters: FetchConfig) -> bool:
    """Apply fetch filters to a stored relation."""
    if filters.to_types and relation.to_entity.entity_type not in filters.to_types:
        return False
    if filters.inferred is not None and relation.inferred != filters.inferred:
        return False
    if filters.weights and relation.weight not in filters.weights:
        return False
    if not _in_window(relation.first_seen, filters.first_seen_start, filters.first_seen_stop):
        return False
    if not _in_window(relation.last_seen, filters.last_seen_start, filters.last_seen_stop):
        return False
    return True


def _in_window(value: datetime | None, start: str | None, stop: str | None) -> bool:
    if start is None and stop is None:
        return True
    if value is None:
        return False
    if start is not None and value < parse_timestamp(start):
        return False
    if stop is not None and value > parse_timestamp(stop):
        return False
    return True
