"""Backend abstraction for the graph store.

The backend is the system of record for entities, relations, container
membership and the persisted view blob. Queries raise TransportError on
failure. Mutations never raise: they return a MutationResult that the
caller inspects to decide between commit and rollback.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..config import ExpansionConfig, FetchConfig
from ..exceptions import TransportError
from ..graph.models import DomainGraph, RelationEdge, format_timestamp


@dataclass
class MutationResult:
    """Outcome of a backend mutation.

    Attributes:
        ok: Whether the backend accepted the mutation
        payload: Operation-specific return value (e.g. the created relation)
        error: Failure reason when ok is False
        operation: Name of the backend operation
    """

    ok: bool
    payload: Any = None
    error: TransportError | None = None
    operation: str = ""

    @classmethod
    def success(cls, payload: Any = None, operation: str = "") -> MutationResult:
        return cls(ok=True, payload=payload, operation=operation)

    @classmethod
    def failure(
        cls,
        message: str,
        operation: str = "",
        cause: Exception | None = None,
    ) -> MutationResult:
        return cls(
            ok=False,
            error=TransportError(message, operation=operation, cause=cause),
            operation=operation,
        )

    def unwrap(self) -> Any:
        """Return the payload, raising the failure if there is one.

        Raises:
            TransportError: If the mutation failed
        """
        if not self.ok:
            raise self.error or TransportError(
                f"{self.operation or 'mutation'} failed", operation=self.operation
            )
        return self.payload

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"ok": self.ok, "operation": self.operation}
        if self.error:
            result["error"] = str(self.error)
        return result


@dataclass
class RelationInput:
    """Attributes of a relation to create, as entered in the relation dialog."""

    from_id: str
    to_id: str
    relationship_type: str
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    weight: int | None = None
    description: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_variables(self) -> dict[str, Any]:
        """GraphQL input object."""
        variables: dict[str, Any] = {
            "fromId": self.from_id,
            "toId": self.to_id,
            "relationship_type": self.relationship_type,
            "first_seen": format_timestamp(self.first_seen),
            "last_seen": format_timestamp(self.last_seen),
        }
        if self.weight is not None:
            variables["weight"] = self.weight
        if self.description:
            variables["description"] = self.description
        variables.update(self.extra)
        return variables


@dataclass(frozen=True)
class AttachRoles:
    """Role metadata carried by a batched attach mutation."""

    from_role: str = "knowledge_aggregation"
    to_role: str = "so"
    through: str = "object_refs"

    @classmethod
    def from_config(cls, config: ExpansionConfig) -> AttachRoles:
        return cls(
            from_role=config.from_role,
            to_role=config.to_role,
            through=config.through,
        )


class GraphBackend(ABC):
    """Abstract graph store.

    Implementations: InMemoryGraphBackend (tests, demos) and
    GraphQLBackend (aiohttp).
    """

    # =========================================================================
    # Queries
    # =========================================================================

    @abstractmethod
    async def fetch_domain_graph(
        self,
        container_id: str,
        filters: FetchConfig | None = None,
    ) -> DomainGraph:
        """Fetch the domain graph and view blob of a container or root entity.

        Raises:
            TransportError: If the query fails
        """
        pass

    @abstractmethod
    async def fetch_relations(
        self,
        from_id: str,
        first: int = 30,
        inferred: bool = True,
    ) -> list[RelationEdge]:
        """Fetch up to ``first`` relations involving an entity.

        Raises:
            TransportError: If the query fails
        """
        pass

    # =========================================================================
    # Mutations
    # =========================================================================

    @abstractmethod
    async def create_relation(self, relation: RelationInput) -> MutationResult:
        """Create a relation. Payload: the created RelationEdge."""
        pass

    @abstractmethod
    async def delete_relation(self, relation_id: str) -> MutationResult:
        """Delete a relation. Deleting an unknown id succeeds."""
        pass

    @abstractmethod
    async def attach_to_container(
        self,
        container_id: str,
        to_ids: list[str],
        roles: AttachRoles | None = None,
    ) -> MutationResult:
        """Add entities and relations to a container in one round trip.

        Payload: the updated DomainGraph.
        """
        pass

    @abstractmethod
    async def detach_from_container(
        self, container_id: str, member_id: str
    ) -> MutationResult:
        """Remove an entity or relation from a container's membership."""
        pass

    @abstractmethod
    async def patch_view_blob(self, container_id: str, blob: str) -> MutationResult:
        """Overwrite the persisted view blob of a container or root entity."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        pass
