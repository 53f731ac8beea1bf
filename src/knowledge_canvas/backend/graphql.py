"""GraphQL graph backend.

Talks to an OpenCTI-style GraphQL API over aiohttp. Containers are either
workspaces (explicit object and relation membership) or domain entities
(the entity plus its relations). One query asks for both shapes; the API
returns null for the one that does not apply.

No retries: a failed request is reported once and left to the caller.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import aiohttp

from ..config import BackendConfig, FetchConfig
from ..exceptions import TransportError
from ..graph.models import DomainGraph, EntityRef, RelationEdge
from .protocols import AttachRoles, GraphBackend, MutationResult, RelationInput

logger = logging.getLogger(__name__)


# =============================================================================
# Documents
# =============================================================================

_RELATION_FIELDS = """
    id
    relationship_type
    inferred
    weight
    first_seen
    last_seen
    description
    from { id type name }
    to { id type name }
"""

_WORKSPACE_FIELDS = f"""
    id
    name
    graph_data
    objectRefs {{ edges {{ node {{ id type name }} }} }}
    relationRefs {{ edges {{ node {{ {_RELATION_FIELDS} }} }} }}
"""

DOMAIN_GRAPH_QUERY = f"""
query CanvasDomainGraph(
    $id: String!
    $inferred: Boolean
    $toTypes: [String]
    $firstSeenStart: DateTime
    $firstSeenStop: DateTime
    $lastSeenStart: DateTime
    $lastSeenStop: DateTime
    $weights: [Int]
    $first: Int
) {{
    workspace(id: $id) {{ {_WORKSPACE_FIELDS} }}
    stixDomainEntity(id: $id) {{
        id
        type
        name
        graph_data
        stixRelations(
            inferred: $inferred
            toTypes: $toTypes
            firstSeenStart: $firstSeenStart
            firstSeenStop: $firstSeenStop
            lastSeenStart: $lastSeenStart
            lastSeenStop: $lastSeenStop
            weights: $weights
            first: $first
        ) {{ edges {{ node {{ {_RELATION_FIELDS} }} }} }}
    }}
}}
"""

RESOLVE_RELATIONS_QUERY = f"""
query CanvasResolveRelations($fromId: String, $first: Int, $inferred: Boolean) {{
    stixRelations(fromId: $fromId, first: $first, inferred: $inferred) {{
        edges {{ node {{ {_RELATION_FIELDS} }} }}
    }}
}}
"""

RELATION_ADD_MUTATION = f"""
mutation CanvasRelationAdd($input: StixRelationAddInput!) {{
    stixRelationAdd(input: $input) {{ {_RELATION_FIELDS} }}
}}
"""

RELATION_DELETE_MUTATION = """
mutation CanvasRelationDelete($id: ID!) {
    stixRelationEdit(id: $id) { delete }
}
"""

RELATIONS_ADD_MUTATION = f"""
mutation CanvasRelationsAdd($id: ID!, $input: RelationsAddInput!) {{
    workspaceEdit(id: $id) {{
        relationsAdd(input: $input) {{ {_WORKSPACE_FIELDS} }}
    }}
}}
"""

MEMBER_DELETE_MUTATION = """
mutation CanvasMemberDelete($id: ID!, $toId: String!, $relationType: String!) {
    workspaceEdit(id: $id) {
        relationDelete(toId: $toId, relationType: $relationType) { id }
    }
}
"""

WORKSPACE_FIELD_PATCH_MUTATION = """
mutation CanvasWorkspacePatch($id: ID!, $input: EditInput!) {
    workspaceEdit(id: $id) { fieldPatch(input: $input) { id } }
}
"""

ENTITY_FIELD_PATCH_MUTATION = """
mutation CanvasEntityPatch($id: ID!, $input: EditInput!) {
    stixDomainEntityEdit(id: $id) { fieldPatch(input: $input) { id } }
}
"""


class GraphQLBackend(GraphBackend):
    """aiohttp client for the graph API.

    Example:
        async with GraphQLBackend(BackendConfig(url=..., token=...)) as backend:
            graph = await backend.fetch_domain_graph("workspace--1234")
    """

    def __init__(
        self,
        config: BackendConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Endpoint, token and timeout
            session: Shared session; created lazily (and owned) when omitted
        """
        self.config = config or BackendConfig()
        self._session = session
        self._owns_session = session is None
        self._workspaces: dict[str, bool] = {}  # container_id -> is workspace
        self._versions = itertools.count(1)

    async def __aenter__(self) -> GraphQLBackend:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self.config.token:
                headers["Authorization"] = f"Bearer {self.config.token}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
            self._owns_session = True
        return self._session

    async def _execute(
        self,
        operation: str,
        document: str,
        variables: dict[str, Any],
    ) -> dict[str, Any]:
        """Post a GraphQL document and return its ``data``.

        Raises:
            TransportError: On network failure, HTTP error or GraphQL errors
        """
        session = self._get_session()
        try:
            async with session.post(
                self.config.url,
                json={"query": document, "variables": variables},
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise TransportError(
                        f"HTTP {resp.status}: {text[:200]}", operation=operation
                    )
                body = await resp.json()
        except asyncio.TimeoutError as e:
            raise TransportError(f"{operation} timed out", operation=operation, cause=e)
        except aiohttp.ClientError as e:
            raise TransportError(f"{operation} failed", operation=operation, cause=e)
        except ValueError as e:
            raise TransportError(
                f"{operation} returned an unreadable body", operation=operation, cause=e
            )

        if not isinstance(body, dict):
            raise TransportError(
                f"{operation} returned {type(body).__name__}, expected an object",
                operation=operation,
            )
        if body.get("errors"):
            message = "; ".join(err.get("message", "?") for err in body["errors"])
            raise TransportError(message, operation=operation)
        return body.get("data") or {}

    async def _mutate(
        self,
        operation: str,
        document: str,
        variables: dict[str, Any],
    ) -> MutationResult:
        try:
            data = await self._execute(operation, document, variables)
        except TransportError as e:
            logger.error(f"GraphQL {operation} failed: {e}")
            return MutationResult(ok=False, error=e, operation=operation)
        return MutationResult.success(data, operation=operation)

    # =========================================================================
    # Queries
    # =========================================================================

    async def fetch_domain_graph(
        self,
        container_id: str,
        filters: FetchConfig | None = None,
    ) -> DomainGraph:
        variables = {"id": container_id, **(filters or FetchConfig()).to_variables()}
        data = await self._execute("fetch_domain_graph", DOMAIN_GRAPH_QUERY, variables)

        if data.get("workspace"):
            self._workspaces[container_id] = True
            return self._parse_workspace(data["workspace"])
        if data.get("stixDomainEntity"):
            self._workspaces[container_id] = False
            return self._parse_entity(data["stixDomainEntity"])
        raise TransportError(
            f"No workspace or entity with id {container_id}",
            operation="fetch_domain_graph",
        )

    async def fetch_relations(
        self,
        from_id: str,
        first: int = 30,
        inferred: bool = True,
    ) -> list[RelationEdge]:
        data = await self._execute(
            "fetch_relations",
            RESOLVE_RELATIONS_QUERY,
            {"fromId": from_id, "first": first, "inferred": inferred},
        )
        return [
            RelationEdge.from_dict(node)
            for node in _edge_nodes(data.get("stixRelations"))
        ]

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_relation(self, relation: RelationInput) -> MutationResult:
        result = await self._mutate(
            "create_relation",
            RELATION_ADD_MUTATION,
            {"input": relation.to_variables()},
        )
        if result.ok:
            result.payload = RelationEdge.from_dict(result.payload["stixRelationAdd"])
        return result

    async def delete_relation(self, relation_id: str) -> MutationResult:
        return await self._mutate(
            "delete_relation", RELATION_DELETE_MUTATION, {"id": relation_id}
        )

    async def attach_to_container(
        self,
        container_id: str,
        to_ids: list[str],
        roles: AttachRoles | None = None,
    ) -> MutationResult:
        roles = roles or AttachRoles()
        result = await self._mutate(
            "attach_to_container",
            RELATIONS_ADD_MUTATION,
            {
                "id": container_id,
                "input": {
                    "fromRole": roles.from_role,
                    "toIds": list(to_ids),
                    "toRole": roles.to_role,
                    "through": roles.through,
                },
            },
        )
        if result.ok:
            workspace = result.payload["workspaceEdit"]["relationsAdd"]
            result.payload = self._parse_workspace(workspace)
        return result

    async def detach_from_container(
        self, container_id: str, member_id: str
    ) -> MutationResult:
        return await self._mutate(
            "detach_from_container",
            MEMBER_DELETE_MUTATION,
            {"id": container_id, "toId": member_id, "relationType": "object_refs"},
        )

    async def patch_view_blob(self, container_id: str, blob: str) -> MutationResult:
        document = (
            WORKSPACE_FIELD_PATCH_MUTATION
            if self._workspaces.get(container_id, True)
            else ENTITY_FIELD_PATCH_MUTATION
        )
        return await self._mutate(
            "patch_view_blob",
            document,
            {"id": container_id, "input": {"key": "graph_data", "value": blob}},
        )

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse_workspace(self, data: dict[str, Any]) -> DomainGraph:
        return DomainGraph(
            container_id=data["id"],
            entities=tuple(
                EntityRef.from_dict(node) for node in _edge_nodes(data.get("objectRefs"))
            ),
            relations=tuple(
                RelationEdge.from_dict(node)
                for node in _edge_nodes(data.get("relationRefs"))
            ),
            view_blob=data.get("graph_data"),
            version=next(self._versions),
            name=data.get("name") or "",
        )

    def _parse_entity(self, data: dict[str, Any]) -> DomainGraph:
        root = EntityRef.from_dict(data)
        return DomainGraph(
            container_id=root.entity_id,
            root=root,
            relations=tuple(
                RelationEdge.from_dict(node, from_entity=root)
                for node in _edge_nodes(data.get("stixRelations"))
            ),
            view_blob=data.get("graph_data"),
            version=next(self._versions),
            name=root.name,
        )


def _edge_nodes(connection: dict[str, Any] | None) -> list[dict[str, Any]]:
    """Unwrap a Relay connection into its node payloads."""
    if not connection:
        return []
    return [edge["node"] for edge in connection.get("edges") or [] if edge.get("node")]
