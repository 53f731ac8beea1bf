"""Domain Graph Projector.

Turns a DomainGraph into node and link descriptors, folding parallel
relations between the same unordered node pair into one link with one
label per relation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .models import (
    DiagramLink,
    DiagramNode,
    DomainGraph,
    EntityRef,
    RelationEdge,
    pair_key,
)

logger = logging.getLogger(__name__)


def link_id_for_pair(first: str, second: str) -> str:
    """Deterministic link id of a projected node pair."""
    low, high = pair_key(first, second)
    return f"link:{low}:{high}"


@dataclass
class ProjectedGraph:
    """Output of a projection: unplaced nodes and labelled links."""

    nodes: list[DiagramNode] = field(default_factory=list)
    links: list[DiagramLink] = field(default_factory=list)

    @property
    def node_ids(self) -> list[str]:
        return [node.node_id for node in self.nodes]

    @property
    def relation_ids(self) -> list[str]:
        return [rid for link in self.links for rid in link.relation_ids]

    def link_for_pair(self, first: str, second: str) -> DiagramLink | None:
        """The projected link of a node pair, if any."""
        key = pair_key(first, second)
        for link in self.links:
            if link.pair == key:
                return link
        return None


class GraphProjector:
    """Projects domain graphs into diagram descriptors.

    Node order is root first, then explicit members, then relation
    endpoints in delivery order. Label order on a link follows relation
    delivery order. Projection is pure: the same input always yields an
    equal output.
    """

    def project(self, graph: DomainGraph) -> ProjectedGraph:
        nodes: dict[str, DiagramNode] = {}
        links: dict[tuple[str, str], DiagramLink] = {}
        seen_relations: set[str] = set()

        def add_entity(entity: EntityRef) -> None:
            if entity.entity_id not in nodes:
                nodes[entity.entity_id] = DiagramNode.from_entity(entity)

        if graph.root is not None:
            add_entity(graph.root)
        for entity in graph.entities:
            add_entity(entity)

        for relation in graph.relations:
            add_entity(relation.from_entity)
            add_entity(relation.to_entity)
            self._fold(relation, links, seen_relations)

        projected = ProjectedGraph(nodes=list(nodes.values()), links=list(links.values()))
        logger.debug(
            f"Projected {graph.container_id}: {len(projected.nodes)} nodes, "
            f"{len(projected.links)} links, {len(seen_relations)} relations"
        )
        return projected

    def _fold(
        self,
        relation: RelationEdge,
        links: dict[tuple[str, str], DiagramLink],
        seen_relations: set[str],
    ) -> None:
        if relation.is_self_relation:
            logger.debug(f"Skipping self relation {relation.relation_id}")
            return
        if relation.relation_id in seen_relations:
            return
        seen_relations.add(relation.relation_id)

        link = links.get(relation.pair)
        if link is None:
            source_id = relation.from_entity.entity_id
            target_id = relation.to_entity.entity_id
            link = DiagramLink(
                source_node_id=source_id,
                target_node_id=target_id,
                link_id=link_id_for_pair(source_id, target_id),
            )
            links[relation.pair] = link
        link.labels.append(relation.to_label())


_default_projector = GraphProjector()


def project(graph: DomainGraph) -> ProjectedGraph:
    """Project a domain graph with the default projector."""
    return _default_projector.project(graph)
