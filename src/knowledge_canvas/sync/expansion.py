"""Neighborhood Expansion Resolver.

Expanding a node fetches a page of its relations, keeps the neighbors and
relations the container does not hold yet, attaches them with one batched
mutation and rebuilds the model from the updated graph. Current positions,
zoom and offset carry over the rebuild.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..config import ExpansionConfig
from ..exceptions import TransportError
from ..graph.events import ChangeSource, ModelEvent, SelectionChanged, SelectionIntent
from ..graph.models import DomainGraph, RelationEdge
from .reconciler import Reconciler

logger = logging.getLogger(__name__)


@dataclass
class ExpansionResult:
    """What an expansion found and attached."""

    node_id: str
    new_node_ids: list[str] = field(default_factory=list)
    new_relation_ids: list[str] = field(default_factory=list)
    attached: bool = False

    @property
    def to_ids(self) -> list[str]:
        """Ids sent in the attach mutation."""
        return self.new_node_ids + self.new_relation_ids

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node_id": self.node_id,
            "new_node_ids": self.new_node_ids,
            "new_relation_ids": self.new_relation_ids,
            "attached": self.attached,
        }


def discover(
    graph: DomainGraph, node_id: str, relations: list[RelationEdge]
) -> ExpansionResult:
    """Set difference of fetched relations against a domain graph."""
    known_nodes = graph.entity_ids()
    known_relations = graph.relation_ids()
    result = ExpansionResult(node_id=node_id)

    for relation in relations:
        if relation.is_self_relation:
            continue
        for entity in (relation.from_entity, relation.to_entity):
            if entity.entity_id not in known_nodes and entity.entity_id not in result.new_node_ids:
                result.new_node_ids.append(entity.entity_id)
        if (
            relation.relation_id not in known_relations
            and relation.relation_id not in result.new_relation_ids
        ):
            result.new_relation_ids.append(relation.relation_id)
    return result


class NeighborhoodExpansionResolver:
    """Attaches the unloaded neighborhood of a node to the container."""

    def __init__(self, reconciler: Reconciler, config: ExpansionConfig | None = None):
        self.reconciler = reconciler
        self.config = config or reconciler.config.expansion
        self._subscription_id: str | None = None

    def listen(self) -> None:
        """Expand nodes selected with the EXPAND intent."""
        if self._subscription_id is None:
            self._subscription_id = self.reconciler.model.channel.subscribe(
                self._on_selection, event_types=(SelectionChanged,), name="expansion"
            )

    def close(self) -> None:
        if self._subscription_id is not None:
            self.reconciler.model.channel.unsubscribe(self._subscription_id)
            self._subscription_id = None

    def _on_selection(self, event: ModelEvent) -> None:
        if (
            isinstance(event, SelectionChanged)
            and not event.is_link
            and event.selected
            and event.intent == SelectionIntent.EXPAND
            and event.source == ChangeSource.USER
        ):
            self.reconciler.spawn(self.expand(event.item_id), name=f"expand-{event.item_id}")

    async def expand(self, node_id: str) -> ExpansionResult:
        """Fetch, diff, attach and rebuild.

        Transport failures are reported through the reconciler and leave
        the model untouched.
        """
        reconciler = self.reconciler
        graph = reconciler.graph
        if graph is None or not graph.is_container:
            logger.warning(f"Cannot expand {node_id}: graph has no explicit membership")
            return ExpansionResult(node_id=node_id)

        try:
            relations = await reconciler.backend.fetch_relations(
                node_id, first=self.config.page_size, inferred=self.config.inferred
            )
        except TransportError as e:
            reconciler.report_error(e)
            return ExpansionResult(node_id=node_id)

        result = discover(graph, node_id, relations)
        if not result.to_ids:
            logger.info(f"Expanding {node_id}: nothing new")
            return result

        geometry = reconciler.model.serialize_geometry()
        attached = await reconciler.backend.attach_to_container(
            graph.container_id, result.to_ids, reconciler.attach_roles
        )
        if not attached.ok:
            reconciler.report_error(attached)
            return result

        updated = attached.payload
        if not isinstance(updated, DomainGraph):
            try:
                updated = await reconciler.backend.fetch_domain_graph(
                    graph.container_id, reconciler.config.fetch
                )
            except TransportError as e:
                reconciler.report_error(e)
                return result

        result.attached = True
        reconciler.initialize(updated, view_state=geometry)
        reconciler.request_save()
        logger.info(
            f"Expanded {node_id}: {len(result.new_node_ids)} nodes, "
            f"{len(result.new_relation_ids)} relations attached"
        )
        return result
