"""Graph store backends."""

from .protocols import AttachRoles, GraphBackend, MutationResult, RelationInput
from .memory import InMemoryGraphBackend
from .graphql import GraphQLBackend

__all__ = [
    "AttachRoles",
    "GraphBackend",
    "GraphQLBackend",
    "InMemoryGraphBackend",
    "MutationResult",
    "RelationInput",
]
