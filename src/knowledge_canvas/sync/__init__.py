"""Synchronization between the diagram model and the backend."""

from .debouncer import PersistenceDebouncer
from .session import CreationSession, EditingSession, EditSessionController, SessionState
from .reconciler import ChangeKind, DrawDecision, Reconciler
from .expansion import ExpansionResult, NeighborhoodExpansionResolver, discover

__all__ = [
    "ChangeKind",
    "CreationSession",
    "DrawDecision",
    "EditSessionController",
    "EditingSession",
    "ExpansionResult",
    "NeighborhoodExpansionResolver",
    "PersistenceDebouncer",
    "Reconciler",
    "SessionState",
    "discover",
]
