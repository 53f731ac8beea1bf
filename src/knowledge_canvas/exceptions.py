"""Standard exception hierarchy for knowledge-canvas.

All knowledge-canvas exceptions inherit from CanvasError, making it easy
to catch all library-specific errors.

Exception Hierarchy:
    CanvasError (base)
    ├── ConfigurationError - Invalid configuration
    ├── TransportError - A backend query or mutation was rejected
    ├── ViewDecodeError - A view blob could not be decoded
    ├── ModelError - Diagram model invariant violated
    │   ├── UnknownNodeError - Node id not present in the model
    │   └── UnknownLinkError - Link id not present in the model
    ├── DedupConflict - A drawn link duplicates an existing node pair
    ├── StaleUpdateError - An incoming update is not newer than the applied one
    └── EditSessionError - Illegal edit session transition
"""

from __future__ import annotations


class CanvasError(Exception):
    """Base exception for all knowledge-canvas errors.

    Catch this to handle any library-specific exception:
        try:
            await editor.mount("workspace-1")
        except CanvasError as e:
            logger.error(f"Graph editor error: {e}")
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{super().__str__()} (caused by: {self.cause})"
        return super().__str__()


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(CanvasError):
    """Invalid configuration.

    Raised when CanvasConfig has invalid settings or a config file
    cannot be parsed.
    """

    pass


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(CanvasError):
    """A backend query or mutation failed.

    Raised when:
    - A relation create/delete mutation is rejected
    - A graph attach/detach mutation is rejected
    - A view blob save fails
    - A neighborhood query fails
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause)
        self.operation = operation


# =============================================================================
# View Errors
# =============================================================================


class ViewDecodeError(CanvasError):
    """A view blob is not valid base64-encoded JSON of the expected shape."""

    pass


# =============================================================================
# Model Errors
# =============================================================================


class ModelError(CanvasError):
    """Base exception for diagram model invariant violations."""

    pass


class UnknownNodeError(ModelError):
    """Node id is not present in the diagram model."""

    def __init__(self, node_id: str):
        super().__init__(f"Unknown node: {node_id}")
        self.node_id = node_id


class UnknownLinkError(ModelError):
    """Link id is not present in the diagram model."""

    def __init__(self, link_id: str):
        super().__init__(f"Unknown link: {link_id}")
        self.link_id = link_id


# =============================================================================
# Reconciliation Outcomes
# =============================================================================


class DedupConflict(CanvasError):
    """A drawn link targets a node pair that already has a link.

    Not a failure: the redundant link is removed locally and nothing is
    sent to the backend.
    """

    def __init__(self, pair: tuple[str, str]):
        super().__init__(f"Node pair {pair[0]} <-> {pair[1]} is already linked")
        self.pair = pair


class StaleUpdateError(CanvasError):
    """An incoming update is older than or identical to the applied one."""

    def __init__(self, version: int | None, applied_version: int | None):
        super().__init__(
            f"Stale update: version {version} <= applied {applied_version}"
        )
        self.version = version
        self.applied_version = applied_version


# =============================================================================
# Edit Session Errors
# =============================================================================


class EditSessionError(CanvasError):
    """An edit session transition was requested from the wrong state."""

    pass
