"""View state: camera and node positions, detached from domain correctness."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..graph.models import Position


@dataclass
class ViewState:
    """Snapshot of zoom, pan offset and node positions.

    Every field is optional. A None field means "not recorded": applying
    the state leaves the corresponding model value untouched.
    """

    zoom: float | None = None
    offset_x: float | None = None
    offset_y: float | None = None
    node_positions: dict[str, Position] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True if applying this state would change nothing."""
        return (
            self.zoom is None
            and self.offset_x is None
            and self.offset_y is None
            and not self.node_positions
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON shape.

        Shape: ``{zoom?, offsetX?, offsetY?, nodes?: {id: {position: {x, y}}}}``
        """
        data: dict[str, Any] = {}
        if self.zoom is not None:
            data["zoom"] = self.zoom
        if self.offset_x is not None:
            data["offsetX"] = self.offset_x
        if self.offset_y is not None:
            data["offsetY"] = self.offset_y
        if self.node_positions:
            data["nodes"] = {
                node_id: {"position": {"x": pos.x, "y": pos.y}}
                for node_id, pos in self.node_positions.items()
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ViewState:
        """Create from the persisted JSON shape.

        Entries without both coordinates are skipped. Coordinates of 0 are
        valid positions.

        Raises:
            ValueError: If a present field has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError(f"View state must be an object, got {type(data).__name__}")

        positions: dict[str, Position] = {}
        nodes = data.get("nodes") or {}
        if not isinstance(nodes, dict):
            raise ValueError("'nodes' must be an object")
        for node_id, entry in nodes.items():
            position = entry.get("position") if isinstance(entry, dict) else None
            if not isinstance(position, dict):
                continue
            x, y = position.get("x"), position.get("y")
            if x is None or y is None:
                continue
            positions[node_id] = Position(float(x), float(y))

        return cls(
            zoom=_optional_float(data, "zoom"),
            offset_x=_optional_float(data, "offsetX"),
            offset_y=_optional_float(data, "offsetY"),
            node_positions=positions,
        )


def _optional_float(data: dict[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number, got {value!r}")
    return float(value)
