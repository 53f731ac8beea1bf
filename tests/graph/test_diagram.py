"""Tests for DiagramModel."""

import pytest

from knowledge_canvas.exceptions import ModelError, UnknownLinkError, UnknownNodeError
from knowledge_canvas.graph.diagram import DiagramModel
from knowledge_canvas.graph.events import (
    ChangeSource,
    GeometryChanged,
    GeometryKind,
    LinkEndpointChanged,
    LinkRemoved,
    NodeAdded,
    NodeRemoved,
    SelectionChanged,
    SelectionIntent,
)
from knowledge_canvas.graph.models import DiagramNode, Position, RelationLabel


@pytest.fixture
def model():
    """Model with nodes a, b, c."""
    model = DiagramModel()
    for node_id in ("a", "b", "c"):
        model.add_node(DiagramNode(node_id, node_id.upper(), "Malware"))
    return model


@pytest.fixture
def events(model):
    """Events published by the model from now on."""
    received = []
    model.channel.subscribe(received.append)
    return received


class TestNodes:
    """Tests for node operations."""

    def test_add_and_get(self, model):
        assert model.node_count == 3
        assert model.get_node("a").display_name == "A"
        assert "a" in model
        assert len(model) == 3

    def test_duplicate_node_rejected(self, model):
        with pytest.raises(ModelError):
            model.add_node(DiagramNode("a"))

    def test_unknown_node(self, model):
        with pytest.raises(UnknownNodeError):
            model.get_node("zzz")

    def test_add_publishes_event(self, model, events):
        node = model.add_node(DiagramNode("d"), source=ChangeSource.REMOTE)

        assert events == [NodeAdded(node=node, source=ChangeSource.REMOTE)]

    def test_remove_node_removes_links_first(self, model, events):
        ab = model.add_link("a", "b", labels=[RelationLabel("r1", "uses")])
        model.add_link("b", "c")
        events.clear()

        model.remove_node("a")

        assert not model.has_node("a")
        assert not model.has_link(ab.link_id)
        assert model.link_count == 1
        assert model.find_link_by_relation("r1") is None
        assert [type(e) for e in events] == [LinkRemoved, NodeRemoved]
        assert events[0].cascade is True


class TestLinks:
    """Tests for link operations."""

    def test_add_link_with_labels(self, model):
        link = model.add_link("a", "b", labels=[RelationLabel("r1", "uses")])

        assert model.get_link(link.link_id) is link
        assert model.find_link_by_relation("r1") is link
        assert model.links_between("b", "a") == [link]
        assert model.label_count == 1

    def test_link_endpoints_must_exist(self, model):
        with pytest.raises(UnknownNodeError):
            model.add_link("a", "zzz")
        with pytest.raises(UnknownNodeError):
            model.add_link("zzz")

    def test_link_id_unique(self, model):
        model.add_link("a", "b", link_id="l1")
        with pytest.raises(ModelError):
            model.add_link("b", "c", link_id="l1")

    def test_relation_on_one_link_only(self, model):
        model.add_link("a", "b", labels=[RelationLabel("r1", "uses")])
        with pytest.raises(ModelError):
            model.add_link("b", "c", labels=[RelationLabel("r1", "uses")])

    def test_loose_link_then_connect(self, model, events):
        link = model.add_link("a")
        assert model.links_between("a", "b") == []

        model.connect_link(link.link_id, "b")

        assert link.target_node_id == "b"
        assert model.links_between("a", "b") == [link]
        assert isinstance(events[-1], LinkEndpointChanged)
        assert events[-1].target_node_id == "b"

    def test_connect_to_nothing(self, model, events):
        link = model.add_link("a")
        model.connect_link(link.link_id, None)

        assert events[-1] == LinkEndpointChanged(
            link_id=link.link_id, source_node_id="a", target_node_id=None
        )

    def test_reconnect_moves_index(self, model):
        link = model.add_link("a", "b")
        model.connect_link(link.link_id, "c")

        assert model.links_between("a", "b") == []
        assert model.links_between("a", "c") == [link]
        assert model.links_of("b") == []

    def test_remove_link(self, model, events):
        link = model.add_link("a", "b", labels=[RelationLabel("r1", "uses")])
        model.remove_link(link.link_id)

        assert model.link_count == 0
        assert model.relation_ids() == set()
        assert events[-1] == LinkRemoved(link=link)

    def test_remove_unknown_link(self, model):
        with pytest.raises(UnknownLinkError):
            model.remove_link("nope")


class TestLabels:
    """Tests for label folding."""

    def test_add_label(self, model):
        link = model.add_link("a", "b", labels=[RelationLabel("r1", "uses")])

        assert model.add_label(link.link_id, RelationLabel("r2", "indicates")) is True
        assert link.relation_ids == ["r1", "r2"]

    def test_add_label_is_idempotent(self, model):
        link = model.add_link("a", "b", labels=[RelationLabel("r1", "uses")])
        other = model.add_link("b", "c")

        assert model.add_label(link.link_id, RelationLabel("r1", "uses")) is False
        assert model.add_label(other.link_id, RelationLabel("r1", "uses")) is False
        assert link.relation_ids == ["r1"]
        assert other.labels == []

    def test_remove_label(self, model):
        link = model.add_link(
            "a", "b", labels=[RelationLabel("r1", "uses"), RelationLabel("r2", "targets")]
        )

        removed = model.remove_label("r1")

        assert removed.relation_id == "r1"
        assert link.relation_ids == ["r2"]
        assert model.find_link_by_relation("r1") is None
        assert model.remove_label("r1") is None


class TestGeometry:
    """Tests for positions, zoom and offset."""

    def test_set_position(self, model, events):
        model.set_position("a", 10, 20)

        assert model.get_node("a").position == Position(10.0, 20.0)
        assert events[-1] == GeometryChanged(kind=GeometryKind.POSITION, node_id="a")

    def test_zoom_and_offset(self, model):
        assert model.zoom == 1.0
        model.set_zoom(2.5)
        model.set_offset(-5, 7)

        assert model.zoom == 2.5
        assert (model.offset_x, model.offset_y) == (-5.0, 7.0)

    def test_zoom_must_be_positive(self, model):
        with pytest.raises(ModelError):
            model.set_zoom(0)

    def test_serialize_geometry(self, model):
        model.set_position("a", 0, 0)
        model.set_position("b", 3, 4)
        model.set_zoom(1.5)

        state = model.serialize_geometry()

        assert state.zoom == 1.5
        assert state.offset_x == 0.0
        assert state.node_positions == {"a": Position(0, 0), "b": Position(3, 4)}


class TestSelection:
    """Tests for selection."""

    def test_select_link_with_intent(self, model, events):
        link = model.add_link("a", "b")
        model.select(link.link_id, intent=SelectionIntent.OPEN_EDIT)

        assert link.selected is True
        assert model.selected_ids() == [link.link_id]
        assert events[-1] == SelectionChanged(
            item_id=link.link_id,
            is_link=True,
            selected=True,
            intent=SelectionIntent.OPEN_EDIT,
        )

    def test_select_unknown(self, model):
        with pytest.raises(ModelError):
            model.select("nope")


class TestSerialization:
    """Tests for to_dict."""

    def test_to_dict_skips_loose_links(self, model):
        model.add_link("a", "b", labels=[RelationLabel("r1", "uses")], link_id="l1")
        model.add_link("c")
        model.set_position("a", 1, 2)

        data = model.to_dict()

        assert [n["id"] for n in data["nodes"]] == ["a", "b", "c"]
        assert data["nodes"][0]["x"] == 1.0
        assert [link["id"] for link in data["links"]] == ["l1"]
        assert data["zoom"] == 1.0


class TestEventChannel:
    """Tests for subscriber behaviour."""

    def test_typed_subscription(self, model):
        added = []
        model.channel.subscribe(added.append, event_types=(NodeAdded,))

        model.add_node(DiagramNode("d"))
        model.set_position("d", 1, 1)

        assert [type(e) for e in added] == [NodeAdded]

    def test_failing_handler_does_not_block_others(self, model):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        model.channel.subscribe(broken)
        model.channel.subscribe(received.append)

        model.add_node(DiagramNode("d"))

        assert len(received) == 1
        assert model.has_node("d")

    def test_unsubscribe(self, model):
        received = []
        sub_id = model.channel.subscribe(received.append)

        assert model.channel.unsubscribe(sub_id) is True
        assert model.channel.unsubscribe(sub_id) is False
        model.add_node(DiagramNode("d"))
        assert received == []
