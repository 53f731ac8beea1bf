"""Tests for EditSessionController."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import TEST_DEBOUNCE_SECONDS, relation, utc

from knowledge_canvas.backend.graphql import GraphQLBackend
from knowledge_canvas.exceptions import EditSessionError, TransportError
from knowledge_canvas.graph.diagram import DiagramModel
from knowledge_canvas.graph.events import ChangeSource, SelectionIntent
from knowledge_canvas.sync.debouncer import PersistenceDebouncer
from knowledge_canvas.sync.reconciler import Reconciler
from knowledge_canvas.sync.session import SessionState


async def mounted(backend, config, container_id="ws-1"):
    """Reconciler initialized from the backend, plus its error list."""
    graph = await backend.fetch_domain_graph(container_id)
    errors = []
    reconciler = Reconciler(
        DiagramModel(),
        backend,
        config,
        debouncer=PersistenceDebouncer(delay=TEST_DEBOUNCE_SECONDS),
        on_error=errors.append,
    )
    reconciler.initialize(graph)
    return reconciler, errors


class TestCreation:
    """Tests for the relation creation flow."""

    @pytest.mark.asyncio
    async def test_cancel_restores_counts(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        model = reconciler.model
        before = (model.link_count, model.label_count)

        link = model.add_link("a", "c")
        assert reconciler.session.state == SessionState.CREATING_RELATION
        reconciler.session.cancel_creation()

        assert not model.has_link(link.link_id)
        assert (model.link_count, model.label_count) == before
        assert reconciler.session.is_idle
        assert backend.calls[-1][0] == "fetch_domain_graph"

    @pytest.mark.asyncio
    async def test_confirm_binds_relation(self, backend, fast_config):
        reconciler, errors = await mounted(backend, fast_config)
        model = reconciler.model
        link = model.add_link("a", "c")

        created = await reconciler.session.confirm_creation(
            "uses", first_seen=utc(2020), last_seen=utc(2021)
        )

        assert created is not None
        assert link.relation_ids == [created.relation_id]
        assert link.labels[0].first_seen == utc(2020)
        assert created.relation_id in backend.containers["ws-1"].member_ids
        assert reconciler.session.is_idle
        assert reconciler.debouncer.pending
        assert errors == []

    @pytest.mark.asyncio
    async def test_confirm_in_entity_mode_does_not_attach(self, backend, fast_config):
        backend.add_relation(relation("r2", "a", "c"))
        reconciler, _ = await mounted(backend, fast_config, container_id="a")
        assert not reconciler.is_container
        reconciler.model.add_link("c", "b")

        created = await reconciler.session.confirm_creation("targets")

        assert created.from_entity.entity_id == "c"
        assert reconciler.model.links_between("b", "c")[0].relation_ids == [created.relation_id]
        assert backend.call_count("attach_to_container") == 0

    @pytest.mark.asyncio
    async def test_confirm_failure_removes_placeholder(self, backend, fast_config):
        reconciler, errors = await mounted(backend, fast_config)
        model = reconciler.model
        backend.fail_operations.add("create_relation")
        before = model.link_count
        model.add_link("a", "c")

        created = await reconciler.session.confirm_creation("uses")

        assert created is None
        assert model.link_count == before
        assert len(errors) == 1
        assert reconciler.session.is_idle

    @pytest.mark.asyncio
    async def test_confirm_transport_error_removes_placeholder(self, backend, fast_config):
        reconciler, errors = await mounted(backend, fast_config)
        backend.create_relation = AsyncMock(
            side_effect=TransportError("connection reset", operation="create_relation")
        )
        link = reconciler.model.add_link("a", "c")

        created = await reconciler.session.confirm_creation("uses")

        assert created is None
        assert not reconciler.model.has_link(link.link_id)
        assert len(errors) == 1
        assert reconciler.session.is_idle

    @pytest.mark.asyncio
    async def test_confirm_unexpected_error_cleans_up_and_raises(self, backend, fast_config):
        reconciler, errors = await mounted(backend, fast_config)
        backend.create_relation = AsyncMock(side_effect=RuntimeError("boom"))
        link = reconciler.model.add_link("a", "c")

        with pytest.raises(RuntimeError):
            await reconciler.session.confirm_creation("uses")

        assert not reconciler.model.has_link(link.link_id)
        assert isinstance(errors[0].cause, RuntimeError)
        assert reconciler.session.is_idle

    @pytest.mark.asyncio
    async def test_unreadable_create_response_leaves_pair_drawable(
        self, fast_config, workspace_graph
    ):
        """Test that a garbled create response removes the placeholder."""
        resp = MagicMock()
        resp.status = 200
        resp.json = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", "<html>", 0))
        ctx = MagicMock()
        ctx.__aenter__ = AsyncMock(return_value=resp)
        ctx.__aexit__ = AsyncMock(return_value=False)
        http = MagicMock()
        http.closed = False
        http.post.return_value = ctx
        errors = []
        reconciler = Reconciler(
            DiagramModel(),
            GraphQLBackend(session=http),
            fast_config,
            debouncer=PersistenceDebouncer(delay=TEST_DEBOUNCE_SECONDS),
            on_error=errors.append,
        )
        reconciler.initialize(workspace_graph)
        model = reconciler.model
        link = model.add_link("a", "c")

        created = await reconciler.session.confirm_creation("uses")

        assert created is None
        assert not model.has_link(link.link_id)
        assert isinstance(errors[0], TransportError)
        again = model.add_link("a", "c")
        assert reconciler.session.placeholder_link_id == again.link_id

    @pytest.mark.asyncio
    async def test_confirm_folds_onto_pair_linked_meanwhile(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        model = reconciler.model
        placeholder = model.add_link("a", "c")
        backend.add_relation(relation("r9", "a", "c"))
        await backend.attach_to_container("ws-1", ["r9"])
        reconciler.apply_incoming_domain_update(await backend.fetch_domain_graph("ws-1"))

        created = await reconciler.session.confirm_creation("uses")

        links = model.links_between("a", "c")
        assert len(links) == 1
        assert links[0].relation_ids == ["r9", created.relation_id]
        assert not model.has_link(placeholder.link_id)

    @pytest.mark.asyncio
    async def test_refresh_after_confirm_does_not_duplicate(self, backend, fast_config):
        """Test that a relation delivered twice ends up as one label."""
        reconciler, _ = await mounted(backend, fast_config)
        model = reconciler.model
        link = model.add_link("a", "c")
        created = await reconciler.session.confirm_creation("uses")

        reconciler.apply_incoming_domain_update(await backend.fetch_domain_graph("ws-1"))

        assert link.relation_ids == [created.relation_id]
        assert model.label_count == 2

    @pytest.mark.asyncio
    async def test_begin_requires_idle(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        link = reconciler.model.add_link("a", "c")

        with pytest.raises(EditSessionError):
            reconciler.session.begin_creation(link.link_id)

    @pytest.mark.asyncio
    async def test_confirm_requires_creation(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)

        with pytest.raises(EditSessionError):
            await reconciler.session.confirm_creation("uses")

    @pytest.mark.asyncio
    async def test_user_removing_placeholder_abandons(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        link = reconciler.model.add_link("a", "c")

        reconciler.model.remove_link(link.link_id)

        assert reconciler.session.is_idle
        assert backend.call_count("delete_relation") == 0


class TestEditing:
    """Tests for the relation edit flow."""

    @pytest.mark.asyncio
    async def test_open_edit_from_selection(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        link = reconciler.model.links_between("a", "b")[0]

        reconciler.model.select(link.link_id, intent=SelectionIntent.OPEN_EDIT)

        session = reconciler.session
        assert session.state == SessionState.EDITING_RELATION
        assert session.editing.relation_id == "r1"

    @pytest.mark.asyncio
    async def test_plain_selection_opens_nothing(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        link = reconciler.model.links_between("a", "b")[0]

        reconciler.model.select(link.link_id)
        reconciler.model.select(link.link_id, intent=SelectionIntent.OPEN_EDIT, source=ChangeSource.REMOTE)

        assert reconciler.session.is_idle

    @pytest.mark.asyncio
    async def test_cancel_edit_changes_nothing(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        link = reconciler.model.links_between("a", "b")[0]
        reconciler.session.begin_edit(link.link_id)

        reconciler.session.cancel_edit()

        assert reconciler.session.is_idle
        assert reconciler.model.has_link(link.link_id)
        assert backend.call_count("delete_relation") == 0

    @pytest.mark.asyncio
    async def test_confirm_deletion_removes_link(self, backend, fast_config):
        reconciler, errors = await mounted(backend, fast_config)
        link = reconciler.model.links_between("a", "b")[0]
        reconciler.session.begin_edit(link.link_id)

        deleted = await reconciler.session.confirm_deletion()

        assert deleted is True
        assert not reconciler.model.has_link(link.link_id)
        assert "r1" not in backend.relations
        assert backend.call_count("detach_from_container") == 1
        assert errors == []

    @pytest.mark.asyncio
    async def test_confirm_deletion_keeps_other_labels(self, backend, fast_config):
        backend.add_relation(relation("r2", "b", "a", "indicates"))
        backend.containers["ws-1"].member_ids.append("r2")
        reconciler, _ = await mounted(backend, fast_config)
        link = reconciler.model.links_between("a", "b")[0]
        reconciler.session.begin_edit(link.link_id, relation_id="r2")

        await reconciler.session.confirm_deletion()

        assert reconciler.model.has_link(link.link_id)
        assert link.relation_ids == ["r1"]
        assert "r2" not in backend.relations
        assert "r1" in backend.relations

    @pytest.mark.asyncio
    async def test_deletion_failure_restores(self, backend, fast_config):
        reconciler, errors = await mounted(backend, fast_config)
        link = reconciler.model.links_between("a", "b")[0]
        reconciler.session.begin_edit(link.link_id)
        backend.fail_operations.add("detach_from_container")

        deleted = await reconciler.session.confirm_deletion()

        assert deleted is False
        assert reconciler.model.find_link_by_relation("r1") is not None
        assert len(errors) == 1
        assert "r1" in backend.relations

    @pytest.mark.asyncio
    async def test_edit_unknown_relation(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        link = reconciler.model.links_between("a", "b")[0]

        with pytest.raises(EditSessionError):
            reconciler.session.begin_edit(link.link_id, relation_id="nope")


class TestLifecycle:
    """Tests for cancel() on unmount."""

    @pytest.mark.asyncio
    async def test_cancel_any_session(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        link = reconciler.model.add_link("a", "c")

        reconciler.session.cancel()

        assert reconciler.session.is_idle
        assert not reconciler.model.has_link(link.link_id)

    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_noop(self, backend, fast_config):
        reconciler, _ = await mounted(backend, fast_config)
        reconciler.session.cancel()
        assert reconciler.session.is_idle
