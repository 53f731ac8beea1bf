"""Tests for PersistenceDebouncer."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from knowledge_canvas.sync.debouncer import PersistenceDebouncer

DELAY = 0.05


class TestPersistenceDebouncer:
    """Tests for trailing-edge debouncing."""

    @pytest.fixture
    def save(self):
        return AsyncMock()

    @pytest.fixture
    def debouncer(self, save):
        debouncer = PersistenceDebouncer(delay=DELAY)
        debouncer.set_callback(save)
        return debouncer

    @pytest.mark.asyncio
    async def test_single_request_fires_once(self, debouncer, save):
        assert debouncer.request_save() is True
        assert debouncer.pending

        await asyncio.sleep(DELAY * 3)

        save.assert_awaited_once()
        assert not debouncer.pending
        assert debouncer.save_count == 1

    @pytest.mark.asyncio
    async def test_burst_coalesces_into_one_save(self, debouncer, save):
        """Test that requests inside the quiet window collapse into one save."""
        for _ in range(10):
            debouncer.request_save()
            await asyncio.sleep(DELAY / 5)

        save.assert_not_awaited()
        await asyncio.sleep(DELAY * 3)

        save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_sees_state_at_last_request(self):
        state = {"x": 0}
        seen = []

        async def save():
            seen.append(state["x"])

        debouncer = PersistenceDebouncer(delay=DELAY)
        debouncer.set_callback(save)
        for x in range(1, 6):
            state["x"] = x
            debouncer.request_save()

        await asyncio.sleep(DELAY * 3)

        assert seen == [5]

    @pytest.mark.asyncio
    async def test_separate_windows_save_separately(self, debouncer, save):
        debouncer.request_save()
        await asyncio.sleep(DELAY * 3)
        debouncer.request_save()
        await asyncio.sleep(DELAY * 3)

        assert save.await_count == 2

    @pytest.mark.asyncio
    async def test_close_drops_pending_save(self, debouncer, save):
        debouncer.request_save()
        debouncer.close()

        await asyncio.sleep(DELAY * 3)

        save.assert_not_awaited()
        assert debouncer.request_save() is False

    @pytest.mark.asyncio
    async def test_cancel(self, debouncer, save):
        assert debouncer.cancel() is False
        debouncer.request_save()
        assert debouncer.cancel() is True

        await asyncio.sleep(DELAY * 3)
        save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_savable_is_noop(self, save):
        savable = False
        debouncer = PersistenceDebouncer(delay=DELAY, is_savable=lambda: savable)
        debouncer.set_callback(save)

        assert debouncer.request_save() is False
        savable = True
        assert debouncer.request_save() is True

        await asyncio.sleep(DELAY * 3)
        save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disabled(self, save):
        debouncer = PersistenceDebouncer(delay=DELAY, enabled=False)
        debouncer.set_callback(save)

        assert debouncer.request_save() is False

    @pytest.mark.asyncio
    async def test_flush_runs_now(self, debouncer, save):
        debouncer.request_save()

        assert await debouncer.flush() is True
        save.assert_awaited_once()
        assert await debouncer.flush() is False

        await asyncio.sleep(DELAY * 3)
        save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_save_is_logged(self, debouncer, save, caplog):
        save.side_effect = RuntimeError("disk full")

        debouncer.request_save()
        await asyncio.sleep(DELAY * 3)
        await debouncer.wait_idle()

        assert "View save failed" in caplog.text
        assert debouncer.request_save() is True

    @pytest.mark.asyncio
    async def test_instances_are_independent(self, save):
        """Test that closing one editor's debouncer leaves another's alone."""
        other_save = AsyncMock()
        first = PersistenceDebouncer(delay=DELAY)
        first.set_callback(save)
        second = PersistenceDebouncer(delay=DELAY)
        second.set_callback(other_save)

        first.request_save()
        second.request_save()
        first.close()
        await asyncio.sleep(DELAY * 3)

        save.assert_not_awaited()
        other_save.assert_awaited_once()
