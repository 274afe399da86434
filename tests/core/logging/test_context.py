"""Tests for core.logging.context module."""

import asyncio

from core.logging.context import clear_log_context, get_log_context, set_log_context


class TestLogContext:
    def setup_method(self):
        clear_log_context()

    def teardown_method(self):
        clear_log_context()

    def test_defaults_are_empty(self):
        assert get_log_context() == {"stage": "", "worker_id": "", "trace_id": ""}

    def test_set_all_fields(self):
        set_log_context(stage="uploads", worker_id="uploads-brave-tiger", trace_id="t1")
        ctx = get_log_context()
        assert ctx["stage"] == "uploads"
        assert ctx["worker_id"] == "uploads-brave-tiger"
        assert ctx["trace_id"] == "t1"

    def test_partial_set_preserves_others(self):
        set_log_context(stage="uploads", worker_id="w1")
        set_log_context(stage="metadata")
        ctx = get_log_context()
        assert ctx["stage"] == "metadata"
        assert ctx["worker_id"] == "w1"

    def test_clear_resets_all(self):
        set_log_context(stage="uploads", worker_id="w1", trace_id="t1")
        clear_log_context()
        assert all(v == "" for v in get_log_context().values())

    async def test_tasks_do_not_share_context(self):
        async def worker(stage):
            set_log_context(stage=stage)
            await asyncio.sleep(0)
            return get_log_context()["stage"]

        results = await asyncio.gather(worker("uploads"), worker("metadata"))
        assert results == ["uploads", "metadata"]
        assert get_log_context()["stage"] == ""
