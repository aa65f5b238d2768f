"""
Tests for the scope tree and the ambient current scope.
"""

import asyncio

import pytest
import structlog
from crucible.app import run
from crucible.core.errors import ScopeConflictError, ScopeError
from crucible.scope import DestroyStrategy, Phase, Scope


def make_root(store, name="demo", **options):
    return Scope(name, parent=None, stage="test", state_store=store, **options)


class TestTree:
    """Names, chains and inherited options."""

    def test_root_and_children(self, store):
        root = make_root(store)
        stage = Scope("test", parent=root)
        child = Scope("workers", parent=stage)

        assert root.parent is None
        assert root.chain == ["demo"]
        assert child.chain == ["demo", "test", "workers"]
        assert child.path == "demo/test/workers"
        assert child.fqn("queue") == "demo/test/workers/queue"
        assert child.root is root
        assert child.app_name == "demo"
        assert root.children == {"test": stage}
        assert stage.children == {"workers": child}

    def test_options_are_inherited(self, store, registry):
        root = make_root(
            store,
            phase=Phase.READ,
            password="secret",
            adopt=True,
            destroy_strategy="parallel",
            registry=registry,
        )
        child = Scope("test", parent=root, quiet=True)

        assert child.stage == "test"
        assert child.phase == Phase.READ
        assert child.password == "secret"
        assert child.adopt is True
        assert child.quiet is True
        assert root.quiet is False
        assert child.destroy_strategy == DestroyStrategy.PARALLEL
        assert child.registry is registry
        assert child.state_store_factory is store

    def test_name_with_slash_is_rejected(self, store):
        root = make_root(store)
        with pytest.raises(ScopeError):
            Scope("a/b", parent=root)

    def test_child_requires_name(self, store):
        root = make_root(store)
        with pytest.raises(ScopeError):
            Scope(None, parent=root)

    def test_duplicate_child_is_rejected(self, store):
        root = make_root(store)
        Scope("test", parent=root)
        with pytest.raises(ScopeConflictError):
            Scope("test", parent=root)

    def test_replace_existing_child(self, store):
        root = make_root(store)
        Scope("queue", parent=root)
        replacement = Scope("queue", parent=root, replace_existing=True)
        assert root.children["queue"] is replacement

    def test_sequence_numbers_are_per_scope(self, store):
        root = make_root(store)
        stage = Scope("test", parent=root)
        assert [stage.next_seq(), stage.next_seq()] == [0, 1]
        assert root.next_seq() == 0


class TestAmbientScope:
    """The current scope follows awaits and spawned tasks."""

    def test_no_current_scope(self):
        assert Scope.get_scope() is None
        with pytest.raises(ScopeError):
            Scope.current()

    @pytest.mark.asyncio
    async def test_run_sets_current_scope(self, store):
        root = make_root(store)
        seen = []

        async def body(scope):
            seen.append(Scope.current())
            await asyncio.sleep(0)
            seen.append(Scope.current())
            return "done"

        assert await root.run(body) == "done"
        assert seen == [root, root]
        assert Scope.get_scope() is None

    @pytest.mark.asyncio
    async def test_spawned_tasks_inherit_scope(self, store):
        root = make_root(store)

        async def body(scope):
            return await asyncio.gather(*(asyncio.create_task(_current()) for _ in range(3)))

        async def _current():
            await asyncio.sleep(0)
            return Scope.current()

        assert await root.run(body) == [root, root, root]

    @pytest.mark.asyncio
    async def test_default_parent_is_current_scope(self, store):
        root = make_root(store)

        async def body(scope):
            return Scope("child")

        child = await root.run(body)
        assert child.parent is root

    @pytest.mark.asyncio
    async def test_sync_function_runs_in_scope(self, store):
        root = make_root(store)
        assert await root.run(lambda scope: scope.path) == "demo"

    @pytest.mark.asyncio
    async def test_run_in_finalized_scope_fails(self, store):
        root = make_root(store)
        await root.finalize()
        with pytest.raises(ScopeError):
            await root.run(lambda scope: None)

    @pytest.mark.asyncio
    async def test_async_with_enters_and_finalizes(self, store):
        root = make_root(store)
        async with root as scope:
            assert Scope.current() is root
            assert scope is root
        assert root.finalized
        assert Scope.get_scope() is None

    @pytest.mark.asyncio
    async def test_async_with_marks_scope_failed(self, store):
        root = make_root(store)
        with pytest.raises(RuntimeError):
            async with root:
                raise RuntimeError("boom")
        assert root.is_errored
        assert root.finalized


class TestGlobalStack:
    """Entered roots are finalized in LIFO order."""

    @pytest.mark.asyncio
    async def test_enter_pushes_root_and_stage(self, store):
        root = make_root(store)
        stage = Scope("test", parent=root)
        root.enter()
        stage.enter()

        assert Scope.globals == [root, stage]
        assert Scope.current() is stage

        await stage.finalize()
        assert Scope.globals == []
        assert root.finalized and stage.finalized

    @pytest.mark.asyncio
    async def test_out_of_order_finalize_fails(self, store):
        first = make_root(store, name="first").enter()
        second = make_root(store, name="second").enter()

        with pytest.raises(ScopeError):
            await first.finalize()
        assert not first.finalized

        await second.finalize()
        await first.finalize()
        assert Scope.globals == []


class TestFinalizeTriggers:
    """Only the root drives finalization."""

    @pytest.mark.asyncio
    async def test_nested_scope_ignores_unforced_finalize(self, store):
        root = make_root(store)
        stage = Scope("test", parent=root)
        nested = Scope("workers", parent=stage)

        await nested.finalize()
        assert not nested.finalized

        await stage.finalize()
        assert root.finalized and stage.finalized and nested.finalized

    @pytest.mark.asyncio
    async def test_run_below_root_leaves_app_open(self, start):
        stage = await start()
        await run("sidecar", lambda scope: None, parent=stage.root)

        assert not stage.root.finalized
        assert not stage.finalized

        await stage.finalize()
        assert stage.root.children["sidecar"].finalized

    @pytest.mark.asyncio
    async def test_deferred_work_runs_at_finalize(self, store):
        root = make_root(store)
        stage = Scope("test", parent=root)
        order = []

        async def work():
            order.append(Scope.current())
            return 42

        future = stage.defer(work)
        assert not future.done()

        await stage.finalize()

        assert await future == 42
        assert order == [stage]

    @pytest.mark.asyncio
    async def test_deferred_failure_is_reported_on_future(self, store):
        root = make_root(store)

        async def broken():
            raise ValueError("nope")

        future = root.defer(broken)
        await root.finalize()

        with pytest.raises(ValueError):
            await future


class TestScopeData:
    """Key/value data on a scope's own state record."""

    @pytest.mark.asyncio
    async def test_stage_data_round_trip(self, start, backend):
        stage = await start()
        assert await stage.get("owner") is None
        assert await stage.get("owner", "nobody") == "nobody"

        await stage.set("owner", "platform")
        assert await stage.get("owner") == "platform"
        assert backend["demo"]["test"]["data"] == {"owner": "platform"}

        await stage.delete("owner")
        assert await stage.get("owner") is None
        await stage.finalize()

    @pytest.mark.asyncio
    async def test_run_scope_data(self, start, backend):
        stage = await start()

        async def body(scope):
            await scope.set("replicas", 3)
            return await scope.get("replicas")

        assert await run("workers", body) == 3
        assert backend["demo/test"]["workers"]["data"] == {"replicas": 3}
        await stage.finalize()

    @pytest.mark.asyncio
    async def test_root_has_no_data(self, start):
        stage = await start()
        with pytest.raises(ScopeError):
            await stage.root.get("anything")
        await stage.finalize()


class TestRun:
    """Named child scopes created with ``crucible.run``."""

    @pytest.mark.asyncio
    async def test_run_records_scope_in_parent(self, start, backend):
        stage = await start()
        path = await run("workers", lambda scope: scope.path)
        await stage.finalize()

        assert path == "demo/test/workers"
        record = backend["demo/test"]["workers"]
        assert record["kind"] == "crucible::scope"
        assert record["status"] == "created"

    @pytest.mark.asyncio
    async def test_run_name_conflicting_with_resource(self, start, Queue):
        stage = await start()
        await Queue("workers", name="q1")
        with pytest.raises(ScopeConflictError):
            await run("workers", lambda scope: None)
        await stage.finalize()

    @pytest.mark.asyncio
    async def test_run_twice_with_same_name(self, start):
        stage = await start()
        await run("workers", lambda scope: None)
        with pytest.raises(ScopeConflictError):
            await run("workers", lambda scope: None)
        await stage.finalize()

    @pytest.mark.asyncio
    async def test_failure_marks_run_scope_errored(self, start):
        stage = await start()

        async def body(scope):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await run("workers", body)

        assert stage.children["workers"].is_errored
        assert not stage.is_errored
        await stage.finalize()


class TestScopeLogger:
    """Scope log lines carry the run identity."""

    def test_scope_logger_binds_app_scope_stage_and_phase(self, store):
        with structlog.testing.capture_logs() as logs:
            root = make_root(store)
            stage = Scope("test", parent=root)
            stage.fail(RuntimeError("boom"))

        [entry] = [entry for entry in logs if entry["event"] == "scope_failed"]
        assert entry["app"] == "demo"
        assert entry["scope"] == "demo/test"
        assert entry["stage"] == "test"
        assert entry["phase"] == "up"
