"""
Tests for finalization of failed runs.
"""

import logging

import pytest
from crucible.app import run
from crucible.core.errors import ProviderError


def deleted(calls):
    return [call[1] for call in calls if call[0] == "delete"]


@pytest.mark.asyncio
async def test_errored_scope_skips_cleanup_while_sibling_cleans_up(start, Queue, backend, calls):
    stage = await start()

    async def first_a(scope):
        Queue("A1", name="a1")
        Queue("A2", name="a2")

    async def first_b(scope):
        Queue("B1", name="b1")
        Queue("B2", name="b2")

    await run("a", first_a)
    await run("b", first_b)
    await stage.finalize()
    calls.clear()

    stage = await start()

    async def second_a(scope):
        Queue("A1", name="a1")
        await Queue("bad", name="bad", fail=True)

    async def second_b(scope):
        Queue("B1", name="b1")

    with pytest.raises(ProviderError):
        await run("a", second_a)
    await run("b", second_b)
    await stage.finalize()

    assert deleted(calls) == ["B2"]
    assert sorted(backend["demo/test/a"]) == ["A1", "A2", "bad"]
    assert sorted(backend["demo/test/b"]) == ["B1"]


@pytest.mark.asyncio
async def test_failed_resource_errors_its_scope_only(start, Queue, calls):
    stage = await start()
    Queue("keep", name="keep")
    await stage.finalize()

    stage = await start()
    with pytest.raises(ProviderError):
        await Queue("broken", name="broken", fail=True)
    await stage.finalize()

    assert stage.is_errored
    assert not stage.root.is_errored
    # the orphan "keep" survives because cleanup of the failed stage is skipped
    assert deleted(calls) == []


@pytest.mark.asyncio
async def test_skipped_cleanup_is_logged(start, Queue, caplog):
    stage = await start()
    with pytest.raises(ProviderError):
        await Queue("broken", name="broken", fail=True)

    with caplog.at_level(logging.WARNING):
        await stage.finalize()

    assert "scope_cleanup_skipped" in caplog.text


@pytest.mark.asyncio
async def test_finalize_settles_in_flight_resources(start, Queue, backend):
    stage = await start()
    pending = [Queue(f"q{i}", name=f"q{i}") for i in range(5)]

    await stage.finalize()

    assert all(resource.done() for resource in pending)
    assert sorted(backend["demo/test"]) == ["q0", "q1", "q2", "q3", "q4"]


@pytest.mark.asyncio
async def test_finalize_is_idempotent(start, Queue, calls):
    stage = await start()
    await Queue("queue", name="q1")
    await stage.finalize()
    await stage.finalize()
    await stage.root.finalize()

    assert len(calls) == 1
