import pytest

from deploy_engine.engine.revert import RevertStack
from deploy_engine.errors import ActionContext


def _context(n):
    return ActionContext("web", "spawn", f"id-{n}")


@pytest.mark.asyncio
async def test_drain_runs_reverts_newest_first():
    calls = []
    stack = RevertStack()

    for n in range(1, 4):
        async def revert(n=n):
            calls.append(n)

        stack.push(revert, _context(n))

    stack.push(lambda: calls.append("sync"), _context(4))

    failures = await stack.drain()

    assert failures == []
    assert calls == ["sync", 3, 2, 1]
    assert len(stack) == 0


@pytest.mark.asyncio
async def test_failed_revert_does_not_stop_the_sweep():
    calls = []
    stack = RevertStack()

    async def ok_first():
        calls.append("first")

    async def broken():
        raise RuntimeError("cannot undo")

    async def ok_last():
        calls.append("last")

    stack.push(ok_first, _context(1))
    stack.push(broken, _context(2))
    stack.push(ok_last, _context(3))

    failures = await stack.drain()

    assert calls == ["last", "first"]
    assert len(failures) == 1
    context, error = failures[0]
    assert context == _context(2)
    assert str(error) == "cannot undo"


@pytest.mark.asyncio
async def test_empty_stack_drains_to_nothing():
    assert await RevertStack().drain() == []
