import asyncio

import pytest

from deploy_engine.engine.queue import DeclarationQueue
from deploy_engine.errors import DeclarationError


async def _delayed(value, delay):
    await asyncio.sleep(delay)
    return value


@pytest.mark.asyncio
async def test_declarations_apply_in_declaration_order():
    applied = []

    async def apply(declaration, target):
        applied.append(target["name"])
        return target

    queue = DeclarationQueue(apply)
    consumer = queue.start()

    queue.put("h", _delayed({"name": "a"}, 0.05))
    queue.put("h", _delayed({"name": "b"}, 0))
    queue.put("h", {"name": "c"})
    queue.close()
    await consumer

    assert applied == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_result_future_resolves_to_applied_target():
    async def apply(declaration, target):
        return {**target, "index": declaration.index}

    queue = DeclarationQueue(apply)
    consumer = queue.start()

    first = queue.put("h", {"name": "a"})
    second = queue.put("h", {"name": "b"})

    assert await second == {"name": "b", "index": 1}
    assert first.result() == {"name": "a", "index": 0}

    queue.close()
    await consumer


@pytest.mark.asyncio
async def test_on_first_runs_once_before_first_apply():
    events = []

    async def on_first():
        events.append("setup")

    async def apply(declaration, target):
        events.append(target["name"])
        return target

    queue = DeclarationQueue(apply, on_first=on_first)
    consumer = queue.start()
    queue.put("h", {"name": "a"})
    queue.put("h", {"name": "b"})
    queue.close()
    await consumer

    assert events == ["setup", "a", "b"]


@pytest.mark.asyncio
async def test_on_first_skipped_without_declarations():
    called = []

    async def on_first():
        called.append(True)

    async def apply(declaration, target):
        return target

    queue = DeclarationQueue(apply, on_first=on_first)
    consumer = queue.start()
    queue.close()
    await consumer

    assert called == []


@pytest.mark.asyncio
async def test_put_after_close_is_rejected():
    async def apply(declaration, target):
        return target

    queue = DeclarationQueue(apply)
    queue.close()

    with pytest.raises(DeclarationError):
        queue.put("h", {"name": "late"})


@pytest.mark.asyncio
async def test_failed_resolution_stops_the_consumer():
    applied = []

    async def apply(declaration, target):
        applied.append(target["name"])
        return target

    async def broken():
        raise ConnectionError("lookup failed")

    queue = DeclarationQueue(apply)
    consumer = queue.start()
    queue.put("h", {"name": "a"})
    queue.put("hook-b", broken())
    later = queue.put("h", {"name": "c"})

    with pytest.raises(DeclarationError) as exc_info:
        await consumer

    assert exc_info.value.index == 1
    assert exc_info.value.hook == "hook-b"
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert applied == ["a"]
    assert later.cancelled()


@pytest.mark.asyncio
async def test_non_mapping_target_is_a_declaration_error():
    async def apply(declaration, target):
        return target

    queue = DeclarationQueue(apply)
    consumer = queue.start()
    queue.put("h", ["not", "a", "mapping"])

    with pytest.raises(DeclarationError):
        await consumer


@pytest.mark.asyncio
async def test_abort_skips_remaining_declarations():
    applied = []
    gate = asyncio.Event()

    async def apply(declaration, target):
        applied.append(target["name"])
        await gate.wait()
        return target

    queue = DeclarationQueue(apply)
    consumer = queue.start()
    first = queue.put("h", {"name": "a"})
    second = queue.put("h", {"name": "b"})

    await asyncio.sleep(0.01)
    queue.abort()
    gate.set()
    await consumer

    assert applied == ["a"]
    assert first.result() == {"name": "a"}
    assert second.cancelled()


@pytest.mark.asyncio
async def test_abort_interrupts_unresolved_declaration():
    applied = []

    async def apply(declaration, target):
        applied.append(target["name"])
        return target

    async def never_resolves():
        await asyncio.Event().wait()

    queue = DeclarationQueue(apply)
    consumer = queue.start()
    first = queue.put("h", {"name": "a"})
    stuck = queue.put("h", never_resolves())
    await first

    queue.abort()
    await asyncio.wait_for(consumer, timeout=5)

    assert applied == ["a"]
    assert stuck.cancelled()
