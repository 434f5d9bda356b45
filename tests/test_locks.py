import asyncio

from catalog_media.core.locks import KeyedLock, dedup_key, image_index_key


async def test_same_key_is_serialized():
    locks = KeyedLock()
    events = []

    async def worker(name):
        async with locks.hold(("k",)):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


async def test_different_keys_run_concurrently():
    locks = KeyedLock()
    inside = asyncio.Event()
    both = []

    async def first():
        async with locks.hold(dedup_key(1, "aa")):
            inside.set()
            await asyncio.sleep(0.01)
            both.append(locks.is_locked(dedup_key(2, "aa")))

    async def second():
        await inside.wait()
        async with locks.hold(dedup_key(2, "aa")):
            await asyncio.sleep(0.02)

    await asyncio.gather(first(), second())

    assert both == [True]


async def test_idle_locks_are_dropped():
    locks = KeyedLock()

    async with locks.hold(image_index_key(1)):
        assert len(locks) == 1
        assert locks.is_locked(image_index_key(1))

    assert len(locks) == 0
    assert not locks.is_locked(image_index_key(1))


async def test_lock_released_on_error():
    locks = KeyedLock()

    try:
        async with locks.hold("boom"):
            raise ValueError("boom")
    except ValueError:
        pass

    assert len(locks) == 0
