"""Mutual exclusion when many callers share one store."""

import asyncio

from fakeredis import FakeAsyncRedis
import pytest

from tunnel_ports.allocator import PortAllocator

PROCESS_COUNT = 4
RANGE_START = 9000
RANGE_END = 9049
CAPACITY = RANGE_END - RANGE_START + 1


@pytest.fixture
def allocators(fake_server):
    """Allocators with their own client each, like separate backend processes."""
    return [
        PortAllocator(
            FakeAsyncRedis(server=fake_server, decode_responses=True),
            start=RANGE_START,
            end=RANGE_END,
        )
        for _ in range(PROCESS_COUNT)
    ]


@pytest.mark.asyncio
async def test_concurrent_allocations_never_share_a_port(allocators):
    sessions = [f"session-{i}" for i in range(CAPACITY)]

    ports = await asyncio.gather(
        *(allocators[i % PROCESS_COUNT].allocate(s) for i, s in enumerate(sessions))
    )

    assert None not in ports
    assert len(set(ports)) == CAPACITY
    assert set(ports) == set(range(RANGE_START, RANGE_END + 1))

    owners = await allocators[0].list_allocated()
    assert {owners[port] for port in ports} == set(sessions)
    for port, session_id in zip(ports, sessions):
        assert owners[port] == session_id


@pytest.mark.asyncio
async def test_oversubscribed_range_hands_out_each_port_once(allocators):
    extra = 30
    sessions = [f"session-{i}" for i in range(CAPACITY + extra)]

    ports = await asyncio.gather(
        *(allocators[i % PROCESS_COUNT].allocate(s) for i, s in enumerate(sessions))
    )

    granted = [p for p in ports if p is not None]
    assert len(granted) == CAPACITY
    assert len(set(granted)) == CAPACITY
    assert ports.count(None) == extra


@pytest.mark.asyncio
async def test_concurrent_release_and_allocate(allocators):
    for i in range(CAPACITY):
        await allocators[0].allocate(f"old-{i}")

    freed = [9003, 9010, 9042]
    await asyncio.gather(*(allocators[1].release(p) for p in freed))
    ports = await asyncio.gather(
        *(allocators[i % PROCESS_COUNT].allocate(f"new-{i}") for i in range(len(freed) + 2))
    )

    assert sorted(p for p in ports if p is not None) == freed
    assert ports.count(None) == 2  # noqa: PLR2004
