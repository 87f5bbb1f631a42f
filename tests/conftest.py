from fakeredis import FakeAsyncRedis, FakeServer
import pytest

from tunnel_ports.allocator import PortAllocator

# Small range used across tests: capacity 3
RANGE_START = 9000
RANGE_END = 9002


@pytest.fixture
def fake_server():
    """One in-memory Redis server; clients built on it model separate processes."""
    return FakeServer()


@pytest.fixture
def fake_redis(fake_server):
    return FakeAsyncRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def allocator(fake_redis):
    return PortAllocator(fake_redis, start=RANGE_START, end=RANGE_END)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment out of settings."""
    for var in (
        "REDIS_URL",
        "PORT_RANGE_START",
        "PORT_RANGE_END",
        "PORT_TTL_SECONDS",
        "PORT_KEY_PREFIX",
        "SERVICE_NAME",
        "LOG_FORMAT",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
