"""Tests for allocator settings."""

from pydantic import ValidationError
import pytest

from tunnel_ports.config import PortAllocatorSettings


def test_defaults():
    settings = PortAllocatorSettings()

    assert settings.redis_url == "redis://localhost:6379/0"
    assert settings.port_range_start == 8080
    assert settings.port_range_end == 8180
    assert settings.port_ttl_seconds == 86400
    assert settings.port_key_prefix == "port:allocated:"
    assert settings.capacity == 101
    assert settings.log_level == "INFO"


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://redis:6379/2")
    monkeypatch.setenv("PORT_RANGE_START", "9000")
    monkeypatch.setenv("PORT_RANGE_END", "9002")
    monkeypatch.setenv("PORT_TTL_SECONDS", "600")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = PortAllocatorSettings()

    assert settings.redis_url == "redis://redis:6379/2"
    assert (settings.port_range_start, settings.port_range_end) == (9000, 9002)
    assert settings.capacity == 3
    assert settings.port_ttl_seconds == 600
    assert settings.log_level == "DEBUG"


def test_rejects_inverted_range(monkeypatch):
    monkeypatch.setenv("PORT_RANGE_START", "9100")
    monkeypatch.setenv("PORT_RANGE_END", "9000")

    with pytest.raises(ValidationError, match="must not exceed"):
        PortAllocatorSettings()


@pytest.mark.parametrize(
    "field,value",
    [
        ("port_range_start", 0),
        ("port_range_end", 70000),
        ("port_ttl_seconds", 0),
        ("port_key_prefix", ""),
        ("log_level", "LOUD"),
        ("log_format", "xml"),
    ],
)
def test_rejects_invalid_values(field, value):
    with pytest.raises(ValidationError):
        PortAllocatorSettings(**{field: value})


def test_settings_are_immutable():
    settings = PortAllocatorSettings()

    with pytest.raises(ValidationError):
        settings.port_range_end = 9999


@pytest.mark.parametrize("url", ["http://localhost:6379", "localhost:6379"])
def test_rejects_malformed_redis_url(monkeypatch, url):
    monkeypatch.setenv("REDIS_URL", url)

    with pytest.raises(ValidationError, match="redis_url"):
        PortAllocatorSettings()


@pytest.mark.parametrize(
    "url", ["redis://redis:6379/0", "rediss://user:pw@cache:6380/1", "unix:///tmp/redis.sock"]
)
def test_accepts_redis_urls(url):
    assert PortAllocatorSettings(redis_url=url).redis_url == url
