"""Port allocation for tunnel sessions, coordinated through Redis.

Every allocated port is a Redis key ``<prefix><port>`` holding the owning
session id with a TTL. Mutual exclusion between processes comes from
``SET NX EX`` being a single atomic command; the allocator keeps no local
state and holds no locks.
"""

from dataclasses import dataclass
import re
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import WatchError
import structlog

from .config import MAX_PORT, MIN_PORT, PortAllocatorSettings
from .errors import InvalidInputError
from .redis.client import store_errors

logger = structlog.get_logger(__name__)

PORT_KEY_PREFIX = "port:allocated:"
DEFAULT_PORT_RANGE_START = 8080
DEFAULT_PORT_RANGE_END = 8180
DEFAULT_TTL_SECONDS = 24 * 60 * 60

_SCAN_COUNT = 500
_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode()
    return value


@dataclass(frozen=True)
class PortUsage:
    """Snapshot of how much of the range is in use."""

    capacity: int
    allocated: int

    @property
    def free(self) -> int:
        return self.capacity - self.allocated


class PortAllocator:
    """Hands out ports from a fixed range, one live owner per port."""

    def __init__(
        self,
        redis: Redis,
        start: int = DEFAULT_PORT_RANGE_START,
        end: int = DEFAULT_PORT_RANGE_END,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        key_prefix: str = PORT_KEY_PREFIX,
    ):
        """
        Args:
            redis: Async Redis client shared with every other allocator process.
            start: First port of the range (inclusive).
            end: Last port of the range (inclusive).
            ttl_seconds: Lifetime of an allocation that is never released.
            key_prefix: Prefix of the allocation record keys.

        Raises:
            InvalidInputError: If the range, TTL or prefix is invalid.
        """
        for name, value in (("start", start), ("end", end)):
            if not _is_int(value) or not MIN_PORT <= value <= MAX_PORT:
                raise InvalidInputError(
                    f"{name} must be an integer between {MIN_PORT} and {MAX_PORT}, got {value!r}"
                )
        if start > end:
            raise InvalidInputError(f"start ({start}) must not exceed end ({end})")
        if not _is_int(ttl_seconds) or ttl_seconds < 1:
            raise InvalidInputError(f"ttl_seconds must be a positive integer, got {ttl_seconds!r}")
        if not key_prefix:
            raise InvalidInputError("key_prefix must not be empty")

        self.redis = redis
        self._start = start
        self._end = end
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix

    @classmethod
    def from_settings(cls, redis: Redis, settings: PortAllocatorSettings) -> "PortAllocator":
        return cls(
            redis,
            start=settings.port_range_start,
            end=settings.port_range_end,
            ttl_seconds=settings.port_ttl_seconds,
            key_prefix=settings.port_key_prefix,
        )

    @property
    def start(self) -> int:
        return self._start

    @property
    def end(self) -> int:
        return self._end

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    @property
    def key_prefix(self) -> str:
        return self._key_prefix

    @property
    def capacity(self) -> int:
        return self._end - self._start + 1

    def key_for(self, port: int) -> str:
        return f"{self._key_prefix}{port}"

    async def allocate(self, session_id: str) -> int | None:
        """Reserve the lowest free port for a session.

        Ports are tried in ascending order with an atomic create-if-absent
        write; the first write that succeeds is the allocation.

        Args:
            session_id: Opaque owner tag stored as the record value.

        Returns:
            The allocated port, or None if every port in the range is taken.

        Raises:
            InvalidInputError: If session_id is empty or not a string.
            StoreUnavailableError: If Redis fails; never reported as exhaustion.
        """
        self._check_session_id(session_id)

        async with store_errors("allocate", session_id=session_id):
            for port in range(self._start, self._end + 1):
                acquired = await self.redis.set(
                    self.key_for(port), session_id, ex=self._ttl, nx=True
                )
                if acquired:
                    logger.info(
                        "port_allocated", port=port, session_id=session_id, ttl=self._ttl
                    )
                    return port

        logger.warning(
            "ports_exhausted",
            session_id=session_id,
            range_start=self._start,
            range_end=self._end,
        )
        return None

    async def release(self, port: int) -> None:
        """Delete the allocation record for a port, whoever owns it.

        Releasing a free port is a no-op. No ownership is checked; use
        ``release_if_owner`` when the caller is not sure the port is its own.
        """
        self._check_port(port)

        async with store_errors("release", port=port):
            deleted = await self.redis.delete(self.key_for(port))

        logger.info("port_released", port=port, was_allocated=bool(deleted))

    async def release_if_owner(self, port: int, session_id: str) -> bool:
        """Release a port only if it is still held by the given session.

        The ownership check and the delete run in one WATCH/MULTI transaction,
        so a port re-allocated to another session in between is left alone.

        Returns:
            True if the record was deleted.
        """
        self._check_port(port)
        self._check_session_id(session_id)
        key = self.key_for(port)

        async with store_errors("release_if_owner", port=port, session_id=session_id):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    owner = _decode(await pipe.get(key))
                    if owner != session_id:
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    (deleted,) = await pipe.execute()
                except WatchError:
                    logger.info("port_owner_changed", port=port, session_id=session_id)
                    return False

        logger.info("port_released", port=port, session_id=session_id, was_allocated=bool(deleted))
        return bool(deleted)

    async def get_owner(self, port: int) -> str | None:
        """Return the session holding a port, or None if it is free or expired."""
        self._check_port(port)

        async with store_errors("get_owner", port=port):
            return _decode(await self.redis.get(self.key_for(port)))

    async def is_allocated(self, port: int) -> bool:
        self._check_port(port)

        async with store_errors("is_allocated", port=port):
            return await self.redis.exists(self.key_for(port)) == 1

    async def list_allocated(self) -> dict[int, str]:
        """Return all live allocations in the range, ordered by port.

        Uses SCAN over the key prefix, so the cost follows the number of live
        records rather than the size of the range. Records that expire between
        the scan and the read are skipped.
        """
        pattern = _GLOB_SPECIAL.sub(r"\\\1", self._key_prefix) + "*"

        async with store_errors("list_allocated"):
            ports: list[int] = []
            async for raw_key in self.redis.scan_iter(match=pattern, count=_SCAN_COUNT):
                port = self._port_from_key(_decode(raw_key))
                if port is not None:
                    ports.append(port)

            # SCAN may return a key more than once
            ports = sorted(set(ports))
            if not ports:
                return {}

            values = await self.redis.mget([self.key_for(port) for port in ports])

        return {
            port: _decode(session_id)
            for port, session_id in zip(ports, values)
            if session_id is not None
        }

    async def ports_for_session(self, session_id: str) -> list[int]:
        self._check_session_id(session_id)
        allocations = await self.list_allocated()
        return [port for port, owner in allocations.items() if owner == session_id]

    async def release_session(self, session_id: str) -> list[int]:
        """Release every port held by a session.

        Returns:
            Ports that were actually released.
        """
        released = []
        for port in await self.ports_for_session(session_id):
            if await self.release_if_owner(port, session_id):
                released.append(port)

        logger.info("session_ports_released", session_id=session_id, ports=released)
        return released

    async def usage(self) -> PortUsage:
        allocations = await self.list_allocated()
        return PortUsage(capacity=self.capacity, allocated=len(allocations))

    def _port_from_key(self, key: str) -> int | None:
        suffix = key[len(self._key_prefix) :]
        if not suffix.isdigit():
            return None
        port = int(suffix)
        # Reject aliases like "port:allocated:09000"
        if self.key_for(port) != key or not self._start <= port <= self._end:
            return None
        return port

    def _check_port(self, port: Any) -> None:
        if not _is_int(port) or not self._start <= port <= self._end:
            raise InvalidInputError(
                f"Port must be an integer between {self._start} and {self._end}, got {port!r}"
            )

    @staticmethod
    def _check_session_id(session_id: Any) -> None:
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidInputError(
                f"Session id must be a non-empty string, got {session_id!r}"
            )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
