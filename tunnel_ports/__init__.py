"""Redis-coordinated port allocation for remote-desktop tunnel sessions."""

from .allocator import PORT_KEY_PREFIX, PortAllocator, PortUsage
from .errors import InvalidInputError, PortAllocatorError, StoreUnavailableError

__all__ = [
    "PORT_KEY_PREFIX",
    "InvalidInputError",
    "PortAllocator",
    "PortAllocatorError",
    "PortUsage",
    "StoreUnavailableError",
]
