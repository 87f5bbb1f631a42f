"""Errors raised by the port allocator.

Running out of ports is not an error: ``PortAllocator.allocate`` returns
``None`` in that case so callers can't confuse it with a store outage.
"""


class PortAllocatorError(Exception):
    """Base class for allocator errors."""


class StoreUnavailableError(PortAllocatorError):
    """The backing Redis store could not be reached or rejected a command."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class InvalidInputError(PortAllocatorError, ValueError):
    """Bad argument at the call site (empty session id, port out of range)."""
