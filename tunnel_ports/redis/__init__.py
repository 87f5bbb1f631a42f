from .client import RedisConnection, store_errors

__all__ = ["RedisConnection", "store_errors"]
