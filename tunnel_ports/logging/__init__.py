from .config import bind_port_range, setup_logging

__all__ = ["setup_logging", "bind_port_range"]
