"""CRUD HTTP service used as the optional remote event store."""

from .mem_storage import MemStorage
from .server import make_app, start_server

__all__ = ["MemStorage", "make_app", "start_server"]
