"""
The store module provides a central repository for the PackageInstall,
Package and App objects seen by the controller.

- Uses NamedResource as the key for all objects.
- Stores values as dataclass instances from manifest.py for type safety.
- Detects conflicting writes of versioned objects such as App.

This abstract interface allows for various implementations (in-memory, persistent, etc.).
"""

from .store import Store, StoreEvent
from .in_memory import InMemoryStore

__all__ = [
    "Store",
    "StoreEvent",
    "InMemoryStore",
]
