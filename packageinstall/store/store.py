"""Store module for holding the objects reconciled by the controller."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from packageinstall.manifest import BaseManifest, NamedResource

T = TypeVar("T", bound=BaseManifest)


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_DELETED = "object_deleted"


class Store(ABC):
    """Abstract base class for the central type-safe object store with listener support."""

    @abstractmethod
    def add_object(self, obj: T) -> T:
        """Add or update a manifest object in the store.

        Objects with a `resource_version` are versioned: the stored copy is
        returned with a new version, and writing an object whose version does
        not match the stored one raises ConflictError.
        """

    @abstractmethod
    def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve a manifest object by resource identity and type."""

    @abstractmethod
    def delete_object(self, resource_id: NamedResource) -> None:
        """Remove a manifest object from the store."""

    @abstractmethod
    def list_objects(self, kind: str | None = None) -> list[BaseManifest]:
        """List all manifest objects in the store, optionally filtered by kind."""

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, BaseManifest], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a specific event (object added or deleted).

        Returns a callable that can be called to remove the listener.
        """
