"""Module for in memory object store."""

from collections import defaultdict
from collections.abc import Callable
import dataclasses
import logging
from typing import Any, DefaultDict, TypeVar

from packageinstall.exceptions import ConflictError, ObjectNotFoundError
from packageinstall.manifest import BaseManifest, NamedResource

from .store import Store, StoreEvent


_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseManifest)


def _resource_id(obj: BaseManifest) -> NamedResource:
    if (
        not hasattr(obj, "kind")
        or not hasattr(obj, "namespace")
        or not hasattr(obj, "name")
    ):
        raise ValueError("Object must have kind, namespace, and name attributes")
    return NamedResource(obj.kind, obj.namespace, obj.name)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Stores manifest objects keyed by NamedResource and supports event listeners
    for object changes.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, BaseManifest] = {}
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )
        self._revision = 0

    def add_object(self, obj: T) -> T:
        """Add or update a manifest object in the store."""
        resource_id = _resource_id(obj)
        existing = self._objects.get(resource_id)
        if hasattr(obj, "resource_version"):
            current = getattr(existing, "resource_version", None)
            if obj.resource_version != current:
                raise ConflictError(str(resource_id), obj.resource_version, current)
        if existing is not None:
            if existing == obj:
                _LOGGER.debug(
                    "Object %s already exists in store, skipping", resource_id
                )
                return obj
            _LOGGER.debug("Updating existing object %s in store", resource_id)
        else:
            _LOGGER.debug("Adding object %s to store", resource_id)

        if hasattr(obj, "resource_version"):
            self._revision += 1
            obj = dataclasses.replace(obj, resource_version=str(self._revision))
        self._objects[resource_id] = obj
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, obj)
        return obj

    def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve a manifest object by resource identity and type."""
        obj = self._objects.get(resource_id)
        if obj is not None:
            if isinstance(obj, cls):
                return obj
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type {cls.__name__} (was {obj.__class__.__name__})"
            )
        return None

    def delete_object(self, resource_id: NamedResource) -> None:
        """Remove a manifest object from the store."""
        if (obj := self._objects.pop(resource_id, None)) is None:
            raise ObjectNotFoundError(f"Object {resource_id} not found")
        _LOGGER.debug("Deleted object %s from store", resource_id)
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, obj)

    def list_objects(self, kind: str | None = None) -> list[BaseManifest]:
        """List all manifest objects in the store, optionally filtered by kind."""
        if kind is None:
            return list(self._objects.values())
        return [
            obj for obj in self._objects.values() if getattr(obj, "kind", None) == kind
        ]

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, BaseManifest], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a specific event (object added or deleted)."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)

        if flush and event == StoreEvent.OBJECT_ADDED:
            _LOGGER.debug("Flushing objects for event type %s", event)
            for resource_id, obj in list(self._objects.items()):
                callback(resource_id, obj)

        return remove

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)
