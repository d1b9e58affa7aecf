"""Registry of resource types and owner reference management.

An App created for a PackageInstall records the PackageInstall as its
controlling owner. The owner's API group, version and kind are looked up in a
`Scheme`, so only registered resource types may own an App.
"""

from dataclasses import dataclass
import logging
from typing import Any

from .exceptions import AlreadyOwnedError, ConfigurationError, NotRegisteredError
from .manifest import (
    App,
    APP_KIND,
    DATA_PACKAGING_API_VERSION,
    KAPPCTRL_API_VERSION,
    OwnerReference,
    Package,
    PACKAGE_INSTALL_KIND,
    PACKAGE_KIND,
    PACKAGING_API_VERSION,
    PackageInstall,
)

__all__ = [
    "GroupVersionKind",
    "Scheme",
    "SCHEME",
    "set_controller_reference",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupVersionKind:
    """Identifies the type of a kubernetes resource."""

    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        """The apiVersion string e.g. `packaging.carvel.dev/v1alpha1`."""
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        """Create a GroupVersionKind from an apiVersion string and kind."""
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind)

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


class Scheme:
    """Maps resource classes to their group, version and kind."""

    def __init__(self) -> None:
        """Initialize an empty Scheme."""
        self._kinds: dict[type, GroupVersionKind] = {}

    def add_known_type(self, cls: type, api_version: str, kind: str) -> None:
        """Register a resource class."""
        self._kinds[cls] = GroupVersionKind.from_api_version(api_version, kind)

    def object_kind(self, obj: Any) -> GroupVersionKind:
        """Return the GroupVersionKind of a resource object."""
        if (gvk := self._kinds.get(type(obj))) is None:
            raise NotRegisteredError(
                f"No kind is registered for the type {type(obj).__name__} in scheme"
            )
        return gvk


def _default_scheme() -> Scheme:
    scheme = Scheme()
    scheme.add_known_type(App, KAPPCTRL_API_VERSION, APP_KIND)
    scheme.add_known_type(PackageInstall, PACKAGING_API_VERSION, PACKAGE_INSTALL_KIND)
    scheme.add_known_type(Package, DATA_PACKAGING_API_VERSION, PACKAGE_KIND)
    return scheme


SCHEME = _default_scheme()


def _refers_to_same_object(a: OwnerReference, b: OwnerReference) -> bool:
    """Owner references match on group, kind and name, ignoring the version."""
    return a.group == b.group and a.kind == b.kind and a.name == b.name


def set_controller_reference(
    owner: PackageInstall, obj: App, scheme: Scheme
) -> list[OwnerReference]:
    """Return the owner references of `obj` with `owner` as its controller.

    An existing reference to the same owner is replaced in place, any other
    references are kept. The object itself is not modified.
    """
    gvk = scheme.object_kind(owner)
    if owner.namespace and owner.namespace != obj.namespace:
        raise ConfigurationError(
            f"Cross-namespace owner references are disallowed, owner's namespace "
            f"{owner.namespace}, obj's namespace {obj.namespace}"
        )
    ref = OwnerReference(
        api_version=gvk.api_version,
        kind=gvk.kind,
        name=owner.name,
        uid=owner.uid,
        controller=True,
        block_owner_deletion=True,
    )
    if (existing := obj.controller_reference) is not None and not (
        _refers_to_same_object(existing, ref)
    ):
        raise AlreadyOwnedError(
            obj.namespaced_name, f"{existing.kind}/{existing.name}"
        )

    owner_refs = list(obj.owner_references or ())
    for i, current in enumerate(owner_refs):
        if _refers_to_same_object(current, ref):
            owner_refs[i] = ref
            break
    else:
        owner_refs.append(ref)
    _LOGGER.debug("Set controller of %s to %s %s", obj.namespaced_name, gvk, owner.name)
    return owner_refs
