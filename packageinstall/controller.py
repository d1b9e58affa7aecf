"""PackageInstall Controller implementation.

This controller keeps the App for each PackageInstall in the store up to date,
using `new_app` to build the App from the PackageInstall and its Package.

Key Concepts:
    - PackageInstall: A request to install a version of a package
    - Package: A version of a package holding the App template
    - Store: Central state management for the objects being reconciled
"""

import logging

from .app import new_app
from .config import ControllerConfig
from .exceptions import (
    ConflictError,
    InputException,
    ObjectNotFoundError,
    PackageInstallException,
)
from .manifest import App, BaseManifest, NamedResource, Package, PackageInstall
from .store import Store, StoreEvent

__all__ = [
    "PackageInstallController",
    "resolve_package",
]

_LOGGER = logging.getLogger(__name__)


def resolve_package(
    store: Store, package_install: PackageInstall, global_namespace: str | None = None
) -> Package:
    """Find the Package version to install for a PackageInstall.

    Packages are looked up in the namespace of the PackageInstall and in the
    global packaging namespace. Version constraints select an exact version
    (optionally prefixed with `=`); without constraints there must be a single
    version available.
    """
    if not (ref_name := package_install.ref_name):
        raise InputException(
            f"PackageInstall {package_install.namespaced_name} missing spec.packageRef.refName"
        )
    namespaces = {package_install.namespace, global_namespace}
    candidates = [
        obj
        for obj in store.list_objects(Package.kind)
        if isinstance(obj, Package)
        and obj.ref_name == ref_name
        and obj.namespace in namespaces
    ]
    if constraints := package_install.version_constraints:
        version = constraints.strip().removeprefix("=").strip()
        candidates = [obj for obj in candidates if obj.version == version]
    if not candidates:
        raise ObjectNotFoundError(
            f"No Package {ref_name} matching '{constraints or '*'}' found for "
            f"PackageInstall {package_install.namespaced_name}"
        )
    if len(versions := {obj.version for obj in candidates}) > 1:
        raise InputException(
            f"PackageInstall {package_install.namespaced_name} matches multiple "
            f"versions of {ref_name} {sorted(versions)}, set versionSelection.constraints"
        )
    # Packages in the install namespace shadow the global ones
    candidates.sort(key=lambda obj: obj.namespace != package_install.namespace)
    return candidates[0]


class PackageInstallController:
    """
    Controller for reconciling PackageInstall resources.

    This controller watches for PackageInstall and Package objects in the
    store and writes the desired App for each PackageInstall back to the store.
    """

    def __init__(self, store: Store, config: ControllerConfig) -> None:
        """
        Initialize the controller with a store.

        Args:
            store: The central store holding PackageInstall, Package and App objects
            config: The configuration for the controller
        """
        self.store = store
        self._config = config
        self._remove_listener = self.store.add_listener(
            StoreEvent.OBJECT_ADDED, self._added_listener, flush=True
        )

    def _added_listener(self, resource_id: NamedResource, obj: BaseManifest) -> None:
        """Event listener for new PackageInstall and Package objects."""
        if resource_id.kind == PackageInstall.kind:
            self._try_reconcile(resource_id)
        elif resource_id.kind == Package.kind and isinstance(obj, Package):
            for install in self.store.list_objects(PackageInstall.kind):
                if isinstance(install, PackageInstall) and install.ref_name == obj.ref_name:
                    self._try_reconcile(
                        NamedResource(install.kind, install.namespace, install.name)
                    )

    def _try_reconcile(self, resource_id: NamedResource) -> None:
        try:
            self.reconcile(resource_id)
        except PackageInstallException as err:
            _LOGGER.error("Failed to reconcile %s: %s", resource_id, err)

    def reconcile(self, resource_id: NamedResource) -> App:
        """Write the desired App for the PackageInstall and return it.

        Conflicting App updates are retried with the latest stored App.
        """
        if not (
            package_install := self.store.get_object(resource_id, PackageInstall)
        ):
            raise ObjectNotFoundError(f"PackageInstall {resource_id} not found")
        package = resolve_package(
            self.store, package_install, self._config.global_namespace
        )
        app_id = NamedResource(App.kind, package_install.namespace, package_install.name)

        attempt = 0
        while True:
            existing = self.store.get_object(app_id, App)
            desired = new_app(existing, package_install, package, self._config.options)
            try:
                app = self.store.add_object(desired)
            except ConflictError as err:
                if attempt >= self._config.max_conflict_retries:
                    raise
                attempt += 1
                _LOGGER.debug("Retrying App %s update (%d): %s", app_id, attempt, err)
                continue
            _LOGGER.info(
                "Reconciled %s with Package %s", resource_id, package.namespaced_name
            )
            return app

    def close(self) -> None:
        """Stop watching the store."""
        self._remove_listener()
