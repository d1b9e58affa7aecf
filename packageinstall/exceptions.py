"""Exceptions related to packageinstall."""

__all__ = [
    "PackageInstallException",
    "InputException",
    "ConfigurationError",
    "NotRegisteredError",
    "AlreadyOwnedError",
    "ObjectNotFoundError",
    "ConflictError",
]


class PackageInstallException(Exception):
    """Generic base exception used for this library."""


class InputException(PackageInstallException):
    """Raised when the input documents or values are not formatted as expected."""


class ConfigurationError(PackageInstallException):
    """Raised when a desired App cannot be linked to its PackageInstall."""


class NotRegisteredError(ConfigurationError):
    """Raised when a resource type is not registered with the scheme."""


class AlreadyOwnedError(ConfigurationError):
    """Raised when an object is already controlled by a different owner."""

    def __init__(self, object_name: str, owner: str) -> None:
        super().__init__(
            f"Object {object_name} is already owned by another controller {owner}"
        )
        self.object_name = object_name
        self.owner = owner


class ObjectNotFoundError(PackageInstallException):
    """Raised when an object is not found in the store."""


class ConflictError(PackageInstallException):
    """Raised when an object was modified since it was last read."""

    def __init__(self, resource_name: str, expected: str | None, actual: str | None):
        super().__init__(
            f"Object {resource_name} has been modified: expected resourceVersion "
            f"{expected or 'none'}, found {actual or 'none'}"
        )
        self.resource_name = resource_name
        self.expected = expected
        self.actual = actual
