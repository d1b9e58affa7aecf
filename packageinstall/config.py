"""Configuration objects for packageinstall."""

from dataclasses import dataclass, field
from datetime import timedelta

from .scheme import SCHEME, Scheme

DEFAULT_SYNC_PERIOD = timedelta(minutes=10)


@dataclass
class Options:
    """Options for building an App from a PackageInstall."""

    default_sync_period: timedelta = DEFAULT_SYNC_PERIOD
    """Sync period used when the PackageInstall does not set one."""

    scheme: Scheme = field(default_factory=lambda: SCHEME)
    """Resource types allowed to own an App."""


@dataclass
class ControllerConfig:
    """Configuration for the PackageInstallController."""

    options: Options = field(default_factory=Options)

    max_conflict_retries: int = 3
    """Number of times an App write is retried after a conflicting update."""

    global_namespace: str | None = "kapp-controller-packaging-global"
    """Namespace holding Packages available to every namespace."""
