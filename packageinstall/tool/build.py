"""Packageinstall build action."""

from argparse import (
    ArgumentParser,
    ArgumentTypeError,
    _SubParsersAction as SubParsersAction,
)
from datetime import timedelta
import logging
import pathlib
from typing import cast

import aiofiles
import yaml

from packageinstall.app import new_app
from packageinstall.config import DEFAULT_SYNC_PERIOD, Options
from packageinstall.controller import resolve_package
from packageinstall.exceptions import InputException
from packageinstall.manifest import (
    App,
    PackageInstall,
    parse_duration,
    parse_raw_obj,
    read_documents,
)
from packageinstall.store import InMemoryStore

_LOGGER = logging.getLogger(__name__)


def _duration_arg(value: str) -> timedelta:
    try:
        duration = parse_duration(value)
    except InputException as err:
        raise ArgumentTypeError(str(err)) from err
    if duration is None:
        raise ArgumentTypeError(f"Invalid duration: '{value}'")
    return duration


async def _read_app(path: pathlib.Path) -> App:
    """Read the existing App, kept outside the store to preserve its resourceVersion."""
    for doc in await read_documents(path):
        if doc.get("kind") == App.kind:
            return App.parse_doc(doc)
    raise InputException(f"No App found in {path}")


async def _load(store: InMemoryStore, paths: list[pathlib.Path]) -> None:
    """Add every supported object in the files to the store."""
    for path in paths:
        for doc in await read_documents(path):
            store.add_object(parse_raw_obj(doc))


class BuildAction:
    """Packageinstall build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build the App for a PackageInstall",
                description="""Build the App kapp-controller would create for a
                    PackageInstall, given the available Packages and
                    optionally the App that exists today.""",
            ),
        )
        args.add_argument(
            "package_install",
            type=pathlib.Path,
            help="File containing the PackageInstall",
        )
        args.add_argument(
            "--package",
            "-p",
            dest="packages",
            type=pathlib.Path,
            action="append",
            required=True,
            help="File containing Package versions, may be repeated",
        )
        args.add_argument(
            "--app",
            type=pathlib.Path,
            default=None,
            help="File containing the App currently in the cluster",
        )
        args.add_argument(
            "--default-sync-period",
            type=_duration_arg,
            default=DEFAULT_SYNC_PERIOD,
            help="Sync period used when the PackageInstall does not set one e.g. 10m",
        )
        args.add_argument(
            "--output-file",
            type=str,
            default="/dev/stdout",
            help="Output file for the results of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        package_install: pathlib.Path,
        packages: list[pathlib.Path],
        app: pathlib.Path | None,
        default_sync_period: timedelta,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        store = InMemoryStore()
        await _load(store, [package_install] + packages)

        installs = store.list_objects(PackageInstall.kind)
        if len(installs) != 1 or not isinstance(installs[0], PackageInstall):
            raise InputException(
                f"Expected one PackageInstall in {package_install}, found {len(installs)}"
            )
        install = installs[0]
        package = resolve_package(store, install)
        existing = await _read_app(app) if app else None
        _LOGGER.debug("Building App for %s", install.namespaced_name)
        desired = new_app(
            existing, install, package, Options(default_sync_period=default_sync_period)
        )

        content = yaml.dump(desired.to_doc(), sort_keys=False, explicit_start=True)
        async with aiofiles.open(output_file, mode="w") as output:
            await output.write(content)
