"""Representation of the PackageInstall, Package and App resources.

Objects are parsed from raw kubernetes documents (for example the output of
`kubectl get -o yaml`) and may be rendered back into documents for storage or
printing. The kapp-controller fields of each spec are modeled; deploy steps and
the kbld, sops and cue template steps are carried as plain mappings. A spec
field that is not modeled is rejected rather than dropped.
"""

from dataclasses import dataclass, field, replace
from datetime import timedelta
import logging
from pathlib import Path
import re
from typing import Any, ClassVar, Optional, TypeVar, Union

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import ExtraKeysError, InvalidFieldValue, MissingField

from .exceptions import InputException

__all__ = [
    "read_documents",
    "parse_raw_obj",
    "parse_duration",
    "format_duration",
    "NamedResource",
    "OwnerReference",
    "App",
    "AppSpec",
    "FetchStep",
    "TemplateStep",
    "Package",
    "PackageInstall",
]

_LOGGER = logging.getLogger(__name__)


# Match a prefix of apiVersion to ensure we have the right type of object.
# We don't check specific versions for forward compatibility on upgrade.
KAPPCTRL_DOMAIN = "kappctrl.k14s.io"
PACKAGING_DOMAIN = "packaging.carvel.dev"
DATA_PACKAGING_DOMAIN = "data.packaging.carvel.dev"
KAPPCTRL_API_VERSION = f"{KAPPCTRL_DOMAIN}/v1alpha1"
PACKAGING_API_VERSION = f"{PACKAGING_DOMAIN}/v1alpha1"
DATA_PACKAGING_API_VERSION = f"{DATA_PACKAGING_DOMAIN}/v1alpha1"
APP_KIND = "App"
PACKAGE_INSTALL_KIND = "PackageInstall"
PACKAGE_KIND = "Package"

_DURATION_UNITS_US = {
    "h": 3_600_000_000,
    "m": 60_000_000,
    "s": 1_000_000,
    "ms": 1000,
    "us": 1,
    "µs": 1,
    "ns": 0.001,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(h|ms|m|s|us|µs|ns)")


def parse_duration(value: str | None) -> timedelta | None:
    """Parse a kubernetes duration string such as `1h30m` or `10m0s`."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise InputException(f"Invalid duration: '{value}' is not a string")
    text = value.strip()
    sign = 1
    if text[:1] in ("-", "+"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise InputException(f"Invalid duration: '{value}'")
    micros = 0.0
    pos = 0
    while pos < len(text):
        if not (match := _DURATION_PART.match(text, pos)):
            raise InputException(f"Invalid duration: '{value}'")
        micros += float(match.group(1)) * _DURATION_UNITS_US[match.group(2)]
        pos = match.end()
    return sign * timedelta(microseconds=micros)


def format_duration(value: timedelta | None) -> str | None:
    """Format a duration the way kubernetes renders it e.g. `10m0s`."""
    if value is None:
        return None
    total_us = value // timedelta(microseconds=1)
    if total_us == 0:
        return "0s"
    sign = "-" if total_us < 0 else ""
    total_us = abs(total_us)
    if total_us < 1000:
        return f"{sign}{total_us}µs"
    if total_us < 1_000_000:
        millis = f"{total_us // 1000}.{total_us % 1000:03d}".rstrip("0").rstrip(".")
        return f"{sign}{millis}ms"
    hours, rem = divmod(total_us, 3_600_000_000)
    minutes, rem = divmod(rem, 60_000_000)
    seconds = f"{rem // 1_000_000}.{rem % 1_000_000:06d}".rstrip("0").rstrip(".")
    result = sign
    if hours:
        result += f"{hours}h"
    if hours or minutes:
        result += f"{minutes}m"
    return f"{result}{seconds}s"


def _duration_field(alias: str) -> Any:
    return field(
        metadata=field_options(
            alias=alias, serialize=format_duration, deserialize=parse_duration
        ),
        default=None,
    )


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


def _parse_metadata(cls: type, doc: dict[str, Any]) -> tuple[dict[str, Any], str, str]:
    """Return the metadata, name and namespace of a namespaced object."""
    if not (metadata := doc.get("metadata")):
        raise InputException(f"Invalid {cls} missing metadata: {doc}")
    if not (name := metadata.get("name")):
        raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
    if not (namespace := metadata.get("namespace")):
        raise InputException(f"Invalid {cls} missing metadata.namespace: {doc}")
    return metadata, name, namespace


_ManifestT = TypeVar("_ManifestT", bound="BaseManifest")


def _from_dict(
    cls: type[_ManifestT], data: dict[str, Any], resource: str
) -> _ManifestT:
    """Parse part of a document, reporting invalid fields as an input error."""
    try:
        return cls.from_dict(data)
    except (ExtraKeysError, InvalidFieldValue, MissingField) as err:
        raise InputException(f"Invalid {cls.__name__} in {resource}: {err}") from err


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True
        forbid_extra_keys = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class LocalObjectReference(BaseManifest):
    """A reference to a secret or config map in the same namespace."""

    name: str
    """The name of the object."""


@dataclass
class InlineSourceRef(BaseManifest):
    """A reference to a secret or config map providing inline files."""

    name: str
    """The name of the object."""

    directory_path: Optional[str] = field(
        metadata=field_options(alias="directoryPath"), default=None
    )
    """The directory the object contents are placed into."""


@dataclass
class InlineSource(BaseManifest):
    """One source of inline files."""

    secret_ref: Optional[InlineSourceRef] = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    config_map_ref: Optional[InlineSourceRef] = field(
        metadata=field_options(alias="configMapRef"), default=None
    )


@dataclass
class FetchInline(BaseManifest):
    """Content specified directly in the App, or sourced from secrets and config maps."""

    paths: Optional[dict[str, str]] = None
    """Map of file path to file contents."""

    paths_from: Optional[list[InlineSource]] = field(
        metadata=field_options(alias="pathsFrom"), default=None
    )
    """Secrets and config maps whose keys become file paths."""


@dataclass
class FetchImage(BaseManifest):
    """Content pulled from an OCI image."""

    url: Optional[str] = None
    secret_ref: Optional[LocalObjectReference] = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    sub_path: Optional[str] = field(
        metadata=field_options(alias="subPath"), default=None
    )
    tag_selection: Optional[dict[str, Any]] = field(
        metadata=field_options(alias="tagSelection"), default=None
    )


@dataclass
class FetchHTTP(BaseManifest):
    """Content downloaded from an HTTP(S) URL."""

    url: Optional[str] = None
    sha256: Optional[str] = None
    secret_ref: Optional[LocalObjectReference] = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    sub_path: Optional[str] = field(
        metadata=field_options(alias="subPath"), default=None
    )


@dataclass
class FetchGit(BaseManifest):
    """Content cloned from a git repository."""

    url: Optional[str] = None
    ref: Optional[str] = None
    ref_selection: Optional[dict[str, Any]] = field(
        metadata=field_options(alias="refSelection"), default=None
    )
    secret_ref: Optional[LocalObjectReference] = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    lfs_skip_smudge: Optional[bool] = field(
        metadata=field_options(alias="lfsSkipSmudge"), default=None
    )
    sub_path: Optional[str] = field(
        metadata=field_options(alias="subPath"), default=None
    )
    depth: Optional[int] = None
    force_http_basic_auth: Optional[bool] = field(
        metadata=field_options(alias="forceHTTPBasicAuth"), default=None
    )


@dataclass
class HelmChartRepository(BaseManifest):
    """The helm repository a chart is fetched from."""

    url: Optional[str] = None
    secret_ref: Optional[LocalObjectReference] = field(
        metadata=field_options(alias="secretRef"), default=None
    )


@dataclass
class FetchHelmChart(BaseManifest):
    """Content fetched as a helm chart."""

    name: Optional[str] = None
    version: Optional[str] = None
    repository: Optional[HelmChartRepository] = None


@dataclass
class FetchImgpkgBundle(BaseManifest):
    """Content pulled from an imgpkg bundle."""

    image: Optional[str] = None
    secret_ref: Optional[LocalObjectReference] = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    tag_selection: Optional[dict[str, Any]] = field(
        metadata=field_options(alias="tagSelection"), default=None
    )


FetchSource = Union[
    FetchInline, FetchImage, FetchHTTP, FetchGit, FetchHelmChart, FetchImgpkgBundle
]

# Variant attribute for each fetch source type, in the order they are checked.
FETCH_SOURCE_FIELDS: dict[type, str] = {
    FetchInline: "inline",
    FetchImage: "image",
    FetchHTTP: "http",
    FetchGit: "git",
    FetchHelmChart: "helm_chart",
    FetchImgpkgBundle: "imgpkg_bundle",
}


@dataclass
class FetchStep(BaseManifest):
    """One source of App content, exactly one variant is expected to be set."""

    inline: Optional[FetchInline] = None
    image: Optional[FetchImage] = None
    http: Optional[FetchHTTP] = None
    git: Optional[FetchGit] = None
    helm_chart: Optional[FetchHelmChart] = field(
        metadata=field_options(alias="helmChart"), default=None
    )
    imgpkg_bundle: Optional[FetchImgpkgBundle] = field(
        metadata=field_options(alias="imgpkgBundle"), default=None
    )
    path: Optional[str] = None
    """Relative directory the fetched content is placed into."""

    @property
    def source(self) -> FetchSource | None:
        """Return the active source of this fetch step."""
        for attr in FETCH_SOURCE_FIELDS.values():
            if (value := getattr(self, attr)) is not None:
                return value  # type: ignore[no-any-return]
        return None

    def with_source(self, source: FetchSource) -> "FetchStep":
        """Return a copy of this step with the source of the same kind replaced."""
        if (attr := FETCH_SOURCE_FIELDS.get(type(source))) is None:
            raise ValueError(f"Unsupported fetch source {type(source).__name__}")
        return replace(self, **{attr: source})


@dataclass
class TemplateValuesSourceRef(BaseManifest):
    """A reference to a secret or config map holding template values."""

    name: str


@dataclass
class TemplateValuesSource(BaseManifest):
    """One source of values for a templating step."""

    secret_ref: Optional[TemplateValuesSourceRef] = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    config_map_ref: Optional[TemplateValuesSourceRef] = field(
        metadata=field_options(alias="configMapRef"), default=None
    )
    path: Optional[str] = None
    downward_api: Optional[dict[str, Any]] = field(
        metadata=field_options(alias="downwardAPI"), default=None
    )


@dataclass
class TemplateYtt(BaseManifest):
    """Templating with ytt overlays."""

    ignore_unknown_comments: Optional[bool] = field(
        metadata=field_options(alias="ignoreUnknownComments"), default=None
    )
    strict: Optional[bool] = None
    inline: Optional[FetchInline] = None
    paths: Optional[list[str]] = None
    file_marks: Optional[list[str]] = field(
        metadata=field_options(alias="fileMarks"), default=None
    )
    values_from: Optional[list[TemplateValuesSource]] = field(
        metadata=field_options(alias="valuesFrom"), default=None
    )


@dataclass
class TemplateHelm(BaseManifest):
    """Templating with `helm template`."""

    name: Optional[str] = None
    """Release name passed to helm, defaults to the App name."""

    namespace: Optional[str] = None
    """Release namespace passed to helm, defaults to the App namespace."""

    path: Optional[str] = None
    values_from: Optional[list[TemplateValuesSource]] = field(
        metadata=field_options(alias="valuesFrom"), default=None
    )
    kube_version: Optional[str] = field(
        metadata=field_options(alias="kubeVersion"), default=None
    )
    kube_api: Optional[dict[str, Any]] = field(
        metadata=field_options(alias="kubeAPIs"), default=None
    )


@dataclass
class TemplateStep(BaseManifest):
    """One content transformation stage, exactly one variant is expected to be set."""

    ytt: Optional[TemplateYtt] = None
    helm_template: Optional[TemplateHelm] = field(
        metadata=field_options(alias="helmTemplate"), default=None
    )
    kbld: Optional[dict[str, Any]] = None
    sops: Optional[dict[str, Any]] = None
    cue: Optional[dict[str, Any]] = None


@dataclass
class KubeconfigSecretRef(BaseManifest):
    """A secret holding a kubeconfig for a remote cluster."""

    name: str
    key: Optional[str] = None


@dataclass
class AppCluster(BaseManifest):
    """The cluster an App deploys into when not the local one."""

    namespace: Optional[str] = None
    kubeconfig_secret_ref: Optional[KubeconfigSecretRef] = field(
        metadata=field_options(alias="kubeconfigSecretRef"), default=None
    )


@dataclass
class AppSpec(BaseManifest):
    """The deployment template of an App along with install controls."""

    fetch: Optional[list[FetchStep]] = None
    template: Optional[list[TemplateStep]] = None
    deploy: Optional[list[dict[str, Any]]] = None
    service_account_name: Optional[str] = field(
        metadata=field_options(alias="serviceAccountName"), default=None
    )
    sync_period: Optional[timedelta] = _duration_field("syncPeriod")
    noop_delete: Optional[bool] = field(
        metadata=field_options(alias="noopDelete"), default=None
    )
    paused: Optional[bool] = None
    canceled: Optional[bool] = None
    cluster: Optional[AppCluster] = None
    default_namespace: Optional[str] = field(
        metadata=field_options(alias="defaultNamespace"), default=None
    )


@dataclass
class OwnerReference(BaseManifest):
    """A back link to the object controlling the lifecycle of another."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    kind: str
    name: str
    uid: str = ""
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = field(
        metadata=field_options(alias="blockOwnerDeletion"), default=None
    )

    @property
    def group(self) -> str:
        """The API group of the owner, empty for the core group."""
        group, _, _ = self.api_version.rpartition("/")
        return group


@dataclass
class App(BaseManifest):
    """A kapp-controller App: fetch, template and deploy a set of resources."""

    kind: ClassVar[str] = APP_KIND
    """The kind of the object."""

    name: str = ""
    """The name of the App."""

    namespace: str = ""
    """The namespace of the App."""

    uid: Optional[str] = None
    resource_version: Optional[str] = field(
        metadata=field_options(alias="resourceVersion"), default=None
    )
    """Version of the stored object used for conflict detection."""

    annotations: Optional[dict[str, str]] = None
    labels: Optional[dict[str, str]] = None
    owner_references: Optional[list[OwnerReference]] = field(
        metadata=field_options(alias="ownerReferences"), default=None
    )
    spec: AppSpec = field(default_factory=AppSpec)
    status: Optional[dict[str, Any]] = None
    """Status of the App, preserved as is."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "App":
        """Parse an App from a kubernetes resource object."""
        _check_version(doc, KAPPCTRL_DOMAIN)
        metadata, name, namespace = _parse_metadata(cls, doc)
        return cls(
            name=name,
            namespace=namespace,
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
            annotations=metadata.get("annotations"),
            labels=metadata.get("labels"),
            owner_references=[
                _from_dict(OwnerReference, ref, f"App {namespace}/{name}")
                for ref in metadata.get("ownerReferences", ())
            ]
            or None,
            spec=_from_dict(
                AppSpec, doc.get("spec") or {}, f"App {namespace}/{name}"
            ),
            status=doc.get("status"),
        )

    def to_doc(self) -> dict[str, Any]:
        """Return the kubernetes resource object for the App."""
        data = self.to_dict()
        metadata = {
            key: data[key]
            for key in (
                "name",
                "namespace",
                "uid",
                "resourceVersion",
                "annotations",
                "labels",
                "ownerReferences",
            )
            if key in data
        }
        doc: dict[str, Any] = {
            "apiVersion": KAPPCTRL_API_VERSION,
            "kind": APP_KIND,
            "metadata": metadata,
            "spec": data["spec"],
        }
        if "status" in data:
            doc["status"] = data["status"]
        return doc

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.namespace}/{self.name}"

    @property
    def controller_reference(self) -> OwnerReference | None:
        """Return the owner reference marked as the controller, if any."""
        for ref in self.owner_references or ():
            if ref.controller:
                return ref
        return None


@dataclass
class VersionSelection(BaseManifest):
    """Constraints used to select a Package version."""

    constraints: Optional[str] = None
    prereleases: Optional[dict[str, Any]] = None


@dataclass
class PackageRef(BaseManifest):
    """The package a PackageInstall installs."""

    ref_name: str = field(metadata=field_options(alias="refName"))
    version_selection: Optional[VersionSelection] = field(
        metadata=field_options(alias="versionSelection"), default=None
    )


@dataclass
class PackageInstallValuesSecretRef(BaseManifest):
    """A secret holding values for a package."""

    name: str
    key: Optional[str] = None


@dataclass
class PackageInstallValues(BaseManifest):
    """One declared source of values for a package."""

    secret_ref: Optional[PackageInstallValuesSecretRef] = field(
        metadata=field_options(alias="secretRef"), default=None
    )


@dataclass
class PackageInstallSpec(BaseManifest):
    """The desired installation of a package."""

    service_account_name: Optional[str] = field(
        metadata=field_options(alias="serviceAccountName"), default=None
    )
    sync_period: Optional[timedelta] = _duration_field("syncPeriod")
    package_ref: Optional[PackageRef] = field(
        metadata=field_options(alias="packageRef"), default=None
    )
    values: Optional[list[PackageInstallValues]] = None
    paused: bool = False
    canceled: bool = False
    noop_delete: bool = field(metadata=field_options(alias="noopDelete"), default=False)
    cluster: Optional[AppCluster] = None
    default_namespace: Optional[str] = field(
        metadata=field_options(alias="defaultNamespace"), default=None
    )


@dataclass
class PackageInstall(BaseManifest):
    """A request to install a package into the cluster."""

    kind: ClassVar[str] = PACKAGE_INSTALL_KIND
    """The kind of the object."""

    name: str
    """The name of the PackageInstall."""

    namespace: str
    """The namespace of the PackageInstall."""

    uid: str = ""
    annotations: Optional[dict[str, str]] = None
    spec: PackageInstallSpec = field(default_factory=PackageInstallSpec)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "PackageInstall":
        """Parse a PackageInstall from a kubernetes resource object."""
        _check_version(doc, PACKAGING_DOMAIN)
        metadata, name, namespace = _parse_metadata(cls, doc)
        return cls(
            name=name,
            namespace=namespace,
            uid=metadata.get("uid", ""),
            annotations=metadata.get("annotations"),
            spec=_from_dict(
                PackageInstallSpec,
                doc.get("spec") or {},
                f"PackageInstall {namespace}/{name}",
            ),
        )

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.namespace}/{self.name}"

    @property
    def ref_name(self) -> str | None:
        """The name of the package being installed."""
        if self.spec.package_ref is None:
            return None
        return self.spec.package_ref.ref_name

    @property
    def version_constraints(self) -> str | None:
        """The version constraints of the package being installed."""
        if (ref := self.spec.package_ref) is None or ref.version_selection is None:
            return None
        return ref.version_selection.constraints


@dataclass
class Package(BaseManifest):
    """A specific version of a package and its App template."""

    kind: ClassVar[str] = PACKAGE_KIND
    """The kind of the object."""

    name: str
    """The name of the Package object, typically `{ref_name}.{version}`."""

    namespace: str
    """The namespace of the Package."""

    ref_name: str = field(metadata=field_options(alias="refName"))
    """The name of the package this is a version of."""

    version: str
    """The semantic version of the package."""

    template: AppSpec = field(default_factory=AppSpec)
    """The App spec used for every install of this version."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Package":
        """Parse a Package from a kubernetes resource object."""
        _check_version(doc, DATA_PACKAGING_DOMAIN)
        _, name, namespace = _parse_metadata(cls, doc)
        if not (spec := doc.get("spec")):
            raise InputException(f"Invalid {cls} missing spec: {doc}")
        if not (ref_name := spec.get("refName")):
            raise InputException(f"Invalid {cls} missing spec.refName: {doc}")
        if not (version := spec.get("version")):
            raise InputException(f"Invalid {cls} missing spec.version: {doc}")
        template = (spec.get("template") or {}).get("spec") or {}
        return cls(
            name=name,
            namespace=namespace,
            ref_name=ref_name,
            version=str(version),
            template=_from_dict(AppSpec, template, f"Package {namespace}/{name}"),
        )

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.namespace}/{self.name}"


def parse_raw_obj(obj: dict[str, Any]) -> BaseManifest:
    """Parse a raw kubernetes object into a BaseManifest."""
    if not (kind := obj.get("kind")):
        raise InputException(f"Invalid object missing kind: {obj}")
    if kind == APP_KIND:
        return App.parse_doc(obj)
    if kind == PACKAGE_INSTALL_KIND:
        return PackageInstall.parse_doc(obj)
    if kind == PACKAGE_KIND:
        return Package.parse_doc(obj)
    raise InputException(f"Unsupported object kind '{kind}': {obj}")


async def read_documents(path: Path) -> list[dict[str, Any]]:
    """Return all non-empty YAML documents in the file."""
    async with aiofiles.open(str(path)) as doc_file:
        content = await doc_file.read()
    try:
        docs = [doc for doc in yaml.safe_load_all(content) if doc]
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse {path}: {err}") from err
    _LOGGER.debug("Read %d documents from %s", len(docs), path)
    return docs
