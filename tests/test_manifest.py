"""Tests for manifest library."""

from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
import yaml

from packageinstall.app import new_app
from packageinstall.config import Options
from packageinstall.exceptions import InputException
from packageinstall.manifest import (
    App,
    FetchGit,
    FetchHelmChart,
    FetchImgpkgBundle,
    FetchInline,
    FetchStep,
    HelmChartRepository,
    InlineSource,
    InlineSourceRef,
    LocalObjectReference,
    Package,
    PackageInstall,
    TemplateStep,
    TemplateYtt,
    format_duration,
    parse_duration,
    parse_raw_obj,
    read_documents,
)

TESTDATA_DIR = Path("tests/testdata")


def _load(name: str) -> list[dict[str, Any]]:
    return list(yaml.safe_load_all((TESTDATA_DIR / name).read_text()))


def test_parse_package_install() -> None:
    """Test parsing a PackageInstall doc."""
    install = PackageInstall.parse_doc(_load("packageinstall.yaml")[0])
    assert install.name == "cert-manager"
    assert install.namespace == "tools"
    assert install.uid == "6a2c1c8e-0b0f-4a53-9a1e-0c6f4b0d7d11"
    assert install.ref_name == "cert-manager.community.tanzu.vmware.com"
    assert install.version_constraints == "1.9.1"
    assert install.spec.service_account_name == "cert-manager-sa"
    assert install.spec.sync_period is None
    assert install.spec.paused is False
    assert install.spec.values
    assert install.spec.values[0].secret_ref
    assert install.spec.values[0].secret_ref.name == "cert-manager-values"
    assert install.annotations
    assert len(install.annotations) == 4


def test_parse_package() -> None:
    """Test parsing a Package doc."""
    package = Package.parse_doc(_load("packages.yaml")[0])
    assert package.name == "cert-manager.community.tanzu.vmware.com.1.9.1"
    assert package.ref_name == "cert-manager.community.tanzu.vmware.com"
    assert package.version == "1.9.1"
    assert package.template.fetch == [
        FetchStep(
            imgpkg_bundle=FetchImgpkgBundle(
                image="projects.registry.vmware.com/tce/cert-manager@sha256:1a2b3c"
            )
        )
    ]
    assert package.template.template == [
        TemplateStep(ytt=TemplateYtt(paths=["config/"])),
        TemplateStep(kbld={"paths": ["-", ".imgpkg/images.yml"]}),
    ]
    assert package.template.deploy == [{"kapp": {}}]


def test_parse_app() -> None:
    """Test parsing an App doc and rendering it back."""
    doc = _load("app.yaml")[0]
    app = App.parse_doc(doc)
    assert app.name == "cert-manager"
    assert app.resource_version == "4242"
    assert app.spec.sync_period == timedelta(minutes=1)
    assert app.status == {"friendlyDescription": "Reconcile succeeded"}
    assert app.to_doc() == doc


def test_app_to_doc_aliases() -> None:
    """Test the App document uses kubernetes field names."""
    app = App(
        name="example",
        namespace="default",
    )
    app.spec.fetch = [
        FetchStep(
            helm_chart=FetchHelmChart(
                name="chart",
                repository=HelmChartRepository(
                    url="https://charts.example.com",
                    secret_ref=LocalObjectReference(name="creds"),
                ),
            )
        )
    ]
    app.spec.template = [
        TemplateStep(
            ytt=TemplateYtt(
                inline=FetchInline(
                    paths_from=[InlineSource(secret_ref=InlineSourceRef(name="s"))]
                )
            )
        )
    ]
    app.spec.sync_period = timedelta(minutes=10)
    app.spec.noop_delete = False
    assert app.to_doc() == {
        "apiVersion": "kappctrl.k14s.io/v1alpha1",
        "kind": "App",
        "metadata": {"name": "example", "namespace": "default"},
        "spec": {
            "fetch": [
                {
                    "helmChart": {
                        "name": "chart",
                        "repository": {
                            "url": "https://charts.example.com",
                            "secretRef": {"name": "creds"},
                        },
                    }
                }
            ],
            "template": [
                {"ytt": {"inline": {"pathsFrom": [{"secretRef": {"name": "s"}}]}}}
            ],
            "syncPeriod": "10m0s",
            "noopDelete": False,
        },
    }


def test_fetch_step_source() -> None:
    """Test selecting and replacing the active source of a fetch step."""
    git = FetchGit(url="https://example.com/repo")
    step = FetchStep(git=git, path="sub")
    assert step.source is git
    assert FetchStep().source is None

    updated = step.with_source(FetchGit(url="https://example.com/other"))
    assert updated == FetchStep(git=FetchGit(url="https://example.com/other"), path="sub")
    assert step.git is git


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("10m", timedelta(minutes=10)),
        ("10m0s", timedelta(minutes=10)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5h", timedelta(hours=1, minutes=30)),
        ("45s", timedelta(seconds=45)),
        ("250ms", timedelta(milliseconds=250)),
        ("0", timedelta(0)),
        ("-5m", timedelta(minutes=-5)),
    ],
)
def test_parse_duration(value: str, expected: timedelta) -> None:
    """Test parsing kubernetes durations."""
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "10", "10x", "m10", "1h 30m"])
def test_parse_invalid_duration(value: str) -> None:
    """Test parsing invalid kubernetes durations."""
    with pytest.raises(InputException, match="Invalid duration"):
        parse_duration(value)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (timedelta(minutes=10), "10m0s"),
        (timedelta(hours=1), "1h0m0s"),
        (timedelta(hours=1, seconds=5), "1h0m5s"),
        (timedelta(seconds=30), "30s"),
        (timedelta(seconds=1.5), "1.5s"),
        (timedelta(milliseconds=250), "250ms"),
        (timedelta(0), "0s"),
        (timedelta(minutes=-5), "-5m0s"),
    ],
)
def test_format_duration(value: timedelta, expected: str) -> None:
    """Test formatting kubernetes durations."""
    assert format_duration(value) == expected


def test_sync_period_from_doc() -> None:
    """Test the sync period of a PackageInstall is parsed as a duration."""
    doc = _load("packageinstall.yaml")[0]
    doc["spec"]["syncPeriod"] = "5m"
    install = PackageInstall.parse_doc(doc)
    assert install.spec.sync_period == timedelta(minutes=5)


@pytest.mark.parametrize(
    ("doc", "match"),
    [
        ({"apiVersion": "v1", "kind": "ConfigMap"}, "Unsupported object kind"),
        ({"apiVersion": "v1"}, "missing kind"),
        (
            {"apiVersion": "kappctrl.k14s.io/v1alpha1", "kind": "App"},
            "missing metadata",
        ),
        (
            {
                "apiVersion": "kappctrl.k14s.io/v1alpha1",
                "kind": "App",
                "metadata": {"name": "example"},
            },
            "missing metadata.namespace",
        ),
        (
            {
                "apiVersion": "example.com/v1",
                "kind": "PackageInstall",
                "metadata": {"name": "example", "namespace": "default"},
            },
            "expected 'packaging.carvel.dev'",
        ),
        (
            {
                "apiVersion": "data.packaging.carvel.dev/v1alpha1",
                "kind": "Package",
                "metadata": {"name": "example", "namespace": "default"},
                "spec": {"refName": "example"},
            },
            "missing spec.version",
        ),
    ],
    ids=[
        "unsupported",
        "no-kind",
        "no-metadata",
        "no-namespace",
        "wrong-api-version",
        "no-version",
    ],
)
def test_parse_raw_obj_invalid(doc: dict[str, Any], match: str) -> None:
    """Test parsing invalid objects."""
    with pytest.raises(InputException, match=match):
        parse_raw_obj(doc)


def test_parse_raw_obj() -> None:
    """Test parsing objects by kind."""
    objs = [parse_raw_obj(doc) for doc in _load("packages.yaml")]
    assert [type(obj) for obj in objs] == [Package, Package]
    assert isinstance(parse_raw_obj(_load("app.yaml")[0]), App)


async def test_read_documents() -> None:
    """Test reading all documents from a file."""
    docs = await read_documents(TESTDATA_DIR / "packages.yaml")
    assert [doc["metadata"]["name"] for doc in docs] == [
        "cert-manager.community.tanzu.vmware.com.1.9.1",
        "cert-manager.community.tanzu.vmware.com.1.8.0",
    ]


async def test_read_invalid_documents(tmp_path: Path) -> None:
    """Test reading a file that is not valid YAML."""
    path = tmp_path / "invalid.yaml"
    path.write_text("key: [unterminated\n")
    with pytest.raises(InputException, match="Unable to parse"):
        await read_documents(path)


def test_package_git_fetch_survives_build() -> None:
    """Test the git fetch options of a Package template are copied to the App."""
    doc = _load("packages.yaml")[0]
    doc["spec"]["template"]["spec"]["fetch"] = [
        {
            "git": {
                "url": "https://github.com/example/packages",
                "ref": "origin/main",
                "forceHTTPBasicAuth": True,
            }
        }
    ]
    package = Package.parse_doc(doc)
    assert package.template.fetch == [
        FetchStep(
            git=FetchGit(
                url="https://github.com/example/packages",
                ref="origin/main",
                force_http_basic_auth=True,
            )
        )
    ]

    install = PackageInstall.parse_doc(_load("packageinstall.yaml")[0])
    app = new_app(None, install, package, Options())
    assert app.to_doc()["spec"]["fetch"] == [
        {
            "git": {
                "url": "https://github.com/example/packages",
                "ref": "origin/main",
                "secretRef": {"name": "registry-creds"},
                "forceHTTPBasicAuth": True,
            }
        }
    ]


def _with_package_fetch(fetch: list[dict[str, Any]]) -> dict[str, Any]:
    doc = _load("packages.yaml")[0]
    doc["spec"]["template"]["spec"]["fetch"] = fetch
    return doc


def _with_install_spec(**spec: Any) -> dict[str, Any]:
    doc = _load("packageinstall.yaml")[0]
    doc["spec"].update(spec)
    return doc


def _with_owner_reference(ref: dict[str, Any]) -> dict[str, Any]:
    doc = _load("app.yaml")[0]
    doc["metadata"]["ownerReferences"] = [ref]
    return doc


@pytest.mark.parametrize(
    ("doc", "match"),
    [
        (
            _with_package_fetch([{"git": {"url": "https://x", "unknownOption": 1}}]),
            "Invalid AppSpec in Package tools/cert-manager",
        ),
        (
            _with_package_fetch([{"unknownSource": {"url": "https://x"}}]),
            "Invalid AppSpec in Package tools/cert-manager",
        ),
        (
            _with_install_spec(packageRef={"versionSelection": {}}),
            "Invalid PackageInstallSpec in PackageInstall tools/cert-manager",
        ),
        (_with_install_spec(syncPeriod=300), "Invalid"),
        (
            _with_owner_reference({"apiVersion": "v1", "name": "owner"}),
            "Invalid OwnerReference in App tools/cert-manager",
        ),
    ],
    ids=[
        "unknown-git-field",
        "unknown-fetch-source",
        "missing-ref-name",
        "sync-period-number",
        "owner-reference-missing-kind",
    ],
)
def test_parse_invalid_spec(doc: dict[str, Any], match: str) -> None:
    """Test spec fields that are unknown or of the wrong type are input errors."""
    with pytest.raises(InputException, match=match):
        parse_raw_obj(doc)


@pytest.mark.parametrize("value", [300, 1.5, ["10m"]])
def test_parse_duration_not_a_string(value: Any) -> None:
    """Test durations must be strings."""
    with pytest.raises(InputException, match="Invalid duration"):
        parse_duration(value)
