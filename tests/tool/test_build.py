"""Tests for the packageinstall `build` command."""

from pathlib import Path
from typing import Any

import pytest
import yaml

from packageinstall.tool.packageinstall import main

TESTDATA_DIR = Path("tests/testdata")
INSTALL_FILE = str(TESTDATA_DIR / "packageinstall.yaml")
PACKAGES_FILE = str(TESTDATA_DIR / "packages.yaml")
APP_FILE = str(TESTDATA_DIR / "app.yaml")
EXPECTED_DIR = TESTDATA_DIR / "build"


def run_build(args: list[str], output: Path) -> dict[str, Any]:
    """Run the build command and return the App document written."""
    main(["build", *args, "--output-file", str(output)])
    return yaml.safe_load(output.read_text())  # type: ignore[no-any-return]


def expected(name: str) -> dict[str, Any]:
    """Return the expected App document from the testdata directory."""
    return yaml.safe_load((EXPECTED_DIR / name).read_text())  # type: ignore[no-any-return]


def test_build(tmp_path: Path) -> None:
    """Test building a new App."""
    doc = run_build(
        [INSTALL_FILE, "--package", PACKAGES_FILE], tmp_path / "app.yaml"
    )
    assert doc == expected("app.yaml")


def test_build_existing_app(tmp_path: Path) -> None:
    """Test building over an existing App."""
    doc = run_build(
        [
            INSTALL_FILE,
            "--package",
            PACKAGES_FILE,
            "--app",
            APP_FILE,
            "--default-sync-period",
            "30m",
        ],
        tmp_path / "app.yaml",
    )
    assert doc == expected("existing-app.yaml")


def test_build_output_format(tmp_path: Path) -> None:
    """Test the App is written as a single YAML document in field order."""
    output = tmp_path / "app.yaml"
    run_build([INSTALL_FILE, "--package", PACKAGES_FILE], output)
    text = output.read_text()
    assert text.startswith("---\napiVersion: kappctrl.k14s.io/v1alpha1\nkind: App\n")
    assert len(list(yaml.safe_load_all(text))) == 1


def test_build_invalid_package_install(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Test a PackageInstall with an invalid field is reported as an error."""
    doc = yaml.safe_load(Path(INSTALL_FILE).read_text())
    doc["spec"]["syncPeriod"] = 300
    install = tmp_path / "packageinstall.yaml"
    install.write_text(yaml.dump(doc))
    with pytest.raises(SystemExit) as exc_info:
        run_build([str(install), "--package", PACKAGES_FILE], tmp_path / "app.yaml")
    assert exc_info.value.code == 1
    assert "packageinstall error:" in capsys.readouterr().err


def test_build_missing_package(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Test building when no Package matches the PackageInstall."""
    packages = tmp_path / "packages.yaml"
    packages.write_text(
        yaml.dump(
            {
                "apiVersion": "data.packaging.carvel.dev/v1alpha1",
                "kind": "Package",
                "metadata": {"name": "other.1.0.0", "namespace": "tools"},
                "spec": {"refName": "other", "version": "1.0.0"},
            }
        )
    )
    with pytest.raises(SystemExit) as exc_info:
        run_build([INSTALL_FILE, "--package", str(packages)], tmp_path / "app.yaml")
    assert exc_info.value.code == 1
    assert "packageinstall error:" in capsys.readouterr().err


def test_build_invalid_sync_period(tmp_path: Path) -> None:
    """Test an invalid default sync period is rejected by the parser."""
    with pytest.raises(SystemExit) as exc_info:
        run_build(
            [
                INSTALL_FILE,
                "--package",
                PACKAGES_FILE,
                "--default-sync-period",
                "soon",
            ],
            tmp_path / "app.yaml",
        )
    assert exc_info.value.code == 2
