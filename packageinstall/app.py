"""Build the desired App for a PackageInstall.

The App is built from three inputs: the PackageInstall requesting the
install, the Package version selected for it and the App currently stored
(if any). The result is always a fresh object so the inputs are never
modified, and the same inputs always produce the same App.

Annotations on the PackageInstall may customize the App beyond what the
Package template declares:

  - attach secrets to individual fetch steps
  - override the release name and namespace of helm templating steps
  - add secrets as ytt overlay files or as values for ytt and helm

Adding the `ext.packaging.carvel.dev/manually-controlled` annotation to the
App itself stops all updates to it.
"""

import copy
from dataclasses import dataclass, replace
import logging
from typing import TypeVar

from .annotations import (
    HELM_TEMPLATE_NAME,
    HELM_TEMPLATE_NAMESPACE,
    HELM_VALUES_FROM_SECRET,
    MANUALLY_CONTROLLED,
    PACKAGE_REF_NAME,
    PACKAGE_VERSION,
    YTT_DATA_VALUES_OVERLAYS,
    YTT_PATHS_FROM_SECRET,
    fetch_secret_key,
    ordered_secret_names,
)
from .config import Options
from .manifest import (
    App,
    AppSpec,
    FetchGit,
    FetchHelmChart,
    FetchHTTP,
    FetchImage,
    FetchImgpkgBundle,
    FetchInline,
    FetchStep,
    InlineSource,
    InlineSourceRef,
    LocalObjectReference,
    Package,
    PackageInstall,
    PackageInstallSpec,
    TemplateHelm,
    TemplateStep,
    TemplateValuesSource,
    TemplateValuesSourceRef,
    TemplateYtt,
)
from .scheme import set_controller_reference

__all__ = [
    "new_app",
]

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

# Fetch sources with a secretRef of their own.
SECRET_FETCH_SOURCES = (FetchImage, FetchHTTP, FetchGit, FetchImgpkgBundle)


@dataclass(frozen=True)
class _InstallInputs:
    """Values read from the PackageInstall once per build."""

    helm_name: str | None
    helm_namespace: str | None
    helm_values_secrets: tuple[str, ...]
    ytt_paths_secrets: tuple[str, ...]
    values_secrets: tuple[str, ...]
    data_values_overlays: bool

    @classmethod
    def from_package_install(cls, package_install: PackageInstall) -> "_InstallInputs":
        annotations = package_install.annotations or {}
        return cls(
            helm_name=annotations.get(HELM_TEMPLATE_NAME),
            helm_namespace=annotations.get(HELM_TEMPLATE_NAMESPACE),
            helm_values_secrets=tuple(
                ordered_secret_names(annotations, HELM_VALUES_FROM_SECRET)
            ),
            ytt_paths_secrets=tuple(
                ordered_secret_names(annotations, YTT_PATHS_FROM_SECRET)
            ),
            values_secrets=tuple(
                value.secret_ref.name
                for value in package_install.spec.values or ()
                if value.secret_ref is not None
            ),
            data_values_overlays=YTT_DATA_VALUES_OVERLAYS in annotations,
        )


@dataclass(frozen=True)
class _Applied:
    """Injections already made while walking the template steps."""

    values: bool = False
    """Install values were added to a ytt or helm step."""

    ytt_paths: bool = False
    """Overlay secrets were added to a ytt step."""


def _extend(existing: list[_T] | None, additions: list[_T]) -> list[_T] | None:
    if not additions:
        return existing
    return [*(existing or ()), *additions]


def _install_spec(
    template: AppSpec, install_spec: PackageInstallSpec, options: Options
) -> AppSpec:
    """Overlay the install controls of a PackageInstall on the Package template."""
    sync_period = install_spec.sync_period
    if sync_period is None:
        sync_period = options.default_sync_period
    return replace(
        template,
        service_account_name=install_spec.service_account_name,
        sync_period=sync_period,
        noop_delete=install_spec.noop_delete,
        paused=install_spec.paused,
        canceled=install_spec.canceled,
        cluster=copy.deepcopy(install_spec.cluster),
        default_namespace=install_spec.default_namespace,
    )


def _with_fetch_secret(step: FetchStep, secret_name: str) -> FetchStep:
    """Attach a secret to the active source of a fetch step."""
    secret_ref = LocalObjectReference(name=secret_name)
    source = step.source
    if isinstance(source, SECRET_FETCH_SOURCES):
        return step.with_source(replace(source, secret_ref=secret_ref))
    if isinstance(source, FetchHelmChart):
        if source.repository is None:
            _LOGGER.debug(
                "Ignoring fetch secret %s for helmChart without a repository",
                secret_name,
            )
            return step
        repository = replace(source.repository, secret_ref=secret_ref)
        return step.with_source(replace(source, repository=repository))
    # Inline content has no secret
    return step


def _inject_fetch_secrets(
    steps: list[FetchStep] | None, annotations: dict[str, str]
) -> list[FetchStep] | None:
    if steps is None:
        return None
    result = []
    for i, step in enumerate(steps):
        if (secret_name := annotations.get(fetch_secret_key(i))) is not None:
            _LOGGER.debug("Using secret %s for fetch step %d", secret_name, i)
            step = _with_fetch_secret(step, secret_name)
        result.append(step)
    return result


def _values_sources(secret_names: tuple[str, ...]) -> list[TemplateValuesSource]:
    return [
        TemplateValuesSource(secret_ref=TemplateValuesSourceRef(name=name))
        for name in secret_names
    ]


def _with_inline_paths(ytt: TemplateYtt, secret_names: tuple[str, ...]) -> TemplateYtt:
    """Add secrets as inline files of a ytt step, creating `inline` if needed."""
    inline = ytt.inline or FetchInline()
    sources = [
        InlineSource(secret_ref=InlineSourceRef(name=name)) for name in secret_names
    ]
    return replace(
        ytt, inline=replace(inline, paths_from=_extend(inline.paths_from, sources))
    )


def _inject_helm(
    helm: TemplateHelm, applied: _Applied, inputs: _InstallInputs
) -> tuple[TemplateHelm, _Applied]:
    if inputs.helm_name is not None:
        helm = replace(helm, name=inputs.helm_name)
    if inputs.helm_namespace is not None:
        helm = replace(helm, namespace=inputs.helm_namespace)
    if applied.values:
        return helm, applied
    sources = _values_sources(inputs.helm_values_secrets + inputs.values_secrets)
    helm = replace(helm, values_from=_extend(helm.values_from, sources))
    return helm, replace(applied, values=True)


def _inject_ytt(
    ytt: TemplateYtt, applied: _Applied, inputs: _InstallInputs
) -> tuple[TemplateYtt, _Applied]:
    if not applied.ytt_paths:
        applied = replace(applied, ytt_paths=True)
        if inputs.ytt_paths_secrets:
            ytt = _with_inline_paths(ytt, inputs.ytt_paths_secrets)
    if not applied.values:
        applied = replace(applied, values=True)
        if inputs.data_values_overlays:
            ytt = _with_inline_paths(ytt, inputs.values_secrets)
        else:
            sources = _values_sources(inputs.values_secrets)
            ytt = replace(ytt, values_from=_extend(ytt.values_from, sources))
    return ytt, applied


def _inject_template(
    step: TemplateStep, applied: _Applied, inputs: _InstallInputs
) -> tuple[TemplateStep, _Applied]:
    if step.helm_template is not None:
        helm, applied = _inject_helm(step.helm_template, applied, inputs)
        step = replace(step, helm_template=helm)
    if step.ytt is not None:
        ytt, applied = _inject_ytt(step.ytt, applied, inputs)
        step = replace(step, ytt=ytt)
    return step, applied


def _inject_templates(
    steps: list[TemplateStep] | None, inputs: _InstallInputs
) -> list[TemplateStep] | None:
    if steps is None:
        return None
    applied = _Applied()
    result = []
    for step in steps:
        step, applied = _inject_template(step, applied, inputs)
        result.append(step)
    return result


def new_app(
    existing_app: App | None,
    package_install: PackageInstall,
    package: Package,
    options: Options,
) -> App:
    """Return the desired App for a PackageInstall.

    Args:
        existing_app: The App currently stored, or None if there is none yet.
        package_install: The PackageInstall the App is built for.
        package: The Package version selected for the PackageInstall.
        options: Defaults and the scheme used for the owner reference.

    Raises:
        ConfigurationError: The PackageInstall cannot be set as the owner of
            the App.
    """
    desired = copy.deepcopy(existing_app) if existing_app is not None else App()

    if MANUALLY_CONTROLLED in (desired.annotations or {}):
        _LOGGER.debug(
            "App %s is manually controlled, skipping updates", desired.namespaced_name
        )
        return desired

    desired.name = package_install.name
    desired.namespace = package_install.namespace
    desired.annotations = {
        **(desired.annotations or {}),
        PACKAGE_REF_NAME: package.ref_name,
        PACKAGE_VERSION: package.version,
    }
    desired.spec = _install_spec(
        copy.deepcopy(package.template), package_install.spec, options
    )
    desired.owner_references = set_controller_reference(
        package_install, desired, options.scheme
    )

    desired.spec.fetch = _inject_fetch_secrets(
        desired.spec.fetch, package_install.annotations or {}
    )
    desired.spec.template = _inject_templates(
        desired.spec.template, _InstallInputs.from_package_install(package_install)
    )
    _LOGGER.debug(
        "Built App %s from Package %s", desired.namespaced_name, package.namespaced_name
    )
    return desired
