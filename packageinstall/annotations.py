"""Annotations on a PackageInstall that customize the App built for it.

Some annotations may be repeated by adding a `.{suffix}` to the base key, for
example:

    ext.packaging.carvel.dev/ytt-paths-from-secret-name: base-overlays
    ext.packaging.carvel.dev/ytt-paths-from-secret-name.10-extra: extra
    ext.packaging.carvel.dev/ytt-paths-from-secret-name.20-last: last

The values are always returned sorted by suffix (the bare key first) so that
the App built from the same annotations is identical every time.
"""

from collections.abc import Iterable, Mapping
import logging

__all__ = [
    "MANUALLY_CONTROLLED",
    "HELM_TEMPLATE_NAME",
    "HELM_TEMPLATE_NAMESPACE",
    "YTT_PATHS_FROM_SECRET",
    "HELM_VALUES_FROM_SECRET",
    "YTT_DATA_VALUES_OVERLAYS",
    "PACKAGE_REF_NAME",
    "PACKAGE_VERSION",
    "fetch_secret_key",
    "parse_suffix",
    "index_suffixed",
    "ordered_secret_names",
]

_LOGGER = logging.getLogger(__name__)

MANUALLY_CONTROLLED = "ext.packaging.carvel.dev/manually-controlled"

HELM_TEMPLATE_NAME = "ext.packaging.carvel.dev/helm-template-name"
HELM_TEMPLATE_NAMESPACE = "ext.packaging.carvel.dev/helm-template-namespace"

YTT_PATHS_FROM_SECRET = "ext.packaging.carvel.dev/ytt-paths-from-secret-name"
HELM_VALUES_FROM_SECRET = (
    "ext.packaging.carvel.dev/helm-template-values-from-secret-name"
)

YTT_DATA_VALUES_OVERLAYS = "ext.packaging.carvel.dev/ytt-data-values-overlays"

FETCH_SECRET_NAME_FMT = "ext.packaging.carvel.dev/fetch-{index}-secret-name"

# Written on the App to record the Package it was built from.
PACKAGE_REF_NAME = "packaging.carvel.dev/package-ref-name"
PACKAGE_VERSION = "packaging.carvel.dev/package-version"


def fetch_secret_key(index: int) -> str:
    """Return the annotation naming the secret for the fetch step at `index`."""
    return FETCH_SECRET_NAME_FMT.format(index=index)


def parse_suffix(key: str, base_key: str) -> str | None:
    """Return the suffix of `key` relative to `base_key`.

    The bare base key has the empty suffix. Only the first `.` after the base
    key is a delimiter, so the suffix may itself contain dots. Returns None when
    the key is not a form of the base key.
    """
    if key == base_key:
        return ""
    prefix = f"{base_key}."
    if key.startswith(prefix) and len(key) > len(prefix):
        return key[len(prefix) :]
    return None


def index_suffixed(
    annotations: Mapping[str, str] | None,
    base_keys: Iterable[str],
) -> dict[str, dict[str, str]]:
    """Group annotation values by base key and then by suffix."""
    index: dict[str, dict[str, str]] = {base_key: {} for base_key in base_keys}
    for key, value in (annotations or {}).items():
        for base_key, by_suffix in index.items():
            if (suffix := parse_suffix(key, base_key)) is not None:
                by_suffix[suffix] = value
    return index


def ordered_secret_names(
    annotations: Mapping[str, str] | None, base_key: str
) -> list[str]:
    """Return the secret names for a suffixed annotation ordered by suffix."""
    by_suffix = index_suffixed(annotations, (base_key,))[base_key]
    names = [by_suffix[suffix] for suffix in sorted(by_suffix)]
    if names:
        _LOGGER.debug("Secrets from annotation %s: %s", base_key, names)
    return names
