"""
Library for synthesizing kapp-controller App resources from PackageInstalls.
"""

__all__ = [
    "annotations",
    "app",
    "config",
    "controller",
    "manifest",
    "scheme",
    "store",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
