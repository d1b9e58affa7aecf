"""Test helpers for packageinstall tools."""
