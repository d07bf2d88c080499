"""
Defines the package version string.

This is the single source of truth for the version number, used by the
command line entry point and by packaging.
"""

__version__ = "0.4.0"
