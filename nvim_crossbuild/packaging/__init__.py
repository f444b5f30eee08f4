"""Debian packaging module.

This module handles:
- Package filenames and release tags
- CPack DEB assembly
- Package manifests
"""
