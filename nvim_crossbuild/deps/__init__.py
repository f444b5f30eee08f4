"""Dependency catalog and dependency stage."""
