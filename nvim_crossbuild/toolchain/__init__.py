"""Target toolchain module.

This module handles:
- Resolving a selector into a TargetSpec
- The cross find-root policy for CMake
- Writing CMake toolchain files
"""

from nvim_crossbuild.toolchain.resolver import parse_selector, resolve_target

__all__ = ["parse_selector", "resolve_target"]
