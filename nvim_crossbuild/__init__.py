"""nvim-crossbuild - Build orchestration for Neovim Debian packages.

This package sequences provisioning, toolchain resolution, dependency
builds, the main CMake build, binary verification, Debian packaging and
GitHub release publishing for native (amd64) and cross (aarch64) targets.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
