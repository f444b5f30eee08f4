"""Build execution module.

This module handles:
- Running external tools with per-stage logs and timeouts
- Configuring and compiling the main Neovim build
"""

# Lazy imports for submodules to avoid circular imports
# Access via nvim_crossbuild.build.runner, etc.
