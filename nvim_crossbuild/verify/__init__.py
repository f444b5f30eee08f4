"""Artifact verification module.

Reads the machine tag of built binaries and checks it against the
target architecture.
"""

from nvim_crossbuild.verify.machine import read_machine_tag, verify_artifact

__all__ = ["read_machine_tag", "verify_artifact"]
