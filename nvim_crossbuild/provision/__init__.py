"""Host provisioning module.

This module handles:
- Installing host build tools and the cross toolchain with apt
- Cloning the source tree for the main build
"""

from nvim_crossbuild.provision.apt import (
    CROSS_TOOLCHAIN_PACKAGES,
    HOST_PACKAGES,
    AptPackageManager,
    provision,
    required_packages,
)
from nvim_crossbuild.provision.source import checkout_source, source_revision

__all__ = [
    "CROSS_TOOLCHAIN_PACKAGES",
    "HOST_PACKAGES",
    "AptPackageManager",
    "checkout_source",
    "provision",
    "required_packages",
    "source_revision",
]
