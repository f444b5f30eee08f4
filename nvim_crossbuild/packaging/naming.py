"""Package filenames and release tags.

Names follow a fixed layout:
- canonical:  <product>-<channel>-linux-<arch>.<ext>
- versioned:  <product>-<version>-<channel>-linux-<arch>.<ext>
- tag:        <product>-v<version>-<channel>-linux-<arch>
"""

from nvim_crossbuild.types import Architecture

DEFAULT_EXTENSION = "deb"


def _arch(architecture: Architecture | str) -> str:
    return architecture.value if isinstance(architecture, Architecture) else architecture


def canonical_stem(product: str, channel: str, architecture: Architecture | str) -> str:
    return f"{product}-{channel}-linux-{_arch(architecture)}"


def canonical_package_name(
    product: str,
    channel: str,
    architecture: Architecture | str,
    ext: str = DEFAULT_EXTENSION,
) -> str:
    """Architecture-only package filename, e.g. nvim-stable-linux-amd64.deb."""
    return f"{canonical_stem(product, channel, architecture)}.{ext}"


def versioned_package_name(
    product: str,
    version: str,
    channel: str,
    architecture: Architecture | str,
    ext: str = DEFAULT_EXTENSION,
) -> str:
    """Version-qualified filename used for published assets."""
    return f"{product}-{version}-{channel}-linux-{_arch(architecture)}.{ext}"


def release_tag(
    product: str,
    version: str,
    channel: str,
    architecture: Architecture | str,
) -> str:
    """Release tag, e.g. nvim-v0.10.2-stable-linux-aarch64."""
    return f"{product}-v{version}-{channel}-linux-{_arch(architecture)}"


def release_display_name(
    product: str,
    version: str,
    channel: str,
    architecture: Architecture | str,
) -> str:
    return f"{product} v{version} ({channel}, linux {_arch(architecture)})"


__all__ = [
    "DEFAULT_EXTENSION",
    "canonical_package_name",
    "canonical_stem",
    "release_display_name",
    "release_tag",
    "versioned_package_name",
]
