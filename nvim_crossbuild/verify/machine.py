"""Binary header inspection for built artifacts.

This module handles:
- Reading the machine field of ELF and thin Mach-O headers
- Mapping target architectures to their exact machine tags
- Verifying a BuildArtifact against its TargetSpec

Verification compares header fields directly. The human-readable output
of file(1) is available for diagnostics only and never decides a verdict.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from nvim_crossbuild.errors import ArchitectureMismatchError, ArtifactFormatError
from nvim_crossbuild.types import Architecture, BuildArtifact, TargetSpec

if TYPE_CHECKING:
    from nvim_crossbuild.build.runner import CommandRunner

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
ELF_DATA_LSB = 1
ELF_DATA_MSB = 2
ELF_MACHINE_OFFSET = 18

EM_386 = 3
EM_ARM = 40
EM_X86_64 = 62
EM_AARCH64 = 183
EM_RISCV = 243

# Mach-O magic -> struct byte order for the header fields
MACHO_MAGICS = {
    b"\xfe\xed\xfa\xce": ">",
    b"\xce\xfa\xed\xfe": "<",
    b"\xfe\xed\xfa\xcf": ">",
    b"\xcf\xfa\xed\xfe": "<",
}
MACHO_FAT_MAGICS = {b"\xca\xfe\xba\xbe", b"\xbe\xba\xfe\xca"}

CPU_ARCH_ABI64 = 0x01000000
CPU_TYPE_X86 = 7
CPU_TYPE_ARM = 12
CPU_TYPE_X86_64 = CPU_TYPE_X86 | CPU_ARCH_ABI64
CPU_TYPE_ARM64 = CPU_TYPE_ARM | CPU_ARCH_ABI64

ELF_MACHINE_NAMES = {
    EM_386: "Intel 80386",
    EM_ARM: "ARM",
    EM_X86_64: "x86-64",
    EM_AARCH64: "ARM aarch64",
    EM_RISCV: "RISC-V",
}
MACHO_CPU_NAMES = {
    CPU_TYPE_X86: "i386",
    CPU_TYPE_ARM: "arm",
    CPU_TYPE_X86_64: "x86_64",
    CPU_TYPE_ARM64: "arm64",
}


@dataclass(frozen=True)
class MachineTag:
    """Machine identifier read from a binary header.

    Attributes:
        binary_format: 'elf' or 'macho'.
        value: Raw e_machine / cputype value.
    """

    binary_format: str
    value: int

    @property
    def name(self) -> str:
        names = ELF_MACHINE_NAMES if self.binary_format == "elf" else MACHO_CPU_NAMES
        return names.get(self.value, f"unknown({self.value:#x})")

    def __str__(self) -> str:
        return f"{self.binary_format}:{self.name}"


EXPECTED_MACHINE: dict[Architecture, MachineTag] = {
    Architecture.AMD64: MachineTag("elf", EM_X86_64),
    Architecture.AARCH64: MachineTag("elf", EM_AARCH64),
}

# Mach-O encodings of the same machines
MACHO_EQUIVALENTS: dict[Architecture, MachineTag] = {
    Architecture.AMD64: MachineTag("macho", CPU_TYPE_X86_64),
    Architecture.AARCH64: MachineTag("macho", CPU_TYPE_ARM64),
}


def parse_machine_tag(header: bytes) -> MachineTag:
    """Extract the machine tag from the first bytes of a binary.

    Args:
        header: At least the first 20 bytes of the file.

    Returns:
        MachineTag for the binary.

    Raises:
        ArtifactFormatError: If the header is not a supported binary format.
    """
    if header[:4] == ELF_MAGIC:
        if len(header) < ELF_MACHINE_OFFSET + 2:
            raise ArtifactFormatError("Truncated ELF header")
        data = header[5]
        if data == ELF_DATA_LSB:
            order = "<"
        elif data == ELF_DATA_MSB:
            order = ">"
        else:
            raise ArtifactFormatError(f"Invalid ELF data encoding: {data}")
        (machine,) = struct.unpack_from(f"{order}H", header, ELF_MACHINE_OFFSET)
        return MachineTag("elf", machine)

    magic = header[:4]
    if magic in MACHO_MAGICS:
        if len(header) < 8:
            raise ArtifactFormatError("Truncated Mach-O header")
        (cputype,) = struct.unpack_from(f"{MACHO_MAGICS[magic]}i", header, 4)
        return MachineTag("macho", cputype)
    if magic in MACHO_FAT_MAGICS:
        raise ArtifactFormatError("Universal Mach-O binaries carry several machines")

    raise ArtifactFormatError(f"Unrecognized binary format (magic {magic.hex()})")


def read_machine_tag(path: Path) -> MachineTag:
    """Read the machine tag of a binary file.

    Raises:
        ArtifactFormatError: If the file cannot be read or parsed.
    """
    try:
        with path.open("rb") as f:
            header = f.read(64)
    except OSError as e:
        raise ArtifactFormatError(f"Cannot read {path}: {e}") from e
    try:
        return parse_machine_tag(header)
    except ArtifactFormatError as e:
        raise ArtifactFormatError(f"{path}: {e}") from e


def expected_tags(architecture: Architecture) -> frozenset[MachineTag]:
    """All header encodings accepted for an architecture."""
    return frozenset({EXPECTED_MACHINE[architecture], MACHO_EQUIVALENTS[architecture]})


def architecture_for_tag(tag: MachineTag) -> Architecture | None:
    """Map a machine tag back to a supported architecture."""
    for architecture in Architecture:
        if tag in expected_tags(architecture):
            return architecture
    return None


def machine_matches(path: Path, architecture: Architecture) -> bool:
    """Whether the binary at path was built for architecture."""
    return read_machine_tag(path) in expected_tags(architecture)


def verify_artifact(artifact: BuildArtifact, spec: TargetSpec) -> BuildArtifact:
    """Verify that an artifact matches the target architecture.

    Args:
        artifact: Artifact produced by the main build.
        spec: Target the run was configured for.

    Returns:
        The artifact with detected_architecture set.

    Raises:
        ArchitectureMismatchError: If the machine tag differs from the target.
        ArtifactFormatError: If the binary cannot be parsed.
    """
    tag = read_machine_tag(artifact.binary_path)
    expected = EXPECTED_MACHINE[spec.architecture]
    logger.info(
        "Verifying %s: detected %s, expected %s",
        artifact.binary_path.name,
        tag,
        expected,
    )

    if tag not in expected_tags(spec.architecture):
        raise ArchitectureMismatchError(
            expected=str(expected),
            detected=str(tag),
            path=artifact.binary_path,
        )

    return artifact.with_detection(spec.architecture)


def describe_with_file(path: Path, runner: CommandRunner) -> str:
    """Return file(1)'s description of a binary for diagnostics."""
    result = runner.capture(["file", "-b", str(path)])
    return result.output.strip() if result.success else ""


__all__ = [
    "EM_AARCH64",
    "EM_X86_64",
    "EXPECTED_MACHINE",
    "MachineTag",
    "architecture_for_tag",
    "describe_with_file",
    "expected_tags",
    "machine_matches",
    "parse_machine_tag",
    "read_machine_tag",
    "verify_artifact",
]
