"""Shared fixtures for nvim_crossbuild tests."""

import struct
from pathlib import Path

import pytest

from nvim_crossbuild.toolchain.resolver import resolve_target
from nvim_crossbuild.types import Selector, TargetSpec


def elf_header(machine: int, msb: bool = False) -> bytes:
    """Build a minimal 64-bit ELF header for the given e_machine."""
    order = ">" if msb else "<"
    ident = b"\x7fELF" + bytes([2, 2 if msb else 1, 1]) + b"\x00" * 9
    return ident + struct.pack(f"{order}HH", 2, machine) + b"\x00" * 44


def write_elf(path: Path, machine: int, msb: bool = False) -> Path:
    """Write a fake ELF binary to path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(elf_header(machine, msb=msb))
    return path


@pytest.fixture
def native_spec() -> TargetSpec:
    """TargetSpec for a native amd64 run."""
    return resolve_target(Selector.NATIVE)


@pytest.fixture
def staging_prefix(tmp_path) -> Path:
    """Staging prefix path for cross runs."""
    return tmp_path / "staging"


@pytest.fixture
def cross_spec(staging_prefix) -> TargetSpec:
    """TargetSpec for a cross aarch64 run staged under tmp_path."""
    return resolve_target(Selector.CROSS, staging_prefix=staging_prefix)


@pytest.fixture
def make_elf_header():
    """Factory for synthetic ELF headers."""
    return elf_header


@pytest.fixture
def make_elf():
    """Factory writing synthetic ELF binaries."""
    return write_elf
