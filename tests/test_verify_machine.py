"""Tests for verify/machine.py module.

Uses synthetic ELF and Mach-O headers instead of real binaries.
"""

import struct
from unittest.mock import MagicMock

import pytest

from nvim_crossbuild.errors import ArchitectureMismatchError, ArtifactFormatError
from nvim_crossbuild.types import Architecture, BuildArtifact, CommandResult
from nvim_crossbuild.verify.machine import (
    CPU_TYPE_ARM64,
    EM_386,
    EM_AARCH64,
    EM_X86_64,
    EXPECTED_MACHINE,
    MachineTag,
    architecture_for_tag,
    describe_with_file,
    machine_matches,
    parse_machine_tag,
    read_machine_tag,
    verify_artifact,
)


def macho_header(cputype: int) -> bytes:
    return b"\xcf\xfa\xed\xfe" + struct.pack("<i", cputype) + b"\x00" * 24


def artifact_for(path) -> BuildArtifact:
    return BuildArtifact(
        binary_path=path, size_bytes=path.stat().st_size, build_dir=path.parent
    )


class TestParseMachineTag:
    """Tests for parse_machine_tag."""

    def test_elf_x86_64(self, make_elf_header):
        """LSB ELF headers should yield EM_X86_64."""
        assert parse_machine_tag(make_elf_header(EM_X86_64)) == MachineTag("elf", 62)

    def test_elf_aarch64(self, make_elf_header):
        """LSB ELF headers should yield EM_AARCH64."""
        assert parse_machine_tag(make_elf_header(EM_AARCH64)) == MachineTag("elf", 183)

    def test_elf_big_endian(self, make_elf_header):
        """MSB ELF headers should be decoded with big-endian byte order."""
        header = make_elf_header(EM_AARCH64, msb=True)
        assert parse_machine_tag(header).value == EM_AARCH64

    def test_macho(self):
        """Thin Mach-O headers should yield the cputype."""
        tag = parse_machine_tag(macho_header(CPU_TYPE_ARM64))
        assert tag == MachineTag("macho", CPU_TYPE_ARM64)
        assert tag.name == "arm64"

    def test_fat_macho_rejected(self):
        """Universal binaries carry several machines and are rejected."""
        with pytest.raises(ArtifactFormatError):
            parse_machine_tag(b"\xca\xfe\xba\xbe" + b"\x00" * 28)

    def test_script_rejected(self):
        """Non-binary files should raise ArtifactFormatError."""
        with pytest.raises(ArtifactFormatError):
            parse_machine_tag(b"#!/bin/sh\necho hi\n")

    def test_truncated_elf(self):
        """Headers shorter than e_machine should be rejected."""
        with pytest.raises(ArtifactFormatError):
            parse_machine_tag(b"\x7fELF\x02\x01")

    def test_invalid_data_encoding(self, make_elf_header):
        """EI_DATA values other than LSB/MSB should be rejected."""
        header = bytearray(make_elf_header(EM_X86_64))
        header[5] = 7
        with pytest.raises(ArtifactFormatError):
            parse_machine_tag(bytes(header))


class TestReadMachineTag:
    """Tests for read_machine_tag."""

    def test_missing_file(self, tmp_path):
        """Unreadable files should raise ArtifactFormatError."""
        with pytest.raises(ArtifactFormatError):
            read_machine_tag(tmp_path / "nvim")

    def test_reads_file(self, tmp_path, make_elf):
        """The tag should be read from the file header."""
        path = make_elf(tmp_path / "nvim", EM_AARCH64)
        assert read_machine_tag(path).value == EM_AARCH64


class TestMachineMatches:
    """machine_matches is true iff the binary's tag is the expected tag."""

    @pytest.mark.parametrize("machine", [EM_386, EM_X86_64, EM_AARCH64, 0x1234])
    @pytest.mark.parametrize("architecture", list(Architecture))
    def test_iff_property(self, tmp_path, make_elf, machine, architecture):
        """The predicate should agree with a direct tag comparison."""
        path = make_elf(tmp_path / "bin", machine)
        expected = EXPECTED_MACHINE[architecture].value == machine
        assert machine_matches(path, architecture) is expected

    def test_architecture_for_tag(self):
        """Known tags map back to their architecture."""
        assert architecture_for_tag(MachineTag("elf", EM_X86_64)) is Architecture.AMD64
        assert (
            architecture_for_tag(MachineTag("macho", CPU_TYPE_ARM64))
            is Architecture.AARCH64
        )
        assert architecture_for_tag(MachineTag("elf", EM_386)) is None


class TestVerifyArtifact:
    """Tests for verify_artifact."""

    def test_native_match(self, tmp_path, make_elf, native_spec):
        """An x86-64 binary verifies against a native target."""
        path = make_elf(tmp_path / "bin" / "nvim", EM_X86_64)

        verified = verify_artifact(artifact_for(path), native_spec)

        assert verified.detected_architecture is Architecture.AMD64

    def test_cross_match(self, tmp_path, make_elf, cross_spec):
        """An aarch64 binary verifies against a cross target."""
        path = make_elf(tmp_path / "bin" / "nvim", EM_AARCH64)

        verified = verify_artifact(artifact_for(path), cross_spec)

        assert verified.detected_architecture is Architecture.AARCH64

    def test_host_binary_for_cross_target(self, tmp_path, make_elf, cross_spec):
        """A host-architecture binary must fail a cross verification."""
        path = make_elf(tmp_path / "bin" / "nvim", EM_X86_64)

        with pytest.raises(ArchitectureMismatchError) as exc_info:
            verify_artifact(artifact_for(path), cross_spec)

        assert exc_info.value.code == "architecture_mismatch"
        assert "aarch64" in exc_info.value.expected
        assert "x86-64" in exc_info.value.detected


class TestDescribeWithFile:
    """Tests for describe_with_file."""

    def test_returns_file_output(self, tmp_path):
        """file(1) output should be returned stripped."""
        runner = MagicMock()
        runner.capture.return_value = CommandResult(
            command="file", exit_code=0, output="ELF 64-bit LSB pie executable\n"
        )

        assert describe_with_file(tmp_path / "nvim", runner) == (
            "ELF 64-bit LSB pie executable"
        )

    def test_failure_gives_empty(self, tmp_path):
        """A failing file(1) gives no description."""
        runner = MagicMock()
        runner.capture.return_value = CommandResult(command="file", exit_code=1)

        assert describe_with_file(tmp_path / "nvim", runner) == ""
