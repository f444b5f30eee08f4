"""Tests for deps/builder.py module.

Uses respx for source downloads and a mocked CommandRunner in place of
real compilers.
"""

import hashlib
import io
import json
import tarfile
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from nvim_crossbuild.deps.builder import (
    COMPLETE_MARKER,
    build_dependencies,
    compose_recipe_steps,
    expand_args,
    extract_source,
    fetch_source_archive,
    host_prefix_for,
    template_context,
)
from nvim_crossbuild.deps.io import parse_catalog_data
from nvim_crossbuild.deps.schema import DependencyRecipe
from nvim_crossbuild.errors import DependencyBuildError
from nvim_crossbuild.types import CommandResult, DependencyMode
from nvim_crossbuild.verify.machine import EM_AARCH64, EM_X86_64


def source_tarball(top: str = "pkg-1.0") -> bytes:
    """Build an in-memory .tar.gz with a single top-level directory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        data = b"project(pkg C)\n"
        info = tarfile.TarInfo(f"{top}/CMakeLists.txt")
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def recipe_data(name: str, **kwargs) -> dict:
    data = {
        "name": name,
        "version": "1.0",
        "url": f"https://example.com/{name}-1.0.tar.gz",
        "build_system": "cmake",
    }
    data.update(kwargs)
    return data


@pytest.fixture
def catalog():
    """Two target libraries, the second linking the first."""
    return parse_catalog_data(
        {
            "recipes": [
                recipe_data("libuv", library="uv"),
                recipe_data("luv", library="luv", depends_on=["libuv"]),
            ],
            "static_runtime_depends": ["libc6 (>= 2.31)"],
        }
    )


def mock_sources(catalog) -> None:
    for r in catalog.recipes:
        response = httpx.Response(200, content=source_tarball())
        respx.get(r.url).mock(return_value=response)


def fake_runner(make_elf, prefix, fail_on: str | None = None, machine=EM_AARCH64):
    """Runner that 'installs' a library on each install step."""
    runner = MagicMock()

    def run(cmd, log_name, cwd=None, env=None):
        name = log_name.removeprefix("deps-")
        if name == fail_on and cmd[:2] == ["cmake", "--build"]:
            return CommandResult(command=" ".join(cmd), exit_code=2, log_path=None)
        if cmd[:2] == ["cmake", "--install"]:
            lib = {"libuv": "uv", "luv": "luv"}[name]
            make_elf(prefix / "lib" / f"lib{lib}.so.1", machine)
        return CommandResult(command=" ".join(cmd), exit_code=0)

    runner.run.side_effect = run
    return runner


class TestTemplateContext:
    """Tests for placeholder expansion."""

    def test_target_context(self, cross_spec, staging_prefix):
        """Target recipes see the cross compiler and staging prefix."""
        ctx = template_context(cross_spec, staging_prefix, jobs=4)

        assert ctx["cc"] == "aarch64-linux-gnu-gcc"
        assert ctx["host_cc"] == "gcc"
        assert ctx["prefix"] == str(staging_prefix)
        assert ctx["cross_prefix"] == "aarch64-linux-gnu-"
        assert ctx["ar"] == "aarch64-linux-gnu-ar"
        assert ctx["jobs"] == "4"

    def test_host_context(self, cross_spec, staging_prefix):
        """Host recipes see the host compiler and host prefix."""
        ctx = template_context(cross_spec, staging_prefix, host=True)

        assert ctx["cc"] == "gcc"
        assert ctx["prefix"] == str(host_prefix_for(staging_prefix))
        assert ctx["cross_prefix"] == ""

    def test_expand_args(self):
        """Placeholders are substituted in every argument."""
        assert expand_args(["CC={cc}", "-O2"], {"cc": "gcc"}) == ["CC=gcc", "-O2"]


class TestComposeRecipeSteps:
    """Tests for compose_recipe_steps."""

    def test_cmake_target_recipe(self, tmp_path, cross_spec, staging_prefix):
        """Target cmake recipes use the toolchain file and the staging policy."""
        recipe = DependencyRecipe(**recipe_data("libuv", cmake_args=["-DX={prefix}"]))
        toolchain = tmp_path / "toolchain.cmake"

        steps = compose_recipe_steps(
            recipe,
            cross_spec,
            staging_prefix,
            tmp_path / "src",
            tmp_path / "build",
            toolchain_file=toolchain,
        )

        assert [s.name for s in steps] == ["configure", "build", "install"]
        configure = steps[0].command
        assert f"-DCMAKE_TOOLCHAIN_FILE={toolchain}" in configure
        assert f"-DCMAKE_INSTALL_PREFIX={staging_prefix}" in configure
        assert "-DCMAKE_FIND_ROOT_PATH_MODE_LIBRARY=ONLY" in configure
        assert f"-DX={staging_prefix}" in configure
        assert steps[0].env["PKG_CONFIG_PATH"] == ""

    def test_cmake_host_recipe(self, tmp_path, cross_spec, staging_prefix):
        """Host recipes are built with the host compiler into the host prefix."""
        recipe = DependencyRecipe(**recipe_data("gen", host=True))

        steps = compose_recipe_steps(
            recipe, cross_spec, staging_prefix, tmp_path / "src", tmp_path / "build"
        )

        configure = steps[0].command
        assert "-DCMAKE_C_COMPILER=gcc" in configure
        assert "-DCMAKE_C_COMPILER=aarch64-linux-gnu-gcc" not in configure
        prefix_arg = f"-DCMAKE_INSTALL_PREFIX={host_prefix_for(staging_prefix)}"
        assert prefix_arg in configure
        assert not any("FIND_ROOT_PATH" in arg for arg in configure)
        assert steps[0].env == {}

    def test_make_recipe_uses_both_compilers(
        self, tmp_path, cross_spec, staging_prefix
    ):
        """LuaJIT-style make recipes get HOST_CC and CROSS on the command line."""
        recipe = DependencyRecipe(
            **recipe_data(
                "luajit",
                build_system="make",
                needs_host_tools=True,
                make_args=["HOST_CC={host_cc}", "CROSS={cross_prefix}"],
                install_args=["install", "PREFIX={prefix}"],
            )
        )

        steps = compose_recipe_steps(
            recipe,
            cross_spec,
            staging_prefix,
            tmp_path / "src",
            tmp_path / "build",
            jobs=2,
        )

        assert steps[0].command == [
            "make",
            "-j2",
            "HOST_CC=gcc",
            "CROSS=aarch64-linux-gnu-",
        ]
        assert steps[1].command == ["make", "install", f"PREFIX={staging_prefix}"]
        assert steps[0].cwd == tmp_path / "src"


class TestFetchSourceArchive:
    """Tests for fetch_source_archive."""

    @respx.mock
    def test_download(self, tmp_path):
        """Archives are downloaded and checked against sha256."""
        content = source_tarball()
        recipe = DependencyRecipe(
            **recipe_data("libuv", sha256=hashlib.sha256(content).hexdigest())
        )
        respx.get(recipe.url).mock(return_value=httpx.Response(200, content=content))

        with httpx.Client() as client:
            path = fetch_source_archive(client, recipe, tmp_path)

        assert path.read_bytes() == content
        assert not path.with_suffix(path.suffix + ".tmp").exists()

    @respx.mock
    def test_checksum_mismatch(self, tmp_path):
        """A wrong checksum raises and leaves no file behind."""
        recipe = DependencyRecipe(**recipe_data("libuv", sha256="0" * 64))
        respx.get(recipe.url).mock(return_value=httpx.Response(200, content=b"x"))

        with httpx.Client() as client, pytest.raises(DependencyBuildError) as exc_info:
            fetch_source_archive(client, recipe, tmp_path)

        assert exc_info.value.dependency == "libuv"
        assert "Checksum mismatch" in exc_info.value.message
        assert list(tmp_path.iterdir()) == []

    @respx.mock
    def test_http_error(self, tmp_path):
        """HTTP errors raise DependencyBuildError."""
        recipe = DependencyRecipe(**recipe_data("libuv"))
        respx.get(recipe.url).mock(return_value=httpx.Response(404))

        with httpx.Client() as client, pytest.raises(DependencyBuildError) as exc_info:
            fetch_source_archive(client, recipe, tmp_path)

        assert "404" in exc_info.value.message

    def test_reuses_existing(self, tmp_path):
        """An existing archive is reused without a request."""
        recipe = DependencyRecipe(**recipe_data("libuv"))
        existing = tmp_path / recipe.archive_filename
        existing.write_bytes(b"cached")
        client = MagicMock()

        assert fetch_source_archive(client, recipe, tmp_path) == existing
        client.stream.assert_not_called()


class TestExtractSource:
    """Tests for extract_source."""

    def test_single_top_level_dir(self, tmp_path):
        """The archive's top-level directory is returned."""
        archive = tmp_path / "pkg.tar.gz"
        archive.write_bytes(source_tarball("pkg-1.0"))

        src = extract_source(archive, tmp_path / "out", "pkg")

        assert src == tmp_path / "out" / "pkg-1.0"
        assert (src / "CMakeLists.txt").is_file()

    def test_path_traversal_rejected(self, tmp_path):
        """Members escaping the destination are refused."""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            info = tarfile.TarInfo("../evil.txt")
            info.size = 1
            tar.addfile(info, io.BytesIO(b"x"))
        archive = tmp_path / "evil.tar.gz"
        archive.write_bytes(buffer.getvalue())

        with pytest.raises(DependencyBuildError):
            extract_source(archive, tmp_path / "out", "evil")

        assert not (tmp_path / "evil.txt").exists()

    def test_corrupt_archive(self, tmp_path):
        """Unreadable archives raise DependencyBuildError."""
        archive = tmp_path / "bad.tar.gz"
        archive.write_bytes(b"not a tarball")

        with pytest.raises(DependencyBuildError):
            extract_source(archive, tmp_path / "out", "bad")


class TestBuildDependencies:
    """Tests for build_dependencies."""

    @respx.mock
    def test_success(self, tmp_path, cross_spec, staging_prefix, catalog, make_elf):
        """Every recipe is built and the completion marker written."""
        mock_sources(catalog)
        runner = fake_runner(make_elf, staging_prefix)

        with httpx.Client() as client:
            deps = build_dependencies(
                cross_spec, catalog, tmp_path / "deps", runner, client
            )

        assert deps.mode is DependencyMode.BUILD_FROM_SOURCE
        assert deps.prefix == staging_prefix
        assert set(deps.entries) == {"libuv", "luv"}
        assert deps.runtime_depends == ("libc6 (>= 2.31)",)
        marker = json.loads((staging_prefix / COMPLETE_MARKER).read_text())
        assert marker == {"libuv": "1.0", "luv": "1.0"}

    @respx.mock
    def test_failure_removes_prefix(
        self, tmp_path, cross_spec, staging_prefix, catalog, make_elf
    ):
        """A failing recipe leaves no staging prefix and returns nothing."""
        mock_sources(catalog)
        runner = fake_runner(make_elf, staging_prefix, fail_on="luv")

        with httpx.Client() as client, pytest.raises(DependencyBuildError) as exc_info:
            build_dependencies(cross_spec, catalog, tmp_path / "deps", runner, client)

        assert exc_info.value.dependency == "luv"
        assert exc_info.value.code == "dependency_build_failed"
        assert not staging_prefix.exists()

    @respx.mock
    def test_host_library_rejected(
        self, tmp_path, cross_spec, staging_prefix, catalog, make_elf
    ):
        """A library installed for the host architecture fails the stage."""
        mock_sources(catalog)
        runner = fake_runner(make_elf, staging_prefix, machine=EM_X86_64)

        with httpx.Client() as client, pytest.raises(DependencyBuildError):
            build_dependencies(cross_spec, catalog, tmp_path / "deps", runner, client)

        assert not staging_prefix.exists()

    def test_stale_prefix_is_wiped(
        self, tmp_path, cross_spec, staging_prefix, catalog
    ):
        """Leftovers of an earlier run never survive into a new stage."""
        staging_prefix.mkdir(parents=True)
        (staging_prefix / "stale.txt").write_text("old")
        client = MagicMock()
        client.stream.side_effect = httpx.ConnectError("offline")

        with pytest.raises(DependencyBuildError):
            build_dependencies(
                cross_spec, catalog, tmp_path / "deps", MagicMock(), client
            )

        assert not staging_prefix.exists()

    def test_native_spec_rejected(self, tmp_path, native_spec, catalog):
        """The stage only runs in build-from-source mode."""
        with pytest.raises(ValueError):
            build_dependencies(
                native_spec, catalog, tmp_path, MagicMock(), MagicMock()
            )
