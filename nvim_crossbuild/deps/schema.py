"""Pydantic models for the dependency catalog.

The catalog lists every library the main build needs, in build order,
with enough information to either resolve it from system packages
(native runs) or build it from source into a staging prefix (cross runs).

Argument lists may use these placeholders, expanded per recipe:
{prefix}, {host_prefix}, {cc}, {cxx}, {host_cc}, {host_cxx},
{cross_prefix}, {ar}, {system_processor}, {jobs}, {nvim_source}.
"""

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nvim_crossbuild.types import DependencyMode

RECIPE_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.\-]*$")
SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")
PLACEHOLDER_PATTERN = re.compile(r"\{([a-z_]+)\}")

TEMPLATE_VARIABLES = frozenset(
    {
        "prefix",
        "host_prefix",
        "cc",
        "cxx",
        "host_cc",
        "host_cxx",
        "cross_prefix",
        "ar",
        "system_processor",
        "jobs",
        "nvim_source",
    }
)


def _check_placeholders(values: list[str]) -> list[str]:
    for value in values:
        for name in PLACEHOLDER_PATTERN.findall(value):
            if name not in TEMPLATE_VARIABLES:
                raise ValueError(f"unknown placeholder '{{{name}}}' in '{value}'")
    return values


class DependencyRecipe(BaseModel):
    """Schema for one dependency.

    Attributes:
        name: Stable identifier, also the key in the DependencySet.
        version: Upstream version built from source.
        url: Source archive URL.
        sha256: Optional expected checksum of the archive.
        build_system: 'cmake' or 'make'.
        cmake_lists: CMakeLists.txt replacement, relative to the Neovim source.
        cmake_args: Extra configure arguments (cmake recipes).
        make_args: Arguments for the build invocation (make recipes).
        install_args: Arguments for the install invocation (make recipes).
        host: Build for the host (a build-time tool) instead of the target.
        needs_host_tools: The build compiles helper programs that run on
            the host while producing target code.
        library: Link name verified in the prefix after install (e.g. 'uv').
        system_package: Debian development package for native runs.
        runtime_package: Debian runtime package for the final package's Depends.
        depends_on: Earlier recipes this one links against.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=64)
    version: str = Field(min_length=1, max_length=64)
    url: str = Field(min_length=1)
    sha256: str | None = None
    build_system: Literal["cmake", "make"]
    cmake_lists: str | None = None
    cmake_args: list[str] = Field(default_factory=list)
    make_args: list[str] = Field(default_factory=list)
    install_args: list[str] = Field(default_factory=lambda: ["install"])
    host: bool = False
    needs_host_tools: bool = False
    library: str | None = None
    system_package: str | None = None
    runtime_package: str | None = None
    depends_on: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is a lowercase identifier."""
        if not RECIPE_NAME_PATTERN.match(v):
            raise ValueError(f"invalid recipe name '{v}'")
        return v

    @field_validator("sha256")
    @classmethod
    def validate_sha256(cls, v: str | None) -> str | None:
        """Validate sha256 is a lowercase hex digest."""
        if v is None:
            return v
        v = v.lower()
        if not SHA256_PATTERN.match(v):
            raise ValueError("sha256 must be 64 hex characters")
        return v

    @field_validator("cmake_args", "make_args", "install_args")
    @classmethod
    def validate_placeholders(cls, v: list[str]) -> list[str]:
        """Validate argument templates only use known placeholders."""
        return _check_placeholders(v)

    @model_validator(mode="after")
    def validate_build_system(self) -> "DependencyRecipe":
        """Reject settings that do not apply to the build system."""
        if self.build_system == "make" and (self.cmake_args or self.cmake_lists):
            raise ValueError("cmake_args/cmake_lists require build_system 'cmake'")
        if self.host and self.runtime_package:
            raise ValueError("host tools cannot contribute runtime packages")
        return self

    @property
    def archive_filename(self) -> str:
        """Filename used for the downloaded source archive."""
        tail = self.url.rsplit("/", 1)[-1] or "source.tar.gz"
        return f"{self.name}-{self.version}-{tail}"


class DependencyCatalog(BaseModel):
    """Ordered list of dependency recipes.

    Attributes:
        recipes: Recipes in build order.
        main_cmake_args: Extra configure arguments for the main build of
            build-from-source runs.
        static_runtime_depends: Depends entries for packages linked against
            the staging prefix.
    """

    model_config = ConfigDict(extra="forbid")

    recipes: list[DependencyRecipe] = Field(min_length=1)
    main_cmake_args: list[str] = Field(default_factory=list)
    static_runtime_depends: list[str] = Field(default_factory=list)

    @field_validator("main_cmake_args")
    @classmethod
    def validate_placeholders(cls, v: list[str]) -> list[str]:
        """Validate argument templates only use known placeholders."""
        return _check_placeholders(v)

    @model_validator(mode="after")
    def validate_order(self) -> "DependencyCatalog":
        """Validate names are unique and dependencies come first."""
        seen: set[str] = set()
        for recipe in self.recipes:
            if recipe.name in seen:
                raise ValueError(f"duplicate recipe '{recipe.name}'")
            for dep in recipe.depends_on:
                if dep not in seen:
                    raise ValueError(
                        f"recipe '{recipe.name}' depends on '{dep}', "
                        "which is unknown or listed later"
                    )
            seen.add(recipe.name)
        return self

    def names(self) -> list[str]:
        return [r.name for r in self.recipes]

    def get(self, name: str) -> DependencyRecipe:
        """Return a recipe by name.

        Raises:
            KeyError: If no recipe has that name.
        """
        for recipe in self.recipes:
            if recipe.name == name:
                return recipe
        raise KeyError(name)

    def required_for(self, mode: DependencyMode) -> list[DependencyRecipe]:
        """Recipes the main build needs in a given dependency mode.

        Host build tools only exist for build-from-source runs; native
        runs take their tools from the system.
        """
        if mode is DependencyMode.BUILD_FROM_SOURCE:
            return list(self.recipes)
        return [r for r in self.recipes if not r.host]


__all__ = [
    "TEMPLATE_VARIABLES",
    "DependencyCatalog",
    "DependencyRecipe",
]
