"""
Generator Protocol — Base interface for all package format generators.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from holo_build.models.package import Package


@runtime_checkable
class Generator(Protocol):
    """
    Protocol that all package format generators must implement.

    One generator exists for every supported package format. The build
    orchestrator prefers build_in_memory() and falls back to build() on a
    materialized file tree when the former raises UnsupportedBuildMethodError.
    Both must produce identical output on every run when ``reproducible`` is
    set: no timestamps, host names or tool versions.
    """

    def validate(self, package: Package) -> list[str]:
        """
        Check format-specific restrictions (e.g. permitted characters in names
        and versions). Returns every violation; an empty list means valid.
        """
        ...

    def build_in_memory(self, package: Package, reproducible: bool) -> bytes:
        """Build the package from the in-memory file tree."""
        ...

    def build(self, package: Package, root_path: Path, reproducible: bool) -> bytes:
        """Build the package from a directory populated with the file tree."""
        ...

    def recommended_file_name(self, package: Package) -> str:
        """
        Plain file name (no directory part) following the format's naming
        conventions. Only called after a successful build.
        """
        ...
