"""
Build Orchestrator — turns a Package into a package file.

Normalizes the package model (implicit Holo dependencies, deferred ownership),
drives a Generator through the in-memory or the filesystem-rooted build, and
writes the result to stdout or into the working directory.
"""

import logging
import re
import shutil
import sys
from pathlib import Path
from typing import BinaryIO

from holo_build.core.errors import PackageValidationError, UnexpectedFileNameError, UnsupportedBuildMethodError
from holo_build.generators.base import Generator
from holo_build.models.filesystem import FSDirectory, FSRegularFile, reset_timestamps
from holo_build.models.package import HOLO_PLUGIN_PREFIX, Package, PackageRelation

logger = logging.getLogger(__name__)

HOLO_ACTIVATION_COMMAND = "holo apply\n"


def add_holo_integration(pkg: Package) -> set[str]:
    """
    Add a requirement on holo-<plugin> for every Holo plugin that provisions
    files in this package, and run ``holo apply`` during setup and cleanup.

    Returns the detected plugin IDs.
    """
    plugins = set()
    for path, node in pkg.walk_fs():
        if not isinstance(node, (FSDirectory, FSRegularFile)):
            continue
        # parents created only to hold other nodes (e.g. symlinks) do not count
        if isinstance(node, FSDirectory) and node.implicit:
            continue
        if path.startswith(HOLO_PLUGIN_PREFIX):
            # /usr/share/holo/<plugin>/...
            parts = path.split("/")
            if len(parts) > 4 and parts[4]:
                plugins.add(parts[4])

    if not plugins:
        return plugins

    for plugin_id in sorted(plugins):
        dep_name = f"holo-{plugin_id}"
        if not pkg.has_requirement(dep_name):
            pkg.requires.append(PackageRelation(related_package=dep_name))
            logger.debug(f"Added implicit requirement on {dep_name}")

    pkg.setup_script = HOLO_ACTIVATION_COMMAND + pkg.setup_script
    pkg.cleanup_script = HOLO_ACTIVATION_COMMAND + pkg.cleanup_script
    return plugins


def postpone_unmaterializable_metadata(pkg: Package) -> str:
    """
    Move owners and groups given by name out of the file tree and into the
    setup script, since their numeric IDs are unknown at build time.

    Returns the chown/chgrp directives that were prepended.
    """
    directives = ""
    for path, node in pkg.walk_fs():
        if isinstance(node, (FSDirectory, FSRegularFile)):
            directives += node.metadata.postpone_unmaterializable(path)

    # ownership must be correct before the actual setup script runs
    pkg.setup_script = directives + pkg.setup_script
    return directives


class PackageBuilder:
    """
    Builds packages with a single Generator.

    The materialized build root (for generators that cannot build in memory)
    is created below ``work_dir``, which is also where package files are
    written. One builder process per working directory at a time.
    """

    ROOT_PREFIX = "holo-build"

    def __init__(self, generator: Generator, work_dir: Path = Path("."), stdout: BinaryIO | None = None):
        self.generator = generator
        self.work_dir = Path(work_dir)
        self.stdout = stdout

    def build(self, package: Package, to_stdout: bool = False, reproducible: bool = False) -> Path | None:
        """
        Build ``package`` and write it out.

        Returns the path of the written package file, or None when the package
        was written to stdout. The package model is modified in place.
        """
        errors = package.validate() + self.generator.validate(package)
        if errors:
            raise PackageValidationError(errors)

        add_holo_integration(package)
        postpone_unmaterializable_metadata(package)

        try:
            pkg_bytes = self.generator.build_in_memory(package, reproducible)
        except UnsupportedBuildMethodError:
            logger.debug("In-memory build not supported, building from materialized tree")
            pkg_bytes = self._build_from_filesystem(package, reproducible)

        return self._write_output(package, pkg_bytes, to_stdout)

    def root_path_for(self, package: Package) -> Path:
        # a name the user can easily find and inspect if the build fails
        return self.work_dir / f"{self.ROOT_PREFIX}-{package.name}-{package.version}"

    def _build_from_filesystem(self, package: Package, reproducible: bool) -> bytes:
        root_path = self.root_path_for(package)

        if root_path.is_symlink() or root_path.is_file():
            logger.info(f"Removing stale file {root_path}")
            root_path.unlink()
        elif root_path.exists():
            logger.info(f"Removing stale build directory {root_path}")
            shutil.rmtree(root_path)

        package.fs_root.materialize(str(root_path))
        if reproducible:
            reset_timestamps(str(root_path))

        # on failure, the root stays behind for inspection
        pkg_bytes = self.generator.build(package, root_path, reproducible)

        shutil.rmtree(root_path)
        return pkg_bytes

    def _write_output(self, package: Package, pkg_bytes: bytes, to_stdout: bool) -> Path | None:
        if to_stdout:
            stream = self.stdout or sys.stdout.buffer
            stream.write(pkg_bytes)
            stream.flush()
            return None

        file_name = self.generator.recommended_file_name(package)
        if not file_name or re.search(r"[/\s]", file_name):
            raise UnexpectedFileNameError(file_name)

        path = self.work_dir / file_name
        with open(path, "wb") as f:
            f.write(pkg_bytes)
        logger.info(f"Wrote {path} ({len(pkg_bytes)} bytes)")
        return path
