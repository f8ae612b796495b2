"""
External tool invocations (bsdtar, fakeroot).

Only the filesystem-rooted Pacman build needs these. Each call is a blocking
subprocess with standardized language settings; a non-zero exit status is a
build error.
"""

import logging
import os
import subprocess
from pathlib import Path

from holo_build.core.errors import HoloBuildError, ToolError

logger = logging.getLogger(__name__)

MTREE_OPTIONS = "!all,use-set,type,uid,gid,mode,time,size,md5,sha256,link"


class ExternalTools:
    """
    Runs bsdtar, optionally wrapped in fakeroot so that archived files are
    recorded as owned by root.

    Tool paths default to the ``HOLO_BUILD_BSDTAR`` / ``HOLO_BUILD_FAKEROOT``
    environment variables, then to the plain command names.
    """

    def __init__(
        self,
        bsdtar: str | None = None,
        fakeroot: str | None = None,
        use_fakeroot: bool = True,
    ):
        self.bsdtar = bsdtar or os.environ.get("HOLO_BUILD_BSDTAR", "bsdtar")
        self.fakeroot = fakeroot or os.environ.get("HOLO_BUILD_FAKEROOT", "fakeroot")
        self.use_fakeroot = use_fakeroot

    def run(self, args: list[str], cwd: Path | str | None = None, privileged: bool = False) -> bytes:
        """Run a command and return its stdout."""
        command = list(args)
        if privileged and self.use_fakeroot:
            command = [self.fakeroot, "--", *command]

        env = dict(os.environ, LANG="C", LC_ALL="C")
        logger.debug(f"Running {' '.join(command)} in {cwd or os.getcwd()}")
        try:
            result = subprocess.run(command, cwd=cwd, env=env, capture_output=True, check=False)
        except FileNotFoundError as e:
            raise HoloBuildError(
                f"Cannot execute {command[0]}: {e.strerror}",
                "Install libarchive (bsdtar) and fakeroot, or build in memory",
            ) from e

        if result.returncode != 0:
            raise ToolError(command, result.returncode, result.stderr.decode("utf-8", errors="replace"))
        return result.stdout

    def bsdtar_version(self) -> str:
        """First line of ``bsdtar --version``, e.g. "bsdtar 3.7.2 - libarchive 3.7.2 ..."."""
        output = self.run([self.bsdtar, "--version"]).decode("utf-8", errors="replace")
        return output.strip().splitlines()[0] if output.strip() else self.bsdtar

    def write_mtree(self, root_path: Path, targets: list[str]) -> Path:
        """Write a gzip-compressed mtree manifest of ``targets`` to ``root_path/.MTREE``."""
        self.run(
            [self.bsdtar, "-czf", ".MTREE", "--format=mtree", f"--options={MTREE_OPTIONS}", *targets],
            cwd=root_path,
            privileged=True,
        )
        return root_path / ".MTREE"

    def create_package_archive(self, root_path: Path) -> bytes:
        """Return a .tar.xz of the contents of ``root_path`` without the leading "./"."""
        return self.run(
            [self.bsdtar, "-cJf", "-", "--strip-components", "1", "."],
            cwd=root_path,
            privileged=True,
        )
