"""
Pacman Generator — packages for Arch Linux and derivatives.

A pacman package is a compressed tar archive of the file tree with three
metadata files at its root: .PKGINFO (package metadata), .INSTALL (optional
lifecycle hooks) and .MTREE (a gzip-compressed manifest of all entries).

The canonical build runs entirely in memory. With ``materialize=True`` the
generator instead works on a materialized directory and lets bsdtar compute
the manifest and the archive from the real filesystem.
"""

import logging
import os
import re
import time
from pathlib import Path

from holo_build import __version__
from holo_build.core.errors import UnsupportedBuildMethodError
from holo_build.core.tools import ExternalTools
from holo_build.encoders.mtree import compress_mtree, make_mtree
from holo_build.models.filesystem import FSNodeMetadata, FSRegularFile
from holo_build.models.package import HOLO_PLUGIN_PREFIX, Architecture, Package, PackageRelation

logger = logging.getLogger(__name__)

ARCH_NAMES = {
    Architecture.ANY: "any",
    Architecture.I386: "i686",
    Architecture.X86_64: "x86_64",
    Architecture.ARMV5: "arm",
    Architecture.ARMV6H: "armv6h",
    Architecture.ARMV7H: "armv7h",
    Architecture.AARCH64: "aarch64",
}

# these makepkgopt are fabricated and describe the behavior of holo-build in
# terms of makepkg options
MAKEPKG_OPTIONS = [
    "!strip",
    "docs",
    "libtool",
    "staticlibs",
    "emptydirs",
    "!zipman",
    "!purge",
    "!upx",
    "!debug",
]

_NAME_RX = re.compile(r"^[a-z0-9@_+][a-z0-9@._+-]*$")
_VERSION_RX = re.compile(r"^[A-Za-z0-9._+~]+$")


def full_version_string(pkg: Package) -> str:
    """``[epoch:]version-release``; pacman versions may not contain dashes."""
    version = f"{pkg.version.replace('-', '_')}-{pkg.release}"
    if pkg.epoch > 0:
        version = f"{pkg.epoch}:{version}"
    return version


class PacmanGenerator:
    """Generator for pacman packages."""

    def __init__(self, materialize: bool = False, tools: ExternalTools | None = None):
        self.materialize = materialize
        self.tools = tools or ExternalTools()

    def validate(self, package: Package) -> list[str]:
        errors = []
        if not _NAME_RX.match(package.name):
            errors.append(f"Package name {package.name!r} is not acceptable for Pacman packages")
        version = package.version.replace("-", "_")
        if not _VERSION_RX.match(version):
            errors.append(f"Version {package.version!r} is not acceptable for Pacman packages")

        for kind, relations in package.relations().items():
            for rel in relations:
                if rel.related_package and not _NAME_RX.match(rel.related_package):
                    errors.append(
                        f"Package name {rel.related_package!r} in {kind} is not acceptable for Pacman packages"
                    )
        return errors

    def recommended_file_name(self, package: Package) -> str:
        # called after the build, so name and version were already validated
        arch = ARCH_NAMES[package.architecture]
        return f"{package.name}-{full_version_string(package)}-{arch}.pkg.tar.xz"

    def build_in_memory(self, package: Package, reproducible: bool) -> bytes:
        if self.materialize:
            raise UnsupportedBuildMethodError("pacman generator is configured to use bsdtar")

        build_time = int(time.time())
        root = package.fs_root

        # the metadata files exist only in the archive, not in the package model
        injected = []
        try:
            root.insert("/.PKGINFO", _metadata_file(make_pkginfo(package, reproducible, build_time)))
            injected.append(".PKGINFO")
            install = make_install(package)
            if install:
                root.insert("/.INSTALL", _metadata_file(install))
                injected.append(".INSTALL")

            # the manifest covers .PKGINFO and .INSTALL, but not itself
            manifest = make_mtree(root, reproducible, build_time)
            root.insert("/.MTREE", _metadata_file(compress_mtree(manifest)))
            injected.append(".MTREE")

            return root.to_tar_archive(reproducible, build_time, compression="xz")
        finally:
            for name in injected:
                del root.entries[name]

    def build(self, package: Package, root_path: Path, reproducible: bool) -> bytes:
        root_path = Path(root_path)
        build_time = int(time.time())
        tool_banner = None if reproducible else self.tools.bsdtar_version()

        pkginfo = make_pkginfo(package, reproducible, build_time, tool_banner)
        _write_metadata_file(root_path / ".PKGINFO", pkginfo, reproducible)
        install = make_install(package)
        if install:
            _write_metadata_file(root_path / ".INSTALL", install, reproducible)

        # makepkg has .MTREEs with "./foo" paths
        targets = sorted(f"./{entry.name}" for entry in root_path.iterdir())
        mtree_path = self.tools.write_mtree(root_path, targets)
        os.chmod(mtree_path, 0o644)
        if reproducible:
            os.utime(mtree_path, (0, 0))

        logger.debug(f"Compressing {root_path} with {self.tools.bsdtar}")
        return self.tools.create_package_archive(root_path)


def _metadata_file(content: str | bytes) -> FSRegularFile:
    return FSRegularFile(content=content, metadata=FSNodeMetadata(mode=0o644))


def _write_metadata_file(path: Path, content: str, reproducible: bool) -> None:
    path.write_text(content, encoding="utf-8")
    os.chmod(path, 0o644)
    if reproducible:
        os.utime(path, (0, 0))


# ──────────────────────────────────────────────
# .PKGINFO
# ──────────────────────────────────────────────


def make_pkginfo(pkg: Package, reproducible: bool, build_time: int, tool_banner: str | None = None) -> str:
    """Render .PKGINFO. ``tool_banner`` names the archiver used, if any."""
    # normalize package description like makepkg does
    desc = re.sub(r"\s+", " ", pkg.description.strip())

    if reproducible:
        lines = ["# Generated by holo-build in reproducible mode"]
    else:
        lines = [f"# Generated by holo-build {__version__}"]
        if tool_banner:
            lines.append(f"# using {tool_banner}")

    lines += [
        f"pkgname = {pkg.name}",
        f"pkgver = {full_version_string(pkg)}",
        f"pkgdesc = {desc}",
        "url = ",
    ]
    if not reproducible:
        lines.append(f"builddate = {build_time}")
    lines += [
        f"packager = {pkg.author or 'Unknown Packager'}",
        f"size = {pkg.installed_size()}",
        f"arch = {ARCH_NAMES[pkg.architecture]}",
        "license = custom:none",
    ]
    lines += compile_relations("replaces", pkg.replaces)
    lines += compile_relations("conflict", pkg.conflicts)
    lines += compile_relations("provides", pkg.provides)
    lines += compile_backup_markers(pkg)
    lines += compile_relations("depend", pkg.requires)

    # we used holo-build to build this, so the build depends on this package
    lines.append("makedepend = holo-build")
    lines += [f"makepkgopt = {option}" for option in MAKEPKG_OPTIONS]
    return "\n".join(lines) + "\n"


def compile_relations(key: str, relations: list[PackageRelation]) -> list[str]:
    lines = []
    for rel in relations:
        if not rel.constraints:
            lines.append(f"{key} = {rel.related_package}")
        for constraint in rel.constraints:
            lines.append(f"{key} = {rel.related_package}{constraint}")
    return lines


def compile_backup_markers(pkg: Package) -> list[str]:
    """Every regular file outside the Holo plugin namespace, sorted."""
    lines = [
        f"backup = {path.lstrip('/')}"
        for path, node in pkg.walk_fs()
        if isinstance(node, FSRegularFile) and not path.startswith(HOLO_PLUGIN_PREFIX)
    ]
    return sorted(lines)


# ──────────────────────────────────────────────
# .INSTALL
# ──────────────────────────────────────────────


def make_install(pkg: Package) -> str:
    """Render .INSTALL, or return an empty string if there are no scripts."""
    contents = ""
    setup_script = pkg.setup_script.strip()
    if setup_script:
        contents += f"post_install() {{\n{setup_script}\n}}\npost_upgrade() {{\npost_install\n}}\n"
    cleanup_script = pkg.cleanup_script.strip()
    if cleanup_script:
        contents += f"post_remove() {{\n{cleanup_script}\n}}\n"
    return contents
