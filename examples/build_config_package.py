"""
Example: Build a configuration package for both RPM and Pacman.

Usage:
    python examples/build_config_package.py
"""

from pathlib import Path

from holo_build import Package, PackageBuilder
from holo_build.generators import get_generator
from holo_build.models.filesystem import FSDirectory, FSNodeMetadata, FSRegularFile
from holo_build.models.package import PackageRelation


def make_package() -> Package:
    pkg = Package(
        name="example-sshd-config",
        version="1.0",
        description="Hardened sshd configuration",
        author="Example Admin <admin@example.org>",
        requires=[PackageRelation.from_dict("openssh >= 8.0")],
    )
    # provisioned by the holo-files plugin, so holo-files becomes a requirement
    pkg.fs_root.insert(
        "/usr/share/holo/files/20-example/etc/ssh/sshd_config.holoscript",
        FSRegularFile(
            content="#!/bin/sh\nsed 's/^#\\?PermitRootLogin.*/PermitRootLogin no/'\n",
            metadata=FSNodeMetadata(mode=0o755),
        ),
    )
    pkg.fs_root.insert("/var/lib/example", FSDirectory(metadata=FSNodeMetadata(owner="nobody", group="nobody")))
    return pkg


def main():
    output_dir = Path("./packages")
    output_dir.mkdir(exist_ok=True)

    for fmt in ["rpm", "pacman"]:
        builder = PackageBuilder(get_generator(fmt), work_dir=output_dir)
        # the builder modifies the package, so every format gets a fresh one
        path = builder.build(make_package(), reproducible=True)
        print(f"Built {path}")


if __name__ == "__main__":
    main()
