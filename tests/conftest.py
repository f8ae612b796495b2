"""Shared fixtures for package build tests."""

import pytest

from holo_build.models.filesystem import FSDirectory, FSNodeMetadata, FSRegularFile, FSSymlink
from holo_build.models.package import Architecture, Package, PackageRelation, VersionConstraint


def build_sample_package(**overrides) -> Package:
    """A small but complete package: config file, plugin file, symlink, scripts."""
    fields = dict(
        name="foo",
        version="1.2",
        release=3,
        architecture=Architecture.X86_64,
        description="Example package\nwith a longer   description",
        author="Jane Doe <jane@example.org>",
        requires=[PackageRelation("bar", [VersionConstraint(">=", "2.0")])],
        provides=[PackageRelation("foo-compat")],
        conflicts=[PackageRelation("foo-legacy")],
        replaces=[PackageRelation("foo-old", [VersionConstraint("<", "1.0")])],
        setup_script="systemctl daemon-reload\n",
        cleanup_script="",
    )
    fields.update(overrides)
    pkg = Package(**fields)
    pkg.fs_root.insert("/etc/foo.conf", FSRegularFile(content="answer = 42\n"))
    pkg.fs_root.insert("/etc/foo.d", FSDirectory(metadata=FSNodeMetadata(mode=0o750)))
    pkg.fs_root.insert(
        "/usr/bin/foo",
        FSRegularFile(content=b"#!/bin/sh\necho foo\n", metadata=FSNodeMetadata(mode=0o755)),
    )
    pkg.fs_root.insert("/usr/bin/foo-alias", FSSymlink(target="foo"))
    return pkg


@pytest.fixture
def make_package():
    return build_sample_package


@pytest.fixture
def sample_package():
    return build_sample_package()
