"""Tests for the Package model."""

import pytest

from holo_build.models.filesystem import FSDirectory, FSRegularFile, FSSymlink
from holo_build.models.package import Architecture, Package, PackageRelation, VersionConstraint


# ═══════════════════════════════════════════
# PackageRelation Tests
# ═══════════════════════════════════════════


class TestPackageRelation:
    def test_from_plain_string(self):
        rel = PackageRelation.from_dict("bash")
        assert rel.related_package == "bash"
        assert rel.constraints == []

    def test_from_string_with_constraint(self):
        rel = PackageRelation.from_dict("bash >= 5.0")
        assert rel.related_package == "bash"
        assert rel.constraints == [VersionConstraint(">=", "5.0")]

    def test_from_dict(self):
        rel = PackageRelation.from_dict({"package": "glibc", "constraints": [">=2.30", "<3"]})
        assert [str(c) for c in rel.constraints] == [">=2.30", "<3"]

    def test_to_dict(self):
        rel = PackageRelation("glibc", [VersionConstraint("=", "2.30")])
        assert rel.to_dict() == {"package": "glibc", "constraints": ["=2.30"]}
        assert PackageRelation("bash").to_dict() == {"package": "bash"}


# ═══════════════════════════════════════════
# Package Model Tests
# ═══════════════════════════════════════════


class TestPackage:
    def test_installed_size(self):
        pkg = Package(name="foo", version="1.0")
        pkg.fs_root.insert("/etc/foo.conf", FSRegularFile(content="12345"))
        pkg.fs_root.insert("/etc/foo.d", FSDirectory())
        pkg.fs_root.insert("/usr/bin/bar", FSSymlink(target="foo"))
        assert pkg.installed_size() == 5 + 3

    def test_has_requirement(self, sample_package):
        assert sample_package.has_requirement("bar")
        assert not sample_package.has_requirement("foo-compat")

    def test_valid_package(self, sample_package):
        assert sample_package.validate() == []

    def test_collects_all_errors(self):
        pkg = Package(
            name="",
            version="",
            release=0,
            epoch=-1,
            requires=[PackageRelation(""), PackageRelation("bar", [VersionConstraint("~>", "1")])],
        )
        errors = pkg.validate()
        assert len(errors) == 6
        assert any("name may not be empty" in e for e in errors)
        assert any("'~>'" in e for e in errors)

    def test_name_with_whitespace(self):
        errors = Package(name="foo bar", version="1").validate()
        assert len(errors) == 1
        assert "whitespace" in errors[0]


class TestSerialization:
    def test_from_dict(self):
        pkg = Package.from_dict(
            {
                "name": "foo",
                "version": 1.5,
                "epoch": 2,
                "architecture": "aarch64",
                "requires": ["bash", {"package": "glibc", "constraints": [">=2.30"]}],
                "setup_script": "true\n",
                "files": [
                    {"path": "/etc/foo.conf", "content": "x", "mode": "0600", "owner": "foo"},
                    {"path": "/var/lib/foo", "type": "directory", "group": 50},
                    {"path": "/usr/bin/bar", "type": "symlink", "target": "foo"},
                ],
            }
        )
        assert pkg.version == "1.5"
        assert pkg.release == 1
        assert pkg.epoch == 2
        assert pkg.architecture == Architecture.AARCH64
        assert [r.related_package for r in pkg.requires] == ["bash", "glibc"]

        conf = pkg.fs_root.lookup("/etc/foo.conf")
        assert conf.metadata.mode == 0o600
        assert conf.metadata.owner == "foo"
        directory = pkg.fs_root.lookup("/var/lib/foo")
        assert directory.metadata.mode == 0o755
        assert directory.metadata.group == 50
        assert pkg.fs_root.lookup("/usr/bin/bar").target == "foo"

    def test_unknown_file_type(self):
        with pytest.raises(ValueError, match="Unknown filesystem entry type"):
            Package.from_dict({"name": "foo", "version": "1", "files": [{"path": "/dev/x", "type": "fifo"}]})

    def test_to_dict_roundtrip(self, sample_package):
        restored = Package.from_dict(sample_package.to_dict())
        assert restored.to_dict() == sample_package.to_dict()
        assert restored.fs_root.lookup("/usr/bin/foo").data == b"#!/bin/sh\necho foo\n"

    def test_to_dict_skips_implicit_directories(self, sample_package):
        paths = [entry["path"] for entry in sample_package.to_dict()["files"]]
        assert "/usr" not in paths
        assert "/etc/foo.d" in paths
