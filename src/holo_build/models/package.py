"""
Package Model — the abstract, format-independent package description.

A Package is built by a loader (for example Package.from_dict() on a JSON
document), normalized in place by the build orchestrator and then encoded by
one of the format generators.
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from holo_build.models.filesystem import FSDirectory, FSNode, FSNodeMetadata, FSRegularFile, FSSymlink


class Architecture(Enum):
    """Target architectures understood by all generators."""

    ANY = "any"
    I386 = "i386"
    X86_64 = "x86_64"
    ARMV5 = "armv5"
    ARMV6H = "armv6h"
    ARMV7H = "armv7h"
    AARCH64 = "aarch64"


VERSION_RELATIONS = ("<", "<=", "=", ">=", ">")

# files below this prefix are provisioned by the Holo plugin named in the next path component
HOLO_PLUGIN_PREFIX = "/usr/share/holo/"


@dataclass
class VersionConstraint:
    """A version restriction on a related package, e.g. ``>= 2.0``."""

    relation: str
    version: str

    def __str__(self) -> str:
        return f"{self.relation}{self.version}"


@dataclass
class PackageRelation:
    """A reference to another package, optionally with version constraints."""

    related_package: str
    constraints: list[VersionConstraint] = field(default_factory=list)

    def to_dict(self) -> dict:
        data: dict = {"package": self.related_package}
        if self.constraints:
            data["constraints"] = [str(c) for c in self.constraints]
        return data

    @classmethod
    def from_dict(cls, data: dict | str) -> "PackageRelation":
        """Accepts ``"foo"``, ``"foo>=1.0"`` or ``{"package": "foo", "constraints": [">=1.0"]}``."""
        if isinstance(data, str):
            name, constraint = _split_constraint(data)
            return cls(related_package=name, constraints=[constraint] if constraint else [])

        constraints = []
        for spec in data.get("constraints", []):
            _, constraint = _split_constraint(spec)
            if constraint:
                constraints.append(constraint)
        return cls(related_package=data["package"], constraints=constraints)


def _split_constraint(spec: str) -> tuple[str, VersionConstraint | None]:
    match = re.match(r"^\s*([^<>=\s]*)\s*(<=|>=|<|>|=)\s*(\S+)\s*$", spec)
    if not match:
        return spec.strip(), None
    name, relation, version = match.groups()
    return name, VersionConstraint(relation=relation, version=version)


@dataclass
class Package:
    """
    An abstract package: identity, descriptive fields, relations, lifecycle
    scripts and the file tree it installs.

    The package exclusively owns ``fs_root``. ``setup_script`` runs after
    install and upgrade, ``cleanup_script`` after removal.
    """

    name: str
    version: str
    release: int = 1
    epoch: int = 0
    architecture: Architecture = Architecture.ANY
    description: str = ""
    author: str = ""
    requires: list[PackageRelation] = field(default_factory=list)
    provides: list[PackageRelation] = field(default_factory=list)
    conflicts: list[PackageRelation] = field(default_factory=list)
    replaces: list[PackageRelation] = field(default_factory=list)
    setup_script: str = ""
    cleanup_script: str = ""
    fs_root: FSDirectory = field(default_factory=FSDirectory)

    def walk_fs(self) -> Iterator[tuple[str, FSNode]]:
        """Yield (absolute path, node) for every node, starting with "/"."""
        return self.fs_root.walk()

    def installed_size(self) -> int:
        """Size in bytes of all regular files and symlinks."""
        size = 0
        for _path, node in self.walk_fs():
            if isinstance(node, FSRegularFile):
                size += len(node.data)
            elif isinstance(node, FSSymlink):
                size += len(node.target)
        return size

    def has_requirement(self, name: str) -> bool:
        return any(rel.related_package == name for rel in self.requires)

    def validate(self) -> list[str]:
        """Check format-independent invariants. Returns all violations."""
        errors = []
        if not self.name:
            errors.append("Package name may not be empty")
        elif "/" in self.name or re.search(r"\s", self.name):
            errors.append(f"Package name {self.name!r} may not contain slashes or whitespace")
        if not self.version:
            errors.append("Package version may not be empty")
        if self.release < 1:
            errors.append(f"Package release must be a positive integer, got {self.release}")
        if self.epoch < 0:
            errors.append(f"Package epoch may not be negative, got {self.epoch}")

        for kind, relations in self.relations().items():
            for rel in relations:
                if not rel.related_package:
                    errors.append(f"Found {kind} relation with empty package name")
                for constraint in rel.constraints:
                    if constraint.relation not in VERSION_RELATIONS:
                        errors.append(
                            f"Invalid version relation {constraint.relation!r} in {kind} "
                            f"relation to {rel.related_package!r}"
                        )
        return errors

    def relations(self) -> dict[str, list[PackageRelation]]:
        return {
            "requires": self.requires,
            "provides": self.provides,
            "conflicts": self.conflicts,
            "replaces": self.replaces,
        }

    # ──────────────────────────────────────────────
    # Serialization
    # ──────────────────────────────────────────────

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dictionary."""
        files = []
        for path, node in self.walk_fs():
            if isinstance(node, FSDirectory):
                if node is self.fs_root or node.implicit:
                    continue
                files.append({"path": path, "type": "directory", **node.metadata.to_dict()})
            elif isinstance(node, FSRegularFile):
                content = node.content if isinstance(node.content, str) else node.data.decode("utf-8")
                files.append({"path": path, "type": "file", "content": content, **node.metadata.to_dict()})
            else:
                files.append({"path": path, "type": "symlink", "target": node.target})

        data = {
            "name": self.name,
            "version": self.version,
            "release": self.release,
            "epoch": self.epoch,
            "architecture": self.architecture.value,
            "description": self.description,
            "author": self.author,
            "setup_script": self.setup_script,
            "cleanup_script": self.cleanup_script,
            "files": files,
        }
        for kind, relations in self.relations().items():
            data[kind] = [rel.to_dict() for rel in relations]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Package":
        """Deserialize from dictionary."""
        pkg = cls(
            name=data["name"],
            version=str(data["version"]),
            release=data.get("release", 1),
            epoch=data.get("epoch", 0),
            architecture=Architecture(data.get("architecture", "any")),
            description=data.get("description", ""),
            author=data.get("author", ""),
            requires=[PackageRelation.from_dict(r) for r in data.get("requires", [])],
            provides=[PackageRelation.from_dict(r) for r in data.get("provides", [])],
            conflicts=[PackageRelation.from_dict(r) for r in data.get("conflicts", [])],
            replaces=[PackageRelation.from_dict(r) for r in data.get("replaces", [])],
            setup_script=data.get("setup_script", ""),
            cleanup_script=data.get("cleanup_script", ""),
        )

        for entry in data.get("files", []):
            pkg.fs_root.insert(entry["path"], _node_from_dict(entry))
        return pkg


def _node_from_dict(entry: dict) -> FSNode:
    match entry.get("type", "file"):
        case "directory":
            return FSDirectory(metadata=FSNodeMetadata.from_dict(entry, default_mode=0o755))
        case "file":
            return FSRegularFile(
                content=entry.get("content", ""),
                metadata=FSNodeMetadata.from_dict(entry, default_mode=0o644),
            )
        case "symlink":
            return FSSymlink(target=entry["target"])
        case other:
            raise ValueError(f"Unknown filesystem entry type: {other!r}. Use 'directory', 'file', or 'symlink'.")
