"""
Filesystem Tree Model — the file tree shipped inside a package.

Nodes are directories, regular files and symlinks. The tree can be
materialized into a real directory or encoded into a tar archive in memory.
"""

from __future__ import annotations

import io
import logging
import os
import shlex
import tarfile
from collections.abc import Iterator
from dataclasses import dataclass, field

from holo_build.core.errors import FilesystemTreeError

logger = logging.getLogger(__name__)


@dataclass
class FSNodeMetadata:
    """
    Mode, ownership and timestamp of a directory or regular file.

    ``owner`` and ``group`` are either a numeric id or a symbolic name. Names
    cannot be written into an archive, so the build orchestrator strips them
    and defers them into the setup script (see postpone_unmaterializable()).
    """

    mode: int = 0o644
    owner: int | str | None = None
    group: int | str | None = None
    mtime: int | None = None

    @property
    def uid(self) -> int:
        return self.owner if isinstance(self.owner, int) else 0

    @property
    def gid(self) -> int:
        return self.group if isinstance(self.group, int) else 0

    def timestamp(self, reproducible: bool, build_time: int) -> int:
        """Return the mtime to record for this node."""
        if reproducible:
            return 0
        if self.mtime is not None:
            return self.mtime
        return build_time

    def postpone_unmaterializable(self, path: str) -> str:
        """
        Remove symbolic owner/group and return the shell command that applies
        them at install time (empty string if there is nothing to defer).
        """
        owner = group = ""
        if isinstance(self.owner, str):
            owner, self.owner = self.owner, None
        if isinstance(self.group, str):
            group, self.group = self.group, None

        quoted = shlex.quote(path)
        if owner and group:
            return f"chown {owner}:{group} {quoted}\n"
        if owner:
            return f"chown {owner} {quoted}\n"
        if group:
            return f"chgrp {group} {quoted}\n"
        return ""

    def to_dict(self) -> dict:
        data: dict = {"mode": f"{self.mode:04o}"}
        if self.owner is not None:
            data["owner"] = self.owner
        if self.group is not None:
            data["group"] = self.group
        if self.mtime is not None:
            data["mtime"] = self.mtime
        return data

    @classmethod
    def from_dict(cls, data: dict, default_mode: int) -> "FSNodeMetadata":
        mode = data.get("mode", default_mode)
        if isinstance(mode, str):
            mode = int(mode, 8)
        return cls(
            mode=mode,
            owner=data.get("owner"),
            group=data.get("group"),
            mtime=data.get("mtime"),
        )


def _directory_metadata() -> FSNodeMetadata:
    return FSNodeMetadata(mode=0o755)


@dataclass
class FSRegularFile:
    """A regular file. Text content is stored as UTF-8."""

    content: bytes | str = b""
    metadata: FSNodeMetadata = field(default_factory=FSNodeMetadata)

    @property
    def data(self) -> bytes:
        if isinstance(self.content, str):
            return self.content.encode("utf-8")
        return self.content

    def materialize(self, path: str) -> None:
        with open(path, "wb") as f:
            f.write(self.data)
        os.chmod(path, self.metadata.mode)
        _apply_ownership(path, self.metadata)
        if self.metadata.mtime is not None:
            os.utime(path, (self.metadata.mtime, self.metadata.mtime))


@dataclass
class FSSymlink:
    """A symbolic link. Symlinks carry no metadata of their own."""

    target: str

    def materialize(self, path: str) -> None:
        os.symlink(self.target, path)


@dataclass
class FSDirectory:
    """
    A directory node.

    ``implicit`` marks directories that were only created to hold an inserted
    path. They are materialized and archived, but packages do not claim them.
    """

    entries: dict[str, FSNode] = field(default_factory=dict)
    metadata: FSNodeMetadata = field(default_factory=_directory_metadata)
    implicit: bool = False

    # ──────────────────────────────────────────────
    # Tree manipulation
    # ──────────────────────────────────────────────

    def insert(self, path: str, node: FSNode) -> None:
        """Insert a node at an absolute path, creating implicit parents."""
        parts = _split_path(path)
        if not parts:
            raise FilesystemTreeError(f"Cannot insert a node at the root path {path!r}")

        parent = self
        for depth, part in enumerate(parts[:-1]):
            child = parent.entries.get(part)
            if child is None:
                child = FSDirectory(implicit=True)
                parent.entries[part] = child
            elif not isinstance(child, FSDirectory):
                prefix = "/" + "/".join(parts[: depth + 1])
                raise FilesystemTreeError(f"Cannot insert {path}: {prefix} is not a directory")
            parent = child

        name = parts[-1]
        existing = parent.entries.get(name)
        if existing is not None:
            # an explicit directory may take over an implicit one (and its children)
            if isinstance(existing, FSDirectory) and existing.implicit and isinstance(node, FSDirectory):
                node.entries.update(existing.entries)
            else:
                raise FilesystemTreeError(f"Duplicate path in filesystem tree: {path}")
        parent.entries[name] = node

    def lookup(self, path: str) -> FSNode | None:
        """Return the node at an absolute path, or None."""
        node: FSNode = self
        for part in _split_path(path):
            if not isinstance(node, FSDirectory) or part not in node.entries:
                return None
            node = node.entries[part]
        return node

    def walk(self, prefix: str = "/") -> Iterator[tuple[str, FSNode]]:
        """
        Yield (absolute path, node) for this directory and all descendants.

        Children are visited in name order, and every directory is yielded
        before its contents.
        """
        yield prefix, self
        for name in sorted(self.entries):
            child = self.entries[name]
            child_path = prefix.rstrip("/") + "/" + name
            if isinstance(child, FSDirectory):
                yield from child.walk(child_path)
            else:
                yield child_path, child

    # ──────────────────────────────────────────────
    # Materialization
    # ──────────────────────────────────────────────

    def materialize(self, path: str) -> None:
        """Write this directory and everything below it to ``path``."""
        os.makedirs(path, exist_ok=True)
        for name in sorted(self.entries):
            self.entries[name].materialize(os.path.join(path, name))

        # applied after the children, since creating them touches the mtime
        os.chmod(path, self.metadata.mode)
        _apply_ownership(path, self.metadata)
        if self.metadata.mtime is not None:
            os.utime(path, (self.metadata.mtime, self.metadata.mtime))

    # ──────────────────────────────────────────────
    # Archive encoding
    # ──────────────────────────────────────────────

    def to_tar_archive(self, reproducible: bool, build_time: int, compression: str = "xz") -> bytes:
        """
        Encode the tree as a tar archive with relative member names.

        ``compression`` is one of "xz", "gz" or "" (uncompressed).
        """
        buf = io.BytesIO()
        mode = f"w:{compression}" if compression else "w"
        with tarfile.open(fileobj=buf, mode=mode, format=tarfile.GNU_FORMAT) as tar:
            for path, node in self.walk():
                if node is self:
                    continue
                info = tarfile.TarInfo(name=path.lstrip("/"))
                if isinstance(node, FSSymlink):
                    info.type = tarfile.SYMTYPE
                    info.linkname = node.target
                    info.mode = 0o777
                    info.mtime = 0 if reproducible else build_time
                    _set_tar_owner(info, 0, 0)
                    tar.addfile(info)
                    continue

                info.mode = node.metadata.mode & 0o7777
                info.mtime = node.metadata.timestamp(reproducible, build_time)
                _set_tar_owner(info, node.metadata.uid, node.metadata.gid)
                if isinstance(node, FSDirectory):
                    info.type = tarfile.DIRTYPE
                    tar.addfile(info)
                else:
                    data = node.data
                    info.size = len(data)
                    tar.addfile(info, io.BytesIO(data))
        return buf.getvalue()


FSNode = FSDirectory | FSRegularFile | FSSymlink


def reset_timestamps(root_path: str) -> None:
    """Set the mtime of everything below (and including) root_path to the epoch."""
    for dirpath, dirnames, filenames in os.walk(root_path, topdown=False):
        for name in filenames + dirnames:
            os.utime(os.path.join(dirpath, name), (0, 0), follow_symlinks=False)
    os.utime(root_path, (0, 0), follow_symlinks=False)


def _split_path(path: str) -> list[str]:
    if not path.startswith("/"):
        raise FilesystemTreeError(f"Filesystem paths must be absolute, got {path!r}")
    return [part for part in path.split("/") if part]


def _set_tar_owner(info: tarfile.TarInfo, uid: int, gid: int) -> None:
    info.uid = uid
    info.gid = gid
    info.uname = "root" if uid == 0 else ""
    info.gname = "root" if gid == 0 else ""


def _apply_ownership(path: str, metadata: FSNodeMetadata) -> None:
    uid, gid = metadata.uid, metadata.gid
    if uid == 0 and gid == 0:
        return
    if os.geteuid() != 0:
        logger.warning(f"Cannot set ownership {uid}:{gid} on {path} without root privileges")
        return
    os.lchown(path, uid, gid)
