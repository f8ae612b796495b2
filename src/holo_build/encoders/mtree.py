"""
mtree manifest encoder.

Produces the same shape of manifest that
``bsdtar --format=mtree --options=!all,use-set,type,uid,gid,mode,time,size,md5,sha256,link``
writes for makepkg's .MTREE files: a "/set" line with the defaults for regular
files, then one line per entry that only lists keywords deviating from them.
"""

import gzip
import hashlib

from holo_build.models.filesystem import FSDirectory, FSNode, FSSymlink

MTREE_HEADER = "#mtree\n/set type=file uid=0 gid=0 mode=644\n"
_DEFAULT_FILE_MODE = 0o644


def escape_path(path: str) -> str:
    """Escape whitespace, non-ASCII and mtree syntax characters as \\ooo."""
    out = []
    for byte in path.encode("utf-8"):
        if byte <= 0x20 or byte >= 0x7F or byte in b"#=\\":
            out.append(f"\\{byte:03o}")
        else:
            out.append(chr(byte))
    return "".join(out)


def entry_line(path: str, node: FSNode, reproducible: bool, build_time: int) -> str:
    """Return the manifest line for one node. ``path`` is absolute."""
    words = ["." + escape_path(path)]

    if isinstance(node, FSSymlink):
        mtime = 0 if reproducible else build_time
        words += [f"time={mtime}.0", "mode=777", "type=link", f"link={escape_path(node.target)}"]
        return " ".join(words) + "\n"

    meta = node.metadata
    words.append(f"time={meta.timestamp(reproducible, build_time)}.0")
    if meta.uid != 0:
        words.append(f"uid={meta.uid}")
    if meta.gid != 0:
        words.append(f"gid={meta.gid}")

    mode = meta.mode & 0o7777
    if isinstance(node, FSDirectory):
        words += [f"mode={mode:o}", "type=dir"]
    else:
        data = node.data
        if mode != _DEFAULT_FILE_MODE:
            words.append(f"mode={mode:o}")
        words += [
            f"size={len(data)}",
            f"md5digest={hashlib.md5(data).hexdigest()}",
            f"sha256digest={hashlib.sha256(data).hexdigest()}",
        ]
    return " ".join(words) + "\n"


def make_mtree(root: FSDirectory, reproducible: bool, build_time: int) -> str:
    """Manifest of every node below ``root`` (the root itself is not listed)."""
    lines = [MTREE_HEADER]
    entries = sorted(
        ((path, node) for path, node in root.walk() if node is not root),
        key=lambda item: item[0],
    )
    for path, node in entries:
        lines.append(entry_line(path, node, reproducible, build_time))
    return "".join(lines)


def compress_mtree(manifest: str) -> bytes:
    # mtime=0 keeps the gzip header free of wall-clock time
    return gzip.compress(manifest.encode("utf-8"), mtime=0)
