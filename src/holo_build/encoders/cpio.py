"""
CPIO "newc" archive encoder (the RPM payload container).

Each entry is a 110-byte ASCII header (magic "070701" followed by thirteen
8-digit hex fields), the NUL-terminated name and the file data; name and data
are both padded to a multiple of 4 bytes. The archive ends with an entry named
"TRAILER!!!".
"""

from dataclasses import dataclass

CPIO_MAGIC = "070701"
CPIO_TRAILER = "TRAILER!!!"


@dataclass
class CpioEntry:
    """One archive member. ``mode`` includes the file type bits."""

    name: str
    mode: int
    uid: int = 0
    gid: int = 0
    mtime: int = 0
    data: bytes = b""
    inode: int = 0
    nlink: int = 1


def _pad4(length: int) -> bytes:
    return b"\x00" * (-length % 4)


def encode_entry(entry: CpioEntry) -> bytes:
    name = entry.name.encode("utf-8") + b"\x00"
    fields = (
        entry.inode,
        entry.mode,
        entry.uid,
        entry.gid,
        entry.nlink,
        entry.mtime,
        len(entry.data),
        0,  # devmajor
        0,  # devminor
        0,  # rdevmajor
        0,  # rdevminor
        len(name),
        0,  # check
    )
    header = (CPIO_MAGIC + "".join(f"{value:08X}" for value in fields)).encode("ascii")
    return header + name + _pad4(len(header) + len(name)) + entry.data + _pad4(len(entry.data))


def encode_archive(entries: list[CpioEntry]) -> bytes:
    """Encode all entries in the given order, followed by the trailer."""
    chunks = [encode_entry(entry) for entry in entries]
    chunks.append(encode_entry(CpioEntry(name=CPIO_TRAILER, mode=0, nlink=1)))
    return b"".join(chunks)
