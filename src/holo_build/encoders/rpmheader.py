"""
RPM lead and header-structure encoding.

Documentation for the RPM file format:

[LSB] http://refspecs.linux-foundation.org/LSB_5.0.0/LSB-Core-generic/LSB-Core-generic/pkgformat.html
[RPM] http://www.rpm.org/max-rpm/s1-rpm-file-format-rpm-file-format.html

Both the signature section and the header section use the same "header
structure": an 8-byte magic, the index entry count, the data store size, the
index entries (16 bytes each) and the data store. The first index entry is a
region tag that points to a 16-byte trailer at the end of the data store.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum

LEAD_MAGIC = b"\xed\xab\xee\xdb"
HEADER_MAGIC = b"\x8e\xad\xe8\x01\x00\x00\x00\x00"
LEAD_SIZE = 96


class TagType(IntEnum):
    NULL = 0
    CHAR = 1
    INT8 = 2
    INT16 = 3
    INT32 = 4
    INT64 = 5
    STRING = 6
    BIN = 7
    STRING_ARRAY = 8
    I18NSTRING = 9


# [LSB, 25.2.2.2] data of these types must be aligned to their natural size
_ALIGNMENT = {TagType.INT16: 2, TagType.INT32: 4, TagType.INT64: 8}


class Tag(IntEnum):
    """Header section tags [LSB, 25.2.4]."""

    HEADERSIGNATURES = 62
    HEADERIMMUTABLE = 63
    HEADERI18NTABLE = 100
    NAME = 1000
    VERSION = 1001
    RELEASE = 1002
    EPOCH = 1003
    SUMMARY = 1004
    DESCRIPTION = 1005
    BUILDTIME = 1006
    BUILDHOST = 1007
    SIZE = 1009
    LICENSE = 1014
    PACKAGER = 1015
    GROUP = 1016
    OS = 1021
    ARCH = 1022
    POSTIN = 1024
    POSTUN = 1026
    FILESIZES = 1028
    FILEMODES = 1030
    FILERDEVS = 1033
    FILEMTIMES = 1034
    FILEDIGESTS = 1035
    FILELINKTOS = 1036
    FILEFLAGS = 1037
    FILEUSERNAME = 1039
    FILEGROUPNAME = 1040
    SOURCERPM = 1044
    FILEVERIFYFLAGS = 1045
    ARCHIVESIZE = 1046
    PROVIDENAME = 1047
    REQUIREFLAGS = 1048
    REQUIRENAME = 1049
    REQUIREVERSION = 1050
    CONFLICTFLAGS = 1053
    CONFLICTNAME = 1054
    CONFLICTVERSION = 1055
    POSTINPROG = 1086
    POSTUNPROG = 1088
    OBSOLETENAME = 1090
    FILEDEVICES = 1095
    FILEINODES = 1096
    FILELANGS = 1097
    PROVIDEFLAGS = 1112
    PROVIDEVERSION = 1113
    OBSOLETEFLAGS = 1114
    OBSOLETEVERSION = 1115
    DIRINDEXES = 1116
    BASENAMES = 1117
    DIRNAMES = 1118
    PAYLOADFORMAT = 1124
    PAYLOADCOMPRESSOR = 1125
    PAYLOADFLAGS = 1126
    FILEDIGESTALGO = 5011
    PAYLOADDIGEST = 5092
    PAYLOADDIGESTALGO = 5093


class SignatureTag(IntEnum):
    """Signature section tags [LSB, 25.2.3]."""

    SHA1 = 269
    SHA256 = 273
    SIZE = 1000
    MD5 = 1004
    PAYLOADSIZE = 1007


# RPMSENSE_* flags for dependency entries
SENSE_ANY = 0
SENSE_LESS = 1 << 1
SENSE_GREATER = 1 << 2
SENSE_EQUAL = 1 << 3
SENSE_PREREQ = 1 << 6
SENSE_INTERP = 1 << 8
SENSE_SCRIPT_POST = (1 << 10) | SENSE_PREREQ
SENSE_SCRIPT_POSTUN = (1 << 12) | SENSE_PREREQ
SENSE_RPMLIB = (1 << 24) | SENSE_PREREQ

RELATION_FLAGS = {
    "<": SENSE_LESS,
    "<=": SENSE_LESS | SENSE_EQUAL,
    "=": SENSE_EQUAL,
    ">=": SENSE_GREATER | SENSE_EQUAL,
    ">": SENSE_GREATER,
}

# RPMFILE_* flags
FILE_CONFIG = 1 << 0
FILE_NOREPLACE = 1 << 4

# PGPHASHALGO_SHA256
DIGESTALGO_SHA256 = 8


@dataclass
class IndexEntry:
    """A single tag with its already-encoded data."""

    tag: int
    type: TagType
    count: int
    data: bytes

    @classmethod
    def string(cls, tag: int, value: str) -> "IndexEntry":
        return cls(tag, TagType.STRING, 1, value.encode("utf-8") + b"\x00")

    @classmethod
    def i18n_string(cls, tag: int, value: str) -> "IndexEntry":
        return cls(tag, TagType.I18NSTRING, 1, value.encode("utf-8") + b"\x00")

    @classmethod
    def string_array(cls, tag: int, values: list[str]) -> "IndexEntry":
        data = b"".join(value.encode("utf-8") + b"\x00" for value in values)
        return cls(tag, TagType.STRING_ARRAY, len(values), data)

    @classmethod
    def int16(cls, tag: int, values: list[int]) -> "IndexEntry":
        return cls(tag, TagType.INT16, len(values), struct.pack(f">{len(values)}H", *values))

    @classmethod
    def int32(cls, tag: int, values: list[int]) -> "IndexEntry":
        return cls(tag, TagType.INT32, len(values), struct.pack(f">{len(values)}I", *values))

    @classmethod
    def binary(cls, tag: int, value: bytes) -> "IndexEntry":
        return cls(tag, TagType.BIN, len(value), value)


def encode_header(entries: list[IndexEntry], region_tag: int) -> bytes:
    """
    Encode a header structure. Entries are sorted by tag; the region tag is
    prepended automatically.
    """
    entries = sorted(entries, key=lambda e: e.tag)
    entry_count = len(entries) + 1

    index = []
    store = bytearray()
    for entry in entries:
        alignment = _ALIGNMENT.get(entry.type, 1)
        store += b"\x00" * (-len(store) % alignment)
        index.append(struct.pack(">iIiI", entry.tag, entry.type, len(store), entry.count))
        store += entry.data

    # the region trailer is the region tag's data; its offset field is the
    # negated size of the index this region covers
    trailer_offset = len(store)
    store += struct.pack(">iIiI", region_tag, TagType.BIN, -entry_count * 16, 16)
    region_entry = struct.pack(">iIiI", region_tag, TagType.BIN, trailer_offset, 16)

    return b"".join(
        [
            HEADER_MAGIC,
            struct.pack(">II", entry_count, len(store)),
            region_entry,
            *index,
            bytes(store),
        ]
    )


@dataclass
class Lead:
    """
    The 96-byte legacy lead [LSB, 25.2.1]. Modern rpm only checks the magic,
    but the remaining fields are still filled in as rpmbuild does.
    """

    name: str
    architecture_id: int
    package_type: int = 0  # binary
    os_id: int = 1  # Linux
    signature_type: int = 5  # header-style signature section

    def to_binary(self) -> bytes:
        # the name field is NUL-terminated within its 66 bytes
        name = self.name.encode("utf-8")[:65]
        return struct.pack(
            ">4sBBHH66sHH16x",
            LEAD_MAGIC,
            3,
            0,
            self.package_type,
            self.architecture_id,
            name,
            self.os_id,
            self.signature_type,
        )


def append_aligned_to_8_bytes(a: bytes, b: bytes) -> bytes:
    """[LSB, 25.2.2]: "A Header structure shall be aligned to an 8 byte boundary." """
    return a + b"\x00" * (-len(a) % 8) + b
