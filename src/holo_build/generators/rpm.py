"""
RPM Generator — encodes a Package into the RPM binary container.

An RPM file is the lead, the signature section, the header section and the
compressed CPIO payload, each region starting on an 8-byte boundary. They are
produced in reverse order because every region depends on what follows it.
"""

import hashlib
import logging
import lzma
import re
import socket
import stat
import time
from dataclasses import dataclass
from pathlib import Path

from holo_build.encoders.cpio import CpioEntry, encode_archive
from holo_build.encoders.rpmheader import (
    DIGESTALGO_SHA256,
    FILE_CONFIG,
    FILE_NOREPLACE,
    RELATION_FLAGS,
    SENSE_ANY,
    SENSE_EQUAL,
    SENSE_INTERP,
    SENSE_LESS,
    SENSE_RPMLIB,
    SENSE_SCRIPT_POST,
    SENSE_SCRIPT_POSTUN,
    IndexEntry,
    Lead,
    SignatureTag,
    Tag,
    append_aligned_to_8_bytes,
    encode_header,
)
from holo_build.models.filesystem import FSDirectory, FSSymlink
from holo_build.models.package import HOLO_PLUGIN_PREFIX, Architecture, Package, PackageRelation

logger = logging.getLogger(__name__)

# Source for this data: `grep arch_canon /usr/lib/rpm/rpmrc`
ARCH_NAMES = {
    Architecture.ANY: "noarch",
    Architecture.I386: "i686",
    Architecture.X86_64: "x86_64",
    Architecture.ARMV5: "armv5tl",
    Architecture.ARMV6H: "armv6hl",
    Architecture.ARMV7H: "armv7hl",
    Architecture.AARCH64: "aarch64",
}
ARCH_IDS = {
    Architecture.ANY: 0,
    Architecture.I386: 1,
    Architecture.X86_64: 1,
    Architecture.ARMV5: 12,
    Architecture.ARMV6H: 12,
    Architecture.ARMV7H: 12,
    Architecture.AARCH64: 12,
}

PAYLOAD_COMPRESSION_PRESET = 9
SCRIPT_INTERPRETER = "/bin/sh"

# features of this encoder that the installing rpm must support
RPMLIB_FEATURES = [
    ("rpmlib(CompressedFileNames)", "3.0.4-1"),
    ("rpmlib(FileDigests)", "4.6.0-1"),
    ("rpmlib(PayloadFilesHavePrefix)", "4.0-1"),
    ("rpmlib(PayloadIsLzma)", "4.4.6-1"),
]

_VERSION_RX = re.compile(r"^[A-Za-z0-9._+~^]+$")


@dataclass
class _FileRecord:
    """One file as it appears in both the payload and the header manifest."""

    path: str
    mode: int
    uid: int
    gid: int
    user: str
    group: str
    mtime: int
    data: bytes = b""
    link_target: str = ""
    flags: int = 0

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def digest(self) -> str:
        if stat.S_ISREG(self.mode):
            return hashlib.sha256(self.data).hexdigest()
        return ""


@dataclass
class Payload:
    """The compressed CPIO archive plus the values the header needs from it."""

    binary: bytes
    uncompressed_size: int
    files: list[_FileRecord]


def version_string(pkg: Package) -> str:
    if pkg.epoch > 0:
        return f"{pkg.epoch}:{pkg.version}"
    return pkg.version


def full_version_string(pkg: Package) -> str:
    return f"{version_string(pkg)}-{pkg.release}"


class RPMGenerator:
    """Generator for RPM packages (Fedora, openSUSE, Mageia, ...)."""

    def validate(self, package: Package) -> list[str]:
        errors = []
        if "-" in package.version:
            errors.append(f"Version {package.version!r} may not contain dashes in RPM packages")
        elif package.version and not _VERSION_RX.match(package.version):
            errors.append(f"Version {package.version!r} contains characters not acceptable for RPM packages")

        for kind, relations in package.relations().items():
            for rel in relations:
                if re.search(r"\s", rel.related_package):
                    errors.append(f"Package name {rel.related_package!r} in {kind} may not contain whitespace")
        return errors

    def recommended_file_name(self, package: Package) -> str:
        # called after the build, so name and version were already validated
        return f"{package.name}-{full_version_string(package)}.{ARCH_NAMES[package.architecture]}.rpm"

    def build(self, package: Package, root_path: Path, reproducible: bool) -> bytes:
        """The in-memory tree is final by now, so the materialized copy adds nothing."""
        return self.build_in_memory(package, reproducible)

    def build_in_memory(self, package: Package, reproducible: bool) -> bytes:
        build_time = int(time.time())

        payload = make_payload(package, reproducible, build_time)
        header = make_header_section(package, payload, reproducible, build_time)
        signature = make_signature_section(header, payload)
        lead = make_lead(package)

        logger.debug(
            f"RPM regions: lead {len(lead)} bytes, signature {len(signature)} bytes, "
            f"header {len(header)} bytes, payload {len(payload.binary)} bytes"
        )
        combined = append_aligned_to_8_bytes(lead, signature)
        combined = append_aligned_to_8_bytes(combined, header)
        return combined + payload.binary


# ──────────────────────────────────────────────
# Lead
# ──────────────────────────────────────────────


def make_lead(pkg: Package) -> bytes:
    name = f"{pkg.name}-{pkg.version}-{pkg.release}"
    return Lead(name=name, architecture_id=ARCH_IDS[pkg.architecture]).to_binary()


# ──────────────────────────────────────────────
# Payload
# ──────────────────────────────────────────────


def _owner_name(value: int | str | None) -> str:
    # numeric ids cannot be resolved at build time; rpm maps unknown names to root
    if isinstance(value, str):
        return value
    if not value:
        return "root"
    return str(value)


def collect_files(pkg: Package, reproducible: bool, build_time: int) -> list[_FileRecord]:
    """All nodes the package claims, sorted by path. Implicit directories are skipped."""
    records = []
    for path, node in pkg.walk_fs():
        if isinstance(node, FSSymlink):
            records.append(
                _FileRecord(
                    path=path,
                    mode=stat.S_IFLNK | 0o777,
                    uid=0,
                    gid=0,
                    user="root",
                    group="root",
                    mtime=0 if reproducible else build_time,
                    data=node.target.encode("utf-8"),
                    link_target=node.target,
                )
            )
            continue
        if isinstance(node, FSDirectory):
            if node is pkg.fs_root or node.implicit:
                continue
            file_type, data, flags = stat.S_IFDIR, b"", 0
        else:
            file_type, data = stat.S_IFREG, node.data
            flags = 0 if path.startswith(HOLO_PLUGIN_PREFIX) else FILE_CONFIG | FILE_NOREPLACE

        meta = node.metadata
        records.append(
            _FileRecord(
                path=path,
                mode=file_type | (meta.mode & 0o7777),
                uid=meta.uid,
                gid=meta.gid,
                user=_owner_name(meta.owner),
                group=_owner_name(meta.group),
                mtime=meta.timestamp(reproducible, build_time),
                data=data,
                flags=flags,
            )
        )

    records.sort(key=lambda r: r.path)
    return records


def make_payload(pkg: Package, reproducible: bool, build_time: int) -> Payload:
    files = collect_files(pkg, reproducible, build_time)
    entries = [
        CpioEntry(
            name="." + record.path,
            mode=record.mode,
            uid=record.uid,
            gid=record.gid,
            mtime=record.mtime,
            data=record.data,
            inode=inode,
            nlink=2 if stat.S_ISDIR(record.mode) else 1,
        )
        for inode, record in enumerate(files, start=1)
    ]
    archive = encode_archive(entries)
    compressed = lzma.compress(archive, format=lzma.FORMAT_ALONE, preset=PAYLOAD_COMPRESSION_PRESET)
    return Payload(binary=compressed, uncompressed_size=len(archive), files=files)


# ──────────────────────────────────────────────
# Header section
# ──────────────────────────────────────────────


def _relation_entries(relations: list[PackageRelation]) -> list[tuple[str, int, str]]:
    result = []
    for rel in relations:
        if not rel.constraints:
            result.append((rel.related_package, SENSE_ANY, ""))
        for constraint in rel.constraints:
            result.append((rel.related_package, RELATION_FLAGS[constraint.relation], constraint.version))
    return result


def _add_relation_tags(
    entries: list[IndexEntry],
    relations: list[tuple[str, int, str]],
    name_tag: Tag,
    flags_tag: Tag,
    version_tag: Tag,
) -> None:
    if not relations:
        return
    # relation order carries no meaning, so sort for a canonical header
    relations = sorted(relations)
    entries.append(IndexEntry.string_array(name_tag, [r[0] for r in relations]))
    entries.append(IndexEntry.int32(flags_tag, [r[1] for r in relations]))
    entries.append(IndexEntry.string_array(version_tag, [r[2] for r in relations]))


def _add_file_tags(entries: list[IndexEntry], files: list[_FileRecord]) -> None:
    if not files:
        return

    dirnames: list[str] = []
    dirindexes = []
    basenames = []
    for record in files:
        dirname, _, basename = record.path.rpartition("/")
        dirname += "/"
        if dirname not in dirnames:
            dirnames.append(dirname)
        dirindexes.append(dirnames.index(dirname))
        basenames.append(basename)

    count = len(files)
    entries += [
        IndexEntry.int32(Tag.FILESIZES, [r.size for r in files]),
        IndexEntry.int16(Tag.FILEMODES, [r.mode for r in files]),
        IndexEntry.int16(Tag.FILERDEVS, [0] * count),
        IndexEntry.int32(Tag.FILEMTIMES, [r.mtime for r in files]),
        IndexEntry.string_array(Tag.FILEDIGESTS, [r.digest for r in files]),
        IndexEntry.string_array(Tag.FILELINKTOS, [r.link_target for r in files]),
        IndexEntry.int32(Tag.FILEFLAGS, [r.flags for r in files]),
        IndexEntry.string_array(Tag.FILEUSERNAME, [r.user for r in files]),
        IndexEntry.string_array(Tag.FILEGROUPNAME, [r.group for r in files]),
        IndexEntry.int32(Tag.FILEVERIFYFLAGS, [0xFFFFFFFF] * count),
        IndexEntry.int32(Tag.FILEDEVICES, [1] * count),
        IndexEntry.int32(Tag.FILEINODES, list(range(1, count + 1))),
        IndexEntry.string_array(Tag.FILELANGS, [""] * count),
        IndexEntry.int32(Tag.DIRINDEXES, dirindexes),
        IndexEntry.string_array(Tag.BASENAMES, basenames),
        IndexEntry.string_array(Tag.DIRNAMES, dirnames),
        IndexEntry.int32(Tag.FILEDIGESTALGO, [DIGESTALGO_SHA256]),
    ]


def make_header_section(pkg: Package, payload: Payload, reproducible: bool, build_time: int) -> bytes:
    description = pkg.description.strip()
    summary = description.splitlines()[0] if description else pkg.name

    entries = [
        IndexEntry.string_array(Tag.HEADERI18NTABLE, ["C"]),
        IndexEntry.string(Tag.NAME, pkg.name),
        IndexEntry.string(Tag.VERSION, pkg.version),
        IndexEntry.string(Tag.RELEASE, str(pkg.release)),
        IndexEntry.i18n_string(Tag.SUMMARY, summary),
        IndexEntry.i18n_string(Tag.DESCRIPTION, description),
        IndexEntry.int32(Tag.SIZE, [pkg.installed_size()]),
        IndexEntry.string(Tag.LICENSE, "None"),
        IndexEntry.string(Tag.PACKAGER, pkg.author or "Unknown Packager"),
        IndexEntry.i18n_string(Tag.GROUP, "Unspecified"),
        IndexEntry.string(Tag.OS, "linux"),
        IndexEntry.string(Tag.ARCH, ARCH_NAMES[pkg.architecture]),
        IndexEntry.string(Tag.SOURCERPM, f"{pkg.name}-{pkg.version}-{pkg.release}.src.rpm"),
        IndexEntry.int32(Tag.ARCHIVESIZE, [payload.uncompressed_size]),
        IndexEntry.string(Tag.PAYLOADFORMAT, "cpio"),
        IndexEntry.string(Tag.PAYLOADCOMPRESSOR, "lzma"),
        IndexEntry.string(Tag.PAYLOADFLAGS, str(PAYLOAD_COMPRESSION_PRESET)),
        IndexEntry.string_array(Tag.PAYLOADDIGEST, [hashlib.sha256(payload.binary).hexdigest()]),
        IndexEntry.int32(Tag.PAYLOADDIGESTALGO, [DIGESTALGO_SHA256]),
    ]
    if pkg.epoch > 0:
        entries.append(IndexEntry.int32(Tag.EPOCH, [pkg.epoch]))
    if not reproducible:
        entries.append(IndexEntry.int32(Tag.BUILDTIME, [build_time]))
        entries.append(IndexEntry.string(Tag.BUILDHOST, socket.gethostname()))

    requires = _relation_entries(pkg.requires)
    requires += [(name, SENSE_RPMLIB | SENSE_LESS | SENSE_EQUAL, version) for name, version in RPMLIB_FEATURES]

    setup_script = pkg.setup_script.strip()
    if setup_script:
        entries.append(IndexEntry.string(Tag.POSTIN, setup_script))
        entries.append(IndexEntry.string(Tag.POSTINPROG, SCRIPT_INTERPRETER))
        requires.append((SCRIPT_INTERPRETER, SENSE_INTERP | SENSE_SCRIPT_POST, ""))
    cleanup_script = pkg.cleanup_script.strip()
    if cleanup_script:
        entries.append(IndexEntry.string(Tag.POSTUN, cleanup_script))
        entries.append(IndexEntry.string(Tag.POSTUNPROG, SCRIPT_INTERPRETER))
        requires.append((SCRIPT_INTERPRETER, SENSE_INTERP | SENSE_SCRIPT_POSTUN, ""))

    # every package provides itself
    provides = [(pkg.name, SENSE_EQUAL, full_version_string(pkg))] + _relation_entries(pkg.provides)

    _add_relation_tags(entries, provides, Tag.PROVIDENAME, Tag.PROVIDEFLAGS, Tag.PROVIDEVERSION)
    _add_relation_tags(entries, requires, Tag.REQUIRENAME, Tag.REQUIREFLAGS, Tag.REQUIREVERSION)
    _add_relation_tags(
        entries, _relation_entries(pkg.conflicts), Tag.CONFLICTNAME, Tag.CONFLICTFLAGS, Tag.CONFLICTVERSION
    )
    _add_relation_tags(
        entries, _relation_entries(pkg.replaces), Tag.OBSOLETENAME, Tag.OBSOLETEFLAGS, Tag.OBSOLETEVERSION
    )
    _add_file_tags(entries, payload.files)

    return encode_header(entries, Tag.HEADERIMMUTABLE)


# ──────────────────────────────────────────────
# Signature section
# ──────────────────────────────────────────────


def make_signature_section(header: bytes, payload: Payload) -> bytes:
    header_and_payload = header + payload.binary
    entries = [
        IndexEntry.string(SignatureTag.SHA1, hashlib.sha1(header).hexdigest()),
        IndexEntry.string(SignatureTag.SHA256, hashlib.sha256(header).hexdigest()),
        IndexEntry.int32(SignatureTag.SIZE, [len(header_and_payload)]),
        IndexEntry.binary(SignatureTag.MD5, hashlib.md5(header_and_payload).digest()),
        IndexEntry.int32(SignatureTag.PAYLOADSIZE, [payload.uncompressed_size]),
    ]
    return encode_header(entries, Tag.HEADERSIGNATURES)
