"""Tests for the RPM header encoding and the RPM generator."""

import hashlib
import lzma
import stat
import struct
import tempfile
from pathlib import Path

import pytest

from holo_build.core.build import PackageBuilder
from holo_build.encoders.rpmheader import (
    FILE_CONFIG,
    FILE_NOREPLACE,
    HEADER_MAGIC,
    LEAD_MAGIC,
    LEAD_SIZE,
    IndexEntry,
    Lead,
    SignatureTag,
    Tag,
    TagType,
    append_aligned_to_8_bytes,
    encode_header,
)
from holo_build.generators.rpm import RPMGenerator
from holo_build.models.filesystem import FSRegularFile
from holo_build.models.package import Architecture, PackageRelation

from test_cpio import parse_newc


def read_header(data: bytes, offset: int = 0) -> tuple[dict[int, object], int]:
    """Decode a header structure at ``offset``. Returns (tag -> value, end offset)."""
    assert data[offset : offset + 8] == HEADER_MAGIC
    count, store_size = struct.unpack(">II", data[offset + 8 : offset + 16])
    index_start = offset + 16
    store_start = index_start + 16 * count
    store = data[store_start : store_start + store_size]

    values = {}
    for i in range(count):
        tag, type_, pos, n = struct.unpack(">iIiI", data[index_start + 16 * i : index_start + 16 * (i + 1)])
        match TagType(type_):
            case TagType.STRING | TagType.I18NSTRING:
                values[tag] = store[pos : store.index(b"\x00", pos)].decode("utf-8")
            case TagType.STRING_ARRAY:
                items = []
                for _ in range(n):
                    end = store.index(b"\x00", pos)
                    items.append(store[pos:end].decode("utf-8"))
                    pos = end + 1
                values[tag] = items
            case TagType.INT16:
                assert pos % 2 == 0
                values[tag] = list(struct.unpack(f">{n}H", store[pos : pos + 2 * n]))
            case TagType.INT32:
                assert pos % 4 == 0
                values[tag] = list(struct.unpack(f">{n}I", store[pos : pos + 4 * n]))
            case TagType.BIN:
                values[tag] = store[pos : pos + n]
    return values, store_start + store_size


def read_rpm(data: bytes) -> dict:
    """Split an RPM file into lead, signature, header and payload."""
    assert data[:4] == LEAD_MAGIC
    signature, sig_end = read_header(data, LEAD_SIZE)
    header_start = sig_end + (-sig_end % 8)
    assert data[sig_end:header_start] == b"\x00" * (header_start - sig_end)
    header, header_end = read_header(data, header_start)
    return {
        "lead": data[:LEAD_SIZE],
        "signature": signature,
        "header": header,
        "header_bytes": data[header_start:header_end],
        "payload": data[header_end:],
    }


# ═══════════════════════════════════════════
# Header Structure Tests
# ═══════════════════════════════════════════


class TestHeaderEncoding:
    def test_region_tag_and_trailer(self):
        encoded = encode_header([IndexEntry.string(Tag.NAME, "foo")], Tag.HEADERIMMUTABLE)
        values, end = read_header(encoded)

        assert end == len(encoded)
        assert values[Tag.NAME] == "foo"
        # the first index entry is the region tag pointing at the trailer
        first = struct.unpack(">iIiI", encoded[16:32])
        assert first[0] == Tag.HEADERIMMUTABLE
        assert values[Tag.HEADERIMMUTABLE] == struct.pack(">iIiI", Tag.HEADERIMMUTABLE, TagType.BIN, -32, 16)

    def test_entries_sorted_and_aligned(self):
        entries = [
            IndexEntry.int32(Tag.SIZE, [70000]),
            IndexEntry.string(Tag.NAME, "odd"),
            IndexEntry.int16(Tag.FILEMODES, [0o100644, 0o40755]),
        ]
        encoded = encode_header(entries, Tag.HEADERIMMUTABLE)
        count = struct.unpack(">I", encoded[8:12])[0]
        tags = [struct.unpack(">i", encoded[16 + 16 * i : 20 + 16 * i])[0] for i in range(count)]
        assert tags == [Tag.HEADERIMMUTABLE, Tag.NAME, Tag.SIZE, Tag.FILEMODES]

        values, _ = read_header(encoded)
        assert values[Tag.SIZE] == [70000]
        assert values[Tag.FILEMODES] == [0o100644, 0o40755]

    def test_lead(self):
        lead = Lead(name="foo-1.0-1", architecture_id=1).to_binary()
        assert len(lead) == LEAD_SIZE
        assert lead[:4] == LEAD_MAGIC
        assert lead[4:6] == b"\x03\x00"
        assert lead[10:19] == b"foo-1.0-1"
        assert struct.unpack(">HH", lead[76:80]) == (1, 5)

    def test_append_aligned(self):
        assert append_aligned_to_8_bytes(b"abc", b"d") == b"abc\x00\x00\x00\x00\x00d"
        assert append_aligned_to_8_bytes(b"12345678", b"9") == b"123456789"


# ═══════════════════════════════════════════
# RPM Generator Tests
# ═══════════════════════════════════════════


class TestRPMGenerator:
    def test_identity_fields(self, sample_package):
        rpm = read_rpm(RPMGenerator().build_in_memory(sample_package, reproducible=False))
        header = rpm["header"]

        assert rpm["lead"][10:19] == b"foo-1.2-3"
        assert header[Tag.NAME] == "foo"
        assert header[Tag.VERSION] == "1.2"
        assert header[Tag.RELEASE] == "3"
        assert header[Tag.ARCH] == "x86_64"
        assert header[Tag.OS] == "linux"
        assert header[Tag.SUMMARY] == "Example package"
        assert header[Tag.PACKAGER] == "Jane Doe <jane@example.org>"
        assert Tag.EPOCH not in header
        assert Tag.BUILDTIME in header

    def test_epoch(self, make_package):
        rpm = read_rpm(RPMGenerator().build_in_memory(make_package(epoch=2), reproducible=True))
        assert rpm["header"][Tag.EPOCH] == [2]
        provides = dict(zip(rpm["header"][Tag.PROVIDENAME], rpm["header"][Tag.PROVIDEVERSION]))
        assert provides["foo"] == "2:1.2-3"

    def test_signature_matches_header_and_payload(self, sample_package):
        rpm = read_rpm(RPMGenerator().build_in_memory(sample_package, reproducible=True))
        signature = rpm["signature"]
        header_and_payload = rpm["header_bytes"] + rpm["payload"]

        assert signature[SignatureTag.SHA256] == hashlib.sha256(rpm["header_bytes"]).hexdigest()
        assert signature[SignatureTag.SHA1] == hashlib.sha1(rpm["header_bytes"]).hexdigest()
        assert signature[SignatureTag.SIZE] == [len(header_and_payload)]
        assert signature[SignatureTag.MD5] == hashlib.md5(header_and_payload).digest()

    def test_payload_contents(self, sample_package):
        rpm = read_rpm(RPMGenerator().build_in_memory(sample_package, reproducible=True))
        archive = lzma.decompress(rpm["payload"], format=lzma.FORMAT_ALONE)
        assert rpm["header"][Tag.ARCHIVESIZE] == [len(archive)]
        assert rpm["signature"][SignatureTag.PAYLOADSIZE] == [len(archive)]

        entries = {e["name"]: e for e in parse_newc(archive)}
        assert list(entries) == [
            "./etc/foo.conf",
            "./etc/foo.d",
            "./usr/bin/foo",
            "./usr/bin/foo-alias",
            "TRAILER!!!",
        ]
        assert entries["./etc/foo.conf"]["data"] == b"answer = 42\n"
        assert entries["./etc/foo.conf"]["mode"] == stat.S_IFREG | 0o644
        assert entries["./etc/foo.d"]["mode"] == stat.S_IFDIR | 0o750
        assert entries["./usr/bin/foo"]["mode"] == stat.S_IFREG | 0o755
        assert entries["./usr/bin/foo-alias"]["mode"] == stat.S_IFLNK | 0o777
        assert entries["./usr/bin/foo-alias"]["data"] == b"foo"
        assert all(e["mtime"] == 0 for e in entries.values())

    def test_file_manifest(self, sample_package):
        header = read_rpm(RPMGenerator().build_in_memory(sample_package, reproducible=True))["header"]

        assert header[Tag.DIRNAMES] == ["/etc/", "/usr/bin/"]
        assert header[Tag.BASENAMES] == ["foo.conf", "foo.d", "foo", "foo-alias"]
        assert header[Tag.DIRINDEXES] == [0, 0, 1, 1]
        assert header[Tag.FILEFLAGS] == [FILE_CONFIG | FILE_NOREPLACE, 0, FILE_CONFIG | FILE_NOREPLACE, 0]
        assert header[Tag.FILELINKTOS] == ["", "", "", "foo"]
        assert header[Tag.FILEDIGESTS][0] == hashlib.sha256(b"answer = 42\n").hexdigest()
        assert header[Tag.FILEDIGESTS][1] == ""
        assert header[Tag.FILEUSERNAME] == ["root"] * 4

    def test_relations(self, sample_package):
        header = read_rpm(RPMGenerator().build_in_memory(sample_package, reproducible=True))["header"]

        requires = header[Tag.REQUIRENAME]
        assert "bar" in requires
        assert "/bin/sh" in requires
        assert "rpmlib(PayloadIsLzma)" in requires
        assert requires == sorted(requires)
        assert header[Tag.POSTIN] == "systemctl daemon-reload"
        assert Tag.POSTUN not in header

        assert set(header[Tag.PROVIDENAME]) == {"foo", "foo-compat"}
        assert header[Tag.CONFLICTNAME] == ["foo-legacy"]
        assert header[Tag.OBSOLETENAME] == ["foo-old"]
        assert header[Tag.OBSOLETEVERSION] == ["1.0"]

    def test_reproducible_builds_are_identical(self, make_package):
        first = RPMGenerator().build_in_memory(make_package(), reproducible=True)
        second = RPMGenerator().build_in_memory(make_package(), reproducible=True)
        assert first == second

        header = read_rpm(first)["header"]
        assert Tag.BUILDTIME not in header
        assert Tag.BUILDHOST not in header

    def test_regions_are_aligned(self, sample_package):
        data = RPMGenerator().build_in_memory(sample_package, reproducible=True)
        _, sig_end = read_header(data, LEAD_SIZE)
        header_start = sig_end + (-sig_end % 8)
        assert header_start % 8 == 0
        assert data[header_start : header_start + 8] == HEADER_MAGIC


class TestRPMGeneratorNaming:
    def test_file_name(self, make_package):
        generator = RPMGenerator()
        assert generator.recommended_file_name(make_package()) == "foo-1.2-3.x86_64.rpm"
        assert generator.recommended_file_name(make_package(epoch=1)) == "foo-1:1.2-3.x86_64.rpm"
        assert generator.recommended_file_name(make_package(architecture=Architecture.ANY)) == "foo-1.2-3.noarch.rpm"

    def test_validate(self, make_package):
        generator = RPMGenerator()
        assert generator.validate(make_package()) == []
        assert len(generator.validate(make_package(version="1.2-3"))) == 1
        pkg = make_package(requires=[PackageRelation("foo bar")])
        assert "whitespace" in generator.validate(pkg)[0]


class TestRPMBuild:
    def test_holo_plugin_package(self, make_package):
        pkg = make_package(setup_script="")
        pkg.fs_root.insert("/usr/share/holo/files/01-foo/etc/foo.conf", FSRegularFile(content="x"))

        with tempfile.TemporaryDirectory() as tmpdir:
            path = PackageBuilder(RPMGenerator(), work_dir=Path(tmpdir)).build(pkg, reproducible=True)
            assert path.name == "foo-1.2-3.x86_64.rpm"
            header = read_rpm(path.read_bytes())["header"]

        assert header[Tag.REQUIRENAME].count("holo-files") == 1
        assert header[Tag.POSTIN] == "holo apply"
        assert header[Tag.POSTUN] == "holo apply"
        index = header[Tag.BASENAMES].index("foo.conf", 1)
        assert header[Tag.FILEFLAGS][index] == 0

    def test_materialized_build_matches_in_memory(self, make_package):
        generator = RPMGenerator()
        with tempfile.TemporaryDirectory() as tmpdir:
            via_root = generator.build(make_package(), Path(tmpdir), reproducible=True)
        assert via_root == generator.build_in_memory(make_package(), reproducible=True)
