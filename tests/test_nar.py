"""Tests for the NAR reader and writer."""

import base64
import hashlib
import io

import pytest

from nartar.errors import MalformedInput, TruncatedBody, UnsupportedNodeKind
from nartar.nar import TYPE_DIRECTORY, TYPE_REGULAR, TYPE_SYMLINK, NarHeader, NarReader, NarWriter

from nar_fixtures import directory, make_nar, read_nar, regular, symlink, wire


# From: nix hash path /tmp/hello.txt (file containing "hello", no newline)
# sha256-CkMIecJm+LV/QJKg+TXPP6zUi7zN5XYNR0jKQFFx6Wk=
HELLO_NAR_HASH_B64 = "CkMIecJm+LV/QJKg+TXPP6zUi7zN5XYNR0jKQFFx6Wk="
HELLO_NAR_HASH = base64.b64decode(HELLO_NAR_HASH_B64)

HELLO_NAR = (
    wire("nix-archive-1")
    + wire("(")
    + wire("type")
    + wire("regular")
    + wire("contents")
    + wire("hello")
    + wire(")")
)


def test_regular_file():
    """NAR of a regular file containing 'hello'."""
    nar = make_nar(regular("/", b"hello"))
    assert nar == HELLO_NAR
    assert hashlib.sha256(nar).digest() == HELLO_NAR_HASH


def test_empty_file():
    nar = make_nar(regular("/", b""))
    expected = (
        wire("nix-archive-1")
        + wire("(")
        + wire("type")
        + wire("regular")
        + wire("contents")
        + wire(b"")
        + wire(")")
    )
    assert nar == expected


def test_executable_file():
    nar = make_nar(regular("/", b"#!/bin/sh\n", executable=True))
    assert wire("executable") + wire("") + wire("contents") in nar


def test_symlink_root():
    nar = make_nar(symlink("/", "target.txt"))
    expected = (
        wire("nix-archive-1")
        + wire("(")
        + wire("type")
        + wire("symlink")
        + wire("target")
        + wire("target.txt")
        + wire(")")
    )
    assert nar == expected


def test_directory():
    nar = make_nar(directory("/"), regular("/a.txt", b"aaa"))
    expected = (
        wire("nix-archive-1")
        + wire("(") + wire("type") + wire("directory")
        + wire("entry") + wire("(") + wire("name") + wire("a.txt") + wire("node")
        + wire("(") + wire("type") + wire("regular") + wire("contents") + wire("aaa") + wire(")")
        + wire(")")
        + wire(")")
    )
    assert nar == expected


def test_nested_directories_close_in_order():
    nar = make_nar(
        directory("/"),
        directory("/a"),
        directory("/a/b"),
        regular("/a/b/c", b"deep"),
        regular("/z", b"top"),
    )
    headers = [hdr.path for hdr, _ in read_nar(nar)]
    assert headers == ["/", "/a", "/a/b", "/a/b/c", "/z"]


def test_reader_headers_and_bodies():
    nar = make_nar(
        directory("/"),
        directory("/bin"),
        regular("/bin/hello", b"#!/bin/sh\necho hi\n", executable=True),
        symlink("/lib", "bin"),
        regular("/readme", b"read me"),
    )
    nodes = read_nar(nar)
    assert [(h.path, h.type) for h, _ in nodes] == [
        ("/", TYPE_DIRECTORY),
        ("/bin", TYPE_DIRECTORY),
        ("/bin/hello", TYPE_REGULAR),
        ("/lib", TYPE_SYMLINK),
        ("/readme", TYPE_REGULAR),
    ]
    hello, body = nodes[2]
    assert hello.executable
    assert hello.size == len(body)
    assert body == b"#!/bin/sh\necho hi\n"
    assert nodes[3][0].link_target == "bin"
    assert not nodes[4][0].executable


def test_reader_skips_unread_body():
    nar = make_nar(directory("/"), regular("/a", b"x" * 1000), regular("/b", b"second"))
    reader = NarReader(io.BytesIO(nar))
    assert reader.next().path == "/"
    assert reader.next().path == "/a"
    assert reader.read(3) == b"xxx"
    hdr = reader.next()
    assert hdr.path == "/b"
    assert reader.read() == b"second"
    assert reader.next() is None


def test_reader_read_stops_at_body_end():
    reader = NarReader(io.BytesIO(HELLO_NAR))
    reader.next()
    assert reader.read(100) == b"hello"
    assert reader.read(100) == b""


def test_reader_bad_magic():
    with pytest.raises(MalformedInput, match="nix-archive-1"):
        NarReader(io.BytesIO(wire("nix-archive-2") + wire("("))).next()


def test_reader_unknown_node_type():
    data = wire("nix-archive-1") + wire("(") + wire("type") + wire("fifo") + wire(")")
    with pytest.raises(UnsupportedNodeKind, match="fifo"):
        NarReader(io.BytesIO(data)).next()


def test_reader_truncated_body():
    cut = HELLO_NAR[: HELLO_NAR.index(b"hello") + 2]
    reader = NarReader(io.BytesIO(cut))
    assert reader.next().size == 5
    with pytest.raises(TruncatedBody, match="3 bytes early"):
        reader.read()


def test_reader_truncated_token():
    with pytest.raises(MalformedInput, match="unexpected end of archive"):
        NarReader(io.BytesIO(HELLO_NAR[:20])).next()


def test_reader_unsorted_entries():
    def entry(name):
        return (
            wire("entry") + wire("(") + wire("name") + wire(name) + wire("node")
            + wire("(") + wire("type") + wire("regular") + wire("contents") + wire("") + wire(")")
            + wire(")")
        )

    data = (
        wire("nix-archive-1") + wire("(") + wire("type") + wire("directory")
        + entry("b") + entry("a") + wire(")")
    )
    with pytest.raises(MalformedInput, match="not sorted"):
        list(NarReader(io.BytesIO(data)))


def test_reader_rejects_slash_in_name():
    data = (
        wire("nix-archive-1") + wire("(") + wire("type") + wire("directory")
        + wire("entry") + wire("(") + wire("name") + wire("a/b") + wire("node")
    )
    with pytest.raises(MalformedInput, match="invalid entry name"):
        list(NarReader(io.BytesIO(data)))


def test_writer_rejects_out_of_order():
    nar = NarWriter(io.BytesIO())
    nar.write_header(NarHeader("/", TYPE_DIRECTORY))
    nar.write_header(NarHeader("/b", TYPE_DIRECTORY))
    with pytest.raises(ValueError, match="out of order"):
        nar.write_header(NarHeader("/a", TYPE_DIRECTORY))


def test_writer_rejects_missing_parent():
    nar = NarWriter(io.BytesIO())
    nar.write_header(NarHeader("/", TYPE_DIRECTORY))
    with pytest.raises(ValueError, match="not an open directory"):
        nar.write_header(NarHeader("/a/b", TYPE_DIRECTORY))


def test_writer_first_node_must_be_root():
    with pytest.raises(ValueError, match="first NAR node"):
        NarWriter(io.BytesIO()).write_header(NarHeader("/a", TYPE_DIRECTORY))


def test_writer_short_body():
    nar = NarWriter(io.BytesIO())
    nar.write_header(NarHeader("/", TYPE_REGULAR, size=5))
    nar.write(b"he")
    with pytest.raises(TruncatedBody, match="3 of 5"):
        nar.close()


def test_writer_long_body():
    nar = NarWriter(io.BytesIO())
    nar.write_header(NarHeader("/", TYPE_REGULAR, size=2))
    with pytest.raises(ValueError, match="exceeds declared size"):
        nar.write(b"hello")


def test_non_utf8_names_roundtrip():
    name = b"caf\xe9".decode("utf-8", "surrogateescape")
    nar = make_nar(directory("/"), regular("/" + name, b"x"))
    assert wire(b"caf\xe9") in nar
    assert read_nar(nar)[1][0].path == "/" + name
