"""NAR (Nix Archive) streaming reader and writer.

NAR is Nix's deterministic archive format. Unlike tar:
- No timestamps, uid/gid, or permission modes (only executable bit)
- Directory entries are sorted, so the same tree always serializes identically
- Symlinks are stored as-is (not resolved)
- The root node may be a plain file or a symlink, not just a directory

Wire format: every value (keywords, names, file contents) is encoded as:
    uint64_le(length) + raw bytes + zero-padding to 8-byte boundary

Grammar (where str(x) is the wire encoding above):
    str("nix-archive-1")
    str("(") str("type")
      str("regular") [str("executable") str("")] str("contents") str(<data>)
    | str("symlink") str("target") str(<target>)
    | str("directory") { str("entry") str("(") str("name") str(<n>) str("node") <recurse> str(")") }
    str(")")

Both classes below work one node at a time, in that order: a header for each
node, parent before children, and for regular files the contents right after
their header. Neither ever holds more than one read or write chunk.

See: nix/src/libutil/archive.cc — dump(), parseDump()
"""

import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from nartar.errors import MalformedInput, TruncatedBody, UnsupportedNodeKind

MAGIC = "nix-archive-1"

TYPE_REGULAR = "regular"
TYPE_SYMLINK = "symlink"
TYPE_DIRECTORY = "directory"
NODE_TYPES = (TYPE_REGULAR, TYPE_SYMLINK, TYPE_DIRECTORY)

# Upper bound for any token other than file contents (names, link targets).
MAX_TOKEN = 1 << 16

_CHUNK = 1 << 16


def _pad8(n: int) -> int:
    """Bytes of zero-padding needed to reach 8-byte alignment."""
    r = n % 8
    return (8 - r) % 8


def _encode(s: str | bytes) -> bytes:
    # Names that were not valid UTF-8 come back out as the original bytes.
    if isinstance(s, str):
        return s.encode("utf-8", "surrogateescape")
    return s


def _decode(b: bytes) -> str:
    return b.decode("utf-8", "surrogateescape")


def _str(s: str | bytes) -> bytes:
    """Encode a value in NAR wire format: uint64_le length + data + pad."""
    s = _encode(s)
    return struct.pack("<Q", len(s)) + s + b"\0" * _pad8(len(s))


def _join(parent: str, name: str) -> str:
    if parent == "/":
        return "/" + name
    return f"{parent}/{name}"


@dataclass
class NarHeader:
    path: str
    type: str
    size: int = 0  # regular only
    executable: bool = False  # regular only
    link_target: str = ""  # symlink only


class NarReader:
    """Sequential NAR parser.

    ``next()`` returns one NarHeader per node (or None once the archive is
    exhausted); iterating the reader does the same. After a regular file's
    header, ``read()`` returns bytes of its contents and never reads past
    them. Contents left unread are skipped by the following ``next()``.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.offset = 0
        self._path = "/"
        self._remaining = 0
        self._nodes = self._parse()

    def next(self) -> NarHeader | None:
        return next(self._nodes, None)

    def __iter__(self) -> Iterator[NarHeader]:
        return self._nodes

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes of the current file body (all of it if size < 0)."""
        if size < 0 or size > self._remaining:
            size = self._remaining
        data = self._read_exact(size, body=True)
        self._remaining -= size
        return data

    # --- Wire format ---

    def _read_exact(self, n: int, body: bool = False) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self.stream.read(n - len(buf))
            if not chunk:
                if body:
                    missing = self._remaining - len(buf)
                    raise TruncatedBody(f"file body ends {missing} bytes early", path=self._path)
                raise MalformedInput(
                    f"unexpected end of archive at offset {self.offset + len(buf)}", path=self._path
                )
            buf.extend(chunk)
        self.offset += n
        return bytes(buf)

    def _read_uint64(self) -> int:
        return struct.unpack("<Q", self._read_exact(8))[0]

    def _read_padding(self, n: int) -> None:
        pad = self._read_exact(_pad8(n))
        if pad.strip(b"\0"):
            raise MalformedInput(f"non-zero padding before offset {self.offset}", path=self._path)

    def _read_token(self) -> bytes:
        start = self.offset
        n = self._read_uint64()
        if n > MAX_TOKEN:
            raise MalformedInput(f"token of {n} bytes at offset {start} is too long", path=self._path)
        data = self._read_exact(n)
        self._read_padding(n)
        return data

    def _expect(self, token: str) -> None:
        start = self.offset
        got = self._read_token()
        if got != token.encode():
            raise MalformedInput(f"expected {token!r} at offset {start}, got {got!r}", path=self._path)

    # --- Grammar ---

    def _parse(self) -> Iterator[NarHeader]:
        self._expect(MAGIC)
        yield from self._parse_node("/")

    def _parse_node(self, path: str) -> Iterator[NarHeader]:
        self._path = path
        self._expect("(")
        self._expect("type")
        node_type = _decode(self._read_token())

        if node_type == TYPE_REGULAR:
            executable = False
            tag = self._read_token()
            if tag == b"executable":
                self._expect("")
                executable = True
                tag = self._read_token()
            if tag != b"contents":
                raise MalformedInput(f"expected 'contents', got {tag!r}", path=path)
            size = self._read_uint64()
            self._remaining = size
            yield NarHeader(path, TYPE_REGULAR, size=size, executable=executable)
            while self._remaining:
                self.read(_CHUNK)
            self._read_padding(size)
            self._expect(")")

        elif node_type == TYPE_SYMLINK:
            self._expect("target")
            target = _decode(self._read_token())
            yield NarHeader(path, TYPE_SYMLINK, link_target=target)
            self._expect(")")

        elif node_type == TYPE_DIRECTORY:
            yield NarHeader(path, TYPE_DIRECTORY)
            prev = None
            while True:
                self._path = path
                tag = self._read_token()
                if tag == b")":
                    return
                if tag != b"entry":
                    raise MalformedInput(f"expected 'entry' or ')', got {tag!r}", path=path)
                self._expect("(")
                self._expect("name")
                name = self._read_token()
                if name in (b"", b".", b"..") or b"/" in name or b"\0" in name:
                    raise MalformedInput(f"invalid entry name {name!r}", path=path)
                # Entries MUST be sorted, and therefore unique.
                if prev is not None and name <= prev:
                    raise MalformedInput(f"entry {name!r} is not sorted after {prev!r}", path=path)
                prev = name
                self._expect("node")
                yield from self._parse_node(_join(path, _decode(name)))
                self._path = path
                self._expect(")")

        else:
            raise UnsupportedNodeKind(f"unsupported NAR node type {node_type!r}", path=path)


@dataclass
class _OpenDir:
    path: str
    last_name: bytes | None = None


class NarWriter:
    """Sequential NAR serializer.

    Headers must arrive in canonical order: the root first, then every node
    after its parent, with siblings in strictly increasing byte order. A
    regular file's header is followed by exactly ``size`` bytes passed to
    ``write()``. ``close()`` terminates the open nodes; the underlying
    stream is left open.
    """

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.closed = False
        self._started = False
        self._dirs: list[_OpenDir] = []
        self._leaf: NarHeader | None = None
        self._remaining = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, *exc):
        if exc_type is None:
            self.close()

    def write_header(self, hdr: NarHeader) -> None:
        if self.closed:
            raise ValueError("NAR writer is closed")
        if hdr.type not in NODE_TYPES:
            raise UnsupportedNodeKind(f"unsupported NAR node type {hdr.type!r}", path=hdr.path)
        self._finish_leaf()

        if not self._started:
            if hdr.path != "/":
                raise ValueError(f"first NAR node must be '/', got {hdr.path!r}")
            self._started = True
            self._out(_str(MAGIC))
        else:
            self._open_entry(hdr.path)

        self._out(_str("(") + _str("type"))
        if hdr.type == TYPE_DIRECTORY:
            self._out(_str(TYPE_DIRECTORY))
            self._dirs.append(_OpenDir(hdr.path))
        elif hdr.type == TYPE_SYMLINK:
            self._out(_str(TYPE_SYMLINK) + _str("target") + _str(hdr.link_target))
            self._leaf = hdr
        else:
            parts = [_str(TYPE_REGULAR)]
            # NAR only preserves the executable bit.
            if hdr.executable:
                parts += [_str("executable"), _str("")]
            parts += [_str("contents"), struct.pack("<Q", hdr.size)]
            self._out(b"".join(parts))
            self._leaf = hdr
            self._remaining = hdr.size

    def write(self, data: bytes) -> int:
        if self._leaf is None or self._leaf.type != TYPE_REGULAR:
            raise ValueError("no regular file is open for writing")
        if len(data) > self._remaining:
            raise ValueError(f"{self._leaf.path}: write exceeds declared size {self._leaf.size}")
        self._out(data)
        self._remaining -= len(data)
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        if not self._started:
            raise ValueError("no root node was written")
        self._finish_leaf()
        while self._dirs:
            self._close_dir()
        self.closed = True
        self.stream.flush()

    def _open_entry(self, path: str) -> None:
        if not path.startswith("/") or path == "/":
            raise ValueError(f"expected an absolute non-root path, got {path!r}")
        parent, _, name = path.rpartition("/")
        parent = parent or "/"
        while self._dirs and self._dirs[-1].path != parent:
            self._close_dir()
        if not self._dirs:
            raise ValueError(f"{path}: parent {parent} is not an open directory")

        frame = self._dirs[-1]
        raw = _encode(name)
        if raw in (b"", b".", b"..") or b"\0" in raw:
            raise ValueError(f"{path}: invalid entry name {name!r}")
        if frame.last_name is not None and raw <= frame.last_name:
            raise ValueError(f"{path}: out of order after {_decode(frame.last_name)!r}")
        frame.last_name = raw
        self._out(_str("entry") + _str("(") + _str("name") + _str(raw) + _str("node"))

    def _finish_leaf(self) -> None:
        leaf = self._leaf
        if leaf is None:
            return
        if leaf.type == TYPE_REGULAR:
            if self._remaining:
                raise TruncatedBody(
                    f"{self._remaining} of {leaf.size} body bytes were never written", path=leaf.path
                )
            self._out(b"\0" * _pad8(leaf.size))
        self._leaf = None
        self._close_node(leaf.path)

    def _close_dir(self) -> None:
        self._close_node(self._dirs.pop().path)

    def _close_node(self, path: str) -> None:
        self._out(_str(")"))
        # Every node below the root sits inside an entry ( ... ) wrapper.
        if path != "/":
            self._out(_str(")"))

    def _out(self, data: bytes) -> None:
        self.stream.write(data)
