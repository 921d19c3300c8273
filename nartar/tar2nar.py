"""Assemble a NAR stream from a tar stream.

Tar members may come in any order, and parent directories may be missing
altogether. NAR output, on the other hand, must list every node after its
parent with siblings sorted, so the whole tree is collected in memory first
and written out in canonical order once the tar stream is exhausted.

Only members under the marker name (see nartar.address) are imported.
Missing parent directories are synthesized.
"""

import logging
import posixpath
import tarfile
from dataclasses import dataclass, field
from typing import BinaryIO

from nartar.address import tar_to_nar_path, to_slash
from nartar.errors import (
    MalformedInput,
    PathConflict,
    RootConflict,
    TruncatedBody,
    UnsupportedEntryType,
)
from nartar.nar import TYPE_DIRECTORY, TYPE_REGULAR, TYPE_SYMLINK, NarHeader, NarWriter

logger = logging.getLogger(__name__)

REGULAR_TYPES = (tarfile.REGTYPE, tarfile.AREGTYPE)

# tarfile resolves these into the following member itself.
EXTENDED_TYPES = (
    tarfile.XHDTYPE,
    tarfile.XGLTYPE,
    tarfile.SOLARIS_XHDTYPE,
    tarfile.GNUTYPE_LONGNAME,
    tarfile.GNUTYPE_LONGLINK,
)


@dataclass
class TarEntry:
    path: str
    type: str
    data: bytes = b""  # regular only
    link_target: str = ""  # symlink only
    executable: bool = False


@dataclass
class _Tree:
    """Everything read from one tar stream, keyed by NAR path.

    The root is kept apart from the other nodes: unlike them it may be a
    file or a symlink, in which case nothing else may exist.
    """

    root: TarEntry | None = None
    entries: dict[str, TarEntry] = field(default_factory=dict)

    def record(self, entry: TarEntry) -> None:
        if entry.path == "/":
            self.root = entry
            return
        self.entries[entry.path] = entry
        self._synthesize_parents(entry.path)

    def _synthesize_parents(self, path: str) -> None:
        # Ancestors of a known node are already known, so stop at the first.
        parent = posixpath.dirname(path)
        while parent != "/" and parent not in self.entries:
            logger.debug(f"{parent}: synthesized directory")
            self.entries[parent] = TarEntry(parent, TYPE_DIRECTORY)
            parent = posixpath.dirname(parent)

    def ordered(self) -> list[TarEntry]:
        """All nodes in canonical NAR order, root first."""
        root = self.root or TarEntry("/", TYPE_DIRECTORY)
        if root.type != TYPE_DIRECTORY and self.entries:
            raise RootConflict(
                f"root is a {root.type} but {len(self.entries)} other entries exist", path="/"
            )
        for path, entry in self.entries.items():
            parent = posixpath.dirname(path)
            if parent != "/" and self.entries[parent].type != TYPE_DIRECTORY:
                raise PathConflict(f"parent {parent} is a {self.entries[parent].type}", path=path)
        return [root] + sorted(self.entries.values(), key=lambda e: sort_key(e.path))


def sort_key(path: str) -> tuple[bytes, ...]:
    """Canonical NAR position of a path.

    Compares segment by segment, bytewise, so that a directory's contents
    always follow it directly ("/a/b" sorts before "/a-b").
    """
    return tuple(s.encode("utf-8", "surrogateescape") for s in path.split("/") if s)


def read_entry(tar: tarfile.TarFile, member: tarfile.TarInfo, path: str) -> TarEntry | None:
    """Turn one tar member into a TarEntry (None for extended headers)."""
    if member.type == tarfile.DIRTYPE:
        return TarEntry(path, TYPE_DIRECTORY)
    if member.type == tarfile.SYMTYPE:
        return TarEntry(path, TYPE_SYMLINK, link_target=to_slash(member.linkname))
    if member.type in REGULAR_TYPES:
        try:
            data = tar.extractfile(member).read()
        except tarfile.ReadError as exc:
            raise TruncatedBody(f"reading {member.size} byte body: {exc}", path=member.name) from exc
        return TarEntry(path, TYPE_REGULAR, data=data, executable=(member.mode & 0o111) != 0)
    if member.type in EXTENDED_TYPES:
        return None
    raise UnsupportedEntryType(f"unsupported tar entry type {member.type!r}", path=member.name)


def read_tree(src: BinaryIO) -> _Tree:
    tree = _Tree()
    try:
        with tarfile.open(fileobj=src, mode="r|") as tar:
            for member in tar:
                path = tar_to_nar_path(member.name)
                if path is None:
                    logger.debug(f"{member.name}: not under the marker, skipped")
                    continue
                entry = read_entry(tar, member, path)
                if entry is not None:
                    logger.debug(f"{member.name} -> {path} ({entry.type})")
                    tree.record(entry)
    except tarfile.ReadError as exc:
        raise MalformedInput(f"reading tar: {exc}") from exc
    return tree


def write_tree(tree: _Tree, dst: BinaryIO) -> int:
    count = 0
    with NarWriter(dst) as nar:
        for entry in tree.ordered():
            if entry.type == TYPE_REGULAR:
                nar.write_header(
                    NarHeader(entry.path, TYPE_REGULAR, size=len(entry.data), executable=entry.executable)
                )
                nar.write(entry.data)
            elif entry.type == TYPE_SYMLINK:
                nar.write_header(NarHeader(entry.path, TYPE_SYMLINK, link_target=entry.link_target))
            else:
                nar.write_header(NarHeader(entry.path, TYPE_DIRECTORY))
            count += 1
    return count


def tar_to_nar(src: BinaryIO, dst: BinaryIO) -> int:
    """Read a tar archive from src and write the canonical NAR archive to dst.

    Returns the number of NAR nodes written. dst is not closed.
    """
    tree = read_tree(src)
    count = write_tree(tree, dst)
    logger.info(f"wrote {count} NAR nodes")
    return count
