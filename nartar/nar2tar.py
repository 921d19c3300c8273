"""Convert a NAR stream into a tar stream.

Works header by header: each NAR node becomes one tar member as soon as it
is read, and file contents are copied straight from the NAR reader into the
tar writer. Nothing beyond one copy buffer is held in memory.

NAR carries no timestamps or owners, so every member gets mtime 0, uid/gid 0
and a fixed mode per node kind.
"""

import logging
import tarfile
from typing import BinaryIO

from nartar.address import nar_to_tar_name, to_slash
from nartar.errors import UnsupportedNodeKind
from nartar.nar import TYPE_DIRECTORY, TYPE_REGULAR, TYPE_SYMLINK, NarHeader, NarReader

logger = logging.getLogger(__name__)

DIR_MODE = 0o555
FILE_MODE = 0o444
EXEC_FILE_MODE = 0o555
SYMLINK_MODE = 0o777

EPOCH = 0


def file_mode(executable: bool) -> int:
    return EXEC_FILE_MODE if executable else FILE_MODE


def tar_info(hdr: NarHeader) -> tarfile.TarInfo:
    """Build the tar member header for one NAR node."""
    name = nar_to_tar_name(hdr.path)
    info = tarfile.TarInfo(name)
    info.mtime = EPOCH
    info.uid = info.gid = 0
    info.uname = info.gname = ""

    if hdr.type == TYPE_DIRECTORY:
        info.name = name + "/"
        info.type = tarfile.DIRTYPE
        info.mode = DIR_MODE
    elif hdr.type == TYPE_SYMLINK:
        info.type = tarfile.SYMTYPE
        info.mode = SYMLINK_MODE
        info.linkname = to_slash(hdr.link_target)
    elif hdr.type == TYPE_REGULAR:
        info.type = tarfile.REGTYPE
        info.mode = file_mode(hdr.executable)
        info.size = hdr.size
    else:
        raise UnsupportedNodeKind(f"unsupported NAR node type {hdr.type!r}", path=hdr.path)
    return info


def nar_to_tar(src: BinaryIO, dst: BinaryIO) -> int:
    """Read a NAR archive from src and write the equivalent tar archive to dst.

    Returns the number of tar members written. dst is not closed.
    """
    reader = NarReader(src)
    count = 0
    with tarfile.open(fileobj=dst, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        # The root directory is written too, as the "@/" member.
        for hdr in reader:
            info = tar_info(hdr)
            logger.debug(f"{hdr.path} -> {info.name} ({hdr.type})")
            if hdr.type == TYPE_REGULAR:
                # addfile() pulls exactly info.size bytes through reader.read()
                tar.addfile(info, reader)
            else:
                tar.addfile(info)
            count += 1
    logger.info(f"wrote {count} tar members")
    return count
