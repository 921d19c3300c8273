"""Mapping between NAR paths and tar member names.

A NAR archive has a single root node at "/", which may be a directory, a
regular file or a symlink. A tar archive is a flat list of named members
with no notion of a root. To carry a NAR root that is a plain file, every
NAR path is placed under one reserved top-level name, the marker:

    NAR path        tar name
    /               @
    /bin            @/bin
    /bin/hello      @/bin/hello

Going back, only members under the marker are imported. Anything else in
the tarball is ignored, so the same tarball can carry unrelated content.
"""

import os

from nartar.errors import InvalidPath

MARKER = "@"


def to_slash(s: str) -> str:
    """Convert OS path separators to '/'."""
    if os.sep != "/":
        s = s.replace(os.sep, "/")
    return s


def nar_to_tar_name(path: str) -> str:
    """Tar member name for a NAR path (without a trailing slash)."""
    path = to_slash(path)
    if not path.startswith("/"):
        raise InvalidPath("NAR path is not absolute", path=path)
    rest = path.strip("/")
    if not rest:
        return MARKER
    return f"{MARKER}/{rest}"


def tar_to_nar_path(name: str) -> str | None:
    """NAR path for a tar member name, or None if the member is not imported.

    Returns None for empty or "."-only names and for names outside the
    marker. ".." segments are resolved; InvalidPath is raised for a NUL
    byte, for a name that climbs above the tarball root, and for a marker
    name that climbs out of the marker ("@/../x").
    """
    name = to_slash(name)
    if "\0" in name:
        raise InvalidPath("path contains a NUL byte", path=name)
    if name.startswith("./"):
        name = name[2:]

    segments = []
    under_marker = None
    for segment in name.split("/"):
        if not segment or segment == ".":
            continue
        if under_marker is None:
            under_marker = segment == MARKER
        if segment == "..":
            if not segments:
                raise InvalidPath("path attempts to escape the root", path=name)
            segments.pop()
        else:
            segments.append(segment)

    if under_marker and (not segments or segments[0] != MARKER):
        raise InvalidPath("path attempts to escape the root", path=name)
    if not segments or segments[0] != MARKER:
        return None
    return "/" + "/".join(segments[1:])
