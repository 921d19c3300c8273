"""Errors raised while converting between NAR and tar.

Every error is terminal for the conversion that raised it. Library code
raises; only the command-line entry point catches and reports.
"""


class NarTarError(Exception):
    """Base class for all conversion failures."""

    def __init__(self, message: str, path: str | None = None):
        self.message = message
        self.path = path
        super().__init__(message)

    def __str__(self) -> str:
        if self.path is not None:
            return f"{self.path}: {self.message}"
        return self.message


class MalformedInput(NarTarError):
    """The input archive could not be parsed."""


class TruncatedBody(NarTarError):
    """A file body is shorter than its declared size."""


class UnsupportedNodeKind(NarTarError):
    """A NAR node type other than regular, symlink or directory."""


class UnsupportedEntryType(NarTarError):
    """A tar member type that has no NAR equivalent (devices, FIFOs, hard links)."""


class InvalidPath(NarTarError):
    """A path with a NUL byte, or one that escapes the archive root."""


class RootConflict(NarTarError):
    """The root is a file or symlink, yet other entries exist beside it."""


class PathConflict(NarTarError):
    """An entry is nested below something that is not a directory."""
