class DirIndexError(Exception):
    """Base class for dirindex errors."""


class RootUnavailable(DirIndexError):
    """The scan root does not exist, is not a directory, or cannot be listed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path: str = path
        self.reason: str = reason


class EntryUnreadable(DirIndexError):
    """
    A single file or directory could not be stat'ed or read.

    Never escapes a scan; the scanner records it as a ScanFailure and moves on.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path: str = path
        self.reason: str = reason


class IndexUnavailable(DirIndexError):
    """The index store cannot be opened or queried."""


IndexCorrupt = IndexUnavailable


class ScanCancelled(DirIndexError):
    """The scan was cancelled at a directory boundary."""
