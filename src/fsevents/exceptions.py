"""
Custom exceptions for the fsevents package.
"""


class FseError(Exception):
    """Base exception for all fsevents errors."""
    pass


class ConfigError(FseError):
    """Invalid run configuration, raised before any file is opened."""
    pass


class UnknownFlagError(ConfigError):
    """A flag name is not present in the flag table."""
    def __init__(self, name: str):
        super().__init__(f"Unknown flag name: {name!r}")
        self.name = name


class FileAccessError(FseError):
    """Input file is missing or unreadable."""
    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class DecodeError(FseError):
    """Error while decoding a journal file. Scoped to that file."""
    def __init__(self, message: str, path=None, offset: int = None):
        super().__init__(message)
        self.path = path
        self.offset = offset


class CorruptArchiveError(DecodeError):
    """The compressed stream could not be decompressed."""
    pass


class UnknownPageVersionError(DecodeError):
    """A page header carries an unrecognised magic."""
    def __init__(self, message: str, magic: bytes = b"", path=None, offset: int = None):
        super().__init__(message, path=path, offset=offset)
        self.magic = magic


class TruncatedRecordError(DecodeError):
    """The stream ended before a page or record was complete."""
    pass


class WriteError(FseError):
    """An output sink could not be written. Fatal to the run."""
    def __init__(self, message: str, destination=None):
        super().__init__(message)
        self.destination = destination
        self.report = None
