"""Error types shared by the client gate and the archive glue.

The validation engine never raises; these are for the layers around it.
"""


class XZipError(Exception):
    """Base class for every error surfaced to the CLI."""


class KeyFileError(XZipError):
    """The local license key file is missing, unreadable or empty."""


class AuthorizationError(XZipError):
    """The license server refused the key or could not be trusted.

    Covers reject status, certificate identity mismatch, network failure
    and malformed responses. The message is shown to the user as-is.
    """


class ArchiveError(XZipError):
    """Compression or extraction failed."""
