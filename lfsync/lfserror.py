r"""
``lfserror``: Errors for :mod:`lfsync` modules
===========================================================

This module provides a collection of error types relevant to the
:mod:`lfsync` package. Many of them are essentially the same as standard
error types such as :class:`ValueError`, :class:`SystemError`, etc. but with
an extra parent of :class:`LFSError` to enable catching all errors
specifically raised by this package.

Every error also carries an explicit *kind* (see :class:`ErrorKind`),
a *fatal* flag, and a *context* dictionary of diagnostic key/value
pairs (HTTP status, URL, headers, etc.). Callers decide what to do by
the class or the *kind* of an error, never by probing for attributes.
"""

# Standard library
import enum
import shutil


# Error kinds
class ErrorKind(enum.Enum):
    r"""Tag identifying each variant of :class:`LFSError`"""
    GENERIC = "generic"
    NETWORK = "network"
    HTTP_STATUS = "http-status"
    PROTOCOL_UNSUPPORTED = "protocol-unsupported"
    AUTH_REQUIRED = "auth-required"
    REDIRECT = "redirect"
    NOT_A_POINTER = "not-a-pointer"
    POINTER_DECODE = "pointer-decode"
    RETENTION_SAFETY = "retention-safety"
    FILESYSTEM = "filesystem"


# Headers whose values are never written into error context
HIDDEN_HEADERS = frozenset(("authorization",))


# Basic error family
class LFSError(Exception):
    r"""Parent error class for :mod:`lfsync` errors

    Inherits from :class:`Exception`

    :Call:
        >>> err = LFSError(msg, fatal=None)
    :Inputs:
        *msg*: :class:`str`
            Error message
        *fatal*: {``None``} | ``True`` | ``False``
            Override class default for whether error halts a whole run
    """
    # Default tag and severity for this class
    kind = ErrorKind.GENERIC
    fatal = False

    def __init__(self, *args, fatal=None):
        # Parent initialization
        Exception.__init__(self, *args)
        # Severity override
        if fatal is not None:
            self.fatal = fatal

    @property
    def context(self) -> dict:
        r"""Diagnostic key/value pairs saved for this error"""
        return self.__dict__.setdefault("_context", {})

    def set_context(self, key: str, val):
        r"""Save one diagnostic key/value pair

        :Call:
            >>> err.set_context(key, val)
        :Inputs:
            *err*: :class:`LFSError`
                Error instance
            *key*: :class:`str`
                Name of context item, e.g. ``"Status"``
            *val*: :class:`object`
                Value, converted to :class:`str`
        """
        self.context[key] = str(val)

    def set_header_context(self, prefix: str, headers):
        # Loop through headers
        for key, val in headers.items():
            # Never record credentials
            if key.lower() in HIDDEN_HEADERS:
                val = "--"
            self.set_context(f"{prefix}:{key}", val)


class LFSSystemError(SystemError, LFSError):
    r"""Exception for system errors raised by :mod:`lfsync`
    """
    pass


class LFSValueError(ValueError, LFSError):
    r"""Exception for unexpected value of parameter in :mod:`lfsync`
    """
    pass


class LFSArgumentError(LFSValueError):
    r"""Invalid command-line arguments or options
    """
    pass


class LFSFileNotFoundError(FileNotFoundError, LFSError):
    r"""Exception for missing files
    """
    kind = ErrorKind.FILESYSTEM


class LFSFileSystemError(OSError, LFSError):
    r"""Exception for failed file operations in the content store
    """
    kind = ErrorKind.FILESYSTEM


class LFSHashMismatchError(LFSValueError):
    r"""Content written to the store did not match its expected OID
    """
    pass


# Pointer errors
class NotAPointerError(ValueError, LFSError):
    r"""Data is not a pointer record at all

    This is an expected, recoverable condition; it usually means "leave
    this file alone."
    """
    kind = ErrorKind.NOT_A_POINTER


class PointerDecodeError(ValueError, LFSError):
    r"""Data is a pointer record but has a malformed field
    """
    kind = ErrorKind.POINTER_DECODE


class CleanedPointerError(NotAPointerError):
    r"""Attempt to clean content that is already a pointer record

    :Attributes:
        *pointer*: :class:`lfsync.lfspointer.Pointer`
            Pointer that was decoded from the input
        *data*: :class:`bytes`
            Raw bytes that were read from the input
    """
    def __init__(self, pointer, data: bytes):
        NotAPointerError.__init__(
            self, "Cannot clean a pointer record; skipping")
        self.pointer = pointer
        self.data = data


# Transfer errors
class LFSNetworkError(LFSError):
    r"""Transport-level failure; no HTTP response was received
    """
    kind = ErrorKind.NETWORK


class LFSHTTPStatusError(LFSError):
    r"""HTTP response with an error status

    Server errors (status > 499, except 501 and 509) are fatal.

    :Call:
        >>> err = LFSHTTPStatusError(msg, code)
    :Inputs:
        *msg*: :class:`str`
            Error message (decoded from the response if possible)
        *code*: :class:`int`
            HTTP status code
    """
    kind = ErrorKind.HTTP_STATUS

    def __init__(self, msg: str, code: int, fatal=None):
        # Default severity from status code
        if fatal is None:
            fatal = is_fatal_status(code)
        LFSError.__init__(self, msg, fatal=fatal)
        self.code = code


class LFSAuthRequired(LFSHTTPStatusError):
    r"""HTTP 401 that persisted after credentials were attached
    """
    kind = ErrorKind.AUTH_REQUIRED


class LFSProtocolUnsupported(LFSHTTPStatusError):
    r"""Server does not implement the requested API

    Raised for 404/410 from the batch endpoint and for 501/509 from any
    endpoint. It triggers the fall back to the legacy API.
    """
    kind = ErrorKind.PROTOCOL_UNSUPPORTED

    def __init__(self, msg: str, code: int):
        LFSHTTPStatusError.__init__(self, msg, code, fatal=False)


class LFSRedirectError(LFSError):
    r"""Redirect could not be followed safely
    """
    kind = ErrorKind.REDIRECT
    fatal = True


# Prune errors
class LFSPruneError(LFSError):
    r"""Prune could not safely determine what to delete
    """
    fatal = True


class LFSRetentionSafetyError(LFSPruneError):
    r"""Prunable objects are reachable from the remote but not on it

    :Attributes:
        *oids*: :class:`list`\ [:class:`str`]
            Every offending object ID
    """
    kind = ErrorKind.RETENTION_SAFETY

    def __init__(self, oids):
        # Save the offending IDs
        self.oids = list(oids)
        # Form message
        msg = (
            "Failed to find prunable objects on remote, aborting:\n" +
            "\n".join(self.oids))
        LFSPruneError.__init__(self, msg)


# Classify HTTP status codes
def is_fatal_status(code: int) -> bool:
    r"""Check if an HTTP status means a failure no retry can fix

    :Call:
        >>> q = is_fatal_status(code)
    :Inputs:
        *code*: :class:`int`
            HTTP status code
    :Outputs:
        *q*: ``True`` | ``False``
            ``True`` for 5xx responses other than 501 and 509
    """
    return code > 499 and code not in (501, 509)


# Shorten file name to fit in terminal
def trunc8_fname(fname: str, n: int) -> str:
    r"""Truncate a file name so that it fits on one terminal line

    :Call:
        >>> f1 = trunc8_fname(fname, n)
    :Inputs:
        *fname*: :class:`str`
            Original file name
        *n*: :class:`int`
            Number of characters reserved for other text on the line
    :Outputs:
        *f1*: :class:`str`
            Either *fname* or ``"..."`` plus the end of *fname*
    """
    # Current terminal width
    twidth = shutil.get_terminal_size().columns
    # Number of characters available
    maxlen = max(10, twidth - n)
    # Check if truncation needed
    if len(fname) <= maxlen:
        return fname
    # Keep the end of the name
    return "..." + fname[-(maxlen - 3):]

