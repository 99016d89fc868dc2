r"""
``lfslog``: Tracing and error logs
===================================

Diagnostic messages from all :mod:`lfsync` modules go through the
standard :mod:`logging` package. They are silent unless tracing is turned
on with ``GIT_TRACE`` (see :func:`setup_tracing`).

Errors that stop a command are also saved to a YAML file in the repo's
``lfs/logs`` folder using :func:`log_error`, so the HTTP context of a
failed request is available after the fact.
"""

# Standard library
import logging
import os
import sys
import time
import traceback

# Third-party
import yaml

# Local imports
from .lfserror import LFSError
from .version import __version__


# Format for trace messages
TRACE_FORMAT = "%(asctime)s %(name)s: %(message)s"

# Top-level logger for the package
LOG = logging.getLogger("lfsync")
LOG.addHandler(logging.NullHandler())


def setup_tracing(enable=False, stream=None):
    r"""Send debug messages to STDERR if *enable*

    :Call:
        >>> handler = setup_tracing(enable=False, stream=None)
    :Inputs:
        *enable*: ``True`` | {``False``}
            Whether to turn on tracing
        *stream*: {``None``} | :class:`io.TextIOBase`
            Stream for messages (default: ``sys.stderr``)
    :Outputs:
        *handler*: ``None`` | :class:`logging.Handler`
            New handler, if any
    """
    # Leave library silent
    if not enable:
        return None
    # Create handler
    handler = logging.StreamHandler(sys.stderr if stream is None else stream)
    handler.setFormatter(logging.Formatter(TRACE_FORMAT))
    # Attach it
    LOG.addHandler(handler)
    LOG.setLevel(logging.DEBUG)
    return handler


def genr8_error_log(err: BaseException) -> dict:
    r"""Create a YAML-friendly description of an error

    :Call:
        >>> data = genr8_error_log(err)
    :Outputs:
        *data*: :class:`dict`
            Error type, message, kind, context, and traceback
    """
    # Basic info
    data = {
        "version": __version__,
        "time": time.strftime("%Y-%m-%dT%H:%M:%S"),
        "error": err.__class__.__name__,
        "message": str(err),
    }
    # Extra info for our errors
    if isinstance(err, LFSError):
        data["kind"] = err.kind.value
        data["fatal"] = bool(err.fatal)
        data["context"] = {k: str(v) for k, v in err.context.items()}
    # Traceback
    data["traceback"] = "".join(traceback.format_exception(
        type(err), err, err.__traceback__))
    # Output
    return data


def log_error(err: BaseException, logdir: str) -> str:
    r"""Write an error to a new YAML log file

    :Call:
        >>> fname = log_error(err, logdir)
    :Inputs:
        *err*: :class:`BaseException`
            Error to describe
        *logdir*: :class:`str`
            Folder for log files, created if needed
    :Outputs:
        *fname*: :class:`str`
            Absolute path to ``<logdir>/<timestamp>.log``
    """
    # Create folder
    os.makedirs(logdir, exist_ok=True)
    # File name from time, unique within folder
    stamp = time.strftime("%Y%m%dT%H%M%S")
    fname = os.path.join(logdir, f"{stamp}.log")
    n = 1
    while os.path.exists(fname):
        fname = os.path.join(logdir, f"{stamp}.{n}.log")
        n += 1
    # Write it
    with open(fname, "w") as fp:
        yaml.safe_dump(
            genr8_error_log(err), fp,
            default_flow_style=False, sort_keys=False)
    # Output
    return os.path.abspath(fname)
