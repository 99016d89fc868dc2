
# Standard library
import io
import logging
import os

# Third-party
import yaml

# Local imports
from lfsync.lfserror import LFSHTTPStatusError, LFSValueError
from lfsync.lfslog import LOG, genr8_error_log, log_error, setup_tracing
from lfsync.version import __version__


# Error descriptions
def test_genr8_log01():
    # Error with context
    err = LFSHTTPStatusError("Server error", 500)
    err.set_context("Status", "500 Internal Server Error")
    err.set_header_context("Request", {"Authorization": "Basic abc"})
    # Describe it
    data = genr8_error_log(err)
    assert data["version"] == __version__
    assert data["error"] == "LFSHTTPStatusError"
    assert data["message"] == "Server error"
    assert data["kind"] == "http-status"
    assert data["fatal"] is True
    assert data["context"]["Status"] == "500 Internal Server Error"
    assert data["context"]["Request:Authorization"] == "--"
    # Errors from elsewhere have no kind
    data = genr8_error_log(ValueError("bad"))
    assert "kind" not in data
    assert data["message"] == "bad"


# Log files
def test_log_error01(tmp_path):
    # Raise so error has a traceback
    try:
        raise LFSValueError("Object not in local store")
    except LFSValueError as err:
        fname1 = log_error(err, str(tmp_path / "logs"))
        fname2 = log_error(err, str(tmp_path / "logs"))
    # Separate files
    assert fname1 != fname2
    assert os.path.isabs(fname1)
    assert fname1.endswith(".log")
    # Read back
    with open(fname1) as fp:
        data = yaml.safe_load(fp)
    assert data["message"] == "Object not in local store"
    assert data["fatal"] is False
    assert "test_log_error01" in data["traceback"]


# Trace messages
def test_tracing01():
    # Off by default
    assert setup_tracing(False) is None
    # Turn on
    stream = io.StringIO()
    handler = setup_tracing(True, stream)
    try:
        logging.getLogger("lfsync.lfsclient").debug("HTTP: %i", 200)
    finally:
        LOG.removeHandler(handler)
        LOG.setLevel(logging.NOTSET)
    assert "lfsync.lfsclient: HTTP: 200" in stream.getvalue()
