r"""
``lfscreds``: Credentials from ``git credential``
==================================================

This module provides :class:`Creds`, a simple mapping of the key/value
pairs exchanged with a git credential helper, and
:class:`GitCredentialHelper`, which gets, saves, and forgets credentials
by calling ``git credential fill|approve|reject``.

Other credential stores can be used by passing any object with the same
three methods as :class:`CredentialHelper` to the transfer client.
"""

# Standard library
import logging
from subprocess import DEVNULL, PIPE, Popen
from urllib.parse import urlsplit

# Local imports
from .lfserror import LFSSystemError


# Logger
LOG = logging.getLogger(__name__)


# Credentials
class Creds(dict):
    r"""Credential key/value pairs, e.g. *protocol*, *host*, *password*

    :Call:
        >>> creds = Creds(protocol="https", host="example.com")
    """
    __slots__ = ()

    def to_text(self) -> str:
        r"""Convert to ``key=value`` lines for ``git credential``

        :Call:
            >>> txt = creds.to_text()
        """
        return "".join(f"{k}={v}\n" for k, v in self.items())

    @classmethod
    def from_text(cls, txt: str):
        r"""Parse ``key=value`` lines from ``git credential``

        :Call:
            >>> creds = Creds.from_text(txt)
        """
        # Initialize
        creds = cls()
        # Loop through lines
        for line in txt.splitlines():
            # Split
            key, sep, val = line.partition("=")
            if sep and key:
                creds[key] = val
        # Output
        return creds


# Interface
class CredentialHelper(object):
    r"""Interface to a credential store; default stores nothing"""
    __slots__ = ()

    def fill(self, creds: Creds) -> Creds:
        return Creds(creds)

    def approve(self, creds: Creds):
        pass

    def reject(self, creds: Creds):
        pass


# Git credential interface
class GitCredentialHelper(CredentialHelper):
    r"""Credential store using ``git credential``

    :Call:
        >>> helper = GitCredentialHelper(cwd=None, environ=None)
    :Inputs:
        *cwd*: {``None``} | :class:`str`
            Folder in which to run ``git``
        *environ*: {``None``} | :class:`dict`
            Environment for ``git``; checked for ``GIT_TERMINAL_PROMPT``
    """
   # --- Class attributes ---
    __slots__ = (
        "cwd",
        "environ")

   # --- __dunder__ ---
    def __init__(self, cwd=None, environ=None):
        self.cwd = cwd
        self.environ = environ

   # --- Commands ---
    def fill(self, creds: Creds) -> Creds:
        r"""Get a username and password for a URL

        :Call:
            >>> creds = helper.fill(creds)
        :Inputs:
            *helper*: :class:`GitCredentialHelper`
                Credential store
            *creds*: :class:`Creds`
                Input with *protocol*, *host*, and *path*
        :Outputs:
            *creds*: :class:`Creds`
                Output including *username* and *password*
        :Raises:
            :class:`LFSSystemError` if ``git credential fill`` fails
        """
        # Run command; helper prompts and messages go to terminal
        stdout, ierr = self._exec("fill", creds)
        # Check status
        if ierr:
            # Form message
            msg = f"'git credential fill' failed with status {ierr}"
            # Check for disabled prompt
            prompt = (self.environ or {}).get("GIT_TERMINAL_PROMPT", "")
            if prompt.lower() in ("0", "false", "no", "off"):
                msg += (
                    "\nThe GIT_TERMINAL_PROMPT env var disables prompting;"
                    " set credentials with a credential helper")
            raise LFSSystemError(msg)
        # Parse
        return Creds.from_text(stdout)

    def approve(self, creds: Creds):
        r"""Save credentials that worked"""
        self._run("approve", creds)

    def reject(self, creds: Creds):
        r"""Forget credentials that failed"""
        self._run("reject", creds)

    def _run(self, subcommand: str, creds: Creds):
        # Run command
        _, ierr = self._exec(subcommand, creds, stderr=DEVNULL)
        # Errors here don't affect the transfer
        if ierr:
            LOG.debug(
                "git credential %s failed with status %i", subcommand, ierr)

    def _exec(self, subcommand: str, creds: Creds, stderr=None):
        # Run command using subprocess
        # (STDERR is never piped; credential-cache daemons hold it open)
        proc = Popen(
            ["git", "credential", subcommand],
            stdin=PIPE, stdout=PIPE, stderr=stderr,
            cwd=self.cwd, env=self.environ)
        # Send credentials
        stdout, _ = proc.communicate(creds.to_text().encode("utf-8"))
        # Output
        return stdout.decode("utf-8", "replace"), proc.returncode


def credentials_for_url(url: str) -> Creds:
    r"""Create credential request for a URL

    :Call:
        >>> creds = credentials_for_url(url)
    :Outputs:
        *creds*: :class:`Creds`
            Mapping with *protocol*, *host*, and *path*
    """
    # Parse URL
    parts = urlsplit(url)
    # Host including port
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    # Output
    return Creds(
        protocol=parts.scheme,
        host=host,
        path=parts.path.lstrip("/"))
