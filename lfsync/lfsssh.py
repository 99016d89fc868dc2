r"""
``lfsssh``: Authentication discovery over SSH
==============================================

When a remote is reached over SSH, the LFS server may hand out a
short-lived HTTPS URL and authorization header through a command run on
the SSH host::

    ssh [-p <port>] <user@host> git-lfs-authenticate <path> <operation> [<oid>]

The :class:`SSHAuthenticator` runs that command and decodes its JSON
reply as an :class:`SSHAuthResponse`.
"""

# Standard library
import json
import logging
from collections import namedtuple
from subprocess import Popen, PIPE

# Local imports
from .lfserror import LFSSystemError


# Logger
LOG = logging.getLogger(__name__)

# Name of remote command
SSH_AUTH_COMMAND = "git-lfs-authenticate"


# Reply from SSH host
SSHAuthResponse = namedtuple(
    "SSHAuthResponse", ["href", "header", "expires_at"],
    defaults=("", None, ""))


# Authentication class
class SSHAuthenticator(object):
    r"""Run ``git-lfs-authenticate`` on an SSH remote

    :Call:
        >>> auth = SSHAuthenticator(ssh="ssh")
    :Inputs:
        *ssh*: {``"ssh"``} | :class:`str`
            SSH executable (``GIT_SSH`` is a common override)
    """
   # --- Class attributes ---
    __slots__ = (
        "ssh",)

   # --- __dunder__ ---
    def __init__(self, ssh="ssh"):
        self.ssh = ssh

   # --- Main ---
    def authenticate(self, ep, operation: str, oid=None) -> SSHAuthResponse:
        r"""Ask an SSH remote for an API URL and headers

        :Call:
            >>> res = auth.authenticate(ep, operation, oid=None)
        :Inputs:
            *auth*: :class:`SSHAuthenticator`
                SSH discovery provider
            *ep*: :class:`lfsync.lfsconfig.Endpoint`
                Endpoint with SSH info
            *operation*: ``"download"`` | ``"upload"``
                Transfer direction
            *oid*: {``None``} | :class:`str`
                Object ID, for legacy single-object requests
        :Outputs:
            *res*: :class:`SSHAuthResponse`
                Reply; empty if *ep* has no SSH host
        :Raises:
            :class:`LFSSystemError` if the command fails or its reply
            is not valid JSON
        """
        # No SSH info
        if not ep.ssh_user_and_host:
            return SSHAuthResponse()
        # Form command
        cmdlist = self.genr8_command(ep, operation, oid)
        LOG.debug("run_command: %s", " ".join(cmdlist))
        # Run it
        proc = Popen(cmdlist, stdout=PIPE, stderr=PIPE)
        stdout, stderr = proc.communicate()
        # Check status
        if proc.returncode:
            raise LFSSystemError(
                f"SSH authentication failed with status {proc.returncode}: " +
                stderr.decode("utf-8", "replace").strip())
        # Decode reply
        try:
            data = json.loads(stdout.decode("utf-8"))
        except ValueError as err:
            raise LFSSystemError(
                f"Invalid reply from {SSH_AUTH_COMMAND}: {err}") from None
        if not isinstance(data, dict):
            raise LFSSystemError(
                f"Invalid reply from {SSH_AUTH_COMMAND}: expected object")
        # Output
        return SSHAuthResponse(
            data.get("href", ""),
            data.get("header") or {},
            data.get("expires_at", ""))

    def genr8_command(self, ep, operation: str, oid=None) -> list:
        r"""Form the SSH command for an endpoint"""
        # Start with executable
        cmdlist = [self.ssh]
        # Port
        if ep.ssh_port:
            cmdlist.extend(["-p", ep.ssh_port])
        # Host, remote command, and its args
        cmdlist.extend([
            ep.ssh_user_and_host,
            SSH_AUTH_COMMAND,
            ep.ssh_path,
            operation])
        # Optional object
        if oid:
            cmdlist.append(oid)
        # Output
        return cmdlist
