r"""
``lfsrepo``: Interface to git repos with large-file storage
============================================================

This module provides the :class:`LFSRepo`, which ties together the
pieces of :mod:`lfsync` for one repository:

    * settings (:class:`lfsync.lfsconfig.Configuration`),
    * the local object store in ``<git-dir>/lfs/objects``,
    * one :class:`lfsync.lfsclient.LFSClient` per remote, and
    * the commands ``clean``, ``smudge``, ``checkout``, ``push``,
      ``prune``, and ``env``.

"""

# Standard library
import os
import shutil

# Local imports
from .gitrepo import GitRepo
from .lfscheckout import checkout, fetch_missing
from .lfsclient import LFSClient
from .lfsconfig import Configuration
from .lfserror import CleanedPointerError, LFSFileNotFoundError
from .lfslog import log_error
from .lfspointer import (
    CHUNK_SIZE,
    clean_to_store,
    encode_pointer,
    read_pointer_prefix,
    smudge)
from .lfsprune import (
    Pruner,
    default_retention_sources,
    reachable_from_remote)
from .lfspush import push
from .lfsscan import WrappedPointer
from .lfsstore import LocalStore
from .version import __version__


# Create new class
class LFSRepo(GitRepo):
    r"""Large-file interface to individual repositories

    :Call:
        >>> repo = LFSRepo(where=None, environ=None, remote=None)
    :Inputs:
        *where*: {``None``} | :class:`str`
            Location of repo (``None`` -> ``os.getcwd()``)
        *environ*: {``None``} | :class:`dict`
            Environment variables (default: ``os.environ``)
        *remote*: {``None``} | :class:`str`
            Name of default remote (default: ``"origin"``)
    """
   # --- Class attributes ---
    __slots__ = (
        "config",
        "lfsdir",
        "store",
        "_clients")

   # --- __dunder__ ---
    def __init__(self, where=None, environ=None, remote=None):
        # Parent initialization
        GitRepo.__init__(self, where)
        # Large-file folder inside .git
        self.lfsdir = os.path.join(self.get_configdir(), "lfs")
        # Object store
        self.store = LocalStore(
            os.path.join(self.lfsdir, "objects"),
            os.path.join(self.lfsdir, "tmp"))
        # Settings
        self.config = Configuration.from_repo(self, environ, remote)
        # Clients by remote
        self._clients = {}

    def __enter__(self):
        return self

    def __exit__(self, *a):
        self.close_clients()

   # --- Clients ---
    def make_client(self, remote=None) -> LFSClient:
        r"""Get (or create) API client for a remote

        :Call:
            >>> client = repo.make_client(remote=None)
        :Inputs:
            *repo*: :class:`LFSRepo`
                Interface to git repository
            *remote*: {``None``} | :class:`str`
                Name of remote, or default
        :Outputs:
            *client*: :class:`lfsync.lfsclient.LFSClient`
                Client, reused for later calls with same *remote*
        """
        # Resolve remote name
        remote = self.config.current_remote if remote is None else remote
        # Get current client
        client = self._clients.get(remote)
        # Exit if already created
        if client is not None:
            return client
        # Create it
        client = LFSClient(self.config, self.store, remote=remote)
        self._clients[remote] = client
        return client

    def close_clients(self):
        r"""Close all API clients"""
        for client in self._clients.values():
            client.close()
        self._clients.clear()

   # --- Filters ---
    def clean(self, stream, out, filename="") -> int:
        r"""Store contents from *stream* and write pointer to *out*

        Content that is already a pointer is passed through unchanged.

        :Call:
            >>> nbytes = repo.clean(stream, out, filename="")
        :Inputs:
            *repo*: :class:`LFSRepo`
                Interface to git repository
            *stream*: :class:`io.BufferedIOBase`
                Binary stream of working file contents
            *out*: :class:`io.BufferedIOBase`
                Binary stream for pointer
            *filename*: {``""``} | :class:`str`
                Name of working file
        :Outputs:
            *nbytes*: :class:`int`
                Number of bytes written to *out*
        """
        # Declared size, if available
        size = _stream_size(stream)
        try:
            p = clean_to_store(
                stream, size, self.store, self.config.extensions(), filename)
        except CleanedPointerError as err:
            # Pass pointer through
            out.write(err.data)
            return len(err.data) + _copy_stream(stream, out)
        # Write pointer
        data = encode_pointer(p)
        out.write(data)
        return len(data)

    def smudge(self, stream, out, filename="") -> int:
        r"""Write contents for a pointer read from *stream* to *out*

        Input that is not a pointer is passed through unchanged. Objects
        not in the local store are downloaded first.

        :Call:
            >>> nbytes = repo.smudge(stream, out, filename="")
        :Outputs:
            *nbytes*: :class:`int`
                Number of bytes written to *out*
        """
        # Check input
        prefix, p = read_pointer_prefix(stream)
        # Pass through anything else
        if p is None:
            out.write(prefix)
            return len(prefix) + _copy_stream(stream, out)
        # Download if needed
        if not self.store.has_object(p.oid, p.size):
            wp = WrappedPointer(filename, p, "")
            errors = fetch_missing(self.make_client(), self.store, [wp])
            if errors:
                raise errors[0]
        # Check again
        if not self.store.has_object(p.oid, p.size):
            raise LFSFileNotFoundError(f"Object {p.oid} not in local store")
        # Write contents
        return smudge(p, self.store, out, self.config.extensions(), filename)

   # --- Commands ---
    def checkout(self, include=(), exclude=(), stdout=None) -> list:
        r"""Write contents of large files in ``HEAD`` to working tree

        :Call:
            >>> fnames = repo.checkout(include=(), exclude=())
        :Inputs:
            *include*: {``()``} | :class:`list`\ [:class:`str`]
                Patterns of paths to include (default: all)
            *exclude*: {``()``} | :class:`list`\ [:class:`str`]
                Patterns of paths to exclude
        :Outputs:
            *fnames*: :class:`list`\ [:class:`str`]
                Files written
        """
        # Use configured filters by default
        include = include or self.config.fetch_include()
        exclude = exclude or self.config.fetch_exclude()
        # Only create client if remote configured
        client = None
        if self.config.endpoint().url:
            client = self.make_client()
        # Run it
        return checkout(
            self, self.store, client, include, exclude,
            self.config.extensions(), stdout)

    def push(self, remote=None, refs=(), dry_run=False, stdout=None):
        r"""Upload large files in *refs* that *remote* doesn't have

        :Call:
            >>> pushed, errors = repo.push(remote=None, refs=(), **kw)
        """
        # Resolve remote name
        remote = self.config.current_remote if remote is None else remote
        # Get client
        client = self.make_client(remote)
        # Run it
        return push(self, client, self.store, remote, refs, dry_run, stdout)

    def prune(self, verify_remote=False, dry_run=False, verbose=False,
              stdout=None):
        r"""Delete local objects that are no longer needed

        :Call:
            >>> summary = repo.prune(verify_remote=False, **kw)
        :Inputs:
            *repo*: :class:`LFSRepo`
                Interface to git repository
            *verify_remote*: ``True`` | {``False``}
                Check objects on ``lfs.pruneremotetocheck`` first
            *dry_run*: ``True`` | {``False``}
                Option to only report what would be deleted
            *verbose*: ``True`` | {``False``}
                Option to list each prunable object
        :Outputs:
            *summary*: :class:`lfsync.lfsprune.PruneSummary`
                Counts and problems
        """
        # Settings
        opts = self.config.fetch_prune_config()
        remote = opts.prune_remote_name
        # Remote check needs client and reachable objects
        client = None
        reachable = None
        if verify_remote:
            client = self.make_client(remote)

            def reachable():
                return reachable_from_remote(self, remote)
        # Create orchestrator
        pruner = Pruner(
            self.store, self.config, client,
            retention_sources=default_retention_sources(self, self.config),
            reachable_source=reachable,
            stdout=stdout)
        # Run it
        return pruner.run(verify_remote, dry_run, verbose)

    def env(self) -> list:
        r"""List settings and folders in use

        :Call:
            >>> lines = repo.env()
        :Outputs:
            *lines*: :class:`list`\ [:class:`str`]
                One ``Name=value`` line per setting
        """
        # Initialize
        config = self.config
        ep = config.endpoint()
        lines = [f"lfsync/{__version__}"]
        # Endpoint
        txt = f"Endpoint={ep.url} (auth={config.endpoint_access(ep)})"
        lines.append(txt)
        if ep.ssh_user_and_host:
            lines.append(
                f"  SSH={ep.ssh_user_and_host}:{ep.ssh_path}")
        # Other remotes
        for remote in config.remotes():
            if remote == config.current_remote:
                continue
            epj = config.endpoint(remote)
            lines.append(
                f"Endpoint ({remote})={epj.url} " +
                f"(auth={config.endpoint_access(epj)})")
        # Folders
        lines.extend([
            f"LocalWorkingDir={'' if self.bare else self.gitdir}",
            f"LocalGitDir={self.get_configdir()}",
            f"LocalMediaDir={self.store.root}",
            f"TempDir={self.store.tmpdir}",
            f"ConcurrentTransfers={config.concurrent_transfers}",
            f"BatchTransfer={str(config.batch_transfer).lower()}",
            f"GitSSHCommand={shutil.which('ssh') or ''}",
        ])
        # Tracing
        for name in ("GIT_TRACE", "GIT_CURL_VERBOSE"):
            lines.append(f"{name}={config.getenv(name, '')}")
        # Output
        return lines

   # --- Logs ---
    def get_logdir(self) -> str:
        r"""Get folder for error logs, ``<git-dir>/lfs/logs``"""
        return os.path.join(self.lfsdir, "logs")

    def log_error(self, err: BaseException) -> str:
        r"""Save an error to a new log file

        :Call:
            >>> fname = repo.log_error(err)
        """
        return log_error(err, self.get_logdir())


def _stream_size(stream) -> int:
    # Get size from file descriptor if possible
    try:
        return os.fstat(stream.fileno()).st_size
    except (AttributeError, OSError, ValueError):
        return 0


def _copy_stream(stream, out) -> int:
    # Copy in chunks
    nbytes = 0
    while True:
        chunk = stream.read(CHUNK_SIZE)
        if not chunk:
            break
        out.write(chunk)
        nbytes += len(chunk)
    return nbytes


