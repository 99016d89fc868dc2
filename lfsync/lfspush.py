r"""
``lfspush``: Upload large files that a remote doesn't have
===========================================================

Objects to push are found by scanning every blob reachable from the
given refs but not from the remote's tracking refs. Each object present
in the local store is uploaded using a :class:`TransferQueue` in upload
mode; the server's answer to the check request decides whether the data
is actually sent.
"""

# Standard library
import logging
import sys

# Local imports
from .lfserror import trunc8_fname
from .lfsqueue import TransferQueue, Uploadable
from .lfsscan import scan_refs


# Logger
LOG = logging.getLogger(__name__)


def push(repo, client, store, remote: str, refs=(), dry_run=False,
         stdout=None):
    r"""Upload objects in commits that *remote* doesn't have

    :Call:
        >>> pushed, errors = push(repo, client, store, remote, **kw)
    :Inputs:
        *repo*: :class:`lfsync.gitrepo.GitRepo`
            Interface to git repository
        *client*: :class:`lfsync.lfsclient.LFSClient`
            Client for *remote*
        *store*: :class:`lfsync.lfsstore.LocalStore`
            Local content store
        *remote*: :class:`str`
            Name of git remote
        *refs*: {``()``} | :class:`list`\ [:class:`str`]
            Refs to push (default: ``HEAD``)
        *dry_run*: ``True`` | {``False``}
            Option to list objects without uploading
        *stdout*: {``None``} | :class:`io.TextIOBase`
            Stream for status messages
    :Outputs:
        *pushed*: :class:`list`\ [:class:`str`]
            IDs of objects uploaded (or already on server)
        *errors*: :class:`list`\ [:class:`Exception`]
            Errors for objects that failed
    """
    # Defaults
    stdout = sys.stdout if stdout is None else stdout
    refs = list(refs) or ["HEAD"]
    # Find pointers
    args = refs + ["--not", f"--remotes={remote}"]
    ptrs = scan_refs(repo, *args)
    # Create queue
    q = TransferQueue(client, "upload")
    # Initialize
    seen = set()
    errors = []
    # Loop through pointers
    for wp in ptrs:
        p = wp.pointer
        # Each object once
        if p.oid in seen:
            continue
        seen.add(p.oid)
        # Dry run: just list
        if dry_run:
            stdout.write(f"push {p.oid} => {wp.name}\n")
            continue
        # Check local store
        if not store.has_object(p.oid, p.size):
            f1 = trunc8_fname(wp.name, 34)
            stdout.write(f"File '{f1}' is not in local store\n")
            LOG.debug("push: missing object %s", p.oid)
            continue
        q.add(Uploadable(p.oid, p.size, wp.name))
    # Nothing to do
    if len(q) == 0:
        return [], errors
    # Run transfers
    pushed = []
    watcher = q.watch()
    stdout.write(f"Pushing {len(q)} files to '{remote}'\n")
    try:
        q.wait()
    finally:
        pushed.extend(watcher)
    # Report failures
    errors.extend(q.errors)
    for err in q.errors:
        stdout.write(f"  {err}\n")
    # Output
    return pushed, errors
