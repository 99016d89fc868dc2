r"""
``lfscheckout``: Replace pointer files with their contents
===========================================================

This module populates the working tree with the real contents of large
files in the current commit. A working file is (over)written only when it
is missing or still holds the pointer for the same object; files with any
other contents are left alone. Objects missing from the local store are
downloaded first, and the index is refreshed for every file written.
"""

# Standard library
import logging
import os
import sys

# Local imports
from .lfserror import (
    LFSError,
    NotAPointerError,
    PointerDecodeError,
    trunc8_fname)
from .lfspointer import decode_pointer_from_file, smudge
from .lfsqueue import Downloadable, TransferQueue
from .lfsscan import filename_passes_filter, scan_tree


# Logger
LOG = logging.getLogger(__name__)


def checkout(repo, store, client=None, include=(), exclude=(),
             extensions=(), stdout=None) -> list:
    r"""Write contents of large files in ``HEAD`` to the working tree

    :Call:
        >>> fnames = checkout(repo, store, client=None, **kw)
    :Inputs:
        *repo*: :class:`lfsync.gitrepo.GitRepo`
            Interface to (working) git repository
        *store*: :class:`lfsync.lfsstore.LocalStore`
            Local content store
        *client*: {``None``} | :class:`lfsync.lfsclient.LFSClient`
            Client used to download missing objects
        *include*: {``()``} | :class:`list`\ [:class:`str`]
            Only check out paths matching one of these patterns
        *exclude*: {``()``} | :class:`list`\ [:class:`str`]
            Skip paths matching any of these patterns
        *extensions*: {``()``} | :class:`dict`
            Configured content extensions
        *stdout*: {``None``} | :class:`io.TextIOBase`
            Stream for status messages
    :Outputs:
        *fnames*: :class:`list`\ [:class:`str`]
            Paths (relative to top of repo) that were written
    """
    # Only in working repos
    repo.assert_working("checkout")
    stdout = sys.stdout if stdout is None else stdout
    # Get current commit
    ref = repo.current_ref()
    if ref is None:
        return []
    # Pointers in tree that pass filters
    ptrs = [
        wp for wp in scan_tree(repo, ref.sha)
        if filename_passes_filter(wp.name, include, exclude)
    ]
    # Keep those whose working file can be replaced
    ptrs = [wp for wp in ptrs if _needs_checkout(repo, wp)]
    # Download missing objects
    if client is not None:
        fetch_missing(client, store, ptrs)
    # Initialize
    fnames = []
    # Loop through files
    for wp in ptrs:
        # Check if we have contents
        if not store.has_object(wp.pointer.oid, wp.pointer.size):
            f1 = trunc8_fname(wp.name, 32)
            stdout.write(f"Skipped '{f1}'; not in local store\n")
            continue
        # Write file
        fabs = os.path.join(repo.gitdir, wp.name)
        _smudge_to_file(fabs, wp, store, extensions)
        fnames.append(wp.name)
    # Refresh index so git doesn't see these as modified
    repo.update_index(fnames)
    # Output
    return fnames


def fetch_missing(client, store, ptrs) -> list:
    r"""Download objects that aren't in the local store

    :Call:
        >>> errors = fetch_missing(client, store, ptrs)
    :Inputs:
        *ptrs*: :class:`list`\ [:class:`lfsync.lfsscan.WrappedPointer`]
            Pointers to fetch if needed
    :Outputs:
        *errors*: :class:`list`\ [:class:`Exception`]
            Errors for objects that could not be downloaded
    """
    # Create queue
    q = TransferQueue(client, "download")
    # Each object once
    seen = set()
    for wp in ptrs:
        p = wp.pointer
        if p.oid in seen or store.has_object(p.oid, p.size):
            continue
        seen.add(p.oid)
        q.add(Downloadable(p.oid, p.size, wp.name))
    # Nothing to do
    if len(q) == 0:
        return []
    # Run transfers
    q.wait()
    # Report failures
    for err in q.errors:
        LOG.debug("checkout: download failed: %s", err)
    return q.errors


def _needs_checkout(repo, wp) -> bool:
    # Working file
    fabs = os.path.join(repo.gitdir, wp.name)
    # Missing files are always written
    if not os.path.isfile(fabs):
        return True
    # Check current contents
    try:
        p = decode_pointer_from_file(fabs)
    except (NotAPointerError, PointerDecodeError):
        # Real contents; leave it alone
        return False
    # Pointer to another object; leave it alone
    return p.oid == wp.pointer.oid


def _smudge_to_file(fabs: str, wp, store, extensions=()):
    # Create folder if needed
    fdir = os.path.dirname(fabs)
    if fdir:
        os.makedirs(fdir, exist_ok=True)
    # Write to a temp file next to target, then replace
    ftmp = fabs + ".lfstmp"
    try:
        with open(ftmp, "wb") as fp:
            smudge(wp.pointer, store, fp, extensions, wp.name)
        os.replace(ftmp, fabs)
    except (LFSError, OSError):
        if os.path.isfile(ftmp):
            os.remove(ftmp)
        raise
