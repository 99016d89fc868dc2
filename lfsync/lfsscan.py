r"""
``lfsscan``: Find pointer files in git history and the working tree
====================================================================

Pointer records are small, so the scanners first list candidate blobs
with their sizes and then only read blobs smaller than
:data:`lfsync.lfspointer.POINTER_SIZE_CUTOFF`. Each pointer found is
returned as a :class:`WrappedPointer` with its path and blob ID.
"""

# Standard library
import fnmatch
import os
from collections import namedtuple

# Local imports
from .lfserror import NotAPointerError, PointerDecodeError
from .lfspointer import (
    POINTER_SIZE_CUTOFF,
    decode_pointer,
    decode_pointer_from_file)


# Pointer and where it was found
WrappedPointer = namedtuple("WrappedPointer", ["name", "pointer", "sha1"])


def scan_tree(repo, ref="HEAD") -> list:
    r"""Find pointers in the tree of one commit

    :Call:
        >>> ptrs = scan_tree(repo, ref="HEAD")
    :Inputs:
        *repo*: :class:`lfsync.gitrepo.GitRepo`
            Interface to git repository
        *ref*: {``"HEAD"``} | :class:`str`
            Branch, tag, or commit
    :Outputs:
        *ptrs*: :class:`list`\ [:class:`WrappedPointer`]
            Pointer for each path in the tree that holds one
    """
    # Small blobs, by hash
    names = {}
    for blob in repo.ls_tree_blobs(ref):
        if blob.size < POINTER_SIZE_CUTOFF:
            names.setdefault(blob.sha, []).append(blob.path)
    # Read them
    return _decode_blobs(repo, names)


def scan_refs(repo, *args) -> list:
    r"""Find pointers in all objects listed by ``git rev-list --objects``

    :Call:
        >>> ptrs = scan_refs(repo, *args)
    :Inputs:
        *repo*: :class:`lfsync.gitrepo.GitRepo`
            Interface to git repository
        *args*: :class:`tuple`\ [:class:`str`]
            Arguments to ``rev-list``, e.g. ``"--all"``
    :Outputs:
        *ptrs*: :class:`list`\ [:class:`WrappedPointer`]
            Pointer for each blob that holds one
    """
    # Objects with paths (commits have none)
    names = {}
    for sha, name in repo.rev_list_objects(*args):
        if name:
            names.setdefault(sha, []).append(name)
    # Keep small blobs
    sizes = repo.cat_file_sizes(names)
    names = {
        sha: paths for sha, paths in names.items()
        if sha in sizes and
        sizes[sha][0] == "blob" and
        sizes[sha][1] < POINTER_SIZE_CUTOFF
    }
    # Read them
    return _decode_blobs(repo, names)


def scan_worktree(repo) -> list:
    r"""Find pointer files checked out in the working tree

    :Call:
        >>> ptrs = scan_worktree(repo)
    :Outputs:
        *ptrs*: :class:`list`\ [:class:`WrappedPointer`]
            Pointer for each tracked file that is still a pointer
    """
    # Initialize
    ptrs = []
    # Loop through tracked files
    for fname in repo.ls_files():
        # Absolute path
        fabs = os.path.join(repo.gitdir, fname)
        # Skip missing and large files
        if not os.path.isfile(fabs):
            continue
        if os.path.getsize(fabs) >= POINTER_SIZE_CUTOFF:
            continue
        # Check contents
        try:
            p = decode_pointer_from_file(fabs)
        except (NotAPointerError, PointerDecodeError):
            continue
        ptrs.append(WrappedPointer(fname, p, ""))
    # Output
    return ptrs


def filename_passes_filter(name: str, include=(), exclude=()) -> bool:
    r"""Check a path against include and exclude patterns

    A pattern matches if it matches the whole path, its base name, or a
    parent folder of the path. No *include* patterns means include all.

    :Call:
        >>> q = filename_passes_filter(name, include=(), exclude=())
    """
    # Check include list
    if include and not any(_match(name, pat) for pat in include):
        return False
    # Check exclude list
    return not any(_match(name, pat) for pat in exclude)


def _match(name: str, pattern: str) -> bool:
    # Normalize
    pattern = pattern.rstrip("/")
    # Full path or base name
    if fnmatch.fnmatchcase(name, pattern):
        return True
    if fnmatch.fnmatchcase(os.path.basename(name), pattern):
        return True
    # Parent folder
    return name.startswith(pattern + "/")


def _decode_blobs(repo, names: dict) -> list:
    # Initialize
    ptrs = []
    # Read each blob once
    for sha, data in repo.cat_file_contents(list(names)):
        # Check contents
        try:
            p = decode_pointer(data)
        except (NotAPointerError, PointerDecodeError):
            continue
        # One result per path
        for name in names[sha]:
            ptrs.append(WrappedPointer(name, p, sha))
    # Output
    return ptrs
