r"""
``lfsstore``: Local content-addressed object store
==================================================

This module provides the :class:`LocalStore`, which manages the folder of
large-file objects in a repository, typically ``.git/lfs/objects``. Each
object with identifier *oid* is saved as

    ``<root>/<oid[0:2]>/<oid[2:4]>/<oid>``

New objects are always written to a temporary file first and then moved
into place, so a partially written object is never visible under its
final name.
"""

# Standard library
import hashlib
import os
import re
import tempfile

# Local imports
from .lfserror import (
    LFSFileSystemError,
    LFSHashMismatchError,
    LFSValueError)
from .lfspointer import CHUNK_SIZE, Pointer


# Regular expression for a full object ID
REGEX_OBJECT_NAME = re.compile(r"[0-9a-f]{64}")


# Store class
class LocalStore(object):
    r"""Interface to a local large-file object store

    :Call:
        >>> store = LocalStore(root, tmpdir=None)
    :Inputs:
        *root*: :class:`str`
            Absolute path to objects folder
        *tmpdir*: {``None``} | :class:`str`
            Folder for staged files (default: ``<root>/../tmp``)
    """
   # --- Class attributes ---
    __slots__ = (
        "root",
        "tmpdir")

   # --- __dunder__ ---
    def __init__(self, root: str, tmpdir=None):
        # Save folders
        self.root = os.path.abspath(root)
        if tmpdir is None:
            tmpdir = os.path.join(os.path.dirname(self.root), "tmp")
        self.tmpdir = os.path.abspath(tmpdir)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}('{self.root}')"

   # --- Paths ---
    def object_path(self, oid: str, create=True) -> str:
        r"""Get absolute path to the file for an object

        :Call:
            >>> fname = store.object_path(oid, create=True)
        :Inputs:
            *store*: :class:`LocalStore`
                Local object store
            *oid*: :class:`str`
                Object ID, at least four characters
            *create*: {``True``} | ``False``
                Option to create the two parent folders
        :Outputs:
            *fname*: :class:`str`
                ``<root>/oid[0:2]/oid[2:4]/oid``
        :Raises:
            :class:`LFSValueError` if *oid* has fewer than 4 characters
        """
        # Check length
        if len(oid) < 4:
            raise LFSValueError(f"Object ID '{oid}' is too short")
        # Folder
        fdir = os.path.join(self.root, oid[0:2], oid[2:4])
        # Create it
        if create:
            os.makedirs(fdir, exist_ok=True)
        # Output
        return os.path.join(fdir, oid)

    def temp_file(self) -> str:
        r"""Create an empty staged file in the store's temp folder

        :Call:
            >>> fname = store.temp_file()
        """
        # Create folder
        os.makedirs(self.tmpdir, exist_ok=True)
        # Create the file
        fd, fname = tempfile.mkstemp(dir=self.tmpdir)
        os.close(fd)
        # Output
        return fname

   # --- Status ---
    def has_object(self, oid: str, size=None) -> bool:
        r"""Check if an object is stored (optionally with matching size)

        :Call:
            >>> q = store.has_object(oid, size=None)
        """
        # Path to file
        fname = self.object_path(oid, create=False)
        # Check for file
        if not os.path.isfile(fname):
            return False
        # Check size if requested
        if size is not None:
            return os.path.getsize(fname) == size
        # Found it
        return True

   # --- Write ---
    def move_into(self, tmpname: str, oid: str) -> str:
        r"""Atomically move a staged file into place

        :Call:
            >>> fname = store.move_into(tmpname, oid)
        :Inputs:
            *store*: :class:`LocalStore`
                Local object store
            *tmpname*: :class:`str`
                Staged file, on the same file system as *store.root*
            *oid*: :class:`str`
                Object ID of contents of *tmpname*
        :Outputs:
            *fname*: :class:`str`
                Final path to object
        """
        # Get destination
        fname = self.object_path(oid)
        # Move
        try:
            os.replace(tmpname, fname)
        except OSError as err:
            raise LFSFileSystemError(
                f"Could not move '{tmpname}' to '{fname}': {err}") from err
        # Output
        return fname

    def write_object(self, oid: str, stream, size=None, callback=None) -> str:
        r"""Stream content into the store, checking its hash first

        :Call:
            >>> fname = store.write_object(oid, stream, size=None)
        :Inputs:
            *store*: :class:`LocalStore`
                Local object store
            *oid*: :class:`str`
                Expected SHA-256 of content
            *stream*: :class:`io.BufferedIOBase` | :class:`iter`
                Readable binary stream or iterable of :class:`bytes`
            *size*: {``None``} | :class:`int`
                Expected number of bytes
            *callback*: {``None``} | :class:`callable`
                Progress function ``callback(total, nbytes_so_far, nbytes)``
        :Outputs:
            *fname*: :class:`str`
                Final path to object
        :Raises:
            :class:`LFSHashMismatchError` if content does not match *oid*
        """
        # Staged file
        tmpname = self.temp_file()
        try:
            # Copy while hashing
            obj = hashlib.sha256()
            nbytes = 0
            with open(tmpname, "wb") as fp:
                for chunk in _iter_chunks(stream):
                    obj.update(chunk)
                    fp.write(chunk)
                    nbytes += len(chunk)
                    # Progress update
                    if callback is not None and size:
                        callback(size, nbytes, len(chunk))
            # Check hash
            fhash = obj.hexdigest()
            if fhash != oid:
                raise LFSHashMismatchError(
                    f"Expected OID {oid}, got {fhash} after {nbytes} bytes")
            # Check size
            if size is not None and nbytes != size:
                raise LFSHashMismatchError(
                    f"Expected {size} bytes for {oid}, got {nbytes}")
            # Move into place
            return self.move_into(tmpname, oid)
        except BaseException:
            # Don't leave partial files around
            if os.path.isfile(tmpname):
                os.remove(tmpname)
            raise

   # --- Enumerate ---
    def iter_objects(self):
        r"""Iterate through all objects in the store

        Entries whose names do not look like object IDs are skipped.
        Any :class:`OSError` while listing folders is raised.

        :Call:
            >>> for p in store.iter_objects():
        :Outputs:
            *p*: :class:`lfsync.lfspointer.Pointer`
                Pointer with *oid* and *size* of each object
        """
        # Nothing stored yet
        if not os.path.isdir(self.root):
            return
        # Walk the store, raising errors
        for dirpath, _, fnames in os.walk(self.root, onerror=_raise):
            for fname in fnames:
                # Skip temp and stray files
                if REGEX_OBJECT_NAME.fullmatch(fname) is None:
                    continue
                # Get size
                fabs = os.path.join(dirpath, fname)
                yield Pointer(fname, os.path.getsize(fabs))

   # --- Delete ---
    def delete_object(self, oid: str):
        r"""Delete one object from the store

        :Call:
            >>> store.delete_object(oid)
        :Raises:
            :class:`LFSFileSystemError` if the file can't be removed
        """
        # Get path
        fname = self.object_path(oid, create=False)
        # Delete it
        try:
            os.remove(fname)
        except OSError as err:
            raise LFSFileSystemError(
                f"Failed to remove file '{fname}': {err}") from err


def _iter_chunks(stream):
    # Check for file-like object
    if hasattr(stream, "read"):
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    else:
        # Already an iterable of bytes
        for chunk in stream:
            yield chunk


def _raise(err: OSError):
    raise err
