r"""
``lfspointer``: Pointer records and the clean/smudge content pipeline
======================================================================

This module provides the :class:`Pointer`, the small text record that is
committed to git in place of a large file, along with functions to

    * encode and decode pointer records (:func:`decode_pointer`),
    * *clean* a stream of content: copy it to a temporary file while
      hashing it, optionally passing it through a chain of content
      extensions (:func:`clean`, :func:`clean_to_store`), and
    * *smudge* a pointer back into its original content (:func:`smudge`).

A pointer record looks like this::

    version https://git-lfs.github.com/spec/v1
    oid sha256:4d7a214614ab2935c943f9e0ff69d22eadbb8f32b1258daaa5e2ca24d17e2393
    size 12345

"""

# Standard library
import hashlib
import os
import re
import shlex
import shutil
import subprocess
import tempfile
from collections import namedtuple

# Local imports
from .lfserror import (
    CleanedPointerError,
    LFSFileNotFoundError,
    LFSHashMismatchError,
    LFSSystemError,
    LFSValueError,
    NotAPointerError,
    PointerDecodeError)


# Spec URLs
VERSION_LATEST = "https://git-lfs.github.com/spec/v1"
VERSION_ALIASES = (
    VERSION_LATEST,
    "https://hawser.github.com/spec/v1",
)

# Only supported hash type
OID_TYPE = "sha256"

# Anything this big or bigger cannot be a pointer
POINTER_SIZE_CUTOFF = 1024
# Prefix size below which cleaning a pointer is refused
CLEAN_PREFIX_SIZE = 512
# Block size for copying
CHUNK_SIZE = 32 * 1024

# Regular expressions for pointer fields
REGEX_OID = re.compile(r"[0-9a-f]{64}")
REGEX_EXT_KEY = re.compile(r"ext-(?P<priority>[0-9])-(?P<name>\w+)")
REGEX_SIZE = re.compile(r"[0-9]+")


# Extension record saved in a pointer
PointerExtension = namedtuple("PointerExtension", ["name", "priority", "oid"])

# Configured content extension
ContentExtension = namedtuple(
    "ContentExtension", ["name", "priority", "clean", "smudge"])


# Pointer class
class Pointer(namedtuple("_Pointer", ["oid", "size", "extensions"])):
    r"""Immutable pointer to a large object

    :Call:
        >>> p = Pointer(oid, size, extensions=())
    :Inputs:
        *oid*: :class:`str`
            Hex SHA-256 digest of the stored content
        *size*: :class:`int`
            Number of bytes of stored content
        *extensions*: {``()``} | :class:`tuple`\ [:class:`PointerExtension`]
            Content extensions applied during clean, any order
    :Outputs:
        *p*: :class:`Pointer`
            Pointer, with *extensions* sorted by priority
    """
    __slots__ = ()

    def __new__(cls, oid: str, size: int, extensions=()):
        # Priorities are a single digit in the pointer record
        extensions = tuple(extensions)
        for ext in extensions:
            if not 0 <= ext.priority <= 9:
                raise LFSValueError(
                    f"Extension priority for '{ext.name}' must be " +
                    f"0-9; got {ext.priority}")
        # Sort extensions by priority
        exts = tuple(sorted(extensions, key=lambda ext: ext.priority))
        # Create the tuple
        return super().__new__(cls, oid, int(size), exts)

    def encode(self) -> str:
        r"""Encode pointer as text record

        :Call:
            >>> txt = p.encode()
        :Inputs:
            *p*: :class:`Pointer`
                Pointer to large object
        :Outputs:
            *txt*: :class:`str`
                Pointer record, ending in a newline
        """
        # Version line first
        lines = [f"version {VERSION_LATEST}"]
        # Extensions, already in priority order
        for ext in self.extensions:
            lines.append(f"ext-{ext.priority}-{ext.name} {OID_TYPE}:{ext.oid}")
        # Main fields
        lines.append(f"oid {OID_TYPE}:{self.oid}")
        lines.append(f"size {self.size}")
        # Output
        return "\n".join(lines) + "\n"


# Cleaned asset
class CleanedAsset(object):
    r"""Staged result of cleaning a stream

    :Call:
        >>> asset = CleanedAsset(filename, pointer)
    :Inputs:
        *filename*: :class:`str`
            Temporary file holding the cleaned content
        *pointer*: :class:`Pointer`
            Pointer describing the cleaned content
    """
   # --- Class attributes ---
    __slots__ = (
        "filename",
        "pointer")

   # --- __dunder__ ---
    def __init__(self, filename: str, pointer: Pointer):
        self.filename = filename
        self.pointer = pointer

   # --- Cleanup ---
    def teardown(self):
        r"""Remove the staged temporary file, if still present"""
        _remove_quietly(self.filename)


def encode_pointer(p: Pointer) -> bytes:
    r"""Encode a pointer as UTF-8 bytes

    :Call:
        >>> data = encode_pointer(p)
    """
    return p.encode().encode("utf-8")


def decode_pointer(data) -> Pointer:
    r"""Parse a pointer record

    :Call:
        >>> p = decode_pointer(data)
    :Inputs:
        *data*: :class:`bytes` | :class:`str`
            Contents of a (possible) pointer file
    :Outputs:
        *p*: :class:`Pointer`
            Decoded pointer
    :Raises:
        * :class:`NotAPointerError` if *data* is not a pointer at all
        * :class:`PointerDecodeError` if *data* is a pointer but has
          missing or malformed fields
    """
    # Convert to bytes
    if isinstance(data, str):
        data = data.encode("utf-8")
    # Pointers are small
    if len(data) >= POINTER_SIZE_CUTOFF:
        raise NotAPointerError("Data too large to be a pointer")
    # Decode text
    try:
        txt = data.decode("utf-8")
    except UnicodeDecodeError:
        raise NotAPointerError("Data is not text") from None
    # Parse lines
    lines = txt.strip("\n").split("\n")
    # Check version line
    key, _, val = lines[0].partition(" ")
    if key != "version" or val.strip() not in VERSION_ALIASES:
        raise NotAPointerError("Missing or unknown pointer version line")
    # Parse remaining lines as key/value pairs
    fields = {}
    for line in lines[1:]:
        # Split key from value
        key, sep, val = line.partition(" ")
        # Every line must have exactly a key and a value
        if not sep or not key:
            raise PointerDecodeError(f"Invalid pointer line: '{line}'")
        fields[key] = val.strip()
    # Check for required keys
    for key in ("oid", "size"):
        if key not in fields:
            raise PointerDecodeError(f"Pointer is missing '{key}'")
    # Parse main fields
    oid = _decode_oid(fields["oid"], "oid")
    size = _decode_size(fields["size"])
    # Collect extensions; unknown keys are ignored
    exts = []
    priorities = set()
    for key, val in fields.items():
        # Check for extension key
        match = REGEX_EXT_KEY.fullmatch(key)
        if match is None:
            continue
        # Unpack
        priority = int(match.group("priority"))
        # Each priority used once
        if priority in priorities:
            raise PointerDecodeError(
                f"Duplicate extension priority {priority}")
        priorities.add(priority)
        exts.append(PointerExtension(
            match.group("name"), priority, _decode_oid(val, key)))
    # Output
    return Pointer(oid, size, exts)


def decode_pointer_from_file(fname: str) -> Pointer:
    r"""Read and parse a pointer record from a file

    :Call:
        >>> p = decode_pointer_from_file(fname)
    :Raises:
        * :class:`FileNotFoundError` if *fname* does not exist
        * :class:`NotAPointerError` if *fname* is not a pointer file
    """
    # Big files are never pointers; don't read them
    if os.path.getsize(fname) >= POINTER_SIZE_CUTOFF:
        raise NotAPointerError(f"File '{fname}' too large to be a pointer")
    # Read the file
    with open(fname, "rb") as fp:
        return decode_pointer(fp.read())


def read_pointer_prefix(stream):
    r"""Read start of a stream and check if it is a pointer record

    :Call:
        >>> prefix, p = read_pointer_prefix(stream)
    :Inputs:
        *stream*: :class:`io.BufferedIOBase`
            Binary readable stream
    :Outputs:
        *prefix*: :class:`bytes`
            Up to :data:`POINTER_SIZE_CUTOFF` bytes read from *stream*
        *p*: ``None`` | :class:`Pointer`
            Pointer if *prefix* decodes as one
    """
    # Read until cutoff or EOF (pipes may return short reads)
    chunks = []
    nread = 0
    while nread < POINTER_SIZE_CUTOFF:
        chunk = stream.read(POINTER_SIZE_CUTOFF - nread)
        if not chunk:
            break
        chunks.append(chunk)
        nread += len(chunk)
    prefix = b"".join(chunks)
    # Attempt to decode it
    try:
        p = decode_pointer(prefix)
    except (NotAPointerError, PointerDecodeError):
        p = None
    # Output
    return prefix, p


def sort_extensions(extensions) -> list:
    r"""Sort configured content extensions by priority

    :Call:
        >>> exts = sort_extensions(extensions)
    :Inputs:
        *extensions*: :class:`dict` | :class:`list`
            Configured :class:`ContentExtension` instances
    :Outputs:
        *exts*: :class:`list`\ [:class:`ContentExtension`]
            Extensions sorted by priority
    :Raises:
        :class:`LFSValueError` if two extensions share a priority
            or a priority is outside 0-9
    """
    # Allow dictionary from config
    if isinstance(extensions, dict):
        extensions = list(extensions.values())
    # Check range
    for ext in extensions:
        if not 0 <= ext.priority <= 9:
            raise LFSValueError(
                f"Extension priority for '{ext.name}' must be 0-9; " +
                f"got {ext.priority}")
    # Check for duplicates
    priorities = [ext.priority for ext in extensions]
    if len(set(priorities)) != len(priorities):
        raise LFSValueError("Extension priorities must be unique")
    # Output
    return sorted(extensions, key=lambda ext: ext.priority)


def clean(stream, size: int, tmpdir: str, extensions=(), filename="",
          callback=None) -> CleanedAsset:
    r"""Copy a stream to a staged temp file, hash it, apply extensions

    :Call:
        >>> asset = clean(stream, size, tmpdir, extensions=(), **kw)
    :Inputs:
        *stream*: :class:`io.BufferedIOBase`
            Binary stream of original content
        *size*: :class:`int`
            Declared size of content (for progress only)
        *tmpdir*: :class:`str`
            Folder for staged temporary files
        *extensions*: {``()``} | :class:`list` | :class:`dict`
            Content extensions to apply, see :func:`sort_extensions`
        *filename*: {``""``} | :class:`str`
            Name of working file, substituted for ``%f`` in commands
        *callback*: {``None``} | :class:`callable`
            Progress function ``callback(total, nbytes_so_far, nbytes)``
    :Outputs:
        *asset*: :class:`CleanedAsset`
            Staged file and its pointer
    :Raises:
        * :class:`CleanedPointerError` if *stream* is already a pointer
    """
    # Order extensions
    exts = sort_extensions(extensions)
    # Check if we were handed a pointer instead of content
    prefix, p = read_pointer_prefix(stream)
    if p is not None and len(prefix) < CLEAN_PREFIX_SIZE:
        raise CleanedPointerError(p, prefix)
    # List of temp files created so far
    tmpnames = []
    try:
        # Copy (prefix + rest of stream) into first staged file
        fname = _mktemp(tmpdir)
        tmpnames.append(fname)
        with open(fname, "wb") as fp:
            oid, nbytes = _copy_hash(prefix, stream, fp, size, callback)
        # Apply extensions in priority order
        records = []
        for ext in exts:
            # Run clean command of extension on previous stage
            fnew = _mktemp(tmpdir)
            tmpnames.append(fnew)
            _run_filter(ext.clean, ext.name, fname, fnew, filename)
            # Save record with input hash
            records.append(PointerExtension(ext.name, ext.priority, oid))
            # Intermediate stage no longer needed
            _remove_quietly(fname)
            # Hash the output of this stage
            oid, nbytes = hash_file(fnew)
            fname = fnew
    except BaseException:
        # Scoped cleanup of every staged file
        for fj in tmpnames:
            _remove_quietly(fj)
        raise
    # Output
    return CleanedAsset(fname, Pointer(oid, nbytes, records))


def clean_to_store(stream, size: int, store, extensions=(), filename="",
                   callback=None) -> Pointer:
    r"""Clean a stream and move the result into the local content store

    :Call:
        >>> p = clean_to_store(stream, size, store, extensions=(), **kw)
    :Inputs:
        *stream*: :class:`io.BufferedIOBase`
            Binary stream of original content
        *size*: :class:`int`
            Declared size of content
        *store*: :class:`lfsync.lfsstore.LocalStore`
            Local content store
    :Outputs:
        *p*: :class:`Pointer`
            Pointer to the stored object
    """
    # Stage and hash the content
    asset = clean(
        stream, size, store.tmpdir, extensions, filename, callback)
    try:
        # Check if object is already stored
        if store.has_object(asset.pointer.oid, asset.pointer.size):
            asset.teardown()
        else:
            store.move_into(asset.filename, asset.pointer.oid)
    except BaseException:
        asset.teardown()
        raise
    # Output
    return asset.pointer


def smudge(p: Pointer, store, out, extensions=(), filename="",
           callback=None) -> int:
    r"""Write original content of a stored object to a stream

    Extensions recorded in the pointer are undone in reverse priority
    order, and the output of each stage is checked against the hash
    recorded when the file was cleaned.

    :Call:
        >>> nbytes = smudge(p, store, out, extensions=(), **kw)
    :Inputs:
        *p*: :class:`Pointer`
            Pointer to object
        *store*: :class:`lfsync.lfsstore.LocalStore`
            Local content store holding *p.oid*
        *out*: :class:`io.BufferedIOBase`
            Writable binary stream
        *extensions*: {``()``} | :class:`dict`
            Configured extensions (by name or list)
    :Outputs:
        *nbytes*: :class:`int`
            Number of bytes written
    """
    # Get stored file
    fobj = store.object_path(p.oid, create=False)
    if not os.path.isfile(fobj):
        raise LFSFileNotFoundError(f"Object {p.oid} not in local store")
    # Simple case: no extensions used
    if len(p.extensions) == 0:
        with open(fobj, "rb") as fp:
            _, nbytes = _copy_hash(b"", fp, out, p.size, callback)
        return nbytes
    # Index configured extensions by name
    if not isinstance(extensions, dict):
        extensions = {ext.name: ext for ext in extensions}
    # Undo each extension, last applied first
    tmpnames = []
    try:
        fname = fobj
        for rec in reversed(p.extensions):
            # Find the configured extension
            ext = extensions.get(rec.name)
            if ext is None:
                raise LFSValueError(
                    f"Extension '{rec.name}' is not configured")
            # Run smudge command
            fnew = _mktemp(store.tmpdir)
            tmpnames.append(fnew)
            _run_filter(ext.smudge, ext.name, fname, fnew, filename)
            # Check that we got back the input of the clean stage
            oid, _ = hash_file(fnew)
            if oid != rec.oid:
                raise LFSHashMismatchError(
                    f"Extension '{rec.name}' smudge produced {oid}; "
                    f"expected {rec.oid}")
            fname = fnew
        # Copy final stage
        with open(fname, "rb") as fp:
            _, nbytes = _copy_hash(b"", fp, out, p.size, callback)
    finally:
        for fj in tmpnames:
            _remove_quietly(fj)
    # Output
    return nbytes


def hash_file(fname: str):
    r"""Calculate SHA-256 hex digest and size of a file

    :Call:
        >>> oid, size = hash_file(fname)
    """
    # Initialize hash
    obj = hashlib.sha256()
    size = 0
    # Read in chunks
    with open(fname, "rb") as fp:
        while True:
            chunk = fp.read(CHUNK_SIZE)
            if not chunk:
                break
            obj.update(chunk)
            size += len(chunk)
    # Output
    return obj.hexdigest(), size


def _copy_hash(prefix: bytes, stream, out, total: int, callback=None):
    # Initialize hash
    obj = hashlib.sha256()
    nbytes = 0
    # Chain prefix (already read) and remaining stream
    chunk = prefix
    while True:
        # Process current chunk
        if chunk:
            obj.update(chunk)
            out.write(chunk)
            nbytes += len(chunk)
            # Progress update
            if callback is not None and total:
                callback(total, nbytes, len(chunk))
        # Read next chunk
        chunk = stream.read(CHUNK_SIZE)
        if not chunk:
            break
    # Output
    return obj.hexdigest(), nbytes


def _run_filter(cmd: str, name: str, fin: str, fout: str, filename=""):
    # Substitute file name
    cmdlist = shlex.split(cmd.replace("%f", shlex.quote(filename)))
    # Make sure the command exists
    if len(cmdlist) == 0 or shutil.which(cmdlist[0]) is None:
        raise LFSSystemError(f"Extension '{name}' command not found: {cmd}")
    # Run with previous stage as STDIN and next stage as STDOUT
    with open(fin, "rb") as fpi, open(fout, "wb") as fpo:
        proc = subprocess.run(
            cmdlist, stdin=fpi, stdout=fpo, stderr=subprocess.PIPE)
    # Check status
    if proc.returncode:
        raise LFSSystemError(
            f"Extension '{name}' failed with status {proc.returncode}\n" +
            proc.stderr.decode("utf-8", "replace").strip())


def _decode_oid(val: str, key: str) -> str:
    # Split type from hash
    oidtype, sep, oid = val.partition(":")
    # Check type
    if not sep or oidtype != OID_TYPE:
        raise PointerDecodeError(f"Invalid OID type in '{key}': '{val}'")
    # Check hash
    if REGEX_OID.fullmatch(oid) is None:
        raise PointerDecodeError(f"Invalid OID in '{key}': '{oid}'")
    # Output
    return oid


def _decode_size(val: str) -> int:
    # Check digits only (no sign)
    if REGEX_SIZE.fullmatch(val) is None:
        raise PointerDecodeError(f"Invalid size: '{val}'")
    return int(val)


def _mktemp(tmpdir: str) -> str:
    # Create folder if needed
    os.makedirs(tmpdir, exist_ok=True)
    # Create file and close the OS-level handle
    fd, fname = tempfile.mkstemp(dir=tmpdir)
    os.close(fd)
    return fname


def _remove_quietly(fname: str):
    # Remove file if present
    try:
        os.remove(fname)
    except FileNotFoundError:
        pass
