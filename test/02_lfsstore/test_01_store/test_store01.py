
# Standard library
import hashlib
import io
import os

# Third-party
import pytest

# Local imports
from lfsync.lfserror import (
    LFSFileSystemError,
    LFSHashMismatchError,
    LFSValueError)
from lfsync.lfsstore import LocalStore


# Sample contents
CONTENTS = b"large file contents\n" * 10
OID = hashlib.sha256(CONTENTS).hexdigest()


# Layout of object paths
def test_path01(tmp_path):
    # Create store
    store = LocalStore(str(tmp_path / "objects"))
    # Get path
    fname = store.object_path(OID)
    assert fname == os.path.join(
        str(tmp_path), "objects", OID[:2], OID[2:4], OID)
    # Folder created
    assert os.path.isdir(os.path.dirname(fname))
    # Default temp folder is a sibling
    assert store.tmpdir == os.path.join(str(tmp_path), "tmp")
    # Short IDs
    with pytest.raises(LFSValueError):
        store.object_path("abc")


# Write objects with hash check
def test_write01(tmp_path):
    # Create store
    store = LocalStore(str(tmp_path / "objects"))
    # Write from stream
    store.write_object(OID, io.BytesIO(CONTENTS), len(CONTENTS))
    assert store.has_object(OID)
    assert store.has_object(OID, len(CONTENTS))
    assert not store.has_object(OID, 1)
    # Write from iterator of chunks
    store.write_object(OID, iter([CONTENTS[:7], CONTENTS[7:]]))
    assert store.has_object(OID)


# Mismatched contents never reach the store
def test_write02(tmp_path):
    # Create store
    store = LocalStore(str(tmp_path / "objects"))
    # Wrong contents
    with pytest.raises(LFSHashMismatchError):
        store.write_object(OID, io.BytesIO(b"something else"))
    assert not store.has_object(OID)
    # Wrong size
    with pytest.raises(LFSHashMismatchError):
        store.write_object(OID, io.BytesIO(CONTENTS), len(CONTENTS) + 1)
    assert not store.has_object(OID)
    # No staged files left
    assert os.listdir(store.tmpdir) == []


# List and delete objects
def test_iter01(tmp_path):
    # Create store
    store = LocalStore(str(tmp_path / "objects"))
    # Empty store
    assert list(store.iter_objects()) == []
    # Add two objects
    oids = []
    for j in range(2):
        data = CONTENTS * (j + 1)
        oid = hashlib.sha256(data).hexdigest()
        store.write_object(oid, io.BytesIO(data))
        oids.append(oid)
    # Stray file is ignored
    with open(os.path.join(store.root, "stray.txt"), "w") as fp:
        fp.write("x")
    # List
    ptrs = sorted(store.iter_objects(), key=lambda p: p.size)
    assert [p.oid for p in ptrs] == oids
    assert [p.size for p in ptrs] == [len(CONTENTS), 2 * len(CONTENTS)]
    # Delete one
    store.delete_object(oids[0])
    assert not store.has_object(oids[0])
    # Delete again
    with pytest.raises(LFSFileSystemError):
        store.delete_object(oids[0])
