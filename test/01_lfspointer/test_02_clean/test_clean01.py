
# Standard library
import hashlib
import io
import os
import sys

# Third-party
import pytest

# Local imports
from lfsync.lfserror import CleanedPointerError, LFSHashMismatchError
from lfsync.lfspointer import (
    ContentExtension,
    Pointer,
    clean,
    clean_to_store,
    encode_pointer,
    smudge)
from lfsync.lfsstore import LocalStore


# Contents of test files
CONTENTS = b"abcdefghij" * 60

# Extension that converts to upper case and back
UPPER = ContentExtension(
    "upper", 0,
    f'"{sys.executable}" -c "import sys; '
    'sys.stdout.buffer.write(sys.stdin.buffer.read().upper())"',
    f'"{sys.executable}" -c "import sys; '
    'sys.stdout.buffer.write(sys.stdin.buffer.read().lower())"')


# Make store in temp folder
def _store(tmp_path) -> LocalStore:
    return LocalStore(str(tmp_path / "lfs" / "objects"))


# Clean plain contents
def test_clean01(tmp_path):
    # Clean 600 bytes
    asset = clean(io.BytesIO(CONTENTS), len(CONTENTS), str(tmp_path))
    # Check pointer
    assert asset.pointer.oid == hashlib.sha256(CONTENTS).hexdigest()
    assert asset.pointer.size == 600
    assert asset.pointer.extensions == ()
    # Staged file has contents
    with open(asset.filename, "rb") as fp:
        assert fp.read() == CONTENTS
    # Remove it
    asset.teardown()
    assert not os.path.isfile(asset.filename)


# Refuse to clean a pointer
def test_clean02(tmp_path):
    # Create pointer
    p = Pointer(hashlib.sha256(b"x").hexdigest(), 1)
    data = encode_pointer(p)
    # Try to clean it
    with pytest.raises(CleanedPointerError) as excinfo:
        clean(io.BytesIO(data), len(data), str(tmp_path))
    # Original pointer and bytes available
    assert excinfo.value.pointer == p
    assert excinfo.value.data == data
    # No staged files left behind
    assert os.listdir(tmp_path) == []


# Progress callback
def test_clean03(tmp_path):
    # Collect calls
    calls = []
    asset = clean(
        io.BytesIO(CONTENTS), len(CONTENTS), str(tmp_path),
        callback=lambda *a: calls.append(a))
    asset.teardown()
    # Last call reports everything
    assert calls[-1][0] == 600
    assert calls[-1][1] == 600


# Clean into store and smudge back
def test_smudge01(tmp_path):
    # Create store
    store = _store(tmp_path)
    # Clean
    p = clean_to_store(io.BytesIO(CONTENTS), len(CONTENTS), store)
    assert store.has_object(p.oid, p.size)
    # Clean again; no error and one object
    p2 = clean_to_store(io.BytesIO(CONTENTS), len(CONTENTS), store)
    assert p2 == p
    assert len(list(store.iter_objects())) == 1
    # Smudge
    out = io.BytesIO()
    nbytes = smudge(p, store, out)
    assert nbytes == 600
    assert out.getvalue() == CONTENTS


# Content extensions
def test_extension01(tmp_path):
    # Create store
    store = _store(tmp_path)
    # Clean through extension
    p = clean_to_store(
        io.BytesIO(CONTENTS), len(CONTENTS), store, {"upper": UPPER},
        filename="data.txt")
    # Stored object is upper case
    assert p.oid == hashlib.sha256(CONTENTS.upper()).hexdigest()
    # Extension record has hash of original
    assert len(p.extensions) == 1
    assert p.extensions[0].name == "upper"
    assert p.extensions[0].oid == hashlib.sha256(CONTENTS).hexdigest()
    # Smudge back
    out = io.BytesIO()
    smudge(p, store, out, {"upper": UPPER}, "data.txt")
    assert out.getvalue() == CONTENTS


# Smudge that doesn't reproduce the original
def test_extension02(tmp_path):
    # Create store
    store = _store(tmp_path)
    # Clean through extension
    p = clean_to_store(
        io.BytesIO(CONTENTS), len(CONTENTS), store, [UPPER])
    # Broken smudge: leave contents upper case
    bad = UPPER._replace(smudge=UPPER.clean)
    with pytest.raises(LFSHashMismatchError):
        smudge(p, store, io.BytesIO(), [bad])
