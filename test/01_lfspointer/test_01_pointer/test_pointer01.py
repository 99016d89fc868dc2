
# Standard library
import hashlib
import io

# Third-party
import pytest

# Local imports
from lfsync.lfserror import (
    LFSValueError,
    NotAPointerError,
    PointerDecodeError)
from lfsync.lfspointer import (
    ContentExtension,
    Pointer,
    PointerExtension,
    decode_pointer,
    encode_pointer,
    read_pointer_prefix,
    sort_extensions)


# Sample object
OID = hashlib.sha256(b"sample contents\n").hexdigest()
OID2 = hashlib.sha256(b"other contents\n").hexdigest()
SAMPLE = (
    "version https://git-lfs.github.com/spec/v1\n"
    f"oid sha256:{OID}\n"
    "size 12345\n")


# Encode a pointer
def test_encode01():
    # Create pointer
    p = Pointer(OID, 12345)
    # Encode
    assert encode_pointer(p) == SAMPLE.encode()


# Encode with extensions, given out of order
def test_encode02():
    # Create pointer
    p = Pointer(OID, 10, [
        PointerExtension("foo", 1, OID2),
        PointerExtension("bar", 0, OID),
    ])
    # Sorted by priority
    assert [ext.name for ext in p.extensions] == ["bar", "foo"]
    # Check lines
    lines = p.encode().splitlines()
    assert lines[1] == f"ext-0-bar sha256:{OID}"
    assert lines[2] == f"ext-1-foo sha256:{OID2}"
    assert lines[3] == f"oid sha256:{OID}"
    assert lines[4] == "size 10"


# Decode what was encoded
def test_decode01():
    # Pointer with an extension
    p = Pointer(OID, 7, [PointerExtension("foo", 0, OID2)])
    # Decode
    assert decode_pointer(encode_pointer(p)) == p
    # Text input works too
    assert decode_pointer(SAMPLE) == Pointer(OID, 12345)


# Old version URL and unknown keys
def test_decode02():
    # Legacy version line
    txt = SAMPLE.replace("git-lfs", "hawser")
    assert decode_pointer(txt).oid == OID
    # Unknown keys are ignored
    txt = SAMPLE + "x-custom something\n"
    assert decode_pointer(txt).size == 12345


# Things that aren't pointers at all
def test_not_a_pointer01():
    # Empty
    with pytest.raises(NotAPointerError):
        decode_pointer(b"")
    # Ordinary text
    with pytest.raises(NotAPointerError):
        decode_pointer(b"just some text\n")
    # Binary
    with pytest.raises(NotAPointerError):
        decode_pointer(b"\xff\xfe\x00binary")
    # Too big
    with pytest.raises(NotAPointerError):
        decode_pointer(SAMPLE + "x" * 1024)


# Pointers with bad fields
def test_decode_error01():
    # Missing size
    txt = "\n".join(SAMPLE.splitlines()[:2]) + "\n"
    with pytest.raises(PointerDecodeError):
        decode_pointer(txt)
    # Bad hash
    with pytest.raises(PointerDecodeError):
        decode_pointer(SAMPLE.replace(OID, "abc123"))
    # Bad hash type
    with pytest.raises(PointerDecodeError):
        decode_pointer(SAMPLE.replace("sha256:", "md5:"))
    # Negative size
    with pytest.raises(PointerDecodeError):
        decode_pointer(SAMPLE.replace("12345", "-1"))
    # Duplicate extension priority
    txt = SAMPLE.replace(
        "oid ", f"ext-0-foo sha256:{OID}\next-0-bar sha256:{OID}\noid ")
    with pytest.raises(PointerDecodeError):
        decode_pointer(txt)


# Decode errors are not "not a pointer"
def test_decode_error02():
    # Malformed line
    txt = SAMPLE + "novalue\n"
    with pytest.raises(PointerDecodeError) as excinfo:
        decode_pointer(txt)
    assert not isinstance(excinfo.value, NotAPointerError)


# Read prefix of a stream
def test_prefix01():
    # Stream that is a pointer
    prefix, p = read_pointer_prefix(io.BytesIO(SAMPLE.encode()))
    assert prefix == SAMPLE.encode()
    assert p.oid == OID
    # Stream that is not
    data = b"a" * 3000
    stream = io.BytesIO(data)
    prefix, p = read_pointer_prefix(stream)
    assert p is None
    assert len(prefix) == 1024
    assert stream.read() == data[1024:]


# Extension priorities are single digits
def test_priority01():
    # Too large for the "ext-N-name" key
    with pytest.raises(LFSValueError):
        Pointer(OID, 10, [PointerExtension("foo", 10, OID2)])
    with pytest.raises(LFSValueError):
        Pointer(OID, 10, [PointerExtension("foo", -1, OID2)])
    # Configured extensions
    exts = {
        "foo": ContentExtension("foo", 2, "foo-clean", "foo-smudge"),
        "bar": ContentExtension("bar", 12, "bar-clean", "bar-smudge"),
    }
    with pytest.raises(LFSValueError):
        sort_extensions(exts)
    # Largest priority survives a round trip
    p = Pointer(OID, 10, [PointerExtension("foo", 9, OID2)])
    assert decode_pointer(encode_pointer(p)) == p
