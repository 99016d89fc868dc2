
# Standard library
import hashlib
import io
import json

# Third-party
import httpx
import pytest

# Local imports
from lfsync.lfsclient import (
    LFSClient,
    LinkRelation,
    ObjectResource,
    iter_response_bytes,
    resolve_redirect)
from lfsync.lfsconfig import Configuration
from lfsync.lfscreds import CredentialHelper, Creds
from lfsync.lfserror import (
    ErrorKind,
    LFSHTTPStatusError,
    LFSRedirectError)
from lfsync.lfsstore import LocalStore


# Endpoint for all tests
ENDPOINT = "https://lfs.example.com/repo.git/info/lfs"
# Sample object
CONTENTS = b"stored object contents\n" * 50
OID = hashlib.sha256(CONTENTS).hexdigest()


# Credential store with fixed user
class FakeCreds(CredentialHelper):
    def fill(self, creds):
        out = Creds(creds)
        out["username"] = "user"
        out["password"] = "pass"
        return out


# Body that can only be read once
class OneWayStream(object):
    def __init__(self, data):
        self.fp = io.BytesIO(data)

    def read(self, n=-1):
        return self.fp.read(n)

    def seekable(self):
        return False


def make_client(handler, tmp_path=None, gitconfig=None):
    # Settings
    opts = {"lfs.url": ENDPOINT}
    opts.update(gitconfig or {})
    config = Configuration(opts, environ={})
    # Store
    store = None
    if tmp_path is not None:
        store = LocalStore(str(tmp_path / "objects"))
    # Client with fake server
    return LFSClient(
        config, store, creds=FakeCreds(),
        transport=httpx.MockTransport(handler))


# Relative redirect targets
def test_resolve01():
    url = "https://storage.example.com/old/path?x=1"
    assert resolve_redirect(url, "/new/path") == (
        "https://storage.example.com/new/path")
    assert resolve_redirect(url, "https://other.example.com/a") == (
        "https://other.example.com/a")


# Follow 307 with the same body
def test_redirect01():
    # Requests seen by server
    reqs = []

    def handler(request):
        reqs.append((str(request.url), request.content))
        if request.url.path == "/old/path":
            return httpx.Response(307, headers={"Location": "/new/path"})
        return httpx.Response(200, content=b"done")

    # Send a seekable stream
    client = make_client(handler)
    res = client.storage_request(
        "PUT", "https://storage.example.com/old/path",
        body=io.BytesIO(CONTENTS))
    # Check result
    assert res.status_code == 200
    assert res.content == b"done"
    # Same body sent twice
    assert reqs == [
        ("https://storage.example.com/old/path", CONTENTS),
        ("https://storage.example.com/new/path", CONTENTS),
    ]


# Redirects that can't be followed
def test_redirect02():
    def handler(request):
        return httpx.Response(307, headers={"Location": "/new/path"})

    # Body can't be re-sent
    client = make_client(handler)
    with pytest.raises(LFSRedirectError) as excinfo:
        client.storage_request(
            "PUT", "https://storage.example.com/old/path",
            body=OneWayStream(CONTENTS))
    assert excinfo.value.fatal
    assert excinfo.value.kind is ErrorKind.REDIRECT
    assert "seekable" in str(excinfo.value)
    # Redirect to self
    with pytest.raises(LFSRedirectError) as excinfo:
        client.storage_request("GET", "https://storage.example.com/new/path")
    assert "loop" in str(excinfo.value)


# Credentials stay with their host
def test_redirect03():
    # Headers seen by server
    auths = []

    def handler(request):
        auths.append(request.headers.get("Authorization"))
        if request.url.host == "storage.example.com":
            return httpx.Response(
                307, headers={"Location": "https://cdn.example.com/obj"})
        return httpx.Response(200)

    # Send
    client = make_client(handler)
    client.storage_request(
        "GET", "https://storage.example.com/obj",
        headers={"Authorization": "Bearer token"})
    # Dropped for other host
    assert auths == ["Bearer token", None]


# Storage credentials only for private endpoint's own host
def test_creds01():
    # Headers seen by server
    auths = []

    def handler(request):
        auths.append(request.headers.get("Authorization"))
        return httpx.Response(200)

    # Private endpoint
    client = make_client(
        handler, gitconfig={f"lfs.{ENDPOINT}.access": "basic"})
    client.storage_request("GET", "https://lfs.example.com/objects/x")
    client.storage_request("GET", "https://storage.example.com/objects/x")
    # Only first request got credentials
    assert auths[0].startswith("Basic ")
    assert auths[1] is None
    # Public endpoint
    client = make_client(handler)
    client.storage_request("GET", "https://lfs.example.com/objects/x")
    assert auths[2] is None


# Error status from storage
def test_status01():
    def handler(request):
        return httpx.Response(404)

    # Send
    client = make_client(handler)
    with pytest.raises(LFSHTTPStatusError) as excinfo:
        client.storage_request("GET", "https://storage.example.com/x")
    assert excinfo.value.code == 404
    assert not excinfo.value.fatal


# Upload and verify
def test_upload01(tmp_path):
    # Requests seen by server
    reqs = []

    def handler(request):
        reqs.append(request)
        return httpx.Response(200)

    # Put object in store
    client = make_client(handler, tmp_path)
    client.store.write_object(OID, io.BytesIO(CONTENTS))
    # Negotiated actions
    obj = ObjectResource(OID, len(CONTENTS), actions={
        "upload": LinkRelation(
            "https://storage.example.com/up", {"X-Token": "abc"}),
        "verify": LinkRelation("https://lfs.example.com/verify", {}),
    })
    # Progress
    progress = []
    client.upload_object(
        obj, callback=lambda total, sofar, n: progress.append(sofar))
    # Check upload
    put, post = reqs
    assert put.method == "PUT"
    assert put.content == CONTENTS
    assert put.headers["Content-Length"] == str(len(CONTENTS))
    assert put.headers["Content-Type"] == "application/octet-stream"
    assert put.headers["X-Token"] == "abc"
    assert progress[-1] == len(CONTENTS)
    # Check verify
    assert post.method == "POST"
    assert str(post.url) == "https://lfs.example.com/verify"
    assert json.loads(post.content) == {"oid": OID, "size": len(CONTENTS)}


# Upload rejected by storage
def test_upload02(tmp_path):
    def handler(request):
        return httpx.Response(403)

    # Put object in store
    client = make_client(handler, tmp_path)
    client.store.write_object(OID, io.BytesIO(CONTENTS))
    # Try to upload
    obj = ObjectResource(OID, len(CONTENTS), actions={
        "upload": LinkRelation("https://storage.example.com/up", {}),
    })
    with pytest.raises(LFSHTTPStatusError):
        client.upload_object(obj)


# Streamed download into the store
def test_download01(tmp_path):
    def handler(request):
        assert request.headers["X-Token"] == "abc"
        return httpx.Response(200, content=CONTENTS)

    # Negotiated action
    client = make_client(handler, tmp_path)
    obj = ObjectResource(OID, len(CONTENTS), actions={
        "download": LinkRelation(
            "https://storage.example.com/dl", {"X-Token": "abc"}),
    })
    # Download
    res, nbytes = client.download_object(obj)
    try:
        client.store.write_object(OID, iter_response_bytes(res), nbytes)
    finally:
        res.close()
    # Check result
    assert nbytes == len(CONTENTS)
    assert client.store.has_object(OID, len(CONTENTS))
