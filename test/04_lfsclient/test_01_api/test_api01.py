
# Standard library
import json

# Third-party
import httpx
import pytest

# Local imports
from lfsync.lfsclient import (
    MEDIA_TYPE,
    LFSClient,
    default_error_message)
from lfsync.lfsconfig import ACCESS_BASIC, Configuration
from lfsync.lfscreds import CredentialHelper, Creds
from lfsync.lfserror import (
    ErrorKind,
    LFSAuthRequired,
    LFSError,
    LFSHTTPStatusError,
    LFSNetworkError)


# Endpoint for all tests
ENDPOINT = "https://lfs.example.com/repo.git/info/lfs"
# Sample object
OID = "deadbeef" * 8


# Credential store that remembers what happened
class FakeCreds(CredentialHelper):
    def __init__(self):
        self.filled = []
        self.approved = []
        self.rejected = []

    def fill(self, creds):
        self.filled.append(creds)
        out = Creds(creds)
        out["username"] = "user"
        out["password"] = "pass"
        return out

    def approve(self, creds):
        self.approved.append(creds)

    def reject(self, creds):
        self.rejected.append(creds)


def make_client(handler, gitconfig=None, persist=None):
    # Settings
    opts = {"lfs.url": ENDPOINT}
    opts.update(gitconfig or {})
    config = Configuration(opts, environ={}, persist=persist)
    # Client with fake server
    return LFSClient(
        config, creds=FakeCreds(), transport=httpx.MockTransport(handler))


def lfs_response(status, data):
    return httpx.Response(
        status, headers={"Content-Type": MEDIA_TYPE},
        content=json.dumps(data).encode())


def download_json(oid, size=10):
    return {
        "oid": oid,
        "size": size,
        "actions": {
            "download": {
                "href": f"https://storage.example.com/{oid}",
                "header": {"X-Token": "abc"},
            },
        },
    }


# Batch request
def test_batch01():
    # Requests seen by server
    reqs = []

    def handler(request):
        reqs.append(request)
        body = json.loads(request.content)
        return lfs_response(200, {
            "objects": [download_json(o["oid"]) for o in body["objects"]],
        })

    # Send
    client = make_client(handler)
    objs = client.batch([{"oid": OID, "size": 10}], "download")
    # Check request
    assert len(reqs) == 1
    req = reqs[0]
    assert req.method == "POST"
    assert str(req.url) == ENDPOINT + "/objects/batch"
    assert req.headers["Accept"] == MEDIA_TYPE
    assert req.headers["Content-Type"] == MEDIA_TYPE
    assert req.headers["User-Agent"].startswith("lfsync/")
    assert json.loads(req.content)["operation"] == "download"
    # Check result
    assert len(objs) == 1
    rel = objs[0].rel("download")
    assert rel.href == f"https://storage.example.com/{OID}"
    assert rel.header == {"X-Token": "abc"}
    # Empty list needs no request
    assert client.batch([], "download") == []
    assert len(reqs) == 1


# Batch endpoint missing: fall back to legacy API
def test_batch02():
    # Requests seen by server
    paths = []

    def handler(request):
        paths.append((request.method, request.url.path))
        # No batch endpoint
        if request.url.path.endswith("/batch"):
            return httpx.Response(404)
        # Legacy download check
        oid = request.url.path.rsplit("/", 1)[-1]
        data = download_json(oid)
        data["_links"] = data.pop("actions")
        return lfs_response(200, data)

    # Send
    client = make_client(handler)
    objs = client.batch([{"oid": OID, "size": 10}], "download")
    # Check fall back
    assert paths == [
        ("POST", "/repo.git/info/lfs/objects/batch"),
        ("GET", f"/repo.git/info/lfs/objects/{OID}"),
    ]
    # Same relation as from batch API
    rel = objs[0].rel("download")
    assert rel.href == f"https://storage.example.com/{OID}"
    assert objs[0].error is None


# Batch API disabled; legacy errors attached to objects
def test_batch03():
    # Requests seen by server
    paths = []
    oid2 = "cafe" * 16

    def handler(request):
        paths.append(request.url.path)
        oid = request.url.path.rsplit("/", 1)[-1]
        # One missing object
        if oid == oid2:
            return lfs_response(404, {"message": "Object does not exist"})
        data = download_json(oid)
        data["_links"] = data.pop("actions")
        return lfs_response(200, data)

    # Send
    client = make_client(handler, {"lfs.batch": "false"})
    objs = client.batch(
        [{"oid": OID, "size": 10}, {"oid": oid2, "size": 4}], "download")
    # No batch request
    assert not any(p.endswith("/batch") for p in paths)
    # First object OK
    assert objs[0].error is None
    # Second has error but didn't halt batch
    assert objs[1].oid == oid2
    assert objs[1].error.code == 404
    assert "Object does not exist" in objs[1].error.message


# Not authorized: upgrade to basic access and retry
def test_auth01():
    # Saved settings
    saved = []
    reqs = []

    def handler(request):
        reqs.append(request)
        if "Authorization" not in request.headers:
            return httpx.Response(401)
        return lfs_response(200, {"objects": [download_json(OID)]})

    # Send
    client = make_client(handler, persist=lambda k, v: saved.append((k, v)))
    objs = client.batch([{"oid": OID, "size": 10}], "download")
    # Tried twice
    assert len(reqs) == 2
    assert reqs[1].headers["Authorization"].startswith("Basic ")
    # Endpoint marked private and saved
    assert client.config.endpoint_access(client.endpoint) == ACCESS_BASIC
    assert saved == [(f"lfs.{ENDPOINT}.access", ACCESS_BASIC)]
    # Credentials filled once and approved
    assert len(client.creds.filled) == 1
    assert client.creds.filled[0]["host"] == "lfs.example.com"
    assert len(client.creds.approved) == 1
    assert len(objs) == 1


# Still not authorized after sending credentials
def test_auth02():
    # Requests seen by server
    reqs = []

    def handler(request):
        reqs.append(request)
        return httpx.Response(401)

    # Send
    client = make_client(handler)
    with pytest.raises(LFSAuthRequired) as excinfo:
        client.batch([{"oid": OID, "size": 10}], "download")
    # Check error
    err = excinfo.value
    assert err.kind is ErrorKind.AUTH_REQUIRED
    assert err.code == 401
    assert isinstance(err, LFSHTTPStatusError)
    # Only one retry
    assert len(reqs) == 2
    assert len(client.creds.rejected) == 1
    # Credentials never written to error context
    auth = [
        v for k, v in err.context.items()
        if k.lower() == "request:authorization"
    ]
    assert auth == ["--"]


# Fatal and non-fatal status codes
def test_status01():
    # Status to reply with
    status = {"code": 500}

    def handler(request):
        return httpx.Response(status["code"])

    # Server error
    client = make_client(handler)
    with pytest.raises(LFSHTTPStatusError) as excinfo:
        client.batch([{"oid": OID, "size": 10}], "download")
    assert excinfo.value.fatal
    assert excinfo.value.code == 500
    assert str(excinfo.value).startswith("Server error: ")
    assert excinfo.value.context["Status"] == "500 Internal Server Error"
    # Client error
    status["code"] = 403
    with pytest.raises(LFSHTTPStatusError) as excinfo:
        client.batch([{"oid": OID, "size": 10}], "download")
    assert not excinfo.value.fatal
    assert str(excinfo.value).startswith("Authorization error: ")


# Not implemented: legacy fall back, errors on each object
def test_status02():
    def handler(request):
        return httpx.Response(501)

    # Send
    client = make_client(handler)
    objs = client.batch([{"oid": OID, "size": 10}], "download")
    # Protocol unsupported is not fatal
    assert objs[0].error.code == 501


# Message from server
def test_status03():
    def handler(request):
        return lfs_response(422, {
            "message": "Invalid object",
            "documentation_url": "https://docs.example.com/lfs",
            "request_id": "123",
        })

    # Send
    client = make_client(handler)
    with pytest.raises(LFSHTTPStatusError) as excinfo:
        client.download_check(OID)
    # Check message
    msg = str(excinfo.value)
    assert msg == (
        "Invalid object\n"
        "Docs: https://docs.example.com/lfs\n"
        "Request ID: 123")
    assert excinfo.value.context["Endpoint"] == ENDPOINT


# Default error messages
def test_message01():
    url = "https://example.com/x"
    assert default_error_message(400, url) == "Client error: " + url
    assert default_error_message(404, url).startswith(
        "Repository or object not found: " + url)
    assert default_error_message(418, url) == (
        f"Client error: {url} from HTTP 418")
    assert default_error_message(503, url) == (
        f"Server error: {url} from HTTP 503")


# Transport errors
def test_network01():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    # Send
    client = make_client(handler)
    with pytest.raises(LFSNetworkError) as excinfo:
        client.download_check(OID)
    # Check error
    assert excinfo.value.kind is ErrorKind.NETWORK
    assert "connection refused" in str(excinfo.value)
    assert excinfo.value.context["URL"].startswith("GET ")


# Legacy upload check
def test_upload01(tmp_path):
    # Object file
    fname = tmp_path / OID
    fname.write_bytes(b"0123456789")
    # Status to reply with
    status = {"code": 200}
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        if status["code"] == 200:
            return httpx.Response(200)
        return lfs_response(202, {
            "_links": {
                "upload": {"href": "https://storage.example.com/up"},
            },
        })

    # Server already has it
    client = make_client(handler)
    assert client.upload_check(str(fname)) is None
    assert bodies[0] == {"oid": OID, "size": 10}
    # Server needs it
    status["code"] = 202
    obj = client.upload_check(str(fname))
    assert obj.oid == OID
    assert obj.size == 10
    assert obj.rel("upload").href == "https://storage.example.com/up"
    # Upload checks always send credentials
    assert len(client.creds.filled) == 2


# Replies with the wrong shape
def test_reply01():
    # Replies to send, in order
    replies = [
        ["not", "an", "object"],
        {"objects": "oops"},
        {"objects": ["oops"]},
        {"objects": [{"oid": OID, "actions": {"download": 3}}]},
        {"objects": [{"oid": OID, "actions": {
            "download": {"href": "https://x/", "header": "oops"}}}]},
    ]

    def handler(request):
        return lfs_response(200, replies.pop(0))

    # Each one is an LFS error
    client = make_client(handler)
    for _ in range(5):
        with pytest.raises(LFSError):
            client.batch([{"oid": OID, "size": 10}], "download")
    assert replies == []
