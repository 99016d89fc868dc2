r"""
``lfsclient``: Client for the LFS transfer API
===============================================

This module provides the :class:`LFSClient`, which talks to an LFS server
over HTTP(S) using :mod:`httpx`. There are two kinds of requests:

    * *API* requests go to the repository's endpoint (usually
      ``<remote>.git/info/lfs``) and negotiate what to transfer:

        - ``POST <endpoint>/objects/batch`` (batch API)
        - ``GET <endpoint>/objects/<oid>`` (legacy download check)
        - ``POST <endpoint>/objects`` (legacy upload check)

    * *storage* requests go to whatever URLs the API hands back in an
      object's ``download``, ``upload``, or ``verify`` relation.

If the server has no batch endpoint, :meth:`LFSClient.batch` falls back
to one legacy request per object. An API request answered with HTTP 401
marks the endpoint as private and is retried once with credentials.
HTTP 307 redirects are followed by re-sending the same body.
"""

# Standard library
import base64
import json
import logging
import os
import platform
import re
import sys
from collections import namedtuple
from urllib.parse import urljoin, urlsplit

# Third-party
import httpx

# Local imports
from .lfsconfig import ACCESS_BASIC
from .lfscreds import GitCredentialHelper, credentials_for_url
from .lfserror import (
    LFSAuthRequired,
    LFSError,
    LFSHTTPStatusError,
    LFSNetworkError,
    LFSProtocolUnsupported,
    LFSRedirectError,
    LFSValueError)
from .lfsssh import SSHAuthenticator, SSHAuthResponse
from .version import __version__


# Media type for API requests and replies
MEDIA_TYPE = "application/vnd.git-lfs+json; charset=utf-8"
REGEX_LFS_MEDIA_TYPE = re.compile(r"application/vnd\.git-lfs\+json(;|$)")
REGEX_JSON_MEDIA_TYPE = re.compile(r"application/json(;|$)")

# Messages for errors without a message from the server
DEFAULT_ERRORS = {
    400: "Client error: %s",
    401: (
        "Authorization error: %s\n"
        "Check that you have proper access to the repository"),
    403: (
        "Authorization error: %s\n"
        "Check that you have proper access to the repository"),
    404: (
        "Repository or object not found: %s\n"
        "Check that it exists and that you have proper access to it"),
    500: "Server error: %s",
}

# Client identification
USER_AGENT = "lfsync/%s (%s; python %s)" % (
    __version__, platform.system(), platform.python_version())

# Size of blocks sent to server
CHUNK_SIZE = 32 * 1024

# Default timeouts; transfers can be slow, so only connect is short
DEFAULT_TIMEOUT = httpx.Timeout(300.0, connect=30.0)

# Logger
LOG = logging.getLogger(__name__)


# Link for one action
LinkRelation = namedtuple("LinkRelation", ["href", "header"])


# Error for one object
class ObjectError(namedtuple("_ObjectError", ["code", "message"])):
    __slots__ = ()

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# Result of negotiation
class ObjectResource(object):
    r"""Server's description of one object and how to transfer it

    :Call:
        >>> obj = ObjectResource(oid, size, actions=None, links=None)
    :Inputs:
        *oid*: :class:`str`
            Object ID
        *size*: :class:`int`
            Size of object in bytes
        *actions*: {``None``} | :class:`dict`\ [:class:`LinkRelation`]
            Relations from the ``actions`` field (batch API)
        *links*: {``None``} | :class:`dict`\ [:class:`LinkRelation`]
            Relations from the ``_links`` field (legacy API)
        *error*: {``None``} | :class:`ObjectError`
            Error for this object
    """
   # --- Class attributes ---
    __slots__ = (
        "actions",
        "error",
        "links",
        "oid",
        "size")

   # --- __dunder__ ---
    def __init__(self, oid: str, size: int, actions=None, links=None,
                 error=None):
        self.oid = oid
        self.size = size
        self.actions = actions
        self.links = links
        self.error = error

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.oid[:8]} ({self.size} B)>"

   # --- JSON ---
    @classmethod
    def from_json(cls, data: dict):
        r"""Create object from decoded JSON reply

        :Call:
            >>> obj = ObjectResource.from_json(data)
        """
        # Check shape
        if not isinstance(data, dict):
            raise LFSError(
                f"Invalid object in server reply: {type(data).__name__}")
        # Decode errors
        err = data.get("error")
        if isinstance(err, dict):
            err = ObjectError(err.get("code", 0), err.get("message", ""))
        # Create instance
        return cls(
            data.get("oid", ""),
            data.get("size", 0),
            _decode_relations(data.get("actions")),
            _decode_relations(data.get("_links")),
            err or None)

    def to_json(self) -> dict:
        return {"oid": self.oid, "size": self.size}

   # --- Relations ---
    def rel(self, name: str):
        r"""Get a relation, preferring ``actions`` over ``_links``

        :Call:
            >>> link = obj.rel(name)
        :Outputs:
            *link*: ``None`` | :class:`LinkRelation`
                Relation, if advertised
        """
        # Actions take precedence when present
        rels = self.actions if self.actions is not None else self.links
        # Output
        return (rels or {}).get(name)


# Client class
class LFSClient(object):
    r"""Client for one repository's LFS server

    :Call:
        >>> client = LFSClient(config, store=None, **kw)
    :Inputs:
        *config*: :class:`lfsync.lfsconfig.Configuration`
            Settings, including endpoint and access mode
        *store*: {``None``} | :class:`lfsync.lfsstore.LocalStore`
            Local object store, used for uploads
        *creds*: {``None``} | :class:`lfsync.lfscreds.CredentialHelper`
            Credential provider (default: ``git credential``)
        *ssh*: {``None``} | :class:`lfsync.lfsssh.SSHAuthenticator`
            SSH discovery provider
        *remote*: {``None``} | :class:`str`
            Name of remote (default: *config.current_remote*)
        *transport*: {``None``} | :class:`httpx.BaseTransport`
            Optional transport, e.g. :class:`httpx.MockTransport`
    """
   # --- Class attributes ---
    __slots__ = (
        "config",
        "creds",
        "http",
        "remote",
        "ssh",
        "store")

   # --- __dunder__ ---
    def __init__(self, config, store=None, creds=None, ssh=None,
                 remote=None, transport=None, timeout=DEFAULT_TIMEOUT):
        # Save collaborators
        self.config = config
        self.store = store
        self.creds = GitCredentialHelper() if creds is None else creds
        self.ssh = SSHAuthenticator() if ssh is None else ssh
        self.remote = remote
        # HTTP session; redirects are handled here, not by httpx
        self.http = httpx.Client(
            headers={"User-Agent": USER_AGENT},
            follow_redirects=False,
            verify=config.ssl_verify,
            timeout=timeout,
            transport=transport)

    def __enter__(self):
        return self

    def __exit__(self, *a):
        self.close()

    def close(self):
        self.http.close()

   # --- Batch API ---
    def batch(self, objects, operation: str) -> list:
        r"""Negotiate transfer actions for a list of objects

        :Call:
            >>> objs = client.batch(objects, operation)
        :Inputs:
            *client*: :class:`LFSClient`
                LFS API client
            *objects*: :class:`list`
                Objects with *oid* and *size* (as keys or attributes)
            *operation*: ``"download"`` | ``"upload"``
                Transfer direction
        :Outputs:
            *objs*: :class:`list`\ [:class:`ObjectResource`]
                One resource per object; may have *error* set
        :Raises:
            * :class:`LFSAuthRequired` if the server keeps saying 401
            * :class:`LFSHTTPStatusError` for other failures
        """
        # Nothing to do
        if len(objects) == 0:
            return []
        # Check for disabled batch API
        if not self.config.batch_transfer:
            return self._legacy_batch(objects, operation)
        # Form body
        body = {
            "objects": [dict(zip(("oid", "size"), _oid_size(o)))
                        for o in objects],
            "operation": operation,
        }
        LOG.debug("api: batch %i files", len(objects))
        # Send it
        try:
            res = self._api_request(
                "POST", operation, "batch", body=_encode_json(body))
        except LFSProtocolUnsupported as err:
            LOG.debug("api: batch not implemented: %i", err.code)
            return self._legacy_batch(objects, operation)
        except LFSHTTPStatusError as err:
            # No batch endpoint on this server
            if err.code not in (404, 410):
                raise
            LOG.debug("api: batch not implemented: %i", err.code)
            return self._legacy_batch(objects, operation)
        LOG.debug("lfs.api.batch: %i", res.status_code)
        # Check status
        if res.status_code != 200:
            raise LFSHTTPStatusError(
                f"Invalid status for POST {res.request.url}: " +
                str(res.status_code), res.status_code)
        # Decode
        data = self._decode_api_response(res) or {}
        objs = data.get("objects") or []
        if not isinstance(objs, list):
            raise LFSError(
                f"Invalid 'objects' in reply to POST {res.request.url}")
        return [ObjectResource.from_json(o) for o in objs]

    def _legacy_batch(self, objects, operation: str) -> list:
        # Initialize
        objs = []
        # One request per object
        for o in objects:
            oid, size = _oid_size(o)
            try:
                # Check each object
                if operation == "upload":
                    obj = self._upload_check(oid, size)
                    # Already on server: nothing to transfer
                    if obj is None:
                        obj = ObjectResource(oid, size, actions={})
                else:
                    obj = self.download_check(oid)
            except LFSError as err:
                # Fatal errors halt everything
                if err.fatal:
                    raise
                # Otherwise attach error to this object
                code = err.code if isinstance(err, LFSHTTPStatusError) else 0
                obj = ObjectResource(
                    oid, size, error=ObjectError(code, str(err)))
            objs.append(obj)
        # Output
        return objs

   # --- Legacy API ---
    def download_check(self, oid: str) -> ObjectResource:
        r"""Check that an object can be downloaded, legacy API

        :Call:
            >>> obj = client.download_check(oid)
        :Outputs:
            *obj*: :class:`ObjectResource`
                Resource with a ``download`` relation
        """
        # Send request
        res = self._api_request("GET", "download", oid, oid=oid)
        LOG.debug("lfs.api.download: %i", res.status_code)
        # Decode
        obj = ObjectResource.from_json(self._decode_api_response(res) or {})
        # Make sure it can be downloaded
        if obj.rel("download") is None:
            raise LFSError(f"No download action for object {oid}")
        # Output
        return obj

    def download(self, oid: str):
        r"""Check and download an object, legacy API

        :Call:
            >>> res, nbytes = client.download(oid)
        :Outputs:
            *res*: :class:`httpx.Response`
                Open streaming response; caller must close it
            *nbytes*: :class:`int`
                Expected number of bytes
        """
        return self.download_object(self.download_check(oid))

    def upload_check(self, fname: str):
        r"""Ask server whether it needs a local object, legacy API

        :Call:
            >>> obj = client.upload_check(fname)
        :Inputs:
            *client*: :class:`LFSClient`
                LFS API client
            *fname*: :class:`str`
                Path to object; base name is the object ID
        :Outputs:
            *obj*: ``None`` | :class:`ObjectResource`
                ``None`` if server already has object, else a resource
                with an ``upload`` relation
        """
        return self._upload_check(
            os.path.basename(fname), os.path.getsize(fname))

    def _upload_check(self, oid: str, size: int):
        # Send request
        LOG.debug("api: uploading (%s)", oid)
        res = self._api_request(
            "POST", "upload", body=_encode_json({"oid": oid, "size": size}),
            upload=True)
        LOG.debug("lfs.api.upload: %i", res.status_code)
        # Already present
        if res.status_code == 200:
            return None
        # Decode
        obj = ObjectResource.from_json(self._decode_api_response(res) or {})
        # Fill in missing info from request
        obj.oid = obj.oid or oid
        obj.size = obj.size or size
        # Output
        return obj

   # --- Storage ---
    def upload_object(self, obj: ObjectResource, callback=None, fname=None):
        r"""Upload an object's contents and verify the upload

        :Call:
            >>> client.upload_object(obj, callback=None, fname=None)
        :Inputs:
            *client*: :class:`LFSClient`
                LFS API client
            *obj*: :class:`ObjectResource`
                Resource with an ``upload`` relation
            *callback*: {``None``} | :class:`callable`
                Progress function ``callback(total, nbytes_so_far, nbytes)``
            *fname*: {``None``} | :class:`str`
                File to upload (default: object's file in *client.store*)
        """
        # Get relation
        rel = obj.rel("upload")
        if rel is None:
            raise LFSError(f"No upload action for object {obj.oid}")
        # Find file
        if fname is None:
            fname = self.store.object_path(obj.oid, create=False)
        # Headers from server
        headers = dict(rel.header)
        _setdefault_header(headers, "Content-Type", "application/octet-stream")
        # Chunked or fixed length
        te = _pop_header(headers, "Transfer-Encoding")
        if te.lower() != "chunked":
            headers["Content-Length"] = str(obj.size)
        # Send file
        with open(fname, "rb") as fp:
            res = self._storage_request(
                "PUT", rel.href, headers, body=fp, size=obj.size,
                callback=callback)
        LOG.debug("lfs.data.upload: %i", res.status_code)
        # Check status
        if res.status_code > 299:
            raise LFSHTTPStatusError(
                f"Invalid status for PUT {res.request.url}: " +
                str(res.status_code), res.status_code)
        # Check for verify relation; none means success
        rel = obj.rel("verify")
        if rel is None:
            return
        # Verify
        headers = dict(rel.header)
        headers["Content-Type"] = MEDIA_TYPE
        headers["Accept"] = MEDIA_TYPE
        ep = self.endpoint
        creds = self._api_creds(ep, rel.href, headers, upload=False)
        res = self._do_with_redirects(
            "POST", rel.href, headers, _encode_json(obj.to_json()),
            creds, ep)
        LOG.debug("lfs.data.verify: %i", res.status_code)

    def download_object(self, obj: ObjectResource):
        r"""Start downloading an object's contents

        :Call:
            >>> res, nbytes = client.download_object(obj)
        :Inputs:
            *client*: :class:`LFSClient`
                LFS API client
            *obj*: :class:`ObjectResource`
                Resource with a ``download`` relation
        :Outputs:
            *res*: :class:`httpx.Response`
                Open streaming response; caller must close it
            *nbytes*: :class:`int`
                Content length from response (*obj.size* if missing)
        """
        # Get relation
        rel = obj.rel("download")
        if rel is None:
            raise LFSError(f"No download action for object {obj.oid}")
        # Send request
        res = self._storage_request(
            "GET", rel.href, dict(rel.header), stream=True)
        LOG.debug("lfs.data.download: %i", res.status_code)
        # Get length
        try:
            nbytes = int(res.headers.get("Content-Length", obj.size))
        except ValueError:
            nbytes = obj.size
        # Output
        return res, nbytes

    def storage_request(self, method: str, url: str, headers=None,
                        body=None, stream=False):
        r"""Send a request to a storage URL handed out by the API

        :Call:
            >>> res = client.storage_request(method, url, **kw)
        :Inputs:
            *client*: :class:`LFSClient`
                LFS API client
            *method*: :class:`str`
                HTTP method
            *url*: :class:`str`
                Full URL
            *headers*: {``None``} | :class:`dict`
                Extra headers
            *body*: {``None``} | :class:`bytes` | :class:`io.IOBase`
                Request body; streams must be seekable to follow a 307
            *stream*: ``True`` | {``False``}
                Option to leave response body unread
        :Outputs:
            *res*: :class:`httpx.Response`
                Response with status < 400
        """
        return self._storage_request(
            method, url, dict(headers or {}), body=body, stream=stream)

    def _storage_request(self, method, url, headers, body=None, size=None,
                         callback=None, stream=False):
        # Get endpoint
        ep = self.endpoint
        # Attach credentials only for the endpoint's own host
        creds = None
        if (
                not _has_header(headers, "Authorization") and
                self.config.private_access(ep) and
                _same_host(url, ep.url)):
            creds = self._fill_creds(url, headers)
        # Send
        return self._do_with_redirects(
            method, url, headers, body, creds, ep, size=size,
            callback=callback, stream=stream)

   # --- API requests ---
    @property
    def endpoint(self):
        r"""API endpoint for current remote"""
        return self.config.endpoint(self.remote)

    def _api_request(self, method: str, operation: str, path="", body=None,
                     oid=None, upload=False) -> httpx.Response:
        # Try at most twice
        for attempt in range(2):
            # Resolve endpoint (may change after SSH discovery)
            ep, url, headers = self._api_target(operation, path, oid)
            if body is not None:
                headers["Content-Type"] = MEDIA_TYPE
            # Add credentials if endpoint is private
            creds = self._api_creds(ep, url, headers, upload)
            authed = _has_header(headers, "Authorization")
            # Send
            try:
                return self._do_with_redirects(
                    method, url, headers, body, creds, ep)
            except LFSHTTPStatusError as err:
                # Only 401 is handled here
                if err.code != 401:
                    raise
                # Already sent credentials
                if authed or attempt > 0:
                    raise _auth_required(err) from err
                # Mark endpoint private and try again
                LOG.debug("api: not authorized, submitting with auth")
                self.config.set_endpoint_access(ep, ACCESS_BASIC)

    def _api_target(self, operation: str, path="", oid=None):
        # Configured endpoint
        ep = self.endpoint
        # SSH discovery
        try:
            res = self.ssh.authenticate(ep, operation, oid)
        except (LFSError, OSError) as err:
            LOG.debug(
                "ssh: attempted with %s. Error: %s", ep.ssh_user_and_host, err)
            res = SSHAuthResponse()
        # Base URL
        base = res.href or ep.url
        if not base:
            raise LFSValueError(
                "No LFS endpoint configured; set 'lfs.url' or a remote URL")
        # Object URL
        url = base.rstrip("/") + "/objects"
        if path:
            url += "/" + path
        # Headers
        headers = dict(res.header or {})
        headers["Accept"] = MEDIA_TYPE
        # Output
        return ep, url, headers

    def _api_creds(self, ep, url: str, headers: dict, upload=False):
        # Check if credentials are needed
        if _has_header(headers, "Authorization"):
            return None
        if not (upload or self.config.private_access(ep)):
            return None
        # Get them
        return self._fill_creds(url, headers)

    def _fill_creds(self, url: str, headers: dict):
        # Check for credentials in URL
        parts = urlsplit(url)
        if parts.password is not None:
            sys.stderr.write(
                "warning: current Git remote contains credentials\n")
            _set_basic_auth(headers, parts.username or "", parts.password)
            return None
        # Ask provider
        creds = self.creds.fill(credentials_for_url(url))
        _set_basic_auth(
            headers, creds.get("username", ""), creds.get("password", ""))
        # Output
        return creds

   # --- HTTP ---
    def _do_with_redirects(self, method, url, headers, body, creds, ep,
                           size=None, callback=None, stream=False, via=None):
        # Chain of redirects so far
        via = [] if via is None else via
        # Send
        res = self._do_http(
            method, url, headers, body, creds, ep, size, callback, stream)
        # Check for temporary redirect
        if res.status_code != 307:
            return res
        res.close()
        # New location
        target = resolve_redirect(url, res.headers.get("Location", ""))
        via.append(url)
        LOG.debug("redirect: %s %s -> %s", method, url, target)
        # Check for loops
        if target in via:
            err = LFSRedirectError(f"Redirect loop for {method} {target}")
            err.set_context("Via", " -> ".join(via + [target]))
            raise err
        # Reuse the original body
        if body is not None and not isinstance(body, bytes):
            if not body.seekable():
                err = LFSRedirectError(
                    "Request body needs to be seekable to handle redirects.")
                err.set_context("URL", f"{method} {target}")
                raise err
            body.seek(0)
        # Don't send credentials to other hosts
        if not _same_host(url, target):
            headers = dict(headers)
            _pop_header(headers, "Authorization")
        # Follow
        return self._do_with_redirects(
            method, target, headers, body, creds, ep, size, callback,
            stream, via)

    def _do_http(self, method, url, headers, body, creds, ep, size=None,
                 callback=None, stream=False) -> httpx.Response:
        # Prepare body
        if body is None or isinstance(body, bytes):
            content = body
        else:
            content = _iter_body(body, size, callback)
        # Build request
        req = self.http.build_request(
            method, url, headers=headers, content=content)
        LOG.debug("HTTP: %s %s", method, url)
        # Send it
        try:
            res = self.http.send(req, stream=stream)
        except httpx.RequestError as err:
            wrap = LFSNetworkError(f"Error for {method} {url}: {err}")
            _set_request_context(wrap, req, ep)
            raise wrap from err
        LOG.debug("HTTP: %i", res.status_code)
        # Save or forget credentials
        if creds is not None:
            if res.status_code < 300:
                self.creds.approve(creds)
            elif res.status_code == 401:
                self.creds.reject(creds)
        # Check status
        if res.status_code < 400:
            return res
        # Read streamed body so error message can be decoded
        try:
            res.read()
        finally:
            res.close()
        raise self._status_error(res, ep)

    def _status_error(self, res: httpx.Response, ep) -> LFSHTTPStatusError:
        # Try to decode error payload
        try:
            data = self._decode_api_response(res)
        except LFSError:
            data = None
        # Get message
        msg = ""
        if isinstance(data, dict):
            msg = data.get("message") or ""
        # Form message
        code = res.status_code
        if msg:
            if data.get("documentation_url"):
                msg += "\nDocs: " + data["documentation_url"]
            if data.get("request_id"):
                msg += "\nRequest ID: " + data["request_id"]
        else:
            msg = default_error_message(code, str(res.request.url))
        # Classify
        if code in (501, 509):
            err = LFSProtocolUnsupported(msg, code)
        else:
            err = LFSHTTPStatusError(msg, code)
        # Add context
        _set_response_context(err, res, ep)
        return err

    def _decode_api_response(self, res: httpx.Response):
        # Check content type
        ctype = res.headers.get("Content-Type", "")
        if not (REGEX_LFS_MEDIA_TYPE.match(ctype) or
                REGEX_JSON_MEDIA_TYPE.match(ctype)):
            return None
        # Decode
        try:
            data = json.loads(res.content)
        except ValueError as err:
            msg = str(err)
        else:
            # Every API reply is a JSON object
            if isinstance(data, dict):
                return data
            msg = f"expected object, got {type(data).__name__}"
        wrap = LFSError(
            f"Unable to parse HTTP response for {res.request.method} " +
            f"{res.request.url}: {msg}")
        wrap.set_context("Status", res.status_code)
        raise wrap


def default_error_message(code: int, url: str) -> str:
    r"""Form error message for a status code with no message from server

    :Call:
        >>> msg = default_error_message(code, url)
    """
    # Find template
    if code in DEFAULT_ERRORS:
        fmt = DEFAULT_ERRORS[code]
    elif code < 500:
        fmt = DEFAULT_ERRORS[400] + f" from HTTP {code}"
    else:
        fmt = DEFAULT_ERRORS[500] + f" from HTTP {code}"
    # Output
    return fmt % url


def resolve_redirect(url: str, location: str) -> str:
    r"""Resolve a ``Location`` header against the request URL

    :Call:
        >>> target = resolve_redirect("https://h/old", "/new/path")
        >>> target
        'https://h/new/path'
    """
    return urljoin(url, location)


def iter_response_bytes(res: httpx.Response):
    r"""Iterate through a streamed response body

    Transport errors while reading become :class:`LFSNetworkError`.
    """
    try:
        for chunk in res.iter_bytes(CHUNK_SIZE):
            yield chunk
    except httpx.RequestError as err:
        raise LFSNetworkError(
            f"Error reading {res.request.method} {res.request.url}: {err}"
        ) from err


def _auth_required(err: LFSHTTPStatusError) -> LFSAuthRequired:
    # Convert, keeping context
    new = LFSAuthRequired(str(err), err.code)
    new.context.update(err.context)
    return new


def _decode_relations(data):
    # Missing field
    if not isinstance(data, dict):
        return None
    # Convert each relation
    rels = {}
    for name, rel in data.items():
        # Check shape
        if not isinstance(rel, dict):
            raise LFSError(f"Invalid '{name}' relation in server reply")
        header = rel.get("header") or {}
        if not isinstance(header, dict):
            raise LFSError(f"Invalid header for '{name}' relation")
        rels[name] = LinkRelation(str(rel.get("href") or ""), header)
    # Output
    return rels


def _encode_json(data) -> bytes:
    return json.dumps(data).encode("utf-8")


def _iter_body(fp, total=None, callback=None):
    # Stream blocks from a file
    nbytes = 0
    while True:
        chunk = fp.read(CHUNK_SIZE)
        if not chunk:
            break
        nbytes += len(chunk)
        # Progress
        if callback is not None and total:
            callback(total, nbytes, len(chunk))
        yield chunk


def _oid_size(obj):
    # Accept mappings and objects
    if isinstance(obj, dict):
        return obj["oid"], obj["size"]
    return obj.oid, obj.size


def _same_host(url1: str, url2: str) -> bool:
    return urlsplit(url1).netloc.lower() == urlsplit(url2).netloc.lower()


def _has_header(headers: dict, name: str) -> bool:
    return any(k.lower() == name.lower() for k in headers)


def _pop_header(headers: dict, name: str) -> str:
    # Find key, any case
    for key in list(headers):
        if key.lower() == name.lower():
            return headers.pop(key)
    return ""


def _setdefault_header(headers: dict, name: str, val: str):
    if not _has_header(headers, name):
        headers[name] = val


def _set_basic_auth(headers: dict, user: str, password: str):
    # Nothing to send
    if not user and not password:
        return
    # Encode
    token = base64.b64encode(f"{user}:{password}".encode("utf-8"))
    headers["Authorization"] = "Basic " + token.decode("ascii")


def _set_request_context(err: LFSError, req: httpx.Request, ep):
    err.set_context("Endpoint", ep.url)
    err.set_context("URL", f"{req.method} {req.url}")
    err.set_header_context("Request", req.headers)


def _set_response_context(err: LFSError, res: httpx.Response, ep):
    err.set_context("Status", f"{res.status_code} {res.reason_phrase}")
    err.set_header_context("Response", res.headers)
    _set_request_context(err, res.request, ep)
