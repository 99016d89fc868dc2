r"""
``lfsqueue``: Parallel transfers and remote checks
===================================================

This module provides the :class:`TransferQueue`, which runs many
independent check/transfer operations with a fixed number of worker
threads, and the work items it runs:

    * :class:`DownloadCheckable`: check that the server has an object
    * :class:`Downloadable`: download an object into the local store
    * :class:`Uploadable`: upload an object from the local store

In batch mode, the queue negotiates up to *batch_size* objects per
request using :meth:`lfsync.lfsclient.LFSClient.batch`; otherwise each
worker calls the item's own :meth:`Transferable.check`. Failures of single
items are collected in :attr:`TransferQueue.errors` and don't stop the
rest of the queue. A *fatal* error (see :class:`lfsync.lfserror.LFSError`)
stops all further network work, and :meth:`TransferQueue.wait` raises it
once every worker has finished.
"""

# Standard library
import logging
import os
import threading

# Local imports
from .lfsclient import iter_response_bytes
from .lfserror import LFSError, LFSHTTPStatusError, LFSValueError
from .lfstasks import (
    WaitGroup,
    close_channel,
    drain,
    make_channel,
    start_task)


# Logger
LOG = logging.getLogger(__name__)


# Base work item
class Transferable(object):
    r"""One object to check and possibly transfer

    :Call:
        >>> item = Transferable(oid, size, name="")
    :Inputs:
        *oid*: :class:`str`
            Object ID
        *size*: :class:`int`
            Size of object in bytes
        *name*: {``""``} | :class:`str`
            Name of working file, for messages
    """
   # --- Class attributes ---
    __slots__ = (
        "name",
        "object",
        "oid",
        "size")

    # Transfer direction for batch requests
    operation = "download"

   # --- __dunder__ ---
    def __init__(self, oid: str, size: int, name=""):
        self.oid = oid
        self.size = size
        self.name = name
        self.object = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.oid[:8]} '{self.name}'>"

   # --- Steps ---
    def check(self, client):
        r"""Ask the server about this object (legacy API)

        :Call:
            >>> obj = item.check(client)
        :Outputs:
            *obj*: ``None`` | :class:`lfsync.lfsclient.ObjectResource`
                ``None`` if there is nothing to do
        """
        raise NotImplementedError

    def transfer(self, client, callback=None):
        r"""Move the object's data"""
        pass

    def set_object(self, obj):
        self.object = obj

    def accept(self, obj) -> bool:
        r"""Check a negotiated object

        :Call:
            >>> q = item.accept(obj)
        :Outputs:
            *q*: ``True`` | ``False``
                Whether a transfer is needed
        :Raises:
            :class:`LFSError` if the server reported a problem
        """
        # Check for error from server
        if obj.error is not None:
            raise LFSHTTPStatusError(
                f"Object {self.oid}: {obj.error}", obj.error.code,
                fatal=False)
        # Need a download link
        if obj.rel("download") is None:
            raise LFSError(f"Object {self.oid} has no download action")
        return True


class DownloadCheckable(Transferable):
    r"""Check that the server has an object, without downloading it"""
    __slots__ = ()

    def check(self, client):
        return client.download_check(self.oid)


class Downloadable(Transferable):
    r"""Download an object into the client's local store"""
    __slots__ = ()

    def check(self, client):
        return client.download_check(self.oid)

    def transfer(self, client, callback=None):
        # Start download
        res, _ = client.download_object(self.object)
        # Write through hash check
        try:
            client.store.write_object(
                self.oid, iter_response_bytes(res), self.size, callback)
        finally:
            res.close()


class Uploadable(Transferable):
    r"""Upload an object from a local file

    :Call:
        >>> item = Uploadable(oid, size, name="", fname=None)
    :Inputs:
        *fname*: {``None``} | :class:`str`
            Path to object file (default: from client's store)
    """
    __slots__ = (
        "fname",)

    operation = "upload"

    def __init__(self, oid: str, size: int, name="", fname=None):
        Transferable.__init__(self, oid, size, name)
        self.fname = fname

    def check(self, client):
        return client.upload_check(self._fname(client))

    def accept(self, obj) -> bool:
        # Check for error from server
        if obj.error is not None:
            raise LFSHTTPStatusError(
                f"Object {self.oid}: {obj.error}", obj.error.code,
                fatal=False)
        # No upload link means the server already has it
        return obj.rel("upload") is not None

    def transfer(self, client, callback=None):
        client.upload_object(self.object, callback, self._fname(client))

    def _fname(self, client) -> str:
        # Get file name
        fname = self.fname
        if fname is None:
            fname = client.store.object_path(self.oid, create=False)
        # Check it
        if not os.path.isfile(fname):
            raise LFSValueError(
                f"Object {self.oid} ('{self.name}') not in local store")
        return fname


# Queue class
class TransferQueue(object):
    r"""Bounded-concurrency runner for :class:`Transferable` items

    :Call:
        >>> q = TransferQueue(client, operation, **kw)
    :Inputs:
        *client*: :class:`lfsync.lfsclient.LFSClient`
            LFS API client
        *operation*: ``"download"`` | ``"upload"``
            Transfer direction for batch requests
        *concurrency*: {``None``} | :class:`int`
            Number of workers (default: *lfs.concurrenttransfers*)
        *check_only*: ``True`` | {``False``}
            Only check that objects exist; no data transfer
        *batch*: {``None``} | ``True`` | ``False``
            Use batch API (default: *lfs.batch*)
        *batch_size*: {``100``} | :class:`int`
            Max objects per batch request
        *callback*: {``None``} | :class:`callable`
            Progress function ``callback(total, nbytes_so_far, nbytes)``
    """
   # --- Class attributes ---
    __slots__ = (
        "batch",
        "batch_size",
        "callback",
        "check_only",
        "client",
        "concurrency",
        "errors",
        "operation",
        "_fatal",
        "_items",
        "_lock",
        "_waited",
        "_watchers")

   # --- __dunder__ ---
    def __init__(self, client, operation: str, concurrency=None,
                 check_only=False, batch=None, batch_size=100,
                 callback=None):
        # Save settings
        self.client = client
        self.operation = operation
        self.check_only = check_only
        self.batch_size = max(1, batch_size)
        self.callback = callback
        # Defaults from config
        if concurrency is None:
            concurrency = client.config.concurrent_transfers
        if batch is None:
            batch = client.config.batch_transfer
        self.concurrency = max(1, concurrency)
        self.batch = batch
        # State
        self.errors = []
        self._items = []
        self._watchers = []
        self._fatal = None
        self._waited = False
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._items)

   # --- Input ---
    def add(self, item: Transferable):
        r"""Add one item; only allowed before :meth:`wait`

        :Call:
            >>> q.add(item)
        """
        # Check state
        if self._waited:
            raise LFSValueError("Cannot add to transfer queue after wait()")
        self._items.append(item)

   # --- Output ---
    def watch(self):
        r"""Get iterator of object IDs as they finish successfully

        The watcher is registered immediately. The iterator ends when
        :meth:`wait` finishes, and cannot be restarted.

        :Call:
            >>> for oid in q.watch():
        """
        # Unbounded so workers never block on slow watchers
        ch = make_channel(0)
        with self._lock:
            if self._waited:
                # Queue already finished
                close_channel(ch)
            else:
                self._watchers.append(ch)
        return drain(ch)

    def wait(self):
        r"""Process every item, then close all watchers

        :Call:
            >>> q.wait()
        :Raises:
            The first fatal :class:`LFSError`, after all workers finish
        """
        # Work channel and worker group
        workq = make_channel()
        wg = WaitGroup()
        self._waited = True
        LOG.debug(
            "tq: %i items, %i workers, batch=%s, check_only=%s",
            len(self._items), self.concurrency, self.batch, self.check_only)
        # Start workers
        for _ in range(self.concurrency):
            start_task(wg, self._worker, workq)
        try:
            # Feed workers
            if self.batch:
                self._run_batches(workq)
            else:
                for item in self._items:
                    workq.put((item, False))
        finally:
            # One close per worker
            for _ in range(self.concurrency):
                close_channel(workq)
            wg.wait()
            # Close watchers
            with self._lock:
                for ch in self._watchers:
                    close_channel(ch)
                self._watchers = []
        # Report fatal error
        if self._fatal is not None:
            raise self._fatal

   # --- Workers ---
    def _run_batches(self, workq):
        # Loop through groups of items
        for i in range(0, len(self._items), self.batch_size):
            # Stop after fatal error
            if self._fatal is not None:
                return
            items = self._items[i:i + self.batch_size]
            # Negotiate
            try:
                objs = self.client.batch(items, self.operation)
            except Exception as err:
                # Whole batch failed
                err = _wrap_error(err)
                for item in items:
                    self._add_error(item, err)
                continue
            # Index results by ID
            found = {obj.oid: obj for obj in objs}
            for item in items:
                # Get result for this object
                obj = found.get(item.oid)
                if obj is None:
                    self._add_error(item, LFSError(
                        f"Object {item.oid} missing from batch response"))
                    continue
                # Check it
                item.set_object(obj)
                try:
                    need = item.accept(obj)
                except Exception as err:
                    self._add_error(item, _wrap_error(err))
                    continue
                # Finish or pass to workers
                if need and not self.check_only:
                    workq.put((item, True))
                else:
                    self._complete(item)

    def _worker(self, workq):
        # Process items until closed
        for item, checked in drain(workq):
            # Drain remaining items after fatal error
            if self._fatal is not None:
                continue
            try:
                self._process(item, checked)
            except Exception as err:
                # Any failure belongs to this item
                self._add_error(item, _wrap_error(err))

    def _process(self, item: Transferable, checked: bool):
        # Legacy check
        if not checked:
            obj = item.check(self.client)
            # Nothing to do
            if obj is None:
                self._complete(item)
                return
            item.set_object(obj)
            if not item.accept(obj) or self.check_only:
                self._complete(item)
                return
        # Move the data
        item.transfer(self.client, self.callback)
        self._complete(item)

    def _complete(self, item: Transferable):
        # Tell watchers
        with self._lock:
            for ch in self._watchers:
                ch.put(item.oid)

    def _add_error(self, item: Transferable, err: Exception):
        LOG.debug("tq: error for %s: %s", item.oid, err)
        # Save error
        with self._lock:
            self.errors.append(err)
            # Remember first fatal error
            if isinstance(err, LFSError) and err.fatal:
                if self._fatal is None:
                    self._fatal = err


def _wrap_error(err: Exception) -> Exception:
    # Errors from this package and the file system pass through
    if isinstance(err, (LFSError, OSError)):
        return err
    # Anything else becomes a non-fatal error for one item
    LOG.debug("tq: unexpected error", exc_info=err)
    wrap = LFSError(f"{err.__class__.__name__}: {err}", fatal=False)
    wrap.__cause__ = err
    return wrap
