r"""
``lfsprune``: Delete local objects that are no longer needed
=============================================================

This module provides the :class:`Pruner`, which deletes objects from the
local store that no *retention source* still needs. A prune run works
in these steps:

    1.  In parallel, list all local objects, run every retention source
        (each sends the IDs it needs into one bounded channel), and, if
        verifying with the remote, find all objects reachable from the
        remote's refs.
    2.  One collector thread drains the retention channel into the
        retained set.
    3.  Once all producers finish and the channel is closed and drained,
        the prunable objects are the local objects not retained.
    4.  If verifying (and not a dry run), check every prunable object
        on the remote using a check-only
        :class:`lfsync.lfsqueue.TransferQueue`.
    5.  Abort, deleting nothing, if any prunable object is reachable from
        the remote but could not be verified there.
    6.  Delete (or, for a dry run, just count) the prunable objects.

The default retention sources (:func:`default_retention_sources`) keep
objects used by

    * the current checkout,
    * refs with commits in the last ``lfs.fetchrecentrefsdays`` +
      ``lfs.pruneoffsetdays`` days (and, if
      ``lfs.fetchrecentcommitsdays`` is set, recent commits on them),
    * commits not yet pushed to the prune remote, and
    * pointer files still in the working tree.

"""

# Standard library
import functools
import logging
import sys
import time
from collections import namedtuple

# Local imports
from .lfserror import (
    LFSFileSystemError,
    LFSPruneError,
    LFSRetentionSafetyError,
    LFSValueError)
from .lfsqueue import DownloadCheckable, TransferQueue
from .lfsscan import scan_refs, scan_tree, scan_worktree
from .lfstasks import (
    StringSet,
    WaitGroup,
    close_channel,
    drain,
    make_channel,
    start_task)


# Progress message types
PROGRESS_LOCAL = "local"
PROGRESS_RETAIN = "retain"
PROGRESS_VERIFY = "verify"

# Seconds per day
DAY = 86400

# Logger
LOG = logging.getLogger(__name__)


# Named producer of retained object IDs
RetentionSource = namedtuple("RetentionSource", ["name", "func"])


# Results
class PruneSummary(namedtuple("_PruneSummary", [
        "local_count",
        "retained_count",
        "prunable_count",
        "prunable_size",
        "verified_count",
        "deleted_count",
        "problems",
        "delete_problems",
        "dry_run"])):
    r"""Counts and problems from one prune run"""
    __slots__ = ()

    @property
    def failed(self) -> bool:
        r"""Whether any object that should be deleted was not"""
        return len(self.delete_problems) > 0


# Prune class
class Pruner(object):
    r"""Prune orchestrator for one local store

    :Call:
        >>> pruner = Pruner(store, config, client=None, **kw)
    :Inputs:
        *store*: :class:`lfsync.lfsstore.LocalStore`
            Local object store
        *config*: :class:`lfsync.lfsconfig.Configuration`
            Settings
        *client*: {``None``} | :class:`lfsync.lfsclient.LFSClient`
            Client for the prune remote; required to verify
        *retention_sources*: {``()``} | :class:`list`
            List of :class:`RetentionSource`
        *reachable_source*: {``None``} | :class:`callable`
            Function returning IDs reachable from the remote
        *stdout*: {``None``} | :class:`io.TextIOBase`
            Stream for status messages (default: ``sys.stdout``)
    """
   # --- Class attributes ---
    __slots__ = (
        "client",
        "config",
        "reachable_source",
        "retention_sources",
        "stdout",
        "store")

   # --- __dunder__ ---
    def __init__(self, store, config, client=None, retention_sources=(),
                 reachable_source=None, stdout=None):
        self.store = store
        self.config = config
        self.client = client
        self.retention_sources = list(retention_sources)
        self.reachable_source = reachable_source
        self.stdout = sys.stdout if stdout is None else stdout

   # --- Main ---
    def run(self, verify_remote=False, dry_run=False, verbose=False):
        r"""Delete local objects that are no longer needed

        :Call:
            >>> summary = pruner.run(verify_remote=False, **kw)
        :Inputs:
            *pruner*: :class:`Pruner`
                Prune orchestrator
            *verify_remote*: ``True`` | {``False``}
                Option to check prunable objects on the remote first
            *dry_run*: ``True`` | {``False``}
                Option to only report what would be deleted
            *verbose*: ``True`` | {``False``}
                Option to list each prunable object
        :Outputs:
            *summary*: :class:`PruneSummary`
                Counts and problems
        :Raises:
            * :class:`LFSPruneError` if local objects or remote reachable
              objects could not be listed
            * :class:`LFSRetentionSafetyError` if a prunable object is
              reachable from the remote but not on it
            * fatal :class:`LFSError` from the transfer queue
        """
        # Need a client to verify
        if verify_remote and self.client is None:
            raise LFSValueError("Cannot verify with remote without a client")
        # Shared results
        local = []
        retained = StringSet()
        reachable = StringSet()
        verified = StringSet()
        problems = []
        fatal = []
        counts = {PROGRESS_LOCAL: 0, PROGRESS_RETAIN: 0, PROGRESS_VERIFY: 0}
        # Channels
        progress = make_channel()
        retainq = make_channel()
        # Group 1: producers
        taskwait = WaitGroup()
        start_task(taskwait, self._task_local_objects, local, progress, fatal)
        for src in self.retention_sources:
            start_task(taskwait, self._task_retained, src, retainq, problems)
        if verify_remote:
            start_task(taskwait, self._task_reachable, reachable, fatal)
        # Group 2: retained collector
        retainwait = WaitGroup()
        start_task(
            retainwait, self._task_collect_retained,
            retained, retainq, progress)
        # Group 3: progress display
        progresswait = WaitGroup()
        start_task(
            progresswait, self._task_display_progress, progress, counts)
        # Wait for producers, then close retention channel
        taskwait.wait()
        close_channel(retainq)
        retainwait.wait()
        # Stop if we couldn't tell what exists
        if fatal:
            close_channel(progress)
            progresswait.wait()
            raise fatal[0]
        # Difference
        keep = retained.snapshot()
        prunable = [p for p in local if p.oid not in keep]
        total_size = sum(p.size for p in prunable)
        # Verify with remote
        if verify_remote and not dry_run:
            try:
                self._verify(prunable, verified, progress)
            finally:
                close_channel(progress)
                progresswait.wait()
            # Safety gate
            check_verified(
                [p.oid for p in prunable],
                reachable.snapshot(), verified.snapshot())
        else:
            close_channel(progress)
            progresswait.wait()
        # Report
        size8 = humanize_bytes(total_size)
        delete_problems = []
        deleted = 0
        if dry_run:
            self._print(f"{len(prunable)} files would be pruned, {size8}")
        else:
            self._print(f"Pruning {len(prunable)} files, {size8}")
            deleted, delete_problems = self._delete_files(prunable)
        # Details
        if verbose:
            for p in prunable:
                self._print(f" * {p.oid} ({humanize_bytes(p.size)})")
        # Problems, all at once
        if problems:
            self._print("Problems finding objects to keep:")
            for msg in problems:
                self._print(f"  {msg}")
        if delete_problems:
            self._print("Failed to delete some files:")
            for msg in delete_problems:
                self._print(f"  {msg}")
        # Output
        return PruneSummary(
            local_count=len(local),
            retained_count=len(local) - len(prunable),
            prunable_count=len(prunable),
            prunable_size=total_size,
            verified_count=len(verified),
            deleted_count=deleted,
            problems=problems,
            delete_problems=delete_problems,
            dry_run=dry_run)

   # --- Verify ---
    def _verify(self, prunable, verified: StringSet, progress):
        # Check-only queue against prune remote
        q = TransferQueue(self.client, "download", check_only=True)
        for p in prunable:
            q.add(DownloadCheckable(p.oid, p.size))
        # Collect verified objects in a separate thread
        verifywait = WaitGroup()
        start_task(
            verifywait, self._task_collect_verified,
            q.watch(), verified, progress)
        try:
            q.wait()
        finally:
            verifywait.wait()
        # Objects that failed are simply unverified
        for err in q.errors:
            LOG.debug("prune: verify: %s", err)

   # --- Delete ---
    def _delete_files(self, prunable):
        # Initialize
        problems = []
        deleted = 0
        # Loop through objects
        for i, p in enumerate(prunable):
            self._status(f"Deleting object {i + 1}/{len(prunable)}")
            try:
                self.store.delete_object(p.oid)
            except LFSFileSystemError as err:
                problems.append(str(err))
                continue
            deleted += 1
        # Final status
        self._status(f"Deleted {deleted} files", final=True)
        return deleted, problems

   # --- Tasks ---
    def _task_local_objects(self, local: list, progress, fatal: list):
        try:
            # List the whole store
            for p in self.store.iter_objects():
                local.append(p)
                progress.put(PROGRESS_LOCAL)
        except OSError as err:
            # Can't safely tell what exists
            wrap = LFSPruneError(f"Failed to list local objects: {err}")
            wrap.__cause__ = err
            fatal.append(wrap)

    def _task_retained(self, src: RetentionSource, retainq, problems: list):
        try:
            # Send each needed object to collector
            for oid in src.func():
                retainq.put(oid)
        except Exception as err:
            # Other sources keep going
            LOG.debug("prune: retention source %s failed", src.name,
                      exc_info=True)
            problems.append(f"{src.name}: {err}")

    def _task_reachable(self, reachable: StringSet, fatal: list):
        try:
            for oid in self.reachable_source():
                reachable.add(oid)
        except Exception as err:
            # Safety gate can't be evaluated
            wrap = LFSPruneError(
                f"Failed to find objects reachable from remote: {err}")
            wrap.__cause__ = err
            fatal.append(wrap)

    def _task_collect_retained(self, retained: StringSet, retainq, progress):
        for oid in drain(retainq):
            if retained.add(oid):
                progress.put(PROGRESS_RETAIN)

    def _task_collect_verified(self, watcher, verified: StringSet, progress):
        for oid in watcher:
            verified.add(oid)
            progress.put(PROGRESS_VERIFY)

    def _task_display_progress(self, progress, counts: dict):
        msg = ""
        for kind in drain(progress):
            # Update counts
            counts[kind] += 1
            msg = (
                f"{counts[PROGRESS_LOCAL]} local objects, " +
                f"{counts[PROGRESS_RETAIN]} retained")
            if counts[PROGRESS_VERIFY]:
                msg += f", {counts[PROGRESS_VERIFY]} verified with remote"
            self._status(msg)
        # Final message
        if msg:
            self._status(msg, final=True)

   # --- Output ---
    def _print(self, msg: str):
        self.stdout.write(msg + "\n")

    def _status(self, msg: str, final=False):
        # Only redraw on a terminal
        isatty = getattr(self.stdout, "isatty", None)
        if isatty is not None and isatty():
            self.stdout.write("\r" + msg)
            if final:
                self.stdout.write("\n")
            self.stdout.flush()
        elif final:
            self._print(msg)


def check_verified(prunable, reachable, verified):
    r"""Check that every prunable object reachable remotely is on remote

    :Call:
        >>> check_verified(prunable, reachable, verified)
    :Inputs:
        *prunable*: :class:`list`\ [:class:`str`]
            IDs about to be deleted
        *reachable*: :class:`set`\ [:class:`str`]
            IDs reachable from the remote's refs
        *verified*: :class:`set`\ [:class:`str`]
            IDs confirmed present on the remote
    :Raises:
        :class:`LFSRetentionSafetyError` listing every problem ID
    """
    # Unreachable and missing is fine; reachable and missing is not
    problems = [
        oid for oid in prunable
        if oid not in verified and oid in reachable
    ]
    if problems:
        raise LFSRetentionSafetyError(problems)


def humanize_bytes(nbytes: int) -> str:
    r"""Format a number of bytes, e.g. ``"1.2 KB"``"""
    # Small values
    if nbytes < 1024:
        return f"{nbytes} B"
    # Find unit
    val = float(nbytes)
    for unit in ("KB", "MB", "GB", "TB"):
        val /= 1024
        if val < 1024:
            break
    return f"{val:.1f} {unit}"


# Retention sources
def retained_current_checkout(repo):
    r"""Get IDs of objects in the current checkout's tree"""
    # Get commit
    ref = repo.current_ref()
    if ref is None:
        return []
    # Scan tree
    return [wp.pointer.oid for wp in scan_tree(repo, ref.sha)]


def retained_recent_refs(repo, opts, now=None):
    r"""Get IDs of objects on recently updated refs

    :Call:
        >>> oids = retained_recent_refs(repo, opts, now=None)
    :Inputs:
        *repo*: :class:`lfsync.gitrepo.GitRepo`
            Interface to git repository
        *opts*: :class:`lfsync.lfsconfig.FetchPruneConfig`
            Day windows
        *now*: {``None``} | :class:`float`
            Current time (default: ``time.time()``)
    :Outputs:
        *oids*: :class:`list`\ [:class:`str`]
            IDs in trees of recent refs and their recent commits
    """
    # Only HEAD is kept when no recent days
    if opts.recent_refs_days <= 0:
        return []
    # Time window
    now = time.time() if now is None else now
    cutoff = now - (opts.recent_refs_days + opts.prune_offset_days) * DAY
    # Commits already scanned
    seen = set()
    oids = []
    # Loop through refs
    for ref in repo.list_refs(opts.recent_refs_include_remotes):
        # Skip old refs
        if ref.time < cutoff:
            continue
        # Tip commit
        commits = [ref.sha]
        # Recent commits on the ref
        if opts.recent_commits_days > 0:
            days = opts.recent_commits_days + opts.prune_offset_days
            tcommit = int(ref.time - days * DAY)
            commits.extend(repo.rev_list(f"--max-age={tcommit}", ref.sha))
        # Scan each new commit
        for sha in commits:
            if sha in seen:
                continue
            seen.add(sha)
            oids.extend(wp.pointer.oid for wp in scan_tree(repo, sha))
    # Output
    return oids


def retained_unpushed(repo, remote: str):
    r"""Get IDs of objects in commits not on *remote*"""
    # All local branches and tags, not remote
    args = ["--branches", "--tags", "--not", f"--remotes={remote}"]
    return [wp.pointer.oid for wp in scan_refs(repo, *args)]


def retained_worktree(repo):
    r"""Get IDs of pointer files in the working tree"""
    # Nothing checked out in bare repos
    if repo.bare:
        return []
    return [wp.pointer.oid for wp in scan_worktree(repo)]


def reachable_from_remote(repo, remote: str):
    r"""Get IDs of objects reachable from *remote*'s tracking refs"""
    return [wp.pointer.oid for wp in scan_refs(repo, f"--remotes={remote}")]


def default_retention_sources(repo, config, now=None) -> list:
    r"""Create the standard retention sources for a repo

    :Call:
        >>> sources = default_retention_sources(repo, config, now=None)
    :Outputs:
        *sources*: :class:`list`\ [:class:`RetentionSource`]
            Current checkout, recent refs, unpushed, and worktree
    """
    # Settings
    opts = config.fetch_prune_config()
    # Output
    return [
        RetentionSource(
            "current checkout",
            functools.partial(retained_current_checkout, repo)),
        RetentionSource(
            "recent refs",
            functools.partial(retained_recent_refs, repo, opts, now)),
        RetentionSource(
            "unpushed",
            functools.partial(
                retained_unpushed, repo, opts.prune_remote_name)),
        RetentionSource(
            "worktree",
            functools.partial(retained_worktree, repo)),
    ]


