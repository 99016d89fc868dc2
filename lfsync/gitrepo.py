r"""
``gitrepo``: Interact with git repos using system interface
============================================================

This module provides the :class:`GitRepo` class, a basic interface to a
git repository (whether working or bare) built on the ``git`` plumbing
commands. Large-file commands use it to resolve refs, list objects and
trees, read small blobs, and refresh the index.

Every command runs with the repository's top-level folder as its working
directory, so a :class:`GitRepo` can be shared between threads.
"""

# Standard library
import os
from collections import namedtuple
from subprocess import Popen, PIPE

# Local imports
from .lfserror import LFSSystemError


# A ref with its commit and commit time
Ref = namedtuple("Ref", ["name", "sha", "time"])

# A blob in a tree
TreeBlob = namedtuple("TreeBlob", ["sha", "size", "path"])

# Format for listing refs
REF_FORMAT = "\t".join((
    "%(refname)",
    "%(objectname)",
    "%(*objectname)",
    "%(committerdate:unix)",
    "%(*committerdate:unix)"))


# Class to interface one repo
class GitRepo(object):
    r"""Git repository interface class

    :Call:
        >>> repo = GitRepo(where=None)
    :Inputs:
        *where*: {``None``} | :class:`str`
            Path from which to look for git repo (default is CWD)
    :Outputs:
        *repo*: :class:`GitRepo`
            Interface to git repository
    """
   # --- Class attributes ---
    # Class attributes
    __slots__ = (
        "bare",
        "gitdir")

   # --- __dunder__ ---
    def __init__(self, where=None):
        # Check for a bare repo
        self.bare = is_bare(where)
        # Record root directory
        self.gitdir = get_gitdir(where, bare=self.bare)

   # --- Status Operations ---
    def assert_working(self, cmd=None):
        r"""Assert that current repo is working (non-bare)

        :Call:
            >>> repo.assert_working(cmd=None)
        :Inputs:
            *repo*: :class:`GitRepo`
                Inteface to git repository
            *cmd*: {``None``} | :class:`str`
                Command name for error message
        """
        # Check if a bare repo
        if self.bare:
            # Form message
            msg = "Cannot run command in bare repo"
            # Check for a command
            if cmd:
                msg += "\n> %s" % cmd
            # Exception
            raise LFSSystemError(msg)

    def get_configdir(self) -> str:
        r"""Get absolute path to the ``.git`` folder, even on bare repos

        :Call:
            >>> fdir = repo.get_configdir()
        """
        # Bare repos are their own git dir
        if self.bare:
            return self.gitdir
        # Ask git (handles worktrees and separate git dirs)
        fdir = self.check_o(["git", "rev-parse", "--git-dir"]).strip()
        # Absolute path
        return os.path.realpath(os.path.join(self.gitdir, fdir))

   # --- Config ---
    def config_list(self) -> dict:
        r"""Read all git config settings that apply to this repo

        :Call:
            >>> opts = repo.config_list()
        :Outputs:
            *opts*: :class:`dict`\ [:class:`str`]
                Value of each setting; keys are lower-case except for
                the subsection part (e.g. URLs); later settings win
        """
        # Get null-separated list
        stdout = self.check_o(["git", "config", "--list", "-z"])
        # Initialize
        opts = {}
        # Loop through entries
        for entry in stdout.split("\0"):
            # Skip empty
            if not entry:
                continue
            # Split key from value
            key, _, val = entry.partition("\n")
            opts[key] = val
        # Output
        return opts

    def config_set_local(self, key: str, val):
        r"""Set a value in the repo's local git config

        :Call:
            >>> repo.config_set_local(key, val)
        """
        self.check_call(["git", "config", "--local", key, _to_ini(val)])

    def config_unset_local(self, key: str):
        # Exit code 5 means the key wasn't set
        self.check_call(["git", "config", "--local", "--unset", key], [5])

   # --- Refs ---
    def current_ref(self):
        r"""Get the currently checked out ref

        :Call:
            >>> ref = repo.current_ref()
        :Outputs:
            *ref*: ``None`` | :class:`Ref`
                Name, commit, and commit time of ``HEAD``, or ``None`` if
                there are no commits yet
        """
        # Get commit and time
        stdout = self.check_o(
            ["git", "log", "-1", "--format=%H %ct", "HEAD", "--"], [128])
        # Check for unborn branch
        if not stdout.strip():
            return None
        sha, t = stdout.split()
        # Name of branch, or HEAD if detached
        name = self.check_o(
            ["git", "rev-parse", "--symbolic-full-name", "HEAD"]).strip()
        # Output
        return Ref(name or "HEAD", sha, int(t))

    def list_refs(self, include_remotes=False) -> list:
        r"""List local branches and tags, optionally remote branches

        :Call:
            >>> refs = repo.list_refs(include_remotes=False)
        :Inputs:
            *repo*: :class:`GitRepo`
                Interface to git repository
            *include_remotes*: ``True`` | {``False``}
                Option to include remote-tracking branches
        :Outputs:
            *refs*: :class:`list`\ [:class:`Ref`]
                Each ref with commit (tags peeled) and commit time
        """
        # Form command
        cmdlist = [
            "git", "for-each-ref", f"--format={REF_FORMAT}",
            "refs/heads", "refs/tags"]
        if include_remotes:
            cmdlist.append("refs/remotes")
        # List refs
        stdout = self.check_o(cmdlist)
        # Parse
        refs = []
        for line in stdout.splitlines():
            # Unpack
            parts = line.split("\t")
            if len(parts) != 5:
                continue
            name, sha, psha, t, pt = parts
            # Skip symbolic remote HEADs
            if name.endswith("/HEAD"):
                continue
            # Use peeled values for annotated tags
            sha = psha or sha
            t = pt or t
            # Tags of non-commits have no time
            if not t:
                continue
            refs.append(Ref(name, sha, int(t)))
        # Output
        return refs

    def rev_list(self, *args) -> list:
        r"""List commits using ``git rev-list``

        :Call:
            >>> shas = repo.rev_list(*args)
        """
        # Run command
        stdout = self.check_o(["git", "rev-list"] + list(args))
        # Split
        return stdout.split()

    def rev_list_objects(self, *args) -> list:
        r"""List objects using ``git rev-list --objects``

        :Call:
            >>> objs = repo.rev_list_objects(*args)
        :Outputs:
            *objs*: :class:`list`\ [(:class:`str`, :class:`str`)]
                Object ID and path (``""`` for commits) of each object
        """
        # Run command
        stdout = self.check_o(["git", "rev-list", "--objects"] + list(args))
        # Parse
        objs = []
        for line in stdout.splitlines():
            # Split hash from path
            sha, _, name = line.partition(" ")
            if sha:
                objs.append((sha, name))
        # Output
        return objs

   # --- Trees and blobs ---
    def ls_tree_blobs(self, ref="HEAD") -> list:
        r"""List all blobs in a tree, with sizes

        :Call:
            >>> blobs = repo.ls_tree_blobs(ref="HEAD")
        :Inputs:
            *repo*: :class:`GitRepo`
                Interface to git repository
            *ref*: {``"HEAD"``} | :class:`str`
                Git reference, can be branch name, tag, or commit hash
        :Outputs:
            *blobs*: :class:`list`\ [:class:`TreeBlob`]
                Hash, size, and path of each blob
        """
        # Handle ref=None
        ref = _safe_ref(ref)
        # List recursively, with sizes, null-terminated
        stdout = self.check_o(["git", "ls-tree", "-r", "-l", "-z", ref])
        # Parse
        blobs = []
        for entry in stdout.split("\0"):
            # Split info from path
            info, sep, path = entry.partition("\t")
            if not sep:
                continue
            # Unpack info: mode, type, hash, size
            parts = info.split()
            if len(parts) != 4 or parts[1] != "blob":
                continue
            blobs.append(TreeBlob(parts[2], int(parts[3]), path))
        # Output
        return blobs

    def cat_file_sizes(self, shas) -> dict:
        r"""Get the type and size of many objects

        :Call:
            >>> sizes = repo.cat_file_sizes(shas)
        :Outputs:
            *sizes*: :class:`dict`\ [(:class:`str`, :class:`int`)]
                Type and size of each object that exists
        """
        # Form input
        txt = "".join(f"{sha}\n" for sha in shas)
        if not txt:
            return {}
        # Run batch command
        stdout = self.check_o(
            ["git", "cat-file", "--batch-check"], stdin=txt.encode())
        # Parse
        sizes = {}
        for line in stdout.splitlines():
            # Unpack; missing objects have only two fields
            parts = line.split()
            if len(parts) != 3:
                continue
            sizes[parts[0]] = (parts[1], int(parts[2]))
        # Output
        return sizes

    def cat_file_contents(self, shas):
        r"""Read contents of many (small) blobs

        :Call:
            >>> for sha, data in repo.cat_file_contents(shas):
        :Outputs:
            *sha*: :class:`str`
                Object ID
            *data*: :class:`bytes`
                Raw contents of object
        """
        # Form input
        txt = "".join(f"{sha}\n" for sha in shas)
        if not txt:
            return
        # Run batch command, keeping raw bytes
        stdout = self._check_b(
            ["git", "cat-file", "--batch"], stdin=txt.encode())
        # Parse ``<sha> <type> <size>\n<contents>\n`` records
        pos = 0
        while pos < len(stdout):
            # Read header
            iend = stdout.index(b"\n", pos)
            header = stdout[pos:iend].decode().split()
            pos = iend + 1
            # Missing object
            if len(header) != 3:
                continue
            # Read contents
            size = int(header[2])
            yield header[0], stdout[pos:pos + size]
            pos += size + 1

   # --- Work tree ---
    def ls_files(self) -> list:
        r"""List files tracked in the index

        :Call:
            >>> fnames = repo.ls_files()
        """
        # Only on working repos
        self.assert_working("ls-files")
        # List files
        stdout = self.check_o(["git", "ls-files", "-z"])
        # Split
        return [f for f in stdout.split("\0") if f]

    def update_index(self, paths):
        r"""Refresh index entries for files whose contents were rewritten

        :Call:
            >>> repo.update_index(paths)
        """
        # Form input
        txt = "".join(f"{path}\n" for path in paths)
        if not txt:
            return
        # Run command
        self.check_o(
            ["git", "update-index", "-q", "--refresh", "--stdin"],
            [1], stdin=txt.encode())

   # --- Shell utilities ---
    def check_o(self, cmd, codes=None, stdin=None) -> str:
        r"""Run a command, capturing STDOUT and checking return code

        :Call:
            >>> stdout = repo.check_o(cmd, codes=None, stdin=None)
        :Inputs:
            *repo*: :class:`GitRepo`
                Interface to git repository
            *cmd*: :class:`list`\ [:class:`str`]
                Command to run in list form
            *codes*: {``None``} | :class:`list`\ [:class:`int`]
                Collection of allowed return codes (default only ``0``)
            *stdin*: {``None``} | :class:`bytes`
                Input to send to command
        :Outputs:
            *stdout*: :class:`str`
                Captured STDOUT from command, if any
        """
        return self._check_b(cmd, codes, stdin).decode("utf-8", "replace")

    def check_call(self, cmd, codes=None) -> int:
        r"""Run a command and check return code

        :Call:
            >>> ierr = repo.check_call(cmd, codes=None)
        :Inputs:
            *repo*: :class:`GitRepo`
                Interface to git repository
            *cmd*: :class:`list`\ [:class:`str`]
                Command to run in list form
            *codes*: {``None``} | :class:`list`\ [:class:`int`]
                Collection of allowed return codes (default only ``0``)
        :Outputs:
            *ierr*: :class:`int`
                Return code from subprocess
        """
        # Run the command
        _, stderr, ierr = call_oe(cmd, cwd=self.gitdir)
        # Check for errors
        _check_status(cmd, ierr, stderr, codes)
        # Output
        return ierr

    def _check_b(self, cmd, codes=None, stdin=None) -> bytes:
        # Run the command as requested, capturing STDOUT and STDERR
        stdout, stderr, ierr = call_oe(cmd, cwd=self.gitdir, stdin=stdin)
        # Check for errors
        _check_status(cmd, ierr, stderr, codes)
        # Allowed nonzero codes give empty output
        if ierr:
            return b""
        # Output
        return stdout


def call_oe(cmd, cwd=None, stdin=None):
    r"""Run a command, capturing STDOUT and STDERR as bytes

    :Call:
        >>> stdout, stderr, ierr = call_oe(cmd, cwd=None, stdin=None)
    """
    # Run command using subprocess
    proc = Popen(
        cmd, stdin=None if stdin is None else PIPE,
        stdout=PIPE, stderr=PIPE, cwd=cwd)
    # Wait for command
    stdout, stderr = proc.communicate(stdin)
    # Output
    return stdout, stderr, proc.returncode


def get_gitdir(where=None, bare=None):
    r"""Get absolute path to git repo root, even on bare repos

    :Call:
        >>> gitdir = get_gitdir(where=None, bare=None)
    :Inputs:
        *where*: {``None``} | :class:`str`
            Working directory
        *bare*: {``None``} | ``True`` | ``False``
            Whether repo is bare (can be detected automatically)
    :Outputs:
        *gitdir*: :class:`str`
            Full path to top-level of working repo or git-dir of bare
    """
    # Default location
    cwd = os.getcwd() if where is None else where
    # Check if bare if needed
    if bare is None:
        bare = is_bare(where)
    # Get the "git-dir" for bare repos and "toplevel" for working repos
    if bare:
        cmd = ["git", "rev-parse", "--git-dir"]
    else:
        cmd = ["git", "rev-parse", "--show-toplevel"]
    # Run it
    stdout, stderr, ierr = call_oe(cmd, cwd=cwd)
    _check_status(cmd, ierr, stderr)
    # Absolute path
    return os.path.realpath(os.path.join(cwd, stdout.decode().strip()))


def is_bare(where=None):
    r"""Check if a location is in a bare git repo

    :Call:
        >>> q = is_bare(where=None)
    :Inputs:
        *where*: {``None``} | :class:`str`
            Location to check
    :Outputs:
        *q*: ``True`` | ``False``
            Whether or not *where* is in a bare git repo
    """
    # Ask git
    stdout, _, ierr = call_oe(
        ["git", "rev-parse", "--is-bare-repository"], cwd=where)
    # Check for issues
    if ierr:
        path = os.getcwd() if where is None else where
        raise LFSSystemError("Path is not a git repo: %s" % path)
    # Otherwise output
    return stdout.decode().strip() == "true"


def _check_status(cmd, ierr: int, stderr: bytes, codes=None):
    # Check for allowed exit codes
    if codes and ierr in codes:
        return
    # Check for errors, perhaps mal-formed command
    if ierr:
        raise LFSSystemError(
            ("Unexpected exit code %i from command\n" % ierr) +
            ("> %s\n\n" % " ".join(cmd)) +
            ("Original error message:\n%s" %
             stderr.decode("utf-8", "replace").strip()))


def _to_ini(val) -> str:
    # Check for special cases
    if val is True:
        return "true"
    elif val is False:
        return "false"
    else:
        return str(val)


def _safe_ref(ref=None):
    # Default ref
    if ref is None:
        ref = "HEAD"
    # Output
    return ref
