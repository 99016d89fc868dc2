r"""
``cli``: Command-line interface to ``lfsync``
==============================================

This module provides several functions that are the main user interface
to :mod:`lfsync`. There is a function :func:`main` that reads
``sys.argv`` (the command-line strings of the current command). Then
:func:`main` dispatches one of several other functions, for example

    * :func:`lfsync_clean`
    * :func:`lfsync_smudge`
    * :func:`lfsync_checkout`
    * :func:`lfsync_push`
    * :func:`lfsync_prune`

These secondary commands read Python arguments and keyword arguments
rather than parsing ``sys.argv``, so they are usable to Python API
programmers as well.

:func:`main` is the only place where errors are turned into return codes.
"""

# Standard library
import os
import re
import sys

# Local imports
from .lfsconfig import Configuration
from .lfserror import (
    LFSArgumentError,
    LFSError,
    LFSFileNotFoundError)
from .lfslog import setup_tracing
from .lfsrepo import LFSRepo


# Help message
HELP_LFSYNC = r"""Large file sync (lfsync)

Keep large files out of git history and sync them with an LFS server.

:Usage:
    .. code-block:: console

        $ lfsync CMD [OPTIONS]

:Inputs:
    * *CMD*: name of command to run

    Available commands are:

    ==================  ===========================================
    Command             Description
    ==================  ===========================================
    ``checkout``        Write large file contents to working tree
    ``clean``           Git clean filter: store file, write pointer
    ``env``             Show settings in use
    ``prune``           Delete old objects from local store
    ``push``            Upload large files to remote
    ``smudge``          Git smudge filter: read pointer, write file
    ==================  ===========================================
"""

HELP_CHECKOUT = r"""
``lfsync-checkout``: Write large file contents to working tree
===============================================================

Each large file in the current commit whose working file is missing or
still a pointer is replaced by its contents, downloading objects not in
the local store. Other working files are left alone.

:Usage:
    .. code-block:: console

        $ lfsync checkout [PAT1 PAT2 ...] [OPTIONS]

:Inputs:
    * *PAT1*: Only check out files matching this pattern

:Options:
    -h, --help
        Display this help message and exit

    -X, --exclude PATS
        Comma-separated patterns of files to skip
"""

HELP_CLEAN = r"""
``lfsync-clean``: Store large file and write pointer
=====================================================

Read file contents from STDIN, save them in ``.git/lfs/objects``, and
write the pointer to STDOUT. Used by git as ``filter.lfs.clean``.

:Usage:
    .. code-block:: console

        $ lfsync clean [FILE]
"""

HELP_ENV = r"""
``lfsync-env``: Show settings in use
=====================================

:Usage:
    .. code-block:: console

        $ lfsync env
"""

HELP_PRUNE = r"""
``lfsync-prune``: Delete old objects from local store
======================================================

Delete objects in ``.git/lfs/objects`` that are not used by the current
checkout, recent refs, unpushed commits, or the working tree.

:Usage:
    .. code-block:: console

        $ lfsync prune [OPTIONS]

:Options:
    -h, --help
        Display this help message and exit

    -d, --dry-run
        Don't delete anything, just report

    -v, --verbose
        List each object that would be deleted

    -c, --verify-remote
        Check that each object is on the remote before deleting; the
        default is ``lfs.pruneverifyremotealways``

    --no-verify-remote
        Don't check objects on remote even if configured
"""

HELP_PUSH = r"""
``lfsync-push``: Upload large files to remote
==============================================

:Usage:
    .. code-block:: console

        $ lfsync push [REMOTE [REF1 REF2 ...]] [OPTIONS]

:Inputs:
    * *REMOTE*: Name of git remote (default: ``origin``)
    * *REF1*: Branch, tag, or commit to push (default: ``HEAD``)

:Options:
    -h, --help
        Display this help message and exit

    -d, --dry-run
        List objects that would be pushed
"""

HELP_SMUDGE = r"""
``lfsync-smudge``: Read pointer and write large file
=====================================================

Read a pointer from STDIN and write the file contents to STDOUT,
downloading the object if needed. Used by git as
``filter.lfs.smudge``.

:Usage:
    .. code-block:: console

        $ lfsync smudge [FILE]
"""


# Dictionary of help commands
HELP_DICT = {
    "checkout": HELP_CHECKOUT,
    "clean": HELP_CLEAN,
    "env": HELP_ENV,
    "prune": HELP_PRUNE,
    "push": HELP_PUSH,
    "smudge": HELP_SMUDGE,
}

# Aliases
OPT_ALIASES = {
    "c": "verify_remote",
    "d": "dry_run",
    "h": "help",
    "v": "verbose",
    "X": "exclude",
}

# Options that never take a value
OPT_NOVAL = (
    "dry_run",
    "help",
    "verbose",
    "verify_remote",
)

# Regular expression for options like "remote=origin"
REGEX_EQUALKEY = re.compile(r"(\w+)=([^=].*)")

# Commands whose STDOUT is file contents
FILTER_CMDS = ("clean", "smudge")

# Return codes
IERR_OK = 0
IERR_LFS = 1
IERR_PRUNE = 2
IERR_ARGS = 3
IERR_FILE_NOT_FOUND = 128


def readkeys(argv=None):
    r"""Parse args where ``-dv`` becomes ``dv=True``

    Short options are expanded using :data:`OPT_ALIASES`, hyphens in
    option names become underscores, and ``--no-key`` sets ``key=False``.
    Options given more than once are listed in ``kw["__replaced__"]``.

    :Call:
        >>> a, kw = readkeys(argv=None)
    :Inputs:
        *argv*: {``None``} | :class:`list`\ [:class:`str`]
            List of args other than ``sys.argv``; first is program name
    :Outputs:
        *a*: :class:`list`\ [:class:`str`]
            List of positional args
        *kw*: :class:`dict`\ [:class:`str` | :class:`bool`]
            Keyword arguments
    """
    # Copy args
    argv = list(sys.argv if argv is None else argv)
    # Discard program name
    if argv:
        argv.pop(0)
    # Initialize
    a = []
    kw = {}
    replaced = []

    # Save function
    def save(key, val):
        # Normalize
        key = OPT_ALIASES.get(key, key).replace("-", "_")
        # Track repeats
        if key in kw:
            replaced.append((key, kw[key]))
        kw[key] = val

    # Loop until args are gone
    while argv:
        # Extract first argument
        arg = argv.pop(0)
        # Check for options like "remote=origin"
        match = REGEX_EQUALKEY.fullmatch(arg)
        if match:
            save(*match.groups())
            continue
        # Positional parameter
        if not arg.startswith("-") or arg == "-":
            a.append(arg)
            continue
        # Everything after "--" is positional
        if arg == "--":
            a.extend(argv)
            break
        # Option name
        key = arg.lstrip("-")
        # Check for "--key=val"
        key, sep, val = key.partition("=")
        if sep:
            save(key, val)
            continue
        # Check for "--no-mykey"
        if key.startswith("no-"):
            save(key[3:], False)
            continue
        # Check for "noval" options, or if next arg is available
        name = OPT_ALIASES.get(key, key).replace("-", "_")
        if name in OPT_NOVAL or len(argv) == 0 or argv[0].startswith("-"):
            save(key, True)
            continue
        # Save value like ``--exclude docs``
        save(key, argv.pop(0))
    # Save repeated options
    kw["__replaced__"] = replaced
    # Output
    return a, kw


def lfsync_checkout(*a, **kw):
    r"""Write contents of large files in current commit to working tree

    :Call:
        >>> lfsync_checkout(pat1, pat2, ..., exclude=None)
    :Inputs:
        *pat1*: :class:`str`
            Name of large file or file name pattern
        *exclude*: {``None``} | :class:`str`
            Comma-separated patterns of files to skip
    """
    # Read the repo
    with LFSRepo() as repo:
        # Parse filters
        exclude = _split_patterns(kw.get("exclude"))
        # Checkout
        fnames = repo.checkout(list(a), exclude)
    # Status update
    print(f"Checked out {len(fnames)} files")


def lfsync_clean(*a, **kw):
    r"""Store contents from STDIN and write pointer to STDOUT

    :Call:
        >>> lfsync_clean(fname=None)
    """
    # Name of file, if given
    fname = a[0] if a else ""
    # Read the repo
    with LFSRepo() as repo:
        repo.clean(sys.stdin.buffer, sys.stdout.buffer, fname)
    sys.stdout.flush()


def lfsync_env(*a, **kw):
    r"""Print settings in use

    :Call:
        >>> lfsync_env()
    """
    # Read the repo
    with LFSRepo() as repo:
        for line in repo.env():
            print(line)


def lfsync_prune(*a, **kw):
    r"""Delete local objects that are no longer needed

    :Call:
        >>> ierr = lfsync_prune(dry_run=False, verbose=False, **kw)
    :Inputs:
        *dry_run*: ``True`` | {``False``}
            Don't delete anything, just report
        *verbose*: ``True`` | {``False``}
            List each object that would be deleted
        *verify_remote*: {``None``} | ``True`` | ``False``
            Check objects on remote before deleting; default from
            ``lfs.pruneverifyremotealways``
    :Outputs:
        *ierr*: :class:`int`
            ``2`` if some objects could not be deleted, else ``0``
    """
    # Check for both flags
    replaced = dict(kw.get("__replaced__", []))
    if "verify_remote" in replaced:
        raise LFSArgumentError(
            "Cannot specify both --verify-remote and --no-verify-remote")
    # Options
    dry_run = kw.get("dry_run", False)
    verbose = kw.get("verbose", False)
    verify = kw.get("verify_remote")
    # Read the repo
    with LFSRepo() as repo:
        # Default from config
        if verify is None:
            opts = repo.config.fetch_prune_config()
            verify = opts.prune_verify_remote_always
        # Prune
        summary = repo.prune(verify, dry_run, verbose)
    # Check for failed deletions
    if summary.failed:
        print("Prune failed, see errors above")
        return IERR_PRUNE
    return IERR_OK


def lfsync_push(*a, **kw):
    r"""Upload large files that a remote doesn't have

    :Call:
        >>> ierr = lfsync_push(remote=None, *refs, dry_run=False)
    :Inputs:
        *remote*: {``None``} | :class:`str`
            Name of git remote
        *refs*: :class:`tuple`\ [:class:`str`]
            Refs to push
        *dry_run*: ``True`` | {``False``}
            List objects that would be pushed
    """
    # Split remote and refs
    remote = a[0] if a else None
    refs = a[1:]
    # Read the repo
    with LFSRepo() as repo:
        _, errors = repo.push(remote, refs, kw.get("dry_run", False))
    # Check for failures
    if errors:
        raise LFSError(f"Failed to push {len(errors)} files")


def lfsync_smudge(*a, **kw):
    r"""Read pointer from STDIN and write contents to STDOUT

    :Call:
        >>> lfsync_smudge(fname=None)
    """
    # Name of file, if given
    fname = a[0] if a else ""
    # Read the repo
    with LFSRepo() as repo:
        repo.smudge(sys.stdin.buffer, sys.stdout.buffer, fname)
    sys.stdout.flush()


def _split_patterns(val) -> list:
    # Check for missing or flag-only value
    if not isinstance(val, str):
        return []
    return [pat.strip() for pat in val.split(",") if pat.strip()]


def _print_error(err: LFSError, fp):
    print(f"{err.__class__.__name__}:", file=fp)
    print(f"  {err}", file=fp)


def _log_fatal(err: LFSError):
    # Find repo for log folder
    try:
        repo = LFSRepo()
    except LFSError:
        # Not in a repo; nowhere to log
        return None
    return repo.log_error(err)


# Command dictionary
CMD_DICT = {
    "checkout": lfsync_checkout,
    "clean": lfsync_clean,
    "env": lfsync_env,
    "prune": lfsync_prune,
    "push": lfsync_push,
    "smudge": lfsync_smudge,
}


# Main function
def main(argv=None) -> int:
    r"""Main command-line interface to ``lfsync``

    The function works by reading the second word of ``sys.argv`` and
    dispatching a dedicated function for that purpose.

    :Call:
        >>> ierr = main(argv=None)
    :Inputs:
        *argv*: {``None``} | :class:`list`\ [:class:`str`]
            Args to use instead of ``sys.argv``
    :Outputs:
        *ierr*: :class:`int`
            Return code
    """
    # Tracing
    setup_tracing(Configuration(environ=os.environ).tracing)
    # Parse args
    a, kw = readkeys(argv)
    # Check for no commands
    if len(a) == 0:
        print(HELP_LFSYNC)
        return IERR_OK
    # Get command name
    cmdname = a[0]
    # Check for "lfsync help CMD"
    if cmdname == "help":
        print(HELP_DICT.get(a[1] if len(a) > 1 else "", HELP_LFSYNC))
        return IERR_OK
    # Get function
    func = CMD_DICT.get(cmdname)
    # Check it
    if func is None:
        # Unrecognized function
        print("Unexpected command '%s'" % cmdname)
        print("Options are: " + " | ".join(list(CMD_DICT.keys())))
        return IERR_ARGS
    # Check for "help" option
    if kw.get("help", False):
        # Get help message for this command; default to main help
        print(HELP_DICT.get(cmdname, HELP_LFSYNC))
        return IERR_OK
    # Filters must keep errors out of STDOUT
    fp = sys.stderr if cmdname in FILTER_CMDS else sys.stdout
    # Run function
    try:
        ierr = func(*a[1:], **kw)
    except LFSArgumentError as err:
        _print_error(err, fp)
        return IERR_ARGS
    except LFSFileNotFoundError as err:
        _print_error(err, fp)
        return IERR_FILE_NOT_FOUND
    except LFSError as err:
        _print_error(err, fp)
        # Save details of fatal errors
        if err.fatal:
            fname = _log_fatal(err)
            if fname:
                print(f"Errors logged to {fname}", file=fp)
        return IERR_LFS
    # Convert None -> 0
    ierr = IERR_OK if ierr is None else ierr
    # Normal exit
    return ierr
