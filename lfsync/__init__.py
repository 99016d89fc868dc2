r"""
Large file sync (``lfsync``) is a Python package to keep large files out
of git history. It provides both an API (see :class:`LFSRepo`) and a
command-line interface (see :mod:`lfsync.cli`).

Each large file is replaced in git by a small *pointer* record holding
the SHA-256 hash and size of its contents. The contents themselves are
kept in ``.git/lfs/objects`` and shared with a remote server using the
LFS HTTP API.

"""

# Local imports
from .lfsrepo import LFSRepo
from .version import __version__
