r"""
``lfsconfig``: Settings for large-file commands
================================================

This module provides the :class:`Configuration` class, which collects in
one object every setting that large-file commands use:

    * the output of ``git config --list`` for the repository,
    * the committed ``.lfsconfig`` file at the top of the working tree
      (lower priority than git config), and
    * environment variables.

A :class:`Configuration` is built once per process, usually with
:meth:`Configuration.from_repo`, and passed to every component that needs
it. The only values that change after construction are the per-endpoint
access modes (see :meth:`Configuration.set_endpoint_access`) and the
cache of resolved endpoints, both of which are guarded by a lock.
"""

# Standard library
import os
import re
import threading
from collections import namedtuple
from configparser import ConfigParser
from urllib.parse import urlsplit

# Local imports
from .lfserror import LFSValueError
from .lfspointer import ContentExtension


# Default name of remote
DEFAULT_REMOTE = "origin"
# Default number of parallel transfers
DEFAULT_CONCURRENT_TRANSFERS = 3

# Access modes
ACCESS_NONE = "none"
ACCESS_BASIC = "basic"
ACCESS_NTLM = "ntlm"
ACCESS_MODES = (ACCESS_NONE, ACCESS_BASIC, ACCESS_NTLM)

# Name of committed config file
LFSCONFIG_FILE = ".lfsconfig"

# Boolean strings
TRUE_STRINGS = ("true", "yes", "on", "1")
FALSE_STRINGS = ("false", "no", "off", "0", "")

# ConfigParser section names like ``remote "origin"``
REGEX_SECTION = re.compile(r'(?P<section>[\w.-]+)(\s+"(?P<sub>[^"]*)")?')
# SCP-like SSH URL, ``git@github.com:org/repo.git``
REGEX_SCP_URL = re.compile(r"(?P<userhost>[^/:]+):(?P<path>(?!//).*)")
# Extension settings, ``lfs.extension.<name>.<opt>``
REGEX_EXTENSION_KEY = re.compile(
    r"lfs\.extension\.(?P<name>[^.]+)\.(?P<opt>clean|smudge|priority)")


# Endpoint to an LFS server
class Endpoint(namedtuple(
        "_Endpoint", ["url", "ssh_user_and_host", "ssh_path", "ssh_port"])):
    r"""LFS API location, with SSH info if the remote uses SSH

    :Call:
        >>> ep = Endpoint(url, ssh_user_and_host="", ssh_path="", **kw)
    """
    __slots__ = ()

    def __new__(cls, url="", ssh_user_and_host="", ssh_path="", ssh_port=""):
        return super().__new__(cls, url, ssh_user_and_host, ssh_path, ssh_port)


# Retention settings
FetchPruneConfig = namedtuple("FetchPruneConfig", [
    "recent_refs_days",
    "recent_refs_include_remotes",
    "recent_commits_days",
    "recent_always",
    "prune_offset_days",
    "prune_verify_remote_always",
    "prune_remote_name",
])


# Configuration class
class Configuration(object):
    r"""Settings for one repository and process

    :Call:
        >>> config = Configuration(gitconfig=None, environ=None, **kw)
    :Inputs:
        *gitconfig*: {``None``} | :class:`dict`\ [:class:`str`]
            Git config settings, e.g. ``{"lfs.url": "https://..."}``
        *environ*: {``None``} | :class:`dict`\ [:class:`str`]
            Environment variables (default: empty)
        *remote*: {``"origin"``} | :class:`str`
            Name of current remote
        *persist*: {``None``} | :class:`callable`
            Function ``persist(key, val)`` to save a setting to the
            repo's local git config; ``val=None`` removes it
    """
   # --- Class attributes ---
    __slots__ = (
        "current_remote",
        "_environ",
        "_endpoints",
        "_git",
        "_lock",
        "_persist")

   # --- __dunder__ ---
    def __init__(self, gitconfig=None, environ=None, remote=None,
                 persist=None):
        # Save settings with normalized keys
        self._git = {}
        for key, val in (gitconfig or {}).items():
            self._git[key.lower()] = val
        # Save environment as a copy
        self._environ = dict(environ or {})
        # Remote name
        self.current_remote = remote or DEFAULT_REMOTE
        # Save function to write config
        self._persist = persist
        # Endpoint cache and lock for mutable parts
        self._endpoints = {}
        self._lock = threading.Lock()

    @classmethod
    def from_repo(cls, repo, environ=None, remote=None):
        r"""Read all settings for a repository

        :Call:
            >>> config = Configuration.from_repo(repo, environ=None)
        :Inputs:
            *repo*: :class:`lfsync.gitrepo.GitRepo`
                Interface to git repository
            *environ*: {``None``} | :class:`dict`
                Environment variables (default: ``os.environ``)
        :Outputs:
            *config*: :class:`Configuration`
                Settings from ``.lfsconfig``, git config, and environment
        """
        # Default environment
        if environ is None:
            environ = os.environ
        # Start with the committed file
        opts = {}
        if not repo.bare:
            fcfg = os.path.join(repo.gitdir, LFSCONFIG_FILE)
            opts.update(read_lfsconfig(fcfg))
        # Git config takes priority
        for key, val in repo.config_list().items():
            opts[key.lower()] = val

        # Function to save access modes
        def _persist(key, val):
            if val is None:
                repo.config_unset_local(key)
            else:
                repo.config_set_local(key, val)

        # Create instance
        return cls(opts, environ, remote, _persist)

   # --- Raw values ---
    def get(self, key: str, vdef=None):
        r"""Get a git config setting

        :Call:
            >>> val = config.get(key, vdef=None)
        :Inputs:
            *config*: :class:`Configuration`
                Settings
            *key*: :class:`str`
                Full name of setting, case-insensitive, e.g. ``"lfs.url"``
            *vdef*: {``None``} | :class:`object`
                Default value
        :Outputs:
            *val*: :class:`str` | :class:`object`
                Value of setting or *vdef*
        """
        return self._git.get(key.lower(), vdef)

    def get_bool(self, key: str, vdef=False) -> bool:
        return _from_ini_bool(self.get(key), vdef)

    def get_int(self, key: str, vdef=0) -> int:
        # Get raw value
        val = self.get(key)
        # Convert
        try:
            return int(val)
        except (TypeError, ValueError):
            return vdef

    def getenv(self, name: str, vdef=None):
        return self._environ.get(name, vdef)

    def getenv_bool(self, name: str, vdef=False) -> bool:
        return _from_ini_bool(self.getenv(name), vdef)

    def keys(self) -> list:
        return list(self._git)

   # --- Remotes ---
    def remotes(self) -> list:
        r"""List names of all configured git remotes

        :Call:
            >>> remotes = config.remotes()
        """
        # Initialize
        names = []
        # Loop through keys like remote.<name>.url
        for key in self._git:
            # Check pattern
            if not key.startswith("remote."):
                continue
            name, _, opt = key[7:].rpartition(".")
            # Save new names
            if opt in ("url", "lfsurl") and name and name not in names:
                names.append(name)
        # Output
        return names

    def endpoint(self, remote=None) -> Endpoint:
        r"""Get the LFS API endpoint for a remote

        Precedence: ``lfs.url``, then ``remote.<remote>.lfsurl``, then a
        URL derived from ``remote.<remote>.url``.

        :Call:
            >>> ep = config.endpoint(remote=None)
        :Inputs:
            *config*: :class:`Configuration`
                Settings
            *remote*: {``None``} | :class:`str`
                Name of remote (default: *config.current_remote*)
        :Outputs:
            *ep*: :class:`Endpoint`
                Endpoint, cached for life of *config*
        """
        # Default remote
        if remote is None:
            remote = self.current_remote
        # Check cache under lock
        with self._lock:
            ep = self._endpoints.get(remote)
            if ep is None:
                ep = self._resolve_endpoint(remote)
                self._endpoints[remote] = ep
        # Output
        return ep

    def _resolve_endpoint(self, remote: str) -> Endpoint:
        # Explicit global setting
        url = self.get("lfs.url")
        if url:
            return endpoint_from_url(url)
        # Explicit setting for this remote
        url = self.get(f"remote.{remote}.lfsurl")
        if url:
            return endpoint_from_url(url)
        # Derive from git remote URL
        url = self.get(f"remote.{remote}.url")
        if url:
            return endpoint_from_remote_url(url)
        # No endpoint
        return Endpoint()

   # --- Access ---
    def endpoint_access(self, ep: Endpoint) -> str:
        r"""Get authentication mode for an endpoint

        :Call:
            >>> mode = config.endpoint_access(ep)
        :Outputs:
            *mode*: ``"none"`` | ``"basic"`` | ``"ntlm"``
                Value of ``lfs.<url>.access``
        """
        # Read under lock
        with self._lock:
            mode = self.get(_access_key(ep), ACCESS_NONE)
        # Normalize
        mode = mode.strip().lower()
        return mode if mode in ACCESS_MODES else ACCESS_NONE

    def set_endpoint_access(self, ep: Endpoint, mode: str):
        r"""Set (and save) authentication mode for an endpoint

        :Call:
            >>> config.set_endpoint_access(ep, mode)
        :Inputs:
            *config*: :class:`Configuration`
                Settings
            *ep*: :class:`Endpoint`
                LFS API endpoint
            *mode*: ``"none"`` | ``"basic"`` | ``"ntlm"``
                New authentication mode
        """
        # Check value
        mode = mode.lower()
        if mode not in ACCESS_MODES:
            raise LFSValueError(
                f"Unknown access mode '{mode}'; expected one of: " +
                " | ".join(ACCESS_MODES))
        # Config key
        key = _access_key(ep)
        # Update under lock
        with self._lock:
            if mode == ACCESS_NONE:
                self._git.pop(key, None)
            else:
                self._git[key] = mode
            # Save to local git config
            if self._persist is not None:
                self._persist(key, None if mode == ACCESS_NONE else mode)

    def private_access(self, ep: Endpoint) -> bool:
        return self.endpoint_access(ep) != ACCESS_NONE

   # --- Transfers ---
    @property
    def concurrent_transfers(self) -> int:
        r"""Number of parallel transfers, ``lfs.concurrenttransfers``"""
        # Get value
        n = self.get_int(
            "lfs.concurrenttransfers", DEFAULT_CONCURRENT_TRANSFERS)
        # Must be positive
        return n if n > 0 else DEFAULT_CONCURRENT_TRANSFERS

    @property
    def batch_transfer(self) -> bool:
        r"""Whether to use the batch API, ``lfs.batch``"""
        return self.get_bool("lfs.batch", True)

    @property
    def ssl_verify(self) -> bool:
        # Environment override
        if self.getenv_bool("GIT_SSL_NO_VERIFY"):
            return False
        return self.get_bool("http.sslverify", True)

    @property
    def tracing(self) -> bool:
        return (
            self.getenv_bool("GIT_TRACE") or
            self.getenv_bool("GIT_CURL_VERBOSE"))

   # --- Fetch and prune ---
    def fetch_prune_config(self) -> FetchPruneConfig:
        r"""Get settings for which objects to keep

        :Call:
            >>> opts = config.fetch_prune_config()
        :Outputs:
            *opts*: :class:`FetchPruneConfig`
                Retention day windows and remote-verification settings
        """
        return FetchPruneConfig(
            recent_refs_days=self.get_int("lfs.fetchrecentrefsdays", 7),
            recent_refs_include_remotes=self.get_bool(
                "lfs.fetchrecentremoterefs", True),
            recent_commits_days=self.get_int("lfs.fetchrecentcommitsdays", 0),
            recent_always=self.get_bool("lfs.fetchrecentalways", False),
            prune_offset_days=self.get_int("lfs.pruneoffsetdays", 3),
            prune_verify_remote_always=self.get_bool(
                "lfs.pruneverifyremotealways", False),
            prune_remote_name=self.get(
                "lfs.pruneremotetocheck", DEFAULT_REMOTE))

    def fetch_include(self) -> list:
        return _split_list(self.get("lfs.fetchinclude", ""))

    def fetch_exclude(self) -> list:
        return _split_list(self.get("lfs.fetchexclude", ""))

   # --- Extensions ---
    def extensions(self) -> dict:
        r"""Get configured content extensions

        :Call:
            >>> exts = config.extensions()
        :Outputs:
            *exts*: :class:`dict`\ [:class:`ContentExtension`]
                Extension for each name in ``lfs.extension.<name>.*``
        """
        # Collect options for each extension
        opts = {}
        for key, val in self._git.items():
            # Check pattern
            match = REGEX_EXTENSION_KEY.fullmatch(key)
            if match is None:
                continue
            opts.setdefault(match.group("name"), {})[match.group("opt")] = val
        # Create extensions
        exts = {}
        for name, o in opts.items():
            # Parse priority
            try:
                priority = int(o.get("priority", "0"))
            except ValueError:
                raise LFSValueError(
                    f"Invalid priority for extension '{name}': " +
                    o["priority"]) from None
            exts[name] = ContentExtension(
                name, priority, o.get("clean", ""), o.get("smudge", ""))
        # Output
        return exts


def endpoint_from_url(url: str) -> Endpoint:
    r"""Create an endpoint from an explicit LFS URL

    SSH URLs are converted to ``https://`` with the SSH info saved.

    :Call:
        >>> ep = endpoint_from_url(url)
    """
    # Check for ssh://[user@]host[:port]/path
    if url.startswith("ssh://"):
        # Parse
        parts = urlsplit(url)
        host = parts.hostname or ""
        userhost = host if not parts.username else f"{parts.username}@{host}"
        port = str(parts.port) if parts.port else ""
        return Endpoint(
            f"https://{host}{parts.path}", userhost, parts.path, port)
    # Check for SCP-like user@host:path
    if "://" not in url:
        match = REGEX_SCP_URL.fullmatch(url)
        if match:
            # Unpack
            userhost = match.group("userhost")
            path = match.group("path")
            host = userhost.rpartition("@")[2]
            return Endpoint(
                f"https://{host}/{path.lstrip('/')}", userhost, path)
    # HTTP(S) URL as-is
    return Endpoint(url.rstrip("/"))


def endpoint_from_remote_url(url: str) -> Endpoint:
    r"""Derive an LFS endpoint from a git remote URL

    :Call:
        >>> ep = endpoint_from_remote_url(url)
    :Examples:
        ``https://host/repo`` -> ``https://host/repo.git/info/lfs``
    """
    # Parse URL
    ep = endpoint_from_url(url)
    # Add suffix
    base = ep.url.rstrip("/")
    if base.endswith(".git"):
        href = base + "/info/lfs"
    else:
        href = base + ".git/info/lfs"
    # Output
    return ep._replace(url=href)


def read_lfsconfig(fname: str) -> dict:
    r"""Read a git-config-format file using :class:`ConfigParser`

    :Call:
        >>> opts = read_lfsconfig(fname)
    :Outputs:
        *opts*: :class:`dict`\ [:class:`str`]
            Flat settings like ``{"remote.origin.lfsurl": ...}``
    """
    # Check for file
    if not os.path.isfile(fname):
        return {}
    # Read it
    config = ConfigParser(interpolation=None, strict=False)
    config.read(fname)
    # Flatten
    opts = {}
    for section in config.sections():
        # Split into section and subsection
        match = REGEX_SECTION.fullmatch(section.strip())
        if match is None:
            continue
        prefix = match.group("section")
        if match.group("sub") is not None:
            prefix += "." + match.group("sub")
        # Save options
        for opt, val in config.items(section):
            opts[f"{prefix}.{opt}".lower()] = _from_ini(val)
    # Output
    return opts


def _access_key(ep: Endpoint) -> str:
    return f"lfs.{ep.url}.access".lower()


def _from_ini(val: str) -> str:
    # Remove quotes
    val = val.strip()
    if len(val) >= 2 and val[0] == val[-1] == '"':
        return val[1:-1]
    return val


def _from_ini_bool(val, vdef=False) -> bool:
    # Missing
    if val is None:
        return vdef
    # Normalize
    txt = str(val).strip().lower()
    if txt in TRUE_STRINGS:
        return True
    elif txt in FALSE_STRINGS:
        return False
    # Other nonempty values (e.g. GIT_TRACE=/tmp/trace) count as set
    return True


def _split_list(val: str) -> list:
    return [part.strip() for part in val.split(",") if part.strip()]
