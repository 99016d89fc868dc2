
# Third-party
import pytest

# Local imports
from lfsync.lfsconfig import (
    ACCESS_BASIC,
    ACCESS_NONE,
    Configuration,
    Endpoint,
    endpoint_from_remote_url,
    endpoint_from_url,
    read_lfsconfig)
from lfsync.lfserror import LFSValueError


# Endpoint precedence
def test_endpoint01():
    # Derived from remote URL
    config = Configuration({"remote.origin.url": "https://example.com/repo"})
    assert config.endpoint().url == "https://example.com/repo.git/info/lfs"
    # Remote-specific setting wins
    config = Configuration({
        "remote.origin.url": "https://example.com/repo",
        "remote.origin.lfsurl": "https://lfs.example.com/repo",
    })
    assert config.endpoint().url == "https://lfs.example.com/repo"
    # Global setting wins over all
    config = Configuration({
        "remote.origin.lfsurl": "https://lfs.example.com/repo",
        "lfs.url": "https://global.example.com/lfs",
    })
    assert config.endpoint("origin").url == "https://global.example.com/lfs"
    # Nothing configured
    assert Configuration().endpoint() == Endpoint()


# SSH and other URL forms
def test_endpoint02():
    # Already ends in .git
    ep = endpoint_from_remote_url("https://example.com/repo.git")
    assert ep.url == "https://example.com/repo.git/info/lfs"
    # SCP-like
    ep = endpoint_from_remote_url("git@example.com:org/repo.git")
    assert ep.url == "https://example.com/org/repo.git/info/lfs"
    assert ep.ssh_user_and_host == "git@example.com"
    assert ep.ssh_path == "org/repo.git"
    # ssh:// with port
    ep = endpoint_from_url("ssh://git@example.com:2222/org/repo")
    assert ep.url == "https://example.com/org/repo"
    assert ep.ssh_port == "2222"


# Access modes
def test_access01():
    # Record saved settings
    saved = []
    config = Configuration(
        {"lfs.url": "https://example.com/lfs"},
        persist=lambda key, val: saved.append((key, val)))
    ep = config.endpoint()
    # Default
    assert config.endpoint_access(ep) == ACCESS_NONE
    assert not config.private_access(ep)
    # Upgrade
    config.set_endpoint_access(ep, ACCESS_BASIC)
    assert config.endpoint_access(ep) == ACCESS_BASIC
    assert config.private_access(ep)
    assert saved == [("lfs.https://example.com/lfs.access", "basic")]
    # Reset
    config.set_endpoint_access(ep, ACCESS_NONE)
    assert saved[-1] == ("lfs.https://example.com/lfs.access", None)
    # Invalid
    with pytest.raises(LFSValueError):
        config.set_endpoint_access(ep, "kerberos")


# Typed settings
def test_settings01():
    # Defaults
    config = Configuration()
    assert config.concurrent_transfers == 3
    assert config.batch_transfer
    assert config.ssl_verify
    assert not config.tracing
    # Custom values, keys in any case
    config = Configuration(
        {
            "lfs.ConcurrentTransfers": "8",
            "lfs.batch": "false",
            "http.sslVerify": "no",
        },
        environ={"GIT_TRACE": "1"})
    assert config.concurrent_transfers == 8
    assert not config.batch_transfer
    assert not config.ssl_verify
    assert config.tracing
    # Bad number falls back to default
    config = Configuration({"lfs.concurrenttransfers": "many"})
    assert config.concurrent_transfers == 3


# Retention settings
def test_fetch_prune01():
    # Defaults
    opts = Configuration().fetch_prune_config()
    assert opts.recent_refs_days == 7
    assert opts.recent_commits_days == 0
    assert opts.prune_offset_days == 3
    assert not opts.prune_verify_remote_always
    assert opts.prune_remote_name == "origin"
    # Custom values
    opts = Configuration({
        "lfs.fetchrecentrefsdays": "2",
        "lfs.pruneoffsetdays": "1",
        "lfs.pruneverifyremotealways": "true",
        "lfs.pruneremotetocheck": "upstream",
    }).fetch_prune_config()
    assert opts.recent_refs_days == 2
    assert opts.prune_offset_days == 1
    assert opts.prune_verify_remote_always
    assert opts.prune_remote_name == "upstream"


# Content extensions
def test_extensions01():
    # Two extensions
    config = Configuration({
        "lfs.extension.foo.clean": "foo-clean %f",
        "lfs.extension.foo.smudge": "foo-smudge %f",
        "lfs.extension.foo.priority": "1",
        "lfs.extension.bar.clean": "bar-clean",
    })
    exts = config.extensions()
    assert sorted(exts) == ["bar", "foo"]
    assert exts["foo"].priority == 1
    assert exts["foo"].smudge == "foo-smudge %f"
    assert exts["bar"].priority == 0
    # Bad priority
    config = Configuration({"lfs.extension.foo.priority": "first"})
    with pytest.raises(LFSValueError):
        config.extensions()


# Read .lfsconfig file
def test_lfsconfig01(tmp_path):
    # Write file
    fname = tmp_path / ".lfsconfig"
    fname.write_text(
        "[lfs]\n"
        "    url = \"https://example.com/lfs\"\n"
        "[remote \"origin\"]\n"
        "    lfsurl = https://lfs.example.com/repo\n")
    # Read it
    opts = read_lfsconfig(str(fname))
    assert opts["lfs.url"] == "https://example.com/lfs"
    assert opts["remote.origin.lfsurl"] == "https://lfs.example.com/repo"
    # Missing file
    assert read_lfsconfig(str(tmp_path / "nope")) == {}
