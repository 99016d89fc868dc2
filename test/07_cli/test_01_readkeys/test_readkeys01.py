
# Third-party
import pytest

# Local imports
from lfsync import cli
from lfsync.lfserror import (
    LFSArgumentError,
    LFSError,
    LFSFileNotFoundError,
    LFSPruneError)


# Positional args and options
def test_readkeys01():
    # Parse
    a, kw = cli.readkeys([
        "lfsync", "push", "origin", "main", "-d",
        "--exclude", "docs/*", "remote=upstream"])
    # Check
    assert a == ["push", "origin", "main"]
    assert kw["dry_run"] is True
    assert kw["exclude"] == "docs/*"
    assert kw["remote"] == "upstream"
    assert kw["__replaced__"] == []


# Negation, aliases, and "--"
def test_readkeys02():
    # Parse
    a, kw = cli.readkeys([
        "lfsync", "prune", "--no-verify-remote", "-v", "--X=*.bin",
        "--", "-notanoption"])
    # Check
    assert a == ["prune", "-notanoption"]
    assert kw["verify_remote"] is False
    assert kw["verbose"] is True
    assert kw["exclude"] == "*.bin"
    # No-value options never take the next arg
    a, kw = cli.readkeys(["lfsync", "prune", "-c", "extra"])
    assert a == ["prune", "extra"]
    assert kw["verify_remote"] is True


# Repeated options
def test_readkeys03():
    # Parse
    _, kw = cli.readkeys([
        "lfsync", "prune", "--verify-remote", "--no-verify-remote"])
    # Last one wins, first one recorded
    assert kw["verify_remote"] is False
    assert kw["__replaced__"] == [("verify_remote", True)]


# Exclusion patterns
def test_patterns01():
    assert cli._split_patterns("a/*, b.bin,,") == ["a/*", "b.bin"]
    assert cli._split_patterns(True) == []
    assert cli._split_patterns(None) == []


# Help and unknown commands
def test_main01(capsys):
    # No command
    assert cli.main(["lfsync"]) == cli.IERR_OK
    assert "lfsync" in capsys.readouterr().out
    # Help for one command
    assert cli.main(["lfsync", "prune", "-h"]) == cli.IERR_OK
    assert capsys.readouterr().out.strip() == cli.HELP_PRUNE.strip()
    assert cli.main(["lfsync", "help", "push"]) == cli.IERR_OK
    assert capsys.readouterr().out.strip() == cli.HELP_PUSH.strip()
    # Unknown command
    assert cli.main(["lfsync", "fetch"]) == cli.IERR_ARGS
    out = capsys.readouterr().out
    assert "Unexpected command 'fetch'" in out


# Conflicting flags fail before reading the repo
def test_main02(capsys):
    # Both flags
    ierr = cli.main([
        "lfsync", "prune", "--verify-remote", "--no-verify-remote"])
    assert ierr == cli.IERR_ARGS
    assert "Cannot specify both" in capsys.readouterr().out
    # Direct call raises
    with pytest.raises(LFSArgumentError):
        cli.lfsync_prune(
            verify_remote=False, __replaced__=[("verify_remote", True)])


# Errors become return codes
def test_main03(monkeypatch, capsys):
    # Error to raise
    errs = {}

    def fake_cmd(*a, **kw):
        raise errs["err"]

    # Replace commands
    monkeypatch.setitem(cli.CMD_DICT, "env", fake_cmd)
    monkeypatch.setitem(cli.CMD_DICT, "smudge", fake_cmd)
    monkeypatch.setattr(cli, "_log_fatal", lambda err: "/tmp/x.log")
    # Missing file
    errs["err"] = LFSFileNotFoundError("File 'a' does not exist")
    assert cli.main(["lfsync", "env"]) == cli.IERR_FILE_NOT_FOUND
    # Other errors
    errs["err"] = LFSError("No download action")
    assert cli.main(["lfsync", "env"]) == cli.IERR_LFS
    out = capsys.readouterr().out
    assert "LFSError:\n  No download action" in out
    assert "Errors logged" not in out
    # Fatal errors are logged
    errs["err"] = LFSPruneError("Failed to list local objects")
    assert cli.main(["lfsync", "env"]) == cli.IERR_LFS
    assert "Errors logged to /tmp/x.log" in capsys.readouterr().out
    # Filters keep errors out of STDOUT
    errs["err"] = LFSError("No download action")
    assert cli.main(["lfsync", "smudge"]) == cli.IERR_LFS
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "No download action" in captured.err
