"""
Unit tests for the live shell line parser.

Tests cover:
- bash `history 1` lines with HISTTIMEFORMAT timestamps
- zsh extended-history lines
- Lines without a timestamp or without an index
- Malformed lines
- Session context (working directory, user, host)
"""

import getpass
from datetime import UTC, datetime
from pathlib import Path

import pytest

from dejacmd.errors import MalformedLiveEntryError
from dejacmd.parser import parse_epoch, parse_histtime, parse_live_line, session_context
from dejacmd.schema import Shell

GIT_STATUS_AT = datetime(2024, 3, 1, 13, 5, 2, tzinfo=UTC)


class TestBashLines:
    """Tests for bash HISTTIMEFORMAT lines."""

    def test_example_line(self) -> None:
        record = parse_live_line("42  2024-03-01 13:05:02 git status", Shell.BASH)
        assert record.command == "git status"
        assert record.command_timestamp == GIT_STATUS_AT
        assert record.shell == Shell.BASH
        assert record.source_origin == "live"

    @pytest.mark.parametrize(
        "line",
        [
            "  42  2024-03-01 13:05:02 git status",
            "42  2024-03-01 13:05:02 git status\n",
            "42* 2024-03-01 13:05:02 git status",
            "2024-03-01 13:05:02 git status",
            "  9999  2024-03-01 13:05:02   git status  ",
        ],
    )
    def test_whitespace_and_index_variants(self, line: str) -> None:
        record = parse_live_line(line, Shell.BASH)
        assert record.command == "git status"
        assert record.command_timestamp == GIT_STATUS_AT

    def test_command_keeps_inner_spacing(self) -> None:
        record = parse_live_line("7  2024-03-01 13:05:02 echo 'a   b'  |  wc -c", Shell.BASH)
        assert record.command == "echo 'a   b'  |  wc -c"

    def test_invalid_date_is_part_of_command(self) -> None:
        record = parse_live_line("7  2024-13-45 13:05:02 ls", Shell.BASH)
        assert record.command_timestamp is None
        assert record.command == "2024-13-45 13:05:02 ls"

    def test_out_of_band_fields(self) -> None:
        record = parse_live_line("42  2024-03-01 13:05:02 false", Shell.BASH, exit_status=1, pid=777)
        assert record.exit_status == 1
        assert record.pid == 777

    def test_powershell_form(self) -> None:
        record = parse_live_line("12  2024-03-01 13:05:02 Get-ChildItem", Shell.POWERSHELL)
        assert record.command == "Get-ChildItem"
        assert record.shell == Shell.POWERSHELL


class TestZshLines:
    """Tests for zsh extended-history lines."""

    def test_example_line(self) -> None:
        record = parse_live_line(": 1709298302:0;git status", Shell.ZSH)
        assert record.command == "git status"
        assert record.command_timestamp == GIT_STATUS_AT

    @pytest.mark.parametrize("duration", ["0", "5", "12345"])
    def test_duration_is_ignored(self, duration: str) -> None:
        record = parse_live_line(f": 1709298302:{duration};git status", Shell.ZSH)
        assert record.command_timestamp == GIT_STATUS_AT

    def test_with_index(self) -> None:
        record = parse_live_line("  101  : 1709298302:0;make test", Shell.ZSH)
        assert record.command == "make test"

    def test_semicolons_in_command(self) -> None:
        record = parse_live_line(": 1709298302:0;cd /tmp; ls; cd -", Shell.ZSH)
        assert record.command == "cd /tmp; ls; cd -"


class TestUntimestampedLines:
    """Lines without a recognizable timestamp are not errors."""

    def test_index_and_command(self) -> None:
        record = parse_live_line("  42  git status")
        assert record.command == "git status"
        assert record.command_timestamp is None

    def test_bare_command(self) -> None:
        record = parse_live_line("git status")
        assert record.command == "git status"
        assert record.command_timestamp is None
        assert record.shell == Shell.UNKNOWN


class TestMalformedLines:
    """Only a line empty after the index is an error."""

    @pytest.mark.parametrize("line", ["", "   ", "  42  ", "42", "42  2024-03-01 13:05:02 "])
    def test_empty_after_index(self, line: str) -> None:
        with pytest.raises(MalformedLiveEntryError) as exc_info:
            parse_live_line(line, Shell.BASH)
        assert exc_info.value.context["line"] == line
        assert exc_info.value.context["shell"] == "bash"

    def test_zsh_empty_command(self) -> None:
        with pytest.raises(MalformedLiveEntryError):
            parse_live_line(": 1709298302:0;", Shell.ZSH)


class TestTimeHelpers:
    """Tests for timestamp helpers."""

    def test_parse_histtime(self) -> None:
        assert parse_histtime("2024-03-01 13:05:02") == GIT_STATUS_AT
        assert parse_histtime("2024-02-30 00:00:00") is None

    def test_parse_epoch(self) -> None:
        assert parse_epoch("1709298302") == GIT_STATUS_AT
        assert parse_epoch(10**20) is None


class TestSessionContext:
    """Tests for the context recorded with live commands."""

    def test_context_is_stored_on_record(self) -> None:
        record = parse_live_line("git status", Shell.BASH, cwd="/src", user_name="alice", hostname="box")
        assert (record.cwd, record.user_name, record.hostname) == ("/src", "alice", "box")

    def test_context_absent_by_default(self) -> None:
        record = parse_live_line("git status")
        assert (record.cwd, record.user_name, record.hostname) == (None, None, None)

    def test_session_context(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("dejacmd.parser.socket.gethostname", lambda: "box")
        monkeypatch.setattr("dejacmd.parser.getpass.getuser", lambda: "alice")
        assert session_context() == {"cwd": str(tmp_path), "user_name": "alice", "hostname": "box"}

    def test_unknown_user(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def no_user() -> str:
            raise OSError("no login name")

        monkeypatch.setattr(getpass, "getuser", no_user)
        assert session_context()["user_name"] is None
