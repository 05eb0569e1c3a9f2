"""Tests for session transcripts."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from agent_orchestrator.relay.transcript import (
    Transcript,
    sanitize_program_code,
    transcript_path,
)


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("SOAP-API_01", "SOAP-API_01"),
        ("billing / v2", "billing_v2"),
        ("a**b", "a_b"),
        ("prog.v1", "prog.v1"),
    ],
)
def test_sanitizes_program_code(code: str, expected: str) -> None:
    """Replaces unsafe characters and collapses underscore runs."""
    assert sanitize_program_code(code) == expected


def test_transcript_path_uses_timestamp_code_and_test_prefix(tmp_path: Path) -> None:
    """Names the file after the time, the program code and the test id."""
    now = datetime(2099, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    path = transcript_path(tmp_path, "billing api", "0123456789abcdef", now=now)

    assert path == tmp_path / "20990102_030405_billing_api_01234567.txt"


def test_creates_file_on_first_append(tmp_path: Path) -> None:
    """Creates parent directories and the file only when a line is written."""
    path = tmp_path / "logs" / "session.txt"
    transcript = Transcript(path)

    assert not path.exists()

    transcript.append("first")
    transcript.append("second")
    transcript.close()

    assert path.read_text(encoding="utf-8") == "first\nsecond\n"


def test_close_without_lines_creates_nothing(tmp_path: Path) -> None:
    """A session without logs leaves no empty transcript behind."""
    path = tmp_path / "session.txt"
    transcript = Transcript(path)

    transcript.close()

    assert not path.exists()


def test_append_after_close_fails(tmp_path: Path) -> None:
    """Refuses writes once closed."""
    transcript = Transcript(tmp_path / "session.txt")
    transcript.close()

    with pytest.raises(ValueError, match="closed"):
        transcript.append("late")
