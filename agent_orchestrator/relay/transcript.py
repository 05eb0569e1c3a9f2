"""Append-only transcript of the log lines relayed for one session."""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import TextIO

from agent_orchestrator.models.base import utc_now

log = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_UNDERSCORE_RUNS = re.compile(r"_{2,}")


def sanitize_program_code(code: str) -> str:
    """Make a program code safe to use in a file name."""
    return _UNDERSCORE_RUNS.sub("_", _UNSAFE_CHARS.sub("_", code))


def transcript_path(
    log_dir: Path, program_code: str, test_id: str, now: datetime | None = None
) -> Path:
    """Build the transcript path of a session.

    The name is derived from the timestamp and the program code; the test id prefix
    keeps concurrent sessions of one program apart.
    """
    now = now or utc_now()
    safe_code = sanitize_program_code(program_code)
    return log_dir / f"{now:%Y%m%d_%H%M%S}_{safe_code}_{test_id[:8]}.txt"


class Transcript:
    """Text file created on first append and flushed after every line."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: TextIO | None = None
        self._closed = False

    def append(self, line: str) -> None:
        """Write one line to the transcript."""
        if self._closed:
            raise ValueError(f"Transcript {self.path} is closed")
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("a", encoding="utf-8")
            log.debug("Transcript created: %s", self.path)
        self._file.write(line + "\n")
        self._file.flush()

    def close(self) -> None:
        """Close the underlying file; later appends fail."""
        self._closed = True
        if self._file is not None:
            self._file.close()
            self._file = None
