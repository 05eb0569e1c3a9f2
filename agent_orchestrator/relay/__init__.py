"""Session relay module."""

from agent_orchestrator.relay.frames import Frame, FrameError, parse_file_notice
from agent_orchestrator.relay.relay import SessionRelay
from agent_orchestrator.relay.session import RelaySession
from agent_orchestrator.relay.transcript import Transcript, transcript_path

__all__ = [
    "Frame",
    "FrameError",
    "RelaySession",
    "SessionRelay",
    "Transcript",
    "parse_file_notice",
    "transcript_path",
]
