"""STOMP 1.2 text frames exchanged with the agent's event channel."""

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

NULL = "\x00"

# CONNECT and CONNECTED headers are never escaped
UNESCAPED_COMMANDS = frozenset({"CONNECT", "CONNECTED"})

_ESCAPES = {"\\": "\\\\", "\r": "\\r", "\n": "\\n", ":": "\\c"}
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}
_ESCAPE_SEQUENCE = re.compile(r"\\(.?)")
_HEADER_END = re.compile(r"\r?\n\r?\n")


class FrameError(ValueError):
    """Raised when a frame or a frame payload cannot be parsed."""


@dataclass(frozen=True, kw_only=True)
class Frame:
    """A single STOMP frame."""

    command: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def destination(self) -> str | None:
        """Destination header, if any."""
        return self.headers.get("destination")

    def encode(self) -> str:
        """Serialize the frame, terminated by a NULL octet."""
        escape = self.command not in UNESCAPED_COMMANDS
        lines = [self.command]
        for key, value in self.headers.items():
            if escape:
                key, value = _escape(key), _escape(value)
            lines.append(f"{key}:{value}")
        return "\n".join(lines) + "\n\n" + self.body + NULL


def parse_frames(data: str) -> Sequence[Frame]:
    """Parse every frame of a websocket message.

    Heart-beat end-of-lines between frames are skipped, so a message made only of
    heart-beats yields no frame.
    """
    stripped = data.strip("\r\n")
    if not stripped:
        return []
    if not stripped.endswith(NULL):
        raise FrameError("Unterminated frame")

    chunks = (chunk.lstrip("\r\n") for chunk in stripped.split(NULL)[:-1])
    return [decode_frame(chunk) for chunk in chunks if chunk]


def decode_frame(raw: str) -> Frame:
    """Decode one frame without its NULL terminator."""
    match = _HEADER_END.search(raw)
    if match is None:
        head, body = raw, ""
        if "\n" in raw.strip("\r\n"):
            raise FrameError("Missing blank line after frame headers")
    else:
        head, body = raw[: match.start()], raw[match.end() :]

    lines = head.splitlines()
    command = lines[0].strip()
    if not command:
        raise FrameError("Missing frame command")

    unescape = command not in UNESCAPED_COMMANDS
    headers: dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if not sep:
            raise FrameError(f"Malformed header line: {line!r}")
        if unescape:
            key, value = _unescape(key), _unescape(value)
        # Repeated headers: the first occurrence wins
        headers.setdefault(key, value)

    return Frame(command=command, headers=headers, body=body)


@dataclass(frozen=True, kw_only=True)
class FileNotice:
    """Payload of a file-availability message."""

    filename: str
    duration: float


def parse_file_notice(text: str) -> FileNotice:
    """Parse a file-availability payload.

    The agent sends key=value pairs such as ``{filename=out.csv, duration=3.2}``;
    a JSON object with the same keys is accepted as well.
    """
    text = text.strip()
    fields: dict[str, str] = {}
    if text.startswith("{") and '"' in text:
        try:
            fields = {str(k): str(v) for k, v in json.loads(text).items()}
        except (ValueError, AttributeError) as e:
            raise FrameError(f"Invalid file notice: {text!r}") from e
    else:
        for pair in re.sub(r"[{}]", "", text).split(","):
            key, sep, value = pair.partition("=")
            if sep:
                fields[key.strip()] = value.strip()

    filename = fields.get("filename")
    if not filename:
        raise FrameError(f"File notice without filename: {text!r}")
    try:
        duration = float(fields.get("duration", ""))
    except ValueError as e:
        raise FrameError(f"File notice with invalid duration: {text!r}") from e

    return FileNotice(filename=filename, duration=duration)


def _escape(value: str) -> str:
    return "".join(_ESCAPES.get(char, char) for char in value)


def _unescape(value: str) -> str:
    def replace(match: re.Match[str]) -> str:
        char = match.group(1)
        if char not in _UNESCAPES:
            raise FrameError(f"Undefined escape sequence: \\{char}")
        return _UNESCAPES[char]

    return _ESCAPE_SEQUENCE.sub(replace, value)
