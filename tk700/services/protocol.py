"""
BenQ RS232 ASCII framing as spoken by the TK700's serial-over-TCP bridge.

Requests are ``\\r*<cmd>=<arg>#\\r``. The projector echoes the request
(``>*pow=?#``) before answering with ``*<CMD>=<VALUE>#`` or one of the
rejection frames (``*Block item#``, ``*Illegal format#``, ``*Unsupported item#``).
"""
import re
from dataclasses import dataclass
from typing import Optional

from tk700.exceptions.projector import DeviceRejected, ProtocolError

TERMINATOR = b"#"
QUERY = "?"

_REJECTIONS = {
    "block item": "blocked in the current state",
    "illegal format": "illegal format",
    "unsupported item": "unsupported item",
}

_REPLY_RE = re.compile(r"^\*(?P<cmd>[A-Za-z0-9]+)=(?P<value>[^#]*)#$")
# '#' and CR would end the frame early and let a second command onto the line
_ARG_RE = re.compile(r"[A-Za-z0-9+\-?]+")


@dataclass(frozen=True)
class Reply:
    command: str
    value: str


def encode(command: str, arg: str = QUERY) -> bytes:
    """Build the request frame for ``command`` with ``arg`` (``?`` queries)."""
    if not command or not command.isalnum():
        raise ValueError(f"invalid command name: {command!r}")
    arg = str(arg).lower()
    if not _ARG_RE.fullmatch(arg):
        raise ValueError(f"invalid argument for {command!r}: {arg!r}")
    return f"\r*{command.lower()}={arg}#\r".encode("ascii")


def _clean(frame: bytes) -> str:
    return frame.decode("ascii", "replace").strip("\r\n\x00 ")


def is_reply(frame: bytes) -> bool:
    """Echoes start with '>'; anything else ending in '#' is an answer."""
    text = _clean(frame)
    return text.startswith("*") and text.endswith("#")


def decode(command: str, frame: bytes) -> Reply:
    """Parse a reply frame for ``command``; raise DeviceRejected or ProtocolError."""
    text = _clean(frame)
    body = text[1:-1].strip().lower() if text.startswith("*") and text.endswith("#") else ""
    if body in _REJECTIONS:
        raise DeviceRejected(command, _REJECTIONS[body])

    m = _REPLY_RE.match(text)
    if not m:
        raise ProtocolError(f"unparseable reply to '{command}'", frame)
    if m.group("cmd").lower() != command.lower():
        raise ProtocolError(f"reply for '{m.group('cmd')}' while waiting for '{command}'", frame)
    return Reply(command=command.lower(), value=m.group("value").strip())


def parse_int(reply: Reply) -> int:
    try:
        return int(reply.value)
    except ValueError:
        raise ProtocolError(f"'{reply.command}' value is not an integer: {reply.value!r}") from None


def parse_float(reply: Reply) -> float:
    try:
        return float(reply.value)
    except ValueError:
        raise ProtocolError(f"'{reply.command}' value is not a number: {reply.value!r}") from None


def parse_on_off(reply: Reply) -> Optional[bool]:
    """ON/OFF to bool; any other state word is not a meaningful power reading."""
    value = reply.value.upper()
    if value == "ON":
        return True
    if value == "OFF":
        return False
    return None
