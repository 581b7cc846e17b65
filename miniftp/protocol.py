"""Command parsing and PORT argument helpers shared by the client and server."""

from __future__ import annotations

import ipaddress
import re

_LINE_END = re.compile(r"[\r\n]")
_REPLY_CODE = re.compile(r"\d{3}")


class FTPError(Exception):
    """Raised when a command, reply or transfer cannot be handled."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


def split_command(line: str) -> tuple[str, str]:
    """Split a control line into its command word and the rest of the line.

    Everything from the first CR or LF onwards is dropped. The argument keeps
    inner and trailing whitespace, as the server reads it.
    """
    line = _LINE_END.split(line, maxsplit=1)[0]
    parts = line.split(None, 1)
    if not parts:
        return "", ""
    command = parts[0]
    arg = parts[1] if len(parts) == 2 else ""
    return command, arg


def reply_code(response: str) -> int:
    """Return the three-digit code that starts a server reply."""
    match = _REPLY_CODE.match(response)
    if match is None:
        raise FTPError(f"malformed reply: {response!r}")
    return int(match.group())


def parse_port_argument(arg: str) -> tuple[str, int]:
    """Turn ``h1,h2,h3,h4,p1,p2`` into an ``(ip, port)`` pair."""
    fields = arg.strip().split(",")
    if len(fields) != 6:
        raise FTPError(f"bad PORT argument: {arg!r}", code=501)
    try:
        numbers = [int(field) for field in fields]
    except ValueError:
        raise FTPError(f"bad PORT argument: {arg!r}", code=501) from None
    if any(not 0 <= number <= 255 for number in numbers):
        raise FTPError(f"bad PORT argument: {arg!r}", code=501)
    ip = ".".join(str(number) for number in numbers[:4])
    port = numbers[4] * 256 + numbers[5]
    return ip, port


def format_port_argument(ip: str, port: int) -> str:
    """Build the argument of a PORT command for an IPv4 address and port."""
    try:
        address = ipaddress.IPv4Address(ip)
    except ValueError:
        raise FTPError(f"not an IPv4 address: {ip!r}") from None
    if not 0 <= port <= 65535:
        raise FTPError(f"port out of range: {port}")
    host = str(address).replace(".", ",")
    return f"{host},{port // 256},{port % 256}"