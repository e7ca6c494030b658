"""
FastAGI channel - the call leg as seen from an AGI script.

Asterisk opens a TCP connection, sends the ``agi_*`` environment as
``key: value`` lines terminated by a blank line, and then answers one
command per line with ``<code> result=<value> [(data)] [extra]``.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agi_tts.errors import DeliveryError
from agi_tts.logging_config import get_logger

logger = get_logger(__name__)

AGI_SUCCESS = 200
AGI_INVALID_COMMAND = 510
AGI_DEAD_CHANNEL = 511
AGI_USAGE = 520

_RESPONSE_RE = re.compile(r"^(\d{3})[ -](.*)$")
_RESULT_RE = re.compile(r"result=(\S*)(?:\s+\((.*?)\))?(?:\s+(.*))?$")


@dataclass
class AGIRequest:
    """The ``agi_*`` variables Asterisk sends when a call enters the script."""
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, lines: List[str]) -> "AGIRequest":
        headers: Dict[str, str] = {}
        for line in lines:
            key, sep, value = line.partition(":")
            if not sep:
                continue
            key = key.strip()
            if key.startswith("agi_"):
                key = key[4:]
            headers[key] = value.strip()
        return cls(headers)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(key, default)

    def arg(self, index: int, default: Optional[str] = None) -> Optional[str]:
        value = self.headers.get(f"arg_{index}")
        return value if value else default

    @property
    def callerid(self) -> Optional[str]:
        return self.headers.get("callerid")

    @property
    def extension(self) -> Optional[str]:
        return self.headers.get("extension")

    @property
    def context(self) -> Optional[str]:
        return self.headers.get("context")

    @property
    def channel(self) -> Optional[str]:
        return self.headers.get("channel")

    @property
    def uniqueid(self) -> Optional[str]:
        return self.headers.get("uniqueid")


@dataclass
class AGIResponse:
    code: int
    result: str = ""
    data: Optional[str] = None
    extra: Optional[str] = None
    raw: str = ""

    @classmethod
    def parse(cls, line: str) -> "AGIResponse":
        match = _RESPONSE_RE.match(line.strip())
        if not match:
            raise DeliveryError(f"Malformed AGI response: {line!r}")
        code = int(match.group(1))
        rest = match.group(2)
        result_match = _RESULT_RE.search(rest)
        if result_match:
            return cls(code, result_match.group(1), result_match.group(2), result_match.group(3), line)
        return cls(code, "", None, rest or None, line)

    @property
    def success(self) -> bool:
        return self.code == AGI_SUCCESS and self.result != "-1"


@dataclass
class GetDataResult:
    """Outcome of a prompt-and-collect. ``failure`` covers hangups and errors, not timeouts."""
    failure: bool
    digits: str = ""
    timed_out: bool = False
    response: Optional[AGIResponse] = None

    @classmethod
    def from_response(cls, response: AGIResponse) -> "GetDataResult":
        if not response.success:
            return cls(failure=True, response=response)
        return cls(
            failure=False,
            digits=response.result,
            timed_out=response.data == "timeout",
            response=response,
        )


def quote_argument(value: str) -> str:
    text = str(value)
    if text and not any(ch in text for ch in ' "\\\t'):
        return text
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class AGIChannel:
    """Command interface to one call leg over a FastAGI connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, request: AGIRequest):
        self.reader = reader
        self.writer = writer
        self.request = request
        self._lock = asyncio.Lock()
        self.hungup = False

    async def send_command(self, *parts: str) -> AGIResponse:
        """
        Send one AGI command and wait for its response.

        Raises:
            DeliveryError: connection closed, or the channel hung up
        """
        command = " ".join(str(part) for part in parts)
        async with self._lock:
            try:
                self.writer.write(command.encode("utf-8") + b"\n")
                await self.writer.drain()
                response = await self._read_response()
            except (ConnectionError, asyncio.IncompleteReadError) as e:
                raise DeliveryError(f"AGI connection lost during {parts[0]}: {e}") from e

        logger.debug("AGI command", command=command, response=response.raw)
        if response.code == AGI_DEAD_CHANNEL:
            self.hungup = True
            raise DeliveryError(f"Channel is dead; cannot run {command}")
        return response

    async def _read_response(self) -> AGIResponse:
        while True:
            raw = await self.reader.readline()
            if not raw:
                raise ConnectionError("connection closed by Asterisk")
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                continue
            if line.startswith("HANGUP"):
                # AGISIGHUP notification; the command response still follows
                self.hungup = True
                continue
            if line.startswith(f"{AGI_USAGE}-"):
                # Multi-line usage text ends with "520 End of proper usage."
                while not line.startswith(f"{AGI_USAGE} "):
                    raw = await self.reader.readline()
                    if not raw:
                        raise ConnectionError("connection closed by Asterisk")
                    line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            return AGIResponse.parse(line)

    async def stream_file(self, name: str, escape_digits: str = "") -> AGIResponse:
        response = await self.send_command("STREAM FILE", quote_argument(name), quote_argument(escape_digits))
        if not response.success:
            raise DeliveryError(f"STREAM FILE {name} failed: {response.raw}")
        return response

    async def get_data(self, name: str, timeout_ms: int, max_digits: int) -> GetDataResult:
        response = await self.send_command("GET DATA", quote_argument(name), int(timeout_ms), int(max_digits))
        return GetDataResult.from_response(response)

    async def _set(self, what: str, value) -> AGIResponse:
        response = await self.send_command(f"SET {what}", quote_argument(str(value)))
        if response.code != AGI_SUCCESS:
            raise DeliveryError(f"SET {what} {value} failed: {response.raw}")
        return response

    async def set_extension(self, extension: str) -> AGIResponse:
        return await self._set("EXTENSION", extension)

    async def set_priority(self, priority) -> AGIResponse:
        return await self._set("PRIORITY", priority)

    async def set_context(self, context: str) -> AGIResponse:
        return await self._set("CONTEXT", context)
