"""Async FastAGI server.

Asterisk reaches this server from the dialplan with
``AGI(agi://host:4573/tts,<text>,<language>,<any>)``. Each connection gets
its own task: the ``agi_*`` header block is parsed into an AGIRequest and
the call handler runs with an AGIChannel bound to the connection. A failing
handler only ends its own call.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from typing import Awaitable, Callable, Dict, List, Optional

from agi_tts.agi.channel import AGIChannel, AGIRequest
from agi_tts.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_AGI_PORT = 4573
HEADER_TIMEOUT_SEC = 10.0
MAX_HEADER_LINES = 200

CallHandler = Callable[[AGIChannel], Awaitable[None]]


class FastAGIServer:
    """asyncio TCP server speaking the FastAGI protocol."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        on_call: CallHandler,
        header_timeout_sec: float = HEADER_TIMEOUT_SEC,
    ) -> None:
        self.host = host
        self.port = port
        self._on_call = on_call
        self._header_timeout_sec = header_timeout_sec

        self._server: Optional[asyncio.base_events.Server] = None
        self._connection_tasks: Dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._server:
            logger.warning("FastAGI server already running")
            return

        self._server = await asyncio.start_server(
            self._handle_client,
            host=self.host,
            port=self.port,
        )

        sockets = self._server.sockets or []
        if sockets:
            # update port in case OS picked an ephemeral port (port=0)
            self.port = sockets[0].getsockname()[1]

        logger.info("FastAGI server listening", host=self.host, port=self.port)

    async def stop(self, graceful_timeout: float = 0.0) -> None:
        """Stop accepting calls; wait up to ``graceful_timeout`` for active ones, then cancel them."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        async with self._lock:
            tasks = list(self._connection_tasks.values())

        if tasks and graceful_timeout > 0:
            logger.info("Waiting for active calls to finish", active_calls=len(tasks), timeout_seconds=graceful_timeout)
            _, pending = await asyncio.wait(tasks, timeout=graceful_timeout)
            tasks = list(pending)

        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        logger.info("FastAGI server stopped")

    def get_connection_count(self) -> int:
        return len(self._connection_tasks)

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        conn_id = uuid.uuid4().hex
        peer = writer.get_extra_info("peername")
        logger.debug("FastAGI connection accepted", conn_id=conn_id, peer=peer)

        task = asyncio.current_task()
        async with self._lock:
            self._connection_tasks[conn_id] = task

        try:
            try:
                lines = await asyncio.wait_for(self._read_headers(reader), timeout=self._header_timeout_sec)
            except (asyncio.TimeoutError, asyncio.IncompleteReadError, ConnectionError, ValueError) as e:
                logger.warning("Invalid FastAGI handshake", conn_id=conn_id, peer=peer, error=str(e) or type(e).__name__)
                return

            request = AGIRequest.parse(lines)
            logger.info("Incoming call",
                        conn_id=conn_id,
                        callerid=request.callerid,
                        extension=request.extension,
                        context=request.context,
                        channel=request.channel)

            channel = AGIChannel(reader, writer, request)
            try:
                await self._on_call(channel)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error handling call", conn_id=conn_id, error=str(exc), exc_info=True)
        finally:
            async with self._lock:
                self._connection_tasks.pop(conn_id, None)
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

    @staticmethod
    async def _read_headers(reader: asyncio.StreamReader) -> List[str]:
        lines: List[str] = []
        while True:
            raw = await reader.readline()
            if not raw:
                raise ConnectionError("connection closed before end of AGI environment")
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                return lines
            lines.append(line)
            if len(lines) > MAX_HEADER_LINES:
                raise ValueError("AGI environment too large")
