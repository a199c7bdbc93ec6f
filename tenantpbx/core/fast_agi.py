"""FastAGI protocol reader and TCP server.

Implements the slice of Asterisk FastAGI the authorization hook needs:
  Asterisk → server: "agi_<name>: <value>" lines, terminated by a blank line
  server → Asterisk: one command per line, e.g. SET VARIABLE IS_ALLOWED "true"
  Asterisk → server: "200 result=<n> [(data)]"
                     "510 Invalid or unknown command"
                     "511 Command Not Permitted on a dead channel"
                     "520-..." multi-line usage text ending with "520 End of proper usage."
                     "HANGUP" (asynchronous, the channel went away)
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tenantpbx.monitoring.metrics import active_agi_sessions

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
# Upper bound on the environment block; Asterisk sends ~25 short lines
MAX_ENVIRONMENT_LINES = 256

_RESULT_RE = re.compile(r"^200 result=(-?\d*)\s*(?:\((.*)\))?\s*(.*)$")


@dataclass(slots=True)
class AGIResponse:
    """Parsed reply to one AGI command."""

    code: int
    result: str
    data: str
    raw: str

    @property
    def ok(self) -> bool:
        return self.code == 200 and self.result != "-1"


class AGICommandError(Exception):
    """Asterisk rejected an AGI command."""

    def __init__(self, command: str, response: AGIResponse) -> None:
        self.command = command
        self.response = response
        super().__init__(f"{command!r} failed: {response.raw}")


def _decode(line: bytes) -> str:
    return line.decode(ENCODING, errors="replace").rstrip("\r\n")


async def read_environment(reader: asyncio.StreamReader) -> dict[str, str]:
    """Read the agi_* variable block sent at the start of every session.

    Raises IncompleteReadError if the peer disconnects before the blank
    line that terminates the block.
    """
    env: dict[str, str] = {}
    for _ in range(MAX_ENVIRONMENT_LINES):
        line = await reader.readline()
        if not line:
            raise asyncio.IncompleteReadError(b"", None)
        text = _decode(line)
        if not text:
            return env
        name, sep, value = text.partition(":")
        if sep:
            env[name.strip()] = value.strip()
    raise ValueError(f"AGI environment exceeds {MAX_ENVIRONMENT_LINES} lines")


def parse_response(text: str) -> AGIResponse:
    """Parse a single-line AGI reply."""
    match = _RESULT_RE.match(text)
    if match:
        return AGIResponse(code=200, result=match.group(1), data=match.group(2) or "", raw=text)
    code = int(text[:3]) if text[:3].isdigit() else 0
    return AGIResponse(code=code, result="", data=text[4:], raw=text)


async def read_response(reader: asyncio.StreamReader) -> AGIResponse:
    """Read one command reply, skipping asynchronous HANGUP notices."""
    while True:
        line = await reader.readline()
        if not line:
            raise ConnectionResetError("AGI connection closed by Asterisk")
        text = _decode(line)
        if text == "HANGUP":
            continue
        if text.startswith("520-"):
            usage = [text]
            while not text.startswith("520 "):
                line = await reader.readline()
                if not line:
                    raise ConnectionResetError("AGI connection closed by Asterisk")
                text = _decode(line)
                usage.append(text)
            return AGIResponse(code=520, result="", data="\n".join(usage[1:]), raw=usage[0])
        return parse_response(text)


def quote_argument(value: str) -> str:
    """Quote an AGI command argument."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_command(command: str, *args: str) -> bytes:
    """Build one AGI command line."""
    parts = [command, *(quote_argument(a) for a in args)]
    return (" ".join(parts) + "\n").encode(ENCODING)


class AGIConnection:
    """One FastAGI session from Asterisk.

    Implements the AGISession capability used by CallSessionHandler.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self._env: dict[str, str] | None = None
        self._error_listeners: list[Callable[[BaseException], None]] = []
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def session_id(self) -> str:
        return (self._env or {}).get("agi_uniqueid", "")

    async def wait_variables(self) -> dict[str, str]:
        """Read (once) and return the session's agi_* environment."""
        if self._env is None:
            try:
                self._env = await read_environment(self.reader)
            except (asyncio.IncompleteReadError, ConnectionResetError, OSError, ValueError) as exc:
                self._notify(exc)
                raise
        return dict(self._env)

    def get_variable(self, name: str) -> str | None:
        if self._env is None:
            return None
        return self._env.get(name)

    async def send_command(self, command: str, *args: str) -> AGIResponse:
        """Send one command and wait for its reply."""
        if self._closed:
            raise ConnectionResetError("AGI session already ended")
        try:
            self.writer.write(build_command(command, *args))
            await self.writer.drain()
            return await read_response(self.reader)
        except (ConnectionResetError, OSError) as exc:
            self._notify(exc)
            raise

    async def set_variable(self, name: str, value: str) -> None:
        response = await self.send_command("SET VARIABLE", name, value)
        if not response.ok:
            exc = AGICommandError(f"SET VARIABLE {name}", response)
            self._notify(exc)
            raise exc

    async def end(self) -> None:
        """Close the connection; Asterisk continues the dialplan."""
        if self._closed:
            return
        self._closed = True
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except OSError as exc:
            self._notify(exc)

    def on_error(self, callback: Callable[[BaseException], None]) -> None:
        self._error_listeners.append(callback)

    def _notify(self, exc: BaseException) -> None:
        for callback in self._error_listeners:
            try:
                callback(exc)
            except Exception:
                logger.exception("AGI error listener failed")


class AGIServer:
    """TCP server that accepts FastAGI connections from Asterisk.

    Each connection is handled in a separate asyncio.Task. A callback is
    invoked for every new connection with the AGIConnection object.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 4573,
        on_connection: Callable[[AGIConnection], Coroutine[Any, Any, None]] | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._on_connection = on_connection
        self._server: asyncio.Server | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self) -> None:
        """Start listening for FastAGI connections."""
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        addrs = ", ".join(str(s.getsockname()) for s in self._server.sockets)
        logger.info("FastAGI server listening on %s", addrs)

    async def stop(self) -> None:
        """Stop the server and close all active sessions."""
        if self._server is not None:
            self._server.close()
            logger.info("FastAGI server stopped accepting connections")

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            count = len(self._tasks)
            await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info("All FastAGI sessions closed (%d)", count)
            self._tasks.clear()

        if self._server is not None:
            await self._server.wait_closed()

    @property
    def active_sessions(self) -> int:
        """Number of sessions currently in progress."""
        return len(self._tasks)

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = writer.get_extra_info("peername")
        logger.debug("New FastAGI connection from %s", peer)

        conn = AGIConnection(reader, writer)

        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        active_agi_sessions.inc()
        try:
            if self._on_connection is not None:
                await self._on_connection(conn)
        except Exception:
            logger.exception("Error handling FastAGI session from %s", peer)
        finally:
            await conn.end()
            active_agi_sessions.dec()
