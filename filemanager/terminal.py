"""
Command Bridge

Runs one command at a time per WebSocket connection and streams its output
back as events.

Known limitations:
- Commands are split on whitespace; there is no shell quoting, so an
  argument containing spaces cannot be expressed.
- The client cannot interrupt a running command. The process is only killed
  when the connection closes or the command timeout expires.
"""

import asyncio
import codecs
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Union

from .errors import InvalidInput, ProcessSpawnFailed

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096

BUSY_MESSAGE = "\r\nA command is already running. Wait for it to finish.\r\n"
INTERRUPT_UNAVAILABLE = "\r\nInterrupting a running command is not available.\r\n"


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SessionBusy(InvalidInput):
    """Raised when a command is started while another one runs."""


@dataclass
class TerminalEvent:
    """One server->client message."""
    output: str
    type: str

    def to_message(self) -> Dict[str, str]:
        return {"output": self.output, "type": self.type}


def split_command(command: str) -> List[str]:
    """Split on whitespace. Quotes are not interpreted."""
    argv = command.split()
    if not argv:
        raise InvalidInput("Empty command")
    return argv


class ShellSession:
    """
    Idle/Running state machine owning at most one subprocess.

    ``start()`` claims the session synchronously, so a second call made
    before the first stream is consumed is rejected as busy.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout else None
        self.state = SessionState.IDLE
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    def start(self, command: str, cwd: Union[str, Path]) -> AsyncIterator[TerminalEvent]:
        """
        Begin running ``command`` in ``cwd``.

        Returns:
            Async iterator of TerminalEvent; it ends after the 'status' or
            spawn 'error' event

        Raises:
            SessionBusy: If a command is already running
            InvalidInput: If the command is empty
        """
        if self.is_running:
            raise SessionBusy(BUSY_MESSAGE.strip())
        argv = split_command(command)
        self.state = SessionState.RUNNING
        return self._run(command, argv, str(cwd))

    async def _spawn(self, argv: List[str], cwd: str) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessSpawnFailed(e.strerror or str(e))

    async def _run(self, command: str, argv: List[str], cwd: str) -> AsyncIterator[TerminalEvent]:
        try:
            yield TerminalEvent(f"> {command}\r\n", "command")

            try:
                self._process = await self._spawn(argv, cwd)
            except ProcessSpawnFailed as e:
                logger.warning(f"Failed to start '{command}' in {cwd}: {e}")
                yield TerminalEvent(f"\r\nFailed to start command: {e}\r\n", "error")
                return

            process = self._process
            logger.info(f"Started '{command}' in {cwd} (PID: {process.pid})")

            queue: asyncio.Queue = asyncio.Queue()
            pumps = [
                asyncio.create_task(_pump(process.stdout, "stdout", queue)),
                asyncio.create_task(_pump(process.stderr, "stderr", queue)),
            ]

            deadline = time.monotonic() + self.timeout if self.timeout else None
            open_streams = len(pumps)
            timed_out = False
            try:
                while open_streams:
                    remaining = None if deadline is None else max(deadline - time.monotonic(), 0)
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=remaining)
                    except asyncio.TimeoutError:
                        timed_out = True
                        break
                    if event is None:
                        open_streams -= 1
                    else:
                        yield event
            finally:
                if timed_out:
                    await self.terminate()
                for pump in pumps:
                    pump.cancel()
                await asyncio.gather(*pumps, return_exceptions=True)

            if timed_out:
                yield TerminalEvent(f"\r\nCommand timed out after {self.timeout:g}s.\r\n", "error")

            code = await process.wait()
            logger.info(f"'{command}' exited with code {code}")
            yield TerminalEvent(f"\r\nExited with code {code}.\r\n", "status")
        finally:
            if self._process is not None and self._process.returncode is None:
                await self.terminate()
            self._process = None
            self.state = SessionState.IDLE

    async def terminate(self) -> None:
        """Kill the live process, if any, and reap it."""
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        logger.info(f"Terminated process (PID: {process.pid})")


async def _pump(stream: asyncio.StreamReader, kind: str, queue: asyncio.Queue) -> None:
    """Forward decoded chunks from ``stream`` to ``queue``; None marks the end."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    await queue.put(TerminalEvent(tail, kind))
                break
            text = decoder.decode(chunk)
            if text:
                await queue.put(TerminalEvent(text, kind))
    finally:
        queue.put_nowait(None)
