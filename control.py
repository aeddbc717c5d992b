#!/usr/bin/env python3
"""
Operator control channel.

Lets an operator switch the concurrency tier while a run is in progress by
typing `low`, `high` or `max` followed by Enter on the terminal.
"""

import io
import select
import sys
from asyncio import Event, wait_for, TimeoutError
from typing import Optional, Protocol, TextIO

from admission import AdmissionController
from config import config, get_logger

logger = get_logger("control")


class CommandReader(Protocol):
    def poll(self) -> Optional[str]:
        ...


class StdinReader:
    """Non-blocking line reader over a text stream (stdin by default).

    Disables itself on EOF or when the stream cannot be polled, e.g. when
    stdin is redirected from something select() does not understand.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdin
        self.enabled = self.stream is not None and not self.stream.closed

    def poll(self) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            ready, _, _ = select.select([self.stream], [], [], 0)
        except (OSError, ValueError, io.UnsupportedOperation) as e:
            logger.debug(f"Control channel disabled, stdin cannot be polled: {e}")
            self.enabled = False
            return None
        if not ready:
            return None
        line = self.stream.readline()
        if line == "":
            logger.debug("Control channel reached EOF on stdin")
            self.enabled = False
            return None
        return line


class ControlChannel:
    """Maps operator commands onto admission tiers."""

    COMMANDS = ("low", "high", "max")

    def __init__(
        self,
        admission: AdmissionController,
        reader: Optional[CommandReader] = None,
        poll_interval: Optional[float] = None,
    ):
        self.admission = admission
        self.reader = reader or StdinReader()
        self.poll_interval = poll_interval if poll_interval is not None else config.CONTROL_POLL_INTERVAL

    def handle_command(self, text: str) -> bool:
        """Apply one command; returns False for unrecognised input."""
        command = (text or "").strip().lower()
        if command not in self.COMMANDS:
            if command:
                logger.debug(f"Ignoring unrecognised control command {command!r}")
            return False
        self.admission.set_tier(command)
        return True

    async def listen(self, stop: Event) -> None:
        """Poll for commands until the stop event is set."""
        logger.info(f"Control channel listening; type one of {', '.join(self.COMMANDS)} to change concurrency")
        while not stop.is_set():
            line = self.reader.poll()
            if line is not None:
                self.handle_command(line)
            try:
                await wait_for(stop.wait(), timeout=self.poll_interval)
            except TimeoutError:
                continue
        logger.debug("Control channel stopped")
