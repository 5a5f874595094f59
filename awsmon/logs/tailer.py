"""Incremental tailer for remote, rotating log files.

Per file the tailer walks UNINITIALIZED -> PRIMED -> STEADY:

- a file seen for the first time is primed: only its last line is requested,
  to obtain a resume marker, and nothing is emitted;
- a primed file is read from its marker whenever the remote 'last written'
  timestamp moves forward, or while its previous read left data pending,
  and every complete line is emitted;
- a file missing from the listing has rotated away and its state is dropped,
  so if the name shows up again it is primed from scratch.

Detection relies on 'last written' moving forward. A file truncated and
rewritten within the same timestamp is not noticed.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from ..errors import LogSourceError
from .base import LogEntry, LogFileState, LogSource

# an unterminated line longer than this is emitted as is
MAX_PARTIAL_LINE = 64 * 1024


class LogTailer:
    """Background task reading new lines of one instance's log files into a queue."""

    def __init__(self, source: LogSource, instance_id: str, queue: asyncio.Queue,
                 interval: float, logger: Optional[logging.Logger] = None):
        self.source = source
        self.instance_id = instance_id
        self.queue = queue
        self.interval = interval
        self.logger = logger or logging.getLogger(f"awsmon.logs.{instance_id}")
        self.files: Dict[str, LogFileState] = {}
        self.dropped = 0
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # ---------- lifecycle ----------

    def start(self) -> None:
        """Run one pass immediately, then one pass per interval until stopped."""
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name=f"log-tailer:{self.instance_id}")

    def stop(self) -> None:
        """Ask the loop to exit; an in-flight pass is allowed to finish."""
        self._stop.set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait_stopped(self, timeout: Optional[float] = None) -> None:
        """Wait for the loop to exit, cancelling it if it still runs after `timeout` seconds."""
        if self._task is None:
            return
        _, pending = await asyncio.wait({self._task}, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)

    async def run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.refresh()
            except Exception as e:
                self.logger.exception(f"log pass failed: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        self.logger.debug("log tailer stopped")

    # ---------- one pass ----------

    async def refresh(self) -> bool:
        """
        Run one pass over the instance's log files.

        Returns:
            False if the listing failed (no state was touched), True otherwise
        """
        started = time.time()
        loop = asyncio.get_running_loop()
        try:
            listing = await loop.run_in_executor(None, self.source.list_log_files, self.instance_id)
        except LogSourceError as e:
            self.logger.warning(f"failed to list log files: {e}")
            return False

        dropped_before = self.dropped
        seen = set()
        for file_name, last_written in listing:
            seen.add(file_name)
            state = self.files.get(file_name)
            if state is None:
                await self._prime(file_name, last_written)
            elif state.pending or last_written > state.last_written:
                await self._read(state, last_written)

        for file_name in list(self.files):
            if file_name not in seen:
                self.logger.info(f"log file rotated away: {file_name}")
                del self.files[file_name]

        if self.dropped > dropped_before:
            self.logger.warning(f"log queue full, dropped {self.dropped - dropped_before} lines")
        self.logger.debug(f"logs refreshed in {time.time() - started:.2f}s")
        return True

    async def _download(self, file_name: str, marker: Optional[str] = None,
                        number_of_lines: Optional[int] = None):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.source.download_portion(
                self.instance_id, file_name, marker=marker, number_of_lines=number_of_lines
            ),
        )

    async def _prime(self, file_name: str, last_written: int) -> None:
        self.logger.info(f"new log file detected: {file_name}")
        try:
            # read the last line only to obtain the marker
            _, marker, _ = await self._download(file_name, number_of_lines=1)
        except LogSourceError as e:
            self.logger.warning(str(e))
            return
        self.files[file_name] = LogFileState(file_name, last_written, marker)

    async def _read(self, state: LogFileState, last_written: int) -> None:
        try:
            text, marker, pending = await self._download(state.file_name, marker=state.marker)
        except LogSourceError as e:
            # marker is left untouched, the same portion is retried next pass
            self.logger.warning(str(e))
            return
        state.last_written = last_written
        state.marker = marker
        state.pending = pending
        for line in self._split(state, text):
            self._emit(state.file_name, line)

    @staticmethod
    def _split(state: LogFileState, text: str) -> List[str]:
        lines = (state.partial + text).split("\n")
        state.partial = lines.pop()
        if len(state.partial) > MAX_PARTIAL_LINE:
            lines.append(state.partial)
            state.partial = ""
        return lines

    def _emit(self, file_name: str, line: str) -> None:
        try:
            self.queue.put_nowait(LogEntry(log_source=self.instance_id, content=line, file_name=file_name))
        except asyncio.QueueFull:
            self.dropped += 1
