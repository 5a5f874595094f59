"""Log pattern extraction and counting.

Lines arrive from the tailer through a bounded queue. Each message is reduced to
a pattern by masking the variable parts (numbers, quoted strings, addresses,
ids); messages sharing a pattern are counted together and the first one is
kept as the sample.
"""

import asyncio
import contextlib
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .base import LogEntry

MAX_SAMPLE_LENGTH = 255
OVERFLOW_HASH = "overflow"

# PostgreSQL log_line_prefix is followed by "<SEVERITY>:  message"
PG_SEVERITY_RE = re.compile(
    r"\b(DEBUG[1-5]?|LOG|INFO|NOTICE|WARNING|ERROR|FATAL|PANIC|DETAIL|HINT|CONTEXT|STATEMENT|QUERY|LOCATION):\s+"
)
PG_LEVELS = {
    "LOG": "info",
    "INFO": "info",
    "NOTICE": "info",
    "WARNING": "warning",
    "ERROR": "error",
    "FATAL": "critical",
    "PANIC": "critical",
}
# these annotate the previous message
PG_CONTINUATIONS = {"DETAIL", "HINT", "CONTEXT", "STATEMENT", "QUERY", "LOCATION"}

MASKS = [
    (re.compile(r"'[^']*'"), "'*'"),
    (re.compile(r'"[^"]*"'), '"*"'),
    (re.compile(r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b"), "<uuid>"),
    (re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}(?::\d+)?\b"), "<ip>"),
    (re.compile(r"\b0x[0-9a-fA-F]+\b"), "<hex>"),
    (re.compile(r"\b[0-9a-fA-F]{16,}\b"), "<hex>"),
    (re.compile(r"\d+(?:\.\d+)?"), "<num>"),
]


@dataclass
class LogCounter:
    """Number of messages matching one pattern"""
    level: str
    hash: str
    sample: str
    messages: int = 0


def detect_level(line: str) -> Tuple[str, str, bool]:
    """
    Classify a line.

    Returns:
        (level, message, is_continuation); message has the log prefix removed
    """
    if line[:1] in (" ", "\t"):
        return "unknown", line.strip(), True

    match = PG_SEVERITY_RE.search(line)
    if match:
        severity = match.group(1)
        message = line[match.end():].strip()
        if severity in PG_CONTINUATIONS:
            return "unknown", message, True
        if severity.startswith("DEBUG"):
            return "debug", message, False
        return PG_LEVELS[severity], message, False

    lower = line.lower()
    if any(word in lower for word in ("panic", "fatal", "critical")):
        level = "critical"
    elif any(word in lower for word in ("error", "fail")):
        level = "error"
    elif "warn" in lower:
        level = "warning"
    elif "debug" in lower:
        level = "debug"
    else:
        level = "unknown"
    return level, line.strip(), False


def extract_pattern(message: str) -> str:
    pattern = message
    for regex, placeholder in MASKS:
        pattern = regex.sub(placeholder, pattern)
    return " ".join(pattern.split())


def pattern_hash(pattern: str) -> str:
    return hashlib.md5(pattern.encode("utf-8")).hexdigest()


class LogParser:
    """Consumes LogEntry values from a queue and keeps per-pattern counters."""

    def __init__(self, queue: asyncio.Queue, max_patterns: int = 1000,
                 logger: Optional[logging.Logger] = None):
        self.queue = queue
        self.max_patterns = max_patterns
        self.logger = logger or logging.getLogger("awsmon.logs.parser")
        self._counters: Dict[Tuple[str, str], LogCounter] = {}
        self._overflow_logged = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="log-parser")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run(self) -> None:
        while True:
            entry = await self.queue.get()
            try:
                self.feed(entry)
            finally:
                self.queue.task_done()

    def feed(self, entry: LogEntry) -> None:
        """Count one line."""
        if not entry.content.strip():
            return
        level, message, continuation = detect_level(entry.content)
        if continuation:
            return
        if entry.severity:
            level = entry.severity.lower()

        pattern = extract_pattern(message)
        key = (level, pattern_hash(pattern))
        counter = self._counters.get(key)
        if counter is None:
            if len(self._counters) >= self.max_patterns:
                if not self._overflow_logged:
                    self.logger.warning(f"more than {self.max_patterns} log patterns, counting the rest together")
                    self._overflow_logged = True
                key = (level, OVERFLOW_HASH)
                counter = self._counters.get(key)
            if counter is None:
                sample = message[:MAX_SAMPLE_LENGTH] if key[1] != OVERFLOW_HASH else ""
                counter = self._counters[key] = LogCounter(level, key[1], sample)
        counter.messages += 1

    def get_counters(self) -> List[LogCounter]:
        return list(self._counters.values())
