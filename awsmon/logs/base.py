from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple


@dataclass
class LogEntry:
    """Represents a collected log line"""
    log_source: str  # instance id the line was read from
    content: str
    file_name: str = ""
    severity: Optional[str] = None  # filled in by the parser when unknown


@dataclass
class LogFileState:
    """Resume state of one remote log file"""
    file_name: str
    last_written: int  # remote 'last written' timestamp, ms
    marker: str
    partial: str = ""  # unterminated trailing line, completed by the next read
    pending: bool = False  # last read stopped before the end of the file


class LogSource(Protocol):
    """Remote, rotating, multi-file log source of a managed instance"""

    def list_log_files(self, instance_id: str) -> List[Tuple[str, int]]:
        """Return (file_name, last_written) for every file currently present."""

    def download_portion(self, instance_id: str, file_name: str, marker: Optional[str] = None,
                         number_of_lines: Optional[int] = None) -> Tuple[str, str, bool]:
        """
        Read a portion of a file and return (text, new_marker, more_pending).

        Exactly one of marker (incremental read) or number_of_lines (tail read)
        is given.
        """
