"""Log tailing package - remote log files into per-pattern counters"""

from .base import LogEntry, LogFileState, LogSource
from .parser import LogCounter, LogParser
from .rds import RdsLogSource
from .tailer import LogTailer

__all__ = [
    # Base classes
    'LogEntry',
    'LogFileState',
    'LogSource',

    # Tailing
    'LogTailer',
    'RdsLogSource',

    # Parsing
    'LogParser',
    'LogCounter',
]
