"""
Record Log Buffer - Buffers logs per record during concurrent apply/recover
"""
import logging
import threading
from typing import List

logger = logging.getLogger(__name__)

_flush_lock = threading.Lock()


class RecordLogBuffer:
    """Buffers logs for a single record action and flushes them atomically"""

    def __init__(self, record_label: str):
        self.record_label = record_label
        self.buffer: List[tuple] = []  # (level, message)

    def info(self, msg: str):
        self.buffer.append((logging.INFO, msg))

    def debug(self, msg: str):
        self.buffer.append((logging.DEBUG, msg))

    def warning(self, msg: str):
        self.buffer.append((logging.WARNING, msg))

    def error(self, msg: str):
        self.buffer.append((logging.ERROR, msg))

    def flush(self):
        """Write buffered lines to the module logger without interleaving other records"""
        with _flush_lock:
            if not self.buffer:
                return

            logger.info(f"--- record {self.record_label} ---")
            for level, msg in self.buffer:
                logger.log(level, msg)
            self.buffer.clear()
