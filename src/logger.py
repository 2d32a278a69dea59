"""
Logging utility for the icon converter.

This module provides centralized logging functionality that:
- Writes all output to a timestamped log file, and INFO and above to the console
- Tags every record with the id of the conversion request that produced it,
  including records emitted from the resize worker threads
- Archives old logs to a folder, keeping only the most recent ones
"""

import contextvars
import logging
import secrets
import shutil
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

NO_REQUEST = "-"
_request_id = contextvars.ContextVar("request_id", default=NO_REQUEST)


def new_request_id():
    """Short random tag used to correlate the log lines of one conversion."""
    return secrets.token_hex(4)


def current_request_id():
    return _request_id.get()


@contextmanager
def request_context(request_id=None):
    """Tag log records emitted inside the block with ``request_id``.

    Worker threads do not inherit the tag on their own; submit their jobs
    through ``contextvars.copy_context().run``.
    """
    request_id = request_id or new_request_id()
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


class RequestIdFilter(logging.Filter):
    """Adds ``record.request_id`` so formatters can print it."""

    def filter(self, record):
        record.request_id = _request_id.get()
        return True


class LogSetup:
    """Configures the root logger for a converter run."""

    FORMAT = "%(asctime)s - %(levelname)s - [%(request_id)s] %(threadName)s - %(name)s - %(message)s"

    def __init__(self, log_dir="logs", archive_dir=None, keep_archived=20):
        """
        Args:
            log_dir: Directory for the current run's log (default: logs/)
            archive_dir: Where earlier runs go (default: <log_dir>/archive/)
            keep_archived: How many archived run logs to keep; older ones are deleted
        """
        self.log_dir = Path(log_dir)
        self.archive_dir = Path(archive_dir) if archive_dir else self.log_dir / "archive"
        self.keep_archived = keep_archived

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def setup_logging(self):
        """
        Install a DEBUG file handler and an INFO console handler on the root logger.

        Returns:
            tuple: (root logger, path of the new log file)
        """
        self._archive_existing_logs()
        self._prune_archive()

        log_filepath = self.log_dir / f"run_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(fmt=self.FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        request_filter = RequestIdFilter()

        for handler, level in ((logging.FileHandler(log_filepath, encoding="utf-8"), logging.DEBUG),
                               (logging.StreamHandler(), logging.INFO)):
            handler.setLevel(level)
            handler.setFormatter(formatter)
            handler.addFilter(request_filter)
            root.addHandler(handler)

        # Pillow logs every PNG chunk it parses at DEBUG; one conversion
        # decodes the source 14 times.
        for noisy_logger in ("PIL", "PIL.PngImagePlugin", "PIL.Image"):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)

        return root, log_filepath

    def _archive_existing_logs(self):
        for log_file in self.log_dir.glob("run_*.log"):
            if log_file.is_file():
                try:
                    shutil.move(str(log_file), str(self.archive_dir / log_file.name))
                except OSError as e:
                    print(f"Warning: Could not archive log file {log_file.name}: {e}")

    def _prune_archive(self):
        # Names embed the timestamp, so lexical order is chronological
        archived = sorted(self.archive_dir.glob("run_*.log"))
        for old in archived[:max(0, len(archived) - self.keep_archived)]:
            try:
                old.unlink()
            except OSError as e:
                print(f"Warning: Could not remove archived log {old.name}: {e}")


def setup_logging(log_dir="logs", archive_dir=None, keep_archived=20):
    """
    Convenience function to set up logging.

    Returns:
        tuple: (logger, log_filepath)
    """
    return LogSetup(log_dir, archive_dir, keep_archived).setup_logging()
