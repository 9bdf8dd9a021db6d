"""Centralized logging for sandbox-persist.

Library logging rules (Python docs, PEP 282):
- Attach NullHandler to the library root logger
- Never add other handlers from library code
- Honor SANDBOX_PERSIST_LOG_LEVEL for level control
- configure_logging() is for CLI / application entry points only

CLI output format:
    WARNING [2026-02-25 10:02:54] sandbox_persist.multipart - message

Non-blocking logging:
    configure_logging() installs a QueueHandler + QueueListener pair so
    log emission never blocks the event loop on stderr I/O.  A bounded
    queue absorbs bursts (e.g. one record per uploaded part); when it is
    full, records are dropped instead of stalling an upload.

Presigned URLs:
    Library code never passes a presigned URL to a logger.  Text that
    may echo one back (curl stderr, transport errors) goes through
    redact_presigned() first, and the CLI handler applies the same
    redaction to every record it prints.
"""

import contextlib
import logging
import logging.handlers
import os
import queue
import re

import click

LIBRARY_LOGGER_NAME: str = "sandbox_persist"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = os.environ.get("SANDBOX_PERSIST_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # excludes NOTSET (0) and unknown names (None)
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_QUEUE_CAPACITY = 1024

# SigV4 and SigV2 query parameters that authorize a presigned request
_PRESIGNED_PARAM_RE = re.compile(
    r"(?P<name>X-Amz-Signature|X-Amz-Credential|X-Amz-Security-Token|Signature|AWSAccessKeyId)=[^&\s\"']+"
)

REDACTED = "[REDACTED]"


def redact_presigned(text: str) -> str:
    """Replace presigned-URL credentials in ``text`` with a placeholder.

    Example:
        >>> redact_presigned("GET https://b.example/k?X-Amz-Expires=300&X-Amz-Signature=abc123")
        'GET https://b.example/k?X-Amz-Expires=300&X-Amz-Signature=[REDACTED]'
    """
    return _PRESIGNED_PARAM_RE.sub(lambda m: f"{m.group('name')}={REDACTED}", text)


class PresignedRedactionFilter(logging.Filter):
    """Rewrites a record's message so signed query parameters never reach output."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_presigned(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class _ClickHandler(logging.Handler):
    """Writes formatted records to stderr via click.echo (runs on the listener thread)."""

    def __init__(self) -> None:
        super().__init__()
        self.formatter = logging.Formatter(fmt=_FMT, datefmt=_DATEFMT)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            if record.levelno >= logging.ERROR:
                click.echo(click.style(msg, fg="red"), err=True)
            else:
                click.echo(click.style(msg, dim=True), err=True)
        except BlockingIOError:
            pass  # stderr buffer full, drop
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """Queue-backed handler that never blocks the caller.

    Records are redacted on the caller's side, then go into a bounded
    FIFO drained by a QueueListener daemon thread.  A full queue drops
    the record.
    """

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self.addFilter(PresignedRedactionFilter())
        self._listener = logging.handlers.QueueListener(q, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        """Same-process queue: no pickling needed."""
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a sandbox_persist module (use with __name__)."""
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Configure library logging for the CLI.

    Idempotent: a second call only adjusts the level.

    Args:
        level: Log level (e.g. logging.DEBUG, "INFO"). Overrides the env var.
        quiet: Only show errors. Takes precedence over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
