"""qrstyle structured logging: console/JSON formatters, AUDIT events, call tracing.

Every record emitted through :func:`audit` or :func:`trace` carries an
``event`` tag and an optional ``ctx`` dict; both formatters render those
fields instead of a free-text message.
"""

import functools
import inspect
import json
import logging
import sys
import time
import traceback
from datetime import datetime, timezone

# between WARNING=30 and ERROR=40
AUDIT = 35
logging.addLevelName(AUDIT, "AUDIT")

ROOT_LOGGER = "qrstyle"


def _truncate(value: object, max_len: int = 80) -> str:
    s = str(value)
    return s if len(s) <= max_len else s[:max_len] + "..."


def _timestamp(record: logging.LogRecord, fmt: str) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(fmt)[:-3]


def _message(record: logging.LogRecord) -> str | None:
    """Free-text message, only for records that are not structured events."""
    if hasattr(record, "event"):
        return None
    return record.getMessage() or None


def _exception_text(record: logging.LogRecord) -> str | None:
    if record.exc_info and record.exc_info[1]:
        return "".join(traceback.format_exception(*record.exc_info))
    return None


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log files and machine parsing."""

    def format(self, record):
        entry = {
            "ts": _timestamp(record, "%Y-%m-%dT%H:%M:%S.%f") + "Z",
            "level": record.levelname,
            "src": record.name,
        }
        for key in ("event", "ctx"):
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if hasattr(record, "duration_ms"):
            entry["duration_ms"] = round(record.duration_ms, 2)
        message = _message(record)
        if message:
            entry["msg"] = message
        exc = _exception_text(record)
        if exc:
            entry["traceback"] = exc.splitlines()
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line console output; level names are coloured on a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "AUDIT": "\033[35m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool | None = None):
        super().__init__()
        self.use_color = sys.stderr.isatty() if use_color is None else use_color

    def _level(self, name: str) -> str:
        if not self.use_color or name not in self.COLORS:
            return f"{name:5s}"
        return f"{self.COLORS[name]}{name:5s}{self.RESET}"

    def format(self, record):
        parts = [_timestamp(record, "%H:%M:%S.%f"), self._level(record.levelname), f"[{record.name}]"]
        if hasattr(record, "event"):
            parts.append(record.event)
        if hasattr(record, "duration_ms"):
            parts.append(f"({record.duration_ms:.1f}ms)")
        ctx = getattr(record, "ctx", None)
        if ctx:
            parts.append(" ".join(f"{k}={_truncate(v)}" for k, v in ctx.items()))
        message = _message(record)
        if message:
            parts.append(message)
        line = " ".join(parts)
        exc = _exception_text(record)
        return f"{line}\n{exc}" if exc else line


def setup_logging(level: str = "INFO", log_file: str | None = None, json_format: bool = False):
    """Install console (and optional JSON file) handlers on the ``qrstyle`` logger.

    The library never calls this itself; the embedding application does.
    Unknown level names fall back to INFO. ``AUDIT`` is accepted.
    """
    root = logging.getLogger(ROOT_LOGGER)
    resolved = logging.getLevelName(level.upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JsonFormatter() if json_format else ConsoleFormatter())
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JsonFormatter())
        root.addHandler(file_handler)


def get_logger(module_name: str) -> logging.Logger:
    """Get a logger scoped under the qrstyle namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{module_name}")


def _emit(log: logging.Logger, level: int, event: str, *, ctx: dict | None = None,
          duration_ms: float | None = None, exc_info=None):
    record = log.makeRecord(
        name=log.name, level=level, fn="", lno=0,
        msg="", args=(), exc_info=exc_info,
    )
    record.event = event
    if duration_ms is not None:
        record.duration_ms = duration_ms
    if ctx is not None:
        record.ctx = ctx
    log.handle(record)


def audit(event: str, logger: logging.Logger | None = None, **context):
    """Emit an AUDIT-level structured log entry.

    Args:
        event: Machine-readable event tag (e.g., "raster.rendered").
        logger: Logger to use. Defaults to the qrstyle root.
        **context: Key-value pairs for the event context.
    """
    log = logger or logging.getLogger(ROOT_LOGGER)
    if not log.isEnabledFor(AUDIT):
        return
    _emit(log, AUDIT, event, ctx=context)


def _summarize_args(args, kwargs) -> dict:
    safe_args = []
    for a in args:
        s = repr(a)
        if len(s) > 100 or "Image" in type(a).__name__:
            safe_args.append(f"<{type(a).__name__}>")
        else:
            safe_args.append(_truncate(s, 80))
    safe_kwargs = {k: _truncate(repr(v), 80) for k, v in kwargs.items()}
    return {"args": safe_args, "kwargs": safe_kwargs}


def _summarize_result(result) -> str:
    if isinstance(result, (str, int, float, bool)):
        return _truncate(repr(result), 80)
    if isinstance(result, (list, tuple)):
        return f"{type(result).__name__}[{len(result)}]"
    if isinstance(result, dict):
        return f"dict[{len(result)} keys]"
    return type(result).__name__


def trace(func=None, *, logger_name: str | None = None):
    """Decorator that auto-logs function entry/exit with timing.

    - DEBUG on entry with arguments
    - INFO on exit with duration
    - ERROR on exception with traceback and duration

    Coroutine functions are wrapped with an async wrapper so the timing
    covers the awaited body, not just coroutine creation.
    """
    def decorator(fn):
        _logger_name = logger_name or fn.__module__.replace(f"{ROOT_LOGGER}.", "")
        log = get_logger(_logger_name)
        fn_name = fn.__name__

        def _enter(args, kwargs):
            # skip if not enabled to avoid arg formatting cost
            if log.isEnabledFor(logging.DEBUG):
                _emit(log, logging.DEBUG, f"{fn_name}.enter", ctx=_summarize_args(args, kwargs))

        def _done(start, result):
            if log.isEnabledFor(logging.INFO):
                elapsed = (time.perf_counter() - start) * 1000
                _emit(log, logging.INFO, f"{fn_name}.done", duration_ms=elapsed,
                      ctx={"result": _summarize_result(result)})

        def _error(start):
            elapsed = (time.perf_counter() - start) * 1000
            _emit(log, logging.ERROR, f"{fn_name}.error", duration_ms=elapsed,
                  ctx={"function": fn_name}, exc_info=sys.exc_info())

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args, **kwargs):
                _enter(args, kwargs)
                start = time.perf_counter()
                try:
                    result = await fn(*args, **kwargs)
                except Exception:
                    _error(start)
                    raise
                _done(start, result)
                return result

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            _enter(args, kwargs)
            start = time.perf_counter()
            try:
                result = fn(*args, **kwargs)
            except Exception:
                _error(start)
                raise
            _done(start, result)
            return result

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
