"""
Structured logging for Tinglebot.

Every record goes through a bounded in-process queue; a listener thread
writes it to stdout (plain text in development, JSON in production) and,
outside tests, to a daily-rotated JSON file under ``Config.LOGS_DIR``.

Command context (user, guild, command name, raid/quest ids) is bound with
``LogContext`` and copied onto each record by ``CommandContextFilter``, so
service code only ever calls ``logger.info("...", extra={...})``.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from typing import Any, Dict, Optional

from tinglebot.core.config.config import Config

_command_context: ContextVar[Dict[str, Any]] = ContextVar("tinglebot_command_context", default={})

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
LOG_FILE_NAME = "tinglebot.json.log"
LOG_FILE_DAYS_KEPT = 7
QUEUE_CAPACITY = 5_000

# Fields copied from the bound command context onto every record.
CONTEXT_FIELDS = (
    "user_id", "guild_id", "command", "component", "correlation_id", "raid_id", "quest_id"
)

# Attributes every LogRecord owns; `extra` may not overwrite them.
LOG_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_RESERVED = LOG_RECORD_ATTRIBUTES | set(CONTEXT_FIELDS)

_listener: Optional[QueueListener] = None
_dropped_records = 0


class CommandContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _command_context.get()
        for field in CONTEXT_FIELDS:
            if field in context and not hasattr(record, field):
                setattr(record, field, context[field])
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` keys land under ``"extra"``."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        extra = {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class DroppingQueueHandler(QueueHandler):
    """Never blocks the event loop: a full queue drops the record."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        global _dropped_records
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _dropped_records += 1


def _level() -> int:
    return getattr(logging, str(Config.LOG_LEVEL).upper(), logging.INFO)


def _handlers() -> list[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JSONFormatter() if Config.is_production() else logging.Formatter(TEXT_FORMAT))
    handlers: list[logging.Handler] = [console]

    if not Config.is_testing():
        Config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        rotating = TimedRotatingFileHandler(
            Config.LOGS_DIR / LOG_FILE_NAME,
            when="midnight",
            backupCount=LOG_FILE_DAYS_KEPT,
            encoding="utf-8",
            utc=True,
        )
        rotating.setFormatter(JSONFormatter())
        handlers.append(rotating)

    return handlers


def setup_logging() -> None:
    """Install the queue handler on the root logger. Safe to call twice."""
    global _listener

    if _listener is not None:
        return

    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(QUEUE_CAPACITY)
    _listener = QueueListener(log_queue, *_handlers(), respect_handler_level=True)
    _listener.start()

    handler = DroppingQueueHandler(log_queue)
    handler.addFilter(CommandContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level())

    for name in ("discord", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if Config.DATABASE_ECHO else logging.WARNING
    )

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"environment": Config.ENVIRONMENT, "level": logging.getLevelName(_level())},
    )


def shutdown_logging() -> None:
    """Flush the queue and detach every root handler."""
    global _listener

    if _listener is None:
        return

    logging.getLogger(__name__).info("Logging shutting down", extra={"dropped": _dropped_records})
    _listener.stop()
    _listener = None

    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)


def safe_extra(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of `fields` with LogRecord attribute names prefixed by `field_`."""
    return {f"field_{k}" if k in LOG_RECORD_ATTRIBUTES else k: v for k, v in fields.items()}


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Bind command context to every record logged inside the block.

    >>> async with LogContext(user_id=ctx.author.id, command="raid roll", raid_id=raid_id):
    ...     await raid_service.process_turn(...)

    Nested contexts inherit the outer fields and override the ones they set.
    """

    def __init__(
        self,
        user_id: Optional[Any] = None,
        guild_id: Optional[Any] = None,
        command: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **fields: Any,
    ) -> None:
        context = dict(_command_context.get())
        context.setdefault("correlation_id", correlation_id or uuid.uuid4().hex[:8])
        if user_id is not None:
            context["user_id"] = str(user_id)
        if guild_id is not None:
            context["guild_id"] = str(guild_id)
        if command is not None:
            context["command"] = command
        context.update({k: v for k, v in fields.items() if v is not None})

        self.context = context
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _command_context.set(self.context)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _command_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


setup_logging()
