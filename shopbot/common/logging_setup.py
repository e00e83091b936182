import logging
import sys
import json
import re
from typing import Any, Dict, Optional
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from shopbot.config.settings import config_settings
from shopbot.common.constants import chat_id_ctx, trace_id_ctx, update_id_ctx

ENV = getattr(config_settings, "ENV", "dev").lower()

# bot tokens travel inside gateway URLs: .../bot<id>:<secret>/sendMessage
BOT_TOKEN_PATTERN = re.compile(r"bot\d+:[\w\-]+")

SENSITIVE_PATTERNS = [
    r"password", r"secret", r"token", r"api_key", r"apikey",
    r"authorization", r"card_number",
]

_RESERVED_ATTRS = (
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName", "message",
)


def sanitize_message_text(msg: str) -> str:
    """Redact tokens and secret-looking values inside a text message (best-effort)."""
    out = BOT_TOKEN_PATTERN.sub("bot[REDACTED]", msg)
    for p in SENSITIVE_PATTERNS:
        out = re.sub(rf'("{p}"\s*:\s*")[^"]+(")', r'\1[REDACTED]\2', out, flags=re.IGNORECASE)
        out = re.sub(rf'({p}\s*[=:]\s*)[\w\-\./:]+', r'\1[REDACTED]', out, flags=re.IGNORECASE)
    return out


class JSONFormatter(logging.Formatter):
    """Structured JSON formatter for staging/prod"""
    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "env": ENV,
            "service": getattr(config_settings, "SERVICE_NAME", "shopbot"),
        }

        uid = update_id_ctx.get()
        if uid is not None:
            log_data["update_id"] = uid
        cid = chat_id_ctx.get()
        if cid is not None:
            log_data["chat_id"] = cid

        extra_fields = {}
        for k, v in record.__dict__.items():
            if k in _RESERVED_ATTRS or k.startswith("_"):
                continue
            extra_fields[k] = v

        # phone numbers and addresses stay out of prod logs
        if ENV != "dev":
            for field in ("phone", "address", "full_name"):
                if field in extra_fields:
                    extra_fields[field] = "[REDACTED]"
        log_data.update(extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if ENV != "dev":
            log_data["message"] = sanitize_message_text(log_data.get("message", ""))
            if "exception" in log_data:
                log_data["exception"] = sanitize_message_text(log_data["exception"])

        return json.dumps(log_data, default=str, ensure_ascii=False)


class SecurityFilter(logging.Filter):
    """Redact the bot token and secrets before a record reaches any handler"""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
            cleaned = sanitize_message_text(msg)
            if cleaned != msg:
                record.msg = cleaned
                record.args = ()
        except Exception:
            pass
        return True


_queue_listener: Optional[QueueListener] = None


def setup_logging(level: Optional[int] = None):

    global _queue_listener

    if level is None:
        level = logging.INFO if ENV in ("prod", "staging") else logging.DEBUG

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    q: Queue = Queue(-1)
    qh = QueueHandler(q)
    # the token shows up in httpx request lines in every env, so filter before queueing
    qh.addFilter(SecurityFilter())

    console_handler = logging.StreamHandler(sys.stdout)
    if ENV != "dev":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)8s] %(name)s:%(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    root.setLevel(level)
    root.addHandler(qh)

    _queue_listener = QueueListener(q, console_handler, respect_handler_level=True)
    _queue_listener.start()

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING if ENV != "dev" else logging.INFO)

    return logging.getLogger("shopbot.app")


def stop_logging():
    global _queue_listener
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


class ContextLogger:
    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _with_ctx(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        extra = dict(extra or {})
        uid = update_id_ctx.get()
        if uid is not None:
            extra.setdefault("update_id", uid)
        cid = chat_id_ctx.get()
        if cid is not None:
            extra.setdefault("chat_id", cid)
        tid = trace_id_ctx.get()
        if tid:
            extra.setdefault("trace_id", tid)
        return extra

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.pop("extra", {})
        kwargs["extra"] = {**self._with_ctx(), **(extra or {})}
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, *args, **kwargs)


def get_logger(name: str = "shopbot.app") -> ContextLogger:
    return ContextLogger(name)
