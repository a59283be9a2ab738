# bulkdispatch/infra/logging_config.py
import logging
import sys
import json
from datetime import datetime, timezone

_CONTEXT_FIELDS = ("session_id", "recipient", "request_id", "transport")


def mask_recipient(identifier: str) -> str:
    """Mask a recipient number for logs: ``+25884****67``."""
    if len(identifier) > 8:
        return identifier[:6] + "****" + identifier[-2:]
    if len(identifier) > 2:
        return identifier[:2] + "***"
    return "***"


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                value = getattr(record, name)
                log_data[name] = mask_recipient(value) if name == "recipient" else value

        return json.dumps(log_data)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        context_parts = []
        if hasattr(record, "session_id"):
            context_parts.append(f"session={record.session_id}")
        if hasattr(record, "recipient"):
            context_parts.append(f"to={mask_recipient(record.recipient)}")
        if hasattr(record, "transport"):
            context_parts.append(f"transport={record.transport}")

        context = f" [{' '.join(context_parts)}]" if context_parts else ""

        message = (
            f"{color}[{timestamp}] {record.levelname:8}{reset} "
            f"{record.name}{context} - {record.getMessage()}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Configure application logging

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, use JSON format (for production)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """
    Logger adapter that stamps dispatch context on every record.

    Usage:
        log = LogContext(logger, session_id=session.session_id)
        log.bind(recipient=number).info("Message sent")
    """

    def __init__(
            self,
            logger: logging.Logger,
            session_id: str | None = None,
            recipient: str | None = None,
            request_id: str | None = None,
            transport: str | None = None,
    ):
        context = {
            "session_id": session_id,
            "recipient": recipient,
            "request_id": request_id,
            "transport": transport,
        }
        super().__init__(logger, {k: v for k, v in context.items() if v is not None})

    def bind(self, **context) -> "LogContext":
        """Return a copy with extra context fields."""
        return LogContext(self.logger, **{**self.extra, **context})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs
