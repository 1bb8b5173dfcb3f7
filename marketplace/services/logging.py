import json
import logging
import sys
from datetime import datetime


_logger = logging.getLogger("marketplace")


class _JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = getattr(record, "payload", None) or {"event": record.getMessage()}
        line = json.dumps(payload, ensure_ascii=False, default=str)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Install a single stdout handler writing one JSON object per line."""
    if not any(getattr(h, "_marketplace", False) for h in _logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(_JsonLineFormatter())
        handler._marketplace = True
        _logger.addHandler(handler)
    _logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    _logger.propagate = False
    return _logger


def log_event(level: str, event: str, exc_info=None, **fields) -> None:
    payload = {
        "ts": datetime.utcnow().isoformat() + "Z",
        "level": level.lower(),
        "event": event,
    }
    payload.update(fields or {})
    lvl = getattr(logging, level.upper(), logging.INFO)
    _logger.log(lvl, event, exc_info=exc_info, extra={"payload": payload})
