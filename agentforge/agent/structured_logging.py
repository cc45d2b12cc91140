"""
Structured Logging — Per-subsystem structured logging with JSON output.

Provides contextual logging with subsystem tags, request correlation IDs,
and the agent/binding currently being served. Plain text output is the default;
JSON lines are enabled with LOG_JSON=true.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from enum import Enum
from typing import Any, Dict

# Context variables for request correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
agent_id_var: ContextVar[str] = ContextVar("agent_id", default="")
binding_id_var: ContextVar[str] = ContextVar("binding_id", default="")


class Subsystem(str, Enum):
    API = "api"
    CHANNEL = "channel"


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "subsystem": getattr(record, "subsystem", "general"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        req_id = request_id_var.get("")
        if req_id:
            log_entry["request_id"] = req_id
        agent_id = agent_id_var.get("")
        if agent_id:
            log_entry["agent_id"] = agent_id
        binding_id = binding_id_var.get("")
        if binding_id:
            log_entry["binding_id"] = binding_id

        extra = getattr(record, "extra_data", None)
        if extra:
            log_entry["data"] = extra

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, default=str)


class SubsystemLogger:
    """Logger wrapper that adds subsystem context."""

    def __init__(self, subsystem: Subsystem, logger: logging.Logger):
        self._subsystem = subsystem
        self._logger = logger

    def _log(self, level: int, msg: str, extra_data: Any = None, **kwargs):
        extra = {"subsystem": self._subsystem.value}
        if extra_data:
            extra["extra_data"] = extra_data
        self._logger.log(level, msg, extra=extra, **kwargs)

    def debug(self, msg: str, data: Any = None, **kwargs):
        self._log(logging.DEBUG, msg, data, **kwargs)

    def info(self, msg: str, data: Any = None, **kwargs):
        self._log(logging.INFO, msg, data, **kwargs)

    def warning(self, msg: str, data: Any = None, **kwargs):
        self._log(logging.WARNING, msg, data, **kwargs)

    def error(self, msg: str, data: Any = None, **kwargs):
        self._log(logging.ERROR, msg, data, **kwargs)


# ── Logger Registry ──
_loggers: Dict[str, SubsystemLogger] = {}
_configured = False


def get_subsystem_logger(subsystem: Subsystem) -> SubsystemLogger:
    """Get a structured logger for a subsystem."""
    key = subsystem.value
    if key not in _loggers:
        logger = logging.getLogger(f"agentforge.{key}")
        _loggers[key] = SubsystemLogger(subsystem, logger)
    return _loggers[key]


def setup_logging(level: str = "INFO", json_output: bool = False):
    """Configure the root logger once per process."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # Chatty libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    _configured = True


def set_request_context(request_id: str = "", agent_id: str = "", binding_id: str = ""):
    """Set context variables for the current request."""
    if request_id:
        request_id_var.set(request_id)
    if agent_id:
        agent_id_var.set(agent_id)
    if binding_id:
        binding_id_var.set(binding_id)


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())[:12]


# ── Convenience loggers ──
api_log = get_subsystem_logger(Subsystem.API)
channel_log = get_subsystem_logger(Subsystem.CHANNEL)
