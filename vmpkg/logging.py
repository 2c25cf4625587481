# vmpkg/logging.py
"""
vmpkg logging

Features:
 - Console color formatter on stderr, quiet/debug aware
 - Rotating file handler (size from config, e.g. "10M")
 - Optional JSONL log, one object per record
 - Module tag injected through LoggerAdapter ('vmpkg_module')
 - Per-level counters
 - Reconfigurable: configure_logging(settings) replaces every handler,
   shutdown_logging() detaches them
"""

from __future__ import annotations

import sys
import json
import time
import logging
import logging.handlers
import threading
from typing import Dict, List, Optional

from vmpkg.config import Settings

_logger = logging.getLogger("vmpkg.logging")

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(vmpkg_module)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(vmpkg_module)s] %(message)s"


# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[35m",    # magenta
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m",  # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg


# ----------------------
# JSONL formatter
# ----------------------
class JSONLineFormatter(logging.Formatter):
    def format(self, record):
        obj = {
            "timestamp": time.time(),
            "level": record.levelname,
            "module": getattr(record, "vmpkg_module", record.name),
            "message": record.getMessage(),
        }
        if record.exc_info:
            obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)


class _ModuleDefaultFilter(logging.Filter):
    """Records from plain getLogger() children get their logger name as module tag."""

    def filter(self, record):
        if not hasattr(record, "vmpkg_module"):
            name = record.name
            record.vmpkg_module = name[len("vmpkg."):] if name.startswith("vmpkg.") else name
        return True


# ----------------------
# VmpkgLogger (singleton)
# ----------------------
class VmpkgLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger("vmpkg")
        self._root.setLevel(logging.DEBUG)  # handlers filter
        self._handlers: List[logging.Handler] = []
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
        self._root.addFilter(self._count_levels_filter)
        self._inited = True

    def _count_levels_filter(self, record):
        name = record.levelname
        if name in self._metrics:
            self._metrics[name] += 1
        return True

    def configure(self, settings: Settings) -> None:
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            console_level = getattr(logging, settings.log_level, logging.INFO)
            if settings.quiet:
                console_level = max(console_level, logging.WARNING)
            if settings.debug:
                console_level = logging.DEBUG

            ch = logging.StreamHandler(sys.stderr)
            ch.setLevel(console_level)
            ch.addFilter(_ModuleDefaultFilter())
            ch.setFormatter(ColorFormatter(DEFAULT_FORMAT, datefmt="%H:%M:%S", color=settings.color))
            self._add(ch)

            if settings.log_file:
                try:
                    settings.log_file.parent.mkdir(parents=True, exist_ok=True)
                    fh = logging.handlers.RotatingFileHandler(
                        str(settings.log_file),
                        maxBytes=settings.log_max_bytes,
                        backupCount=settings.log_backups,
                        encoding="utf-8",
                    )
                    fh.setLevel(logging.DEBUG)
                    fh.addFilter(_ModuleDefaultFilter())
                    fh.setFormatter(logging.Formatter(FILE_FORMAT))
                    self._add(fh)
                except OSError:
                    _logger.exception("logging: failed to configure file handler")

            if settings.log_jsonl:
                try:
                    settings.log_jsonl.parent.mkdir(parents=True, exist_ok=True)
                    jh = logging.FileHandler(str(settings.log_jsonl), encoding="utf-8")
                    jh.setLevel(logging.INFO)
                    jh.setFormatter(JSONLineFormatter())
                    self._add(jh)
                except OSError:
                    _logger.exception("logging: failed to configure jsonl handler")

            _logger.debug("logging: configuration applied (console=%s)", logging.getLevelName(console_level))

    def shutdown(self) -> None:
        """Flush, close and detach every handler installed by configure()."""
        with self._lock:
            for h in list(self._handlers):
                h.flush()
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

    def _add(self, handler: logging.Handler) -> None:
        self._root.addHandler(handler)
        self._handlers.append(handler)

    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'vmpkg_module' into records."""
        return logging.LoggerAdapter(logging.getLogger("vmpkg"), {"vmpkg_module": module_name})

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)


# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = VmpkgLogger()


def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)


def configure_logging(settings: Settings) -> None:
    _GLOBAL_LOGGER.configure(settings)


def shutdown_logging() -> None:
    _GLOBAL_LOGGER.shutdown()


def get_metrics() -> Dict[str, int]:
    return _GLOBAL_LOGGER.get_metrics()
