"""Route the engine's log output into Python logging.

By default the engine prints to stderr. After install_logging_hooks() its
messages go to the ``whisper_bind.engine`` logger instead, so they can be
filtered and formatted like any other log record.
"""

import logging
import threading
from typing import Any, Dict, List, Tuple

from . import _native

engine_logger = logging.getLogger("whisper_bind.engine")

_LEVELS = {
    _native.GGML_LOG_LEVEL_DEBUG: logging.DEBUG,
    _native.GGML_LOG_LEVEL_INFO: logging.INFO,
    _native.GGML_LOG_LEVEL_WARN: logging.WARNING,
    _native.GGML_LOG_LEVEL_ERROR: logging.ERROR,
}

_install_lock = threading.Lock()
# Keyed by id(lib). Entries are never removed: each library keeps a raw
# pointer to its callback for the lifetime of the process.
_installed: Dict[int, Tuple[Any, Any]] = {}


class _EngineLogSink:
    """Reassembles engine log lines.

    The engine may emit a message in several pieces; continuation pieces
    carry the CONT level and inherit the level of the piece before them.
    A record is emitted when a piece ends with a newline.
    """

    def __init__(self, target: logging.Logger):
        self.target = target
        self._parts: List[str] = []
        self._level = logging.INFO
        self._lock = threading.Lock()

    def write(self, ggml_level: int, text: str) -> None:
        with self._lock:
            if ggml_level != _native.GGML_LOG_LEVEL_CONT:
                self._flush()
                self._level = _LEVELS.get(ggml_level, logging.INFO)
            self._parts.append(text)
            if text.endswith("\n"):
                self._flush()

    def _flush(self) -> None:
        message = "".join(self._parts).rstrip("\n")
        self._parts = []
        if message:
            self.target.log(self._level, message)


def install_logging_hooks(lib=None) -> None:
    """Send engine log messages to the ``whisper_bind.engine`` logger.

    Safe to call more than once; later calls for the same library do
    nothing. Each library gets its own callback, kept alive for the
    lifetime of the process.
    """
    lib = lib if lib is not None else _native.get_library()
    with _install_lock:
        if id(lib) in _installed:
            return
        sink = _EngineLogSink(engine_logger)

        def on_log(level, text, user_data):
            try:
                sink.write(level, "" if text is None else text.decode("utf-8", errors="replace"))
            except Exception:
                logging.getLogger(__name__).exception("Failed to forward engine log message")

        callback = _native.LogCallback(on_log)
        _installed[id(lib)] = (lib, callback)
        lib.whisper_log_set(callback, None)
    engine_logger.debug("Engine logging routed to Python")
