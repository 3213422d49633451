"""Process-wide diagnostic messages, to the console or to syslog."""

from __future__ import annotations

import sys

try:
    import syslog as _syslog
except ImportError:  # not available on every platform
    _syslog = None

_state = {"debug": False, "syslog": False}


def set_debug(enabled) -> None:
    """Turn debug messages on or off."""
    _state["debug"] = bool(enabled)


def get_debug() -> bool:
    """Whether debug messages are shown."""
    return _state["debug"]


def set_syslog(enabled) -> None:
    """Send messages to syslog instead of the console where syslog exists."""
    _state["syslog"] = bool(enabled)


def _format(msg: str, args: tuple) -> str:
    return msg % args if args else msg


def _emit(priority_name: str, stream, msg: str, args: tuple) -> None:
    text = _format(msg, args)
    if _state["syslog"] and _syslog is not None:
        _syslog.syslog(getattr(_syslog, priority_name), text)
    else:
        stream.write(text)
        stream.flush()


def debug(msg: str, *args) -> None:
    """Write a printf-style message to standard output when debugging is on."""
    if _state["debug"]:
        _emit("LOG_DEBUG", sys.stdout, msg, args)


def error(msg: str, *args) -> None:
    """Write a printf-style message to standard error."""
    _emit("LOG_ERR", sys.stderr, msg, args)


def info(msg: str, *args) -> None:
    """Write a printf-style message to standard error."""
    _emit("LOG_INFO", sys.stderr, msg, args)