"""Version of the bundled utility library."""

MAJOR_VERSION = 0
MINOR_VERSION = 12
MICRO_VERSION = 99
VERSION = "0.12.99"
VERSION_NUM = (MAJOR_VERSION << 16) | (MINOR_VERSION << 8) | MICRO_VERSION


def version() -> str:
    """Version as a dotted string."""
    return VERSION


def version_num() -> int:
    """Version packed as major << 16 | minor << 8 | micro."""
    return VERSION_NUM