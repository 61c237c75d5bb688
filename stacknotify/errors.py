"""Exception types raised by stacknotify."""

from __future__ import annotations


class StacknotifyError(Exception):
    """Base class for stacknotify errors."""


class MessageDecodeError(StacknotifyError):
    """A queue entry could not be turned into a message."""


class ConfigError(StacknotifyError):
    """Configuration is present but invalid."""
