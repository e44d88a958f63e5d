"""Exception types raised by the menu tester core."""

from __future__ import annotations


class MenuTesterError(Exception):
    """Base class for menu tester errors."""


class ConfigError(MenuTesterError):
    """Configuration is missing or invalid."""


class SessionCorrupt(MenuTesterError):
    """A session snapshot is missing, unreadable or structurally invalid.

    Fatal to a resume attempt, never to a fresh run.
    """


class PersistenceFailure(MenuTesterError):
    """Writing a durable document failed.

    Raised internally and always caught by the writer; the in-memory state
    stays authoritative.
    """


class CapabilityError(MenuTesterError):
    """A browser/perception capability call failed or returned garbage."""
