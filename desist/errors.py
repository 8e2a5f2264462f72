"""
Desist - Errors
Failure categories shared by the panic, gesture and stealth components.
"""


class DesistError(Exception):
    """Base class for all Desist errors."""


class PermissionDeniedError(DesistError):
    """A platform capability (location, notifications) was not granted."""


class TransientIOError(DesistError):
    """A network or storage call failed."""


class PlatformTimeoutError(DesistError):
    """A platform call did not complete in bounded time."""


class ConfigurationError(DesistError, ValueError):
    """Invalid configuration handed to a component. Raised at configure time."""
