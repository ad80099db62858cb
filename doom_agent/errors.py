class ConfigurationError(Exception):
    """Startup configuration is unusable; the agent must not proceed."""


class ProtocolError(Exception):
    """A message or line arrived that the current state cannot accept."""


class WaiterProtocolError(ProtocolError):
    """A line was fed to a waiter that had already completed."""


class PathSafetyError(ValueError):
    """A config file path is absolute or escapes the working directory."""


class TransportError(OSError):
    """The controller transport is not open or failed mid-operation."""


class ServerNotRunningError(OSError):
    """No live subprocess is available for console I/O."""
