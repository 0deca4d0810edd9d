"""Exception types raised by n2k-bridge."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for n2k-bridge errors."""


class ConfigurationError(BridgeError):
    """Raised when the configuration file holds an invalid value."""


class DeviceMappingError(ConfigurationError):
    """Raised when device mappings conflict, e.g. a duplicated instance."""
