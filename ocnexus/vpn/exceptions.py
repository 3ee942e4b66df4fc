"""Custom exceptions for VPN management."""

from .models import ErrorKind


class VPNError(Exception):
    """Base exception for VPN-related errors."""
    kind = ErrorKind.UNKNOWN


class ConfigurationError(VPNError):
    """Raised when there's an issue with VPN configuration"""
    kind = ErrorKind.INVALID_CONFIG


class InvalidConfigError(ConfigurationError):
    """Raised when a required provider setting is missing or unusable"""
    pass


class ProviderNotFoundError(VPNError):
    """Raised when no provider is registered under an identifier"""
    kind = ErrorKind.INVALID_CONFIG


class BrokerError(VPNError):
    """Base exception for credential request failures"""
    pass


class NoAgentError(BrokerError):
    """Raised when no agent is registered to answer a credential request"""
    kind = ErrorKind.NO_AGENT


class BusyError(BrokerError):
    """Raised when a credential request is already pending for the provider"""
    kind = ErrorKind.BUSY


class LaunchError(VPNError):
    """Base exception for tunnel process launch failures"""
    pass


class MissingCredentialError(LaunchError):
    """Raised when launching without a cookie"""
    kind = ErrorKind.MISSING_CREDENTIAL


class SpawnFailedError(LaunchError):
    """Raised when the tunnel client binary cannot be started"""
    kind = ErrorKind.SPAWN_FAILED


class StdinWriteFailedError(LaunchError):
    """Raised when the cookie cannot be handed to the started process"""
    kind = ErrorKind.STDIN_WRITE_FAILED

    def __init__(self, message: str, handle=None):
        super().__init__(message)
        self.handle = handle


class ExtractionError(VPNError):
    """Base exception for tunnel parameter extraction failures"""
    pass


class NoAddressError(ExtractionError):
    """Raised when the tunnel parameters carry no local address"""
    kind = ErrorKind.NO_ADDRESS


class MalformedParametersError(ExtractionError):
    """Raised when an address in the tunnel parameters cannot be parsed"""
    kind = ErrorKind.MALFORMED_PARAMETERS
