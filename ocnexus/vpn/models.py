"""Data models for VPN management."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class ConnectionState(Enum):
    """Connection attempt state of one provider"""
    IDLE = "idle"
    AWAITING_CREDENTIAL = "awaiting_credential"
    LAUNCHING = "launching"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


class VPNState(Enum):
    """Outcome of a notify call from the tunnel helper script"""
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    FAILURE = "failure"


class ConnectStatus(Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILURE = "failure"


class ErrorKind(Enum):
    """Every way a connection attempt can fail"""
    INVALID_CONFIG = "invalid_config"
    NO_AGENT = "no_agent"
    BUSY = "busy"
    BROKER_TRANSPORT_ERROR = "broker_transport_error"
    NO_CREDENTIAL = "no_credential"
    MISSING_CREDENTIAL = "missing_credential"
    SPAWN_FAILED = "spawn_failed"
    STDIN_WRITE_FAILED = "stdin_write_failed"
    NO_ADDRESS = "no_address"
    MALFORMED_PARAMETERS = "malformed_parameters"
    UNKNOWN = "unknown"


class ProviderError(Enum):
    """Classification of tunnel process exit codes"""
    CONNECT_FAILED = "connect_failed"
    LOGIN_FAILED = "login_failed"
    UNKNOWN = "unknown"


class TunnelKey(Enum):
    """Keys understood in the environment sent by the helper script"""
    VPNGATEWAY = "VPNGATEWAY"
    INTERNAL_IP4_ADDRESS = "INTERNAL_IP4_ADDRESS"
    INTERNAL_IP4_NETMASK = "INTERNAL_IP4_NETMASK"
    INTERNAL_IP4_DNS = "INTERNAL_IP4_DNS"
    INTERNAL_IP6_ADDRESS = "INTERNAL_IP6_ADDRESS"
    INTERNAL_IP6_NETMASK = "INTERNAL_IP6_NETMASK"
    INTERNAL_IP6_DNS = "INTERNAL_IP6_DNS"
    CISCO_PROXY_PAC = "CISCO_PROXY_PAC"
    CISCO_DEF_DOMAIN = "CISCO_DEF_DOMAIN"
    CISCO_CSTP_OPTIONS = "CISCO_CSTP_OPTIONS"
    SPLIT_INCLUDE = "CISCO_SPLIT_INC"
    UNKNOWN = ""

    @classmethod
    def classify(cls, key: str) -> "TunnelKey":
        """
        Map a raw environment key onto a known key.

        Split-include routes are indexed (CISCO_SPLIT_INC_0_ADDR, ...) and
        therefore matched by prefix.

        Args:
            key: Raw key as sent by the helper script

        Returns:
            TunnelKey member, UNKNOWN for anything unrecognized
        """
        if key.startswith(SPLIT_INCLUDE_PREFIXES):
            return cls.SPLIT_INCLUDE
        if not key:
            return cls.UNKNOWN
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN


SPLIT_INCLUDE_PREFIXES = ("CISCO_SPLIT_INC", "CISCO_IPV6_SPLIT_INC")


@dataclass(frozen=True)
class IPv4Block:
    address: str
    netmask: Optional[str] = None
    gateway: Optional[str] = None


@dataclass(frozen=True)
class IPv6Block:
    address: str
    prefix_length: int = 128
    gateway: Optional[str] = None


@dataclass(frozen=True)
class Route:
    """Split-include route entry, kept as the raw key/value pair"""
    key: str
    value: str


@dataclass(frozen=True)
class NetworkConfiguration:
    """Network settings extracted from one connect notification"""
    ipv4: Optional[IPv4Block] = None
    ipv6: Optional[IPv6Block] = None
    nameservers: Tuple[str, ...] = ()
    pac: Optional[str] = None
    domain: Optional[str] = None
    routes: Tuple[Route, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ConnectResult:
    """Result of a connect call, or of the attempt it started"""
    status: ConnectStatus
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not ConnectStatus.FAILURE

    @classmethod
    def in_progress(cls) -> "ConnectResult":
        return cls(ConnectStatus.IN_PROGRESS)

    @classmethod
    def success(cls) -> "ConnectResult":
        return cls(ConnectStatus.SUCCESS)

    @classmethod
    def failure(cls, error: ErrorKind, detail: Optional[str] = None) -> "ConnectResult":
        return cls(ConnectStatus.FAILURE, error, detail)
