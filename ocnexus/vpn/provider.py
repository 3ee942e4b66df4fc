"""Provider settings and their on-disk key/value store."""

import configparser
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import IPv4Block, IPv6Block, NetworkConfiguration, Route
from ..logging_utility import logger

HOST = "Host"
NAME = "Name"
COOKIE = "OpenConnect.Cookie"
SERVER_CERT = "OpenConnect.ServerCert"
CA_CERT = "OpenConnect.CACert"
MTU = "VPN.MTU"
DOMAIN = "VPN.Domain"

# Only these keys are written back by save()
SAVED_KEYS = (SERVER_CERT, CA_CERT, MTU)

SECTION_PREFIX = "provider_"
CONNECTION_PATH = "/net/connman/vpn/connection"


class SettingsStore:
    """INI file holding one section per provider."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self.config = configparser.ConfigParser(interpolation=None)
        # Setting names are case sensitive (OpenConnect.CACert)
        self.config.optionxform = str
        if self.path is not None:
            self.config.read(self.path)

    def sections(self) -> List[str]:
        return self.config.sections()

    def items(self, section: str) -> Dict[str, str]:
        if not self.config.has_section(section):
            return {}
        return dict(self.config.items(section))

    def get(self, section: str, key: str) -> Optional[str]:
        return self.config.get(section, key, fallback=None)

    def set(self, section: str, key: str, value: str) -> None:
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, key, value)

    def remove_section(self, section: str) -> None:
        self.config.remove_section(section)

    def write(self) -> None:
        """Persist the store to its file, if it has one."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            self.config.write(f)


class Provider:
    """A VPN connection's settings plus the configuration last applied to it."""

    def __init__(self, identifier: str, settings: Optional[Dict[str, str]] = None):
        self.identifier = identifier
        self.settings: Dict[str, str] = dict(settings or {})
        self.ipv4: Optional[IPv4Block] = None
        self.ipv6: Optional[IPv6Block] = None
        self.domain: Optional[str] = None
        self.nameservers: Tuple[str, ...] = ()
        self.pac: Optional[str] = None
        self.routes: Tuple[Route, ...] = ()

    @classmethod
    def from_store(cls, store: SettingsStore, section: str) -> "Provider":
        identifier = section[len(SECTION_PREFIX):] if section.startswith(SECTION_PREFIX) else section
        return cls(identifier, store.items(section))

    @property
    def path(self) -> str:
        return f"{CONNECTION_PATH}/{self.identifier}"

    @property
    def save_group(self) -> str:
        return f"{SECTION_PREFIX}{self.identifier}"

    def get_string(self, key: str) -> Optional[str]:
        return self.settings.get(key) or None

    def set_string(self, key: str, value: str) -> None:
        self.settings[key] = value

    def apply(self, config: NetworkConfiguration) -> None:
        """Record a freshly extracted network configuration."""
        self.ipv4 = config.ipv4
        self.ipv6 = config.ipv6
        self.domain = config.domain
        self.nameservers = config.nameservers
        self.pac = config.pac
        self.routes = config.routes
        logger.info(
            f"Provider {self.identifier}: applied v4={config.ipv4} v6={config.ipv6} "
            f"domain={config.domain} routes={len(config.routes)}"
        )

    def clear_configuration(self) -> None:
        """Forget the configuration of a tunnel that went away."""
        self.ipv4 = None
        self.ipv6 = None
        self.domain = None
        self.nameservers = ()
        self.pac = None
        self.routes = ()

    def save(self, store: SettingsStore) -> None:
        """Write the persisted subset of settings into the store."""
        for key in SAVED_KEYS:
            value = self.get_string(key)
            if value is not None:
                store.set(self.save_group, key, value)

    def __repr__(self) -> str:
        return f"Provider({self.identifier!r}, host={self.get_string(HOST)!r})"
