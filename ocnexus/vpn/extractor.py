"""Turn the helper script's environment into a network configuration."""

import ipaddress
import re
from typing import List, Mapping, Optional

from .exceptions import MalformedParametersError, NoAddressError
from .models import IPv4Block, IPv6Block, NetworkConfiguration, Route, TunnelKey
from ..logging_utility import logger

CONNECT_REASON = "connect"

_LEADING_DIGITS = re.compile(r"\s*\+?(\d+)")


def _parse_prefix(text: str) -> int:
    """Read the prefix length from the leading digits, 0 if there are none."""
    match = _LEADING_DIGITS.match(text)
    return int(match.group(1)) if match else 0


def _check_address(value: str, version: int, key: str) -> None:
    try:
        parsed = ipaddress.ip_address(value)
    except ValueError:
        raise MalformedParametersError(f"{key} is not an IP address: {value!r}")
    if parsed.version != version:
        raise MalformedParametersError(f"{key} is not an IPv{version} address: {value!r}")


def _check_netmask(value: str) -> None:
    try:
        ipaddress.IPv4Network(f"0.0.0.0/{value}")
    except ValueError:
        raise MalformedParametersError(f"INTERNAL_IP4_NETMASK is not a netmask: {value!r}")


def extract_config(
        reason: str,
        params: Mapping[str, str],
        existing_domain: Optional[str] = None,
) -> Optional[NetworkConfiguration]:
    """
    Build the network configuration announced by a notify call.

    Args:
        reason: Notification reason, anything but "connect" means disconnect
        params: Flat key/value environment of the tunnel client
        existing_domain: Domain already configured on the provider

    Returns:
        NetworkConfiguration, or None when the tunnel is going down

    Raises:
        NoAddressError: Neither an IPv4 nor an IPv6 address was announced
        MalformedParametersError: No announced address family can be parsed
    """
    if reason != CONNECT_REASON:
        return None

    domain = existing_domain or None
    gateway = None
    address_v4 = None
    netmask = None
    address_v6 = None
    prefix_length = 0
    nameservers: List[str] = []
    pac = None
    routes: List[Route] = []

    for key, value in params.items():
        known = TunnelKey.classify(key)

        # Unknown values are not ours to log, CSTP options are just long
        if known not in (TunnelKey.CISCO_CSTP_OPTIONS, TunnelKey.UNKNOWN):
            logger.debug(f"{key} = {value}")

        if known is TunnelKey.VPNGATEWAY:
            gateway = value
        elif known is TunnelKey.INTERNAL_IP4_ADDRESS:
            address_v4 = value
        elif known is TunnelKey.INTERNAL_IP4_NETMASK:
            netmask = value
        elif known is TunnelKey.INTERNAL_IP6_ADDRESS:
            address_v6 = value
            prefix_length = 128
        elif known is TunnelKey.INTERNAL_IP6_NETMASK:
            # Carries both the address and the prefix
            address, sep, prefix = value.partition("/")
            if sep:
                address_v6 = address
                prefix_length = _parse_prefix(prefix)
        elif known in (TunnelKey.INTERNAL_IP4_DNS, TunnelKey.INTERNAL_IP6_DNS):
            nameservers.append(value)
        elif known is TunnelKey.CISCO_PROXY_PAC:
            pac = value
        elif known is TunnelKey.CISCO_DEF_DOMAIN:
            if domain is None:
                domain = value
        elif known is TunnelKey.SPLIT_INCLUDE:
            routes.append(Route(key=key, value=value))
        elif known is TunnelKey.UNKNOWN:
            logger.debug(f"Ignoring unknown tunnel parameter {key}")

    logger.debug(f"Tunnel addresses: v4={address_v4} v6={address_v6}")

    if address_v4 is None and address_v6 is None:
        raise NoAddressError("Tunnel parameters carry no IPv4 or IPv6 address")

    ipv4 = None
    ipv6 = None
    errors: List[MalformedParametersError] = []
    if address_v4 is not None:
        try:
            _check_address(address_v4, 4, "INTERNAL_IP4_ADDRESS")
            if netmask is not None:
                _check_netmask(netmask)
            ipv4 = IPv4Block(address=address_v4, netmask=netmask, gateway=gateway)
        except MalformedParametersError as e:
            errors.append(e)
    if address_v6 is not None:
        try:
            _check_address(address_v6, 6, "INTERNAL_IP6_ADDRESS")
            ipv6 = IPv6Block(address=address_v6, prefix_length=prefix_length, gateway=gateway)
        except MalformedParametersError as e:
            errors.append(e)

    if ipv4 is None and ipv6 is None:
        raise errors[0]
    # One good family is enough; drop the other
    for error in errors:
        logger.warning(f"Dropping address family: {str(error)}")

    return NetworkConfiguration(
        ipv4=ipv4,
        ipv6=ipv6,
        nameservers=tuple(nameservers),
        pac=pac,
        domain=domain,
        routes=tuple(routes),
    )
