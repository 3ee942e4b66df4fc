"""Factory for creating tunnel client commands."""

from pathlib import Path
from typing import Optional
from .commands import OPENCONNECT


class VPNCommandFactory:
    """Factory for creating tunnel client commands."""

    @staticmethod
    def start_openconnect(
            host: str,
            interface: str,
            script_path: Path,
            servercert: Optional[str] = None,
            cafile: Optional[str] = None,
            mtu: Optional[str] = None,
            executable: Optional[str] = None,
    ) -> list[str]:
        """
        Create the openconnect start command.

        openconnect parses its options in order, so the layout is fixed:
        pinning and transport options first, then the cookie/script options,
        the interface and finally the bare host.

        Args:
            host: VPN server host
            interface: Tunnel interface name
            script_path: Helper script invoked by openconnect on state changes
            servercert: Server certificate fingerprint to pin
            cafile: CA certificate file
            mtu: MTU to request
            executable: Path of the openconnect binary

        Returns:
            Argument vector
        """
        cmd = OPENCONNECT
        if executable:
            cmd = cmd.with_executable(executable)

        if servercert:
            cmd = cmd.with_option("servercert", servercert)
        if cafile:
            cmd = cmd.with_option("cafile", cafile)
        if mtu:
            cmd = cmd.with_option("mtu", mtu)

        cmd = cmd.with_options(
            syslog=None,
            cookie_on_stdin=None,
            script=str(script_path),
            interface=interface,
        )

        return cmd.with_arg(host).build()
