"""Daemon configuration loaded from an INI file."""

import configparser
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CONFIG_FILE = "config/ocnexus.conf"
SECTION = "daemon"


@dataclass
class DaemonSettings:
    openconnect_binary: str = "openconnect"
    script_path: Path = Path("/usr/local/bin/ocnexus-notify")
    # Seconds the agent gets to answer a cookie request
    agent_timeout: float = 120.0
    notify_url: str = "http://127.0.0.1:8000"
    store_path: Path = Path("config/providers.conf")
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def load(cls, config_file: str = None) -> "DaemonSettings":
        """
        Read the [daemon] section; missing file or keys fall back to defaults.

        Args:
            config_file: INI file, defaults to $OCNEXUS_CONFIG or config/ocnexus.conf

        Returns:
            DaemonSettings
        """
        config_file = config_file or os.environ.get("OCNEXUS_CONFIG", DEFAULT_CONFIG_FILE)
        config = configparser.ConfigParser()
        config.read(config_file)

        defaults = cls()
        if not config.has_section(SECTION):
            return defaults

        section = config[SECTION]
        port = section.getint("port", defaults.port)
        return cls(
            openconnect_binary=section.get("openconnect_binary", defaults.openconnect_binary),
            script_path=Path(section.get("script_path", str(defaults.script_path))),
            agent_timeout=section.getfloat("agent_timeout", defaults.agent_timeout),
            notify_url=section.get("notify_url", f"http://{section.get('host', defaults.host)}:{port}"),
            store_path=Path(section.get("store_path", str(defaults.store_path))),
            host=section.get("host", defaults.host),
            port=port,
        )
