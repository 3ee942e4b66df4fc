"""OpenConnect provider management implementation."""

import asyncio
from typing import Any, Dict, List, Mapping, Optional

from .agent import AgentChannel, HttpAgentChannel
from .broker import CredentialBroker
from .controller import ConnectCallback, ConnectionController
from .exceptions import ProviderNotFoundError
from .launcher import ProcessLauncher
from .models import ConnectResult, ProviderError, VPNState
from .provider import DOMAIN, HOST, NAME, SECTION_PREFIX, Provider, SettingsStore
from ..config import DaemonSettings
from ..logging_utility import logger

INTERFACE_PREFIX = "vpn"
# Seconds a tunnel gets to exit after SIGTERM on shutdown
SHUTDOWN_GRACE = 5.0
# Written by the manager on save; the driver persists only its own keys
MANAGER_KEYS = (HOST, NAME, DOMAIN)


class ConnectionManager:
    def __init__(
            self,
            settings: DaemonSettings,
            store: Optional[SettingsStore] = None,
            channel: Optional[AgentChannel] = None,
            launcher: Optional[ProcessLauncher] = None,
    ):
        self.settings = settings
        self.store = store if store is not None else SettingsStore(str(settings.store_path))
        self.channel = channel if channel is not None else HttpAgentChannel()
        self.broker = CredentialBroker(self.channel, settings.agent_timeout)
        self.launcher = launcher if launcher is not None else ProcessLauncher(settings)
        self.controllers: Dict[str, ConnectionController] = {}
        self._load_providers()

    def _load_providers(self) -> None:
        for section in self.store.sections():
            if not section.startswith(SECTION_PREFIX):
                continue
            provider = Provider.from_store(self.store, section)
            self.controllers[provider.identifier] = self._create_controller(provider)
            logger.info(f"Loaded provider {provider.identifier} ({provider.get_string(HOST)})")

    def _create_controller(self, provider: Provider) -> ConnectionController:
        return ConnectionController(provider, self.broker, self.launcher, exit_listener=self._on_exit)

    def _controller(self, identifier: str) -> ConnectionController:
        try:
            return self.controllers[identifier]
        except KeyError:
            raise ProviderNotFoundError(f"No provider {identifier}")

    def get_provider(self, identifier: str) -> Provider:
        return self._controller(identifier).provider

    def add_provider(self, identifier: str, settings: Mapping[str, str]) -> Provider:
        """
        Register a provider, replacing any existing one with that identifier.

        Args:
            identifier: Provider identifier
            settings: Initial settings (Host, Name, OpenConnect.*, VPN.*)

        Returns:
            The new Provider
        """
        if identifier in self.controllers:
            self.remove_provider(identifier)
        provider = Provider(identifier, dict(settings))
        self.controllers[identifier] = self._create_controller(provider)
        logger.info(f"Added provider {identifier} ({provider.get_string(HOST)})")
        return provider

    def remove_provider(self, identifier: str) -> None:
        controller = self.controllers.pop(identifier, None)
        if controller is None:
            raise ProviderNotFoundError(f"No provider {identifier}")
        controller.teardown()
        logger.info(f"Removed provider {identifier}")

    def allocate_interface(self) -> str:
        """Lowest vpnN not held by an outstanding attempt."""
        in_use = {
            c.interface_name for c in self.controllers.values()
            if c.busy and c.interface_name
        }
        index = 0
        while f"{INTERFACE_PREFIX}{index}" in in_use:
            index += 1
        return f"{INTERFACE_PREFIX}{index}"

    def connect(self, identifier: str, callback: Optional[ConnectCallback] = None) -> ConnectResult:
        controller = self._controller(identifier)
        if controller.busy:
            return controller.connect(controller.interface_name, callback)

        interface_name = self.allocate_interface()
        logger.info(f"Connecting {identifier} on {interface_name}")
        return controller.connect(interface_name, callback or self._log_result)

    def notify(self, identifier: str, reason: str, env: Mapping[str, str]) -> VPNState:
        state = self._controller(identifier).notify(reason, env)
        logger.info(f"Notify {identifier}: {reason} -> {state.value}")
        return state

    def disconnect(self, identifier: str) -> None:
        self._controller(identifier).disconnect()

    def save(self, identifier: str) -> None:
        controller = self._controller(identifier)
        provider = controller.provider
        for key in MANAGER_KEYS:
            value = provider.get_string(key)
            if value is not None:
                self.store.set(provider.save_group, key, value)
        controller.save(self.store)
        self.store.write()

    def classify_exit(self, exit_code: int) -> ProviderError:
        return ConnectionController.classify_exit(exit_code)

    def status(self, identifier: str) -> Dict[str, Any]:
        controller = self._controller(identifier)
        provider = controller.provider
        return {
            "identifier": provider.identifier,
            "name": provider.get_string(NAME),
            "host": provider.get_string(HOST),
            "state": controller.state.value,
            "interface": controller.interface_name,
            "pending_credential": self.broker.is_pending(provider),
            "pid": controller.process.pid if controller.process is not None else None,
            "last_error": controller.last_error.value if controller.last_error else None,
            "exit_error": controller.exit_error.value if controller.exit_error else None,
            "ipv4": provider.ipv4.address if provider.ipv4 else None,
            "ipv6": provider.ipv6.address if provider.ipv6 else None,
            "domain": provider.domain,
            "nameservers": list(provider.nameservers),
            "pac": provider.pac,
            "routes": {route.key: route.value for route in provider.routes},
        }

    def list_providers(self) -> List[Dict[str, Any]]:
        return [self.status(identifier) for identifier in self.controllers]

    @staticmethod
    def _log_result(provider: Provider, result: ConnectResult) -> None:
        if result.ok:
            logger.info(f"Connect for {provider.identifier}: {result.status.value}")
        else:
            logger.error(f"Connect for {provider.identifier} failed: {result.error.value} {result.detail or ''}")

    def _on_exit(self, provider: Provider, returncode: int, classification: Optional[ProviderError]) -> None:
        if classification is not None:
            logger.error(f"Tunnel for {provider.identifier} failed: {classification.value}")

    async def shutdown(self) -> None:
        """Stop every tunnel and close the agent channel."""
        for controller in self.controllers.values():
            controller.disconnect()
        for controller in self.controllers.values():
            handle = controller.process
            if handle is None:
                continue
            try:
                await asyncio.wait_for(handle.wait(), SHUTDOWN_GRACE)
            except asyncio.TimeoutError:
                logger.warning(f"openconnect (pid {handle.pid}) ignored SIGTERM, killing it")
                handle.kill()
                await handle.wait()
        await self.channel.aclose()
        logger.info("Connection manager shut down")
