"""Spawn and supervise the openconnect process."""

import asyncio
import os
from typing import Callable, Dict, List, Optional

from .command_factory import VPNCommandFactory
from .commands import CommandError
from .exceptions import (
    InvalidConfigError,
    MissingCredentialError,
    SpawnFailedError,
    StdinWriteFailedError,
)
from .provider import CA_CERT, HOST, MTU, SERVER_CERT, Provider
from ..config import DaemonSettings
from ..logging_utility import logger

# on_exit(provider, returncode)
ExitHook = Callable[[Provider, int], None]


class ProcessHandle:
    """A running tunnel client and the task waiting for it to exit."""

    def __init__(self, provider: Provider, process: asyncio.subprocess.Process, on_exit: ExitHook):
        self.provider = provider
        self.process = process
        self._on_exit = on_exit
        self.returncode: Optional[int] = None
        self.watcher = asyncio.get_running_loop().create_task(self._watch())

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.returncode is None

    async def _watch(self) -> None:
        returncode = await self.process.wait()
        self.returncode = returncode
        logger.info(f"openconnect (pid {self.pid}) for {self.provider.identifier} exited with {returncode}")
        try:
            self._on_exit(self.provider, returncode)
        except Exception as e:
            logger.error(f"Exit hook for {self.provider.identifier} failed: {str(e)}")

    def terminate(self) -> None:
        """Ask the process to stop; the watcher reaps it."""
        if not self.running:
            return
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        if not self.running:
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int:
        await asyncio.shield(self.watcher)
        return self.returncode


class ProcessLauncher:
    """Builds the openconnect command line and starts it with the cookie on stdin."""

    def __init__(self, settings: DaemonSettings):
        self.settings = settings

    def build_command(self, provider: Provider, interface_name: str) -> List[str]:
        if not provider.get_string(HOST):
            raise InvalidConfigError("Host not set; cannot enable VPN")
        try:
            return VPNCommandFactory.start_openconnect(
                host=provider.get_string(HOST),
                interface=interface_name,
                script_path=self.settings.script_path,
                servercert=provider.get_string(SERVER_CERT),
                cafile=provider.get_string(CA_CERT),
                mtu=provider.get_string(MTU),
                executable=self.settings.openconnect_binary,
            )
        except CommandError as e:
            raise InvalidConfigError(f"Cannot build openconnect command: {str(e)}")

    def build_environment(self, provider: Provider, interface_name: str) -> Dict[str, str]:
        """Environment of the child; the helper script finds the daemon through it."""
        env = dict(os.environ)
        env.update(
            OCNEXUS_NOTIFY_URL=self.settings.notify_url,
            OCNEXUS_PROVIDER=provider.identifier,
            OCNEXUS_INTERFACE=interface_name,
        )
        return env

    async def launch(
            self,
            provider: Provider,
            cookie: Optional[str],
            interface_name: str,
            on_exit: ExitHook,
    ) -> ProcessHandle:
        """
        Start openconnect for a provider and hand it the cookie.

        Args:
            provider: Provider to connect
            cookie: Session cookie from the agent or the cache
            interface_name: Tunnel interface for openconnect to create
            on_exit: Called once with (provider, returncode) when the process ends

        Returns:
            ProcessHandle of the running process

        Raises:
            MissingCredentialError: No cookie, nothing was spawned
            InvalidConfigError: Settings cannot be turned into a command line
            SpawnFailedError: The process could not be started
            StdinWriteFailedError: The process started but did not take the cookie
        """
        if not cookie:
            raise MissingCredentialError("Cookie missing, cannot connect")

        cmd = self.build_command(provider, interface_name)
        logger.info(f"Starting openconnect for {provider.identifier}: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                env=self.build_environment(provider, interface_name),
            )
        except OSError as e:
            logger.error(f"openconnect failed to start: {str(e)}")
            raise SpawnFailedError(f"openconnect failed to start: {str(e)}")

        handle = ProcessHandle(provider, process, on_exit)

        try:
            process.stdin.write(cookie.encode() + b"\n")
            await process.stdin.drain()
        except (OSError, RuntimeError) as e:
            logger.error(f"openconnect failed to take cookie on stdin: {str(e)}")
            raise StdinWriteFailedError("openconnect failed to take cookie on stdin", handle=handle)

        return handle
