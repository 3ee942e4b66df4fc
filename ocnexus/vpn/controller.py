"""Per-provider connection state machine."""

import asyncio
from typing import Any, Callable, Coroutine, Mapping, Optional, Set

from .broker import CredentialBroker
from .exceptions import BrokerError, ExtractionError, StdinWriteFailedError, VPNError
from .extractor import extract_config
from .launcher import ProcessHandle, ProcessLauncher
from .models import ConnectionState, ConnectResult, ErrorKind, ProviderError, VPNState
from .provider import COOKIE, DOMAIN, HOST, Provider, SettingsStore
from ..logging_utility import logger

# callback(provider, result), called once with the terminal result of an attempt
ConnectCallback = Callable[[Provider, ConnectResult], None]
# listener(provider, returncode, classification)
ExitListener = Callable[[Provider, int, Optional[ProviderError]], None]

_OUTSTANDING = (ConnectionState.AWAITING_CREDENTIAL, ConnectionState.LAUNCHING)


class ConnectionController:
    """
    Drives one provider from connect to a running, configured tunnel.

    IDLE -> AWAITING_CREDENTIAL -> LAUNCHING -> CONNECTED | FAILED | DISCONNECTED

    All methods run on the event loop. The cookie request and the process
    exit are the only suspension points; both come back through callbacks.
    """

    def __init__(
            self,
            provider: Provider,
            broker: CredentialBroker,
            launcher: ProcessLauncher,
            exit_listener: Optional[ExitListener] = None,
    ):
        self.provider = provider
        self.broker = broker
        self.launcher = launcher
        self.exit_listener = exit_listener
        self.state = ConnectionState.IDLE
        self.alive = True
        self.process: Optional[ProcessHandle] = None
        self.interface_name: Optional[str] = None
        self.last_result: Optional[ConnectResult] = None
        self.last_error: Optional[ErrorKind] = None
        self.exit_error: Optional[ProviderError] = None
        # Set when we terminated the process ourselves
        self.stop_requested = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        if self.state in _OUTSTANDING:
            return True
        return self.process is not None and self.process.running

    def connect(self, interface_name: str, callback: Optional[ConnectCallback] = None) -> ConnectResult:
        """
        Start a connection attempt.

        Args:
            interface_name: Tunnel interface for this attempt
            callback: Receives the terminal result when the attempt goes asynchronous

        Returns:
            IN_PROGRESS, or FAILURE when the attempt is rejected right away
        """
        if not self.alive:
            return ConnectResult.failure(ErrorKind.INVALID_CONFIG, "provider removed")

        if self.busy:
            logger.warning(f"Connect for {self.provider.identifier} rejected, attempt outstanding ({self.state.value})")
            return ConnectResult.failure(ErrorKind.BUSY, "connection attempt already outstanding")

        if not self.provider.get_string(HOST):
            logger.error("Host not set; cannot enable VPN")
            return self._fail_now(ErrorKind.INVALID_CONFIG, "Host not set")

        self.interface_name = interface_name
        self.last_error = None
        self.exit_error = None
        self.stop_requested = False

        cookie = self.provider.get_string(COOKIE)
        if cookie:
            logger.info(f"Using cached cookie for {self.provider.identifier}")
            self.state = ConnectionState.LAUNCHING
            self._schedule(self._launch(cookie, interface_name, callback))
            return ConnectResult.in_progress()

        self.state = ConnectionState.AWAITING_CREDENTIAL
        try:
            self.broker.request_credential(self.provider, self._on_credential, (interface_name, callback))
        except BrokerError as e:
            logger.error(f"Cookie request for {self.provider.identifier} failed: {str(e)}")
            return self._fail_now(e.kind, str(e))

        return ConnectResult.in_progress()

    def _fail_now(self, kind: ErrorKind, detail: str) -> ConnectResult:
        self.state = ConnectionState.FAILED
        self.last_error = kind
        self.last_result = ConnectResult.failure(kind, detail)
        return self.last_result

    def _on_credential(self, provider: Provider, cookie: Optional[str], error: Optional[str], context: Any) -> None:
        interface_name, callback = context

        if not self.alive:
            logger.info(f"Provider {provider.identifier} removed while waiting for its cookie")
            return
        if self.state is not ConnectionState.AWAITING_CREDENTIAL:
            logger.info(f"Dropping cookie reply for {provider.identifier}, attempt was abandoned")
            return

        if cookie is None:
            logger.info(f"Requesting cookie failed, error {error}")
            kind = ErrorKind.BROKER_TRANSPORT_ERROR if error else ErrorKind.NO_CREDENTIAL
            self._finish(callback, ConnectResult.failure(kind, error))
            return

        provider.set_string(COOKIE, cookie)
        self.state = ConnectionState.LAUNCHING
        self._schedule(self._launch(cookie, interface_name, callback))

    async def _launch(self, cookie: str, interface_name: str, callback: Optional[ConnectCallback]) -> None:
        try:
            handle = await self.launcher.launch(self.provider, cookie, interface_name, self._on_exit)
        except StdinWriteFailedError as e:
            # Started but unusable; the exit hook reaps it
            self.process = e.handle
            if not self._launching:
                self._stop(e.handle)
                return
            e.handle.terminate()
            self._finish(callback, ConnectResult.failure(e.kind, str(e)))
            return
        except VPNError as e:
            self._launch_failed(callback, e.kind, str(e))
            return
        except Exception as e:
            logger.error(f"Launching openconnect for {self.provider.identifier} failed: {str(e)}")
            self._launch_failed(callback, ErrorKind.UNKNOWN, str(e))
            return

        self.process = handle
        if not self._launching:
            logger.info(f"Attempt for {self.provider.identifier} abandoned during launch, stopping openconnect")
            self._stop(handle)
            return

        logger.info(f"openconnect running for {self.provider.identifier} (pid {handle.pid})")
        self.last_result = ConnectResult.success()
        self._report(callback, self.last_result)

    @property
    def _launching(self) -> bool:
        # False once teardown or disconnect abandoned the attempt
        return self.alive and self.state is ConnectionState.LAUNCHING

    def _launch_failed(self, callback: Optional[ConnectCallback], kind: ErrorKind, detail: str) -> None:
        if not self._launching:
            logger.info(f"Abandoned launch for {self.provider.identifier} failed: {detail}")
            return
        self._finish(callback, ConnectResult.failure(kind, detail))

    def _stop(self, handle: ProcessHandle) -> None:
        self.stop_requested = True
        handle.terminate()

    def _finish(self, callback: Optional[ConnectCallback], result: ConnectResult) -> None:
        self.state = ConnectionState.FAILED
        self.last_error = result.error
        self.last_result = result
        self._report(callback, result)

    def _report(self, callback: Optional[ConnectCallback], result: ConnectResult) -> None:
        if callback is None:
            return
        try:
            callback(self.provider, result)
        except Exception as e:
            logger.error(f"Connect callback for {self.provider.identifier} failed: {str(e)}")

    def _on_exit(self, provider: Provider, returncode: int) -> None:
        self.process = None
        provider.clear_configuration()
        classification = None
        if self.stop_requested:
            self.stop_requested = False
            self.state = ConnectionState.DISCONNECTED
            logger.info(f"openconnect for {provider.identifier} stopped ({returncode})")
        elif returncode == 0:
            if self.state is not ConnectionState.FAILED:
                self.state = ConnectionState.DISCONNECTED
        else:
            classification = self.classify_exit(returncode)
            self.exit_error = classification
            self.state = ConnectionState.FAILED
            logger.warning(f"openconnect for {provider.identifier} exited with {returncode} ({classification.value})")
            if classification is ProviderError.LOGIN_FAILED:
                # The server refused the cookie; the next attempt must ask again
                provider.settings.pop(COOKIE, None)

        if self.exit_listener is not None and self.alive:
            self.exit_listener(provider, returncode, classification)

    def notify(self, reason: str, params: Mapping[str, str]) -> VPNState:
        """
        Handle a state change reported by the helper script.

        Args:
            reason: "connect" when the tunnel is up, anything else when it goes down
            params: Environment of the tunnel client

        Returns:
            VPNState outcome
        """
        if not self.alive:
            logger.error(f"Notify for removed provider {self.provider.identifier}")
            return VPNState.FAILURE

        try:
            config = extract_config(reason, params, self.provider.get_string(DOMAIN))
        except ExtractionError as e:
            logger.error(f"Bad tunnel parameters for {self.provider.identifier}: {str(e)}")
            self.state = ConnectionState.FAILED
            self.last_error = e.kind
            return VPNState.FAILURE

        if config is None:
            logger.info(f"Tunnel for {self.provider.identifier} going down ({reason})")
            self.provider.clear_configuration()
            self.state = ConnectionState.DISCONNECTED
            return VPNState.DISCONNECT

        self.provider.apply(config)
        self.state = ConnectionState.CONNECTED
        return VPNState.CONNECT

    @staticmethod
    def classify_exit(exit_code: int) -> ProviderError:
        """Map an openconnect exit code onto a provider error."""
        if exit_code == 1:
            return ProviderError.CONNECT_FAILED
        if exit_code == 2:
            return ProviderError.LOGIN_FAILED
        return ProviderError.UNKNOWN

    def save(self, store: SettingsStore) -> None:
        self.provider.save(store)

    def disconnect(self) -> None:
        """Stop the tunnel client, if one is running."""
        if self.process is not None:
            logger.info(f"Stopping openconnect for {self.provider.identifier}")
            self._stop(self.process)
        if self.state is not ConnectionState.IDLE:
            self.state = ConnectionState.DISCONNECTED

    def teardown(self) -> None:
        """
        Forget the provider.

        A cookie request still in flight is left to complete; its
        continuation sees the controller is gone and does nothing.
        """
        self.alive = False
        self.disconnect()

    def _schedule(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for scheduled launch work to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
