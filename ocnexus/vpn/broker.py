"""Ask the agent for the session cookie of a provider."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .agent import AgentChannel, AgentReply, AgentRequest
from .exceptions import BusyError, NoAgentError
from .provider import COOKIE, HOST, NAME, Provider
from ..logging_utility import logger

DEFAULT_TIMEOUT = 120.0

# continuation(provider, cookie, error, context)
Continuation = Callable[[Provider, Optional[str], Optional[str], Any], None]


@dataclass
class PendingCredentialRequest:
    provider: Provider
    continuation: Continuation
    context: Any = None


def _cookie_field() -> Dict[str, str]:
    return {"Type": "string", "Requirement": "mandatory"}


def _informational_field(value: Optional[str]) -> Dict[str, str]:
    return {"Type": "string", "Requirement": "informational", "Value": value or ""}


def build_request(provider: Provider) -> AgentRequest:
    """Compose the RequestInput call for a provider's cookie."""
    return AgentRequest(
        path=provider.path,
        fields={
            COOKIE: _cookie_field(),
            HOST: _informational_field(provider.get_string(HOST)),
            NAME: _informational_field(provider.get_string(NAME)),
        },
    )


def parse_cookie(body: Any) -> Optional[str]:
    """
    Find the cookie in a reply body.

    Scanning stops at the first structurally wrong entry; whatever was found
    before it is kept.
    """
    if not isinstance(body, dict):
        return None

    cookie = None
    for key, value in body.items():
        if not isinstance(key, str):
            break
        if key == COOKIE:
            if not isinstance(value, str):
                break
            cookie = value
    return cookie


class CredentialBroker:
    """Issues cookie requests and routes each reply to its continuation."""

    def __init__(self, channel: AgentChannel, timeout: float = DEFAULT_TIMEOUT):
        self.channel = channel
        self.timeout = timeout
        self._pending: Dict[str, PendingCredentialRequest] = {}

    def is_pending(self, provider: Provider) -> bool:
        return provider.identifier in self._pending

    def request_credential(
            self,
            provider: Provider,
            continuation: Continuation,
            context: Any = None,
    ) -> PendingCredentialRequest:
        """
        Send a cookie request to the agent without waiting for the answer.

        Args:
            provider: Provider the cookie is for
            continuation: Called once with (provider, cookie, error, context)
            context: Opaque value handed back to the continuation

        Returns:
            The pending request

        Raises:
            NoAgentError: Missing provider or continuation, or no agent registered
            BusyError: A request for this provider is already pending
        """
        if provider is None or continuation is None or not self.channel.registered:
            raise NoAgentError("No agent available to request a cookie")

        if provider.identifier in self._pending:
            raise BusyError(f"Cookie request already pending for {provider.identifier}")

        pending = PendingCredentialRequest(provider, continuation, context)
        self._pending[provider.identifier] = pending

        logger.debug(f"Requesting cookie for {provider.identifier} at {provider.path}")
        try:
            self.channel.send_request(
                build_request(provider),
                self.timeout,
                lambda reply: self._on_reply(pending, reply),
            )
        except Exception:
            self._pending.pop(provider.identifier, None)
            raise

        return pending

    def _on_reply(self, pending: PendingCredentialRequest, reply: AgentReply) -> None:
        cookie = None
        error = None
        if reply.is_error:
            error = reply.error
        else:
            cookie = parse_cookie(reply.body)

        if cookie is None:
            logger.info(f"No cookie for {pending.provider.identifier}, error {error}")

        try:
            pending.continuation(pending.provider, cookie, error, pending.context)
        except Exception as e:
            logger.error(f"Cookie continuation for {pending.provider.identifier} failed: {str(e)}")
        finally:
            if self._pending.get(pending.provider.identifier) is pending:
                del self._pending[pending.provider.identifier]
