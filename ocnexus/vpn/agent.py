"""Transport to the interactive agent that hands out credentials."""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

import httpx
from pydantic import BaseModel

from ..logging_utility import logger

ERROR_NO_REPLY = "org.freedesktop.DBus.Error.NoReply"
ERROR_SERVICE_UNKNOWN = "org.freedesktop.DBus.Error.ServiceUnknown"
ERROR_FAILED = "net.connman.vpn.Agent.Error.Failed"


class AgentRequest(BaseModel):
    """RequestInput call: connection path plus the fields to fill in"""
    path: str
    fields: Dict[str, Dict[str, str]]


@dataclass
class AgentReply:
    """Either an error identifier or the reply body"""
    error: Optional[str] = None
    body: Any = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


ReplyCallback = Callable[[AgentReply], None]


class AgentChannel:
    """
    Base agent transport.

    send_request must return at once; the reply callback is called later,
    exactly once, on the event loop.
    """

    def __init__(self):
        self.agent_url: Optional[str] = None

    @property
    def registered(self) -> bool:
        return self.agent_url is not None

    def register(self, url: str) -> None:
        logger.info(f"Agent registered at {url}")
        self.agent_url = url.rstrip("/")

    def unregister(self) -> None:
        logger.info("Agent unregistered")
        self.agent_url = None

    def send_request(self, request: AgentRequest, timeout: float, callback: ReplyCallback) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class HttpAgentChannel(AgentChannel):
    """Agent reached over HTTP: POST <agent>/RequestInput with a JSON body."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self._client = client
        self._tasks: Set[asyncio.Task] = set()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def send_request(self, request: AgentRequest, timeout: float, callback: ReplyCallback) -> None:
        url = f"{self.agent_url}/RequestInput"
        task = asyncio.get_running_loop().create_task(self._round_trip(url, request, timeout, callback))
        # Keep a reference until the reply is delivered
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _round_trip(self, url: str, request: AgentRequest, timeout: float,
                          callback: ReplyCallback) -> None:
        try:
            reply = await self._post(url, request, timeout)
        except asyncio.CancelledError:
            # Shutting down: the waiting side still gets its answer
            callback(AgentReply(error=ERROR_NO_REPLY))
            raise
        callback(reply)

    async def _post(self, url: str, request: AgentRequest, timeout: float) -> AgentReply:
        try:
            response = await self.client.post(url, json=request.model_dump(), timeout=timeout)
        except httpx.TimeoutException:
            logger.warning(f"Agent request to {url} timed out after {timeout}s")
            return AgentReply(error=ERROR_NO_REPLY)
        except httpx.HTTPError as e:
            logger.warning(f"Agent request to {url} failed: {str(e)}")
            return AgentReply(error=ERROR_SERVICE_UNKNOWN)

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            error = body.get("error") if isinstance(body, dict) else None
            return AgentReply(error=error if isinstance(error, str) and error else ERROR_FAILED)
        return AgentReply(body=body)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
