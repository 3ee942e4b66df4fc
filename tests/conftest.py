import asyncio
import os
import tempfile
from typing import List, Optional

import pytest

os.environ.setdefault("OCNEXUS_LOG_DIR", tempfile.mkdtemp(prefix="ocnexus-logs-"))

from ocnexus.config import DaemonSettings  # noqa: E402
from ocnexus.vpn.agent import AgentChannel, AgentReply  # noqa: E402
from ocnexus.vpn.broker import CredentialBroker  # noqa: E402
from ocnexus.vpn.exceptions import StdinWriteFailedError  # noqa: E402
from ocnexus.vpn.provider import Provider, SettingsStore  # noqa: E402


class FakeAgentChannel(AgentChannel):
    """Agent channel that keeps requests until the test answers them."""

    def __init__(self, registered: bool = True):
        super().__init__()
        if registered:
            self.agent_url = "http://agent.test"
        self.sent: List[tuple] = []

    def send_request(self, request, timeout, callback):
        self.sent.append((request, timeout, callback))

    def reply(self, index: int = -1, error: Optional[str] = None, body=None) -> None:
        _, _, callback = self.sent[index]
        callback(AgentReply(error=error, body=body))


class FakeHandle:
    def __init__(self, provider, on_exit, pid=4242):
        self.provider = provider
        self.on_exit = on_exit
        self.pid = pid
        self.returncode = None
        self.terminated = False

    @property
    def running(self):
        return self.returncode is None

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.terminated = True

    def exit(self, returncode: int) -> None:
        self.returncode = returncode
        self.on_exit(self.provider, returncode)

    async def wait(self):
        return self.returncode


class FakeLauncher:
    """Records launches; raises `error` instead of launching when set. Waits for `gate` first if given."""

    def __init__(self):
        self.launches: List[tuple] = []
        self.handles: List[FakeHandle] = []
        self.error: Optional[Exception] = None
        self.stdin_fails = False
        self.gate: Optional[asyncio.Event] = None

    async def launch(self, provider, cookie, interface_name, on_exit):
        if self.gate is not None:
            await self.gate.wait()
        self.launches.append((provider, cookie, interface_name))
        if self.error is not None:
            raise self.error
        handle = FakeHandle(provider, on_exit)
        self.handles.append(handle)
        if self.stdin_fails:
            raise StdinWriteFailedError("openconnect failed to take cookie on stdin", handle=handle)
        return handle


@pytest.fixture
def provider():
    return Provider("office", {"Host": "vpn.example.com", "Name": "Office"})


@pytest.fixture
def channel():
    return FakeAgentChannel()


@pytest.fixture
def broker(channel):
    return CredentialBroker(channel, timeout=30)


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def settings(tmp_path):
    return DaemonSettings(
        openconnect_binary="openconnect",
        script_path=tmp_path / "ocnexus-notify",
        notify_url="http://127.0.0.1:8000",
        store_path=tmp_path / "providers.conf",
    )


@pytest.fixture
def store(tmp_path):
    return SettingsStore(str(tmp_path / "providers.conf"))
