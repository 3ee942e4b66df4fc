import asyncio
import stat

import pytest

from ocnexus.vpn.exceptions import (
    InvalidConfigError,
    MissingCredentialError,
    SpawnFailedError,
    StdinWriteFailedError,
)
from ocnexus.vpn.launcher import ProcessLauncher
from ocnexus.vpn.models import ErrorKind


def fake_openconnect(tmp_path, exit_code=0):
    """Shell stand-in that stores its stdin line and arguments, then exits."""
    script = tmp_path / "openconnect"
    script.write_text(
        "#!/bin/sh\n"
        "read cookie\n"
        f"printf '%s' \"$cookie\" > {tmp_path}/cookie\n"
        f"printf '%s\\n' \"$@\" > {tmp_path}/args\n"
        f"printf '%s' \"$OCNEXUS_PROVIDER\" > {tmp_path}/provider\n"
        f"exit {exit_code}\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return script


class ExitRecorder:
    def __init__(self):
        self.calls = []
        self.done = asyncio.Event()

    def __call__(self, provider, returncode):
        self.calls.append((provider, returncode))
        self.done.set()


@pytest.mark.asyncio
async def test_launch_writes_cookie_and_reports_exit(tmp_path, settings, provider):
    settings.openconnect_binary = str(fake_openconnect(tmp_path, exit_code=2))
    provider.set_string("VPN.MTU", "1400")
    on_exit = ExitRecorder()

    handle = await ProcessLauncher(settings).launch(provider, "s3cr3t", "vpn0", on_exit)
    await asyncio.wait_for(on_exit.done.wait(), 10)

    assert on_exit.calls == [(provider, 2)]
    assert not handle.running
    assert (tmp_path / "cookie").read_text() == "s3cr3t"
    assert (tmp_path / "provider").read_text() == "office"
    assert (tmp_path / "args").read_text().split("\n")[:-1] == [
        "--mtu", "1400",
        "--syslog",
        "--cookie-on-stdin",
        "--script", str(settings.script_path),
        "--interface", "vpn0",
        "vpn.example.com",
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("cookie", [None, ""])
async def test_missing_cookie_never_spawns(monkeypatch, settings, provider, cookie):
    async def spawn(*args, **kwargs):
        raise AssertionError("must not spawn")

    monkeypatch.setattr(asyncio, "create_subprocess_exec", spawn)

    with pytest.raises(MissingCredentialError) as excinfo:
        await ProcessLauncher(settings).launch(provider, cookie, "vpn0", lambda p, c: None)
    assert excinfo.value.kind is ErrorKind.MISSING_CREDENTIAL


@pytest.mark.asyncio
async def test_missing_binary(tmp_path, settings, provider):
    settings.openconnect_binary = str(tmp_path / "does-not-exist")

    with pytest.raises(SpawnFailedError):
        await ProcessLauncher(settings).launch(provider, "s3cr3t", "vpn0", lambda p, c: None)


@pytest.mark.asyncio
async def test_bad_mtu_is_invalid_config(settings, provider):
    provider.set_string("VPN.MTU", "jumbo")

    with pytest.raises(InvalidConfigError):
        await ProcessLauncher(settings).launch(provider, "s3cr3t", "vpn0", lambda p, c: None)


class BrokenStdin:
    def write(self, data):
        raise BrokenPipeError("closed")

    async def drain(self):
        pass


class StubProcess:
    pid = 999

    def __init__(self):
        self.stdin = BrokenStdin()
        self.terminated = False
        self._exited = asyncio.Event()

    async def wait(self):
        await self._exited.wait()
        return -15

    def terminate(self):
        self.terminated = True
        self._exited.set()


@pytest.mark.asyncio
async def test_stdin_failure_hands_back_process(monkeypatch, settings, provider):
    process = StubProcess()

    async def spawn(*args, **kwargs):
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", spawn)
    on_exit = ExitRecorder()

    with pytest.raises(StdinWriteFailedError) as excinfo:
        await ProcessLauncher(settings).launch(provider, "s3cr3t", "vpn0", on_exit)

    handle = excinfo.value.handle
    assert handle.running
    handle.terminate()
    assert await handle.wait() == -15
    assert process.terminated
    assert on_exit.calls == [(provider, -15)]
