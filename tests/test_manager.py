import pytest

from ocnexus.vpn.exceptions import ProviderNotFoundError
from ocnexus.vpn.manager import ConnectionManager
from ocnexus.vpn.models import ConnectionState, ErrorKind, VPNState
from ocnexus.vpn.provider import SettingsStore


@pytest.fixture
def manager(settings, store, channel, launcher):
    manager = ConnectionManager(settings, store=store, channel=channel, launcher=launcher)
    manager.add_provider("office", {"Host": "vpn.example.com", "Name": "Office"})
    manager.add_provider("lab", {"Host": "lab.example.com", "OpenConnect.Cookie": "cached"})
    return manager


def test_providers_loaded_from_store(tmp_path, settings, channel, launcher):
    path = tmp_path / "providers.conf"
    path.write_text(
        "[provider_office]\nHost = vpn.example.com\n\n"
        "[unrelated]\nkey = value\n"
    )

    manager = ConnectionManager(settings, store=SettingsStore(str(path)), channel=channel, launcher=launcher)

    assert list(manager.controllers) == ["office"]
    assert manager.get_provider("office").get_string("Host") == "vpn.example.com"


def test_unknown_provider(manager):
    with pytest.raises(ProviderNotFoundError):
        manager.connect("nowhere")
    with pytest.raises(ProviderNotFoundError):
        manager.notify("nowhere", "connect", {})
    with pytest.raises(ProviderNotFoundError):
        manager.remove_provider("nowhere")


@pytest.mark.asyncio
async def test_interfaces_allocated_per_attempt(manager, channel, launcher):
    manager.connect("office")
    manager.connect("lab")
    await manager.controllers["lab"].drain()

    assert manager.controllers["office"].interface_name == "vpn0"
    assert launcher.launches[0][2] == "vpn1"

    # office gives up its interface once the attempt is over
    channel.reply(error="net.connman.vpn.Agent.Error.Canceled")
    assert manager.allocate_interface() == "vpn0"


@pytest.mark.asyncio
async def test_connect_rejected_when_outstanding(manager):
    manager.connect("office")

    assert manager.connect("office").error is ErrorKind.BUSY


@pytest.mark.asyncio
async def test_notify_and_status(manager, channel):
    manager.connect("office")
    channel.reply(body={"OpenConnect.Cookie": "s3cr3t"})
    await manager.controllers["office"].drain()

    state = manager.notify("office", "connect", {
        "INTERNAL_IP4_ADDRESS": "10.0.0.5",
        "INTERNAL_IP4_DNS": "10.0.0.53",
        "CISCO_SPLIT_INC_0_ADDR": "192.168.10.0",
    })
    status = manager.status("office")

    assert state is VPNState.CONNECT
    assert status["state"] == ConnectionState.CONNECTED.value
    assert status["ipv4"] == "10.0.0.5"
    assert status["nameservers"] == ["10.0.0.53"]
    assert status["routes"] == {"CISCO_SPLIT_INC_0_ADDR": "192.168.10.0"}
    assert status["pid"] == 4242


@pytest.mark.asyncio
async def test_remove_during_cookie_request(manager, channel, launcher):
    manager.connect("office")

    manager.remove_provider("office")
    channel.reply(body={"OpenConnect.Cookie": "s3cr3t"})

    assert "office" not in manager.controllers
    assert launcher.launches == []


def test_save_writes_store(manager, store):
    manager.get_provider("office").set_string("VPN.MTU", "1300")

    manager.save("office")

    assert SettingsStore(str(store.path)).items("provider_office") == {
        "Host": "vpn.example.com",
        "Name": "Office",
        "VPN.MTU": "1300",
    }


def test_saved_provider_survives_restart(manager, store, settings, channel, launcher):
    manager.add_provider("home", {
        "Host": "home.example.com",
        "Name": "Home",
        "VPN.MTU": "1400",
        "OpenConnect.Cookie": "s3cr3t",
    })
    manager.save("home")

    reloaded = ConnectionManager(settings, store=SettingsStore(str(store.path)), channel=channel, launcher=launcher)
    provider = reloaded.get_provider("home")

    assert provider.get_string("Host") == "home.example.com"
    assert provider.get_string("Name") == "Home"
    assert provider.get_string("VPN.MTU") == "1400"
    assert provider.get_string("OpenConnect.Cookie") is None
    assert reloaded.connect("home").ok


@pytest.mark.asyncio
async def test_shutdown_stops_tunnels(manager, launcher):
    manager.connect("lab")
    await manager.controllers["lab"].drain()

    await manager.shutdown()

    assert launcher.handles[0].terminated
