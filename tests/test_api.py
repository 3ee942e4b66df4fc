import pytest
from fastapi.testclient import TestClient

from ocnexus.main import create_app
from ocnexus.vpn.manager import ConnectionManager


@pytest.fixture
def manager(settings, store, channel, launcher):
    manager = ConnectionManager(settings, store=store, channel=channel, launcher=launcher)
    manager.add_provider("office", {"Host": "vpn.example.com", "Name": "Office"})
    return manager


@pytest.fixture
def client(manager):
    with TestClient(create_app(manager)) as client:
        yield client


def test_agent_registration(client, manager):
    response = client.post("/agent", json={"url": "http://127.0.0.1:9100/"})

    assert response.status_code == 200
    assert manager.channel.agent_url == "http://127.0.0.1:9100"

    assert client.delete("/agent").status_code == 200
    assert not manager.channel.registered


def test_connect_goes_to_agent(client, channel):
    response = client.post("/providers/office/connect")

    assert response.status_code == 202
    assert response.json() == {"status": "in_progress"}
    assert len(channel.sent) == 1
    status = client.get("/providers/office").json()
    assert status["state"] == "awaiting_credential"
    assert status["pending_credential"] is True
    assert status["interface"] == "vpn0"


def test_connect_without_agent(client, channel):
    channel.unregister()

    response = client.post("/providers/office/connect")

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "no_agent"


def test_connect_without_host(client):
    client.put("/providers/bare", json={"settings": {"Name": "Bare"}})

    response = client.post("/providers/bare/connect")

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "invalid_config"


def test_unknown_provider(client):
    assert client.get("/providers/nowhere").status_code == 404
    assert client.post("/providers/nowhere/connect").status_code == 404
    assert client.post("/providers/nowhere/notify", json={"reason": "connect"}).status_code == 404
    assert client.delete("/providers/nowhere").status_code == 404


def test_notify(client):
    response = client.post("/providers/office/notify", json={
        "reason": "connect",
        "env": {
            "INTERNAL_IP4_ADDRESS": "10.0.0.5",
            "INTERNAL_IP4_NETMASK": "255.255.255.0",
            "CISCO_DEF_DOMAIN": "example.com",
        },
    })

    assert response.json() == {"state": "connect"}
    status = client.get("/providers/office").json()
    assert status["ipv4"] == "10.0.0.5"
    assert status["domain"] == "example.com"

    assert client.post("/providers/office/notify", json={"reason": "disconnect"}).json() == {"state": "disconnect"}
    assert client.post("/providers/office/notify", json={"reason": "connect"}).json() == {"state": "failure"}


def test_save(client, manager, store):
    manager.get_provider("office").set_string("OpenConnect.ServerCert", "sha256:abcd")

    assert client.post("/providers/office/save").status_code == 200
    assert store.path.read_text().count("OpenConnect.ServerCert = sha256:abcd") == 1


def test_list_and_delete(client):
    assert [p["identifier"] for p in client.get("/providers").json()] == ["office"]

    assert client.delete("/providers/office").status_code == 200
    assert client.get("/providers").json() == []
