"""Tests for the Twist integration endpoints."""

from httpx import AsyncClient, ASGITransport

from src.database import async_session
from src.handlers.twist_handler import HELLO_MESSAGE, find_integration
from src.main import app


CONFIGURE_PARAMS = {
    "install_id": "inst-42",
    "post_data_url": "https://twist.test/integrations/incoming/42",
    "user_id": "7",
    "user_name": "Grace",
}


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_configure_registers_and_says_hello(bridge, twist):
    async with _client() as client:
        resp = await client.get("/twist/on_configure", params=CONFIGURE_PARAMS)

    assert resp.status_code == 200
    assert "Twist configuration successful." in resp.text
    assert "/gcp/webhooks/inst-42" in resp.text
    assert twist.integration_posts == [(CONFIGURE_PARAMS["post_data_url"], HELLO_MESSAGE)]

    async with async_session() as db:
        integration = await find_integration(db, "inst-42")
    assert integration.user_name == "Grace"
    assert integration.channel_id is None


async def test_reconfigure_updates_existing_install(bridge, twist):
    async with _client() as client:
        await client.get("/twist/on_configure", params=CONFIGURE_PARAMS)
        await client.get("/twist/on_configure", params={**CONFIGURE_PARAMS, "channel_id": "c-5"})

    async with async_session() as db:
        integration = await find_integration(db, "inst-42")
    assert integration.channel_id == "c-5"


async def test_configure_requires_install_id(bridge):
    params = dict(CONFIGURE_PARAMS)
    del params["install_id"]

    async with _client() as client:
        resp = await client.get("/twist/on_configure", params=params)

    assert resp.status_code == 422


async def test_outgoing_ping_and_message():
    async with _client() as client:
        ping = await client.post("/twist/outgoing", json={"event_type": "ping", "user_id": "7", "user_name": "Grace"})
        message = await client.post(
            "/twist/outgoing",
            json={"event_type": "message", "user_id": "7", "user_name": "Grace", "content": "hi"},
        )

    assert ping.json() == {"content": "pong"}
    assert message.json() == {"content": ""}


async def test_outgoing_uninstall_removes_install(bridge):
    async with _client() as client:
        await client.get("/twist/on_configure", params=CONFIGURE_PARAMS)
        resp = await client.post(
            "/twist/outgoing",
            json={"event_type": "uninstall", "user_id": "7", "user_name": "Grace", "install_id": "inst-42"},
        )

    assert resp.json() == {"content": "uninstalled!"}
    async with async_session() as db:
        assert await find_integration(db, "inst-42") is None


async def test_outgoing_unsupported_event_is_bad_request():
    async with _client() as client:
        comment = await client.post("/twist/outgoing", json={"event_type": "comment", "user_id": "7"})
        uninstall = await client.post("/twist/outgoing", json={"event_type": "uninstall", "user_id": "7"})

    assert comment.status_code == 400
    assert uninstall.status_code == 400
